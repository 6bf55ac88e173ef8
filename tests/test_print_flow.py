"""End-to-end runs through the orchestrator with the queue dispatching."""
import asyncio

import pytest

from autoprint.domain.states import Channel, JobEvent, JobStatus, QueueEvent

from conftest import next_event, wait_for


def job_in(orchestrator, job_id, *statuses):
    async def check():
        job = await orchestrator.get_job(job_id)
        return job if job.status in statuses else None
    return check


def progress_runs(events, job_id):
    """(status, progress) pairs published for one job, in order."""
    return [
        (e.payload["status"], e.payload["progress"])
        for e in events
        if e.type == JobEvent.JOB_UPDATE and e.payload["id"] == job_id
    ]


def drain(sub):
    events = []
    while not sub.queue.empty():
        events.append(sub.get_nowait())
    return events


@pytest.mark.anyio
async def test_upload_quote_pay_print(orchestrator, messaging, printer):
    sub = orchestrator.on_state_change(channel=Channel.JOBS)
    await orchestrator.start()

    job = await orchestrator.create_job("+91 98765 43210", "/uploads/thesis.pdf", file_name="thesis.pdf")
    await orchestrator.enqueue_file_processing(job.id, job.document_ref, job.payer_identity)

    quoted = await wait_for(lambda: _quoted(orchestrator, job.id))
    assert quoted.page_count == 8
    assert quoted.cost == 40.0
    assert any("Pages: 8" in t and "INR 40" in t for t in messaging.texts())

    await orchestrator.confirm_payment(job.id, "pay_abc123")
    done = await wait_for(job_in(orchestrator, job.id, JobStatus.COMPLETED, JobStatus.FAILED))

    assert done.status == JobStatus.COMPLETED
    assert done.progress == 100
    assert done.transaction_id == "pay_abc123"
    assert len(printer.submitted) == 1

    await wait_for(lambda: any("Payment Received" in t for t in messaging.texts()))
    await wait_for(lambda: any("Completed" in t for t in messaging.texts()))

    # Progress is monotonic while processing and while printing
    runs = progress_runs(drain(sub), job.id)
    for status in (JobStatus.PROCESSING, JobStatus.PRINTING):
        values = [p for s, p in runs if s == status]
        assert values, f"no {status} updates"
        assert values == sorted(values)
    assert runs[-1] == (JobStatus.COMPLETED, 100)


async def _quoted(orchestrator, job_id):
    job = await orchestrator.get_job(job_id)
    return job if job.status == JobStatus.PENDING and job.progress == 100 else None


@pytest.mark.anyio
async def test_printer_failure_fails_job_and_tells_payer(orchestrator, printer, messaging):
    printer.accept = False
    await orchestrator.start()

    job = await orchestrator.create_job("+15550100", "/uploads/cv.pdf", file_name="cv.pdf", page_count=2)
    await orchestrator.confirm_payment(job.id, "pay_1")

    failed = await wait_for(job_in(orchestrator, job.id, JobStatus.FAILED))
    assert failed.progress == 0
    assert failed.failure_reason == "Printer offline"
    # One submission per attempt, none accepted
    assert len(printer.submitted) == 3

    await wait_for(lambda: any("refund" in t for t in messaging.texts()))
    assert sum("Retrying automatically" in t for t in messaging.texts()) == 2

    failed_tasks = await wait_for(orchestrator.get_failed_tasks)
    assert [t["job_id"] for t in failed_tasks] == [job.id]


@pytest.mark.anyio
async def test_print_attempts_timing_out_fail_the_job(orchestrator, settings, printer, messaging):
    settings.TASK_EXECUTION_TIMEOUT_SECONDS = 0.2
    # The driver never answers within an attempt
    printer.delay = 10
    await orchestrator.start()

    job = await orchestrator.create_job("+15550100", "/uploads/thesis.pdf", page_count=20)
    await orchestrator.confirm_payment(job.id, "pay_1")

    failed = await wait_for(job_in(orchestrator, job.id, JobStatus.FAILED))
    assert failed.progress == 0
    assert "exceeded" in failed.failure_reason
    assert printer.submitted == []

    await wait_for(lambda: any("Print Job Failed" in t and "refund" in t for t in messaging.texts()))
    failed_tasks = await wait_for(orchestrator.get_failed_tasks)
    assert failed_tasks[0]["attempts"] == 3


@pytest.mark.anyio
async def test_file_processing_timing_out_fails_the_job(orchestrator, settings, inspector, messaging, monkeypatch):
    settings.TASK_EXECUTION_TIMEOUT_SECONDS = 0.1

    async def stuck(location):
        await asyncio.sleep(10)

    monkeypatch.setattr(inspector, "inspect", stuck)
    await orchestrator.start()

    job = await orchestrator.create_job("+15550100", "/uploads/scan.pdf", file_name="scan.pdf")
    await orchestrator.enqueue_file_processing(job.id, job.document_ref, job.payer_identity)

    failed = await wait_for(job_in(orchestrator, job.id, JobStatus.FAILED))
    assert failed.progress == 0
    await wait_for(lambda: any("error processing your file (scan.pdf)" in t for t in messaging.texts()))


@pytest.mark.anyio
async def test_long_print_simulation_fits_inside_one_attempt(orchestrator, settings, printer):
    settings.TASK_EXECUTION_TIMEOUT_SECONDS = 0.5
    # 20 pages is 24 estimated minutes, 1.2s of simulated printing uncapped
    settings.PRINT_PROGRESS_SECONDS_PER_MINUTE = 0.05
    sub = orchestrator.on_state_change(channel=Channel.QUEUE)
    await orchestrator.start()

    job = await orchestrator.create_job("+15550100", "/uploads/thesis.pdf", page_count=20)
    await orchestrator.confirm_payment(job.id, "pay_1")

    done = await wait_for(job_in(orchestrator, job.id, JobStatus.COMPLETED, JobStatus.FAILED))
    assert done.status == JobStatus.COMPLETED
    assert len(printer.submitted) == 1

    completed = await next_event(sub, QueueEvent.TASK_COMPLETED, where=lambda p: p["kind"] == "print-job")
    assert completed.payload["attempts"] == 1


@pytest.mark.anyio
async def test_printer_is_never_driven_concurrently(orchestrator, printer):
    printer.delay = 0.05
    await orchestrator.start()

    jobs = []
    for i in range(3):
        job = await orchestrator.create_job(f"+1555010{i}", f"/uploads/doc{i}.pdf", page_count=1)
        await orchestrator.confirm_payment(job.id, f"pay_{i}")
        jobs.append(job)

    for job in jobs:
        await wait_for(job_in(orchestrator, job.id, JobStatus.COMPLETED))
    assert printer.max_concurrent == 1
    assert len(printer.submitted) == 3


@pytest.mark.anyio
async def test_cancelled_job_is_not_printed(orchestrator, printer):
    job = await orchestrator.create_job("+15550100", "/uploads/a.pdf", page_count=1)
    await orchestrator.confirm_payment(job.id, "pay_1")
    await orchestrator.cancel_job(job.id)

    await orchestrator.start()
    await wait_for(lambda: _queue_drained(orchestrator))

    job = await orchestrator.get_job(job.id)
    assert job.status == JobStatus.CANCELLED
    assert printer.submitted == []


async def _queue_drained(orchestrator):
    stats = await orchestrator.get_queue_stats()
    return stats.total == 0


@pytest.mark.anyio
async def test_queue_stats_reflect_pending_work(orchestrator):
    job = await orchestrator.create_job("+15550100", "/uploads/a.pdf")
    await orchestrator.enqueue_file_processing(job.id, job.document_ref, job.payer_identity)
    await orchestrator.enqueue_notification("+15550100", "later", delay=60)

    stats = await orchestrator.get_queue_stats()
    assert stats.by_kind["process-file"].waiting == 1
    assert stats.by_kind["notify-user"].delayed == 1
    assert stats.total == 2


@pytest.mark.anyio
async def test_two_rejections_then_success_takes_three_attempts(orchestrator, printer, messaging):
    printer.failures = 2
    sub = orchestrator.on_state_change(channel=Channel.QUEUE)
    await orchestrator.start()

    job = await orchestrator.create_job("+15550100", "/uploads/a.pdf", page_count=1)
    await orchestrator.confirm_payment(job.id, "pay_1")

    done = await next_event(
        sub, QueueEvent.TASK_COMPLETED,
        where=lambda p: p["kind"] == "print-job" and p["job_id"] == job.id
    )
    assert done.payload["attempts"] == 3

    job = await orchestrator.get_job(job.id)
    assert job.status == JobStatus.COMPLETED
    assert job.failure_reason is None
    assert len(printer.submitted) == 3
    assert sum("Printing Started" in t for t in messaging.texts()) == 1
