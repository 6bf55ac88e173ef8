import pytest

from autoprint.domain.errors import (
    CorruptDocumentError,
    MessagingError,
    PaymentRequiredError,
    PrintFailedError,
    StoreUnavailableError,
)
from autoprint.domain.models import TaskContext
from autoprint.domain.states import JobStatus, PaymentStatus, TaskKind
from autoprint.handlers.notify_user import NotifyUserHandler
from autoprint.handlers.print_job import PrintJobHandler
from autoprint.handlers.process_file import ProcessFileHandler, estimate_minutes


def ctx_for(kind, job_id, attempt=1, max_attempts=3, **payload):
    return TaskContext(
        task_id=1,
        kind=kind,
        job_id=job_id,
        payload=payload,
        attempt=attempt,
        max_attempts=max_attempts
    )


@pytest.fixture
def process_handler(store, inspector, messaging, hub, settings):
    return ProcessFileHandler(store, inspector, messaging, hub, settings)


@pytest.fixture
def print_handler(store, inspector, printer, messaging, hub, settings):
    return PrintJobHandler(store, inspector, printer, messaging, hub, settings)


async def new_job(store, **fields):
    fields.setdefault("payer_identity", "+91 98765-43210")
    fields.setdefault("document_ref", "/uploads/notes.pdf")
    fields.setdefault("file_name", "notes.pdf")
    return await store.create_job(**fields)


async def paid_job(store, **fields):
    job = await new_job(store, page_count=4, cost=20.0, estimated_minutes=5, **fields)
    return await store.update_job(job.id, payment_status=PaymentStatus.PAID, transaction_id="pay_1")


def test_estimated_minutes(settings):
    assert estimate_minutes(1, settings) == 2
    assert estimate_minutes(8, settings) == 10


@pytest.mark.anyio
async def test_process_file_quotes_the_payer(process_handler, store, messaging):
    job = await new_job(store)

    result = await process_handler(ctx_for(TaskKind.PROCESS_FILE, job.id))

    job = await store.get_job(job.id)
    assert job.status == JobStatus.PENDING
    assert job.progress == 100
    assert job.page_count == 8
    assert job.cost == 40.0
    assert job.estimated_minutes == 10
    assert result["quote_sent"] is True

    [(payer, quote)] = messaging.sent
    assert payer == job.payer_identity
    assert "Pages: 8" in quote
    assert "INR 40" in quote


@pytest.mark.anyio
async def test_unreadable_document_fails_job_immediately(process_handler, store, inspector, messaging):
    job = await new_job(store)
    inspector.errors.append(CorruptDocumentError("truncated PDF"))

    with pytest.raises(CorruptDocumentError):
        await process_handler(ctx_for(TaskKind.PROCESS_FILE, job.id))

    job = await store.get_job(job.id)
    assert job.status == JobStatus.FAILED
    assert job.progress == 0
    assert "truncated PDF" in job.failure_reason
    assert "error processing your file" in messaging.texts()[-1]


@pytest.mark.anyio
async def test_transient_inspection_error_keeps_job_retryable(process_handler, store, inspector, messaging):
    job = await new_job(store)
    inspector.errors.append(StoreUnavailableError("blob store timeout"))

    with pytest.raises(StoreUnavailableError):
        await process_handler(ctx_for(TaskKind.PROCESS_FILE, job.id, attempt=1))

    job = await store.get_job(job.id)
    assert job.status == JobStatus.PROCESSING
    assert job.failure_reason == "blob store timeout"
    assert "attempt 2 of 3" in messaging.texts()[-1]

    # Next attempt succeeds and clears the reason
    await process_handler(ctx_for(TaskKind.PROCESS_FILE, job.id, attempt=2))
    job = await store.get_job(job.id)
    assert job.status == JobStatus.PENDING
    assert job.failure_reason is None


@pytest.mark.anyio
async def test_quote_delivery_failure_does_not_stall_job(process_handler, store, messaging):
    job = await new_job(store)
    messaging.raise_error = MessagingError("gateway down")

    result = await process_handler(ctx_for(TaskKind.PROCESS_FILE, job.id))

    job = await store.get_job(job.id)
    assert job.status == JobStatus.PENDING
    assert job.progress == 100
    assert result["quote_sent"] is False


@pytest.mark.anyio
async def test_print_requires_payment_and_touches_nothing(print_handler, store, printer, messaging):
    job = await new_job(store, page_count=2, cost=10.0)

    with pytest.raises(PaymentRequiredError):
        await print_handler(ctx_for(TaskKind.PRINT_JOB, job.id))

    after = await store.get_job(job.id)
    assert after.status == JobStatus.PENDING
    assert after.progress == job.progress
    assert after.updated_at == job.updated_at
    assert printer.submitted == []
    assert messaging.sent == []


@pytest.mark.anyio
async def test_print_completes_paid_job(print_handler, store, printer, messaging):
    job = await paid_job(store)

    result = await print_handler(ctx_for(TaskKind.PRINT_JOB, job.id))

    job = await store.get_job(job.id)
    assert job.status == JobStatus.COMPLETED
    assert job.progress == 100
    assert job.printer_reference == "ref-1"
    assert result["printer_reference"] == "ref-1"
    assert printer.submitted == [job.document_ref]

    texts = messaging.texts()
    assert "Printing Started" in texts[0]
    assert "Estimated time: 5 minutes" in texts[0]
    assert "Completed" in texts[-1]


@pytest.mark.anyio
async def test_print_on_completed_job_is_a_noop(print_handler, store, printer, messaging):
    job = await paid_job(store)
    await print_handler(ctx_for(TaskKind.PRINT_JOB, job.id))
    sent_before = len(messaging.sent)

    result = await print_handler(ctx_for(TaskKind.PRINT_JOB, job.id))

    assert result["skipped"] is True
    assert len(printer.submitted) == 1
    assert len(messaging.sent) == sent_before


@pytest.mark.anyio
async def test_cancel_during_print_is_respected(print_handler, store, printer, messaging):
    job = await paid_job(store)

    async def cancel_while_submitting(location):
        await store.update_job(job.id, status=JobStatus.CANCELLED, progress=0)

    printer.on_submit = cancel_while_submitting

    result = await print_handler(ctx_for(TaskKind.PRINT_JOB, job.id))

    assert result == {"skipped": True}
    job = await store.get_job(job.id)
    assert job.status == JobStatus.CANCELLED
    assert job.progress == 0
    assert not any("Completed" in text for text in messaging.texts())


@pytest.mark.anyio
async def test_printer_rejection_on_last_attempt_fails_job(print_handler, store, printer, messaging):
    job = await paid_job(store)
    printer.accept = False

    with pytest.raises(PrintFailedError):
        await print_handler(ctx_for(TaskKind.PRINT_JOB, job.id, attempt=3, max_attempts=3))

    job = await store.get_job(job.id)
    assert job.status == JobStatus.FAILED
    assert job.progress == 0
    assert job.failure_reason == "Printer offline"
    assert "refund" in messaging.texts()[-1]


@pytest.mark.anyio
async def test_printer_rejection_before_last_attempt_schedules_retry(print_handler, store, printer, messaging):
    job = await paid_job(store)
    printer.accept = False

    with pytest.raises(PrintFailedError) as exc:
        await print_handler(ctx_for(TaskKind.PRINT_JOB, job.id, attempt=1, max_attempts=3))
    assert exc.value.retryable is True

    job = await store.get_job(job.id)
    assert job.status == JobStatus.PRINTING
    assert job.failure_reason == "Printer offline"
    assert "Retrying automatically" in messaging.texts()[-1]


@pytest.mark.anyio
async def test_accepted_job_is_never_resubmitted(print_handler, store, printer):
    job = await paid_job(store)
    await store.update_job(job.id, status=JobStatus.PRINTING, progress=60, printer_reference="ref-existing")

    await print_handler(ctx_for(TaskKind.PRINT_JOB, job.id, attempt=2))

    job = await store.get_job(job.id)
    assert job.status == JobStatus.COMPLETED
    assert job.printer_reference == "ref-existing"
    assert printer.submitted == []


@pytest.mark.anyio
async def test_notify_user_sends_text_and_files(messaging):
    handler = NotifyUserHandler(messaging)

    await handler(ctx_for(TaskKind.NOTIFY_USER, None, payer_identity="+15550100", text="hello"))
    await handler(ctx_for(TaskKind.NOTIFY_USER, None, payer_identity="+15550100", text="receipt", file="/tmp/r.pdf"))

    assert messaging.sent == [("+15550100", "hello")]
    assert messaging.files == [("+15550100", "/tmp/r.pdf", "receipt")]


@pytest.mark.anyio
async def test_notify_user_undelivered_is_retryable(messaging):
    handler = NotifyUserHandler(messaging)
    messaging.deliver = False

    with pytest.raises(MessagingError) as exc:
        await handler(ctx_for(TaskKind.NOTIFY_USER, None, payer_identity="+15550100", text="hello"))
    assert exc.value.retryable is True
