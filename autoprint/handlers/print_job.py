import asyncio
import logging
from typing import Any, Optional

from autoprint.api.v1.metrics import PRINTER_SUBMISSIONS
from autoprint.collaborators.interfaces import DocumentInspector, MessagingChannel, PrinterDriver
from autoprint.db.models import PrintJob
from autoprint.db.store import JobStore
from autoprint.domain.errors import PrintFailedError
from autoprint.domain.models import PrintOptions, TaskContext
from autoprint.domain.states import JobStatus, PaymentStatus
from autoprint.domain.transitions import ensure_printable, ensure_transition, is_terminal
from autoprint.events.hub import EventHub
from autoprint.handlers import messages
from autoprint.handlers.base import JobTaskHandler
from autoprint.settings import Settings

logger = logging.getLogger(__name__)

PROGRESS_SHARE_OF_TIMEOUT = 0.5

class PrintJobHandler(JobTaskHandler):
    """
    print-job: submit a paid job to the printer.

    The driver only acknowledges acceptance. Progress after submission is a
    simulated liveness signal paced by estimated_minutes; reaching 100 does
    not prove the paper came out.

    A job is submitted at most once per accepted submission: printer_reference
    is recorded on acceptance, and any later attempt (retry, restart) resumes
    the simulation instead of printing again.
    """

    retry_stage = "printing"

    def __init__(
        self,
        store: JobStore,
        inspector: DocumentInspector,
        printer: PrinterDriver,
        messaging: MessagingChannel,
        hub: EventHub,
        settings: Settings
    ):
        super().__init__(store, messaging, hub)
        self.inspector = inspector
        self.printer = printer
        self.settings = settings

    def final_failure_text(self, job: PrintJob) -> str:
        return messages.print_failed(refund_eligible=PaymentStatus(job.payment_status) == PaymentStatus.PAID)

    async def __call__(self, ctx: TaskContext) -> dict[str, Any]:
        job = await self.store.get_job(ctx.job_id)

        if is_terminal(job.status):
            logger.info(f"Job {job.id} is already {job.status}, not resubmitting")
            return {"skipped": True, "status": str(job.status)}

        # Guards: raise before anything is touched
        ensure_printable(job)
        ensure_transition(job.status, JobStatus.PRINTING)

        payer = job.payer_identity
        submitted = job.printer_reference is not None
        try:
            job = await self.apply(job, status=JobStatus.PRINTING, progress=10)
            if job is None:
                return {"skipped": True}

            if ctx.attempt == 1:
                await self.notify(payer, messages.printing_started(job.estimated_minutes))

            if not submitted:
                job = await self._submit(job)
                if job is None:
                    return {"skipped": True}
                submitted = True
            else:
                logger.info(f"Job {job.id} was already accepted by the printer, resuming")

            job = await self._simulate_progress(job)
            if job is None:
                return {"skipped": True}

            job = await self.apply(job, status=JobStatus.COMPLETED, progress=100, failure_reason=None)
            if job is None:
                return {"skipped": True}
        except Exception as e:
            await self.record_failure(
                ctx, ctx.job_id, payer, e,
                failure_text=self.final_failure_text(job),
                retry_stage=self.retry_stage,
                final=True if submitted else None
            )
            if submitted:
                # Never retry once the printer has the artifact
                err = PrintFailedError(f"Failed after submission: {e}")
                err.retryable = False
                raise err from e
            raise

        await self.notify(payer, messages.print_completed())
        logger.info(f"Job {job.id} completed")
        return {"job_id": job.id, "status": str(job.status), "printer_reference": job.printer_reference}

    async def _submit(self, job: PrintJob) -> Optional[PrintJob]:
        printable = await self.inspector.prepare_for_print(job.document_ref)

        job = await self.apply(job, progress=50)
        if job is None:
            return None

        result = await self.printer.submit(printable, self.settings.DEFAULT_PRINTER_NAME, PrintOptions())
        if not result.accepted:
            PRINTER_SUBMISSIONS.labels(result="rejected").inc()
            raise PrintFailedError(result.error or "Printer rejected the job")

        PRINTER_SUBMISSIONS.labels(result="accepted").inc()
        logger.info(f"Job {job.id} accepted by printer ({result.reference or 'no reference'})")
        return await self.apply(job, printer_reference=result.reference or "accepted")

    def _step_delay(self, job: PrintJob, steps: int) -> float:
        duration = job.estimated_minutes * self.settings.PRINT_PROGRESS_SECONDS_PER_MINUTE
        timeout = self.settings.TASK_EXECUTION_TIMEOUT_SECONDS
        if timeout:
            # Must finish inside one attempt, with room left for the writes around it
            duration = min(duration, timeout * PROGRESS_SHARE_OF_TIMEOUT)
        return duration / steps

    async def _simulate_progress(self, job: PrintJob) -> Optional[PrintJob]:
        steps = max(1, self.settings.PRINT_PROGRESS_STEPS)
        step_delay = self._step_delay(job, steps)

        for i in range(1, steps + 1):
            progress = 50 + (50 * i) // steps
            if progress <= job.progress:
                # Reached by an earlier attempt
                continue
            if step_delay > 0:
                await asyncio.sleep(step_delay)
            job = await self.apply(job, progress=progress)
            if job is None:
                return None
        return job
