import logging
import math
from typing import Any

from autoprint.collaborators.interfaces import DocumentInspector, MessagingChannel
from autoprint.db.store import JobStore
from autoprint.domain.models import TaskContext
from autoprint.domain.states import JobStatus
from autoprint.domain.transitions import ensure_transition, is_terminal
from autoprint.events.hub import EventHub
from autoprint.handlers import messages
from autoprint.handlers.base import JobTaskHandler
from autoprint.settings import Settings

logger = logging.getLogger(__name__)

def estimate_minutes(page_count: int, settings: Settings) -> int:
    return max(settings.MIN_ESTIMATED_MINUTES, math.ceil(page_count * settings.MINUTES_PER_PAGE))

class ProcessFileHandler(JobTaskHandler):
    """
    process-file: inspect the uploaded document and quote the payer.

    pending -> processing (10) -> inspected (50) -> quote sent -> pending (100)
    """

    def __init__(
        self,
        store: JobStore,
        inspector: DocumentInspector,
        messaging: MessagingChannel,
        hub: EventHub,
        settings: Settings
    ):
        super().__init__(store, messaging, hub)
        self.inspector = inspector
        self.settings = settings

    def final_failure_text(self, job) -> str:
        return messages.processing_failed(job.file_name)

    async def __call__(self, ctx: TaskContext) -> dict[str, Any]:
        job = await self.store.get_job(ctx.job_id)
        payer = ctx.payload.get("payer_identity") or job.payer_identity
        document = ctx.payload.get("document_location") or job.document_ref

        if is_terminal(job.status):
            logger.info(f"Job {job.id} is {job.status}, skipping file processing")
            return {"skipped": True, "status": str(job.status)}
        ensure_transition(job.status, JobStatus.PROCESSING)

        try:
            job = await self.apply(job, status=JobStatus.PROCESSING, progress=10)
            if job is None:
                return {"skipped": True}

            result = await self.inspector.inspect(document)

            cost = result.page_count * self.settings.PRICE_PER_PAGE
            job = await self.apply(
                job,
                progress=50,
                page_count=result.page_count,
                cost=cost,
                estimated_minutes=estimate_minutes(result.page_count, self.settings),
                document_ref=result.document_ref,
                failure_reason=None
            )
            if job is None:
                return {"skipped": True}
        except Exception as e:
            await self.record_failure(
                ctx, ctx.job_id, payer, e,
                failure_text=self.final_failure_text(job),
                retry_stage=self.retry_stage
            )
            raise

        # Quote delivery is best effort; the job moves on regardless.
        quote_sent = await self.notify(
            payer,
            messages.quote_ready(job.file_name, job.page_count, job.cost, self.settings.CURRENCY)
        )

        try:
            job = await self.apply(job, status=JobStatus.PENDING, progress=100)
        except Exception as e:
            await self.record_failure(
                ctx, ctx.job_id, payer, e,
                failure_text=self.final_failure_text(job),
                retry_stage=self.retry_stage
            )
            raise

        if job is None:
            return {"skipped": True}

        logger.info(f"Job {job.id} quoted: {job.page_count} page(s), cost {job.cost}")
        return {
            "job_id": job.id,
            "page_count": job.page_count,
            "cost": job.cost,
            "quote_sent": quote_sent,
        }
