import logging
from typing import Any, Optional

from autoprint.db.models import PrintJob
from autoprint.db.store import JobStore
from autoprint.domain.errors import GuardViolationError, PrintJobError, is_retryable
from autoprint.domain.models import TaskContext
from autoprint.domain.states import Channel, JobEvent, JobStatus
from autoprint.domain.transitions import ensure_transition, is_terminal, next_progress, progress_on_enter
from autoprint.collaborators.interfaces import MessagingChannel
from autoprint.events.hub import EventHub
from autoprint.handlers import messages

logger = logging.getLogger(__name__)

def describe_error(exc: BaseException) -> str:
    """Human-readable failure reason kept on the job for the dashboard."""
    if isinstance(exc, PrintJobError):
        return str(exc)
    return f"{type(exc).__name__}: {exc}"

class JobTaskHandler:
    """
    Shared plumbing for handlers that drive a job through the state machine.

    Every job write goes through `apply`, which checks the transition table,
    keeps progress monotonic while in flight, and is skipped (returns None)
    once the job has reached a terminal status, e.g. cancelled mid-flight.
    """

    # Stage named in retry notices
    retry_stage = "processing"

    def __init__(self, store: JobStore, messaging: MessagingChannel, hub: EventHub):
        self.store = store
        self.messaging = messaging
        self.hub = hub

    async def apply(
        self,
        job: PrintJob,
        status: Optional[JobStatus] = None,
        progress: Optional[int] = None,
        **changes: Any
    ) -> Optional[PrintJob]:
        current = JobStatus(job.status)
        target = JobStatus(status) if status else current

        if target != current:
            ensure_transition(current, target)
            changes["status"] = target
            baseline = progress_on_enter(target, job.progress)
            if progress is None:
                progress = baseline
        else:
            baseline = job.progress

        if progress is not None:
            changes["progress"] = next_progress(target, baseline, progress)

        updated = await self.store.update_active_job(job.id, **changes)
        if updated is None:
            logger.info(f"Job {job.id} reached a terminal status elsewhere, dropping update {changes}")
            return None

        self.hub.publish(JobEvent.JOB_UPDATE, updated.to_dict(), channel=Channel.JOBS)
        return updated

    async def notify(self, payer_identity: str, text: str) -> bool:
        """Best effort: delivery problems are logged, never raised."""
        try:
            delivered = await self.messaging.send(payer_identity, text)
        except Exception as e:
            logger.error(f"Notification to {payer_identity} raised: {e}", exc_info=True)
            delivered = False

        if not delivered:
            logger.warning(f"Notification to {payer_identity} was not delivered")

        self.hub.publish(JobEvent.USER_NOTIFICATION, {
            "payer_identity": payer_identity,
            "text": text,
            "delivered": delivered,
        }, channel=Channel.NOTIFICATIONS)
        return delivered

    async def record_failure(
        self,
        ctx: TaskContext,
        job_id: str,
        payer_identity: Optional[str],
        exc: BaseException,
        failure_text: str,
        retry_stage: str,
        final: Optional[bool] = None
    ) -> bool:
        """
        Persists the failed or retry-pending state of the job, then tells
        the payer. The store write and the notification are attempted
        independently. Returns True when the failure was final.
        """
        if final is None:
            final = ctx.is_last_attempt or not is_retryable(exc)
        reason = describe_error(exc)

        applied = True
        try:
            job = await self.store.get_job(job_id)
            if final:
                applied = await self.apply(job, status=JobStatus.FAILED, failure_reason=reason) is not None
            else:
                applied = await self.apply(job, failure_reason=reason) is not None
        except Exception as store_exc:
            logger.error(f"Could not persist failure of job {job_id}: {store_exc}", exc_info=True)

        if not applied:
            # Cancelled (or otherwise finished) while we were working; stay quiet.
            return final

        if payer_identity:
            if final:
                await self.notify(payer_identity, failure_text)
            else:
                await self.notify(payer_identity, messages.retrying(retry_stage, ctx.attempt, ctx.max_attempts))
        return final

    def final_failure_text(self, job: PrintJob) -> str:
        raise NotImplementedError

    async def on_final_failure(self, ctx: TaskContext, exc: BaseException) -> None:
        """
        Called by the queue once a task has failed for good.

        Covers failures the handler never saw, such as an attempt cancelled
        by the execution timeout or an error raised before the job was
        touched. Jobs already terminal (failed by the handler itself,
        cancelled, completed) are left alone, and guard violations never
        mutate the job.
        """
        if not ctx.job_id or isinstance(exc, GuardViolationError):
            return
        job = await self.store.get_job(ctx.job_id)
        if is_terminal(job.status):
            return

        logger.warning(f"Job {job.id} still {job.status} after task {ctx.task_id} failed for good, marking failed")
        await self.record_failure(
            ctx, job.id, job.payer_identity, exc,
            failure_text=self.final_failure_text(job),
            retry_stage=self.retry_stage,
            final=True
        )
