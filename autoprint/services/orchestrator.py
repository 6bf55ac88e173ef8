import logging
from typing import Any, Optional, Sequence

from autoprint.db.models import Payment, PrintJob
from autoprint.db.store import JobStore
from autoprint.domain.errors import InvalidJobStateError
from autoprint.domain.models import QueueStats, TaskHandle
from autoprint.domain.states import Channel, JobEvent, JobStatus, PaymentStatus, TaskKind
from autoprint.domain.transitions import ensure_transition, is_terminal, progress_on_enter
from autoprint.events.hub import EventHub, Observer, Subscription
from autoprint.handlers import messages
from autoprint.handlers.process_file import estimate_minutes
from autoprint.queue.task_queue import TaskQueue
from autoprint.settings import Settings

logger = logging.getLogger(__name__)

class PrintOrchestrator:
    """
    Entry point for collaborators (chat bot, payment webhook, HTTP API).

    Built by OrchestratorBuilder; every collaborator is in place before
    start() lets the queue dispatch.
    """

    def __init__(self, store: JobStore, queue: TaskQueue, hub: EventHub, settings: Settings):
        self.store = store
        self.queue = queue
        self.hub = hub
        self.settings = settings

    async def start(self) -> None:
        await self.queue.start()

    async def stop(self) -> None:
        await self.queue.stop()
        await self.hub.close()

    # Ingestion

    async def create_job(
        self,
        payer_identity: str,
        document_ref: str,
        display_name: str = "",
        file_name: Optional[str] = None,
        page_count: Optional[int] = None,
        cost: Optional[float] = None
    ) -> PrintJob:
        estimated_minutes = 0
        if page_count:
            estimated_minutes = estimate_minutes(page_count, self.settings)
            if cost is None:
                cost = page_count * self.settings.PRICE_PER_PAGE

        job = await self.store.create_job(
            payer_identity=payer_identity,
            document_ref=document_ref,
            display_name=display_name,
            file_name=file_name,
            page_count=page_count,
            cost=cost,
            estimated_minutes=estimated_minutes
        )
        logger.info(f"Job {job.id} created for {payer_identity}")
        self.hub.publish(JobEvent.JOB_CREATED, job.to_dict(), channel=Channel.JOBS)
        return job

    async def enqueue_file_processing(self, job_id: str, document_location: str, payer_identity: str) -> TaskHandle:
        return await self.queue.enqueue(
            TaskKind.PROCESS_FILE,
            job_id=job_id,
            payload={"document_location": document_location, "payer_identity": payer_identity}
        )

    async def enqueue_print_job(self, job_id: str) -> TaskHandle:
        # NotFound surfaces to the caller; payment is checked by the handler
        await self.store.get_job(job_id)
        return await self.queue.enqueue(TaskKind.PRINT_JOB, job_id=job_id)

    async def enqueue_notification(
        self,
        payer_identity: str,
        text: str,
        delay: float = 0,
        file: Optional[str] = None
    ) -> TaskHandle:
        payload: dict[str, Any] = {"payer_identity": payer_identity, "text": text}
        if file:
            payload["file"] = file
        return await self.queue.enqueue(TaskKind.NOTIFY_USER, payload=payload, delay=delay)

    # Payments

    async def initiate_payment(
        self,
        job_id: str,
        amount: Optional[float] = None,
        gateway_reference: Optional[str] = None
    ) -> Payment:
        job = await self.store.get_job(job_id)
        if is_terminal(job.status):
            raise InvalidJobStateError(job.status, "payment")
        return await self.store.create_payment(
            job_id,
            amount if amount is not None else (job.cost or 0.0),
            currency=self.settings.CURRENCY,
            gateway_reference=gateway_reference
        )

    async def confirm_payment(
        self,
        job_id: str,
        gateway_reference: str,
        amount: Optional[float] = None
    ) -> PrintJob:
        """
        paymentConfirmed(jobId): mark the job paid and queue it for printing.

        Idempotent: a job that is already paid is returned as-is and no
        second print task is queued. A repeated confirmation does queue the
        print when the first one got as far as marking the job paid.
        """
        job = await self.store.get_job(job_id)
        if PaymentStatus(job.payment_status) == PaymentStatus.PAID:
            if JobStatus(job.status) == JobStatus.PENDING and not await self.queue.has_open_task(TaskKind.PRINT_JOB, job_id):
                # Paid earlier but the print task never made it into the queue
                logger.warning(f"Job {job_id} is paid but has no print task, queueing it now")
                await self.queue.enqueue(TaskKind.PRINT_JOB, job_id=job_id)
                return job
            logger.info(f"Job {job_id} already paid, ignoring duplicate confirmation")
            return job
        if JobStatus(job.status) != JobStatus.PENDING:
            raise InvalidJobStateError(job.status, "paid")

        payment, _ = await self.store.complete_payment(
            job_id,
            gateway_reference,
            amount if amount is not None else (job.cost or 0.0),
            currency=self.settings.CURRENCY
        )
        job = await self.store.update_job(
            job_id,
            payment_status=PaymentStatus.PAID,
            transaction_id=payment.gateway_reference
        )
        self.hub.publish(JobEvent.PAYMENT_UPDATE, {
            "job_id": job_id,
            "payment_id": payment.id,
            "amount": payment.amount,
            "status": str(payment.status),
        }, channel=Channel.JOBS)
        self.hub.publish(JobEvent.JOB_UPDATE, job.to_dict(), channel=Channel.JOBS)

        await self.enqueue_notification(job.payer_identity, messages.payment_received(payment.amount, self.settings.CURRENCY))
        await self.queue.enqueue(TaskKind.PRINT_JOB, job_id=job_id)
        logger.info(f"Payment {payment.id} confirmed for job {job_id}, print queued")
        return job

    async def fail_payment(self, job_id: str, gateway_reference: Optional[str] = None) -> PrintJob:
        job = await self.store.get_job(job_id)
        if PaymentStatus(job.payment_status) == PaymentStatus.PAID:
            raise InvalidJobStateError(job.payment_status, PaymentStatus.FAILED)
        await self.store.fail_payment(job_id, gateway_reference)
        job = await self.store.update_job(job_id, payment_status=PaymentStatus.FAILED)
        self.hub.publish(JobEvent.JOB_UPDATE, job.to_dict(), channel=Channel.JOBS)
        return job

    async def refund_payment(self, job_id: str) -> PrintJob:
        job = await self.store.get_job(job_id)
        if JobStatus(job.status) not in (JobStatus.FAILED, JobStatus.CANCELLED):
            raise InvalidJobStateError(job.status, PaymentStatus.REFUNDED)
        await self.store.refund_payment(job_id)
        job = await self.store.update_job(job_id, payment_status=PaymentStatus.REFUNDED)
        self.hub.publish(JobEvent.JOB_UPDATE, job.to_dict(), channel=Channel.JOBS)
        return job

    # Cancellation

    async def cancel_job(self, job_id: str) -> PrintJob:
        """
        Sets the job to cancelled. In-flight tasks are not aborted; their
        handlers notice the terminal status and stop writing.
        Terminal jobs are returned unchanged.
        """
        job = await self.store.get_job(job_id)
        if is_terminal(job.status):
            return job

        ensure_transition(job.status, JobStatus.CANCELLED)
        updated = await self.store.update_active_job(
            job_id,
            status=JobStatus.CANCELLED,
            progress=progress_on_enter(JobStatus.CANCELLED, job.progress)
        )
        if updated is None:
            # Finished while we were looking
            return await self.store.get_job(job_id)

        logger.info(f"Job {job_id} cancelled")
        self.hub.publish(JobEvent.JOB_UPDATE, updated.to_dict(), channel=Channel.JOBS)
        await self.enqueue_notification(updated.payer_identity, messages.job_cancelled())
        return updated

    # Observation

    def on_state_change(self, observer: Optional[Observer] = None, channel: Optional[str] = None) -> Subscription:
        return self.hub.subscribe(observer, channel)

    async def get_queue_stats(self) -> QueueStats:
        return await self.queue.get_stats()

    async def get_failed_tasks(self, kind: Optional[TaskKind] = None) -> list[dict[str, Any]]:
        return await self.queue.get_failed(kind)

    async def get_job(self, job_id: str) -> PrintJob:
        return await self.store.get_job(job_id)

    async def get_jobs_by_status(self, status: JobStatus) -> Sequence[PrintJob]:
        return await self.store.get_jobs_by_status(JobStatus(status))

    async def get_jobs_by_payer(self, payer_identity: str) -> Sequence[PrintJob]:
        return await self.store.get_jobs_by_payer(payer_identity)

    async def list_jobs(self, limit: int = 100) -> Sequence[PrintJob]:
        return await self.store.list_jobs(limit)
