"""
Job Record Store.

Thin async facade over the job/payment commands: one session and one
transaction per call, no business rules. Connectivity failures surface
as StoreUnavailableError so callers can treat them as transient.
"""
import logging
from contextlib import asynccontextmanager
from typing import Any, AsyncIterator, Optional, Sequence

from sqlalchemy.exc import DBAPIError, InterfaceError, OperationalError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from autoprint.commands import payments as payment_commands
from autoprint.commands.create_job import create_print_job
from autoprint.commands.query_jobs import (
    get_jobs_by_payer,
    get_jobs_by_status,
    get_print_job,
    list_recent_jobs,
)
from autoprint.commands.update_job import update_print_job
from autoprint.db.models import Payment, PrintJob
from autoprint.domain.errors import StoreUnavailableError

logger = logging.getLogger(__name__)

@asynccontextmanager
async def unit_of_work(
    session_factory: async_sessionmaker[AsyncSession],
    unavailable: type[Exception] = StoreUnavailableError
) -> AsyncIterator[AsyncSession]:
    """Session + transaction, with driver-level failures mapped to `unavailable`."""
    try:
        async with session_factory() as session:
            async with session.begin():
                yield session
    except (OperationalError, InterfaceError) as e:
        logger.warning(f"Store unreachable: {e}")
        raise unavailable(str(e)) from e
    except DBAPIError as e:
        if e.connection_invalidated:
            raise unavailable(str(e)) from e
        raise

class JobStore:
    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self.session_factory = session_factory

    # Jobs

    async def create_job(self, **fields: Any) -> PrintJob:
        async with unit_of_work(self.session_factory) as session:
            return await create_print_job(session, **fields)

    async def get_job(self, job_id: str) -> PrintJob:
        async with unit_of_work(self.session_factory) as session:
            return await get_print_job(session, job_id)

    async def update_job(self, job_id: str, **changes: Any) -> PrintJob:
        async with unit_of_work(self.session_factory) as session:
            return await update_print_job(session, job_id, changes)

    async def update_active_job(self, job_id: str, **changes: Any) -> Optional[PrintJob]:
        """Like update_job, but a no-op returning None once the job is terminal."""
        async with unit_of_work(self.session_factory) as session:
            return await update_print_job(session, job_id, changes, only_if_active=True)

    async def get_jobs_by_status(self, status: str) -> Sequence[PrintJob]:
        async with unit_of_work(self.session_factory) as session:
            return await get_jobs_by_status(session, status)

    async def get_jobs_by_payer(self, payer_identity: str) -> Sequence[PrintJob]:
        async with unit_of_work(self.session_factory) as session:
            return await get_jobs_by_payer(session, payer_identity)

    async def list_jobs(self, limit: int = 100) -> Sequence[PrintJob]:
        async with unit_of_work(self.session_factory) as session:
            return await list_recent_jobs(session, limit)

    # Payments

    async def create_payment(self, job_id: str, amount: float, currency: str = "INR",
                             gateway_reference: Optional[str] = None) -> Payment:
        async with unit_of_work(self.session_factory) as session:
            return await payment_commands.create_payment(
                session, job_id, amount, currency=currency, gateway_reference=gateway_reference
            )

    async def complete_payment(self, job_id: str, gateway_reference: str, amount: float,
                               currency: str = "INR") -> tuple[Payment, bool]:
        async with unit_of_work(self.session_factory) as session:
            return await payment_commands.complete_payment(
                session, job_id, gateway_reference, amount, currency=currency
            )

    async def fail_payment(self, job_id: str, gateway_reference: Optional[str] = None) -> Payment:
        async with unit_of_work(self.session_factory) as session:
            return await payment_commands.fail_payment(session, job_id, gateway_reference)

    async def refund_payment(self, job_id: str) -> Payment:
        async with unit_of_work(self.session_factory) as session:
            return await payment_commands.refund_payment(session, job_id)

    async def get_payments(self, job_id: str) -> Sequence[Payment]:
        async with unit_of_work(self.session_factory) as session:
            return await payment_commands.get_payments_for_job(session, job_id)
