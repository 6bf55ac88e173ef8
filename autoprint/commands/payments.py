from typing import Optional, Sequence

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from autoprint.db.models import Payment, utcnow
from autoprint.domain.states import PaymentRecordStatus
from autoprint.domain.errors import PaymentNotFoundError

async def create_payment(
    session: AsyncSession,
    job_id: str,
    amount: float,
    currency: str = "INR",
    gateway_reference: Optional[str] = None
) -> Payment:
    payment = Payment(
        job_id=job_id,
        amount=amount,
        currency=currency,
        gateway_reference=gateway_reference,
        status=PaymentRecordStatus.PENDING,
    )
    session.add(payment)
    await session.flush()
    return payment

async def get_payments_for_job(session: AsyncSession, job_id: str) -> Sequence[Payment]:
    stmt = select(Payment).where(Payment.job_id == job_id).order_by(Payment.created_at.asc())
    return (await session.execute(stmt)).scalars().all()

async def _find_payment(
    session: AsyncSession,
    job_id: str,
    status: PaymentRecordStatus,
    gateway_reference: Optional[str] = None
) -> Optional[Payment]:
    stmt = select(Payment).where(Payment.job_id == job_id, Payment.status == status)
    if gateway_reference:
        stmt = stmt.where(Payment.gateway_reference == gateway_reference)
    stmt = stmt.order_by(Payment.created_at.desc()).limit(1)
    return (await session.execute(stmt)).scalar_one_or_none()

async def complete_payment(
    session: AsyncSession,
    job_id: str,
    gateway_reference: str,
    amount: float,
    currency: str = "INR"
) -> tuple[Payment, bool]:
    """
    Records a verified payment for the job.

    A job has at most one completed payment: if one exists it is returned
    unchanged with created=False. Otherwise the matching pending attempt
    (by gateway reference, then the latest pending one) is completed, or a
    completed record is inserted when the gateway confirmed without a
    prior initiation.
    """
    existing = await _find_payment(session, job_id, PaymentRecordStatus.COMPLETED)
    if existing:
        return existing, False

    payment = await _find_payment(session, job_id, PaymentRecordStatus.PENDING, gateway_reference)
    if payment is None:
        payment = await _find_payment(session, job_id, PaymentRecordStatus.PENDING)

    if payment is None:
        payment = Payment(job_id=job_id, amount=amount, currency=currency)
        session.add(payment)

    payment.status = PaymentRecordStatus.COMPLETED
    payment.gateway_reference = gateway_reference
    payment.updated_at = utcnow()

    await session.flush()
    return payment, True

async def fail_payment(
    session: AsyncSession,
    job_id: str,
    gateway_reference: Optional[str] = None
) -> Payment:
    payment = await _find_payment(session, job_id, PaymentRecordStatus.PENDING, gateway_reference)
    if payment is None:
        raise PaymentNotFoundError(job_id)
    payment.status = PaymentRecordStatus.FAILED
    payment.updated_at = utcnow()
    await session.flush()
    return payment

async def refund_payment(session: AsyncSession, job_id: str) -> Payment:
    payment = await _find_payment(session, job_id, PaymentRecordStatus.COMPLETED)
    if payment is None:
        raise PaymentNotFoundError(job_id)
    payment.status = PaymentRecordStatus.REFUNDED
    payment.updated_at = utcnow()
    await session.flush()
    return payment
