from typing import Optional

from sqlalchemy.ext.asyncio import AsyncSession

from autoprint.db.models import PrintJob
from autoprint.domain.states import JobStatus, PaymentStatus

async def create_print_job(
    session: AsyncSession,
    payer_identity: str,
    document_ref: str,
    display_name: str = "",
    file_name: Optional[str] = None,
    page_count: Optional[int] = None,
    cost: Optional[float] = None,
    estimated_minutes: int = 0
) -> PrintJob:
    """
    Inserts a new job in pending/pending.
    page_count and cost stay NULL until the document inspector has run,
    unless the caller already knows them (manual job creation).
    """
    job = PrintJob(
        payer_identity=payer_identity,
        display_name=display_name or payer_identity,
        file_name=file_name or document_ref.rsplit("/", 1)[-1],
        document_ref=document_ref,
        page_count=page_count,
        cost=cost,
        estimated_minutes=estimated_minutes,
        status=JobStatus.PENDING,
        payment_status=PaymentStatus.PENDING,
        progress=0,
    )
    session.add(job)
    await session.flush()
    return job
