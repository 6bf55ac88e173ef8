from typing import Sequence

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from autoprint.db.models import PrintJob
from autoprint.domain.errors import JobNotFoundError

async def get_print_job(session: AsyncSession, job_id: str) -> PrintJob:
    job = await session.get(PrintJob, job_id)
    if not job:
        raise JobNotFoundError(job_id)
    return job

async def get_jobs_by_status(session: AsyncSession, status: str) -> Sequence[PrintJob]:
    # Oldest first: this is the order jobs are served in
    stmt = select(PrintJob).where(PrintJob.status == status).order_by(PrintJob.created_at.asc())
    return (await session.execute(stmt)).scalars().all()

async def get_jobs_by_payer(session: AsyncSession, payer_identity: str) -> Sequence[PrintJob]:
    stmt = (
        select(PrintJob)
        .where(PrintJob.payer_identity == payer_identity)
        .order_by(PrintJob.created_at.desc())
    )
    return (await session.execute(stmt)).scalars().all()

async def list_recent_jobs(session: AsyncSession, limit: int = 100) -> Sequence[PrintJob]:
    stmt = select(PrintJob).order_by(PrintJob.created_at.desc()).limit(limit)
    return (await session.execute(stmt)).scalars().all()
