from typing import Any, Optional

from sqlalchemy import update
from sqlalchemy.ext.asyncio import AsyncSession

from autoprint.db.models import PrintJob, utcnow
from autoprint.domain.errors import JobNotFoundError
from autoprint.domain.transitions import TERMINAL_STATUSES

async def update_print_job(
    session: AsyncSession,
    job_id: str,
    changes: dict[str, Any],
    only_if_active: bool = False
) -> Optional[PrintJob]:
    """
    Applies `changes` to a job and refreshes updated_at.

    With only_if_active the write is conditional on the job not being in a
    terminal status, evaluated in the same UPDATE statement so a concurrent
    cancel can't be overwritten. Returns None when the condition filtered
    the row out; raises JobNotFoundError when the job doesn't exist.
    """
    stmt = update(PrintJob).where(PrintJob.id == job_id)
    if only_if_active:
        stmt = stmt.where(PrintJob.status.not_in([str(s) for s in TERMINAL_STATUSES]))
    stmt = stmt.values(**changes, updated_at=utcnow())

    res = await session.execute(stmt)

    if res.rowcount == 0:
        existing = await session.get(PrintJob, job_id)
        if not existing:
            raise JobNotFoundError(job_id)
        return None

    await session.flush()
    return await session.get(PrintJob, job_id, populate_existing=True)
