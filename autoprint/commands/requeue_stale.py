from datetime import datetime, timezone

from sqlalchemy import update
from sqlalchemy.ext.asyncio import AsyncSession

from autoprint.db.models import QueueTask
from autoprint.domain.states import TaskStatus

async def requeue_stale_tasks(session: AsyncSession) -> int:
    """
    Returns tasks left ACTIVE by a previous process (crash, kill -9) to
    WAITING. Only called before this process starts dispatching, so every
    ACTIVE row is orphaned. The interrupted attempt is not counted.
    """
    now = datetime.now(timezone.utc)
    stmt = update(QueueTask).where(
        QueueTask.status == TaskStatus.ACTIVE
    ).values(
        status=TaskStatus.WAITING,
        available_at=now,
        last_error="Worker stopped before completion",
        updated_at=now
    )
    res = await session.execute(stmt)
    await session.flush()
    return res.rowcount or 0
