from datetime import datetime, timezone
from typing import Optional

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from autoprint.db.models import QueueTask
from autoprint.domain.states import TaskKind, TaskStatus

async def lease_task(session: AsyncSession, kind: TaskKind) -> Optional[QueueTask]:
    """
    Claims the next available task of `kind`.

    Order: priority ascending (lower dispatches first), then enqueue order.
    The claim is a conditional UPDATE on status, so a row another
    dispatcher grabbed between the SELECT and the UPDATE is skipped.
    """
    now = datetime.now(timezone.utc)

    for _ in range(3):
        candidate = (await session.execute(_build_task_query(kind, now))).scalar_one_or_none()
        if candidate is None:
            return None

        stmt = update(QueueTask).where(
            QueueTask.id == candidate,
            QueueTask.status == TaskStatus.WAITING
        ).values(
            status=TaskStatus.ACTIVE,
            started_at=now,
            updated_at=now
        )
        res = await session.execute(stmt)
        if res.rowcount == 1:
            await session.flush()
            return await session.get(QueueTask, candidate, populate_existing=True)
        # Lost the race for this row, look for the next one.

    return None

def _build_task_query(kind, now):
    return select(QueueTask.id).where(
        QueueTask.kind == str(kind),
        QueueTask.status == TaskStatus.WAITING,
        QueueTask.available_at <= now
    ).order_by(
        QueueTask.priority.asc(),
        QueueTask.id.asc()
    ).limit(1)
