from datetime import datetime, timedelta, timezone
from typing import Any, Optional

from sqlalchemy.ext.asyncio import AsyncSession

from autoprint.db.models import QueueTask
from autoprint.domain.states import TaskKind, TaskStatus

async def enqueue_task(
    session: AsyncSession,
    kind: TaskKind,
    job_id: Optional[str],
    payload: dict[str, Any],
    priority: int = 0,
    delay_seconds: float = 0,
    max_attempts: int = 3
) -> QueueTask:
    """
    Inserts a WAITING task. A delay pushes available_at into the future;
    the dispatcher only picks tasks whose available_at has passed.
    """
    now = datetime.now(timezone.utc)
    task = QueueTask(
        kind=str(kind),
        job_id=job_id,
        payload=payload,
        priority=priority,
        status=TaskStatus.WAITING,
        available_at=now + timedelta(seconds=max(0, delay_seconds)),
        attempts=0,
        max_attempts=max_attempts,
    )
    session.add(task)
    await session.flush()
    return task
