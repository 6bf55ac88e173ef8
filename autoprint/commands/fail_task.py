from datetime import datetime, timezone

from sqlalchemy import select, delete
from sqlalchemy.ext.asyncio import AsyncSession

from autoprint.db.models import QueueTask
from autoprint.domain.states import TaskStatus
from autoprint.domain.retry import calculate_next_run

async def fail_task(
    session: AsyncSession,
    task_id: int,
    error: str,
    retryable: bool = True,
    base_delay_seconds: float = 2.0,
    max_delay_seconds: float = 300.0,
    jitter: bool = False
) -> tuple[QueueTask, bool]:
    """
    Records a failed attempt.

    Returns (task, final). A final failure leaves the task in FAILED for
    inspection; otherwise it goes back to WAITING with an exponential
    backoff applied to available_at.
    """
    now = datetime.now(timezone.utc)

    task = await session.get(QueueTask, task_id)
    task.attempts += 1
    task.last_error = error
    task.updated_at = now

    final = (not retryable) or task.attempts >= task.max_attempts

    if final:
        task.status = TaskStatus.FAILED
    else:
        task.status = TaskStatus.WAITING
        task.available_at = calculate_next_run(
            task.attempts,
            base_delay_seconds=base_delay_seconds,
            max_delay_seconds=max_delay_seconds,
            jitter=jitter,
            now=now
        )

    await session.flush()
    return task, final

async def prune_failed_tasks(session: AsyncSession, kind: str, keep: int) -> int:
    """Keeps only the `keep` most recent failed tasks of a kind."""
    stmt = (
        select(QueueTask.id)
        .where(QueueTask.kind == kind, QueueTask.status == TaskStatus.FAILED)
        .order_by(QueueTask.updated_at.desc(), QueueTask.id.desc())
        .offset(max(0, keep))
    )
    stale_ids = (await session.execute(stmt)).scalars().all()
    if not stale_ids:
        return 0

    await session.execute(delete(QueueTask).where(QueueTask.id.in_(stale_ids)))
    await session.flush()
    return len(stale_ids)
