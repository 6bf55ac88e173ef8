from sqlalchemy import delete
from sqlalchemy.ext.asyncio import AsyncSession

from autoprint.db.models import QueueTask

async def complete_task(session: AsyncSession, task_id: int) -> None:
    """Successful tasks are not retained."""
    await session.execute(delete(QueueTask).where(QueueTask.id == task_id))
    await session.flush()
