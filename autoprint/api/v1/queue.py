from dataclasses import asdict
from typing import Optional

from fastapi import APIRouter, HTTPException

from autoprint.api.deps import Orchestrator
from autoprint.domain.errors import TransientInfraError
from autoprint.domain.states import JobStatus, TaskKind

router = APIRouter()

@router.get("")
async def queue_stats(orchestrator: Orchestrator):
    try:
        stats = await orchestrator.get_queue_stats()
        pending = await orchestrator.get_jobs_by_status(JobStatus.PENDING)
        printing = await orchestrator.get_jobs_by_status(JobStatus.PRINTING)
    except TransientInfraError as e:
        raise HTTPException(status_code=503, detail=str(e)) from e
    body = asdict(stats)
    body["total"] = stats.total
    # Same shape the dashboard polls for
    body["pending_jobs"] = [job.to_dict() for job in pending]
    body["printing_jobs"] = [job.to_dict() for job in printing]
    return body

@router.get("/failed")
async def failed_tasks(orchestrator: Orchestrator, kind: Optional[TaskKind] = None):
    try:
        return await orchestrator.get_failed_tasks(kind)
    except TransientInfraError as e:
        raise HTTPException(status_code=503, detail=str(e)) from e
