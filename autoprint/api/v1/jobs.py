from datetime import datetime
from typing import Optional

from fastapi import APIRouter, HTTPException, status
from pydantic import BaseModel, ConfigDict, Field

from autoprint.api.deps import Orchestrator
from autoprint.domain.errors import (
    GuardViolationError,
    InvalidJobStateError,
    JobNotFoundError,
    PaymentNotFoundError,
    TransientInfraError,
)
from autoprint.domain.states import JobStatus, PaymentStatus

router = APIRouter()

class JobCreate(BaseModel):
    payer_identity: str
    document_ref: str
    display_name: str = ""
    file_name: Optional[str] = None
    page_count: Optional[int] = Field(default=None, ge=1)
    # Queue file processing right away
    process: bool = True

class JobResponse(BaseModel):
    id: str
    payer_identity: str
    display_name: str
    file_name: Optional[str] = None
    document_ref: str
    page_count: Optional[int] = None
    cost: Optional[float] = None
    estimated_minutes: int
    status: JobStatus
    payment_status: PaymentStatus
    progress: int
    failure_reason: Optional[str] = None
    transaction_id: Optional[str] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
    model_config = ConfigDict(from_attributes=True)

class PaymentConfirm(BaseModel):
    gateway_reference: str
    amount: Optional[float] = None

class TaskResponse(BaseModel):
    task_id: int
    kind: str
    job_id: Optional[str] = None
    priority: int

def _raise_http(e: Exception):
    if isinstance(e, (JobNotFoundError, PaymentNotFoundError)):
        raise HTTPException(status_code=404, detail=str(e)) from e
    if isinstance(e, (InvalidJobStateError, GuardViolationError)):
        raise HTTPException(status_code=409, detail=str(e)) from e
    if isinstance(e, TransientInfraError):
        raise HTTPException(status_code=503, detail=str(e)) from e
    raise e

@router.post("", response_model=JobResponse, status_code=status.HTTP_201_CREATED)
async def create_job(payload: JobCreate, orchestrator: Orchestrator):
    try:
        job = await orchestrator.create_job(
            payer_identity=payload.payer_identity,
            document_ref=payload.document_ref,
            display_name=payload.display_name,
            file_name=payload.file_name,
            page_count=payload.page_count
        )
        if payload.process:
            await orchestrator.enqueue_file_processing(job.id, payload.document_ref, payload.payer_identity)
    except Exception as e:
        _raise_http(e)
    return job

@router.get("", response_model=list[JobResponse])
async def list_jobs(orchestrator: Orchestrator, limit: int = 100):
    try:
        return await orchestrator.list_jobs(limit)
    except Exception as e:
        _raise_http(e)

@router.get("/status/{job_status}", response_model=list[JobResponse])
async def list_jobs_by_status(job_status: JobStatus, orchestrator: Orchestrator):
    try:
        return await orchestrator.get_jobs_by_status(job_status)
    except Exception as e:
        _raise_http(e)

@router.get("/payer/{payer_identity}", response_model=list[JobResponse])
async def list_jobs_by_payer(payer_identity: str, orchestrator: Orchestrator):
    try:
        return await orchestrator.get_jobs_by_payer(payer_identity)
    except Exception as e:
        _raise_http(e)

@router.get("/{job_id}", response_model=JobResponse)
async def get_job(job_id: str, orchestrator: Orchestrator):
    try:
        return await orchestrator.get_job(job_id)
    except Exception as e:
        _raise_http(e)

@router.post("/{job_id}/process", response_model=TaskResponse, status_code=status.HTTP_202_ACCEPTED)
async def process_job(job_id: str, orchestrator: Orchestrator):
    try:
        job = await orchestrator.get_job(job_id)
        handle = await orchestrator.enqueue_file_processing(job.id, job.document_ref, job.payer_identity)
    except Exception as e:
        _raise_http(e)
    return TaskResponse(task_id=handle.id, kind=str(handle.kind), job_id=handle.job_id, priority=handle.priority)

@router.post("/{job_id}/print", response_model=TaskResponse, status_code=status.HTTP_202_ACCEPTED)
async def print_job(job_id: str, orchestrator: Orchestrator):
    try:
        handle = await orchestrator.enqueue_print_job(job_id)
    except Exception as e:
        _raise_http(e)
    return TaskResponse(task_id=handle.id, kind=str(handle.kind), job_id=handle.job_id, priority=handle.priority)

@router.post("/{job_id}/payments/confirm", response_model=JobResponse)
async def confirm_payment(job_id: str, payload: PaymentConfirm, orchestrator: Orchestrator):
    try:
        return await orchestrator.confirm_payment(job_id, payload.gateway_reference, payload.amount)
    except Exception as e:
        _raise_http(e)

@router.post("/{job_id}/cancel", response_model=JobResponse)
async def cancel_job(job_id: str, orchestrator: Orchestrator):
    try:
        return await orchestrator.cancel_job(job_id)
    except Exception as e:
        _raise_http(e)
