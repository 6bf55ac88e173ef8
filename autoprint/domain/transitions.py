"""
Transition and progress rules for print jobs.

Not a running component: every handler and the orchestrator consult these
helpers before writing a job's status or progress.
"""
from typing import Optional

from autoprint.domain.states import JobStatus, PaymentStatus
from autoprint.domain.errors import InvalidJobStateError, PaymentRequiredError

TERMINAL_STATUSES = frozenset({
    JobStatus.COMPLETED,
    JobStatus.FAILED,
    JobStatus.CANCELLED,
})

# Statuses in which progress must never move backwards.
IN_FLIGHT_STATUSES = frozenset({JobStatus.PROCESSING, JobStatus.PRINTING})

ALLOWED_TRANSITIONS: dict[JobStatus, frozenset[JobStatus]] = {
    JobStatus.PENDING: frozenset({
        JobStatus.PROCESSING,
        JobStatus.PRINTING,
        JobStatus.FAILED,
        JobStatus.CANCELLED,
    }),
    JobStatus.PROCESSING: frozenset({
        JobStatus.PENDING,      # quoted
        JobStatus.FAILED,
        JobStatus.CANCELLED,
    }),
    JobStatus.PRINTING: frozenset({
        JobStatus.COMPLETED,
        JobStatus.FAILED,
        JobStatus.CANCELLED,
    }),
    JobStatus.COMPLETED: frozenset(),
    JobStatus.FAILED: frozenset(),
    JobStatus.CANCELLED: frozenset(),
}

def is_terminal(status) -> bool:
    return JobStatus(status) in TERMINAL_STATUSES

def can_transition(current, target) -> bool:
    current, target = JobStatus(current), JobStatus(target)
    if current == target:
        return current not in TERMINAL_STATUSES
    return target in ALLOWED_TRANSITIONS[current]

def ensure_transition(current, target) -> None:
    if not can_transition(current, target):
        raise InvalidJobStateError(current, target)

def ensure_printable(job) -> None:
    """Guard for entering PRINTING: the job must be paid for."""
    if PaymentStatus(job.payment_status) != PaymentStatus.PAID:
        raise PaymentRequiredError(job.id, job.payment_status)

def next_progress(status, current: int, requested: int) -> int:
    """Progress value to persist for a handler's requested step."""
    requested = max(0, min(100, requested))
    if JobStatus(status) in IN_FLIGHT_STATUSES:
        return max(current or 0, requested)
    return requested

def progress_on_enter(target, current: Optional[int]) -> int:
    """Progress value when a job enters `target`."""
    target = JobStatus(target)
    if target in (JobStatus.FAILED, JobStatus.CANCELLED) or target in IN_FLIGHT_STATUSES:
        return 0
    return current or 0
