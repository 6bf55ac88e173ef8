from dataclasses import dataclass, field
from datetime import datetime
from typing import Optional, Any

from autoprint.domain.states import TaskKind

@dataclass
class TaskHandle:
    id: int
    kind: TaskKind
    job_id: Optional[str]
    priority: int
    available_at: datetime

@dataclass
class TaskContext:
    task_id: int
    kind: TaskKind
    job_id: Optional[str]
    payload: dict[str, Any]
    attempt: int          # 1-based number of the attempt being executed
    max_attempts: int = 3

    @property
    def is_last_attempt(self) -> bool:
        return self.attempt >= self.max_attempts

@dataclass
class KindStats:
    waiting: int = 0
    delayed: int = 0
    active: int = 0
    completed: int = 0
    failed: int = 0

@dataclass
class QueueStats:
    waiting: int = 0
    delayed: int = 0
    active: int = 0
    completed: int = 0
    failed: int = 0
    by_kind: dict[str, KindStats] = field(default_factory=dict)

    @property
    def total(self) -> int:
        return self.waiting + self.delayed + self.active

@dataclass
class InspectionResult:
    page_count: int
    cost_estimate: float
    document_ref: str

@dataclass
class PrintOptions:
    copies: int = 1
    color: bool = False
    duplex: bool = False
    paper_size: str = "A4"

@dataclass
class SubmitResult:
    accepted: bool
    error: Optional[str] = None
    reference: Optional[str] = None
