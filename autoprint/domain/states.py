from enum import StrEnum, auto

class JobStatus(StrEnum):
    PENDING = auto()      # Created, or quoted and waiting for payment
    PROCESSING = auto()   # Document being inspected
    PRINTING = auto()     # Submitted to (or about to be submitted to) the printer
    COMPLETED = auto()
    FAILED = auto()
    CANCELLED = auto()

class PaymentStatus(StrEnum):
    PENDING = auto()
    PAID = auto()
    FAILED = auto()
    REFUNDED = auto()

class PaymentRecordStatus(StrEnum):
    PENDING = auto()
    COMPLETED = auto()
    FAILED = auto()
    REFUNDED = auto()

class TaskKind(StrEnum):
    PROCESS_FILE = "process-file"
    PRINT_JOB = "print-job"
    NOTIFY_USER = "notify-user"

class TaskStatus(StrEnum):
    WAITING = auto()   # Queued, possibly delayed via available_at
    ACTIVE = auto()    # Claimed by a worker slot
    FAILED = auto()    # Retries exhausted or not retryable

class QueueEvent(StrEnum):
    TASK_ENQUEUED = auto()
    TASK_ACTIVE = auto()
    TASK_COMPLETED = auto()
    TASK_RETRY_SCHEDULED = auto()
    TASK_FAILED = auto()
    GUARD_VIOLATION = auto()

class JobEvent(StrEnum):
    JOB_CREATED = auto()
    JOB_UPDATE = auto()
    PAYMENT_UPDATE = auto()
    USER_NOTIFICATION = auto()

class Channel(StrEnum):
    QUEUE = auto()
    JOBS = auto()
    NOTIFICATIONS = auto()
