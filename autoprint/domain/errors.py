class PrintJobError(Exception):
    """Base exception for print orchestration errors."""
    retryable = False

class ConfigurationError(PrintJobError):
    pass

class TransientInfraError(PrintJobError):
    """Queue or store temporarily unreachable; retried with backoff."""
    retryable = True

class QueueUnavailableError(TransientInfraError):
    pass

class StoreUnavailableError(TransientInfraError):
    pass

class TaskTimeoutError(TransientInfraError):
    def __init__(self, task_id, timeout):
        super().__init__(f"Task {task_id} exceeded {timeout}s execution ceiling")

class ExternalCollaboratorError(PrintJobError):
    """Inspector, printer or messaging failure; retried up to the attempt limit."""
    retryable = True

class UnsupportedFormatError(ExternalCollaboratorError):
    retryable = False

class CorruptDocumentError(ExternalCollaboratorError):
    retryable = False

class PrintFailedError(ExternalCollaboratorError):
    pass

class MessagingError(ExternalCollaboratorError):
    pass

class GuardViolationError(PrintJobError):
    """A transition precondition does not hold. Logic error, never retried."""
    retryable = False

class PaymentRequiredError(GuardViolationError):
    def __init__(self, job_id, payment_status):
        self.job_id = job_id
        super().__init__(f"Job {job_id} cannot print with payment status {payment_status}")

class JobNotFoundError(PrintJobError):
    def __init__(self, job_id):
        self.job_id = job_id
        super().__init__(f"Job {job_id} not found")

class PaymentNotFoundError(PrintJobError):
    def __init__(self, job_id):
        super().__init__(f"No payment found for job {job_id}")

class InvalidJobStateError(PrintJobError):
    def __init__(self, current_status, target_status):
        super().__init__(f"Cannot transition from {current_status} to {target_status}")


def is_retryable(exc: BaseException) -> bool:
    # Unknown exceptions from handlers are treated as transient.
    if isinstance(exc, PrintJobError):
        return exc.retryable
    return True
