from datetime import datetime, timedelta, timezone

from autoprint.domain.errors import (
    CorruptDocumentError,
    MessagingError,
    PaymentRequiredError,
    PrintFailedError,
    StoreUnavailableError,
    TaskTimeoutError,
    UnsupportedFormatError,
    is_retryable,
)
from autoprint.domain.retry import calculate_backoff_delay, calculate_next_run


def test_backoff_doubles_from_base():
    assert calculate_backoff_delay(1) == 2.0
    assert calculate_backoff_delay(2) == 4.0
    assert calculate_backoff_delay(3) == 8.0


def test_backoff_is_capped():
    assert calculate_backoff_delay(50, base_delay_seconds=2.0, max_delay_seconds=30.0) == 30.0


def test_backoff_treats_zero_attempts_as_first():
    assert calculate_backoff_delay(0) == calculate_backoff_delay(1)


def test_jitter_stays_within_ten_percent():
    for _ in range(20):
        delay = calculate_backoff_delay(3, jitter=True)
        assert 8.0 <= delay <= 8.8


def test_next_run_offsets_now():
    now = datetime(2024, 1, 1, tzinfo=timezone.utc)
    assert calculate_next_run(2, now=now) == now + timedelta(seconds=4)


def test_error_classification():
    assert is_retryable(StoreUnavailableError("down"))
    assert is_retryable(TaskTimeoutError(1, 5))
    assert is_retryable(PrintFailedError("offline"))
    assert is_retryable(MessagingError("gateway"))
    assert is_retryable(RuntimeError("unexpected"))

    assert not is_retryable(UnsupportedFormatError(".docx"))
    assert not is_retryable(CorruptDocumentError("truncated"))
    assert not is_retryable(PaymentRequiredError("job-1", "pending"))
