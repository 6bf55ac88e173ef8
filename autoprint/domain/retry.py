import random
from datetime import datetime, timedelta, timezone

def calculate_backoff_delay(
    attempts: int,
    base_delay_seconds: float = 2.0,
    max_delay_seconds: float = 300.0,
    jitter: bool = False
) -> float:
    """
    Delay before the next attempt using exponential backoff.

    Formula:
        delay = min(base * 2 ^ (attempts - 1), max_delay)
        if jitter:
            delay = delay + random_uniform(0, 0.1 * delay)

    Args:
        attempts: Number of attempts already made (the failed one included).
                  attempts=1 means "we failed once, when should we try again?",
                  which yields the base delay. Values below 1 are treated as 1.
    """
    if attempts < 1:
        attempts = 1

    # 2^20 * base is far past any sane max_delay; cap the exponent.
    safe_exponent = min(attempts - 1, 20)

    delay = base_delay_seconds * (2 ** safe_exponent)

    if delay > max_delay_seconds:
        delay = max_delay_seconds

    if jitter:
        # Up to 10% jitter to avoid thundering herd
        delay += random.uniform(0, delay * 0.1)

    return delay

def calculate_next_run(
    attempts: int,
    base_delay_seconds: float = 2.0,
    max_delay_seconds: float = 300.0,
    jitter: bool = False,
    now: datetime | None = None
) -> datetime:
    """Timestamp at which a task that has failed `attempts` times becomes available again."""
    now = now or datetime.now(timezone.utc)
    delay = calculate_backoff_delay(attempts, base_delay_seconds, max_delay_seconds, jitter)
    return now + timedelta(seconds=delay)
