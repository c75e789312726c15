"""
Retry delay policy for failed jobs.
"""

import random
from datetime import datetime, timedelta

from devpulse.infra.database import utcnow

BASE_DELAY_S = 1.0
MAX_DELAY_S = 60.0
JITTER_MAX_S = 1.0


def backoff_delay(attempt: int) -> float:
    """Seconds to wait before the next attempt after ``attempt`` failures.

    ``min(BASE_DELAY_S * 2**(attempt - 1), MAX_DELAY_S)`` plus a uniform
    jitter in ``[0, JITTER_MAX_S)``.
    """
    if attempt < 1:
        raise ValueError(f"attempt must be >= 1, got {attempt}")

    # Cap the exponent so huge attempt counts never overflow to inf
    exponent = min(attempt - 1, 32)
    delay = min(BASE_DELAY_S * (2**exponent), MAX_DELAY_S)
    return delay + random.random() * JITTER_MAX_S


def next_retry_at(attempt: int, now: datetime | None = None) -> datetime:
    """Absolute time at which a job failing its ``attempt``-th try is eligible again."""
    now = now or utcnow()
    return now + timedelta(seconds=backoff_delay(attempt))
