"""Retry delay for failed deliveries."""
import random

BASE_DELAY_MS = 30_000
MAX_EXPONENT = 6
MAX_JITTER_MS = 4_000


def backoff(attempt_count: int) -> int:
    """
    Delay in milliseconds before the next delivery attempt.

    30s doubled per attempt, capped at 2**6 (32 minutes), plus up to 4s of
    jitter so items that failed together do not retry together.
    """
    exponent = min(max(attempt_count, 0), MAX_EXPONENT)
    return BASE_DELAY_MS * (2 ** exponent) + random.randint(0, MAX_JITTER_MS)
