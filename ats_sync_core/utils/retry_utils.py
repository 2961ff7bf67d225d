"""Backoff calculation shared by the provider API client and sync queue job retries."""

import random
from typing import Optional


def calculate_exponential_backoff(
    attempt: int,
    base_delay: float = 1.0,
    max_delay: Optional[float] = None,
    multiplier: float = 2.0,
    jitter: float = 0.0,
) -> float:
    """
    Calculate an exponential backoff delay.

    Args:
        attempt: 1-based attempt number that just failed
        base_delay: Delay after the first failure, in seconds
        max_delay: Optional cap applied before jitter
        multiplier: Growth factor per attempt
        jitter: Upper bound of uniform random jitter added to the delay

    Returns:
        Delay in seconds
    """
    delay = base_delay * (multiplier ** max(attempt - 1, 0))
    if max_delay is not None:
        delay = min(delay, max_delay)
    if jitter > 0:
        delay += random.uniform(0, jitter)
    return delay
