from __future__ import annotations

import asyncio
import random


def compute_backoff(
    attempt: int, base: float = 2.0, jitter: float = 0.5, max_delay: float = 30.0
) -> float:
    """Compute exponential backoff with jitter, capped at ``max_delay``."""
    delay = min(base**attempt, max_delay)
    return delay + random.uniform(0, jitter)


async def schedule_retry(attempt: int, base: float = 2.0) -> float:
    """Sleep for the computed backoff delay before retrying; return the delay."""
    delay = compute_backoff(attempt, base=base)
    await asyncio.sleep(delay)
    return delay
