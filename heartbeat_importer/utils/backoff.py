"""Retry delay for failed import jobs: exponential growth, capped, with jitter."""
from __future__ import annotations

import random


def compute_backoff_seconds(attempt: int, *, base: float, factor: float, max_seconds: float, jitter_pct: float = 0.0) -> float:
    """Delay before attempt ``attempt + 1`` of a job that has failed ``attempt`` times.

    ``base * factor ** (attempt - 1)`` capped at ``max_seconds``, then spread by
    ``+/- jitter_pct`` so jobs that failed together do not retry together.
    """
    attempt = max(attempt, 1)
    delay = min(base * factor ** (attempt - 1), max_seconds)
    if jitter_pct > 0:
        spread = delay * jitter_pct
        delay = random.uniform(delay - spread, delay + spread)
    return max(delay, 0.0)


__all__ = ["compute_backoff_seconds"]
