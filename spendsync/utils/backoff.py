"""Exponential backoff helpers with jitter (used to schedule sync retries)."""
from __future__ import annotations

import random
from typing import Optional

from spendsync.config import BACKOFF_POLICY


def compute_backoff_seconds(attempt: int, *, base: Optional[int] = None, factor: Optional[int] = None, max_seconds: Optional[int] = None, jitter_pct: Optional[float] = None) -> float:
    """Delay before retry number ``attempt`` (1-based), capped and jittered."""
    if attempt < 1:
        attempt = 1
    base = int(base if base is not None else BACKOFF_POLICY["base_seconds"])
    factor = int(factor if factor is not None else BACKOFF_POLICY["factor"])
    max_seconds = int(max_seconds if max_seconds is not None else BACKOFF_POLICY["max_seconds"])
    jitter_pct = float(jitter_pct if jitter_pct is not None else BACKOFF_POLICY["jitter_pct"])

    delay = min(base * (factor ** (attempt - 1)), max_seconds)
    if jitter_pct > 0:
        jitter_amount = delay * jitter_pct
        delay = random.uniform(delay - jitter_amount, min(delay + jitter_amount, max_seconds))
    return max(delay, 0.0)


__all__ = ["compute_backoff_seconds"]
