"""Humanized send delays for automated replies."""

from __future__ import annotations

import random
from typing import Callable

AUTO_REPLY_MIN_DELAY_MS = 10_000
AUTO_REPLY_MAX_DELAY_MS = 30_000

DelayProvider = Callable[[], int]


def random_delay_ms(
    minimum: int = AUTO_REPLY_MIN_DELAY_MS,
    maximum: int = AUTO_REPLY_MAX_DELAY_MS,
) -> int:
    """Return a uniformly random delay in milliseconds, bounds inclusive."""
    return random.randint(minimum, maximum)


def fixed_delay(delay_ms: int) -> DelayProvider:
    """Return a delay provider that always yields ``delay_ms``."""
    return lambda: delay_ms


__all__ = [
    "AUTO_REPLY_MAX_DELAY_MS",
    "AUTO_REPLY_MIN_DELAY_MS",
    "DelayProvider",
    "fixed_delay",
    "random_delay_ms",
]
