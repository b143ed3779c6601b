"""Domain models shared across services."""

from __future__ import annotations

import time
from dataclasses import dataclass


def now_ms() -> int:
    """Current wall-clock time in epoch milliseconds."""
    return time.time_ns() // 1_000_000


@dataclass(frozen=True, slots=True)
class Reading:
    """A single temperature sample reported by the device."""

    temperature: float
    timestamp: int
