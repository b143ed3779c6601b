"""Bounded, arrival-ordered window of recent readings."""

from __future__ import annotations

from collections import deque
from typing import Deque, Iterator, Optional

from models.readings import Reading

DEFAULT_CAPACITY = 20


class ReadingHistory:
    """FIFO window holding at most ``capacity`` readings.

    Readings are kept in the order they were appended; once the window is
    full every append evicts the oldest entry.
    """

    def __init__(self, capacity: int = DEFAULT_CAPACITY) -> None:
        if capacity < 1:
            raise ValueError(f"History capacity must be at least 1, got {capacity}.")
        self._capacity = capacity
        self._items: Deque[Reading] = deque(maxlen=capacity)

    @property
    def capacity(self) -> int:
        return self._capacity

    def append(self, reading: Reading) -> Optional[Reading]:
        """Add ``reading`` and return the evicted entry, if any."""
        evicted = self._items[0] if len(self._items) == self._capacity else None
        self._items.append(reading)
        return evicted

    def snapshot(self) -> tuple[Reading, ...]:
        return tuple(self._items)

    def __len__(self) -> int:
        return len(self._items)

    def __iter__(self) -> Iterator[Reading]:
        return iter(self.snapshot())
