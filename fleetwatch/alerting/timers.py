"""Deadline queue for group timers.

A ``heapq`` min-heap of ``(deadline, seq, key)``. Rescheduling a key bumps its
generation and leaves the stale heap entry to be discarded lazily when it
surfaces, so cancel-and-reschedule is O(log n) and never drops a key by
accident.
"""

from __future__ import annotations

import asyncio
import heapq
import itertools
from datetime import datetime


class TimerQueue:
    def __init__(self) -> None:
        self._heap: list[tuple[datetime, int, str]] = []
        self._live: dict[str, tuple[datetime, int]] = {}
        self._seq = itertools.count()
        self._wakeup = asyncio.Event()

    def __len__(self) -> int:
        return len(self._live)

    def __contains__(self, key: str) -> bool:
        return key in self._live

    def schedule(self, key: str, deadline: datetime) -> None:
        """Set (or move) the deadline for *key*."""
        seq = next(self._seq)
        self._live[key] = (deadline, seq)
        heapq.heappush(self._heap, (deadline, seq, key))
        self._wakeup.set()

    def cancel(self, key: str) -> None:
        self._live.pop(key, None)

    def deadline(self, key: str) -> datetime | None:
        entry = self._live.get(key)
        return entry[0] if entry else None

    def next_deadline(self) -> datetime | None:
        self._discard_stale()
        return self._heap[0][0] if self._heap else None

    def pop_due(self, now: datetime) -> list[str]:
        """Remove and return every key whose deadline is at or before *now*."""
        due: list[str] = []
        while True:
            self._discard_stale()
            if not self._heap or self._heap[0][0] > now:
                return due
            _, _, key = heapq.heappop(self._heap)
            del self._live[key]
            due.append(key)

    def _discard_stale(self) -> None:
        while self._heap:
            deadline, seq, key = self._heap[0]
            if self._live.get(key) == (deadline, seq):
                return
            heapq.heappop(self._heap)

    async def wait(self, now: datetime) -> None:
        """Sleep until the earliest deadline or until something is scheduled."""
        nxt = self.next_deadline()
        timeout = None if nxt is None else max(0.0, (nxt - now).total_seconds())
        self._wakeup.clear()
        try:
            await asyncio.wait_for(self._wakeup.wait(), timeout=timeout)
        except TimeoutError:
            pass
