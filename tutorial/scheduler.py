"""Timer primitives used by steps to wait without blocking."""

from __future__ import annotations

import heapq
import itertools
from dataclasses import dataclass, field
from typing import Callable, List, Optional, Protocol, Tuple

Callback = Callable[[], None]


@dataclass(eq=False)
class TimerHandle:
    """Opaque reference to a scheduled callback."""

    id: int
    callback: Callback
    due_ms: float
    interval_ms: Optional[float] = None
    cancelled: bool = field(default=False)

    @property
    def repeating(self) -> bool:
        return self.interval_ms is not None


class Scheduler(Protocol):
    """One-shot and recurring timers plus the clock they run against."""

    def schedule_once(self, delay_ms: float, callback: Callback) -> TimerHandle:
        ...

    def schedule_repeating(self, interval_ms: float, callback: Callback) -> TimerHandle:
        ...

    def cancel(self, handle: Optional[TimerHandle]) -> None:
        ...

    def now(self) -> float:
        ...


class ManualScheduler:
    """Deterministic scheduler advanced by the host's update loop.

    Callbacks run one at a time, in due-time order, from inside
    :meth:`advance`. Timers scheduled by a callback fire within the same
    ``advance`` call when they fall due before its end. The scheduler also
    acts as the clock, so tests can drive a whole tutorial without sleeping.
    """

    def __init__(self, start_ms: float = 0.0) -> None:
        self._now_ms = float(start_ms)
        self._queue: List[Tuple[float, int, TimerHandle]] = []
        self._ids = itertools.count(1)
        self._order = itertools.count()

    def now(self) -> float:
        """Current time in seconds."""

        return self._now_ms / 1000.0

    @property
    def now_ms(self) -> float:
        return self._now_ms

    def schedule_once(self, delay_ms: float, callback: Callback) -> TimerHandle:
        handle = TimerHandle(
            id=next(self._ids),
            callback=callback,
            due_ms=self._now_ms + max(float(delay_ms), 0.0),
        )
        self._push(handle)
        return handle

    def schedule_repeating(self, interval_ms: float, callback: Callback) -> TimerHandle:
        if interval_ms <= 0:
            raise ValueError("interval_ms must be positive")
        handle = TimerHandle(
            id=next(self._ids),
            callback=callback,
            due_ms=self._now_ms + float(interval_ms),
            interval_ms=float(interval_ms),
        )
        self._push(handle)
        return handle

    def cancel(self, handle: Optional[TimerHandle]) -> None:
        if handle is None:
            return
        handle.cancelled = True

    def pending(self) -> int:
        """Number of timers that can still fire."""

        return sum(1 for _, _, handle in self._queue if not handle.cancelled)

    def advance(self, delta_ms: float) -> int:
        """Move the clock forward, firing every callback that falls due.

        Returns the number of callbacks fired.
        """
        if delta_ms < 0:
            raise ValueError("delta_ms must not be negative")
        return self.advance_to(self._now_ms + delta_ms)

    def advance_to(self, target_ms: float) -> int:
        fired = 0
        while self._queue and self._queue[0][0] <= target_ms:
            due_ms, _, handle = heapq.heappop(self._queue)
            if handle.cancelled:
                continue
            self._now_ms = max(self._now_ms, due_ms)
            if handle.repeating:
                handle.due_ms = due_ms + handle.interval_ms
                self._push(handle)
            else:
                handle.cancelled = True
            handle.callback()
            fired += 1
        self._now_ms = max(self._now_ms, target_ms)
        return fired

    def _push(self, handle: TimerHandle) -> None:
        heapq.heappush(self._queue, (handle.due_ms, next(self._order), handle))


__all__ = ["Callback", "ManualScheduler", "Scheduler", "TimerHandle"]
