from __future__ import annotations

import heapq
import itertools
import threading
import time
from dataclasses import dataclass, field
from typing import Callable, Protocol


class TimerHandle(Protocol):
    def cancel(self) -> None: ...


class Clock(Protocol):
    """Deferred-callback source used to chain melody steps."""

    def now(self) -> float: ...

    def call_later(self, delay: float, callback: Callable[[], None]) -> TimerHandle: ...


class _ThreadTimer:
    def __init__(self, timer: threading.Timer) -> None:
        self._timer = timer

    def cancel(self) -> None:
        self._timer.cancel()


class ThreadingClock:
    """Wall-clock timers on daemon threads."""

    def now(self) -> float:
        return time.monotonic()

    def call_later(self, delay: float, callback: Callable[[], None]) -> TimerHandle:
        timer = threading.Timer(max(0.0, delay), callback)
        timer.daemon = True
        timer.start()
        return _ThreadTimer(timer)


@dataclass(order=True)
class _Pending:
    due: float
    seq: int
    callback: Callable[[], None] = field(compare=False)
    cancelled: bool = field(default=False, compare=False)

    def cancel(self) -> None:
        self.cancelled = True


class ManualClock:
    """Virtual clock that only moves when told to.

    Callbacks fire synchronously from :meth:`advance`, in due order, including
    ones scheduled by callbacks that fire during the same advance.
    """

    def __init__(self, start: float = 0.0) -> None:
        self._now = start
        self._queue: list[_Pending] = []
        self._counter = itertools.count()

    def now(self) -> float:
        return self._now

    def call_later(self, delay: float, callback: Callable[[], None]) -> TimerHandle:
        pending = _Pending(self._now + max(0.0, delay), next(self._counter), callback)
        heapq.heappush(self._queue, pending)
        return pending

    @property
    def pending(self) -> int:
        return sum(1 for item in self._queue if not item.cancelled)

    def advance(self, seconds: float) -> int:
        """Move time forward, firing due callbacks. Returns how many fired."""
        return self._advance_to(self._now + seconds)

    def _advance_to(self, deadline: float) -> int:
        fired = 0
        while self._queue and self._queue[0].due <= deadline:
            item = heapq.heappop(self._queue)
            if item.cancelled:
                continue
            self._now = max(self._now, item.due)
            item.callback()
            fired += 1
        self._now = max(self._now, deadline)
        return fired

    def run_until_idle(self, *, limit: int = 10_000) -> int:
        """Fire everything pending (and anything it schedules), up to ``limit``."""
        fired = 0
        while fired < limit:
            live = [item for item in self._queue if not item.cancelled]
            if not live:
                break
            fired += self._advance_to(min(item.due for item in live))
        return fired
