"""Single-threaded callback scheduling used by the turn and session machines."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Callable, List, Optional, Protocol
import asyncio
import heapq
import itertools

Callback = Callable[[], None]


class Handle(Protocol):
    def cancel(self) -> None: ...

    def when(self) -> float: ...


class Scheduler(Protocol):
    def call_later(self, delay: float, callback: Callback) -> Handle: ...

    def time(self) -> float: ...


class AsyncioScheduler:
    """Schedules callbacks on an asyncio event loop.

    Without an explicit loop the running loop is looked up on each call, so
    the scheduler must be used from coroutines or loop callbacks.
    """

    def __init__(self, loop: Optional[asyncio.AbstractEventLoop] = None) -> None:
        self._loop = loop

    def _get_loop(self) -> asyncio.AbstractEventLoop:
        return self._loop or asyncio.get_running_loop()

    def call_later(self, delay: float, callback: Callback) -> asyncio.TimerHandle:
        return self._get_loop().call_later(max(0.0, delay), callback)

    def time(self) -> float:
        return self._get_loop().time()


@dataclass(order=True)
class ScheduledCall:
    due: float
    seq: int
    callback: Callback = field(compare=False)
    cancelled: bool = field(default=False, compare=False)

    def cancel(self) -> None:
        self.cancelled = True

    def when(self) -> float:
        return self.due


class ManualScheduler:
    """Virtual clock; callbacks only run when :meth:`advance` is called."""

    def __init__(self, start: float = 0.0) -> None:
        self._now = start
        self._queue: List[ScheduledCall] = []
        self._seq = itertools.count()

    def time(self) -> float:
        return self._now

    def call_later(self, delay: float, callback: Callback) -> ScheduledCall:
        call = ScheduledCall(self._now + max(0.0, delay), next(self._seq), callback)
        heapq.heappush(self._queue, call)
        return call

    def pending(self) -> int:
        return sum(1 for c in self._queue if not c.cancelled)

    def advance(self, seconds: float) -> int:
        """Move the clock forward, running every callback that falls due.

        Callbacks scheduled while advancing run too if they are due before
        the target time. Returns the number of callbacks run.
        """
        target = self._now + seconds
        ran = 0
        while self._queue and self._queue[0].due <= target:
            call = heapq.heappop(self._queue)
            if call.cancelled:
                continue
            self._now = call.due
            call.callback()
            ran += 1
        self._now = target
        return ran

    def run_all(self, limit: int = 10_000) -> int:
        """Run queued callbacks until none remain (bounded by ``limit``)."""
        ran = 0
        while ran < limit:
            live = [c for c in self._queue if not c.cancelled]
            if not live:
                break
            ran += self.advance(min(c.due for c in live) - self._now)
        return ran


class TimerSlot:
    """Holds at most one scheduled callback; starting a new one cancels the old."""

    def __init__(self, scheduler: Scheduler) -> None:
        self._scheduler = scheduler
        self._handle: Optional[Handle] = None
        self.label: Optional[str] = None

    @property
    def active(self) -> bool:
        return self._handle is not None

    def start(self, delay: float, callback: Callback, label: Optional[str] = None) -> None:
        self.cancel()

        def fire() -> None:
            if self._handle is handle:
                self._handle = None
                self.label = None
            callback()

        handle = self._scheduler.call_later(delay, fire)
        self._handle = handle
        self.label = label

    def cancel(self) -> None:
        if self._handle is not None:
            self._handle.cancel()
            self._handle = None
            self.label = None

    def remaining(self) -> float:
        if self._handle is None:
            return 0.0
        return max(0.0, self._handle.when() - self._scheduler.time())
