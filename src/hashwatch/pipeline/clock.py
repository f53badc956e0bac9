"""Scheduling primitives for time-driven state.

Anything that exposes ``time()`` and ``call_later(delay, callback)``
returning a handle with ``cancel()`` is a Scheduler. An asyncio event
loop satisfies the interface directly; ManualScheduler advances logical
time on demand so tests never wait on real delays.
"""

from __future__ import annotations

import heapq
import itertools
import logging
from typing import Any, Callable, Optional, Protocol

logger = logging.getLogger(__name__)


class TimerHandle(Protocol):
    def cancel(self) -> None: ...


class Scheduler(Protocol):
    """Minimal clock interface used by the pipeline simulator."""

    def time(self) -> float: ...

    def call_later(self, delay: float, callback: Callable[..., Any], *args: Any) -> TimerHandle: ...


class ManualTimer:
    """Handle for a callback queued on a ManualScheduler."""

    def __init__(self, when: float, callback: Callable[..., Any], args: tuple) -> None:
        self.when = when
        self._callback = callback
        self._args = args
        self.cancelled = False

    def cancel(self) -> None:
        self.cancelled = True

    def _run(self) -> None:
        self._callback(*self._args)


class ManualScheduler:
    """Logical-time scheduler.

    Callbacks run only inside ``advance()``, in due-time order; callbacks
    due at the same instant run in the order they were scheduled.
    Callbacks scheduled while advancing run in the same call if they fall
    due before the target time.

    Usage:
        scheduler = ManualScheduler()
        scheduler.call_later(2.0, fired.append, "refine")
        scheduler.advance(2.0)   # fired == ["refine"]
    """

    def __init__(self, start: float = 0.0) -> None:
        self._now = start
        self._queue: list[tuple[float, int, ManualTimer]] = []
        self._seq = itertools.count()

    def time(self) -> float:
        return self._now

    def call_later(self, delay: float, callback: Callable[..., Any], *args: Any) -> ManualTimer:
        if delay < 0:
            raise ValueError(f"Delay must be non-negative, got {delay}")
        timer = ManualTimer(self._now + delay, callback, args)
        heapq.heappush(self._queue, (timer.when, next(self._seq), timer))
        return timer

    def advance(self, seconds: float) -> int:
        """Move logical time forward, running due callbacks. Returns run count."""
        if seconds < 0:
            raise ValueError("Cannot move time backward")
        target = self._now + seconds
        ran = 0
        while self._queue and self._queue[0][0] <= target:
            when, _, timer = heapq.heappop(self._queue)
            self._now = when
            if timer.cancelled:
                continue
            timer._run()
            ran += 1
        self._now = target
        return ran

    @property
    def pending(self) -> int:
        return sum(1 for _, _, t in self._queue if not t.cancelled)


class IntervalDriver:
    """Caller-owned periodic driver.

    Runs ``callback`` every ``interval`` seconds on the given scheduler
    until stopped. The core logic never polls on its own; whoever wants
    a live view owns one of these.
    """

    def __init__(
        self,
        scheduler: Scheduler,
        interval: float,
        callback: Callable[[], Any],
    ) -> None:
        if interval <= 0:
            raise ValueError(f"Interval must be positive, got {interval}")
        self._scheduler = scheduler
        self._interval = interval
        self._callback = callback
        self._handle: Optional[TimerHandle] = None
        self.ticks = 0

    @property
    def running(self) -> bool:
        return self._handle is not None

    def start(self, immediate: bool = True) -> None:
        if self.running:
            return
        if immediate:
            self._fire()
        self._arm()

    def stop(self) -> None:
        if self._handle is not None:
            self._handle.cancel()
            self._handle = None

    def _arm(self) -> None:
        self._handle = self._scheduler.call_later(self._interval, self._tick)

    def _tick(self) -> None:
        self._fire()
        if self._handle is not None:
            self._arm()

    def _fire(self) -> None:
        self.ticks += 1
        try:
            self._callback()
        except Exception:
            logger.exception("Interval callback failed")
