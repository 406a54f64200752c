"""Cancelable timers: a scheduler abstraction, a debouncer, and a frame coalescer.

Nothing here depends on a particular event loop.  Production code runs on
``ThreadingScheduler``; tests drive time explicitly with ``ManualScheduler``.
"""

from __future__ import annotations

import heapq
import itertools
import threading
from collections.abc import Callable
from typing import Any, Protocol


class Cancellable(Protocol):
    def cancel(self) -> None: ...


class Scheduler(Protocol):
    def call_later(self, delay: float, callback: Callable[[], None]) -> Cancellable: ...


class ThreadingScheduler:
    """Runs each callback on a daemon ``threading.Timer``."""

    def call_later(self, delay: float, callback: Callable[[], None]) -> Cancellable:
        timer = threading.Timer(max(delay, 0.0), callback)
        timer.daemon = True
        timer.start()
        return timer


class _ManualHandle:
    __slots__ = ("callback", "cancelled")

    def __init__(self, callback: Callable[[], None]) -> None:
        self.callback = callback
        self.cancelled = False

    def cancel(self) -> None:
        self.cancelled = True


class ManualScheduler:
    """Virtual-clock scheduler; callbacks run only inside ``advance()``."""

    def __init__(self) -> None:
        self.now = 0.0
        self._queue: list[tuple[float, int, _ManualHandle]] = []
        self._seq = itertools.count()

    def call_later(self, delay: float, callback: Callable[[], None]) -> Cancellable:
        handle = _ManualHandle(callback)
        heapq.heappush(self._queue, (self.now + max(delay, 0.0), next(self._seq), handle))
        return handle

    @property
    def pending(self) -> int:
        """Number of scheduled, not-cancelled callbacks."""
        return sum(1 for _, _, h in self._queue if not h.cancelled)

    def advance(self, seconds: float) -> int:
        """Move the clock forward, running every callback that falls due.

        Callbacks scheduled by callbacks run too if they fall due before
        the new time.  Returns the number of callbacks run.
        """
        target = self.now + seconds
        ran = 0
        while self._queue and self._queue[0][0] <= target:
            due, _, handle = heapq.heappop(self._queue)
            self.now = due
            if handle.cancelled:
                continue
            handle.callback()
            ran += 1
        self.now = target
        return ran


class Debouncer:
    """Trailing-edge debounce: each ``trigger()`` restarts the countdown."""

    def __init__(self, scheduler: Scheduler, delay: float, callback: Callable[[], None]) -> None:
        self._scheduler = scheduler
        self._delay = delay
        self._callback = callback
        self._lock = threading.Lock()
        self._handle: Cancellable | None = None
        self._generation = 0

    @property
    def pending(self) -> bool:
        return self._handle is not None

    def trigger(self) -> None:
        with self._lock:
            if self._handle is not None:
                self._handle.cancel()
            self._generation += 1
            generation = self._generation
            self._handle = self._scheduler.call_later(self._delay, lambda: self._fire(generation))

    def cancel(self) -> None:
        with self._lock:
            if self._handle is not None:
                self._handle.cancel()
            self._handle = None
            self._generation += 1

    def _fire(self, generation: int) -> None:
        with self._lock:
            # A timer that already started running can't be cancelled; drop it
            # if it was superseded.
            if generation != self._generation:
                return
            self._handle = None
        self._callback()


class FrameCoalescer:
    """Deliver at most one payload per frame; the latest request wins."""

    def __init__(
        self,
        scheduler: Scheduler,
        callback: Callable[[Any], None],
        interval: float = 1 / 60,
    ) -> None:
        self._scheduler = scheduler
        self._callback = callback
        self._interval = interval
        self._lock = threading.Lock()
        self._handle: Cancellable | None = None
        self._payload: Any = None
        self._generation = 0

    @property
    def pending(self) -> bool:
        return self._handle is not None

    def request(self, payload: Any) -> None:
        with self._lock:
            self._payload = payload
            if self._handle is None:
                generation = self._generation
                self._handle = self._scheduler.call_later(
                    self._interval, lambda: self._fire(generation)
                )

    def cancel(self) -> None:
        with self._lock:
            if self._handle is not None:
                self._handle.cancel()
            self._handle = None
            self._payload = None
            self._generation += 1

    def _fire(self, generation: int) -> None:
        with self._lock:
            if generation != self._generation:
                return
            payload = self._payload
            self._payload = None
            self._handle = None
        self._callback(payload)
