"""
Timer primitives for the autosave debounce.

:class:`LoopClock` schedules on the running asyncio loop. :class:`VirtualClock`
only moves when :meth:`VirtualClock.advance` is called, which makes the
debounce deterministic in tests.
"""

import asyncio
import heapq
import itertools
import logging
from typing import Callable, List, Optional, Tuple

logger = logging.getLogger(__name__)


class TimerHandle:
    def __init__(self, when: float, callback: Callable[[], None]):
        self.when = when
        self.callback = callback
        self.cancelled = False

    def cancel(self) -> None:
        self.cancelled = True


class Clock:
    """Interface: ``now()`` and ``call_later(delay, callback)``."""

    def now(self) -> float:
        raise NotImplementedError

    def call_later(self, delay: float, callback: Callable[[], None]):
        raise NotImplementedError


class LoopClock(Clock):
    def __init__(self, loop: Optional[asyncio.AbstractEventLoop] = None):
        self._loop = loop

    @property
    def loop(self) -> asyncio.AbstractEventLoop:
        return self._loop or asyncio.get_running_loop()

    def now(self) -> float:
        return self.loop.time()

    def call_later(self, delay: float, callback: Callable[[], None]) -> asyncio.TimerHandle:
        return self.loop.call_later(delay, callback)


class VirtualClock(Clock):
    def __init__(self, start: float = 0.0):
        self._now = start
        self._queue: List[Tuple[float, int, TimerHandle]] = []
        self._seq = itertools.count()

    def now(self) -> float:
        return self._now

    def call_later(self, delay: float, callback: Callable[[], None]) -> TimerHandle:
        handle = TimerHandle(self._now + max(delay, 0.0), callback)
        heapq.heappush(self._queue, (handle.when, next(self._seq), handle))
        return handle

    def advance(self, seconds: float) -> int:
        """Move time forward, running due callbacks in order. Returns how many ran."""
        target = self._now + seconds
        ran = 0
        while self._queue and self._queue[0][0] <= target:
            when, _, handle = heapq.heappop(self._queue)
            self._now = when
            if handle.cancelled:
                continue
            handle.callback()
            ran += 1
        self._now = target
        return ran

    @property
    def pending(self) -> int:
        return sum(1 for _, _, handle in self._queue if not handle.cancelled)


class DebounceTimer:
    """
    Fires ``callback`` once the input has been quiet for ``delay`` seconds.
    Every :meth:`arm` restarts the wait.
    """

    def __init__(self, clock: Clock, delay: float, callback: Callable[[], None]):
        self.clock = clock
        self.delay = delay
        self._callback = callback
        self._handle = None

    @property
    def pending(self) -> bool:
        return self._handle is not None

    def arm(self) -> None:
        self.cancel()
        self._handle = self.clock.call_later(self.delay, self._elapsed)

    reset = arm

    def cancel(self) -> None:
        if self._handle is not None:
            self._handle.cancel()
            self._handle = None

    def fire(self) -> None:
        """Run the callback now instead of waiting."""
        self.cancel()
        self._callback()

    def _elapsed(self) -> None:
        self._handle = None
        logger.debug(f"Debounce elapsed after {self.delay}s of quiet")
        self._callback()
