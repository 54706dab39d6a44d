"""Timer sources for the switch loop."""

from __future__ import annotations

import threading
from abc import ABC, abstractmethod
from typing import Callable, Optional


class Timer(ABC):
    """A single-shot timer created by a Clock."""

    @abstractmethod
    def stop(self) -> bool:
        """Cancel the timer. Returns True if it had not fired yet."""
        pass


class Clock(ABC):
    """Source of single-shot timers."""

    @abstractmethod
    def new_timer(self, duration: float, callback: Callable[[], None]) -> Timer:
        """Arm a timer that invokes callback once duration seconds elapse."""
        pass


class SystemTimer(Timer):
    """Wall-clock timer backed by threading.Timer."""

    def __init__(self, duration: float, callback: Callable[[], None]):
        self._timer = threading.Timer(duration, callback)
        self._timer.daemon = True
        self._timer.start()

    def stop(self) -> bool:
        pending = not self._timer.finished.is_set()
        self._timer.cancel()
        return pending


class SystemClock(Clock):
    """Clock using real time."""

    def new_timer(self, duration: float, callback: Callable[[], None]) -> Timer:
        return SystemTimer(duration, callback)


class FakeTimer(Timer):
    """Timer driven by a FakeClock."""

    def __init__(self, clock: "FakeClock", deadline: float, callback: Callable[[], None]):
        self.clock = clock
        self.deadline = deadline
        self.callback = callback

    def stop(self) -> bool:
        return self.clock._remove(self)


class FakeClock(Clock):
    """
    Virtual clock for deterministic tests.

    Time only moves when advance() is called. Every armed timer is counted, and
    wait_for_timers() blocks until a given number of timers has been armed, which
    lets a test synchronize with a background loop without sleeping.
    """

    def __init__(self, now: float = 0.0):
        self._now = now
        self._cond = threading.Condition()
        self._pending: list[FakeTimer] = []
        self._armed = 0

    def now(self) -> float:
        with self._cond:
            return self._now

    @property
    def armed(self) -> int:
        """Total number of timers armed since creation."""
        with self._cond:
            return self._armed

    @property
    def pending(self) -> int:
        """Number of timers that are armed and have not fired or been stopped."""
        with self._cond:
            return len(self._pending)

    def new_timer(self, duration: float, callback: Callable[[], None]) -> Timer:
        with self._cond:
            timer = FakeTimer(self, self._now + duration, callback)
            self._pending.append(timer)
            self._armed += 1
            self._cond.notify_all()
            return timer

    def wait_for_timers(self, count: int, timeout: Optional[float] = 5.0) -> bool:
        """Block until at least count timers have been armed in total."""
        with self._cond:
            return self._cond.wait_for(lambda: self._armed >= count, timeout=timeout)

    def advance(self, duration: float) -> int:
        """Move time forward, firing every timer that becomes due. Returns the number fired."""
        with self._cond:
            self._now += duration
            due = sorted(
                (t for t in self._pending if t.deadline <= self._now),
                key=lambda t: t.deadline,
            )
            for timer in due:
                self._pending.remove(timer)

        # Callbacks run outside the lock so they may arm new timers
        for timer in due:
            timer.callback()
        return len(due)

    def _remove(self, timer: FakeTimer) -> bool:
        with self._cond:
            if timer in self._pending:
                self._pending.remove(timer)
                return True
            return False
