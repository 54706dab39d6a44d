"""Dead man's switch state machine."""

from __future__ import annotations

import enum
import logging
import threading
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Callable, Optional, Sequence

from .actions import Action, trigger
from .clock import Clock, SystemClock

# Postpone source rendered when none is supplied
DEFAULT_SOURCE = "<unset>"

# Seconds a switch waits for a postpone when no positive TTL is supplied
DEFAULT_TTL = 60.0

# Missed intervals tolerated before triggering when none are supplied
DEFAULT_MAX_MISSES = 0


class SwitchError(RuntimeError):
    """Base class for switch lifecycle errors."""


class SwitchStartedError(SwitchError):
    """Raised by Switch.start() when the switch is already active."""

    def __init__(self, message: str = "That switch is already active"):
        super().__init__(message)


class SwitchStoppedError(SwitchError):
    """Raised by Switch.stop() when the switch is not active."""

    def __init__(self, message: str = "That switch is not active"):
        super().__init__(message)


@dataclass(frozen=True)
class PostponeRequest:
    """Who postponed a switch. Both fields are informational only."""

    source: str = ""
    remote_addr: str = ""

    def __str__(self) -> str:
        source = self.source or DEFAULT_SOURCE
        if self.remote_addr:
            return f"[source={source}] [remoteaddr={self.remote_addr}]"
        return f"[source={source}]"


class Postponer(ABC):
    """Anything that can delay triggering actions."""

    @abstractmethod
    def postpone(self, request: PostponeRequest) -> bool:
        """Delay the trigger. Returns False if nothing is running to postpone."""
        pass


class SwitchState(enum.Enum):
    STOPPED = "stopped"
    RUNNING = "running"
    TRIGGERING = "triggering"


class _Signals:
    """
    Mailbox between a switch's callers and its monitoring loop.

    Holds one pending postpone (last write wins), a cancel flag and a
    timer-elapsed flag, all behind a single condition variable. Each armed
    timer gets a generation number so that a late callback from a disarmed
    timer is ignored.
    """

    CANCEL = "cancel"
    POSTPONE = "postpone"
    ELAPSED = "elapsed"

    def __init__(self):
        self._cond = threading.Condition()
        self._postpone: Optional[PostponeRequest] = None
        self._cancelled = False
        self._elapsed = False
        self._generation = 0

    def postpone(self, request: PostponeRequest):
        with self._cond:
            self._postpone = request
            self._cond.notify()

    def cancel(self):
        with self._cond:
            self._cancelled = True
            self._cond.notify()

    def arm(self) -> Callable[[], None]:
        """Start a new timer generation and return the callback for its timer."""
        with self._cond:
            self._generation += 1
            self._elapsed = False
            generation = self._generation

        def elapsed():
            with self._cond:
                if generation == self._generation:
                    self._elapsed = True
                    self._cond.notify()

        return elapsed

    def wait(self) -> tuple[str, Optional[PostponeRequest]]:
        """Block until an event is ready and consume exactly one of them."""
        with self._cond:
            self._cond.wait_for(
                lambda: self._cancelled or self._postpone is not None or self._elapsed
            )

            if self._cancelled:
                return self.CANCEL, None

            if self._postpone is not None:
                request, self._postpone = self._postpone, None
                self._elapsed = False
                return self.POSTPONE, request

            self._elapsed = False
            return self.ELAPSED, None


class Switch(Postponer):
    """
    A dead man's switch.

    Holds an ordered list of actions that run unless postpone() is called at
    least once every ``ttl`` seconds. Up to ``max_misses`` consecutive missed
    intervals are tolerated; the next one triggers the actions, after which the
    switch stops itself and may be started again.
    """

    def __init__(
        self,
        ttl: float,
        max_misses: int = DEFAULT_MAX_MISSES,
        actions: Sequence[Action] = (),
        logger: Optional[logging.Logger] = None,
        clock: Optional[Clock] = None,
    ):
        self.ttl = ttl if ttl > 0 else DEFAULT_TTL
        self.max_misses = max_misses if max_misses >= 1 else DEFAULT_MAX_MISSES
        self.actions = actions
        self.logger = logger or logging.getLogger("dms")
        self.clock = clock or SystemClock()

        self._lock = threading.Lock()
        self._state = SwitchState.STOPPED
        self._signals: Optional[_Signals] = None
        self._thread: Optional[threading.Thread] = None

    @property
    def state(self) -> SwitchState:
        with self._lock:
            return self._state

    @property
    def running(self) -> bool:
        """True while a monitoring loop is active, including while it triggers."""
        return self.state is not SwitchState.STOPPED

    def start(self):
        """Launch the monitoring loop. Raises SwitchStartedError if one is active."""
        with self._lock:
            if self._state is not SwitchState.STOPPED:
                raise SwitchStartedError()

            signals = _Signals()
            self._signals = signals
            self._state = SwitchState.RUNNING
            self._thread = threading.Thread(
                target=self._run,
                args=(signals, tuple(self.actions)),
                name="dms-switch",
                daemon=True,
            )
            self._thread.start()

        self.logger.debug(f"switch started [ttl={self.ttl}s] [maxMisses={self.max_misses}]")

    def stop(self):
        """Cancel the monitoring loop without triggering.

        Raises SwitchStoppedError if no loop is running, including after the
        switch has triggered on its own.
        """
        with self._lock:
            if self._state is not SwitchState.RUNNING:
                raise SwitchStoppedError()

            self._signals.cancel()
            self._signals = None
            self._state = SwitchState.STOPPED

    def postpone(self, request: PostponeRequest) -> bool:
        with self._lock:
            if self._state is not SwitchState.RUNNING:
                return False

            self._signals.postpone(request)
            return True

    def join(self, timeout: Optional[float] = None) -> bool:
        """Wait for the most recently started loop to exit. Returns True if it has."""
        with self._lock:
            thread = self._thread

        if thread is None:
            return True
        thread.join(timeout)
        return not thread.is_alive()

    def _run(self, signals: _Signals, actions: Sequence[Action]):
        misses = 0
        try:
            while True:
                timer = self.clock.new_timer(self.ttl, signals.arm())
                event, request = signals.wait()
                timer.stop()

                if event == _Signals.CANCEL:
                    self.logger.info("stopping switch loop")
                    return

                if event == _Signals.POSTPONE:
                    misses = 0
                    self.logger.info(f"postponed {request}")
                    continue

                misses += 1
                self.logger.warning(f"missed postpone update [misses={misses}]")
                if misses > self.max_misses:
                    if not self._begin_trigger(signals):
                        self.logger.info("stopping switch loop")
                        return

                    self.logger.warning("triggering actions")
                    trigger(actions, self.logger)
                    return
        finally:
            self._release(signals)

    def _begin_trigger(self, signals: _Signals) -> bool:
        # A stop() that won the race owns the outcome
        with self._lock:
            if self._signals is not signals:
                return False
            self._state = SwitchState.TRIGGERING
            return True

    def _release(self, signals: _Signals):
        with self._lock:
            if self._signals is signals:
                self._signals = None
                self._state = SwitchState.STOPPED
