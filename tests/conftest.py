"""Shared fixtures."""

import logging
import threading

import pytest

from dms.actions import Action, ActionError
from dms.clock import FakeClock


class RecordingHandler(logging.Handler):
    """Collects formatted log messages."""

    def __init__(self):
        super().__init__(level=logging.DEBUG)
        self.messages: list[str] = []
        self._lock = threading.Lock()

    def emit(self, record):
        with self._lock:
            self.messages.append(record.getMessage())

    def has(self, text: str) -> bool:
        with self._lock:
            return any(text in m for m in self.messages)

    def count(self, text: str) -> int:
        with self._lock:
            return sum(1 for m in self.messages if text in m)


class RecordingAction(Action):
    """Action that appends its name to a shared list when executed."""

    def __init__(self, name: str, calls: list, error: str = None):
        self.name = name
        self.calls = calls
        self.error = error

    def describe(self) -> str:
        return self.name

    def execute(self):
        self.calls.append(self.name)
        if self.error:
            raise ActionError(self.error)


@pytest.fixture
def recorder(request):
    """A private logger and the handler recording its output."""
    logger = logging.getLogger(f"dms-test.{request.node.name}")
    logger.setLevel(logging.DEBUG)
    logger.propagate = False
    handler = RecordingHandler()
    logger.addHandler(handler)
    yield logger, handler
    logger.removeHandler(handler)


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def calls():
    return []
