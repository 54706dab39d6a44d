"""
dms - Dead man's switch

Holds a set of actions in reserve and fires them unless the switch is
postponed, over HTTP or in-process, at least once every TTL interval.
"""

__version__ = "1.0.0"

from .actions import Action, ActionError, trigger
from .clock import Clock, FakeClock, SystemClock
from .config import DmsConfig
from .daemon import DeadMansSwitch
from .switch import (
    PostponeRequest,
    Postponer,
    Switch,
    SwitchError,
    SwitchStartedError,
    SwitchStoppedError,
)

__all__ = [
    "Action",
    "ActionError",
    "Clock",
    "DeadMansSwitch",
    "DmsConfig",
    "FakeClock",
    "PostponeRequest",
    "Postponer",
    "Switch",
    "SwitchError",
    "SwitchStartedError",
    "SwitchStoppedError",
    "SystemClock",
    "trigger",
]
