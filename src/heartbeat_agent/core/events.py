"""
Events consumed by the lifecycle controller.

Broker client events (connect, reconnect, close, offline, error), heartbeat
timer ticks and termination signals all arrive as LifecycleEvent values.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Any


class EventKind(str, Enum):
    CONNECT = "connect"
    RECONNECT = "reconnect"
    CLOSE = "close"
    OFFLINE = "offline"
    ERROR = "error"
    TICK = "tick"
    SIGNAL = "signal"


@dataclass(frozen=True, slots=True)
class LifecycleEvent:
    kind: EventKind
    # error: the exception or reason; tick: timer generation; signal: signal name
    detail: Any = None
