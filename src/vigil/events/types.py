"""
Event Types - Domain events for Vigil browser sessions.

These events enable loose coupling between the session, its watchdogs and
the agent loop. Each browser event carries a default handler timeout in
seconds which can be overridden per class with TIMEOUT_<EventClassName>.
"""

import math
import os
from dataclasses import dataclass, field
from typing import Any, ClassVar

from vigil.events.bus import Event


def _timeout_from_env(event_name: str, default: float | None) -> float | None:
    raw = os.environ.get(f"TIMEOUT_{event_name}")
    if raw is None:
        return default
    try:
        value = float(raw)
    except ValueError:
        return default
    if not math.isfinite(value) or value < 0:
        return default
    return value


@dataclass
class BrowserEvent(Event):
    """Event with a per-class default handler timeout."""

    default_timeout: ClassVar[float | None] = None

    def __post_init__(self) -> None:
        super().__post_init__()
        if self.event_timeout is None:
            object.__setattr__(
                self,
                "event_timeout",
                _timeout_from_env(self.__class__.__name__, self.default_timeout),
            )


# ===== Connection Events =====


@dataclass
class BrowserConnectedEvent(BrowserEvent):
    """Browser session started and connected."""

    default_timeout: ClassVar[float | None] = 30.0

    cdp_url: str = ""


@dataclass
class BrowserStoppedEvent(BrowserEvent):
    """Browser session stopped."""

    default_timeout: ClassVar[float | None] = 30.0

    reason: str | None = None


# ===== Tab Events =====


@dataclass
class TabCreatedEvent(BrowserEvent):
    """A tab was added to the session's tab table."""

    default_timeout: ClassVar[float | None] = 30.0

    target_id: str = ""
    url: str = ""


@dataclass
class TabClosedEvent(BrowserEvent):
    """A tab was removed from the session's tab table."""

    default_timeout: ClassVar[float | None] = 10.0

    target_id: str = ""


@dataclass
class AgentFocusChangedEvent(BrowserEvent):
    """The agent's focused tab changed."""

    default_timeout: ClassVar[float | None] = 10.0

    target_id: str = ""
    url: str = ""


@dataclass
class TargetCrashedEvent(BrowserEvent):
    """A renderer process crashed."""

    default_timeout: ClassVar[float | None] = 10.0

    target_id: str = ""
    error: str = ""


# ===== Navigation Events =====


@dataclass
class NavigationStartedEvent(BrowserEvent):
    """Navigation started to URL."""

    default_timeout: ClassVar[float | None] = 30.0

    target_id: str = ""
    url: str = ""


@dataclass
class NavigationCompleteEvent(BrowserEvent):
    """Navigation completed (successfully or not)."""

    default_timeout: ClassVar[float | None] = 30.0

    target_id: str = ""
    url: str = ""
    status: int | None = None
    error_message: str | None = None
    loading_status: str | None = None


# ===== Error Events =====


@dataclass
class BrowserErrorEvent(BrowserEvent):
    """Something went wrong in the browser or in a watchdog."""

    default_timeout: ClassVar[float | None] = 30.0

    error_type: str = ""
    message: str = ""
    details: dict[str, Any] = field(default_factory=dict)


# ===== Page Events =====


@dataclass
class NetworkIdleEvent(BrowserEvent):
    """No pending network requests."""

    default_timeout: ClassVar[float | None] = 10.0

    target_id: str = ""


@dataclass
class DialogOpenedEvent(BrowserEvent):
    """A JavaScript dialog was shown and handled."""

    default_timeout: ClassVar[float | None] = 10.0

    target_id: str = ""
    dialog_type: str = ""
    message: str = ""
    accepted: bool = True


# ===== Agent Events =====


@dataclass
class StepStartedEvent(Event):
    """Agent step started."""

    agent_id: str = ""
    step_number: int = 0
    url: str = ""


@dataclass
class StepCompletedEvent(Event):
    """Agent step completed."""

    agent_id: str = ""
    step_number: int = 0
    success: bool = True
    actions_count: int = 0


# ===== Action Events =====


@dataclass
class ActionStartedEvent(Event):
    """Browser action started."""

    action: str = ""
    params: dict = field(default_factory=dict)


@dataclass
class ActionCompletedEvent(Event):
    """Browser action completed."""

    action: str = ""
    success: bool = True
    error: str | None = None
    duration_ms: float = 0


BROWSER_EVENT_CLASSES: list[type[Event]] = [
    BrowserConnectedEvent,
    BrowserStoppedEvent,
    TabCreatedEvent,
    TabClosedEvent,
    AgentFocusChangedEvent,
    TargetCrashedEvent,
    NavigationStartedEvent,
    NavigationCompleteEvent,
    BrowserErrorEvent,
    NetworkIdleEvent,
    DialogOpenedEvent,
    StepStartedEvent,
    StepCompletedEvent,
    ActionStartedEvent,
    ActionCompletedEvent,
]
