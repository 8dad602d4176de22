"""
Vigil Events Module.

Provides the event bus and the event catalog.
"""

from vigil.events.bus import (
    DispatchError,
    DispatchResult,
    Event,
    EventBus,
    HandlerResult,
    HandlerTimeoutError,
)
from vigil.events.types import (
    BROWSER_EVENT_CLASSES,
    ActionCompletedEvent,
    ActionStartedEvent,
    AgentFocusChangedEvent,
    BrowserConnectedEvent,
    BrowserErrorEvent,
    BrowserEvent,
    BrowserStoppedEvent,
    DialogOpenedEvent,
    NavigationCompleteEvent,
    NavigationStartedEvent,
    NetworkIdleEvent,
    StepCompletedEvent,
    StepStartedEvent,
    TabClosedEvent,
    TabCreatedEvent,
    TargetCrashedEvent,
)

__all__ = [
    "BROWSER_EVENT_CLASSES",
    "ActionCompletedEvent",
    "ActionStartedEvent",
    "AgentFocusChangedEvent",
    "BrowserConnectedEvent",
    "BrowserErrorEvent",
    "BrowserEvent",
    "BrowserStoppedEvent",
    "DialogOpenedEvent",
    "DispatchError",
    "DispatchResult",
    "Event",
    "EventBus",
    "HandlerResult",
    "HandlerTimeoutError",
    "NavigationCompleteEvent",
    "NavigationStartedEvent",
    "NetworkIdleEvent",
    "StepCompletedEvent",
    "StepStartedEvent",
    "TabClosedEvent",
    "TabCreatedEvent",
    "TargetCrashedEvent",
]
