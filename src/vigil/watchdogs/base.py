"""
Base Watchdog - Base class for browser session monitors.

A watchdog is bound to one BrowserSession. Attaching it subscribes every
`on_<EventName>` method to the session's event bus; detaching removes them.
Watchdogs that poll the page also get a small monitoring loop.

Watchdogs never raise into the session's control flow: failures become
BrowserErrorEvents via emit_error().
"""

import asyncio
import contextlib
import logging
from typing import TYPE_CHECKING, Any, ClassVar

from vigil.events.bus import Event
from vigil.events.types import BrowserErrorEvent
from vigil.exceptions import ConfigurationError
from vigil.logging import VigilLogger

if TYPE_CHECKING:
    from vigil.browser.session import BrowserSession
    from vigil.events.bus import EventBus

logger = logging.getLogger(__name__)
run_log = VigilLogger(__name__)

HANDLER_PREFIX = "on_"
HANDLER_SUFFIX = "Event"


class BaseWatchdog:
    """
    Base class for browser state monitoring.

    Subclasses declare the events they consume in LISTENS_TO and implement one
    `on_<EventName>` coroutine per entry.
    """

    LISTENS_TO: ClassVar[list[type[Event]]] = []
    EMITS: ClassVar[list[type[Event]]] = []

    def __init__(
        self,
        session: "BrowserSession",
        event_bus: "EventBus | None" = None,
        poll_interval: float = 1.0,
    ):
        self._session = session
        self._bus = event_bus if event_bus is not None else session.event_bus
        self._poll_interval = poll_interval
        self._attached = False
        self._registered: list[tuple[str, str]] = []
        self._running = False
        self._task: asyncio.Task | None = None

    @property
    def name(self) -> str:
        """Watchdog name for logging."""
        return self.__class__.__name__

    @property
    def session(self) -> "BrowserSession":
        return self._session

    @property
    def event_bus(self) -> "EventBus":
        return self._bus

    @property
    def is_attached(self) -> bool:
        return self._attached

    @property
    def is_running(self) -> bool:
        """Check if the monitoring loop is running."""
        return self._running and self._task is not None

    # ===== Attachment =====

    def attach_to_session(self) -> None:
        """
        Subscribe all on_<EventName> handlers to the session's bus.

        Raises:
            ConfigurationError: If already attached, or handlers and LISTENS_TO disagree
        """
        if self._attached:
            raise ConfigurationError(f"[{self.name}] attach_to_session() called twice")

        declared = {event_cls.__name__ for event_cls in self.LISTENS_TO}
        handlers = self._handler_methods()

        for event_type in handlers:
            if declared and event_type not in declared:
                raise ConfigurationError(
                    f"[{self.name}] Handler on_{event_type} listens to {event_type} "
                    f"but {event_type} is not declared in LISTENS_TO"
                )

        missing = declared - set(handlers)
        if missing:
            raise ConfigurationError(
                f"[{self.name}] LISTENS_TO declares {', '.join(sorted(missing))} "
                f"but no matching on_<EventName> handlers were found"
            )

        for event_type, method_name in handlers.items():
            handler_id = f"{self.name}.{method_name}"
            self._bus.on(event_type, getattr(self, method_name), handler_id=handler_id)
            self._registered.append((event_type, handler_id))

        self._attached = True
        logger.debug(f"{self.name} attached ({len(self._registered)} handlers)")
        self.on_attach(self._session)

    def detach_from_session(self) -> None:
        """Unsubscribe all handlers. Safe to call when not attached."""
        if not self._attached:
            return

        for event_type, handler_id in self._registered:
            self._bus.off(event_type, handler_id)
        self._registered = []
        self._attached = False
        logger.debug(f"{self.name} detached")
        self.on_detach(self._session)

    def on_attach(self, session: "BrowserSession") -> None:
        """Called after handlers are subscribed. Override in subclasses."""
        pass

    def on_detach(self, session: "BrowserSession") -> None:
        """Called after handlers are removed. Override in subclasses."""
        pass

    def _handler_methods(self) -> dict[str, str]:
        """Map event type name to handler method name."""
        handlers: dict[str, str] = {}
        for attr in dir(type(self)):
            if not (attr.startswith(HANDLER_PREFIX) and attr.endswith(HANDLER_SUFFIX)):
                continue
            if callable(getattr(type(self), attr, None)):
                handlers[attr[len(HANDLER_PREFIX) :]] = attr
        return handlers

    # ===== Error reporting =====

    async def emit_error(self, error_type: str, message: str, details: dict[str, Any] | None = None) -> None:
        """Dispatch a BrowserErrorEvent. Never raises."""
        run_log.browser_error(error_type, message, source=self.name)
        try:
            await self._bus.dispatch(
                BrowserErrorEvent(
                    error_type=error_type,
                    message=message,
                    details=details or {},
                )
            )
        except Exception as e:
            logger.warning(f"{self.name} could not emit {error_type}: {e}")

    # ===== Monitoring loop =====

    def start_monitoring(self, interval: float | None = None) -> None:
        """Start the periodic _check() loop."""
        if self._running:
            logger.debug(f"{self.name} already monitoring")
            return

        if interval is not None:
            self._poll_interval = interval
        self._running = True
        self._task = asyncio.create_task(self._run_loop(), name=f"{self.name}-monitor")
        logger.debug(f"{self.name} monitoring started")

    async def stop_monitoring(self) -> None:
        """Stop the monitoring loop. Safe to call when not running."""
        self._running = False

        task, self._task = self._task, None
        if task and task is not asyncio.current_task():
            task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await task
            logger.debug(f"{self.name} monitoring stopped")

    def cancel_monitoring(self) -> None:
        """Cancel the monitoring loop without waiting for it to finish."""
        self._running = False
        task, self._task = self._task, None
        if task and not task.done():
            task.cancel()

    async def _run_loop(self) -> None:
        """Main monitoring loop."""
        with contextlib.suppress(asyncio.CancelledError):
            while self._running:
                await asyncio.sleep(self._poll_interval)
                if not self._running:
                    break
                try:
                    await self._check()
                except Exception as e:
                    logger.error(f"{self.name} check error: {e}")

    async def _check(self) -> None:
        """One monitoring pass. Override in subclasses that poll."""
        pass
