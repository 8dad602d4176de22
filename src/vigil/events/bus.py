"""
EventBus - Typed pub/sub engine for Vigil.

Handlers for an event type run in registration order (or concurrently when
asked), each one under an optional deadline. A dispatch started from inside a
handler inherits the outer event as its parent, and every dispatch leaves a
DispatchResult in a bounded per-bus history.
"""

import asyncio
import contextvars
import inspect
import logging
import math
from collections import OrderedDict, defaultdict
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Literal, TypeVar
from uuid import uuid4

from vigil.exceptions import VigilError

logger = logging.getLogger(__name__)

T = TypeVar("T")

WILDCARD = "*"
DEFAULT_HISTORY_LIMIT = 500

DispatchStatus = Literal["pending", "fulfilled", "rejected", "timed_out"]
HandlerStatus = Literal["fulfilled", "rejected", "timed_out"]

EventHandler = Callable[[Any], Any]
EventTypeRef = str | type

# Id of the event whose handler is currently running in this task.
_current_event_id: contextvars.ContextVar[str | None] = contextvars.ContextVar(
    "vigil_current_event_id", default=None
)


@dataclass
class Event:
    """Base class for all events."""

    event_type: str = ""
    event_id: str = field(default_factory=lambda: str(uuid4()))
    event_parent_id: str | None = None
    event_timeout: float | None = None
    event_created_at: datetime = field(default_factory=datetime.now)
    event_result: Any = None
    event_error: Any = None

    def __post_init__(self) -> None:
        if not self.event_type:
            # object.__setattr__ so frozen subclasses still get a type
            object.__setattr__(self, "event_type", self.__class__.__name__)


class HandlerTimeoutError(VigilError):
    """A single handler did not settle before the dispatch deadline."""

    def __init__(self, event_type: str, handler_id: str, timeout_ms: float):
        super().__init__(f"Handler {handler_id} timed out after {timeout_ms:g}ms for {event_type}")
        self.event_type = event_type
        self.handler_id = handler_id
        self.timeout_ms = timeout_ms


class DispatchError(VigilError):
    """One or more handlers failed during a dispatch that was asked to raise."""

    def __init__(self, dispatch_result: "DispatchResult"):
        super().__init__(
            f"Event {dispatch_result.event_type}#{dispatch_result.event_id} "
            f"failed with {len(dispatch_result.errors)} error(s)"
        )
        self.dispatch_result = dispatch_result


@dataclass
class HandlerRegistration:
    event_type: str
    handler: EventHandler
    handler_id: str
    once: bool = False


@dataclass
class HandlerResult:
    """Outcome of one handler for one dispatch."""

    handler_id: str
    event_type: str
    status: HandlerStatus
    started_at: datetime
    completed_at: datetime
    duration_ms: float
    result: Any = None
    error: BaseException | None = None


@dataclass
class DispatchResult:
    """Record of a single dispatch, kept in the bus history."""

    event: Any
    event_id: str
    event_type: str
    event_parent_id: str | None
    event_timeout: float | None
    started_at: datetime
    completed_at: datetime
    duration_ms: float = 0.0
    status: DispatchStatus = "pending"
    handler_results: list[HandlerResult] = field(default_factory=list)
    errors: list[BaseException] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return self.status == "fulfilled"


class EventBus:
    """
    Async event bus with ordered dispatch, per-handler timeouts and causal ids.

    Usage:
        bus = EventBus("session")

        async def on_connected(event: BrowserConnectedEvent):
            print(f"Connected to {event.cdp_url}")

        unsubscribe = bus.on(BrowserConnectedEvent, on_connected)

        result = await bus.dispatch(BrowserConnectedEvent(cdp_url="ws://..."))
        assert result.status == "fulfilled"
    """

    def __init__(
        self,
        name: str = "EventBus",
        event_history_limit: int = DEFAULT_HISTORY_LIMIT,
        throw_on_error_by_default: bool = False,
    ):
        self.name = name
        self._handlers: dict[str, list[HandlerRegistration]] = defaultdict(list)
        self._history: OrderedDict[str, DispatchResult] = OrderedDict()
        self._history_limit = event_history_limit
        self._throw_on_error_by_default = throw_on_error_by_default

    # ===== Subscription =====

    def on(
        self,
        event_type: EventTypeRef,
        handler: EventHandler,
        *,
        once: bool = False,
        handler_id: str | None = None,
        allow_duplicate: bool = False,
    ) -> Callable[[], None]:
        """
        Register event handler.

        Args:
            event_type: Event class, event type name, or "*" for every event
            handler: Async or sync callable receiving the event
            once: Remove the handler after its first invocation
            handler_id: Explicit id (default: "<event_type>:<handler name>")
            allow_duplicate: Permit the same callable or id twice

        Returns:
            Function that unsubscribes this handler
        """
        type_name = _type_name(event_type)
        resolved_id = handler_id or _default_handler_id(type_name, handler)
        registrations = self._handlers[type_name]

        if not allow_duplicate:
            for existing in registrations:
                if existing.handler == handler or existing.handler_id == resolved_id:
                    raise ValueError(f"Duplicate handler registration for {type_name} ({resolved_id})")

        registrations.append(
            HandlerRegistration(
                event_type=type_name,
                handler=handler,
                handler_id=resolved_id,
                once=once,
            )
        )
        logger.debug(f"{self.name}: Registered {resolved_id}")

        def unsubscribe() -> None:
            self.off(type_name, resolved_id)

        return unsubscribe

    def once(
        self,
        event_type: EventTypeRef,
        handler: EventHandler,
        *,
        handler_id: str | None = None,
        allow_duplicate: bool = False,
    ) -> Callable[[], None]:
        """Register a handler that is removed after its first invocation."""
        return self.on(
            event_type,
            handler,
            once=True,
            handler_id=handler_id,
            allow_duplicate=allow_duplicate,
        )

    def off(self, event_type: EventTypeRef, handler_or_id: EventHandler | str | None = None) -> None:
        """
        Remove event handler(s). Removing something that is not registered is a no-op.

        Args:
            event_type: Event class or type name
            handler_or_id: Handler callable or handler id; None removes all handlers for the type
        """
        type_name = _type_name(event_type)
        registrations = self._handlers.get(type_name)
        if not registrations:
            return

        if handler_or_id is None:
            del self._handlers[type_name]
            return

        if isinstance(handler_or_id, str):
            remaining = [r for r in registrations if r.handler_id != handler_or_id]
        else:
            remaining = [r for r in registrations if r.handler != handler_or_id]

        if remaining:
            self._handlers[type_name] = remaining
        else:
            del self._handlers[type_name]

    def get_handlers(self, event_type: EventTypeRef) -> list[HandlerRegistration]:
        """Registrations for an event type, in invocation order."""
        return list(self._handlers.get(_type_name(event_type), []))

    # ===== Dispatch =====

    async def dispatch(
        self,
        event: T,
        *,
        throw_on_error: bool | None = None,
        timeout_ms: float | None = None,
        parallel_handlers: bool = False,
    ) -> DispatchResult:
        """
        Dispatch event to every handler of its type, then to wildcard handlers.

        Args:
            event: Event instance
            throw_on_error: Raise DispatchError if any handler failed
            timeout_ms: Per-handler deadline overriding the event's own timeout
            parallel_handlers: Start all handlers before awaiting any

        Returns:
            DispatchResult for this dispatch
        """
        event_type = _resolve_event_type(event)
        event_id = getattr(event, "event_id", None) or str(uuid4())
        parent_id = getattr(event, "event_parent_id", None) or _current_event_id.get()
        if parent_id == event_id:
            parent_id = None
        resolved_timeout_ms = _resolve_timeout_ms(getattr(event, "event_timeout", None), timeout_ms)
        timeout_seconds = None if resolved_timeout_ms is None else resolved_timeout_ms / 1000

        _safe_assign(event, "event_type", event_type)
        _safe_assign(event, "event_id", event_id)
        _safe_assign(event, "event_parent_id", parent_id)

        registrations = list(self._handlers.get(event_type, []))
        if event_type != WILDCARD:
            registrations.extend(self._handlers.get(WILDCARD, []))

        # once-handlers leave before running so a re-entrant dispatch cannot hit them twice
        for registration in registrations:
            if registration.once:
                self._remove_registration(registration)

        started_at = datetime.now()
        dispatch_result = DispatchResult(
            event=event,
            event_id=event_id,
            event_type=event_type,
            event_parent_id=parent_id,
            event_timeout=timeout_seconds,
            started_at=started_at,
            completed_at=started_at,
        )
        self._record(dispatch_result)

        if not registrations:
            logger.debug(f"{self.name}: No handlers for {event_type}")
        else:
            logger.debug(f"{self.name}: Dispatching {event_type}#{event_id[-8:]} to {len(registrations)} handlers")

        if parallel_handlers:
            await asyncio.gather(
                *(
                    self._run_handler(registration, event, dispatch_result, resolved_timeout_ms)
                    for registration in registrations
                )
            )
        else:
            for registration in registrations:
                await self._run_handler(registration, event, dispatch_result, resolved_timeout_ms)

        completed_at = datetime.now()
        dispatch_result.completed_at = completed_at
        dispatch_result.duration_ms = (completed_at - started_at).total_seconds() * 1000

        if not dispatch_result.errors:
            dispatch_result.status = "fulfilled"
        elif any(r.status == "timed_out" for r in dispatch_result.handler_results):
            dispatch_result.status = "timed_out"
        else:
            dispatch_result.status = "rejected"

        for handler_result in dispatch_result.handler_results:
            if handler_result.status == "fulfilled" and handler_result.result is not None:
                _safe_assign(event, "event_result", handler_result.result)
                break
        if dispatch_result.errors:
            _safe_assign(event, "event_error", dispatch_result.errors[0])

        should_throw = self._throw_on_error_by_default if throw_on_error is None else throw_on_error
        if should_throw and dispatch_result.errors:
            raise DispatchError(dispatch_result)

        return dispatch_result

    async def dispatch_or_throw(
        self,
        event: T,
        *,
        timeout_ms: float | None = None,
        parallel_handlers: bool = False,
    ) -> DispatchResult:
        """Dispatch event and raise DispatchError if any handler failed."""
        return await self.dispatch(
            event,
            throw_on_error=True,
            timeout_ms=timeout_ms,
            parallel_handlers=parallel_handlers,
        )

    async def _run_handler(
        self,
        registration: HandlerRegistration,
        event: Any,
        dispatch_result: DispatchResult,
        timeout_ms: float | None,
    ) -> None:
        started_at = datetime.now()
        status: HandlerStatus = "fulfilled"
        result: Any = None
        error: BaseException | None = None

        try:
            if timeout_ms is None:
                result = await self._invoke(registration, event, dispatch_result.event_id)
            else:
                result = await self._invoke_with_timeout(
                    registration, event, dispatch_result.event_id, timeout_ms
                )
        except HandlerTimeoutError as e:
            status = "timed_out"
            error = e
            logger.warning(f"{self.name}: {e}")
        except Exception as e:
            status = "rejected"
            error = e
            logger.warning(
                f"{self.name}: Handler {registration.handler_id} failed for "
                f"{dispatch_result.event_type}: {type(e).__name__}: {e}"
            )

        if error is not None:
            dispatch_result.errors.append(error)

        completed_at = datetime.now()
        dispatch_result.handler_results.append(
            HandlerResult(
                handler_id=registration.handler_id,
                event_type=registration.event_type,
                status=status,
                started_at=started_at,
                completed_at=completed_at,
                duration_ms=(completed_at - started_at).total_seconds() * 1000,
                result=result,
                error=error,
            )
        )

    async def _invoke(self, registration: HandlerRegistration, event: Any, event_id: str) -> Any:
        token = _current_event_id.set(event_id)
        try:
            result = registration.handler(event)
            if inspect.isawaitable(result):
                result = await result
            return result
        finally:
            _current_event_id.reset(token)

    async def _invoke_with_timeout(
        self,
        registration: HandlerRegistration,
        event: Any,
        event_id: str,
        timeout_ms: float,
    ) -> Any:
        if timeout_ms <= 0:
            raise HandlerTimeoutError(registration.event_type, registration.handler_id, timeout_ms)

        task = asyncio.ensure_future(self._invoke(registration, event, event_id))
        try:
            done, _ = await asyncio.wait({task}, timeout=timeout_ms / 1000)
        except asyncio.CancelledError:
            task.cancel()
            raise

        if task in done:
            return task.result()

        task.cancel()
        task.add_done_callback(_consume_task_result)
        raise HandlerTimeoutError(registration.event_type, registration.handler_id, timeout_ms)

    # ===== History =====

    @property
    def event_history(self) -> OrderedDict[str, DispatchResult]:
        """Recent dispatch results keyed by event id, oldest first."""
        return self._history

    def get_dispatch_result(self, event_id: str) -> DispatchResult | None:
        return self._history.get(event_id)

    def _record(self, dispatch_result: DispatchResult) -> None:
        if self._history_limit <= 0:
            return
        self._history[dispatch_result.event_id] = dispatch_result
        while len(self._history) > self._history_limit:
            self._history.popitem(last=False)

    # ===== Housekeeping =====

    def _remove_registration(self, registration: HandlerRegistration) -> None:
        registrations = self._handlers.get(registration.event_type)
        if not registrations:
            return
        remaining = [r for r in registrations if r is not registration]
        if remaining:
            self._handlers[registration.event_type] = remaining
        else:
            del self._handlers[registration.event_type]

    def clear(self) -> None:
        """Remove all handlers and forget dispatch history."""
        self._handlers.clear()
        self._history.clear()
        logger.debug(f"{self.name}: Cleared all event handlers")

    @property
    def handler_count(self) -> int:
        """Total number of registered handlers."""
        return sum(len(h) for h in self._handlers.values())


def _type_name(event_type: EventTypeRef) -> str:
    return event_type if isinstance(event_type, str) else event_type.__name__


def _resolve_event_type(event: Any) -> str:
    declared = getattr(event, "event_type", None)
    if isinstance(declared, str) and declared:
        return declared
    return type(event).__name__


def _default_handler_id(event_type: str, handler: EventHandler) -> str:
    name = getattr(handler, "__name__", "")
    if not name or name == "<lambda>":
        name = f"handler_{uuid4().hex[:8]}"
    return f"{event_type}:{name}"


def _resolve_timeout_ms(event_timeout: Any, dispatch_timeout_ms: Any) -> float | None:
    if dispatch_timeout_ms is not None:
        raw = dispatch_timeout_ms
    elif event_timeout is not None:
        if isinstance(event_timeout, bool) or not isinstance(event_timeout, int | float):
            return None
        raw = event_timeout * 1000
    else:
        return None

    if isinstance(raw, bool) or not isinstance(raw, int | float):
        return None
    if not math.isfinite(raw) or raw < 0:
        return None
    return float(raw)


def _safe_assign(event: Any, name: str, value: Any) -> None:
    try:
        setattr(event, name, value)
    except (AttributeError, TypeError):
        # frozen or slotted events stay dispatchable
        pass


def _consume_task_result(task: asyncio.Task) -> None:
    if not task.cancelled():
        task.exception()
