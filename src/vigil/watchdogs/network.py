"""
Network Watchdog - Monitors network request activity.

Tracks pending requests per page, reports requests that never finish and
detects network idle state.
"""

import asyncio
import logging
import time
from collections.abc import Callable
from typing import Any

from vigil.events.types import (
    BrowserConnectedEvent,
    BrowserErrorEvent,
    BrowserStoppedEvent,
    NetworkIdleEvent,
    TabClosedEvent,
    TabCreatedEvent,
)
from vigil.watchdogs.base import BaseWatchdog

logger = logging.getLogger(__name__)

IGNORED_URL_PREFIXES = ("data:", "chrome-extension:")
REQUEST_EVENTS = ("request", "requestfinished", "requestfailed")


class NetworkWatchdog(BaseWatchdog):
    """
    Monitors network activity.

    Keeps one pending-request table per page, emits BrowserErrorEvent
    (NetworkTimeout) once for each request older than the profile's
    network_timeout, and NetworkIdleEvent whenever the session goes idle.
    """

    LISTENS_TO = [BrowserConnectedEvent, BrowserStoppedEvent, TabCreatedEvent, TabClosedEvent]
    EMITS = [BrowserErrorEvent, NetworkIdleEvent]

    def __init__(self, session, event_bus=None, poll_interval: float | None = None):
        profile = session.profile
        super().__init__(
            session,
            event_bus,
            poll_interval if poll_interval is not None else profile.network_sweep_interval,
        )
        self._timeout = profile.network_timeout
        self._idle_threshold = profile.network_idle_threshold
        # page -> request -> start time
        self._pending: dict[Any, dict[Any, float]] = {}
        self._timed_out: set[Any] = set()
        self._page_listeners: dict[Any, dict[str, Callable]] = {}
        self._last_activity_time = time.monotonic()
        self._was_idle = True

    # ===== Bus handlers =====

    async def on_BrowserConnectedEvent(self, event: BrowserConnectedEvent) -> None:
        self._reset()
        self._attach_to_known_pages()
        self.start_monitoring()

    async def on_TabCreatedEvent(self, event: TabCreatedEvent) -> None:
        self._attach_to_known_pages()

    async def on_TabClosedEvent(self, event: TabClosedEvent) -> None:
        live_pages = self._session.known_pages()
        for page in list(self._page_listeners):
            if page not in live_pages:
                self._detach_page(page)

    async def on_BrowserStoppedEvent(self, event: BrowserStoppedEvent) -> None:
        self._detach_all_pages()
        await self.stop_monitoring()

    def on_detach(self, session) -> None:
        self._detach_all_pages()
        self.cancel_monitoring()

    # ===== Page listeners =====

    def _attach_to_known_pages(self) -> None:
        for page in self._session.known_pages():
            if page in self._page_listeners:
                continue

            listeners = {
                "request": lambda request, page=page: self.record_request_started(page, request),
                "requestfinished": lambda request, page=page: self.record_request_finished(page, request),
                "requestfailed": lambda request, page=page: self.record_request_finished(page, request),
            }
            try:
                for event_name, listener in listeners.items():
                    page.on(event_name, listener)
            except Exception as e:
                logger.debug(f"Could not attach network listeners: {e}")
                continue
            self._page_listeners[page] = listeners

    def _detach_page(self, page: Any) -> None:
        for event_name, listener in self._page_listeners.pop(page, {}).items():
            try:
                page.remove_listener(event_name, listener)
            except Exception as e:
                logger.debug(f"Could not remove {event_name} listener: {e}")
        for request in self._pending.pop(page, {}):
            self._timed_out.discard(request)

    def _detach_all_pages(self) -> None:
        for page in list(self._page_listeners):
            self._detach_page(page)
        self._reset()

    def _reset(self) -> None:
        self._pending.clear()
        self._timed_out.clear()
        self._last_activity_time = time.monotonic()
        self._was_idle = True

    # ===== Request tracking =====

    def record_request_started(self, page: Any, request: Any) -> None:
        """Handle request started."""
        url = getattr(request, "url", "") or ""
        if url.startswith(IGNORED_URL_PREFIXES):
            return

        self._pending.setdefault(page, {})[request] = time.monotonic()
        self._last_activity_time = time.monotonic()
        self._was_idle = False
        logger.debug(f"Request started: {url[:60]} ({self.pending_count} pending)")

    def record_request_finished(self, page: Any, request: Any) -> None:
        """Handle request finished or failed."""
        pending = self._pending.get(page)
        if pending is None or request not in pending:
            return

        del pending[request]
        if not pending:
            del self._pending[page]
        self._timed_out.discard(request)
        self._last_activity_time = time.monotonic()
        logger.debug(f"Request finished ({self.pending_count} pending)")

    # ===== Sweep =====

    async def _check(self) -> None:
        await self.sweep()

    async def sweep(self) -> None:
        """Report stale requests and detect transitions to idle."""
        now = time.monotonic()

        for page, pending in list(self._pending.items()):
            for request, started in list(pending.items()):
                elapsed = now - started
                if elapsed < self._timeout or request in self._timed_out:
                    continue

                self._timed_out.add(request)
                url = getattr(request, "url", "")
                method = getattr(request, "method", "GET")
                target_id = self._target_id_for(page)
                await self.emit_error(
                    "NetworkTimeout",
                    f"{method} {url} pending for {elapsed:.1f}s",
                    details={
                        "target_id": target_id,
                        "url": url,
                        "method": method,
                        "elapsed_seconds": round(elapsed, 3),
                        "timeout_seconds": self._timeout,
                    },
                )

        is_idle = self.is_idle
        if is_idle and not self._was_idle:
            target_id = self._session.get_focused_target_id() or ""
            try:
                await self._bus.dispatch(NetworkIdleEvent(target_id=target_id))
            except Exception as e:
                logger.warning(f"Could not dispatch NetworkIdleEvent: {e}")
            logger.debug("Network idle")
        self._was_idle = is_idle

    def _target_id_for(self, page: Any) -> str:
        tab = self._session.get_tab_for_page(page)
        if tab:
            return tab.target_id
        return self._session.get_focused_target_id() or ""

    # ===== Queries =====

    @property
    def pending_count(self) -> int:
        """Number of pending requests across all pages."""
        return sum(len(p) for p in self._pending.values())

    def pending_for(self, page: Any) -> int:
        return len(self._pending.get(page, {}))

    @property
    def is_idle(self) -> bool:
        """Check if network is currently idle."""
        time_since_activity = time.monotonic() - self._last_activity_time
        return self.pending_count == 0 and time_since_activity >= self._idle_threshold

    def loading_status(self, page: Any | None = None) -> str | None:
        """Human readable loading status, or None when nothing is pending."""
        count = self.pending_count if page is None else self.pending_for(page)
        if count == 0:
            return None
        return f"Loading: {count} pending network request{'s' if count != 1 else ''}"

    async def wait_for_idle(self, timeout: float = 30.0) -> bool:
        """
        Wait for network to become idle.

        Args:
            timeout: Maximum time to wait in seconds

        Returns:
            True if idle, False if timeout
        """
        start = time.monotonic()

        while time.monotonic() - start < timeout:
            if self.is_idle:
                return True
            await asyncio.sleep(0.1)

        logger.warning(f"Network idle timeout ({self.pending_count} pending)")
        return False
