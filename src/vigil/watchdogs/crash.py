"""
Crash Watchdog - Detects crashed and unresponsive pages.

Installs a `crash` listener on every known page once the browser is
connected, and periodically evaluates a trivial expression on each page to
find renderers that stopped answering.
"""

import asyncio
import logging
from collections.abc import Awaitable, Callable
from typing import Any

from vigil.events.types import (
    BrowserConnectedEvent,
    BrowserErrorEvent,
    BrowserStoppedEvent,
    TabClosedEvent,
    TabCreatedEvent,
    TargetCrashedEvent,
)
from vigil.watchdogs.base import BaseWatchdog

logger = logging.getLogger(__name__)

CrashListener = Callable[..., Awaitable[None]]

DEFAULT_CRASH_MESSAGE = "Target crashed"
UNKNOWN_TARGET = "unknown_target"


class CrashWatchdog(BaseWatchdog):
    """
    Monitors pages for renderer crashes and unresponsiveness.

    Emits TargetCrashedEvent followed by BrowserErrorEvent(TargetCrash) for a
    crash, and BrowserErrorEvent(TargetUnresponsive) once per streak of
    failed health checks.
    """

    LISTENS_TO = [BrowserConnectedEvent, BrowserStoppedEvent, TabCreatedEvent, TabClosedEvent]
    EMITS = [TargetCrashedEvent, BrowserErrorEvent]

    def __init__(self, session, event_bus=None, poll_interval: float | None = None):
        profile = session.profile
        super().__init__(
            session,
            event_bus,
            poll_interval if poll_interval is not None else profile.health_check_interval,
        )
        self._page_listeners: dict[Any, CrashListener] = {}
        self._failures: dict[Any, int] = {}
        self._reported_unresponsive: set[Any] = set()

    @property
    def tracked_pages(self) -> list[Any]:
        return list(self._page_listeners)

    # ===== Bus handlers =====

    async def on_BrowserConnectedEvent(self, event: BrowserConnectedEvent) -> None:
        self._failures.clear()
        self._reported_unresponsive.clear()
        self._attach_to_known_pages()
        self.start_monitoring()

    async def on_TabCreatedEvent(self, event: TabCreatedEvent) -> None:
        self._attach_to_known_pages()

    async def on_TabClosedEvent(self, event: TabClosedEvent) -> None:
        self._drop_detached_pages()

    async def on_BrowserStoppedEvent(self, event: BrowserStoppedEvent) -> None:
        self._detach_all_pages()
        await self.stop_monitoring()

    def on_detach(self, session) -> None:
        self._detach_all_pages()
        self.cancel_monitoring()

    # ===== Page listeners =====

    def _attach_to_known_pages(self) -> None:
        for page in self._session.known_pages():
            self._attach_page(page)

    def _attach_page(self, page: Any) -> None:
        if page in self._page_listeners:
            return

        async def on_crash(payload: Any = None) -> None:
            await self._handle_page_crash(page, payload)

        try:
            page.on("crash", on_crash)
        except Exception as e:
            logger.debug(f"Could not attach crash listener: {e}")
            return
        self._page_listeners[page] = on_crash

    def _drop_detached_pages(self) -> None:
        live_pages = self._session.known_pages()
        for page, listener in list(self._page_listeners.items()):
            if page in live_pages:
                continue
            self._detach_listener(page, listener)
            del self._page_listeners[page]
            self._failures.pop(page, None)
            self._reported_unresponsive.discard(page)

    def _detach_all_pages(self) -> None:
        for page, listener in list(self._page_listeners.items()):
            self._detach_listener(page, listener)
        self._page_listeners.clear()
        self._failures.clear()
        self._reported_unresponsive.clear()

    def _detach_listener(self, page: Any, listener: CrashListener) -> None:
        try:
            page.remove_listener("crash", listener)
        except Exception as e:
            logger.debug(f"Could not remove crash listener: {e}")

    # ===== Crash handling =====

    async def _handle_page_crash(self, page: Any, payload: Any = None) -> None:
        target_id = self._resolve_target_id(page)
        url = _safe_page_url(page) or (self._session.active_tab.url if self._session.active_tab else "")
        message = _normalize_crash_error(payload)

        logger.warning(f"Target {target_id[-8:]} crashed: {message}")

        try:
            await self._bus.dispatch(TargetCrashedEvent(target_id=target_id, error=message))
        except Exception as e:
            logger.warning(f"Could not dispatch TargetCrashedEvent: {e}")

        await self.emit_error(
            "TargetCrash",
            message,
            details={"target_id": target_id, "url": url},
        )

    def _resolve_target_id(self, page: Any) -> str:
        tab = self._session.get_tab_for_page(page)
        if tab and tab.target_id:
            return tab.target_id

        page_url = _safe_page_url(page)
        if page_url:
            for tab in self._session.tabs:
                if tab.url == page_url and tab.target_id:
                    return tab.target_id

        return self._session.get_focused_target_id() or UNKNOWN_TARGET

    # ===== Health checks =====

    async def _check(self) -> None:
        await self.run_health_check()

    async def run_health_check(self) -> None:
        """Evaluate every known page once and update failure streaks."""
        profile = self._session.profile
        for page in self._session.known_pages():
            if _is_closed(page):
                continue

            try:
                await asyncio.wait_for(page.evaluate("1"), timeout=profile.health_check_timeout)
            except Exception as e:
                failures = self._failures.get(page, 0) + 1
                self._failures[page] = failures
                logger.debug(f"Health check failed ({failures}/{profile.unresponsive_threshold}): {e!r}")

                if failures >= profile.unresponsive_threshold and page not in self._reported_unresponsive:
                    self._reported_unresponsive.add(page)
                    target_id = self._resolve_target_id(page)
                    await self.emit_error(
                        "TargetUnresponsive",
                        f"Target {target_id} failed {failures} consecutive health checks",
                        details={
                            "target_id": target_id,
                            "url": _safe_page_url(page) or "",
                            "consecutive_failures": failures,
                            "last_error": str(e) or type(e).__name__,
                        },
                    )
            else:
                self._failures.pop(page, None)
                self._reported_unresponsive.discard(page)

    def failure_count(self, page: Any) -> int:
        return self._failures.get(page, 0)


def _normalize_crash_error(payload: Any) -> str:
    if isinstance(payload, BaseException):
        return str(payload) or DEFAULT_CRASH_MESSAGE
    if isinstance(payload, str) and payload.strip():
        return payload.strip()
    candidate = getattr(payload, "message", None)
    if isinstance(candidate, str) and candidate.strip():
        return candidate.strip()
    return DEFAULT_CRASH_MESSAGE


def _safe_page_url(page: Any) -> str | None:
    try:
        url = page.url
    except Exception:
        return None
    return url if isinstance(url, str) else None


def _is_closed(page: Any) -> bool:
    try:
        return bool(page.is_closed())
    except Exception:
        return False
