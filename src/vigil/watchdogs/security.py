"""
Security Watchdog - Keeps the browser inside allowed_domains.
"""

import logging

from vigil.events.types import BrowserErrorEvent, NavigationCompleteEvent, TabCreatedEvent
from vigil.utils.domain import extract_domain_from_url, is_url_allowed
from vigil.watchdogs.base import BaseWatchdog

logger = logging.getLogger(__name__)


class SecurityWatchdog(BaseWatchdog):
    """
    Blocks pages outside the profile's allowed_domains.

    Navigations that end on a disallowed URL are redirected to about:blank;
    tabs opened on a disallowed URL are closed.
    """

    LISTENS_TO = [NavigationCompleteEvent, TabCreatedEvent]
    EMITS = [BrowserErrorEvent]

    async def on_NavigationCompleteEvent(self, event: NavigationCompleteEvent) -> None:
        reason = self.denial_reason(event.url)
        if reason is None:
            return

        await self.emit_error(
            "NavigationBlocked",
            f"Navigation blocked to non-allowed URL: {event.url} - redirecting to about:blank",
            details={"url": event.url, "target_id": event.target_id, "reason": reason},
        )

        tab = self._session.get_tab_by_target(event.target_id)
        try:
            await self._session.navigate("about:blank", tab_id=tab.tab_id if tab else None)
        except Exception as e:
            logger.debug(f"SecurityWatchdog failed to redirect to about:blank: {e}")

    async def on_TabCreatedEvent(self, event: TabCreatedEvent) -> None:
        reason = self.denial_reason(event.url)
        if reason is None:
            return

        await self.emit_error(
            "TabCreationBlocked",
            f"Tab created with non-allowed URL: {event.url}",
            details={"url": event.url, "target_id": event.target_id, "reason": reason},
        )

        tab = self._session.get_tab_by_target(event.target_id)
        if tab is None:
            return
        try:
            await self._session.close_tab(tab.tab_id)
        except Exception as e:
            logger.debug(f"SecurityWatchdog failed to close blocked tab: {e}")

    def denial_reason(self, url: str) -> str | None:
        """Why url is not allowed, or None if it is."""
        allowed = self._session.profile.allowed_domains
        if not url or is_url_allowed(url, allowed):
            return None
        host = extract_domain_from_url(url)
        if not host:
            return "URL has no host"
        return f"{host} is not in allowed_domains"
