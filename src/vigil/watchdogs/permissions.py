"""
Permissions Watchdog - Grants configured browser permissions on connect.
"""

import logging

from vigil.events.types import BrowserConnectedEvent, BrowserErrorEvent
from vigil.watchdogs.base import BaseWatchdog

logger = logging.getLogger(__name__)


class PermissionsWatchdog(BaseWatchdog):
    """
    Grants profile.permissions when the browser connects.

    Tries the browser-wide CDP command first (Browser.grantPermissions through
    the session's cdp-use client) and falls back to the Playwright context.
    Failure is reported as BrowserErrorEvent(PermissionsWatchdogError).
    """

    LISTENS_TO = [BrowserConnectedEvent]
    EMITS = [BrowserErrorEvent]

    async def on_BrowserConnectedEvent(self, event: BrowserConnectedEvent) -> None:
        permissions = list(self._session.profile.permissions or [])
        if not permissions:
            return

        cdp_error: Exception | None = None
        try:
            if await self._grant_via_cdp(permissions):
                logger.debug(f"Granted permissions via CDP: {permissions}")
                return
        except Exception as e:
            cdp_error = e
            logger.debug(f"CDP permission grant failed, falling back to context: {e}")

        context = self._session.browser_context
        if context is None or getattr(context, "grant_permissions", None) is None:
            if cdp_error is not None:
                message = str(cdp_error) or "Failed to grant permissions via CDP"
            else:
                message = "no grant path available"
            await self.emit_error(
                "PermissionsWatchdogError",
                message,
                details={
                    "permissions": permissions,
                    "cdp_error": str(cdp_error) if cdp_error else None,
                    "mode": "cdp" if cdp_error else "none",
                },
            )
            return

        try:
            await context.grant_permissions(permissions)
            logger.debug(f"Granted permissions via browser context: {permissions}")
        except Exception as e:
            logger.warning(f"Could not grant permissions {permissions}: {e}")
            await self.emit_error(
                "PermissionsWatchdogError",
                str(e) or "Failed to grant permissions",
                details={
                    "permissions": permissions,
                    "cdp_error": str(cdp_error) if cdp_error else None,
                    "mode": "playwright",
                },
            )

    async def _grant_via_cdp(self, permissions: list[str]) -> bool:
        client = self._session.cdp_client
        if client is None:
            return False

        await client.send.Browser.grantPermissions({"permissions": permissions})
        return True
