"""
Popups Watchdog - Handles JavaScript dialogs so they never block the page.
"""

import logging
from typing import Any

from vigil.events.types import BrowserConnectedEvent, BrowserStoppedEvent, DialogOpenedEvent, TabCreatedEvent
from vigil.watchdogs.base import BaseWatchdog

logger = logging.getLogger(__name__)

ACCEPTED_DIALOG_TYPES = {"alert", "confirm", "beforeunload"}


class PopupsWatchdog(BaseWatchdog):
    """
    Accepts alert/confirm/beforeunload dialogs and dismisses prompts.

    Each handled dialog is reported as DialogOpenedEvent and its message is
    kept on the session for the next state snapshot.
    """

    LISTENS_TO = [BrowserConnectedEvent, BrowserStoppedEvent, TabCreatedEvent]
    EMITS = [DialogOpenedEvent]

    def __init__(self, session, event_bus=None):
        super().__init__(session, event_bus)
        self._page_listeners: dict[Any, Any] = {}

    async def on_BrowserConnectedEvent(self, event: BrowserConnectedEvent) -> None:
        self._attach_to_known_pages()

    async def on_TabCreatedEvent(self, event: TabCreatedEvent) -> None:
        self._attach_to_known_pages()

    async def on_BrowserStoppedEvent(self, event: BrowserStoppedEvent) -> None:
        self._detach_all_pages()

    def on_detach(self, session) -> None:
        self._detach_all_pages()

    def _attach_to_known_pages(self) -> None:
        if not self._session.profile.auto_accept_dialogs:
            return

        for page in self._session.known_pages():
            if page in self._page_listeners:
                continue

            async def on_dialog(dialog: Any, page: Any = page) -> None:
                await self.handle_dialog(page, dialog)

            try:
                page.on("dialog", on_dialog)
            except Exception as e:
                logger.debug(f"Could not attach dialog listener: {e}")
                continue
            self._page_listeners[page] = on_dialog

    def _detach_all_pages(self) -> None:
        for page, listener in list(self._page_listeners.items()):
            try:
                page.remove_listener("dialog", listener)
            except Exception as e:
                logger.debug(f"Could not remove dialog listener: {e}")
        self._page_listeners.clear()

    async def handle_dialog(self, page: Any, dialog: Any) -> None:
        """Accept or dismiss a dialog and report it."""
        dialog_type = getattr(dialog, "type", "") or ""
        message = getattr(dialog, "message", "") or ""
        accept = dialog_type in ACCEPTED_DIALOG_TYPES

        try:
            if accept:
                await dialog.accept()
            else:
                await dialog.dismiss()
        except Exception as e:
            logger.debug(f"Could not handle {dialog_type} dialog: {e}")

        logger.info(f"Auto-{'accepted' if accept else 'dismissed'} {dialog_type} dialog: {message[:80]}")
        self._session.record_dialog(f"{dialog_type}: {message}")

        tab = self._session.get_tab_for_page(page)
        target_id = tab.target_id if tab else (self._session.get_focused_target_id() or "")
        try:
            await self._bus.dispatch(
                DialogOpenedEvent(
                    target_id=target_id,
                    dialog_type=dialog_type,
                    message=message,
                    accepted=accept,
                )
            )
        except Exception as e:
            logger.warning(f"Could not dispatch DialogOpenedEvent: {e}")
