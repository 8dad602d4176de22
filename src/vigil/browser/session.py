"""
Browser Session - Long-lived browser connection for Vigil agents.

Owns the Playwright connection (plus a cdp-use client for browser-wide CDP
commands), the tab table, the session's event bus, the attached watchdogs and
the claim registry that lets several agents share one browser.

The tab table is only mutated through this class: adopt_page, new_tab,
switch_tab, close_tab, navigate and go_back.
"""

import asyncio
import base64
import contextlib
import logging
from collections import deque
from typing import Any, Literal
from uuid import uuid4

from pydantic import BaseModel, Field, PrivateAttr

from vigil.browser.launcher import launch_chrome, resolve_ws_url, terminate_chrome
from vigil.browser.profile import BrowserProfile
from vigil.browser.views import ELEMENT_INDEX_ATTR, BrowserStateSummary, TabInfo
from vigil.events.bus import EventBus
from vigil.events.types import (
    AgentFocusChangedEvent,
    BrowserConnectedEvent,
    BrowserErrorEvent,
    BrowserStoppedEvent,
    NavigationCompleteEvent,
    NavigationStartedEvent,
    TabClosedEvent,
    TabCreatedEvent,
)
from vigil.exceptions import BrowserError
from vigil.utils.domain import is_new_tab_page, is_url_allowed
from vigil.watchdogs import (
    BaseWatchdog,
    CrashWatchdog,
    NetworkWatchdog,
    PermissionsWatchdog,
    PopupsWatchdog,
    SecurityWatchdog,
)

logger = logging.getLogger(__name__)

AttachmentMode = Literal["exclusive", "shared"]

MAX_BROWSER_ERRORS = 20
MAX_RECENT_DIALOGS = 5

CAPTURE_STATE_JS = """
() => {
  const selector = 'a[href], button, input, select, textarea, summary, [role="button"], [role="link"], '
    + '[role="checkbox"], [role="tab"], [role="menuitem"], [onclick], [contenteditable="true"]';
  const attr = '%(attr)s';
  document.querySelectorAll('[' + attr + ']').forEach((el) => el.removeAttribute(attr));

  const elements = {};
  let index = 0;
  for (const el of document.querySelectorAll(selector)) {
    const rect = el.getBoundingClientRect();
    const style = window.getComputedStyle(el);
    if (rect.width === 0 || rect.height === 0 || style.visibility === 'hidden' || style.display === 'none') {
      continue;
    }
    el.setAttribute(attr, String(index));
    const attributes = {};
    for (const name of ['type', 'name', 'placeholder', 'aria-label', 'href', 'value', 'role', 'title']) {
      const value = el.getAttribute(name);
      if (value) attributes[name] = value.slice(0, 100);
    }
    elements[index] = {
      tag: el.tagName.toLowerCase(),
      text: (el.innerText || el.value || '').trim().slice(0, 100),
      attributes,
    };
    index += 1;
  }

  const scrollY = window.scrollY || 0;
  const viewport = window.innerHeight || 0;
  const total = document.documentElement ? document.documentElement.scrollHeight : 0;
  return {
    elements,
    pixels_above: Math.round(scrollY),
    pixels_below: Math.max(0, Math.round(total - viewport - scrollY)),
  };
}
""" % {"attr": ELEMENT_INDEX_ATTR}


class BrowserSession(BaseModel):
    """
    Browser session shared by one or more agents.

    Usage:
        session = BrowserSession(profile=BrowserProfile(headless=False))
        await session.start()
        await session.navigate("https://example.com")
        state = await session.get_browser_state_with_recovery()
        # ... do work ...
        await session.stop()
    """

    model_config = {"arbitrary_types_allowed": True}

    id: str = Field(default_factory=lambda: str(uuid4()))
    profile: BrowserProfile = Field(default_factory=BrowserProfile)

    # Runtime handles; tests may assign fakes before start()
    browser: Any = Field(default=None, exclude=True)
    browser_context: Any = Field(default=None, exclude=True)
    cdp_client: Any = Field(default=None, exclude=True)

    # Private state
    _event_bus: EventBus = PrivateAttr()
    _tabs: dict[str, TabInfo] = PrivateAttr(default_factory=dict)
    _pages: dict[str, Any] = PrivateAttr(default_factory=dict)
    _focused_tab_id: str | None = PrivateAttr(default=None)
    _watchdogs: list[BaseWatchdog] = PrivateAttr(default_factory=list)
    _attached_agents: list[str] = PrivateAttr(default_factory=list)
    _attachment_mode: AttachmentMode | None = PrivateAttr(default=None)
    _browser_errors: deque = PrivateAttr(default_factory=lambda: deque(maxlen=MAX_BROWSER_ERRORS))
    _recent_dialogs: deque = PrivateAttr(default_factory=lambda: deque(maxlen=MAX_RECENT_DIALOGS))
    _playwright: Any = PrivateAttr(default=None)
    _chrome_process: Any = PrivateAttr(default=None)
    _cdp_url: str | None = PrivateAttr(default=None)
    _connected: bool = PrivateAttr(default=False)
    _stopping: bool = PrivateAttr(default=False)
    _start_lock: asyncio.Lock | None = PrivateAttr(default=None)
    _context_page_listener: Any = PrivateAttr(default=None)

    def model_post_init(self, __context: Any) -> None:
        self._event_bus = EventBus(name=f"BrowserSession-{self.id[-4:]}")
        self._event_bus.on(
            BrowserErrorEvent,
            self._record_browser_error,
            handler_id="BrowserSession.on_BrowserErrorEvent",
        )

    # ===== Properties =====

    @property
    def event_bus(self) -> EventBus:
        return self._event_bus

    @property
    def is_connected(self) -> bool:
        """Check if session is connected to browser."""
        return self._connected

    @property
    def cdp_url(self) -> str | None:
        return self._cdp_url

    @property
    def tabs(self) -> list[TabInfo]:
        """Open tabs in creation order."""
        return list(self._tabs.values())

    @property
    def active_tab(self) -> TabInfo | None:
        """The focused tab, if any."""
        if self._focused_tab_id is None:
            return None
        return self._tabs.get(self._focused_tab_id)

    @property
    def browser_errors(self) -> list[str]:
        """Most recent browser errors, oldest first."""
        return list(self._browser_errors)

    @property
    def watchdogs(self) -> list[BaseWatchdog]:
        return list(self._watchdogs)

    # ===== Lifecycle =====

    async def start(self) -> "BrowserSession":
        """
        Connect to the browser. Calling it again while connected is a no-op.

        Raises:
            BrowserError: If the browser cannot be launched or reached
        """
        if self._connected:
            return self

        if self._start_lock is None:
            self._start_lock = asyncio.Lock()

        async with self._start_lock:
            if self._connected:
                return self

            try:
                await self._connect()
                await self._adopt_existing_pages()
            except Exception as e:
                logger.error(f"Browser start failed: {e}")
                await self._emit_error("BrowserStartFailed", str(e) or type(e).__name__, {"cdp_url": self._cdp_url})
                await self._teardown(force=True)
                raise BrowserError(f"Failed to start browser: {e}") from e

            self._connected = True
            self.attach_all_watchdogs()
            await self._event_bus.dispatch(BrowserConnectedEvent(cdp_url=self._cdp_url or ""))
            logger.info(f"Browser session started ({len(self._tabs)} tabs)")

        return self

    async def _connect(self) -> None:
        if self.browser_context is None:
            from cdp_use import CDPClient
            from playwright.async_api import async_playwright

            if self.profile.cdp_url:
                self._cdp_url = self.profile.cdp_url
            else:
                self._chrome_process, self._cdp_url = await launch_chrome(self.profile)

            logger.info(f"Connecting to Chrome at {self._cdp_url}")
            self._playwright = await async_playwright().start()
            self.browser = await self._playwright.chromium.connect_over_cdp(self._cdp_url)
            self.browser_context = (
                self.browser.contexts[0] if self.browser.contexts else await self.browser.new_context()
            )

            if self.cdp_client is None:
                ws_url = await resolve_ws_url(self._cdp_url)
                self.cdp_client = CDPClient(ws_url)
                await self.cdp_client.start()

        self._context_page_listener = self._on_context_page
        with contextlib.suppress(AttributeError):
            self.browser_context.on("page", self._context_page_listener)

    async def _adopt_existing_pages(self) -> None:
        for page in list(getattr(self.browser_context, "pages", None) or []):
            await self.adopt_page(page)

        if not self._tabs:
            page = await self.browser_context.new_page()
            await self.adopt_page(page, url="about:blank")

    async def _on_context_page(self, page: Any) -> None:
        """Pages opened by sites (window.open, target=_blank)."""
        if self.get_tab_for_page(page) is None and not self._stopping:
            await self.adopt_page(page)

    async def stop(self) -> None:
        """Stop browser session and cleanup. Safe to call repeatedly."""
        await self._shutdown(force=False, reason="stopped")

    async def kill(self) -> None:
        """Stop the session and force-kill a browser process we launched."""
        await self._shutdown(force=True, reason="killed")

    async def _shutdown(self, force: bool, reason: str) -> None:
        if self._stopping:
            return

        was_active = self._connected or self.browser_context is not None or bool(self._watchdogs)
        self._stopping = True
        try:
            if was_active:
                await self._event_bus.dispatch(BrowserStoppedEvent(reason=reason))
            self.detach_watchdogs()
            await self._teardown(force=force)
            self._tabs.clear()
            self._pages.clear()
            self._focused_tab_id = None
            self._attached_agents.clear()
            self._attachment_mode = None
            self._connected = False
        finally:
            self._stopping = False

        if was_active:
            logger.info(f"Browser session {reason}")

    async def _teardown(self, force: bool = False) -> None:
        if self.browser_context is not None and self._context_page_listener is not None:
            try:
                self.browser_context.remove_listener("page", self._context_page_listener)
            except Exception as e:
                logger.debug(f"Could not remove page listener: {e}")
        self._context_page_listener = None

        if self.cdp_client is not None and self._playwright is not None:
            try:
                await self.cdp_client.stop()
            except Exception as e:
                logger.warning(f"Error stopping CDP client: {e}")

        if self._playwright is not None:
            try:
                if self.browser is not None:
                    await self.browser.close()
            except Exception as e:
                logger.warning(f"Error closing browser connection: {e}")
            try:
                await self._playwright.stop()
            except Exception as e:
                logger.warning(f"Error stopping Playwright: {e}")

        terminate_chrome(self._chrome_process, force=force)

        self._playwright = None
        self._chrome_process = None
        self.browser = None
        self.browser_context = None
        self.cdp_client = None

    async def __aenter__(self) -> "BrowserSession":
        await self.start()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.stop()

    def model_copy_isolated(self) -> "BrowserSession":
        """A fresh, unconnected session with a copy of this profile."""
        return BrowserSession(profile=self.profile.model_copy(deep=True))

    # ===== Watchdogs =====

    def attach_watchdog(self, watchdog: BaseWatchdog) -> BaseWatchdog:
        """Attach a watchdog to this session's bus."""
        watchdog.attach_to_session()
        self._watchdogs.append(watchdog)
        return watchdog

    def attach_all_watchdogs(self) -> None:
        """Attach the default watchdogs that are not attached yet."""
        defaults: list[type[BaseWatchdog]] = [
            CrashWatchdog,
            NetworkWatchdog,
            PermissionsWatchdog,
            PopupsWatchdog,
        ]
        if self.profile.allowed_domains:
            defaults.append(SecurityWatchdog)

        for watchdog_cls in defaults:
            if self.get_watchdog(watchdog_cls) is None:
                self.attach_watchdog(watchdog_cls(self))

    def get_watchdog(self, watchdog_cls: type[BaseWatchdog]) -> BaseWatchdog | None:
        for watchdog in self._watchdogs:
            if isinstance(watchdog, watchdog_cls):
                return watchdog
        return None

    def detach_watchdogs(self) -> None:
        for watchdog in self._watchdogs:
            watchdog.detach_from_session()
        self._watchdogs = []

    # ===== Claims =====

    def claim_agent(self, agent_id: str, mode: AttachmentMode = "exclusive") -> bool:
        """
        Register an agent as a user of this session.

        Args:
            agent_id: Agent identity
            mode: "exclusive" or "shared"

        Returns:
            True if the claim was granted
        """
        if mode not in ("exclusive", "shared"):
            raise ValueError(f"Unknown attachment mode: {mode}")

        agents = self._attached_agents
        if not agents:
            agents.append(agent_id)
            self._attachment_mode = mode
            return True

        if self._attachment_mode == "exclusive":
            if agents == [agent_id]:
                if mode == "shared":
                    self._attachment_mode = "shared"
                return True
            return False

        if mode == "shared":
            if agent_id not in agents:
                agents.append(agent_id)
            return True

        # exclusive over shared: only the sole claimant may take it
        if agents == [agent_id]:
            self._attachment_mode = "exclusive"
            return True
        return False

    def release_agent(self, agent_id: str) -> bool:
        """
        Remove an agent's claim.

        Returns:
            False if agent_id holds no claim while others do
        """
        agents = self._attached_agents
        if agent_id not in agents:
            return not agents

        agents.remove(agent_id)
        if not agents:
            self._attachment_mode = None
        return True

    def get_attached_agent_ids(self) -> list[str]:
        return list(self._attached_agents)

    def get_attached_agent_id(self) -> str | None:
        return self._attached_agents[0] if self._attached_agents else None

    @property
    def attachment_mode(self) -> AttachmentMode | None:
        return self._attachment_mode

    # ===== Tab table =====

    async def adopt_page(self, page: Any, target_id: str | None = None, url: str | None = None) -> TabInfo:
        """Add a page to the tab table (no-op for pages already tracked)."""
        existing = self.get_tab_for_page(page)
        if existing:
            return existing

        if target_id is None:
            target_id = await self._resolve_target_id(page)

        # the context "page" listener may have adopted it while we waited
        existing = self.get_tab_for_page(page)
        if existing:
            return existing

        tab = TabInfo(
            tab_id=uuid4().hex[:8],
            target_id=target_id,
            url=url if url is not None else (_page_url(page) or ""),
        )
        self._tabs[tab.tab_id] = tab
        self._pages[tab.tab_id] = page
        if self._focused_tab_id is None:
            self._focused_tab_id = tab.tab_id

        async def on_close(*_: Any) -> None:
            await self._remove_tab(tab.tab_id)

        with contextlib.suppress(AttributeError):
            page.on("close", on_close)

        logger.debug(f"Tab {tab.tab_id} adopted (target {target_id[-8:]})")
        await self._event_bus.dispatch(TabCreatedEvent(target_id=target_id, url=tab.url))
        return tab

    async def new_tab(self, url: str = "about:blank") -> TabInfo:
        """Open a tab, focus it and navigate it to url."""
        self._check_url_allowed(url)
        context = await self._require_context()

        page = await context.new_page()
        tab = await self.adopt_page(page, url="about:blank")
        await self._set_focus(tab.tab_id)

        if url and not is_new_tab_page(url):
            await self._goto(tab, url)
        return tab

    async def switch_tab(self, tab_id: str) -> TabInfo:
        """Focus a tab."""
        tab = self._tabs.get(tab_id)
        if tab is None:
            raise BrowserError(f"Tab {tab_id} not found")

        page = self._pages.get(tab_id)
        if page is not None:
            try:
                await page.bring_to_front()
            except Exception as e:
                logger.debug(f"Could not bring tab {tab_id} to front: {e}")

        await self._set_focus(tab_id)
        return tab

    async def close_tab(self, tab_id: str) -> None:
        """Close a tab. Focus moves to the last remaining tab."""
        if tab_id not in self._tabs:
            raise BrowserError(f"Tab {tab_id} not found")

        page = self._pages.get(tab_id)
        if page is not None:
            try:
                await page.close()
            except Exception as e:
                logger.debug(f"Error closing tab {tab_id}: {e}")

        await self._remove_tab(tab_id)

    async def navigate(self, url: str, new_tab: bool = False, tab_id: str | None = None) -> TabInfo:
        """
        Navigate the focused tab (or tab_id, or a new tab) to url.

        Raises:
            BrowserError: If url is outside allowed_domains or navigation fails
        """
        self._check_url_allowed(url)

        if new_tab:
            return await self.new_tab(url)

        tab = self._tabs.get(tab_id) if tab_id else self.active_tab
        if tab is None:
            if tab_id:
                raise BrowserError(f"Tab {tab_id} not found")
            return await self.new_tab(url)

        return await self._goto(tab, url)

    async def go_back(self) -> TabInfo:
        """Navigate the focused tab back in history."""
        tab, page = self._require_active()

        await self._event_bus.dispatch(NavigationStartedEvent(target_id=tab.target_id, url=tab.url))
        error: str | None = None
        try:
            await page.go_back(timeout=self.profile.navigation_timeout * 1000)
        except Exception as e:
            error = str(e)

        await self._refresh_tab(tab, page)
        await self._event_bus.dispatch(
            NavigationCompleteEvent(
                target_id=tab.target_id,
                url=tab.url,
                error_message=error,
                loading_status=self._loading_status(page),
            )
        )
        if error:
            raise BrowserError(f"Go back failed: {error}")
        return tab

    async def _goto(self, tab: TabInfo, url: str) -> TabInfo:
        page = self._pages[tab.tab_id]
        await self._event_bus.dispatch(NavigationStartedEvent(target_id=tab.target_id, url=url))

        status: int | None = None
        error: str | None = None
        try:
            response = await page.goto(url, timeout=self.profile.navigation_timeout * 1000)
            status = response.status if response is not None else None
        except Exception as e:
            error = str(e)
            logger.warning(f"Navigation to {url} failed: {e}")

        await self._refresh_tab(tab, page, fallback_url=url)
        await self._event_bus.dispatch(
            NavigationCompleteEvent(
                target_id=tab.target_id,
                url=tab.url,
                status=status,
                error_message=error,
                loading_status=self._loading_status(page),
            )
        )
        if error:
            raise BrowserError(f"Navigation to {url} failed: {error}")
        return tab

    async def _remove_tab(self, tab_id: str) -> None:
        tab = self._tabs.pop(tab_id, None)
        if tab is None:
            return
        self._pages.pop(tab_id, None)

        focus_changed = False
        if self._focused_tab_id == tab_id:
            self._focused_tab_id = next(reversed(self._tabs), None)
            focus_changed = True

        logger.debug(f"Tab {tab_id} closed")
        await self._event_bus.dispatch(TabClosedEvent(target_id=tab.target_id))

        new_focus = self.active_tab
        if focus_changed and new_focus is not None:
            await self._event_bus.dispatch(AgentFocusChangedEvent(target_id=new_focus.target_id, url=new_focus.url))

    async def _set_focus(self, tab_id: str) -> None:
        if self._focused_tab_id == tab_id:
            return
        self._focused_tab_id = tab_id
        tab = self._tabs[tab_id]
        await self._event_bus.dispatch(AgentFocusChangedEvent(target_id=tab.target_id, url=tab.url))

    async def _refresh_tab(self, tab: TabInfo, page: Any, fallback_url: str = "") -> None:
        tab.url = _page_url(page) or fallback_url or tab.url
        try:
            tab.title = await page.title()
        except Exception as e:
            logger.debug(f"Could not read title: {e}")

    async def _resolve_target_id(self, page: Any) -> str:
        context = self.browser_context
        if context is not None and hasattr(context, "new_cdp_session"):
            try:
                cdp_session = await context.new_cdp_session(page)
                try:
                    info = await cdp_session.send("Target.getTargetInfo")
                    return info["targetInfo"]["targetId"]
                finally:
                    await cdp_session.detach()
            except Exception as e:
                logger.debug(f"Could not resolve target id: {e}")
        return f"target-{uuid4().hex[:12]}"

    async def _require_context(self) -> Any:
        if self.browser_context is None:
            await self.start()
        return self.browser_context

    def _require_active(self) -> tuple[TabInfo, Any]:
        tab = self.active_tab
        page = self.get_current_page()
        if tab is None or page is None:
            raise BrowserError("No active tab")
        return tab, page

    def _check_url_allowed(self, url: str) -> None:
        if not is_url_allowed(url, self.profile.allowed_domains):
            raise BrowserError(f"Navigation to {url} blocked: domain not in allowed_domains")

    # ===== Queries =====

    def known_pages(self) -> list[Any]:
        """Pages in the browser context plus pages in the tab table."""
        pages: list[Any] = []
        context_pages = getattr(self.browser_context, "pages", None) or []
        for page in [*context_pages, *self._pages.values()]:
            if not any(page is known for known in pages):
                pages.append(page)
        return pages

    def get_current_page(self) -> Any | None:
        """Page of the focused tab."""
        if self._focused_tab_id is None:
            return None
        return self._pages.get(self._focused_tab_id)

    def get_tab_for_page(self, page: Any) -> TabInfo | None:
        for tab_id, tracked in self._pages.items():
            if tracked is page:
                return self._tabs.get(tab_id)
        return None

    def get_tab_by_target(self, target_id: str) -> TabInfo | None:
        for tab in self._tabs.values():
            if tab.target_id == target_id:
                return tab
        return None

    def get_focused_target_id(self) -> str | None:
        tab = self.active_tab
        return tab.target_id if tab else None

    async def execute_js(self, expression: str) -> Any:
        """
        Execute JavaScript in the focused page.

        Args:
            expression: JavaScript expression or function source

        Returns:
            Result of JS evaluation
        """
        _, page = self._require_active()
        try:
            return await page.evaluate(expression)
        except Exception as e:
            raise BrowserError(f"JS error: {e}") from e

    async def get_url(self) -> str:
        """Get current page URL."""
        _, page = self._require_active()
        return _page_url(page) or ""

    async def get_title(self) -> str:
        """Get current page title."""
        _, page = self._require_active()
        return await page.title()

    async def screenshot(self, full_page: bool = False) -> bytes:
        """
        Capture screenshot of current page.

        Args:
            full_page: If True, capture full scrollable page

        Returns:
            PNG image data as bytes
        """
        _, page = self._require_active()
        return await page.screenshot(full_page=full_page)

    # ===== Errors and dialogs =====

    async def _record_browser_error(self, event: BrowserErrorEvent) -> None:
        self._browser_errors.append(f"{event.error_type}: {event.message}")

    def record_dialog(self, message: str) -> None:
        self._recent_dialogs.append(message)

    async def _emit_error(self, error_type: str, message: str, details: dict[str, Any] | None = None) -> None:
        await self._event_bus.dispatch(
            BrowserErrorEvent(error_type=error_type, message=message, details=details or {})
        )

    def _loading_status(self, page: Any) -> str | None:
        network = self.get_watchdog(NetworkWatchdog)
        return network.loading_status(page) if network else None

    # ===== State capture =====

    async def get_browser_state_with_recovery(self, include_screenshot: bool = False) -> BrowserStateSummary:
        """
        Snapshot the focused page for the agent.

        Starts the session if needed. A failed capture is reported as
        BrowserErrorEvent(StateCaptureFailed), the tab is recovered and the
        capture retried once; after that a minimal summary from the tab table
        is returned instead of raising.
        """
        if not self._connected and self.browser_context is None:
            await self.start()

        try:
            return await self._capture_state(include_screenshot)
        except Exception as e:
            logger.warning(f"State capture failed: {e!r}")
            await self._emit_error(
                "StateCaptureFailed",
                str(e) or type(e).__name__,
                {"attempt": 1, "target_id": self.get_focused_target_id()},
            )

        try:
            await self._recover_active_tab()
            return await self._capture_state(include_screenshot)
        except Exception as e:
            logger.warning(f"State capture retry failed: {e!r}")
            await self._emit_error(
                "StateCaptureFailed",
                str(e) or type(e).__name__,
                {"attempt": 2, "target_id": self.get_focused_target_id()},
            )

        return self._minimal_state()

    async def _capture_state(self, include_screenshot: bool) -> BrowserStateSummary:
        if self.get_current_page() is None:
            await self.new_tab()
        tab, page = self._require_active()

        async def capture() -> BrowserStateSummary:
            title = await page.title()
            data = await page.evaluate(CAPTURE_STATE_JS) or {}
            screenshot = None
            if include_screenshot:
                screenshot = base64.b64encode(await page.screenshot()).decode("ascii")

            tab.url = _page_url(page) or tab.url
            tab.title = title
            return BrowserStateSummary(
                url=tab.url,
                title=title,
                tabs=[t.model_copy() for t in self._tabs.values()],
                active_tab_id=tab.tab_id,
                pixels_above=int(data.get("pixels_above", 0) or 0),
                pixels_below=int(data.get("pixels_below", 0) or 0),
                selector_map={int(k): v for k, v in (data.get("elements") or {}).items()},
                browser_errors=self.browser_errors,
                loading_status=self._loading_status(page),
                recent_dialogs=list(self._recent_dialogs),
                screenshot=screenshot,
            )

        return await asyncio.wait_for(capture(), timeout=self.profile.state_capture_timeout)

    async def _recover_active_tab(self) -> None:
        tab, page = self._require_active()
        try:
            await asyncio.wait_for(page.reload(), timeout=self.profile.navigation_timeout)
            return
        except Exception as e:
            logger.debug(f"Reload failed, replacing tab {tab.tab_id}: {e}")

        url = tab.url
        await self.close_tab(tab.tab_id)
        if url and not is_new_tab_page(url) and is_url_allowed(url, self.profile.allowed_domains):
            await self.new_tab(url)
        else:
            await self.new_tab()

    def _minimal_state(self) -> BrowserStateSummary:
        tab = self.active_tab
        return BrowserStateSummary(
            url=tab.url if tab else "",
            title=tab.title if tab else "",
            tabs=[t.model_copy() for t in self._tabs.values()],
            active_tab_id=tab.tab_id if tab else None,
            browser_errors=self.browser_errors,
            recent_dialogs=list(self._recent_dialogs),
            is_minimal=True,
        )


def _page_url(page: Any) -> str | None:
    try:
        url = page.url
    except Exception:
        return None
    return url if isinstance(url, str) else None
