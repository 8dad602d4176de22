"""Shared fakes: Playwright-like pages/contexts and a cdp-use-like client. No real browser needed."""

import asyncio
import inspect
import itertools
from collections import defaultdict
from types import SimpleNamespace
from typing import Any

import pytest
import pytest_asyncio

from vigil.browser.profile import BrowserProfile
from vigil.browser.session import BrowserSession
from vigil.events.types import BrowserErrorEvent

_target_ids = itertools.count(1)


class FakeResponse:
    def __init__(self, status: int = 200):
        self.status = status


class FakeRequest:
    def __init__(self, url: str = "https://example.com/api", method: str = "GET"):
        self.url = url
        self.method = method


class FakeDialog:
    def __init__(self, type: str = "alert", message: str = "Hello"):
        self.type = type
        self.message = message
        self.accepted = False
        self.dismissed = False

    async def accept(self, prompt_text: str | None = None) -> None:
        self.accepted = True

    async def dismiss(self) -> None:
        self.dismissed = True


class FakeLocator:
    def __init__(self, selector: str, fail: Exception | None = None):
        self.selector = selector
        self.fail = fail
        self.calls: list[tuple[str, Any]] = []

    async def _record(self, name: str, value: Any = None) -> None:
        if self.fail is not None:
            raise self.fail
        self.calls.append((name, value))

    async def scroll_into_view_if_needed(self, timeout: float | None = None) -> None:
        await self._record("scroll")

    async def click(self, timeout: float | None = None) -> None:
        await self._record("click")

    async def fill(self, text: str, timeout: float | None = None) -> None:
        await self._record("fill", text)

    async def press_sequentially(self, text: str, timeout: float | None = None) -> None:
        await self._record("type", text)


class FakeKeyboard:
    def __init__(self):
        self.pressed: list[str] = []

    async def press(self, key: str) -> None:
        self.pressed.append(key)


class FakePage:
    """Enough of playwright.async_api.Page for the session and watchdogs."""

    def __init__(self, url: str = "about:blank", title: str = "", context: "FakeContext | None" = None):
        self.url = url
        self._title = title
        self.context = context
        self.target_id = f"T{next(_target_ids)}"
        self.listeners: dict[str, list] = defaultdict(list)
        self.on_calls: list[tuple[str, Any]] = []
        self.remove_calls: list[tuple[str, Any]] = []
        self.closed = False
        self.keyboard = FakeKeyboard()
        self.locators: dict[str, FakeLocator] = {}
        self.locator_error: Exception | None = None

        # evaluate() behaviour
        self.state: dict[str, Any] = {"elements": {}, "pixels_above": 0, "pixels_below": 0}
        self.evaluate_error: Exception | None = None
        self.evaluate_hangs = False
        self.evaluated: list[str] = []

        self.goto_error: Exception | None = None
        self.reload_error: Exception | None = None
        self.history: list[str] = []
        self.reloads = 0

    # events
    def on(self, event: str, listener) -> None:
        self.listeners[event].append(listener)
        self.on_calls.append((event, listener))

    def remove_listener(self, event: str, listener) -> None:
        if listener in self.listeners[event]:
            self.listeners[event].remove(listener)
        self.remove_calls.append((event, listener))

    async def emit(self, event: str, *args: Any) -> None:
        for listener in list(self.listeners[event]):
            result = listener(*args)
            if inspect.isawaitable(result):
                await result

    # page api
    async def title(self) -> str:
        return self._title

    async def evaluate(self, expression: str) -> Any:
        self.evaluated.append(expression)
        if self.evaluate_hangs:
            await asyncio.Event().wait()
        if self.evaluate_error is not None:
            raise self.evaluate_error
        if expression == "1":
            return 1
        if "querySelectorAll" in expression:
            return self.state
        return None

    async def goto(self, url: str, timeout: float | None = None) -> FakeResponse:
        if self.goto_error is not None:
            raise self.goto_error
        self.history.append(self.url)
        self.url = url
        return FakeResponse(200)

    async def go_back(self, timeout: float | None = None) -> None:
        if self.history:
            self.url = self.history.pop()

    async def reload(self, timeout: float | None = None) -> None:
        self.reloads += 1
        if self.reload_error is not None:
            raise self.reload_error
        self.evaluate_error = None

    async def close(self) -> None:
        if self.closed:
            return
        self.closed = True
        if self.context is not None and self in self.context.pages:
            self.context.pages.remove(self)
        await self.emit("close", self)

    def is_closed(self) -> bool:
        return self.closed

    async def bring_to_front(self) -> None:
        pass

    async def screenshot(self, full_page: bool = False) -> bytes:
        return b"\x89PNG fake"

    def locator(self, selector: str) -> FakeLocator:
        if selector not in self.locators:
            self.locators[selector] = FakeLocator(selector, fail=self.locator_error)
        return self.locators[selector]


class FakeCDPSession:
    def __init__(self, page: FakePage):
        self._page = page

    async def send(self, method: str, params: dict | None = None) -> dict:
        return {"targetInfo": {"targetId": self._page.target_id}}

    async def detach(self) -> None:
        pass


class FakeContext:
    """Enough of playwright.async_api.BrowserContext."""

    def __init__(self, pages: int = 0):
        self.pages: list[FakePage] = []
        self.listeners: dict[str, list] = defaultdict(list)
        self.granted: list[list[str]] = []
        self.grant_error: Exception | None = None
        for _ in range(pages):
            self.pages.append(FakePage(context=self))

    def on(self, event: str, listener) -> None:
        self.listeners[event].append(listener)

    def remove_listener(self, event: str, listener) -> None:
        if listener in self.listeners[event]:
            self.listeners[event].remove(listener)

    async def new_page(self) -> FakePage:
        page = FakePage(context=self)
        self.pages.append(page)
        return page

    async def open_popup(self, url: str) -> FakePage:
        """A page opened by the site itself (window.open)."""
        page = FakePage(url=url, context=self)
        self.pages.append(page)
        for listener in list(self.listeners["page"]):
            result = listener(page)
            if inspect.isawaitable(result):
                await result
        return page

    async def grant_permissions(self, permissions: list[str]) -> None:
        if self.grant_error is not None:
            raise self.grant_error
        self.granted.append(list(permissions))

    async def new_cdp_session(self, page: FakePage) -> FakeCDPSession:
        return FakeCDPSession(page)


class FakeCDPClient:
    """Mimics cdp_use.CDPClient's client.send.Domain.method(params) surface."""

    def __init__(self, error: Exception | None = None):
        self.error = error
        self.calls: list[dict] = []
        self.send = SimpleNamespace(Browser=SimpleNamespace(grantPermissions=self._grant_permissions))

    async def _grant_permissions(self, params: dict) -> dict:
        self.calls.append(params)
        if self.error is not None:
            raise self.error
        return {}


def make_profile(**overrides: Any) -> BrowserProfile:
    """Profile with slow background loops so tests drive checks explicitly."""
    values: dict[str, Any] = {
        "health_check_interval": 3600,
        "network_sweep_interval": 3600,
        "network_idle_threshold": 0,
    }
    values.update(overrides)
    return BrowserProfile(**values)


def make_session(context: FakeContext | None = None, **profile_overrides: Any) -> BrowserSession:
    session = BrowserSession(profile=make_profile(**profile_overrides))
    session.browser_context = context if context is not None else FakeContext()
    return session


def collect(session: BrowserSession, event_type: type) -> list:
    """Record every dispatched event of event_type on the session bus."""
    seen: list = []
    session.event_bus.on(event_type, seen.append, allow_duplicate=True)
    return seen


def collect_errors(session: BrowserSession) -> list[BrowserErrorEvent]:
    return collect(session, BrowserErrorEvent)


@pytest.fixture
def context() -> FakeContext:
    return FakeContext()


@pytest_asyncio.fixture
async def session(context: FakeContext):
    """A started session over a fake browser context."""
    s = make_session(context)
    await s.start()
    yield s
    await s.stop()
