"""Tests for BrowserSession lifecycle, tab table and state capture."""

import pytest

from conftest import FakeContext, FakeRequest, collect, collect_errors, make_session

from vigil.browser.session import BrowserSession
from vigil.events.types import (
    AgentFocusChangedEvent,
    BrowserConnectedEvent,
    BrowserStoppedEvent,
    NavigationCompleteEvent,
    NavigationStartedEvent,
    TabClosedEvent,
    TabCreatedEvent,
)
from vigil.exceptions import BrowserError
from vigil.watchdogs import CrashWatchdog, NetworkWatchdog, SecurityWatchdog


# ── Start / stop ──────────────────────────────────────────────────────────────


class TestLifecycle:
    @pytest.mark.asyncio
    async def test_start_adopts_existing_pages(self):
        context = FakeContext(pages=2)
        s = make_session(context)
        created = collect(s, TabCreatedEvent)
        connected = collect(s, BrowserConnectedEvent)

        await s.start()
        try:
            assert s.is_connected
            assert len(s.tabs) == 2
            assert [e.target_id for e in created] == [p.target_id for p in context.pages]
            assert s.get_current_page() is context.pages[0]
            assert len(connected) == 1
        finally:
            await s.stop()

    @pytest.mark.asyncio
    async def test_start_creates_blank_tab_when_no_pages(self, session, context):
        assert len(session.tabs) == 1
        assert session.active_tab.url == "about:blank"
        assert len(context.pages) == 1

    @pytest.mark.asyncio
    async def test_start_is_idempotent(self):
        s = make_session()
        connected = collect(s, BrowserConnectedEvent)

        await s.start()
        await s.start()
        try:
            assert len(connected) == 1
            assert len(s.tabs) == 1
        finally:
            await s.stop()

    @pytest.mark.asyncio
    async def test_start_attaches_default_watchdogs(self, session):
        assert session.get_watchdog(CrashWatchdog) is not None
        assert session.get_watchdog(NetworkWatchdog) is not None
        assert session.get_watchdog(SecurityWatchdog) is None

    @pytest.mark.asyncio
    async def test_security_watchdog_only_with_allowed_domains(self):
        s = make_session(allowed_domains=["example.com"])
        await s.start()
        try:
            assert s.get_watchdog(SecurityWatchdog) is not None
        finally:
            await s.stop()

    @pytest.mark.asyncio
    async def test_stop_clears_state_and_is_idempotent(self):
        s = make_session()
        stopped = collect(s, BrowserStoppedEvent)
        await s.start()

        await s.stop()
        await s.stop()

        assert len(stopped) == 1
        assert stopped[0].reason == "stopped"
        assert s.tabs == []
        assert s.active_tab is None
        assert s.watchdogs == []
        assert not s.is_connected
        assert s.browser_context is None

    @pytest.mark.asyncio
    async def test_kill_reports_reason(self):
        s = make_session()
        stopped = collect(s, BrowserStoppedEvent)
        await s.start()

        await s.kill()
        assert stopped[0].reason == "killed"

    @pytest.mark.asyncio
    async def test_stop_without_start_dispatches_nothing(self):
        s = BrowserSession()
        stopped = collect(s, BrowserStoppedEvent)

        await s.stop()
        assert stopped == []

    @pytest.mark.asyncio
    async def test_context_manager(self):
        s = make_session()
        async with s:
            assert s.is_connected
        assert not s.is_connected


# ── Tabs ──────────────────────────────────────────────────────────────────────


class TestTabs:
    @pytest.mark.asyncio
    async def test_new_tab_focuses_and_navigates(self, session):
        focus = collect(session, AgentFocusChangedEvent)
        completed = collect(session, NavigationCompleteEvent)

        tab = await session.new_tab("https://example.com")

        assert session.active_tab is tab
        assert tab.url == "https://example.com"
        assert len(session.tabs) == 2
        assert focus[0].target_id == tab.target_id
        assert completed[0].status == 200

    @pytest.mark.asyncio
    async def test_switch_tab(self, session):
        first = session.active_tab
        await session.new_tab()

        await session.switch_tab(first.tab_id)
        assert session.active_tab is first
        assert session.get_focused_target_id() == first.target_id

    @pytest.mark.asyncio
    async def test_switch_to_unknown_tab_raises(self, session):
        with pytest.raises(BrowserError, match="not found"):
            await session.switch_tab("nope")

    @pytest.mark.asyncio
    async def test_closing_focused_tab_moves_focus_to_last_tab(self, session):
        first = session.active_tab
        second = await session.new_tab()
        third = await session.new_tab()
        await session.switch_tab(second.tab_id)
        closed = collect(session, TabClosedEvent)

        await session.close_tab(second.tab_id)

        assert [t.tab_id for t in session.tabs] == [first.tab_id, third.tab_id]
        assert session.active_tab is third
        assert [e.target_id for e in closed] == [second.target_id]

    @pytest.mark.asyncio
    async def test_closing_last_tab_clears_focus(self, session):
        await session.close_tab(session.active_tab.tab_id)
        assert session.tabs == []
        assert session.active_tab is None
        assert session.get_current_page() is None

    @pytest.mark.asyncio
    async def test_page_closed_by_browser_leaves_tab_table(self, session, context):
        await session.new_tab()
        page = context.pages[-1]

        await page.close()
        assert len(session.tabs) == 1
        assert session.get_tab_for_page(page) is None

    @pytest.mark.asyncio
    async def test_popup_is_adopted_without_stealing_focus(self, session, context):
        focused = session.active_tab
        popup = await context.open_popup("https://example.com/popup")

        tab = session.get_tab_for_page(popup)
        assert tab is not None
        assert tab.url == "https://example.com/popup"
        assert session.active_tab is focused

    @pytest.mark.asyncio
    async def test_adopt_page_twice_is_noop(self, session, context):
        page = context.pages[0]
        tab = await session.adopt_page(page)
        assert tab is session.tabs[0]
        assert len(session.tabs) == 1


# ── Navigation ────────────────────────────────────────────────────────────────


class TestNavigation:
    @pytest.mark.asyncio
    async def test_navigate_updates_focused_tab(self, session):
        started = collect(session, NavigationStartedEvent)

        tab = await session.navigate("https://example.com/a")

        assert tab is session.active_tab
        assert await session.get_url() == "https://example.com/a"
        assert started[0].url == "https://example.com/a"

    @pytest.mark.asyncio
    async def test_navigate_in_new_tab(self, session):
        tab = await session.navigate("https://example.com", new_tab=True)
        assert len(session.tabs) == 2
        assert session.active_tab is tab

    @pytest.mark.asyncio
    async def test_disallowed_navigation_raises_before_io(self):
        context = FakeContext()
        s = make_session(context, allowed_domains=["example.com"])
        await s.start()
        started = collect(s, NavigationStartedEvent)
        try:
            with pytest.raises(BrowserError, match="blocked"):
                await s.navigate("https://evil.test/")
            assert started == []
            assert context.pages[0].url == "about:blank"
        finally:
            await s.stop()

    @pytest.mark.asyncio
    async def test_failed_navigation_raises_and_reports(self, session, context):
        context.pages[0].goto_error = RuntimeError("net::ERR_NAME_NOT_RESOLVED")
        completed = collect(session, NavigationCompleteEvent)

        with pytest.raises(BrowserError, match="ERR_NAME_NOT_RESOLVED"):
            await session.navigate("https://example.com")

        assert completed[0].error_message == "net::ERR_NAME_NOT_RESOLVED"

    @pytest.mark.asyncio
    async def test_go_back(self, session):
        await session.navigate("https://example.com/a")
        await session.navigate("https://example.com/b")

        tab = await session.go_back()
        assert tab.url == "https://example.com/a"

    @pytest.mark.asyncio
    async def test_execute_js_wraps_errors(self, session, context):
        context.pages[0].evaluate_error = RuntimeError("ReferenceError: foo")

        with pytest.raises(BrowserError, match="JS error"):
            await session.execute_js("foo()")


# ── State capture ─────────────────────────────────────────────────────────────


class TestStateCapture:
    @pytest.mark.asyncio
    async def test_snapshot_contents(self, session, context):
        page = context.pages[0]
        await session.navigate("https://example.com")
        page._title = "Example"
        page.state = {
            "elements": {"0": {"tag": "button", "text": "Go", "attributes": {}}},
            "pixels_above": 10,
            "pixels_below": 250,
        }

        state = await session.get_browser_state_with_recovery()

        assert state.url == "https://example.com"
        assert state.title == "Example"
        assert state.pixels_above == 10
        assert state.pixels_below == 250
        assert state.selector_map == {0: {"tag": "button", "text": "Go", "attributes": {}}}
        assert state.active_tab_id == session.active_tab.tab_id
        assert not state.is_minimal
        assert "[0]<button>Go</button>" in state.elements_text()

    @pytest.mark.asyncio
    async def test_snapshot_includes_browser_errors_and_loading_status(self, session, context):
        page = context.pages[0]
        await session.get_watchdog(CrashWatchdog).emit_error("TargetCrash", "boom")
        await page.emit("request", FakeRequest())

        state = await session.get_browser_state_with_recovery()
        assert state.browser_errors == ["TargetCrash: boom"]
        assert state.loading_status == "Loading: 1 pending network request"

    @pytest.mark.asyncio
    async def test_screenshot_is_base64(self, session):
        state = await session.get_browser_state_with_recovery(include_screenshot=True)
        assert state.screenshot is not None

    @pytest.mark.asyncio
    async def test_failed_capture_reloads_and_retries(self, session, context):
        page = context.pages[0]
        page.evaluate_error = RuntimeError("Execution context was destroyed")
        errors = collect_errors(session)

        state = await session.get_browser_state_with_recovery()

        assert not state.is_minimal
        assert page.reloads == 1
        assert [e.error_type for e in errors] == ["StateCaptureFailed"]
        assert errors[0].details["attempt"] == 1

    @pytest.mark.asyncio
    async def test_failed_reload_replaces_tab(self, session, context):
        await session.navigate("https://example.com/page")
        page = context.pages[0]
        page.evaluate_error = RuntimeError("detached")
        page.reload_error = RuntimeError("reload failed")

        state = await session.get_browser_state_with_recovery()

        assert not state.is_minimal
        assert page.closed
        assert session.get_current_page() is not page
        assert state.url == "https://example.com/page"
        assert len(session.tabs) == 1

    @pytest.mark.asyncio
    async def test_second_failure_returns_minimal_state(self, context):
        s = make_session(context, state_capture_timeout=0.05)
        await s.start()
        errors = collect_errors(s)
        try:
            context.pages[0].evaluate_hangs = True

            state = await s.get_browser_state_with_recovery()

            assert state.is_minimal
            assert state.active_tab_id == s.active_tab.tab_id
            assert [e.details["attempt"] for e in errors] == [1, 2]
        finally:
            await s.stop()

    @pytest.mark.asyncio
    async def test_capture_opens_tab_on_demand(self):
        s = BrowserSession()
        s.browser_context = FakeContext()
        state = await s.get_browser_state_with_recovery()
        assert state.url == "about:blank"
        assert len(s.tabs) == 1
        await s.stop()
