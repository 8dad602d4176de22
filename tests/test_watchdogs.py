"""Tests for the network, permissions, security and popups watchdogs."""

import pytest

from conftest import (
    FakeCDPClient,
    FakeContext,
    FakeDialog,
    FakeRequest,
    collect,
    collect_errors,
    make_session,
)

from vigil.browser.profile import DEFAULT_PERMISSIONS
from vigil.events.types import DialogOpenedEvent, NavigationCompleteEvent, NetworkIdleEvent
from vigil.watchdogs import NetworkWatchdog


# ── Network ───────────────────────────────────────────────────────────────────


class TestNetworkWatchdog:
    @pytest.mark.asyncio
    async def test_tracks_pending_requests(self, session, context):
        page = context.pages[0]
        network = session.get_watchdog(NetworkWatchdog)
        request = FakeRequest()

        await page.emit("request", request)
        assert network.pending_count == 1
        assert not network.is_idle
        assert network.loading_status(page) == "Loading: 1 pending network request"

        await page.emit("requestfinished", request)
        assert network.pending_count == 0
        assert network.loading_status(page) is None

    @pytest.mark.asyncio
    async def test_failed_request_is_pruned(self, session, context):
        page = context.pages[0]
        network = session.get_watchdog(NetworkWatchdog)
        request = FakeRequest()

        await page.emit("request", request)
        await page.emit("requestfailed", request)
        assert network.pending_count == 0

    @pytest.mark.asyncio
    async def test_ignores_data_and_extension_urls(self, session, context):
        page = context.pages[0]
        network = session.get_watchdog(NetworkWatchdog)

        await page.emit("request", FakeRequest(url="data:image/png;base64,AAAA"))
        await page.emit("request", FakeRequest(url="chrome-extension://abc/script.js"))
        assert network.pending_count == 0

    @pytest.mark.asyncio
    async def test_stale_request_reported_once(self, context):
        s = make_session(context, network_timeout=0)
        await s.start()
        errors = collect_errors(s)
        page = context.pages[0]
        network = s.get_watchdog(NetworkWatchdog)
        try:
            await page.emit("request", FakeRequest(url="https://api.example.com/slow", method="POST"))

            await network.sweep()
            await network.sweep()

            timeouts = [e for e in errors if e.error_type == "NetworkTimeout"]
            assert len(timeouts) == 1
            assert timeouts[0].details["url"] == "https://api.example.com/slow"
            assert timeouts[0].details["method"] == "POST"
            assert timeouts[0].details["target_id"] == page.target_id
        finally:
            await s.stop()

    @pytest.mark.asyncio
    async def test_idle_event_on_transition(self, session, context):
        page = context.pages[0]
        network = session.get_watchdog(NetworkWatchdog)
        idle = collect(session, NetworkIdleEvent)
        request = FakeRequest()

        await page.emit("request", request)
        await network.sweep()
        assert idle == []

        await page.emit("requestfinished", request)
        await network.sweep()
        await network.sweep()
        assert len(idle) == 1
        assert idle[0].target_id == session.get_focused_target_id()

    @pytest.mark.asyncio
    async def test_closed_tab_listeners_removed(self, session, context):
        await session.new_tab()
        page = context.pages[-1]
        network = session.get_watchdog(NetworkWatchdog)
        await page.emit("request", FakeRequest())

        await page.close()

        removed = {event for event, _ in page.remove_calls}
        assert {"request", "requestfinished", "requestfailed"} <= removed
        assert network.pending_count == 0

    @pytest.mark.asyncio
    async def test_wait_for_idle(self, session, context):
        network = session.get_watchdog(NetworkWatchdog)
        assert await network.wait_for_idle(timeout=1) is True

        await context.pages[0].emit("request", FakeRequest())
        assert await network.wait_for_idle(timeout=0.15) is False


# ── Permissions ───────────────────────────────────────────────────────────────


class TestPermissionsWatchdog:
    @pytest.mark.asyncio
    async def test_grants_via_cdp(self, context):
        s = make_session(context)
        s.cdp_client = FakeCDPClient()
        client = s.cdp_client
        await s.start()
        try:
            assert client.calls == [{"permissions": DEFAULT_PERMISSIONS}]
            assert context.granted == []
        finally:
            await s.stop()

    @pytest.mark.asyncio
    async def test_falls_back_to_context_when_cdp_fails(self, context):
        s = make_session(context, permissions=["geolocation"])
        s.cdp_client = FakeCDPClient(error=RuntimeError("Browser.grantPermissions failed"))
        errors = collect_errors(s)
        await s.start()
        try:
            assert context.granted == [["geolocation"]]
            assert errors == []
        finally:
            await s.stop()

    @pytest.mark.asyncio
    async def test_context_grant_without_cdp_client(self, session, context):
        assert context.granted == [DEFAULT_PERMISSIONS]

    @pytest.mark.asyncio
    async def test_both_paths_failing_emits_error_without_raising(self):
        context = FakeContext()
        context.grant_error = RuntimeError("Unknown permission: teleport")
        s = make_session(context, permissions=["teleport"])
        s.cdp_client = FakeCDPClient(error=RuntimeError("Invalid permission"))
        errors = collect_errors(s)

        await s.start()
        try:
            assert s.is_connected
            assert len(errors) == 1
            assert errors[0].error_type == "PermissionsWatchdogError"
            assert errors[0].message == "Unknown permission: teleport"
            assert errors[0].details["mode"] == "playwright"
            assert errors[0].details["cdp_error"] == "Invalid permission"
        finally:
            await s.stop()

    @pytest.mark.asyncio
    async def test_no_grant_path_emits_error(self):
        class NoGrantContext(FakeContext):
            grant_permissions = None

        s = make_session(NoGrantContext(), permissions=["geolocation"])
        errors = collect_errors(s)

        await s.start()
        try:
            assert s.is_connected
            assert len(errors) == 1
            assert errors[0].error_type == "PermissionsWatchdogError"
            assert errors[0].message == "no grant path available"
            assert errors[0].details["mode"] == "none"
        finally:
            await s.stop()

    @pytest.mark.asyncio
    async def test_empty_permissions_grant_nothing(self):
        context = FakeContext()
        s = make_session(context, permissions=[])
        await s.start()
        try:
            assert context.granted == []
        finally:
            await s.stop()


# ── Security ──────────────────────────────────────────────────────────────────


class TestSecurityWatchdog:
    @pytest.mark.asyncio
    async def test_disallowed_navigation_redirected_to_blank(self, context):
        s = make_session(context, allowed_domains=["example.com"])
        await s.start()
        errors = collect_errors(s)
        try:
            tab = s.active_tab
            # server-side redirect landed outside the allow list
            context.pages[0].url = "https://evil.test/"
            await s.event_bus.dispatch(NavigationCompleteEvent(target_id=tab.target_id, url="https://evil.test/"))

            assert [e.error_type for e in errors] == ["NavigationBlocked"]
            assert errors[0].details["reason"] == "evil.test is not in allowed_domains"
            assert context.pages[0].url == "about:blank"
        finally:
            await s.stop()

    @pytest.mark.asyncio
    async def test_allowed_navigation_passes(self, context):
        s = make_session(context, allowed_domains=["*.example.com"])
        await s.start()
        errors = collect_errors(s)
        try:
            await s.navigate("https://docs.example.com/")
            assert errors == []
            assert s.active_tab.url == "https://docs.example.com/"
        finally:
            await s.stop()

    @pytest.mark.asyncio
    async def test_disallowed_popup_is_closed(self, context):
        s = make_session(context, allowed_domains=["example.com"])
        await s.start()
        errors = collect_errors(s)
        try:
            popup = await context.open_popup("https://ads.evil.test/")

            assert [e.error_type for e in errors] == ["TabCreationBlocked"]
            assert popup.closed
            assert s.get_tab_for_page(popup) is None
            assert len(s.tabs) == 1
        finally:
            await s.stop()

    @pytest.mark.asyncio
    async def test_allowed_popup_is_kept(self, context):
        s = make_session(context, allowed_domains=["example.com"])
        await s.start()
        try:
            popup = await context.open_popup("https://example.com/help")
            assert s.get_tab_for_page(popup) is not None
        finally:
            await s.stop()


# ── Popups ────────────────────────────────────────────────────────────────────


class TestPopupsWatchdog:
    @pytest.mark.asyncio
    async def test_alert_accepted_and_reported(self, session, context):
        page = context.pages[0]
        opened = collect(session, DialogOpenedEvent)
        dialog = FakeDialog("alert", "Saved!")

        await page.emit("dialog", dialog)

        assert dialog.accepted
        assert opened[0].dialog_type == "alert"
        assert opened[0].accepted is True
        assert opened[0].target_id == page.target_id

        state = await session.get_browser_state_with_recovery()
        assert state.recent_dialogs == ["alert: Saved!"]

    @pytest.mark.asyncio
    async def test_prompt_dismissed(self, session, context):
        opened = collect(session, DialogOpenedEvent)
        dialog = FakeDialog("prompt", "Your name?")

        await context.pages[0].emit("dialog", dialog)

        assert dialog.dismissed
        assert not dialog.accepted
        assert opened[0].accepted is False

    @pytest.mark.asyncio
    async def test_new_tabs_get_dialog_listener(self, session, context):
        await session.new_tab()
        assert len(context.pages[-1].listeners["dialog"]) == 1

    @pytest.mark.asyncio
    async def test_disabled_auto_accept_installs_nothing(self, context):
        s = make_session(context, auto_accept_dialogs=False)
        await s.start()
        try:
            assert context.pages[0].listeners["dialog"] == []
        finally:
            await s.stop()

    @pytest.mark.asyncio
    async def test_stop_removes_dialog_listeners(self, context):
        s = make_session(context)
        await s.start()
        page = context.pages[0]

        await s.stop()
        assert page.listeners["dialog"] == []
