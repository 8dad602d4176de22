"""Tests for the Agent loop: steps, retries, failures, session claims and cleanup."""

import asyncio
import json

import pytest

from conftest import collect, make_profile, make_session

from vigil.agent.filesystem import FileSystem
from vigil.agent.llm import BaseLLM, ChatInvokeUsage
from vigil.agent.loop import Agent, MessageBuilder
from vigil.agent.views import AgentConfig
from vigil.browser.session import BrowserSession
from vigil.browser.views import BrowserStateSummary
from vigil.events.types import (
    ActionCompletedEvent,
    ActionStartedEvent,
    StepCompletedEvent,
    StepStartedEvent,
)
from vigil.exceptions import SessionClaimError
from vigil.tools.registry import AbortSignal


def reply(*actions: dict, **fields) -> str:
    return json.dumps({"memory": "m", "next_goal": "g", **fields, "action": list(actions)})


DONE = reply({"done": {"message": "All good", "success": True}})
WAIT = reply({"wait": {"seconds": 0}})


class FakeLLM(BaseLLM):
    """Plays back replies in order, repeating the last one."""

    provider = "fake"

    def __init__(self, *replies: str, error: Exception | None = None, delay: float = 0):
        super().__init__("fake-1")
        self.replies = list(replies)
        self.error = error
        self.delay = delay
        self.requests: list[list[dict]] = []
        self.active = 0
        self.max_active = 0

    async def _complete(self, messages, output_format):
        self.requests.append(messages)
        self.active += 1
        self.max_active = max(self.max_active, self.active)
        try:
            if self.delay:
                await asyncio.sleep(self.delay)
        finally:
            self.active -= 1
        if self.error is not None:
            raise self.error
        text = self.replies.pop(0) if len(self.replies) > 1 else self.replies[0]
        return text, ChatInvokeUsage(prompt_tokens=10, completion_tokens=2)

    async def close(self) -> None:
        pass


def make_agent(session, *replies: str, **config) -> Agent:
    return Agent("Find the answer", llm=FakeLLM(*replies), browser_session=session, config=AgentConfig(**config))


# ── Run loop ──────────────────────────────────────────────────────────────────


class TestRun:
    @pytest.mark.asyncio
    async def test_runs_until_done(self, session):
        agent = make_agent(session, WAIT, DONE)

        history = await agent.run()

        assert len(history) == 2
        assert history.is_done()
        assert history.is_successful() is True
        assert history.final_result() == "All good"
        assert history.total_tokens() == 24

    @pytest.mark.asyncio
    async def test_step_and_action_events(self, session):
        started = collect(session, StepStartedEvent)
        completed = collect(session, StepCompletedEvent)
        actions = collect(session, ActionStartedEvent)
        finished = collect(session, ActionCompletedEvent)
        agent = make_agent(session, DONE)

        await agent.run()

        assert [(e.agent_id, e.step_number) for e in started] == [(agent.id, 1)]
        assert started[0].url == "about:blank"
        assert completed[0].success is True
        assert completed[0].actions_count == 1
        assert [e.action for e in actions] == ["done"]
        assert finished[0].success is True
        assert finished[0].duration_ms >= 0

    @pytest.mark.asyncio
    async def test_stops_at_max_steps(self, session):
        agent = make_agent(session, WAIT)

        history = await agent.run(max_steps=3)

        assert len(history) == 3
        assert not history.is_done()
        assert history.is_successful() is None

    @pytest.mark.asyncio
    async def test_pre_aborted_signal_runs_nothing(self, session):
        signal = AbortSignal()
        signal.abort("user")
        agent = make_agent(session, DONE)

        history = await agent.run(signal=signal)
        assert len(history) == 0

    @pytest.mark.asyncio
    async def test_stop_before_next_step(self, session):
        agent = make_agent(session, WAIT)
        agent.stop()

        assert len(await agent.run()) == 0

    @pytest.mark.asyncio
    async def test_browser_start_failure_ends_run(self, monkeypatch):
        async def failing_connect(self):
            raise RuntimeError("chrome not found")

        monkeypatch.setattr(BrowserSession, "_connect", failing_connect)
        session = BrowserSession(profile=make_profile())
        completed = collect(session, StepCompletedEvent)
        agent = make_agent(session, DONE, max_consecutive_failures=2)

        history = await agent.run(max_steps=3)

        assert len(history) == 2
        assert history.errors() == ["Browser error: Failed to start browser: chrome not found"] * 2
        assert agent.state.consecutive_failures == 2
        assert [e.success for e in completed] == [False, False]
        assert agent.llm.requests == []


# ── Model output ──────────────────────────────────────────────────────────────


class TestModelOutput:
    @pytest.mark.asyncio
    async def test_invalid_output_is_re_asked(self, session):
        agent = make_agent(session, "Sure, I will click it.", DONE)

        item = await agent.step()

        assert item.error is None
        assert len(agent.llm.requests) == 2
        assert "could not be used" in agent.llm.requests[1][-1]["content"]

    @pytest.mark.asyncio
    async def test_persistent_llm_failure_ends_run(self, session):
        llm = FakeLLM(DONE, error=ConnectionError("connection refused"))
        agent = Agent(
            "task",
            llm=llm,
            browser_session=session,
            config=AgentConfig(max_retries=0, max_consecutive_failures=2),
        )

        history = await agent.run()

        assert len(history) == 2
        assert history.errors() == ["fake request failed: connection refused"] * 2
        assert agent.state.total_failures == 2
        assert agent.state.last_error == "fake request failed: connection refused"

    @pytest.mark.asyncio
    async def test_step_timeout_recorded(self, session):
        agent = Agent(
            "task",
            llm=FakeLLM(DONE, delay=1),
            browser_session=session,
            config=AgentConfig(step_timeout=0.05),
        )

        item = await agent.step()
        assert item.error == "Step timed out after 0.05s"
        assert agent.state.consecutive_failures == 1

    @pytest.mark.asyncio
    async def test_todo_written_to_workspace(self, session, tmp_path):
        fs = FileSystem(tmp_path)
        agent = Agent(
            "task",
            llm=FakeLLM(reply({"done": {}}, todo=["Open cart", "Pay"])),
            browser_session=session,
            file_system=fs,
        )

        await agent.step()
        assert fs.read_todo() == "# Agent Todo\n- [ ] Open cart\n- [ ] Pay\n"


# ── Action execution ──────────────────────────────────────────────────────────


class TestActionExecution:
    @pytest.mark.asyncio
    async def test_failed_action_stops_the_step(self, session):
        agent = make_agent(session, reply({"click": {"index": 99}}, {"done": {}}))

        item = await agent.step()

        assert len(item.results) == 1
        assert item.results[0].error == "Invalid element index: 99"
        assert agent.state.consecutive_failures == 1

    @pytest.mark.asyncio
    async def test_page_change_stops_the_step(self, session):
        agent = make_agent(session, reply({"navigate": {"url": "https://example.com"}}, {"done": {}}))

        item = await agent.step()

        assert [r.success for r in item.results] == [True]
        assert not agent.history.is_done()

    @pytest.mark.asyncio
    async def test_actions_capped_per_step(self, session):
        many = reply(*[{"wait": {"seconds": 0}}] * 4)
        agent = make_agent(session, many, max_actions_per_step=2)

        item = await agent.step()
        assert len(item.results) == 2


# ── Prompt ────────────────────────────────────────────────────────────────────


class TestMessageBuilder:
    def test_state_message_sections(self, tmp_path):
        state = BrowserStateSummary(
            url="https://example.com",
            title="Example",
            selector_map={0: {"tag": "a", "text": "Home", "attributes": {}}},
            browser_errors=["TargetCrash: boom"],
        )

        messages = MessageBuilder().build(
            task="Buy socks",
            browser_state=state,
            history="<step_1>\n</step_1>",
            file_system=FileSystem(tmp_path),
        )

        assert messages[0]["role"] == "system"
        content = messages[1]["content"]
        assert "<task>\nBuy socks\n</task>" in content
        assert "<agent_history>" in content
        assert "Current URL: https://example.com" in content
        assert "- TargetCrash: boom" in content
        assert "[0]<a>Home</a>" in content
        assert "todo.md" in content

    def test_secret_names_listed_without_values(self):
        messages = MessageBuilder().build(
            task="Log in",
            browser_state=BrowserStateSummary(url="about:blank"),
            sensitive_data={"https://example.com": {"password": "hunter2"}, "api_token": "tok-123"},
        )

        content = messages[1]["content"]
        assert "api_token, password" in content
        assert "hunter2" not in content
        assert "tok-123" not in content

    def test_system_prompt_lists_actions(self):
        actions = [
            {
                "type": "function",
                "function": {
                    "name": "click",
                    "description": "Click element",
                    "parameters": {"properties": {"index": {"type": "integer"}}},
                },
            }
        ]
        system = MessageBuilder().build("t", BrowserStateSummary(), actions=actions)[0]["content"]
        assert "- click: Click element params=['index']" in system


# ── Session claims ────────────────────────────────────────────────────────────


class TestSessionClaims:
    def test_copy_mode_isolates_claimed_session(self, context):
        s = make_session(context)
        s.claim_agent("other")

        agent = Agent("task", llm=FakeLLM(DONE), browser_session=s)

        assert agent.browser_session is not s
        assert agent.browser_session.get_attached_agent_ids() == [agent.id]
        assert agent.browser_session.profile == s.profile
        assert s.get_attached_agent_ids() == ["other"]

    def test_free_session_is_claimed_directly(self, context):
        s = make_session(context)
        agent = Agent("task", llm=FakeLLM(DONE), browser_session=s)

        assert agent.browser_session is s
        assert s.get_attached_agent_ids() == [agent.id]

    def test_strict_mode_raises(self, context):
        s = make_session(context)
        s.claim_agent("other")

        with pytest.raises(SessionClaimError, match="already attached to Agent other"):
            Agent("task", llm=FakeLLM(DONE), browser_session=s, config=AgentConfig(session_attachment_mode="strict"))

    def test_shared_mode_refuses_exclusive_holder(self, context):
        s = make_session(context)
        s.claim_agent("other", "exclusive")

        with pytest.raises(SessionClaimError, match="exclusive mode"):
            Agent("task", llm=FakeLLM(DONE), browser_session=s, config=AgentConfig(session_attachment_mode="shared"))

    def test_shared_agents_share_one_session(self, context):
        s = make_session(context)
        shared = AgentConfig(session_attachment_mode="shared")

        a = Agent("a", llm=FakeLLM(DONE), browser_session=s, config=shared, agent_id="a")
        b = Agent("b", llm=FakeLLM(DONE), browser_session=s, config=shared, agent_id="b")

        assert a.browser_session is s
        assert b.browser_session is s
        assert s.get_attached_agent_ids() == ["a", "b"]

    @pytest.mark.asyncio
    async def test_shared_steps_are_serialized(self, session):
        shared = AgentConfig(session_attachment_mode="shared")
        llm = FakeLLM(WAIT, delay=0.02)
        agents = [Agent(f"t{i}", llm=llm, browser_session=session, config=shared) for i in range(3)]

        await asyncio.gather(*(agent.run(max_steps=2) for agent in agents))

        assert len(llm.requests) == 6
        assert llm.max_active == 1

    @pytest.mark.asyncio
    async def test_direct_shared_steps_are_serialized(self, session):
        shared = AgentConfig(session_attachment_mode="shared")
        llm = FakeLLM(WAIT, delay=0.05)
        a = Agent("t1", llm=llm, browser_session=session, config=shared)
        b = Agent("t2", llm=llm, browser_session=session, config=shared)

        await asyncio.gather(a.step(), b.step())

        assert len(llm.requests) == 2
        assert llm.max_active == 1

    @pytest.mark.asyncio
    async def test_step_lock_released_when_capture_raises(self, session, monkeypatch):
        capture = BrowserSession.get_browser_state_with_recovery
        failed: list[bool] = []

        async def flaky_capture(self, **kwargs):
            if not failed:
                failed.append(True)
                raise RuntimeError("capture exploded")
            return await capture(self, **kwargs)

        monkeypatch.setattr(BrowserSession, "get_browser_state_with_recovery", flaky_capture)
        shared = AgentConfig(session_attachment_mode="shared")
        a = Agent("t1", llm=FakeLLM(WAIT), browser_session=session, config=shared)
        b = Agent("t2", llm=FakeLLM(DONE), browser_session=session, config=shared)

        with pytest.raises(RuntimeError, match="capture exploded"):
            await a.step()
        item = await asyncio.wait_for(b.step(), timeout=1)

        assert item.error is None
        assert b.history.is_done()

    @pytest.mark.asyncio
    async def test_shared_agent_returns_to_its_tab(self, session):
        agent = make_agent(session, WAIT, session_attachment_mode="shared")
        own_tab = session.active_tab

        await agent.step()
        await session.new_tab("https://example.com/other")
        await agent.step()

        assert session.active_tab is own_tab


# ── Cleanup ───────────────────────────────────────────────────────────────────


class TestClose:
    @pytest.mark.asyncio
    async def test_close_releases_claim_and_stops_session(self, context):
        s = make_session(context)
        await s.start()
        agent = Agent("task", llm=FakeLLM(DONE), browser_session=s)

        await asyncio.gather(agent.close(), agent.close())
        await agent.close()

        assert s.get_attached_agent_ids() == []
        assert not s.is_connected

    @pytest.mark.asyncio
    async def test_close_leaves_session_for_other_agents(self, context):
        s = make_session(context)
        await s.start()
        shared = AgentConfig(session_attachment_mode="shared")
        a = Agent("a", llm=FakeLLM(DONE), browser_session=s, config=shared, agent_id="a")
        Agent("b", llm=FakeLLM(DONE), browser_session=s, config=shared, agent_id="b")
        try:
            await a.close()

            assert s.get_attached_agent_ids() == ["b"]
            assert s.is_connected
        finally:
            await s.stop()

    @pytest.mark.asyncio
    async def test_keep_alive_session_not_stopped(self, context):
        s = make_session(context, keep_alive=True)
        await s.start()
        agent = Agent("task", llm=FakeLLM(DONE), browser_session=s)
        try:
            await agent.close()
            assert s.is_connected
            assert s.get_attached_agent_ids() == []
        finally:
            await s.stop()
