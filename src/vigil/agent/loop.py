"""
Agent Loop - Main orchestration loop for Vigil agents.

Manages the observe → think → act cycle for browser automation, plus the
agent's claim on its browser session (copy, strict or shared attachment).
"""

import asyncio
import logging
import time
from typing import TYPE_CHECKING, Any, ClassVar
from uuid import uuid4

from pydantic import BaseModel

from vigil.agent.filesystem import FileSystem
from vigil.agent.views import AgentConfig, AgentHistory, AgentHistoryList, AgentOutput, StepMetadata
from vigil.browser.session import BrowserSession
from vigil.events.types import (
    ActionCompletedEvent,
    ActionStartedEvent,
    StepCompletedEvent,
    StepStartedEvent,
)
from vigil.exceptions import BrowserError, LLMError, SessionClaimError
from vigil.logging import VigilLogger
from vigil.tools.registry import ActionContext, ActionResult, ToolRegistry
from vigil.tools.registry import registry as default_registry
from vigil.utils.text import truncate

if TYPE_CHECKING:
    from vigil.agent.llm import BaseLLM, ChatInvokeCompletion
    from vigil.browser.views import BrowserStateSummary
    from vigil.tools.registry import AbortSignal, SensitiveData

logger = logging.getLogger(__name__)
run_log = VigilLogger(__name__)


class AgentState(BaseModel):
    """Agent execution state."""

    n_steps: int = 0
    consecutive_failures: int = 0
    total_failures: int = 0
    stopped: bool = False
    last_error: str | None = None


class Agent:
    """
    LLM-driven browser automation agent.

    Each step:
    1. Capture browser state (under the session step lock when shared)
    2. Build the prompt from task, state and recent history
    3. Ask the LLM for an AgentOutput
    4. Execute its actions through the registry
    5. Record an AgentHistory item

    Usage:
        agent = Agent("Find the price of X", llm=OpenAILLM())
        history = await agent.run()
        await agent.close()
    """

    # One lock per shared session id, serializing steps across agents
    _shared_session_step_locks: ClassVar[dict[str, asyncio.Lock]] = {}

    def __init__(
        self,
        task: str,
        llm: "BaseLLM",
        browser_session: BrowserSession | None = None,
        registry: ToolRegistry | None = None,
        config: AgentConfig | None = None,
        sensitive_data: "SensitiveData | None" = None,
        file_system: FileSystem | None = None,
        agent_id: str | None = None,
        page_extraction_llm: "BaseLLM | None" = None,
        available_file_paths: list[str] | None = None,
    ):
        self.id = agent_id or f"agent-{uuid4().hex[:8]}"
        self.task = task
        self.llm = llm
        self.config = config or AgentConfig()
        self.registry = registry or default_registry
        self.sensitive_data = sensitive_data
        self.file_system = file_system
        self.page_extraction_llm = page_extraction_llm
        self.available_file_paths = available_file_paths

        self.state = AgentState()
        self.history = AgentHistoryList()
        self._message_builder = MessageBuilder()

        self._has_session_claim = False
        self._pinned_tab_id: str | None = None
        self._close_task: asyncio.Future | None = None

        if browser_session is None:
            browser_session = BrowserSession()
        self.browser_session = self._claim_or_isolate(browser_session)

    # ===== Session attachment =====

    def _claim_or_isolate(self, session: BrowserSession) -> BrowserSession:
        mode = self.config.session_attachment_mode
        claim_mode = "shared" if mode == "shared" else "exclusive"

        if session.claim_agent(self.id, claim_mode):
            self._has_session_claim = True
            return session

        owners = ", ".join(session.get_attached_agent_ids()) or "unknown"
        if mode == "strict":
            raise SessionClaimError(
                f"BrowserSession is already attached to Agent {owners}. "
                "Set session_attachment_mode='copy' to allow automatic isolation."
            )
        if mode == "shared":
            raise SessionClaimError(
                f"BrowserSession is already attached in exclusive mode by Agent {owners}. "
                "Configure all participating agents with session_attachment_mode='shared' "
                "or use session_attachment_mode='copy'."
            )

        logger.warning(f"BrowserSession is already attached to Agent {owners}; using an isolated copy")
        isolated = session.model_copy_isolated()
        if not isolated.claim_agent(self.id, "exclusive"):
            raise SessionClaimError("Failed to claim isolated BrowserSession")
        self._has_session_claim = True
        return isolated

    @property
    def is_shared(self) -> bool:
        return self.config.session_attachment_mode == "shared"

    def _capture_pinned_tab(self) -> None:
        if not self.is_shared:
            return
        tab = self.browser_session.active_tab
        if tab is not None:
            self._pinned_tab_id = tab.tab_id

    async def _restore_pinned_tab(self) -> None:
        if not self.is_shared:
            return
        if self._pinned_tab_id is None:
            self._capture_pinned_tab()
            return

        active = self.browser_session.active_tab
        if active is not None and active.tab_id == self._pinned_tab_id:
            return
        try:
            await self.browser_session.switch_tab(self._pinned_tab_id)
        except BrowserError:
            # pinned tab was closed by someone else
            self._capture_pinned_tab()

    async def _with_step_lock(self, coro_fn, *args: Any) -> Any:
        if not self.is_shared:
            return await coro_fn(*args)

        lock = self._shared_session_step_locks.get(self.browser_session.id)
        if lock is None:
            lock = asyncio.Lock()
            self._shared_session_step_locks[self.browser_session.id] = lock
        async with lock:
            return await coro_fn(*args)

    # ===== Run =====

    async def run(
        self,
        max_steps: int | None = None,
        signal: "AbortSignal | None" = None,
    ) -> AgentHistoryList:
        """
        Run the agent until done, stopped or out of steps.

        Args:
            max_steps: Overrides config.max_steps
            signal: Abort signal; aborting stops after the current action

        Returns:
            The run history
        """
        max_steps = max_steps or self.config.max_steps
        logger.info(f"{self.id}: Starting task: {truncate(self.task)}")

        while not self._should_stop(max_steps, signal):
            await self.step(signal)

        run_log.run_finished(self.id, self.state.n_steps, self.history.is_successful())
        return self.history

    def stop(self) -> None:
        """Stop before the next step."""
        self.state.stopped = True

    async def step(self, signal: "AbortSignal | None" = None) -> AgentHistory:
        """
        Execute one agent step and record it in the history.

        Shared agents take the session's step lock for the whole step, so
        only one of them captures state or acts on the browser at a time.
        """
        return await self._with_step_lock(self._step, signal)

    async def _step(self, signal: "AbortSignal | None") -> AgentHistory:
        self.state.n_steps += 1
        step_number = self.state.n_steps
        start_time = time.time()
        bus = self.browser_session.event_bus

        item = AgentHistory(step_number=step_number)
        try:
            await self._restore_pinned_tab()
            browser_state = await self.browser_session.get_browser_state_with_recovery(
                include_screenshot=self.config.include_screenshot
            )
            item.url = browser_state.url
            item.title = browser_state.title
            await bus.dispatch(StepStartedEvent(agent_id=self.id, step_number=step_number, url=browser_state.url))

            await asyncio.wait_for(
                self._think_and_act(item, browser_state, signal),
                timeout=self.config.step_timeout,
            )
        except TimeoutError:
            item.error = f"Step timed out after {self.config.step_timeout}s"
        except LLMError as e:
            item.error = str(e)
        except BrowserError as e:
            item.error = f"Browser error: {e}"

        item.metadata = StepMetadata(
            step_start_time=start_time,
            step_end_time=time.time(),
            step_number=step_number,
        )
        self._capture_pinned_tab()

        success = item.error is None and all(r.success for r in item.results)
        if success:
            self.state.consecutive_failures = 0
        else:
            self.state.consecutive_failures += 1
            self.state.total_failures += 1
            self.state.last_error = item.error or next((r.error for r in item.results if r.error), None)
            logger.warning(f"{self.id}: Step {step_number} failed: {self.state.last_error}")

        self.history.add(item)
        await bus.dispatch(
            StepCompletedEvent(
                agent_id=self.id,
                step_number=step_number,
                success=success,
                actions_count=len(item.results),
            )
        )
        return item

    async def _think_and_act(
        self,
        item: AgentHistory,
        browser_state: "BrowserStateSummary",
        signal: "AbortSignal | None",
    ) -> None:
        messages = self._message_builder.build(
            task=self.task,
            browser_state=browser_state,
            history=self.history.format_for_prompt(self.config.history_in_prompt),
            actions=self.registry.schema(browser_state.url),
            file_system=self.file_system,
            sensitive_data=self.sensitive_data,
        )

        response = await self._get_model_output(messages, signal)
        item.model_output = response.completion
        item.usage = response.usage
        run_log.step(item.step_number, item.model_output.next_goal or self.task)

        if item.model_output.todo is not None and self.file_system is not None:
            self.file_system.update_todo(item.model_output.todo)

        item.results = await self._execute_actions(item.model_output, browser_state, signal)

    async def _get_model_output(
        self,
        messages: list[dict],
        signal: "AbortSignal | None",
    ) -> "ChatInvokeCompletion":
        """Invoke the LLM, re-asking when the reply does not parse."""
        attempt_messages = list(messages)
        for attempt in range(self.config.max_retries + 1):
            try:
                return await self.llm.invoke(attempt_messages, output_format=AgentOutput, signal=signal)
            except LLMError as e:
                if attempt >= self.config.max_retries or (signal is not None and signal.aborted):
                    raise
                logger.debug(f"{self.id}: Retrying invalid model output: {e}")
                attempt_messages = [
                    *messages,
                    {
                        "role": "user",
                        "content": f"Your previous reply could not be used ({e}). "
                        "Reply with a single valid JSON object.",
                    },
                ]
        raise LLMError("No usable model output")

    async def _execute_actions(
        self,
        output: AgentOutput,
        browser_state: "BrowserStateSummary",
        signal: "AbortSignal | None",
    ) -> list[ActionResult]:
        bus = self.browser_session.event_bus
        context = ActionContext(
            browser_session=self.browser_session,
            browser_state=browser_state,
            page_extraction_llm=self.page_extraction_llm,
            file_system=self.file_system,
            available_file_paths=self.available_file_paths,
            sensitive_data=self.sensitive_data,
            signal=signal,
        )

        results: list[ActionResult] = []
        for name, params in output.actions()[: self.config.max_actions_per_step]:
            if signal is not None and signal.aborted:
                break

            await bus.dispatch(ActionStartedEvent(action=name, params=params))
            started = time.monotonic()
            result = await self.registry.execute(name, params, context)
            await bus.dispatch(
                ActionCompletedEvent(
                    action=name,
                    success=result.success,
                    error=result.error,
                    duration_ms=(time.monotonic() - started) * 1000,
                )
            )
            results.append(result)
            run_log.action(name, result=truncate(result.message if result.success else f"failed: {result.error}"))

            if result.is_done or not result.success:
                break
            # element indices are stale once the page changed
            if self._page_changed(browser_state):
                break

        return results

    def _page_changed(self, browser_state: "BrowserStateSummary") -> bool:
        page = self.browser_session.get_current_page()
        active = self.browser_session.active_tab
        if active is not None and active.tab_id != browser_state.active_tab_id:
            return True
        return page is not None and getattr(page, "url", browser_state.url) != browser_state.url

    def _should_stop(self, max_steps: int, signal: "AbortSignal | None") -> bool:
        """Check if agent should stop."""
        if self.state.stopped:
            return True

        if signal is not None and signal.aborted:
            logger.info(f"{self.id}: Aborted: {signal.reason}")
            return True

        if self.history.is_done():
            return True

        if self.state.n_steps >= max_steps:
            logger.warning(f"{self.id}: Max steps reached: {max_steps}")
            return True

        if self.state.consecutive_failures >= self.config.max_consecutive_failures:
            logger.error(f"{self.id}: Too many consecutive failures")
            return True

        return False

    # ===== Cleanup =====

    async def close(self) -> None:
        """
        Release this agent's claim and stop the session if nobody else uses it.

        Safe to call repeatedly and concurrently.
        """
        if self._close_task is None:
            self._close_task = asyncio.ensure_future(self._close())
        await self._close_task

    async def _close(self) -> None:
        session = self.browser_session
        if self._has_session_claim:
            if not session.release_agent(self.id):
                logger.warning(f"{self.id}: Session claim not released; another agent holds it")
            self._has_session_claim = False

        if session.get_attached_agent_ids():
            logger.debug(f"{self.id}: Leaving session running for other attached agents")
            return

        self._shared_session_step_locks.pop(session.id, None)

        if session.profile.keep_alive:
            return
        try:
            await session.stop()
        except Exception as e:
            logger.error(f"{self.id}: Error during agent cleanup: {e}")


class MessageBuilder:
    """Builds LLM messages with context."""

    def build(
        self,
        task: str,
        browser_state: "BrowserStateSummary",
        history: str = "",
        actions: list[dict] | None = None,
        file_system: FileSystem | None = None,
        sensitive_data: "SensitiveData | None" = None,
    ) -> list[dict]:
        """Build messages for LLM."""
        return [
            {"role": "system", "content": self._system_prompt(actions or [])},
            {
                "role": "user",
                "content": self._state_message(task, browser_state, history, file_system, sensitive_data),
            },
        ]

    def _state_message(
        self,
        task: str,
        state: "BrowserStateSummary",
        history: str,
        file_system: FileSystem | None,
        sensitive_data: "SensitiveData | None",
    ) -> str:
        sections = [f"<task>\n{task}\n</task>"]

        if history:
            sections.append(f"<agent_history>\n{history}\n</agent_history>")

        tabs = "\n".join(
            f"- {tab.tab_id}{' (active)' if tab.tab_id == state.active_tab_id else ''}: {tab.title or ''} {tab.url}"
            for tab in state.tabs
        )
        browser_lines = [
            f"Current URL: {state.url}",
            f"Title: {state.title}",
            f"Open tabs:\n{tabs or '- none'}",
            f"{state.pixels_above}px above, {state.pixels_below}px below the viewport",
        ]
        if state.loading_status:
            browser_lines.append(state.loading_status)
        if state.recent_dialogs:
            browser_lines.append("Recent dialogs: " + " | ".join(state.recent_dialogs))
        if state.browser_errors:
            browser_lines.append("Browser errors:\n" + "\n".join(f"- {e}" for e in state.browser_errors))
        if state.is_minimal:
            browser_lines.append("Page content could not be captured this step.")
        browser_lines.append(f"Interactive elements:\n{state.elements_text() or '(none)'}")
        sections.append("<browser_state>\n" + "\n".join(browser_lines) + "\n</browser_state>")

        if file_system is not None:
            sections.append(f"<file_system>\n{file_system.describe()}\n</file_system>")

        if sensitive_data:
            names = sorted(_placeholder_names(sensitive_data))
            sections.append(
                "<sensitive_data>\nUse <secret>name</secret> to fill these values: "
                + ", ".join(names)
                + "\n</sensitive_data>"
            )

        return "\n\n".join(sections)

    def _system_prompt(self, actions: list[dict]) -> str:
        action_lines = "\n".join(
            f"- {tool['function']['name']}: {tool['function']['description']} "
            f"params={list(tool['function']['parameters'].get('properties', {}))}"
            for tool in actions
        )
        return f"""You are a browser automation agent. \
Your task is to interact with web pages to accomplish user goals.

Guidelines:
1. Interactive elements are listed as [index]<tag>text</tag>; refer to them by index
2. Each step, return the actions to run in order as {{"action_name": {{params}}}} entries
3. Element indices change after navigation; plan one page at a time
4. Call 'done' when the task is complete, with success=false if it cannot be completed
5. Be efficient - use the minimum actions needed

Available actions:
{action_lines}"""


def _placeholder_names(sensitive_data: "SensitiveData") -> set[str]:
    names: set[str] = set()
    for key, value in sensitive_data.items():
        if isinstance(value, dict):
            names.update(value)
        else:
            names.add(key)
    return names
