"""
Agent Views - Pydantic models for structured agent output and run history.

AgentOutput is the shape the LLM must answer with each step; AgentHistoryList
is what Agent.run() returns.
"""

import json
from pathlib import Path
from typing import Any, Literal

from pydantic import BaseModel, Field

from vigil.agent.llm.base import ChatInvokeUsage
from vigil.config import DEFAULT_MAX_CONSECUTIVE_FAILURES, DEFAULT_MAX_RETRIES, DEFAULT_MAX_STEPS
from vigil.tools.registry import ActionResult

SessionAttachmentMode = Literal["copy", "strict", "shared"]


class AgentConfig(BaseModel):
    """Agent configuration."""

    max_steps: int = DEFAULT_MAX_STEPS
    max_actions_per_step: int = 5
    max_consecutive_failures: int = DEFAULT_MAX_CONSECUTIVE_FAILURES
    max_retries: int = DEFAULT_MAX_RETRIES
    step_timeout: float = 120.0
    history_in_prompt: int = 5
    include_screenshot: bool = False
    session_attachment_mode: SessionAttachmentMode = "copy"


class AgentOutput(BaseModel):
    """
    Structured output from the agent LLM.

    Each entry of action is a single-key dict: {"action_name": {params}}.
    """

    thinking: str | None = Field(
        default=None,
        description="Reasoning about the current browser state and history",
    )
    evaluation_previous_goal: str | None = Field(
        default=None,
        description="Did the last action succeed, fail, or is it uncertain? Explain briefly.",
    )
    memory: str | None = Field(
        default=None,
        description="Working memory to track progress across steps",
    )
    todo: list[str] | None = Field(
        default=None,
        description="Remaining tasks for the overall goal",
    )
    next_goal: str | None = Field(
        default=None,
        description="The immediate next objective",
    )
    action: list[dict[str, dict[str, Any]]] = Field(
        default_factory=list,
        description='Actions to execute in order, e.g. [{"click": {"index": 3}}]',
    )

    def actions(self) -> list[tuple[str, dict[str, Any]]]:
        """Flatten action into (name, params) pairs, skipping malformed entries."""
        pairs = []
        for entry in self.action:
            for name, params in entry.items():
                pairs.append((name, params or {}))
        return pairs


class StepMetadata(BaseModel):
    """Timing for a single step."""

    step_start_time: float
    step_end_time: float
    step_number: int

    @property
    def duration_seconds(self) -> float:
        return self.step_end_time - self.step_start_time


class AgentHistory(BaseModel):
    """History item for each agent step."""

    step_number: int
    url: str | None = None
    title: str | None = None
    model_output: AgentOutput | None = None
    results: list[ActionResult] = Field(default_factory=list)
    metadata: StepMetadata | None = None
    usage: ChatInvokeUsage | None = None
    error: str | None = None

    def format_for_prompt(self) -> str:
        """Format this history item for inclusion in the prompt."""
        if self.model_output is None and not self.error:
            return ""

        lines = [f"<step_{self.step_number}>"]

        if self.error:
            lines.append(f"Step error: {self.error}")

        output = self.model_output
        if output:
            if output.evaluation_previous_goal:
                lines.append(f"Evaluation of Previous Step: {output.evaluation_previous_goal}")
            if output.memory:
                lines.append(f"Memory: {output.memory}")
            if output.todo:
                lines.append(f"Todo: {'; '.join(output.todo)}")
            if output.next_goal:
                lines.append(f"Next Goal: {output.next_goal}")

            action_results = []
            for (name, _params), result in zip(output.actions(), self.results, strict=False):
                if result.success:
                    status = "Success"
                    if result.message:
                        status += f" - {result.message[:200]}"
                else:
                    status = f"Failed: {result.error}"
                action_results.append(f"{name} → {status}")

            if action_results:
                lines.append(f"Action Results: {'; '.join(action_results)}")

        lines.append(f"</step_{self.step_number}>")
        return "\n".join(lines)


class AgentHistoryList(BaseModel):
    """Ordered step history of one agent run."""

    history: list[AgentHistory] = Field(default_factory=list)

    def __len__(self) -> int:
        return len(self.history)

    def add(self, item: AgentHistory) -> None:
        self.history.append(item)

    def format_for_prompt(self, max_items: int | None = None) -> str:
        items = self.history
        if max_items:
            items = items[-max_items:]
        return "\n".join(text for text in (item.format_for_prompt() for item in items) if text)

    def last_output(self) -> AgentOutput | None:
        for item in reversed(self.history):
            if item.model_output is not None:
                return item.model_output
        return None

    def last_result(self) -> ActionResult | None:
        for item in reversed(self.history):
            if item.results:
                return item.results[-1]
        return None

    def is_done(self) -> bool:
        """Check if the last action was a done action."""
        last = self.last_result()
        return bool(last and last.is_done)

    def is_successful(self) -> bool | None:
        """Whether the task succeeded; None if the agent never called done."""
        last = self.last_result()
        if last is None or not last.is_done:
            return None
        return bool(last.data.get("task_success", last.success))

    def final_result(self) -> str | None:
        last = self.last_result()
        if last is None or not last.is_done:
            return None
        return last.message

    def errors(self) -> list[str | None]:
        """Per-step error, None for steps without one."""
        errors = []
        for item in self.history:
            step_errors = [r.error for r in item.results if r.error]
            if item.error:
                step_errors.insert(0, item.error)
            errors.append(step_errors[0] if step_errors else None)
        return errors

    def total_duration_seconds(self) -> float:
        return sum(h.metadata.duration_seconds for h in self.history if h.metadata)

    def total_tokens(self) -> int:
        return sum(h.usage.total_tokens for h in self.history if h.usage)

    def urls(self) -> list[str | None]:
        return [h.url for h in self.history]

    def save_to_file(self, filepath: str | Path) -> None:
        """Save history as JSON."""
        path = Path(filepath)
        path.parent.mkdir(parents=True, exist_ok=True)
        with open(path, "w", encoding="utf-8") as f:
            json.dump(self.model_dump(mode="json"), f, indent=2)

    @classmethod
    def load_from_file(cls, filepath: str | Path) -> "AgentHistoryList":
        with open(filepath, encoding="utf-8") as f:
            data = json.load(f)
        return cls.model_validate(data)
