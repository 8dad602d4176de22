"""
LLM Base - Abstract interface for LLM providers.

Every provider is consumed through invoke(): messages in, a completion and
optional token usage out. Auth, retries and schema adaptation stay inside the
provider client.
"""

import asyncio
import json
from abc import ABC, abstractmethod
from typing import TYPE_CHECKING, Any, Generic, TypeVar

from pydantic import BaseModel, ValidationError

from vigil.exceptions import LLMError
from vigil.utils.text import extract_json_from_markdown

if TYPE_CHECKING:
    from vigil.tools.registry import AbortSignal

T = TypeVar("T")


class ChatInvokeUsage(BaseModel):
    """Token counts reported by the provider."""

    prompt_tokens: int = 0
    completion_tokens: int = 0
    prompt_cached_tokens: int | None = None

    @property
    def total_tokens(self) -> int:
        return self.prompt_tokens + self.completion_tokens


class ChatInvokeCompletion(BaseModel, Generic[T]):
    """Completion returned by invoke()."""

    completion: T
    usage: ChatInvokeUsage | None = None

    model_config = {"arbitrary_types_allowed": True}


class BaseLLM(ABC):
    """Abstract base class for LLM providers."""

    provider: str = "unknown"

    def __init__(self, model: str):
        self.model = model

    @abstractmethod
    async def _complete(
        self,
        messages: list[dict],
        output_format: type[BaseModel] | None,
    ) -> tuple[str, ChatInvokeUsage | None]:
        """
        Send messages to the provider.

        Returns:
            (raw text of the reply, usage)
        """
        pass

    async def invoke(
        self,
        messages: list[dict],
        output_format: type[BaseModel] | None = None,
        signal: "AbortSignal | None" = None,
    ) -> ChatInvokeCompletion:
        """
        Generate a completion.

        Args:
            messages: Chat messages ({"role", "content"} dicts)
            output_format: Pydantic model the reply must parse into
            signal: Abort signal; aborting cancels the request

        Returns:
            ChatInvokeCompletion with a str completion, or an output_format instance

        Raises:
            LLMError: Provider failure or unparseable structured output
        """
        if signal is not None and signal.aborted:
            raise LLMError(f"{self.provider} request aborted")

        request = self._complete(messages, output_format)
        if signal is None:
            text, usage = await self._guard(request)
        else:
            text, usage = await self._guard(_race_signal(request, signal, self.provider))

        if output_format is None:
            return ChatInvokeCompletion(completion=text, usage=usage)
        return ChatInvokeCompletion(completion=parse_structured_output(text, output_format), usage=usage)

    async def _guard(self, awaitable: Any) -> tuple[str, ChatInvokeUsage | None]:
        try:
            return await awaitable
        except LLMError:
            raise
        except Exception as e:
            raise LLMError(f"{self.provider} request failed: {e}") from e

    @abstractmethod
    async def close(self) -> None:
        """Close client connections."""
        pass


def parse_structured_output(text: str, output_format: type[BaseModel]) -> BaseModel:
    """Parse a JSON reply (fenced blocks tolerated) into output_format."""
    try:
        return output_format.model_validate_json(extract_json_from_markdown(text))
    except ValidationError as e:
        raise LLMError(f"Could not parse model output as {output_format.__name__}: {e}") from e


async def _race_signal(awaitable: Any, signal: "AbortSignal", provider: str) -> Any:
    task = asyncio.ensure_future(awaitable)
    waiter = asyncio.ensure_future(signal.wait())
    try:
        await asyncio.wait({task, waiter}, return_when=asyncio.FIRST_COMPLETED)
    except asyncio.CancelledError:
        task.cancel()
        raise
    finally:
        waiter.cancel()

    if task.done():
        return task.result()
    task.cancel()
    raise LLMError(f"{provider} request aborted")


def output_format_instructions(output_format: type[BaseModel]) -> str:
    """Instruction appended to the system prompt when JSON output is required."""
    schema = json.dumps(output_format.model_json_schema(), indent=None)
    return f"Respond with a single JSON object matching this JSON schema:\n{schema}"
