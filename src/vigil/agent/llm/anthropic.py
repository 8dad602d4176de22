"""
Anthropic LLM Client - Claude API integration for Vigil.
"""

import logging
import os
from typing import Any

from pydantic import BaseModel

from vigil.agent.llm.base import BaseLLM, ChatInvokeUsage, output_format_instructions

logger = logging.getLogger(__name__)


class AnthropicLLM(BaseLLM):
    """Anthropic Claude messages client."""

    provider = "anthropic"

    def __init__(
        self,
        api_key: str | None = None,
        model: str = "claude-3-5-sonnet-20241022",
        temperature: float = 0.0,
        max_tokens: int = 4096,
    ):
        from anthropic import AsyncAnthropic

        super().__init__(model)
        self._client = AsyncAnthropic(
            api_key=api_key or os.getenv("ANTHROPIC_API_KEY"),
        )
        self._temperature = temperature
        self._max_tokens = max_tokens

    async def _complete(
        self,
        messages: list[dict],
        output_format: type[BaseModel] | None,
    ) -> tuple[str, ChatInvokeUsage | None]:
        # Anthropic takes the system prompt separately
        system_parts = []
        anthropic_messages = []

        for msg in messages:
            if msg["role"] == "system":
                system_parts.append(msg["content"])
            else:
                anthropic_messages.append({"role": msg["role"], "content": msg["content"]})

        if output_format is not None:
            system_parts.append(output_format_instructions(output_format))

        params: dict[str, Any] = {
            "model": self.model,
            "messages": anthropic_messages,
            "max_tokens": self._max_tokens,
            "temperature": self._temperature,
        }

        if system_parts:
            params["system"] = "\n\n".join(system_parts)

        response = await self._client.messages.create(**params)

        text = "".join(block.text for block in response.content if block.type == "text")
        return text, _usage(response)

    async def close(self) -> None:
        """Close client."""
        await self._client.close()


def _usage(response: Any) -> ChatInvokeUsage | None:
    usage = getattr(response, "usage", None)
    if usage is None:
        return None

    return ChatInvokeUsage(
        prompt_tokens=usage.input_tokens or 0,
        completion_tokens=usage.output_tokens or 0,
        prompt_cached_tokens=getattr(usage, "cache_read_input_tokens", None),
    )
