"""
OpenAI LLM Client - OpenAI API integration for Vigil.
"""

import logging
import os
from typing import Any

from pydantic import BaseModel

from vigil.agent.llm.base import BaseLLM, ChatInvokeUsage, output_format_instructions

logger = logging.getLogger(__name__)


class OpenAILLM(BaseLLM):
    """OpenAI chat completions client."""

    provider = "openai"

    def __init__(
        self,
        api_key: str | None = None,
        model: str = "gpt-4o",
        temperature: float = 0.0,
        max_tokens: int = 4096,
        base_url: str | None = None,
    ):
        from openai import AsyncOpenAI

        super().__init__(model)
        self._client = AsyncOpenAI(
            api_key=api_key or os.getenv("OPENAI_API_KEY"),
            base_url=base_url,
        )
        self._temperature = temperature
        self._max_tokens = max_tokens

    async def _complete(
        self,
        messages: list[dict],
        output_format: type[BaseModel] | None,
    ) -> tuple[str, ChatInvokeUsage | None]:
        params: dict[str, Any] = {
            "model": self.model,
            "messages": list(messages),
            "temperature": self._temperature,
            "max_tokens": self._max_tokens,
        }

        if output_format is not None:
            params["messages"] = [
                {"role": "system", "content": output_format_instructions(output_format)},
                *messages,
            ]
            params["response_format"] = {"type": "json_object"}

        response = await self._client.chat.completions.create(**params)
        content = response.choices[0].message.content or ""

        return content, _usage(response)

    async def close(self) -> None:
        """Close client."""
        await self._client.close()


def _usage(response: Any) -> ChatInvokeUsage | None:
    usage = getattr(response, "usage", None)
    if usage is None:
        return None

    details = getattr(usage, "prompt_tokens_details", None)
    return ChatInvokeUsage(
        prompt_tokens=usage.prompt_tokens or 0,
        completion_tokens=usage.completion_tokens or 0,
        prompt_cached_tokens=getattr(details, "cached_tokens", None) if details else None,
    )
