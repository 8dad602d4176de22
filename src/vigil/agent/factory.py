"""
Agent Factory.

Helpers for creating agent components.
"""

from typing import TYPE_CHECKING

from vigil.agent.llm import AnthropicLLM, OpenAILLM
from vigil.config import LLMSettings
from vigil.exceptions import ConfigurationError

if TYPE_CHECKING:
    from vigil.agent.llm import BaseLLM


def create_llm_client(settings: LLMSettings) -> "BaseLLM":
    """
    Create LLM client from settings.

    Args:
        settings: Provider, model and temperature

    Returns:
        Configured LLM client
    """
    model = settings.resolved_model()
    if settings.provider == "anthropic":
        return AnthropicLLM(model=model, temperature=settings.temperature)
    if settings.provider == "openai":
        return OpenAILLM(model=model, temperature=settings.temperature)
    raise ConfigurationError(f"Unknown LLM provider: {settings.provider}")
