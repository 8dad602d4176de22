"""
Vigil LLM Module.

Provides LLM client implementations.
"""

from vigil.agent.llm.anthropic import AnthropicLLM
from vigil.agent.llm.base import BaseLLM, ChatInvokeCompletion, ChatInvokeUsage
from vigil.agent.llm.openai import OpenAILLM

__all__ = [
    "BaseLLM",
    "ChatInvokeCompletion",
    "ChatInvokeUsage",
    "OpenAILLM",
    "AnthropicLLM",
]
