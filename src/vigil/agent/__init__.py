"""
Vigil Agent Module.

Provides the main agent loop and LLM integration.
"""

from vigil.agent.filesystem import FileSystem
from vigil.agent.llm import AnthropicLLM, BaseLLM, ChatInvokeCompletion, ChatInvokeUsage, OpenAILLM
from vigil.agent.loop import Agent, AgentState, MessageBuilder
from vigil.agent.views import (
    AgentConfig,
    AgentHistory,
    AgentHistoryList,
    AgentOutput,
)

__all__ = [
    "Agent",
    "AgentConfig",
    "AgentState",
    "MessageBuilder",
    "FileSystem",
    "BaseLLM",
    "ChatInvokeCompletion",
    "ChatInvokeUsage",
    "OpenAILLM",
    "AnthropicLLM",
    "AgentOutput",
    "AgentHistory",
    "AgentHistoryList",
]
