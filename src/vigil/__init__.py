"""
Vigil - Multi-agent browser session core with health watchdogs.

A browser session owns one Chrome connection, an event bus and a set of
watchdogs; agents claim it exclusively or share it, and drive it through
registered actions.

Usage:
    from vigil import Agent, BrowserSession
    from vigil.agent.llm import OpenAILLM

    async with BrowserSession() as session:
        agent = Agent("Click the login button", llm=OpenAILLM(), browser_session=session)
        history = await agent.run()
        await agent.close()
"""

__version__ = "0.1.0"

from vigil.agent import Agent, AgentConfig, AgentHistoryList, AgentState
from vigil.browser import BrowserProfile, BrowserSession, BrowserStateSummary
from vigil.events import Event, EventBus
from vigil.logging import logger, setup_logging
from vigil.tools import ActionResult, action, registry

__all__ = [
    "__version__",
    "Agent",
    "AgentConfig",
    "AgentHistoryList",
    "AgentState",
    "BrowserSession",
    "BrowserProfile",
    "BrowserStateSummary",
    "registry",
    "action",
    "ActionResult",
    "EventBus",
    "Event",
    "setup_logging",
    "logger",
]
