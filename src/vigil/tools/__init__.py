"""
Vigil Tools Module.

Provides the action registry and core browser actions.
"""

# Import actions to register them
from vigil.tools import actions as _actions  # noqa: F401
from vigil.tools.registry import (
    AbortSignal,
    Action,
    ActionContext,
    ActionResult,
    ToolRegistry,
    action,
    registry,
)

__all__ = [
    "AbortSignal",
    "Action",
    "ActionContext",
    "ActionResult",
    "ToolRegistry",
    "registry",
    "action",
]
