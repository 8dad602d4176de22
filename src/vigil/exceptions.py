"""
Vigil Exceptions.

Centralized exception hierarchy for the application.
"""


class VigilError(Exception):
    """Base exception for all Vigil errors."""
    pass


class ConfigurationError(VigilError):
    """Raised when configuration is invalid or missing."""
    pass


class BrowserError(VigilError):
    """Raised when browser operations fail.

    Action execution lets these through unwrapped so callers can match on them.
    """
    pass


class LLMError(VigilError):
    """Raised when LLM communication fails."""
    pass


class ActionError(VigilError):
    """Raised when an action execution fails."""
    pass


class ActionNotFoundError(ActionError):
    """Raised when an unknown action name is executed."""
    pass


class ActionValidationError(ActionError):
    """Raised when action parameters fail schema validation."""
    pass


class ActionAbortedError(ActionError):
    """Raised when an action is cancelled through its abort signal."""

    def __init__(self, message: str = "Operation aborted", reason: object = None):
        super().__init__(message)
        self.reason = reason


class SessionClaimError(VigilError):
    """Raised when an agent cannot claim a browser session."""
    pass
