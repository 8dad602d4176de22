"""
Tools Registry - Action registration and execution for Vigil.

Provides decorator-based action registration with automatic Pydantic model
generation for LLM tool calling, and execute_action(): validation, secret
placeholder substitution, cooperative cancellation and error classification.
"""

import asyncio
import copy
import inspect
import logging
from collections.abc import Callable
from typing import TYPE_CHECKING, Any, get_type_hints

from pydantic import BaseModel, Field, ValidationError, create_model

from vigil.exceptions import (
    ActionAbortedError,
    ActionError,
    ActionNotFoundError,
    ActionValidationError,
    BrowserError,
    VigilError,
)
from vigil.utils.domain import is_new_tab_page, match_url_with_domain_pattern
from vigil.utils.text import replace_secret_placeholders

if TYPE_CHECKING:
    from vigil.browser.session import BrowserSession
    from vigil.browser.views import BrowserStateSummary

logger = logging.getLogger(__name__)

# Parameters filled from the ActionContext instead of the LLM's arguments
INJECTED_PARAMS = (
    "session",
    "browser_state",
    "file_system",
    "page_extraction_llm",
    "available_file_paths",
    "signal",
)

SensitiveData = dict[str, str | dict[str, str]]


class AbortSignal:
    """
    Cooperative cancellation flag for action execution.

    Usage:
        signal = AbortSignal()
        task = asyncio.create_task(registry.execute_action("wait", {"seconds": 5}, ActionContext(signal=signal)))
        signal.abort("user cancelled")
    """

    def __init__(self):
        self._event = asyncio.Event()
        self._reason: Any = None

    @property
    def aborted(self) -> bool:
        return self._event.is_set()

    @property
    def reason(self) -> Any:
        return self._reason

    def abort(self, reason: Any = None) -> None:
        if self._event.is_set():
            return
        self._reason = reason
        self._event.set()

    async def wait(self) -> None:
        await self._event.wait()


class ActionResult(BaseModel):
    """Result of an action execution."""

    success: bool = True
    message: str = ""
    error: str | None = None
    data: dict = Field(default_factory=dict)

    @classmethod
    def ok(cls, message: str = "", **data) -> "ActionResult":
        return cls(success=True, message=message, data=data)

    @classmethod
    def fail(cls, error: str) -> "ActionResult":
        return cls(success=False, error=error)

    @property
    def is_done(self) -> bool:
        return bool(self.data.get("done"))


class Action(BaseModel):
    """Registered action metadata."""

    name: str
    description: str
    func: Callable = Field(exclude=True)
    param_model: type[BaseModel] | None = None
    domains: list[str] | None = None

    model_config = {"arbitrary_types_allowed": True}

    def is_available_for(self, url: str | None) -> bool:
        if not self.domains:
            return True
        if not url:
            return False
        return any(match_url_with_domain_pattern(url, pattern) for pattern in self.domains)


class ActionContext(BaseModel):
    """Everything an action may need besides its own parameters."""

    browser_session: Any = None
    browser_state: Any = None
    page_extraction_llm: Any = None
    file_system: Any = None
    available_file_paths: list[str] | None = None
    sensitive_data: SensitiveData | None = None
    signal: AbortSignal | None = None

    model_config = {"arbitrary_types_allowed": True}


class ToolRegistry:
    """
    Registry for browser actions.

    Actions are registered with @action decorator and can be
    executed by name with parameter validation.
    """

    def __init__(self, exclude_actions: list[str] | None = None):
        self._actions: dict[str, Action] = {}
        self._exclude = set(exclude_actions or [])
        self._session: BrowserSession | None = None
        self._browser_state: BrowserStateSummary | None = None

    def set_context(
        self,
        session: "BrowserSession",
        browser_state: "BrowserStateSummary | None" = None,
    ) -> None:
        """Set default execution context for execute()."""
        self._session = session
        self._browser_state = browser_state

    def action(self, description: str, domains: list[str] | None = None) -> Callable:
        """
        Decorator to register an action.

        Usage:
            @registry.action("Click element by index")
            async def click(index: int, session: BrowserSession) -> ActionResult:
                ...

        Args:
            description: Shown to the LLM
            domains: Only offer the action on pages matching these patterns
        """

        def decorator(func: Callable) -> Callable:
            if func.__name__ in self._exclude:
                return func

            action = Action(
                name=func.__name__,
                description=description,
                func=func,
                param_model=self._create_param_model(func),
                domains=domains,
            )
            self._actions[func.__name__] = action

            logger.debug(f"Registered action: {func.__name__}")
            return func

        return decorator

    def _create_param_model(self, func: Callable) -> type[BaseModel]:
        """Create Pydantic model from function parameters."""
        sig = inspect.signature(func)

        # Forward refs to session types may not resolve here
        try:
            hints = get_type_hints(func, include_extras=False)
        except NameError:
            hints = getattr(func, "__annotations__", {})

        fields = {}
        for name, param in sig.parameters.items():
            if name == "self" or name in INJECTED_PARAMS:
                continue

            annotation = hints.get(name)
            if annotation is None or isinstance(annotation, str):
                annotation = Any

            default = ... if param.default is inspect.Parameter.empty else param.default
            fields[name] = (annotation, default)

        return create_model(f"{func.__name__}Params", **fields)

    # ===== Execution =====

    async def execute_action(
        self,
        name: str,
        params: dict[str, Any],
        context: ActionContext | None = None,
    ) -> ActionResult:
        """
        Validate and run an action.

        Args:
            name: Action name
            params: Raw parameters from the LLM
            context: Session, signal, secrets and other injectables

        Returns:
            ActionResult from the action

        Raises:
            ActionNotFoundError: Unknown action name
            ActionValidationError: Parameters do not match the action schema
            ActionAbortedError: The signal was aborted before or during execution
            BrowserError: Raised by the action itself
            ActionError: Any other failure, wrapping the original exception
        """
        context = context or ActionContext()

        action = self._actions.get(name)
        if action is None:
            raise ActionNotFoundError(f"Action {name} not found")

        try:
            validated = action.param_model.model_validate(params or {}) if action.param_model else None
        except ValidationError as e:
            raise ActionValidationError(f"Invalid parameters for action {name}: {e}") from e
        kwargs = validated.model_dump() if validated is not None else {}

        session = context.browser_session
        if context.sensitive_data:
            kwargs = self._replace_sensitive_data(kwargs, context.sensitive_data, _current_url(session))

        sig = inspect.signature(action.func)
        injectables = {
            "session": session,
            "browser_state": context.browser_state,
            "file_system": context.file_system,
            "page_extraction_llm": context.page_extraction_llm,
            "available_file_paths": context.available_file_paths or [],
            "signal": context.signal,
        }
        for param_name, value in injectables.items():
            if param_name in sig.parameters:
                if param_name == "session" and value is None:
                    raise ActionError(f"Action {name} requires a browser session, but none is set")
                kwargs[param_name] = value

        signal = context.signal
        if signal is not None and signal.aborted:
            raise ActionAbortedError(reason=signal.reason)

        try:
            result = await self._run_with_signal(action.func, kwargs, signal)
        except (BrowserError, ActionAbortedError):
            raise
        except Exception as e:
            if signal is not None and signal.aborted:
                raise ActionAbortedError(reason=signal.reason or e) from e
            raise ActionError(f"Error executing action {name}: {e}") from e

        if not isinstance(result, ActionResult):
            result = ActionResult.ok(str(result) if result else "")
        return result

    async def _run_with_signal(self, func: Callable, kwargs: dict[str, Any], signal: AbortSignal | None) -> Any:
        if signal is None:
            return await _call(func, kwargs)

        task = asyncio.ensure_future(_call(func, kwargs))
        abort_waiter = asyncio.ensure_future(signal.wait())
        try:
            await asyncio.wait({task, abort_waiter}, return_when=asyncio.FIRST_COMPLETED)
        except asyncio.CancelledError:
            task.cancel()
            abort_waiter.cancel()
            raise

        if task.done():
            abort_waiter.cancel()
            return task.result()

        task.cancel()
        task.add_done_callback(_consume_task_result)
        raise ActionAbortedError(reason=signal.reason)

    def _replace_sensitive_data(
        self,
        params: dict[str, Any],
        sensitive_data: SensitiveData,
        current_url: str | None,
    ) -> dict[str, Any]:
        applicable: dict[str, str] = {}
        for key, content in sensitive_data.items():
            if isinstance(content, dict):
                if (
                    current_url
                    and not is_new_tab_page(current_url)
                    and match_url_with_domain_pattern(current_url, key)
                ):
                    applicable.update(content)
            elif isinstance(content, str):
                applicable[key] = content

        replaced: set[str] = set()
        missing: set[str] = set()

        def traverse(value: Any) -> Any:
            if isinstance(value, str):
                new_value, used, absent = replace_secret_placeholders(value, applicable)
                replaced.update(used)
                missing.update(absent)
                return new_value
            if isinstance(value, list):
                return [traverse(item) for item in value]
            if isinstance(value, dict):
                return {k: traverse(v) for k, v in value.items()}
            return value

        processed = traverse(copy.deepcopy(params))

        if replaced:
            url_info = f" on {current_url}" if current_url and not is_new_tab_page(current_url) else ""
            logger.info(f"Using sensitive data placeholders: {', '.join(sorted(replaced))}{url_info}")
        if missing:
            logger.warning(f"Missing or empty keys in sensitive_data dictionary: {', '.join(sorted(missing))}")

        return processed

    async def execute(self, name: str, params: dict, context: ActionContext | None = None) -> ActionResult:
        """
        Execute action by name, reporting every failure as ActionResult.fail.

        Args:
            name: Action name
            params: Action parameters
            context: Execution context (default: the one given to set_context)

        Returns:
            ActionResult from action execution
        """
        if context is None:
            context = ActionContext(browser_session=self._session, browser_state=self._browser_state)

        try:
            return await self.execute_action(name, params, context)
        except ActionNotFoundError:
            return ActionResult.fail(f"Unknown action: {name}")
        except ActionValidationError as e:
            return ActionResult.fail(f"Invalid parameters: {e.__cause__ or e}")
        except ActionAbortedError as e:
            return ActionResult.fail(str(e))
        except ActionError as e:
            cause = e.__cause__
            if cause is not None and not isinstance(cause, VigilError):
                logger.error(f"Action {name} failed: {cause}")
                return ActionResult.fail(f"System error: {cause}")
            return ActionResult.fail(str(cause or e))
        except VigilError as e:
            logger.warning(f"Action {name} failed: {e}")
            return ActionResult.fail(str(e))

    # ===== Schema =====

    def schema(self, url: str | None = None) -> list[dict]:
        """
        Generate LLM tool calling schema.

        Args:
            url: Current page URL; domain-restricted actions are only offered on matching pages

        Returns:
            List of tool definitions for LLM
        """
        tools = []

        for name, action in self._actions.items():
            if not action.is_available_for(url):
                continue

            tool = {
                "type": "function",
                "function": {
                    "name": name,
                    "description": action.description,
                    "parameters": {
                        "type": "object",
                        "properties": {},
                        "required": [],
                    },
                },
            }

            if action.param_model:
                schema = action.param_model.model_json_schema()
                tool["function"]["parameters"]["properties"] = schema.get("properties", {})
                tool["function"]["parameters"]["required"] = schema.get("required", [])

            tools.append(tool)

        return tools

    @property
    def actions(self) -> dict[str, Action]:
        """Get all registered actions."""
        return dict(self._actions)


async def _call(func: Callable, kwargs: dict[str, Any]) -> Any:
    result = func(**kwargs)
    if inspect.isawaitable(result):
        result = await result
    return result


def _current_url(session: Any) -> str | None:
    get_page = getattr(session, "get_current_page", None)
    if get_page is None:
        return None
    page = get_page()
    url = getattr(page, "url", None) if page is not None else None
    return url if isinstance(url, str) else None


def _consume_task_result(task: asyncio.Future) -> None:
    if not task.cancelled():
        task.exception()


# Global registry instance
registry = ToolRegistry()


def action(description: str, domains: list[str] | None = None) -> Callable:
    """
    Decorator to register an action with the global registry.

    Usage:
        @action("Click element by index")
        async def click(index: int) -> ActionResult:
            ...
    """
    return registry.action(description, domains=domains)
