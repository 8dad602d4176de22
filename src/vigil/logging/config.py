"""
Logging Configuration - Structured logging with Rich console.

Provides pretty console logging for agent runs, plus an optional JSON log file.
"""

import logging
from pathlib import Path
from typing import Literal

from rich.console import Console
from rich.logging import RichHandler
from rich.theme import Theme

from vigil.logging.formatters import create_file_handler

# Custom theme for Vigil logs
VIGIL_THEME = Theme(
    {
        "info": "cyan",
        "warning": "yellow",
        "error": "bold red",
        "debug": "dim",
        "step": "bold green",
        "action": "bold magenta",
        "watchdog": "bold yellow",
    }
)

# Shared console instance
console = Console(theme=VIGIL_THEME)


def setup_logging(
    level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = "INFO",
    show_path: bool = False,
    log_file: str | Path | None = None,
) -> None:
    """
    Configure logging with Rich console handler.

    Args:
        level: Logging level
        show_path: Show file path in log messages
        log_file: Also write JSON lines to this file
    """
    handler = RichHandler(
        console=console,
        show_time=True,
        show_level=True,
        show_path=show_path,
        rich_tracebacks=True,
        tracebacks_show_locals=True,
        markup=True,
    )
    handler.setFormatter(logging.Formatter("%(message)s"))

    handlers: list[logging.Handler] = [handler]
    if log_file:
        Path(log_file).parent.mkdir(parents=True, exist_ok=True)
        handlers.append(create_file_handler(str(log_file)))

    vigil_logger = logging.getLogger("vigil")
    vigil_logger.setLevel(level)
    vigil_logger.handlers = handlers
    vigil_logger.propagate = False

    for name in ["vigil.browser", "vigil.agent", "vigil.events", "vigil.watchdogs"]:
        logging.getLogger(name).setLevel(level)


def get_logger(name: str) -> logging.Logger:
    """
    Get a logger with vigil prefix.

    Args:
        name: Logger name (will be prefixed with 'vigil.')

    Returns:
        Configured logger
    """
    if name != "vigil" and not name.startswith("vigil."):
        name = f"vigil.{name}"
    return logging.getLogger(name)


class VigilLogger:
    """
    Run-level logger for agents and watchdogs.

    Messages carry Rich markup for the console and `extra` fields for the
    JSON log file.
    """

    def __init__(self, name: str = "vigil"):
        self._logger = get_logger(name)

    def step(self, step_num: int, goal: str) -> None:
        """Log the goal the model chose for a step."""
        truncated = goal[:80] + ("..." if len(goal) > 80 else "")
        self._logger.info(f"[step]Step {step_num}[/step]: {truncated}", extra={"step_num": step_num})

    def action(self, name: str, target: str = "", result: str = "") -> None:
        msg = f"[action]{name}[/action]"
        if target:
            msg += f" → {target}"
        if result:
            msg += f" = {result}"
        self._logger.info(msg, extra={"action": name})

    def browser_error(self, error_type: str, message: str, source: str = "") -> None:
        """Log a health problem reported as a BrowserErrorEvent."""
        prefix = f"{source}: " if source else ""
        self._logger.warning(
            f"{prefix}[watchdog]{error_type}[/watchdog] {message}",
            extra={"event_type": "BrowserErrorEvent"},
        )

    def run_finished(self, agent_id: str, steps: int, success: bool | None) -> None:
        if success:
            self._logger.info(f"[green]✓[/green] {agent_id}: Task completed in {steps} steps")
        else:
            self._logger.info(
                f"{agent_id}: Task finished after {steps} steps: success={success}",
                extra={"agent_id": agent_id},
            )


# Default logger instance
logger = VigilLogger()
