"""
Vigil Logging Module.

Provides structured logging with Rich console output.
"""

from vigil.logging.config import (
    VigilLogger,
    console,
    get_logger,
    logger,
    setup_logging,
)
from vigil.logging.formatters import JSONFormatter, create_file_handler

__all__ = [
    "setup_logging",
    "get_logger",
    "VigilLogger",
    "logger",
    "console",
    "JSONFormatter",
    "create_file_handler",
]
