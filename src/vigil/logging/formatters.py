"""
Log Formatters - JSON output for log files.

Console output goes through Rich; files get one JSON object per line.
"""

import json
import logging
from datetime import UTC, datetime

# LogRecord attributes copied into the JSON payload when a caller passes them via `extra=`
EXTRA_FIELDS = ("event_type", "event_id", "agent_id", "step_num", "action")


class JSONFormatter(logging.Formatter):
    """
    JSON log formatter for structured log output.

    Useful for log aggregation and for correlating watchdog errors with the
    events that caused them.
    """

    def format(self, record: logging.LogRecord) -> str:
        log_data = {
            "timestamp": datetime.fromtimestamp(record.created, UTC).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }

        for name in EXTRA_FIELDS:
            if hasattr(record, name):
                log_data[name] = getattr(record, name)

        if record.exc_info:
            log_data["exception"] = self.formatException(record.exc_info)

        return json.dumps(log_data, default=str)


def create_file_handler(
    path: str,
    formatter: logging.Formatter | None = None,
    level: int = logging.DEBUG,
) -> logging.FileHandler:
    """
    Create a file handler with specified formatter.

    Args:
        path: Log file path
        formatter: Log formatter (defaults to JSONFormatter)
        level: Logging level

    Returns:
        Configured file handler
    """
    handler = logging.FileHandler(path, encoding="utf-8")
    handler.setLevel(level)
    handler.setFormatter(formatter or JSONFormatter())
    return handler
