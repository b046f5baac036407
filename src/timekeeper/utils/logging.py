# src/timekeeper/utils/logging.py
"""Structured logging with JSON format and scan correlation ID support.

Provides:
- JSON-formatted log output for structured logging
- Scan correlation ID via ContextVar, so every line logged during one
  scheduler tick can be grouped together
- Centralized logger configuration
"""

import json
import logging
from contextvars import ContextVar
from typing import Any

# Correlation ID of the scheduler scan running in the current context
scan_id_var: ContextVar[str] = ContextVar("scan_id", default="")

PLAIN_FORMAT = "%(asctime)s %(levelname)s [%(name)s] %(message)s"


def set_scan_id(scan_id: str) -> None:
    """Set the scan correlation ID for the current context.

    Args:
        scan_id: Unique identifier for the scan.
    """
    scan_id_var.set(scan_id)


def get_scan_id() -> str:
    """Get the scan correlation ID for the current context.

    Returns:
        Current scan ID, or empty string if not set.
    """
    return scan_id_var.get()


class StructuredFormatter(logging.Formatter):
    """JSON formatter for structured logging.

    Outputs log records as JSON with timestamp, level, logger name,
    message, and optional scan_id for correlation.
    """

    def format(self, record: logging.LogRecord) -> str:
        """Format a log record as JSON.

        Args:
            record: Log record to format.

        Returns:
            JSON-formatted log string.
        """
        log_data: dict[str, Any] = {
            "timestamp": self.formatTime(record),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }

        scan_id = get_scan_id()
        if scan_id:
            log_data["scan_id"] = scan_id

        if record.exc_info:
            log_data["exception"] = self.formatException(record.exc_info)

        return json.dumps(log_data)


def configure_structured_logging(
    level: int | str = logging.INFO, json_format: bool = True
) -> None:
    """Configure logging for the application.

    Sets up a StreamHandler on the root logger, using StructuredFormatter
    for JSON output or a plain text format otherwise. Calling it again
    replaces the handler installed by the previous call.

    Args:
        level: Logging level (default: logging.INFO).
        json_format: Emit JSON lines instead of plain text.
    """
    handler = logging.StreamHandler()
    handler.setFormatter(
        StructuredFormatter() if json_format else logging.Formatter(PLAIN_FORMAT)
    )
    handler.set_name("timekeeper")

    for existing in list(logging.root.handlers):
        if existing.get_name() == "timekeeper":
            logging.root.removeHandler(existing)

    logging.root.addHandler(handler)
    logging.root.setLevel(level)

    # APScheduler logs every job run at INFO; one line per tick is noise
    logging.getLogger("apscheduler").setLevel(logging.WARNING)
