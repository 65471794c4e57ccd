"""Logging setup for the bridge: JSON lines in production, plain text otherwise.

Connection and server log calls attach context through ``extra=``; both
formatters surface those fields so one client's lifecycle can be followed
across interleaved log lines.
"""

import json
import logging
import os
import sys
from datetime import datetime, timezone
from typing import Any, Dict, Optional

# Record attributes passed via extra= by link_bridge loggers
CONTEXT_FIELDS = ("connection_id", "remote_address", "client_count", "port")


class JSONFormatter(logging.Formatter):
    """Format log records as JSON for structured logging in production."""

    def format(self, record: logging.LogRecord) -> str:
        log_data: Dict[str, Any] = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }

        if record.exc_info:
            log_data["exception"] = self.formatException(record.exc_info)

        # Connection context (e.g., connection_id, client_count)
        for key in CONTEXT_FIELDS:
            if hasattr(record, key):
                log_data[key] = getattr(record, key)

        # stop() and broadcast_threadsafe() are called from producer threads
        if record.threadName != "MainThread":
            log_data["thread"] = record.threadName

        return json.dumps(log_data, default=str)


class ConsoleFormatter(logging.Formatter):
    """Human-readable lines with a [conn N] tag when the record carries one."""

    def __init__(self):
        super().__init__(
            fmt="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
            datefmt="%Y-%m-%d %H:%M:%S",
        )

    def format(self, record: logging.LogRecord) -> str:
        line = super().format(record)
        connection_id = getattr(record, "connection_id", None)
        if connection_id is not None:
            line = f"{line} [conn {connection_id}]"
        return line


def configure_logging(level: str = "INFO", json_output: Optional[bool] = None) -> None:
    """Configure root logging.

    json_output defaults to LINKBRIDGE_ENV: production/prod/staging get JSON
    lines, anything else gets ConsoleFormatter text.
    """
    if json_output is None:
        env = os.environ.get("LINKBRIDGE_ENV", "development").lower()
        json_output = env in ("production", "prod", "staging")

    root_logger = logging.getLogger()
    root_logger.setLevel(level.upper())
    root_logger.handlers.clear()

    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setFormatter(JSONFormatter() if json_output else ConsoleFormatter())
    root_logger.addHandler(console_handler)

    # Handshake failures from port scanners are logged by websockets itself
    logging.getLogger("websockets").setLevel(logging.WARNING)
