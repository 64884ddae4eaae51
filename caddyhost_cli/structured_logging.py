"""
Logging setup for caddyhost.

Text logging by default, JSON-formatted logging when CADDYHOST_LOG_FORMAT=json.
"""

import json
import logging
import os
import sys
from datetime import datetime
from typing import Any

_EXCLUDED_FIELDS = {
    "name",
    "msg",
    "args",
    "created",
    "filename",
    "funcName",
    "levelname",
    "levelno",
    "lineno",
    "module",
    "msecs",
    "message",
    "pathname",
    "process",
    "processName",
    "relativeCreated",
    "thread",
    "threadName",
    "taskName",
    "exc_info",
    "exc_text",
    "stack_info",
}


class JSONFormatter(logging.Formatter):
    """
    JSON log formatter.

    Outputs one object per record with:
    - timestamp: ISO 8601 timestamp
    - level: Log level
    - logger: Logger name
    - message: Log message
    - extra: Any additional fields from LogRecord
    """

    def format(self, record: logging.LogRecord) -> str:
        dt = datetime.fromtimestamp(record.created)
        timestamp = dt.strftime("%Y-%m-%dT%H:%M:%S") + f".{int(record.msecs):03d}Z"

        log_entry: dict[str, Any] = {
            "timestamp": timestamp,
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }

        if record.pathname:
            log_entry["file"] = f"{record.filename}:{record.lineno}"

        if record.funcName and record.funcName != "<module>":
            log_entry["function"] = record.funcName

        if record.exc_info:
            log_entry["exception"] = self.formatException(record.exc_info)

        for key, value in record.__dict__.items():
            if key not in _EXCLUDED_FIELDS and not key.startswith("_"):
                log_entry[key] = value

        return json.dumps(log_entry, default=str)


def is_json_logging_enabled() -> bool:
    """True if CADDYHOST_LOG_FORMAT=json"""
    return os.getenv("CADDYHOST_LOG_FORMAT", "text").lower() == "json"


def setup_logging(level: str | None = None, log_file: str | None = None, force: bool = True) -> None:
    """
    Setup logging based on environment variables.

    Environment variables:
    - CADDYHOST_LOG_FORMAT: "json" or "text" (default: text)
    - CADDYHOST_LOG_LEVEL: Log level (default: WARNING)
    - CADDYHOST_LOG_FILE: Optional log file path

    Args:
        level: Override log level
        log_file: Override log file
        force: Force reconfiguration of root logger
    """
    if level is None:
        level = os.getenv("CADDYHOST_LOG_LEVEL", "WARNING")

    if log_file is None:
        log_file = os.getenv("CADDYHOST_LOG_FILE")

    handlers: list[logging.Handler] = [logging.StreamHandler(sys.stderr)]
    if log_file:
        try:
            handlers.append(logging.FileHandler(log_file))
        except OSError as e:
            print(f"Warning: Could not open log file {log_file}: {e}", file=sys.stderr)

    if is_json_logging_enabled():
        for handler in handlers:
            handler.setFormatter(JSONFormatter())
        logging.basicConfig(level=level.upper(), handlers=handlers, force=force)
    else:
        logging.basicConfig(
            level=level.upper(),
            format="%(asctime)s %(levelname)s %(name)s - %(message)s",
            handlers=handlers,
            force=force,
        )
