"""
Custom logging formatters.

  - JsonFormatter: structured JSON lines for log collectors; includes service,
    env, version and request_id plus every `extra` field of the record.
  - ColorFormatter: compact ANSI-colored lines for local development consoles.

Event names are the log message (e.g. "directory.find_or_create.created"); the
interesting data travels in `extra` and becomes top-level JSON keys.
"""

import json
import logging
from typing import Any
from logging import LogRecord
from messaging_core.utils.logging import get_project_version

PROJECT_VERSION = get_project_version()

# Attributes every LogRecord has; anything else on the record came from `extra`.
_RESERVED_ATTRS = frozenset(
    vars(logging.LogRecord("", logging.INFO, "", 0, "", (), None)).keys()
) | {"message", "asctime", "request_id", "taskName"}


class JsonFormatter(logging.Formatter):
    """
    Structured JSON formatter.

    Args:
        env: environment name ("development", "production", ...).
        service: logical service name.
        datefmt: passed to logging.Formatter (used by formatTime).

    Never raises: non-serializable extras are converted with str().
    """

    def __init__(self, *, env: str | None = None, service: str = "messaging-core", datefmt: str | None = None):
        super().__init__(datefmt=datefmt)
        self.env = env
        self.service = service

    def format(self, record: LogRecord) -> str:
        log_record: dict[str, Any] = {
            "timestamp": self.formatTime(record, self.datefmt),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "pathname": record.pathname,
            "lineno": record.lineno,
            "request_id": getattr(record, "request_id", "-"),
            "service": self.service,
            "env": self.env,
            "version": PROJECT_VERSION,
        }

        if record.exc_info:
            log_record["exc_info"] = self.formatException(record.exc_info)
        if record.stack_info:
            log_record["stack_info"] = self.formatStack(record.stack_info)

        for key, value in record.__dict__.items():
            if key in _RESERVED_ATTRS or key in log_record or key.startswith("_"):
                continue
            try:
                json.dumps(value)
                log_record[key] = value
            except (TypeError, ValueError):
                # UUIDs, datetimes, enums...
                log_record[key] = str(value)

        return json.dumps(log_record, ensure_ascii=False, default=str)


class ColorFormatter(logging.Formatter):
    """
    Development-friendly colored formatter:

        TIMESTAMP | LEVEL | LOGGER | REQUEST_ID | MESSAGE key=value ...

    Only the level name is colored. Extras are appended as key=value pairs so
    structured events stay readable in a terminal.
    """

    COLOR_CODES = {
        "DEBUG": "\033[1;36;47m",     # bold cyan on white
        "INFO": "\033[32m",           # green
        "WARNING": "\033[33m",        # yellow
        "ERROR": "\033[31m",          # red
        "CRITICAL": "\033[1;41m",     # bold on red
        "RESET": "\033[0m",
    }

    def __init__(self, fmt: str | None = None, datefmt: str | None = None) -> None:
        super().__init__(fmt=fmt, datefmt=datefmt)

    def format(self, record: LogRecord) -> str:
        color = self.COLOR_CODES.get(record.levelname, "")
        reset = self.COLOR_CODES["RESET"]
        timestamp = self.formatTime(record, self.datefmt)

        extras = " ".join(
            f"{key}={value}"
            for key, value in record.__dict__.items()
            if key not in _RESERVED_ATTRS and not key.startswith("_")
        )

        base = (
            f"{timestamp} | {color}{record.levelname:<10}{reset} | "
            f"{record.name:<30} | "
            f"{getattr(record, 'request_id', '-'):<10} | "
            f"{record.getMessage()}"
        )
        if extras:
            base = f"{base} {extras}"

        if record.exc_info:
            base = base + "\n" + self.formatException(record.exc_info)

        return base
