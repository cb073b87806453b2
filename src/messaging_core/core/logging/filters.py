"""
Logging filters.

- RequestIdFilter: stamps every LogRecord with the request id of the current
  context (set by RequestIDMiddleware) so request logs can be correlated.
- RedactFilter: masks sensitive `extra` attributes. Message bodies exchanged
  between patients and mentors are treated as sensitive and never reach a log
  sink, even when a call site passes them by mistake.

The request id lives in a `contextvars.ContextVar`, which follows asyncio tasks
and awaits (unlike threading.local()).
"""

import logging
from logging import LogRecord
import contextvars

_request_id_ctx: contextvars.ContextVar[str | None] = contextvars.ContextVar(
    "request_id", default=None
)


def set_request_id(request_id: str | None):
    """
    Set the request id in the current context.

    Returns:
        token: pass it to reset_request_id(token) to restore the previous value.
    """
    return _request_id_ctx.set(request_id)


def reset_request_id(token):
    _request_id_ctx.reset(token)


def get_request_id() -> str | None:
    return _request_id_ctx.get()


class RequestIdFilter(logging.Filter):
    """
    Guarantee every LogRecord has a `request_id` attribute.

    Order of precedence: an explicit `extra={"request_id": ...}`, then the
    contextvar, then the sentinel "-". Never drops a record.
    """

    def filter(self, record: LogRecord) -> bool:
        record.request_id = (
            getattr(record, "request_id", None) or get_request_id() or "-"
        )
        return True


class RedactFilter(logging.Filter):
    REDACTED = "***REDACTED***"
    SENSITIVE = {
        "password",
        "secret",
        "token",
        "access_token",
        "refresh_token",
        "authorization",
        "content",
        "attachment_url",
        "email",
    }

    def filter(self, record: LogRecord) -> bool:
        for key in list(record.__dict__.keys()):
            if key.lower() in self.SENSITIVE:
                record.__dict__[key] = self.REDACTED
        return True
