"""
Request ID middleware for FastAPI / Starlette.

Every HTTP request gets a correlation id: the incoming `X-Request-ID` header
when it is a sane value, otherwise a fresh UUID4. The id is stored in the
request-id contextvar (picked up by RequestIdFilter) and echoed back in the
`X-Request-ID` response header.

Register it early in the app factory:

    app.add_middleware(RequestIDMiddleware)
"""

import re
import uuid
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from .filters import set_request_id, reset_request_id

REQUEST_ID_HEADER = "X-Request-ID"

# Upstream ids are echoed into logs; reject anything that could inject lines or bloat records.
_VALID_REQUEST_ID = re.compile(r"^[A-Za-z0-9._:-]{1,128}$")


def choose_request_id(incoming: str | None) -> str:
    if incoming and _VALID_REQUEST_ID.match(incoming):
        return incoming
    return str(uuid.uuid4())


class RequestIDMiddleware(BaseHTTPMiddleware):

    async def dispatch(self, request: Request, call_next):
        rid = choose_request_id(request.headers.get(REQUEST_ID_HEADER))
        token = set_request_id(rid)
        try:
            response = await call_next(request)
            response.headers[REQUEST_ID_HEADER] = rid
            return response
        finally:
            reset_request_id(token)
