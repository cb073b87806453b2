"""
FastAPI exception handlers that map messaging exceptions to HTTP responses.

Services raise messaging_core.exceptions.* (ConversationNotFoundError,
NotAParticipantError, TransientStoreError, ...). These handlers produce stable
JSON payloads (via .to_payload()) and the right HTTP status (via .http_status()).
"""

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
import logging
from messaging_core.exceptions.base import (
    RepositoryError,
    DuplicateError,
    NotFoundError,
    UnauthenticatedError,
    NotAParticipantError,
    TransientStoreError,
)

logger = logging.getLogger(__name__)


# Most specific first. Mapping itself lives in the exception classes.

async def unauthenticated_handler(request: Request, exc: UnauthenticatedError) -> JSONResponse:
    """
    401 Unauthorized.
    """
    logger.info("api.unauthenticated", extra={"method": request.method, "path": request.url.path})
    return JSONResponse(
        status_code=exc.http_status(),
        content=exc.to_payload(),
        headers={"WWW-Authenticate": "X-User-ID"},
    )


async def not_a_participant_handler(request: Request, exc: NotAParticipantError) -> JSONResponse:
    """
    403 Forbidden.
    """
    logger.info("api.not_a_participant", extra={"method": request.method, "path": request.url.path})
    return JSONResponse(status_code=exc.http_status(), content=exc.to_payload())


async def not_found_handler(request: Request, exc: NotFoundError) -> JSONResponse:
    """
    404 Not Found (conversation_not_found, message_not_found, not_found).
    """
    logger.info(
        "api.not_found",
        extra={"method": request.method, "path": request.url.path, "error_code": exc.error_code},
    )
    return JSONResponse(status_code=exc.http_status(), content=exc.to_payload())


async def duplicate_error_handler(request: Request, exc: DuplicateError) -> JSONResponse:
    """
    409 Conflict.
    Payload: exc.to_payload() -> {"detail": "...", "code": "duplicate", "fields": [...]}
    """
    logger.info("api.duplicate", extra={"method": request.method, "path": request.url.path, "fields": exc.fields})
    return JSONResponse(status_code=exc.http_status(), content=exc.to_payload())


async def transient_store_error_handler(request: Request, exc: TransientStoreError) -> JSONResponse:
    """
    503 Service Unavailable; the client may retry unchanged.
    """
    logger.warning("api.store_unavailable", extra={"method": request.method, "path": request.url.path})
    return JSONResponse(status_code=exc.http_status(), content=exc.to_payload(), headers={"Retry-After": "1"})


async def repository_error_handler(request: Request, exc: RepositoryError) -> JSONResponse:
    """
    Fallback for every other messaging error (status from its error_code, 400 by default).
    Keep the message user-friendly; do not include DB internals.
    """
    logger.warning(
        "api.repository_error",
        extra={"method": request.method, "path": request.url.path, "error_code": exc.error_code, "error": str(exc)},
    )
    return JSONResponse(status_code=exc.http_status(), content=exc.to_payload())


def register_exception_handlers(app: FastAPI) -> None:
    app.add_exception_handler(UnauthenticatedError, unauthenticated_handler)
    app.add_exception_handler(NotAParticipantError, not_a_participant_handler)
    app.add_exception_handler(NotFoundError, not_found_handler)
    app.add_exception_handler(DuplicateError, duplicate_error_handler)
    app.add_exception_handler(TransientStoreError, transient_store_error_handler)
    app.add_exception_handler(RepositoryError, repository_error_handler)
