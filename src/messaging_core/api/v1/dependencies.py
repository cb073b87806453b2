"""
Request-scoped dependencies.

The messaging core sits behind the platform gateway, which authenticates the
session and forwards the caller's id in the `X-User-ID` header.
"""

from uuid import UUID

from fastapi import Header, Request, WebSocket

from messaging_core.exceptions import UnauthenticatedError
from messaging_core.services.messaging_service import MessagingService

USER_ID_HEADER = "X-User-ID"


def parse_user_id(raw: str | None) -> UUID:
    """
    Raises:
        UnauthenticatedError: missing or malformed id.
    """
    if not raw:
        raise UnauthenticatedError()
    try:
        return UUID(raw.strip())
    except ValueError:
        raise UnauthenticatedError("Invalid user id") from None


async def get_current_user_id(x_user_id: str | None = Header(default=None, alias=USER_ID_HEADER)) -> UUID:
    return parse_user_id(x_user_id)


def get_messaging_service(request: Request) -> MessagingService:
    return request.app.state.messaging_service


def get_ws_messaging_service(websocket: WebSocket) -> MessagingService:
    return websocket.app.state.messaging_service
