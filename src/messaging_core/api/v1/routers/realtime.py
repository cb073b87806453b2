"""
WebSocket bridge to the event bus.

    /api/v1/ws?topic=conversation:<id>   (participants only)
    /api/v1/ws?topic=user:<id>           (own id only)

The first frame is {"type": "subscribed", "topic": ...}; every following frame is
an event as JSON. Nothing is replayed: after a reconnect the client re-fetches.
Close codes: 4400 bad topic, 4401 unauthenticated, 4403 not allowed, 4404 unknown
conversation, 1013 store unavailable.
"""

import json
import logging

from fastapi import APIRouter, Depends, WebSocket, WebSocketDisconnect

from messaging_core.api.v1.dependencies import USER_ID_HEADER, get_ws_messaging_service, parse_user_id
from messaging_core.exceptions import (
    ConversationNotFoundError,
    NotAParticipantError,
    RepositoryError,
    UnauthenticatedError,
)
from messaging_core.realtime.bus import BusEvent
from messaging_core.realtime.events import parse_topic
from messaging_core.services.messaging_service import MessagingService

logger = logging.getLogger(__name__)

router = APIRouter(tags=["realtime"])

_CLOSE_CODES = {
    UnauthenticatedError: 4401,
    NotAParticipantError: 4403,
    ConversationNotFoundError: 4404,
}


async def _reject(websocket: WebSocket, exc: RepositoryError) -> None:
    code = next((c for cls, c in _CLOSE_CODES.items() if isinstance(exc, cls)), 1013 if exc.retryable else 1011)
    await websocket.send_json({"type": "error", **exc.to_payload()})
    await websocket.close(code=code)


@router.websocket("/ws")
async def events_socket(
    websocket: WebSocket,
    service: MessagingService = Depends(get_ws_messaging_service),
):
    await websocket.accept()

    topic = websocket.query_params.get("topic", "")
    try:
        user_id = parse_user_id(websocket.headers.get(USER_ID_HEADER) or websocket.query_params.get("user_id"))
    except UnauthenticatedError as exc:
        await _reject(websocket, exc)
        return

    try:
        scope, target_id = parse_topic(topic)
    except ValueError:
        await websocket.send_json({"type": "error", "detail": "Unknown topic", "code": "invalid_topic"})
        await websocket.close(code=4400)
        return

    async def forward(event: BusEvent) -> None:
        await websocket.send_text(event.model_dump_json())

    try:
        if scope == "conversation":
            subscription = await service.subscribe(forward, conversation_id=target_id, viewer_id=user_id)
        else:
            subscription = await service.subscribe(forward, user_id=target_id, viewer_id=user_id)
    except RepositoryError as exc:
        logger.info("ws.subscribe_rejected", extra={"topic": topic, "error_code": exc.error_code})
        await _reject(websocket, exc)
        return

    logger.info("ws.connected", extra={"topic": topic, "user_id": user_id})
    try:
        await websocket.send_json({"type": "subscribed", "topic": topic})
        while True:
            raw = await websocket.receive_text()
            try:
                frame = json.loads(raw)
            except ValueError:
                continue
            if isinstance(frame, dict) and frame.get("type") == "ping":
                await websocket.send_json({"type": "pong"})
    except WebSocketDisconnect:
        pass
    finally:
        subscription.close()
        logger.info("ws.disconnected", extra={"topic": topic, "user_id": user_id})
