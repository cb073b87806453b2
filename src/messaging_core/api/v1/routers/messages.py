from datetime import datetime
from uuid import UUID

from fastapi import APIRouter, Depends, Query, status

from messaging_core.api.v1.dependencies import get_current_user_id, get_messaging_service
from messaging_core.schemas.messaging import MessageView, ReadReceipt, SendMessageRequest
from messaging_core.services.messaging_service import MessagingService

router = APIRouter(tags=["messages"])


@router.get("/conversations/{conversation_id}/messages", response_model=list[MessageView])
async def list_messages(
    conversation_id: UUID,
    limit: int | None = Query(None, ge=1),
    offset: int = Query(0, ge=0),
    after: datetime | None = None,
    user_id: UUID = Depends(get_current_user_id),
    service: MessagingService = Depends(get_messaging_service),
):
    return await service.list_messages(conversation_id, user_id, limit=limit, offset=offset, after=after)


@router.post(
    "/conversations/{conversation_id}/messages",
    response_model=MessageView,
    status_code=status.HTTP_201_CREATED,
)
async def send_message(
    conversation_id: UUID,
    payload: SendMessageRequest,
    user_id: UUID = Depends(get_current_user_id),
    service: MessagingService = Depends(get_messaging_service),
):
    return await service.send_message(
        conversation_id,
        user_id,
        payload.content,
        attachment_url=payload.attachment_url,
        attachment_type=payload.attachment_type,
    )


@router.post("/conversations/{conversation_id}/read", response_model=ReadReceipt)
async def mark_read(
    conversation_id: UUID,
    user_id: UUID = Depends(get_current_user_id),
    service: MessagingService = Depends(get_messaging_service),
):
    return await service.mark_read(conversation_id, user_id)


@router.delete("/messages/{message_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_message(
    message_id: UUID,
    user_id: UUID = Depends(get_current_user_id),
    service: MessagingService = Depends(get_messaging_service),
):
    await service.delete_message(message_id, user_id)
