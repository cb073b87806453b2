from uuid import UUID

from fastapi import APIRouter, Depends, Query, Response, status

from messaging_core.api.v1.dependencies import get_current_user_id, get_messaging_service
from messaging_core.profiles.models import ContactProfile
from messaging_core.schemas.messaging import (
    ConversationDetail,
    ConversationRef,
    ConversationSummary,
    CreateConversationRequest,
)
from messaging_core.services.messaging_service import MessagingService

router = APIRouter(prefix="/conversations", tags=["conversations"])


@router.post("", response_model=ConversationRef)
async def find_or_create_conversation(
    payload: CreateConversationRequest,
    response: Response,
    user_id: UUID = Depends(get_current_user_id),
    service: MessagingService = Depends(get_messaging_service),
):
    handle = await service.find_or_create_conversation(user_id, payload.other_user_id, payload.appointment_id)
    response.status_code = status.HTTP_201_CREATED if handle.created else status.HTTP_200_OK
    return ConversationRef(conversation_id=handle.conversation_id)


@router.get("", response_model=list[ConversationSummary])
async def list_conversations(
    offset: int = Query(0, ge=0),
    limit: int = Query(100, ge=1, le=200),
    user_id: UUID = Depends(get_current_user_id),
    service: MessagingService = Depends(get_messaging_service),
):
    return await service.list_conversations(user_id, offset=offset, limit=limit)


@router.get("/contacts", response_model=list[ContactProfile])
async def available_contacts(
    user_id: UUID = Depends(get_current_user_id),
    service: MessagingService = Depends(get_messaging_service),
):
    return await service.available_contacts(user_id)


@router.get("/by-appointment/{appointment_id}", response_model=ConversationRef)
async def get_conversation_by_appointment(
    appointment_id: str,
    user_id: UUID = Depends(get_current_user_id),
    service: MessagingService = Depends(get_messaging_service),
):
    conversation_id = await service.get_conversation_by_appointment(appointment_id, viewer_id=user_id)
    return ConversationRef(conversation_id=conversation_id)


@router.get("/{conversation_id}", response_model=ConversationDetail)
async def get_conversation(
    conversation_id: UUID,
    user_id: UUID = Depends(get_current_user_id),
    service: MessagingService = Depends(get_messaging_service),
):
    return await service.get_conversation(conversation_id, viewer_id=user_id)
