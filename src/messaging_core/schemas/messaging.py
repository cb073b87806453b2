"""
Pydantic views returned by the messaging services and the HTTP API.

ORM rows never leave the service layer; these models are built from them
(`from_attributes=True`) and decorated with resolved profiles.
"""

from datetime import datetime
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field

from messaging_core.models.message import MessageKind
from messaging_core.profiles.models import ContactProfile


class MessageView(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    conversation_id: UUID
    sender_id: UUID
    kind: MessageKind = MessageKind.TEXT
    content: str
    attachment_url: str | None = None
    attachment_type: str | None = None
    created_at: datetime
    updated_at: datetime
    read_at: datetime | None = None


class MessagePreview(BaseModel):
    """Last-message preview shown in the conversation list."""
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    sender_id: UUID
    content: str
    created_at: datetime
    read_at: datetime | None = None


class ParticipantView(BaseModel):
    user_id: UUID
    joined_at: datetime
    last_read_at: datetime | None = None
    profile: ContactProfile


class ConversationDetail(BaseModel):
    id: UUID
    appointment_id: str | None = None
    created_at: datetime
    updated_at: datetime
    last_message_at: datetime
    participants: list[ParticipantView]


class ConversationSummary(BaseModel):
    """One entry of a user's conversation list."""
    conversation_id: UUID
    appointment_id: str | None = None
    created_at: datetime
    last_message_at: datetime
    last_read_at: datetime | None = None
    last_message: MessagePreview | None = None
    has_unread: bool = False
    unread_count: int = 0
    other_participant: ContactProfile | None = None


class ReadReceipt(BaseModel):
    """Outcome of mark_read; either part may fail independently."""
    conversation_id: UUID
    reader_id: UUID
    read_at: datetime
    messages_marked: int = 0
    participant_updated: bool = False


# -----------------------
# Request bodies
# -----------------------

class CreateConversationRequest(BaseModel):
    other_user_id: UUID
    appointment_id: str | None = Field(default=None, max_length=100)


class SendMessageRequest(BaseModel):
    content: str = ""
    attachment_url: str | None = None
    attachment_type: str | None = Field(default=None, max_length=50)


class ConversationRef(BaseModel):
    conversation_id: UUID | None = None
