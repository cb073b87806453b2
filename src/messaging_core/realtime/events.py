"""
Realtime notifications and their topics.

Events are notifications, not data: they carry ids and timestamps so a session
knows *that* something changed, then re-fetches the authoritative rows.
"""

from datetime import datetime
from typing import Annotated, Literal, Union
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter

CONVERSATION_TOPIC_PREFIX = "conversation:"
USER_TOPIC_PREFIX = "user:"


def conversation_topic(conversation_id: UUID) -> str:
    return f"{CONVERSATION_TOPIC_PREFIX}{conversation_id}"


def user_topic(user_id: UUID) -> str:
    return f"{USER_TOPIC_PREFIX}{user_id}"


def parse_topic(topic: str) -> tuple[str, UUID]:
    """
    Split "conversation:<uuid>" / "user:<uuid>" into (scope, id).

    Raises:
        ValueError: unknown scope or malformed id.
    """
    scope, sep, raw_id = topic.partition(":")
    if not sep or scope not in ("conversation", "user"):
        raise ValueError(f"Unknown topic: {topic!r}")
    return scope, UUID(raw_id)


class _Event(BaseModel):
    model_config = ConfigDict(frozen=True)


class MessageInserted(_Event):
    type: Literal["message_inserted"] = "message_inserted"
    conversation_id: UUID
    message_id: UUID
    sender_id: UUID
    created_at: datetime

    @property
    def topic(self) -> str:
        return conversation_topic(self.conversation_id)


class MessageDeleted(_Event):
    type: Literal["message_deleted"] = "message_deleted"
    conversation_id: UUID
    message_id: UUID

    @property
    def topic(self) -> str:
        return conversation_topic(self.conversation_id)


class ParticipantAdded(_Event):
    """A participant row was created for `user_id`; published on that user's topic."""
    type: Literal["participant_added"] = "participant_added"
    conversation_id: UUID
    user_id: UUID

    @property
    def topic(self) -> str:
        return user_topic(self.user_id)


Event = Annotated[Union[MessageInserted, MessageDeleted, ParticipantAdded], Field(discriminator="type")]

_event_adapter: TypeAdapter[Event] = TypeAdapter(Event)


def parse_event(raw: str | bytes) -> MessageInserted | MessageDeleted | ParticipantAdded:
    """Decode a JSON event produced by `event.model_dump_json()`."""
    return _event_adapter.validate_json(raw)
