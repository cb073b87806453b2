"""
Messaging service: the entry point used by the HTTP API and by client sessions.

Each public method is one unit of work: it opens a session, runs the Conversation
Directory and/or Message Store inside it, commits, and only then publishes
realtime events, so subscribers never hear about rows that could still be rolled
back. A failed publish is logged; the data is already durable and sessions
recover by re-fetching.
"""

from contextlib import asynccontextmanager
from datetime import datetime
from typing import AsyncIterator
from uuid import UUID
import logging

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from messaging_core.config.settings import Settings, get_settings
from messaging_core.exceptions import NotAParticipantError, UnauthenticatedError
from messaging_core.exceptions.mapper import map_db_error
from messaging_core.profiles.models import ContactProfile
from messaging_core.profiles.resolver import ProfileResolver
from messaging_core.realtime.bus import BusEvent, EventBus, EventHandler, Subscription
from messaging_core.realtime.events import (
    MessageDeleted,
    MessageInserted,
    ParticipantAdded,
    conversation_topic,
    user_topic,
)
from messaging_core.schemas.messaging import (
    ConversationDetail,
    ConversationSummary,
    MessageView,
    ReadReceipt,
)
from .conversation_directory import ConversationDirectory, ConversationHandle
from .message_store import DeletedMessage, MessageStore

logger = logging.getLogger(__name__)


class MessagingService:
    """
    Args:
        session_factory: Produces one AsyncSession per unit of work.
        resolver: Profile resolver for participant decoration.
        bus: Realtime event bus.
        settings: Limits and texts; defaults to `get_settings()`.
    """

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        resolver: ProfileResolver,
        bus: EventBus,
        settings: Settings | None = None,
    ):
        self._sessions = session_factory
        self.resolver = resolver
        self.bus = bus
        self.settings = settings or get_settings()

    # -----------------------
    # Plumbing
    # -----------------------

    @asynccontextmanager
    async def _unit_of_work(self) -> AsyncIterator[AsyncSession]:
        async with self._sessions() as db:
            try:
                yield db
                await db.commit()
            except SQLAlchemyError as exc:
                await db.rollback()
                raise map_db_error(exc, "unit_of_work") from exc
            except BaseException:
                await db.rollback()
                raise

    def _directory(self, db: AsyncSession) -> ConversationDirectory:
        return ConversationDirectory(
            db,
            self.resolver,
            started_text=self.settings.CONVERSATION_STARTED_TEXT,
            preview_length=self.settings.MESSAGE_PREVIEW_LENGTH,
        )

    def _store(self, db: AsyncSession) -> MessageStore:
        return MessageStore(
            db,
            max_length=self.settings.MAX_MESSAGE_LENGTH,
            page_size=self.settings.MESSAGE_PAGE_SIZE,
            page_size_max=self.settings.MESSAGE_PAGE_SIZE_MAX,
        )

    async def _publish(self, *events: BusEvent) -> None:
        for event in events:
            try:
                await self.bus.publish(event)
            except Exception:
                logger.warning(
                    "service.publish_failed",
                    exc_info=True,
                    extra={"topic": event.topic, "event_type": event.type},
                )

    # =================================================================================================================
    # Conversations
    # =================================================================================================================

    async def find_or_create_conversation(
        self,
        user_id: UUID | None,
        other_user_id: UUID | None,
        appointment_id: str | None = None,
    ) -> ConversationHandle:
        """
        Open the conversation between the caller and `other_user_id`.

        When the conversation is new, both participants are notified on their
        user topics so their conversation lists refresh.
        """
        async with self._unit_of_work() as db:
            handle = await self._directory(db).find_or_create(user_id, other_user_id, appointment_id)

        if handle.created:
            await self._publish(
                ParticipantAdded(conversation_id=handle.conversation_id, user_id=user_id),
                ParticipantAdded(conversation_id=handle.conversation_id, user_id=other_user_id),
            )
        return handle

    async def list_conversations(
        self,
        user_id: UUID | None,
        offset: int = 0,
        limit: int = 100,
    ) -> list[ConversationSummary]:
        async with self._unit_of_work() as db:
            return await self._directory(db).get_user_conversations(user_id, offset=offset, limit=limit)

    async def get_conversation(self, conversation_id: UUID, viewer_id: UUID | None = None) -> ConversationDetail:
        """
        Raises:
            ConversationNotFoundError: unknown id.
            NotAParticipantError: `viewer_id` is given and is not a member.
        """
        async with self._unit_of_work() as db:
            detail = await self._directory(db).get_conversation(conversation_id)

        if viewer_id is not None and viewer_id not in {p.user_id for p in detail.participants}:
            raise NotAParticipantError()
        return detail

    async def get_conversation_by_appointment(self, appointment_id: str, viewer_id: UUID | None = None) -> UUID | None:
        """
        Id of the conversation scoped to `appointment_id`; None when there is none
        or `viewer_id` is not one of its participants.
        """
        async with self._unit_of_work() as db:
            directory = self._directory(db)
            conversation_id = await directory.get_conversation_by_appointment(appointment_id)
            if conversation_id is None or viewer_id is None:
                return conversation_id
            if not await directory.conversations.is_participant(conversation_id, viewer_id):
                return None
            return conversation_id

    # =================================================================================================================
    # Messages
    # =================================================================================================================

    async def list_messages(
        self,
        conversation_id: UUID,
        viewer_id: UUID | None,
        limit: int | None = None,
        offset: int = 0,
        after: datetime | None = None,
    ) -> list[MessageView]:
        if viewer_id is None:
            raise UnauthenticatedError()
        async with self._unit_of_work() as db:
            return await self._store(db).list_messages(
                conversation_id, viewer_id, limit=limit, offset=offset, after=after
            )

    async def send_message(
        self,
        conversation_id: UUID,
        sender_id: UUID | None,
        content: str | None,
        *,
        attachment_url: str | None = None,
        attachment_type: str | None = None,
    ) -> MessageView:
        """
        Persist a message and notify the conversation topic after commit.
        """
        if sender_id is None:
            raise UnauthenticatedError()
        async with self._unit_of_work() as db:
            message = await self._store(db).append(
                conversation_id,
                sender_id,
                content,
                attachment_url=attachment_url,
                attachment_type=attachment_type,
            )

        await self._publish(
            MessageInserted(
                conversation_id=message.conversation_id,
                message_id=message.id,
                sender_id=message.sender_id,
                created_at=message.created_at,
            )
        )
        return message

    async def mark_read(self, conversation_id: UUID, reader_id: UUID | None) -> ReadReceipt:
        if reader_id is None:
            raise UnauthenticatedError()
        async with self._unit_of_work() as db:
            return await self._store(db).mark_read(conversation_id, reader_id)

    async def delete_message(self, message_id: UUID, requester_id: UUID | None) -> DeletedMessage:
        if requester_id is None:
            raise UnauthenticatedError()
        async with self._unit_of_work() as db:
            deleted = await self._store(db).soft_delete(message_id, requester_id)

        await self._publish(MessageDeleted(conversation_id=deleted.conversation_id, message_id=deleted.message_id))
        return deleted

    # =================================================================================================================
    # Profiles
    # =================================================================================================================

    async def available_contacts(self, user_id: UUID | None) -> list[ContactProfile]:
        """Everyone `user_id` could start a conversation with, mentors first."""
        if user_id is None:
            raise UnauthenticatedError()
        return await self.resolver.available_contacts(exclude=user_id)

    # =================================================================================================================
    # Realtime
    # =================================================================================================================

    async def subscribe(
        self,
        handler: EventHandler,
        *,
        conversation_id: UUID | None = None,
        user_id: UUID | None = None,
        viewer_id: UUID | None = None,
    ) -> Subscription:
        """
        Subscribe to exactly one of a conversation topic or a user topic.

        When `viewer_id` is given, conversation subscriptions require membership
        and user subscriptions are limited to the viewer's own topic.

        Raises:
            ValueError: neither or both targets given.
            ConversationNotFoundError / NotAParticipantError: membership check failed.
        """
        if (conversation_id is None) == (user_id is None):
            raise ValueError("Subscribe to exactly one of conversation_id or user_id")

        if conversation_id is not None:
            if viewer_id is not None:
                async with self._unit_of_work() as db:
                    await self._store(db).ensure_participant(conversation_id, viewer_id)
            topic = conversation_topic(conversation_id)
        else:
            if viewer_id is not None and viewer_id != user_id:
                raise NotAParticipantError("Cannot subscribe to another user's notifications")
            topic = user_topic(user_id)

        return await self.bus.subscribe(topic, handler)
