"""
Message repository for handling message-specific database operations.

This module provides the MessageRepository class which extends BaseRepository
with the append-only message log: ordered appends, paginated reads of
non-deleted messages, bulk read marking and owner-scoped soft deletes.
"""

from datetime import datetime, timedelta
from uuid import UUID
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select, update, func
from sqlalchemy.exc import SQLAlchemyError
import logging

from messaging_core.database.types import utcnow
from messaging_core.exceptions.mapper import db_error_handler, map_db_error
from messaging_core.models.conversation import Conversation
from messaging_core.models.participant import ConversationParticipant
from messaging_core.models.message import Message, MessageKind
from .base_repository import BaseRepository

logger = logging.getLogger(__name__)

# Smallest step the timestamp columns can represent on both backends.
_TICK = timedelta(microseconds=1)


class MessageRepository(BaseRepository[Message]):
    """
    Repository for Message entity operations.

    Ordering contract: `created_at` is strictly increasing within a conversation.
    When the clock has not moved past the newest message (same microsecond, clock
    skew between instances), the new message is placed one microsecond after it.
    """

    def __init__(self, db: AsyncSession):
        super().__init__(Message, db)

    # =================================================================================================================
    # Append
    # =================================================================================================================

    async def next_created_at(self, conversation_id: UUID) -> datetime:
        """
        Return a server timestamp strictly greater than every message already in the conversation.
        """
        try:
            result = await self.db.execute(
                select(func.max(Message.created_at)).where(Message.conversation_id == conversation_id)
            )
            newest = result.scalar_one_or_none()
        except SQLAlchemyError as e:
            raise map_db_error(e, "Message") from e

        now = utcnow()
        if newest is not None and now <= newest:
            return newest + _TICK
        return now

    async def append(
        self,
        conversation_id: UUID,
        sender_id: UUID,
        content: str,
        *,
        kind: MessageKind = MessageKind.TEXT,
        attachment_url: str | None = None,
        attachment_type: str | None = None,
    ) -> Message:
        """
        Insert a message with a server-assigned, order-preserving timestamp.

        Existence and membership checks are the caller's job (MessageStore);
        this method only writes.

        Returns:
            Message: The created Message entity.
        """
        created_at = await self.next_created_at(conversation_id)

        message = await self.create(
            conversation_id=conversation_id,
            sender_id=sender_id,
            kind=kind,
            content=content,
            attachment_url=attachment_url,
            attachment_type=attachment_type,
            created_at=created_at,
            updated_at=created_at,
        )

        logger.info(
            "message_repo.appended",
            extra={"conversation_id": conversation_id, "message_id": message.id, "kind": kind.value},
        )
        return message

    async def bump_conversation_activity(self, conversation_id: UUID, at: datetime) -> bool:
        """
        Advance the parent conversation's `last_message_at` / `updated_at` to `at`.

        The WHERE clause keeps `last_message_at` monotonic: an older timestamp never
        overwrites a newer one.

        Returns:
            True when the row was advanced.
        """
        async with db_error_handler(self.db, "Conversation"):
            result = await self.db.execute(
                update(Conversation)
                .where(Conversation.id == conversation_id, Conversation.last_message_at < at)
                .values(last_message_at=at, updated_at=at)
            )
        return result.rowcount > 0

    # =================================================================================================================
    # Read
    # =================================================================================================================

    async def list_for_conversation(
        self,
        conversation_id: UUID,
        limit: int = 50,
        offset: int = 0,
        after: datetime | None = None,
    ) -> list[Message]:
        """
        Retrieve non-deleted messages of a conversation, oldest first.

        Args:
            conversation_id: UUID of the conversation.
            limit: Page size.
            offset: Number of messages to skip from the oldest.
            after: Only messages created strictly after this instant (incremental sync).

        Returns:
            list[Message]: Messages ascending by created_at (id breaks exact ties).
        """
        query = (
            select(Message)
            .where(Message.conversation_id == conversation_id, Message.deleted_at.is_(None))
            .order_by(Message.created_at.asc(), Message.id.asc())
            .offset(offset)
            .limit(limit)
        )
        if after is not None:
            query = query.where(Message.created_at > after)
        try:
            result = await self.db.execute(query)
            messages = list(result.scalars().all())
        except SQLAlchemyError as e:
            raise map_db_error(e, "Message") from e

        logger.debug(
            "message_repo.listed",
            extra={"conversation_id": conversation_id, "count": len(messages), "offset": offset},
        )
        return messages

    # =================================================================================================================
    # Read state
    # =================================================================================================================

    async def mark_read(self, conversation_id: UUID, reader_id: UUID, at: datetime) -> int:
        """
        Set read_at on every unread message of the conversation not sent by the reader.

        Returns:
            Number of messages marked (0 on a repeated call).
        """
        async with db_error_handler(self.db, "Message"):
            result = await self.db.execute(
                update(Message)
                .where(
                    Message.conversation_id == conversation_id,
                    Message.sender_id != reader_id,
                    Message.read_at.is_(None),
                )
                .values(read_at=at)
            )
        return result.rowcount

    async def set_last_read_at(self, conversation_id: UUID, reader_id: UUID, at: datetime) -> bool:
        """
        Record on the reader's participant row when they last read the conversation.
        """
        async with db_error_handler(self.db, "ConversationParticipant"):
            result = await self.db.execute(
                update(ConversationParticipant)
                .where(
                    ConversationParticipant.conversation_id == conversation_id,
                    ConversationParticipant.user_id == reader_id,
                )
                .values(last_read_at=at)
            )
        return result.rowcount > 0

    # =================================================================================================================
    # Soft delete
    # =================================================================================================================

    async def soft_delete(self, message_id: UUID, requester_id: UUID, at: datetime) -> UUID | None:
        """
        Mark a message deleted if, and only if, the requester sent it.

        The sender check is part of the UPDATE predicate, so ownership is enforced
        by the same statement that writes.

        Returns:
            The conversation id of the deleted message, or None when no row matched
            (unknown id, already deleted, or not the sender).
        """
        async with db_error_handler(self.db, "Message"):
            result = await self.db.execute(
                update(Message)
                .where(
                    Message.id == message_id,
                    Message.sender_id == requester_id,
                    Message.deleted_at.is_(None),
                )
                .values(deleted_at=at)
            )

        if result.rowcount == 0:
            logger.info("message_repo.soft_delete.no_match", extra={"message_id": message_id})
            return None

        try:
            conversation_id = await self.db.scalar(
                select(Message.conversation_id).where(Message.id == message_id)
            )
        except SQLAlchemyError as e:
            raise map_db_error(e, "Message") from e

        logger.info("message_repo.soft_deleted", extra={"message_id": message_id, "conversation_id": conversation_id})
        return conversation_id
