"""
Message Store.

Appends, lists, marks read and soft-deletes messages inside the caller's session.
Membership checks live here so that every write path enforces them the same way.
"""

from dataclasses import dataclass
from datetime import datetime
from uuid import UUID
import logging

from sqlalchemy.ext.asyncio import AsyncSession

from messaging_core.database.types import utcnow
from messaging_core.exceptions import (
    ConversationNotFoundError,
    InvalidMessageError,
    MessageNotFoundError,
    NotAParticipantError,
    RepositoryError,
)
from messaging_core.repositories.conversation_repository import ConversationRepository
from messaging_core.repositories.message_repository import MessageRepository
from messaging_core.schemas.messaging import MessageView, ReadReceipt

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class DeletedMessage:
    message_id: UUID
    conversation_id: UUID


class MessageStore:
    """
    Args:
        db: Session of the current unit of work.
        max_length: Maximum message length in characters.
        page_size: Default page size for `list_messages`.
        page_size_max: Upper bound a caller may request.
    """

    def __init__(
        self,
        db: AsyncSession,
        *,
        max_length: int = 4000,
        page_size: int = 50,
        page_size_max: int = 200,
    ):
        self.db = db
        self.conversations = ConversationRepository(db)
        self.messages = MessageRepository(db)
        self.max_length = max_length
        self.page_size = page_size
        self.page_size_max = page_size_max

    async def ensure_participant(self, conversation_id: UUID, user_id: UUID) -> None:
        """
        Raises:
            ConversationNotFoundError: unknown conversation.
            NotAParticipantError: `user_id` is not a member.
        """
        if not await self.conversations.exists(conversation_id):
            raise ConversationNotFoundError(conversation_id)
        if not await self.conversations.is_participant(conversation_id, user_id):
            logger.warning(
                "store.not_a_participant",
                extra={"conversation_id": conversation_id, "user_id": user_id},
            )
            raise NotAParticipantError()

    def _validate_content(self, content: str | None, attachment_url: str | None) -> str:
        content = (content or "").strip()
        if not content and not attachment_url:
            raise InvalidMessageError("Message content cannot be empty", fields=["content"])
        if len(content) > self.max_length:
            raise InvalidMessageError(
                f"Message exceeds {self.max_length} characters", fields=["content"]
            )
        return content

    # =================================================================================================================
    # Append
    # =================================================================================================================

    async def append(
        self,
        conversation_id: UUID,
        sender_id: UUID,
        content: str | None,
        *,
        attachment_url: str | None = None,
        attachment_type: str | None = None,
    ) -> MessageView:
        """
        Persist a message from `sender_id` and advance the conversation's activity.

        The activity bump is best effort: if it fails the message is still stored
        and only the conversation list ordering may lag.

        Raises:
            InvalidMessageError: blank content without attachment, or content too long.
            ConversationNotFoundError / NotAParticipantError: see `ensure_participant`.
            TransientStoreError: the store is unreachable.
        """
        await self.ensure_participant(conversation_id, sender_id)
        content = self._validate_content(content, attachment_url)

        message = await self.messages.append(
            conversation_id,
            sender_id,
            content,
            attachment_url=attachment_url,
            attachment_type=attachment_type,
        )

        try:
            await self.messages.bump_conversation_activity(conversation_id, message.created_at)
        except RepositoryError as exc:
            logger.warning(
                "store.append.activity_bump_failed",
                extra={"conversation_id": conversation_id, "message_id": message.id, "error_code": exc.error_code},
            )

        return MessageView.model_validate(message)

    # =================================================================================================================
    # Read
    # =================================================================================================================

    async def list_messages(
        self,
        conversation_id: UUID,
        viewer_id: UUID,
        limit: int | None = None,
        offset: int = 0,
        after: datetime | None = None,
    ) -> list[MessageView]:
        """
        Visible messages of a conversation, ascending by creation time.

        `after` restricts the page to messages newer than a known one, which is how
        a session catches up after a realtime notification.
        """
        await self.ensure_participant(conversation_id, viewer_id)

        limit = min(limit or self.page_size, self.page_size_max)
        messages = await self.messages.list_for_conversation(
            conversation_id, limit=limit, offset=max(offset, 0), after=after
        )
        return [MessageView.model_validate(m) for m in messages]

    # =================================================================================================================
    # Read state
    # =================================================================================================================

    async def mark_read(self, conversation_id: UUID, reader_id: UUID) -> ReadReceipt:
        """
        Mark the other party's messages read and record the reader's last_read_at.

        The two updates are independent: a failure in one is logged and the other
        still applies. Repeating the call is harmless.
        """
        await self.ensure_participant(conversation_id, reader_id)

        at = utcnow()
        marked = 0
        participant_updated = False

        try:
            marked = await self.messages.mark_read(conversation_id, reader_id, at)
        except RepositoryError as exc:
            logger.warning(
                "store.mark_read.messages_failed",
                extra={"conversation_id": conversation_id, "reader_id": reader_id, "error_code": exc.error_code},
            )

        try:
            participant_updated = await self.messages.set_last_read_at(conversation_id, reader_id, at)
        except RepositoryError as exc:
            logger.warning(
                "store.mark_read.participant_failed",
                extra={"conversation_id": conversation_id, "reader_id": reader_id, "error_code": exc.error_code},
            )

        logger.debug(
            "store.mark_read",
            extra={"conversation_id": conversation_id, "reader_id": reader_id, "marked": marked},
        )
        return ReadReceipt(
            conversation_id=conversation_id,
            reader_id=reader_id,
            read_at=at,
            messages_marked=marked,
            participant_updated=participant_updated,
        )

    # =================================================================================================================
    # Soft delete
    # =================================================================================================================

    async def soft_delete(self, message_id: UUID, requester_id: UUID) -> DeletedMessage:
        """
        Raises:
            MessageNotFoundError: unknown id, already deleted, or `requester_id`
                is not the sender.
        """
        conversation_id = await self.messages.soft_delete(message_id, requester_id, utcnow())
        if conversation_id is None:
            raise MessageNotFoundError(message_id)
        return DeletedMessage(message_id=message_id, conversation_id=conversation_id)
