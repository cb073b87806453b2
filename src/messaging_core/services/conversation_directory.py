"""
Conversation Directory.

Owns conversation identity and membership. The central operation is
`find_or_create`, which guarantees a single conversation per unordered pair of
users (and optional appointment scope) even when both users open the chat at
the same moment:

  1. look the pair up by participant intersection;
  2. otherwise insert a conversation under its canonical pair key; the UNIQUE
     constraint on that key decides the winner of a concurrent creation and the
     loser re-fetches the winner's row instead of inserting a duplicate;
  3. add both participants atomically; if that fails the conversation row is
     removed again and CreationFailedError is raised;
  4. write the "conversation started" system message (best effort).

The directory works inside the caller's session and never commits.
"""

from dataclasses import dataclass
from uuid import UUID
import logging

from sqlalchemy.ext.asyncio import AsyncSession

from messaging_core.exceptions import (
    ConversationNotFoundError,
    CreationFailedError,
    DuplicateError,
    InvalidParticipantsError,
    RepositoryError,
    UnauthenticatedError,
)
from messaging_core.models.conversation import make_pair_key
from messaging_core.models.message import MessageKind
from messaging_core.profiles.resolver import ProfileResolver
from messaging_core.repositories.conversation_repository import ConversationRepository
from messaging_core.repositories.message_repository import MessageRepository
from messaging_core.schemas.messaging import (
    ConversationDetail,
    ConversationSummary,
    MessagePreview,
    ParticipantView,
)

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ConversationHandle:
    conversation_id: UUID
    # True only for the call that inserted the conversation
    created: bool


def truncate_preview(content: str, length: int) -> str:
    if len(content) <= length:
        return content
    return content[: max(length - 1, 0)].rstrip() + "…"


class ConversationDirectory:
    """
    Args:
        db: Session of the current unit of work.
        resolver: Used to decorate participants with display profiles.
        started_text: Content of the system message written into new conversations.
        preview_length: Maximum length of the last-message preview in summaries.
    """

    def __init__(
        self,
        db: AsyncSession,
        resolver: ProfileResolver,
        *,
        started_text: str = "Conversation started",
        preview_length: int = 120,
    ):
        self.db = db
        self.resolver = resolver
        self.conversations = ConversationRepository(db)
        self.messages = MessageRepository(db)
        self.started_text = started_text
        self.preview_length = preview_length

    # =================================================================================================================
    # Find or create
    # =================================================================================================================

    async def find_or_create(
        self,
        user_a: UUID | None,
        user_b: UUID | None,
        appointment_id: str | None = None,
    ) -> ConversationHandle:
        """
        Return the conversation shared by `user_a` (the caller) and `user_b`,
        creating it when none exists.

        Raises:
            UnauthenticatedError: `user_a` is missing.
            InvalidParticipantsError: `user_b` is missing or equals `user_a`.
            CreationFailedError: participants could not be attached.
            TransientStoreError: the store is unreachable.
        """
        if user_a is None:
            raise UnauthenticatedError()
        if user_b is None:
            raise InvalidParticipantsError("Both user ids are required", fields=["other_user_id"])
        if user_a == user_b:
            raise InvalidParticipantsError("Cannot start a conversation with yourself", fields=["other_user_id"])

        appointment_id = appointment_id or None

        existing = await self.conversations.find_shared_conversation(user_a, user_b, appointment_id)
        if existing is not None:
            await self.conversations.touch(existing.id)
            logger.info(
                "directory.find_or_create.reused",
                extra={"conversation_id": existing.id, "appointment_id": appointment_id},
            )
            return ConversationHandle(existing.id, created=False)

        pair_key = make_pair_key(user_a, user_b, appointment_id)
        try:
            conversation = await self.conversations.create_conversation(pair_key, appointment_id)
        except DuplicateError:
            winner = await self.conversations.get_by_pair_key(pair_key)
            if winner is None:
                logger.error("directory.find_or_create.duplicate_vanished", extra={"pair_key": pair_key})
                raise CreationFailedError()
            await self.conversations.touch(winner.id)
            logger.info(
                "directory.find_or_create.race_lost",
                extra={"conversation_id": winner.id, "appointment_id": appointment_id},
            )
            return ConversationHandle(winner.id, created=False)

        try:
            await self.conversations.add_participants(conversation.id, [user_a, user_b])
        except RepositoryError as exc:
            logger.error(
                "directory.find_or_create.participants_failed",
                extra={"conversation_id": conversation.id, "error_code": exc.error_code},
            )
            try:
                await self.conversations.delete(conversation.id)
            except RepositoryError:
                # The enclosing transaction is rolled back by the caller anyway.
                logger.warning("directory.find_or_create.cleanup_failed", extra={"conversation_id": conversation.id})
            raise CreationFailedError("Could not add participants to conversation") from exc

        try:
            message = await self.messages.append(
                conversation.id, user_a, self.started_text, kind=MessageKind.SYSTEM
            )
            await self.messages.bump_conversation_activity(conversation.id, message.created_at)
        except RepositoryError:
            logger.warning("directory.find_or_create.started_message_failed", extra={"conversation_id": conversation.id})

        logger.info(
            "directory.find_or_create.created",
            extra={"conversation_id": conversation.id, "appointment_id": appointment_id},
        )
        return ConversationHandle(conversation.id, created=True)

    # =================================================================================================================
    # Reads
    # =================================================================================================================

    async def get_conversation(self, conversation_id: UUID) -> ConversationDetail:
        """
        Raises:
            ConversationNotFoundError: no conversation with that id.
        """
        conversation = await self.conversations.get_by_id(conversation_id)
        if conversation is None:
            raise ConversationNotFoundError(conversation_id)

        participants = await self.conversations.list_participants(conversation_id)
        profiles = await self.resolver.resolve_many(p.user_id for p in participants)

        return ConversationDetail(
            id=conversation.id,
            appointment_id=conversation.appointment_id,
            created_at=conversation.created_at,
            updated_at=conversation.updated_at,
            last_message_at=conversation.last_message_at,
            participants=[
                ParticipantView(
                    user_id=p.user_id,
                    joined_at=p.joined_at,
                    last_read_at=p.last_read_at,
                    profile=profiles[p.user_id],
                )
                for p in participants
            ],
        )

    async def get_conversation_by_appointment(self, appointment_id: str) -> UUID | None:
        return await self.conversations.get_id_by_appointment(appointment_id)

    async def get_user_conversations(
        self,
        user_id: UUID | None,
        offset: int = 0,
        limit: int = 100,
    ) -> list[ConversationSummary]:
        """
        Conversations of `user_id`, most recent activity first, each with the
        other participant's profile, a last-message preview and unread state.

        Raises:
            UnauthenticatedError: `user_id` is missing.
        """
        if user_id is None:
            raise UnauthenticatedError()

        rows = await self.conversations.list_summaries_for_user(user_id, offset=offset, limit=limit)
        profiles = await self.resolver.resolve_many(
            row.other_user_id for row in rows if row.other_user_id is not None
        )

        summaries = []
        for row in rows:
            preview = None
            if row.last_message is not None:
                preview = MessagePreview.model_validate(row.last_message)
                preview = preview.model_copy(
                    update={"content": truncate_preview(preview.content, self.preview_length)}
                )
            summaries.append(
                ConversationSummary(
                    conversation_id=row.conversation.id,
                    appointment_id=row.conversation.appointment_id,
                    created_at=row.conversation.created_at,
                    last_message_at=row.conversation.last_message_at,
                    last_read_at=row.membership.last_read_at,
                    last_message=preview,
                    has_unread=row.unread_count > 0,
                    unread_count=row.unread_count,
                    other_participant=profiles.get(row.other_user_id) if row.other_user_id else None,
                )
            )
        return summaries
