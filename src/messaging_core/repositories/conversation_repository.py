"""
Conversation repository for conversation and participant persistence.

Extends BaseRepository with the queries the Conversation Directory needs:
pair lookups (by canonical key and by participant intersection), participant
management and the per-user conversation summaries behind the conversation list.
"""

from dataclasses import dataclass
from datetime import datetime
from uuid import UUID
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select, update, func
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import aliased
import logging

from messaging_core.database.types import utcnow
from messaging_core.exceptions.mapper import db_error_handler, map_db_error
from messaging_core.models.conversation import Conversation
from messaging_core.models.participant import ConversationParticipant
from messaging_core.models.message import Message
from .base_repository import BaseRepository

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ConversationSummaryRow:
    """One conversation as seen by one participant, before profile decoration."""
    conversation: Conversation
    membership: ConversationParticipant
    other_user_id: UUID | None
    last_message: Message | None
    unread_count: int


class ConversationRepository(BaseRepository[Conversation]):
    """
    Repository for Conversation and ConversationParticipant rows.

    Both tables are owned by the Conversation Directory; the only other writer is
    the Message Store, which advances `last_message_at` and participant read state
    through MessageRepository.
    """

    def __init__(self, db: AsyncSession):
        super().__init__(Conversation, db)

    # =================================================================================================================
    # Pair lookups
    # =================================================================================================================

    async def get_by_pair_key(self, pair_key: str) -> Conversation | None:
        """
        Return the conversation registered under a canonical pair key, if any.
        """
        return await self.find_by_field("pair_key", pair_key)

    async def find_shared_conversation(
        self,
        user_a: UUID,
        user_b: UUID,
        appointment_id: str | None = None,
    ) -> Conversation | None:
        """
        Find a conversation both users participate in, within the same appointment scope.

        This is the intersection of "conversations of A" and "conversations of B",
        expressed as a double join on the participant table. Unscoped lookups only
        match unscoped conversations.

        Legacy data can contain several matches for one pair; the earliest created
        conversation wins, then the smallest id, so every caller sees the same one.

        Args:
            user_a: First participant id.
            user_b: Second participant id.
            appointment_id: Optional appointment scope.

        Returns:
            The matching Conversation or None.
        """
        mine = aliased(ConversationParticipant)
        theirs = aliased(ConversationParticipant)

        query = (
            select(Conversation)
            .join(mine, mine.conversation_id == Conversation.id)
            .join(theirs, theirs.conversation_id == Conversation.id)
            .where(mine.user_id == user_a, theirs.user_id == user_b)
            .order_by(Conversation.created_at.asc(), Conversation.id.asc())
            .limit(1)
        )
        if appointment_id:
            query = query.where(Conversation.appointment_id == appointment_id)
        else:
            query = query.where(Conversation.appointment_id.is_(None))

        try:
            result = await self.db.execute(query)
            conversation = result.scalars().first()
        except SQLAlchemyError as e:
            raise map_db_error(e, "Conversation") from e

        logger.debug(
            "conversation_repo.find_shared",
            extra={"appointment_id": appointment_id, "found": conversation is not None},
        )
        return conversation

    async def get_id_by_appointment(self, appointment_id: str) -> UUID | None:
        """
        Return the id of the (earliest) conversation scoped to an appointment.
        """
        query = (
            select(Conversation.id)
            .where(Conversation.appointment_id == appointment_id)
            .order_by(Conversation.created_at.asc(), Conversation.id.asc())
            .limit(1)
        )
        try:
            result = await self.db.execute(query)
            return result.scalar_one_or_none()
        except SQLAlchemyError as e:
            raise map_db_error(e, "Conversation") from e

    # =================================================================================================================
    # Create / update
    # =================================================================================================================

    async def create_conversation(
        self,
        pair_key: str,
        appointment_id: str | None = None,
        now: datetime | None = None,
    ) -> Conversation:
        """
        Insert a conversation row; participants are added separately.

        Raises:
            DuplicateError: another conversation already owns `pair_key`.
        """
        now = now or utcnow()
        return await self.create(
            pair_key=pair_key,
            appointment_id=appointment_id,
            created_at=now,
            updated_at=now,
            last_message_at=now,
        )

    async def add_participants(
        self,
        conversation_id: UUID,
        user_ids: list[UUID],
        joined_at: datetime | None = None,
    ) -> list[ConversationParticipant]:
        """
        Attach users to a conversation in one savepoint: either all rows are
        inserted or none are.
        """
        joined_at = joined_at or utcnow()
        rows = [
            ConversationParticipant(conversation_id=conversation_id, user_id=user_id, joined_at=joined_at)
            for user_id in user_ids
        ]

        async with db_error_handler(self.db, "ConversationParticipant"):
            self.db.add_all(rows)
            await self.db.flush()

        logger.info(
            "conversation_repo.participants_added",
            extra={"conversation_id": conversation_id, "count": len(rows)},
        )
        return rows

    async def touch(self, conversation_id: UUID) -> None:
        """Refresh `updated_at` (used when an existing conversation is re-opened)."""
        async with db_error_handler(self.db, "Conversation"):
            await self.db.execute(
                update(Conversation)
                .where(Conversation.id == conversation_id)
                .values(updated_at=utcnow())
            )

    # =================================================================================================================
    # Participants
    # =================================================================================================================

    async def is_participant(self, conversation_id: UUID, user_id: UUID) -> bool:
        query = select(ConversationParticipant.user_id).where(
            ConversationParticipant.conversation_id == conversation_id,
            ConversationParticipant.user_id == user_id,
        )
        try:
            result = await self.db.execute(query)
            return result.scalar_one_or_none() is not None
        except SQLAlchemyError as e:
            raise map_db_error(e, "ConversationParticipant") from e

    async def list_participants(self, conversation_id: UUID) -> list[ConversationParticipant]:
        query = (
            select(ConversationParticipant)
            .where(ConversationParticipant.conversation_id == conversation_id)
            .order_by(ConversationParticipant.joined_at.asc(), ConversationParticipant.user_id.asc())
        )
        try:
            result = await self.db.execute(query)
            return list(result.scalars().all())
        except SQLAlchemyError as e:
            raise map_db_error(e, "ConversationParticipant") from e

    # =================================================================================================================
    # Conversation list
    # =================================================================================================================

    async def list_summaries_for_user(
        self,
        user_id: UUID,
        offset: int = 0,
        limit: int = 100,
    ) -> list[ConversationSummaryRow]:
        """
        Build the raw conversation list of a user, newest activity first.

        Four set-based queries instead of one query per conversation:
          1. the user's conversations joined with their own participant row;
          2. the other participant of each conversation;
          3. the latest non-deleted message of each conversation (window function);
          4. unread counts (messages from others with no read_at, not deleted).

        Returns:
            A list of ConversationSummaryRow ordered by last_message_at DESC,
            then created_at DESC, then id.
        """
        me = aliased(ConversationParticipant)

        try:
            result = await self.db.execute(
                select(Conversation, me)
                .join(me, me.conversation_id == Conversation.id)
                .where(me.user_id == user_id)
                .order_by(
                    Conversation.last_message_at.desc(),
                    Conversation.created_at.desc(),
                    Conversation.id.asc(),
                )
                .offset(offset)
                .limit(limit)
            )
            pairs = result.all()
            if not pairs:
                return []

            conversation_ids = [conversation.id for conversation, _ in pairs]

            others = await self.db.execute(
                select(ConversationParticipant.conversation_id, ConversationParticipant.user_id)
                .where(
                    ConversationParticipant.conversation_id.in_(conversation_ids),
                    ConversationParticipant.user_id != user_id,
                )
                .order_by(ConversationParticipant.joined_at.asc())
            )
            other_by_conversation: dict[UUID, UUID] = {}
            for conversation_id, other_id in others.all():
                other_by_conversation.setdefault(conversation_id, other_id)

            ranked = (
                select(
                    Message.id.label("message_id"),
                    func.row_number()
                    .over(
                        partition_by=Message.conversation_id,
                        order_by=(Message.created_at.desc(), Message.id.desc()),
                    )
                    .label("rank"),
                )
                .where(
                    Message.conversation_id.in_(conversation_ids),
                    Message.deleted_at.is_(None),
                )
                .subquery()
            )
            latest = await self.db.execute(
                select(Message).join(ranked, ranked.c.message_id == Message.id).where(ranked.c.rank == 1)
            )
            last_by_conversation = {message.conversation_id: message for message in latest.scalars().all()}

            unread = await self.db.execute(
                select(Message.conversation_id, func.count(Message.id))
                .where(
                    Message.conversation_id.in_(conversation_ids),
                    Message.sender_id != user_id,
                    Message.read_at.is_(None),
                    Message.deleted_at.is_(None),
                )
                .group_by(Message.conversation_id)
            )
            unread_by_conversation = dict(unread.all())
        except SQLAlchemyError as e:
            raise map_db_error(e, "Conversation") from e

        rows = [
            ConversationSummaryRow(
                conversation=conversation,
                membership=membership,
                other_user_id=other_by_conversation.get(conversation.id),
                last_message=last_by_conversation.get(conversation.id),
                unread_count=int(unread_by_conversation.get(conversation.id, 0)),
            )
            for conversation, membership in pairs
        ]

        logger.debug("conversation_repo.list_summaries", extra={"user_id": user_id, "count": len(rows)})
        return rows
