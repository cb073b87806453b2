from sqlalchemy import ForeignKey, UUID
from sqlalchemy.orm import Mapped, mapped_column, relationship
from datetime import datetime
from messaging_core.database.base import Base
from messaging_core.database.types import UTCDateTime, utcnow
import uuid
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from .conversation import Conversation


class ConversationParticipant(Base):
    """
    A user attached to a conversation, with their own read state.

    The (conversation_id, user_id) pair is the primary key, so a user can be
    attached to a conversation at most once.
    """
    __tablename__ = "conversation_participants"

    conversation_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey("conversations.id", ondelete="CASCADE"),
        primary_key=True
    )

    # Identity is owned by the external auth system; no FK
    user_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        primary_key=True,
        index=True
    )

    joined_at: Mapped[datetime] = mapped_column(
        UTCDateTime(),
        default=utcnow,
        nullable=False
    )

    # null means "never read"
    last_read_at: Mapped[datetime | None] = mapped_column(
        UTCDateTime(),
        nullable=True
    )

    # --- Relationships ---
    conversation: Mapped["Conversation"] = relationship(
        "Conversation",
        back_populates="participants"
    )

    def __repr__(self) -> str:
        return f"<ConversationParticipant(conversation_id={self.conversation_id!r}, user_id={self.user_id!r})>"
