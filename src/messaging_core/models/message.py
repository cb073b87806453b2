from sqlalchemy import ForeignKey, Index, String, Text, UUID
from sqlalchemy import Enum as SQLEnum
from sqlalchemy.orm import Mapped, mapped_column
from datetime import datetime
from enum import Enum as PyEnum
from messaging_core.database.base import Base
from messaging_core.database.types import UTCDateTime, utcnow
import uuid


# ------------------------------
# Enum to define message kinds
# ------------------------------
class MessageKind(PyEnum):
    """Who authored the message content."""
    TEXT = "text"       # Written by a participant
    SYSTEM = "system"   # Synthetic, e.g. "Conversation started"


# ------------------------------
# Message Model
# ------------------------------
class Message(Base):
    """
    SQLAlchemy model representing a message in a conversation.

    Messages are append-only: after insertion only `read_at` and `deleted_at`
    are ever written. `created_at` is assigned by MessageRepository and is strictly
    increasing within a conversation, giving the conversation its total order.
    """
    __tablename__ = "messages"
    __table_args__ = (
        Index("ix_messages_conversation_id_created_at", "conversation_id", "created_at"),
    )

    # Primary key - UUID for global uniqueness
    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        primary_key=True,
        default=uuid.uuid4,
    )

    # Non-owning back-reference to the parent conversation
    conversation_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey("conversations.id", ondelete="CASCADE"),
        nullable=False,
    )

    sender_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        nullable=False,
        index=True
    )

    kind: Mapped[MessageKind] = mapped_column(
        SQLEnum(MessageKind),
        nullable=False,
        default=MessageKind.TEXT
    )

    # Message content (can be multi-line, so Text is used)
    content: Mapped[str] = mapped_column(
        Text,
        nullable=False
    )

    attachment_url: Mapped[str | None] = mapped_column(Text, nullable=True)
    attachment_type: Mapped[str | None] = mapped_column(String(50), nullable=True)

    created_at: Mapped[datetime] = mapped_column(
        UTCDateTime(),
        nullable=False
    )

    updated_at: Mapped[datetime] = mapped_column(
        UTCDateTime(),
        default=utcnow,
        nullable=False
    )

    # Set in bulk when the recipient opens the conversation
    read_at: Mapped[datetime | None] = mapped_column(
        UTCDateTime(),
        nullable=True
    )

    # Soft-delete marker; deleted messages are retained but excluded from reads
    deleted_at: Mapped[datetime | None] = mapped_column(
        UTCDateTime(),
        nullable=True
    )

    def __repr__(self) -> str:
        return f"<Message(id={self.id!r}, kind={self.kind.value!r}, conversation_id={self.conversation_id!r})>"
