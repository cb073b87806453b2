from sqlalchemy import String, UUID
from sqlalchemy.orm import Mapped, mapped_column, relationship
from datetime import datetime
from messaging_core.database.base import Base
from messaging_core.database.types import UTCDateTime, utcnow
import uuid
from typing import TYPE_CHECKING

# Avoid circular import issues when using type hints for related models
if TYPE_CHECKING:
    from .participant import ConversationParticipant


def make_pair_key(user_a: uuid.UUID, user_b: uuid.UUID, appointment_id: str | None = None) -> str:
    """
    Canonical key for an unordered participant pair, optionally scoped to an appointment.

    The two ids are sorted so (A, B) and (B, A) produce the same key; an appointment
    scope is appended so scoped and unscoped conversations of the same pair differ.

    Example:
        >>> make_pair_key(b, a) == make_pair_key(a, b)
        True
    """
    low, high = sorted((str(user_a), str(user_b)))
    key = f"{low}:{high}"
    if appointment_id:
        key = f"{key}:{appointment_id}"
    return key


class Conversation(Base):
    """
    SQLAlchemy model for a Conversation.

    A durable pairing of exactly two participants, optionally tied to one appointment.
    `pair_key` is unique, which makes find-or-create an insert-if-absent operation
    instead of a read-then-write race.
    """
    __tablename__ = "conversations"

    # Primary key: UUID (generated using uuid4)
    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        primary_key=True,
        default=uuid.uuid4,
    )

    # Canonical (sorted pair + appointment scope) key, see make_pair_key()
    pair_key: Mapped[str] = mapped_column(
        String(200),
        nullable=False,
        unique=True,
    )

    # Opaque tag supplied by the booking subsystem; never validated here
    appointment_id: Mapped[str | None] = mapped_column(
        String(100),
        nullable=True,
        index=True
    )

    created_at: Mapped[datetime] = mapped_column(
        UTCDateTime(),
        default=utcnow,
        nullable=False
    )

    updated_at: Mapped[datetime] = mapped_column(
        UTCDateTime(),
        default=utcnow,
        onupdate=utcnow,
        nullable=False
    )

    # Monotonically non-decreasing; only ever advanced by MessageRepository
    last_message_at: Mapped[datetime] = mapped_column(
        UTCDateTime(),
        default=utcnow,
        nullable=False,
        index=True
    )

    # --- Relationships ---

    # One-to-Many: exactly two participants once creation completes
    participants: Mapped[list["ConversationParticipant"]] = relationship(
        "ConversationParticipant",
        back_populates="conversation",
        cascade="all, delete-orphan",
        passive_deletes=True,
        lazy="selectin",
        order_by="ConversationParticipant.joined_at"
    )

    def __repr__(self) -> str:
        return f"<Conversation(id={self.id!r}, appointment_id={self.appointment_id!r})>"
