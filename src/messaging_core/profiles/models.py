from enum import Enum
from uuid import UUID

from pydantic import BaseModel, ConfigDict

UNKNOWN_USER_NAME = "Unknown User"


class ContactKind(str, Enum):
    """Which account space a user id belongs to."""
    PATIENT = "patient"
    MENTOR = "mentor"
    GENERIC = "generic"


class ContactProfile(BaseModel):
    """
    Display identity of a participant. Read-only to the messaging core; never persisted.
    """
    model_config = ConfigDict(frozen=True)

    id: UUID
    display_name: str = ""
    avatar_url: str | None = None
    email: str | None = None
    kind: ContactKind = ContactKind.GENERIC
    # True when no directory knew the id
    is_placeholder: bool = False

    @classmethod
    def placeholder(cls, user_id: UUID) -> "ContactProfile":
        return cls(id=user_id, display_name=UNKNOWN_USER_NAME, kind=ContactKind.GENERIC, is_placeholder=True)
