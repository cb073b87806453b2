from .base import (
    RepositoryError,
    NotFoundError,
    DuplicateError,
    InvalidFieldError,
    UnauthenticatedError,
    InvalidParticipantsError,
    ConversationNotFoundError,
    NotAParticipantError,
    MessageNotFoundError,
    InvalidMessageError,
    CreationFailedError,
    TransientStoreError,
)

# exceptions/
# ├── base.py                    # app-level errors raised by repositories and services
# ├── integrity_classifier.py    # classify SQL-level / DB-specific integrity errors
# └── mapper.py                  # map SQL-level errors to app-level errors (db_error_handler)

__all__ = [
    "RepositoryError",
    "NotFoundError",
    "DuplicateError",
    "InvalidFieldError",
    "UnauthenticatedError",
    "InvalidParticipantsError",
    "ConversationNotFoundError",
    "NotAParticipantError",
    "MessageNotFoundError",
    "InvalidMessageError",
    "CreationFailedError",
    "TransientStoreError",
]
