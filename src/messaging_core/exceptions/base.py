"""
Application-level exceptions for repository, directory and store operations.

Every error the messaging core raises on purpose is a RepositoryError subclass
carrying a canonical `error_code`. The code drives both the JSON payload handed to
clients (`to_payload()`) and the HTTP status (`http_status()`), so API handlers
and the client-session aggregator never need to inspect exception types.
"""

from typing import Iterable

# canonical repository-level exception

class RepositoryError(Exception):
    """
    Base exception for repository/service errors.

    - message: human-friendly message (safe to show to clients)
    - fields: optional list of field names related to the error (e.g., ['content'])
    - constraint: optional DB constraint name or identifier (for logs only)
    - error_code: canonical short code (e.g., 'duplicate', 'not_a_participant') used by clients
    """

    # Map canonical error_code -> default HTTP status.
    ERROR_CODE_TO_STATUS = {
        "duplicate": 409,
        "invalid_field": 422,
        "not_found": 404,
        "invalid_input": 422,
        "unauthenticated": 401,
        "invalid_participants": 422,
        "conversation_not_found": 404,
        "not_a_participant": 403,
        "message_not_found": 404,
        "invalid_message": 422,
        "creation_failed": 500,
        "store_unavailable": 503,
        # fallback: default to 400 for general repository errors
    }

    # Transient errors may succeed when retried unchanged.
    retryable = False

    def __init__(self, message: str, *, fields: Iterable[str] | None = None,
                 constraint: str | None = None, error_code: str | None = None):
        super().__init__(message)
        self.message = message  # user-friendly message
        self.fields = list(fields) if fields else None
        self.constraint = constraint
        self.error_code = error_code

    def __str__(self) -> str:
        base = self.message
        parts = []
        if self.fields:
            parts.append(f"fields: {', '.join(self.fields)}")
        if self.constraint:
            parts.append(f"constraint: {self.constraint}")
        if self.error_code:
            parts.append(f"code: {self.error_code}")
        if parts:
            return f"{base} ({'; '.join(parts)})"
        return base

    def to_payload(self) -> dict:
        """
        Return a JSON-serializable dict suitable for HTTP responses.
        Standard shape:
            {
                "detail": "A human-friendly message",
                "code": "not_a_participant",   # optional canonical code
                "fields": ["sender_id"],       # optional list for client usage
            }
        The constraint name is deliberately left out; it is for logs only.
        """
        payload = {"detail": self.message}
        if self.error_code:
            payload["code"] = self.error_code
        if self.fields:
            payload["fields"] = list(self.fields)
        return payload

    def http_status(self) -> int:
        """
        Return the HTTP status code that should accompany this error.
        Unknown or missing codes map to 400 (Bad Request).
        """
        if self.error_code:
            return self.ERROR_CODE_TO_STATUS.get(self.error_code, 400)
        return 400


# =================================================================================================================
# Generic repository errors
# =================================================================================================================

class NotFoundError(RepositoryError):
    def __init__(self, message: str = "Not found", *, fields: Iterable[str] | None = None,
                 error_code: str = "not_found"):
        super().__init__(message, fields=fields, error_code=error_code)


class DuplicateError(RepositoryError):
    def __init__(self, message: str, *, fields: Iterable[str] | None = None, constraint: str | None = None):
        super().__init__(message, fields=fields, constraint=constraint, error_code="duplicate")


class InvalidFieldError(RepositoryError):
    """Raised when the caller passes unexpected/unknown fields to repository methods."""

    def __init__(self, message: str, *, fields: Iterable[str] | None = None):
        super().__init__(message, fields=fields, error_code="invalid_field")


# =================================================================================================================
# Messaging errors
# =================================================================================================================

class UnauthenticatedError(RepositoryError):
    """No valid caller identity."""

    def __init__(self, message: str = "Authentication required"):
        super().__init__(message, error_code="unauthenticated")


class InvalidParticipantsError(RepositoryError):
    """Self-conversation or missing participant ids."""

    def __init__(self, message: str, *, fields: Iterable[str] | None = None):
        super().__init__(message, fields=fields, error_code="invalid_participants")


class ConversationNotFoundError(NotFoundError):
    def __init__(self, conversation_id=None):
        message = "Conversation not found"
        if conversation_id is not None:
            message = f"Conversation {conversation_id} not found"
        super().__init__(message, error_code="conversation_not_found")
        self.conversation_id = conversation_id


class NotAParticipantError(RepositoryError):
    def __init__(self, message: str = "User is not a participant in this conversation"):
        super().__init__(message, error_code="not_a_participant")


class MessageNotFoundError(NotFoundError):
    """
    The message does not exist, is already deleted, or belongs to someone else.

    Ownership is enforced by the delete predicate itself, so the three cases are
    deliberately indistinguishable to the caller.
    """

    def __init__(self, message_id=None):
        super().__init__("Message not found", error_code="message_not_found")
        self.message_id = message_id


class InvalidMessageError(RepositoryError):
    def __init__(self, message: str, *, fields: Iterable[str] | None = None):
        super().__init__(message, fields=fields, error_code="invalid_message")


class CreationFailedError(RepositoryError):
    """Find-or-create could not complete; no partial conversation is left behind."""

    def __init__(self, message: str = "Could not create conversation"):
        super().__init__(message, error_code="creation_failed")


class TransientStoreError(RepositoryError):
    """The relational store (or the network to it) is unavailable."""

    retryable = True

    def __init__(self, message: str = "Message store temporarily unavailable"):
        super().__init__(message, error_code="store_unavailable")


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
