"""
Classification of database integrity errors.

The messaging tables rely on a handful of constraints: the unique conversation
pair key, the (conversation_id, user_id) participant key, foreign keys from
participants and messages to conversations, and NOT NULL columns. Postgres
reports the violated rule as a SQLSTATE code; SQLite only in the message text.
Both are folded into the labels below, which mapper.py turns into
DuplicateError / RepositoryError.
"""

import logging
from dataclasses import dataclass
from typing import Type

from sqlalchemy.exc import IntegrityError

from .base import RepositoryError

logger = logging.getLogger(__name__)


# Internal labels only; never raised to callers.

class ConstraintViolationError(RepositoryError):
    """Base for integrity/constraint violations."""


class UniqueConstraintError(ConstraintViolationError):
    """Duplicate pair key, double join, ..."""


class NotNullConstraintError(ConstraintViolationError):
    pass


class ForeignKeyConstraintError(ConstraintViolationError):
    """Participant or message pointing at a missing conversation."""


class CheckConstraintError(ConstraintViolationError):
    pass


class UnknownIntegrityError(ConstraintViolationError):
    pass


@dataclass(frozen=True)
class _Rule:
    label: Type[ConstraintViolationError]
    sqlstate: str                   # https://www.postgresql.org/docs/current/errcodes-appendix.html
    phrases: tuple[str, ...]        # lower-cased message fragments (SQLite, others)


_RULES = (
    _Rule(UniqueConstraintError, "23505", ("unique constraint", "unique failed", "unique violation", "duplicate")),
    _Rule(NotNullConstraintError, "23502", ("not null constraint", "not null", "null value in column")),
    _Rule(ForeignKeyConstraintError, "23503", ("foreign key constraint", "foreign key", "is not present in table")),
    _Rule(CheckConstraintError, "23514", ("check constraint", "check failed")),
)


def _sqlstate(orig) -> str | None:
    # psycopg: pgcode; asyncpg (through the SQLAlchemy adapter): sqlstate
    return getattr(orig, "pgcode", None) or getattr(orig, "sqlstate", None)


def _constraint_name(orig) -> str | None:
    """
    psycopg exposes the name on `orig.diag`; the asyncpg adapter chains the driver
    exception, which carries `constraint_name`, as `__cause__`.
    """
    diag = getattr(orig, "diag", None)
    name = getattr(diag, "constraint_name", None)
    return name or getattr(getattr(orig, "__cause__", None), "constraint_name", None)


def classify_integrity_error(exc: IntegrityError) -> tuple[Type[ConstraintViolationError], str | None]:
    """
    Return (label, constraint name if the driver reports one).

    The SQLSTATE wins when present; otherwise the message text is matched.
    """
    orig = exc.orig
    code = _sqlstate(orig)

    if code:
        constraint = _constraint_name(orig)
        for rule in _RULES:
            if rule.sqlstate == code:
                logger.debug("integrity.classified", extra={"pgcode": code, "constraint_name": constraint})
                return rule.label, constraint
        logger.warning("integrity.unknown_pgcode", extra={"pgcode": code, "constraint_name": constraint})
        logger.debug("integrity.postgres_raw", extra={"orig_repr": repr(orig)})
        return UnknownIntegrityError, constraint

    text = str(orig).lower()
    for rule in _RULES:
        if any(phrase in text for phrase in rule.phrases):
            return rule.label, None

    logger.warning("integrity.unknown_message", extra={"message_snippet": text[:200]})
    return UnknownIntegrityError, None
