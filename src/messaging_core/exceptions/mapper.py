import re
import logging
from contextlib import asynccontextmanager
from typing import AsyncIterator

from sqlalchemy.exc import (
    DBAPIError,
    DisconnectionError,
    IntegrityError,
    InterfaceError,
    OperationalError,
    SQLAlchemyError,
    TimeoutError as PoolTimeoutError,
)
from sqlalchemy.ext.asyncio import AsyncSession

from .integrity_classifier import (
    classify_integrity_error,
    UniqueConstraintError,
    NotNullConstraintError,
    ForeignKeyConstraintError,
    CheckConstraintError,
)
from .base import DuplicateError, RepositoryError, TransientStoreError

logger = logging.getLogger(__name__)

# -----------------------
# Column extraction helpers
# -----------------------

def _extract_columns_postgres(msg: str) -> list[str] | None:
    """
    Try to extract involved column names from common Postgres messages:
      - 'null value in column "content" violates not-null constraint'
      - 'DETAIL:  Key (pair_key)=(a:b) already exists.'
    """
    if not msg:
        return None

    m = re.search(r'null value in column "(?P<col>[^"]+)"', msg, flags=re.IGNORECASE)
    if m:
        return [m.group("col")]

    m = re.search(r'key \((?P<cols>[^)]+)\)=', msg, flags=re.IGNORECASE)
    if m:
        return [c.strip().strip('"') for c in m.group("cols").split(",")]

    return None


def _extract_columns_sqlite(msg: str) -> list[str] | None:
    # SQLite: 'UNIQUE constraint failed: conversations.pair_key'
    #         'NOT NULL constraint failed: messages.content'
    m = re.search(r'(?:UNIQUE|NOT NULL) constraint failed: (?P<cols>.+)$', msg, flags=re.IGNORECASE)
    if m:
        return [c.split('.')[-1].strip() for c in re.split(r',\s*', m.group("cols"))]
    return None


def extract_columns_from_integrity(exc: IntegrityError) -> list[str] | None:
    """
    Best-effort extraction of column names from the DB message (Postgres, SQLite).
    """
    orig = exc.orig
    msg = str(orig) if orig is not None else str(exc)
    return _extract_columns_postgres(msg) or _extract_columns_sqlite(msg)


# -----------------------
# Mapper
# -----------------------

def raise_mapped_integrity_error(exc: IntegrityError, model_name: str | None = None) -> None:
    """
    Map a SQLAlchemy IntegrityError to an app-level exception and raise it.
    Populates `.fields` and `.constraint` where possible.
    """
    exc_cls, constraint_name = classify_integrity_error(exc)
    columns = extract_columns_from_integrity(exc)

    model_part = f"{model_name}" if model_name else "Record"

    if exc_cls is UniqueConstraintError:
        # Expected in find-or-create races; INFO, not WARNING.
        logger.info(
            "mapper.duplicate_detected",
            extra={"model": model_part, "fields": columns, "constraint": constraint_name},
        )
        if columns:
            raise DuplicateError(
                f"{model_part} already exists for field(s): {', '.join(columns)}",
                fields=columns, constraint=constraint_name,
            ) from exc
        raise DuplicateError(f"{model_part} already exists", constraint=constraint_name) from exc

    if exc_cls is NotNullConstraintError:
        logger.info(
            "mapper.not_null_violation",
            extra={"model": model_part, "fields": columns, "constraint": constraint_name},
        )
        if columns:
            raise RepositoryError(
                f"Missing required field(s): {', '.join(columns)} for {model_part}",
                fields=columns, constraint=constraint_name,
            ) from exc
        raise RepositoryError(f"Missing required field for {model_part}", constraint=constraint_name) from exc

    if exc_cls is ForeignKeyConstraintError:
        logger.info(
            "mapper.foreign_key_violation",
            extra={"model": model_part, "fields": columns, "constraint": constraint_name},
        )
        raise RepositoryError(
            f"{model_part} references a missing entity", fields=columns, constraint=constraint_name
        ) from exc

    if exc_cls is CheckConstraintError:
        logger.debug(
            "mapper.check_constraint_failure",
            extra={"model": model_part, "raw": str(exc.orig), "constraint": constraint_name},
        )
        raise RepositoryError(
            f"{model_part} business rule violated (check constraint).", constraint=constraint_name
        ) from exc

    logger.warning("mapper.unknown_integrity_error", extra={"model": model_part, "constraint": constraint_name})
    logger.debug("mapper.unknown_integrity_raw", extra={"model": model_part, "raw": str(exc.orig)})
    raise RepositoryError(f"{model_part} database integrity error.") from exc


def is_transient_db_error(exc: BaseException) -> bool:
    """
    True for failures that say nothing about the data: lost connections, pool
    exhaustion, an unreachable server.
    """
    if isinstance(exc, (OperationalError, InterfaceError, DisconnectionError, PoolTimeoutError, OSError)):
        return True
    return isinstance(exc, DBAPIError) and bool(exc.connection_invalidated)


def map_db_error(exc: BaseException, model_name: str | None = None) -> RepositoryError:
    """
    Translate a non-integrity database failure into the app-level error to raise.

    Usage:
        except SQLAlchemyError as exc:
            raise map_db_error(exc, "Message") from exc
    """
    if is_transient_db_error(exc):
        logger.warning(
            "mapper.transient_store_error",
            extra={"model": model_name, "error_type": type(exc).__name__},
        )
        return TransientStoreError()
    logger.error(
        "mapper.unexpected_db_error",
        exc_info=exc,
        extra={"model": model_name, "error_type": type(exc).__name__},
    )
    return RepositoryError(f"Failed to operate on {model_name or 'database'}")


# -----------------------
# Async context manager to DRY error handling in repositories
# -----------------------
@asynccontextmanager
async def db_error_handler(db: AsyncSession, model_name: str | None = None) -> AsyncIterator[None]:
    """
    Run a block of DB writes inside a SAVEPOINT and translate failures.

    Usage:
        async with db_error_handler(self.db, self.model.__name__):
            ... DB ops that may raise IntegrityError ...

    On error only the savepoint is rolled back, so earlier work in the caller's
    transaction survives; the service layer still decides whether to commit.

    Raises:
        DuplicateError / RepositoryError: mapped integrity errors.
        TransientStoreError: connectivity problems.
        RepositoryError: any other SQLAlchemy error.
    """
    try:
        async with db.begin_nested():
            yield
    except IntegrityError as exc:
        raise_mapped_integrity_error(exc, model_name)
    except RepositoryError:
        raise
    except (SQLAlchemyError, OSError) as exc:
        raise map_db_error(exc, model_name) from exc
