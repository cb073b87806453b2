"""
Base repository class providing common database operations.

This class serves as a reusable foundation for repositories that interact with
the database using SQLAlchemy's async sessions.

Repositories never commit. They `flush()` so generated values (ids, defaults) are
available, and leave the transaction boundary to the service layer, which can
then batch several repository calls into one unit of work.
"""
from messaging_core.exceptions.base import (
    RepositoryError,
    DuplicateError,
    InvalidFieldError
)

from messaging_core.exceptions.mapper import db_error_handler, map_db_error
from messaging_core.validators.exception_validators import (
    find_unknown_model_kwargs,
    get_required_columns,
    find_unique_conflicts,
)

import time
from typing import TypeVar, Generic, Type, Any
from uuid import UUID
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select, delete, func
from sqlalchemy.exc import SQLAlchemyError
import logging

from messaging_core.database.base import Base

# Type variable for the model class
ModelType = TypeVar("ModelType", bound=Base)

logger = logging.getLogger(__name__)


class BaseRepository(Generic[ModelType]):
    """
    Generic base repository providing common CRUD operations.

    Type Parameters:
        ModelType: The SQLAlchemy model class this repository manages.
    """

    def __init__(self, model: Type[ModelType], db: AsyncSession):
        """
        Initialize the repository.

        Args:
            model: The SQLAlchemy model class (e.g. Message, not Message())
            db: The async database session, owned by the caller
        """
        self.model = model
        self.db = db

    # =================================================================================================================
    # Basic Create Operations
    # =================================================================================================================

    async def create(self, **kwargs) -> ModelType:
        """
        Create an entity with validation + DB write.

        Validation runs before touching the database: unknown fields, missing
        required fields and (best-effort) unique conflicts. The write itself runs
        inside `db_error_handler`, so an IntegrityError from a concurrent writer is
        still mapped to DuplicateError.

        Logging:
        - DEBUG: start event with model name and provided keys (not values).
        - INFO: expected domain errors (invalid fields, missing required, duplicate).
        - INFO: success event with created id and duration_ms.

        Raises:
            InvalidFieldError: unknown keyword arguments.
            RepositoryError: missing required fields or unexpected DB failures.
            DuplicateError: a unique constraint would be violated.
            TransientStoreError: the database is unreachable.
        """
        model_name = self.model.__name__
        logger.debug(
            "repo.create.start",
            extra={
                "model": model_name,
                "operation": "create",
                "provided_keys": sorted(kwargs.keys()),
            },
        )

        # 1) unknown fields check
        unknown = find_unknown_model_kwargs(self.model, kwargs)
        if unknown:
            logger.info(
                "repo.create.invalid_fields",
                extra={"model": model_name, "operation": "create", "invalid_fields": sorted(unknown)},
            )
            raise InvalidFieldError(f"Unknown field(s) for {model_name}: {', '.join(unknown)}", fields=unknown)

        # 2) required fields check (detect all missing)
        required_cols = get_required_columns(self.model)
        missing = [c for c in required_cols if kwargs.get(c) is None]
        if missing:
            logger.info(
                "repo.create.missing_required",
                extra={"model": model_name, "operation": "create", "missing_fields": sorted(missing)},
            )
            raise RepositoryError(f"Missing required field(s): {', '.join(missing)} for {model_name}", fields=missing)

        # 3) pre-check unique conflicts (best-effort)
        try:
            conflicts = await find_unique_conflicts(self.db, self.model, kwargs)
        except SQLAlchemyError as e:
            raise map_db_error(e, model_name) from e
        if conflicts:
            logger.info(
                "repo.create.duplicate_precheck",
                extra={"model": model_name, "operation": "create", "conflict_fields": sorted(conflicts)},
            )
            raise DuplicateError(
                f"{model_name} already exists for field(s): {', '.join(sorted(conflicts))}",
                fields=sorted(conflicts),
            )

        # 4) Actual DB write with fallback mapping on integrity errors
        start = time.perf_counter()

        async with db_error_handler(self.db, model_name):
            entity = self.model(**kwargs)
            self.db.add(entity)
            await self.db.flush()
            await self.db.refresh(entity)

        logger.info(
            "repo.create.success",
            extra={
                "model": model_name,
                "operation": "create",
                "id": getattr(entity, "id", None),
                "duration_ms": int((time.perf_counter() - start) * 1000),
            },
        )
        return entity

    # =================================================================================================================
    # Basic Read Operations (Single Entity)
    # =================================================================================================================

    async def get_by_id(self, entity_id: UUID) -> ModelType | None:
        """
        Get an entity by its ID.

        Args:
            entity_id: The UUID of the entity to retrieve

        Returns:
            The entity if found, otherwise None

        Raises:
            RepositoryError / TransientStoreError: If an error occurs during retrieval.
        """
        try:
            result = await self.db.execute(
                select(self.model).where(self.model.id == entity_id)
            )
            entity = result.scalar_one_or_none()
        except SQLAlchemyError as e:
            raise map_db_error(e, self.model.__name__) from e

        logger.debug("repo.get_by_id", extra={"model": self.model.__name__, "id": entity_id, "found": entity is not None})
        return entity

    async def find_by_field(self, field: str, value: Any) -> ModelType | None:
        """
        Find a single entity by any field.

        Args:
            field: Field name to search by (must exist on model)
            value: Value to search for

        Returns:
            The entity if found, None otherwise

        Raises:
            InvalidFieldError: If the field does not exist on the model
            RepositoryError / TransientStoreError: If the query fails
        """
        if not hasattr(self.model, field):
            raise InvalidFieldError(f"{self.model.__name__} has no field '{field}'", fields=[field])

        try:
            result = await self.db.execute(
                select(self.model).where(getattr(self.model, field) == value).limit(1)
            )
            return result.scalars().first()
        except SQLAlchemyError as e:
            raise map_db_error(e, self.model.__name__) from e

    async def exists(self, entity_id: UUID) -> bool:
        """
        Check if an entity exists by its ID.
        """
        try:
            result = await self.db.execute(
                select(self.model.id).where(self.model.id == entity_id)
            )
            return result.scalar() is not None
        except SQLAlchemyError as e:
            raise map_db_error(e, self.model.__name__) from e

    async def count(self, **filters: Any) -> int:
        """
        Count entities with optional equality filters (e.g. conversation_id=..., deleted_at=None).

        Unknown filter names are ignored; a None value filters on IS NULL.
        """
        query = select(func.count()).select_from(self.model)

        for field, value in filters.items():
            if not hasattr(self.model, field):
                logger.warning("repo.count.ignored_filter", extra={"model": self.model.__name__, "field": field})
                continue
            column = getattr(self.model, field)
            query = query.where(column.is_(None) if value is None else column == value)

        try:
            result = await self.db.execute(query)
            return result.scalar() or 0
        except SQLAlchemyError as e:
            raise map_db_error(e, self.model.__name__) from e

    # =================================================================================================================
    # Delete Operations
    # =================================================================================================================

    async def delete(self, entity_id: UUID) -> bool:
        """
        Hard-delete an entity by its ID.

        Returns:
            True if entity was deleted, False if not found
        """
        async with db_error_handler(self.db, self.model.__name__):
            result = await self.db.execute(delete(self.model).where(self.model.id == entity_id))

        if result.rowcount > 0:
            logger.debug("repo.delete.success", extra={"model": self.model.__name__, "id": entity_id})
            return True

        logger.warning("repo.delete.not_found", extra={"model": self.model.__name__, "id": entity_id})
        return False
