"""
Core pytest configuration for the entire test suite.

This module provides only the essential database setup and core utilities
that are needed across ALL types of tests (repositories, services, client sessions, API).

Domain-specific fixtures (users, profiles, bus, service) are located in:
- tests/test_fixtures/messaging_fixtures.py

This separation keeps conftest.py clean and allows for modular test organization.
"""

# -------------------------------
# Standard library imports
# -------------------------------
import os
import logging
from pathlib import Path
from urllib.parse import urlparse
from typing import AsyncGenerator

# -------------------------------
# Early logging tuning (IMPORTANT)
# -------------------------------
# Set the level for noisy third-party loggers at import time, before importing modules that
# might initialize them. Keep this block above the project imports.
NOISY_LOGGERS = (
    "sqlalchemy",
    "sqlalchemy.engine",
    "sqlalchemy.engine.Engine",
    "aiosqlite",
    "asyncio",
    "httpx",
    "redis",
)
for _name in NOISY_LOGGERS:
    logging.getLogger(_name).setLevel(logging.WARNING)

# -------------------------------
# Third-party / project imports
# -------------------------------
import pytest
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker

from messaging_core.core.logging.builder import setup_logging
from messaging_core.database.session import (
    build_session_factory,
    create_engine_for_url,
    create_schema,
    drop_schema,
)

from .test_fixtures.messaging_fixtures import make_test_settings

logger = logging.getLogger(__name__)


# -------------------------------
# Logging: install application logging once per session
# -------------------------------
# `autouse=True` makes pytest apply the fixture without tests requesting it.
# pytest's caplog handler is attached per test, after this runs, so caplog keeps working.
@pytest.fixture(scope="session", autouse=True)
def configure_logging():
    """
    Install the application's dictConfig logging (formatters, filters, handlers) for the
    whole test session, the same way the application lifespan does.
    """
    setup_logging(make_test_settings())
    yield


# ------------------------------------------------------------------------------------------------
# Determining and Logging the Test Database URL for Tests
# ------------------------------------------------------------------------------------------------


def safe_log_db_url(db_url: str) -> str:
    """
    Return the database URL without credentials, for logging.
    """
    parsed = urlparse(db_url)
    return f"{parsed.scheme}://{parsed.hostname or ''}:{parsed.port or ''}/{parsed.path.lstrip('/')}"


def get_test_database_url(tmp_dir: Path) -> str:
    """
    Determine the test database URL.

    1. `TEST_DATABASE_URL` environment variable (CI/CD, e.g. a throwaway PostgreSQL).
    2. Otherwise a SQLite file inside the test's temporary directory. A file (not
       `:memory:`) gives every session its own connection, which the services need
       because background tasks open sessions concurrently.
    """
    if test_url := os.getenv("TEST_DATABASE_URL"):
        return test_url
    return f"sqlite+aiosqlite:///{tmp_dir / 'messaging_test.db'}"


# ------------------------------------------------------------------------------------------------
# DATABASE FIXTURES
# ------------------------------------------------------------------------------------------------


@pytest.fixture
def database_url(tmp_path: Path) -> str:
    url = get_test_database_url(tmp_path)
    logger.debug("tests.database_url", extra={"url": safe_log_db_url(url)})
    return url


@pytest.fixture
async def async_engine(database_url: str) -> AsyncGenerator[AsyncEngine, None]:
    """
    Fresh schema per test: tables are created before and dropped after the test.
    """
    engine = create_engine_for_url(database_url)
    await create_schema(engine)

    yield engine

    await drop_schema(engine)
    await engine.dispose()


@pytest.fixture
def session_factory(async_engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    """The factory the services use; every unit of work commits for real."""
    return build_session_factory(async_engine)


@pytest.fixture
async def db_session(session_factory: async_sessionmaker[AsyncSession]) -> AsyncGenerator[AsyncSession, None]:
    """
    A single session for repository/directory/store tests.

    Repositories only flush, so whatever a test writes stays in this session's
    transaction and is rolled back at the end.
    """
    async with session_factory() as session:
        try:
            yield session
        finally:
            await session.rollback()


# Domain fixtures, registered globally
from .test_fixtures.messaging_fixtures import (  # noqa: E402
    patient_id,
    mentor_id,
    outsider_id,
    patient_profile,
    mentor_profile,
    resolver,
    bus,
    test_settings,
    service,
    conversation_repository,
    message_repository,
    started_conversation,
    create_conversation,
    create_message,
    api,
    restore_logging,
)
