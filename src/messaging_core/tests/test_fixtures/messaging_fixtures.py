"""Fixtures for messaging tests: users, profiles, the event bus and the service."""

import uuid
from typing import AsyncGenerator, Iterator

import pytest
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker
from starlette.testclient import TestClient

from messaging_core.api.v1.dependencies import USER_ID_HEADER
from messaging_core.config.settings import Settings
from messaging_core.core.logging.builder import setup_logging
from messaging_core.main import create_app
from messaging_core.models.conversation import make_pair_key
from messaging_core.profiles.directory import build_in_memory_directories
from messaging_core.profiles.models import ContactKind, ContactProfile
from messaging_core.profiles.resolver import ProfileResolver
from messaging_core.realtime.bus import InProcessEventBus
from messaging_core.repositories.conversation_repository import ConversationRepository
from messaging_core.repositories.message_repository import MessageRepository
from messaging_core.services.conversation_directory import ConversationHandle
from messaging_core.services.messaging_service import MessagingService

# NOTE: database fixtures (`session_factory`, `db_session`) are defined in conftest.py.


def make_test_settings(**overrides) -> Settings:
    """
    Settings for tests: console logging only, text format, and nothing taken from the
    environment that could point the suite at a real database.
    """
    values = {
        "ENV": "testing",
        "TESTING": True,
        "LOG_FORMAT": "text",
        "LOG_LEVEL": "INFO",
        "LOG_TO_STDOUT": True,
        "ENABLE_SQL_LOGGING": False,
        "REDIS_URL": None,
    }
    values.update(overrides)
    return Settings(**values)


def make_resolver(*profiles: ContactProfile) -> ProfileResolver:
    return ProfileResolver(*build_in_memory_directories(profiles))


# -----------------------
# Users and profiles
# -----------------------

@pytest.fixture
def patient_id() -> uuid.UUID:
    return uuid.uuid4()


@pytest.fixture
def mentor_id() -> uuid.UUID:
    return uuid.uuid4()


@pytest.fixture
def outsider_id() -> uuid.UUID:
    """A user that belongs to no conversation (and no directory)."""
    return uuid.uuid4()


@pytest.fixture
def patient_profile(patient_id) -> ContactProfile:
    return ContactProfile(id=patient_id, display_name="Pat Patient", kind=ContactKind.PATIENT)


@pytest.fixture
def mentor_profile(mentor_id) -> ContactProfile:
    return ContactProfile(
        id=mentor_id,
        display_name="Morgan Mentor",
        avatar_url="https://cdn.example.com/avatars/morgan.png",
        kind=ContactKind.MENTOR,
    )


@pytest.fixture
def resolver(patient_profile, mentor_profile) -> ProfileResolver:
    """Knows the patient and the mentor; everyone else resolves to the placeholder."""
    return make_resolver(patient_profile, mentor_profile)


# -----------------------
# Realtime
# -----------------------

@pytest.fixture
async def bus() -> AsyncGenerator[InProcessEventBus, None]:
    event_bus = InProcessEventBus(queue_size=100)
    yield event_bus
    await event_bus.close()


# -----------------------
# Service
# -----------------------

@pytest.fixture
def test_settings() -> Settings:
    return make_test_settings()


@pytest.fixture
def service(
    session_factory: async_sessionmaker[AsyncSession],
    resolver: ProfileResolver,
    bus: InProcessEventBus,
    test_settings: Settings,
) -> MessagingService:
    return MessagingService(session_factory, resolver, bus, test_settings)


@pytest.fixture
async def started_conversation(service: MessagingService, patient_id, mentor_id) -> ConversationHandle:
    """
    An unscoped conversation between the patient and the mentor, opened by the patient.
    It already contains the "Conversation started" system message.
    """
    return await service.find_or_create_conversation(patient_id, mentor_id)


# -----------------------
# Repositories
# -----------------------

@pytest.fixture
def conversation_repository(db_session: AsyncSession) -> ConversationRepository:
    return ConversationRepository(db_session)


@pytest.fixture
def message_repository(db_session: AsyncSession) -> MessageRepository:
    return MessageRepository(db_session)


@pytest.fixture
def create_conversation(conversation_repository: ConversationRepository):
    """
    Factory: insert a conversation with both participants (no system message).

    Usage:
        conversation = await create_conversation(patient_id, mentor_id, appointment_id="appt-1")
    """
    async def _create(user_a, user_b, appointment_id=None, created_at=None, pair_key=None):
        conversation = await conversation_repository.create_conversation(
            pair_key or make_pair_key(user_a, user_b, appointment_id),
            appointment_id,
            now=created_at,
        )
        await conversation_repository.add_participants(conversation.id, [user_a, user_b])
        return conversation

    return _create


@pytest.fixture
def create_message(message_repository: MessageRepository):
    """
    Factory: append a text message and advance the conversation's activity.
    """
    async def _create(conversation_id, sender_id, content="hello", **kwargs):
        message = await message_repository.append(conversation_id, sender_id, content, **kwargs)
        await message_repository.bump_conversation_activity(conversation_id, message.created_at)
        return message

    return _create


# -----------------------
# HTTP API
# -----------------------

def as_user(user_id) -> dict[str, str]:
    return {USER_ID_HEADER: str(user_id)}


@pytest.fixture
def api(tmp_path, patient_profile, mentor_profile) -> Iterator[TestClient]:
    """
    TestClient over a full application (lifespan included) backed by its own SQLite file.
    """
    settings = make_test_settings(
        DATABASE_URL_OVERRIDE=f"sqlite+aiosqlite:///{tmp_path / 'api.db'}",
        AUTO_CREATE_SCHEMA=True,
    )
    app = create_app(settings, resolver=make_resolver(patient_profile, mentor_profile))
    with TestClient(app) as client:
        yield client


# -----------------------
# Logging
# -----------------------

@pytest.fixture
def restore_logging():
    """For tests that call setup_logging themselves: reinstall the test configuration afterwards."""
    yield
    setup_logging(make_test_settings())
