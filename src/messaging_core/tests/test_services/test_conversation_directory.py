import uuid

import pytest
from sqlalchemy import select

from messaging_core.exceptions import (
    ConversationNotFoundError,
    CreationFailedError,
    InvalidParticipantsError,
    RepositoryError,
    UnauthenticatedError,
)
from messaging_core.models import Conversation, Message, MessageKind, make_pair_key
from messaging_core.profiles.models import UNKNOWN_USER_NAME
from messaging_core.services.conversation_directory import ConversationDirectory, truncate_preview


@pytest.fixture
def directory(db_session, resolver) -> ConversationDirectory:
    return ConversationDirectory(db_session, resolver, started_text="Conversation started", preview_length=20)


def test_truncate_preview():
    assert truncate_preview("short", 20) == "short"
    assert truncate_preview("x" * 20, 20) == "x" * 20
    assert truncate_preview("hello world and more", 10) == "hello wor…"
    assert len(truncate_preview("y" * 50, 10)) == 10


@pytest.mark.asyncio
class TestFindOrCreate:

    async def test_creates_conversation_with_both_participants_and_started_message(
        self, directory, db_session, patient_id, mentor_id
    ):
        """
        Behavior:
                - No conversation exists: one is created with exactly two participants
                  and a SYSTEM "Conversation started" message authored by the caller.
        """
        handle = await directory.find_or_create(patient_id, mentor_id)

        assert handle.created is True
        members = await directory.conversations.list_participants(handle.conversation_id)
        assert {m.user_id for m in members} == {patient_id, mentor_id}

        messages = (await db_session.execute(
            select(Message).where(Message.conversation_id == handle.conversation_id)
        )).scalars().all()
        assert len(messages) == 1
        assert messages[0].kind is MessageKind.SYSTEM
        assert messages[0].content == "Conversation started"
        assert messages[0].sender_id == patient_id

        conversation = await directory.conversations.get_by_id(handle.conversation_id)
        await db_session.refresh(conversation)
        assert conversation.last_message_at == messages[0].created_at

    async def test_is_idempotent_in_both_directions(self, directory, db_session, patient_id, mentor_id):
        """
        Behavior:
                - (P, M), (P, M) again and (M, P) all return the same conversation;
                  only the first call reports created=True and only one row exists.
        """
        first = await directory.find_or_create(patient_id, mentor_id)
        again = await directory.find_or_create(patient_id, mentor_id)
        reverse = await directory.find_or_create(mentor_id, patient_id)

        assert again.conversation_id == first.conversation_id
        assert reverse.conversation_id == first.conversation_id
        assert (first.created, again.created, reverse.created) == (True, False, False)

        count = len((await db_session.execute(select(Conversation.id))).all())
        assert count == 1

    async def test_appointment_scopes_are_separate_conversations(self, directory, patient_id, mentor_id):
        unscoped = await directory.find_or_create(patient_id, mentor_id)
        scoped = await directory.find_or_create(patient_id, mentor_id, "appt-1")
        scoped_again = await directory.find_or_create(mentor_id, patient_id, "appt-1")
        other_scope = await directory.find_or_create(patient_id, mentor_id, "appt-2")

        assert scoped.conversation_id != unscoped.conversation_id
        assert scoped_again.conversation_id == scoped.conversation_id
        assert other_scope.conversation_id not in {unscoped.conversation_id, scoped.conversation_id}

    async def test_empty_appointment_means_unscoped(self, directory, patient_id, mentor_id):
        unscoped = await directory.find_or_create(patient_id, mentor_id)

        assert (await directory.find_or_create(patient_id, mentor_id, "")).conversation_id == unscoped.conversation_id

    async def test_losing_a_concurrent_creation_returns_the_winner(self, directory, patient_id, mentor_id):
        """
        Behavior:
                - Another session has already inserted the conversation row for this pair
                  (its participants are not visible yet, so the intersection lookup misses).
                - find_or_create hits the unique pair key, re-fetches the winner and
                  returns it with created=False instead of inserting a second conversation.
        """
        winner = await directory.conversations.create_conversation(make_pair_key(mentor_id, patient_id))

        handle = await directory.find_or_create(patient_id, mentor_id)

        assert handle.conversation_id == winner.id
        assert handle.created is False

    async def test_self_conversation_is_rejected(self, directory, patient_id):
        with pytest.raises(InvalidParticipantsError) as exc_info:
            await directory.find_or_create(patient_id, patient_id)

        assert exc_info.value.error_code == "invalid_participants"

    async def test_missing_ids(self, directory, patient_id):
        with pytest.raises(UnauthenticatedError):
            await directory.find_or_create(None, patient_id)

        with pytest.raises(InvalidParticipantsError):
            await directory.find_or_create(patient_id, None)

    async def test_participant_failure_removes_the_conversation(
        self, monkeypatch, directory, db_session, patient_id, mentor_id
    ):
        """
        Behavior:
                - Adding participants fails after the conversation row was inserted.
                - The row is deleted again and CreationFailedError is raised, so no
                  conversation without participants survives.
        """
        async def failing_add_participants(conversation_id, user_ids, joined_at=None):
            raise RepositoryError("participants table unavailable")

        monkeypatch.setattr(directory.conversations, "add_participants", failing_add_participants)

        with pytest.raises(CreationFailedError):
            await directory.find_or_create(patient_id, mentor_id)

        remaining = (await db_session.execute(select(Conversation.id))).all()
        assert remaining == []

    async def test_started_message_failure_does_not_fail_creation(
        self, monkeypatch, directory, patient_id, mentor_id, caplog
    ):
        async def failing_append(*args, **kwargs):
            raise RepositoryError("messages table unavailable")

        monkeypatch.setattr(directory.messages, "append", failing_append)

        with caplog.at_level("WARNING", logger="messaging_core"):
            handle = await directory.find_or_create(patient_id, mentor_id)

        assert handle.created is True
        assert await directory.conversations.is_participant(handle.conversation_id, mentor_id)
        assert any(r.getMessage() == "directory.find_or_create.started_message_failed" for r in caplog.records)


@pytest.mark.asyncio
class TestReads:

    async def test_get_conversation_resolves_participants(self, directory, patient_id, mentor_id):
        handle = await directory.find_or_create(patient_id, mentor_id, "appt-3")

        detail = await directory.get_conversation(handle.conversation_id)

        assert detail.id == handle.conversation_id
        assert detail.appointment_id == "appt-3"
        names = {p.user_id: p.profile.display_name for p in detail.participants}
        assert names == {patient_id: "Pat Patient", mentor_id: "Morgan Mentor"}

    async def test_get_conversation_not_found(self, directory):
        with pytest.raises(ConversationNotFoundError) as exc_info:
            await directory.get_conversation(uuid.uuid4())

        assert exc_info.value.http_status() == 404

    async def test_get_conversation_by_appointment(self, directory, patient_id, mentor_id):
        handle = await directory.find_or_create(patient_id, mentor_id, "appt-4")

        assert await directory.get_conversation_by_appointment("appt-4") == handle.conversation_id
        assert await directory.get_conversation_by_appointment("appt-5") is None

    async def test_user_conversations(self, directory, patient_id, mentor_id, outsider_id):
        """
        Behavior:
                - The patient has two conversations; the newest activity comes first.
                - The other participant is resolved; an unknown user gets the placeholder.
                - The SYSTEM message written by the patient is the preview and is unread
                  for the other participant only.
        """
        with_mentor = await directory.find_or_create(patient_id, mentor_id)
        with_outsider = await directory.find_or_create(patient_id, outsider_id)

        summaries = await directory.get_user_conversations(patient_id)

        assert [s.conversation_id for s in summaries] == [with_outsider.conversation_id, with_mentor.conversation_id]
        assert summaries[0].other_participant.display_name == UNKNOWN_USER_NAME
        assert summaries[0].other_participant.is_placeholder is True
        assert summaries[1].other_participant.display_name == "Morgan Mentor"
        assert summaries[1].last_message.content == "Conversation started"
        assert summaries[1].has_unread is False

        (mentor_view,) = await directory.get_user_conversations(mentor_id)
        assert mentor_view.has_unread is True
        assert mentor_view.unread_count == 1
        assert mentor_view.other_participant.display_name == "Pat Patient"

    async def test_user_conversations_truncate_preview(self, directory, patient_id, mentor_id):
        handle = await directory.find_or_create(patient_id, mentor_id)
        await directory.messages.append(handle.conversation_id, mentor_id, "a rather long message body that goes on")

        (summary,) = await directory.get_user_conversations(patient_id)

        assert summary.last_message.content.endswith("…")
        assert len(summary.last_message.content) == 20

    async def test_user_conversations_require_identity(self, directory):
        with pytest.raises(UnauthenticatedError):
            await directory.get_user_conversations(None)

    async def test_user_without_conversations(self, directory, outsider_id):
        assert await directory.get_user_conversations(outsider_id) == []
