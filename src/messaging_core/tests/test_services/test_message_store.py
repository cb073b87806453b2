import uuid

import pytest

from messaging_core.exceptions import (
    ConversationNotFoundError,
    InvalidMessageError,
    MessageNotFoundError,
    NotAParticipantError,
    RepositoryError,
)
from messaging_core.models import MessageKind
from messaging_core.services.message_store import MessageStore


@pytest.fixture
def store(db_session) -> MessageStore:
    return MessageStore(db_session, max_length=50, page_size=3, page_size_max=5)


@pytest.fixture
async def conversation(create_conversation, patient_id, mentor_id):
    return await create_conversation(patient_id, mentor_id)


@pytest.mark.asyncio
class TestAppend:

    async def test_append_returns_view_and_bumps_activity(self, store, conversation, db_session, patient_id):
        view = await store.append(conversation.id, patient_id, "  Hello, mentor!  ")

        assert view.content == "Hello, mentor!"
        assert view.kind is MessageKind.TEXT
        assert view.sender_id == patient_id
        assert view.conversation_id == conversation.id

        await db_session.refresh(conversation)
        assert conversation.last_message_at == view.created_at

    async def test_messages_are_totally_ordered(self, store, conversation, patient_id, mentor_id):
        """
        Behavior:
                - Alternating senders append five messages; listing returns them in
                  append order with strictly increasing created_at.
        """
        senders = [patient_id, mentor_id, patient_id, mentor_id, patient_id]
        appended = [await store.append(conversation.id, s, f"m{i}") for i, s in enumerate(senders)]

        listed = await store.list_messages(conversation.id, patient_id, limit=5)

        assert [m.id for m in listed] == [m.id for m in appended]
        stamps = [m.created_at for m in listed]
        assert all(earlier < later for earlier, later in zip(stamps, stamps[1:]))

    @pytest.mark.parametrize("content", ["", "   ", None])
    async def test_blank_content_is_rejected(self, store, conversation, patient_id, content):
        with pytest.raises(InvalidMessageError) as exc_info:
            await store.append(conversation.id, patient_id, content)

        assert exc_info.value.fields == ["content"]

    async def test_attachment_without_text_is_accepted(self, store, conversation, patient_id):
        view = await store.append(
            conversation.id, patient_id, "", attachment_url="https://files.example.com/x.pdf", attachment_type="application/pdf"
        )

        assert view.content == ""
        assert view.attachment_type == "application/pdf"

    async def test_too_long_content_is_rejected(self, store, conversation, patient_id):
        with pytest.raises(InvalidMessageError):
            await store.append(conversation.id, patient_id, "x" * 51)

    async def test_non_participant_cannot_append(self, store, conversation, outsider_id):
        with pytest.raises(NotAParticipantError) as exc_info:
            await store.append(conversation.id, outsider_id, "let me in")

        assert exc_info.value.http_status() == 403
        assert await store.messages.list_for_conversation(conversation.id) == []

    async def test_membership_is_checked_before_content(self, store, conversation, outsider_id):
        """
        Behavior:
                - An outsider posting blank text is told they are not a participant,
                  not that the text is invalid.
        """
        with pytest.raises(NotAParticipantError):
            await store.append(conversation.id, outsider_id, "   ")

    async def test_unknown_conversation(self, store, patient_id):
        with pytest.raises(ConversationNotFoundError):
            await store.append(uuid.uuid4(), patient_id, "hello?")

        with pytest.raises(ConversationNotFoundError):
            await store.append(uuid.uuid4(), patient_id, "")

    async def test_activity_bump_failure_keeps_the_message(self, monkeypatch, store, conversation, patient_id, caplog):
        async def failing_bump(conversation_id, at):
            raise RepositoryError("conversation row locked")

        monkeypatch.setattr(store.messages, "bump_conversation_activity", failing_bump)

        with caplog.at_level("WARNING", logger="messaging_core"):
            view = await store.append(conversation.id, patient_id, "still stored")

        assert [m.id for m in await store.list_messages(conversation.id, patient_id)] == [view.id]
        assert any(r.getMessage() == "store.append.activity_bump_failed" for r in caplog.records)


@pytest.mark.asyncio
class TestListMessages:

    async def test_page_size_defaults_and_is_clamped(self, store, conversation, patient_id):
        for i in range(7):
            await store.append(conversation.id, patient_id, f"m{i}")

        assert len(await store.list_messages(conversation.id, patient_id)) == 3
        assert len(await store.list_messages(conversation.id, patient_id, limit=100)) == 5
        page = await store.list_messages(conversation.id, patient_id, limit=2, offset=5)
        assert [m.content for m in page] == ["m5", "m6"]

    async def test_after_returns_only_newer_messages(self, store, conversation, patient_id, mentor_id):
        first = await store.append(conversation.id, patient_id, "one")
        await store.append(conversation.id, mentor_id, "two")

        newer = await store.list_messages(conversation.id, patient_id, after=first.created_at)

        assert [m.content for m in newer] == ["two"]

    async def test_non_participant_cannot_read(self, store, conversation, patient_id, outsider_id):
        await store.append(conversation.id, patient_id, "private")

        with pytest.raises(NotAParticipantError):
            await store.list_messages(conversation.id, outsider_id)


@pytest.mark.asyncio
class TestMarkRead:

    async def test_mark_read_is_idempotent(self, store, conversation, patient_id, mentor_id):
        """
        Behavior:
                - The patient reads two mentor messages: both are marked and the
                  participant row records last_read_at.
                - A repeated call marks nothing and does not fail.
        """
        await store.append(conversation.id, mentor_id, "a")
        await store.append(conversation.id, mentor_id, "b")

        receipt = await store.mark_read(conversation.id, patient_id)
        repeat = await store.mark_read(conversation.id, patient_id)

        assert receipt.messages_marked == 2
        assert receipt.participant_updated is True
        assert repeat.messages_marked == 0
        assert repeat.participant_updated is True
        (summary,) = await store.conversations.list_summaries_for_user(patient_id)
        assert summary.unread_count == 0

    async def test_participant_update_failure_still_marks_messages(self, monkeypatch, store, conversation, patient_id, mentor_id):
        await store.append(conversation.id, mentor_id, "a")

        async def failing_set_last_read_at(conversation_id, reader_id, at):
            raise RepositoryError("participants table unavailable")

        monkeypatch.setattr(store.messages, "set_last_read_at", failing_set_last_read_at)

        receipt = await store.mark_read(conversation.id, patient_id)

        assert receipt.messages_marked == 1
        assert receipt.participant_updated is False

    async def test_message_update_failure_still_updates_participant(self, monkeypatch, store, conversation, patient_id):
        async def failing_mark_read(conversation_id, reader_id, at):
            raise RepositoryError("messages table unavailable")

        monkeypatch.setattr(store.messages, "mark_read", failing_mark_read)

        receipt = await store.mark_read(conversation.id, patient_id)

        assert receipt.messages_marked == 0
        assert receipt.participant_updated is True

    async def test_non_participant_cannot_mark_read(self, store, conversation, outsider_id):
        with pytest.raises(NotAParticipantError):
            await store.mark_read(conversation.id, outsider_id)


@pytest.mark.asyncio
class TestSoftDelete:

    async def test_sender_deletes_and_message_disappears(self, store, conversation, patient_id):
        view = await store.append(conversation.id, patient_id, "take this back")

        deleted = await store.soft_delete(view.id, patient_id)

        assert deleted.message_id == view.id
        assert deleted.conversation_id == conversation.id
        assert await store.list_messages(conversation.id, patient_id) == []

    async def test_non_sender_gets_not_found_and_message_survives(self, store, conversation, patient_id, mentor_id):
        view = await store.append(conversation.id, patient_id, "mine")

        with pytest.raises(MessageNotFoundError) as exc_info:
            await store.soft_delete(view.id, mentor_id)

        assert exc_info.value.error_code == "message_not_found"
        assert [m.id for m in await store.list_messages(conversation.id, patient_id)] == [view.id]

    async def test_double_delete_and_unknown_id(self, store, conversation, patient_id):
        view = await store.append(conversation.id, patient_id, "once")
        await store.soft_delete(view.id, patient_id)

        with pytest.raises(MessageNotFoundError):
            await store.soft_delete(view.id, patient_id)
        with pytest.raises(MessageNotFoundError):
            await store.soft_delete(uuid.uuid4(), patient_id)
