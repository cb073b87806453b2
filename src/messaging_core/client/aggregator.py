"""
Conversation View Aggregator.

One instance per client session. It keeps the session's view of the world
(conversation list, active conversation, transcript, compose box) consistent
with the backend, performs optimistic sends and reacts to realtime
notifications. Everything the session depends on is passed in explicitly: the
current user id, a messaging client (MessagingService or anything exposing the
same coroutines), the event bus and the profile resolver.

Failure policy:
  - actions the user started (send, delete, start a conversation) surface a
    notification;
  - background work (mark-read, refreshes triggered by events) is logged only;
  - a failed send removes the provisional message and puts its text back into
    the compose box, with a retry slot.
"""

import asyncio
import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any, Coroutine
from uuid import UUID, uuid4

from messaging_core.exceptions import RepositoryError
from messaging_core.profiles.models import ContactProfile
from messaging_core.profiles.resolver import ProfileResolver
from messaging_core.realtime.bus import BusEvent, EventBus, Subscription
from messaging_core.realtime.events import (
    MessageDeleted,
    MessageInserted,
    ParticipantAdded,
    conversation_topic,
    user_topic,
)
from messaging_core.schemas.messaging import ConversationSummary, MessagePreview, MessageView
from .transcript import (
    Confirmed,
    Pending,
    TranscriptEntry,
    confirmed_ids,
    discard,
    latest_confirmed_at,
    merge_confirmed,
    promote,
)

logger = logging.getLogger(__name__)

GENERIC_ERROR_TEXT = "Something went wrong. Please try again."

_TICK = timedelta(microseconds=1)


@dataclass(frozen=True)
class Notification:
    level: str
    message: str
    code: str | None = None


@dataclass(frozen=True)
class FailedSend:
    """Text of the last send that failed, kept for `retry_send()`."""
    content: str
    conversation_id: UUID | None
    error_code: str | None = None


def _error_details(exc: Exception) -> tuple[str, str | None]:
    if isinstance(exc, RepositoryError):
        return exc.message, exc.error_code
    return GENERIC_ERROR_TEXT, None


class ConversationViewAggregator:
    """
    Usage:
        view = ConversationViewAggregator(user_id, service, bus, resolver)
        await view.load()
        view.compose = "Hello"
        await view.send()
        ...
        view.close()
    """

    def __init__(
        self,
        user_id: UUID,
        client,
        bus: EventBus,
        resolver: ProfileResolver,
        *,
        history_limit: int = 200,
    ):
        self.user_id = user_id
        self.client = client
        self.bus = bus
        self.resolver = resolver
        self.history_limit = history_limit

        self.conversations: list[ConversationSummary] = []
        self.active_conversation_id: UUID | None = None
        # Contact chosen before a conversation exists (deferred creation)
        self.selected_contact: ContactProfile | None = None
        self.transcript: list[TranscriptEntry] = []
        self.compose: str = ""
        self.is_loading = False
        self.is_sending = False
        self.notifications: list[Notification] = []
        self.failed_send: FailedSend | None = None

        self._user_subscription: Subscription | None = None
        self._conversation_subscription: Subscription | None = None
        self._background: set[asyncio.Task] = set()
        self._closed = False

    # =================================================================================================================
    # Loading and selection
    # =================================================================================================================

    async def load(self, conversation_id: UUID | None = None) -> None:
        """
        Fetch the conversation list, subscribe to the user topic and pick the
        active conversation.

        Selection: the requested `conversation_id`; otherwise the most recently
        active conversation; otherwise the first available contact, whose
        conversation is created on the first send.
        """
        self.is_loading = True
        try:
            if self._user_subscription is None:
                self._user_subscription = await self.bus.subscribe(user_topic(self.user_id), self._on_user_event)

            if not await self.refresh_conversations():
                self.conversations = []

            if conversation_id is not None:
                await self.select_conversation(conversation_id)
            elif self.active_conversation_id is None and self.selected_contact is None:
                await self._auto_select()
        finally:
            self.is_loading = False

    async def _auto_select(self) -> None:
        if self.conversations:
            await self.select_conversation(self.conversations[0].conversation_id)
            return

        contacts = await self.resolver.available_contacts(exclude=self.user_id)
        if contacts:
            await self.select_contact(contacts[0])

    async def refresh_conversations(self) -> bool:
        """Re-fetch the conversation list; on failure the current list is kept."""
        try:
            self.conversations = await self.client.list_conversations(self.user_id)
        except Exception:
            logger.warning("view.refresh_conversations_failed", exc_info=True, extra={"user_id": self.user_id})
            return False
        return True

    async def select_conversation(self, conversation_id: UUID) -> None:
        """
        Make `conversation_id` the visible conversation: load its transcript,
        subscribe to its topic and mark it read in the background.
        """
        self._close_conversation_subscription()
        self.active_conversation_id = conversation_id
        self.selected_contact = None
        self.transcript = []

        try:
            messages = await self.client.list_messages(conversation_id, self.user_id, limit=self.history_limit)
        except Exception:
            logger.warning("view.load_transcript_failed", exc_info=True, extra={"conversation_id": conversation_id})
            messages = []

        # Selection may have moved on while the transcript was loading.
        if self.active_conversation_id != conversation_id:
            return

        self.transcript = merge_confirmed([], messages)
        self._conversation_subscription = await self.bus.subscribe(
            conversation_topic(conversation_id), self._on_conversation_event
        )
        self._mark_read_in_background(conversation_id)

    async def select_contact(self, contact: ContactProfile) -> None:
        """
        Open the chat with `contact`. An existing unscoped conversation is
        selected; otherwise nothing is created until the first send.
        """
        for summary in self.conversations:
            other = summary.other_participant
            if other is not None and other.id == contact.id and summary.appointment_id is None:
                await self.select_conversation(summary.conversation_id)
                return

        self._close_conversation_subscription()
        self.active_conversation_id = None
        self.selected_contact = contact
        self.transcript = []

    async def start_conversation(self, other_user_id: UUID, appointment_id: str | None = None) -> UUID | None:
        """Find or create the conversation with `other_user_id` and select it."""
        try:
            handle = await self.client.find_or_create_conversation(self.user_id, other_user_id, appointment_id)
        except Exception as exc:
            self._notify_failure("view.start_conversation_failed", exc)
            return None

        await self.refresh_conversations()
        await self.select_conversation(handle.conversation_id)
        return handle.conversation_id

    # =================================================================================================================
    # Sending
    # =================================================================================================================

    async def send(self, content: str | None = None) -> MessageView | None:
        """
        Optimistically send `content` (defaults to the compose box).

        The provisional entry is shown immediately. On success it is promoted to
        the server's message; on failure it is removed, the text goes back into
        the compose box and `failed_send` is set.
        """
        text = (self.compose if content is None else content).strip()
        if not text:
            return None
        if content is None:
            self.compose = ""

        pending = Pending(content=text, sender_id=self.user_id)
        self.transcript = self.transcript + [pending]
        previous_summaries = list(self.conversations)
        if self.active_conversation_id is not None:
            self._show_provisional_preview(self.active_conversation_id, pending)

        self.is_sending = True
        conversation_id = self.active_conversation_id
        try:
            if conversation_id is None:
                conversation_id = await self._create_deferred_conversation()
            message = await self.client.send_message(conversation_id, self.user_id, text)
        except Exception as exc:
            self.transcript = discard(self.transcript, pending.temp_id)
            self.conversations = previous_summaries
            self.compose = text
            code = exc.error_code if isinstance(exc, RepositoryError) else None
            self.failed_send = FailedSend(content=text, conversation_id=conversation_id, error_code=code)
            self._notify_failure("view.send_failed", exc)
            return None
        finally:
            self.is_sending = False

        self.failed_send = None
        if self.active_conversation_id == message.conversation_id:
            self.transcript = promote(self.transcript, pending.temp_id, message)
        else:
            self.transcript = discard(self.transcript, pending.temp_id)
        return message

    async def retry_send(self) -> MessageView | None:
        """Send the text of the last failed send again."""
        if self.failed_send is None:
            return None
        content = self.failed_send.content
        self.failed_send = None
        if self.compose.strip() == content:
            self.compose = ""
        return await self.send(content)

    async def _create_deferred_conversation(self) -> UUID:
        if self.selected_contact is None:
            raise RepositoryError("No conversation selected", error_code="invalid_participants")

        handle = await self.client.find_or_create_conversation(self.user_id, self.selected_contact.id)
        self.active_conversation_id = handle.conversation_id
        self.selected_contact = None
        self._conversation_subscription = await self.bus.subscribe(
            conversation_topic(handle.conversation_id), self._on_conversation_event
        )
        await self.refresh_conversations()
        await self._catch_up(handle.conversation_id)
        return handle.conversation_id

    def _show_provisional_preview(self, conversation_id: UUID, pending: Pending) -> None:
        preview = MessagePreview(id=uuid4(), sender_id=pending.sender_id, content=pending.content, created_at=pending.created_at)
        updated = []
        for summary in self.conversations:
            if summary.conversation_id == conversation_id:
                summary = summary.model_copy(update={"last_message": preview, "last_message_at": pending.created_at})
                updated.insert(0, summary)
            else:
                updated.append(summary)
        self.conversations = updated

    # =================================================================================================================
    # Deleting
    # =================================================================================================================

    async def delete_message(self, message_id: UUID) -> bool:
        try:
            await self.client.delete_message(message_id, self.user_id)
        except Exception as exc:
            self._notify_failure("view.delete_failed", exc)
            return False
        self._remove_message(message_id)
        return True

    def _remove_message(self, message_id: UUID) -> None:
        self.transcript = [
            e for e in self.transcript if not (isinstance(e, Confirmed) and e.message.id == message_id)
        ]

    # =================================================================================================================
    # Realtime
    # =================================================================================================================

    async def _on_conversation_event(self, event: BusEvent) -> None:
        if event.conversation_id != self.active_conversation_id:
            return

        if isinstance(event, MessageDeleted):
            self._remove_message(event.message_id)
            return

        if isinstance(event, MessageInserted):
            if event.message_id in confirmed_ids(self.transcript):
                return
            await self._catch_up(event.conversation_id, since=event.created_at)
            await self.refresh_conversations()
            if event.sender_id != self.user_id:
                self._mark_read_in_background(event.conversation_id)

    async def _on_user_event(self, event: BusEvent) -> None:
        if not isinstance(event, ParticipantAdded):
            return
        await self.refresh_conversations()
        if self.active_conversation_id is None and self.selected_contact is None:
            await self.select_conversation(event.conversation_id)

    async def _catch_up(self, conversation_id: UUID, since: datetime | None = None) -> None:
        """
        Fetch messages newer than the newest confirmed one and merge them.

        `since` is the creation time of a message we were notified about. Timestamps
        are assigned before commit, so that message can be older than messages we
        already hold; the fetch then starts just before it.
        """
        after: datetime | None = latest_confirmed_at(self.transcript)
        if after is not None and since is not None and since <= after:
            after = since - _TICK
        try:
            messages = await self.client.list_messages(
                conversation_id, self.user_id, limit=self.history_limit, after=after
            )
        except Exception:
            logger.warning("view.catch_up_failed", exc_info=True, extra={"conversation_id": conversation_id})
            return
        if self.active_conversation_id == conversation_id:
            self.transcript = merge_confirmed(self.transcript, messages)

    # =================================================================================================================
    # Background work
    # =================================================================================================================

    def _mark_read_in_background(self, conversation_id: UUID) -> None:
        self._spawn(self._mark_read_quietly(conversation_id))

    async def _mark_read_quietly(self, conversation_id: UUID) -> None:
        try:
            await self.client.mark_read(conversation_id, self.user_id)
        except Exception:
            logger.info("view.mark_read_failed", exc_info=True, extra={"conversation_id": conversation_id})

    def _spawn(self, coro: Coroutine[Any, Any, None]) -> None:
        if self._closed:
            coro.close()
            return
        task = asyncio.get_running_loop().create_task(coro)
        self._background.add(task)
        task.add_done_callback(self._background.discard)

    async def wait_idle(self) -> None:
        """Wait for background work (mark-read calls) started so far."""
        while self._background:
            await asyncio.gather(*list(self._background), return_exceptions=True)

    def _notify_failure(self, event: str, exc: Exception) -> None:
        message, code = _error_details(exc)
        if isinstance(exc, RepositoryError):
            logger.info(event, extra={"user_id": self.user_id, "error_code": code})
        else:
            logger.error(event, exc_info=exc, extra={"user_id": self.user_id})
        self.notifications.append(Notification(level="error", message=message, code=code))

    # =================================================================================================================
    # Teardown
    # =================================================================================================================

    def _close_conversation_subscription(self) -> None:
        if self._conversation_subscription is not None:
            self._conversation_subscription.close()
            self._conversation_subscription = None

    def close(self) -> None:
        """Tear down subscriptions and background work; the view is unusable afterwards."""
        self._closed = True
        self._close_conversation_subscription()
        if self._user_subscription is not None:
            self._user_subscription.close()
            self._user_subscription = None
        for task in list(self._background):
            task.cancel()
