"""
Transcript entries of a client session.

A transcript is a list of `Confirmed` rows (server messages, ordered by their
server timestamp) followed by `Pending` rows (optimistic local echoes that the
store has not acknowledged yet). A Pending entry is either promoted to Confirmed
when the send succeeds or removed when it fails; it is never mutated in place.
"""

from dataclasses import dataclass, field
from datetime import datetime
from uuid import UUID, uuid4

from messaging_core.database.types import utcnow
from messaging_core.schemas.messaging import MessageView


def new_temp_id() -> str:
    return f"temp-{uuid4()}"


@dataclass(frozen=True)
class Pending:
    content: str
    sender_id: UUID
    temp_id: str = field(default_factory=new_temp_id)
    created_at: datetime = field(default_factory=utcnow)

    @property
    def key(self) -> str:
        return self.temp_id


@dataclass(frozen=True)
class Confirmed:
    message: MessageView

    @property
    def key(self) -> str:
        return str(self.message.id)

    @property
    def content(self) -> str:
        return self.message.content


TranscriptEntry = Pending | Confirmed


def confirmed_ids(entries: list[TranscriptEntry]) -> set[UUID]:
    return {entry.message.id for entry in entries if isinstance(entry, Confirmed)}


def merge_confirmed(entries: list[TranscriptEntry], messages: list[MessageView]) -> list[TranscriptEntry]:
    """
    Add server messages that are not in the transcript yet (dedup by id).

    Confirmed entries stay sorted by (created_at, id); pending entries stay last,
    in submission order.
    """
    known = confirmed_ids(entries)
    added = [Confirmed(m) for m in messages if m.id not in known]
    if not added:
        return entries

    confirmed = [e for e in entries if isinstance(e, Confirmed)] + added
    confirmed.sort(key=lambda e: (e.message.created_at, str(e.message.id)))
    pending = [e for e in entries if isinstance(e, Pending)]
    return confirmed + pending


def promote(entries: list[TranscriptEntry], temp_id: str, message: MessageView) -> list[TranscriptEntry]:
    """
    Replace a Pending entry by the server's message.

    If a realtime echo already added the message, the pending entry is only dropped.
    """
    remaining = [e for e in entries if not (isinstance(e, Pending) and e.temp_id == temp_id)]
    return merge_confirmed(remaining, [message])


def discard(entries: list[TranscriptEntry], temp_id: str) -> list[TranscriptEntry]:
    return [e for e in entries if not (isinstance(e, Pending) and e.temp_id == temp_id)]


def latest_confirmed_at(entries: list[TranscriptEntry]) -> datetime | None:
    timestamps = [e.message.created_at for e in entries if isinstance(e, Confirmed)]
    return max(timestamps) if timestamps else None
