"""
Column types shared by the models.

`UTCDateTime` exists because the two backends disagree about timezones:
PostgreSQL `timestamptz` round-trips aware datetimes, SQLite stores text and hands
back naive values. Message ordering and unread computation compare timestamps
produced by both the application and the database, so every value crossing the
column boundary is normalised to an aware UTC datetime.
"""

from datetime import datetime, timezone

from sqlalchemy import DateTime
from sqlalchemy.types import TypeDecorator


def utcnow() -> datetime:
    """Current time as an aware UTC datetime."""
    return datetime.now(timezone.utc)


def as_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


class UTCDateTime(TypeDecorator):
    """
    DateTime(timezone=True) that always stores and returns aware UTC datetimes.

    - bind: naive values are assumed to already be UTC; aware values are converted.
    - result: naive values (SQLite) get tzinfo=UTC attached.
    """

    impl = DateTime(timezone=True)
    cache_ok = True

    def process_bind_param(self, value: datetime | None, dialect) -> datetime | None:
        if value is None:
            return None
        return as_utc(value)

    def process_result_value(self, value: datetime | None, dialect) -> datetime | None:
        if value is None:
            return None
        return as_utc(value)
