import logging
from datetime import datetime, timezone
from typing import Optional

logger = logging.getLogger("services.common")


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def ensure_utc(maybe: Optional[datetime]) -> Optional[datetime]:
    """Return a timezone-aware UTC datetime.

    SQLite hands back naive values for DateTime(timezone=True) columns; every
    timestamp this service writes is UTC, so a naive value is read as UTC.
    """
    if maybe is None:
        return None
    if maybe.tzinfo is None:
        return maybe.replace(tzinfo=timezone.utc)
    return maybe.astimezone(timezone.utc)


def terminal_timestamp(reminder) -> Optional[datetime]:
    """When a reminder reached its terminal state (sent_at, superseded_at, else created_at)."""
    return ensure_utc(reminder.sent_at or reminder.superseded_at or reminder.created_at)
