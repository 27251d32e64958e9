"""Identifier and time helpers for the note tree core."""

import datetime
import secrets
import string
from datetime import timezone
from typing import Optional

_ID_ALPHABET = string.ascii_letters + string.digits
_ID_LENGTH = 12


def utc_now() -> datetime.datetime:
    """Get current UTC time as timezone-aware datetime."""
    return datetime.datetime.now(timezone.utc)


def ensure_timezone_aware(dt_value: Optional[datetime.datetime]) -> Optional[datetime.datetime]:
    """Ensure a datetime is timezone-aware, treating naive datetimes as UTC.

    SQLite drops tzinfo on the way in, so every datetime read back from the
    database is naive even though it was written as UTC.

    Args:
        dt_value: A datetime that may or may not have timezone info.

    Returns:
        The same datetime with UTC timezone if it was naive, otherwise
        unchanged. None stays None.
    """
    if dt_value is None:
        return None
    if dt_value.tzinfo is None:
        return dt_value.replace(tzinfo=timezone.utc)
    return dt_value


def to_utc(dt_value: datetime.datetime) -> datetime.datetime:
    """Express a datetime in UTC; naive values are taken to be UTC already.

    Every datetime must pass through here before it is written: SQLite keeps
    only the wall-clock fields, so a +02:00 value would be read back two
    hours off.
    """
    return ensure_timezone_aware(dt_value).astimezone(timezone.utc)


def _random_id(length: int = _ID_LENGTH) -> str:
    return "".join(secrets.choice(_ID_ALPHABET) for _ in range(length))


def new_note_id() -> str:
    """Generate an identifier for a note."""
    return _random_id()


def new_note_tree_id() -> str:
    """Generate an identifier for a tree placement."""
    return _random_id()


def new_note_history_id() -> str:
    """Generate an identifier for a history snapshot."""
    return _random_id()
