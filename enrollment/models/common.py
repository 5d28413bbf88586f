from __future__ import annotations

from datetime import datetime, timezone


def utcnow() -> datetime:
    # timezone-aware UTC everywhere; SQLite drops tzinfo on read, see as_utc()
    return datetime.now(timezone.utc)


def as_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def version_of(value: datetime) -> int:
    """Epoch milliseconds. Used as the search document version."""
    return int(as_utc(value).timestamp() * 1000)
