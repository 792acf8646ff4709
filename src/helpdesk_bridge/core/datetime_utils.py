"""Datetime helpers shared across the application."""

from __future__ import annotations

from datetime import UTC, datetime

__all__ = [
    "TRACKER_DATETIME_FORMAT",
    "ensure_utc",
    "format_tracker_datetime",
    "parse_datetime",
    "parse_tracker_datetime",
    "serialize_datetime",
    "utcnow",
]

TRACKER_DATETIME_FORMAT = "%Y-%m-%d %H:%M:%S"


def utcnow() -> datetime:
    """Return the current time as an aware UTC datetime."""
    return datetime.now(UTC)


def ensure_utc(value: datetime | None) -> datetime | None:
    """Return ``value`` in UTC, treating naive values as already UTC."""
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    return value.astimezone(UTC)


def serialize_datetime(value: datetime | None) -> str | None:
    """Serialise ``value`` to an ISO 8601 UTC string."""
    normalized = ensure_utc(value)
    if normalized is None:
        return None
    return normalized.isoformat()


def parse_datetime(value: str | None) -> datetime | None:
    """Parse an ISO 8601 string into an aware UTC ``datetime``."""
    if value is None:
        return None
    return ensure_utc(datetime.fromisoformat(value))


def format_tracker_datetime(value: datetime) -> str:
    """Render ``value`` the way the tracker expects in domain filters."""
    normalized = ensure_utc(value) or value
    return normalized.strftime(TRACKER_DATETIME_FORMAT)


def parse_tracker_datetime(value: str | None) -> datetime | None:
    """Parse a tracker timestamp (UTC, no zone suffix)."""
    if not value:
        return None
    trimmed = value.split(".", 1)[0]
    return datetime.strptime(trimmed, TRACKER_DATETIME_FORMAT).replace(tzinfo=UTC)
