"""Timestamp helpers shared by the server and client components.

Wire timestamps are ISO 8601 strings in UTC with millisecond precision and a
trailing ``Z`` (``1970-01-01T00:00:00.000Z``). Internally everything is an
aware ``datetime`` in UTC.
"""

from datetime import UTC, datetime
from typing import Any

EPOCH = datetime(1970, 1, 1, tzinfo=UTC)
EPOCH_ISO = "1970-01-01T00:00:00.000Z"


def utc_now() -> datetime:
    return datetime.now(UTC)


def ensure_utc(value: datetime) -> datetime:
    """Attach UTC to naive datetimes (SQLite drops tzinfo) and convert aware ones."""
    if value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    return value.astimezone(UTC)


def format_iso(value: datetime) -> str:
    """Render a datetime in the wire format."""
    rendered = ensure_utc(value).isoformat(timespec="milliseconds")
    return rendered.replace("+00:00", "Z")


def parse_iso(value: str) -> datetime | None:
    """Parse an ISO 8601 string, returning None when it is not one."""
    if not isinstance(value, str) or not value.strip():
        return None
    try:
        parsed = datetime.fromisoformat(value.strip())
    except ValueError:
        return None
    return ensure_utc(parsed)


def to_datetime(value: Any) -> datetime | None:
    """Coerce the timestamp shapes a store can hand back into a datetime.

    Handles datetimes, ISO strings, and server timestamp objects exposing
    ``to_datetime()`` or ``ToDatetime()``. Returns None for anything else,
    including the null a store reports while a server timestamp is pending.
    """
    if value is None:
        return None
    if isinstance(value, datetime):
        return ensure_utc(value)
    if isinstance(value, str):
        return parse_iso(value)
    for converter in ("to_datetime", "ToDatetime"):
        method = getattr(value, converter, None)
        if callable(method):
            converted = method()
            if isinstance(converted, datetime):
                return ensure_utc(converted)
    return None
