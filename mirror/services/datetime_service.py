"""Datetime parsing: lax input -> strict output."""

from __future__ import annotations

from datetime import datetime, timezone

import pendulum


def parse_datetime(value: str | datetime, default_tz: str = "UTC") -> datetime:
    """Parse a lax datetime string into a timezone-aware datetime.

    Accepts RFC 3339 timestamps as reported by Drive (``2024-05-01T10:00:00.000Z``)
    and the looser variants pendulum understands. Missing timezone defaults to
    ``default_tz``.
    """
    if isinstance(value, datetime):
        if value.tzinfo is None:
            tz = pendulum.timezone(default_tz)
            value = value.replace(tzinfo=tz)  # type: ignore[arg-type]
        return value

    parsed = pendulum.parse(value.strip(), tz=default_tz, strict=False)
    if isinstance(parsed, pendulum.DateTime):
        return parsed
    if isinstance(parsed, pendulum.Date):
        # pendulum.parse returns Date for date-only strings
        return pendulum.datetime(parsed.year, parsed.month, parsed.day, tz=default_tz)
    # Durations, times of day and intervals name no instant
    raise ValueError(f"Not a date or datetime: {value!r}")


def same_instant(left: str | None, right: str | None) -> bool:
    """Return True when two timestamp strings denote the same instant.

    Values that fail to parse are compared verbatim.
    """
    if left is None or right is None:
        return left == right
    if left == right:
        return True
    try:
        return parse_datetime(left) == parse_datetime(right)
    except ValueError:
        return False


def now_utc() -> datetime:
    """Return the current UTC datetime."""
    return datetime.now(timezone.utc)


def format_iso(dt: datetime) -> str:
    """Format datetime as ISO 8601 for JSON serialization."""
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt.isoformat()
