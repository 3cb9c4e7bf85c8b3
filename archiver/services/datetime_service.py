"""Datetime helpers: lax input parsing, UTC normalization, calendar arithmetic."""

from __future__ import annotations

from datetime import datetime, timezone

import pendulum

# Date format used in operator messages
DATE_FORMAT = "%Y-%m-%d"


def parse_datetime(value: str | datetime, default_tz: str = "UTC") -> datetime:
    """Parse a lax datetime string into a timezone-aware datetime.

    Accepts date-only strings (``2024-05-01``), date and time with or without
    seconds, and ISO 8601 variants. Missing timezone defaults to ``default_tz``.

    Raises ValueError for strings pendulum cannot parse.
    """
    if isinstance(value, datetime):
        if value.tzinfo is None:
            tz = pendulum.timezone(default_tz)
            value = value.replace(tzinfo=tz)  # type: ignore[arg-type]
        return value

    value_str = value.strip()
    try:
        parsed = pendulum.parse(value_str, tz=default_tz, strict=False)
    except ValueError as exc:
        raise ValueError(f"Invalid date: {value_str!r}") from exc

    if not isinstance(parsed, pendulum.DateTime):
        if not isinstance(parsed, pendulum.Date):
            raise ValueError(f"Invalid date: {value_str!r}")
        parsed = pendulum.datetime(parsed.year, parsed.month, parsed.day, tz=default_tz)
    return parsed


def ensure_utc(dt: datetime) -> datetime:
    """Return ``dt`` in UTC, treating naive values (as read back from SQLite) as UTC."""
    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


def now_utc() -> datetime:
    """Return the current UTC datetime."""
    return datetime.now(timezone.utc)


def from_timestamp(timestamp: float) -> datetime:
    """Convert a POSIX timestamp (e.g. ``st_mtime``) to an aware UTC datetime."""
    return datetime.fromtimestamp(timestamp, tz=timezone.utc)


def months_before(reference: datetime, months: int) -> datetime:
    """Return ``reference`` moved back by calendar months (clamping the day)."""
    moved = pendulum.instance(ensure_utc(reference)).subtract(months=months)
    return datetime(
        moved.year,
        moved.month,
        moved.day,
        moved.hour,
        moved.minute,
        moved.second,
        moved.microsecond,
        tzinfo=timezone.utc,
    )


def format_date(dt: datetime) -> str:
    """Format a datetime as ``YYYY-MM-DD`` for messages."""
    return dt.strftime(DATE_FORMAT)
