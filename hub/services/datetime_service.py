"""Datetime helpers: all persisted timestamps are ISO 8601 UTC text."""

from __future__ import annotations

from datetime import UTC, datetime, timedelta


def now_utc() -> datetime:
    """Return the current UTC datetime."""
    return datetime.now(UTC)


def format_iso(dt: datetime) -> str:
    """Format datetime as ISO 8601 for storage and JSON serialization."""
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=UTC)
    return dt.astimezone(UTC).isoformat(timespec="microseconds")


def parse_iso(value: str) -> datetime | None:
    """Parse a stored ISO 8601 timestamp, returning None when malformed."""
    try:
        parsed = datetime.fromisoformat(value)
    except ValueError:
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=UTC)
    return parsed


def iso_before(seconds: float) -> str:
    """Return the ISO timestamp ``seconds`` before now."""
    return format_iso(now_utc() - timedelta(seconds=seconds))
