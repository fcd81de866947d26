"""
Datetime utilities.

Provides timezone-aware datetime functions.
"""

from datetime import UTC, datetime


def utc_now() -> datetime:
    """
    Get current UTC datetime with timezone info.

    Returns:
        Current datetime in UTC with timezone awareness
    """
    return datetime.now(UTC)


def ensure_utc(value: datetime) -> datetime:
    """
    Normalize a datetime to aware UTC.

    Naive values are treated as UTC (the store persists UTC only).
    """
    if value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    return value.astimezone(UTC)


def parse_rfc3339(value: str) -> datetime:
    """
    Parse an RFC3339 timestamp into aware UTC.

    Args:
        value: Timestamp such as 2024-01-01T00:00:00Z

    Returns:
        Aware UTC datetime

    Raises:
        ValueError: If the value is not RFC3339 or has no offset
    """
    text = value.strip()
    if text.endswith(("Z", "z")):
        text = f"{text[:-1]}+00:00"
    parsed = datetime.fromisoformat(text)
    if parsed.tzinfo is None:
        raise ValueError(f"timestamp without offset: {value!r}")
    return parsed.astimezone(UTC)


def format_rfc3339(value: datetime) -> str:
    """Format as RFC3339 UTC with a Z suffix."""
    return ensure_utc(value).isoformat().replace("+00:00", "Z")


def hours_between(start: datetime, end: datetime) -> float:
    """Signed duration in hours."""
    return (ensure_utc(end) - ensure_utc(start)).total_seconds() / 3600
