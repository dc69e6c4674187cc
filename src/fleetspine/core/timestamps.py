"""
UTC timestamp utilities.

Every persisted timestamp is an ISO 8601 string with a fixed-width
microsecond component and an explicit ``+00:00`` offset, so string
comparison in SQL matches chronological order.

STDLIB ONLY - NO PYDANTIC.
"""

from __future__ import annotations

from collections.abc import Callable
from datetime import UTC, datetime

Clock = Callable[[], datetime]

AMR_TIME_FORMAT = "%Y-%m-%d %H:%M:%S"


def utc_now() -> datetime:
    """Get current UTC datetime."""
    return datetime.now(UTC)


def ensure_utc(dt: datetime) -> datetime:
    """Return *dt* as an aware UTC datetime (naive values are taken as UTC)."""
    if dt.tzinfo is None:
        return dt.replace(tzinfo=UTC)
    return dt.astimezone(UTC)


def to_iso8601(dt: datetime | None) -> str | None:
    """Convert datetime to a sortable ISO 8601 string."""
    if dt is None:
        return None
    return ensure_utc(dt).isoformat(timespec="microseconds")


def from_iso8601(s: str | None) -> datetime | None:
    """Parse ISO 8601 string to an aware UTC datetime."""
    if s is None or s == "":
        return None
    return ensure_utc(datetime.fromisoformat(s))


def format_amr_time(dt: datetime | None) -> str | None:
    """Format a timestamp the way the AMR gateway reports it (``yyyy-MM-dd HH:mm:ss``)."""
    if dt is None:
        return None
    return ensure_utc(dt).strftime(AMR_TIME_FORMAT)


def seconds_between(start: datetime, end: datetime) -> float:
    """Seconds elapsed from *start* to *end* (negative if end precedes start)."""
    return (ensure_utc(end) - ensure_utc(start)).total_seconds()


__all__ = [
    "AMR_TIME_FORMAT",
    "Clock",
    "ensure_utc",
    "format_amr_time",
    "from_iso8601",
    "seconds_between",
    "to_iso8601",
    "utc_now",
]
