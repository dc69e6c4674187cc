"""Bucket arithmetic for utilization reports.

Buckets are aligned to the client's local hour or midnight: shift the UTC
instant by the client offset, truncate, and shift back.  Every interval is
clipped to the report period before it is split, so a bucket never
receives minutes from outside the period.
"""

from __future__ import annotations

from collections.abc import Iterator
from datetime import datetime, timedelta

from fleetspine.core.enums import UtilizationGrouping

ZERO_OFFSET = timedelta(0)

_BUCKET_SIZES = {
    UtilizationGrouping.HOUR: timedelta(hours=1),
    UtilizationGrouping.DAY: timedelta(days=1),
}


def bucket_size(grouping: UtilizationGrouping) -> timedelta:
    return _BUCKET_SIZES[grouping]


def minutes(delta: timedelta) -> float:
    return delta.total_seconds() / 60.0


def bucket_start(
    value: datetime,
    grouping: UtilizationGrouping,
    tz_offset: timedelta = ZERO_OFFSET,
) -> datetime:
    """Start (UTC) of the bucket containing *value*."""
    local = value + tz_offset
    if grouping == UtilizationGrouping.HOUR:
        local = local.replace(minute=0, second=0, microsecond=0)
    else:
        local = local.replace(hour=0, minute=0, second=0, microsecond=0)
    return local - tz_offset


def generate_buckets(
    period_start: datetime,
    period_end: datetime,
    grouping: UtilizationGrouping,
    tz_offset: timedelta = ZERO_OFFSET,
) -> list[datetime]:
    """Every bucket start that overlaps ``[period_start, period_end)``."""
    size = bucket_size(grouping)
    current = bucket_start(period_start, grouping, tz_offset)
    starts = []
    while current < period_end:
        starts.append(current)
        current += size
    return starts


def split_interval(
    start: datetime,
    end: datetime,
    period_start: datetime,
    period_end: datetime,
    grouping: UtilizationGrouping,
    tz_offset: timedelta = ZERO_OFFSET,
) -> Iterator[tuple[datetime, float]]:
    """Yield ``(bucket_start, minutes)`` for the part of ``[start, end)`` in the period."""
    lo = max(start, period_start)
    hi = min(end, period_end)
    if hi <= lo:
        return
    size = bucket_size(grouping)
    current = bucket_start(lo, grouping, tz_offset)
    while current < hi:
        nxt = current + size
        slice_start = max(lo, current)
        slice_end = min(hi, nxt)
        if slice_end > slice_start:
            yield current, minutes(slice_end - slice_start)
        current = nxt


def overlap(a_start: datetime, a_end: datetime, b_start: datetime, b_end: datetime) -> tuple[datetime, datetime] | None:
    lo = max(a_start, b_start)
    hi = min(a_end, b_end)
    return (lo, hi) if hi > lo else None


__all__ = [
    "ZERO_OFFSET",
    "bucket_size",
    "bucket_start",
    "generate_buckets",
    "minutes",
    "overlap",
    "split_interval",
]
