"""Tests for timestamp helpers."""

from datetime import UTC, datetime, timedelta, timezone

from fleetspine.core.timestamps import (
    ensure_utc,
    format_amr_time,
    from_iso8601,
    seconds_between,
    to_iso8601,
)


def test_iso_is_fixed_width_and_sortable():
    early = datetime(2025, 1, 6, 8, 0, 0, tzinfo=UTC)
    late = early + timedelta(microseconds=5)

    assert to_iso8601(early) == "2025-01-06T08:00:00.000000+00:00"
    assert to_iso8601(early) < to_iso8601(late)


def test_round_trip_and_none():
    value = datetime(2025, 1, 6, 8, 0, 0, 123456, tzinfo=UTC)
    assert from_iso8601(to_iso8601(value)) == value
    assert to_iso8601(None) is None
    assert from_iso8601("") is None


def test_offsets_are_normalized():
    local = datetime(2025, 1, 6, 10, 0, tzinfo=timezone(timedelta(hours=2)))
    assert ensure_utc(local) == datetime(2025, 1, 6, 8, 0, tzinfo=UTC)
    assert ensure_utc(datetime(2025, 1, 6, 8, 0)).tzinfo is UTC


def test_amr_time_format():
    assert format_amr_time(datetime(2025, 1, 6, 8, 0, 22, tzinfo=UTC)) == "2025-01-06 08:00:22"
    assert format_amr_time(None) is None


def test_seconds_between():
    start = datetime(2025, 1, 6, 8, 0, tzinfo=UTC)
    assert seconds_between(start, start + timedelta(minutes=2)) == 120
    assert seconds_between(start + timedelta(seconds=5), start) == -5
