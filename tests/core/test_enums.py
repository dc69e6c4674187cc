"""Tests for lifecycle and gateway enums."""

import pytest

from fleetspine.core.enums import ACTIVE_STATUSES, CancelMode, MissionStatus, source_name


class TestCancelMode:
    @pytest.mark.parametrize("raw", ["force", "FORCE", " Force "])
    def test_case_insensitive(self, raw):
        assert CancelMode.parse(raw) == CancelMode.FORCE

    @pytest.mark.parametrize("raw", [None, "", "   "])
    def test_empty_means_normal(self, raw):
        assert CancelMode.parse(raw) == CancelMode.NORMAL

    def test_unknown_is_none(self):
        assert CancelMode.parse("SOMETIMES") is None


def test_terminal_statuses():
    assert MissionStatus.COMPLETED.is_terminal
    assert MissionStatus.FAILED.is_terminal
    assert MissionStatus.CANCELLED.is_terminal
    assert not MissionStatus.EXECUTING.is_terminal
    assert MissionStatus.COMPLETED not in ACTIVE_STATUSES


@pytest.mark.parametrize(
    ("code", "expected"),
    [(1, "PDA"), ("4", "DEVICE"), (7, "EVENT"), (99, "INTERFACE"), ("abc", "INTERFACE"), (None, "INTERFACE")],
)
def test_source_name(code, expected):
    assert source_name(code) == expected
