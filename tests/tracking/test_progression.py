"""Tests for status progression and interval lookup."""

import pytest

from fleetspine.core.enums import JobStatus
from fleetspine.core.settings import FleetSettings
from fleetspine.tracking import IntervalIndex, StatusProgression, TrackerTimings
from fleetspine.tracking.progression import legacy_checkpoints


class TestStatusProgression:
    """Status as a pure function of elapsed seconds."""

    @pytest.mark.parametrize(
        "elapsed,expected",
        [
            (0, JobStatus.CREATED),
            (2, JobStatus.CREATED),
            (3, JobStatus.EXECUTING),
            (4, JobStatus.EXECUTING),
            (8, JobStatus.WAITING),
            (9, JobStatus.WAITING),
            (11, JobStatus.EXECUTING),
            (20.9, JobStatus.EXECUTING),
            (21, JobStatus.COMPLETED),
            (22, JobStatus.COMPLETED),
        ],
    )
    def test_default_thresholds(self, elapsed, expected):
        """t1=3, t2=5, t3=3, t4=10 with half-open intervals."""
        progression = StatusProgression(TrackerTimings())
        assert progression.status_at(elapsed) == expected

    def test_custom_thresholds(self):
        """Thresholds come from settings."""
        settings = FleetSettings(_env_file=None, created_seconds=1, executing_seconds=1, waiting_seconds=1, resumed_seconds=1)
        progression = StatusProgression(TrackerTimings.from_settings(settings))

        assert progression.status_at(0.5) == JobStatus.CREATED
        assert progression.status_at(2.5) == JobStatus.WAITING
        assert progression.status_at(4) == JobStatus.COMPLETED
        assert progression.total_seconds == 4

    def test_cancel_window(self):
        """Cancelling for the window, Cancelled afterwards."""
        progression = StatusProgression(TrackerTimings())
        assert progression.cancel_status(0) == JobStatus.CANCELLING
        assert progression.cancel_status(1.99) == JobStatus.CANCELLING
        assert progression.cancel_status(2) == JobStatus.CANCELLED
        assert progression.cancel_status(600) == JobStatus.CANCELLED


class TestIntervalIndex:
    """Generic ordered lookup."""

    def test_before_first_boundary_clamps(self):
        """Negative elapsed values map to the first interval."""
        index = IntervalIndex([(0, "a"), (10, "b")])
        assert index.at(-5) == "a"
        assert index.at(10) == "b"

    def test_empty_rejected(self):
        """An index needs at least one boundary."""
        with pytest.raises(ValueError):
            IntervalIndex([])

    def test_legacy_path(self):
        """Missions without steps walk a fixed five-checkpoint path."""
        path = legacy_checkpoints("Sim1-1-2", "Sim1-1-20")
        assert [path.at(t) for t in (0, 6, 11, 16, 25)] == [
            "Sim1-1-2",
            "Sim1-1-5",
            "Sim1-1-10",
            "Sim1-1-15",
            "Sim1-1-20",
        ]
