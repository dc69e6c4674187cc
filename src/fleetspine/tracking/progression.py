"""Elapsed-time interval indexes.

Status progression and the legacy checkpoint path are both "which
interval does this elapsed time fall in" questions.  Each is an ordered
list of ``(start_seconds, value)`` pairs looked up with ``bisect``;
intervals are half-open, ``[start, next_start)``.

Examples:
    >>> p = StatusProgression.from_timings(TrackerTimings())
    >>> [p.status_at(t).name for t in (2, 4, 9, 11, 22)]
    ['CREATED', 'EXECUTING', 'WAITING', 'EXECUTING', 'COMPLETED']
"""

from __future__ import annotations

from bisect import bisect_right
from dataclasses import dataclass
from typing import Generic, TypeVar

from fleetspine.core.enums import JobStatus
from fleetspine.core.settings import FleetSettings

V = TypeVar("V")


@dataclass(frozen=True)
class TrackerTimings:
    """Named simulation constants, in seconds."""

    created: float = 3
    executing: float = 5
    waiting: float = 3
    resumed: float = 10
    cancel_window: float = 2
    step_dwell: float = 4

    @classmethod
    def from_settings(cls, settings: FleetSettings) -> TrackerTimings:
        return cls(
            created=settings.created_seconds,
            executing=settings.executing_seconds,
            waiting=settings.waiting_seconds,
            resumed=settings.resumed_seconds,
            cancel_window=settings.cancel_window_seconds,
            step_dwell=settings.step_dwell_seconds,
        )


class IntervalIndex(Generic[V]):
    """Ordered ``(start, value)`` boundaries; values before the first start clamp to it."""

    def __init__(self, boundaries: list[tuple[float, V]]) -> None:
        if not boundaries:
            raise ValueError("IntervalIndex needs at least one boundary")
        ordered = sorted(boundaries, key=lambda b: b[0])
        self._starts = [b[0] for b in ordered]
        self._values = [b[1] for b in ordered]

    def at(self, elapsed: float) -> V:
        idx = bisect_right(self._starts, elapsed) - 1
        return self._values[max(idx, 0)]

    @property
    def boundaries(self) -> list[tuple[float, V]]:
        return list(zip(self._starts, self._values))


class StatusProgression:
    """Job status as a function of seconds since the first status query."""

    def __init__(self, timings: TrackerTimings) -> None:
        t = timings
        self.timings = timings
        self._index: IntervalIndex[JobStatus] = IntervalIndex(
            [
                (0, JobStatus.CREATED),
                (t.created, JobStatus.EXECUTING),
                (t.created + t.executing, JobStatus.WAITING),
                (t.created + t.executing + t.waiting, JobStatus.EXECUTING),
                (t.created + t.executing + t.waiting + t.resumed, JobStatus.COMPLETED),
            ]
        )

    @classmethod
    def from_timings(cls, timings: TrackerTimings) -> StatusProgression:
        return cls(timings)

    @property
    def total_seconds(self) -> float:
        t = self.timings
        return t.created + t.executing + t.waiting + t.resumed

    def status_at(self, elapsed: float) -> JobStatus:
        return self._index.at(elapsed)

    def cancel_status(self, since_cancel: float) -> JobStatus:
        """Cancelling inside the cancel window, Cancelled after it."""
        if since_cancel < self.timings.cancel_window:
            return JobStatus.CANCELLING
        return JobStatus.CANCELLED


def legacy_checkpoints(begin_node: str, final_node: str, spacing: float = 5) -> IntervalIndex[str]:
    """Fixed path for missions submitted without step data."""
    return IntervalIndex(
        [
            (0, begin_node),
            (spacing, "Sim1-1-5"),
            (spacing * 2, "Sim1-1-10"),
            (spacing * 3, "Sim1-1-15"),
            (spacing * 4, final_node),
        ]
    )


__all__ = [
    "IntervalIndex",
    "StatusProgression",
    "TrackerTimings",
    "legacy_checkpoints",
]
