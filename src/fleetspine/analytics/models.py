"""Utilization report models."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

from fleetspine.core.enums import UtilizationGrouping
from fleetspine.core.timestamps import to_iso8601


@dataclass
class UtilizationBucket:
    """Minutes of one hour/day slice.

    ``available == manual_pause + working + charging + idle`` for every
    bucket.
    """

    bucket_start_utc: datetime
    available_minutes: float = 0.0
    manual_pause_minutes: float = 0.0
    working_minutes: float = 0.0
    charging_minutes: float = 0.0
    idle_minutes: float = 0.0
    completed_missions: int = 0

    def to_dict(self) -> dict[str, Any]:
        return {
            "bucket_start_utc": to_iso8601(self.bucket_start_utc),
            "available_minutes": self.available_minutes,
            "manual_pause_minutes": self.manual_pause_minutes,
            "working_minutes": self.working_minutes,
            "charging_minutes": self.charging_minutes,
            "idle_minutes": self.idle_minutes,
            "completed_missions": self.completed_missions,
        }


@dataclass
class UtilizationMission:
    """A mission's contribution to the report, clipped to the period."""

    mission_code: str
    workflow_name: str | None
    trigger_source: str
    start_utc: datetime
    completed_utc: datetime
    duration_minutes: float
    manual_pause_minutes: float

    def to_dict(self) -> dict[str, Any]:
        return {
            "mission_code": self.mission_code,
            "workflow_name": self.workflow_name,
            "trigger_source": self.trigger_source,
            "start_utc": to_iso8601(self.start_utc),
            "completed_utc": to_iso8601(self.completed_utc),
            "duration_minutes": self.duration_minutes,
            "manual_pause_minutes": self.manual_pause_minutes,
        }


@dataclass
class ChargingSession:
    mission_code: str
    template_code: str | None
    begin_utc: datetime
    end_utc: datetime
    duration_minutes: float

    def to_dict(self) -> dict[str, Any]:
        return {
            "mission_code": self.mission_code,
            "template_code": self.template_code,
            "begin_utc": to_iso8601(self.begin_utc),
            "end_utc": to_iso8601(self.end_utc),
            "duration_minutes": self.duration_minutes,
        }


@dataclass
class UtilizationMetrics:
    """Utilization of one robot over a period.

    Top-level totals are the sums of the bucket values, so the breakdown
    always adds up to the headline numbers.
    """

    robot_id: str
    period_start_utc: datetime
    period_end_utc: datetime
    grouping: UtilizationGrouping
    total_available_minutes: float = 0.0
    total_manual_pause_minutes: float = 0.0
    total_working_minutes: float = 0.0
    total_charging_minutes: float = 0.0
    total_idle_minutes: float = 0.0
    utilization_percent: float = 0.0
    breakdown: list[UtilizationBucket] = field(default_factory=list)
    missions: list[UtilizationMission] = field(default_factory=list)
    charging_sessions: list[ChargingSession] = field(default_factory=list)

    @property
    def completed_missions(self) -> int:
        return sum(b.completed_missions for b in self.breakdown)

    def to_dict(self) -> dict[str, Any]:
        return {
            "robot_id": self.robot_id,
            "period_start_utc": to_iso8601(self.period_start_utc),
            "period_end_utc": to_iso8601(self.period_end_utc),
            "grouping": self.grouping.value,
            "total_available_minutes": self.total_available_minutes,
            "total_manual_pause_minutes": self.total_manual_pause_minutes,
            "total_working_minutes": self.total_working_minutes,
            "total_charging_minutes": self.total_charging_minutes,
            "total_idle_minutes": self.total_idle_minutes,
            "utilization_percent": self.utilization_percent,
            "completed_missions": self.completed_missions,
            "breakdown": [b.to_dict() for b in self.breakdown],
            "missions": [m.to_dict() for m in self.missions],
            "charging_sessions": [c.to_dict() for c in self.charging_sessions],
        }


@dataclass
class MissionDiagnostic:
    mission_code: str
    assigned_robot_id: str | None
    status: str
    start_utc: datetime | None
    completed_utc: datetime | None
    included: bool
    exclusion_reason: str = ""

    def to_dict(self) -> dict[str, Any]:
        return {
            "mission_code": self.mission_code,
            "assigned_robot_id": self.assigned_robot_id,
            "status": self.status,
            "start_utc": to_iso8601(self.start_utc),
            "completed_utc": to_iso8601(self.completed_utc),
            "included": self.included,
            "exclusion_reason": self.exclusion_reason,
        }


@dataclass
class UtilizationDiagnostics:
    """Filter funnel explaining why missions are or are not counted."""

    robot_id: str | None
    query_start_utc: datetime
    query_end_utc: datetime
    total_missions: int = 0
    with_robot: int = 0
    completed: int = 0
    matching_robot: int = 0
    matching_date_range: int = 0
    available_robot_ids: list[str] = field(default_factory=list)
    sample_missions: list[MissionDiagnostic] = field(default_factory=list)
    analysis: str = ""

    def to_dict(self) -> dict[str, Any]:
        return {
            "robot_id": self.robot_id,
            "query_start_utc": to_iso8601(self.query_start_utc),
            "query_end_utc": to_iso8601(self.query_end_utc),
            "total_missions": self.total_missions,
            "with_robot": self.with_robot,
            "completed": self.completed,
            "matching_robot": self.matching_robot,
            "matching_date_range": self.matching_date_range,
            "available_robot_ids": list(self.available_robot_ids),
            "sample_missions": [s.to_dict() for s in self.sample_missions],
            "analysis": self.analysis,
        }
