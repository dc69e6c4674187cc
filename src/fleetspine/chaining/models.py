"""Chaining data models."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Any

from fleetspine.core.enums import OpportunityDecision
from fleetspine.core.timestamps import from_iso8601


@dataclass
class RobotJobOpportunity:
    """Per-robot snapshot taken when the robot completes a mission."""

    robot_id: str
    completed_mission_code: str
    current_map_code: str | None
    original_map_code: str | None
    consecutive_jobs_in_map: int
    decision: OpportunityDecision
    created_utc: datetime
    node_code: str | None = None
    x: float | None = None
    y: float | None = None
    decision_reason: str | None = None
    chained_mission_code: str | None = None
    return_map_code: str | None = None
    decided_utc: datetime | None = None
    id: int | None = None

    @property
    def is_decided(self) -> bool:
        return self.decision != OpportunityDecision.PENDING

    @classmethod
    def from_row(cls, row: Any) -> RobotJobOpportunity:
        r = dict(row)
        return cls(
            id=r["id"],
            robot_id=r["robot_id"],
            completed_mission_code=r["completed_mission_code"],
            current_map_code=r.get("current_map_code"),
            original_map_code=r.get("original_map_code"),
            consecutive_jobs_in_map=int(r.get("consecutive_jobs_in_map") or 0),
            decision=OpportunityDecision(r["decision"]),
            created_utc=from_iso8601(r["created_utc"]),
            node_code=r.get("node_code"),
            x=r.get("x"),
            y=r.get("y"),
            decision_reason=r.get("decision_reason"),
            chained_mission_code=r.get("chained_mission_code"),
            return_map_code=r.get("return_map_code"),
            decided_utc=from_iso8601(r.get("decided_utc")),
        )


@dataclass
class MapQueueConfig:
    """Per-map chaining policy and statistics."""

    map_code: str
    max_consecutive_opportunistic_jobs: int = 1
    enable_cross_map_optimization: bool = True
    default_priority: int = 5
    max_concurrent_robots: int = 10
    opportunistic_jobs_chained: int = 0
    average_opportunistic_job_distance_meters: float | None = None

    @classmethod
    def from_row(cls, row: Any) -> MapQueueConfig:
        r = dict(row)
        return cls(
            map_code=r["map_code"],
            max_consecutive_opportunistic_jobs=int(r["max_consecutive_opportunistic_jobs"]),
            enable_cross_map_optimization=bool(r["enable_cross_map_optimization"]),
            default_priority=int(r["default_priority"]),
            max_concurrent_robots=int(r["max_concurrent_robots"]),
            opportunistic_jobs_chained=int(r["opportunistic_jobs_chained"] or 0),
            average_opportunistic_job_distance_meters=r.get("average_opportunistic_job_distance_meters"),
        )


@dataclass(frozen=True)
class Candidate:
    """A pending job with its distance from the robot."""

    mission_code: str
    distance: float
    priority: int
    created_utc: datetime

    @property
    def sort_key(self) -> tuple[float, int, datetime]:
        return (self.distance, -self.priority, self.created_utc)


__all__ = ["Candidate", "MapQueueConfig", "RobotJobOpportunity"]
