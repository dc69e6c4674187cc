"""Mission queue data models.

Rows come back from the store as :class:`MissionRecord`; callers submit
with :class:`MissionSubmit` and query with :class:`MissionQuery`.
Step lists are persisted as JSON using the gateway's camelCase keys.
"""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

from fleetspine.core.enums import (
    DEFAULT_SOURCE,
    MissionStatus,
    PassStrategy,
    TriggerSource,
)
from fleetspine.core.timestamps import from_iso8601


@dataclass(frozen=True)
class MissionStep:
    """One waypoint of a mission."""

    sequence: int
    position: str
    pass_strategy: str = PassStrategy.AUTO.value
    waiting_millis: int = 0
    step_type: str = "NODE_POINT"

    @property
    def is_manual(self) -> bool:
        return (self.pass_strategy or "").upper() == PassStrategy.MANUAL.value

    def to_dict(self) -> dict[str, Any]:
        return {
            "sequence": self.sequence,
            "position": self.position,
            "type": self.step_type,
            "passStrategy": self.pass_strategy,
            "waitingMillis": self.waiting_millis,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> MissionStep:
        return cls(
            sequence=int(data.get("sequence", 0)),
            position=str(data.get("position", "")),
            pass_strategy=str(data.get("passStrategy") or PassStrategy.AUTO.value),
            waiting_millis=int(data.get("waitingMillis") or 0),
            step_type=str(data.get("type") or "NODE_POINT"),
        )


def steps_to_json(steps: list[MissionStep] | None) -> str | None:
    if not steps:
        return None
    ordered = sorted(steps, key=lambda s: s.sequence)
    return json.dumps([s.to_dict() for s in ordered])


def steps_from_json(raw: str | None) -> list[MissionStep]:
    if not raw:
        return []
    return sorted(
        (MissionStep.from_dict(item) for item in json.loads(raw)),
        key=lambda s: s.sequence,
    )


def _json_list(raw: str | None) -> list[str]:
    if not raw:
        return []
    return [str(v) for v in json.loads(raw)]


@dataclass
class MissionSubmit:
    """Submission request for a new mission."""

    mission_code: str
    request_id: str
    org_id: str = "UNIVERSAL"
    steps: list[MissionStep] = field(default_factory=list)
    priority: int | None = None
    trigger_source: TriggerSource = TriggerSource.API
    mission_type: str | None = None
    robot_type: str | None = None
    template_code: str | None = None
    container_code: str | None = None
    workflow_id: str | None = None
    workflow_name: str | None = None
    workflow_code: str | None = None
    map_code: str | None = None
    target_cell_code: str | None = None
    robot_models: list[str] = field(default_factory=list)
    robot_ids: list[str] = field(default_factory=list)
    start_node: str | None = None
    start_x: float | None = None
    start_y: float | None = None
    created_by: str | None = None
    source: str = DEFAULT_SOURCE


@dataclass
class MissionQuery:
    """Filters for :meth:`MissionQueueService.query`.

    String filters compare case-insensitively.  ``source`` accepts either
    a numeric source code or a source name.
    """

    workflow_id: str | None = None
    container_code: str | None = None
    mission_code: str | None = None
    status: str | None = None
    robot_id: str | None = None
    target_cell_code: str | None = None
    workflow_name: str | None = None
    workflow_code: str | None = None
    map_codes: list[str] = field(default_factory=list)
    created_by: str | None = None
    source: int | str | None = None
    limit: int | None = None


@dataclass
class MissionRecord:
    """A row of the mission queue (or of its history)."""

    mission_code: str
    request_id: str
    status: MissionStatus
    priority: int
    created_utc: datetime
    org_id: str | None = None
    trigger_source: str = TriggerSource.API.value
    mission_type: str | None = None
    robot_type: str | None = None
    template_code: str | None = None
    container_code: str | None = None
    workflow_id: str | None = None
    workflow_name: str | None = None
    workflow_code: str | None = None
    map_code: str | None = None
    target_cell_code: str | None = None
    robot_models: list[str] = field(default_factory=list)
    robot_ids: list[str] = field(default_factory=list)
    steps: list[MissionStep] = field(default_factory=list)
    assigned_robot_id: str | None = None
    is_opportunistic: bool = False
    start_node: str | None = None
    start_x: float | None = None
    start_y: float | None = None
    error_message: str | None = None
    retry_count: int = 0
    created_by: str | None = None
    source: str = DEFAULT_SOURCE
    processed_utc: datetime | None = None
    submitted_to_amr_utc: datetime | None = None
    completed_utc: datetime | None = None
    cancelled_utc: datetime | None = None
    updated_utc: datetime | None = None
    cancel_mode: str | None = None
    cancel_reason: str | None = None
    cancel_request_id: str | None = None
    cancel_forwarded_utc: datetime | None = None
    cancel_settled_utc: datetime | None = None
    version: int = 0
    id: int | None = None

    @property
    def is_terminal(self) -> bool:
        return self.status.is_terminal

    @property
    def is_cancelled(self) -> bool:
        return self.status == MissionStatus.CANCELLED

    @property
    def awaits_upstream_cancel(self) -> bool:
        """Cancelled after reaching the gateway, and the gateway job is not yet closed."""
        return self.is_cancelled and self.submitted_to_amr_utc is not None and self.cancel_settled_utc is None

    @property
    def first_position(self) -> str | None:
        if self.steps:
            return self.steps[0].position
        return self.start_node

    @classmethod
    def from_row(cls, row: Any) -> MissionRecord:
        r = dict(row)
        return cls(
            id=r.get("id"),
            mission_code=r["mission_code"],
            request_id=r["request_id"],
            status=MissionStatus(r["status"]),
            priority=int(r["priority"]),
            created_utc=from_iso8601(r["created_utc"]),
            org_id=r.get("org_id"),
            trigger_source=r.get("trigger_source") or TriggerSource.API.value,
            mission_type=r.get("mission_type"),
            robot_type=r.get("robot_type"),
            template_code=r.get("template_code"),
            container_code=r.get("container_code"),
            workflow_id=r.get("workflow_id"),
            workflow_name=r.get("workflow_name"),
            workflow_code=r.get("workflow_code"),
            map_code=r.get("map_code"),
            target_cell_code=r.get("target_cell_code"),
            robot_models=_json_list(r.get("robot_models")),
            robot_ids=_json_list(r.get("robot_ids")),
            steps=steps_from_json(r.get("steps_json")),
            assigned_robot_id=r.get("assigned_robot_id"),
            is_opportunistic=bool(r.get("is_opportunistic")),
            start_node=r.get("start_node"),
            start_x=r.get("start_x"),
            start_y=r.get("start_y"),
            error_message=r.get("error_message"),
            retry_count=int(r.get("retry_count") or 0),
            created_by=r.get("created_by"),
            source=r.get("source") or DEFAULT_SOURCE,
            processed_utc=from_iso8601(r.get("processed_utc")),
            submitted_to_amr_utc=from_iso8601(r.get("submitted_to_amr_utc")),
            completed_utc=from_iso8601(r.get("completed_utc")),
            cancelled_utc=from_iso8601(r.get("cancelled_utc")),
            updated_utc=from_iso8601(r.get("updated_utc")),
            cancel_mode=r.get("cancel_mode"),
            cancel_reason=r.get("cancel_reason"),
            cancel_request_id=r.get("cancel_request_id"),
            cancel_forwarded_utc=from_iso8601(r.get("cancel_forwarded_utc")),
            cancel_settled_utc=from_iso8601(r.get("cancel_settled_utc")),
            version=int(r.get("version") or 0),
        )


__all__ = [
    "MissionQuery",
    "MissionRecord",
    "MissionStep",
    "MissionSubmit",
    "steps_from_json",
    "steps_to_json",
]
