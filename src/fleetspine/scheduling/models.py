"""Schedule data models and DTOs."""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

from fleetspine.core.enums import ScheduleRunStatus, TriggerType
from fleetspine.core.timestamps import from_iso8601

# ---------------------------------------------------------------------------
# Create/Update DTOs
# ---------------------------------------------------------------------------


@dataclass
class ScheduleCreate:
    """DTO for creating a new schedule.

    ``mission_params`` holds :class:`~fleetspine.queue.models.MissionSubmit`
    fields (``steps`` as a list of step dicts) applied to every mission the
    schedule enqueues.
    """

    name: str
    template_code: str
    trigger_type: TriggerType | str = TriggerType.CRON
    run_at_utc: datetime | None = None
    interval_minutes: int | None = None
    cron_expression: str | None = None
    timezone: str = "UTC"
    is_enabled: bool = True
    skip_if_running: bool = False
    max_executions: int | None = None
    mission_params: dict[str, Any] = field(default_factory=dict)
    created_by: str | None = None


@dataclass
class ScheduleUpdate:
    """DTO for updating a schedule; ``None`` leaves a field unchanged."""

    run_at_utc: datetime | None = None
    interval_minutes: int | None = None
    cron_expression: str | None = None
    timezone: str | None = None
    is_enabled: bool | None = None
    skip_if_running: bool | None = None
    max_executions: int | None = None
    mission_params: dict[str, Any] | None = None


# ---------------------------------------------------------------------------
# Records
# ---------------------------------------------------------------------------


@dataclass
class Schedule:
    id: str
    name: str
    template_code: str
    trigger_type: TriggerType
    created_utc: datetime
    run_at_utc: datetime | None = None
    interval_minutes: int | None = None
    cron_expression: str | None = None
    timezone: str = "UTC"
    is_enabled: bool = True
    next_run_utc: datetime | None = None
    lock_token: str | None = None
    lock_acquired_utc: datetime | None = None
    skip_if_running: bool = False
    execution_count: int = 0
    max_executions: int | None = None
    last_run_utc: datetime | None = None
    last_status: str | None = None
    last_error: str | None = None
    mission_params: dict[str, Any] = field(default_factory=dict)
    created_by: str | None = None
    updated_utc: datetime | None = None
    version: int = 0

    @property
    def is_exhausted(self) -> bool:
        return self.max_executions is not None and self.execution_count >= self.max_executions

    @property
    def is_locked(self) -> bool:
        return self.lock_token is not None

    @classmethod
    def from_row(cls, row: Any) -> Schedule:
        r = dict(row)
        return cls(
            id=r["id"],
            name=r["name"],
            template_code=r["template_code"],
            trigger_type=TriggerType(r["trigger_type"]),
            created_utc=from_iso8601(r["created_utc"]),
            run_at_utc=from_iso8601(r.get("run_at_utc")),
            interval_minutes=r.get("interval_minutes"),
            cron_expression=r.get("cron_expression"),
            timezone=r.get("timezone") or "UTC",
            is_enabled=bool(r.get("is_enabled")),
            next_run_utc=from_iso8601(r.get("next_run_utc")),
            lock_token=r.get("lock_token"),
            lock_acquired_utc=from_iso8601(r.get("lock_acquired_utc")),
            skip_if_running=bool(r.get("skip_if_running")),
            execution_count=int(r.get("execution_count") or 0),
            max_executions=r.get("max_executions"),
            last_run_utc=from_iso8601(r.get("last_run_utc")),
            last_status=r.get("last_status"),
            last_error=r.get("last_error"),
            mission_params=json.loads(r["mission_params"]) if r.get("mission_params") else {},
            created_by=r.get("created_by"),
            updated_utc=from_iso8601(r.get("updated_utc")),
            version=int(r.get("version") or 0),
        )


@dataclass
class ScheduleRun:
    """One attempt to fire a schedule."""

    schedule_id: str
    started_utc: datetime
    status: ScheduleRunStatus
    scheduled_for_utc: datetime | None = None
    completed_utc: datetime | None = None
    mission_code: str | None = None
    error: str | None = None
    skip_reason: str | None = None
    id: int | None = None

    @classmethod
    def from_row(cls, row: Any) -> ScheduleRun:
        r = dict(row)
        return cls(
            id=r["id"],
            schedule_id=r["schedule_id"],
            started_utc=from_iso8601(r["started_utc"]),
            status=ScheduleRunStatus(r["status"]),
            scheduled_for_utc=from_iso8601(r.get("scheduled_for_utc")),
            completed_utc=from_iso8601(r.get("completed_utc")),
            mission_code=r.get("mission_code"),
            error=r.get("error"),
            skip_reason=r.get("skip_reason"),
        )


__all__ = ["Schedule", "ScheduleCreate", "ScheduleRun", "ScheduleUpdate"]
