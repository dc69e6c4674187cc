"""Schedule repository - CRUD, due lookup and run log.

Manifesto:
    Schedule persistence and next-run computation are pure data
    operations that belong in a repository, not in the service layer.
    Trigger parameters are validated before anything is written, so an
    invalid schedule is never persisted.

┌──────────────────────────────────────────────────────────────────────────────┐
│  ScheduleRepository                                                           │
│                                                                               │
│   create(spec, now)          → Result[Schedule]                               │
│   update(id, updates, now)   → Result[Schedule]                               │
│   set_enabled(id, flag, now) → Result[Schedule]   (pause / resume)            │
│   get / get_by_name / list_all / count_enabled                                │
│                                                                               │
│   get_due(now, limit)        → enabled, next_run <= now, not leased           │
│   record_outcome(...)        → counters + next run, only while leased         │
│                                                                               │
│   create_run / list_runs     → amr_schedule_runs                              │
└──────────────────────────────────────────────────────────────────────────────┘

Invariant: ``next_run_utc`` is NULL exactly when the schedule is disabled
or has used up ``max_executions``.

Tags:
    fleetspine, scheduling, repository, CRUD, run-log
"""

from __future__ import annotations

import json
import logging
from datetime import datetime
from uuid import uuid4

from fleetspine.core.dialect import Dialect, SQLiteDialect
from fleetspine.core.enums import TriggerType
from fleetspine.core.errors import (
    ConflictError,
    InvalidScheduleError,
    ScheduleNotFoundError,
)
from fleetspine.core.protocols import Connection
from fleetspine.core.result import Err, Ok, Result
from fleetspine.core.schema import CORE_TABLES
from fleetspine.core.timestamps import to_iso8601
from fleetspine.scheduling.cron import compute_next_run, normalize_cron, validate_trigger
from fleetspine.scheduling.models import Schedule, ScheduleCreate, ScheduleRun, ScheduleUpdate

logger = logging.getLogger(__name__)


def next_run_for(schedule: Schedule, after: datetime) -> datetime | None:
    """Next due instant honouring the enabled flag and execution cap."""
    if not schedule.is_enabled or schedule.is_exhausted:
        return None
    return compute_next_run(
        schedule.trigger_type,
        after,
        run_at_utc=schedule.run_at_utc,
        interval_minutes=schedule.interval_minutes,
        cron_expression=schedule.cron_expression,
        timezone=schedule.timezone,
    )


class ScheduleRepository:
    """Repository for schedule CRUD and the schedule run log.

    Example:
        >>> repo = ScheduleRepository(conn)
        >>> result = repo.create(ScheduleCreate(
        ...     name="hourly-restock",
        ...     template_code="RESTOCK",
        ...     trigger_type="Cron",
        ...     cron_expression="0 * * * *",
        ... ), now)
        >>> due = repo.get_due(now, limit=5)
    """

    table = CORE_TABLES["schedules"]
    runs_table = CORE_TABLES["schedule_runs"]

    def __init__(self, conn: Connection, dialect: Dialect | None = None) -> None:
        self.conn = conn
        self.dialect: Dialect = dialect or SQLiteDialect()

    @property
    def _p(self) -> str:
        return self.dialect.placeholder(0)

    # === CRUD Operations ===

    def create(self, spec: ScheduleCreate, now: datetime) -> Result[Schedule]:
        """Validate and insert a schedule, computing its first run."""
        try:
            kind = validate_trigger(
                spec.trigger_type,
                run_at_utc=spec.run_at_utc,
                interval_minutes=spec.interval_minutes,
                cron_expression=spec.cron_expression,
                timezone=spec.timezone,
            )
        except InvalidScheduleError as e:
            logger.info(f"Rejected schedule {spec.name!r}: {e}")
            return Err(e.with_context(schedule_name=spec.name))

        schedule = Schedule(
            id=uuid4().hex,
            name=spec.name,
            template_code=spec.template_code,
            trigger_type=kind,
            created_utc=now,
            run_at_utc=spec.run_at_utc if kind == TriggerType.ONCE else None,
            interval_minutes=spec.interval_minutes if kind == TriggerType.INTERVAL else None,
            cron_expression=normalize_cron(spec.cron_expression) if kind == TriggerType.CRON else None,
            timezone=spec.timezone,
            is_enabled=spec.is_enabled,
            skip_if_running=spec.skip_if_running,
            max_executions=spec.max_executions,
            mission_params=dict(spec.mission_params),
            created_by=spec.created_by,
        )
        schedule.next_run_utc = next_run_for(schedule, now)

        columns = [
            "id",
            "name",
            "template_code",
            "trigger_type",
            "run_at_utc",
            "interval_minutes",
            "cron_expression",
            "timezone",
            "is_enabled",
            "next_run_utc",
            "skip_if_running",
            "max_executions",
            "mission_params",
            "created_by",
            "created_utc",
            "updated_utc",
        ]
        cursor = self.conn.execute(
            self.dialect.insert_or_ignore(self.table, columns),
            (
                schedule.id,
                schedule.name,
                schedule.template_code,
                schedule.trigger_type.value,
                to_iso8601(schedule.run_at_utc),
                schedule.interval_minutes,
                schedule.cron_expression,
                schedule.timezone,
                1 if schedule.is_enabled else 0,
                to_iso8601(schedule.next_run_utc),
                1 if schedule.skip_if_running else 0,
                schedule.max_executions,
                json.dumps(schedule.mission_params),
                schedule.created_by,
                to_iso8601(now),
                to_iso8601(now),
            ),
        )
        self.conn.commit()
        if cursor.rowcount == 0:
            return Err(ConflictError(f"Schedule name [{spec.name}] is already used"))

        logger.info(
            f"Created {kind.value} schedule {spec.name!r} ({schedule.id}), next run {schedule.next_run_utc}"
        )
        return Ok(self.get(schedule.id))

    def get(self, schedule_id: str) -> Schedule | None:
        cursor = self.conn.execute(f"SELECT * FROM {self.table} WHERE id = {self._p}", (schedule_id,))
        row = cursor.fetchone()
        return Schedule.from_row(row) if row else None

    def get_by_name(self, name: str) -> Schedule | None:
        cursor = self.conn.execute(f"SELECT * FROM {self.table} WHERE name = {self._p}", (name,))
        row = cursor.fetchone()
        return Schedule.from_row(row) if row else None

    def list_all(self) -> list[Schedule]:
        cursor = self.conn.execute(f"SELECT * FROM {self.table} ORDER BY name")
        return [Schedule.from_row(row) for row in cursor.fetchall()]

    def count_enabled(self) -> int:
        cursor = self.conn.execute(f"SELECT COUNT(*) FROM {self.table} WHERE is_enabled = 1")
        return cursor.fetchone()[0]

    def update(self, schedule_id: str, updates: ScheduleUpdate, now: datetime) -> Result[Schedule]:
        """Apply *updates*, re-validate the trigger and recompute the next run."""
        schedule = self.get(schedule_id)
        if schedule is None:
            return Err(ScheduleNotFoundError(schedule_id))

        for name in (
            "run_at_utc",
            "interval_minutes",
            "cron_expression",
            "timezone",
            "is_enabled",
            "skip_if_running",
            "max_executions",
            "mission_params",
        ):
            value = getattr(updates, name)
            if value is not None:
                setattr(schedule, name, value)

        try:
            validate_trigger(
                schedule.trigger_type,
                run_at_utc=schedule.run_at_utc,
                interval_minutes=schedule.interval_minutes,
                cron_expression=schedule.cron_expression,
                timezone=schedule.timezone,
            )
        except InvalidScheduleError as e:
            return Err(e.with_context(schedule_id=schedule_id))
        if schedule.trigger_type == TriggerType.CRON:
            schedule.cron_expression = normalize_cron(schedule.cron_expression)

        return self._save(schedule, now)

    def set_enabled(self, schedule_id: str, enabled: bool, now: datetime) -> Result[Schedule]:
        schedule = self.get(schedule_id)
        if schedule is None:
            return Err(ScheduleNotFoundError(schedule_id))
        schedule.is_enabled = enabled
        return self._save(schedule, now)

    def _save(self, schedule: Schedule, now: datetime) -> Result[Schedule]:
        schedule.next_run_utc = next_run_for(schedule, now)
        p = self._p
        cursor = self.conn.execute(
            f"""
            UPDATE {self.table}
            SET run_at_utc = {p}, interval_minutes = {p}, cron_expression = {p}, timezone = {p},
                is_enabled = {p}, skip_if_running = {p}, max_executions = {p}, mission_params = {p},
                next_run_utc = {p}, updated_utc = {p}, version = version + 1
            WHERE id = {p} AND version = {p}
            """,
            (
                to_iso8601(schedule.run_at_utc),
                schedule.interval_minutes,
                schedule.cron_expression,
                schedule.timezone,
                1 if schedule.is_enabled else 0,
                1 if schedule.skip_if_running else 0,
                schedule.max_executions,
                json.dumps(schedule.mission_params),
                to_iso8601(schedule.next_run_utc),
                to_iso8601(now),
                schedule.id,
                schedule.version,
            ),
        )
        self.conn.commit()
        if cursor.rowcount == 0:
            return Err(ConflictError(f"Schedule {schedule.id} changed since version {schedule.version}"))
        return Ok(self.get(schedule.id))

    # === Scheduling Operations ===

    def get_due(self, now: datetime, limit: int = 5) -> list[Schedule]:
        """Enabled, unleased schedules whose next run has passed, oldest first."""
        p = self._p
        cursor = self.conn.execute(
            f"""
            SELECT * FROM {self.table}
            WHERE is_enabled = 1
              AND next_run_utc IS NOT NULL
              AND next_run_utc <= {p}
              AND lock_token IS NULL
            ORDER BY next_run_utc, id
            LIMIT {p}
            """,
            (to_iso8601(now), limit),
        )
        return [Schedule.from_row(row) for row in cursor.fetchall()]

    def record_outcome(
        self,
        schedule_id: str,
        lock_token: str,
        now: datetime,
        *,
        last_status: str,
        last_error: str | None,
        execution_count: int,
        is_enabled: bool,
        next_run_utc: datetime | None,
    ) -> bool:
        """Store the result of one execution attempt.

        Only applies while *lock_token* still owns the lease; returns False
        when the lease was reclaimed underneath the caller.
        """
        p = self._p
        cursor = self.conn.execute(
            f"""
            UPDATE {self.table}
            SET last_run_utc = {p}, last_status = {p}, last_error = {p}, execution_count = {p},
                is_enabled = {p}, next_run_utc = {p}, updated_utc = {p}, version = version + 1
            WHERE id = {p} AND lock_token = {p}
            """,
            (
                to_iso8601(now),
                last_status,
                last_error,
                execution_count,
                1 if is_enabled else 0,
                to_iso8601(next_run_utc),
                to_iso8601(now),
                schedule_id,
                lock_token,
            ),
        )
        self.conn.commit()
        if cursor.rowcount == 0:
            logger.warning(f"Lease on schedule {schedule_id} lost before its outcome was recorded")
            return False
        return True

    # === Schedule Run Operations ===

    def create_run(self, run: ScheduleRun) -> ScheduleRun:
        self.conn.execute(
            f"""
            INSERT INTO {self.runs_table} (
                schedule_id, scheduled_for_utc, started_utc, completed_utc,
                status, mission_code, error, skip_reason
            ) VALUES ({self.dialect.placeholders(8)})
            """,
            (
                run.schedule_id,
                to_iso8601(run.scheduled_for_utc),
                to_iso8601(run.started_utc),
                to_iso8601(run.completed_utc),
                run.status.value,
                run.mission_code,
                run.error,
                run.skip_reason,
            ),
        )
        self.conn.commit()
        return run

    def list_runs(self, schedule_id: str, limit: int = 50) -> list[ScheduleRun]:
        """Most recent attempts first."""
        p = self._p
        cursor = self.conn.execute(
            f"""
            SELECT * FROM {self.runs_table}
            WHERE schedule_id = {p}
            ORDER BY id DESC
            LIMIT {p}
            """,
            (schedule_id, limit),
        )
        return [ScheduleRun.from_row(row) for row in cursor.fetchall()]


__all__ = ["ScheduleRepository", "next_run_for"]
