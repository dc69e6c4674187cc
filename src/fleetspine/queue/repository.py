"""Mission record store.

Manifesto:
    Reservation of ``missionCode`` and ``requestId`` must be atomic with
    respect to concurrent submitters in any process.  The store does that
    with UNIQUE constraints and ``INSERT OR IGNORE``: one statement, and
    ``rowcount`` tells us whether we won.  Every later mutation goes
    through the record's ``version`` column so two writers cannot both
    move the same record.

┌──────────────────────────────────────────────────────────────────────────────┐
│  MissionRepository                                                            │
│                                                                               │
│   reserve(submit)            → Result[MissionRecord]  (insert-or-ignore)      │
│   get(code) / get_history(code)                                               │
│   transition(record, target) → Result[MissionRecord]  (version-checked)       │
│   update_fields(record, ...) → Result[MissionRecord]  (version-checked)       │
│   unassign(record)           → Assigned back to Pending (version-checked)     │
│   archive(code)              → copy into append-only history                  │
│   query(filters)             → newest first                                   │
│   list_dispatchable()        → priority DESC, created ASC                     │
│   list_pending_in_map(map)   → chaining candidates                            │
│   count_active_for_template  → skip-if-running check                          │
└──────────────────────────────────────────────────────────────────────────────┘

The table names are parameters so the simulated gateway keeps its own job
store with the same shape.

Tags:
    fleetspine, queue, repository, idempotency, optimistic-concurrency
"""

from __future__ import annotations

import json
import logging
from datetime import datetime
from enum import Enum
from typing import Any

from fleetspine.core.dialect import Dialect, SQLiteDialect
from fleetspine.core.enums import (
    ACTIVE_STATUSES,
    MissionStatus,
    source_name,
)
from fleetspine.core.errors import (
    ConcurrencyConflictError,
    DuplicateMissionCodeError,
    DuplicateRequestIdError,
    InvalidTransitionError,
    MissionNotFoundError,
    ValidationFailedError,
)
from fleetspine.core.protocols import Connection
from fleetspine.core.result import Err, Ok, Result
from fleetspine.core.schema import CORE_TABLES, MISSION_COLUMN_NAMES
from fleetspine.core.timestamps import to_iso8601
from fleetspine.queue.models import MissionQuery, MissionRecord, MissionSubmit, steps_to_json
from fleetspine.queue.state_machine import DISPATCHABLE_STATUSES, can_transition

logger = logging.getLogger(__name__)

DEFAULT_QUERY_LIMIT = 10

# Columns callers may set through transition()/update_fields().
_MUTABLE_COLUMNS = frozenset(MISSION_COLUMN_NAMES) - {
    "mission_code",
    "request_id",
    "status",
    "created_utc",
    "version",
}


def _to_db(value: Any) -> Any:
    """Convert a Python value into its column representation."""
    if isinstance(value, datetime):
        return to_iso8601(value)
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, bool):
        return 1 if value else 0
    if isinstance(value, (list, tuple)):
        return json.dumps(list(value))
    return value


class MissionRepository:
    """Durable store of mission records.

    Example:
        >>> repo = MissionRepository(conn)
        >>> result = repo.reserve(MissionSubmit("M-1", "R-1"), now, default_priority=5)
        >>> repo.get("M-1").status
        <MissionStatus.PENDING: 'Pending'>
    """

    def __init__(
        self,
        conn: Connection,
        dialect: Dialect | None = None,
        *,
        table: str = CORE_TABLES["missions"],
        history_table: str = CORE_TABLES["mission_history"],
    ) -> None:
        self.conn = conn
        self.dialect: Dialect = dialect or SQLiteDialect()
        self.table = table
        self.history_table = history_table

    def _ph(self, count: int) -> str:
        return self.dialect.placeholders(count)

    @property
    def _p(self) -> str:
        return self.dialect.placeholder(0)

    # === Reservation ===

    def reserve(
        self,
        submit: MissionSubmit,
        now: datetime,
        *,
        default_priority: int = 5,
        status: MissionStatus = MissionStatus.PENDING,
    ) -> Result[MissionRecord]:
        """Atomically reserve both idempotency keys and create the record.

        Returns ``Err(DuplicateRequestIdError)`` or
        ``Err(DuplicateMissionCodeError)`` when either key is taken.
        """
        priority = submit.priority if submit.priority is not None else default_priority
        values = {
            "mission_code": submit.mission_code,
            "request_id": submit.request_id,
            "org_id": submit.org_id,
            "priority": priority,
            "status": status,
            "trigger_source": submit.trigger_source,
            "mission_type": submit.mission_type,
            "robot_type": submit.robot_type,
            "template_code": submit.template_code,
            "container_code": submit.container_code,
            "workflow_id": submit.workflow_id,
            "workflow_name": submit.workflow_name,
            "workflow_code": submit.workflow_code,
            "map_code": submit.map_code,
            "target_cell_code": submit.target_cell_code,
            "robot_models": submit.robot_models or None,
            "robot_ids": submit.robot_ids or None,
            "steps_json": steps_to_json(submit.steps),
            "start_node": submit.start_node or (submit.steps[0].position if submit.steps else None),
            "start_x": submit.start_x,
            "start_y": submit.start_y,
            "created_by": submit.created_by,
            "source": submit.source,
            "created_utc": now,
            "updated_utc": now,
            "version": 0,
        }
        columns = list(values)
        sql = self.dialect.insert_or_ignore(self.table, columns)
        cursor = self.conn.execute(sql, tuple(_to_db(values[c]) for c in columns))
        self.conn.commit()

        if cursor.rowcount > 0:
            logger.debug(f"Reserved mission {submit.mission_code} (request {submit.request_id})")
            return Ok(self.get(submit.mission_code))

        # Report the request id first, matching the gateway's check order.
        if self._exists("request_id", submit.request_id):
            return Err(DuplicateRequestIdError(submit.request_id))
        return Err(DuplicateMissionCodeError(submit.mission_code))

    def _exists(self, column: str, value: str) -> bool:
        cursor = self.conn.execute(
            f"SELECT 1 FROM {self.table} WHERE {column} = {self._p}",
            (value,),
        )
        return cursor.fetchone() is not None

    # === Reads ===

    def get(self, mission_code: str) -> MissionRecord | None:
        cursor = self.conn.execute(
            f"SELECT * FROM {self.table} WHERE mission_code = {self._p}",
            (mission_code,),
        )
        row = cursor.fetchone()
        return MissionRecord.from_row(row) if row else None

    def get_history(self, mission_code: str) -> MissionRecord | None:
        cursor = self.conn.execute(
            f"SELECT * FROM {self.history_table} WHERE mission_code = {self._p}",
            (mission_code,),
        )
        row = cursor.fetchone()
        return MissionRecord.from_row(row) if row else None

    def query(self, filters: MissionQuery, *, apply_limit: bool = True) -> list[MissionRecord]:
        """Matching records, newest first.

        A missing or non-positive ``limit`` means :data:`DEFAULT_QUERY_LIMIT`.
        """
        clauses: list[str] = []
        params: list[Any] = []
        p = self._p

        def eq_ci(column: str, value: Any) -> None:
            if value is None or value == "":
                return
            clauses.append(f"LOWER({column}) = LOWER({p})")
            params.append(str(value))

        eq_ci("workflow_id", filters.workflow_id)
        eq_ci("container_code", filters.container_code)
        eq_ci("mission_code", filters.mission_code)
        eq_ci("status", filters.status)
        eq_ci("assigned_robot_id", filters.robot_id)
        eq_ci("target_cell_code", filters.target_cell_code)
        eq_ci("workflow_name", filters.workflow_name)
        eq_ci("workflow_code", filters.workflow_code)
        eq_ci("created_by", filters.created_by)

        if filters.map_codes:
            clauses.append(
                f"LOWER(map_code) IN ({self._ph(len(filters.map_codes))})"
            )
            params.extend(m.lower() for m in filters.map_codes)

        if filters.source is not None and filters.source != "":
            name = (
                source_name(filters.source)
                if isinstance(filters.source, int) or str(filters.source).isdigit()
                else str(filters.source)
            )
            eq_ci("source", name)

        where = f"WHERE {' AND '.join(clauses)}" if clauses else ""
        sql = f"SELECT * FROM {self.table} {where} ORDER BY created_utc DESC, id DESC"
        if apply_limit:
            limit = filters.limit if filters.limit and filters.limit > 0 else DEFAULT_QUERY_LIMIT
            sql += f" LIMIT {int(limit)}"
        cursor = self.conn.execute(sql, tuple(params))
        return [MissionRecord.from_row(row) for row in cursor.fetchall()]

    def list_dispatchable(self, limit: int = 50) -> list[MissionRecord]:
        """Records waiting for submission, in queue draw order."""
        statuses = [s.value for s in DISPATCHABLE_STATUSES]
        cursor = self.conn.execute(
            f"""
            SELECT * FROM {self.table}
            WHERE status IN ({self._ph(len(statuses))})
            ORDER BY priority DESC, created_utc ASC, id ASC
            LIMIT {int(limit)}
            """,
            tuple(statuses),
        )
        return [MissionRecord.from_row(row) for row in cursor.fetchall()]

    def list_by_status(self, statuses: list[MissionStatus], limit: int = 100) -> list[MissionRecord]:
        values = [s.value for s in statuses]
        cursor = self.conn.execute(
            f"""
            SELECT * FROM {self.table}
            WHERE status IN ({self._ph(len(values))})
            ORDER BY created_utc ASC, id ASC
            LIMIT {int(limit)}
            """,
            tuple(values),
        )
        return [MissionRecord.from_row(row) for row in cursor.fetchall()]

    def list_awaiting_upstream_cancel(self, limit: int = 100) -> list[MissionRecord]:
        """Cancelled records whose gateway job has not been closed yet."""
        p = self._p
        cursor = self.conn.execute(
            f"""
            SELECT * FROM {self.table}
            WHERE status = {p}
              AND submitted_to_amr_utc IS NOT NULL
              AND cancel_settled_utc IS NULL
            ORDER BY cancelled_utc ASC, id ASC
            LIMIT {int(limit)}
            """,
            (MissionStatus.CANCELLED.value,),
        )
        return [MissionRecord.from_row(row) for row in cursor.fetchall()]

    def list_pending_in_map(self, map_code: str, limit: int = 100) -> list[MissionRecord]:
        """Pending, unassigned records in *map_code* (chaining candidates)."""
        p = self._p
        cursor = self.conn.execute(
            f"""
            SELECT * FROM {self.table}
            WHERE status = {p}
              AND assigned_robot_id IS NULL
              AND LOWER(map_code) = LOWER({p})
            ORDER BY priority DESC, created_utc ASC, id ASC
            LIMIT {int(limit)}
            """,
            (MissionStatus.PENDING.value, map_code),
        )
        return [MissionRecord.from_row(row) for row in cursor.fetchall()]

    def find_active_for_robot(self, robot_id: str) -> MissionRecord | None:
        """Oldest non-terminal record assigned to *robot_id*."""
        statuses = [s.value for s in ACTIVE_STATUSES]
        p = self._p
        cursor = self.conn.execute(
            f"""
            SELECT * FROM {self.table}
            WHERE assigned_robot_id = {p}
              AND status IN ({self._ph(len(statuses))})
            ORDER BY created_utc ASC, id ASC
            LIMIT 1
            """,
            (robot_id, *statuses),
        )
        row = cursor.fetchone()
        return MissionRecord.from_row(row) if row else None

    def count_active_for_template(self, template_code: str) -> int:
        """Non-terminal records created from *template_code*."""
        statuses = [s.value for s in ACTIVE_STATUSES]
        cursor = self.conn.execute(
            f"""
            SELECT COUNT(*) FROM {self.table}
            WHERE template_code = {self._p}
              AND status IN ({self._ph(len(statuses))})
            """,
            (template_code, *statuses),
        )
        row = cursor.fetchone()
        return int(row[0]) if row else 0

    def list_completed_for_robot(
        self,
        robot_id: str,
        start: datetime,
        end: datetime,
        *,
        history: bool = False,
    ) -> list[MissionRecord]:
        """Completed records of *robot_id* whose execution intersects ``[start, end)``.

        Execution begins at the first recorded of processed, submitted and
        created time.
        """
        table = self.history_table if history else self.table
        p = self._p
        cursor = self.conn.execute(
            f"""
            SELECT * FROM {table}
            WHERE assigned_robot_id = {p}
              AND completed_utc IS NOT NULL
              AND completed_utc > {p}
              AND COALESCE(processed_utc, submitted_to_amr_utc, created_utc) < {p}
            ORDER BY completed_utc DESC, id DESC
            """,
            (robot_id, to_iso8601(start), to_iso8601(end)),
        )
        return [MissionRecord.from_row(row) for row in cursor.fetchall()]

    def list_all(self, *, history: bool = False, limit: int | None = None) -> list[MissionRecord]:
        table = self.history_table if history else self.table
        sql = f"SELECT * FROM {table} ORDER BY created_utc DESC, id DESC"
        if limit is not None:
            sql += f" LIMIT {int(limit)}"
        cursor = self.conn.execute(sql)
        return [MissionRecord.from_row(row) for row in cursor.fetchall()]

    # === Writes ===

    def transition(
        self,
        record: MissionRecord,
        target: MissionStatus,
        now: datetime,
        **fields: Any,
    ) -> Result[MissionRecord]:
        """Move *record* to *target*, guarded by its version.

        Lifecycle timestamps are stamped when the record first reaches the
        matching state.  Terminal targets archive the record.
        """
        if not can_transition(record.status, target):
            return Err(
                InvalidTransitionError(
                    f"Cannot move mission {record.mission_code} from "
                    f"{record.status.value} to {target.value}"
                ).with_context(mission_code=record.mission_code)
            )

        if target in (MissionStatus.READY_TO_ASSIGN, MissionStatus.ASSIGNED) and record.processed_utc is None:
            fields.setdefault("processed_utc", now)
        elif target == MissionStatus.SUBMITTED_TO_AMR:
            fields.setdefault("submitted_to_amr_utc", now)
        elif target == MissionStatus.COMPLETED:
            fields.setdefault("completed_utc", now)
        elif target == MissionStatus.CANCELLED:
            fields.setdefault("cancelled_utc", now)

        result = self._versioned_update(record, now, {"status": target, **fields})
        if result.is_ok() and target.is_terminal:
            self.archive(record.mission_code, now)
        return result

    def update_fields(self, record: MissionRecord, now: datetime, **fields: Any) -> Result[MissionRecord]:
        """Version-checked update that leaves ``status`` unchanged."""
        return self._versioned_update(record, now, fields)

    def unassign(self, record: MissionRecord, now: datetime) -> Result[MissionRecord]:
        """Return an Assigned record to Pending.

        Only for an assignment that never left this service; the lifecycle
        itself has no Assigned to Pending edge.
        """
        if record.status != MissionStatus.ASSIGNED:
            return Err(
                InvalidTransitionError(
                    f"Cannot unassign mission {record.mission_code} in status {record.status.value}"
                ).with_context(mission_code=record.mission_code)
            )
        return self._versioned_update(
            record,
            now,
            {"status": MissionStatus.PENDING, "assigned_robot_id": None, "is_opportunistic": False},
        )

    def _versioned_update(
        self, record: MissionRecord, now: datetime, fields: dict[str, Any]
    ) -> Result[MissionRecord]:
        unknown = set(fields) - _MUTABLE_COLUMNS - {"status"}
        if unknown:
            return Err(ValidationFailedError(f"Unknown mission fields: {sorted(unknown)}"))

        fields["updated_utc"] = now
        p = self._p
        assignments = ", ".join(f"{col} = {p}" for col in fields)
        cursor = self.conn.execute(
            f"""
            UPDATE {self.table}
            SET {assignments}, version = version + 1
            WHERE mission_code = {p} AND version = {p}
            """,
            (*(_to_db(v) for v in fields.values()), record.mission_code, record.version),
        )
        self.conn.commit()

        if cursor.rowcount == 0:
            if self.get(record.mission_code) is None:
                return Err(MissionNotFoundError(record.mission_code))
            return Err(
                ConcurrencyConflictError(
                    f"Mission {record.mission_code} changed since version {record.version}"
                ).with_context(mission_code=record.mission_code)
            )
        return Ok(self.get(record.mission_code))

    def archive(self, mission_code: str, now: datetime) -> bool:
        """Copy a record into the history table (no-op if already archived)."""
        cols = ", ".join(MISSION_COLUMN_NAMES)
        p = self._p
        cursor = self.conn.execute(
            f"""
            INSERT OR IGNORE INTO {self.history_table} ({cols}, archived_utc)
            SELECT {cols}, {p} FROM {self.table} WHERE mission_code = {p}
            """
            if self.dialect.name == "sqlite"
            else f"""
            INSERT INTO {self.history_table} ({cols}, archived_utc)
            SELECT {cols}, {p} FROM {self.table} WHERE mission_code = {p}
            ON CONFLICT DO NOTHING
            """,
            (to_iso8601(now), mission_code),
        )
        self.conn.commit()
        archived = cursor.rowcount > 0
        if archived:
            logger.debug(f"Archived mission {mission_code} to {self.history_table}")
        return archived


__all__ = ["DEFAULT_QUERY_LIMIT", "MissionRepository"]
