"""Persistence for opportunity records, map queue configuration and node coordinates."""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Protocol, runtime_checkable

from fleetspine.chaining.models import MapQueueConfig, RobotJobOpportunity
from fleetspine.core.dialect import Dialect, SQLiteDialect
from fleetspine.core.enums import OpportunityDecision
from fleetspine.core.protocols import Connection
from fleetspine.core.schema import CORE_TABLES
from fleetspine.core.settings import FleetSettings
from fleetspine.core.timestamps import to_iso8601

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Opportunities
# ---------------------------------------------------------------------------


class OpportunityRepository:
    """One row per (robot, completed mission); decisions are written once."""

    table = CORE_TABLES["opportunities"]

    def __init__(self, conn: Connection, dialect: Dialect | None = None) -> None:
        self.conn = conn
        self.dialect: Dialect = dialect or SQLiteDialect()

    @property
    def _p(self) -> str:
        return self.dialect.placeholder(0)

    def get(self, robot_id: str, completed_mission_code: str) -> RobotJobOpportunity | None:
        p = self._p
        cursor = self.conn.execute(
            f"SELECT * FROM {self.table} WHERE robot_id = {p} AND completed_mission_code = {p}",
            (robot_id, completed_mission_code),
        )
        row = cursor.fetchone()
        return RobotJobOpportunity.from_row(row) if row else None

    def latest_for_robot(self, robot_id: str, *, exclude_mission: str | None = None) -> RobotJobOpportunity | None:
        p = self._p
        sql = f"SELECT * FROM {self.table} WHERE robot_id = {p}"
        params: tuple = (robot_id,)
        if exclude_mission:
            sql += f" AND completed_mission_code <> {p}"
            params += (exclude_mission,)
        cursor = self.conn.execute(sql + " ORDER BY id DESC LIMIT 1", params)
        row = cursor.fetchone()
        return RobotJobOpportunity.from_row(row) if row else None

    def ensure(self, opportunity: RobotJobOpportunity) -> RobotJobOpportunity:
        """Insert the Pending snapshot unless one exists; return the stored row."""
        columns = [
            "robot_id",
            "completed_mission_code",
            "current_map_code",
            "original_map_code",
            "node_code",
            "x",
            "y",
            "consecutive_jobs_in_map",
            "decision",
            "created_utc",
        ]
        o = opportunity
        self.conn.execute(
            self.dialect.insert_or_ignore(self.table, columns),
            (
                o.robot_id,
                o.completed_mission_code,
                o.current_map_code,
                o.original_map_code,
                o.node_code,
                o.x,
                o.y,
                o.consecutive_jobs_in_map,
                OpportunityDecision.PENDING.value,
                to_iso8601(o.created_utc),
            ),
        )
        self.conn.commit()
        return self.get(o.robot_id, o.completed_mission_code)

    def claim(self, opportunity_id: int, token: str, now: datetime, *, stale_before: datetime) -> bool:
        """Take the right to decide a Pending record.

        Succeeds when nobody holds the claim, or the holder's claim is older
        than *stale_before* (an evaluator that died mid-decision).
        """
        p = self._p
        cursor = self.conn.execute(
            f"""
            UPDATE {self.table}
            SET claim_token = {p}, claimed_utc = {p}
            WHERE id = {p} AND decision = {p}
              AND (claim_token IS NULL OR claimed_utc < {p})
            """,
            (
                token,
                to_iso8601(now),
                opportunity_id,
                OpportunityDecision.PENDING.value,
                to_iso8601(stale_before),
            ),
        )
        self.conn.commit()
        claimed = cursor.rowcount > 0
        if not claimed:
            logger.debug(f"Opportunity {opportunity_id} is claimed by another evaluator")
        return claimed

    def release_claim(self, opportunity_id: int, token: str) -> None:
        p = self._p
        self.conn.execute(
            f"""
            UPDATE {self.table}
            SET claim_token = NULL, claimed_utc = NULL
            WHERE id = {p} AND claim_token = {p}
            """,
            (opportunity_id, token),
        )
        self.conn.commit()

    def record_decision(
        self,
        opportunity_id: int,
        decision: OpportunityDecision,
        reason: str,
        now: datetime,
        *,
        consecutive_jobs_in_map: int,
        chained_mission_code: str | None = None,
        return_map_code: str | None = None,
        claim_token: str | None = None,
    ) -> bool:
        """Write the decision while the record is still Pending.

        Given a *claim_token*, the claim must also still belong to that token.
        """
        p = self._p
        sql = f"""
            UPDATE {self.table}
            SET decision = {p}, decision_reason = {p}, decided_utc = {p},
                consecutive_jobs_in_map = {p}, chained_mission_code = {p}, return_map_code = {p},
                claim_token = NULL, claimed_utc = NULL
            WHERE id = {p} AND decision = {p}
            """
        params: tuple = (
            decision.value,
            reason,
            to_iso8601(now),
            consecutive_jobs_in_map,
            chained_mission_code,
            return_map_code,
            opportunity_id,
            OpportunityDecision.PENDING.value,
        )
        if claim_token is not None:
            sql += f" AND claim_token = {p}"
            params += (claim_token,)
        cursor = self.conn.execute(sql, params)
        self.conn.commit()
        return cursor.rowcount > 0


# ---------------------------------------------------------------------------
# Map queue configuration
# ---------------------------------------------------------------------------


class MapQueueConfigRepository:
    table = CORE_TABLES["map_queue_config"]

    def __init__(
        self,
        conn: Connection,
        dialect: Dialect | None = None,
        *,
        settings: FleetSettings | None = None,
    ) -> None:
        self.conn = conn
        self.dialect: Dialect = dialect or SQLiteDialect()
        self.settings = settings

    def get(self, map_code: str) -> MapQueueConfig | None:
        cursor = self.conn.execute(
            f"SELECT * FROM {self.table} WHERE map_code = {self.dialect.placeholder(0)}",
            (map_code,),
        )
        row = cursor.fetchone()
        return MapQueueConfig.from_row(row) if row else None

    def get_or_create(self, map_code: str, now: datetime) -> MapQueueConfig:
        """Load the map's configuration, creating it with defaults on first use."""
        defaults = MapQueueConfig(map_code=map_code)
        if self.settings is not None:
            defaults.max_consecutive_opportunistic_jobs = self.settings.max_consecutive_opportunistic_jobs
            defaults.enable_cross_map_optimization = self.settings.enable_cross_map_optimization
            defaults.default_priority = self.settings.default_priority
        self.conn.execute(
            self.dialect.insert_or_ignore(
                self.table,
                [
                    "map_code",
                    "max_consecutive_opportunistic_jobs",
                    "enable_cross_map_optimization",
                    "default_priority",
                    "max_concurrent_robots",
                    "created_utc",
                ],
            ),
            (
                map_code,
                defaults.max_consecutive_opportunistic_jobs,
                1 if defaults.enable_cross_map_optimization else 0,
                defaults.default_priority,
                defaults.max_concurrent_robots,
                to_iso8601(now),
            ),
        )
        self.conn.commit()
        return self.get(map_code)

    def save(self, config: MapQueueConfig, now: datetime) -> None:
        p = self.dialect.placeholder(0)
        self.get_or_create(config.map_code, now)
        self.conn.execute(
            f"""
            UPDATE {self.table}
            SET max_consecutive_opportunistic_jobs = {p}, enable_cross_map_optimization = {p},
                default_priority = {p}, max_concurrent_robots = {p}, updated_utc = {p}
            WHERE map_code = {p}
            """,
            (
                config.max_consecutive_opportunistic_jobs,
                1 if config.enable_cross_map_optimization else 0,
                config.default_priority,
                config.max_concurrent_robots,
                to_iso8601(now),
                config.map_code,
            ),
        )
        self.conn.commit()

    def record_chained(self, map_code: str, distance: float, now: datetime) -> None:
        """Bump the chained counter and fold *distance* into the rolling average."""
        p = self.dialect.placeholder(0)
        self.conn.execute(
            f"""
            UPDATE {self.table}
            SET average_opportunistic_job_distance_meters =
                    (COALESCE(average_opportunistic_job_distance_meters, 0) * opportunistic_jobs_chained + {p})
                    / (opportunistic_jobs_chained + 1),
                opportunistic_jobs_chained = opportunistic_jobs_chained + 1,
                updated_utc = {p}
            WHERE map_code = {p}
            """,
            (distance, to_iso8601(now), map_code),
        )
        self.conn.commit()


# ---------------------------------------------------------------------------
# Node coordinates
# ---------------------------------------------------------------------------


@runtime_checkable
class CoordinateSource(Protocol):
    def coordinates(self, node_code: str) -> tuple[float, float] | None:
        """``(x, y)`` of *node_code*, or None if unknown."""
        ...


class NodeCoordinateRepository:
    """Coordinates replicated from the AMR map data."""

    table = CORE_TABLES["node_coordinates"]

    def __init__(self, conn: Connection, dialect: Dialect | None = None) -> None:
        self.conn = conn
        self.dialect: Dialect = dialect or SQLiteDialect()

    def coordinates(self, node_code: str) -> tuple[float, float] | None:
        cursor = self.conn.execute(
            f"SELECT x, y FROM {self.table} WHERE node_code = {self.dialect.placeholder(0)}",
            (node_code,),
        )
        row = cursor.fetchone()
        return (float(row[0]), float(row[1])) if row else None

    def map_of(self, node_code: str) -> str | None:
        cursor = self.conn.execute(
            f"SELECT map_code FROM {self.table} WHERE node_code = {self.dialect.placeholder(0)}",
            (node_code,),
        )
        row = cursor.fetchone()
        return row[0] if row else None

    def upsert(self, node_code: str, map_code: str | None, x: float, y: float) -> None:
        p = self.dialect.placeholder(0)
        self.conn.execute(f"DELETE FROM {self.table} WHERE node_code = {p}", (node_code,))
        self.conn.execute(
            f"INSERT INTO {self.table} (node_code, map_code, x, y) VALUES ({self.dialect.placeholders(4)})",
            (node_code, map_code, x, y),
        )
        self.conn.commit()


__all__ = [
    "CoordinateSource",
    "MapQueueConfigRepository",
    "NodeCoordinateRepository",
    "OpportunityRepository",
]
