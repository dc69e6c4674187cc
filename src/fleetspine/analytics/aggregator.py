"""Robot utilization aggregator.

Manifesto:
    A utilization report must be auditable: every bucket's available
    minutes split exactly into manual pause, working, charging and idle,
    and the headline totals are nothing more than the sums of the buckets.
    Time a robot spends waiting at a manual waypoint is counted once, as
    paused, never also as working.

Architecture:
    ::

        utilization(robot, start, end, grouping, tz_offset)
          │
          ├── completed missions  (history first, then live queue; dedup by code)
          │     ├── charging templates ─► charging minutes
          │     └── everything else    ─► working minutes − same-mission pause overlap
          ├── manual pauses        (open pauses run to the period end)
          │
          └── per bucket (rounded to 2 dp, in this order):
                manual   = min(manual, available)
                working  = min(working, available − manual)
                charging = min(charging, available − manual − working)
                idle     = available − manual − working − charging

    utilization % = (working + charging) / (available − manual), clamped
    to [0, 100].

Tags:
    fleetspine, analytics, utilization, buckets, reporting
"""

from __future__ import annotations

from collections import defaultdict
from datetime import datetime, timedelta

from fleetspine.analytics.buckets import (
    ZERO_OFFSET,
    bucket_size,
    bucket_start,
    generate_buckets,
    minutes,
    overlap,
    split_interval,
)
from fleetspine.analytics.models import (
    ChargingSession,
    MissionDiagnostic,
    UtilizationBucket,
    UtilizationDiagnostics,
    UtilizationMetrics,
    UtilizationMission,
)
from fleetspine.core.enums import UtilizationGrouping
from fleetspine.core.errors import ValidationFailedError
from fleetspine.core.logging import get_logger
from fleetspine.core.result import Err, Ok, Result
from fleetspine.core.settings import FleetSettings, get_settings
from fleetspine.core.timestamps import ensure_utc
from fleetspine.queue.models import MissionRecord
from fleetspine.queue.repository import MissionRepository
from fleetspine.tracking.pauses import ManualPause, ManualPauseRepository

logger = get_logger(__name__)

SAMPLE_SIZE = 20
_RANGE_FORMAT = "%Y-%m-%d %H:%M"


def execution_start(record: MissionRecord) -> datetime | None:
    """When the robot started on *record*: processed, else submitted, else created."""
    return record.processed_utc or record.submitted_to_amr_utc or record.created_utc


def _parse_grouping(grouping: UtilizationGrouping | str) -> UtilizationGrouping:
    if isinstance(grouping, UtilizationGrouping):
        return grouping
    try:
        return UtilizationGrouping(str(grouping).strip().lower())
    except ValueError:
        raise ValidationFailedError(
            f"Unsupported grouping interval: {grouping}", field="grouping", value=grouping
        ) from None


class UtilizationAggregator:
    """Builds utilization reports from mission history and manual pauses."""

    def __init__(
        self,
        missions: MissionRepository,
        pauses: ManualPauseRepository,
        *,
        settings: FleetSettings | None = None,
    ) -> None:
        self.missions = missions
        self.pauses = pauses
        self.settings = settings or get_settings()
        self._charging_codes = {c.lower() for c in self.settings.charging_template_codes}

    # === Public API ===

    def utilization(
        self,
        robot_id: str,
        period_start: datetime,
        period_end: datetime,
        grouping: UtilizationGrouping | str = UtilizationGrouping.HOUR,
        *,
        tz_offset: timedelta | None = None,
    ) -> Result[UtilizationMetrics]:
        """Utilization of *robot_id* over ``[period_start, period_end)``.

        ``tz_offset`` is the client's UTC offset; buckets start at the
        client's local hour or midnight.
        """
        if robot_id is None or not robot_id.strip():
            return Err(ValidationFailedError("Robot ID is required", field="robot_id"))
        start = ensure_utc(period_start)
        end = ensure_utc(period_end)
        if end <= start:
            return Err(
                ValidationFailedError(
                    "The end of the period must be greater than the start.",
                    field="period_end",
                    value=end.isoformat(),
                )
            )
        try:
            group = _parse_grouping(grouping)
        except ValidationFailedError as e:
            return Err(e)

        robot_id = robot_id.strip()
        offset = tz_offset or ZERO_OFFSET
        metrics = UtilizationMetrics(
            robot_id=robot_id,
            period_start_utc=start,
            period_end_utc=end,
            grouping=group,
        )

        work_records, charging_records = self._split_charging(
            self._completed_missions(robot_id, start, end)
        )
        pauses = self.pauses.list_overlapping(robot_id, start, end)

        manual_raw: dict[datetime, float] = defaultdict(float)
        for pause in pauses:
            for bucket, mins in split_interval(pause.start, pause.end or end, start, end, group, offset):
                manual_raw[bucket] += mins

        work_raw: dict[datetime, float] = defaultdict(float)
        completions: dict[datetime, int] = defaultdict(int)
        last_instant = end - timedelta(microseconds=1)
        for record in work_records:
            span = self._bounded_span(record, start, end)
            if span is None:
                continue
            lo, hi = span
            for bucket, mins in split_interval(lo, hi, start, end, group, offset):
                work_raw[bucket] += mins

            paused = 0.0
            for pause in self._pauses_of(pauses, record.mission_code):
                hit = overlap(pause.start, pause.end or end, lo, hi)
                if hit is None:
                    continue
                paused += minutes(hit[1] - hit[0])
                for bucket, mins in split_interval(hit[0], hit[1], start, end, group, offset):
                    work_raw[bucket] -= mins

            completions[bucket_start(min(hi, last_instant), group, offset)] += 1
            metrics.missions.append(
                UtilizationMission(
                    mission_code=record.mission_code,
                    workflow_name=record.workflow_name,
                    trigger_source=record.trigger_source,
                    start_utc=lo,
                    completed_utc=hi,
                    duration_minutes=round(minutes(hi - lo), 2),
                    manual_pause_minutes=round(paused, 2),
                )
            )

        charging_raw: dict[datetime, float] = defaultdict(float)
        for record in charging_records:
            span = self._bounded_span(record, start, end)
            if span is None:
                continue
            lo, hi = span
            for bucket, mins in split_interval(lo, hi, start, end, group, offset):
                charging_raw[bucket] += mins
            metrics.charging_sessions.append(
                ChargingSession(
                    mission_code=record.mission_code,
                    template_code=record.template_code,
                    begin_utc=lo,
                    end_utc=hi,
                    duration_minutes=round(minutes(hi - lo), 2),
                )
            )

        size = bucket_size(group)
        for bucket in generate_buckets(start, end, group, offset):
            available = minutes(min(bucket + size, end) - max(bucket, start))
            metrics.breakdown.append(
                self._fill_bucket(
                    bucket,
                    available,
                    manual_raw[bucket],
                    max(0.0, work_raw[bucket]),
                    charging_raw[bucket],
                    completions[bucket],
                )
            )

        self._summarize(metrics)
        metrics.missions.sort(key=lambda m: m.completed_utc, reverse=True)
        metrics.charging_sessions.sort(key=lambda c: c.end_utc, reverse=True)

        logger.info(
            "utilization_computed",
            robot_id=robot_id,
            period_start=start.isoformat(),
            period_end=end.isoformat(),
            grouping=group.value,
            utilization_percent=metrics.utilization_percent,
            working_minutes=metrics.total_working_minutes,
            charging_minutes=metrics.total_charging_minutes,
            idle_minutes=metrics.total_idle_minutes,
            missions=len(metrics.missions),
        )
        return Ok(metrics)

    def diagnose(
        self,
        robot_id: str | None,
        period_start: datetime,
        period_end: datetime,
    ) -> UtilizationDiagnostics:
        """Explain which missions a utilization query would count, and why not."""
        start = ensure_utc(period_start)
        end = ensure_utc(period_end)
        robot_id = robot_id.strip() if robot_id and robot_id.strip() else None
        diag = UtilizationDiagnostics(robot_id=robot_id, query_start_utc=start, query_end_utc=end)

        records = self._all_missions()
        with_robot = [r for r in records if r.assigned_robot_id]
        completed = [r for r in with_robot if r.completed_utc is not None]
        matching_robot = (
            [r for r in completed if r.assigned_robot_id == robot_id] if robot_id else completed
        )
        in_range = [r for r in matching_robot if self._intersects(r, start, end)]
        included = {r.mission_code for r in in_range}

        diag.total_missions = len(records)
        diag.with_robot = len(with_robot)
        diag.completed = len(completed)
        diag.matching_robot = len(matching_robot)
        diag.matching_date_range = len(in_range)
        diag.available_robot_ids = sorted({r.assigned_robot_id for r in with_robot})
        diag.sample_missions = [
            MissionDiagnostic(
                mission_code=r.mission_code,
                assigned_robot_id=r.assigned_robot_id,
                status=r.status.value,
                start_utc=execution_start(r),
                completed_utc=r.completed_utc,
                included=r.mission_code in included,
                exclusion_reason=""
                if r.mission_code in included
                else self._exclusion_reason(r, robot_id, start, end),
            )
            for r in records[:SAMPLE_SIZE]
        ]
        diag.analysis = self._analysis(diag)

        logger.info(
            "utilization_diagnostics",
            robot_id=robot_id,
            total=diag.total_missions,
            with_robot=diag.with_robot,
            completed=diag.completed,
            matching_robot=diag.matching_robot,
            matching_date_range=diag.matching_date_range,
        )
        return diag

    # === Sources ===

    def _completed_missions(self, robot_id: str, start: datetime, end: datetime) -> list[MissionRecord]:
        by_code: dict[str, MissionRecord] = {}
        for history in (True, False):
            for record in self.missions.list_completed_for_robot(robot_id, start, end, history=history):
                by_code.setdefault(record.mission_code, record)
        return list(by_code.values())

    def _all_missions(self) -> list[MissionRecord]:
        by_code: dict[str, MissionRecord] = {}
        for history in (True, False):
            for record in self.missions.list_all(history=history):
                by_code.setdefault(record.mission_code, record)
        return list(by_code.values())

    def _split_charging(
        self, records: list[MissionRecord]
    ) -> tuple[list[MissionRecord], list[MissionRecord]]:
        work, charging = [], []
        for record in records:
            code = (record.template_code or "").lower()
            (charging if code in self._charging_codes else work).append(record)
        return work, charging

    @staticmethod
    def _pauses_of(pauses: list[ManualPause], mission_code: str) -> list[ManualPause]:
        code = mission_code.lower()
        return [p for p in pauses if p.mission_code and p.mission_code.lower() == code]

    @staticmethod
    def _bounded_span(
        record: MissionRecord, start: datetime, end: datetime
    ) -> tuple[datetime, datetime] | None:
        began = execution_start(record)
        if began is None or record.completed_utc is None or record.completed_utc <= began:
            return None
        return overlap(began, record.completed_utc, start, end)

    @staticmethod
    def _intersects(record: MissionRecord, start: datetime, end: datetime) -> bool:
        began = execution_start(record)
        return (
            began is not None
            and record.completed_utc is not None
            and began < end
            and record.completed_utc > start
        )

    # === Bucket math ===

    def _fill_bucket(
        self,
        bucket: datetime,
        available: float,
        manual: float,
        working: float,
        charging: float,
        completed: int,
    ) -> UtilizationBucket:
        available = round(available, 2)
        manual = min(round(manual, 2), available)

        room = round(available - manual, 2)
        if working > room:
            logger.warning(
                "utilization_working_capped",
                bucket_start=bucket.isoformat(),
                raw_working_minutes=round(working, 2),
                available_minutes=room,
            )
        working = min(round(working, 2), room)

        room = round(available - manual - working, 2)
        charging = min(round(charging, 2), room)
        idle = max(0.0, round(available - manual - working - charging, 2))

        return UtilizationBucket(
            bucket_start_utc=bucket,
            available_minutes=available,
            manual_pause_minutes=manual,
            working_minutes=working,
            charging_minutes=charging,
            idle_minutes=idle,
            completed_missions=completed,
        )

    @staticmethod
    def _summarize(metrics: UtilizationMetrics) -> None:
        buckets = metrics.breakdown
        metrics.total_available_minutes = round(sum(b.available_minutes for b in buckets), 2)
        metrics.total_manual_pause_minutes = round(sum(b.manual_pause_minutes for b in buckets), 2)
        metrics.total_working_minutes = round(sum(b.working_minutes for b in buckets), 2)
        metrics.total_charging_minutes = round(sum(b.charging_minutes for b in buckets), 2)
        metrics.total_idle_minutes = round(sum(b.idle_minutes for b in buckets), 2)

        effective = metrics.total_available_minutes - metrics.total_manual_pause_minutes
        if effective <= 0:
            metrics.utilization_percent = 0.0
            return
        busy = metrics.total_working_minutes + metrics.total_charging_minutes
        metrics.utilization_percent = round(min(max(busy / effective, 0.0), 1.0) * 100, 2)

    # === Diagnostics ===

    @staticmethod
    def _exclusion_reason(
        record: MissionRecord, robot_id: str | None, start: datetime, end: datetime
    ) -> str:
        if not record.assigned_robot_id:
            return "No assigned robot ID"
        if record.completed_utc is None:
            return "Not completed"
        if robot_id and record.assigned_robot_id != robot_id:
            return f"Robot ID mismatch (expected: {robot_id}, actual: {record.assigned_robot_id})"
        began = execution_start(record)
        return (
            f"Outside date range (mission: {began:{_RANGE_FORMAT}} - "
            f"{record.completed_utc:{_RANGE_FORMAT}}, query: {start:{_RANGE_FORMAT}} - "
            f"{end:{_RANGE_FORMAT}})"
        )

    @staticmethod
    def _analysis(diag: UtilizationDiagnostics) -> str:
        if diag.total_missions == 0:
            return "No missions found in the database."
        if diag.with_robot == 0:
            return (
                f"Found {diag.total_missions} missions, but none have an assigned robot ID. "
                "Check that the dispatcher is running and the gateway assigns robots."
            )
        if diag.completed == 0:
            return (
                f"Found {diag.with_robot} missions with robot IDs, but none are completed. "
                "They may still be in progress, queued, or failed."
            )
        if diag.robot_id and diag.matching_robot == 0:
            return (
                f"Found {diag.completed} completed missions, but none match robot ID "
                f"'{diag.robot_id}'. Available robot IDs: {', '.join(diag.available_robot_ids)}."
            )
        if diag.matching_date_range == 0:
            return (
                f"Found {diag.matching_robot} missions for the robot, but none fall within "
                f"{diag.query_start_utc:%Y-%m-%d %H:%M:%S} UTC to "
                f"{diag.query_end_utc:%Y-%m-%d %H:%M:%S} UTC."
            )
        return (
            f"Found {diag.matching_date_range} missions matching all criteria. "
            f"Filter funnel: {diag.total_missions} total -> {diag.with_robot} with robot -> "
            f"{diag.completed} completed -> {diag.matching_robot} matching robot -> "
            f"{diag.matching_date_range} in date range."
        )


__all__ = ["SAMPLE_SIZE", "UtilizationAggregator", "execution_start"]
