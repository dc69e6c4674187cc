"""Mission execution tracker.

Manifesto:
    Without a physical robot the tracker is the robot.  It turns elapsed
    wall-clock time plus operator feedback into the position and status a
    real fleet controller would report, so the dispatcher, the chaining
    evaluator and the analytics run against believable data.

Architecture:
    ::

        job_status(record)                current_node(record)
        ──────────────────                ────────────────────
        cancelled? ─► Cancelling/Cancelled   no steps? ─► legacy checkpoints
        first query? ─► start clock          first walk? ─► step 0
        StatusProgression.status_at()        waiting/cancelled? ─► stay
                                             dwell not elapsed? ─► stay
                                             MANUAL + not released? ─► wait
                                             else advance one step

        operation_feedback(mission, position)
            releases the wait only when position == current step (any case)

    Runtime state lives in memory per mission and is guarded by a
    per-mission lock; the durable record is never mutated here except for
    the manual pause log.

Tags:
    fleetspine, tracker, simulation, state-machine, manual-waypoint
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime

from fleetspine.core.enums import JobStatus, MissionStatus, RobotStatus
from fleetspine.core.errors import ValidationFailedError
from fleetspine.core.keyed_lock import KeyedCache
from fleetspine.core.logging import get_logger
from fleetspine.core.result import Err, Ok, Result
from fleetspine.core.settings import FleetSettings, get_settings
from fleetspine.core.timestamps import Clock, seconds_between, utc_now
from fleetspine.queue.models import MissionRecord, MissionStep
from fleetspine.queue.repository import MissionRepository
from fleetspine.tracking.areas import AreaResolver
from fleetspine.tracking.pauses import ManualPauseRepository
from fleetspine.tracking.progression import StatusProgression, TrackerTimings, legacy_checkpoints

logger = get_logger(__name__)

DEFAULT_BATTERY_LEVEL = 85


@dataclass
class MissionRuntime:
    """In-memory walk state of one mission."""

    first_query_utc: datetime | None = None
    completed_utc: datetime | None = None
    walk_started_utc: datetime | None = None
    step_index: int = 0
    step_started_utc: datetime | None = None
    waiting: bool = False
    released_positions: set[str] = field(default_factory=set)


@dataclass(frozen=True)
class RobotState:
    robot_id: str
    node_code: str
    status: RobotStatus
    mission_code: str | None = None
    battery_level: int = DEFAULT_BATTERY_LEVEL
    robot_type: str = "LIFT"
    map_code: str = "M001"
    floor_number: str = "A001"


class MissionTracker:
    """Derives job status and robot position for missions in *repository*."""

    def __init__(
        self,
        repository: MissionRepository,
        *,
        areas: AreaResolver,
        pauses: ManualPauseRepository,
        settings: FleetSettings | None = None,
        clock: Clock = utc_now,
    ) -> None:
        self.repository = repository
        self.areas = areas
        self.pauses = pauses
        self.settings = settings or get_settings()
        self.timings = TrackerTimings.from_settings(self.settings)
        self.progression = StatusProgression(self.timings)
        self._clock = clock
        self._runtimes = KeyedCache()

    # === Runtime bookkeeping ===

    def _runtime(self, mission_code: str) -> MissionRuntime:
        runtime = self._runtimes.get(mission_code)
        if runtime is None:
            runtime = MissionRuntime()
            self._runtimes.set(mission_code, runtime)
        return runtime

    def runtime(self, mission_code: str) -> MissionRuntime | None:
        """Snapshot access for diagnostics and tests."""
        return self._runtimes.get(mission_code)

    def forget(self, mission_code: str) -> None:
        """Drop runtime state and cached areas for a closed mission."""
        self._runtimes.pop(mission_code)
        self.areas.forget(mission_code)

    def _final_node(self, record: MissionRecord) -> str:
        if record.steps:
            return record.steps[-1].position
        return record.target_cell_code or self.settings.final_node_code

    def _begin_node(self, record: MissionRecord) -> str:
        return record.first_position or self.settings.home_node_code

    # === Status ===

    def job_status(self, record: MissionRecord) -> JobStatus:
        """Gateway job status code for *record* at the current time."""
        now = self._clock()
        if record.status == MissionStatus.CANCELLED:
            since = seconds_between(record.cancelled_utc or now, now)
            return self.progression.cancel_status(since)
        if record.status == MissionStatus.COMPLETED:
            return JobStatus.COMPLETED

        with self._runtimes.locks.hold(record.mission_code):
            runtime = self._runtime(record.mission_code)
            if runtime.first_query_utc is None:
                runtime.first_query_utc = now
                return JobStatus.CREATED

            status = self.progression.status_at(seconds_between(runtime.first_query_utc, now))
            if status == JobStatus.COMPLETED and runtime.completed_utc is None:
                runtime.completed_utc = now
                logger.info("mission_completed", mission_code=record.mission_code)
            return status

    def completed_at(self, mission_code: str) -> datetime | None:
        runtime = self._runtimes.get(mission_code)
        return runtime.completed_utc if runtime else None

    # === Position ===

    def current_node(self, record: MissionRecord) -> str:
        """Resolved node code the robot of *record* is at now."""
        now = self._clock()
        with self._runtimes.locks.hold(record.mission_code):
            runtime = self._runtime(record.mission_code)
            if not record.steps:
                return self._legacy_node(record, runtime, now)
            position = self._walk(record, runtime, now)
        return self.areas.resolve(record.mission_code, position)

    def _legacy_node(self, record: MissionRecord, runtime: MissionRuntime, now: datetime) -> str:
        begin = self._begin_node(record)
        if runtime.walk_started_utc is None:
            runtime.walk_started_utc = now
            return begin
        path = legacy_checkpoints(begin, self._final_node(record))
        return path.at(seconds_between(runtime.walk_started_utc, now))

    def _walk(self, record: MissionRecord, runtime: MissionRuntime, now: datetime) -> str:
        steps = record.steps
        if runtime.step_started_utc is None:
            runtime.walk_started_utc = now
            runtime.step_index = 0
            runtime.step_started_utc = now
            return steps[0].position

        if runtime.step_index >= len(steps):
            return self._final_node(record)

        step = steps[runtime.step_index]
        if runtime.waiting or record.status == MissionStatus.CANCELLED:
            return step.position

        if seconds_between(runtime.step_started_utc, now) < self.timings.step_dwell:
            return step.position

        if step.is_manual and step.position.lower() not in runtime.released_positions:
            runtime.waiting = True
            self._open_pause(record, step, now)
            logger.info(
                "manual_waypoint_reached",
                mission_code=record.mission_code,
                robot_id=record.assigned_robot_id,
                position=step.position,
            )
            return step.position

        runtime.step_index += 1
        runtime.step_started_utc = now
        if runtime.step_index >= len(steps):
            logger.info(
                "final_position_reached",
                mission_code=record.mission_code,
                robot_id=record.assigned_robot_id,
                position=self._final_node(record),
            )
            return self._final_node(record)
        return steps[runtime.step_index].position

    def _open_pause(self, record: MissionRecord, step: MissionStep, now: datetime) -> None:
        if record.assigned_robot_id:
            self.pauses.open_pause(record.assigned_robot_id, record.mission_code, step.position, now)

    # === Feedback ===

    def operation_feedback(self, request_id: str, mission_code: str, position: str) -> Result[None]:
        """Release a MANUAL waypoint.

        Unknown missions and positions are logged and accepted.
        """
        for name, value in (("requestId", request_id), ("missionCode", mission_code), ("position", position)):
            if value is None or not str(value).strip():
                return Err(
                    ValidationFailedError(
                        "Required fields requestId, missionCode, and position must be provided.",
                        field=name,
                    )
                )

        record = self.repository.get(mission_code)
        if record is None:
            logger.warning("feedback_for_unknown_mission", mission_code=mission_code, position=position)
            return Ok(None)

        now = self._clock()
        wanted = position.strip().lower()
        with self._runtimes.locks.hold(mission_code):
            runtime = self._runtime(mission_code)
            known = {s.position.lower() for s in record.steps}
            if wanted not in known:
                logger.info(
                    "feedback_position_not_in_mission",
                    mission_code=mission_code,
                    position=position,
                    positions=[s.position for s in record.steps],
                )
                return Ok(None)

            runtime.released_positions.add(wanted)
            if runtime.waiting and runtime.step_index < len(record.steps):
                current = record.steps[runtime.step_index]
                if current.position.lower() == wanted:
                    runtime.waiting = False
                    runtime.step_started_utc = now
                    self.pauses.close_open(mission_code, now)
                    logger.info(
                        "manual_waypoint_released",
                        mission_code=mission_code,
                        robot_id=record.assigned_robot_id,
                        position=current.position,
                    )
        return Ok(None)

    # === Robot query ===

    def query_robot(
        self,
        robot_id: str,
        robot_type: str | None = None,
        map_code: str | None = None,
        floor_number: str | None = None,
    ) -> Result[RobotState]:
        if robot_id is None or not robot_id.strip():
            return Err(ValidationFailedError("Required field robotId must be provided.", field="robot_id"))

        active = self.repository.find_active_for_robot(robot_id)
        if active is None:
            node, status, mission_code = self.settings.home_node_code, RobotStatus.IDLE, None
        else:
            node, status, mission_code = self.current_node(active), RobotStatus.EXECUTING, active.mission_code

        state = RobotState(
            robot_id=robot_id,
            node_code=node,
            status=status,
            mission_code=mission_code,
            robot_type=robot_type or "LIFT",
            map_code=map_code or "M001",
            floor_number=floor_number or "A001",
        )
        logger.debug(
            "robot_queried",
            robot_id=robot_id,
            node_code=state.node_code,
            mission_code=mission_code,
            status=int(status),
        )
        return Ok(state)


__all__ = ["MissionRuntime", "MissionTracker", "RobotState"]
