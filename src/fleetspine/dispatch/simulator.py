"""Simulated AMR gateway.

Implements :class:`~fleetspine.dispatch.gateway.AmrGateway` on the
durable store so the engine runs end to end without a fleet controller.
Jobs live in their own tables (``amr_sim_jobs``) with the same shape as
the mission queue; request id and mission code uniqueness come from the
table constraints, not process memory, so several simulator instances
can share one database.  Status and position come from the
:class:`~fleetspine.tracking.MissionTracker`.
"""

from __future__ import annotations

from fleetspine.core.dialect import Dialect
from fleetspine.core.enums import CancelMode, JobStatus, MissionStatus
from fleetspine.core.logging import get_logger
from fleetspine.core.protocols import Connection
from fleetspine.core.result import Err, Ok
from fleetspine.core.schema import CORE_TABLES
from fleetspine.core.settings import FleetSettings, get_settings
from fleetspine.core.timestamps import Clock, format_amr_time, seconds_between, utc_now
from fleetspine.dispatch.gateway import (
    GatewayResponse,
    JobQuery,
    JobRecord,
    RobotSnapshot,
    SubmitMissionRequest,
)
from fleetspine.queue.models import MissionRecord, MissionSubmit
from fleetspine.queue.repository import MissionRepository
from fleetspine.tracking.areas import AreaResolver
from fleetspine.tracking.pauses import ManualPauseRepository
from fleetspine.tracking.tracker import MissionTracker

logger = get_logger(__name__)

DEFAULT_WORKFLOW_CODE = "W000000001"
DEFAULT_CONTAINER_CODE = "1-2"
SIMULATOR_SOURCE = "UNIVERSAL"

_EXECUTING_CODES = {JobStatus.EXECUTING, JobStatus.WAITING}


def _blank(value: str | None) -> bool:
    return value is None or not str(value).strip()


def _matches(actual: str | None, wanted: str | None) -> bool:
    if not wanted:
        return True
    return (actual or "").lower() == wanted.lower()


class SimulatedAmrGateway:
    """Fleet controller stand-in backed by ``amr_sim_jobs``."""

    def __init__(
        self,
        conn: Connection,
        dialect: Dialect | None = None,
        *,
        settings: FleetSettings | None = None,
        clock: Clock = utc_now,
    ) -> None:
        self.settings = settings or get_settings()
        self._clock = clock
        self.jobs = MissionRepository(
            conn,
            dialect,
            table=CORE_TABLES["sim_jobs"],
            history_table=CORE_TABLES["sim_job_history"],
        )
        self.tracker = MissionTracker(
            self.jobs,
            areas=AreaResolver(conn, dialect),
            pauses=ManualPauseRepository(conn, dialect),
            settings=self.settings,
            clock=clock,
        )

    # === Commands ===

    async def submit_mission(self, request: SubmitMissionRequest) -> GatewayResponse:
        if _blank(request.org_id) or _blank(request.request_id) or _blank(request.mission_code):
            return GatewayResponse.fail(
                "MISSION_VALIDATION_FAILED",
                "Required fields orgId, requestId, and missionCode must be provided.",
            )

        steps = [s.to_step() for s in request.mission_data]
        final_node = steps[-1].position if steps else self.settings.final_node_code
        robot_id = request.robot_ids[0] if request.robot_ids else self.settings.default_robot_id
        submit = MissionSubmit(
            mission_code=request.mission_code,
            request_id=request.request_id,
            org_id=request.org_id,
            steps=steps,
            priority=1 if request.priority == 0 else request.priority,
            mission_type=request.mission_type,
            robot_type=request.robot_type,
            template_code=request.template_code,
            container_code=request.container_code or DEFAULT_CONTAINER_CODE,
            workflow_name=request.workflow_name,
            workflow_code=request.template_code or DEFAULT_WORKFLOW_CODE,
            map_code=request.map_code or self.settings.default_map_code,
            target_cell_code=final_node,
            robot_models=list(request.robot_models),
            robot_ids=list(request.robot_ids),
            start_node=steps[0].position if steps else self.settings.home_node_code,
            created_by=request.created_by,
            source=SIMULATOR_SOURCE,
        )

        now = self._clock()
        match self.jobs.reserve(submit, now, status=MissionStatus.SUBMITTED_TO_AMR):
            case Err(error):
                logger.warning(
                    "sim_submit_rejected",
                    mission_code=request.mission_code,
                    request_id=request.request_id,
                    error=str(error),
                )
                return GatewayResponse.from_error(error)
            case Ok(record):
                self.jobs.update_fields(record, now, assigned_robot_id=robot_id, submitted_to_amr_utc=now)

        manual = [s.position for s in steps if s.is_manual]
        logger.info(
            "sim_mission_submitted",
            mission_code=request.mission_code,
            request_id=request.request_id,
            robot_id=robot_id,
            steps=len(steps),
            manual_positions=manual,
        )
        return GatewayResponse.ok()

    async def cancel_mission(
        self,
        request_id: str,
        mission_code: str,
        cancel_mode: str | None = None,
        reason: str | None = None,
    ) -> GatewayResponse:
        if _blank(request_id) or _blank(mission_code):
            return GatewayResponse.fail(
                "CANCEL_VALIDATION_FAILED",
                "Required fields requestId and missionCode must be provided.",
            )
        mode = CancelMode.parse(cancel_mode)
        if mode is None:
            return GatewayResponse.fail(
                "INVALID_CANCEL_MODE", "cancelMode must be one of: FORCE, NORMAL, REDIRECT_START"
            )

        record = self.jobs.get(mission_code)
        if record is not None and not record.is_terminal:
            self.jobs.transition(
                record,
                MissionStatus.CANCELLED,
                self._clock(),
                cancel_mode=mode,
                cancel_reason=reason,
            )
            logger.info("sim_job_cancelled", mission_code=mission_code, cancel_mode=mode.value)
        return GatewayResponse.ok()

    async def operation_feedback(
        self, request_id: str, mission_code: str, position: str
    ) -> GatewayResponse:
        match self.tracker.operation_feedback(request_id, mission_code, position):
            case Err(error):
                return GatewayResponse.from_error(error)
            case Ok():
                return GatewayResponse.ok("Operation feedback received successfully")

    # === Queries ===

    async def query_robot(
        self,
        robot_id: str,
        robot_type: str | None = None,
        map_code: str | None = None,
        floor_number: str | None = None,
    ) -> RobotSnapshot:
        match self.tracker.query_robot(robot_id, robot_type, map_code, floor_number):
            case Err(error):
                raise error
            case Ok(state):
                return RobotSnapshot(
                    robot_id=state.robot_id,
                    node_code=state.node_code,
                    status=int(state.status),
                    mission_code=state.mission_code,
                    battery_level=state.battery_level,
                    robot_type=state.robot_type,
                    map_code=state.map_code,
                    floor_number=state.floor_number,
                )

    async def query_jobs(self, query: JobQuery) -> list[JobRecord]:
        """Jobs matching *query*, newest first.

        A non-positive limit means 10.
        """
        limit = query.limit if query.limit > 0 else 10
        jobs = []
        for record in self.jobs.list_all():
            if not (
                _matches(record.mission_code, query.job_code)
                and _matches(record.assigned_robot_id, query.robot_id)
                and _matches(record.container_code, query.container_code)
                and _matches(record.workflow_code, query.workflow_code)
                and _matches(record.map_code, query.map_code)
                and _matches(record.created_by, query.create_username)
            ):
                continue
            job = self._to_job(record)
            if query.status is not None and job.status != query.status:
                continue
            jobs.append(job)
            if len(jobs) >= limit:
                break
        return jobs

    # === Conversion ===

    def _to_job(self, record: MissionRecord) -> JobRecord:
        status = self.tracker.job_status(record)
        record = self._sync_status(record, status)

        complete_time = spend_time = None
        completed_at = self.tracker.completed_at(record.mission_code) or record.completed_utc
        if status == JobStatus.COMPLETED and completed_at is not None:
            spend_time = max(1, int(seconds_between(record.created_utc, completed_at)))
            complete_time = format_amr_time(completed_at)

        return JobRecord(
            job_code=record.mission_code,
            status=int(status),
            robot_id=record.assigned_robot_id,
            workflow_id=record.workflow_id,
            workflow_name=record.workflow_name,
            workflow_code=record.workflow_code,
            workflow_priority=record.priority,
            container_code=record.container_code,
            map_code=record.map_code,
            target_cell_code=record.target_cell_code,
            begin_cell_code=record.start_node,
            final_node_code=record.target_cell_code,
            complete_time=complete_time,
            spend_time=spend_time,
            create_username=record.created_by,
            create_time=format_amr_time(record.created_utc),
            source=record.source,
        )

    def _sync_status(self, record: MissionRecord, status: JobStatus) -> MissionRecord:
        """Persist the tracker's view so robot queries see finished jobs as gone.

        Tracker state is dropped once the job is closed and its completion
        time has been stored on the row.
        """
        now = self._clock()
        if status in _EXECUTING_CODES and record.status == MissionStatus.SUBMITTED_TO_AMR:
            result = self.jobs.transition(record, MissionStatus.EXECUTING, now)
        elif status == JobStatus.COMPLETED and not record.is_terminal:
            completed = self.tracker.completed_at(record.mission_code) or now
            result = self.jobs.transition(record, MissionStatus.COMPLETED, now, completed_utc=completed)
        else:
            if status == JobStatus.CANCELLED:
                self.tracker.forget(record.mission_code)
            return record
        match result:
            case Ok(updated):
                if updated.is_terminal:
                    self.tracker.forget(record.mission_code)
                return updated
            case Err(error):
                logger.debug("sim_status_sync_skipped", mission_code=record.mission_code, error=str(error))
                return record


__all__ = ["SimulatedAmrGateway"]
