"""Dispatcher - moves queued missions through the fleet controller.

Manifesto:
    The queue decides WHAT is waiting, the gateway decides WHERE it runs.
    The dispatcher is the glue: each cycle it hands dispatchable missions
    to idle robots, then reads job status back and advances the lifecycle.
    A completed mission is offered to the chaining evaluator so the robot
    can pick up a nearby job before it drives home.

Architecture:
    ::

        run_cycle()
          ├── forward_cancellations()
          │     cancelled after submit ──► gateway.cancel_mission once,
          │                                then polled until the job is 30/31
          ├── dispatch_pending()
          │     for mission in list_dispatchable (priority desc, oldest first):
          │       ├── Assigned + robot already set ──► keep that robot (chained)
          │       ├── preferred robots, one idle ────► first idle preferred robot
          │       ├── preferred robots, none idle ───► stay queued
          │       ├── no preference ────────────────► submit without a robot
          │       └── submit ── ok ──────► SubmittedToAmr
          │                  ├─ rejected ─► Failed (gateway message)
          │                  ├─ 100408 on a retry ─► SubmittedToAmr
          │                  └─ upstream ─► error recorded, retry_count + 1
          └── poll_statuses()
                20/25/28 ─► Executing
                30 ───────► Completed ─► evaluator.evaluate(robot, mission)
                31 ───────► Cancelled

    poll_positions() runs only when a listener is attached and reports
    each robot's node once per change.

Tags:
    fleetspine, dispatch, gateway, beat-as-poller, chaining
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

from fleetspine.chaining.evaluator import OpportunisticJobEvaluator
from fleetspine.core.enums import JobStatus, MissionStatus, OpportunityDecision
from fleetspine.core.errors import ConflictError, UpstreamUnavailableError
from fleetspine.core.logging import get_logger
from fleetspine.core.result import Err, Ok
from fleetspine.core.settings import FleetSettings, get_settings
from fleetspine.core.timestamps import Clock, to_iso8601, utc_now
from fleetspine.dispatch.gateway import (
    AmrGateway,
    GatewayResponse,
    JobQuery,
    JobRecord,
    MissionStepData,
    RobotSnapshot,
    SubmitMissionRequest,
)
from fleetspine.dispatch.positions import PositionCache, PositionListener
from fleetspine.queue.models import MissionRecord
from fleetspine.queue.service import MissionQueueService
from fleetspine.scheduling.protocol import BackendHealth, SchedulerBackend
from fleetspine.scheduling.thread_backend import ThreadSchedulerBackend

logger = get_logger(__name__)

_EXECUTING_JOB_CODES = {JobStatus.EXECUTING, JobStatus.WAITING, JobStatus.CANCELLING}
_CLOSED_JOB_CODES = {JobStatus.COMPLETED, JobStatus.CANCELLED}


def build_request(record: MissionRecord, robot_id: str | None, org_id: str) -> SubmitMissionRequest:
    """Gateway submission for a queued mission."""
    return SubmitMissionRequest(
        org_id=record.org_id or org_id,
        request_id=record.request_id,
        mission_code=record.mission_code,
        mission_type=record.mission_type,
        robot_type=record.robot_type,
        template_code=record.template_code,
        container_code=record.container_code,
        workflow_name=record.workflow_name,
        map_code=record.map_code,
        mission_data=[MissionStepData.from_step(s) for s in record.steps],
        robot_models=list(record.robot_models),
        robot_ids=[robot_id] if robot_id else [],
        priority=record.priority,
        created_by=record.created_by,
    )


@dataclass
class DispatchStats:
    tick_count: int = 0
    missions_submitted: int = 0
    missions_failed: int = 0
    missions_completed: int = 0
    missions_cancelled: int = 0
    cancels_forwarded: int = 0
    upstream_errors: int = 0
    jobs_chained: int = 0
    position_changes: int = 0
    last_tick: datetime | None = None
    last_error: str | None = None


@dataclass
class DispatcherHealth:
    healthy: bool
    backend: BackendHealth
    stats: DispatchStats = field(default_factory=DispatchStats)

    def to_dict(self) -> dict[str, Any]:
        return {
            "healthy": self.healthy,
            "backend": self.backend.to_dict(),
            "last_tick": to_iso8601(self.stats.last_tick),
            "stats": {
                "tick_count": self.stats.tick_count,
                "missions_submitted": self.stats.missions_submitted,
                "missions_failed": self.stats.missions_failed,
                "missions_completed": self.stats.missions_completed,
                "missions_cancelled": self.stats.missions_cancelled,
                "cancels_forwarded": self.stats.cancels_forwarded,
                "upstream_errors": self.stats.upstream_errors,
                "jobs_chained": self.stats.jobs_chained,
                "last_error": self.stats.last_error,
            },
        }


class Dispatcher:
    """Dispatch loop over the mission queue and an :class:`AmrGateway`.

    Example:
        >>> dispatcher = Dispatcher(queue, SimulatedAmrGateway(conn), evaluator=evaluator)
        >>> await dispatcher.run_cycle()
        >>> dispatcher.start()
    """

    def __init__(
        self,
        queue: MissionQueueService,
        gateway: AmrGateway,
        *,
        evaluator: OpportunisticJobEvaluator | None = None,
        position_listener: PositionListener | None = None,
        backend: SchedulerBackend | None = None,
        settings: FleetSettings | None = None,
        clock: Clock = utc_now,
    ) -> None:
        self.queue = queue
        self.gateway = gateway
        self.evaluator = evaluator
        self.position_listener = position_listener
        self.positions = PositionCache()
        self.backend = backend or ThreadSchedulerBackend(thread_name="fleet-dispatcher")
        self.settings = settings or get_settings()
        self._clock = clock
        self._stats = DispatchStats()
        self._running = False

    # === Lifecycle ===

    def start(self) -> None:
        if self._running:
            logger.warning("dispatcher_already_running")
            return
        interval = self.settings.dispatcher_interval_seconds
        logger.info(
            "dispatcher_starting",
            backend=self.backend.name,
            interval_seconds=interval,
            robots=self.settings.fleet_robot_ids,
        )
        self.backend.start(self.tick, interval)
        self._running = True

    def stop(self) -> None:
        if not self._running:
            return
        self.backend.stop()
        self._running = False
        logger.info("dispatcher_stopped")

    @property
    def is_running(self) -> bool:
        return self._running

    async def tick(self) -> None:
        """Single dispatcher tick, called by the backend."""
        try:
            await self.run_cycle()
            if self.position_listener is not None:
                await self.poll_positions()
        except Exception as e:
            self._stats.last_error = str(e)
            logger.exception("dispatcher_tick_failed", error=str(e))

    async def run_cycle(self) -> None:
        self._stats.tick_count += 1
        self._stats.last_tick = self._clock()
        await self.forward_cancellations()
        await self.dispatch_pending()
        await self.poll_statuses()

    # === Dispatch ===

    async def dispatch_pending(self) -> int:
        """Submit dispatchable missions; returns how many the gateway accepted."""
        snapshots: dict[str, RobotSnapshot | None] = {}
        claimed: set[str] = set()
        accepted = 0

        for record in self.queue.list_dispatchable():
            robot_id = await self._choose_robot(record, snapshots, claimed)
            if robot_id is None and record.robot_ids:
                logger.debug(
                    "mission_waiting_for_robot",
                    mission_code=record.mission_code,
                    preferred=record.robot_ids,
                )
                continue
            if robot_id:
                claimed.add(robot_id)
            if await self._submit(record, robot_id):
                accepted += 1
        return accepted

    async def _choose_robot(
        self,
        record: MissionRecord,
        snapshots: dict[str, RobotSnapshot | None],
        claimed: set[str],
    ) -> str | None:
        if record.status == MissionStatus.ASSIGNED and record.assigned_robot_id:
            return record.assigned_robot_id
        for robot_id in record.robot_ids:
            if robot_id in claimed:
                continue
            if robot_id not in snapshots:
                snapshots[robot_id] = await self._query_robot(robot_id)
            snapshot = snapshots[robot_id]
            if snapshot is not None and snapshot.is_idle:
                return robot_id
        return None

    async def _query_robot(self, robot_id: str) -> RobotSnapshot | None:
        try:
            return await self.gateway.query_robot(robot_id)
        except UpstreamUnavailableError as e:
            self._stats.upstream_errors += 1
            logger.warning("robot_query_failed", robot_id=robot_id, error=str(e))
            return None

    async def _submit(self, record: MissionRecord, robot_id: str | None) -> bool:
        code = record.mission_code
        match self.queue.advance(code, MissionStatus.ASSIGNED, assigned_robot_id=robot_id):
            case Err(error):
                logger.warning("mission_assign_failed", mission_code=code, error=str(error))
                return False
            case Ok(record):
                pass

        try:
            response = await self.gateway.submit_mission(
                build_request(record, robot_id, self.settings.org_id)
            )
        except UpstreamUnavailableError as e:
            self._stats.upstream_errors += 1
            self._stats.last_error = str(e)
            self.queue.update(code, error_message=str(e), retry_count=record.retry_count + 1)
            logger.warning(
                "mission_submit_deferred",
                mission_code=code,
                retry_count=record.retry_count + 1,
                error=str(e),
            )
            return False

        if not response.success and self._already_accepted(record, response):
            logger.info("mission_submit_already_accepted", mission_code=code, retry_count=record.retry_count)
        elif not response.success:
            self._stats.missions_failed += 1
            self.queue.advance(code, MissionStatus.FAILED, error_message=response.message)
            logger.warning(
                "mission_submit_rejected",
                mission_code=code,
                code=response.code,
                message=response.message,
            )
            return False

        self._stats.missions_submitted += 1
        match self.queue.advance(code, MissionStatus.SUBMITTED_TO_AMR, error_message=None):
            case Err(error):
                # Cancelled mid-submit: forward_cancellations stops the gateway job.
                self.queue.update(code, submitted_to_amr_utc=self._clock())
                logger.warning("mission_cancelled_during_submit", mission_code=code, error=str(error))
                return False
            case Ok():
                pass
        logger.info("mission_dispatched", mission_code=code, robot_id=robot_id, priority=record.priority)
        return True

    @staticmethod
    def _already_accepted(record: MissionRecord, response: GatewayResponse) -> bool:
        """A resubmission the gateway rejects as a duplicate was accepted by an earlier attempt."""
        return record.retry_count > 0 and response.code == ConflictError.code

    # === Cancellation ===

    async def forward_cancellations(self) -> int:
        """Stop gateway jobs of missions cancelled in the queue.

        Each mission is sent once, then polled until the gateway reports the
        job closed.  Returns how many missions settled this cycle.
        """
        settled = 0
        for record in self.queue.list_awaiting_upstream_cancel():
            if record.cancel_forwarded_utc is None and not await self._forward_cancel(record):
                continue
            if await self._settle_cancel(record):
                settled += 1
        return settled

    async def _forward_cancel(self, record: MissionRecord) -> bool:
        code = record.mission_code
        try:
            response = await self.gateway.cancel_mission(
                record.cancel_request_id or record.request_id,
                code,
                record.cancel_mode,
                record.cancel_reason,
            )
        except UpstreamUnavailableError as e:
            self._stats.upstream_errors += 1
            self._stats.last_error = str(e)
            logger.warning("mission_cancel_deferred", mission_code=code, error=str(e))
            return False

        now = self._clock()
        if not response.success:
            self.queue.update(
                code, error_message=response.message, cancel_forwarded_utc=now, cancel_settled_utc=now
            )
            logger.warning(
                "mission_cancel_rejected",
                mission_code=code,
                code=response.code,
                message=response.message,
            )
            return False

        self.queue.update(code, cancel_forwarded_utc=now)
        self._stats.cancels_forwarded += 1
        logger.info("mission_cancel_forwarded", mission_code=code, cancel_mode=record.cancel_mode)
        return True

    async def _settle_cancel(self, record: MissionRecord) -> bool:
        code = record.mission_code
        try:
            jobs = await self.gateway.query_jobs(JobQuery(job_code=code, limit=1))
        except UpstreamUnavailableError as e:
            self._stats.upstream_errors += 1
            logger.warning("job_status_poll_failed", mission_code=code, error=str(e))
            return False

        status = jobs[0].status if jobs else None
        if status is not None and status not in _CLOSED_JOB_CODES:
            return False
        self.queue.update(code, cancel_settled_utc=self._clock())
        logger.info("mission_cancel_settled", mission_code=code, job_status=status)
        return True

    # === Status polling ===

    async def poll_statuses(self) -> int:
        """Read job status for in-flight missions; returns how many changed state."""
        changed = 0
        for record in self.queue.list_in_flight():
            try:
                jobs = await self.gateway.query_jobs(JobQuery(job_code=record.mission_code, limit=1))
            except UpstreamUnavailableError as e:
                self._stats.upstream_errors += 1
                logger.warning("job_status_poll_failed", mission_code=record.mission_code, error=str(e))
                continue
            if not jobs:
                logger.debug("job_not_reported", mission_code=record.mission_code)
                continue
            if self._apply_status(record, jobs[0]):
                changed += 1
        return changed

    def _apply_status(self, record: MissionRecord, job: JobRecord) -> bool:
        code = record.mission_code
        try:
            status = JobStatus(job.status)
        except ValueError:
            logger.warning("unknown_job_status", mission_code=code, status=job.status)
            return False

        if status in _EXECUTING_JOB_CODES:
            if record.status == MissionStatus.EXECUTING:
                return False
            return self.queue.advance(code, MissionStatus.EXECUTING).is_ok()

        if status == JobStatus.COMPLETED:
            robot_id = job.robot_id or record.assigned_robot_id
            if self.queue.advance(code, MissionStatus.COMPLETED, assigned_robot_id=robot_id).is_err():
                return False
            self._stats.missions_completed += 1
            logger.info("mission_completed", mission_code=code, robot_id=robot_id)
            self._evaluate_chaining(robot_id, code)
            return True

        if status == JobStatus.CANCELLED:
            if self.queue.advance(code, MissionStatus.CANCELLED, cancel_settled_utc=self._clock()).is_err():
                return False
            self._stats.missions_cancelled += 1
            logger.info("mission_cancelled_upstream", mission_code=code)
            return True
        return False

    def _evaluate_chaining(self, robot_id: str | None, mission_code: str) -> None:
        if self.evaluator is None or not robot_id:
            return
        match self.evaluator.evaluate(robot_id, mission_code):
            case Ok(opportunity):
                if opportunity.decision == OpportunityDecision.JOB_CHAINED:
                    self._stats.jobs_chained += 1
                logger.info(
                    "chaining_evaluated",
                    robot_id=robot_id,
                    mission_code=mission_code,
                    decision=opportunity.decision.value,
                    chained_mission_code=opportunity.chained_mission_code,
                )
            case Err(error):
                logger.warning("chaining_failed", robot_id=robot_id, mission_code=mission_code, error=str(error))

    # === Positions ===

    async def poll_positions(self) -> dict[str, str]:
        """Query every fleet robot; returns the robots whose node changed."""
        changes: dict[str, str] = {}
        for robot_id in self.settings.fleet_robot_ids:
            snapshot = await self._query_robot(robot_id)
            if snapshot is None or not self.positions.update(robot_id, snapshot.node_code):
                continue
            changes[robot_id] = snapshot.node_code
            self._stats.position_changes += 1
            if self.position_listener is not None:
                self.position_listener(robot_id, snapshot.node_code)
        return changes

    # === Health & Stats ===

    def health(self) -> DispatcherHealth:
        backend_health = self.backend.health()
        return DispatcherHealth(
            healthy=self._running and backend_health.healthy,
            backend=backend_health,
            stats=self._stats,
        )

    def get_stats(self) -> DispatchStats:
        return self._stats


__all__ = ["DispatchStats", "Dispatcher", "DispatcherHealth", "build_request"]
