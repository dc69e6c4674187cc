"""Schedule engine - fires due schedules into the mission queue.

Manifesto:
    The SchedulerService combines a timing backend, the schedule
    repository, the lease manager and the mission queue.  The beat-as-poller
    pattern decouples timing from schedule evaluation, so a test can call
    :meth:`SchedulerService.run_due` directly with a fake clock.

┌──────────────────────────────────────────────────────────────────────────────┐
│  tick()                                                                       │
│    1. reclaim_stale_leases(ttl)                                               │
│    2. repeat: get_due(now, batch) until no new schedule is returned           │
│    3. for each due schedule:                                                  │
│         ├── acquire lease ── Err(LockNotHeld) ──► run log "Lock not acquired" │
│         ├── skip_if_running + active instance ──► Skipped, next run advances  │
│         │      (Once schedules are disabled, skip reason kept as last_error)  │
│         ├── submit MissionSubmit(trigger_source=Scheduled)                    │
│         │      ├── Ok  ──► Queued, execution_count + 1                        │
│         │      └── Err ──► Failed, last_error kept                            │
│         ├── Once / max_executions reached ──► disabled                        │
│         ├── unexpected error ──► Failed + next run recorded, Once disabled    │
│         └── finally: release lease                                            │
└──────────────────────────────────────────────────────────────────────────────┘

A failing schedule never halts the loop: errors are recorded on the
schedule and its run log, and the next run is still computed.

Tags:
    fleetspine, scheduling, orchestrator, beat-as-poller, lease
"""

from __future__ import annotations

from dataclasses import dataclass, field, fields
from datetime import datetime
from typing import Any

from fleetspine.core.enums import ScheduleRunStatus, TriggerSource, TriggerType
from fleetspine.core.errors import ScheduleNotFoundError, ValidationFailedError, error_code
from fleetspine.core.logging import get_logger
from fleetspine.core.result import Err, Ok, Result
from fleetspine.core.settings import FleetSettings, get_settings
from fleetspine.core.timestamps import Clock, to_iso8601, utc_now
from fleetspine.queue.models import MissionStep, MissionSubmit
from fleetspine.queue.service import MissionQueueService
from fleetspine.scheduling.lock_manager import LockManager
from fleetspine.scheduling.models import Schedule, ScheduleCreate, ScheduleRun, ScheduleUpdate
from fleetspine.scheduling.protocol import BackendHealth, SchedulerBackend
from fleetspine.scheduling.repository import ScheduleRepository, next_run_for
from fleetspine.scheduling.thread_backend import ThreadSchedulerBackend

logger = get_logger(__name__)

LOCK_NOT_ACQUIRED = "Lock not acquired"

_RESERVED_PARAMS = {"mission_code", "request_id", "trigger_source"}
_SUBMIT_FIELDS = {f.name for f in fields(MissionSubmit)} - _RESERVED_PARAMS


def build_submit(schedule: Schedule, mission_code: str, trigger_source: TriggerSource) -> MissionSubmit:
    """Turn a schedule's saved mission parameters into a submission."""
    params: dict[str, Any] = dict(schedule.mission_params)
    unknown = set(params) - _SUBMIT_FIELDS
    if unknown:
        raise ValidationFailedError(f"Unknown mission parameters: {sorted(unknown)}", field="mission_params")

    params["steps"] = [
        step if isinstance(step, MissionStep) else MissionStep.from_dict(step)
        for step in params.get("steps") or []
    ]
    params.setdefault("template_code", schedule.template_code)
    params.setdefault("created_by", schedule.created_by)
    return MissionSubmit(
        mission_code=mission_code,
        request_id=mission_code,
        trigger_source=trigger_source,
        **params,
    )


@dataclass
class SchedulerStats:
    tick_count: int = 0
    schedules_processed: int = 0
    schedules_skipped: int = 0
    schedules_failed: int = 0
    last_tick: datetime | None = None
    last_error: str | None = None


@dataclass
class SchedulerHealth:
    """Health status for the scheduler service."""

    healthy: bool
    backend: BackendHealth
    schedules_enabled: int = 0
    active_leases: int = 0
    stats: SchedulerStats = field(default_factory=SchedulerStats)

    def to_dict(self) -> dict[str, Any]:
        return {
            "healthy": self.healthy,
            "backend": self.backend.to_dict(),
            "schedules_enabled": self.schedules_enabled,
            "active_leases": self.active_leases,
            "last_tick": to_iso8601(self.stats.last_tick),
            "stats": {
                "tick_count": self.stats.tick_count,
                "schedules_processed": self.stats.schedules_processed,
                "schedules_skipped": self.stats.schedules_skipped,
                "schedules_failed": self.stats.schedules_failed,
                "last_error": self.stats.last_error,
            },
        }


class SchedulerService:
    """Schedule engine - beat-as-poller over the schedule table.

    Example:
        >>> service = SchedulerService(
        ...     ScheduleRepository(conn),
        ...     LockManager(conn),
        ...     queue_service,
        ... )
        >>> service.create_schedule(ScheduleCreate(
        ...     name="every-15",
        ...     template_code="PATROL",
        ...     trigger_type="Interval",
        ...     interval_minutes=15,
        ... ))
        >>> service.start()
    """

    def __init__(
        self,
        repository: ScheduleRepository,
        lock_manager: LockManager,
        queue: MissionQueueService,
        *,
        backend: SchedulerBackend | None = None,
        settings: FleetSettings | None = None,
        clock: Clock = utc_now,
    ) -> None:
        self.repository = repository
        self.lock_manager = lock_manager
        self.queue = queue
        self.backend = backend or ThreadSchedulerBackend(thread_name="fleet-scheduler")
        self.settings = settings or get_settings()
        self._clock = clock
        self._stats = SchedulerStats()
        self._running = False

    # === Lifecycle ===

    def start(self) -> None:
        if self._running:
            logger.warning("scheduler_already_running")
            return
        interval = self.settings.scheduler_interval_seconds
        logger.info("scheduler_starting", backend=self.backend.name, interval_seconds=interval)
        self.backend.start(self.tick, interval)
        self._running = True

    def stop(self) -> None:
        if not self._running:
            return
        self.backend.stop()
        self._running = False
        logger.info("scheduler_stopped")

    @property
    def is_running(self) -> bool:
        return self._running

    # === Tick Processing ===

    async def tick(self) -> None:
        """Single scheduler tick, called by the backend."""
        try:
            self.run_due()
        except Exception as e:
            self._stats.last_error = str(e)
            logger.exception("scheduler_tick_failed", error=str(e))

    def run_due(self) -> int:
        """Fire every due schedule; returns the number of schedules handled."""
        now = self._clock()
        self._stats.tick_count += 1
        self._stats.last_tick = now

        self.lock_manager.reclaim_stale_leases(self.settings.lease_ttl_seconds)

        seen: set[str] = set()
        handled = 0
        while True:
            due = [
                s for s in self.repository.get_due(now, self.settings.scheduler_batch_size) if s.id not in seen
            ]
            if not due:
                break
            for schedule in due:
                seen.add(schedule.id)
                self._process_schedule(schedule, now)
                handled += 1

        if handled:
            logger.info("scheduler_tick_complete", handled=handled)
        return handled

    def _process_schedule(self, schedule: Schedule, now: datetime) -> None:
        match self.lock_manager.acquire(schedule.id):
            case Ok(token):
                pass
            case Err(err):
                logger.info(
                    "schedule_lock_not_acquired",
                    schedule_id=schedule.id,
                    schedule_name=schedule.name,
                    error_code=error_code(err),
                )
                self._log_run(schedule, now, ScheduleRunStatus.SKIPPED, skip_reason=LOCK_NOT_ACQUIRED)
                self._stats.schedules_skipped += 1
                return

        try:
            if schedule.skip_if_running:
                active = self.queue.count_active_for_template(schedule.template_code)
                if active > 0:
                    self._skip_running(schedule, token, now, active)
                    return

            mission_code = f"sched{schedule.id}_{now.strftime('%Y%m%d%H%M%S')}"
            outcome = self._enqueue(schedule, mission_code, TriggerSource.SCHEDULED)
            self._record(schedule, token, now, mission_code, outcome)
        except Exception as e:
            self._stats.schedules_failed += 1
            self._stats.last_error = str(e)
            logger.exception("schedule_processing_failed", schedule_id=schedule.id, error=str(e))
            self._record_failure(schedule, token, now, e)
        finally:
            self.lock_manager.release(schedule.id, token)

    def _enqueue(self, schedule: Schedule, mission_code: str, source: TriggerSource) -> Result[None]:
        try:
            return self.queue.submit(build_submit(schedule, mission_code, source))
        except Exception as e:
            logger.exception(
                "schedule_enqueue_failed", schedule_id=schedule.id, mission_code=mission_code, error=str(e)
            )
            return Err(e)

    def _skip_running(self, schedule: Schedule, token: str, now: datetime, active: int) -> None:
        reason = f"Skipped: {active} active instance(s) already running"
        if schedule.trigger_type == TriggerType.ONCE:
            schedule.is_enabled = False
        self.repository.record_outcome(
            schedule.id,
            token,
            now,
            last_status="Skipped",
            last_error=reason,
            execution_count=schedule.execution_count,
            is_enabled=schedule.is_enabled,
            next_run_utc=next_run_for(schedule, now),
        )
        self._log_run(schedule, now, ScheduleRunStatus.SKIPPED, skip_reason=reason)
        self._stats.schedules_skipped += 1
        logger.info(
            "schedule_skipped_running",
            schedule_id=schedule.id,
            template_code=schedule.template_code,
            active=active,
        )

    def _record(
        self,
        schedule: Schedule,
        token: str,
        now: datetime,
        mission_code: str,
        outcome: Result[None],
    ) -> None:
        schedule.execution_count += 1
        if schedule.trigger_type == TriggerType.ONCE or schedule.is_exhausted:
            schedule.is_enabled = False

        match outcome:
            case Ok():
                status, error = ScheduleRunStatus.QUEUED, None
                self._stats.schedules_processed += 1
            case Err(err):
                status, error = ScheduleRunStatus.FAILED, str(err)
                self._stats.schedules_failed += 1

        self.repository.record_outcome(
            schedule.id,
            token,
            now,
            last_status=status.value,
            last_error=error,
            execution_count=schedule.execution_count,
            is_enabled=schedule.is_enabled,
            next_run_utc=next_run_for(schedule, now),
        )
        self._log_run(schedule, now, status, mission_code=mission_code, error=error)

        if error:
            logger.warning("schedule_fire_failed", schedule_id=schedule.id, mission_code=mission_code, error=error)
        else:
            logger.info(
                "schedule_fired",
                schedule_id=schedule.id,
                schedule_name=schedule.name,
                mission_code=mission_code,
                execution_count=schedule.execution_count,
                enabled=schedule.is_enabled,
            )

    def _record_failure(self, schedule: Schedule, token: str, now: datetime, error: Exception) -> None:
        """Best-effort store of an unexpected failure so the schedule keeps moving."""
        if schedule.trigger_type == TriggerType.ONCE:
            schedule.is_enabled = False
        try:
            self.repository.record_outcome(
                schedule.id,
                token,
                now,
                last_status=ScheduleRunStatus.FAILED.value,
                last_error=str(error),
                execution_count=schedule.execution_count,
                is_enabled=schedule.is_enabled,
                next_run_utc=next_run_for(schedule, now),
            )
            self._log_run(schedule, now, ScheduleRunStatus.FAILED, error=str(error))
        except Exception as e:
            logger.error("schedule_failure_not_recorded", schedule_id=schedule.id, error=str(e))

    def _log_run(
        self,
        schedule: Schedule,
        now: datetime,
        status: ScheduleRunStatus,
        *,
        mission_code: str | None = None,
        error: str | None = None,
        skip_reason: str | None = None,
        scheduled_for: datetime | None = None,
    ) -> None:
        self.repository.create_run(
            ScheduleRun(
                schedule_id=schedule.id,
                started_utc=now,
                status=status,
                scheduled_for_utc=scheduled_for or schedule.next_run_utc,
                completed_utc=now,
                mission_code=mission_code,
                error=error,
                skip_reason=skip_reason,
            )
        )

    # === Manual Operations ===

    def create_schedule(self, spec: ScheduleCreate) -> Result[Schedule]:
        return self.repository.create(spec, self._clock())

    def update_schedule(self, schedule_id: str, updates: ScheduleUpdate) -> Result[Schedule]:
        return self.repository.update(schedule_id, updates, self._clock())

    def trigger(self, schedule_id: str) -> Result[str]:
        """Fire a schedule now without moving its next run.

        Returns:
            The created mission code
        """
        schedule = self.repository.get(schedule_id)
        if schedule is None:
            return Err(ScheduleNotFoundError(schedule_id))

        now = self._clock()
        mission_code = f"manual{schedule.id}_{now.strftime('%Y%m%d%H%M%S')}"
        outcome = self._enqueue(schedule, mission_code, TriggerSource.MANUAL)
        match outcome:
            case Ok():
                self._log_run(
                    schedule, now, ScheduleRunStatus.QUEUED, mission_code=mission_code, scheduled_for=now
                )
                logger.info("schedule_triggered", schedule_id=schedule_id, mission_code=mission_code)
                return Ok(mission_code)
            case Err(err):
                self._log_run(
                    schedule,
                    now,
                    ScheduleRunStatus.FAILED,
                    mission_code=mission_code,
                    error=str(err),
                    scheduled_for=now,
                )
                return Err(err)

    def pause(self, schedule_id: str) -> Result[Schedule]:
        result = self.repository.set_enabled(schedule_id, False, self._clock())
        if result.is_ok():
            logger.info("schedule_paused", schedule_id=schedule_id)
        return result

    def resume(self, schedule_id: str) -> Result[Schedule]:
        result = self.repository.set_enabled(schedule_id, True, self._clock())
        if result.is_ok():
            logger.info(
                "schedule_resumed",
                schedule_id=schedule_id,
                next_run_utc=to_iso8601(result.unwrap().next_run_utc),
            )
        return result

    # === Health & Stats ===

    def health(self) -> SchedulerHealth:
        backend_health = self.backend.health()
        return SchedulerHealth(
            healthy=self._running and backend_health.healthy,
            backend=backend_health,
            schedules_enabled=self.repository.count_enabled(),
            active_leases=len(self.lock_manager.list_active_leases()),
            stats=self._stats,
        )

    def get_stats(self) -> SchedulerStats:
        return self._stats


__all__ = [
    "LOCK_NOT_ACQUIRED",
    "SchedulerHealth",
    "SchedulerService",
    "SchedulerStats",
    "build_submit",
]
