"""Opportunistic job chaining evaluator.

Manifesto:
    When a robot finishes a mission it is already standing somewhere
    useful.  Before sending it home empty, look for the nearest pending
    job in the same map and hand it over, but never more than the map's
    configured number of times in a row, so the robot eventually returns
    to the map it started in.

Architecture:
    ::

        evaluate(robot, completed_mission)
          │
          ├── decided already? ──────────────────────► return stored decision
          ├── streak count >= map max? ──────────────► LimitReached
          ├── robot position unknown? ───────────────► NoJobsAvailable
          ├── nearest compatible job in current map ─► JobChained (Assigned, opportunistic)
          ├── cross-map on and jobs in original map ─► ReturnToOriginal
          └── otherwise ─────────────────────────────► NoJobsAvailable

    Candidates are ordered by distance, then priority (higher first), then
    age (older first).  Evaluation of one robot is serialized by a
    per-robot lock inside a process.  Across processes, an evaluator first
    claims the Pending record with a conditional write and only the claim
    holder assigns a job; the decision is written only while that claim
    still stands, and a job assigned under a lost claim is put back.

Tags:
    fleetspine, chaining, opportunistic, dispatch, idempotent
"""

from __future__ import annotations

import math
from datetime import datetime, timedelta
from uuid import uuid4

from fleetspine.chaining.models import Candidate, MapQueueConfig, RobotJobOpportunity
from fleetspine.chaining.repository import (
    CoordinateSource,
    MapQueueConfigRepository,
    OpportunityRepository,
)
from fleetspine.core.enums import MissionStatus, OpportunityDecision
from fleetspine.core.errors import ConcurrencyConflictError, MissionNotFoundError
from fleetspine.core.keyed_lock import KeyedLock
from fleetspine.core.logging import get_logger
from fleetspine.core.result import Err, Ok, Result
from fleetspine.core.settings import FleetSettings, get_settings
from fleetspine.core.timestamps import Clock, utc_now
from fleetspine.queue.models import MissionRecord
from fleetspine.queue.repository import MissionRepository

logger = get_logger(__name__)


def euclidean(a: tuple[float, float], b: tuple[float, float]) -> float:
    return math.hypot(a[0] - b[0], a[1] - b[1])


class OpportunisticJobEvaluator:
    """Decides what a robot does next after completing a mission."""

    def __init__(
        self,
        missions: MissionRepository,
        opportunities: OpportunityRepository,
        map_configs: MapQueueConfigRepository,
        coordinates: CoordinateSource,
        *,
        settings: FleetSettings | None = None,
        clock: Clock = utc_now,
    ) -> None:
        self.missions = missions
        self.opportunities = opportunities
        self.map_configs = map_configs
        self.coordinates = coordinates
        self.settings = settings or get_settings()
        self._clock = clock
        self._robot_locks = KeyedLock()

    # === Public API ===

    def evaluate(
        self,
        robot_id: str,
        completed_mission_code: str,
        *,
        node_code: str | None = None,
        position: tuple[float, float] | None = None,
        current_map_code: str | None = None,
    ) -> Result[RobotJobOpportunity]:
        """Evaluate *robot_id* after it completed *completed_mission_code*."""
        with self._robot_locks.hold(robot_id):
            existing = self.opportunities.get(robot_id, completed_mission_code)
            if existing is not None and existing.is_decided:
                logger.debug(
                    "chaining_already_decided",
                    robot_id=robot_id,
                    mission_code=completed_mission_code,
                    decision=existing.decision.value,
                )
                return Ok(existing)

            completed = self.missions.get(completed_mission_code) or self.missions.get_history(
                completed_mission_code
            )
            if completed is None:
                return Err(MissionNotFoundError(completed_mission_code).with_context(robot_id=robot_id))

            opportunity = existing or self._snapshot(
                robot_id, completed, node_code, position, current_map_code
            )
            token = uuid4().hex
            now = self._clock()
            stale_before = now - timedelta(seconds=self.settings.chaining_claim_ttl_seconds)
            if not self.opportunities.claim(opportunity.id, token, now, stale_before=stale_before):
                stored = self.opportunities.get(robot_id, completed_mission_code)
                logger.info(
                    "chaining_claimed_elsewhere",
                    robot_id=robot_id,
                    mission_code=completed_mission_code,
                    decision=stored.decision.value,
                )
                return Ok(stored)
            try:
                return Ok(self._decide(opportunity, token))
            except Exception:
                self.opportunities.release_claim(opportunity.id, token)
                raise

    # === Snapshot ===

    def _snapshot(
        self,
        robot_id: str,
        completed: MissionRecord,
        node_code: str | None,
        position: tuple[float, float] | None,
        current_map_code: str | None,
    ) -> RobotJobOpportunity:
        now = self._clock()
        node = node_code or (completed.steps[-1].position if completed.steps else completed.target_cell_code)
        if position is None and node:
            position = self.coordinates.coordinates(node)
        current_map = current_map_code or completed.map_code

        previous = self.opportunities.latest_for_robot(robot_id, exclude_mission=completed.mission_code)
        if completed.is_opportunistic and previous is not None:
            original_map = previous.original_map_code
            streak = previous.consecutive_jobs_in_map
        else:
            original_map = completed.map_code or current_map
            streak = 0

        return self.opportunities.ensure(
            RobotJobOpportunity(
                robot_id=robot_id,
                completed_mission_code=completed.mission_code,
                current_map_code=current_map,
                original_map_code=original_map,
                consecutive_jobs_in_map=streak,
                decision=OpportunityDecision.PENDING,
                created_utc=now,
                node_code=node,
                x=position[0] if position else None,
                y=position[1] if position else None,
            )
        )

    # === Decision ===

    def _decide(self, opp: RobotJobOpportunity, token: str) -> RobotJobOpportunity:
        now = self._clock()
        current_map = opp.current_map_code
        if not current_map:
            return self._finish(opp, token, OpportunityDecision.NO_JOBS_AVAILABLE, "Robot map is unknown")

        config = self.map_configs.get_or_create(current_map, now)
        limit = config.max_consecutive_opportunistic_jobs
        if opp.consecutive_jobs_in_map >= limit:
            return self._finish(
                opp,
                token,
                OpportunityDecision.LIMIT_REACHED,
                f"Reached maximum consecutive jobs ({limit}) in map {current_map}",
                return_map_code=opp.original_map_code,
            )

        if opp.x is None or opp.y is None:
            return self._finish(
                opp,
                token,
                OpportunityDecision.NO_JOBS_AVAILABLE,
                "Unable to determine robot position",
                return_map_code=opp.original_map_code,
            )

        pending = self._compatible(opp.robot_id, current_map)
        ranked = self._rank((opp.x, opp.y), pending)
        by_code = {r.mission_code: r for r in pending}
        for candidate in ranked:
            record = by_code[candidate.mission_code]
            assigned = self.missions.transition(
                record,
                MissionStatus.ASSIGNED,
                now,
                assigned_robot_id=opp.robot_id,
                is_opportunistic=True,
            )
            if assigned.is_err():
                if isinstance(assigned.error, ConcurrencyConflictError):
                    logger.info(
                        "chaining_candidate_taken",
                        robot_id=opp.robot_id,
                        mission_code=candidate.mission_code,
                    )
                    continue
                logger.warning(
                    "chaining_assign_failed",
                    robot_id=opp.robot_id,
                    mission_code=candidate.mission_code,
                    error=str(assigned.error),
                )
                continue
            return self._finish(
                opp,
                token,
                OpportunityDecision.JOB_CHAINED,
                f"Selected nearest job: {candidate.mission_code} "
                f"(distance: {candidate.distance:.2f}m, priority: {candidate.priority})",
                chained_mission_code=candidate.mission_code,
                consecutive_jobs_in_map=opp.consecutive_jobs_in_map + 1,
                distance=candidate.distance,
            )

        if self._should_return_to_original(opp, config):
            return self._finish(
                opp,
                token,
                OpportunityDecision.RETURN_TO_ORIGINAL,
                f"No pending jobs in current map; jobs waiting in original map {opp.original_map_code}",
                return_map_code=opp.original_map_code,
            )

        if pending and not ranked:
            reason = "No pending jobs have valid coordinates"
        else:
            reason = "No pending jobs in current map"
        return self._finish(
            opp,
            token,
            OpportunityDecision.NO_JOBS_AVAILABLE,
            reason,
            return_map_code=opp.original_map_code,
        )

    def _compatible(self, robot_id: str, map_code: str) -> list[MissionRecord]:
        records = self.missions.list_pending_in_map(map_code, self.settings.pending_job_scan_limit)
        return [r for r in records if not r.robot_ids or robot_id in r.robot_ids]

    def _job_coordinates(self, record: MissionRecord) -> tuple[float, float] | None:
        if record.start_x is not None and record.start_y is not None:
            return (float(record.start_x), float(record.start_y))
        node = record.first_position
        return self.coordinates.coordinates(node) if node else None

    def _rank(self, origin: tuple[float, float], records: list[MissionRecord]) -> list[Candidate]:
        candidates = []
        for record in records:
            coords = self._job_coordinates(record)
            if coords is None:
                continue
            candidates.append(
                Candidate(
                    mission_code=record.mission_code,
                    distance=euclidean(origin, coords),
                    priority=record.priority,
                    created_utc=record.created_utc,
                )
            )
        return sorted(candidates, key=lambda c: c.sort_key)

    def _should_return_to_original(self, opp: RobotJobOpportunity, config: MapQueueConfig) -> bool:
        if not config.enable_cross_map_optimization:
            return False
        original = opp.original_map_code
        if not original or original.lower() == (opp.current_map_code or "").lower():
            return False
        return bool(self._compatible(opp.robot_id, original))

    def _finish(
        self,
        opp: RobotJobOpportunity,
        token: str,
        decision: OpportunityDecision,
        reason: str,
        *,
        chained_mission_code: str | None = None,
        return_map_code: str | None = None,
        consecutive_jobs_in_map: int | None = None,
        distance: float | None = None,
    ) -> RobotJobOpportunity:
        now = self._clock()
        written = self.opportunities.record_decision(
            opp.id,
            decision,
            reason,
            now,
            consecutive_jobs_in_map=(
                consecutive_jobs_in_map if consecutive_jobs_in_map is not None else opp.consecutive_jobs_in_map
            ),
            chained_mission_code=chained_mission_code,
            return_map_code=return_map_code,
            claim_token=token,
        )
        stored = self.opportunities.get(opp.robot_id, opp.completed_mission_code)
        if not written:
            logger.warning(
                "chaining_decision_raced",
                robot_id=opp.robot_id,
                mission_code=opp.completed_mission_code,
                decision=stored.decision.value,
            )
            if chained_mission_code:
                self._release(chained_mission_code, opp.robot_id, now)
            return stored
        if decision == OpportunityDecision.JOB_CHAINED and opp.current_map_code and distance is not None:
            self.map_configs.record_chained(opp.current_map_code, distance, now)
        logger.info(
            "chaining_decided",
            robot_id=opp.robot_id,
            completed_mission_code=opp.completed_mission_code,
            decision=decision.value,
            reason=reason,
            chained_mission_code=chained_mission_code,
        )
        return stored

    def _release(self, mission_code: str, robot_id: str, now: datetime) -> None:
        """Put a job assigned under a lost claim back in the queue."""
        record = self.missions.get(mission_code)
        if record is None or record.status != MissionStatus.ASSIGNED or record.assigned_robot_id != robot_id:
            return
        result = self.missions.unassign(record, now)
        logger.warning(
            "chaining_assignment_released",
            robot_id=robot_id,
            mission_code=mission_code,
            released=result.is_ok(),
        )


__all__ = ["OpportunisticJobEvaluator", "euclidean"]
