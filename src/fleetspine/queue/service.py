"""Mission queue service.

Public entry point for submitting, cancelling, querying and advancing
missions.  Validation, conflict, not-found and illegal-transition
failures come back as ``Err`` values; nothing raises across this
boundary.

Examples:
    >>> service = MissionQueueService(MissionRepository(conn))
    >>> service.submit(MissionSubmit("M-1", "R-1", steps=[MissionStep(1, "A1")]))
    Ok(None)
    >>> service.submit(MissionSubmit("M-2", "R-1"))
    Err(DuplicateRequestIdError('RequestId:[R-1] is already used', ...))
"""

from __future__ import annotations

from typing import Any

from fleetspine.core.enums import CancelMode, MissionStatus
from fleetspine.core.errors import (
    InvalidTransitionError,
    MissionNotFoundError,
    ValidationFailedError,
)
from fleetspine.core.logging import get_logger
from fleetspine.core.result import Err, Ok, Result
from fleetspine.core.settings import FleetSettings, get_settings
from fleetspine.core.timestamps import Clock, utc_now
from fleetspine.queue.models import MissionQuery, MissionRecord, MissionSubmit
from fleetspine.queue.repository import MissionRepository

logger = get_logger(__name__)


def _blank(value: str | None) -> bool:
    return value is None or not str(value).strip()


class MissionQueueService:
    """Mission lifecycle operations over a :class:`MissionRepository`."""

    def __init__(
        self,
        repository: MissionRepository,
        *,
        settings: FleetSettings | None = None,
        clock: Clock = utc_now,
    ) -> None:
        self.repository = repository
        self.settings = settings or get_settings()
        self._clock = clock

    # === Submit ===

    def submit(self, submit: MissionSubmit) -> Result[None]:
        """Reserve the mission's keys and create a Pending record."""
        for field_name in ("org_id", "request_id", "mission_code"):
            if _blank(getattr(submit, field_name)):
                return Err(
                    ValidationFailedError(
                        f"Required field {field_name} must be provided.", field=field_name
                    )
                )

        result = self.repository.reserve(
            submit, self._clock(), default_priority=self.settings.default_priority
        )
        match result:
            case Ok(record):
                logger.info(
                    "mission_submitted",
                    mission_code=record.mission_code,
                    request_id=record.request_id,
                    priority=record.priority,
                    trigger_source=record.trigger_source,
                )
                return Ok(None)
            case Err(error):
                logger.warning(
                    "mission_rejected",
                    mission_code=submit.mission_code,
                    request_id=submit.request_id,
                    error=str(error),
                )
                return Err(error)

    # === Cancel ===

    def cancel(
        self,
        mission_code: str,
        request_id: str,
        cancel_mode: str | None = None,
        reason: str | None = None,
    ) -> Result[MissionRecord]:
        """Mark a mission cancelled.

        Cancelling an already-cancelled mission returns it unchanged.  A
        mission already handed to the gateway is stopped there by the
        dispatcher on its next cycle.
        """
        if _blank(mission_code):
            return Err(ValidationFailedError("Required field missionCode must be provided.", field="mission_code"))
        if _blank(request_id):
            return Err(ValidationFailedError("Required field requestId must be provided.", field="request_id"))

        mode = CancelMode.parse(cancel_mode)
        if mode is None:
            return Err(
                ValidationFailedError(
                    "cancelMode must be one of FORCE, NORMAL, REDIRECT_START.",
                    field="cancel_mode",
                    value=cancel_mode,
                )
            )

        record = self.repository.get(mission_code)
        if record is None:
            return Err(MissionNotFoundError(mission_code))
        if record.status == MissionStatus.CANCELLED:
            return Ok(record)
        if record.is_terminal:
            return Err(
                InvalidTransitionError(
                    f"Mission {mission_code} is already {record.status.value}"
                ).with_context(mission_code=mission_code)
            )

        result = self.repository.transition(
            record,
            MissionStatus.CANCELLED,
            self._clock(),
            cancel_mode=mode,
            cancel_reason=reason,
            cancel_request_id=request_id,
        )
        if result.is_ok():
            logger.info("mission_cancelled", mission_code=mission_code, cancel_mode=mode.value)
        return result

    # === Query ===

    def query(self, filters: MissionQuery | None = None) -> list[MissionRecord]:
        filters = filters or MissionQuery()
        if filters.limit is None or filters.limit <= 0:
            filters.limit = self.settings.default_query_limit
        return self.repository.query(filters)

    def get(self, mission_code: str) -> Result[MissionRecord]:
        record = self.repository.get(mission_code)
        if record is None:
            return Err(MissionNotFoundError(mission_code))
        return Ok(record)

    # === Lifecycle ===

    def advance(self, mission_code: str, target: MissionStatus, **fields: Any) -> Result[MissionRecord]:
        """Move a mission to *target* (version-checked)."""
        record = self.repository.get(mission_code)
        if record is None:
            return Err(MissionNotFoundError(mission_code))
        if record.status == target:
            return Ok(record)
        result = self.repository.transition(record, target, self._clock(), **fields)
        if result.is_ok():
            logger.debug(
                "mission_advanced",
                mission_code=mission_code,
                from_status=record.status.value,
                to_status=target.value,
            )
        return result

    def update(self, mission_code: str, **fields: Any) -> Result[MissionRecord]:
        """Update non-status fields (robot assignment, error bookkeeping)."""
        record = self.repository.get(mission_code)
        if record is None:
            return Err(MissionNotFoundError(mission_code))
        return self.repository.update_fields(record, self._clock(), **fields)

    def list_dispatchable(self, limit: int = 50) -> list[MissionRecord]:
        return self.repository.list_dispatchable(limit)

    def list_in_flight(self, limit: int = 100) -> list[MissionRecord]:
        """Missions handed to the gateway and not yet finished."""
        return self.repository.list_by_status(
            [MissionStatus.SUBMITTED_TO_AMR, MissionStatus.EXECUTING], limit
        )

    def list_awaiting_upstream_cancel(self, limit: int = 100) -> list[MissionRecord]:
        """Cancelled missions the gateway still has to stop."""
        return self.repository.list_awaiting_upstream_cancel(limit)

    def count_active_for_template(self, template_code: str) -> int:
        return self.repository.count_active_for_template(template_code)


__all__ = ["MissionQueueService"]
