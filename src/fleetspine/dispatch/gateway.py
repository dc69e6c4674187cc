"""
External AMR gateway contract.

The fleet controller is consumed, never implemented here for real: the
dispatcher talks to anything that satisfies :class:`AmrGateway`.  Command
calls answer with the ``{code, message, success}`` envelope; query calls
return typed records.  Transport failures raise
:class:`~fleetspine.core.errors.UpstreamUnavailableError` so callers can
record them and retry on the next cycle.

Wire models serialize with camelCase aliases (``missionCode``,
``robotIds``) and accept either spelling on input.

Doc-Types: API_REFERENCE
"""

from __future__ import annotations

from typing import Any, Protocol, runtime_checkable

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from fleetspine.core.errors import FleetError
from fleetspine.queue.models import MissionStep

SUCCESS_CODE = "0"


class WireModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    def to_wire(self) -> dict[str, Any]:
        return self.model_dump(by_alias=True, exclude_none=True)


# ── Envelope ────────────────────────────────────────────────────────────


class GatewayResponse(WireModel):
    """Result envelope of every gateway command.

    Error Codes:
        - ``0``: accepted
        - ``100408``: requestId or missionCode already used
        - ``MISSION_VALIDATION_FAILED`` / ``CANCEL_VALIDATION_FAILED`` /
          ``VALIDATION_FAILED``: required fields missing
        - ``INVALID_CANCEL_MODE``: cancelMode not FORCE, NORMAL or REDIRECT_START
    """

    code: str = Field(default=SUCCESS_CODE, description="'0' on success")
    message: str | None = Field(default=None, description="Human-readable detail")
    success: bool = Field(default=True)
    data: Any = Field(default=None)

    @classmethod
    def ok(cls, message: str | None = None, data: Any = None) -> GatewayResponse:
        return cls(code=SUCCESS_CODE, message=message, success=True, data=data)

    @classmethod
    def fail(cls, code: str, message: str) -> GatewayResponse:
        return cls(code=code, message=message, success=False)

    @classmethod
    def from_error(cls, error: FleetError) -> GatewayResponse:
        return cls.fail(error.code, error.message)


# ── Requests ────────────────────────────────────────────────────────────


class MissionStepData(WireModel):
    sequence: int
    position: str
    type: str = "NODE_POINT"
    pass_strategy: str = "AUTO"
    waiting_millis: int = 0

    @classmethod
    def from_step(cls, step: MissionStep) -> MissionStepData:
        return cls(
            sequence=step.sequence,
            position=step.position,
            type=step.step_type,
            pass_strategy=step.pass_strategy,
            waiting_millis=step.waiting_millis,
        )

    def to_step(self) -> MissionStep:
        return MissionStep(
            sequence=self.sequence,
            position=self.position,
            pass_strategy=self.pass_strategy,
            waiting_millis=self.waiting_millis,
            step_type=self.type,
        )


class SubmitMissionRequest(WireModel):
    """Mission submission as sent to the fleet controller."""

    org_id: str
    request_id: str
    mission_code: str
    mission_type: str | None = None
    robot_type: str | None = None
    template_code: str | None = None
    container_code: str | None = None
    workflow_name: str | None = None
    map_code: str | None = None
    mission_data: list[MissionStepData] = Field(default_factory=list)
    robot_models: list[str] = Field(default_factory=list)
    robot_ids: list[str] = Field(default_factory=list)
    priority: int = 5
    created_by: str | None = None


class JobQuery(WireModel):
    """Job filters; string filters compare case-insensitively."""

    job_code: str | None = None
    robot_id: str | None = None
    container_code: str | None = None
    workflow_code: str | None = None
    map_code: str | None = None
    status: int | None = None
    create_username: str | None = None
    limit: int = 10


# ── Records ─────────────────────────────────────────────────────────────


class RobotSnapshot(WireModel):
    robot_id: str
    node_code: str
    status: int = Field(description="0 idle, 20 executing")
    mission_code: str | None = None
    battery_level: int = 85
    robot_type: str = "LIFT"
    map_code: str = "M001"
    floor_number: str = "A001"

    @property
    def is_idle(self) -> bool:
        return self.status == 0 and not self.mission_code


class JobRecord(WireModel):
    """A job as the fleet controller reports it."""

    job_code: str
    status: int
    robot_id: str | None = None
    workflow_id: str | None = None
    workflow_name: str | None = None
    workflow_code: str | None = None
    workflow_priority: int = 1
    container_code: str | None = None
    map_code: str | None = None
    target_cell_code: str | None = None
    begin_cell_code: str | None = None
    final_node_code: str | None = None
    warn_flag: int = 0
    complete_time: str | None = Field(default=None, description="yyyy-MM-dd HH:mm:ss")
    spend_time: int | None = Field(default=None, description="Seconds, at least 1 once complete")
    create_username: str | None = None
    create_time: str | None = Field(default=None, description="yyyy-MM-dd HH:mm:ss")
    source: str | None = None


# ── Contract ────────────────────────────────────────────────────────────


@runtime_checkable
class AmrGateway(Protocol):
    """Operations the core calls on the external fleet controller."""

    async def submit_mission(self, request: SubmitMissionRequest) -> GatewayResponse: ...

    async def cancel_mission(
        self,
        request_id: str,
        mission_code: str,
        cancel_mode: str | None = None,
        reason: str | None = None,
    ) -> GatewayResponse: ...

    async def operation_feedback(
        self, request_id: str, mission_code: str, position: str
    ) -> GatewayResponse: ...

    async def query_robot(
        self,
        robot_id: str,
        robot_type: str | None = None,
        map_code: str | None = None,
        floor_number: str | None = None,
    ) -> RobotSnapshot: ...

    async def query_jobs(self, query: JobQuery) -> list[JobRecord]: ...


__all__ = [
    "SUCCESS_CODE",
    "AmrGateway",
    "GatewayResponse",
    "JobQuery",
    "JobRecord",
    "MissionStepData",
    "RobotSnapshot",
    "SubmitMissionRequest",
]
