"""Mission lifecycle state machine.

Architecture::

    Pending ──► ReadyToAssign ──► Assigned ──► SubmittedToAmr ──► Executing
       │             │               │               │               │
       └─────────────┴───────────────┴───────┬───────┴───────────────┘
                                              ▼
                              Completed | Failed | Cancelled

Records only move forward.  ``Cancelled`` and ``Failed`` are reachable
from every non-terminal state; ``Pending`` may skip straight to
``Assigned`` when the evaluator chains a job onto a robot, and a gateway
that reports completion before we saw execution may move
``SubmittedToAmr`` directly to ``Completed``.
"""

from __future__ import annotations

from fleetspine.core.enums import MissionStatus

_S = MissionStatus

TRANSITIONS: dict[MissionStatus, frozenset[MissionStatus]] = {
    _S.PENDING: frozenset({_S.READY_TO_ASSIGN, _S.ASSIGNED, _S.FAILED, _S.CANCELLED}),
    _S.READY_TO_ASSIGN: frozenset({_S.ASSIGNED, _S.FAILED, _S.CANCELLED}),
    _S.ASSIGNED: frozenset({_S.SUBMITTED_TO_AMR, _S.FAILED, _S.CANCELLED}),
    _S.SUBMITTED_TO_AMR: frozenset({_S.EXECUTING, _S.COMPLETED, _S.FAILED, _S.CANCELLED}),
    _S.EXECUTING: frozenset({_S.COMPLETED, _S.FAILED, _S.CANCELLED}),
    _S.COMPLETED: frozenset(),
    _S.FAILED: frozenset(),
    _S.CANCELLED: frozenset(),
}

# Statuses the dispatcher may submit to the gateway.
DISPATCHABLE_STATUSES = (_S.PENDING, _S.READY_TO_ASSIGN, _S.ASSIGNED)


def can_transition(current: MissionStatus, target: MissionStatus) -> bool:
    """True if *target* is a legal next state from *current*."""
    return target in TRANSITIONS[current]


def allowed_targets(current: MissionStatus) -> frozenset[MissionStatus]:
    return TRANSITIONS[current]


__all__ = ["DISPATCHABLE_STATUSES", "TRANSITIONS", "allowed_targets", "can_transition"]
