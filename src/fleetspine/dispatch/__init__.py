"""Dispatcher and the external AMR gateway contract.

┌──────────────────────────────────────────────────────────────────────────────┐
│  ThreadSchedulerBackend ──tick──► Dispatcher                                  │
│                                     ├── MissionQueueService   (lifecycle)     │
│                                     ├── AmrGateway            (fleet control) │
│                                     │     └── SimulatedAmrGateway             │
│                                     ├── OpportunisticJobEvaluator (chaining)  │
│                                     └── PositionCache         (realtime)      │
└──────────────────────────────────────────────────────────────────────────────┘
"""

from fleetspine.dispatch.dispatcher import DispatchStats, Dispatcher, DispatcherHealth, build_request
from fleetspine.dispatch.gateway import (
    SUCCESS_CODE,
    AmrGateway,
    GatewayResponse,
    JobQuery,
    JobRecord,
    MissionStepData,
    RobotSnapshot,
    SubmitMissionRequest,
)
from fleetspine.dispatch.positions import PositionCache, PositionListener
from fleetspine.dispatch.simulator import SimulatedAmrGateway

__all__ = [
    "SUCCESS_CODE",
    "AmrGateway",
    "DispatchStats",
    "Dispatcher",
    "DispatcherHealth",
    "GatewayResponse",
    "JobQuery",
    "JobRecord",
    "MissionStepData",
    "PositionCache",
    "PositionListener",
    "RobotSnapshot",
    "SimulatedAmrGateway",
    "SubmitMissionRequest",
    "build_request",
]
