"""Fixtures for tracker tests."""

import pytest

from fleetspine.core.enums import MissionStatus
from fleetspine.tracking import AreaResolver, ManualPauseRepository, MissionTracker


@pytest.fixture
def pauses(db_conn):
    return ManualPauseRepository(db_conn)


@pytest.fixture
def areas(db_conn):
    return AreaResolver(db_conn)


@pytest.fixture
def tracker(mission_repo, areas, pauses, settings, clock):
    return MissionTracker(mission_repo, areas=areas, pauses=pauses, settings=settings, clock=clock)


@pytest.fixture
def assigned_mission(queue_service, mission_repo, make_submit):
    """Submit a mission and assign it to robot 1001."""

    def _make(code="M-1", **overrides):
        queue_service.submit(make_submit(code, **overrides))
        queue_service.advance(code, MissionStatus.ASSIGNED, assigned_robot_id="1001")
        return mission_repo.get(code)

    return _make
