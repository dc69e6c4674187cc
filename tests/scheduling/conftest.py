"""Pytest fixtures for scheduling tests."""

from __future__ import annotations

import pytest

from fleetspine.scheduling import (
    LockManager,
    ScheduleCreate,
    ScheduleRepository,
    SchedulerService,
    ThreadSchedulerBackend,
)


@pytest.fixture
def schedule_repo(db_conn) -> ScheduleRepository:
    return ScheduleRepository(db_conn)


@pytest.fixture
def lock_manager(db_conn, clock) -> LockManager:
    return LockManager(db_conn, clock=clock)


@pytest.fixture
def scheduler(schedule_repo, lock_manager, queue_service, settings, clock) -> SchedulerService:
    service = SchedulerService(
        schedule_repo,
        lock_manager,
        queue_service,
        backend=ThreadSchedulerBackend(thread_name="test-scheduler"),
        settings=settings,
        clock=clock,
    )
    yield service
    service.stop()


@pytest.fixture
def make_schedule(scheduler):
    """Create a schedule through the service and return it."""

    def _make(name: str = "patrol", **overrides):
        overrides.setdefault("template_code", "PATROL")
        overrides.setdefault("trigger_type", "Interval")
        if overrides["trigger_type"] == "Interval":
            overrides.setdefault("interval_minutes", 15)
        overrides.setdefault(
            "mission_params",
            {"steps": [{"sequence": 1, "position": "A1"}], "map_code": "Sim1"},
        )
        return scheduler.create_schedule(ScheduleCreate(name=name, **overrides)).unwrap()

    return _make
