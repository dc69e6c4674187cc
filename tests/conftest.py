"""
Shared pytest fixtures for fleet-spine tests.

Every test gets a fresh in-memory SQLite database with the full schema
and a controllable clock, so time-driven behaviour (status progression,
dwell times, the cancel window, schedule due times) runs without sleeping.
"""

from __future__ import annotations

from datetime import UTC, datetime, timedelta

import pytest

from fleetspine.core.schema import create_core_tables
from fleetspine.core.settings import FleetSettings
from fleetspine.core.sqlite_conn import SqliteConnection
from fleetspine.queue import MissionQueueService, MissionRepository, MissionStep, MissionSubmit


class FakeClock:
    """Mutable clock: call it for ``now``, ``advance()`` to move time."""

    def __init__(self, start: datetime | None = None) -> None:
        self.now = start or datetime(2025, 1, 6, 8, 0, 0, tzinfo=UTC)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, seconds: float = 0, *, minutes: float = 0, hours: float = 0) -> datetime:
        self.now = self.now + timedelta(seconds=seconds, minutes=minutes, hours=hours)
        return self.now

    def set(self, value: datetime) -> None:
        self.now = value


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def settings() -> FleetSettings:
    """Settings with defaults, isolated from the environment and .env files."""
    return FleetSettings(_env_file=None)


@pytest.fixture
def db_conn():
    """In-memory SQLite database with every fleet table."""
    conn = SqliteConnection(":memory:")
    create_core_tables(conn)
    yield conn
    conn.close()


@pytest.fixture
def mission_repo(db_conn) -> MissionRepository:
    return MissionRepository(db_conn)


@pytest.fixture
def queue_service(mission_repo, settings, clock) -> MissionQueueService:
    return MissionQueueService(mission_repo, settings=settings, clock=clock)


@pytest.fixture
def make_submit():
    """Factory for MissionSubmit with unique-ish defaults."""

    def _make(code: str = "M-1", request_id: str | None = None, **overrides) -> MissionSubmit:
        overrides.setdefault("steps", [MissionStep(1, "A1"), MissionStep(2, "B1")])
        return MissionSubmit(mission_code=code, request_id=request_id or f"REQ-{code}", **overrides)

    return _make
