"""Tests for ScheduleRepository."""

from datetime import timedelta

from fleetspine.core.enums import ScheduleRunStatus, TriggerType
from fleetspine.core.errors import ConflictError, InvalidScheduleError, ScheduleNotFoundError
from fleetspine.scheduling import ScheduleCreate, ScheduleRun, ScheduleUpdate


class TestCreate:
    """Schedule creation."""

    def test_create_interval(self, schedule_repo, clock):
        """First interval run is one interval after creation."""
        schedule = schedule_repo.create(
            ScheduleCreate(name="every-15", template_code="PATROL", trigger_type="Interval", interval_minutes=15),
            clock(),
        ).unwrap()

        assert schedule.trigger_type == TriggerType.INTERVAL
        assert schedule.is_enabled is True
        assert schedule.next_run_utc == clock() + timedelta(minutes=15)
        assert schedule.lock_token is None
        assert schedule.execution_count == 0

    def test_create_cron_normalizes_macro(self, schedule_repo, clock):
        schedule = schedule_repo.create(
            ScheduleCreate(name="hourly", template_code="PATROL", trigger_type="Cron", cron_expression="@hourly"),
            clock(),
        ).unwrap()
        assert schedule.cron_expression == "0 * * * *"

    def test_disabled_has_no_next_run(self, schedule_repo, clock):
        """A disabled schedule never carries a next run."""
        schedule = schedule_repo.create(
            ScheduleCreate(
                name="off",
                template_code="PATROL",
                trigger_type="Interval",
                interval_minutes=5,
                is_enabled=False,
            ),
            clock(),
        ).unwrap()
        assert schedule.next_run_utc is None

    def test_invalid_trigger_not_persisted(self, schedule_repo, clock):
        """Bad trigger parameters return InvalidSchedule and write nothing."""
        result = schedule_repo.create(
            ScheduleCreate(name="bad", template_code="PATROL", trigger_type="Interval", interval_minutes=0),
            clock(),
        )

        assert isinstance(result.error, InvalidScheduleError)
        assert schedule_repo.get_by_name("bad") is None
        assert schedule_repo.list_all() == []

    def test_duplicate_name(self, schedule_repo, clock):
        spec = ScheduleCreate(name="dup", template_code="PATROL", trigger_type="Interval", interval_minutes=5)
        schedule_repo.create(spec, clock()).unwrap()

        result = schedule_repo.create(spec, clock())
        assert isinstance(result.error, ConflictError)

    def test_mission_params_round_trip(self, schedule_repo, clock):
        params = {"steps": [{"sequence": 1, "position": "A1"}], "priority": 7}
        created = schedule_repo.create(
            ScheduleCreate(
                name="params",
                template_code="PATROL",
                trigger_type="Interval",
                interval_minutes=5,
                mission_params=params,
            ),
            clock(),
        ).unwrap()
        assert schedule_repo.get(created.id).mission_params == params


class TestUpdate:
    """Schedule updates recompute the next run."""

    def test_update_interval(self, schedule_repo, clock):
        schedule = schedule_repo.create(
            ScheduleCreate(name="s", template_code="PATROL", trigger_type="Interval", interval_minutes=5),
            clock(),
        ).unwrap()
        clock.advance(minutes=1)

        updated = schedule_repo.update(schedule.id, ScheduleUpdate(interval_minutes=30), clock()).unwrap()

        assert updated.interval_minutes == 30
        assert updated.next_run_utc == clock() + timedelta(minutes=30)
        assert updated.version == schedule.version + 1

    def test_update_rejects_invalid(self, schedule_repo, clock):
        """An invalid update leaves the stored schedule untouched."""
        schedule = schedule_repo.create(
            ScheduleCreate(name="s", template_code="PATROL", trigger_type="Cron", cron_expression="0 * * * *"),
            clock(),
        ).unwrap()

        result = schedule_repo.update(schedule.id, ScheduleUpdate(cron_expression="0 9 1 * *"), clock())

        assert isinstance(result.error, InvalidScheduleError)
        assert schedule_repo.get(schedule.id).cron_expression == "0 * * * *"

    def test_lowering_max_executions_exhausts(self, schedule_repo, clock):
        schedule = schedule_repo.create(
            ScheduleCreate(name="s", template_code="PATROL", trigger_type="Interval", interval_minutes=5),
            clock(),
        ).unwrap()

        updated = schedule_repo.update(schedule.id, ScheduleUpdate(max_executions=0), clock()).unwrap()

        assert updated.is_exhausted
        assert updated.next_run_utc is None

    def test_update_unknown(self, schedule_repo, clock):
        result = schedule_repo.update("missing", ScheduleUpdate(interval_minutes=5), clock())
        assert isinstance(result.error, ScheduleNotFoundError)


class TestDue:
    """Due lookup."""

    def _create(self, repo, clock, name, minutes):
        return repo.create(
            ScheduleCreate(name=name, template_code="PATROL", trigger_type="Interval", interval_minutes=minutes),
            clock(),
        ).unwrap()

    def test_due_ordering_and_limit(self, schedule_repo, clock):
        """Due schedules come back oldest next-run first, capped at the limit."""
        late = self._create(schedule_repo, clock, "late", 10)
        early = self._create(schedule_repo, clock, "early", 5)
        self._create(schedule_repo, clock, "later", 60)
        clock.advance(minutes=10)

        due = schedule_repo.get_due(clock(), limit=5)
        assert [s.id for s in due] == [early.id, late.id]
        assert len(schedule_repo.get_due(clock(), limit=1)) == 1

    def test_leased_schedules_not_due(self, schedule_repo, lock_manager, clock):
        schedule = self._create(schedule_repo, clock, "s", 5)
        clock.advance(minutes=5)
        lock_manager.acquire(schedule.id)

        assert schedule_repo.get_due(clock()) == []

    def test_disabled_not_due(self, schedule_repo, clock):
        schedule = self._create(schedule_repo, clock, "s", 5)
        schedule_repo.set_enabled(schedule.id, False, clock())
        clock.advance(hours=1)

        assert schedule_repo.get_due(clock()) == []


class TestRunLog:
    """Schedule run records."""

    def test_runs_newest_first(self, schedule_repo, clock):
        schedule = schedule_repo.create(
            ScheduleCreate(name="s", template_code="PATROL", trigger_type="Interval", interval_minutes=5),
            clock(),
        ).unwrap()
        schedule_repo.create_run(ScheduleRun(schedule.id, clock(), ScheduleRunStatus.QUEUED, mission_code="M1"))
        schedule_repo.create_run(
            ScheduleRun(schedule.id, clock(), ScheduleRunStatus.SKIPPED, skip_reason="Lock not acquired")
        )

        runs = schedule_repo.list_runs(schedule.id)

        assert [r.status for r in runs] == [ScheduleRunStatus.SKIPPED, ScheduleRunStatus.QUEUED]
        assert runs[0].skip_reason == "Lock not acquired"
        assert runs[1].mission_code == "M1"
        assert runs[1].id is not None
