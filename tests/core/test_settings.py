"""Tests for FleetSettings."""

import pytest
from pydantic import ValidationError

from fleetspine.core.settings import FleetSettings


class TestDefaults:
    def test_tracker_timings(self, settings):
        assert settings.created_seconds == 3
        assert settings.executing_seconds == 5
        assert settings.waiting_seconds == 3
        assert settings.resumed_seconds == 10
        assert settings.cancel_window_seconds == 2
        assert settings.step_dwell_seconds == 4

    def test_scheduler_and_dispatcher(self, settings):
        assert settings.scheduler_batch_size == 5
        assert settings.lease_ttl_seconds == 300
        assert settings.dispatcher_interval_seconds == 5
        assert settings.fleet_robot_ids == ["1001", "1003", "1005"]
        assert settings.default_query_limit == 10

    def test_chaining(self, settings):
        assert settings.max_consecutive_opportunistic_jobs == 1
        assert settings.enable_cross_map_optimization is True
        assert settings.pending_job_scan_limit == 100


class TestEnvironment:
    def test_env_prefix(self, monkeypatch):
        monkeypatch.setenv("FLEET_STEP_DWELL_SECONDS", "6")
        monkeypatch.setenv("FLEET_FLEET_ROBOT_IDS", '["2001"]')

        settings = FleetSettings(_env_file=None)

        assert settings.step_dwell_seconds == 6
        assert settings.fleet_robot_ids == ["2001"]

    def test_log_format_normalized(self):
        assert FleetSettings(_env_file=None, log_format="CONSOLE").log_format == "console"

    def test_log_format_rejected(self):
        with pytest.raises(ValidationError):
            FleetSettings(_env_file=None, log_format="xml")

    def test_positive_intervals(self):
        with pytest.raises(ValidationError):
            FleetSettings(_env_file=None, dispatcher_interval_seconds=0)
