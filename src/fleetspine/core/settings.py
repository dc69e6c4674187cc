"""Centralized settings for the fleet engine.

Manifesto:
    Configuration should be explicit, validated, and environment-driven.
    Simulation constants such as the cancel window and the per-step dwell
    time are policy choices, not correctness requirements, so they live
    here as named settings rather than literals inside the tracker.

Every field can be set through a ``FLEET_*`` environment variable
(``FLEET_STEP_DWELL_SECONDS=6``) or a ``.env`` file.

Tags:
    configuration, settings, pydantic, environment, fleetspine
"""

from __future__ import annotations

from functools import lru_cache

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class FleetSettings(BaseSettings):
    """Fleet engine configuration."""

    model_config = SettingsConfigDict(
        env_prefix="FLEET_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # ── Storage ──────────────────────────────────────────────────
    database_path: str = Field(default="fleet.db")

    # ── Observability ────────────────────────────────────────────
    log_level: str = Field(default="INFO")
    log_format: str = Field(default="json", description="json or console")

    # ── Tracker (seconds) ────────────────────────────────────────
    created_seconds: float = Field(default=3, gt=0)
    executing_seconds: float = Field(default=5, gt=0)
    waiting_seconds: float = Field(default=3, gt=0)
    resumed_seconds: float = Field(default=10, gt=0)
    cancel_window_seconds: float = Field(default=2, ge=0)
    step_dwell_seconds: float = Field(default=4, ge=0)
    home_node_code: str = Field(default="Sim1-1-2")
    final_node_code: str = Field(default="Sim1-1-20")
    default_robot_id: str = Field(default="1003")
    default_map_code: str = Field(default="Sim1")

    # ── Scheduler ────────────────────────────────────────────────
    scheduler_interval_seconds: float = Field(default=60, gt=0)
    scheduler_batch_size: int = Field(default=5, ge=1)
    lease_ttl_seconds: int = Field(default=300, ge=1)

    # ── Dispatcher ───────────────────────────────────────────────
    dispatcher_interval_seconds: float = Field(default=5, gt=0)
    fleet_robot_ids: list[str] = Field(default_factory=lambda: ["1001", "1003", "1005"])
    default_priority: int = Field(default=5)
    default_query_limit: int = Field(default=10, ge=1)
    org_id: str = Field(default="UNIVERSAL")

    # ── Chaining ─────────────────────────────────────────────────
    max_consecutive_opportunistic_jobs: int = Field(default=1, ge=0)
    enable_cross_map_optimization: bool = Field(default=True)
    pending_job_scan_limit: int = Field(default=100, ge=1)
    chaining_claim_ttl_seconds: int = Field(default=60, ge=1)

    # ── Analytics ────────────────────────────────────────────────
    charging_template_codes: list[str] = Field(
        default_factory=lambda: ["manualCharging", "autoCharging"]
    )

    @field_validator("log_format")
    @classmethod
    def _check_log_format(cls, value: str) -> str:
        value = value.lower()
        if value not in ("json", "console"):
            raise ValueError("log_format must be 'json' or 'console'")
        return value


@lru_cache(maxsize=1)
def get_settings() -> FleetSettings:
    """Load and cache settings from the environment."""
    return FleetSettings()


__all__ = ["FleetSettings", "get_settings"]
