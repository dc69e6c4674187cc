"""
Fleet engine tables.

Defines table names and DDL statements for the durable store shared by
the mission queue, the simulated gateway, the chaining evaluator, the
schedule engine and the utilization aggregator.

Manifesto:
    The store, not process memory, owns every uniqueness rule.  Mission
    codes and request ids are UNIQUE columns, opportunity records are
    UNIQUE per (robot, completed mission), and the schedule lease is a
    nullable column updated with a conditional write.  Any number of
    process instances can share one database file.

Architecture:
    ::

        Table Registry (CORE_TABLES):
        ┌────────────────────────────────────────────────────────────┐
        │ missions            → amr_mission_queue                    │
        │ mission_history     → amr_mission_history                  │
        │ sim_jobs            → amr_sim_jobs                         │
        │ sim_job_history     → amr_sim_job_history                  │
        │ areas               → amr_areas                            │
        │ node_coordinates    → amr_node_coordinates                 │
        │ opportunities       → amr_robot_opportunities              │
        │ map_queue_config    → amr_map_queue_config                 │
        │ schedules           → amr_schedules                        │
        │ schedule_runs       → amr_schedule_runs                    │
        │ manual_pauses       → amr_robot_manual_pauses              │
        └────────────────────────────────────────────────────────────┘

Examples:
    >>> from fleetspine.core.schema import CORE_TABLES
    >>> CORE_TABLES["missions"]
    'amr_mission_queue'

Guardrails:
    ❌ DON'T: Enforce mission code uniqueness in Python
    ✅ DO: Rely on the UNIQUE constraint and INSERT OR IGNORE rowcount

Tags:
    schema, ddl, sqlite, tables, fleetspine
"""

# =============================================================================
# TABLE NAMES
# =============================================================================

CORE_TABLES = {
    "missions": "amr_mission_queue",
    "mission_history": "amr_mission_history",
    "sim_jobs": "amr_sim_jobs",
    "sim_job_history": "amr_sim_job_history",
    "areas": "amr_areas",
    "node_coordinates": "amr_node_coordinates",
    "opportunities": "amr_robot_opportunities",
    "map_queue_config": "amr_map_queue_config",
    "schedules": "amr_schedules",
    "schedule_runs": "amr_schedule_runs",
    "manual_pauses": "amr_robot_manual_pauses",
}


# =============================================================================
# MISSION TABLE SHAPE
# =============================================================================

# Shared by the live queue and the simulated gateway's job store.
_MISSION_COLUMNS = """
            -- Business payload
            org_id TEXT,
            priority INTEGER NOT NULL DEFAULT 5,
            status TEXT NOT NULL,
            trigger_source TEXT NOT NULL DEFAULT 'API',
            mission_type TEXT,
            robot_type TEXT,
            template_code TEXT,
            container_code TEXT,
            workflow_id TEXT,
            workflow_name TEXT,
            workflow_code TEXT,
            map_code TEXT,
            target_cell_code TEXT,
            robot_models TEXT,              -- JSON list
            robot_ids TEXT,                 -- JSON list
            steps_json TEXT,                -- JSON list of MissionStep

            -- Assignment / chaining
            assigned_robot_id TEXT,
            is_opportunistic INTEGER NOT NULL DEFAULT 0,
            start_node TEXT,
            start_x REAL,
            start_y REAL,

            -- Diagnostics
            error_message TEXT,
            retry_count INTEGER NOT NULL DEFAULT 0,
            created_by TEXT,
            source TEXT NOT NULL DEFAULT 'INTERFACE',

            -- Lifecycle timestamps (ISO 8601, UTC)
            created_utc TEXT NOT NULL,
            processed_utc TEXT,
            submitted_to_amr_utc TEXT,
            completed_utc TEXT,
            cancelled_utc TEXT,
            updated_utc TEXT,

            -- Cancellation
            cancel_mode TEXT,
            cancel_reason TEXT,
            cancel_request_id TEXT,
            cancel_forwarded_utc TEXT,      -- cancel sent to the gateway
            cancel_settled_utc TEXT,        -- gateway job reached a terminal state

            -- Optimistic concurrency
            version INTEGER NOT NULL DEFAULT 0"""


def _queue_ddl(table: str) -> str:
    return f"""
        CREATE TABLE IF NOT EXISTS {table} (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            mission_code TEXT NOT NULL UNIQUE,
            request_id TEXT NOT NULL UNIQUE,
            {_MISSION_COLUMNS.strip()}
        )
    """


def _history_ddl(table: str) -> str:
    # Append-only, keyed by mission code.
    return f"""
        CREATE TABLE IF NOT EXISTS {table} (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            mission_code TEXT NOT NULL UNIQUE,
            request_id TEXT NOT NULL,
            {_MISSION_COLUMNS.strip()},
            archived_utc TEXT NOT NULL
        )
    """


MISSION_COLUMN_NAMES = (
    "mission_code",
    "request_id",
    "org_id",
    "priority",
    "status",
    "trigger_source",
    "mission_type",
    "robot_type",
    "template_code",
    "container_code",
    "workflow_id",
    "workflow_name",
    "workflow_code",
    "map_code",
    "target_cell_code",
    "robot_models",
    "robot_ids",
    "steps_json",
    "assigned_robot_id",
    "is_opportunistic",
    "start_node",
    "start_x",
    "start_y",
    "error_message",
    "retry_count",
    "created_by",
    "source",
    "created_utc",
    "processed_utc",
    "submitted_to_amr_utc",
    "completed_utc",
    "cancelled_utc",
    "updated_utc",
    "cancel_mode",
    "cancel_reason",
    "cancel_request_id",
    "cancel_forwarded_utc",
    "cancel_settled_utc",
    "version",
)


# =============================================================================
# DDL STATEMENTS
# =============================================================================

CORE_DDL = {
    "missions": _queue_ddl("amr_mission_queue"),
    "missions_idx_status": """
        CREATE INDEX IF NOT EXISTS idx_amr_mission_queue_status
        ON amr_mission_queue(status, priority, created_utc)
    """,
    "missions_idx_robot": """
        CREATE INDEX IF NOT EXISTS idx_amr_mission_queue_robot
        ON amr_mission_queue(assigned_robot_id, status)
    """,
    "mission_history": _history_ddl("amr_mission_history"),
    "mission_history_idx_robot": """
        CREATE INDEX IF NOT EXISTS idx_amr_mission_history_robot
        ON amr_mission_history(assigned_robot_id, completed_utc)
    """,
    # Job store of the simulated AMR gateway; same shape as the queue.
    "sim_jobs": _queue_ddl("amr_sim_jobs"),
    "sim_job_history": _history_ddl("amr_sim_job_history"),
    # =========================================================================
    # MAP DATA (replicated from the AMR system)
    # =========================================================================
    "areas": """
        CREATE TABLE IF NOT EXISTS amr_areas (
            zone_code TEXT PRIMARY KEY,
            zone_name TEXT,
            map_code TEXT,
            area_node_list TEXT NOT NULL DEFAULT '[]'   -- JSON: [{"cellCode": "...", "sort": 1}]
        )
    """,
    "node_coordinates": """
        CREATE TABLE IF NOT EXISTS amr_node_coordinates (
            node_code TEXT PRIMARY KEY,
            map_code TEXT,
            x REAL NOT NULL,
            y REAL NOT NULL
        )
    """,
    # =========================================================================
    # OPPORTUNISTIC CHAINING
    # =========================================================================
    "opportunities": """
        CREATE TABLE IF NOT EXISTS amr_robot_opportunities (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            robot_id TEXT NOT NULL,
            completed_mission_code TEXT NOT NULL,
            current_map_code TEXT,
            original_map_code TEXT,
            node_code TEXT,
            x REAL,
            y REAL,
            consecutive_jobs_in_map INTEGER NOT NULL DEFAULT 0,
            decision TEXT NOT NULL DEFAULT 'Pending',
            decision_reason TEXT,
            chained_mission_code TEXT,
            return_map_code TEXT,
            created_utc TEXT NOT NULL,
            decided_utc TEXT,
            claim_token TEXT,               -- evaluator currently deciding
            claimed_utc TEXT,
            UNIQUE (robot_id, completed_mission_code)
        )
    """,
    "opportunities_idx_robot": """
        CREATE INDEX IF NOT EXISTS idx_amr_robot_opportunities_robot
        ON amr_robot_opportunities(robot_id, id)
    """,
    "map_queue_config": """
        CREATE TABLE IF NOT EXISTS amr_map_queue_config (
            map_code TEXT PRIMARY KEY,
            max_consecutive_opportunistic_jobs INTEGER NOT NULL DEFAULT 1,
            enable_cross_map_optimization INTEGER NOT NULL DEFAULT 1,
            default_priority INTEGER NOT NULL DEFAULT 5,
            max_concurrent_robots INTEGER NOT NULL DEFAULT 10,
            opportunistic_jobs_chained INTEGER NOT NULL DEFAULT 0,
            average_opportunistic_job_distance_meters REAL,
            created_utc TEXT NOT NULL,
            updated_utc TEXT
        )
    """,
    # =========================================================================
    # SCHEDULES
    #
    # lock_token is the only cross-process mutual exclusion primitive.
    # It is non-null only while one worker executes one attempt.
    # =========================================================================
    "schedules": """
        CREATE TABLE IF NOT EXISTS amr_schedules (
            id TEXT PRIMARY KEY,
            name TEXT NOT NULL UNIQUE,
            template_code TEXT NOT NULL,
            trigger_type TEXT NOT NULL,     -- Once | Interval | Cron
            run_at_utc TEXT,
            interval_minutes INTEGER,
            cron_expression TEXT,
            timezone TEXT NOT NULL DEFAULT 'UTC',
            is_enabled INTEGER NOT NULL DEFAULT 1,
            next_run_utc TEXT,
            lock_token TEXT,
            lock_acquired_utc TEXT,
            skip_if_running INTEGER NOT NULL DEFAULT 0,
            execution_count INTEGER NOT NULL DEFAULT 0,
            max_executions INTEGER,
            last_run_utc TEXT,
            last_status TEXT,
            last_error TEXT,
            mission_params TEXT,            -- JSON
            created_by TEXT,
            created_utc TEXT NOT NULL,
            updated_utc TEXT,
            version INTEGER NOT NULL DEFAULT 0
        )
    """,
    "schedules_idx_due": """
        CREATE INDEX IF NOT EXISTS idx_amr_schedules_due
        ON amr_schedules(is_enabled, next_run_utc)
    """,
    "schedule_runs": """
        CREATE TABLE IF NOT EXISTS amr_schedule_runs (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            schedule_id TEXT NOT NULL,
            scheduled_for_utc TEXT,
            started_utc TEXT NOT NULL,
            completed_utc TEXT,
            status TEXT NOT NULL,           -- Pending | Queued | Failed | Skipped
            mission_code TEXT,
            error TEXT,
            skip_reason TEXT
        )
    """,
    "schedule_runs_idx_schedule": """
        CREATE INDEX IF NOT EXISTS idx_amr_schedule_runs_schedule
        ON amr_schedule_runs(schedule_id, started_utc)
    """,
    # =========================================================================
    # MANUAL WAYPOINT PAUSES (input to utilization)
    # =========================================================================
    "manual_pauses": """
        CREATE TABLE IF NOT EXISTS amr_robot_manual_pauses (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            robot_id TEXT NOT NULL,
            mission_code TEXT NOT NULL,
            waypoint_code TEXT,
            pause_start_utc TEXT NOT NULL,
            pause_end_utc TEXT,
            created_utc TEXT NOT NULL
        )
    """,
    "manual_pauses_idx_robot": """
        CREATE INDEX IF NOT EXISTS idx_amr_robot_manual_pauses_robot
        ON amr_robot_manual_pauses(robot_id, pause_start_utc)
    """,
}


def create_core_tables(conn) -> None:
    """
    Create all fleet engine tables.

    Safe to call multiple times (CREATE IF NOT EXISTS).
    """
    for _name, ddl in CORE_DDL.items():
        conn.execute(ddl)
    conn.commit()


__all__ = ["CORE_DDL", "CORE_TABLES", "MISSION_COLUMN_NAMES", "create_core_tables"]
