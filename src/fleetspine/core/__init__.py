"""
fleetspine.core - shared infrastructure for the fleet engine.

Errors and results, structured logging, settings, the storage protocol
with its SQL dialects, schema DDL, UTC timestamp helpers and per-key
locks.  Nothing in this package knows about missions or robots beyond
the table layout.
"""

from fleetspine.core.dialect import Dialect, PostgreSQLDialect, SQLiteDialect
from fleetspine.core.errors import (
    ConcurrencyConflictError,
    ConflictError,
    DuplicateMissionCodeError,
    DuplicateRequestIdError,
    FleetError,
    InvalidScheduleError,
    InvalidTransitionError,
    LockNotHeldError,
    MissionNotFoundError,
    NotFoundError,
    ScheduleNotFoundError,
    UpstreamUnavailableError,
    ValidationFailedError,
)
from fleetspine.core.keyed_lock import KeyedCache, KeyedLock
from fleetspine.core.protocols import Connection
from fleetspine.core.result import Err, Ok, Result
from fleetspine.core.schema import CORE_TABLES, create_core_tables
from fleetspine.core.settings import FleetSettings, get_settings
from fleetspine.core.sqlite_conn import SqliteConnection
from fleetspine.core.timestamps import Clock, utc_now

__all__ = [
    "CORE_TABLES",
    "Clock",
    "ConcurrencyConflictError",
    "ConflictError",
    "Connection",
    "Dialect",
    "DuplicateMissionCodeError",
    "DuplicateRequestIdError",
    "Err",
    "FleetError",
    "FleetSettings",
    "InvalidScheduleError",
    "InvalidTransitionError",
    "KeyedCache",
    "KeyedLock",
    "LockNotHeldError",
    "MissionNotFoundError",
    "NotFoundError",
    "Ok",
    "PostgreSQLDialect",
    "Result",
    "SQLiteDialect",
    "ScheduleNotFoundError",
    "SqliteConnection",
    "UpstreamUnavailableError",
    "ValidationFailedError",
    "create_core_tables",
    "get_settings",
    "utc_now",
]
