"""
Structured error types for the fleet dispatch engine.

Provides a typed error hierarchy with metadata for retry decisions,
categorization, and root cause analysis through error chaining.

Manifesto:
    - **Typed Error Hierarchy:** One error type per failure kind the engine
      distinguishes (validation, conflict, lease contention, upstream outage,
      bad schedule)
    - **Explicit Retry Semantics:** Each error knows if it's retryable
    - **Rich Context:** Errors carry mission/robot/schedule identifiers
    - **Error Chaining:** Preserve original exceptions while adding context

Architecture:
    ::

        ┌─────────────────────────────────────────────────────────────────┐
        │                        FleetError                                │
        │        (code, category, retryable, retry_after, context)         │
        ├─────────────────────────────────────────────────────────────────┤
        │                                                                  │
        │  ValidationFailedError   ConflictError         NotFoundError     │
        │  (VALIDATION)            (CONFLICT)            (NOT_FOUND)       │
        │       │                      │                      │            │
        │  InvalidScheduleError   DuplicateRequestId    MissionNotFound    │
        │                         DuplicateMissionCode  ScheduleNotFound   │
        │                                                                  │
        │  InvalidTransitionError  ConcurrencyConflictError                │
        │  (STATE)                 (CONCURRENCY, retryable)                │
        │                                                                  │
        │  LockNotHeldError        UpstreamUnavailableError                │
        │  (CONCURRENCY)           (UPSTREAM, retryable)                   │
        └─────────────────────────────────────────────────────────────────┘

Propagation:
    Validation, conflict and schedule errors are returned to the submitter
    as ``Err`` values.  Upstream and transient errors are caught at the
    poll-loop boundary, recorded on the record/schedule, and the loop
    continues.  ``LockNotHeldError`` is logged and skipped.

Tags:
    errors, exceptions, error-handling, retry, categorization, fleetspine
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any


class ErrorCategory(str, Enum):
    """Standard error categories for classification and routing."""

    VALIDATION = "VALIDATION"
    CONFLICT = "CONFLICT"
    NOT_FOUND = "NOT_FOUND"
    STATE = "STATE"
    CONCURRENCY = "CONCURRENCY"
    UPSTREAM = "UPSTREAM"
    SCHEDULING = "SCHEDULING"
    DATABASE = "DATABASE"
    CONFIG = "CONFIG"
    INTERNAL = "INTERNAL"
    UNKNOWN = "UNKNOWN"


@dataclass
class ErrorContext:
    """Structured metadata context for errors.

    Only non-None fields are serialized by :meth:`to_dict`; anything that
    does not have a dedicated field lands in ``metadata``.
    """

    mission_code: str | None = None
    request_id: str | None = None
    robot_id: str | None = None
    map_code: str | None = None
    schedule_id: str | None = None

    metadata: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for logging."""
        result = {}
        for key in ["mission_code", "request_id", "robot_id", "map_code", "schedule_id"]:
            value = getattr(self, key)
            if value is not None:
                result[key] = value
        if self.metadata:
            result.update(self.metadata)
        return result


class FleetError(Exception):
    """
    Base exception for all fleet engine errors.

    Subclasses set ``code``, ``default_category`` and ``default_retryable``.
    ``code`` is the machine-readable value surfaced in gateway envelopes.
    """

    code: str = "INTERNAL"
    default_category: ErrorCategory = ErrorCategory.INTERNAL
    default_retryable: bool = False

    def __init__(
        self,
        message: str,
        *,
        category: ErrorCategory | None = None,
        retryable: bool | None = None,
        retry_after: int | None = None,
        context: ErrorContext | None = None,
        cause: Exception | None = None,
    ):
        super().__init__(message)
        self.message = message
        self.category = category or self.default_category
        self.retryable = retryable if retryable is not None else self.default_retryable
        self.retry_after = retry_after
        self.context = context or ErrorContext()
        self.cause = cause

        if cause is not None:
            self.__cause__ = cause

    def with_context(self, **kwargs: Any) -> FleetError:
        """
        Add context to this error (fluent API).

        Usage:
            return Err(MissionNotFoundError(code).with_context(robot_id="1003"))
        """
        for key, value in kwargs.items():
            if hasattr(self.context, key) and key != "metadata":
                setattr(self.context, key, value)
            else:
                self.context.metadata[key] = value
        return self

    def to_dict(self) -> dict[str, Any]:
        """Convert error to dictionary for logging/serialization."""
        result = {
            "error_type": self.__class__.__name__,
            "code": self.code,
            "message": self.message,
            "category": self.category.value,
            "retryable": self.retryable,
        }
        if self.retry_after is not None:
            result["retry_after"] = self.retry_after
        context_dict = self.context.to_dict()
        if context_dict:
            result["context"] = context_dict
        if self.cause is not None:
            result["cause"] = str(self.cause)
        return result

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}({self.message!r}, category={self.category.value})"


# =============================================================================
# VALIDATION
# =============================================================================


class ValidationFailedError(FleetError):
    """
    Missing or malformed required fields.

    Never retryable - the caller must fix the request.
    """

    code = "VALIDATION_FAILED"
    default_category = ErrorCategory.VALIDATION
    default_retryable = False

    def __init__(
        self,
        message: str,
        *,
        field: str | None = None,
        value: Any = None,
        **kwargs: Any,
    ):
        super().__init__(message, **kwargs)
        self.field = field
        self.value = value

    def to_dict(self) -> dict[str, Any]:
        result = super().to_dict()
        if self.field:
            result["field"] = self.field
        if self.value is not None:
            result["value"] = repr(self.value)
        return result


class InvalidScheduleError(ValidationFailedError):
    """Bad trigger parameters; the schedule is never persisted."""

    code = "INVALID_SCHEDULE"
    default_category = ErrorCategory.SCHEDULING


# =============================================================================
# CONFLICT / NOT FOUND / STATE
# =============================================================================


class ConflictError(FleetError):
    """An idempotency key was already reserved."""

    code = "100408"
    default_category = ErrorCategory.CONFLICT
    default_retryable = False


class DuplicateRequestIdError(ConflictError):
    def __init__(self, request_id: str, **kwargs: Any):
        super().__init__(f"RequestId:[{request_id}] is already used", **kwargs)
        self.context.request_id = request_id


class DuplicateMissionCodeError(ConflictError):
    def __init__(self, mission_code: str, **kwargs: Any):
        super().__init__(f"MissionCode:[{mission_code}] is already used", **kwargs)
        self.context.mission_code = mission_code


class NotFoundError(FleetError):
    code = "NOT_FOUND"
    default_category = ErrorCategory.NOT_FOUND


class MissionNotFoundError(NotFoundError):
    def __init__(self, mission_code: str, **kwargs: Any):
        super().__init__(f"Mission not found: {mission_code}", **kwargs)
        self.context.mission_code = mission_code


class ScheduleNotFoundError(NotFoundError):
    def __init__(self, schedule_id: str, **kwargs: Any):
        super().__init__(f"Schedule not found: {schedule_id}", **kwargs)
        self.context.schedule_id = schedule_id


class InvalidTransitionError(FleetError):
    """Requested lifecycle move is not allowed from the record's current state."""

    code = "INVALID_TRANSITION"
    default_category = ErrorCategory.STATE


# =============================================================================
# CONCURRENCY / UPSTREAM
# =============================================================================


class ConcurrencyConflictError(FleetError):
    """Record changed underneath us (optimistic version mismatch)."""

    code = "CONCURRENCY_CONFLICT"
    default_category = ErrorCategory.CONCURRENCY
    default_retryable = True


class LockNotHeldError(FleetError):
    """Another worker holds the schedule lease. Logged and skipped, never surfaced."""

    code = "LOCK_NOT_HELD"
    default_category = ErrorCategory.CONCURRENCY
    default_retryable = True

    def __init__(self, schedule_id: str, **kwargs: Any):
        super().__init__(f"Lease on schedule {schedule_id} is held by another worker", **kwargs)
        self.context.schedule_id = schedule_id


class UpstreamUnavailableError(FleetError):
    """The external AMR gateway could not be reached."""

    code = "UPSTREAM_UNAVAILABLE"
    default_category = ErrorCategory.UPSTREAM
    default_retryable = True


# =============================================================================
# UTILITY FUNCTIONS
# =============================================================================


def is_retryable(error: Exception) -> bool:
    """Check if an error is retryable."""
    if isinstance(error, FleetError):
        return error.retryable
    return isinstance(error, (ConnectionError, TimeoutError))


def error_code(error: Exception) -> str:
    """Machine-readable code for any exception."""
    if isinstance(error, FleetError):
        return error.code
    return "INTERNAL"


__all__ = [
    "ErrorCategory",
    "ErrorContext",
    "FleetError",
    "ValidationFailedError",
    "InvalidScheduleError",
    "ConflictError",
    "DuplicateRequestIdError",
    "DuplicateMissionCodeError",
    "NotFoundError",
    "MissionNotFoundError",
    "ScheduleNotFoundError",
    "InvalidTransitionError",
    "ConcurrencyConflictError",
    "LockNotHeldError",
    "UpstreamUnavailableError",
    "is_retryable",
    "error_code",
]
