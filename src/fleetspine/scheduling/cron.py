"""Trigger validation and next-run computation.

Manifesto:
    Next-run math is a pure function of the trigger and an instant, so it
    lives apart from persistence and can be tested without a database.
    Cron expressions are evaluated with croniter in the schedule's own
    timezone and converted back to UTC.

Accepted cron forms:
    - ``@hourly`` and ``@daily`` (case-insensitive)
    - five fields; minute and hour accept ``*``, ``*/n`` or a literal
      value, day-of-month, month and day-of-week accept ``*`` or ``*/n``

Tags:
    fleetspine, scheduling, cron, croniter, timezone
"""

from __future__ import annotations

from datetime import UTC, datetime, timedelta
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from croniter import croniter

from fleetspine.core.enums import TriggerType
from fleetspine.core.errors import InvalidScheduleError
from fleetspine.core.timestamps import ensure_utc

MIN_INTERVAL_MINUTES = 1
MAX_INTERVAL_MINUTES = 43200

_MACROS = {"@hourly": "0 * * * *", "@daily": "0 0 * * *"}

# (label, min, max, literal allowed)
_FIELDS = (
    ("minute", 0, 59, True),
    ("hour", 0, 23, True),
    ("day-of-month", 1, 31, False),
    ("month", 1, 12, False),
    ("day-of-week", 0, 6, False),
)


def _valid_field(value: str, low: int, high: int, literal: bool) -> bool:
    if value == "*":
        return True
    if value.startswith("*/"):
        step = value[2:]
        return step.isdigit() and 0 < int(step) <= high
    if literal and value.isdigit():
        return low <= int(value) <= high
    return False


def normalize_cron(expression: str | None) -> str:
    """Validate *expression* and return its five-field form.

    Raises:
        InvalidScheduleError: if the expression is missing or unsupported.
    """
    if expression is None or not expression.strip():
        raise InvalidScheduleError("CronExpression is required for Cron schedules.", field="cron_expression")

    text = expression.strip()
    macro = _MACROS.get(text.lower())
    if macro is not None:
        return macro

    parts = text.split()
    if len(parts) != 5:
        raise InvalidScheduleError(
            "Cron expression must have 5 components (minute hour day-of-month month day-of-week).",
            field="cron_expression",
            value=expression,
        )
    for part, (label, low, high, literal) in zip(parts, _FIELDS):
        if not _valid_field(part, low, high, literal):
            allowed = f"'*', '*/n', or a value between {low} and {high}" if literal else "'*' or '*/n'"
            raise InvalidScheduleError(
                f"Cron {label} field is invalid. Use {allowed}.",
                field="cron_expression",
                value=expression,
            )

    normalized = " ".join(parts)
    if not croniter.is_valid(normalized):
        raise InvalidScheduleError(f"Invalid cron expression: {expression}", field="cron_expression", value=expression)
    return normalized


def resolve_timezone(name: str | None) -> ZoneInfo:
    """Look up an IANA timezone, rejecting unknown names."""
    try:
        return ZoneInfo(name or "UTC")
    except (ZoneInfoNotFoundError, ValueError) as e:
        raise InvalidScheduleError(f"Unknown timezone: {name}", field="timezone", value=name) from e


def next_cron_run(expression: str, after: datetime, timezone: str = "UTC") -> datetime:
    """First cron occurrence strictly after *after*, in UTC."""
    tz = resolve_timezone(timezone)
    local = ensure_utc(after).astimezone(tz)
    nxt = croniter(normalize_cron(expression), local).get_next(datetime)
    return nxt.astimezone(UTC)


def validate_trigger(
    trigger_type: TriggerType | str,
    *,
    run_at_utc: datetime | None = None,
    interval_minutes: int | None = None,
    cron_expression: str | None = None,
    timezone: str = "UTC",
) -> TriggerType:
    """Check trigger parameters; returns the parsed trigger type."""
    try:
        kind = TriggerType(trigger_type)
    except ValueError as e:
        raise InvalidScheduleError(f"Invalid schedule type: {trigger_type}", field="trigger_type") from e

    resolve_timezone(timezone)
    if kind == TriggerType.ONCE:
        if run_at_utc is None:
            raise InvalidScheduleError("RunAtUtc is required for Once schedules.", field="run_at_utc")
    elif kind == TriggerType.INTERVAL:
        if interval_minutes is None or not MIN_INTERVAL_MINUTES <= interval_minutes <= MAX_INTERVAL_MINUTES:
            raise InvalidScheduleError(
                f"IntervalMinutes ({MIN_INTERVAL_MINUTES}-{MAX_INTERVAL_MINUTES}) is required for Interval schedules.",
                field="interval_minutes",
                value=interval_minutes,
            )
    else:
        normalize_cron(cron_expression)
    return kind


def compute_next_run(
    trigger_type: TriggerType,
    after: datetime,
    *,
    run_at_utc: datetime | None = None,
    interval_minutes: int | None = None,
    cron_expression: str | None = None,
    timezone: str = "UTC",
) -> datetime | None:
    """Next due instant for an enabled trigger.

    A ``Once`` trigger is always due at its own timestamp, even when that
    is already in the past; the next poll fires it.
    """
    if trigger_type == TriggerType.ONCE:
        return ensure_utc(run_at_utc) if run_at_utc else None
    if trigger_type == TriggerType.INTERVAL:
        if not interval_minutes:
            return None
        return ensure_utc(after) + timedelta(minutes=interval_minutes)
    if not cron_expression:
        return None
    return next_cron_run(cron_expression, after, timezone)


__all__ = [
    "MAX_INTERVAL_MINUTES",
    "MIN_INTERVAL_MINUTES",
    "compute_next_run",
    "next_cron_run",
    "normalize_cron",
    "resolve_timezone",
    "validate_trigger",
]
