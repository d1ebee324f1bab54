"""
Pure schedule evaluation for recurring audit kickoffs.

Contract:
    ``parse_cron()``, ``matches_cron()``, ``next_cron_match()`` and
    ``weekly_cron_expression()`` are PURE -- no I/O, no clock reads.  The
    continuation runner passes the current time in.

Architecture: audit_batch/domain.  ZERO I/O.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timedelta

from audit_kernel.exceptions import InvalidCronExpressionError

# Cron convention: 0=Sunday ... 6=Saturday.
DAYS_OF_WEEK: dict[str, int] = {
    "SUNDAY": 0,
    "MONDAY": 1,
    "TUESDAY": 2,
    "WEDNESDAY": 3,
    "THURSDAY": 4,
    "FRIDAY": 5,
    "SATURDAY": 6,
}


# =============================================================================
# CronSpec (lightweight cron parser)
# =============================================================================


@dataclass(frozen=True)
class CronSpec:
    """Parsed cron expression (minute hour day_of_month month day_of_week).

    Each field is a frozenset of valid integer values.
    Supports: *, values, ranges (1-5), steps (*/5, 1-10/2).
    """

    minutes: frozenset[int] = field(default_factory=lambda: frozenset(range(60)))
    hours: frozenset[int] = field(default_factory=lambda: frozenset(range(24)))
    days_of_month: frozenset[int] = field(default_factory=lambda: frozenset(range(1, 32)))
    months: frozenset[int] = field(default_factory=lambda: frozenset(range(1, 13)))
    days_of_week: frozenset[int] = field(default_factory=lambda: frozenset(range(7)))


def _parse_cron_field(field_str: str, min_val: int, max_val: int) -> frozenset[int]:
    """Parse a single cron field into a frozenset of valid values.

    Raises:
        ValueError: If the field is syntactically invalid or values out of range.
    """
    values: set[int] = set()

    for part in field_str.split(","):
        part = part.strip()

        if "/" in part:
            range_part, step_str = part.split("/", 1)
            step = int(step_str)
            if step <= 0:
                raise ValueError(f"Step must be positive: {step}")

            if range_part == "*":
                start, end = min_val, max_val
            elif "-" in range_part:
                s, e = range_part.split("-", 1)
                start, end = int(s), int(e)
            else:
                start = int(range_part)
                end = max_val

            for v in range(start, end + 1, step):
                if min_val <= v <= max_val:
                    values.add(v)

        elif part == "*":
            values.update(range(min_val, max_val + 1))

        elif "-" in part:
            s, e = part.split("-", 1)
            start, end = int(s), int(e)
            if start > end:
                raise ValueError(f"Range start > end: {start}-{end}")
            for v in range(start, end + 1):
                if min_val <= v <= max_val:
                    values.add(v)

        else:
            v = int(part)
            if v < min_val or v > max_val:
                raise ValueError(
                    f"Value {v} outside range [{min_val}, {max_val}]"
                )
            values.add(v)

    if not values:
        raise ValueError(f"Field '{field_str}' matches no values")
    return frozenset(values)


def parse_cron(expression: str) -> CronSpec:
    """Parse a 5-field cron expression into a CronSpec.

    Format: ``minute hour day_of_month month day_of_week``

    Raises:
        InvalidCronExpressionError: If expression is malformed.
    """
    parts = expression.strip().split()
    if len(parts) != 5:
        raise InvalidCronExpressionError(
            expression, f"must have 5 fields, got {len(parts)}",
        )

    try:
        return CronSpec(
            minutes=_parse_cron_field(parts[0], 0, 59),
            hours=_parse_cron_field(parts[1], 0, 23),
            days_of_month=_parse_cron_field(parts[2], 1, 31),
            months=_parse_cron_field(parts[3], 1, 12),
            days_of_week=_parse_cron_field(parts[4], 0, 6),
        )
    except ValueError as exc:
        raise InvalidCronExpressionError(expression, str(exc)) from exc


def matches_cron(spec: CronSpec, dt: datetime) -> bool:
    """Check if a datetime matches a cron spec.

    Python datetime.weekday(): 0=Monday ... 6=Sunday, converted to cron's
    0=Sunday.
    """
    cron_dow = (dt.weekday() + 1) % 7
    return (
        dt.minute in spec.minutes
        and dt.hour in spec.hours
        and dt.day in spec.days_of_month
        and dt.month in spec.months
        and cron_dow in spec.days_of_week
    )


def next_cron_match(expression: str, after: datetime) -> datetime:
    """Find the first minute strictly after ``after`` matching the expression.

    Scans minute-by-minute up to 366 days (bounded iteration).

    Raises:
        InvalidCronExpressionError: If the expression is malformed or
            never matches within 366 days.
    """
    spec = parse_cron(expression)
    candidate = after.replace(second=0, microsecond=0) + timedelta(minutes=1)
    max_iterations = 366 * 24 * 60

    for _ in range(max_iterations):
        if matches_cron(spec, candidate):
            return candidate
        candidate += timedelta(minutes=1)

    raise InvalidCronExpressionError(
        expression, f"no match within 366 days after {after.isoformat()}",
    )


def weekly_cron_expression(day_of_week: str | int, hour: int) -> str:
    """Cron expression firing once a week at ``hour``:00.

    Args:
        day_of_week: Day name (``"MONDAY"``, case-insensitive) or cron
            number (0=Sunday).
        hour: 0-23.

    Raises:
        ValueError: On an unknown day or an hour outside 0-23.
    """
    if isinstance(day_of_week, str):
        try:
            dow = DAYS_OF_WEEK[day_of_week.strip().upper()]
        except KeyError:
            raise ValueError(
                f"Unknown day of week '{day_of_week}'. "
                f"Expected one of {list(DAYS_OF_WEEK)}"
            ) from None
    else:
        dow = day_of_week
        if not 0 <= dow <= 6:
            raise ValueError(f"day_of_week must be 0-6: {dow}")

    if not 0 <= hour <= 23:
        raise ValueError(f"hour must be 0-23: {hour}")

    return f"0 {hour} * * {dow}"
