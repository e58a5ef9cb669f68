"""Cron expression validation, next-occurrence computation and descriptions.

Only the standard five-field grammar is accepted (minute, hour,
day-of-month, month, day-of-week) with numbers, ``*``, ``/``, ``,`` and
``-``. All evaluation happens in UTC.
"""

import re
from datetime import datetime, timezone
from typing import Optional

from croniter import CroniterBadDateError, croniter

from evcharge.core.exceptions import ValidationError

_FIELD_PATTERN = re.compile(r"^[\d*/,\-]+$")

KNOWN_PATTERNS = {
    "* * * * *": "Every minute",
    "0 * * * *": "Every hour",
    "0 0 * * *": "Daily at midnight",
    "0 0 * * 0": "Every Sunday at midnight",
    "0 0 1 * *": "Monthly on the 1st at midnight",
    "0 0 1 1 *": "Yearly on January 1st at midnight",
}

DAY_NAMES = [
    "Sunday",
    "Monday",
    "Tuesday",
    "Wednesday",
    "Thursday",
    "Friday",
    "Saturday",
    "Sunday",
]


class InvalidCronExpression(ValidationError):
    """Raised when a cron expression is not a valid five-field expression."""

    def __init__(self, expression: str, reason: str):
        super().__init__(
            message=f"Invalid cron expression '{expression}': {reason}",
            field="cronExpression",
            value=expression,
        )
        self.expression = expression
        self.reason = reason


def _split_fields(expression: str) -> list:
    return expression.strip().split()


def validate_cron_expression(expression: Optional[str]) -> None:
    """Raise InvalidCronExpression unless ``expression`` is a valid cron."""
    if not isinstance(expression, str) or not expression.strip():
        raise InvalidCronExpression(str(expression), "expression is empty")

    fields = _split_fields(expression)
    if len(fields) != 5:
        raise InvalidCronExpression(
            expression, f"expected 5 fields, got {len(fields)}"
        )

    for field in fields:
        if not _FIELD_PATTERN.match(field):
            raise InvalidCronExpression(
                expression, f"unsupported characters in field '{field}'"
            )

    if not croniter.is_valid(" ".join(fields)):
        raise InvalidCronExpression(expression, "value out of range")

    # Day-of-month and month may only combine into nonexistent dates
    try:
        croniter(" ".join(fields), datetime(2000, 1, 1, tzinfo=timezone.utc)).get_next(
            datetime
        )
    except CroniterBadDateError as e:
        raise InvalidCronExpression(expression, "never matches a date") from e


def is_valid_cron_expression(expression: Optional[str]) -> bool:
    try:
        validate_cron_expression(expression)
    except InvalidCronExpression:
        return False
    return True


def next_occurrence(expression: str, after: Optional[datetime] = None) -> datetime:
    """Return the first UTC instant strictly after ``after`` matching ``expression``.

    :param expression: Valid five-field cron expression
    :param after: Reference instant, defaults to now. Naive values are treated as UTC.
    :returns: Timezone-aware UTC datetime
    :raises InvalidCronExpression: If the expression is malformed
    """
    validate_cron_expression(expression)

    if after is None:
        after = datetime.now(timezone.utc)
    elif after.tzinfo is None:
        after = after.replace(tzinfo=timezone.utc)
    else:
        after = after.astimezone(timezone.utc)

    iterator = croniter(" ".join(_split_fields(expression)), after)
    candidate = iterator.get_next(datetime)
    while candidate <= after:
        candidate = iterator.get_next(datetime)
    return candidate.astimezone(timezone.utc)


def ordinal_suffix(n: int) -> str:
    if 11 <= n % 100 <= 13:
        return "th"
    return {1: "st", 2: "nd", 3: "rd"}.get(n % 10, "th")


def _step(field: str) -> Optional[int]:
    match = re.fullmatch(r"\*/(\d+)", field)
    return int(match.group(1)) if match else None


def describe(expression: Optional[str]) -> str:
    """Return a human-readable description of a cron expression.

    Never raises; unrecognised or invalid expressions are returned unchanged.
    """
    if not is_valid_cron_expression(expression):
        return expression or ""

    normalized = " ".join(_split_fields(expression))
    if normalized in KNOWN_PATTERNS:
        return KNOWN_PATTERNS[normalized]

    minute, hour, day_of_month, month, day_of_week = normalized.split()

    minute_step = _step(minute)
    if minute_step and hour == day_of_month == month == day_of_week == "*":
        return "Every minute" if minute_step == 1 else f"Every {minute_step} minutes"

    hour_step = _step(hour)
    if minute == "0" and hour_step and day_of_month == month == day_of_week == "*":
        return "Every hour" if hour_step == 1 else f"Every {hour_step} hours"

    if not (minute.isdigit() and hour.isdigit()):
        return expression

    time_label = f"{int(hour):02d}:{int(minute):02d}"

    if day_of_month == "*" and month == "*":
        if day_of_week == "*":
            return f"Daily at {time_label}"
        if day_of_week == "1-5":
            return f"Weekdays at {time_label}"
        if day_of_week.isdigit() and int(day_of_week) <= 7:
            return f"Every {DAY_NAMES[int(day_of_week)]} at {time_label}"

    if day_of_month.isdigit() and month == "*" and day_of_week == "*":
        day = int(day_of_month)
        return f"Monthly on the {day}{ordinal_suffix(day)} at {time_label}"

    return expression
