from datetime import datetime, timedelta, timezone

import pytest

from evcharge.core.exceptions import ValidationError
from evcharge.features.scheduler.cron import (
    InvalidCronExpression,
    describe,
    is_valid_cron_expression,
    next_occurrence,
    ordinal_suffix,
    validate_cron_expression,
)


@pytest.mark.parametrize(
    "expression",
    [
        "* * * * *",
        "*/5 * * * *",
        "0 9 * * 1-5",
        "30 8,17 * * *",
        "0 0 1 * *",
        "15 14 1 * *",
        "0 9 * * 7",
        "  0 12 * * *  ",
    ],
)
def test_valid_expressions_accepted(expression):
    """Test standard five-field expressions pass validation"""
    validate_cron_expression(expression)
    assert is_valid_cron_expression(expression) is True


@pytest.mark.parametrize(
    "expression",
    [
        "",
        "   ",
        None,
        "not a cron",
        "* * * *",
        "0 0 * * * *",
        "@daily",
        "0 9 * * MON",
        "0 0 1 JAN *",
        "60 * * * *",
        "0 24 * * *",
        "0 0 32 * *",
        "? * * * *",
    ],
)
def test_invalid_expressions_rejected(expression):
    """Test names, macros, wrong field counts and out-of-range values are rejected"""
    assert is_valid_cron_expression(expression) is False
    with pytest.raises(InvalidCronExpression):
        validate_cron_expression(expression)


def test_expression_that_never_fires_rejected():
    """Test day and month combinations with no calendar date are rejected"""
    with pytest.raises(InvalidCronExpression) as exc_info:
        validate_cron_expression("0 0 31 2 *")

    assert exc_info.value.reason == "never matches a date"
    assert is_valid_cron_expression("0 0 30 2 *") is False
    assert is_valid_cron_expression("0 0 29 2 *") is True


def test_invalid_expression_is_validation_error():
    """Test invalid cron surfaces as a validation error on the cronExpression field"""
    with pytest.raises(ValidationError) as exc_info:
        validate_cron_expression("0 0 * * * *")

    assert exc_info.value.field == "cronExpression"
    assert "Invalid cron expression" in exc_info.value.message


def test_next_occurrence_is_strictly_after_reference():
    """Test a reference instant on a match boundary yields the following match"""
    after = datetime(2024, 1, 1, 0, 0, tzinfo=timezone.utc)

    result = next_occurrence("0 0 * * *", after)

    assert result == datetime(2024, 1, 2, 0, 0, tzinfo=timezone.utc)


def test_next_occurrence_step_minutes():
    """Test step expressions round up to the next matching minute"""
    after = datetime(2024, 3, 5, 10, 7, 30, tzinfo=timezone.utc)

    result = next_occurrence("*/15 * * * *", after)

    assert result == datetime(2024, 3, 5, 10, 15, tzinfo=timezone.utc)


def test_next_occurrence_is_deterministic():
    """Test the same expression and reference always give the same instant"""
    after = datetime(2024, 6, 14, 13, 45, tzinfo=timezone.utc)

    first = next_occurrence("30 9 * * 1-5", after)
    second = next_occurrence("30 9 * * 1-5", after)

    assert first == second
    # Friday afternoon rolls over to Monday morning
    assert first == datetime(2024, 6, 17, 9, 30, tzinfo=timezone.utc)


def test_next_occurrence_sunday_as_zero_and_seven():
    """Test day-of-week 0 and 7 both mean Sunday"""
    monday = datetime(2024, 1, 1, 12, 0, tzinfo=timezone.utc)
    expected = datetime(2024, 1, 7, 9, 0, tzinfo=timezone.utc)

    assert next_occurrence("0 9 * * 0", monday) == expected
    assert next_occurrence("0 9 * * 7", monday) == expected


def test_next_occurrence_treats_naive_reference_as_utc():
    """Test naive datetimes are interpreted as UTC"""
    naive = datetime(2024, 1, 1, 8, 59)

    result = next_occurrence("0 9 * * *", naive)

    assert result == datetime(2024, 1, 1, 9, 0, tzinfo=timezone.utc)
    assert result.tzinfo is not None


def test_next_occurrence_converts_other_timezones():
    """Test aware references in other zones are evaluated in UTC"""
    cet = timezone(timedelta(hours=1))
    after = datetime(2024, 1, 1, 9, 30, tzinfo=cet)  # 08:30 UTC

    result = next_occurrence("0 9 * * *", after)

    assert result == datetime(2024, 1, 1, 9, 0, tzinfo=timezone.utc)


def test_next_occurrence_defaults_to_now():
    """Test omitting the reference uses the current time"""
    before = datetime.now(timezone.utc)

    result = next_occurrence("* * * * *")

    assert before < result <= before + timedelta(minutes=1)


def test_next_occurrence_rejects_invalid_expression():
    """Test computing from an invalid expression raises"""
    with pytest.raises(InvalidCronExpression):
        next_occurrence("every day")


@pytest.mark.parametrize(
    "expression,expected",
    [
        ("* * * * *", "Every minute"),
        ("0 * * * *", "Every hour"),
        ("0 0 * * *", "Daily at midnight"),
        ("0 0 * * 0", "Every Sunday at midnight"),
        ("0 0 1 * *", "Monthly on the 1st at midnight"),
        ("0 0 1 1 *", "Yearly on January 1st at midnight"),
        ("*/5 * * * *", "Every 5 minutes"),
        ("*/1 * * * *", "Every minute"),
        ("0 */2 * * *", "Every 2 hours"),
        ("30 9 * * *", "Daily at 09:30"),
        ("0 9 * * 1-5", "Weekdays at 09:00"),
        ("0 9 * * 1", "Every Monday at 09:00"),
        ("0 18 * * 5", "Every Friday at 18:00"),
        ("0 9 * * 7", "Every Sunday at 09:00"),
        ("0 12 15 * *", "Monthly on the 15th at 12:00"),
        ("0 8 22 * *", "Monthly on the 22nd at 08:00"),
        ("45 23 3 * *", "Monthly on the 3rd at 23:45"),
    ],
)
def test_describe_common_patterns(expression, expected):
    """Test descriptions of common cron patterns"""
    assert describe(expression) == expected


@pytest.mark.parametrize(
    "expression",
    [
        "not a cron",
        "0 9,17 * * *",
        "0 9 * 1 1",
        "0 9 1 * 1",
        "*/10 9-17 * * 1-5",
    ],
)
def test_describe_falls_back_to_expression(expression):
    """Test unrecognised or invalid expressions are returned unchanged"""
    assert describe(expression) == expression


def test_describe_empty_expression():
    """Test an empty expression describes as an empty string"""
    assert describe(None) == ""
    assert describe("") == ""


@pytest.mark.parametrize(
    "n,suffix",
    [
        (1, "st"),
        (2, "nd"),
        (3, "rd"),
        (4, "th"),
        (11, "th"),
        (12, "th"),
        (13, "th"),
        (21, "st"),
        (22, "nd"),
        (23, "rd"),
        (31, "st"),
        (111, "th"),
    ],
)
def test_ordinal_suffix(n, suffix):
    """Test English ordinal suffixes including the teens"""
    assert ordinal_suffix(n) == suffix
