"""
Calendar-day helpers.

Every date that enters the engine goes through normalize_to_date so that a
``date``, a ``datetime`` at local midnight, a ``"YYYY-MM-DD"`` string and a
full ISO timestamp for the same day all compare equal.
"""

import calendar
import re
from datetime import date, datetime, timedelta
from typing import Any, Optional

import pytz

from planner import config

DATE_FORMAT = "%Y-%m-%d"

_DATE_PREFIX = re.compile(r"^(\d{4}-\d{2}-\d{2})")


def normalize_to_date(value: Any) -> Optional[date]:
    """
    Normalize any supported date input to a calendar day.

    Args:
        value: date, datetime, "YYYY-MM-DD" or ISO timestamp string

    Returns:
        The calendar day, or None for empty input

    Raises:
        ValueError: If a string does not start with a YYYY-MM-DD date
        TypeError: If the value is not a supported type
    """
    if value is None or value == "":
        return None

    # datetime is a subclass of date, so it has to be checked first.
    # Local components are kept, the offset is never applied.
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value

    if isinstance(value, str):
        match = _DATE_PREFIX.match(value.strip())
        if not match:
            raise ValueError(f"Invalid date value: {value!r}")
        return datetime.strptime(match.group(1), DATE_FORMAT).date()

    raise TypeError(f"Unsupported date type: {type(value).__name__}")


def to_date_string(value: Any) -> str:
    """Return the YYYY-MM-DD key for a date-like value ('' for empty input)."""
    day = normalize_to_date(value)
    return day.strftime(DATE_FORMAT) if day else ""


def is_same_day(first: Any, second: Any) -> bool:
    """True when both values name the same, non-empty calendar day."""
    first_key = to_date_string(first)
    return first_key != "" and first_key == to_date_string(second)


def add_days(value: Any, days: int) -> date:
    return normalize_to_date(value) + timedelta(days=days)


def weekday_index(day: date) -> int:
    """Weekday with 0=Sunday ... 6=Saturday."""
    return (day.weekday() + 1) % 7


def start_of_week(day: date) -> date:
    """The Sunday on or before ``day``."""
    return day - timedelta(days=weekday_index(day))


def days_in_month(year: int, month: int) -> int:
    return calendar.monthrange(year, month)[1]


def months_between(start: date, end: date) -> int:
    return (end.year - start.year) * 12 + (end.month - start.month)


def date_range(start: date, end: date):
    """Yield every day from start to end inclusive."""
    current = start
    while current <= end:
        yield current
        current += timedelta(days=1)


def get_timezone():
    return pytz.timezone(config.TIMEZONE)


def now() -> datetime:
    """Current time in the configured planner timezone."""
    return datetime.now(get_timezone())


def today() -> date:
    """Today's calendar day in the configured planner timezone."""
    return now().date()
