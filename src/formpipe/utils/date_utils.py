"""Date parsing and calendar boundary helpers."""

from datetime import date, datetime, timedelta, tzinfo
from typing import Any

DAY_NAMES = [
    "Sunday",
    "Monday",
    "Tuesday",
    "Wednesday",
    "Thursday",
    "Friday",
    "Saturday",
]


def parse_datetime(value: Any) -> datetime | None:
    """Parse a date-ish value into a datetime.

    Accepts ``datetime``, ``date`` and ISO 8601 strings (date-only strings
    become midnight). Returns None when the value cannot be parsed.
    """
    if isinstance(value, datetime):
        return value
    if isinstance(value, date):
        return datetime(value.year, value.month, value.day)
    if not isinstance(value, str) or not value.strip():
        return None
    try:
        return datetime.fromisoformat(value.strip())
    except ValueError:
        return None


def to_local(moment: datetime, tz: tzinfo | None) -> datetime:
    """Express ``moment`` in ``tz`` as a naive wall-clock datetime.

    Naive inputs are assumed to already be wall-clock time in ``tz``.
    """
    if moment.tzinfo is not None and tz is not None:
        moment = moment.astimezone(tz)
    return moment.replace(tzinfo=None)


def start_of_day(moment: datetime) -> datetime:
    return moment.replace(hour=0, minute=0, second=0, microsecond=0)


def start_of_week(moment: datetime) -> datetime:
    """Midnight of the most recent Sunday (weeks start on day 0)."""
    return start_of_day(moment) - timedelta(days=js_weekday(moment))


def start_of_month(moment: datetime) -> datetime:
    return start_of_day(moment).replace(day=1)


def js_weekday(moment: datetime) -> int:
    """Day index with Sunday as 0 and Saturday as 6."""
    return (moment.weekday() + 1) % 7
