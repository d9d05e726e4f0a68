import re
from collections.abc import Sequence
from datetime import date, datetime, timedelta

from dateutil import parser as dateutil_parser
from dateutil.parser import ParserError
from dateutil.relativedelta import relativedelta

from ..core.errors import InvalidRangeError, ValidationError
from . import clock

__all__ = [
    "WEEKDAYS",
    "day_key",
    "enumerate_days",
    "group_weeks",
    "month_bounds",
    "month_days",
    "parse_day",
    "parse_key",
    "parse_month",
    "trailing_days",
    "weekday_label",
]

WEEKDAYS = ("Mon", "Tue", "Wed", "Thu", "Fri", "Sat", "Sun")

_KEY_RE = re.compile(r"^\d{4}-\d{2}-\d{2}$")
_MONTH_RE = re.compile(r"^(\d{4})-(\d{2})$")

_DAY_ALIASES = {
    "monday": "mon",
    "tuesday": "tue",
    "wednesday": "wed",
    "thursday": "thu",
    "friday": "fri",
    "saturday": "sat",
    "sunday": "sun",
}


def enumerate_days(start: date, end: date) -> list[date]:
    """Every calendar day from start to end, both inclusive, ascending."""
    if end < start:
        raise InvalidRangeError(start, end)
    return [start + timedelta(days=i) for i in range((end - start).days + 1)]


def weekday_label(day: date) -> str:
    # strftime("%a") is locale dependent
    return WEEKDAYS[day.weekday()]


def day_key(day: date) -> str:
    return day.isoformat()


def parse_key(key: str) -> date:
    if not isinstance(key, str) or not _KEY_RE.match(key):
        raise ValidationError(f"malformed day key '{key}', expected YYYY-MM-DD")
    try:
        return date.fromisoformat(key)
    except ValueError as e:
        raise ValidationError(f"malformed day key '{key}': {e}") from e


def month_bounds(day: date) -> tuple[date, date]:
    first = day.replace(day=1)
    last = first + relativedelta(months=1) - timedelta(days=1)
    return first, last


def month_days(day: date) -> list[date]:
    return enumerate_days(*month_bounds(day))


def trailing_days(end: date, count: int) -> list[date]:
    if count < 1:
        raise InvalidRangeError(end, end, reason=f"window of {count} days")
    return enumerate_days(end - timedelta(days=count - 1), end)


def group_weeks(days: Sequence[date]) -> list[list[date]]:
    """Split a run of days into Monday-first weeks, closing each after Sunday."""
    weeks: list[list[date]] = []
    current: list[date] = []
    for i, day in enumerate(days):
        current.append(day)
        if day.weekday() == 6 or i == len(days) - 1:
            weeks.append(current)
            current = []
    return weeks


def parse_month(text: str) -> date:
    """Parse 'YYYY-MM' into the first day of that month."""
    match = _MONTH_RE.match(text.strip())
    if not match:
        raise ValidationError(f"invalid month '{text}', use YYYY-MM")
    year, month = int(match.group(1)), int(match.group(2))
    if not 1 <= month <= 12:
        raise ValidationError(f"invalid month '{text}'")
    return date(year, month, 1)


def parse_day(text: str, today: date | None = None) -> date:
    """Parse 'today', 'yesterday', a weekday name, an ISO key or a loose date.

    Weekday names resolve to their most recent occurrence, today included.
    """
    today = today or clock.today()
    lowered = text.strip().lower()

    if lowered == "today":
        return today
    if lowered == "yesterday":
        return today - timedelta(days=1)
    lowered = _DAY_ALIASES.get(lowered, lowered)
    labels = [w.lower() for w in WEEKDAYS]
    if lowered in labels:
        days_back = (today.weekday() - labels.index(lowered)) % 7
        return today - timedelta(days=days_back)
    if _KEY_RE.match(lowered):
        return parse_key(lowered)
    try:
        return dateutil_parser.parse(
            text, default=datetime(today.year, today.month, today.day)
        ).date()
    except (ParserError, ValueError, OverflowError) as e:
        raise ValidationError(f"unrecognized date '{text}'") from e
