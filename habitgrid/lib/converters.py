from collections.abc import Iterable
from datetime import date, datetime
from typing import cast

from habitgrid.core.models import COMPLETED, CompletionEvent, Habit
from habitgrid.recurrence import parse_recurrence

from .dates import WEEKDAYS, parse_key

HabitRow = tuple[object, ...]
EventRow = tuple[object, ...]


def _parse_datetime_optional(val) -> datetime | None:
    """Parse an optional datetime value that may be str or numeric timestamp."""
    if isinstance(val, str) and val:
        try:
            return datetime.fromisoformat(val)
        except ValueError:
            return datetime.combine(date.fromisoformat(val), datetime.min.time())
    elif isinstance(val, (int, float)):
        return datetime.fromtimestamp(val)
    return None


def _int_or(val: object, default: int = 0) -> int:
    return int(cast(int, val)) if val is not None else default


def format_recurrence(recurrence: Iterable[str]) -> str | None:
    """Store weekdays Monday-first; unrecognized labels trail in sorted order."""
    labels = set(recurrence)
    if not labels:
        return None
    known = [w for w in WEEKDAYS if w in labels]
    unknown = sorted(labels - set(WEEKDAYS))
    return ",".join(known + unknown)


def row_to_habit(row: HabitRow) -> Habit:
    """
    Converts a raw database row from habits table into a Habit object.
    Expected row format: (id, name, icon, target_per_month, recurrence, position, current_streak, longest_streak, created)
    """
    return Habit(
        id=cast(str, row[0]),
        name=cast(str, row[1]),
        icon=cast(str, row[2]) if row[2] is not None else None,
        target_per_month=_int_or(row[3]),
        recurrence=parse_recurrence(cast(str, row[4]) if row[4] else None),
        position=_int_or(row[5]),
        current_streak=_int_or(row[6]),
        longest_streak=_int_or(row[7]),
        created=_parse_datetime_optional(row[8]) if len(row) > 8 else None,
    )


def row_to_event(row: EventRow) -> CompletionEvent:
    """
    Converts a raw database row from completion_events into a CompletionEvent.
    Expected row format: (habit_id, day, status)
    """
    return CompletionEvent(
        habit_id=cast(str, row[0]),
        day=parse_key(cast(str, row[1])),
        status=cast(str, row[2]) if len(row) > 2 and row[2] is not None else COMPLETED,
    )
