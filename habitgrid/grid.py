from collections.abc import Iterable, Sequence
from datetime import date

from .core.models import CompletionEvent, DueCell, Habit
from .lib.dates import day_key
from .recurrence import due_habits, is_due

__all__ = ["CellKey", "checklist", "completed_keys", "merge_grid"]

CellKey = tuple[str, str]


def completed_keys(events: Iterable[CompletionEvent]) -> set[CellKey]:
    return {(e.habit_id, day_key(e.day)) for e in events if e.completed}


def merge_grid(
    habits: Sequence[Habit], events: Iterable[CompletionEvent], days: Sequence[date]
) -> dict[CellKey, DueCell]:
    """One cell per (habit, day) pair: due from recurrence, completed from the event log."""
    done = completed_keys(events)
    grid: dict[CellKey, DueCell] = {}
    for habit in habits:
        for day in days:
            key = (habit.id, day_key(day))
            grid[key] = DueCell(
                habit_id=habit.id,
                day=day,
                due=is_due(habit, day),
                completed=key in done,
            )
    return grid


def checklist(
    habits: Sequence[Habit],
    events: Iterable[CompletionEvent],
    day: date,
    due_only: bool = True,
) -> list[tuple[Habit, bool]]:
    done = completed_keys(events)
    key = day_key(day)
    pool = due_habits(habits, day) if due_only else habits
    return [(h, (h.id, key) in done) for h in pool]
