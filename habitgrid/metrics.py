import math
from collections import defaultdict
from collections.abc import Iterable, Sequence
from datetime import date

from .config import EFFICIENCY_BASES
from .core.errors import ValidationError
from .core.models import CompletionEvent, DayCount, Habit, HabitScore, MonthlyProgress
from .grid import merge_grid
from .lib.dates import month_bounds, trailing_days

__all__ = [
    "EFFICIENCY_BASES",
    "consistency_score",
    "daily_series",
    "monthly_efficiency",
    "monthly_progress",
    "round_half_up",
    "top_habits",
    "weekly_series",
]


def round_half_up(value: float) -> int:
    return math.floor(value + 0.5)


def _pct(done: int, total: int) -> int:
    if total == 0:
        return 0
    return round_half_up(done / total * 100)


def daily_series(events: Iterable[CompletionEvent], days: Sequence[date]) -> list[DayCount]:
    """Distinct habits completed per day, whether or not they were due."""
    wanted = set(days)
    per_day: dict[date, set[str]] = defaultdict(set)
    for e in events:
        if e.completed and e.day in wanted:
            per_day[e.day].add(e.habit_id)
    return [DayCount(day=d, completed=len(per_day.get(d, ()))) for d in days]


def weekly_series(
    events: Iterable[CompletionEvent], today: date, window: int = 7
) -> list[DayCount]:
    return daily_series(events, trailing_days(today, window))


def monthly_efficiency(
    habits: Sequence[Habit],
    events: Iterable[CompletionEvent],
    days: Sequence[date],
    basis: str = "all",
) -> int:
    """Completed cells as a percentage of possible cells over `days`.

    basis="all" counts every habit x day as possible, ignoring recurrence.
    basis="due" only counts cells the recurrence schedules, and only completions on them.
    """
    if basis not in EFFICIENCY_BASES:
        raise ValidationError(f"unknown efficiency basis '{basis}'")
    cells = merge_grid(habits, events, days).values()
    if basis == "due":
        possible = sum(1 for c in cells if c.due)
        done = sum(1 for c in cells if c.due and c.completed)
    else:
        possible = len(habits) * len(days)
        done = sum(1 for c in cells if c.completed)
    return _pct(done, possible)


def monthly_progress(
    habits: Sequence[Habit], events: Iterable[CompletionEvent], today: date
) -> MonthlyProgress:
    first = today.replace(day=1)
    done = len({(e.habit_id, e.day) for e in events if e.completed and first <= e.day <= today})
    total = max(1, len(habits) * today.day)
    return MonthlyProgress(completed=done, total=total, percent=min(100, _pct(done, total)))


def consistency_score(
    habit: Habit, events: Iterable[CompletionEvent], month_day: date, today: date
) -> int:
    first, last = month_bounds(month_day)
    elapsed = max(1, (min(today, last) - first).days + 1)
    done = len(
        {e.day for e in events if e.habit_id == habit.id and e.completed and first <= e.day <= last}
    )
    return round_half_up(min(1.0, done / elapsed) * 100)


def top_habits(
    habits: Sequence[Habit],
    events: Iterable[CompletionEvent],
    month_day: date,
    today: date,
    limit: int = 10,
) -> list[HabitScore]:
    events = list(events)
    scored = [HabitScore(habit=h, score=consistency_score(h, events, month_day, today)) for h in habits]
    ranked = sorted(scored, key=lambda s: s.score, reverse=True)
    return ranked[:limit]
