from collections.abc import Iterable
from datetime import date, timedelta

__all__ = ["current_streak", "habit_streaks", "longest_streak"]


def current_streak(days: Iterable[date], today: date) -> int:
    """Consecutive days with a completion, ending today or yesterday.

    `days` is whatever lookback the caller fetched; a streak longer than that
    window is reported at the window's length.
    """
    unique = sorted(set(days), reverse=True)
    present = set(unique)
    yesterday = today - timedelta(days=1)

    if today in present:
        anchor = today
    elif yesterday in present:
        anchor = yesterday
    else:
        return 0

    streak = 0
    for day in unique:
        expected = anchor - timedelta(days=streak)
        if day == expected:
            streak += 1
        elif day < expected:
            break
    return streak


def longest_streak(days: Iterable[date]) -> int:
    ordered = sorted(set(days))
    if not ordered:
        return 0
    best = run = 1
    for prev, cur in zip(ordered, ordered[1:], strict=False):
        run = run + 1 if (cur - prev).days == 1 else 1
        best = max(best, run)
    return best


def habit_streaks(days: Iterable[date], today: date) -> tuple[int, int]:
    unique = set(days)
    return current_streak(unique, today), longest_streak(unique)
