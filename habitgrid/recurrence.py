import re
from collections.abc import Iterable, Sequence
from datetime import date

from .core.models import Habit
from .lib.dates import WEEKDAYS, weekday_label

__all__ = ["due_habits", "is_due", "parse_recurrence", "unknown_labels"]

_SPLIT_RE = re.compile(r"[,\s]+")


def _normalize(label: str) -> str:
    label = label.strip()
    return label[:1].upper() + label[1:].lower()


def parse_recurrence(raw: str | Iterable[str] | None) -> frozenset[str]:
    """Normalize a stored or typed recurrence set.

    Unrecognized labels are kept as-is so that legacy rows stay loadable; they
    never match a weekday.
    """
    if raw is None:
        return frozenset()
    parts = _SPLIT_RE.split(raw) if isinstance(raw, str) else list(raw)
    return frozenset(_normalize(p) for p in parts if p and p.strip())


def unknown_labels(recurrence: Iterable[str]) -> set[str]:
    return {label for label in recurrence if label not in WEEKDAYS}


def is_due(habit: Habit, day: date) -> bool:
    if not habit.recurrence:
        return True
    return weekday_label(day) in habit.recurrence


def due_habits(habits: Sequence[Habit], day: date) -> list[Habit]:
    return [h for h in habits if is_due(h, day)]
