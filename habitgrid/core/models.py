import dataclasses
from collections.abc import Mapping
from datetime import date, datetime

COMPLETED = "completed"


@dataclasses.dataclass(frozen=True)
class Habit:
    id: str
    name: str
    position: int = 0
    icon: str | None = None
    target_per_month: int = 0
    recurrence: frozenset[str] = frozenset()
    current_streak: int = 0
    longest_streak: int = 0
    created: datetime | None = None


@dataclasses.dataclass(frozen=True)
class CompletionEvent:
    habit_id: str
    day: date
    status: str = COMPLETED

    @property
    def completed(self) -> bool:
        return self.status == COMPLETED


@dataclasses.dataclass(frozen=True)
class DueCell:
    habit_id: str
    day: date
    due: bool
    completed: bool


@dataclasses.dataclass(frozen=True)
class DayCount:
    day: date
    completed: int


@dataclasses.dataclass(frozen=True)
class HabitScore:
    habit: Habit
    score: int


@dataclasses.dataclass(frozen=True)
class MonthlyProgress:
    completed: int
    total: int
    percent: int


@dataclasses.dataclass(frozen=True)
class Snapshot:
    today: date
    view_day: date
    habits: tuple[Habit, ...]
    days: tuple[date, ...]
    grid: Mapping[tuple[str, str], DueCell]
    checklist: tuple[tuple[Habit, bool], ...]
    weekly: tuple[DayCount, ...]
    trend: tuple[DayCount, ...]
    efficiency: int
    progress: MonthlyProgress
    top: tuple[HabitScore, ...]
    streak: int
