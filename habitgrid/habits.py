import asyncio
from collections.abc import Callable, Coroutine
from datetime import date
from typing import TypeVar

from fncli import UsageError, cli

from . import config
from .core.errors import NotFoundError, ValidationError
from .core.models import Habit
from .gateway import SqliteGateway
from .lib import clock
from .lib.dates import WEEKDAYS, parse_day, parse_month
from .lib.errors import echo
from .lib.fuzzy import find_in_pool, find_in_pool_exact
from .lib.render import render_dashboard, render_month_matrix, render_stats
from .session import Session

__all__ = [
    "dashboard",
    "load_session",
    "resolve_habit",
]

T = TypeVar("T")

_ALL_DAYS = {"all", "daily", "every", "*"}


# ── domain ───────────────────────────────────────────────────────────────────


def _run(fn: Callable[[], Coroutine[object, object, T]]) -> T:
    return asyncio.run(fn())


async def load_session(view_day: date | None = None) -> Session:
    settings = config.load_settings()
    session = Session(SqliteGateway(), settings.owner, settings)
    await session.refresh(view_day)
    return session


def resolve_habit(session: Session, ref: str, exact: bool = False) -> Habit:
    find = find_in_pool_exact if exact else find_in_pool
    habit = find(ref, session.state.habits)
    if not habit:
        raise NotFoundError(f"No habit found: '{ref}'")
    return habit


def _month_day(month: str | None) -> date | None:
    return parse_month(month) if month else None


def _recurrence_arg(labels: str | None) -> str | None:
    if labels is None or labels.strip().lower() in _ALL_DAYS:
        return None
    return labels


def dashboard() -> None:
    async def go() -> str:
        session = await load_session()
        assert session.snapshot is not None
        return render_dashboard(session.snapshot)

    echo(_run(go).rstrip("\n"))


# ── cli ──────────────────────────────────────────────────────────────────────


@cli("habitgrid")
def add(name: str, days: str | None = None, icon: str | None = None, target: int | None = None) -> None:
    """Add a habit (days: Mon,Wed,Fri; default every day)"""

    async def go() -> Habit:
        session = await load_session()
        return await session.coordinator().create_habit(
            name,
            recurrence=_recurrence_arg(days),
            icon=icon,
            target_per_month=target,
        )

    habit = _run(go)
    schedule = ",".join(w for w in WEEKDAYS if w in habit.recurrence) or "daily"
    echo(f"added: {habit.name} ({schedule}, {habit.target_per_month}/mo) [{habit.id[:8]}]")


@cli("habitgrid")
def check(ref: str, on: str = "today") -> None:
    """Toggle a habit's completion for a day"""

    async def go() -> tuple[Habit, bool, int]:
        day = parse_day(on)
        if day > clock.today():
            raise ValidationError(f"cannot check {day.isoformat()}: it is in the future")
        session = await load_session(day)
        habit = resolve_habit(session, ref)
        done = session.state.is_completed(habit.id, day)
        completed = await session.coordinator().toggle_completion(habit.id, day, done)
        snapshot = await session.refresh(day)
        return habit, completed, snapshot.streak if snapshot else 0

    habit, completed, streak = _run(go)
    mark = "✓" if completed else "□"
    echo(f"{mark} {habit.name.lower()}  (streak {streak}d)")


@cli("habitgrid")
def rm(ref: str) -> None:
    """Delete a habit and its completions"""

    async def go() -> Habit:
        session = await load_session()
        habit = resolve_habit(session, ref, exact=True)
        await session.coordinator().delete_habit(habit.id)
        return habit

    habit = _run(go)
    echo(f"removed: {habit.name}")


@cli("habitgrid")
def rename(ref: str, name: str) -> None:
    """Rename a habit"""

    async def go() -> Habit:
        session = await load_session()
        habit = resolve_habit(session, ref)
        if habit.name == name.strip():
            raise ValidationError(f"cannot rename '{habit.name}' to itself")
        return await session.coordinator().rename_habit(habit.id, name)

    habit = _run(go)
    echo(f"→ {habit.name}")


@cli("habitgrid")
def days(ref: str, labels: str) -> None:
    """Set the weekdays a habit is due (Mon,Wed,Fri or 'all')"""

    async def go() -> Habit:
        session = await load_session()
        habit = resolve_habit(session, ref)
        return await session.coordinator().set_recurrence(habit.id, _recurrence_arg(labels))

    habit = _run(go)
    schedule = ",".join(w for w in WEEKDAYS if w in habit.recurrence) or "daily"
    echo(f"{habit.name}: {schedule}")


@cli("habitgrid")
def move(ref: str, position: int) -> None:
    """Move a habit to a 1-based position in the list"""
    if position < 1:
        raise UsageError(f"position must be 1 or more, got {position}")

    async def go() -> list[Habit]:
        session = await load_session()
        habit = resolve_habit(session, ref)
        order = [h for h in session.state.habits if h.id != habit.id]
        index = min(position, len(order) + 1) - 1
        order.insert(index, habit)
        return await session.coordinator().reorder_habits(order)

    for h in _run(go):
        echo(f"  {h.position + 1}. {h.name.lower()}")


@cli("habitgrid")
def matrix(month: str | None = None) -> None:
    """Show the month's habit matrix (YYYY-MM, default current month)"""

    async def go() -> str:
        session = await load_session(_month_day(month))
        assert session.snapshot is not None
        return render_month_matrix(session.snapshot)

    echo(_run(go))


@cli("habitgrid")
def stats(month: str | None = None) -> None:
    """Show efficiency, top habits and the last 7 days"""

    async def go() -> str:
        session = await load_session(_month_day(month))
        assert session.snapshot is not None
        return render_stats(session.snapshot)

    echo(_run(go))


@cli("habitgrid")
def streak() -> None:
    """Show the current streak of days with any habit done"""

    async def go() -> int:
        session = await load_session()
        return session.snapshot.streak if session.snapshot else 0

    echo(f"streak: {_run(go)}d")


@cli("habitgrid", flags={"name": []})
def owner(name: str | None = None) -> None:
    """Show or switch the owner whose habits are listed"""
    if name is None:
        echo(config.get_owner())
        return
    if not name.strip():
        raise UsageError("owner cannot be blank")
    config.set_owner(name.strip())
    echo(f"owner: {name.strip()}")
