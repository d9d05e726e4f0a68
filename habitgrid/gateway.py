import asyncio
import logging
import sqlite3
from collections.abc import Callable, Iterator, Sequence
from contextlib import contextmanager
from datetime import date
from pathlib import Path
from typing import Protocol, TypeVar

from . import db
from .core.errors import (
    InvalidRangeError,
    NotFoundError,
    StorageUnavailableError,
    ValidationError,
)
from .core.models import COMPLETED, CompletionEvent, Habit
from .lib import clock
from .lib.converters import format_recurrence, row_to_event, row_to_habit
from .lib.dates import day_key, parse_key
from .streaks import habit_streaks

__all__ = ["SqliteGateway", "StorageGateway"]

logger = logging.getLogger(__name__)

R = TypeVar("R")

_HABIT_COLS = (
    "id, name, icon, target_per_month, recurrence, position, current_streak, longest_streak, created"
)
_UPDATABLE = {"name", "icon", "target_per_month", "recurrence", "position"}


class StorageGateway(Protocol):
    async def list_habits(self, owner_id: str) -> list[Habit]: ...

    async def list_completion_events(
        self, owner_id: str, start: date, end: date
    ) -> list[CompletionEvent]: ...

    async def recent_completion_days(self, owner_id: str, limit: int) -> list[date]: ...

    async def upsert_completion_event(
        self, owner_id: str, habit_id: str, day: date, status: str = COMPLETED
    ) -> None: ...

    async def delete_completion_event(self, owner_id: str, habit_id: str, day: date) -> None: ...

    async def update_habit_positions(self, owner_id: str, ordered_ids: Sequence[str]) -> None: ...

    async def create_habit(self, owner_id: str, habit: Habit) -> Habit: ...

    async def update_habit(self, owner_id: str, habit_id: str, **fields: object) -> Habit: ...

    async def delete_habit(self, owner_id: str, habit_id: str) -> None: ...


@contextmanager
def _storage_errors(action: str) -> Iterator[None]:
    try:
        yield
    except sqlite3.IntegrityError as e:
        if "FOREIGN KEY" in str(e).upper():
            raise NotFoundError(f"{action}: habit no longer exists") from e
        raise ValidationError(f"{action}: {e}") from e
    except sqlite3.DatabaseError as e:
        raise StorageUnavailableError(f"{action}: {e}") from e


class SqliteGateway:
    """Storage gateway over the local sqlite database.

    Every call opens its own connection inside a worker thread, so calls for
    different keys may overlap.
    """

    def __init__(self, db_path: Path | None = None, today: Callable[[], date] | None = None):
        self.db_path = db_path
        self._today = today or clock.today

    async def _run(self, action: str, fn: Callable[..., R], *args: object) -> R:
        def call() -> R:
            with _storage_errors(action):
                return fn(*args)

        return await asyncio.to_thread(call)

    # ── reads ────────────────────────────────────────────────────────────────

    def _get_habit(self, conn: sqlite3.Connection, owner_id: str, habit_id: str) -> Habit:
        row = conn.execute(
            f"SELECT {_HABIT_COLS} FROM habits WHERE id = ? AND owner_id = ?",  # noqa: S608
            (habit_id, owner_id),
        ).fetchone()
        if not row:
            raise NotFoundError(f"no habit '{habit_id}'")
        return row_to_habit(row)

    def _list_habits(self, owner_id: str) -> list[Habit]:
        with db.get_db(self.db_path) as conn:
            rows = conn.execute(
                f"SELECT {_HABIT_COLS} FROM habits WHERE owner_id = ? "  # noqa: S608
                "ORDER BY position ASC, created ASC, rowid ASC",
                (owner_id,),
            ).fetchall()
        return [row_to_habit(row) for row in rows]

    async def list_habits(self, owner_id: str) -> list[Habit]:
        return await self._run("list habits", self._list_habits, owner_id)

    def _list_events(self, owner_id: str, start: date, end: date) -> list[CompletionEvent]:
        with db.get_db(self.db_path) as conn:
            rows = conn.execute(
                "SELECT habit_id, day, status FROM completion_events "
                "WHERE owner_id = ? AND day >= ? AND day <= ? ORDER BY day, habit_id",
                (owner_id, day_key(start), day_key(end)),
            ).fetchall()
        return [row_to_event(row) for row in rows]

    async def list_completion_events(
        self, owner_id: str, start: date, end: date
    ) -> list[CompletionEvent]:
        if end < start:
            raise InvalidRangeError(start, end)
        return await self._run("list completion events", self._list_events, owner_id, start, end)

    def _recent_days(self, owner_id: str, limit: int) -> list[date]:
        with db.get_db(self.db_path) as conn:
            rows = conn.execute(
                "SELECT day FROM completion_events WHERE owner_id = ? AND status = ? "
                "ORDER BY day DESC LIMIT ?",
                (owner_id, COMPLETED, limit),
            ).fetchall()
        return [parse_key(row[0]) for row in rows]

    async def recent_completion_days(self, owner_id: str, limit: int) -> list[date]:
        """Days of the `limit` most recent completion events, newest first, duplicates kept."""
        return await self._run("read recent completions", self._recent_days, owner_id, limit)

    # ── completion writes ────────────────────────────────────────────────────

    def _refresh_streaks(self, conn: sqlite3.Connection, habit_id: str) -> None:
        rows = conn.execute(
            "SELECT day FROM completion_events WHERE habit_id = ? AND status = ?",
            (habit_id, COMPLETED),
        ).fetchall()
        current, longest = habit_streaks((parse_key(r[0]) for r in rows), self._today())
        conn.execute(
            "UPDATE habits SET current_streak = ?, longest_streak = ? WHERE id = ?",
            (current, longest, habit_id),
        )

    def _upsert_event(self, owner_id: str, habit_id: str, day: date, status: str) -> None:
        with db.get_db(self.db_path) as conn:
            self._get_habit(conn, owner_id, habit_id)
            conn.execute(
                "INSERT INTO completion_events (owner_id, habit_id, day, status) VALUES (?, ?, ?, ?) "
                "ON CONFLICT (habit_id, day) DO UPDATE SET status = excluded.status",
                (owner_id, habit_id, day_key(day), status),
            )
            self._refresh_streaks(conn, habit_id)

    async def upsert_completion_event(
        self, owner_id: str, habit_id: str, day: date, status: str = COMPLETED
    ) -> None:
        logger.debug("upsert %s %s", habit_id, day_key(day))
        await self._run("save completion", self._upsert_event, owner_id, habit_id, day, status)

    def _delete_event(self, owner_id: str, habit_id: str, day: date) -> None:
        with db.get_db(self.db_path) as conn:
            cursor = conn.execute(
                "DELETE FROM completion_events WHERE owner_id = ? AND habit_id = ? AND day = ?",
                (owner_id, habit_id, day_key(day)),
            )
            if cursor.rowcount:
                self._refresh_streaks(conn, habit_id)

    async def delete_completion_event(self, owner_id: str, habit_id: str, day: date) -> None:
        logger.debug("delete %s %s", habit_id, day_key(day))
        await self._run("remove completion", self._delete_event, owner_id, habit_id, day)

    # ── habit writes ─────────────────────────────────────────────────────────

    def _update_position(self, owner_id: str, habit_id: str, position: int) -> None:
        with db.get_db(self.db_path) as conn:
            cursor = conn.execute(
                "UPDATE habits SET position = ? WHERE id = ? AND owner_id = ?",
                (position, habit_id, owner_id),
            )
            if not cursor.rowcount:
                raise NotFoundError(f"no habit '{habit_id}'")

    async def update_habit_positions(self, owner_id: str, ordered_ids: Sequence[str]) -> None:
        """Write position=index for every id, one write per habit, and wait for all."""
        results = await asyncio.gather(
            *(
                self._run("save position", self._update_position, owner_id, habit_id, index)
                for index, habit_id in enumerate(ordered_ids)
            ),
            return_exceptions=True,
        )
        failures = [r for r in results if isinstance(r, BaseException)]
        if not failures:
            return
        logger.warning("%d of %d position writes failed", len(failures), len(results))
        if all(isinstance(f, NotFoundError) for f in failures):
            raise failures[0]
        first = next(f for f in failures if not isinstance(f, NotFoundError))
        raise StorageUnavailableError(
            f"{len(failures)} of {len(results)} position writes failed"
        ) from first

    def _create_habit(self, owner_id: str, habit: Habit) -> Habit:
        created = habit.created or clock.now()
        with db.get_db(self.db_path) as conn:
            conn.execute(
                "INSERT INTO habits (id, owner_id, name, icon, target_per_month, recurrence, position, created) "
                "VALUES (?, ?, ?, ?, ?, ?, ?, ?)",
                (
                    habit.id,
                    owner_id,
                    habit.name,
                    habit.icon,
                    habit.target_per_month,
                    format_recurrence(habit.recurrence),
                    habit.position,
                    created.isoformat(),
                ),
            )
            return self._get_habit(conn, owner_id, habit.id)

    async def create_habit(self, owner_id: str, habit: Habit) -> Habit:
        return await self._run("create habit", self._create_habit, owner_id, habit)

    def _update_habit(self, owner_id: str, habit_id: str, fields: dict[str, object]) -> Habit:
        with db.get_db(self.db_path) as conn:
            self._get_habit(conn, owner_id, habit_id)
            if fields:
                assignments = ", ".join(f"{name} = ?" for name in fields)
                conn.execute(
                    f"UPDATE habits SET {assignments} WHERE id = ? AND owner_id = ?",  # noqa: S608
                    (*fields.values(), habit_id, owner_id),
                )
            return self._get_habit(conn, owner_id, habit_id)

    async def update_habit(self, owner_id: str, habit_id: str, **fields: object) -> Habit:
        unknown = set(fields) - _UPDATABLE
        if unknown:
            raise ValidationError(f"cannot update habit fields: {', '.join(sorted(unknown))}")
        if "recurrence" in fields:
            fields["recurrence"] = format_recurrence(fields["recurrence"] or ())  # type: ignore[arg-type]
        return await self._run("update habit", self._update_habit, owner_id, habit_id, fields)

    def _delete_habit(self, owner_id: str, habit_id: str) -> None:
        with db.get_db(self.db_path) as conn:
            cursor = conn.execute(
                "DELETE FROM habits WHERE id = ? AND owner_id = ?", (habit_id, owner_id)
            )
            if not cursor.rowcount:
                raise NotFoundError(f"no habit '{habit_id}'")

    async def delete_habit(self, owner_id: str, habit_id: str) -> None:
        await self._run("delete habit", self._delete_habit, owner_id, habit_id)
