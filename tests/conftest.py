import asyncio
import dataclasses
import io
from contextlib import redirect_stderr, redirect_stdout
from dataclasses import dataclass, field
from datetime import date

import pytest

from habitgrid import config, db
from habitgrid.core.errors import NotFoundError, StorageUnavailableError
from habitgrid.core.models import COMPLETED, CompletionEvent, Habit
from habitgrid.lib import ansi


@dataclass
class Result:
    exit_code: int
    stdout: str
    stderr: str


class FnCLIRunner:
    def invoke(self, args: list[str]) -> Result:
        from habitgrid import cli

        out, err = io.StringIO(), io.StringIO()
        code = 0
        try:
            with redirect_stdout(out), redirect_stderr(err):
                code = cli.run(args)
        except SystemExit as e:
            code = int(e.code) if e.code is not None else 1
        return Result(code, out.getvalue(), err.getvalue())


@pytest.fixture
def tmp_habitgrid_dir(tmp_path, monkeypatch):
    home = tmp_path / ".habitgrid"
    home.mkdir()
    monkeypatch.setattr(config, "HABITGRID_DIR", home)
    monkeypatch.setattr(config, "DB_PATH", home / "habitgrid.db")
    monkeypatch.setattr(config, "CONFIG_PATH", home / "config.yaml")
    monkeypatch.setattr(config, "LOG_FILE", home / "habitgrid.log")
    monkeypatch.setattr(config, "BACKUP_DIR", home / "backups")
    monkeypatch.setattr(config._config, "_data", {})
    ansi.use(ansi.PLAIN)
    db.init()
    yield home
    ansi.use(ansi.DEFAULT)


# ── fakes ────────────────────────────────────────────────────────────────────


@dataclass
class FakeGateway:
    """In-memory gateway. Tests inject failures and gate writes with events."""

    habits: dict[str, Habit] = field(default_factory=dict)
    events: dict[tuple[str, date], CompletionEvent] = field(default_factory=dict)
    writes: list[tuple[str, str, date]] = field(default_factory=list)
    fail_writes: int = 0
    fail_with: type[Exception] = StorageUnavailableError
    gate: asyncio.Event | None = None
    read_gate: asyncio.Event | None = None
    reads: int = 0

    def add(self, *habits: Habit) -> None:
        for h in habits:
            self.habits[h.id] = h

    async def _write(self, op: str, habit_id: str, day: date) -> None:
        if self.gate is not None:
            await self.gate.wait()
        self.writes.append((op, habit_id, day))
        if self.fail_writes:
            self.fail_writes -= 1
            raise self.fail_with(f"{op} failed")

    async def list_habits(self, owner_id):
        self.reads += 1
        if self.read_gate is not None and self.reads == 1:
            await self.read_gate.wait()
        await asyncio.sleep(0)
        return sorted(self.habits.values(), key=lambda h: h.position)

    async def list_completion_events(self, owner_id, start, end):
        await asyncio.sleep(0)
        return sorted(
            (e for e in self.events.values() if start <= e.day <= end),
            key=lambda e: (e.day, e.habit_id),
        )

    async def recent_completion_days(self, owner_id, limit):
        days = sorted((e.day for e in self.events.values() if e.completed), reverse=True)
        return days[:limit]

    async def upsert_completion_event(self, owner_id, habit_id, day, status=COMPLETED):
        await self._write("upsert", habit_id, day)
        if habit_id not in self.habits:
            raise NotFoundError(habit_id)
        self.events[(habit_id, day)] = CompletionEvent(habit_id, day, status)

    async def delete_completion_event(self, owner_id, habit_id, day):
        await self._write("delete", habit_id, day)
        self.events.pop((habit_id, day), None)

    async def update_habit_positions(self, owner_id, ordered_ids):
        await self._write("reorder", ",".join(ordered_ids), date.min)
        for index, habit_id in enumerate(ordered_ids):
            self.habits[habit_id] = dataclasses.replace(self.habits[habit_id], position=index)

    async def create_habit(self, owner_id, habit):
        self.habits[habit.id] = habit
        return habit

    async def update_habit(self, owner_id, habit_id, **fields):
        if habit_id not in self.habits:
            raise NotFoundError(habit_id)
        if "recurrence" in fields:
            fields["recurrence"] = frozenset(fields["recurrence"] or ())
        self.habits[habit_id] = dataclasses.replace(self.habits[habit_id], **fields)
        return self.habits[habit_id]

    async def delete_habit(self, owner_id, habit_id):
        if self.habits.pop(habit_id, None) is None:
            raise NotFoundError(habit_id)
        for key in [k for k in self.events if k[0] == habit_id]:
            del self.events[key]


@pytest.fixture
def gateway():
    return FakeGateway()
