import asyncio
import dataclasses
import logging
import uuid
from collections.abc import Iterable, Sequence
from datetime import date

from .config import WRITE_ERROR_POLICIES
from .core.errors import NotFoundError, ValidationError
from .core.models import Habit
from .gateway import StorageGateway
from .grid import CellKey
from .lib.dates import WEEKDAYS, day_key
from .recurrence import parse_recurrence, unknown_labels
from .state import GridState

__all__ = ["MutationCoordinator"]

logger = logging.getLogger(__name__)


def _clean_name(name: str) -> str:
    cleaned = name.strip()
    if not cleaned:
        raise ValidationError("habit name cannot be empty")
    return cleaned


def _checked_recurrence(raw: str | Iterable[str] | None) -> frozenset[str]:
    recurrence = parse_recurrence(raw)
    unknown = unknown_labels(recurrence)
    if unknown:
        raise ValidationError(
            f"unknown weekday(s): {', '.join(sorted(unknown))} (use {','.join(WEEKDAYS)})"
        )
    return recurrence


class MutationCoordinator:
    """Applies user mutations to GridState first, then persists them.

    Completion writes are serialized per (habit, day) and only the newest
    intent for a key reaches storage once the key's lock frees up. On a failed
    write the policy decides local state: "refetch" keeps the optimistic value
    and flags the state stale, "rollback" restores the previous value.
    """

    def __init__(
        self,
        gateway: StorageGateway,
        owner_id: str,
        state: GridState | None = None,
        on_write_error: str = "refetch",
    ):
        if on_write_error not in WRITE_ERROR_POLICIES:
            raise ValidationError(f"unknown write error policy '{on_write_error}'")
        self.gateway = gateway
        self.owner_id = owner_id
        self.state = state if state is not None else GridState()
        self.on_write_error = on_write_error
        self._locks: dict[CellKey, asyncio.Lock] = {}
        self._intents: dict[CellKey, int] = {}
        self._waiting: dict[CellKey, int] = {}

    # ── completions ──────────────────────────────────────────────────────────

    async def toggle_completion(self, habit_id: str, day: date, currently_completed: bool) -> bool:
        if self.state.habit(habit_id) is None:
            raise NotFoundError(f"no habit '{habit_id}'")

        key = (habit_id, day_key(day))
        completed = not currently_completed
        previous = key in self.state.completed
        seq = self._intents.get(key, 0) + 1
        self._intents[key] = seq

        self.state.set_completed(key, completed)
        self.state.pending[key] = completed

        self._waiting[key] = self._waiting.get(key, 0) + 1
        try:
            async with self._locks.setdefault(key, asyncio.Lock()):
                await self._write_cell(key, seq, habit_id, day, completed, previous)
        finally:
            self._release(key)
        return completed

    async def _write_cell(
        self, key: CellKey, seq: int, habit_id: str, day: date, completed: bool, previous: bool
    ) -> None:
        if self._intents[key] != seq:
            logger.debug("write for %s superseded by intent #%d", key, self._intents[key])
            return
        try:
            if completed:
                await self.gateway.upsert_completion_event(self.owner_id, habit_id, day)
            else:
                await self.gateway.delete_completion_event(self.owner_id, habit_id, day)
        except Exception as e:
            logger.warning("write for %s failed: %s", key, e)
            self._settle_failure(key, seq, previous)
            raise
        if self._intents[key] == seq:
            self.state.settle(key, completed)

    def _release(self, key: CellKey) -> None:
        self._waiting[key] -= 1
        if self._waiting[key]:
            return
        del self._waiting[key]
        self._locks.pop(key, None)
        self._intents.pop(key, None)

    def _settle_failure(self, key: CellKey, seq: int, previous: bool) -> None:
        if self._intents[key] != seq:
            return
        self.state.pending.pop(key, None)
        if self.on_write_error == "rollback":
            self.state.set_completed(key, previous)
        else:
            self.state.stale = True

    # ── habits ───────────────────────────────────────────────────────────────

    async def reorder_habits(self, ordered: Sequence[Habit | str]) -> list[Habit]:
        ids = [h.id if isinstance(h, Habit) else h for h in ordered]
        if len(set(ids)) != len(ids):
            raise ValidationError("reorder lists a habit more than once")
        known = {h.id: h for h in self.state.habits}
        missing = [i for i in ids if i not in known]
        if missing:
            raise NotFoundError(f"no habit '{missing[0]}'")
        if len(ids) != len(known):
            raise ValidationError("reorder must list every habit")

        previous = list(self.state.habits)
        reordered = [dataclasses.replace(known[i], position=index) for index, i in enumerate(ids)]
        self.state.habits = reordered
        try:
            await self.gateway.update_habit_positions(self.owner_id, ids)
        except Exception as e:
            logger.warning("reorder failed: %s", e)
            if self.on_write_error == "rollback":
                self.state.habits = previous
            else:
                self.state.stale = True
            raise
        return reordered

    async def create_habit(
        self,
        name: str,
        recurrence: str | Iterable[str] | None = None,
        icon: str | None = None,
        target_per_month: int | None = None,
    ) -> Habit:
        days = _checked_recurrence(recurrence)
        if target_per_month is None:
            target_per_month = len(days or WEEKDAYS) * 4
        if target_per_month < 0:
            raise ValidationError("monthly target cannot be negative")
        position = max((h.position for h in self.state.habits), default=-1) + 1
        habit = Habit(
            id=str(uuid.uuid4()),
            name=_clean_name(name),
            position=position,
            icon=icon or None,
            target_per_month=target_per_month,
            recurrence=days,
        )
        created = await self.gateway.create_habit(self.owner_id, habit)
        self.state.habits.append(created)
        return created

    def _replace_habit(self, habit: Habit) -> None:
        self.state.habits = [habit if h.id == habit.id else h for h in self.state.habits]

    async def rename_habit(self, habit_id: str, name: str) -> Habit:
        updated = await self.gateway.update_habit(self.owner_id, habit_id, name=_clean_name(name))
        self._replace_habit(updated)
        return updated

    async def set_recurrence(self, habit_id: str, recurrence: str | Iterable[str] | None) -> Habit:
        days = _checked_recurrence(recurrence)
        updated = await self.gateway.update_habit(self.owner_id, habit_id, recurrence=days)
        self._replace_habit(updated)
        return updated

    async def delete_habit(self, habit_id: str) -> None:
        await self.gateway.delete_habit(self.owner_id, habit_id)
        self.state.habits = [h for h in self.state.habits if h.id != habit_id]
        self.state.forget(habit_id)
