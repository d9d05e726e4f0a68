from collections.abc import Iterable, Sequence
from datetime import date

from .core.models import Habit
from .grid import CellKey
from .lib.dates import day_key

__all__ = ["GridState"]


class GridState:
    """The session's local view: habits in display order plus completed cells.

    `pending` holds optimistic values whose writes have not settled yet; a
    refresh keeps them on top of the fetched ground truth. `settled` holds
    written values stamped with the refresh counter at the moment they landed,
    so a refresh issued before the write cannot undo it. `stale` is set when
    a write failed and the optimistic view may disagree with storage.
    """

    def __init__(self, habits: Sequence[Habit] = (), completed: Iterable[CellKey] = ()):
        self.habits: list[Habit] = list(habits)
        self.completed: set[CellKey] = set(completed)
        self.pending: dict[CellKey, bool] = {}
        self.settled: dict[CellKey, tuple[bool, int]] = {}
        self.refreshes = 0
        self.stale = False

    def habit(self, habit_id: str) -> Habit | None:
        return next((h for h in self.habits if h.id == habit_id), None)

    def is_completed(self, habit_id: str, day: date) -> bool:
        return (habit_id, day_key(day)) in self.completed

    def set_completed(self, key: CellKey, value: bool) -> None:
        if value:
            self.completed.add(key)
        else:
            self.completed.discard(key)

    def begin_refresh(self) -> int:
        self.refreshes += 1
        return self.refreshes

    def settle(self, key: CellKey, value: bool) -> None:
        self.pending.pop(key, None)
        self.settled[key] = (value, self.refreshes)

    def forget(self, habit_id: str) -> None:
        self.completed = {k for k in self.completed if k[0] != habit_id}
        self.pending = {k: v for k, v in self.pending.items() if k[0] != habit_id}
        self.settled = {k: v for k, v in self.settled.items() if k[0] != habit_id}

    def replace(self, habits: Sequence[Habit], completed: Iterable[CellKey], seq: int | None = None) -> None:
        """Swap in fetched ground truth from refresh `seq`.

        Settled writes stamped before `seq` was issued are already in the fetch
        and are dropped; later ones are laid back on top. Without a `seq` the
        fetch counts as newer than every settled write.
        """
        if seq is None:
            seq = self.refreshes + 1
        self.habits = list(habits)
        self.completed = set(completed)
        self.settled = {k: v for k, v in self.settled.items() if v[1] >= seq}
        for key, (value, _) in self.settled.items():
            self.set_completed(key, value)
        for key, value in self.pending.items():
            self.set_completed(key, value)
        self.stale = False
