import asyncio
import logging
from collections.abc import Callable, Iterable, Sequence
from datetime import date, timedelta
from types import MappingProxyType

from .config import Settings
from .coordinator import MutationCoordinator
from .core.models import CompletionEvent, Habit, Snapshot
from .gateway import StorageGateway
from .grid import checklist, completed_keys, merge_grid
from .lib import clock
from .lib.dates import day_key, month_bounds, month_days, parse_key
from .metrics import (
    daily_series,
    monthly_efficiency,
    monthly_progress,
    top_habits,
    weekly_series,
)
from .state import GridState
from .streaks import current_streak

__all__ = ["Session", "build_snapshot"]

logger = logging.getLogger(__name__)


def build_snapshot(
    habits: Sequence[Habit],
    events: Iterable[CompletionEvent],
    recent_days: Iterable[date],
    today: date,
    view_day: date,
    settings: Settings,
) -> Snapshot:
    events = list(events)
    days = month_days(view_day)
    return Snapshot(
        today=today,
        view_day=view_day,
        habits=tuple(habits),
        days=tuple(days),
        grid=MappingProxyType(merge_grid(habits, events, days)),
        checklist=tuple(checklist(habits, events, view_day)),
        weekly=tuple(weekly_series(events, today, settings.weekly_window)),
        trend=tuple(daily_series(events, days)),
        efficiency=monthly_efficiency(habits, events, days, settings.efficiency_basis),
        progress=monthly_progress(habits, events, today),
        top=tuple(top_habits(habits, events, view_day, today, settings.top_limit)),
        streak=current_streak(recent_days, today),
    )


class Session:
    """Refresh boundary between storage and everything derived from it.

    Refreshes are numbered; a result older than the one already applied is
    dropped so a slow fetch never overwrites fresher state.
    """

    def __init__(
        self,
        gateway: StorageGateway,
        owner_id: str,
        settings: Settings | None = None,
        today: Callable[[], date] | None = None,
    ):
        self.gateway = gateway
        self.owner_id = owner_id
        self.settings = settings or Settings(owner=owner_id)
        self.state = GridState()
        self.snapshot: Snapshot | None = None
        self._today = today or clock.today
        self._applied = 0

    def coordinator(self) -> MutationCoordinator:
        return MutationCoordinator(
            self.gateway, self.owner_id, self.state, on_write_error=self.settings.on_write_error
        )

    def _fetch_range(self, today: date, view_day: date) -> tuple[date, date]:
        month_start, month_end = month_bounds(view_day)
        week_start = today - timedelta(days=self.settings.weekly_window - 1)
        return min(month_start, week_start, today.replace(day=1)), max(month_end, today)

    def _overlay(
        self, habits: Sequence[Habit], events: Sequence[CompletionEvent], start: date, end: date
    ) -> list[CompletionEvent]:
        """Fetched events as local state sees them, with unsettled and freshly settled cells on top."""
        local = {k: v for k, (v, _) in self.state.settled.items()} | self.state.pending
        known = {h.id for h in habits}
        merged = [e for e in events if (e.habit_id, day_key(e.day)) not in local]
        for (habit_id, key), value in local.items():
            day = parse_key(key)
            if value and habit_id in known and start <= day <= end:
                merged.append(CompletionEvent(habit_id, day))
        return merged

    async def refresh(self, view_day: date | None = None) -> Snapshot | None:
        seq = self.state.begin_refresh()
        today = self._today()
        view_day = view_day or today
        start, end = self._fetch_range(today, view_day)

        habits, events, recent = await asyncio.gather(
            self.gateway.list_habits(self.owner_id),
            self.gateway.list_completion_events(self.owner_id, start, end),
            self.gateway.recent_completion_days(self.owner_id, self.settings.streak_lookback),
        )

        if seq <= self._applied:
            logger.debug("dropping refresh #%d, #%d already applied", seq, self._applied)
            return self.snapshot

        self._applied = seq
        self.state.replace(habits, completed_keys(events), seq)
        events = self._overlay(habits, events, start, end)
        snapshot = build_snapshot(habits, events, recent, today, view_day, self.settings)
        self.snapshot = snapshot
        return snapshot
