import asyncio
from datetime import date

import pytest

from habitgrid.coordinator import MutationCoordinator
from habitgrid.core.errors import NotFoundError, StorageUnavailableError, ValidationError
from habitgrid.core.models import CompletionEvent, Habit
from habitgrid.state import GridState

DAY = date(2024, 3, 6)
KEY = ("gym", "2024-03-06")
GYM = Habit(id="gym", name="Gym", position=0)
READ = Habit(id="read", name="Read", position=1)
WALK = Habit(id="walk", name="Walk", position=2)


@pytest.fixture
def coordinator(gateway):
    gateway.add(GYM, READ, WALK)
    return MutationCoordinator(gateway, "local", GridState([GYM, READ, WALK]))


async def _until(predicate) -> None:
    while not predicate():
        await asyncio.sleep(0)


def test_rejects_unknown_policy(gateway):
    with pytest.raises(ValidationError):
        MutationCoordinator(gateway, "local", on_write_error="ignore")


# ── completions ──────────────────────────────────────────────────────────────


def test_toggle_is_visible_before_write_settles(coordinator, gateway):
    async def go():
        gateway.gate = asyncio.Event()
        task = asyncio.create_task(coordinator.toggle_completion("gym", DAY, False))
        await _until(lambda: KEY in coordinator.state.pending)
        assert coordinator.state.is_completed("gym", DAY)
        assert gateway.writes == []
        gateway.gate.set()
        assert await task is True

    asyncio.run(go())
    assert coordinator.state.pending == {}
    assert ("gym", DAY) in gateway.events


def test_toggle_off_deletes_event(coordinator, gateway):
    gateway.events[("gym", DAY)] = CompletionEvent("gym", DAY)
    coordinator.state.set_completed(KEY, True)
    assert asyncio.run(coordinator.toggle_completion("gym", DAY, True)) is False
    assert not coordinator.state.is_completed("gym", DAY)
    assert gateway.events == {}
    assert gateway.writes == [("delete", "gym", DAY)]


def test_rapid_toggles_settle_on_last_intent(coordinator, gateway):
    async def go():
        gateway.gate = asyncio.Event()
        first = asyncio.create_task(coordinator.toggle_completion("gym", DAY, False))
        await _until(lambda: KEY in coordinator.state.pending)
        second = asyncio.create_task(coordinator.toggle_completion("gym", DAY, True))
        await asyncio.sleep(0)
        assert not coordinator.state.is_completed("gym", DAY)
        gateway.gate.set()
        return await asyncio.gather(first, second)

    assert asyncio.run(go()) == [True, False]
    assert [w[0] for w in gateway.writes] == ["upsert", "delete"]
    assert gateway.events == {}
    assert not coordinator.state.is_completed("gym", DAY)
    assert coordinator.state.pending == {}


def test_superseded_intents_skip_their_write(coordinator, gateway):
    async def go():
        gateway.gate = asyncio.Event()
        tasks = [asyncio.create_task(coordinator.toggle_completion("gym", DAY, False))]
        await _until(lambda: KEY in coordinator.state.pending)
        tasks.append(asyncio.create_task(coordinator.toggle_completion("gym", DAY, True)))
        tasks.append(asyncio.create_task(coordinator.toggle_completion("gym", DAY, False)))
        await asyncio.sleep(0)
        gateway.gate.set()
        await asyncio.gather(*tasks)

    asyncio.run(go())
    assert [w[0] for w in gateway.writes] == ["upsert", "upsert"]
    assert ("gym", DAY) in gateway.events
    assert coordinator.state.is_completed("gym", DAY)


def test_other_keys_do_not_wait(coordinator, gateway):
    async def go():
        gateway.gate = asyncio.Event()
        a = asyncio.create_task(coordinator.toggle_completion("gym", DAY, False))
        b = asyncio.create_task(coordinator.toggle_completion("read", DAY, False))
        await _until(lambda: len(coordinator.state.pending) == 2)
        gateway.gate.set()
        await asyncio.gather(a, b)

    asyncio.run(go())
    assert {("gym", DAY), ("read", DAY)} == set(gateway.events)


def test_failed_write_refetch_keeps_optimistic_value(coordinator, gateway):
    gateway.fail_writes = 1
    with pytest.raises(StorageUnavailableError):
        asyncio.run(coordinator.toggle_completion("gym", DAY, False))
    assert coordinator.state.is_completed("gym", DAY)
    assert coordinator.state.stale
    assert coordinator.state.pending == {}


def test_failed_write_rollback_restores_previous_value(gateway):
    gateway.add(GYM)
    coordinator = MutationCoordinator(gateway, "local", GridState([GYM]), on_write_error="rollback")
    gateway.fail_writes = 1
    with pytest.raises(StorageUnavailableError):
        asyncio.run(coordinator.toggle_completion("gym", DAY, False))
    assert not coordinator.state.is_completed("gym", DAY)
    assert not coordinator.state.stale


@pytest.mark.parametrize("policy", ["refetch", "rollback"])
def test_failed_write_of_any_kind_clears_pending(gateway, policy):
    gateway.add(GYM)
    coordinator = MutationCoordinator(gateway, "local", GridState([GYM]), on_write_error=policy)
    gateway.fail_writes = 1
    gateway.fail_with = ValidationError
    with pytest.raises(ValidationError):
        asyncio.run(coordinator.toggle_completion("gym", DAY, False))
    assert coordinator.state.pending == {}
    assert coordinator.state.stale is (policy == "refetch")
    assert coordinator.state.is_completed("gym", DAY) is (policy == "refetch")

    coordinator.state.replace([GYM], [])
    assert not coordinator.state.is_completed("gym", DAY)


def test_settled_keys_release_their_lock(coordinator, gateway):
    async def go():
        gateway.gate = asyncio.Event()
        first = asyncio.create_task(coordinator.toggle_completion("gym", DAY, False))
        await _until(lambda: KEY in coordinator.state.pending)
        second = asyncio.create_task(coordinator.toggle_completion("gym", DAY, True))
        await asyncio.sleep(0)
        assert KEY in coordinator._locks
        gateway.gate.set()
        await asyncio.gather(first, second)
        gateway.fail_writes = 1
        with pytest.raises(StorageUnavailableError):
            await coordinator.toggle_completion("read", DAY, False)

    asyncio.run(go())
    assert coordinator._locks == {}
    assert coordinator._intents == {}
    assert coordinator._waiting == {}


def test_failed_superseded_write_leaves_newer_intent_alone(gateway):
    gateway.add(GYM)
    coordinator = MutationCoordinator(gateway, "local", GridState([GYM]), on_write_error="rollback")

    async def go():
        gateway.gate = asyncio.Event()
        gateway.fail_writes = 1
        first = asyncio.create_task(coordinator.toggle_completion("gym", DAY, False))
        await _until(lambda: KEY in coordinator.state.pending)
        second = asyncio.create_task(coordinator.toggle_completion("gym", DAY, True))
        await asyncio.sleep(0)
        gateway.gate.set()
        return await asyncio.gather(first, second, return_exceptions=True)

    first, second = asyncio.run(go())
    assert isinstance(first, StorageUnavailableError)
    assert second is False
    assert [w[0] for w in gateway.writes] == ["upsert", "delete"]
    assert not coordinator.state.is_completed("gym", DAY)


def test_toggle_for_habit_deleted_elsewhere(coordinator, gateway):
    del gateway.habits["gym"]
    with pytest.raises(NotFoundError):
        asyncio.run(coordinator.toggle_completion("gym", DAY, False))
    assert coordinator.state.stale


def test_toggle_unknown_habit(coordinator, gateway):
    with pytest.raises(NotFoundError):
        asyncio.run(coordinator.toggle_completion("nope", DAY, False))
    assert gateway.writes == []


# ── reorder ──────────────────────────────────────────────────────────────────


def test_reorder_assigns_contiguous_positions(coordinator, gateway):
    result = asyncio.run(coordinator.reorder_habits([WALK, GYM, READ]))
    assert [(h.id, h.position) for h in result] == [("walk", 0), ("gym", 1), ("read", 2)]
    assert [h.id for h in coordinator.state.habits] == ["walk", "gym", "read"]
    assert {h.id: h.position for h in gateway.habits.values()} == {"walk": 0, "gym": 1, "read": 2}


def test_reorder_accepts_ids(coordinator):
    result = asyncio.run(coordinator.reorder_habits(["read", "walk", "gym"]))
    assert [h.id for h in result] == ["read", "walk", "gym"]


@pytest.mark.parametrize(
    ("order", "error"),
    [
        (["gym", "gym", "read"], ValidationError),
        (["gym", "read", "ghost"], NotFoundError),
        (["gym", "read"], ValidationError),
    ],
)
def test_reorder_rejects_bad_lists(coordinator, gateway, order, error):
    with pytest.raises(error):
        asyncio.run(coordinator.reorder_habits(order))
    assert gateway.writes == []
    assert [h.id for h in coordinator.state.habits] == ["gym", "read", "walk"]


def test_reorder_failure_rollback(gateway):
    gateway.add(GYM, READ)
    coordinator = MutationCoordinator(gateway, "local", GridState([GYM, READ]), on_write_error="rollback")
    gateway.fail_writes = 1
    with pytest.raises(StorageUnavailableError):
        asyncio.run(coordinator.reorder_habits(["read", "gym"]))
    assert [h.id for h in coordinator.state.habits] == ["gym", "read"]


def test_reorder_failure_refetch(coordinator, gateway):
    gateway.fail_writes = 1
    with pytest.raises(StorageUnavailableError):
        asyncio.run(coordinator.reorder_habits(["read", "gym", "walk"]))
    assert [h.id for h in coordinator.state.habits] == ["read", "gym", "walk"]
    assert coordinator.state.stale


# ── habits ───────────────────────────────────────────────────────────────────


def test_create_habit_defaults(coordinator, gateway):
    habit = asyncio.run(coordinator.create_habit("  Stretch  "))
    assert habit.name == "Stretch"
    assert habit.recurrence == frozenset()
    assert habit.target_per_month == 28
    assert habit.position == 3
    assert coordinator.state.habits[-1] == habit
    assert gateway.habits[habit.id] == habit


def test_create_habit_with_schedule(coordinator):
    habit = asyncio.run(coordinator.create_habit("Swim", recurrence="mon,wed fri", icon="🏊"))
    assert habit.recurrence == {"Mon", "Wed", "Fri"}
    assert habit.target_per_month == 12
    assert habit.icon == "🏊"


def test_create_habit_explicit_target(coordinator):
    assert asyncio.run(coordinator.create_habit("Swim", target_per_month=5)).target_per_month == 5


@pytest.mark.parametrize(
    "kwargs",
    [
        {"name": "   "},
        {"name": "Swim", "recurrence": "Mon,Funday"},
        {"name": "Swim", "target_per_month": -1},
    ],
)
def test_create_habit_validation(coordinator, gateway, kwargs):
    with pytest.raises(ValidationError):
        asyncio.run(coordinator.create_habit(**kwargs))
    assert len(gateway.habits) == 3


def test_rename_habit(coordinator, gateway):
    renamed = asyncio.run(coordinator.rename_habit("read", "Read 20 pages"))
    assert renamed.name == "Read 20 pages"
    assert coordinator.state.habit("read").name == "Read 20 pages"
    with pytest.raises(ValidationError):
        asyncio.run(coordinator.rename_habit("read", ""))


def test_set_recurrence(coordinator):
    updated = asyncio.run(coordinator.set_recurrence("gym", ["Tue", "Thu"]))
    assert updated.recurrence == {"Tue", "Thu"}
    cleared = asyncio.run(coordinator.set_recurrence("gym", None))
    assert cleared.recurrence == frozenset()
    assert coordinator.state.habit("gym").recurrence == frozenset()


def test_delete_habit_drops_local_cells(coordinator, gateway):
    coordinator.state.set_completed(KEY, True)
    coordinator.state.set_completed(("read", "2024-03-06"), True)
    asyncio.run(coordinator.delete_habit("gym"))
    assert coordinator.state.habit("gym") is None
    assert coordinator.state.completed == {("read", "2024-03-06")}
    assert "gym" not in gateway.habits
    with pytest.raises(NotFoundError):
        asyncio.run(coordinator.delete_habit("gym"))
