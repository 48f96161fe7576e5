"""Tests for the generic Repository save, read and delete paths."""

import logging
from typing import ClassVar
from unittest.mock import AsyncMock

import pytest

from tandem.config import TandemSettings
from tandem.domain import DatabaseError, Entity, EntityNotFoundError, ValidationError
from tandem.events import EventBus
from tandem.repositories import DeleteResult, Repository
from tandem.storage import ErrorKind
from tandem.testing import EventCollector, RecordingCacheInvalidator


class Habit(Entity):
    """Entity used to exercise the generic repository."""

    entity_type: ClassVar[str] = "habit"

    user_id: str
    name: str
    streak: int = 0

    def record_day(self) -> None:
        self.streak += 1
        self.add_domain_event("HABIT_STREAK_EXTENDED", {"habitId": self.id, "streak": self.streak})


class HabitRepository(Repository[Habit]):
    entity_class = Habit
    table_name = "habits"


@pytest.fixture
def repository(storage, event_bus, invalidator, settings, sleep) -> HabitRepository:
    return HabitRepository(
        storage,
        event_bus=event_bus,
        cache_invalidator=invalidator,
        settings=settings,
        sleep=sleep,
    )


def new_habit(**overrides) -> Habit:
    habit = Habit(**{"user_id": "u-1", "name": "Read", **overrides})
    habit.add_domain_event("HABIT_CREATED", {"habitId": habit.id})
    return habit


def test_subclass_defaults():
    """domain_name and event_prefix default from the entity type."""
    assert HabitRepository.domain_name == "habit"
    assert HabitRepository.event_prefix == "HABIT"
    assert HabitRepository.cache_prefix == "habit"


# ========== Validation ==========


@pytest.mark.asyncio
@pytest.mark.parametrize("bad_id", [None, "", 1.5, ["id"]])
async def test_find_by_id_rejects_invalid_ids(repository, storage, bad_id):
    """Invalid ids fail before any I/O."""
    with pytest.raises(ValidationError):
        await repository.find_by_id(bad_id)

    assert storage.calls["select"] == 0


@pytest.mark.asyncio
async def test_uuid_validation_is_opt_in(storage):
    repository = HabitRepository(storage, settings=TandemSettings(validate_uuids=True))

    with pytest.raises(ValidationError, match="valid UUID"):
        await repository.find_by_id("not-a-uuid")


@pytest.mark.asyncio
async def test_save_rejects_wrong_entity_type(repository):
    with pytest.raises(ValidationError, match="must be a Habit instance"):
        await repository.save({"id": "h-1"})


# ========== Reads ==========


@pytest.mark.asyncio
async def test_find_by_id_missing(repository):
    assert await repository.find_by_id("h-404") is None

    with pytest.raises(EntityNotFoundError) as exc_info:
        await repository.find_by_id("h-404", throw_if_not_found=True)

    assert exc_info.value.entity_id == "h-404"


@pytest.mark.asyncio
async def test_find_by_id_retries_transient_read(repository, storage):
    habit = await repository.save(new_habit())
    storage.fail("select", times=2)

    found = await repository.find_by_id(habit.id)

    assert found.id == habit.id


@pytest.mark.asyncio
async def test_find_by_ids_deduplicates(repository, storage):
    first = await repository.save(new_habit(name="Read"))
    second = await repository.save(new_habit(name="Run"))

    found = await repository.find_by_ids([first.id, second.id, first.id, "h-404"])

    assert sorted(h.name for h in found) == ["Read", "Run"]
    assert storage.calls["select_in"] == 1
    assert await repository.find_by_ids([]) == []


@pytest.mark.asyncio
async def test_find_where_accepts_camel_case(repository):
    await repository.save(new_habit(name="Read", streak=3))
    await repository.save(new_habit(name="Run", streak=7))
    await repository.save(new_habit(name="Swim", user_id="u-2"))

    found = await repository.find_where({"userId": "u-1"}, order_by=[("streak", "desc")])

    assert [h.name for h in found] == ["Run", "Read"]


# ========== Saves ==========


@pytest.mark.asyncio
async def test_save_publishes_events_after_commit(repository, storage, event_bus, invalidator):
    collector = EventCollector().subscribe(event_bus, "HABIT_CREATED")
    habit = new_habit()

    saved = await repository.save(habit)

    assert saved.id == habit.id
    assert [e.source_entity_id for e in collector.events] == [habit.id]
    assert habit.get_domain_events() == []
    assert invalidator.entities == [("habit", habit.id)]
    assert storage.inner.records("habits")[0]["name"] == "Read"


@pytest.mark.asyncio
async def test_saving_twice_does_not_republish(repository, event_bus):
    collector = EventCollector().subscribe(event_bus, "HABIT_CREATED")
    habit = new_habit()

    await repository.save(habit)
    await repository.save(habit)

    assert len(collector.events) == 1


@pytest.mark.asyncio
async def test_save_updates_existing_record(repository, storage, event_bus):
    collector = EventCollector().subscribe(event_bus, "HABIT_STREAK_EXTENDED")
    habit = await repository.save(new_habit())
    created_at = storage.inner.records("habits")[0]["created_at"]

    habit.record_day()
    updated = await repository.save(habit)

    [record] = storage.inner.records("habits")
    assert updated.streak == 1
    assert record["streak"] == 1
    assert record["created_at"] == created_at
    assert collector.events[0].payload == {"habitId": habit.id, "streak": 1}


@pytest.mark.asyncio
async def test_failed_save_keeps_pending_events(repository, storage, event_bus, invalidator):
    """A save that cannot commit publishes nothing and keeps the events."""
    collector = EventCollector().subscribe(event_bus, "HABIT_CREATED")
    storage.fail_always("insert")
    habit = new_habit()

    with pytest.raises(DatabaseError) as exc_info:
        await repository.save(habit)

    assert exc_info.value.metadata["attempts"] == 3
    assert storage.calls["insert"] == 3
    assert collector.events == []
    assert invalidator.entities == []
    assert [e.type for e in habit.get_domain_events()] == ["HABIT_CREATED"]
    assert storage.inner.records("habits") == []


@pytest.mark.asyncio
async def test_transient_save_failure_publishes_once(repository, storage, event_bus, sleep):
    """Retrying a save re-runs the transaction but publishes events once."""
    collector = EventCollector().subscribe(event_bus, "HABIT_CREATED")
    storage.fail("insert", times=1)

    await repository.save(new_habit())

    assert len(collector.events) == 1
    assert len(storage.inner.records("habits")) == 1
    sleep.assert_awaited_once_with(0.01)


@pytest.mark.asyncio
async def test_transient_begin_failure_is_retried(repository, storage, event_bus):
    collector = EventCollector().subscribe(event_bus, "HABIT_CREATED")
    storage.fail("transaction", times=1)

    saved = await repository.save(new_habit())

    assert storage.calls["transaction"] == 2
    assert storage.inner.records("habits")[0]["id"] == saved.id
    assert len(collector.events) == 1


@pytest.mark.asyncio
async def test_connection_error_during_save_is_retried(repository, storage, event_bus, invalidator):
    """Errors outside the storage taxonomy retry the whole transaction."""
    collector = EventCollector().subscribe(event_bus, "HABIT_CREATED")
    storage.fail("insert", error=ConnectionError("connection reset"))

    saved = await repository.save(new_habit())

    assert storage.calls["insert"] == 2
    assert storage.calls["rollback"] == 1
    assert [r["id"] for r in storage.inner.records("habits")] == [saved.id]
    assert len(collector.events) == 1
    assert invalidator.entity_ids == [saved.id]


@pytest.mark.asyncio
async def test_exhausted_connection_errors_become_database_error(repository, storage):
    storage.fail("insert", times=3, error=ConnectionError("connection reset"))

    with pytest.raises(DatabaseError) as exc_info:
        await repository.save(new_habit())

    assert isinstance(exc_info.value.__cause__, ConnectionError)
    assert exc_info.value.metadata["attempts"] == 3


@pytest.mark.asyncio
async def test_permanent_failure_is_not_retried(repository, storage):
    storage.fail("insert", kind=ErrorKind.PERMANENT)

    with pytest.raises(DatabaseError):
        await repository.save(new_habit())

    assert storage.calls["insert"] == 1


@pytest.mark.asyncio
async def test_duplicate_insert_becomes_validation_error(repository, storage):
    habit = new_habit()
    # A concurrent insert of the same id surfaces at commit
    storage.fail("commit", kind=ErrorKind.CONSTRAINT)

    with pytest.raises(ValidationError):
        await repository.save(habit)

    assert storage.calls["commit"] == 1


@pytest.mark.asyncio
async def test_save_all_is_atomic(repository, storage, event_bus):
    collector = EventCollector().subscribe(event_bus, "HABIT_CREATED")
    habits = [new_habit(name="Read"), new_habit(name="Run")]
    storage.fail("commit", kind=ErrorKind.PERMANENT)

    with pytest.raises(DatabaseError):
        await repository.save_all(habits)

    assert storage.inner.records("habits") == []
    assert collector.events == []
    assert all(len(h.get_domain_events()) == 1 for h in habits)

    saved = await repository.save_all(habits)

    assert [h.name for h in saved] == ["Read", "Run"]
    assert len(collector.events) == 2


@pytest.mark.asyncio
async def test_save_without_bus_or_invalidator(storage, sleep):
    repository = HabitRepository(storage, sleep=sleep)
    habit = new_habit()

    await repository.save(habit)

    assert habit.get_domain_events() == []
    assert len(storage.inner.records("habits")) == 1


# ========== Deletes ==========


@pytest.mark.asyncio
async def test_delete_publishes_after_commit(repository, storage, event_bus, invalidator):
    collector = EventCollector().subscribe(event_bus, "HABIT_DELETED")
    habit = await repository.save(new_habit())
    invalidator.entities.clear()

    result = await repository.delete(habit.id)

    assert result == DeleteResult(deleted=True, id=habit.id)
    assert storage.inner.records("habits") == []
    [event] = collector.events
    assert event.payload == {"habitId": habit.id, "action": "deleted"}
    assert invalidator.entities == [("habit", habit.id)]


@pytest.mark.asyncio
async def test_delete_missing_id_is_a_no_op(repository, event_bus, invalidator):
    collector = EventCollector().subscribe(event_bus, "HABIT_DELETED")

    result = await repository.delete("h-404")

    assert result == DeleteResult(deleted=False, id="h-404")
    assert collector.events == []
    assert invalidator.entities == []


@pytest.mark.asyncio
async def test_delete_where(repository, storage, event_bus, invalidator):
    collector = EventCollector().subscribe(event_bus, "HABIT_DELETED")
    kept = await repository.save(new_habit(user_id="u-2"))
    removed = [await repository.save(new_habit()) for _ in range(2)]
    invalidator.entities.clear()

    results = await repository.delete_where({"userId": "u-1"})

    assert sorted(r.id for r in results) == sorted(h.id for h in removed)
    assert [r["id"] for r in storage.inner.records("habits")] == [kept.id]
    assert len(collector.events) == 2
    assert sorted(invalidator.entity_ids) == sorted(h.id for h in removed)


# ========== Post-commit isolation ==========


@pytest.mark.asyncio
async def test_handler_failure_does_not_fail_save(repository, event_bus, storage):
    event_bus.register("HABIT_CREATED", AsyncMock(side_effect=RuntimeError("handler broke")))

    saved = await repository.save(new_habit())

    assert saved.name == "Read"
    assert len(storage.inner.records("habits")) == 1


@pytest.mark.asyncio
async def test_invalidator_failure_does_not_fail_save(storage, sleep):
    habits = HabitRepository(
        storage,
        event_bus=EventBus(),
        cache_invalidator=RecordingCacheInvalidator(raise_on_invalidate=True),
        sleep=sleep,
    )

    await habits.save(new_habit())

    assert habits.transactions.metrics.invalidation_failures == 1


@pytest.mark.asyncio
async def test_logs_carry_repository_names(repository, caplog):
    with caplog.at_level(logging.DEBUG, logger="tandem.repositories.base"):
        habit = await repository.save(new_habit())

    record = next(r for r in caplog.records if r.getMessage() == "Saved entity")
    assert record.domain_name == "habit"
    assert record.table_name == "habits"
    assert record.entity_id == habit.id
