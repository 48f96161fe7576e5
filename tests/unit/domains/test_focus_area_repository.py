"""End-to-end tests for focus areas: entity events, persistence, events and caches."""

import pytest

from tandem.domain import DatabaseError, ValidationError
from tandem.domains.focus_area import (
    FOCUS_AREA_CREATED,
    FOCUS_AREA_DEACTIVATED,
    FOCUS_AREA_DELETED,
    FOCUS_AREA_UPDATED,
    FocusArea,
)
from tandem.testing import EventCollector

ALL_EVENTS = (FOCUS_AREA_CREATED, FOCUS_AREA_UPDATED, FOCUS_AREA_DEACTIVATED, FOCUS_AREA_DELETED)


@pytest.fixture
def collector(event_bus) -> EventCollector:
    return EventCollector().subscribe(event_bus, *ALL_EVENTS)


# ========== Entity ==========


def test_create_queues_created_event(user_id):
    focus_area = FocusArea.create(user_id=user_id, name="Listening", priority=2)

    [event] = focus_area.get_domain_events()
    assert event.type == FOCUS_AREA_CREATED
    assert event.payload == {
        "focusAreaId": focus_area.id,
        "userId": user_id,
        "name": "Listening",
        "priority": 2,
    }


def test_update_reports_changed_fields(user_id):
    focus_area = FocusArea(user_id=user_id, name="Listening")

    focus_area.update(name="Active listening", priority=1)

    [event] = focus_area.get_domain_events()
    assert event.type == FOCUS_AREA_UPDATED
    assert event.payload["changedFields"] == ["name"]
    assert focus_area.name == "Active listening"


def test_update_without_changes_queues_nothing(user_id):
    focus_area = FocusArea(user_id=user_id, name="Listening")

    focus_area.update(name="Listening")

    assert focus_area.get_domain_events() == []


def test_update_rejects_unknown_fields(user_id):
    focus_area = FocusArea(user_id=user_id, name="Listening")

    with pytest.raises(ValueError, match="Cannot update fields: user_id"):
        focus_area.update(user_id="someone-else")


def test_update_validates_values(user_id):
    focus_area = FocusArea(user_id=user_id, name="Listening")

    with pytest.raises(Exception):
        focus_area.update(priority=9)

    assert focus_area.priority == 1


def test_deactivate_is_idempotent(user_id):
    focus_area = FocusArea(user_id=user_id, name="Listening")

    focus_area.deactivate()
    focus_area.deactivate()

    assert not focus_area.active
    assert [e.type for e in focus_area.get_domain_events()] == [FOCUS_AREA_DEACTIVATED]


# ========== Repository ==========


@pytest.mark.asyncio
async def test_create_focus_area_publishes_and_invalidates(
    focus_area_repository, collector, invalidator, storage, user_id
):
    """Creating a focus area publishes FOCUS_AREA_CREATED and clears its caches."""
    await invalidator.backend.set(f"focusarea:byUser:{user_id}:active", ["stale"])

    focus_area = await focus_area_repository.create_focus_area({"userId": user_id, "name": "Listening"})

    [event] = collector.events
    assert event.type == FOCUS_AREA_CREATED
    assert event.payload["userId"] == user_id
    assert event.source_entity_id == focus_area.id
    assert f"focusarea:byId:{focus_area.id}" in invalidator.patterns
    assert f"focusarea:byUser:{user_id}:*" in invalidator.patterns
    assert await invalidator.backend.get(f"focusarea:byUser:{user_id}:active") is None
    assert storage.inner.records("focus_areas")[0]["user_id"] == user_id


@pytest.mark.asyncio
async def test_create_focus_area_accepts_keywords(focus_area_repository, user_id):
    focus_area = await focus_area_repository.create_focus_area(
        user_id=user_id,
        name="Listening",
        metadata={"suggestedStrategies": ["paraphrase"]},
    )

    assert focus_area.metadata == {"suggestedStrategies": ["paraphrase"]}


@pytest.mark.asyncio
async def test_create_focus_area_requires_user_and_name(focus_area_repository, storage, collector):
    with pytest.raises(ValidationError) as exc_info:
        await focus_area_repository.create_focus_area({"description": "no owner"})

    assert exc_info.value.validation_errors == {"user_id": "Required", "name": "Required"}
    assert storage.calls["transaction"] == 0
    assert collector.events == []


@pytest.mark.asyncio
async def test_create_focus_area_rejects_invalid_priority(focus_area_repository, user_id):
    with pytest.raises(ValidationError) as exc_info:
        await focus_area_repository.create_focus_area(user_id=user_id, name="Listening", priority=0)

    assert "priority" in exc_info.value.validation_errors


@pytest.mark.asyncio
async def test_failed_insert_has_no_side_effects(focus_area_repository, storage, collector, invalidator, user_id):
    """A write that never commits publishes nothing and invalidates nothing."""
    storage.fail_always("insert")

    with pytest.raises(DatabaseError):
        await focus_area_repository.create_focus_area(user_id=user_id, name="Listening")

    assert collector.events == []
    assert invalidator.entities == []
    assert invalidator.patterns == []
    assert storage.inner.records("focus_areas") == []


@pytest.mark.asyncio
async def test_update_round_trip(focus_area_repository, collector, user_id):
    created = await focus_area_repository.create_focus_area(user_id=user_id, name="Listening")

    loaded = await focus_area_repository.find_by_id(created.id, throw_if_not_found=True)
    loaded.update(description="Hear people out", priority=3)
    await focus_area_repository.save(loaded)

    reloaded = await focus_area_repository.find_by_id(created.id)
    assert reloaded.description == "Hear people out"
    assert reloaded.priority == 3
    assert collector.types == [FOCUS_AREA_CREATED, FOCUS_AREA_UPDATED]


@pytest.mark.asyncio
async def test_find_by_user_id(focus_area_repository, user_id):
    await focus_area_repository.save_batch(
        user_id,
        [
            {"name": "Empathy", "priority": 3},
            {"name": "Clarity", "priority": 1},
            {"name": "Focus", "priority": 2},
        ],
    )
    inactive = await focus_area_repository.create_focus_area(user_id=user_id, name="Old", priority=5)
    inactive.deactivate()
    await focus_area_repository.save(inactive)
    await focus_area_repository.create_focus_area(user_id="someone-else", name="Other")

    all_areas = await focus_area_repository.find_by_user_id(user_id)
    active = await focus_area_repository.find_by_user_id(user_id, active_only=True)
    page = await focus_area_repository.find_by_user_id(user_id, limit=2, offset=1)

    assert [f.name for f in all_areas] == ["Clarity", "Focus", "Empathy", "Old"]
    assert [f.name for f in active] == ["Clarity", "Focus", "Empathy"]
    assert [f.name for f in page] == ["Focus", "Empathy"]


@pytest.mark.asyncio
async def test_find_by_user_id_requires_user(focus_area_repository):
    with pytest.raises(ValidationError):
        await focus_area_repository.find_by_user_id("")


@pytest.mark.asyncio
async def test_find_all_sorted_by_name(focus_area_repository, user_id):
    await focus_area_repository.save_batch(user_id, [{"name": "Zest"}, {"name": "Awareness"}])

    assert [f.name for f in await focus_area_repository.find_all()] == ["Awareness", "Zest"]


@pytest.mark.asyncio
async def test_save_batch_is_atomic(focus_area_repository, storage, collector, user_id):
    """Either every focus area in a batch is saved and announced, or none is."""
    storage.fail_always("commit")

    with pytest.raises(DatabaseError):
        await focus_area_repository.save_batch(user_id, [{"name": "One"}, {"name": "Two"}])

    assert storage.inner.records("focus_areas") == []
    assert collector.events == []


@pytest.mark.asyncio
async def test_save_batch(focus_area_repository, collector, invalidator, user_id):
    saved = await focus_area_repository.save_batch(user_id, [{"name": "One"}, {"name": "Two", "priority": 2}])

    assert [f.user_id for f in saved] == [user_id, user_id]
    assert collector.types == [FOCUS_AREA_CREATED, FOCUS_AREA_CREATED]
    assert sorted(invalidator.entity_ids) == sorted(f.id for f in saved)


@pytest.mark.asyncio
async def test_save_batch_validation(focus_area_repository, user_id):
    assert await focus_area_repository.save_batch(user_id, []) == []

    with pytest.raises(ValidationError, match="must be a list"):
        await focus_area_repository.save_batch(user_id, "Listening")


@pytest.mark.asyncio
async def test_delete_publishes_deleted_event(focus_area_repository, collector, invalidator, user_id):
    focus_area = await focus_area_repository.create_focus_area(user_id=user_id, name="Listening")
    collector.events.clear()
    invalidator.patterns.clear()

    result = await focus_area_repository.delete(focus_area.id)

    assert result.deleted
    [event] = collector.events
    assert event.type == FOCUS_AREA_DELETED
    assert event.payload == {
        "focusAreaId": focus_area.id,
        "userId": user_id,
        "name": "Listening",
        "action": "deleted",
    }
    assert f"focusarea:byUser:{user_id}:*" in invalidator.patterns
    assert await focus_area_repository.find_by_id(focus_area.id) is None


@pytest.mark.asyncio
async def test_delete_all_for_user(focus_area_repository, collector, user_id):
    await focus_area_repository.save_batch(user_id, [{"name": "One"}, {"name": "Two"}])
    other = await focus_area_repository.create_focus_area(user_id="someone-else", name="Other")
    collector.events.clear()

    results = await focus_area_repository.delete_all_for_user(user_id)

    assert len(results) == 2
    assert all(r.deleted for r in results)
    assert collector.types == [FOCUS_AREA_DELETED, FOCUS_AREA_DELETED]
    assert await focus_area_repository.find_by_user_id(user_id) == []
    assert await focus_area_repository.find_by_id(other.id) is not None


@pytest.mark.asyncio
async def test_handler_writes_are_correlated(focus_area_repository, event_bus, user_id):
    """A write made by a handler carries the triggering event's correlation id."""
    follow_ups = []

    async def create_default_follow_up(event):
        follow_up = await focus_area_repository.create_focus_area(
            user_id=event.payload["userId"], name="Follow-up"
        )
        follow_ups.append(follow_up)

    event_bus.once(FOCUS_AREA_CREATED, create_default_follow_up)

    await focus_area_repository.create_focus_area(user_id=user_id, name="Listening")

    [trigger, follow_up_event] = event_bus.get_history()[::-1]
    assert follow_up_event.source_entity_id == follow_ups[0].id
    assert follow_up_event.correlation_id == trigger.correlation_id
