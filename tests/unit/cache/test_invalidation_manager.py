"""Tests for CacheInvalidationManager and the invalidation rules."""

import pytest
import pytest_asyncio

from tandem.cache import (
    CacheInvalidationManager,
    CacheInvalidationRule,
    CacheKeyPrefix,
    InMemoryCacheBackend,
)

SEEDED_KEYS = [
    "focusarea:byId:fa-1",
    "focusarea:byId:fa-2",
    "focusarea:byUser:u-1:active",
    "focusarea:byUser:u-2:active",
    "focusarea:list:page-1",
    "challenge:byFocusArea:fa-1:recent",
    "challenge:byUser:u-1:recent",
    "challenge:byId:ch-1",
    "evaluation:byChallenge:ch-1:latest",
    "user:byId:u-1",
]


class UnavailableBackend(InMemoryCacheBackend):
    """Backend whose deletions always fail, like an unreachable Redis."""

    async def delete(self, key: str) -> bool:
        raise ConnectionError("cache down")

    async def delete_pattern(self, pattern: str) -> int:
        raise ConnectionError("cache down")


@pytest_asyncio.fixture
async def backend() -> InMemoryCacheBackend:
    backend = InMemoryCacheBackend()
    for key in SEEDED_KEYS:
        await backend.set(key, True)
    return backend


@pytest.fixture
def manager(backend) -> CacheInvalidationManager:
    return CacheInvalidationManager(backend)


@pytest.mark.asyncio
async def test_invalidate_for_focus_area(manager, backend):
    """A focus area change drops its by-id key, its owner's lists and its challenges."""
    ok = await manager.invalidate_for("focus_area", {"id": "fa-1", "user_id": "u-1"})

    assert ok is True
    remaining = set(await backend.keys())
    assert "focusarea:byId:fa-1" not in remaining
    assert "focusarea:byUser:u-1:active" not in remaining
    assert "focusarea:list:page-1" not in remaining
    assert "challenge:byFocusArea:fa-1:recent" not in remaining
    assert {"focusarea:byId:fa-2", "focusarea:byUser:u-2:active", "user:byId:u-1"} <= remaining


@pytest.mark.asyncio
async def test_invalidate_for_challenge(manager, backend):
    ok = await manager.invalidate_for(
        "challenge",
        {"id": "ch-1", "user_id": "u-1", "focus_area_id": "fa-1"},
    )

    assert ok is True
    remaining = set(await backend.keys())
    assert remaining.isdisjoint(
        {
            "challenge:byId:ch-1",
            "challenge:byUser:u-1:recent",
            "challenge:byFocusArea:fa-1:recent",
            "evaluation:byChallenge:ch-1:latest",
        }
    )
    assert "focusarea:byId:fa-1" in remaining


@pytest.mark.asyncio
async def test_invalidate_for_skips_entity_without_id(manager, backend):
    assert await manager.invalidate_for("focus_area", {"user_id": "u-1"}) is True
    assert len(await backend.keys()) == len(SEEDED_KEYS)


def test_rule_skips_templates_with_missing_fields():
    """Templates referencing an absent or None field are not expanded."""
    rule = CacheInvalidationRule.for_entity(
        "challenge",
        CacheKeyPrefix.CHALLENGE,
        foreign_key_patterns=("challenge:byFocusArea:{focus_area_id}:*",),
    )

    patterns = rule.expand({"id": "ch-1", "focus_area_id": None})

    assert patterns == [
        "challenge:byId:ch-1",
        "challenge:*:ch-1:*",
        "challenge:*:*:ch-1",
        "challenge:list:*",
        "challenge:search:*",
    ]


@pytest.mark.asyncio
async def test_unknown_entity_type_uses_default_rule(manager, backend):
    await backend.set("habit:byId:h-1", True)
    await backend.set("habit:list:all", True)

    assert await manager.invalidate_for("habit", {"id": "h-1"}) is True

    assert await backend.keys("habit:*") == []


@pytest.mark.asyncio
async def test_registered_rule_replaces_default(manager, backend):
    manager.register_rule(
        CacheInvalidationRule(entity_type="focus_area", prefix="focusarea", id_patterns=("focusarea:byId:{id}",))
    )

    await manager.invalidate_for("focus_area", {"id": "fa-1", "user_id": "u-1"})

    remaining = set(await backend.keys())
    assert "focusarea:byId:fa-1" not in remaining
    assert "focusarea:byUser:u-1:active" in remaining


@pytest.mark.asyncio
async def test_invalidate_entity_and_lists(manager, backend):
    assert await manager.invalidate_entity(CacheKeyPrefix.FOCUS_AREA, "fa-2") is True
    assert await manager.invalidate_list_caches("focusarea") is True

    remaining = set(await backend.keys())
    assert "focusarea:byId:fa-2" not in remaining
    assert "focusarea:list:page-1" not in remaining
    assert "focusarea:byId:fa-1" in remaining


@pytest.mark.asyncio
async def test_domain_helpers(manager, backend):
    await manager.invalidate_user_caches("u-1")

    remaining = set(await backend.keys())
    assert remaining.isdisjoint(
        {"user:byId:u-1", "challenge:byUser:u-1:recent", "focusarea:byUser:u-1:active"}
    )
    assert "focusarea:byUser:u-2:active" in remaining

    await manager.invalidate_challenge_caches("ch-1")
    assert "evaluation:byChallenge:ch-1:latest" not in set(await backend.keys())

    assert await manager.invalidate_focus_area_caches("fa-2", user_id="u-2") is True
    assert set(await backend.keys()).isdisjoint({"focusarea:byId:fa-2", "focusarea:byUser:u-2:active"})


@pytest.mark.asyncio
async def test_evaluation_and_personality_helpers(manager, backend):
    await backend.set("evaluation:byUser:u-1:recent", True)
    await backend.set("personality:byUser:u-1:profile", True)
    await backend.set("personality:byId:p-1", True)

    assert await manager.invalidate_evaluation_caches("ev-1", user_id="u-1", challenge_id="ch-1") is True
    assert await manager.invalidate_personality_caches("p-1", user_id="u-1") is True

    assert await backend.keys("evaluation:*") == []
    assert await backend.keys("personality:*") == []


@pytest.mark.asyncio
async def test_recommendation_helper(manager, backend):
    await backend.set("recommendation:byId:r-1", True)
    await backend.set("recommendation:byUser:u-1:latest", True)
    await backend.set("recommendation:list:page-1", True)
    await backend.set("recommendation:byUser:u-2:latest", True)

    assert await manager.invalidate_recommendation_caches("r-1", user_id="u-1") is True

    assert await backend.keys("recommendation:*") == ["recommendation:byUser:u-2:latest"]


@pytest.mark.asyncio
async def test_invalidate_all(manager, backend):
    assert await manager.invalidate_all() is True
    assert await backend.keys() == []


@pytest.mark.asyncio
async def test_backend_failure_is_counted_not_raised():
    """Cache failures return False and bump failed_invalidations."""
    manager = CacheInvalidationManager(UnavailableBackend())

    assert await manager.invalidate_key("focusarea:byId:fa-1") is False
    assert await manager.invalidate_pattern("focusarea:list:*") is False
    assert await manager.invalidate_for("focus_area", {"id": "fa-1", "user_id": "u-1"}) is False
    assert manager.failed_invalidations >= 3
