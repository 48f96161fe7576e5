import logging
from collections.abc import Iterable, Mapping
from typing import Any

from pydantic import BaseModel

from .backend import CacheBackend
from .keys import CacheKeyPrefix, cache_key
from .rules import DEFAULT_RULES, CacheInvalidationRule, entity_fields

LOGGER = logging.getLogger(__name__)


def _prefix(entity_type: CacheKeyPrefix | str) -> str:
    return entity_type.value if isinstance(entity_type, CacheKeyPrefix) else entity_type


class CacheInvalidationManager:
    """Removes cache entries made stale by committed writes.

    Invalidation is best effort. Every operation returns True on success and
    False on failure; failures are logged and counted in
    `failed_invalidations` but never raised, so a cache outage cannot turn a
    committed write into an error.

    Repositories call `invalidate_for` with the changed entity. It expands
    the CacheInvalidationRule registered for the entity type into
    (a) by-id keys, (b) secondary-index patterns from foreign keys and
    (c) list caches. The domain specific helpers cover callers that only
    know ids.

    Examples:
        >>> manager = CacheInvalidationManager(InMemoryCacheBackend())
        >>> await manager.invalidate_for("focus_area", focus_area)
        True
        >>> await manager.invalidate_list_caches(CacheKeyPrefix.CHALLENGE)
        True
    """

    def __init__(self, backend: CacheBackend, rules: Iterable[CacheInvalidationRule] | None = None):
        self.backend = backend
        self.failed_invalidations = 0
        self._rules: dict[str, CacheInvalidationRule] = {}
        for rule in DEFAULT_RULES if rules is None else rules:
            self.register_rule(rule)

    def register_rule(self, rule: CacheInvalidationRule) -> None:
        self._rules[rule.entity_type] = rule

    def rule_for(self, entity_type: str) -> CacheInvalidationRule:
        """The registered rule for `entity_type`, or a default one."""
        rule = self._rules.get(entity_type)
        if rule is None:
            rule = CacheInvalidationRule.for_entity(entity_type)
        return rule

    def _failed(self, message: str, **extra: Any) -> bool:
        self.failed_invalidations += 1
        LOGGER.exception(message, extra=extra)
        return False

    # ========== Primitives ==========

    async def invalidate_key(self, key: str) -> bool:
        try:
            await self.backend.delete(key)
            LOGGER.debug("Invalidated cache key", extra={"cache_key": key})
            return True
        except Exception:
            return self._failed("Error invalidating cache key", cache_key=key)

    async def invalidate_pattern(self, pattern: str) -> bool:
        try:
            count = await self.backend.delete_pattern(pattern)
            LOGGER.debug("Invalidated cache pattern", extra={"cache_pattern": pattern, "count": count})
            return True
        except Exception:
            return self._failed("Error invalidating cache pattern", cache_pattern=pattern)

    async def _invalidate_all_of(self, patterns: Iterable[str]) -> bool:
        ok = True
        for pattern in patterns:
            if any(c in pattern for c in "*?["):
                ok = await self.invalidate_pattern(pattern) and ok
            else:
                ok = await self.invalidate_key(pattern) and ok
        return ok

    # ========== Generic operations ==========

    async def invalidate_entity(self, entity_type: CacheKeyPrefix | str, entity_id: str) -> bool:
        """Invalidate the by-id key and every key embedding the entity id."""
        prefix = _prefix(entity_type)
        return await self._invalidate_all_of(
            [
                cache_key(prefix, "byId", entity_id),
                f"{prefix}:*:{entity_id}:*",
                f"{prefix}:*:*:{entity_id}",
            ]
        )

    async def invalidate_list_caches(self, entity_type: CacheKeyPrefix | str) -> bool:
        prefix = _prefix(entity_type)
        return await self._invalidate_all_of([f"{prefix}:list:*", f"{prefix}:search:*"])

    async def invalidate_for(self, entity_type: str, entity: BaseModel | Mapping[str, Any]) -> bool:
        """Invalidate everything the rule for `entity_type` derives from `entity`.

        Entities without an id are skipped.
        """
        try:
            if entity_fields(entity).get("id") is None:
                LOGGER.debug("Skipping invalidation for entity without id", extra={"entity_type": entity_type})
                return True
            patterns = self.rule_for(entity_type).expand(entity)
        except Exception:
            return self._failed("Error expanding cache invalidation rule", entity_type=entity_type)
        return await self._invalidate_all_of(patterns)

    async def invalidate_all(self) -> bool:
        try:
            await self.backend.clear()
            LOGGER.info("Cleared all caches")
            return True
        except Exception:
            return self._failed("Error clearing all caches")

    # ========== Domain helpers ==========

    async def invalidate_user_caches(self, user_id: str) -> bool:
        return await self._invalidate_all_of(
            self.rule_for("user").expand({"id": user_id})
        )

    async def invalidate_focus_area_caches(self, focus_area_id: str, user_id: str | None = None) -> bool:
        return await self._invalidate_all_of(
            self.rule_for("focus_area").expand({"id": focus_area_id, "user_id": user_id})
        )

    async def invalidate_challenge_caches(
        self,
        challenge_id: str,
        user_id: str | None = None,
        focus_area_id: str | None = None,
    ) -> bool:
        return await self._invalidate_all_of(
            self.rule_for("challenge").expand(
                {"id": challenge_id, "user_id": user_id, "focus_area_id": focus_area_id}
            )
        )

    async def invalidate_evaluation_caches(
        self,
        evaluation_id: str,
        user_id: str | None = None,
        challenge_id: str | None = None,
    ) -> bool:
        return await self._invalidate_all_of(
            self.rule_for("evaluation").expand(
                {"id": evaluation_id, "user_id": user_id, "challenge_id": challenge_id}
            )
        )

    async def invalidate_personality_caches(self, personality_id: str, user_id: str | None = None) -> bool:
        return await self._invalidate_all_of(
            self.rule_for("personality").expand({"id": personality_id, "user_id": user_id})
        )

    async def invalidate_recommendation_caches(self, recommendation_id: str, user_id: str | None = None) -> bool:
        return await self._invalidate_all_of(
            self.rule_for("recommendation").expand({"id": recommendation_id, "user_id": user_id})
        )
