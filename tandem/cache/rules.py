import logging
import string
from collections.abc import Mapping
from dataclasses import dataclass
from typing import Any

from pydantic import BaseModel

from .keys import CacheKeyPrefix

LOGGER = logging.getLogger(__name__)

_FORMATTER = string.Formatter()


def _fields(template: str) -> set[str]:
    return {name for _, name, _, _ in _FORMATTER.parse(template) if name}


def entity_fields(entity: BaseModel | Mapping[str, Any]) -> dict[str, Any]:
    """Field values of an entity, as used to expand rule templates."""
    if isinstance(entity, BaseModel):
        return entity.model_dump()
    return dict(entity)


@dataclass(frozen=True)
class CacheInvalidationRule:
    """Which cache keys depend on an entity of one type.

    Patterns are templates formatted with the changed entity's fields, e.g.
    `"focusarea:byUser:{user_id}:*"`. A template that references a field the
    entity does not have (or holds None) is skipped.

    Attributes:
        entity_type: The entity type the rule applies to.
        prefix: Cache key prefix of the entity's own keys.
        id_patterns: Keys and patterns addressing the entity by id.
        foreign_key_patterns: Secondary indexes derived from foreign keys,
            e.g. the owner's by-user listings.
        list_patterns: Listings and searches that may include the entity.
    """

    entity_type: str
    prefix: str
    id_patterns: tuple[str, ...]
    foreign_key_patterns: tuple[str, ...] = ()
    list_patterns: tuple[str, ...] = ()

    @classmethod
    def for_entity(
        cls,
        entity_type: str,
        prefix: CacheKeyPrefix | str | None = None,
        *,
        foreign_key_patterns: tuple[str, ...] = (),
        list_patterns: tuple[str, ...] | None = None,
    ) -> "CacheInvalidationRule":
        """Build a rule with the standard by-id and list patterns for `prefix`."""
        if isinstance(prefix, CacheKeyPrefix):
            prefix = prefix.value
        prefix = prefix or entity_type
        return cls(
            entity_type=entity_type,
            prefix=prefix,
            id_patterns=(f"{prefix}:byId:{{id}}", f"{prefix}:*:{{id}}:*", f"{prefix}:*:*:{{id}}"),
            foreign_key_patterns=foreign_key_patterns,
            list_patterns=list_patterns if list_patterns is not None else (f"{prefix}:list:*", f"{prefix}:search:*"),
        )

    def expand(self, entity: BaseModel | Mapping[str, Any]) -> list[str]:
        """Keys and patterns to invalidate for `entity`, in rule order."""
        values = entity_fields(entity)
        expanded = []
        for template in (*self.id_patterns, *self.foreign_key_patterns, *self.list_patterns):
            if any(values.get(name) is None for name in _fields(template)):
                LOGGER.debug(
                    "Skipping cache pattern with missing field",
                    extra={"entity_type": self.entity_type, "pattern": template},
                )
                continue
            expanded.append(template.format(**values))
        return expanded


DEFAULT_RULES: tuple[CacheInvalidationRule, ...] = (
    CacheInvalidationRule.for_entity(
        "user",
        CacheKeyPrefix.USER,
        foreign_key_patterns=(
            "challenge:byUser:{id}:*",
            "focusarea:byUser:{id}:*",
            "evaluation:byUser:{id}:*",
            "personality:byUser:{id}:*",
            "recommendation:byUser:{id}:*",
        ),
    ),
    CacheInvalidationRule.for_entity(
        "focus_area",
        CacheKeyPrefix.FOCUS_AREA,
        foreign_key_patterns=(
            "focusarea:byUser:{user_id}:*",
            "challenge:byFocusArea:{id}:*",
        ),
    ),
    CacheInvalidationRule.for_entity(
        "challenge",
        CacheKeyPrefix.CHALLENGE,
        foreign_key_patterns=(
            "challenge:byUser:{user_id}:*",
            "challenge:byFocusArea:{focus_area_id}:*",
            "evaluation:byChallenge:{id}:*",
        ),
        list_patterns=("challenge:list:*", "challenge:search:*", "challenge:recent:*"),
    ),
    CacheInvalidationRule.for_entity(
        "evaluation",
        CacheKeyPrefix.EVALUATION,
        foreign_key_patterns=(
            "evaluation:byUser:{user_id}:*",
            "evaluation:byChallenge:{challenge_id}:*",
        ),
    ),
    CacheInvalidationRule.for_entity(
        "personality",
        CacheKeyPrefix.PERSONALITY,
        foreign_key_patterns=("personality:byUser:{user_id}:*",),
    ),
    CacheInvalidationRule.for_entity(
        "recommendation",
        CacheKeyPrefix.RECOMMENDATION,
        foreign_key_patterns=("recommendation:byUser:{user_id}:*",),
    ),
)
