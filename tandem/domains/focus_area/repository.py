from collections.abc import Mapping, Sequence
from typing import Any

import pydantic

from ...cache import CacheKeyPrefix, cache_key
from ...domain.exceptions import ValidationError
from ...repositories import DeleteResult, Repository
from ...repositories.casing import camel_to_snake, keys_to_camel
from ...storage import SortDirection
from .entity import FocusArea


def _top_level_snake(data: Mapping[str, Any]) -> dict[str, Any]:
    # Nested metadata keys belong to the caller and keep their casing
    return {camel_to_snake(key): value for key, value in data.items()}


class FocusAreaRepository(Repository[FocusArea]):
    """Persistence for focus areas, stored in the `focus_areas` table."""

    entity_class = FocusArea
    table_name = "focus_areas"
    cache_prefix = CacheKeyPrefix.FOCUS_AREA.value

    def _build(self, data: Mapping[str, Any]) -> FocusArea:
        try:
            return FocusArea.create(**_top_level_snake(data))
        except pydantic.ValidationError as e:
            raise ValidationError(
                f"Invalid focus area: {e.error_count()} validation error(s)",
                entity_type=self.domain_name,
                validation_errors={".".join(map(str, err["loc"])): err["msg"] for err in e.errors()},
            ) from e

    def _deleted_event_payload(self, entity: FocusArea) -> dict[str, Any]:
        return keys_to_camel(
            {
                "focus_area_id": entity.id,
                "user_id": entity.user_id,
                "name": entity.name,
                "action": "deleted",
            }
        )

    async def find_by_user_id(
        self,
        user_id: str,
        *,
        limit: int = 100,
        offset: int = 0,
        active_only: bool = False,
        sort_by: str = "priority",
        sort_dir: SortDirection = "asc",
    ) -> list[FocusArea]:
        """List a user's focus areas, highest priority first by default.

        Reads through the cache under `focusarea:byUser:<user_id>:...`, one
        key per combination of listing options.
        """
        self._validate_required_params({"user_id": user_id}, ["user_id"])
        filters: dict[str, Any] = {"user_id": user_id}
        if active_only:
            filters["active"] = True
        key = cache_key(
            self.cache_prefix,
            "byUser",
            user_id,
            "active" if active_only else "all",
            sort_by,
            sort_dir,
            limit,
            offset,
        )
        records = await self._read_through(
            key,
            lambda: self._select_where(filters, order_by=[(sort_by, sort_dir)], limit=limit, offset=offset),
        )
        return [self._to_domain(record) for record in records]

    async def find_all(
        self,
        *,
        limit: int = 100,
        offset: int = 0,
        sort_by: str = "name",
        sort_dir: SortDirection = "asc",
    ) -> list[FocusArea]:
        return await self.find_where(order_by=[(sort_by, sort_dir)], limit=limit, offset=offset)

    async def create_focus_area(self, data: Mapping[str, Any] | None = None, **fields: Any) -> FocusArea:
        """Create and persist a focus area.

        Accepts camelCase or snake_case keys, either as a mapping or as
        keyword arguments. `user_id` and `name` are required.

        Examples:
            >>> await repository.create_focus_area(user_id=user_id, name="Listening")
            >>> await repository.create_focus_area({"userId": user_id, "name": "Listening"})
        """
        values = _top_level_snake({**(data or {}), **fields})
        self._validate_required_params(values, ["user_id", "name"])
        return await self.save(self._build(values))

    async def save_batch(self, user_id: str, focus_areas: Sequence[Mapping[str, Any]]) -> list[FocusArea]:
        """Create several focus areas for a user in one transaction."""
        self._validate_required_params({"user_id": user_id}, ["user_id"])
        if isinstance(focus_areas, (str, bytes)) or not isinstance(focus_areas, Sequence):
            raise ValidationError("focus_areas must be a list", entity_type=self.domain_name)
        if not focus_areas:
            self.logger.debug("No focus areas to save", extra={"user_id": user_id})
            return []
        entities = [self._build({**_top_level_snake(data), "user_id": user_id}) for data in focus_areas]
        return await self.save_all(entities, "save_batch")

    async def delete_all_for_user(self, user_id: str) -> list[DeleteResult]:
        """Delete every focus area of a user in one transaction."""
        self._validate_id(user_id, "user_id")
        return await self.delete_where({"user_id": user_id}, "delete_all_for_user")
