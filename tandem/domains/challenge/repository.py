from typing import Any

from ...repositories import Repository
from ...repositories.casing import keys_to_camel
from ...storage import SortDirection
from .entity import Challenge, ChallengeStatus


class ChallengeRepository(Repository[Challenge]):
    entity_class = Challenge
    table_name = "challenges"

    def _deleted_event_payload(self, entity: Challenge) -> dict[str, Any]:
        return keys_to_camel(
            {
                "challenge_id": entity.id,
                "user_id": entity.user_id,
                "focus_area_id": entity.focus_area_id,
                "action": "deleted",
            }
        )

    async def find_by_user_id(
        self,
        user_id: str,
        *,
        status: ChallengeStatus | str | None = None,
        limit: int = 100,
        offset: int = 0,
        sort_by: str = "created_at",
        sort_dir: SortDirection = "desc",
    ) -> list[Challenge]:
        """List a user's challenges, most recent first by default."""
        self._validate_required_params({"user_id": user_id}, ["user_id"])
        filters: dict[str, Any] = {"user_id": user_id}
        if status is not None:
            filters["status"] = ChallengeStatus(status).value
        return await self.find_where(filters, order_by=[(sort_by, sort_dir)], limit=limit, offset=offset)

    async def find_by_focus_area_id(
        self,
        focus_area_id: str,
        *,
        limit: int = 100,
        offset: int = 0,
    ) -> list[Challenge]:
        self._validate_id(focus_area_id, "focus_area_id")
        return await self.find_where(
            {"focus_area_id": focus_area_id},
            order_by=[("created_at", "desc")],
            limit=limit,
            offset=offset,
        )
