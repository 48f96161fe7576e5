from typing import Any, ClassVar

from pydantic import Field

from ...domain import Entity
from ...repositories.casing import keys_to_camel

FOCUS_AREA_CREATED = "FOCUS_AREA_CREATED"
FOCUS_AREA_UPDATED = "FOCUS_AREA_UPDATED"
FOCUS_AREA_DEACTIVATED = "FOCUS_AREA_DEACTIVATED"
FOCUS_AREA_DELETED = "FOCUS_AREA_DELETED"

UPDATABLE_FIELDS = frozenset({"name", "description", "priority", "metadata"})


class FocusArea(Entity):
    """An area a user has chosen to work on.

    Attributes:
        user_id: Owner of the focus area.
        name: Display name.
        description: Free text description.
        priority: 1 (highest) to 5.
        active: Inactive focus areas are kept but hidden from active
            listings.
        metadata: Free-form data, e.g. suggested strategies.
    """

    entity_type: ClassVar[str] = "focus_area"

    user_id: str = Field(min_length=1)
    name: str = Field(min_length=1)
    description: str = ""
    priority: int = Field(default=1, ge=1, le=5)
    active: bool = True
    metadata: dict[str, Any] = Field(default_factory=dict)

    @classmethod
    def create(cls, **data: Any) -> "FocusArea":
        """Create a new focus area and queue FOCUS_AREA_CREATED."""
        focus_area = cls(**data)
        focus_area.add_domain_event(
            FOCUS_AREA_CREATED,
            keys_to_camel(
                {
                    "focus_area_id": focus_area.id,
                    "user_id": focus_area.user_id,
                    "name": focus_area.name,
                    "priority": focus_area.priority,
                }
            ),
        )
        return focus_area

    def update(self, **changes: Any) -> None:
        """Apply changes to the updatable fields.

        Queues FOCUS_AREA_UPDATED naming the fields that actually changed.

        Raises:
            ValueError: If a field cannot be updated this way.
        """
        unknown = set(changes) - UPDATABLE_FIELDS
        if unknown:
            raise ValueError(f"Cannot update fields: {', '.join(sorted(unknown))}")
        changed = [name for name, value in changes.items() if getattr(self, name) != value]
        if not changed:
            return
        validated = self.model_validate({**self.model_dump(), **changes})
        for name in changed:
            setattr(self, name, getattr(validated, name))
        self.touch()
        self.add_domain_event(
            FOCUS_AREA_UPDATED,
            keys_to_camel({"focus_area_id": self.id, "user_id": self.user_id, "changed_fields": changed}),
        )

    def deactivate(self) -> None:
        if not self.active:
            return
        self.active = False
        self.touch()
        self.add_domain_event(
            FOCUS_AREA_DEACTIVATED,
            keys_to_camel({"focus_area_id": self.id, "user_id": self.user_id}),
        )
