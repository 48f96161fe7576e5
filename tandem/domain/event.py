from datetime import datetime, timezone
from typing import Any

from pydantic import BaseModel, ConfigDict, Field
from ulid import ULID


def utc_now() -> datetime:
    """Get the current UTC timestamp.

    Used as default_factory for DomainEvent.timestamp so that all events are
    timestamped in UTC regardless of system timezone.
    """
    return datetime.now(tz=timezone.utc)


class DomainEvent(BaseModel):
    """Immutable record of something that happened to an entity.

    Domain events are created synchronously by entity mutator methods and
    queued on the entity. They are released to the event bus only after the
    write that persists the entity has committed. Events are transient
    notifications, not the system of record.

    Attributes:
        id: Unique identifier for this event instance.
        type: String tag naming what happened (e.g. "FOCUS_AREA_CREATED").
            Handlers subscribe by this tag.
        timestamp: When the event was created (UTC).
        correlation_id: Traces the logical operation that produced the event.
        source_entity_id: ID of the entity that produced the event.
        source_entity_type: Type name of the entity that produced the event.
        payload: Structured event data.

    Examples:
        Events are normally created through the entity:

        >>> focus_area.add_domain_event("FOCUS_AREA_CREATED", {"userId": user_id})

        They can also be built directly, e.g. for system-level notifications:

        >>> event = DomainEvent(type="CACHE_WARMED", payload={"keys": 12})
    """

    model_config = ConfigDict(frozen=True)

    id: ULID = Field(
        default_factory=ULID,
        description="Unique identifier for this event instance",
    )
    type: str = Field(description="Event type tag used for handler routing")
    timestamp: datetime = Field(
        default_factory=utc_now,
        description="When the event occurred (UTC timezone)",
    )
    correlation_id: ULID | None = Field(
        default=None,
        description="Correlation ID of the operation that produced this event",
    )
    source_entity_id: str | None = Field(
        default=None,
        description="ID of the entity that produced this event",
    )
    source_entity_type: str | None = Field(
        default=None,
        description="Type name of the entity that produced this event",
    )
    payload: dict[str, Any] = Field(
        default_factory=dict,
        description="Structured event data",
    )

    def log_extra(self) -> dict[str, str]:
        """Identifying fields of this event, for use as logging `extra`."""
        extra = {"event_id": str(self.id), "event_type": self.type}
        if self.correlation_id is not None:
            extra["correlation_id"] = str(self.correlation_id)
        if self.source_entity_id is not None:
            extra["entity_id"] = self.source_entity_id
        return extra
