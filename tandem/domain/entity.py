from datetime import datetime
from typing import Any, ClassVar, Protocol, runtime_checkable
from uuid import uuid4

from pydantic import BaseModel, Field
from ulid import ULID

from ..context import get_context
from .event import DomainEvent, utc_now
from .exceptions import ValidationError


def new_entity_id() -> str:
    return str(uuid4())


@runtime_checkable
class HasDomainEvents(Protocol):
    """Capability of objects that queue domain events until persisted.

    Repositories depend on this protocol rather than on `Entity` itself so
    that any persisted object exposing the event queue can flow through the
    same save path.
    """

    def add_domain_event(self, event_type: str, payload: dict[str, Any] | None = None) -> DomainEvent: ...

    def get_domain_events(self) -> list[DomainEvent]: ...

    def clear_domain_events(self) -> None: ...


class Entity(BaseModel):
    """Base class for identity-bearing domain objects.

    An entity accumulates pending domain events as it mutates. The events
    stay in a plain in-memory queue; the entity never talks to the event
    bus. Whoever persists the entity extracts and clears the queue as one
    step (see `pull_domain_events`) and hands the events to the bus after
    the write commits.

    Mutator methods that change observable state call `add_domain_event`
    for every transition other domains need to react to.

    Examples:
        >>> class Habit(Entity):
        ...     entity_type: ClassVar[str] = "habit"
        ...     name: str
        ...
        ...     def rename(self, name: str) -> None:
        ...         previous, self.name = self.name, name
        ...         self.add_domain_event("HABIT_RENAMED", {"previous": previous, "name": name})
        >>>
        >>> habit = Habit(name="Read")
        >>> habit.rename("Read daily")
        >>> [e.type for e in habit.get_domain_events()]
        ['HABIT_RENAMED']

    Attributes:
        id: Unique identifier. Generated when not supplied and immutable
            once set.
        created_at: When the entity was first created (UTC).
        updated_at: When the entity last changed (UTC).
        pending_events: Events queued since the last persistence. Excluded
            from serialization.
    """

    entity_type: ClassVar[str] = "entity"

    id: str = Field(default_factory=new_entity_id)
    created_at: datetime = Field(default_factory=utc_now)
    updated_at: datetime = Field(default_factory=utc_now)
    pending_events: list[DomainEvent] = Field(default_factory=list, exclude=True)

    def __setattr__(self, name: str, value: Any) -> None:
        if name == "id" and getattr(self, "id", None) and value != self.id:
            raise ValidationError(
                "Entity id cannot be changed once set",
                entity_type=self.entity_type,
                validation_errors={"id": "Immutable once set"},
            )
        super().__setattr__(name, value)

    def add_domain_event(self, event_type: str, payload: dict[str, Any] | None = None) -> DomainEvent:
        """Queue a domain event stamped with this entity's id and type.

        The event's correlation_id is taken from the current execution
        context. Outside any context the event correlates with itself.

        Args:
            event_type: The event type tag, e.g. "FOCUS_AREA_CREATED".
            payload: Structured event data.

        Returns:
            The queued event.
        """
        event_id = ULID()
        event = DomainEvent(
            id=event_id,
            type=event_type,
            correlation_id=get_context().correlation_id or event_id,
            source_entity_id=self.id,
            source_entity_type=self.entity_type,
            payload=dict(payload or {}),
        )
        self.pending_events.append(event)
        return event

    def get_domain_events(self) -> list[DomainEvent]:
        """Return a snapshot copy of the pending events without clearing them."""
        return list(self.pending_events)

    def clear_domain_events(self) -> None:
        """Discard all pending events."""
        self.pending_events.clear()

    def pull_domain_events(self) -> list[DomainEvent]:
        """Extract and clear the pending events as one step.

        Saving the same instance twice can therefore never queue an event
        twice.
        """
        events = self.get_domain_events()
        self.clear_domain_events()
        return events

    def touch(self) -> None:
        """Record that the entity changed now."""
        self.updated_at = utc_now()
