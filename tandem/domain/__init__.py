"""Domain primitives shared by every persisted type.

- Entity: Base class for identity-bearing objects that queue domain events
- DomainEvent: Immutable record of something that happened to an entity
- HasDomainEvents: Capability protocol for objects exposing an event queue
- RepositoryError and subclasses: Error taxonomy surfaced to callers
"""

from .entity import Entity, HasDomainEvents, new_entity_id
from .event import DomainEvent, utc_now
from .exceptions import (
    DatabaseError,
    EntityNotFoundError,
    RepositoryError,
    TransactionStateError,
    ValidationError,
)

__all__ = [
    "Entity",
    "HasDomainEvents",
    "new_entity_id",
    "DomainEvent",
    "utc_now",
    "RepositoryError",
    "ValidationError",
    "EntityNotFoundError",
    "DatabaseError",
    "TransactionStateError",
]
