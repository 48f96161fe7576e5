"""Transactional repositories with post-commit domain events and cache invalidation."""

from .application import HasLifecycle, Persistence, PersistenceBuilder
from .cache import CacheBackend, CacheInvalidationManager, CacheInvalidationRule, InMemoryCacheBackend
from .config import TandemSettings
from .context import ExecutionContext, clear_context, get_context, get_or_create_context, set_context
from .domain import (
    DatabaseError,
    DomainEvent,
    Entity,
    EntityNotFoundError,
    HasDomainEvents,
    RepositoryError,
    TransactionStateError,
    ValidationError,
)
from .events import EventBus
from .repositories import DeleteResult, Repository, RetryExecutor, RetryPolicy, TransactionCoordinator
from .storage import ErrorKind, InMemoryStorageClient, StorageClient, StorageError

__all__ = [
    "HasLifecycle",
    "Persistence",
    "PersistenceBuilder",
    "CacheBackend",
    "CacheInvalidationManager",
    "CacheInvalidationRule",
    "InMemoryCacheBackend",
    "TandemSettings",
    "ExecutionContext",
    "clear_context",
    "get_context",
    "get_or_create_context",
    "set_context",
    "DatabaseError",
    "DomainEvent",
    "Entity",
    "EntityNotFoundError",
    "HasDomainEvents",
    "RepositoryError",
    "TransactionStateError",
    "ValidationError",
    "EventBus",
    "DeleteResult",
    "Repository",
    "RetryExecutor",
    "RetryPolicy",
    "TransactionCoordinator",
    "ErrorKind",
    "InMemoryStorageClient",
    "StorageClient",
    "StorageError",
]
