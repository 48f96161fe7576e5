import logging
from types import TracebackType
from typing import Any, Protocol, TypeVar, runtime_checkable

from .cache import (
    CacheBackend,
    CacheInvalidationManager,
    CacheInvalidationRule,
    CacheService,
    InMemoryCacheBackend,
)
from .config import TandemSettings
from .events import EventBus, EventHandler
from .repositories import PostCommitMetrics, Repository
from .storage import InMemoryStorageClient, StorageClient

LOGGER = logging.getLogger(__name__)

R = TypeVar("R", bound=Repository[Any])


@runtime_checkable
class HasLifecycle(Protocol):
    async def on_startup(self) -> None:
        """Called when persistence is started."""
        ...

    async def on_shutdown(self) -> None:
        """Called when persistence is shut down."""
        ...


class Persistence:
    """The wired persistence core of an application.

    Owns exactly one event bus, one read-through cache, one cache
    invalidation manager over the same backend and one set of post-commit
    metrics, and hands out repositories that share them.
    Repositories are created on first request and reused afterwards.

    Used as an async context manager, it starts every dependency implementing
    `HasLifecycle` in registration order and shuts them down in reverse.

    Examples:
        >>> persistence = PersistenceBuilder().use_storage(storage).build()
        >>> async with persistence:
        ...     focus_areas = persistence.repository(FocusAreaRepository)
        ...     await focus_areas.create_focus_area(user_id=user_id, name="Listening")
    """

    def __init__(
        self,
        settings: TandemSettings,
        storage: StorageClient,
        event_bus: EventBus,
        cache_invalidator: CacheInvalidationManager,
        dependencies: list[Any],
        cache: CacheService | None = None,
    ):
        self.settings = settings
        self.storage = storage
        self.event_bus = event_bus
        self.cache_invalidator = cache_invalidator
        self.cache = cache
        self.metrics = PostCommitMetrics()
        self._dependencies = dependencies
        self._repositories: dict[type[Repository[Any]], Repository[Any]] = {}

    def repository(self, repository_type: type[R]) -> R:
        """Get the shared instance of a repository type."""
        if repository_type not in self._repositories:
            self._repositories[repository_type] = repository_type(
                self.storage,
                event_bus=self.event_bus,
                cache_invalidator=self.cache_invalidator,
                cache=self.cache,
                settings=self.settings,
                metrics=self.metrics,
            )
        return self._repositories[repository_type]  # type: ignore[return-value]

    def _lifecycle_dependencies(self) -> list[HasLifecycle]:
        return [d for d in self._dependencies if isinstance(d, HasLifecycle)]

    async def startup(self) -> None:
        for dependency in self._lifecycle_dependencies():
            await dependency.on_startup()

    async def shutdown(self) -> None:
        for dependency in reversed(self._lifecycle_dependencies()):
            await dependency.on_shutdown()

    async def __aenter__(self) -> "Persistence":
        await self.startup()
        return self

    async def __aexit__(
        self,
        _exc_type: type[BaseException] | None,
        _exc_value: BaseException | None,
        _traceback: TracebackType | None,
    ) -> None:
        await self.shutdown()


class PersistenceBuilder:
    """Builder for creating Persistence instances.

    Every collaborator has a default: settings from the environment,
    in-memory storage, an in-memory cache and a fresh event bus configured
    from the settings.
    """

    def __init__(self) -> None:
        self._settings: TandemSettings | None = None
        self._storage: StorageClient | None = None
        self._cache_backend: CacheBackend | None = None
        self._event_bus: EventBus | None = None
        self._rules: list[CacheInvalidationRule] = []
        self._handlers: list[tuple[str, EventHandler, str | None]] = []
        self._event_types: list[tuple[str, dict[str, Any]]] = []
        self._dependencies: list[Any] = []

    def use_settings(self, settings: TandemSettings) -> "PersistenceBuilder":
        self._settings = settings
        return self

    def use_storage(self, storage: StorageClient) -> "PersistenceBuilder":
        self._storage = storage
        return self

    def use_cache_backend(self, backend: CacheBackend) -> "PersistenceBuilder":
        self._cache_backend = backend
        return self

    def use_event_bus(self, event_bus: EventBus) -> "PersistenceBuilder":
        self._event_bus = event_bus
        return self

    def register_cache_rule(self, rule: CacheInvalidationRule) -> "PersistenceBuilder":
        """Add or replace the invalidation rule for `rule.entity_type`."""
        self._rules.append(rule)
        return self

    def register_handler(
        self,
        event_type: str,
        handler: EventHandler,
        handler_id: str | None = None,
    ) -> "PersistenceBuilder":
        """Subscribe a handler on the bus once it is built.

        Handlers run in the order they are registered.
        """
        self._handlers.append((event_type, handler, handler_id))
        return self

    def register_event_type(self, name: str, **metadata: Any) -> "PersistenceBuilder":
        self._event_types.append((name, metadata))
        return self

    def register_dependency(self, dependency: Any) -> "PersistenceBuilder":
        """Register an object whose lifecycle `Persistence` should manage."""
        self._dependencies.append(dependency)
        return self

    def build(self) -> Persistence:
        settings = self._settings or TandemSettings()
        storage = self._storage or InMemoryStorageClient()
        event_bus = self._event_bus or EventBus(
            record_history=settings.record_event_history,
            history_limit=settings.event_history_limit,
        )
        cache_backend = self._cache_backend or InMemoryCacheBackend(default_ttl=settings.cache_default_ttl)

        cache = CacheService(cache_backend, enabled=settings.cache_reads)
        cache_invalidator = CacheInvalidationManager(cache_backend)
        for rule in self._rules:
            cache_invalidator.register_rule(rule)

        for name, metadata in self._event_types:
            event_bus.register_event_type(name, **metadata)
        for event_type, handler, handler_id in self._handlers:
            event_bus.register(event_type, handler, handler_id=handler_id)

        # Storage and cache first so they start before and stop after the rest
        dependencies = [storage, cache_backend, *self._dependencies]
        LOGGER.debug(
            "Built persistence",
            extra={"storage": type(storage).__name__, "handlers": len(self._handlers)},
        )
        return Persistence(settings, storage, event_bus, cache_invalidator, dependencies, cache)
