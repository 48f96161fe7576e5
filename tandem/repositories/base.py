import asyncio
import logging
import re
from collections.abc import Awaitable, Callable, Mapping, Sequence
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, ClassVar, Generic, TypeVar

from ..cache.keys import cache_key
from ..domain import DomainEvent, Entity, utc_now
from ..domain.exceptions import EntityNotFoundError, ValidationError
from ..storage import OrderBy, Record, StorageClient, TableQuery, TransactionHandle
from .casing import camel_to_snake, keys_to_camel
from .errors import map_error
from .retry import RetryExecutor, RetryPolicy
from .transaction import (
    PostCommitMetrics,
    TransactionCoordinator,
    TransactionOptions,
    TransactionResult,
)

if TYPE_CHECKING:
    from ..cache import CacheInvalidationManager, CacheService
    from ..config import TandemSettings
    from ..events import EventBus

LOGGER = logging.getLogger(__name__)

E = TypeVar("E", bound=Entity)
T = TypeVar("T")

UUID_PATTERN = re.compile(r"^[0-9a-f]{8}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{12}$", re.IGNORECASE)

__all__ = ["Repository", "DeleteResult", "RepositoryLoggerAdapter", "map_error"]


@dataclass(frozen=True)
class DeleteResult:
    """Outcome of `Repository.delete`. `deleted` is False for a missing id."""

    deleted: bool
    id: str


class RepositoryLoggerAdapter(logging.LoggerAdapter):
    """Adds the repository's domain and table names to every record."""

    def process(self, msg: Any, kwargs: Any) -> tuple[Any, Any]:
        kwargs["extra"] = {**(self.extra or {}), **kwargs.get("extra", {})}
        return msg, kwargs


class Repository(Generic[E]):
    """Generic persistence for one entity type.

    A repository owns one table and guarantees that a write and its side
    effects happen together. `save` and `delete` run inside a transaction;
    only after the commit are the entity's domain events published and the
    dependent cache entries invalidated. If the write fails, nothing is
    published and nothing is invalidated, and the entity keeps its pending
    events.

    All storage I/O runs through a RetryExecutor. Reads are retried
    individually; writes are retried by re-running the whole transaction.
    With a CacheService, `find_by_id` reads through the cache under
    `<cache_prefix>:byId:<id>`; committed writes invalidate those keys.

    Subclasses declare the entity class and table, and add domain finders on
    top of `find_where`:

    Examples:
        >>> class HabitRepository(Repository[Habit]):
        ...     entity_class = Habit
        ...     table_name = "habits"
        ...
        ...     async def find_by_user_id(self, user_id: str) -> list[Habit]:
        ...         self._validate_required_params({"user_id": user_id}, ["user_id"])
        ...         return await self.find_where({"user_id": user_id})
        >>>
        >>> repository = HabitRepository(storage, event_bus=bus, cache_invalidator=invalidator)
        >>> habit = await repository.save(Habit(user_id=user_id, name="Read"))

    Attributes:
        entity_class: The entity type persisted by this repository.
        table_name: Storage table holding the records.
        domain_name: Name used in logs, errors and cache rules. Defaults to
            the entity's `entity_type`.
        event_prefix: Prefix of event types emitted by the repository
            itself, e.g. `FOCUS_AREA` for `FOCUS_AREA_DELETED`.
        cache_prefix: First segment of the repository's cache keys. Defaults
            to `domain_name`.
    """

    entity_class: ClassVar[type[Entity]]
    table_name: ClassVar[str]
    domain_name: ClassVar[str]
    event_prefix: ClassVar[str]
    cache_prefix: ClassVar[str]

    def __init_subclass__(cls, **kwargs: Any) -> None:
        super().__init_subclass__(**kwargs)
        entity_class = cls.__dict__.get("entity_class")
        if entity_class is None:
            return
        if "domain_name" not in cls.__dict__:
            cls.domain_name = entity_class.entity_type
        if "event_prefix" not in cls.__dict__:
            cls.event_prefix = cls.domain_name.upper()
        if "cache_prefix" not in cls.__dict__:
            cls.cache_prefix = cls.domain_name

    def __init__(
        self,
        storage: StorageClient,
        *,
        event_bus: "EventBus | None" = None,
        cache_invalidator: "CacheInvalidationManager | None" = None,
        cache: "CacheService | None" = None,
        settings: "TandemSettings | None" = None,
        retry_policy: RetryPolicy | None = None,
        metrics: PostCommitMetrics | None = None,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ):
        """Initialize the repository with its collaborators.

        Args:
            storage: Storage client holding `table_name`.
            event_bus: Receives domain events after commit. Events are
                discarded when None.
            cache_invalidator: Invalidates dependent caches after commit.
                Skipped when None.
            cache: Read-through cache for lookups by id. Reads go straight
                to storage when None.
            settings: Shared tunables. Defaults are used when None.
            retry_policy: Overrides the policy derived from `settings`.
            metrics: Post-commit counters, shared across repositories when
                given.
            sleep: Awaitable used for retry backoff.
        """
        self.storage = storage
        self.event_bus = event_bus
        self.cache_invalidator = cache_invalidator
        self.cache = cache
        self.validate_uuids = settings.validate_uuids if settings else False
        self.transaction_timeout = settings.transaction_timeout if settings else None

        policy = retry_policy or (settings.retry_policy() if settings else RetryPolicy())
        self.retry = RetryExecutor(policy, entity_type=self.domain_name, sleep=sleep)
        self.transactions = TransactionCoordinator(storage, entity_type=self.domain_name, metrics=metrics)
        self.logger = RepositoryLoggerAdapter(
            LOGGER, {"domain_name": self.domain_name, "table_name": self.table_name}
        )

    # ========== Validation ==========

    def _validate_id(self, entity_id: Any, param_name: str = "id") -> None:
        """Reject a missing or malformed id before any I/O.

        Raises:
            ValidationError: If the id is empty, not a string or int, or not
                a UUID while `validate_uuids` is enabled.
        """
        if entity_id is None or entity_id == "":
            raise ValidationError(
                f"{self.domain_name} {param_name} is required",
                entity_type=self.domain_name,
                validation_errors={param_name: "Required"},
            )
        if isinstance(entity_id, bool) or not isinstance(entity_id, (str, int)):
            raise ValidationError(
                f"{self.domain_name} {param_name} must be a string or number",
                entity_type=self.domain_name,
                validation_errors={param_name: f"Invalid type {type(entity_id).__name__}"},
            )
        if self.validate_uuids and isinstance(entity_id, str) and not UUID_PATTERN.match(entity_id):
            raise ValidationError(
                f"{self.domain_name} {param_name} must be a valid UUID",
                entity_type=self.domain_name,
                validation_errors={param_name: "Invalid UUID"},
            )

    def _validate_required_params(self, params: Mapping[str, Any], required: Sequence[str]) -> None:
        """Raise ValidationError naming every required parameter that is missing."""
        missing = [name for name in required if params.get(name) is None or params.get(name) == ""]
        if missing:
            raise ValidationError(
                f"Missing required parameters: {', '.join(missing)}",
                entity_type=self.domain_name,
                validation_errors={name: "Required" for name in missing},
            )

    def _validate_entity(self, entity: Any) -> None:
        if entity is None:
            raise ValidationError(f"{self.domain_name} object is required", entity_type=self.domain_name)
        if not isinstance(entity, self.entity_class):
            raise ValidationError(
                f"Object must be a {self.entity_class.__name__} instance",
                entity_type=self.domain_name,
            )
        self._validate_id(entity.id)

    # ========== Mapping ==========

    def _to_persistence(self, entity: E) -> Record:
        return {camel_to_snake(key): value for key, value in entity.model_dump().items()}

    def _to_domain(self, record: Record) -> E:
        return self.entity_class.model_validate(  # type: ignore[return-value]
            {camel_to_snake(key): value for key, value in record.items()}
        )

    def _table(self) -> TableQuery:
        return self.storage.table(self.table_name)

    def _transaction_options(
        self,
        invalidate: Callable[[Any], Awaitable[Any]] | None = None,
    ) -> TransactionOptions:
        return TransactionOptions(
            publish_events=self.event_bus is not None,
            invalidate_cache=self.cache_invalidator is not None,
            event_bus=self.event_bus,
            invalidate=invalidate or self._invalidate_entity,
            timeout=self.transaction_timeout,
        )

    async def _in_transaction(
        self,
        operation: Callable[[TransactionHandle], Awaitable[T | TransactionResult[T]]],
        operation_name: str,
        context: Mapping[str, Any] | None = None,
        invalidate: Callable[[Any], Awaitable[Any]] | None = None,
    ) -> T:
        """Run `operation` in a transaction, retrying the whole unit of work."""
        options = self._transaction_options(invalidate)
        return await self.retry.execute(
            lambda: self.transactions.with_transaction(operation, options, operation_name=operation_name),
            operation_name,
            context,
        )

    async def _read_through(self, key: str, load: Callable[[], Awaitable[T]]) -> T:
        """Serve `load` from the cache when one is configured."""
        if self.cache is None:
            return await load()
        return await self.cache.get_or_set(key, load)

    async def _invalidate_entity(self, entity: Any) -> bool:
        """Invalidate the caches depending on a committed entity."""
        if self.cache_invalidator is None:
            return True
        return await self.cache_invalidator.invalidate_for(self.domain_name, entity)

    # ========== Reads ==========

    async def find_by_id(self, entity_id: str, throw_if_not_found: bool = False) -> E | None:
        """Load one entity by id.

        Raises:
            ValidationError: If the id is invalid.
            EntityNotFoundError: If missing and `throw_if_not_found` is set.
            DatabaseError: If storage keeps failing.
        """
        self._validate_id(entity_id)

        async def select() -> Record | None:
            return (await self._table().select({"id": entity_id}, limit=1)).first()

        record = await self._read_through(
            cache_key(self.cache_prefix, "byId", entity_id),
            lambda: self.retry.execute(select, "find_by_id", {"id": entity_id}),
        )
        if record is None:
            if throw_if_not_found:
                raise EntityNotFoundError(
                    f"{self.domain_name} with id {entity_id} not found",
                    entity_id=str(entity_id),
                    entity_type=self.domain_name,
                    identifier_type="id",
                )
            return None
        return self._to_domain(record)

    async def find_by_ids(self, entity_ids: Sequence[str]) -> list[E]:
        """Load several entities in one query. Duplicates are ignored and
        the order of the result is not guaranteed."""
        if not entity_ids:
            return []
        for entity_id in entity_ids:
            self._validate_id(entity_id)
        unique_ids = list(dict.fromkeys(entity_ids))

        async def select() -> list[Record]:
            return (await self._table().select_in("id", unique_ids)).unwrap()

        records = await self.retry.execute(select, "find_by_ids", {"count": len(unique_ids)})
        return [self._to_domain(record) for record in records]

    async def find_where(
        self,
        filters: Mapping[str, Any] | None = None,
        *,
        order_by: OrderBy | None = None,
        limit: int | None = None,
        offset: int = 0,
    ) -> list[E]:
        """Load the entities matching every filter.

        Filter keys and order columns may be given in camelCase or
        snake_case.
        """
        records = await self._select_where(filters, order_by=order_by, limit=limit, offset=offset)
        return [self._to_domain(record) for record in records]

    async def _select_where(
        self,
        filters: Mapping[str, Any] | None = None,
        *,
        order_by: OrderBy | None = None,
        limit: int | None = None,
        offset: int = 0,
    ) -> list[Record]:
        columns = {camel_to_snake(key): value for key, value in (filters or {}).items()}
        ordering = [(camel_to_snake(column), direction) for column, direction in order_by or []]

        async def select() -> list[Record]:
            result = await self._table().select(columns, order_by=ordering or None, limit=limit, offset=offset)
            return result.unwrap()

        return await self.retry.execute(select, "find_where", {"filters": columns})

    # ========== Writes ==========

    async def save(self, entity: E) -> E:
        """Insert or update an entity, then publish its pending events.

        Returns:
            The persisted entity as read back from storage.

        Raises:
            ValidationError: If the entity is invalid or violates a
                storage constraint.
            DatabaseError: If storage keeps failing. No event is published
                and the entity keeps its pending events.
        """
        self._validate_entity(entity)
        events = entity.pull_domain_events()
        record = self._to_persistence(entity)

        async def write(transaction: TransactionHandle) -> TransactionResult[E]:
            saved = await self._write_record(transaction, record)
            return TransactionResult(saved, events)

        try:
            saved = await self._in_transaction(write, "save", {"id": entity.id})
        except Exception:
            # Keep the events so that a later save can still release them
            entity.pending_events[:0] = events
            raise
        self.logger.debug("Saved entity", extra={"entity_id": entity.id, "event_count": len(events)})
        return saved

    async def _write_record(self, transaction: TransactionHandle, record: Record) -> E:
        table = transaction.table(self.table_name)
        existing = (await table.select({"id": record["id"]}, limit=1)).first()
        if existing is None:
            rows = (await table.insert(record)).unwrap()
        else:
            changes = {k: v for k, v in record.items() if k not in ("id", "created_at")}
            changes["updated_at"] = utc_now()
            rows = (await table.update({"id": record["id"]}, changes)).unwrap()
        return self._to_domain(rows[0] if rows else record)

    async def save_all(self, entities: Sequence[E], operation_name: str = "save_all") -> list[E]:
        """Persist several entities in one transaction.

        Either every entity is written and all their events are published,
        or nothing is.
        """
        if not entities:
            return []
        for entity in entities:
            self._validate_entity(entity)
        pulled = [(entity, entity.pull_domain_events()) for entity in entities]
        events: list[DomainEvent] = [event for _, entity_events in pulled for event in entity_events]
        records = [self._to_persistence(entity) for entity in entities]

        async def write(transaction: TransactionHandle) -> TransactionResult[list[E]]:
            saved = [await self._write_record(transaction, record) for record in records]
            return TransactionResult(saved, events)

        try:
            saved = await self._in_transaction(write, operation_name, {"count": len(records)})
        except Exception:
            for entity, entity_events in pulled:
                entity.pending_events[:0] = entity_events
            raise
        self.logger.info("Saved entities", extra={"count": len(saved), "event_count": len(events)})
        return saved

    def _deleted_event_payload(self, entity: E) -> dict[str, Any]:
        return keys_to_camel({f"{self.domain_name}_id": entity.id, "action": "deleted"})

    async def delete(self, entity_id: str) -> DeleteResult:
        """Delete an entity by id and publish `<PREFIX>_DELETED` after commit.

        A missing id is not an error: the result reports `deleted=False` and
        nothing is published or invalidated.
        """
        self._validate_id(entity_id)
        deleted: list[E] = []

        async def remove(transaction: TransactionHandle) -> TransactionResult[DeleteResult]:
            deleted.clear()
            table = transaction.table(self.table_name)
            record = (await table.select({"id": entity_id}, limit=1)).first()
            if record is None:
                return TransactionResult(DeleteResult(deleted=False, id=entity_id))
            entity = self._to_domain(record)
            entity.add_domain_event(f"{self.event_prefix}_DELETED", self._deleted_event_payload(entity))
            (await table.delete({"id": entity_id})).unwrap()
            deleted.append(entity)
            return TransactionResult(DeleteResult(deleted=True, id=entity_id), entity.pull_domain_events())

        async def invalidate(_: DeleteResult) -> bool:
            ok = True
            for entity in deleted:
                ok = await self._invalidate_entity(entity) and ok
            return ok

        result = await self._in_transaction(remove, "delete", {"id": entity_id}, invalidate=invalidate)
        if not result.deleted:
            self.logger.debug("Nothing to delete", extra={"entity_id": entity_id})
        return result

    async def delete_where(self, filters: Mapping[str, Any], operation_name: str = "delete_where") -> list[DeleteResult]:
        """Delete every entity matching `filters` in one transaction."""
        columns = {camel_to_snake(key): value for key, value in filters.items()}
        deleted: list[E] = []

        async def remove(transaction: TransactionHandle) -> TransactionResult[list[DeleteResult]]:
            deleted.clear()
            table = transaction.table(self.table_name)
            records = (await table.select(columns)).unwrap()
            events: list[DomainEvent] = []
            for record in records:
                entity = self._to_domain(record)
                entity.add_domain_event(f"{self.event_prefix}_DELETED", self._deleted_event_payload(entity))
                events.extend(entity.pull_domain_events())
                deleted.append(entity)
            if records:
                (await table.delete(columns)).unwrap()
            return TransactionResult([DeleteResult(deleted=True, id=entity.id) for entity in deleted], events)

        by_id: dict[str, E] = {}

        async def invalidate(result: DeleteResult) -> bool:
            if not by_id:
                by_id.update({entity.id: entity for entity in deleted})
            return await self._invalidate_entity(by_id[result.id])

        return await self._in_transaction(remove, operation_name, {"filters": columns}, invalidate=invalidate)
