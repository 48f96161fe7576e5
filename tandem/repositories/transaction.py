import asyncio
import logging
from collections.abc import Awaitable, Callable, Sequence
from dataclasses import dataclass, field
from enum import Enum
from typing import TYPE_CHECKING, Any, Generic, TypeVar

from ulid import ULID

from ..domain import DomainEvent
from ..domain.exceptions import DatabaseError, TransactionStateError
from ..storage import StorageClient, TransactionHandle
from .errors import is_retryable, map_error

if TYPE_CHECKING:
    from ..events import EventBus

LOGGER = logging.getLogger(__name__)

T = TypeVar("T")

Invalidate = Callable[[Any], Awaitable[Any]]


class TransactionState(str, Enum):
    OPEN = "open"
    COMMITTED = "committed"
    ROLLED_BACK = "rolled_back"


class Transaction:
    """A unit of work with a one-way state machine.

    OPEN moves to exactly one of COMMITTED or ROLLED_BACK. Any further
    commit or rollback raises TransactionStateError.
    """

    __slots__ = ("id", "handle", "state")

    def __init__(self, handle: TransactionHandle, transaction_id: ULID | None = None):
        self.id = transaction_id or ULID()
        self.handle = handle
        self.state = TransactionState.OPEN

    def _ensure_open(self, action: str) -> None:
        if self.state is not TransactionState.OPEN:
            raise TransactionStateError(
                f"Cannot {action} transaction {self.id} in state {self.state.value}",
                entity_type="transaction",
                metadata={"transaction_id": str(self.id), "state": self.state.value},
            )

    async def commit(self) -> None:
        self._ensure_open("commit")
        await self.handle.commit()
        self.state = TransactionState.COMMITTED

    async def rollback(self) -> None:
        self._ensure_open("rollback")
        try:
            await self.handle.rollback()
        finally:
            self.state = TransactionState.ROLLED_BACK


@dataclass
class TransactionResult(Generic[T]):
    """What a transactional operation returns when it has events to release.

    The coordinator hands `result` back to the caller and publishes
    `domain_events` once the transaction has committed.
    """

    result: T
    domain_events: list[DomainEvent] = field(default_factory=list)


@dataclass
class TransactionOptions:
    """Per-call behaviour of `TransactionCoordinator.with_transaction`.

    Attributes:
        publish_events: Publish the result's domain events after commit.
        invalidate_cache: Run `invalidate` for the committed entities.
        event_bus: Bus receiving the events. Nothing is published when None.
        invalidate: Async callable invoked once per committed entity.
        timeout: Upper bound in seconds for the transactional operation.
            Expiry rolls the transaction back.
    """

    publish_events: bool = True
    invalidate_cache: bool = True
    event_bus: "EventBus | None" = None
    invalidate: Invalidate | None = None
    timeout: float | None = None


@dataclass
class PostCommitMetrics:
    """Counters for the best-effort work done after a commit."""

    commits: int = 0
    rollbacks: int = 0
    published_events: int = 0
    publish_failures: int = 0
    invalidations: int = 0
    invalidation_failures: int = 0


def _entity_id(entity: Any) -> Any:
    if isinstance(entity, dict):
        return entity.get("id")
    return getattr(entity, "id", None)


class TransactionCoordinator:
    """Runs an operation inside a transaction and sequences its side effects.

    For one call of `with_transaction` the order is fixed: the operation
    runs, the transaction commits, the domain events are published and then
    caches are invalidated. If anything fails before the commit completes,
    the transaction is rolled back and no event is published and no cache
    entry is touched.

    Publication and invalidation are best effort. Their failures are logged
    with the event and entity ids and counted in `metrics`; they never turn
    a committed write into an error.

    Failures a RetryExecutor would retry, such as a transient StorageError,
    a dropped connection or an expired timeout, propagate unchanged so that
    an enclosing executor can retry the whole transaction. Every other
    failure is translated with `map_error`.
    """

    __slots__ = ("storage", "entity_type", "metrics")

    def __init__(
        self,
        storage: StorageClient,
        *,
        entity_type: str = "unknown",
        metrics: PostCommitMetrics | None = None,
    ):
        self.storage = storage
        self.entity_type = entity_type
        self.metrics = metrics or PostCommitMetrics()

    async def begin(self) -> Transaction:
        """Open a new transaction on the storage client.

        Raises:
            DatabaseError: If the storage client cannot start one.
            Exception: A retryable failure, unchanged.
        """
        try:
            handle = await self.storage.transaction()
        except Exception as e:
            if is_retryable(e):
                raise
            raise DatabaseError(
                f"Failed to begin transaction: {e}",
                operation="begin_transaction",
                entity_type=self.entity_type,
            ) from e
        transaction = Transaction(handle)
        LOGGER.debug(
            "Transaction started",
            extra={"transaction_id": str(transaction.id), "entity_type": self.entity_type},
        )
        return transaction

    async def with_transaction(
        self,
        operation: Callable[[TransactionHandle], Awaitable[T | TransactionResult[T]]],
        options: TransactionOptions | None = None,
        *,
        operation_name: str = "transaction",
    ) -> T:
        """Run `operation` in a transaction, then publish and invalidate.

        Args:
            operation: Coroutine function receiving the transaction handle.
                It may return a plain value or a TransactionResult bundling
                the value with the domain events to publish.
            options: Side effect switches and collaborators.
            operation_name: Name used in logs and error metadata.

        Returns:
            The operation's value, unwrapped from a TransactionResult.

        Raises:
            RepositoryError: The mapped failure, after rollback.
            Exception: A retryable failure, unchanged, after rollback.
        """
        options = options or TransactionOptions()
        transaction = await self.begin()
        try:
            if options.timeout is not None:
                outcome = await asyncio.wait_for(operation(transaction.handle), options.timeout)
            else:
                outcome = await operation(transaction.handle)
            await transaction.commit()
        except Exception as e:
            await self._rollback_quietly(transaction, operation_name)
            if is_retryable(e):
                raise
            mapped = map_error(e, operation=operation_name, entity_type=self.entity_type)
            if mapped is e:
                raise
            raise mapped from e

        self.metrics.commits += 1
        LOGGER.debug(
            "Transaction committed",
            extra={"transaction_id": str(transaction.id), "operation": operation_name},
        )

        if isinstance(outcome, TransactionResult):
            result, events = outcome.result, outcome.domain_events
        else:
            result, events = outcome, []

        await self._publish(events, options)
        await self._invalidate(result, options)
        return result

    async def _rollback_quietly(self, transaction: Transaction, operation_name: str) -> None:
        try:
            await transaction.rollback()
        except Exception:
            LOGGER.exception(
                "Transaction rollback failed",
                extra={"transaction_id": str(transaction.id), "operation": operation_name},
            )
        finally:
            self.metrics.rollbacks += 1

    async def _publish(self, events: Sequence[DomainEvent], options: TransactionOptions) -> None:
        if not options.publish_events or options.event_bus is None:
            return
        for event in events:
            try:
                await options.event_bus.publish(event)
                self.metrics.published_events += 1
            except Exception:
                self.metrics.publish_failures += 1
                LOGGER.exception("Failed to publish domain event after commit", extra=event.log_extra())

    async def _invalidate(self, result: Any, options: TransactionOptions) -> None:
        if not options.invalidate_cache or options.invalidate is None or result is None:
            return
        entities = result if isinstance(result, (list, tuple)) else [result]
        for entity in entities:
            entity_id = _entity_id(entity)
            if entity_id is None:
                continue
            try:
                succeeded = await options.invalidate(entity)
            except Exception:
                succeeded = False
                LOGGER.exception(
                    "Cache invalidation failed after commit",
                    extra={"entity_type": self.entity_type, "entity_id": str(entity_id)},
                )
            if succeeded is False:
                self.metrics.invalidation_failures += 1
            else:
                self.metrics.invalidations += 1
