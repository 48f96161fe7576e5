"""Storage client contract used by repositories.

This module provides:
- StorageResult: Outcome of one storage round-trip, `data` or `error`
- TableQuery: Query and write operations against one table
- TransactionHandle: A unit of work whose writes become visible on commit
- StorageClient: Entry point handing out tables and transactions

A storage client never raises for ordinary operation failures. It returns a
StorageResult whose `error` is a StorageError tagged with an ErrorKind, and
the repository layer decides what to do with it. Only `commit` and
`rollback` raise, since there is no result to carry the failure.
"""

from abc import ABC, abstractmethod
from collections.abc import Sequence
from dataclasses import dataclass, field
from typing import Any, Literal

from .errors import StorageError

Record = dict[str, Any]
SortDirection = Literal["asc", "desc"]
OrderBy = Sequence[tuple[str, SortDirection]]


@dataclass(frozen=True)
class StorageResult:
    """Outcome of a storage operation.

    Exactly one of `data` and `error` is meaningful. `data` is always a list
    of records, even for single-record operations.
    """

    data: list[Record] = field(default_factory=list)
    error: StorageError | None = None

    @classmethod
    def success(cls, data: list[Record] | None = None) -> "StorageResult":
        return cls(data=list(data or []))

    @classmethod
    def failure(cls, error: StorageError) -> "StorageResult":
        return cls(data=[], error=error)

    @property
    def ok(self) -> bool:
        return self.error is None

    def unwrap(self) -> list[Record]:
        """Return the records, raising the carried StorageError if any."""
        if self.error is not None:
            raise self.error
        return self.data

    def first(self) -> Record | None:
        """Return the first record or None, raising the carried error if any."""
        data = self.unwrap()
        return data[0] if data else None


class TableQuery(ABC):
    """Operations against a single table (or collection).

    Filters are equality matches on column values. Column names are the
    persistence names (snake_case).
    """

    name: str

    @abstractmethod
    async def select(
        self,
        filters: Record | None = None,
        *,
        order_by: OrderBy | None = None,
        limit: int | None = None,
        offset: int = 0,
    ) -> StorageResult:
        """Select records matching all `filters`."""
        ...

    @abstractmethod
    async def select_in(self, column: str, values: Sequence[Any]) -> StorageResult:
        """Select records whose `column` is one of `values`."""
        ...

    @abstractmethod
    async def insert(self, record: Record) -> StorageResult:
        """Insert a record. Returns the stored record."""
        ...

    @abstractmethod
    async def update(self, filters: Record, changes: Record) -> StorageResult:
        """Apply `changes` to every record matching `filters`.

        Returns the updated records.
        """
        ...

    @abstractmethod
    async def delete(self, filters: Record) -> StorageResult:
        """Delete every record matching `filters`. Returns the deleted records."""
        ...


class TransactionHandle(ABC):
    """A unit of work on the storage backend.

    Reads through `table()` observe the transaction's own writes. Writes are
    visible to other readers only after `commit()`.
    """

    @abstractmethod
    def table(self, name: str) -> TableQuery: ...

    @abstractmethod
    async def commit(self) -> None:
        """Make the transaction's writes durable.

        Raises:
            StorageError: If the backend rejects the commit.
        """
        ...

    @abstractmethod
    async def rollback(self) -> None:
        """Discard the transaction's writes.

        Raises:
            StorageError: If the backend fails to abort.
        """
        ...


class StorageClient(ABC):
    @abstractmethod
    def table(self, name: str) -> TableQuery:
        """Get a non-transactional view of a table."""
        ...

    @abstractmethod
    async def transaction(self) -> TransactionHandle:
        """Open a new transaction.

        Raises:
            StorageError: If the backend cannot start a transaction.
        """
        ...
