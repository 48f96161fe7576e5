import copy
import logging
from collections.abc import Sequence
from typing import Any

from .client import OrderBy, Record, StorageClient, StorageResult, TableQuery, TransactionHandle
from .errors import ErrorKind, StorageError

LOGGER = logging.getLogger(__name__)

Tables = dict[str, dict[Any, Record]]


def _matches(record: Record, filters: Record | None) -> bool:
    if not filters:
        return True
    return all(record.get(column) == value for column, value in filters.items())


def _sort(records: list[Record], order_by: OrderBy | None) -> list[Record]:
    if not order_by:
        return records
    # Stable sorts applied from the least significant key.
    for column, direction in reversed(list(order_by)):
        records.sort(
            key=lambda r: (r.get(column) is None, r.get(column)),
            reverse=direction == "desc",
        )
    return records


class InMemoryTable(TableQuery):
    """TableQuery over a dict of records keyed by primary key.

    When a `journal` is given, every successful write is also appended to it
    so that a transaction can replay the writes on commit.
    """

    def __init__(
        self,
        name: str,
        rows: dict[Any, Record],
        *,
        primary_key: str = "id",
        journal: list[tuple[str, str, tuple[Any, ...]]] | None = None,
    ):
        self.name = name
        self._rows = rows
        self._primary_key = primary_key
        self._journal = journal

    def _record(self, operation: str, *args: Any) -> None:
        if self._journal is not None:
            self._journal.append((self.name, operation, copy.deepcopy(args)))

    async def select(
        self,
        filters: Record | None = None,
        *,
        order_by: OrderBy | None = None,
        limit: int | None = None,
        offset: int = 0,
    ) -> StorageResult:
        records = [copy.deepcopy(r) for r in self._rows.values() if _matches(r, filters)]
        records = _sort(records, order_by)
        end = None if limit is None else offset + limit
        return StorageResult.success(records[offset:end])

    async def select_in(self, column: str, values: Sequence[Any]) -> StorageResult:
        wanted = list(values)
        return StorageResult.success(
            [copy.deepcopy(r) for r in self._rows.values() if r.get(column) in wanted]
        )

    async def insert(self, record: Record) -> StorageResult:
        key = record.get(self._primary_key)
        if key is None:
            return StorageResult.failure(
                StorageError(
                    f"Record for {self.name} has no {self._primary_key}",
                    ErrorKind.CONSTRAINT,
                )
            )
        if key in self._rows:
            return StorageResult.failure(
                StorageError(
                    f"Duplicate key {key!r} in {self.name}",
                    ErrorKind.CONSTRAINT,
                    code="duplicate_key",
                )
            )
        self._rows[key] = copy.deepcopy(record)
        self._record("insert", record)
        return StorageResult.success([copy.deepcopy(record)])

    async def update(self, filters: Record, changes: Record) -> StorageResult:
        updated = []
        for record in self._rows.values():
            if _matches(record, filters):
                record.update(copy.deepcopy(changes))
                updated.append(copy.deepcopy(record))
        if updated:
            self._record("update", filters, changes)
        return StorageResult.success(updated)

    async def delete(self, filters: Record) -> StorageResult:
        keys = [k for k, r in self._rows.items() if _matches(r, filters)]
        deleted = [self._rows.pop(k) for k in keys]
        if deleted:
            self._record("delete", filters)
        return StorageResult.success(deleted)


class InMemoryTransaction(TransactionHandle):
    """Transaction over a private working copy of the client's tables.

    Writes go to the working copy and are journaled. On commit the journal is
    replayed against a copy of the live tables, which replaces them only if
    every write applies cleanly. Rollback discards the working copy.
    """

    def __init__(self, client: "InMemoryStorageClient"):
        self._client = client
        self._working: Tables = copy.deepcopy(client.tables)
        self._journal: list[tuple[str, str, tuple[Any, ...]]] = []
        self._finished = False

    def table(self, name: str) -> TableQuery:
        self._ensure_open()
        return InMemoryTable(
            name,
            self._working.setdefault(name, {}),
            primary_key=self._client.primary_key,
            journal=self._journal,
        )

    async def commit(self) -> None:
        self._ensure_open()
        self._finished = True
        staged = copy.deepcopy(self._client.tables)
        for name, operation, args in self._journal:
            table = InMemoryTable(name, staged.setdefault(name, {}), primary_key=self._client.primary_key)
            result = await getattr(table, operation)(*args)
            if result.error is not None:
                raise result.error
        self._client.tables = staged
        LOGGER.debug("Committed in-memory transaction", extra={"writes": len(self._journal)})

    async def rollback(self) -> None:
        self._ensure_open()
        self._finished = True
        self._working = {}
        self._journal.clear()

    def _ensure_open(self) -> None:
        if self._finished:
            raise StorageError("Transaction already finished", ErrorKind.PERMANENT)


class InMemoryStorageClient(StorageClient):
    """Dict-backed storage client for tests and single-process use.

    Example:
        >>> storage = InMemoryStorageClient()
        >>> tx = await storage.transaction()
        >>> await tx.table("focus_areas").insert({"id": "fa-1", "name": "Focus"})
        >>> await tx.commit()
        >>> (await storage.table("focus_areas").select({"id": "fa-1"})).data
        [{'id': 'fa-1', 'name': 'Focus'}]
    """

    def __init__(self, primary_key: str = "id"):
        self.primary_key = primary_key
        self.tables: Tables = {}

    def table(self, name: str) -> TableQuery:
        return InMemoryTable(name, self.tables.setdefault(name, {}), primary_key=self.primary_key)

    async def transaction(self) -> TransactionHandle:
        return InMemoryTransaction(self)

    def records(self, name: str) -> list[Record]:
        """Snapshot of every committed record in a table."""
        return [copy.deepcopy(r) for r in self.tables.get(name, {}).values()]
