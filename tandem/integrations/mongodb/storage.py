"""MongoDB implementation of the storage client.

Each table maps to one collection. The record's `id` is stored as the
document `_id`, and `_id` is stripped again when documents are read back.
Transactions use client sessions, so writes inside a TransactionHandle are
atomic across collections.
"""

import logging
from collections.abc import Sequence
from typing import Any

from pymongo import ASCENDING, DESCENDING
from pymongo.asynchronous.client_session import AsyncClientSession
from pymongo.asynchronous.collection import AsyncCollection
from pymongo.errors import (
    ConnectionFailure,
    DuplicateKeyError,
    ExecutionTimeout,
    PyMongoError,
    WriteConcernError,
)

from ...storage import (
    ErrorKind,
    OrderBy,
    Record,
    StorageClient,
    StorageError,
    StorageResult,
    TableQuery,
    TransactionHandle,
)
from .config import MongoConfiguration

LOGGER = logging.getLogger(__name__)


def to_storage_error(error: PyMongoError) -> StorageError:
    """Classify a pymongo error by the ErrorKind the repositories act on."""
    code = getattr(error, "code", None)
    if isinstance(error, DuplicateKeyError):
        kind = ErrorKind.CONSTRAINT
    elif isinstance(error, (ConnectionFailure, ExecutionTimeout, WriteConcernError)):
        kind = ErrorKind.TRANSIENT
    elif error.has_error_label("TransientTransactionError") or error.has_error_label(
        "UnknownTransactionCommitResult"
    ):
        kind = ErrorKind.TRANSIENT
    else:
        kind = ErrorKind.PERMANENT
    return StorageError(str(error), kind, code=code, details={"error_type": type(error).__name__})


def _to_document(record: Record) -> dict[str, Any]:
    return {"_id": record["id"], **record}


def _to_record(document: dict[str, Any]) -> Record:
    document = dict(document)
    document.pop("_id", None)
    return document


class MongoTable(TableQuery):
    """TableQuery over one collection, optionally bound to a session."""

    def __init__(
        self,
        name: str,
        collection: AsyncCollection[dict[str, Any]],
        session: AsyncClientSession | None = None,
    ):
        self.name = name
        self._collection = collection
        self._session = session

    async def _find(
        self,
        filters: dict[str, Any],
        order_by: OrderBy | None = None,
        limit: int | None = None,
        offset: int = 0,
    ) -> list[Record]:
        cursor = self._collection.find(filters, session=self._session)
        if order_by:
            cursor = cursor.sort(
                [(column, DESCENDING if direction == "desc" else ASCENDING) for column, direction in order_by]
            )
        if offset:
            cursor = cursor.skip(offset)
        if limit is not None:
            cursor = cursor.limit(limit)
        return [_to_record(document) async for document in cursor]

    async def select(
        self,
        filters: Record | None = None,
        *,
        order_by: OrderBy | None = None,
        limit: int | None = None,
        offset: int = 0,
    ) -> StorageResult:
        try:
            return StorageResult.success(await self._find(dict(filters or {}), order_by, limit, offset))
        except PyMongoError as e:
            return StorageResult.failure(to_storage_error(e))

    async def select_in(self, column: str, values: Sequence[Any]) -> StorageResult:
        try:
            return StorageResult.success(await self._find({column: {"$in": list(values)}}))
        except PyMongoError as e:
            return StorageResult.failure(to_storage_error(e))

    async def insert(self, record: Record) -> StorageResult:
        if record.get("id") is None:
            return StorageResult.failure(StorageError(f"Record for {self.name} has no id", ErrorKind.CONSTRAINT))
        try:
            await self._collection.insert_one(_to_document(record), session=self._session)
        except PyMongoError as e:
            return StorageResult.failure(to_storage_error(e))
        return StorageResult.success([dict(record)])

    async def update(self, filters: Record, changes: Record) -> StorageResult:
        try:
            ids = [document["_id"] async for document in self._collection.find(
                filters, {"_id": 1}, session=self._session
            )]
            if not ids:
                return StorageResult.success([])
            await self._collection.update_many(
                {"_id": {"$in": ids}}, {"$set": dict(changes)}, session=self._session
            )
            return StorageResult.success(await self._find({"_id": {"$in": ids}}))
        except PyMongoError as e:
            return StorageResult.failure(to_storage_error(e))

    async def delete(self, filters: Record) -> StorageResult:
        try:
            records = await self._find(dict(filters))
            if records:
                await self._collection.delete_many(
                    {"_id": {"$in": [r["id"] for r in records]}}, session=self._session
                )
            return StorageResult.success(records)
        except PyMongoError as e:
            return StorageResult.failure(to_storage_error(e))


class MongoTransaction(TransactionHandle):
    def __init__(self, config: MongoConfiguration, session: AsyncClientSession):
        self._config = config
        self._session = session

    def table(self, name: str) -> TableQuery:
        return MongoTable(name, self._config.collection(name), self._session)

    async def commit(self) -> None:
        try:
            await self._session.commit_transaction()
        except PyMongoError as e:
            raise to_storage_error(e) from e
        finally:
            await self._session.end_session()

    async def rollback(self) -> None:
        try:
            await self._session.abort_transaction()
        except PyMongoError as e:
            raise to_storage_error(e) from e
        finally:
            await self._session.end_session()


class MongoStorageClient(StorageClient):
    """Storage client backed by MongoDB.

    Examples:
        >>> storage = MongoStorageClient(MongoConfiguration(database="coaching"))
        >>> repository = FocusAreaRepository(storage, event_bus=bus)
    """

    def __init__(self, config: MongoConfiguration):
        self.config = config

    def table(self, name: str) -> TableQuery:
        return MongoTable(name, self.config.collection(name))

    async def transaction(self) -> TransactionHandle:
        session = self.config.client.start_session()
        try:
            await session.start_transaction()
        except PyMongoError as e:
            await session.end_session()
            raise to_storage_error(e) from e
        LOGGER.debug("Started MongoDB transaction", extra={"database": self.config.database})
        return MongoTransaction(self.config, session)
