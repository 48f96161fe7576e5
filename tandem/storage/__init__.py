from .client import (
    OrderBy,
    Record,
    SortDirection,
    StorageClient,
    StorageResult,
    TableQuery,
    TransactionHandle,
)
from .errors import ErrorKind, StorageError
from .memory import InMemoryStorageClient, InMemoryTable, InMemoryTransaction

__all__ = [
    "OrderBy",
    "Record",
    "SortDirection",
    "StorageClient",
    "StorageResult",
    "TableQuery",
    "TransactionHandle",
    "ErrorKind",
    "StorageError",
    "InMemoryStorageClient",
    "InMemoryTable",
    "InMemoryTransaction",
]
