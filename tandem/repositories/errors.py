import asyncio
from collections.abc import Mapping
from typing import Any

from ..domain.exceptions import (
    DatabaseError,
    EntityNotFoundError,
    RepositoryError,
    ValidationError,
)
from ..storage import ErrorKind, StorageError


def translate_storage_error(
    error: StorageError,
    *,
    operation: str,
    entity_type: str,
    context: Mapping[str, Any] | None = None,
) -> RepositoryError:
    """Map a StorageError onto the repository taxonomy by its kind."""
    metadata = {"operation": operation, "error_kind": error.kind.value, **(context or {})}
    if error.kind is ErrorKind.CONSTRAINT:
        return ValidationError(
            f"{operation} violated a storage constraint: {error.message}",
            entity_type=entity_type,
            validation_errors=error.message,
            metadata=metadata,
        )
    if error.kind is ErrorKind.NOT_FOUND:
        return EntityNotFoundError(
            f"{operation} addressed a missing {entity_type}: {error.message}",
            entity_id=(context or {}).get("id"),
            entity_type=entity_type,
            metadata=metadata,
        )
    return DatabaseError(
        f"{operation} failed: {error.message}",
        operation=operation,
        entity_type=entity_type,
        metadata=metadata,
    )


def is_retryable(error: BaseException) -> bool:
    """Whether a RetryExecutor tries an operation failing with `error` again.

    Repository errors are final and StorageError is retried when its kind
    is transient. Any other exception, such as a dropped connection or a
    timeout, is retried.
    """
    if isinstance(error, RepositoryError):
        return False
    if isinstance(error, StorageError):
        return error.kind.retryable
    return True


def map_error(
    error: Exception,
    *,
    operation: str,
    entity_type: str,
    context: Mapping[str, Any] | None = None,
) -> RepositoryError:
    """Translate any exception into the repository error taxonomy.

    Repository errors are returned unchanged, StorageError is mapped by kind,
    and everything else becomes a DatabaseError.
    """
    if isinstance(error, RepositoryError):
        return error
    if isinstance(error, StorageError):
        return translate_storage_error(error, operation=operation, entity_type=entity_type, context=context)
    if isinstance(error, asyncio.TimeoutError):
        message = f"{operation} timed out"
    else:
        message = f"{operation} failed: {error}"
    return DatabaseError(
        message,
        operation=operation,
        entity_type=entity_type,
        metadata={"error_type": type(error).__name__, **(context or {})},
    )
