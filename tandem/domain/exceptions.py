"""Error taxonomy surfaced by repositories.

Every error carries enough metadata (entity type, id, operation) for a caller
to render a precise message, and an HTTP-equivalent status code:

- ValidationError (400): caller input is invalid. Never retried.
- EntityNotFoundError (404): the requested entity does not exist. Never retried.
- DatabaseError (500): storage failed, raised once retries are exhausted or
  when the failure is permanent.
- RepositoryError (500): base class for anything else.
"""

from typing import Any


class RepositoryError(Exception):
    """Base class for all repository errors."""

    status_code: int = 500

    def __init__(
        self,
        message: str,
        *,
        entity_type: str = "unknown",
        metadata: dict[str, Any] | None = None,
        error_code: str | None = None,
    ):
        super().__init__(message)
        self.message = message
        self.entity_type = entity_type
        self.metadata: dict[str, Any] = dict(metadata or {})
        self.error_code = error_code or f"{entity_type.upper()}_REPOSITORY_ERROR"

    def to_dict(self) -> dict[str, Any]:
        """Render the error for an API response or a log record."""
        return {
            "error": type(self).__name__,
            "message": self.message,
            "status_code": self.status_code,
            "error_code": self.error_code,
            "entity_type": self.entity_type,
            "metadata": self.metadata,
        }


class ValidationError(RepositoryError):
    """Raised when repository input fails validation.

    Validation happens before any I/O, so a ValidationError guarantees that
    nothing was written.
    """

    status_code = 400

    def __init__(
        self,
        message: str,
        *,
        entity_type: str = "unknown",
        validation_errors: dict[str, str] | str | None = None,
        metadata: dict[str, Any] | None = None,
    ):
        super().__init__(
            message,
            entity_type=entity_type,
            metadata={"validation_errors": validation_errors, **(metadata or {})},
            error_code=f"{entity_type.upper()}_VALIDATION_ERROR",
        )
        self.validation_errors = validation_errors


class EntityNotFoundError(RepositoryError):
    """Raised when an entity cannot be found."""

    status_code = 404

    def __init__(
        self,
        message: str,
        *,
        entity_id: str | None = None,
        entity_type: str = "unknown",
        identifier_type: str | None = None,
        metadata: dict[str, Any] | None = None,
    ):
        super().__init__(
            message,
            entity_type=entity_type,
            metadata={
                "entity_id": entity_id,
                "identifier_type": identifier_type,
                **(metadata or {}),
            },
            error_code=f"{entity_type.upper()}_NOT_FOUND",
        )
        self.entity_id = entity_id
        self.identifier_type = identifier_type


class DatabaseError(RepositoryError):
    """Raised when the storage backend fails.

    The underlying storage failure is chained as `__cause__`.
    """

    def __init__(
        self,
        message: str,
        *,
        operation: str | None = None,
        entity_type: str = "unknown",
        metadata: dict[str, Any] | None = None,
    ):
        super().__init__(
            message,
            entity_type=entity_type,
            metadata={"operation": operation or "unknown", **(metadata or {})},
            error_code="DATABASE_ERROR",
        )
        self.operation = operation


class TransactionStateError(RepositoryError):
    """Raised when a transaction is moved out of a terminal state."""

    pass
