from enum import Enum
from typing import Any


class ErrorKind(str, Enum):
    """Typed classification of a storage failure.

    Storage clients tag every failure with a kind so that callers decide
    whether to retry by inspecting a field instead of parsing messages.
    """

    TRANSIENT = "transient"
    """Connection drops, timeouts, lock contention. Safe to retry."""

    PERMANENT = "permanent"
    """Anything the backend will keep rejecting. Not retried."""

    CONSTRAINT = "constraint"
    """Unique or foreign-key violation caused by the written data."""

    NOT_FOUND = "not_found"
    """The addressed table or record does not exist."""

    @property
    def retryable(self) -> bool:
        return self is ErrorKind.TRANSIENT


class StorageError(Exception):
    """Failure reported by a storage client.

    Attributes:
        kind: Classification used by the retry executor.
        code: Backend specific error code, when available.
        details: Extra backend specific information.
    """

    def __init__(
        self,
        message: str,
        kind: ErrorKind = ErrorKind.PERMANENT,
        *,
        code: str | int | None = None,
        details: dict[str, Any] | None = None,
    ):
        super().__init__(message)
        self.message = message
        self.kind = kind
        self.code = code
        self.details: dict[str, Any] = dict(details or {})

    @property
    def retryable(self) -> bool:
        return self.kind.retryable

    def __repr__(self) -> str:
        return f"StorageError({self.message!r}, kind={self.kind.value})"
