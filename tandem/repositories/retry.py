import asyncio
import logging
from collections.abc import Awaitable, Callable, Mapping
from typing import Any, TypeVar

from ..domain.exceptions import DatabaseError
from ..storage import ErrorKind, StorageError
from .errors import is_retryable, translate_storage_error

LOGGER = logging.getLogger(__name__)

T = TypeVar("T")


class RetryPolicy:
    """How often and how patiently a storage operation is retried.

    The delay before retry `n` (1-based) is `base_delay * 2 ** (n - 1)`,
    capped at `max_delay`.

    Attributes:
        max_attempts: The maximum number of attempts (initial + retries).
            Must be positive. For example, max_attempts=3 means 1 initial
            attempt + up to 2 retries.
        base_delay: Delay in seconds before the first retry. Must be
            non-negative.
        max_delay: Upper bound for any single delay. Must be non-negative.

    Examples:
        >>> policy = RetryPolicy(max_attempts=3, base_delay=0.5)
        >>> [policy.delay_for(n) for n in (1, 2, 3)]
        [0.5, 1.0, 2.0]

        No delay between retries:

        >>> policy = RetryPolicy(max_attempts=5, base_delay=0.0)
    """

    __slots__ = ("max_attempts", "base_delay", "max_delay")

    def __init__(self, max_attempts: int = 3, base_delay: float = 0.5, max_delay: float = 5.0):
        """Initialize the retry policy.

        Raises:
            ValueError: If max_attempts <= 0 or a delay is negative.
        """
        if max_attempts <= 0:
            raise ValueError("max_attempts must be positive")
        if base_delay < 0:
            raise ValueError("base_delay must be non-negative")
        if max_delay < 0:
            raise ValueError("max_delay must be non-negative")
        self.max_attempts = max_attempts
        self.base_delay = base_delay
        self.max_delay = max_delay

    def delay_for(self, attempt: int) -> float:
        return min(self.base_delay * 2 ** (attempt - 1), self.max_delay)


def classify_error(error: BaseException) -> ErrorKind | None:
    """The ErrorKind of a storage failure, or None for any other error."""
    if isinstance(error, StorageError):
        return error.kind
    return None


class RetryExecutor:
    """Runs storage operations, retrying transient failures.

    Classification of a failure:

    - ValidationError and EntityNotFoundError (and any other repository
      error) propagate at once, unchanged. They are attempted exactly once.
    - StorageError is classified by its `kind`. TRANSIENT is retried,
      PERMANENT raises DatabaseError at once, CONSTRAINT becomes
      ValidationError and NOT_FOUND becomes EntityNotFoundError.
    - Any other exception is retried.

    After `max_attempts` failures the last error is wrapped in a
    DatabaseError carrying `operation`, `entity_type` and `attempts`
    metadata, and chained as its cause.

    Only wrap operations that are safe to repeat. Non-idempotent writes are
    retried as a whole by retrying the transaction that contains them.
    """

    __slots__ = ("policy", "entity_type", "_sleep")

    def __init__(
        self,
        policy: RetryPolicy | None = None,
        *,
        entity_type: str = "unknown",
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ):
        self.policy = policy or RetryPolicy()
        self.entity_type = entity_type
        self._sleep = sleep

    async def execute(
        self,
        operation: Callable[[], Awaitable[T]],
        operation_name: str,
        context: Mapping[str, Any] | None = None,
    ) -> T:
        """Run `operation`, retrying according to the policy.

        Args:
            operation: Zero-argument coroutine function performing the work.
            operation_name: Name used in logs and error metadata.
            context: Extra fields for logs and error metadata, e.g. the id.

        Returns:
            Whatever `operation` returns.

        Raises:
            ValidationError: Invalid input or a constraint violation.
            EntityNotFoundError: The addressed entity does not exist.
            DatabaseError: A permanent failure, or retries were exhausted.
        """
        max_attempts = self.policy.max_attempts
        last_error: Exception | None = None
        for attempt in range(1, max_attempts + 1):
            try:
                return await operation()
            except Exception as e:
                if not is_retryable(e):
                    if isinstance(e, StorageError):
                        raise translate_storage_error(
                            e,
                            operation=operation_name,
                            entity_type=self.entity_type,
                            context=context,
                        ) from e
                    raise
                last_error = e
                LOGGER.warning(
                    f"{operation_name} failed on attempt {attempt}/{max_attempts}: {e}",
                    extra={
                        "operation": operation_name,
                        "entity_type": self.entity_type,
                        "attempt": attempt,
                        "context": dict(context or {}),
                    },
                )
                # Don't sleep after the last attempt
                if attempt < max_attempts:
                    await self._sleep(self.policy.delay_for(attempt))

        raise DatabaseError(
            f"{operation_name} failed after {max_attempts} attempts: {last_error}",
            operation=operation_name,
            entity_type=self.entity_type,
            metadata={"attempts": max_attempts, **(context or {})},
        ) from last_error
