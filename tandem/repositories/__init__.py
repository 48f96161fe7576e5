"""Repository base and the machinery it composes.

- Repository: Generic persistence with post-commit events and invalidation
- RetryExecutor / RetryPolicy: Bounded exponential backoff for storage I/O
- TransactionCoordinator: Commit, then publish, then invalidate
- map_error: Translation into the repository error taxonomy
- casing: camelCase / snake_case key converters
"""

from .base import DeleteResult, Repository, RepositoryLoggerAdapter
from .casing import camel_to_snake, keys_to_camel, keys_to_snake, snake_to_camel
from .errors import is_retryable, map_error, translate_storage_error
from .retry import RetryExecutor, RetryPolicy, classify_error
from .transaction import (
    PostCommitMetrics,
    Transaction,
    TransactionCoordinator,
    TransactionOptions,
    TransactionResult,
    TransactionState,
)

__all__ = [
    "Repository",
    "DeleteResult",
    "RepositoryLoggerAdapter",
    "camel_to_snake",
    "snake_to_camel",
    "keys_to_snake",
    "keys_to_camel",
    "is_retryable",
    "map_error",
    "translate_storage_error",
    "RetryExecutor",
    "RetryPolicy",
    "classify_error",
    "PostCommitMetrics",
    "Transaction",
    "TransactionCoordinator",
    "TransactionOptions",
    "TransactionResult",
    "TransactionState",
]
