"""Persistence settings using pydantic-settings."""

from pydantic import Field
from pydantic_settings import BaseSettings

from .repositories.retry import RetryPolicy


class TandemSettings(BaseSettings):
    """Tunables shared by every repository.

    All settings can be configured via environment variables with the
    TANDEM_ prefix. For example:
    - TANDEM_MAX_RETRIES=5
    - TANDEM_RECORD_EVENT_HISTORY=true
    - TANDEM_TRANSACTION_TIMEOUT=10

    Attributes:
        max_retries: Attempts per storage operation (initial + retries).
        retry_base_delay: Delay in seconds before the first retry. Later
            retries double it.
        retry_max_delay: Upper bound for a single retry delay.
        record_event_history: Keep published events for inspection.
        event_history_limit: Number of events kept when recording history.
        cache_default_ttl: TTL in seconds for cache entries without one.
        cache_reads: Serve repository lookups through the read-through cache.
        transaction_timeout: Upper bound in seconds for one transactional
            write. Unbounded when None.
        validate_uuids: Reject ids that are not UUIDs before any I/O.
    """

    max_retries: int = Field(default=3, gt=0)
    retry_base_delay: float = Field(default=0.5, ge=0)
    retry_max_delay: float = Field(default=5.0, ge=0)

    record_event_history: bool = False
    event_history_limit: int = Field(default=1000, gt=0)

    cache_default_ttl: int = Field(default=300, ge=0)
    cache_reads: bool = True

    transaction_timeout: float | None = Field(default=None, gt=0)
    validate_uuids: bool = False

    model_config = {"env_prefix": "TANDEM_"}

    def retry_policy(self) -> RetryPolicy:
        return RetryPolicy(
            max_attempts=self.max_retries,
            base_delay=self.retry_base_delay,
            max_delay=self.retry_max_delay,
        )
