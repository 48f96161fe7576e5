import logging
from collections.abc import Awaitable, Callable
from typing import Any, TypeVar

from .backend import CacheBackend
from .keys import ttl_for_key

LOGGER = logging.getLogger(__name__)

T = TypeVar("T")


class CacheService:
    """Read-through cache over a CacheBackend.

    `get_or_set` serves a key from the backend, or computes the value with a
    factory and stores it. None is never stored, so a missing entity is
    looked up again on the next read.

    Caching is best effort, like invalidation: when the backend fails the
    read falls through to the factory, the failure is logged and `errors`
    is incremented.

    Examples:
        >>> cache = CacheService(InMemoryCacheBackend())
        >>> key = cache_key(CacheKeyPrefix.FOCUS_AREA, "byId", focus_area_id)
        >>> record = await cache.get_or_set(key, load_record)
    """

    __slots__ = ("backend", "enabled", "hits", "misses", "errors")

    def __init__(self, backend: CacheBackend, *, enabled: bool = True):
        self.backend = backend
        self.enabled = enabled
        self.hits = 0
        self.misses = 0
        self.errors = 0

    async def get(self, key: str) -> Any | None:
        try:
            return await self.backend.get(key)
        except Exception:
            self.errors += 1
            LOGGER.exception("Error reading cache key", extra={"cache_key": key})
            return None

    async def set(self, key: str, value: Any, ttl: float | None = None) -> bool:
        """Store `value`. Without a `ttl` the key's default TTL applies."""
        if ttl is None:
            ttl = ttl_for_key(key)
        try:
            await self.backend.set(key, value, ttl)
            return True
        except Exception:
            self.errors += 1
            LOGGER.exception("Error writing cache key", extra={"cache_key": key})
            return False

    async def get_or_set(self, key: str, factory: Callable[[], Awaitable[T]], ttl: float | None = None) -> T:
        """The cached value of `key`, or the result of `factory` after storing it.

        Raises:
            ValueError: If `key` is empty.
        """
        if not self.enabled:
            return await factory()
        if not key:
            raise ValueError("Cache key is required")

        cached = await self.get(key)
        if cached is not None:
            self.hits += 1
            LOGGER.debug("Cache hit", extra={"cache_key": key})
            return cached

        self.misses += 1
        value = await factory()
        if value is not None:
            await self.set(key, value, ttl)
        return value
