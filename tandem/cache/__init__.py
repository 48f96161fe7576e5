from .backend import CacheBackend, InMemoryCacheBackend, NullCacheBackend
from .invalidation import CacheInvalidationManager
from .keys import (
    DEFAULT_TTLS,
    LONG_TTL,
    MEDIUM_TTL,
    SHORT_TTL,
    CacheKeyPrefix,
    cache_key,
    ttl_for,
    ttl_for_key,
)
from .rules import DEFAULT_RULES, CacheInvalidationRule
from .service import CacheService

__all__ = [
    "CacheBackend",
    "InMemoryCacheBackend",
    "NullCacheBackend",
    "CacheInvalidationManager",
    "CacheService",
    "CacheInvalidationRule",
    "DEFAULT_RULES",
    "CacheKeyPrefix",
    "cache_key",
    "ttl_for",
    "ttl_for_key",
    "DEFAULT_TTLS",
    "SHORT_TTL",
    "MEDIUM_TTL",
    "LONG_TTL",
]
