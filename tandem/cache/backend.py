import time
from abc import ABC, abstractmethod
from collections.abc import Callable
from fnmatch import fnmatchcase
from typing import Any


class CacheBackend(ABC):
    """Mechanism for caching read results.

    Keys are colon separated strings (see `cache_key`). Pattern operations use
    Redis-style globs: `*` matches any run of characters, `?` one character,
    and `[...]` a character class. All operations are async to support
    I/O-bound backends like Redis or Memcached.
    """

    @staticmethod
    def null() -> "CacheBackend":
        return NullCacheBackend()

    @abstractmethod
    async def get(self, key: str) -> Any | None: ...

    @abstractmethod
    async def set(self, key: str, value: Any, ttl: float | None = None) -> None: ...

    @abstractmethod
    async def delete(self, key: str) -> bool: ...

    @abstractmethod
    async def delete_pattern(self, pattern: str) -> int:
        """Delete every key matching `pattern`. Returns the number deleted."""
        ...

    @abstractmethod
    async def keys(self, pattern: str = "*") -> list[str]: ...

    @abstractmethod
    async def clear(self) -> None: ...


class NullCacheBackend(CacheBackend):
    async def get(self, key: str) -> Any | None:
        return None

    async def set(self, key: str, value: Any, ttl: float | None = None) -> None:
        pass

    async def delete(self, key: str) -> bool:
        return False

    async def delete_pattern(self, pattern: str) -> int:
        return 0

    async def keys(self, pattern: str = "*") -> list[str]:
        return []

    async def clear(self) -> None:
        pass


class InMemoryCacheBackend(CacheBackend):
    """Dict-backed cache with per-entry expiry.

    Expired entries are dropped lazily when read or listed.
    """

    __slots__ = ("default_ttl", "_entries", "_clock")

    def __init__(self, default_ttl: float | None = 300, clock: Callable[[], float] = time.monotonic):
        self.default_ttl = default_ttl
        self._entries: dict[str, tuple[Any, float | None]] = {}
        self._clock = clock

    def _expired(self, expires_at: float | None) -> bool:
        return expires_at is not None and self._clock() >= expires_at

    def _live_keys(self) -> list[str]:
        for key in [k for k, (_, exp) in self._entries.items() if self._expired(exp)]:
            del self._entries[key]
        return list(self._entries)

    async def get(self, key: str) -> Any | None:
        entry = self._entries.get(key)
        if entry is None:
            return None
        value, expires_at = entry
        if self._expired(expires_at):
            del self._entries[key]
            return None
        return value

    async def set(self, key: str, value: Any, ttl: float | None = None) -> None:
        ttl = self.default_ttl if ttl is None else ttl
        expires_at = None if ttl is None or ttl <= 0 else self._clock() + ttl
        self._entries[key] = (value, expires_at)

    async def delete(self, key: str) -> bool:
        return self._entries.pop(key, None) is not None

    async def delete_pattern(self, pattern: str) -> int:
        matched = await self.keys(pattern)
        for key in matched:
            del self._entries[key]
        return len(matched)

    async def keys(self, pattern: str = "*") -> list[str]:
        return [key for key in self._live_keys() if fnmatchcase(key, pattern)]

    async def clear(self) -> None:
        self._entries.clear()
