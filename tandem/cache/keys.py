from enum import Enum


class CacheKeyPrefix(str, Enum):
    """First segment of every cache key, one per cached domain."""

    USER = "user"
    CHALLENGE = "challenge"
    FOCUS_AREA = "focusarea"
    EVALUATION = "evaluation"
    PERSONALITY = "personality"
    RECOMMENDATION = "recommendation"


SHORT_TTL = 60
MEDIUM_TTL = 300
LONG_TTL = 1800

# (prefix, operation) -> seconds
DEFAULT_TTLS: dict[tuple[CacheKeyPrefix, str], int] = {
    (CacheKeyPrefix.USER, "byId"): 600,
    (CacheKeyPrefix.USER, "byEmail"): 600,
    (CacheKeyPrefix.USER, "list"): 120,
    (CacheKeyPrefix.USER, "search"): 60,
    (CacheKeyPrefix.CHALLENGE, "byId"): 600,
    (CacheKeyPrefix.CHALLENGE, "byUser"): 300,
    (CacheKeyPrefix.CHALLENGE, "list"): 120,
    (CacheKeyPrefix.CHALLENGE, "search"): 60,
    (CacheKeyPrefix.FOCUS_AREA, "byId"): 600,
    (CacheKeyPrefix.FOCUS_AREA, "byUser"): 300,
    (CacheKeyPrefix.FOCUS_AREA, "list"): 120,
    (CacheKeyPrefix.EVALUATION, "byId"): 600,
    (CacheKeyPrefix.EVALUATION, "byUser"): 300,
    (CacheKeyPrefix.EVALUATION, "byChallenge"): 300,
    (CacheKeyPrefix.EVALUATION, "list"): 120,
    (CacheKeyPrefix.PERSONALITY, "byId"): 900,
    (CacheKeyPrefix.PERSONALITY, "byUser"): 900,
    (CacheKeyPrefix.RECOMMENDATION, "byId"): 300,
    (CacheKeyPrefix.RECOMMENDATION, "byUser"): 300,
    (CacheKeyPrefix.RECOMMENDATION, "list"): 120,
}


def cache_key(prefix: CacheKeyPrefix | str, operation: str, *parts: object) -> str:
    """Build a cache key such as `focusarea:byUser:u-1:active`.

    Examples:
        >>> cache_key(CacheKeyPrefix.FOCUS_AREA, "byId", "fa-1")
        'focusarea:byId:fa-1'
    """
    prefix = prefix.value if isinstance(prefix, CacheKeyPrefix) else prefix
    return ":".join([prefix, operation, *(str(p) for p in parts)])


def ttl_for(prefix: CacheKeyPrefix | str, operation: str, default: int = MEDIUM_TTL) -> int:
    """Default TTL in seconds for keys of `prefix` built for `operation`."""
    try:
        prefix = CacheKeyPrefix(prefix)
    except ValueError:
        return default
    return DEFAULT_TTLS.get((prefix, operation), default)


def ttl_for_key(key: str) -> int | None:
    """Default TTL for a key built by `cache_key`, read from its prefix and
    operation. None when the pair has no default."""
    prefix, _, rest = key.partition(":")
    operation = rest.partition(":")[0]
    try:
        return DEFAULT_TTLS.get((CacheKeyPrefix(prefix), operation))
    except ValueError:
        return None
