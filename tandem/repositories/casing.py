"""Key casing converters between the domain and persistence layers.

Stored records use snake_case columns; payloads exchanged with API clients
use camelCase. The converters are pure and preserve key order. Container
conversions recurse through dicts and lists; every other value is returned
unchanged.

A plain snake_case key survives a round-trip:

    >>> camel_to_snake(snake_to_camel("address_line_1"))
    'address_line_1'
"""

import re
from typing import Any

_ACRONYM_BOUNDARY = re.compile(r"([A-Z]+)([A-Z][a-z])")
_WORD_BOUNDARY = re.compile(r"([a-z0-9])([A-Z])")
_SNAKE_SEGMENT = re.compile(r"_([a-z])")


def camel_to_snake(name: str) -> str:
    """Convert `userId` (or `UserID`) to `user_id`."""
    name = _ACRONYM_BOUNDARY.sub(r"\1_\2", name)
    return _WORD_BOUNDARY.sub(r"\1_\2", name).lower()


def snake_to_camel(name: str) -> str:
    """Convert `user_id` to `userId`. Leading underscores are kept."""
    stripped = name.lstrip("_")
    leading = name[: len(name) - len(stripped)]
    return leading + _SNAKE_SEGMENT.sub(lambda m: m.group(1).upper(), stripped)


def _convert_keys(obj: Any, convert) -> Any:
    if isinstance(obj, dict):
        return {
            (convert(key) if isinstance(key, str) else key): _convert_keys(value, convert)
            for key, value in obj.items()
        }
    if isinstance(obj, list):
        return [_convert_keys(item, convert) for item in obj]
    return obj


def keys_to_snake(obj: Any) -> Any:
    return _convert_keys(obj, camel_to_snake)


def keys_to_camel(obj: Any) -> Any:
    return _convert_keys(obj, snake_to_camel)
