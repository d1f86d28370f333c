"""
Deep-freeze helpers for read-only snapshots.

Guard evaluation and action handlers receive entity props that must never be
mutated in place.  Nested dicts become MappingProxyType, nested lists become
tuples.  ``thaw`` reverses the conversion for JSON columns and log payloads.
"""

from collections.abc import Mapping
from types import MappingProxyType
from typing import Any


def deep_freeze(value: Any) -> Any:
    """Deep-freeze a single value."""
    if isinstance(value, Mapping):
        return MappingProxyType({k: deep_freeze(v) for k, v in value.items()})
    if isinstance(value, (list, tuple)):
        return tuple(deep_freeze(item) for item in value)
    return value


def freeze_mapping(value: Mapping[str, Any] | None) -> MappingProxyType:
    """Deep-freeze a mapping; ``None`` becomes an empty read-only mapping."""
    if value is None:
        return MappingProxyType({})
    return deep_freeze(value)


def thaw(value: Any) -> Any:
    """Convert frozen structures back into plain dicts and lists."""
    if isinstance(value, Mapping):
        return {k: thaw(v) for k, v in value.items()}
    if isinstance(value, tuple):
        return [thaw(item) for item in value]
    return value
