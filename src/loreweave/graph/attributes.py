"""Typed accessors for the open entity attribute mapping.

The ``attributes`` bag holds a handful of well-known keys next to arbitrary
user data. Reading goes through narrow helpers that return ``None`` (or an
empty list) for malformed values instead of propagating whatever shape the
stored JSON happens to have. Writers always return a new mapping.
"""

from __future__ import annotations

import math
from collections.abc import Mapping
from typing import Any

TAGS_KEY = "tags"
IMPORTANCE_KEY = "importance"
REGION_KEY = "region"
ERA_KEY = "era"
GRAPH_POSITION_KEY = "graphPosition"

IMPORTANCE_MIN = 1
IMPORTANCE_MAX = 5


def _is_finite_number(value: Any) -> bool:
    return isinstance(value, int | float) and not isinstance(value, bool) and math.isfinite(value)


def merge_attributes(base: Mapping[str, Any], patch: Mapping[str, Any]) -> dict[str, Any]:
    """Additively merge *patch* into a copy of *base*.

    Keys in *patch* replace keys in *base*; keys absent from *patch* are kept.
    """
    merged = dict(base)
    merged.update(patch)
    return merged


def get_tags(attributes: Mapping[str, Any]) -> list[str]:
    """Return the entity's tags, skipping anything that is not a non-empty string."""
    raw = attributes.get(TAGS_KEY)
    if not isinstance(raw, list):
        return []
    return [t for t in raw if isinstance(t, str) and t.strip()]


def with_tags(attributes: Mapping[str, Any], tags: list[str]) -> dict[str, Any]:
    """Return a copy of *attributes* with *tags* stripped and deduplicated in order."""
    seen: dict[str, None] = {}
    for tag in tags:
        cleaned = tag.strip()
        if cleaned:
            seen.setdefault(cleaned, None)
    return merge_attributes(attributes, {TAGS_KEY: list(seen)})


def get_importance(attributes: Mapping[str, Any]) -> int | None:
    """Return the 1-5 importance rating, or None if unset or out of range."""
    raw = attributes.get(IMPORTANCE_KEY)
    if isinstance(raw, bool) or not isinstance(raw, int):
        return None
    if not IMPORTANCE_MIN <= raw <= IMPORTANCE_MAX:
        return None
    return raw


def with_importance(attributes: Mapping[str, Any], importance: int) -> dict[str, Any]:
    """Return a copy of *attributes* with the importance rating set.

    Raises:
        ValueError: If *importance* is outside 1-5.
    """
    if isinstance(importance, bool) or not IMPORTANCE_MIN <= importance <= IMPORTANCE_MAX:
        raise ValueError(
            f"importance must be between {IMPORTANCE_MIN} and {IMPORTANCE_MAX}, got {importance!r}"
        )
    return merge_attributes(attributes, {IMPORTANCE_KEY: int(importance)})


def _get_text(attributes: Mapping[str, Any], key: str) -> str | None:
    raw = attributes.get(key)
    if isinstance(raw, str) and raw.strip():
        return raw
    return None


def get_region(attributes: Mapping[str, Any]) -> str | None:
    """Return the free-form region field, if set."""
    return _get_text(attributes, REGION_KEY)


def get_era(attributes: Mapping[str, Any]) -> str | None:
    """Return the free-form time/era field, if set."""
    return _get_text(attributes, ERA_KEY)


def get_graph_position(attributes: Mapping[str, Any]) -> tuple[float, float] | None:
    """Return the embedded ``graphPosition`` as ``(x, y)``.

    Returns None unless the value is a mapping with finite numeric ``x`` and ``y``.
    """
    raw = attributes.get(GRAPH_POSITION_KEY)
    if not isinstance(raw, Mapping):
        return None
    x = raw.get("x")
    y = raw.get("y")
    if not (_is_finite_number(x) and _is_finite_number(y)):
        return None
    return float(x), float(y)


def with_graph_position(attributes: Mapping[str, Any], x: float, y: float) -> dict[str, Any]:
    """Return a copy of *attributes* with ``graphPosition`` set, other keys preserved."""
    return merge_attributes(attributes, {GRAPH_POSITION_KEY: {"x": x, "y": y}})
