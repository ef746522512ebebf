"""Cache keys: ordered tuples of primitives compared by serialized form.

Key components follow a fixed order so that the same logical query always
maps to the same key: resource name, school id, campus id, then filters
sorted by name.
"""

from __future__ import annotations

import json
from collections.abc import Iterable
from typing import Any, Union

KeyPart = Union[str, int, float, bool, None, tuple]


def _check_part(part: Any, position: int) -> KeyPart:
    if part is None or isinstance(part, (str, int, float, bool)):
        return part
    if isinstance(part, (tuple, list)):
        for item in part:
            if not (item is None or isinstance(item, (str, int, float, bool))):
                raise TypeError(f"Cache key part {position} contains a non-primitive value: {item!r}")
        return tuple(part)
    raise TypeError(f"Cache key part {position} must be a primitive or a tuple of primitives, got {type(part).__name__}")


class CacheKey:
    """Structural identifier for one cached query result.

    Two keys are equal iff their serialized forms are equal, so keys built
    independently by different surfaces address the same entry.
    """

    __slots__ = ("parts", "_serialized")

    def __init__(self, *parts: Any) -> None:
        if not parts:
            raise ValueError("A cache key needs at least one part")
        self.parts: tuple[KeyPart, ...] = tuple(_check_part(p, i) for i, p in enumerate(parts))
        self._serialized = json.dumps(self.parts, separators=(",", ":"))

    @classmethod
    def for_resource(
        cls,
        resource: str,
        school_id: str | None = None,
        campus_id: str | None = None,
        **filters: Any,
    ) -> CacheKey:
        """Key for a resource query scoped to a school and campus."""
        parts: list[Any] = [resource, school_id, campus_id]
        for name in sorted(filters):
            parts.append((name, *_flatten(filters[name])))
        return cls(*parts)

    @property
    def resource(self) -> str:
        return str(self.parts[0])

    def serialize(self) -> str:
        return self._serialized

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, CacheKey):
            return NotImplemented
        return self._serialized == other._serialized

    def __hash__(self) -> int:
        return hash(self._serialized)

    def __repr__(self) -> str:
        return f"CacheKey{self.parts!r}"


def _flatten(value: Any) -> Iterable[Any]:
    if isinstance(value, (list, tuple)):
        return tuple(value)
    return (value,)


def as_key(key: CacheKey | Iterable[Any] | str) -> CacheKey:
    """Coerce a tuple, list or single string into a CacheKey."""
    if isinstance(key, CacheKey):
        return key
    if isinstance(key, str):
        return CacheKey(key)
    return CacheKey(*key)
