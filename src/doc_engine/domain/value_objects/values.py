"""Field value classification and comparison.

Records are schemaless, so every field access goes through the helpers
in this module instead of relying on Python's implicit comparisons.
A value is classified into a ValueKind; comparisons only happen between
values of the same kind, and the kinds themselves have a total order
used for sorting and index keys:

    null/missing < numbers < strings < documents < arrays < ids < booleans

bool is checked before int, so True never equals 1.
"""

from __future__ import annotations

from collections.abc import Mapping
from enum import IntEnum
from typing import Any

from doc_engine.domain.errors import InvalidSpecError
from doc_engine.domain.value_objects.identifiers import DocumentId


class _Missing:
    """Marker for a path that does not exist in a record."""

    _instance: _Missing | None = None

    def __new__(cls) -> _Missing:
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __repr__(self) -> str:
        return "MISSING"

    def __bool__(self) -> bool:
        return False


MISSING: Any = _Missing()


class ValueKind(IntEnum):
    """Type class of a field value, in canonical sort order."""

    NULL = 0
    NUMBER = 1
    STRING = 2
    DOCUMENT = 3
    ARRAY = 4
    IDENTIFIER = 5
    BOOLEAN = 6


def classify(value: Any) -> ValueKind:
    """Return the type class of a value.

    Raises:
        InvalidSpecError: If the value is not a supported document value.
    """
    if value is None or value is MISSING:
        return ValueKind.NULL
    if isinstance(value, bool):
        return ValueKind.BOOLEAN
    if isinstance(value, (int, float)):
        return ValueKind.NUMBER
    if isinstance(value, str):
        return ValueKind.STRING
    if isinstance(value, Mapping):
        return ValueKind.DOCUMENT
    if isinstance(value, (list, tuple)):
        return ValueKind.ARRAY
    if isinstance(value, DocumentId):
        return ValueKind.IDENTIFIER
    raise InvalidSpecError(f"Unsupported value type: {type(value).__name__}")


def is_number(value: Any) -> bool:
    """True for int and float, False for bool."""
    return isinstance(value, (int, float)) and not isinstance(value, bool)


def get_path(fields: Mapping[str, Any], path: str) -> Any:
    """Read a dotted path without array fan-out.

    Numeric segments index into arrays. Returns MISSING when any segment
    is absent.
    """
    current: Any = fields
    for part in path.split("."):
        if isinstance(current, Mapping):
            if part not in current:
                return MISSING
            current = current[part]
        elif isinstance(current, list) and part.isdigit():
            index = int(part)
            if index >= len(current):
                return MISSING
            current = current[index]
        else:
            return MISSING
    return current


def resolve_path(fields: Mapping[str, Any], path: str) -> list[Any]:
    """Resolve a dotted path, fanning out through arrays of documents.

    Returns every value reachable at the path; an empty list means the
    path is missing.

    Example:
        >>> resolve_path({"reviews": [{"stars": 4}, {"stars": 5}]}, "reviews.stars")
        [4, 5]
    """
    parts = path.split(".")

    def walk(current: Any, depth: int) -> list[Any]:
        if depth == len(parts):
            return [current]
        part = parts[depth]
        if isinstance(current, Mapping):
            if part not in current:
                return []
            return walk(current[part], depth + 1)
        if isinstance(current, list):
            found: list[Any] = []
            if part.isdigit() and int(part) < len(current):
                found.extend(walk(current[int(part)], depth + 1))
            for element in current:
                if isinstance(element, Mapping):
                    found.extend(walk(element, depth + 1))
            return found
        return []

    return walk(fields, 0)


def typed_equals(left: Any, right: Any) -> bool:
    """Equality by type class and value (1 == 1.0, True != 1).

    Embedded documents compare field by field in order.
    """
    kind = classify(left)
    if kind is not classify(right):
        return False
    if kind is ValueKind.NULL:
        return True
    if kind is ValueKind.DOCUMENT:
        if list(left.keys()) != list(right.keys()):
            return False
        return all(typed_equals(left[k], right[k]) for k in left)
    if kind is ValueKind.ARRAY:
        if len(left) != len(right):
            return False
        return all(typed_equals(a, b) for a, b in zip(left, right))
    return left == right


def identical(left: Any, right: Any) -> bool:
    """Strict equality used to detect no-op writes: same Python type and value."""
    if type(left) is not type(right):
        return False
    if isinstance(left, Mapping):
        if list(left.keys()) != list(right.keys()):
            return False
        return all(identical(left[k], right[k]) for k in left)
    if isinstance(left, (list, tuple)):
        if len(left) != len(right):
            return False
        return all(identical(a, b) for a, b in zip(left, right))
    return left == right


def sort_key(value: Any) -> tuple[Any, ...]:
    """Total-order key across all supported kinds.

    Keys are hashable and equal for values that are typed_equals, so they
    double as group and index keys.
    """
    kind = classify(value)
    if kind is ValueKind.NULL:
        return (kind.value,)
    if kind is ValueKind.DOCUMENT:
        return (kind.value, tuple((k, sort_key(v)) for k, v in value.items()))
    if kind is ValueKind.ARRAY:
        return (kind.value, tuple(sort_key(v) for v in value))
    if kind is ValueKind.IDENTIFIER:
        return (kind.value, value.seq)
    return (kind.value, value)


def compare(left: Any, right: Any) -> int | None:
    """Three-way comparison within a type class.

    Returns None when the values belong to different kinds, which callers
    treat as a non-match.
    """
    if classify(left) is not classify(right):
        return None
    left_key, right_key = sort_key(left), sort_key(right)
    return (left_key > right_key) - (left_key < right_key)


def to_storable(value: Any, path: str = "") -> Any:
    """Validate a value and return the detached copy a record stores.

    Mappings become dicts and tuples become lists, so stored arrays are
    always lists.

    Raises:
        InvalidSpecError: On unsupported types or malformed field names.
    """
    if isinstance(value, Mapping):
        stored: dict[str, Any] = {}
        for key, child in value.items():
            if not isinstance(key, str):
                raise InvalidSpecError(f"Field names must be strings, got {key!r} at '{path}'")
            if key.startswith("$") or "." in key or not key:
                raise InvalidSpecError(f"Invalid field name {key!r} at '{path}'")
            stored[key] = to_storable(child, f"{path}.{key}" if path else key)
        return stored
    if isinstance(value, (list, tuple)):
        return [to_storable(child, f"{path}.{i}") for i, child in enumerate(value)]
    if isinstance(value, float) and value != value:
        raise InvalidSpecError(f"NaN is not storable at '{path}'")
    classify(value)
    return value
