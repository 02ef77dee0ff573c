"""Sort, projection and index key specifications.

Callers hand these over in MongoDB shape (``{"price": -1}``,
``{"title": 1, "_id": 0}``); ``parse`` turns them into immutable value
objects and rejects malformed input with InvalidSpecError.
"""

from __future__ import annotations

import copy
from collections.abc import Callable, Iterable, Mapping, Sequence
from dataclasses import dataclass
from enum import Enum, IntEnum
from typing import Any, TypeVar

from doc_engine.domain.errors import InvalidSpecError
from doc_engine.domain.value_objects.identifiers import ID_FIELD
from doc_engine.domain.value_objects.values import get_path, sort_key

T = TypeVar("T")


class SortDirection(IntEnum):
    """Sort or index direction."""

    ASCENDING = 1
    DESCENDING = -1

    @classmethod
    def parse(cls, value: Any, field: str) -> SortDirection:
        if isinstance(value, SortDirection):
            return value
        if isinstance(value, bool) or value not in (1, -1):
            raise InvalidSpecError(f"Direction for '{field}' must be 1 or -1, got {value!r}")
        return cls(int(value))


def _key_pairs(spec: Any, what: str) -> list[tuple[str, Any]]:
    """Normalize a mapping or a sequence of (field, direction) pairs."""
    if isinstance(spec, Mapping):
        pairs = list(spec.items())
    elif isinstance(spec, str):
        pairs = [(spec, 1)]
    elif isinstance(spec, Sequence):
        pairs = []
        for item in spec:
            if isinstance(item, str):
                pairs.append((item, 1))
            elif isinstance(item, Sequence) and len(item) == 2:
                pairs.append((item[0], item[1]))
            else:
                raise InvalidSpecError(f"Invalid {what} entry: {item!r}")
    else:
        raise InvalidSpecError(f"Invalid {what} specification: {spec!r}")

    seen: set[str] = set()
    for field, _ in pairs:
        if not isinstance(field, str) or not field or field.startswith("$"):
            raise InvalidSpecError(f"Invalid {what} field: {field!r}")
        if field in seen:
            raise InvalidSpecError(f"Duplicate {what} field: {field!r}")
        seen.add(field)
    return pairs


@dataclass(frozen=True, slots=True)
class SortKey:
    """One (field, direction) pair of a sort specification."""

    field: str
    direction: SortDirection


@dataclass(frozen=True)
class SortSpec:
    """Ordered multi-key sort. Stable: ties keep their incoming order."""

    keys: tuple[SortKey, ...]

    @classmethod
    def parse(cls, spec: Any) -> SortSpec:
        if isinstance(spec, SortSpec):
            return spec
        pairs = _key_pairs(spec, "sort")
        return cls(
            keys=tuple(SortKey(f, SortDirection.parse(d, f)) for f, d in pairs)
        )

    def __bool__(self) -> bool:
        return bool(self.keys)

    def sort(
        self,
        items: Iterable[T],
        fields_of: Callable[[T], Mapping[str, Any]] | None = None,
    ) -> list[T]:
        """Return items ordered by this spec.

        Applies one stable pass per key, least significant first.
        """
        ordered = list(items)
        accessor = fields_of or (lambda item: item)  # type: ignore[assignment,return-value]
        for key in reversed(self.keys):
            ordered.sort(
                key=lambda item, path=key.field: sort_key(get_path(accessor(item), path)),
                reverse=key.direction is SortDirection.DESCENDING,
            )
        return ordered


class ProjectionMode(Enum):
    """Whether listed paths are kept or removed."""

    INCLUDE = "include"
    EXCLUDE = "exclude"


def _flag(value: Any, field: str) -> bool:
    if isinstance(value, bool):
        return value
    if isinstance(value, int) and value in (0, 1):
        return bool(value)
    raise InvalidSpecError(f"Projection value for '{field}' must be 0 or 1, got {value!r}")


@dataclass(frozen=True)
class Projection:
    """Field inclusion or exclusion for find results.

    Inclusion and exclusion cannot be mixed, except that ``_id`` may
    always be excluded.
    """

    mode: ProjectionMode
    paths: tuple[str, ...]
    include_id: bool = True

    @classmethod
    def parse(cls, spec: Mapping[str, Any] | Projection | None) -> Projection | None:
        if spec is None or isinstance(spec, Projection):
            return spec
        if not isinstance(spec, Mapping):
            raise InvalidSpecError(f"Projection must be a mapping, got {spec!r}")
        if not spec:
            return None

        include_id = True
        id_explicit = False
        included: list[str] = []
        excluded: list[str] = []
        for field, value in spec.items():
            if not isinstance(field, str) or not field or field.startswith("$"):
                raise InvalidSpecError(f"Invalid projection field: {field!r}")
            flag = _flag(value, field)
            if field == ID_FIELD:
                include_id = flag
                id_explicit = True
            elif flag:
                included.append(field)
            else:
                excluded.append(field)

        if included and excluded:
            raise InvalidSpecError(
                "Cannot mix inclusion and exclusion in a projection "
                f"(include {included}, exclude {excluded})"
            )
        if included or (id_explicit and include_id and not excluded):
            return cls(ProjectionMode.INCLUDE, tuple(included), include_id)
        return cls(ProjectionMode.EXCLUDE, tuple(excluded), include_id)

    def apply(self, record: Mapping[str, Any]) -> dict[str, Any]:
        """Project a record, returning a fresh dict in the record's field order."""
        if self.mode is ProjectionMode.INCLUDE:
            projected = _include(record, [p.split(".") for p in self.paths])
            if self.include_id and ID_FIELD in record:
                projected = {ID_FIELD: record[ID_FIELD], **projected}
            return projected

        projected = copy.deepcopy(dict(record))
        for path in self.paths:
            _exclude(projected, path.split("."))
        if not self.include_id:
            projected.pop(ID_FIELD, None)
        return projected


def _include(source: Mapping[str, Any], paths: list[list[str]]) -> dict[str, Any]:
    result: dict[str, Any] = {}
    for key, value in source.items():
        if key == ID_FIELD:
            continue
        matching = [p for p in paths if p[0] == key]
        if not matching:
            continue
        if any(len(p) == 1 for p in matching):
            result[key] = copy.deepcopy(value)
            continue
        rest = [p[1:] for p in matching]
        if isinstance(value, Mapping):
            result[key] = _include(value, rest)
        elif isinstance(value, list):
            result[key] = [_include(e, rest) for e in value if isinstance(e, Mapping)]
    return result


def _exclude(target: Any, parts: list[str]) -> None:
    if isinstance(target, list):
        for element in target:
            _exclude(element, parts)
        return
    if not isinstance(target, dict) or parts[0] not in target:
        return
    if len(parts) == 1:
        del target[parts[0]]
    else:
        _exclude(target[parts[0]], parts[1:])


@dataclass(frozen=True, slots=True)
class IndexField:
    """One key field of an index."""

    path: str
    direction: SortDirection


@dataclass(frozen=True)
class IndexSpec:
    """Key definition of a single or compound index."""

    fields: tuple[IndexField, ...]

    @classmethod
    def parse(cls, keys: Any) -> IndexSpec:
        if isinstance(keys, IndexSpec):
            return keys
        pairs = _key_pairs(keys, "index")
        if not pairs:
            raise InvalidSpecError("Index must have at least one key field")
        return cls(
            fields=tuple(IndexField(f, SortDirection.parse(d, f)) for f, d in pairs)
        )

    @property
    def paths(self) -> tuple[str, ...]:
        return tuple(f.path for f in self.fields)

    @property
    def signature(self) -> tuple[tuple[str, int], ...]:
        return tuple((f.path, int(f.direction)) for f in self.fields)

    @property
    def default_name(self) -> str:
        """Name derived from the key, e.g. ``author_1_published_year_1``."""
        return "_".join(f"{f.path}_{int(f.direction)}" for f in self.fields)
