"""Ordered compound index over document fields.

This module implements the in-memory secondary index used by the
Index Manager. Entries are kept in a sorted key list maintained with
bisect, next to a mapping from each key to the ids holding it.

Key layout:
    - One component per index field, built from the value's sort key
    - Descending fields wrap the component so it orders in reverse
    - Missing fields key as null
    - Array values are multikey: one entry per element plus one for
      the whole array; compound keys are the cartesian product

The index is not thread-safe on its own: the owning store serializes
every call under its mutation lock.
"""

from __future__ import annotations

import dataclasses
import itertools
from bisect import bisect_left, bisect_right, insort
from collections.abc import Iterable, Iterator, Mapping
from typing import Any

from doc_engine.domain.value_objects import (
    DocumentId,
    FieldBounds,
    MISSING,
    IndexSpec,
    SortDirection,
    classify,
    resolve_path,
    sort_key,
)

IndexKey = tuple[Any, ...]

_NULL_KEY = sort_key(None)


class _Descending:
    """Key component that orders in reverse."""

    __slots__ = ("key",)

    def __init__(self, key: tuple[Any, ...]) -> None:
        self.key = key

    def __eq__(self, other: object) -> bool:
        if isinstance(other, _Descending):
            return self.key == other.key
        return NotImplemented

    def __lt__(self, other: object) -> bool:
        if isinstance(other, _Descending):
            return self.key > other.key
        return NotImplemented

    def __gt__(self, other: object) -> bool:
        if isinstance(other, _Descending):
            return self.key < other.key
        return NotImplemented

    def __hash__(self) -> int:
        return hash(("desc", self.key))

    def __repr__(self) -> str:
        return f"desc{self.key!r}"


class _MaxKey:
    """Sorts after every key component."""

    def __lt__(self, other: object) -> bool:
        return False

    def __gt__(self, other: object) -> bool:
        return other is not self

    def __repr__(self) -> str:
        return "MaxKey"


_MAX = _MaxKey()


def _unwrap(component: Any) -> tuple[Any, ...]:
    return component.key if isinstance(component, _Descending) else component


def _field_components(fields: Mapping[str, Any], path: str) -> list[tuple[Any, ...]]:
    values = resolve_path(fields, path)
    if not values:
        return [_NULL_KEY]
    components: dict[tuple[Any, ...], None] = {}
    for value in values:
        components[sort_key(value)] = None
        if isinstance(value, list):
            for element in value:
                components[sort_key(element)] = None
    return list(components)


def _lower_side(bounds: FieldBounds) -> FieldBounds:
    if bounds.lower is MISSING or bounds.upper is MISSING:
        return bounds
    return dataclasses.replace(bounds, upper=MISSING, upper_inclusive=True)


class DocumentIndex:
    """A single or compound secondary index.

    Attributes:
        name: Index name, unique within a store
        spec: Key fields and directions
        unique: Whether two documents may share a key
    """

    def __init__(self, name: str, spec: IndexSpec, unique: bool = False) -> None:
        self.name = name
        self.spec = spec
        self.unique = unique

        self._keys: list[IndexKey] = []
        self._entries: dict[IndexKey, set[DocumentId]] = {}
        self._doc_keys: dict[DocumentId, frozenset[IndexKey]] = {}
        # Per key field: documents that produced more than one component
        self._multikey: list[set[DocumentId]] = [set() for _ in spec.fields]

        # Statistics
        self._scan_count = 0
        self._insert_count = 0
        self._delete_count = 0

    def keys_for(self, fields: Mapping[str, Any]) -> frozenset[IndexKey]:
        """All index keys a record produces."""
        per_field = []
        for field in self.spec.fields:
            components = _field_components(fields, field.path)
            if field.direction is SortDirection.DESCENDING:
                components = [_Descending(c) for c in components]
            per_field.append(components)
        return frozenset(itertools.product(*per_field))

    def conflicts(
        self, keys: Iterable[IndexKey], doc_id: DocumentId | None = None
    ) -> IndexKey | None:
        """Return the first key already held by another document.

        Always None for non-unique indexes.
        """
        if not self.unique:
            return None
        for key in keys:
            holders = self._entries.get(key)
            if holders and (doc_id is None or holders != {doc_id}):
                return key
        return None

    def add(self, doc_id: DocumentId, keys: frozenset[IndexKey]) -> None:
        """Index a document under precomputed keys."""
        self._insert_count += 1
        self._doc_keys[doc_id] = keys
        for position, docs in enumerate(self._multikey):
            if len({key[position] for key in keys}) > 1:
                docs.add(doc_id)
        for key in keys:
            holders = self._entries.get(key)
            if holders is None:
                self._entries[key] = {doc_id}
                insort(self._keys, key)
            else:
                holders.add(doc_id)

    def remove(self, doc_id: DocumentId) -> bool:
        """Drop every entry of a document.

        Returns:
            True if the document was indexed.
        """
        keys = self._doc_keys.pop(doc_id, None)
        if keys is None:
            return False
        self._delete_count += 1
        for docs in self._multikey:
            docs.discard(doc_id)
        for key in keys:
            holders = self._entries[key]
            holders.discard(doc_id)
            if not holders:
                del self._entries[key]
                del self._keys[bisect_left(self._keys, key)]
        return True

    def replace(self, doc_id: DocumentId, keys: frozenset[IndexKey]) -> bool:
        """Swap a document's entries if its keys changed.

        Returns:
            True if the entries were rewritten.
        """
        if self._doc_keys.get(doc_id) == keys:
            return False
        self.remove(doc_id)
        self.add(doc_id, keys)
        return True

    def keys_of(self, doc_id: DocumentId) -> frozenset[IndexKey]:
        return self._doc_keys.get(doc_id, frozenset())

    def scan(self, bounds: tuple[FieldBounds, ...] = ()) -> set[DocumentId]:
        """Ids of documents with a key inside the bounds.

        Args:
            bounds: Point constraints on a leading run of index fields,
                optionally followed by one range constraint on the next
                field. Empty scans the whole index.

        Returns:
            Candidate ids. The set may over-approximate the filter.
        """
        self._scan_count += 1
        return self._collect(bounds)

    def count(self, bounds: tuple[FieldBounds, ...] = ()) -> int:
        """Number of candidates a scan would yield. Not counted as a scan."""
        return len(self._collect(bounds))

    def _collect(self, bounds: tuple[FieldBounds, ...]) -> set[DocumentId]:
        prefix_bounds = list(itertools.takewhile(lambda b: b.is_point, bounds))
        range_bound = bounds[len(prefix_bounds)] if len(bounds) > len(prefix_bounds) else None
        if range_bound is not None and self.is_multikey(len(prefix_bounds)):
            # Each side may be satisfied by a different array element.
            range_bound = _lower_side(range_bound)

        prefixes: list[list[Any]] = []
        for position, bound in enumerate(prefix_bounds):
            descending = self.spec.fields[position].direction is SortDirection.DESCENDING
            keys = sorted(bound.point_keys())
            prefixes.append([_Descending(k) for k in keys] if descending else keys)

        found: set[DocumentId] = set()
        for prefix in itertools.product(*prefixes):
            for key in self._prefix_range(prefix, range_bound):
                if range_bound is None or range_bound.admits(_unwrap(key[len(prefix)])):
                    found.update(self._entries[key])
        return found

    def _prefix_range(
        self, prefix: tuple[Any, ...], range_bound: FieldBounds | None
    ) -> list[IndexKey]:
        if range_bound is None:
            if not prefix:
                return self._keys
            start = bisect_left(self._keys, prefix)
            end = bisect_right(self._keys, (*prefix, _MAX))
            return self._keys[start:end]

        anchor = range_bound.lower if range_bound.lower is not MISSING else range_bound.upper
        rank = classify(anchor).value
        low = sort_key(range_bound.lower) if range_bound.lower is not MISSING else (rank,)
        high = sort_key(range_bound.upper) if range_bound.upper is not MISSING else (rank + 1,)
        if self.spec.fields[len(prefix)].direction is SortDirection.DESCENDING:
            low, high = _Descending(high), _Descending(low)
        start = bisect_left(self._keys, (*prefix, low))
        end = bisect_right(self._keys, (*prefix, high, _MAX))
        return self._keys[start:end]

    def is_multikey(self, position: int) -> bool:
        """True if some document holds several values for a key field."""
        return bool(self._multikey[position])

    def iter_ids(self) -> Iterator[DocumentId]:
        """Every indexed document id, in no particular order."""
        return iter(list(self._doc_keys))

    def __len__(self) -> int:
        """Number of indexed documents."""
        return len(self._doc_keys)

    @property
    def num_keys(self) -> int:
        return len(self._keys)

    @property
    def num_entries(self) -> int:
        return sum(len(holders) for holders in self._entries.values())

    @property
    def scan_count(self) -> int:
        return self._scan_count

    @property
    def insert_count(self) -> int:
        return self._insert_count

    @property
    def delete_count(self) -> int:
        return self._delete_count
