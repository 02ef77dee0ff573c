"""Access paths chosen by the index planner.

An access path only decides how candidate documents are enumerated.
Index scans may over-approximate; the predicate evaluator always has
the final word, so the chosen path never changes a query's results.
"""

from __future__ import annotations

from dataclasses import dataclass
from functools import cached_property
from typing import Any, Union

from doc_engine.domain.value_objects.values import MISSING, sort_key


@dataclass(frozen=True)
class FieldBounds:
    """Constraint on one indexed field, extracted from a filter.

    Either a set of points (equality / ``$in``) or a range whose open
    sides are MISSING. Ranges never cross type classes: ``$gt: 1950``
    admits numbers only.
    """

    path: str
    points: tuple[Any, ...] | None = None
    lower: Any = MISSING
    lower_inclusive: bool = True
    upper: Any = MISSING
    upper_inclusive: bool = True

    @property
    def is_point(self) -> bool:
        return self.points is not None

    @cached_property
    def _point_keys(self) -> frozenset[tuple[Any, ...]]:
        return frozenset(sort_key(p) for p in self.points or ())

    def point_keys(self) -> frozenset[tuple[Any, ...]]:
        """Sort keys of the point values."""
        return self._point_keys

    def admits(self, key: tuple[Any, ...]) -> bool:
        """Check an index key component (a value sort key) against the bounds."""
        if self.points is not None:
            return key in self._point_keys
        if self.lower is not MISSING:
            low = sort_key(self.lower)
            if key[0] != low[0] or key < low or (key == low and not self.lower_inclusive):
                return False
        if self.upper is not MISSING:
            high = sort_key(self.upper)
            if key[0] != high[0] or key > high or (key == high and not self.upper_inclusive):
                return False
        return True

    def tighten(self, other: FieldBounds) -> FieldBounds:
        """Combine two constraints on the same path (both must hold).

        Points win over ranges; otherwise each open side is filled in.
        The result may still over-approximate.
        """
        if self.points is not None:
            return self
        if other.points is not None:
            return other
        lower, lower_inclusive = self.lower, self.lower_inclusive
        upper, upper_inclusive = self.upper, self.upper_inclusive
        if lower is MISSING:
            lower, lower_inclusive = other.lower, other.lower_inclusive
        if upper is MISSING:
            upper, upper_inclusive = other.upper, other.upper_inclusive
        return FieldBounds(self.path, None, lower, lower_inclusive, upper, upper_inclusive)

    def describe(self) -> str:
        """Human-readable bounds, e.g. ``published_year: (1950, MaxKey]``."""
        if self.points is not None:
            values = ", ".join(repr(p) for p in self.points)
            return f"{self.path}: [{values}]"
        low = "MinKey" if self.lower is MISSING else repr(self.lower)
        high = "MaxKey" if self.upper is MISSING else repr(self.upper)
        left = "[" if self.lower_inclusive or self.lower is MISSING else "("
        right = "]" if self.upper_inclusive or self.upper is MISSING else ")"
        return f"{self.path}: {left}{low}, {high}{right}"


@dataclass(frozen=True)
class IndexScan:
    """Enumerate candidates through an index.

    Attributes:
        index_name: Index to scan
        bounds: Constraints on the index's leading fields, in key order.
            Empty means a full index scan (forced by a hint).
    """

    index_name: str
    bounds: tuple[FieldBounds, ...] = ()

    @property
    def stage(self) -> str:
        return "IXSCAN"


@dataclass(frozen=True)
class FullScan:
    """Enumerate every document in insertion order."""

    @property
    def stage(self) -> str:
        return "COLLSCAN"


AccessPath = Union[IndexScan, FullScan]
