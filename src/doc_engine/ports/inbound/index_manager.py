"""Index Manager port for secondary index operations.

This inbound port defines the contract for index management: creating
and dropping single and compound indexes, and choosing how a query
enumerates its candidate documents.

Key responsibilities:
- Create and drop indexes, enforcing unique constraints
- Keep every index consistent with inserts, updates and deletes
- Choose an access path (index scan or full scan) for a filter

Access paths are advisory: they never change which records a query
returns or their order.
"""

from __future__ import annotations

from abc import abstractmethod
from dataclasses import dataclass
from typing import Any, Protocol

from doc_engine.domain.value_objects import AccessPath


@dataclass(frozen=True)
class IndexInfo:
    """Description of one index, as returned by list_indexes()."""

    name: str
    keys: tuple[tuple[str, int], ...]
    unique: bool
    multikey: bool
    num_entries: int

    def to_dict(self) -> dict[str, Any]:
        """Render in the shape of a MongoDB index document."""
        info: dict[str, Any] = {"name": self.name, "key": dict(self.keys)}
        if self.unique:
            info["unique"] = True
        return info


@dataclass
class IndexStats:
    """Statistics for index monitoring."""

    num_indexes: int
    total_entries: int
    total_keys: int
    scan_count: int
    insert_count: int
    delete_count: int


class IndexManagerPort(Protocol):
    """Protocol for managing indexes.

    Thread Safety:
        All methods must be thread-safe. Implementations serialize index
        changes with the store's document mutations.
    """

    @abstractmethod
    def create_index(
        self,
        keys: Any,
        *,
        unique: bool = False,
        name: str | None = None,
    ) -> str:
        """Create a single or compound index over the current documents.

        Args:
            keys: ``{"field": 1, ...}`` or a list of ``(field, direction)``
            unique: Whether to reject documents sharing a key
            name: Index name (default derived from the keys)

        Returns:
            The index name. Creating an identical index again returns the
            existing name.

        Raises:
            IndexAlreadyExistsError: Same name or keys, different definition.
            DuplicateKeyError: ``unique`` over data that already repeats a key.
            InvalidSpecError: Malformed key specification.
        """
        ...

    @abstractmethod
    def drop_index(self, name: str) -> bool:
        """Drop an index.

        Returns:
            True if dropped, False if not found.
        """
        ...

    @abstractmethod
    def list_indexes(self) -> list[IndexInfo]:
        """List indexes in creation order."""
        ...

    @abstractmethod
    def choose_access_path(self, filter: Any = None, hint: Any = None) -> AccessPath:
        """Pick the access path a query with this filter would use.

        Args:
            filter: Filter specification or compiled predicate
            hint: Index name or key specification forcing an index

        Raises:
            InvalidSpecError: Malformed filter or unknown hint.
        """
        ...
