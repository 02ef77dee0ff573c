"""Document identifiers.

Identifiers are assigned by the store, never by callers, and grow
monotonically, so ordering ids gives insertion order.
"""

from __future__ import annotations

import itertools
import threading
from dataclasses import dataclass

ID_FIELD = "_id"
"""Reserved field carrying the document identifier in materialized records."""


@dataclass(frozen=True, order=True, slots=True)
class DocumentId:
    """Store-assigned document identifier.

    Attributes:
        seq: Monotonic sequence number within the owning store

    Example:
        >>> DocumentId(3) < DocumentId(7)
        True
    """

    seq: int

    def __post_init__(self) -> None:
        """Validate the identifier."""
        if self.seq < 1:
            raise ValueError(f"seq must be positive, got {self.seq}")

    def __repr__(self) -> str:
        return f"DocumentId({self.seq})"

    def __str__(self) -> str:
        return f"{self.seq:024x}"


class IdAllocator:
    """Hands out fresh identifiers for one store. Thread-safe."""

    def __init__(self, start: int = 1) -> None:
        self._lock = threading.Lock()
        self._counter = itertools.count(start)

    def next_id(self) -> DocumentId:
        with self._lock:
            return DocumentId(next(self._counter))
