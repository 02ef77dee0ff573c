"""Error taxonomy for the document engine.

Every error is raised synchronously from the call that caused it and
leaves the store and its indexes in their pre-call state.
"""

from __future__ import annotations

from typing import Any


class DocEngineError(Exception):
    """Base class for document engine errors."""


class DuplicateKeyError(DocEngineError):
    """A write would violate a unique index."""

    def __init__(self, index_name: str, key: tuple[Any, ...]) -> None:
        super().__init__(f"E11000 duplicate key error on index '{index_name}': {key!r}")
        self.index_name = index_name
        self.key = key


class IndexAlreadyExistsError(DocEngineError):
    """An index with the same name or keys exists with a different definition."""

    def __init__(self, index_name: str, reason: str) -> None:
        super().__init__(f"Index '{index_name}' already exists: {reason}")
        self.index_name = index_name


class TypeMismatchError(DocEngineError):
    """An expression or update operator met an operand of the wrong type.

    Inside a pipeline Project stage this only drops the offending record.
    """

    def __init__(self, message: str, operator: str | None = None) -> None:
        super().__init__(message)
        self.operator = operator


class InvalidSpecError(DocEngineError):
    """A filter, projection, sort, update, index or stage spec is malformed."""


class OperationCancelledError(DocEngineError):
    """A scan or pipeline was stopped through its cancellation token."""
