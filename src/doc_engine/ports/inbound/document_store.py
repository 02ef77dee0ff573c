"""Document Store port: the public interface of the engine.

This inbound port defines the contract callers program against:
inserting, updating, deleting and querying schemaless records, and
running aggregation pipelines over them.

Key responsibilities:
- Own documents and assign their identifiers
- Apply mutations atomically, keeping indexes consistent
- Evaluate queries and pipelines over consistent snapshots
"""

from __future__ import annotations

from abc import abstractmethod
from collections.abc import Iterable, Mapping, Sequence
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, Protocol

from doc_engine.domain.value_objects import CancellationToken, DocumentId

if TYPE_CHECKING:
    from doc_engine.application.query_executor import Cursor


@dataclass(frozen=True)
class UpdateResult:
    """Outcome of update_one.

    ``modified_count`` is 0 when the update matched but changed nothing.
    """

    matched_count: int
    modified_count: int

    def to_dict(self) -> dict[str, int]:
        return {"matchedCount": self.matched_count, "modifiedCount": self.modified_count}


@dataclass(frozen=True)
class DeleteResult:
    """Outcome of delete_one."""

    deleted_count: int

    def to_dict(self) -> dict[str, int]:
        return {"deletedCount": self.deleted_count}


@dataclass
class ExplainResult:
    """How a query is (or was) executed.

    Execution fields are only filled for ``verbosity="executionStats"``.
    """

    execution_path: str
    index_name: str | None
    estimated_docs_examined: int
    bounds: list[str] = field(default_factory=list)
    total_docs_examined: int | None = None
    n_returned: int | None = None
    execution_time_millis: float | None = None

    def to_dict(self) -> dict[str, Any]:
        """Render in the nested shape of MongoDB's explain output."""
        winning: dict[str, Any] = {"stage": self.execution_path}
        if self.index_name is not None:
            winning["indexName"] = self.index_name
            winning["indexBounds"] = list(self.bounds)
        result: dict[str, Any] = {
            "queryPlanner": {
                "winningPlan": winning,
                "estimatedDocsExamined": self.estimated_docs_examined,
            }
        }
        if self.total_docs_examined is not None:
            result["executionStats"] = {
                "nReturned": self.n_returned,
                "totalDocsExamined": self.total_docs_examined,
                "executionTimeMillis": self.execution_time_millis,
            }
        return result


class DocumentStorePort(Protocol):
    """Protocol for the document store.

    Thread Safety:
        Mutations are serialized and atomic. Reads run concurrently with
        each other and see each document either before or after any
        given update.
    """

    @abstractmethod
    def insert(self, record: Mapping[str, Any]) -> DocumentId:
        """Insert a record and return its assigned identifier.

        Raises:
            InvalidSpecError: Malformed record or record carrying ``_id``.
            DuplicateKeyError: A unique index already holds the key.
        """
        ...

    @abstractmethod
    def insert_many(self, records: Iterable[Mapping[str, Any]]) -> list[DocumentId]:
        """Insert records in order, stopping at the first failure."""
        ...

    @abstractmethod
    def update_one(self, filter: Any, mutation: Mapping[str, Any]) -> UpdateResult:
        """Apply ``$set`` / ``$unset`` / ``$inc`` to the first matching record.

        Raises:
            InvalidSpecError: Malformed filter or mutation, or update of ``_id``.
            TypeMismatchError: ``$inc`` over a non-numeric value.
            DuplicateKeyError: The new values violate a unique index.
        """
        ...

    @abstractmethod
    def delete_one(self, filter: Any) -> DeleteResult:
        """Delete the first matching record."""
        ...

    @abstractmethod
    def find(
        self,
        filter: Any = None,
        projection: Mapping[str, Any] | None = None,
        sort: Any = None,
        skip: int = 0,
        limit: int = 0,
        hint: Any = None,
        cancel_token: CancellationToken | None = None,
    ) -> Cursor:
        """Return a lazy cursor over matching records.

        Order of application: filter, sort, skip, limit, projection.
        ``limit=0`` means no limit.
        """
        ...

    @abstractmethod
    def count_documents(self, filter: Any = None) -> int:
        """Number of records matching the filter."""
        ...

    @abstractmethod
    def aggregate(
        self,
        stages: Sequence[Any],
        filter: Any = None,
        cancel_token: CancellationToken | None = None,
    ) -> list[dict[str, Any]]:
        """Run a Project / Group / Sort / Limit pipeline."""
        ...

    @abstractmethod
    def explain(
        self,
        filter: Any = None,
        hint: Any = None,
        verbosity: str = "queryPlanner",
    ) -> ExplainResult:
        """Describe the access path for a filter.

        Raises:
            InvalidSpecError: Unknown verbosity, malformed filter or hint.
        """
        ...
