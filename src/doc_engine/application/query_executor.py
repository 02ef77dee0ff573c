"""Query Executor using the Volcano iterator model.

This module executes find() queries over a snapshot of candidate
documents using a pull-based operator tree:

    DocumentScan -> Filter -> Sort -> Limit(skip, limit) -> Project

The Volcano model:
    - Each operator is an iterator with open(), next(), close() methods
    - Operators pull records from their children on demand
    - Only Sort materializes its input

The access path only decides which documents the scan yields. The
filter always has the final word, and candidates are re-ordered into
insertion order before scanning, so an index never changes a query's
results or their order.

References:
    - Graefe, "Volcano" (1994)
"""

from __future__ import annotations

import time
from abc import ABC, abstractmethod
from collections.abc import Iterator, Sequence
from dataclasses import dataclass, field, replace
from typing import TYPE_CHECKING, Any, Protocol

from doc_engine.domain.entities import Document
from doc_engine.domain.errors import (
    DocEngineError,
    InvalidSpecError,
    OperationCancelledError,
)
from doc_engine.domain.services import Predicate, compile_filter
from doc_engine.domain.value_objects import (
    AccessPath,
    CancellationToken,
    IndexScan,
    Projection,
    SortSpec,
)
from doc_engine.infrastructure.logging import get_logger
from doc_engine.ports.inbound.document_store import ExplainResult

if TYPE_CHECKING:
    from doc_engine.infrastructure.metrics import MetricsRegistry

logger = get_logger(__name__)

VERBOSITIES = ("queryPlanner", "executionStats")


def check_count(value: Any, name: str) -> int:
    """Validate a skip or limit argument."""
    if isinstance(value, bool) or not isinstance(value, int):
        raise InvalidSpecError(f"{name} must be an integer, got {value!r}")
    if value < 0:
        raise InvalidSpecError(f"{name} must be non-negative, got {value}")
    return value


# =============================================================================
# Snapshots
# =============================================================================


@dataclass(frozen=True)
class Snapshot:
    """Candidate documents captured under the store lock.

    Attributes:
        access_path: How the candidates were enumerated
        documents: Candidate versions in insertion order
        total_documents: Store size at snapshot time
    """

    access_path: AccessPath
    documents: Sequence[Document]
    total_documents: int


class SnapshotSource(Protocol):
    """Where the executor gets its candidates from (the store)."""

    def snapshot(self, predicate: Predicate, hint: Any = None) -> Snapshot:
        ...

    def plan(self, predicate: Predicate, hint: Any = None) -> tuple[AccessPath, int]:
        ...


@dataclass
class ExecutionStats:
    """Counters collected while a query runs."""

    docs_examined: int = 0
    n_returned: int = 0
    started_at: float = field(default_factory=time.perf_counter)

    @property
    def elapsed_millis(self) -> float:
        return (time.perf_counter() - self.started_at) * 1000.0


# =============================================================================
# Operators
# =============================================================================


class Operator(ABC):
    """Base class for executor operators (Volcano model)."""

    @abstractmethod
    def open(self) -> None:
        """Initialize the operator."""
        pass

    @abstractmethod
    def next(self) -> Any | None:
        """Return the next record or None if exhausted."""
        pass

    @abstractmethod
    def close(self) -> None:
        """Clean up resources."""
        pass

    def __iter__(self) -> Iterator[Any]:
        """Allow iteration over operator results."""
        self.open()
        try:
            while True:
                record = self.next()
                if record is None:
                    break
                yield record
        finally:
            self.close()


class DocumentScanOperator(Operator):
    """Yields snapshot documents, checking for cancellation as it goes."""

    def __init__(
        self,
        documents: Sequence[Document],
        stats: ExecutionStats,
        cancel_token: CancellationToken | None = None,
        check_interval: int = 1,
    ) -> None:
        self._documents = documents
        self._stats = stats
        self._token = cancel_token
        self._check_interval = check_interval
        self._position = 0

    def open(self) -> None:
        self._position = 0

    def next(self) -> Document | None:
        if self._token is not None and self._position % self._check_interval == 0:
            self._token.raise_if_cancelled()
        if self._position >= len(self._documents):
            return None
        document = self._documents[self._position]
        self._position += 1
        self._stats.docs_examined += 1
        return document

    def close(self) -> None:
        self._position = 0


class FilterOperator(Operator):
    """Filter operator that applies a compiled predicate."""

    def __init__(self, child: Operator, predicate: Predicate) -> None:
        self._child = child
        self._predicate = predicate

    def open(self) -> None:
        self._child.open()

    def next(self) -> Document | None:
        while True:
            document = self._child.next()
            if document is None:
                return None
            if self._predicate.matches(document.fields):
                return document

    def close(self) -> None:
        self._child.close()


class SortOperator(Operator):
    """Sort operator. Stable, so ties keep insertion order."""

    def __init__(self, child: Operator, sort: SortSpec) -> None:
        self._child = child
        self._sort = sort
        self._sorted: list[Document] = []
        self._current_idx = 0

    def open(self) -> None:
        self._child.open()
        # Materialize all documents and sort
        documents = []
        while True:
            document = self._child.next()
            if document is None:
                break
            documents.append(document)
        self._sorted = self._sort.sort(documents, fields_of=lambda d: d.fields)
        self._current_idx = 0

    def next(self) -> Document | None:
        if self._current_idx >= len(self._sorted):
            return None
        document = self._sorted[self._current_idx]
        self._current_idx += 1
        return document

    def close(self) -> None:
        self._child.close()
        self._sorted = []
        self._current_idx = 0


class LimitOperator(Operator):
    """Skip/limit operator. A limit of 0 means no limit."""

    def __init__(self, child: Operator, limit: int, offset: int = 0) -> None:
        self._child = child
        self._limit = limit
        self._offset = offset
        self._returned = 0
        self._offset_done = False

    def open(self) -> None:
        self._child.open()
        self._returned = 0
        self._offset_done = False

    def next(self) -> Any | None:
        # Skip offset records (only once at the beginning)
        if not self._offset_done:
            self._offset_done = True
            for _ in range(self._offset):
                if self._child.next() is None:
                    return None

        if self._limit and self._returned >= self._limit:
            return None
        record = self._child.next()
        if record is None:
            return None
        self._returned += 1
        return record

    def close(self) -> None:
        self._child.close()


class ProjectOperator(Operator):
    """Turns documents into detached result dicts."""

    def __init__(
        self, child: Operator, projection: Projection | None, stats: ExecutionStats
    ) -> None:
        self._child = child
        self._projection = projection
        self._stats = stats

    def open(self) -> None:
        self._child.open()

    def next(self) -> dict[str, Any] | None:
        document = self._child.next()
        if document is None:
            return None
        self._stats.n_returned += 1
        if self._projection is None:
            return document.materialize()
        return self._projection.apply(document.fields)

    def close(self) -> None:
        self._child.close()


# =============================================================================
# Queries
# =============================================================================


@dataclass(frozen=True)
class FindQuery:
    """A fully parsed find() request."""

    predicate: Predicate
    projection: Projection | None = None
    sort: SortSpec | None = None
    skip: int = 0
    limit: int = 0
    hint: Any = None
    cancel_token: CancellationToken | None = None

    @classmethod
    def build(
        cls,
        filter: Any = None,
        projection: Any = None,
        sort: Any = None,
        skip: int = 0,
        limit: int = 0,
        hint: Any = None,
        cancel_token: CancellationToken | None = None,
    ) -> FindQuery:
        """Parse and validate every part of a find() call.

        Raises:
            InvalidSpecError: Any malformed part.
        """
        return cls(
            predicate=compile_filter(filter),
            projection=Projection.parse(projection),
            sort=SortSpec.parse(sort) if sort is not None else None,
            skip=check_count(skip, "skip"),
            limit=check_count(limit, "limit"),
            hint=hint,
            cancel_token=cancel_token,
        )


class QueryExecutor:
    """Executes find() queries against snapshots of a store.

    The executor builds a physical operator tree per query and runs it
    outside the store lock.
    """

    def __init__(
        self,
        source: SnapshotSource,
        metrics: MetricsRegistry,
        check_interval: int = 1,
        max_limit: int = 0,
    ) -> None:
        self._source = source
        self._metrics = metrics
        self._check_interval = check_interval
        self._max_limit = max_limit

    def effective_limit(self, limit: int) -> int:
        if self._max_limit and (limit == 0 or limit > self._max_limit):
            return self._max_limit
        return limit

    def build_operator_tree(
        self, query: FindQuery, snapshot: Snapshot, stats: ExecutionStats
    ) -> Operator:
        """Build the physical operator tree for a query."""
        operator: Operator = DocumentScanOperator(
            snapshot.documents,
            stats,
            cancel_token=query.cancel_token,
            check_interval=self._check_interval,
        )
        operator = FilterOperator(operator, query.predicate)
        if query.sort:
            operator = SortOperator(operator, query.sort)
        limit = self.effective_limit(query.limit)
        if query.skip or limit:
            operator = LimitOperator(operator, limit=limit, offset=query.skip)
        return ProjectOperator(operator, query.projection, stats)

    def run(
        self, query: FindQuery, stats: ExecutionStats | None = None
    ) -> Iterator[dict[str, Any]]:
        """Execute a query, yielding result records lazily."""
        stats = stats or ExecutionStats()
        snapshot = self._source.snapshot(query.predicate, query.hint)
        access_path = snapshot.access_path
        if isinstance(access_path, IndexScan):
            self._metrics.index_scans_total.labels(index_name=access_path.index_name).inc()

        try:
            yield from self.build_operator_tree(query, snapshot, stats)
        finally:
            self._metrics.documents_examined_total.labels(
                access_path=access_path.stage
            ).inc(stats.docs_examined)
            logger.debug(
                "query_executed",
                access_path=access_path.stage,
                candidates=len(snapshot.documents),
                total_documents=snapshot.total_documents,
                docs_examined=stats.docs_examined,
                n_returned=stats.n_returned,
            )

    def record_completion(
        self,
        operation: str,
        stats: ExecutionStats,
        error: DocEngineError | None = None,
    ) -> None:
        """Count and time a cursor run once it is exhausted or fails.

        Latency covers the run from the first record request to the end.
        """
        status = "success"
        if isinstance(error, OperationCancelledError):
            status = "cancelled"
            self._metrics.cancellations_total.labels(operation=operation).inc()
            logger.info(
                "query_cancelled",
                operation=operation,
                reason=str(error),
                docs_examined=stats.docs_examined,
            )
        elif error is not None:
            status = "error"
            logger.debug("query_failed", operation=operation, error=str(error))
        self._metrics.operations_total.labels(operation=operation, status=status).inc()
        self._metrics.operation_latency_seconds.labels(operation=operation).observe(
            stats.elapsed_millis / 1000.0
        )

    def explain(self, query: FindQuery, verbosity: str = "queryPlanner") -> ExplainResult:
        """Describe, and for executionStats also run, a query.

        Raises:
            InvalidSpecError: Unknown verbosity.
        """
        if verbosity not in VERBOSITIES:
            raise InvalidSpecError(
                f"verbosity must be one of {', '.join(VERBOSITIES)}, got {verbosity!r}"
            )
        access_path, estimated = self._source.plan(query.predicate, query.hint)
        result = ExplainResult(
            execution_path=access_path.stage,
            index_name=access_path.index_name if isinstance(access_path, IndexScan) else None,
            estimated_docs_examined=estimated,
            bounds=(
                [b.describe() for b in access_path.bounds]
                if isinstance(access_path, IndexScan)
                else []
            ),
        )
        if verbosity == "executionStats":
            stats = ExecutionStats()
            for _ in self.run(query, stats):
                pass
            result.total_docs_examined = stats.docs_examined
            result.n_returned = stats.n_returned
            result.execution_time_millis = round(stats.elapsed_millis, 3)
        return result


class Cursor:
    """Lazy result of find().

    Mirrors the shell's chaining style; the query runs on first
    iteration and the cursor can then no longer be modified:

        store.find({"genre": "Fantasy"}).sort({"title": 1}).skip(5).limit(5)

    A cursor is single-pass.
    """

    def __init__(self, executor: QueryExecutor, query: FindQuery) -> None:
        self._executor = executor
        self._query = query
        self._results: Iterator[dict[str, Any]] | None = None
        self._stats = ExecutionStats()
        self._finished = False

    def _modify(self, **changes: Any) -> Cursor:
        if self._results is not None:
            raise InvalidSpecError("Cannot modify a cursor after it has started")
        self._query = replace(self._query, **changes)
        return self

    def sort(self, spec: Any) -> Cursor:
        return self._modify(sort=SortSpec.parse(spec))

    def skip(self, count: int) -> Cursor:
        return self._modify(skip=check_count(count, "skip"))

    def limit(self, count: int) -> Cursor:
        return self._modify(limit=check_count(count, "limit"))

    def hint(self, index: Any) -> Cursor:
        return self._modify(hint=index)

    @property
    def query(self) -> FindQuery:
        return self._query

    @property
    def started(self) -> bool:
        return self._results is not None

    @property
    def docs_examined(self) -> int:
        """Documents examined so far."""
        return self._stats.docs_examined

    def __iter__(self) -> Cursor:
        return self

    def __next__(self) -> dict[str, Any]:
        if self._results is None:
            self._stats.started_at = time.perf_counter()
            self._results = self._executor.run(self._query, self._stats)
        try:
            return next(self._results)
        except StopIteration:
            self._finish()
            raise
        except DocEngineError as e:
            self._finish(e)
            raise

    def _finish(self, error: DocEngineError | None = None) -> None:
        if not self._finished:
            self._finished = True
            self._executor.record_completion("find", self._stats, error)

    def to_list(self) -> list[dict[str, Any]]:
        """Exhaust the cursor."""
        return list(self)

    def explain(self, verbosity: str = "executionStats") -> ExplainResult:
        """Explain this query without consuming the cursor."""
        return self._executor.explain(self._query, verbosity)

    def __repr__(self) -> str:
        state = "started" if self.started else "pending"
        return f"Cursor({state}, skip={self._query.skip}, limit={self._query.limit})"
