"""Document Store - unified entry point for the engine.

This module provides the DocumentStore class that owns a collection of
schemaless records and orchestrates the Index Manager, the Query
Executor and the Aggregation Pipeline Engine.

Usage:
    from doc_engine import DocumentStore

    store = DocumentStore()
    store.create_index({"author": 1, "published_year": 1})
    store.insert({"title": "The Hobbit", "author": "J.R.R. Tolkien", "published_year": 1937})

    cursor = store.find({"author": "J.R.R. Tolkien"}, sort={"published_year": 1})
    for book in cursor:
        print(book["title"])

    store.aggregate([
        {"$group": {"_id": "$genre", "avg_pages": {"$avg": "$pages"}}},
        {"$sort": {"avg_pages": -1}},
    ])

Concurrency:
    Every mutation and the index maintenance it triggers run under one
    re-entrant lock. Stored documents are immutable versions; an update
    swaps in a new version, so readers never observe half an update.
    Readers hold the lock only while capturing candidate versions and
    evaluate filters, sorts and pipelines outside it.
"""

from __future__ import annotations

import threading
import time
from collections.abc import Generator, Iterable, Mapping, Sequence
from contextlib import contextmanager
from typing import Any

from doc_engine.application.pipeline import Pipeline, StageContext
from doc_engine.application.query_executor import (
    Cursor,
    FindQuery,
    QueryExecutor,
    Snapshot,
)
from doc_engine.domain.entities import Document
from doc_engine.domain.errors import DocEngineError, OperationCancelledError
from doc_engine.domain.services import (
    IndexManager,
    Predicate,
    compile_filter,
    compile_mutation,
)
from doc_engine.domain.value_objects import (
    AccessPath,
    CancellationToken,
    DocumentId,
    FullScan,
    IdAllocator,
    IndexScan,
)
from doc_engine.infrastructure.config import Config, get_config
from doc_engine.infrastructure.logging import get_logger
from doc_engine.infrastructure.metrics import MetricsRegistry, get_metrics
from doc_engine.infrastructure.tracing import trace_span
from doc_engine.ports.inbound.document_store import (
    DeleteResult,
    ExplainResult,
    UpdateResult,
)
from doc_engine.ports.inbound.index_manager import IndexInfo

logger = get_logger(__name__)


class DocumentStore:
    """An in-memory collection of schemaless records.

    Implements DocumentStorePort and IndexManagerPort.

    Thread Safety:
        Multiple threads can share a DocumentStore. Mutations are
        serialized; queries run concurrently against snapshots.
    """

    def __init__(
        self,
        config: Config | None = None,
        metrics: MetricsRegistry | None = None,
    ) -> None:
        """Initialize an empty store.

        Args:
            config: Engine configuration (defaults to the environment).
            metrics: Metrics registry (defaults to the process-wide one).
        """
        self._config = config or get_config()
        self._metrics = metrics or get_metrics()

        self._lock = threading.RLock()
        self._documents: dict[DocumentId, Document] = {}
        self._ids = IdAllocator()
        self._indexes = IndexManager(
            max_compound_fields=self._config.index.max_compound_fields,
            planner=self._config.index.planner,
        )
        self._executor = QueryExecutor(
            source=self,
            metrics=self._metrics,
            check_interval=self._config.query.cancel_check_interval,
            max_limit=self._config.query.max_limit,
        )

        # Statistics
        self._inserted = 0
        self._updated = 0
        self._deleted = 0

    @property
    def config(self) -> Config:
        return self._config

    def __len__(self) -> int:
        return len(self._documents)

    @contextmanager
    def _observe(self, operation: str, **attributes: Any) -> Generator[None, None, None]:
        """Trace, time and count one public operation."""
        start = time.perf_counter()
        status = "success"
        try:
            with trace_span(f"doc_engine.{operation}", attributes):
                yield
        except OperationCancelledError as e:
            status = "cancelled"
            self._metrics.cancellations_total.labels(operation=operation).inc()
            logger.info("operation_cancelled", operation=operation, reason=str(e))
            raise
        except DocEngineError as e:
            status = "error"
            logger.debug("operation_failed", operation=operation, error=str(e))
            raise
        finally:
            self._metrics.operations_total.labels(operation=operation, status=status).inc()
            self._metrics.operation_latency_seconds.labels(operation=operation).observe(
                time.perf_counter() - start
            )

    def _publish_sizes(self) -> None:
        self._metrics.documents.set(len(self._documents))
        self._metrics.indexes.set(len(self._indexes))

    # -------------------------------------------------------------------------
    # Mutations
    # -------------------------------------------------------------------------

    def insert(self, record: Mapping[str, Any]) -> DocumentId:
        """Insert a record and return its assigned identifier.

        Raises:
            InvalidSpecError: Malformed record, or record carrying ``_id``.
            DuplicateKeyError: A unique index already holds the key.
        """
        with self._observe("insert"):
            with self._lock:
                document = Document.create(self._ids.next_id(), record)
                self._indexes.on_insert(document)
                self._documents[document.doc_id] = document
                self._inserted += 1
                self._publish_sizes()
            return document.doc_id

    def insert_many(self, records: Iterable[Mapping[str, Any]]) -> list[DocumentId]:
        """Insert records in order, stopping at the first failure.

        Records inserted before the failure stay in the store.
        """
        with self._observe("insert_many"):
            inserted: list[DocumentId] = []
            with self._lock:
                for record in records:
                    inserted.append(self.insert(record))
            logger.debug("documents_inserted", count=len(inserted))
            return inserted

    def _first_match(self, predicate: Predicate) -> Document | None:
        """First matching document in store order. Caller holds the lock."""
        for document in self._candidates(self._plan(predicate)):
            if predicate.matches(document.fields):
                return document
        return None

    def update_one(self, filter: Any, mutation: Mapping[str, Any]) -> UpdateResult:
        """Apply ``$set`` / ``$unset`` / ``$inc`` to the first matching record.

        ``modified_count`` is 0 when the update matched but every value
        was already in place.

        Raises:
            InvalidSpecError: Malformed filter or mutation, or update of ``_id``.
            TypeMismatchError: ``$inc`` over a non-numeric value.
            DuplicateKeyError: The new values violate a unique index.
        """
        with self._observe("update_one"):
            predicate = compile_filter(filter)
            compiled = compile_mutation(mutation)
            with self._lock:
                current = self._first_match(predicate)
                if current is None:
                    return UpdateResult(matched_count=0, modified_count=0)
                fields, changed = compiled.apply(current.fields)
                if not changed:
                    return UpdateResult(matched_count=1, modified_count=0)
                updated = current.with_fields(fields)
                rekeyed = self._indexes.on_update(current, updated)
                self._documents[updated.doc_id] = updated
                self._updated += 1
            logger.debug(
                "document_updated",
                doc_id=str(updated.doc_id),
                version=updated.version,
                indexes_rekeyed=rekeyed,
            )
            return UpdateResult(matched_count=1, modified_count=1)

    def delete_one(self, filter: Any) -> DeleteResult:
        """Delete the first matching record."""
        with self._observe("delete_one"):
            predicate = compile_filter(filter)
            with self._lock:
                document = self._first_match(predicate)
                if document is None:
                    return DeleteResult(deleted_count=0)
                self._indexes.on_delete(document)
                del self._documents[document.doc_id]
                self._deleted += 1
                self._publish_sizes()
            return DeleteResult(deleted_count=1)

    # -------------------------------------------------------------------------
    # Snapshots (used by the query executor)
    # -------------------------------------------------------------------------

    def _plan(self, predicate: Predicate, hint: Any = None) -> AccessPath:
        return self._indexes.choose_access_path(predicate, hint)

    def _candidates(self, path: AccessPath) -> list[Document]:
        """Candidate versions in insertion order. Caller holds the lock."""
        if isinstance(path, FullScan):
            return list(self._documents.values())
        ids = sorted(self._indexes.candidates(path))
        return [self._documents[doc_id] for doc_id in ids]

    def snapshot(self, predicate: Predicate, hint: Any = None) -> Snapshot:
        """Capture the candidate versions a query will evaluate."""
        with self._lock:
            path = self._plan(predicate, hint)
            return Snapshot(
                access_path=path,
                documents=self._candidates(path),
                total_documents=len(self._documents),
            )

    def plan(self, predicate: Predicate, hint: Any = None) -> tuple[AccessPath, int]:
        """Access path and estimated documents examined, without scanning."""
        with self._lock:
            path = self._plan(predicate, hint)
            if isinstance(path, IndexScan):
                return path, self._indexes.estimate(path)
            return path, len(self._documents)

    # -------------------------------------------------------------------------
    # Queries
    # -------------------------------------------------------------------------

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
        Outcome and latency of the query are recorded by the cursor when
        it finishes; only argument errors are counted here.

        Args:
            filter: MongoDB-style filter (None matches everything).
            projection: Inclusion or exclusion of dotted paths.
            sort: ``{"field": 1 | -1, ...}`` or list of pairs.
            skip: Records to skip after sorting.
            limit: Maximum records returned; 0 means no limit.
            hint: Index name or key specification to force.
            cancel_token: Checked between record evaluations.

        Raises:
            InvalidSpecError: Any malformed argument (raised here, not on
                iteration).
        """
        with trace_span("doc_engine.find"):
            try:
                query = FindQuery.build(
                    filter, projection, sort, skip, limit, hint, cancel_token
                )
            except DocEngineError as e:
                self._metrics.operations_total.labels(operation="find", status="error").inc()
                logger.debug("operation_failed", operation="find", error=str(e))
                raise
        return Cursor(self._executor, query)

    def find_one(
        self, filter: Any = None, projection: Mapping[str, Any] | None = None
    ) -> dict[str, Any] | None:
        """First matching record in store order, or None."""
        records = self.find(filter, projection, limit=1).to_list()
        return records[0] if records else None

    def count_documents(self, filter: Any = None) -> int:
        """Number of records matching the filter."""
        with self._observe("count_documents"):
            query = FindQuery.build(filter)
            return sum(1 for _ in self._executor.run(query))

    def get(self, document_id: DocumentId) -> dict[str, Any] | None:
        """Copy of one record by identifier, or None."""
        with self._lock:
            document = self._documents.get(document_id)
        return document.materialize() if document is not None else None

    def aggregate(
        self,
        stages: Sequence[Any],
        filter: Any = None,
        cancel_token: CancellationToken | None = None,
    ) -> list[dict[str, Any]]:
        """Run a Project / Group / Sort / Limit pipeline.

        Args:
            stages: Stage objects or ``{"$group": {...}}`` style specs.
            filter: Preselects input records.
            cancel_token: Checked between records in every stage.

        Raises:
            InvalidSpecError: Unknown stage or malformed stage arguments.
            OperationCancelledError: The token was cancelled.
        """
        with self._observe("aggregate"):
            pipeline = Pipeline.parse(stages)
            query = FindQuery.build(filter, cancel_token=cancel_token)
            context = StageContext(cancel_token=cancel_token, metrics=self._metrics)
            results = pipeline.run(self._executor.run(query), context)
            if context.dropped:
                logger.info(
                    "pipeline_completed_with_drops",
                    dropped=context.dropped,
                    returned=len(results),
                )
            return results

    def explain(
        self,
        filter: Any = None,
        hint: Any = None,
        verbosity: str = "queryPlanner",
    ) -> ExplainResult:
        """Describe the access path for a filter.

        With ``verbosity="executionStats"`` the query is also run and the
        documents examined, records returned and elapsed time reported.

        Raises:
            InvalidSpecError: Unknown verbosity, malformed filter or hint.
        """
        with self._observe("explain"):
            query = FindQuery.build(filter, hint=hint)
            return self._executor.explain(query, verbosity)

    # -------------------------------------------------------------------------
    # Indexes
    # -------------------------------------------------------------------------

    def create_index(
        self,
        keys: Any,
        *,
        unique: bool = False,
        name: str | None = None,
    ) -> str:
        """Create a single or compound index over the current documents.

        Returns:
            The index name, e.g. ``author_1_published_year_1``.

        Raises:
            IndexAlreadyExistsError: Same name or keys, different definition.
            DuplicateKeyError: ``unique`` over data that already repeats a key.
            InvalidSpecError: Malformed key specification.
        """
        with self._observe("create_index"):
            with self._lock:
                index_name, _ = self._indexes.create_index(
                    keys, self._documents.values(), unique=unique, name=name
                )
                self._publish_sizes()
            return index_name

    def drop_index(self, name: str) -> bool:
        """Drop an index. Returns False if it does not exist."""
        with self._observe("drop_index"):
            with self._lock:
                dropped = self._indexes.drop_index(name)
                self._publish_sizes()
            return dropped

    def list_indexes(self) -> list[IndexInfo]:
        """Indexes in creation order."""
        with self._lock:
            return self._indexes.list_indexes()

    def choose_access_path(self, filter: Any = None, hint: Any = None) -> AccessPath:
        """Pick the access path a query with this filter would use."""
        predicate = compile_filter(filter)
        with self._lock:
            return self._plan(predicate, hint)

    # -------------------------------------------------------------------------
    # Statistics
    # -------------------------------------------------------------------------

    def get_stats(self) -> dict[str, Any]:
        """Get store statistics.

        Returns:
            Dictionary with document, mutation and index statistics.
        """
        with self._lock:
            index_stats = self._indexes.get_stats()
            return {
                "documents": len(self._documents),
                "inserted": self._inserted,
                "updated": self._updated,
                "deleted": self._deleted,
                "indexes": {
                    "count": index_stats.num_indexes,
                    "total_entries": index_stats.total_entries,
                    "total_keys": index_stats.total_keys,
                    "scans": index_stats.scan_count,
                    "inserts": index_stats.insert_count,
                    "deletes": index_stats.delete_count,
                },
            }
