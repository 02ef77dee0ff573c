"""
Document Engine - embedded document query and aggregation engine

An in-process document collection with MongoDB-style filters, projections,
stable multi-key sorting, pagination, grouping aggregation pipelines and
secondary indexes that change the access path without changing results.
"""

__version__ = "0.1.0"
__author__ = "Systems Engineering Portfolio"

from doc_engine.application.document_store import DocumentStore
from doc_engine.domain.errors import (
    DocEngineError,
    DuplicateKeyError,
    IndexAlreadyExistsError,
    InvalidSpecError,
    OperationCancelledError,
    TypeMismatchError,
)
from doc_engine.domain.value_objects import CancellationToken, DocumentId
from doc_engine.ports.inbound import DeleteResult, ExplainResult, IndexInfo, UpdateResult

__all__ = [
    "DocumentStore",
    "DocumentId",
    "CancellationToken",
    "UpdateResult",
    "DeleteResult",
    "ExplainResult",
    "IndexInfo",
    "DocEngineError",
    "DuplicateKeyError",
    "IndexAlreadyExistsError",
    "InvalidSpecError",
    "OperationCancelledError",
    "TypeMismatchError",
]
