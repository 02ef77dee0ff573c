"""Inbound ports - API contracts for the document engine.

Inbound ports define the interfaces that callers use to store, query
and index documents.
"""

from doc_engine.ports.inbound.document_store import (
    DeleteResult,
    DocumentStorePort,
    ExplainResult,
    UpdateResult,
)
from doc_engine.ports.inbound.index_manager import (
    IndexInfo,
    IndexManagerPort,
    IndexStats,
)

__all__ = [
    # Document store
    "DeleteResult",
    "DocumentStorePort",
    "ExplainResult",
    "UpdateResult",
    # Index manager
    "IndexInfo",
    "IndexManagerPort",
    "IndexStats",
]
