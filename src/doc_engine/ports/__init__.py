"""Ports layer - interface definitions following Hexagonal Architecture.

Ports are abstract interfaces (protocols) that define contracts:
- Inbound ports: APIs offered to callers (DocumentStorePort, IndexManagerPort)

The application layer implements these ports.
"""

from doc_engine.ports.inbound import (
    DeleteResult,
    DocumentStorePort,
    ExplainResult,
    IndexInfo,
    IndexManagerPort,
    IndexStats,
    UpdateResult,
)

__all__ = [
    "DeleteResult",
    "DocumentStorePort",
    "ExplainResult",
    "IndexInfo",
    "IndexManagerPort",
    "IndexStats",
    "UpdateResult",
]
