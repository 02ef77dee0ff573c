"""Application layer for the document engine.

The application layer orchestrates domain logic to fulfill use cases.

Exports:
    DocumentStore:
        - DocumentStore: Main entry point for the engine
    Executor:
        - QueryExecutor: Executes find() queries using the Volcano iterator model
        - Cursor: Lazy, chainable query result
        - Operator: Base class for executor operators
    Pipeline:
        - Pipeline, Stage: Aggregation pipeline and its stages
"""

from doc_engine.application.document_store import DocumentStore
from doc_engine.application.pipeline import (
    GroupStage,
    LimitStage,
    Pipeline,
    ProjectStage,
    SortStage,
    Stage,
    StageContext,
    parse_pipeline,
    parse_stage,
)
from doc_engine.application.query_executor import (
    Cursor,
    DocumentScanOperator,
    ExecutionStats,
    FilterOperator,
    FindQuery,
    LimitOperator,
    Operator,
    ProjectOperator,
    QueryExecutor,
    Snapshot,
    SortOperator,
)

__all__ = [
    "DocumentStore",
    "QueryExecutor",
    "Cursor",
    "FindQuery",
    "ExecutionStats",
    "Snapshot",
    "Operator",
    "DocumentScanOperator",
    "FilterOperator",
    "SortOperator",
    "LimitOperator",
    "ProjectOperator",
    "Pipeline",
    "Stage",
    "StageContext",
    "ProjectStage",
    "GroupStage",
    "SortStage",
    "LimitStage",
    "parse_pipeline",
    "parse_stage",
]
