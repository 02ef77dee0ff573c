"""Domain services for business logic.

Services implement the query semantics that don't belong to a single
entity: filter matching, expression evaluation, update operators and
secondary indexes.
"""

from doc_engine.domain.services.document_index import DocumentIndex
from doc_engine.domain.services.expressions import Expression, compile_expression
from doc_engine.domain.services.index_manager import IndexManager
from doc_engine.domain.services.mutation import Mutation, compile_mutation
from doc_engine.domain.services.predicate import Predicate, compile_filter

__all__ = [
    "DocumentIndex",
    "Expression",
    "IndexManager",
    "Mutation",
    "Predicate",
    "compile_expression",
    "compile_filter",
    "compile_mutation",
]
