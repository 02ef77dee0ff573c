"""Domain entities for the document engine.

Entities are objects with identity that have a lifecycle. Unlike value objects,
two entities with the same attributes may not be equal if they have different
identities.

Exports:
    Document:
        - Document: Immutable version of a stored record
"""

from doc_engine.domain.entities.document import Document

__all__ = [
    "Document",
]
