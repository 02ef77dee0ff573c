"""Value objects for the document engine domain.

Value objects are immutable types that represent domain concepts.
They have no identity - two value objects with the same attributes are equal.

Exports:
    Identifiers:
        - DocumentId: Store-assigned, monotonically increasing identifier
        - ID_FIELD: Reserved ``_id`` field name

    Values:
        - ValueKind: Tagged classification of field values
        - MISSING: Marker for absent paths
        - get_path, resolve_path: Field accessors
        - typed_equals, compare, sort_key: Type-aware comparison

    Specifications:
        - SortSpec, SortKey, SortDirection
        - Projection, ProjectionMode
        - IndexSpec, IndexField

    Access paths:
        - FieldBounds, IndexScan, FullScan, AccessPath

    Cancellation:
        - CancellationToken
"""

from doc_engine.domain.value_objects.access_path import (
    AccessPath,
    FieldBounds,
    FullScan,
    IndexScan,
)
from doc_engine.domain.value_objects.cancellation import CancellationToken
from doc_engine.domain.value_objects.identifiers import ID_FIELD, DocumentId, IdAllocator
from doc_engine.domain.value_objects.specs import (
    IndexField,
    IndexSpec,
    Projection,
    ProjectionMode,
    SortDirection,
    SortKey,
    SortSpec,
)
from doc_engine.domain.value_objects.values import (
    MISSING,
    ValueKind,
    classify,
    compare,
    get_path,
    identical,
    is_number,
    resolve_path,
    sort_key,
    to_storable,
    typed_equals,
)

__all__ = [
    # Identifiers
    "DocumentId",
    "IdAllocator",
    "ID_FIELD",
    # Values
    "MISSING",
    "ValueKind",
    "classify",
    "compare",
    "get_path",
    "identical",
    "is_number",
    "resolve_path",
    "sort_key",
    "to_storable",
    "typed_equals",
    # Specifications
    "SortDirection",
    "SortKey",
    "SortSpec",
    "Projection",
    "ProjectionMode",
    "IndexField",
    "IndexSpec",
    # Access paths
    "AccessPath",
    "FieldBounds",
    "FullScan",
    "IndexScan",
    # Cancellation
    "CancellationToken",
]
