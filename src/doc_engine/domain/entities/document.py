"""Stored document versions.

A Document is one immutable version of a record. Updates never touch a
published version: they build a new field dict and the store swaps the
new version in under its mutation lock, so a reader holding a version
always sees all of an update or none of it.
"""

from __future__ import annotations

import copy
from collections.abc import Mapping
from dataclasses import dataclass
from typing import Any

from doc_engine.domain.errors import InvalidSpecError
from doc_engine.domain.value_objects import ID_FIELD, DocumentId, to_storable


@dataclass(frozen=True, slots=True)
class Document:
    """A versioned, schemaless record owned by the store.

    Attributes:
        doc_id: Store-assigned identifier
        fields: Field mapping; always starts with ``_id``. Never mutated.
        version: Incremented on every effective update
    """

    doc_id: DocumentId
    fields: Mapping[str, Any]
    version: int = 1

    @classmethod
    def create(cls, doc_id: DocumentId, record: Mapping[str, Any]) -> Document:
        """Build the first version from a caller-supplied record.

        The record is copied so later changes by the caller do not leak
        into the store. Tuples are stored as lists.

        Raises:
            InvalidSpecError: If the record is not a mapping, carries ``_id``
                or holds unsupported values.
        """
        if not isinstance(record, Mapping):
            raise InvalidSpecError(f"Document must be a mapping, got {type(record).__name__}")
        if ID_FIELD in record:
            raise InvalidSpecError(f"'{ID_FIELD}' is assigned by the store")
        fields: dict[str, Any] = {ID_FIELD: doc_id}
        fields.update(to_storable(record))
        return cls(doc_id=doc_id, fields=fields)

    def with_fields(self, fields: Mapping[str, Any]) -> Document:
        """Return the next version holding ``fields``."""
        return Document(doc_id=self.doc_id, fields=fields, version=self.version + 1)

    def materialize(self) -> dict[str, Any]:
        """Detached copy of the record for callers."""
        return copy.deepcopy(dict(self.fields))
