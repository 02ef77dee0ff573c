"""Index Manager: catalog, maintenance and access path planning.

The manager owns every secondary index of a store. Maintenance is
all-or-nothing: unique constraints of every index are checked before
any index is touched, so a DuplicateKeyError leaves all of them as
they were.

Planning follows the left-prefix rule. An index is usable only if the
filter constrains its leading field with an equality, ``$in`` or range
term. Point terms extend the usable prefix; the first range term ends
it. Among usable indexes the one yielding the fewest candidates wins
("selectivity"), or simply the first one created ("first_usable").
"""

from __future__ import annotations

from collections.abc import Iterable, Mapping
from typing import Any

from doc_engine.domain.entities import Document
from doc_engine.domain.errors import (
    DuplicateKeyError,
    IndexAlreadyExistsError,
    InvalidSpecError,
)
from doc_engine.domain.services.document_index import DocumentIndex, IndexKey
from doc_engine.domain.services.predicate import Predicate
from doc_engine.domain.value_objects import (
    MISSING,
    AccessPath,
    DocumentId,
    FieldBounds,
    FullScan,
    IndexScan,
    IndexSpec,
    get_path,
)
from doc_engine.infrastructure.logging import get_logger
from doc_engine.ports.inbound.index_manager import IndexInfo, IndexStats

logger = get_logger(__name__)

PLANNERS = ("selectivity", "first_usable")


def _key_values(index: DocumentIndex, fields: Mapping[str, Any]) -> tuple[Any, ...]:
    """Field values behind a key, for error messages."""
    values = (get_path(fields, path) for path in index.spec.paths)
    return tuple(None if v is MISSING else v for v in values)


class IndexManager:
    """Owns the secondary indexes of one store.

    Not thread-safe on its own: the store calls it under its mutation lock.
    """

    def __init__(self, max_compound_fields: int = 32, planner: str = "selectivity") -> None:
        if planner not in PLANNERS:
            raise ValueError(f"Unknown planner {planner!r}, expected one of {PLANNERS}")
        self.max_compound_fields = max_compound_fields
        self.planner = planner
        self._indexes: dict[str, DocumentIndex] = {}

    # -------------------------------------------------------------------------
    # Catalog
    # -------------------------------------------------------------------------

    def create_index(
        self,
        keys: Any,
        documents: Iterable[Document],
        *,
        unique: bool = False,
        name: str | None = None,
    ) -> tuple[str, bool]:
        """Build an index over existing documents.

        Returns:
            (index name, whether a new index was created)

        Raises:
            InvalidSpecError: Malformed keys or name.
            IndexAlreadyExistsError: Conflicting definition under the same
                name or keys.
            DuplicateKeyError: Unique index over repeated keys.
        """
        spec = IndexSpec.parse(keys)
        if len(spec.fields) > self.max_compound_fields:
            raise InvalidSpecError(
                f"Index has {len(spec.fields)} fields, maximum is {self.max_compound_fields}"
            )
        if name is not None and (not isinstance(name, str) or not name):
            raise InvalidSpecError(f"Index name must be a non-empty string, got {name!r}")
        name = name or spec.default_name

        existing = self._indexes.get(name)
        if existing is not None:
            if existing.spec.signature == spec.signature and existing.unique == unique:
                return name, False
            raise IndexAlreadyExistsError(name, "same name, different definition")
        for other in self._indexes.values():
            if other.spec.signature == spec.signature:
                raise IndexAlreadyExistsError(
                    other.name, f"same keys requested under the name '{name}'"
                )

        index = DocumentIndex(name, spec, unique=unique)
        seen: dict[IndexKey, DocumentId] = {}
        staged: list[tuple[DocumentId, frozenset[IndexKey]]] = []
        for document in documents:
            doc_keys = index.keys_for(document.fields)
            if unique:
                for key in doc_keys:
                    holder = seen.setdefault(key, document.doc_id)
                    if holder != document.doc_id:
                        raise DuplicateKeyError(name, _key_values(index, document.fields))
            staged.append((document.doc_id, doc_keys))
        for doc_id, doc_keys in staged:
            index.add(doc_id, doc_keys)

        self._indexes[name] = index
        logger.info(
            "index_created",
            index_name=name,
            keys=list(spec.signature),
            unique=unique,
            documents=len(staged),
        )
        return name, True

    def drop_index(self, name: str) -> bool:
        index = self._indexes.pop(name, None)
        if index is None:
            return False
        logger.info("index_dropped", index_name=name)
        return True

    def get_index(self, name: str) -> DocumentIndex | None:
        return self._indexes.get(name)

    def list_indexes(self) -> list[IndexInfo]:
        return [
            IndexInfo(
                name=index.name,
                keys=index.spec.signature,
                unique=index.unique,
                multikey=any(index.is_multikey(i) for i in range(len(index.spec.fields))),
                num_entries=index.num_entries,
            )
            for index in self._indexes.values()
        ]

    def __len__(self) -> int:
        return len(self._indexes)

    # -------------------------------------------------------------------------
    # Maintenance
    # -------------------------------------------------------------------------

    def _check_unique(
        self, document: Document, planned: dict[str, frozenset[IndexKey]]
    ) -> None:
        for name, keys in planned.items():
            index = self._indexes[name]
            if index.conflicts(keys, document.doc_id) is not None:
                raise DuplicateKeyError(name, _key_values(index, document.fields))

    def on_insert(self, document: Document) -> None:
        """Index a new document in every index.

        Raises:
            DuplicateKeyError: Before any index is changed.
        """
        planned = {name: index.keys_for(document.fields) for name, index in self._indexes.items()}
        self._check_unique(document, planned)
        for name, keys in planned.items():
            self._indexes[name].add(document.doc_id, keys)

    def on_update(self, before: Document, after: Document) -> list[str]:
        """Re-key a document in the indexes whose key changed.

        Returns:
            Names of the indexes that were rewritten.

        Raises:
            DuplicateKeyError: Before any index is changed.
        """
        planned: dict[str, frozenset[IndexKey]] = {}
        for name, index in self._indexes.items():
            keys = index.keys_for(after.fields)
            if keys != index.keys_of(before.doc_id):
                planned[name] = keys
        self._check_unique(after, planned)
        for name, keys in planned.items():
            self._indexes[name].replace(after.doc_id, keys)
        return list(planned)

    def on_delete(self, document: Document) -> None:
        for index in self._indexes.values():
            index.remove(document.doc_id)

    # -------------------------------------------------------------------------
    # Planning
    # -------------------------------------------------------------------------

    def resolve_hint(self, hint: Any) -> DocumentIndex:
        """Find the index named or described by a hint.

        Raises:
            InvalidSpecError: No such index.
        """
        if isinstance(hint, str):
            index = self._indexes.get(hint)
            if index is None:
                raise InvalidSpecError(f"No index matches hint {hint!r}")
            return index
        signature = IndexSpec.parse(hint).signature
        for index in self._indexes.values():
            if index.spec.signature == signature:
                return index
        raise InvalidSpecError(f"No index matches hint {hint!r}")

    @staticmethod
    def usable_bounds(
        index: DocumentIndex, terms: Mapping[str, FieldBounds]
    ) -> tuple[FieldBounds, ...]:
        """Bounds on the leading index fields under the left-prefix rule."""
        bounds: list[FieldBounds] = []
        for field in index.spec.fields:
            term = terms.get(field.path)
            if term is None:
                break
            bounds.append(term)
            if not term.is_point:
                break
        return tuple(bounds)

    def choose_access_path(self, predicate: Predicate, hint: Any = None) -> AccessPath:
        terms = predicate.index_terms()
        if hint is not None:
            index = self.resolve_hint(hint)
            return IndexScan(index.name, self.usable_bounds(index, terms))
        if not terms:
            return FullScan()

        best: tuple[tuple[int, int, int], IndexScan] | None = None
        for order, index in enumerate(self._indexes.values()):
            bounds = self.usable_bounds(index, terms)
            if not bounds:
                continue
            path = IndexScan(index.name, bounds)
            if self.planner == "first_usable":
                return path
            rank = (index.count(bounds), -len(bounds), order)
            if best is None or rank < best[0]:
                best = (rank, path)
        return best[1] if best is not None else FullScan()

    def candidates(self, path: IndexScan) -> set[DocumentId]:
        """Run an index scan."""
        index = self._indexes.get(path.index_name)
        if index is None:
            raise InvalidSpecError(f"Index '{path.index_name}' was dropped")
        return index.scan(path.bounds)

    def estimate(self, path: IndexScan) -> int:
        """Candidates an index scan would yield, without running it."""
        index = self._indexes.get(path.index_name)
        if index is None:
            raise InvalidSpecError(f"Index '{path.index_name}' was dropped")
        return index.count(path.bounds)

    def get_stats(self) -> IndexStats:
        indexes = list(self._indexes.values())
        return IndexStats(
            num_indexes=len(indexes),
            total_entries=sum(i.num_entries for i in indexes),
            total_keys=sum(i.num_keys for i in indexes),
            scan_count=sum(i.scan_count for i in indexes),
            insert_count=sum(i.insert_count for i in indexes),
            delete_count=sum(i.delete_count for i in indexes),
        )
