"""Unit tests for the Index Manager."""

from __future__ import annotations

from typing import Any

import pytest

from doc_engine.domain.entities import Document
from doc_engine.domain.errors import (
    DuplicateKeyError,
    IndexAlreadyExistsError,
    InvalidSpecError,
)
from doc_engine.domain.services import IndexManager, compile_filter
from doc_engine.domain.value_objects import DocumentId, FullScan, IndexScan


def make_documents(records: list[dict[str, Any]]) -> list[Document]:
    return [Document.create(DocumentId(seq), r) for seq, r in enumerate(records, start=1)]


@pytest.fixture
def documents() -> list[Document]:
    return make_documents(
        [
            {"title": "The Hobbit", "author": "J.R.R. Tolkien", "genre": "Fantasy", "year": 1937},
            {"title": "1984", "author": "George Orwell", "genre": "Dystopian", "year": 1949},
            {"title": "Animal Farm", "author": "George Orwell", "genre": "Satire", "year": 1945},
            {"title": "The Silmarillion", "author": "J.R.R. Tolkien", "genre": "Fantasy", "year": 1977},
        ]
    )


@pytest.mark.unit
class TestIndexCatalog:
    """Tests for creating, listing and dropping indexes."""

    @pytest.fixture
    def manager(self) -> IndexManager:
        """Create an index manager for testing."""
        return IndexManager()

    def test_create_index(self, manager: IndexManager, documents: list[Document]) -> None:
        """Index names default to field_direction pairs."""
        name, created = manager.create_index({"author": 1, "year": 1}, documents)

        assert name == "author_1_year_1"
        assert created is True
        assert len(manager) == 1
        assert manager.get_index(name).num_entries == 4

    def test_create_is_idempotent(self, manager: IndexManager, documents: list[Document]) -> None:
        """Re-creating an identical index returns the existing name."""
        manager.create_index({"title": 1}, documents)

        assert manager.create_index({"title": 1}, documents) == ("title_1", False)
        assert len(manager) == 1

    def test_same_name_different_keys(
        self, manager: IndexManager, documents: list[Document]
    ) -> None:
        """A name cannot be reused for other keys."""
        manager.create_index({"title": 1}, documents, name="by_title")

        with pytest.raises(IndexAlreadyExistsError):
            manager.create_index({"author": 1}, documents, name="by_title")

    def test_same_keys_different_name(
        self, manager: IndexManager, documents: list[Document]
    ) -> None:
        """The same keys cannot be indexed twice under different names."""
        manager.create_index({"title": 1}, documents)

        with pytest.raises(IndexAlreadyExistsError):
            manager.create_index({"title": 1}, documents, name="other")

    def test_same_name_different_options(
        self, manager: IndexManager, documents: list[Document]
    ) -> None:
        """Changing uniqueness is a different definition."""
        manager.create_index({"title": 1}, documents)

        with pytest.raises(IndexAlreadyExistsError):
            manager.create_index({"title": 1}, documents, unique=True)

    def test_unique_over_duplicates(
        self, manager: IndexManager, documents: list[Document]
    ) -> None:
        """A unique index over repeated keys is not created."""
        with pytest.raises(DuplicateKeyError) as exc_info:
            manager.create_index({"author": 1}, documents, unique=True)

        assert exc_info.value.index_name == "author_1"
        assert len(manager) == 0

    def test_too_many_fields(self, documents: list[Document]) -> None:
        """Compound indexes are capped."""
        manager = IndexManager(max_compound_fields=2)

        with pytest.raises(InvalidSpecError):
            manager.create_index({"a": 1, "b": 1, "c": 1}, documents)

    def test_invalid_name(self, manager: IndexManager, documents: list[Document]) -> None:
        """Names must be non-empty strings."""
        with pytest.raises(InvalidSpecError):
            manager.create_index({"a": 1}, documents, name="")

    def test_unknown_planner(self) -> None:
        """Only known planners are accepted."""
        with pytest.raises(ValueError):
            IndexManager(planner="cost_based")

    def test_drop_and_list(self, manager: IndexManager, documents: list[Document]) -> None:
        """Dropped indexes disappear from the catalog."""
        manager.create_index({"title": 1}, documents)
        manager.create_index({"tags": 1}, documents)

        assert [info.name for info in manager.list_indexes()] == ["title_1", "tags_1"]
        assert manager.drop_index("title_1") is True
        assert manager.drop_index("title_1") is False
        assert [info.name for info in manager.list_indexes()] == ["tags_1"]

    def test_index_info(self, manager: IndexManager) -> None:
        """IndexInfo reports keys, uniqueness and multikey state."""
        docs = make_documents([{"tags": ["a", "b"]}])
        manager.create_index({"tags": 1}, docs)

        info = manager.list_indexes()[0]

        assert info.keys == (("tags", 1),)
        assert info.multikey is True
        assert info.to_dict()["key"] == {"tags": 1}


@pytest.mark.unit
class TestIndexMaintenance:
    """Tests for insert, update and delete maintenance."""

    def test_insert_checks_every_unique_index_first(self) -> None:
        """A unique violation leaves every index untouched."""
        manager = IndexManager()
        manager.create_index({"b": 1}, [])
        manager.create_index({"a": 1}, [], unique=True)
        first, second = make_documents([{"a": 1, "b": 1}, {"a": 1, "b": 2}])
        manager.on_insert(first)

        with pytest.raises(DuplicateKeyError):
            manager.on_insert(second)

        assert manager.get_index("b_1").num_entries == 1
        assert manager.get_index("a_1").num_entries == 1

    def test_update_rekeys_changed_indexes_only(self, documents: list[Document]) -> None:
        """Only indexes whose key changed are rewritten."""
        manager = IndexManager()
        manager.create_index({"title": 1}, documents)
        manager.create_index({"year": 1}, documents)
        before = documents[0]
        after = before.with_fields({**before.fields, "year": 1938})

        assert manager.on_update(before, after) == ["year_1"]
        assert manager.on_update(after, after) == []

    def test_update_unique_violation(self, documents: list[Document]) -> None:
        """Updating into a held unique key raises before any change."""
        manager = IndexManager()
        manager.create_index({"title": 1}, documents, unique=True)
        before = documents[1]
        after = before.with_fields({**before.fields, "title": "The Hobbit"})

        with pytest.raises(DuplicateKeyError):
            manager.on_update(before, after)

        path = manager.choose_access_path(compile_filter({"title": "1984"}))
        assert manager.candidates(path) == {DocumentId(2)}

    def test_delete(self, documents: list[Document]) -> None:
        """Deleted documents leave every index."""
        manager = IndexManager()
        manager.create_index({"author": 1}, documents)
        manager.on_delete(documents[0])

        assert manager.get_index("author_1").num_entries == 3


@pytest.mark.unit
class TestAccessPathSelection:
    """Tests for choose_access_path."""

    @pytest.fixture
    def manager(self, documents: list[Document]) -> IndexManager:
        """Manager with a genre index, a title index and a compound index."""
        manager = IndexManager()
        manager.create_index({"genre": 1}, documents)
        manager.create_index({"title": 1}, documents)
        manager.create_index({"author": 1, "year": 1}, documents)
        return manager

    def test_no_terms(self, manager: IndexManager) -> None:
        """Filters without indexable terms scan the collection."""
        assert isinstance(manager.choose_access_path(compile_filter({})), FullScan)
        assert isinstance(
            manager.choose_access_path(compile_filter({"genre": {"$ne": "Fantasy"}})), FullScan
        )

    def test_left_prefix_rule(self, manager: IndexManager) -> None:
        """A compound index needs its leading field."""
        path = manager.choose_access_path(compile_filter({"year": {"$gt": 1940}}))

        assert isinstance(path, FullScan)

    def test_leading_field(self, manager: IndexManager) -> None:
        """The leading field alone makes an index usable."""
        path = manager.choose_access_path(compile_filter({"author": "George Orwell"}))

        assert isinstance(path, IndexScan)
        assert path.index_name == "author_1_year_1"
        assert len(path.bounds) == 1

    def test_range_closes_prefix(self, manager: IndexManager) -> None:
        """Point terms extend the prefix; a range ends it."""
        path = manager.choose_access_path(
            compile_filter({"author": "George Orwell", "year": {"$gt": 1946}})
        )

        assert [b.path for b in path.bounds] == ["author", "year"]
        assert manager.candidates(path) == {DocumentId(2)}

    def test_selectivity(self, manager: IndexManager) -> None:
        """The index yielding fewer candidates wins."""
        path = manager.choose_access_path(
            compile_filter({"genre": "Fantasy", "title": "The Hobbit"})
        )

        assert path.index_name == "title_1"

    def test_first_usable(self, documents: list[Document]) -> None:
        """first_usable takes the earliest created usable index."""
        manager = IndexManager(planner="first_usable")
        manager.create_index({"genre": 1}, documents)
        manager.create_index({"title": 1}, documents)

        path = manager.choose_access_path(
            compile_filter({"genre": "Fantasy", "title": "The Hobbit"})
        )

        assert path.index_name == "genre_1"

    def test_tie_prefers_longer_prefix(self) -> None:
        """Equal candidate counts go to the longer usable prefix."""
        docs = make_documents([{"author": "A", "year": 1}])
        manager = IndexManager()
        manager.create_index({"author": 1}, docs)
        manager.create_index({"author": 1, "year": 1}, docs)

        path = manager.choose_access_path(compile_filter({"author": "A", "year": 1}))

        assert path.index_name == "author_1_year_1"

    def test_tie_prefers_creation_order(self) -> None:
        """Otherwise the earlier index wins."""
        docs = make_documents([{"a": 1, "b": 1}])
        manager = IndexManager()
        manager.create_index({"b": 1}, docs)
        manager.create_index({"a": 1}, docs)

        path = manager.choose_access_path(compile_filter({"a": 1, "b": 1}))

        assert path.index_name == "b_1"

    def test_hint_by_name_and_keys(self, manager: IndexManager) -> None:
        """Hints force an index even without usable terms."""
        by_name = manager.choose_access_path(compile_filter({"year": 1949}), hint="title_1")
        by_keys = manager.choose_access_path(compile_filter({}), hint={"genre": 1})

        assert by_name == IndexScan("title_1", ())
        assert by_keys.index_name == "genre_1"
        assert len(manager.candidates(by_name)) == 4

    def test_unknown_hint(self, manager: IndexManager) -> None:
        """Hints must name an existing index."""
        with pytest.raises(InvalidSpecError):
            manager.choose_access_path(compile_filter({}), hint="missing_1")
        with pytest.raises(InvalidSpecError):
            manager.choose_access_path(compile_filter({}), hint={"publisher": 1})

    def test_estimate_and_stats(self, manager: IndexManager) -> None:
        """estimate() does not count as a scan; candidates() does."""
        path = manager.choose_access_path(compile_filter({"genre": "Fantasy"}))

        assert manager.estimate(path) == 2
        assert manager.get_stats().scan_count == 0
        manager.candidates(path)
        stats = manager.get_stats()
        assert stats.scan_count == 1
        assert stats.num_indexes == 3
        assert stats.total_entries == 12

    def test_dropped_index_path(self, manager: IndexManager) -> None:
        """A path to a dropped index is rejected."""
        path = manager.choose_access_path(compile_filter({"genre": "Fantasy"}))
        manager.drop_index(path.index_name)

        with pytest.raises(InvalidSpecError):
            manager.candidates(path)
