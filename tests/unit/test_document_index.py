"""Unit tests for the ordered multikey DocumentIndex."""

from __future__ import annotations

from typing import Any

import pytest

from doc_engine.domain.services import DocumentIndex
from doc_engine.domain.value_objects import DocumentId, FieldBounds, IndexSpec


def build(keys: Any, records: list[dict[str, Any]], unique: bool = False) -> DocumentIndex:
    index = DocumentIndex("idx", IndexSpec.parse(keys), unique=unique)
    for seq, record in enumerate(records, start=1):
        index.add(DocumentId(seq), index.keys_for(record))
    return index


def ids(*seqs: int) -> set[DocumentId]:
    return {DocumentId(seq) for seq in seqs}


class TestIndexKeys:
    """Tests for key extraction."""

    @pytest.fixture
    def index(self) -> DocumentIndex:
        """A single-field index on tags."""
        return DocumentIndex("tags_1", IndexSpec.parse({"tags": 1}))

    def test_scalar(self, index: DocumentIndex) -> None:
        """A scalar produces one key."""
        assert len(index.keys_for({"tags": "classic"})) == 1

    def test_missing_keys_as_null(self, index: DocumentIndex) -> None:
        """A missing field keys the same as null."""
        assert index.keys_for({}) == index.keys_for({"tags": None})

    def test_multikey(self, index: DocumentIndex) -> None:
        """An array yields one key per element plus one for the whole array."""
        assert len(index.keys_for({"tags": ["a", "b"]})) == 3

    def test_multikey_dedupes_elements(self, index: DocumentIndex) -> None:
        """Repeated elements collapse into one key."""
        assert len(index.keys_for({"tags": ["a", "a"]})) == 2

    def test_compound_cartesian_product(self) -> None:
        """Compound keys combine every component of every field."""
        index = DocumentIndex("c", IndexSpec.parse({"a": 1, "b": 1}))

        assert len(index.keys_for({"a": [1, 2], "b": "z"})) == 3

    def test_embedded_path(self) -> None:
        """Dotted paths fan out over arrays of documents."""
        index = DocumentIndex("stars", IndexSpec.parse({"reviews.stars": 1}))

        keys = index.keys_for({"reviews": [{"stars": 5}, {"stars": 3}]})

        assert len(keys) == 2


class TestIndexScan:
    """Tests for scans over bounds."""

    @pytest.fixture
    def records(self) -> list[dict[str, Any]]:
        """Records with numeric, string and missing values."""
        return [{"a": 1}, {"a": 2}, {"a": 3}, {"a": 4}, {"a": 5}, {"a": "x"}, {}]

    def test_full_scan(self, records: list[dict[str, Any]]) -> None:
        """Empty bounds return every document."""
        index = build({"a": 1}, records)

        assert index.scan() == ids(1, 2, 3, 4, 5, 6, 7)

    def test_point(self, records: list[dict[str, Any]]) -> None:
        """Point bounds find equal keys."""
        index = build({"a": 1}, records)

        assert index.scan((FieldBounds("a", points=(2,)),)) == ids(2)
        assert index.scan((FieldBounds("a", points=(2.0, "x")),)) == ids(2, 6)

    def test_null_point_finds_missing(self, records: list[dict[str, Any]]) -> None:
        """A null point finds documents without the field."""
        index = build({"a": 1}, records)

        assert index.scan((FieldBounds("a", points=(None,)),)) == ids(7)

    @pytest.mark.parametrize("direction", [1, -1])
    def test_range(self, records: list[dict[str, Any]], direction: int) -> None:
        """Ranges respect inclusivity in either key direction."""
        index = build({"a": direction}, records)
        bounds = FieldBounds("a", lower=2, lower_inclusive=False, upper=4, upper_inclusive=True)

        assert index.scan((bounds,)) == ids(3, 4)

    @pytest.mark.parametrize("direction", [1, -1])
    def test_open_range_stays_in_type(
        self, records: list[dict[str, Any]], direction: int
    ) -> None:
        """An open range does not leak into other type classes."""
        index = build({"a": direction}, records)

        assert index.scan((FieldBounds("a", lower=3),)) == ids(3, 4, 5)
        assert index.scan((FieldBounds("a", upper=1, upper_inclusive=False),)) == set()

    def test_compound_prefix(self) -> None:
        """Point on the leading field, range on the next."""
        index = build(
            {"author": 1, "year": 1},
            [
                {"author": "T", "year": 1937},
                {"author": "T", "year": 1954},
                {"author": "O", "year": 1949},
                {"author": "T", "year": 1977},
            ],
        )
        bounds = (
            FieldBounds("author", points=("T",)),
            FieldBounds("year", lower=1940, lower_inclusive=False),
        )

        assert index.scan(bounds) == ids(2, 4)
        assert index.scan(bounds[:1]) == ids(1, 2, 4)

    def test_compound_descending_prefix(self) -> None:
        """Descending leading fields scan the same set."""
        index = build(
            {"author": -1, "year": 1},
            [{"author": "T", "year": 1}, {"author": "O", "year": 2}, {"author": "A", "year": 3}],
        )

        assert index.scan((FieldBounds("author", points=("O", "A")),)) == ids(2, 3)

    def test_multikey_range_is_relaxed(self) -> None:
        """Each side of a range may be met by a different element."""
        index = build({"a": 1}, [{"a": [6, 2]}, {"a": [4]}])
        bounds = FieldBounds("a", lower=5, lower_inclusive=False, upper=3, upper_inclusive=False)

        assert index.is_multikey(0)
        assert DocumentId(1) in index.scan((bounds,))

    def test_count_does_not_scan(self, records: list[dict[str, Any]]) -> None:
        """count() is not recorded as a scan."""
        index = build({"a": 1}, records)

        assert index.count((FieldBounds("a", lower=2),)) == 4
        assert index.scan_count == 0
        index.scan()
        assert index.scan_count == 1


class TestIndexMaintenance:
    """Tests for add, remove and replace."""

    def test_remove(self) -> None:
        """Removing a document drops its keys."""
        index = build({"a": 1}, [{"a": 1}, {"a": 1}])

        assert index.remove(DocumentId(1)) is True
        assert index.num_keys == 1
        assert index.remove(DocumentId(2)) is True
        assert index.num_keys == 0
        assert index.remove(DocumentId(2)) is False
        assert index.delete_count == 2

    def test_replace(self) -> None:
        """replace() rewrites only changed keys."""
        index = build({"a": 1}, [{"a": 1}])

        assert index.replace(DocumentId(1), index.keys_for({"a": 1})) is False
        assert index.replace(DocumentId(1), index.keys_for({"a": 2})) is True
        assert index.scan((FieldBounds("a", points=(2,)),)) == ids(1)
        assert index.scan((FieldBounds("a", points=(1,)),)) == set()

    def test_multikey_flag_clears(self) -> None:
        """The multikey flag follows the documents holding arrays."""
        index = build({"a": 1}, [{"a": [1, 2]}])

        assert index.is_multikey(0)
        index.remove(DocumentId(1))
        assert not index.is_multikey(0)

    def test_unique_conflicts(self) -> None:
        """Unique indexes report keys held by another document."""
        index = build({"a": 1}, [{"a": 1}], unique=True)
        keys = index.keys_for({"a": 1})

        assert index.conflicts(keys, DocumentId(2)) is not None
        assert index.conflicts(keys, DocumentId(1)) is None
        assert index.conflicts(index.keys_for({"a": 2}), DocumentId(2)) is None

    def test_non_unique_never_conflicts(self) -> None:
        """Non-unique indexes accept repeated keys."""
        index = build({"a": 1}, [{"a": 1}])

        assert index.conflicts(index.keys_for({"a": 1}), DocumentId(2)) is None

    def test_statistics(self) -> None:
        """Entry and key counts."""
        index = build({"a": 1}, [{"a": 1}, {"a": 1}, {"a": [2, 3]}])

        assert len(index) == 3
        assert index.num_entries == 5
        assert index.num_keys == 4
        assert index.insert_count == 3
        assert set(index.iter_ids()) == ids(1, 2, 3)
