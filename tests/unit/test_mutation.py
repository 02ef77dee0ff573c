"""Unit tests for update operators."""

from __future__ import annotations

from typing import Any

import pytest

from doc_engine.domain.errors import InvalidSpecError, TypeMismatchError
from doc_engine.domain.services import compile_mutation


def apply(spec: dict[str, Any], fields: dict[str, Any]) -> tuple[dict[str, Any], bool]:
    return compile_mutation(spec).apply(fields)


@pytest.mark.unit
class TestSet:
    """Tests for $set."""

    def test_set_existing(self) -> None:
        """$set replaces a value."""
        result, changed = apply({"$set": {"price": 24.99}}, {"_id": 1, "price": 14.99})

        assert changed is True
        assert result == {"_id": 1, "price": 24.99}

    def test_set_same_value_is_noop(self) -> None:
        """Setting the same value and type changes nothing."""
        _, changed = apply({"$set": {"price": 24.99}}, {"price": 24.99})

        assert changed is False

    def test_set_different_type_changes(self) -> None:
        """25 and 25.0 are different stored values."""
        result, changed = apply({"$set": {"price": 25.0}}, {"price": 25})

        assert changed is True
        assert isinstance(result["price"], float)

    def test_set_creates_nested_path(self) -> None:
        """Missing intermediate documents are created."""
        result, _ = apply({"$set": {"stats.reads": 10}}, {"title": "x"})

        assert result == {"title": "x", "stats": {"reads": 10}}

    def test_set_array_position(self) -> None:
        """Numeric segments write array positions, padding with null."""
        result, _ = apply({"$set": {"tags.1": "b", "scores.3": 9}}, {"tags": ["a", "x"], "scores": [1]})

        assert result["tags"] == ["a", "b"]
        assert result["scores"] == [1, None, None, 9]

    def test_set_through_scalar(self) -> None:
        """A path cannot run through a scalar."""
        with pytest.raises(TypeMismatchError):
            apply({"$set": {"price.amount": 1}}, {"price": 5})

    def test_source_untouched(self) -> None:
        """The input fields are never modified."""
        fields = {"stats": {"reads": 1}}

        apply({"$set": {"stats.reads": 2}}, fields)

        assert fields == {"stats": {"reads": 1}}

    def test_value_is_copied(self) -> None:
        """Later changes to the update value do not leak in."""
        mutation = compile_mutation({"$set": {"tags": ["a"]}})
        result, _ = mutation.apply({})
        result["tags"].append("b")

        again, _ = mutation.apply({})

        assert again["tags"] == ["a"]


@pytest.mark.unit
class TestUnset:
    """Tests for $unset."""

    def test_unset_removes(self) -> None:
        """$unset removes the field."""
        result, changed = apply({"$unset": {"subtitle": ""}}, {"title": "x", "subtitle": "y"})

        assert changed is True
        assert result == {"title": "x"}

    def test_unset_missing_is_noop(self) -> None:
        """Unsetting an absent field changes nothing."""
        _, changed = apply({"$unset": {"subtitle": ""}}, {"title": "x"})

        assert changed is False

    def test_unset_through_scalar_is_noop(self) -> None:
        """Paths through scalars are simply absent."""
        _, changed = apply({"$unset": {"price.amount": ""}}, {"price": 5})

        assert changed is False

    def test_unset_array_element_nulls(self) -> None:
        """Array elements are nulled, keeping positions."""
        result, changed = apply({"$unset": {"tags.0": ""}}, {"tags": ["a", "b"]})

        assert changed is True
        assert result["tags"] == [None, "b"]


@pytest.mark.unit
class TestInc:
    """Tests for $inc."""

    def test_inc(self) -> None:
        """$inc adds to a number."""
        result, changed = apply({"$inc": {"stock": -1}}, {"stock": 5})

        assert changed is True
        assert result["stock"] == 4

    def test_inc_missing_sets(self) -> None:
        """$inc on a missing field sets the amount."""
        result, _ = apply({"$inc": {"stats.reads": 1}}, {})

        assert result == {"stats": {"reads": 1}}

    def test_inc_zero_is_noop(self) -> None:
        """Adding zero changes nothing."""
        _, changed = apply({"$inc": {"stock": 0}}, {"stock": 5})

        assert changed is False

    def test_inc_non_number(self) -> None:
        """$inc over a non-number raises TypeMismatchError."""
        with pytest.raises(TypeMismatchError) as exc_info:
            apply({"$inc": {"title": 1}}, {"title": "The Hobbit"})

        assert exc_info.value.operator == "$inc"

    def test_inc_boolean(self) -> None:
        """Booleans are not numbers."""
        with pytest.raises(TypeMismatchError):
            apply({"$inc": {"in_stock": 1}}, {"in_stock": True})


@pytest.mark.unit
class TestCompile:
    """Tests for compile_mutation errors."""

    @pytest.mark.parametrize(
        "spec",
        [
            {},
            {"$push": {"tags": "x"}},
            {"$set": 5},
            {"$set": {}},
            {"$set": {"_id": 2}},
            {"$unset": {"_id.seq": ""}},
            {"$set": {"a..b": 1}},
            {"$set": {"a.$b": 1}},
            {"$set": {"": 1}},
            {"$set": {"a": object()}},
            {"$set": {"a": {"$x": 1}}},
            {"$inc": {"a": "1"}},
            {"$inc": {"a": True}},
            {"$set": {"a": 1}, "$inc": {"a": 1}},
            {"$set": {"a": 1, "a.b": 2}},
            {"$set": {"a.b": 1}, "$unset": {"a": ""}},
        ],
    )
    def test_invalid(self, spec: Any) -> None:
        """InvalidSpecError is raised."""
        with pytest.raises(InvalidSpecError):
            compile_mutation(spec)

    def test_non_mapping(self) -> None:
        """Updates must be mappings."""
        with pytest.raises(InvalidSpecError):
            compile_mutation([("$set", {"a": 1})])

    def test_operators_apply_in_order(self) -> None:
        """Several operators in one update all apply."""
        result, changed = apply(
            {"$set": {"price": 9.99}, "$unset": {"old": ""}, "$inc": {"stock": 2}},
            {"price": 1.0, "old": True, "stock": 1},
        )

        assert changed is True
        assert result == {"price": 9.99, "stock": 3}
