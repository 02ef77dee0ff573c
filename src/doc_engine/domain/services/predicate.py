"""Predicate evaluator for MongoDB-style filters.

A filter is compiled once into a tree of predicates and then evaluated
against each candidate record. Evaluation is pure and never raises:
missing fields and type mismatches simply do not match.

Supported operators:
    Fields:   $eq $ne $gt $gte $lt $lte $in $nin $exists $regex $size $not
    Logical:  $and $or $nor (top level or nested)

Matching rules:
    - Multiple fields in one filter are AND-ed.
    - Comparisons only match values of the same type class.
    - ``{field: None}`` matches null and missing fields.
    - An array field matches when the array itself or any element does.
    - Dotted paths traverse embedded documents and arrays of documents.
"""

from __future__ import annotations

import operator
import re
from abc import ABC, abstractmethod
from collections.abc import Callable, Iterator, Mapping
from typing import Any

from doc_engine.domain.errors import InvalidSpecError
from doc_engine.domain.value_objects import (
    FieldBounds,
    classify,
    compare,
    resolve_path,
    typed_equals,
)


def _candidates(values: list[Any]) -> Iterator[Any]:
    """Each resolved value, followed by its elements when it is an array."""
    for value in values:
        yield value
        if isinstance(value, list):
            yield from value


# =============================================================================
# Field conditions
# =============================================================================


class Condition(ABC):
    """A test over all values resolved at one path."""

    @abstractmethod
    def test(self, values: list[Any]) -> bool:
        ...

    def bounds(self, path: str) -> FieldBounds | None:
        """Index bounds implied by this condition, if any."""
        return None


class EqualsCondition(Condition):
    def __init__(self, operand: Any) -> None:
        self.operand = operand

    def test(self, values: list[Any]) -> bool:
        if not values:
            return self.operand is None
        return any(typed_equals(v, self.operand) for v in _candidates(values))

    def bounds(self, path: str) -> FieldBounds | None:
        return FieldBounds(path, points=(self.operand,))


class NotEqualsCondition(Condition):
    def __init__(self, operand: Any) -> None:
        self._equals = EqualsCondition(operand)

    def test(self, values: list[Any]) -> bool:
        return not self._equals.test(values)


_RANGE_OPS: dict[str, Callable[[int, int], bool]] = {
    "$gt": operator.gt,
    "$gte": operator.ge,
    "$lt": operator.lt,
    "$lte": operator.le,
}


class RangeCondition(Condition):
    def __init__(self, op: str, operand: Any) -> None:
        self.op = op
        self.operand = operand
        self._check = _RANGE_OPS[op]

    def test(self, values: list[Any]) -> bool:
        for value in _candidates(values):
            order = compare(value, self.operand)
            if order is not None and self._check(order, 0):
                return True
        return False

    def bounds(self, path: str) -> FieldBounds | None:
        if self.op in ("$gt", "$gte"):
            return FieldBounds(path, lower=self.operand, lower_inclusive=self.op == "$gte")
        return FieldBounds(path, upper=self.operand, upper_inclusive=self.op == "$lte")


class InCondition(Condition):
    def __init__(self, operands: tuple[Any, ...]) -> None:
        self.operands = operands
        self._equals = [EqualsCondition(o) for o in operands]

    def test(self, values: list[Any]) -> bool:
        return any(eq.test(values) for eq in self._equals)

    def bounds(self, path: str) -> FieldBounds | None:
        return FieldBounds(path, points=self.operands)


class NotInCondition(Condition):
    def __init__(self, operands: tuple[Any, ...]) -> None:
        self._in = InCondition(operands)

    def test(self, values: list[Any]) -> bool:
        return not self._in.test(values)


class ExistsCondition(Condition):
    def __init__(self, expected: bool) -> None:
        self.expected = expected

    def test(self, values: list[Any]) -> bool:
        return bool(values) == self.expected


class RegexCondition(Condition):
    def __init__(self, pattern: re.Pattern[str]) -> None:
        self.pattern = pattern

    def test(self, values: list[Any]) -> bool:
        return any(
            isinstance(v, str) and self.pattern.search(v) is not None
            for v in _candidates(values)
        )


class SizeCondition(Condition):
    def __init__(self, size: int) -> None:
        self.size = size

    def test(self, values: list[Any]) -> bool:
        return any(isinstance(v, list) and len(v) == self.size for v in values)


class NotCondition(Condition):
    def __init__(self, conditions: list[Condition]) -> None:
        self.conditions = conditions

    def test(self, values: list[Any]) -> bool:
        return not all(c.test(values) for c in self.conditions)


# =============================================================================
# Predicates
# =============================================================================


class Predicate(ABC):
    """Compiled filter over a whole record."""

    @abstractmethod
    def matches(self, fields: Mapping[str, Any]) -> bool:
        """Return True if the record satisfies the filter."""
        ...

    def index_terms(self) -> dict[str, FieldBounds]:
        """Bounds per path that every matching record must satisfy.

        Only conjunctive terms are reported; anything under $or, $nor or
        $not is ignored.
        """
        return {}


class MatchAll(Predicate):
    def matches(self, fields: Mapping[str, Any]) -> bool:
        return True


class FieldPredicate(Predicate):
    def __init__(self, path: str, conditions: list[Condition]) -> None:
        self.path = path
        self.conditions = conditions

    def matches(self, fields: Mapping[str, Any]) -> bool:
        values = resolve_path(fields, self.path)
        return all(c.test(values) for c in self.conditions)

    def index_terms(self) -> dict[str, FieldBounds]:
        merged: FieldBounds | None = None
        for condition in self.conditions:
            bounds = condition.bounds(self.path)
            if bounds is None:
                continue
            merged = bounds if merged is None else merged.tighten(bounds)
        return {self.path: merged} if merged is not None else {}


class AndPredicate(Predicate):
    def __init__(self, children: list[Predicate]) -> None:
        self.children = children

    def matches(self, fields: Mapping[str, Any]) -> bool:
        return all(child.matches(fields) for child in self.children)

    def index_terms(self) -> dict[str, FieldBounds]:
        terms: dict[str, FieldBounds] = {}
        for child in self.children:
            for path, bounds in child.index_terms().items():
                terms[path] = terms[path].tighten(bounds) if path in terms else bounds
        return terms


class OrPredicate(Predicate):
    def __init__(self, children: list[Predicate]) -> None:
        self.children = children

    def matches(self, fields: Mapping[str, Any]) -> bool:
        return any(child.matches(fields) for child in self.children)


class NorPredicate(Predicate):
    def __init__(self, children: list[Predicate]) -> None:
        self.children = children

    def matches(self, fields: Mapping[str, Any]) -> bool:
        return not any(child.matches(fields) for child in self.children)


# =============================================================================
# Compilation
# =============================================================================

_LOGICAL = {"$and": AndPredicate, "$or": OrPredicate, "$nor": NorPredicate}
_REGEX_FLAGS = {"i": re.IGNORECASE, "m": re.MULTILINE, "s": re.DOTALL, "x": re.VERBOSE}


def compile_filter(spec: Mapping[str, Any] | Predicate | None) -> Predicate:
    """Compile a filter specification.

    Args:
        spec: Filter in MongoDB shape, an already compiled Predicate, or None
            (matches everything).

    Returns:
        The compiled predicate.

    Raises:
        InvalidSpecError: On unknown operators or malformed operands.
    """
    if spec is None:
        return MatchAll()
    if isinstance(spec, Predicate):
        return spec
    if not isinstance(spec, Mapping):
        raise InvalidSpecError(f"Filter must be a mapping, got {type(spec).__name__}")

    children: list[Predicate] = []
    for key, value in spec.items():
        if not isinstance(key, str) or not key:
            raise InvalidSpecError(f"Invalid filter key: {key!r}")
        if key.startswith("$"):
            children.append(_compile_logical(key, value))
        else:
            children.append(FieldPredicate(key, _compile_conditions(key, value)))

    if not children:
        return MatchAll()
    if len(children) == 1:
        return children[0]
    return AndPredicate(children)


def _compile_logical(op: str, clauses: Any) -> Predicate:
    combinator = _LOGICAL.get(op)
    if combinator is None:
        raise InvalidSpecError(f"Unknown top-level operator: {op}")
    if not isinstance(clauses, (list, tuple)) or not clauses:
        raise InvalidSpecError(f"{op} requires a non-empty list of filters")
    compiled = []
    for clause in clauses:
        if not isinstance(clause, Mapping):
            raise InvalidSpecError(f"{op} entries must be filters, got {clause!r}")
        compiled.append(compile_filter(clause))
    return combinator(compiled)


def _is_operator_doc(value: Any, path: str) -> bool:
    if not isinstance(value, Mapping) or not value:
        return False
    dollar = [k.startswith("$") for k in value]
    if any(dollar) and not all(dollar):
        raise InvalidSpecError(f"Cannot mix operators and fields in condition on '{path}'")
    return all(dollar)


def _operand(value: Any, op: str, path: str) -> Any:
    try:
        classify(value)
    except InvalidSpecError as e:
        raise InvalidSpecError(f"{op} on '{path}': {e}") from e
    return value


def _compile_conditions(path: str, value: Any) -> list[Condition]:
    if not _is_operator_doc(value, path):
        return [EqualsCondition(_operand(value, "$eq", path))]

    conditions: list[Condition] = []
    options = value.get("$options")
    if options is not None and "$regex" not in value:
        raise InvalidSpecError(f"$options without $regex on '{path}'")
    for op, arg in value.items():
        if op == "$options":
            continue
        if op == "$regex":
            conditions.append(_compile_regex(path, arg, options))
        else:
            conditions.append(_compile_operator(path, op, arg))
    return conditions


def _compile_operator(path: str, op: str, arg: Any) -> Condition:
    if op == "$eq":
        return EqualsCondition(_operand(arg, op, path))
    if op == "$ne":
        return NotEqualsCondition(_operand(arg, op, path))
    if op in _RANGE_OPS:
        return RangeCondition(op, _operand(arg, op, path))
    if op in ("$in", "$nin"):
        if not isinstance(arg, (list, tuple)):
            raise InvalidSpecError(f"{op} on '{path}' requires a list")
        operands = tuple(_operand(a, op, path) for a in arg)
        return InCondition(operands) if op == "$in" else NotInCondition(operands)
    if op == "$exists":
        return ExistsCondition(bool(arg))
    if op == "$size":
        if isinstance(arg, bool) or not isinstance(arg, int) or arg < 0:
            raise InvalidSpecError(f"$size on '{path}' requires a non-negative integer")
        return SizeCondition(arg)
    if op == "$not":
        if isinstance(arg, Mapping) and arg:
            return NotCondition(_compile_conditions(path, arg))
        if isinstance(arg, str):
            return NotCondition([_compile_regex(path, arg, None)])
        raise InvalidSpecError(f"$not on '{path}' requires an operator document")
    raise InvalidSpecError(f"Unknown operator {op} on '{path}'")


def _compile_regex(path: str, pattern: Any, options: Any) -> Condition:
    if isinstance(pattern, re.Pattern):
        return RegexCondition(pattern)
    if not isinstance(pattern, str):
        raise InvalidSpecError(f"$regex on '{path}' requires a string pattern")
    flags = 0
    for letter in options or "":
        if letter not in _REGEX_FLAGS:
            raise InvalidSpecError(f"Unknown $regex option {letter!r} on '{path}'")
        flags |= _REGEX_FLAGS[letter]
    try:
        return RegexCondition(re.compile(pattern, flags))
    except re.error as e:
        raise InvalidSpecError(f"Invalid $regex on '{path}': {e}") from e
