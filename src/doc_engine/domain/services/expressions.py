"""Aggregation expressions.

Expressions compute values from a record inside Project and Group
stages:

    "$published_year"                       field reference (dotted paths allowed)
    {"$subtract": ["$a", {"$mod": ["$a", 10]}]}
    {"$literal": "$not-a-reference"}        escaped literal
    {"genre": "$genre", "year": "$year"}    embedded document of expressions
    42, "text", True, None                  literals

Arithmetic over a missing or non-numeric operand raises TypeMismatchError.
"""

from __future__ import annotations

import math
from abc import ABC, abstractmethod
from collections.abc import Mapping
from functools import reduce
from typing import Any

from doc_engine.domain.errors import InvalidSpecError, TypeMismatchError
from doc_engine.domain.value_objects import MISSING, classify, get_path, is_number


class Expression(ABC):
    """A compiled expression."""

    @abstractmethod
    def evaluate(self, record: Mapping[str, Any]) -> Any:
        """Evaluate against a record. May return MISSING."""
        ...


class FieldRef(Expression):
    def __init__(self, path: str) -> None:
        self.path = path

    def evaluate(self, record: Mapping[str, Any]) -> Any:
        return get_path(record, self.path)

    def __repr__(self) -> str:
        return f"FieldRef({self.path!r})"


class Literal(Expression):
    def __init__(self, value: Any) -> None:
        self.value = value

    def evaluate(self, record: Mapping[str, Any]) -> Any:
        return self.value

    def __repr__(self) -> str:
        return f"Literal({self.value!r})"


class DocumentExpr(Expression):
    def __init__(self, fields: dict[str, Expression]) -> None:
        self.fields = fields

    def evaluate(self, record: Mapping[str, Any]) -> Any:
        result: dict[str, Any] = {}
        for name, expr in self.fields.items():
            value = expr.evaluate(record)
            if value is not MISSING:
                result[name] = value
        return result


class ArrayExpr(Expression):
    def __init__(self, items: list[Expression]) -> None:
        self.items = items

    def evaluate(self, record: Mapping[str, Any]) -> Any:
        return [None if v is MISSING else v for v in (i.evaluate(record) for i in self.items)]


def _mod(dividend: float, divisor: float) -> float:
    # Result takes the sign of the dividend.
    result = math.fmod(dividend, divisor)
    if isinstance(dividend, int) and isinstance(divisor, int):
        return int(result)
    return result


def _divide(dividend: float, divisor: float) -> float:
    return dividend / divisor


_ARITHMETIC: dict[str, tuple[int | None, Any]] = {
    # operator: (arity or None for n-ary, function)
    "$add": (None, lambda values: sum(values)),
    "$multiply": (None, lambda values: reduce(lambda a, b: a * b, values, 1)),
    "$subtract": (2, lambda values: values[0] - values[1]),
    "$divide": (2, lambda values: _divide(values[0], values[1])),
    "$mod": (2, lambda values: _mod(values[0], values[1])),
}


class Arithmetic(Expression):
    def __init__(self, op: str, operands: list[Expression]) -> None:
        arity, function = _ARITHMETIC[op]
        if arity is not None and len(operands) != arity:
            raise InvalidSpecError(f"{op} takes exactly {arity} arguments, got {len(operands)}")
        if arity is None and not operands:
            raise InvalidSpecError(f"{op} requires at least one argument")
        self.op = op
        self.operands = operands
        self._function = function

    def evaluate(self, record: Mapping[str, Any]) -> Any:
        values = []
        for operand in self.operands:
            value = operand.evaluate(record)
            if not is_number(value):
                kind = "missing" if value is MISSING else classify(value).name.lower()
                raise TypeMismatchError(
                    f"{self.op} only supports numeric operands, got {kind} ({operand!r})",
                    operator=self.op,
                )
            values.append(value)
        if self.op in ("$divide", "$mod") and values[1] == 0:
            raise TypeMismatchError(f"{self.op} by zero", operator=self.op)
        return self._function(values)

    def __repr__(self) -> str:
        return f"Arithmetic({self.op!r}, {self.operands!r})"


def compile_expression(spec: Any) -> Expression:
    """Compile an expression specification.

    Raises:
        InvalidSpecError: On unknown operators or malformed arguments.
    """
    if isinstance(spec, Expression):
        return spec
    if isinstance(spec, str) and spec.startswith("$"):
        path = spec[1:]
        if not path or path.startswith("$"):
            raise InvalidSpecError(f"Invalid field reference: {spec!r}")
        return FieldRef(path)
    if isinstance(spec, Mapping):
        keys = list(spec.keys())
        if keys and all(isinstance(k, str) and k.startswith("$") for k in keys):
            if len(keys) != 1:
                raise InvalidSpecError(f"Expression must have exactly one operator: {keys}")
            return _compile_operator(keys[0], spec[keys[0]])
        if any(isinstance(k, str) and k.startswith("$") for k in keys):
            raise InvalidSpecError(f"Cannot mix operators and fields in expression: {keys}")
        return DocumentExpr({k: compile_expression(v) for k, v in spec.items()})
    if isinstance(spec, (list, tuple)):
        return ArrayExpr([compile_expression(item) for item in spec])
    classify(spec)
    return Literal(spec)


def _compile_operator(op: str, args: Any) -> Expression:
    if op == "$literal":
        return Literal(args)
    if op not in _ARITHMETIC:
        raise InvalidSpecError(f"Unknown expression operator: {op}")
    if not isinstance(args, (list, tuple)):
        args = [args]
    return Arithmetic(op, [compile_expression(a) for a in args])
