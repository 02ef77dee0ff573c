"""Update operators for update_one.

    {"$set": {"publisher": "Allen & Unwin", "stats.reads": 10}}
    {"$unset": {"subtitle": ""}}
    {"$inc": {"stock": -1}}

A mutation is compiled once and applied to a copy of a document's
fields, so a failure halfway through leaves the stored version intact.
"""

from __future__ import annotations

import copy
from collections.abc import Mapping
from dataclasses import dataclass
from typing import Any

from doc_engine.domain.errors import InvalidSpecError, TypeMismatchError
from doc_engine.domain.value_objects import (
    ID_FIELD,
    MISSING,
    identical,
    is_number,
    to_storable,
)

OPERATORS = ("$set", "$unset", "$inc")


@dataclass(frozen=True)
class FieldUpdate:
    """One operator applied to one path."""

    op: str
    path: str
    value: Any = None


def _check_path(op: str, path: Any) -> str:
    if not isinstance(path, str) or not path:
        raise InvalidSpecError(f"{op} field must be a non-empty string, got {path!r}")
    parts = path.split(".")
    if parts[0] == ID_FIELD:
        raise InvalidSpecError(f"'{ID_FIELD}' is immutable")
    for part in parts:
        if not part or part.startswith("$"):
            raise InvalidSpecError(f"Invalid field path {path!r} in {op}")
    return path


def _overlaps(left: str, right: str) -> bool:
    return left == right or left.startswith(right + ".") or right.startswith(left + ".")


@dataclass(frozen=True)
class Mutation:
    """A compiled update."""

    updates: tuple[FieldUpdate, ...]

    def apply(self, fields: Mapping[str, Any]) -> tuple[dict[str, Any], bool]:
        """Apply the update to a copy of ``fields``.

        Returns:
            (new fields, whether any value changed)

        Raises:
            TypeMismatchError: ``$inc`` over a non-number, or a path that
                runs through a non-document value.
        """
        result = copy.deepcopy(dict(fields))
        changed = False
        for update in self.updates:
            if update.op == "$set":
                changed |= _set(result, update.path, copy.deepcopy(update.value))
            elif update.op == "$unset":
                changed |= _unset(result, update.path)
            else:
                changed |= _inc(result, update.path, update.value)
        return result, changed


def compile_mutation(spec: Mapping[str, Any] | Mutation) -> Mutation:
    """Compile an update document.

    Raises:
        InvalidSpecError: Unknown or missing operators, conflicting paths,
            writes to ``_id``, or unstorable values.
    """
    if isinstance(spec, Mutation):
        return spec
    if not isinstance(spec, Mapping) or not spec:
        raise InvalidSpecError("Update must be a non-empty mapping of operators")

    updates: list[FieldUpdate] = []
    for op, arguments in spec.items():
        if op not in OPERATORS:
            raise InvalidSpecError(
                f"Unknown update operator {op!r}; supported: {', '.join(OPERATORS)}"
            )
        if not isinstance(arguments, Mapping) or not arguments:
            raise InvalidSpecError(f"{op} requires a non-empty mapping of fields")
        for path, value in arguments.items():
            path = _check_path(op, path)
            if op == "$set":
                value = to_storable(value, path)
            elif op == "$inc" and not is_number(value):
                raise InvalidSpecError(f"$inc of '{path}' requires a number, got {value!r}")
            for previous in updates:
                if _overlaps(previous.path, path):
                    raise InvalidSpecError(
                        f"Updating '{path}' would conflict with '{previous.path}'"
                    )
            updates.append(FieldUpdate(op, path, value))
    return Mutation(tuple(updates))


def _parent(root: dict[str, Any], path: str, create: bool) -> tuple[Any, str]:
    """Walk to the container holding the last path segment.

    Returns (container, last segment); the container is MISSING when an
    intermediate is absent and ``create`` is False.
    """
    parts = path.split(".")
    current: Any = root
    for depth, part in enumerate(parts[:-1]):
        if isinstance(current, dict):
            if part not in current:
                if not create:
                    return MISSING, parts[-1]
                current[part] = {}
            current = current[part]
        elif isinstance(current, list) and part.isdigit():
            index = int(part)
            if index >= len(current):
                if not create:
                    return MISSING, parts[-1]
                current.extend([None] * (index + 1 - len(current)))
            if current[index] is None and create:
                current[index] = {}
            current = current[index]
        else:
            if not create:
                return MISSING, parts[-1]
            traversed = ".".join(parts[: depth + 1])
            raise TypeMismatchError(
                f"Cannot create field '{part}' in element {{{traversed}: {current!r}}}"
            )
    if not isinstance(current, (dict, list)):
        if not create:
            return MISSING, parts[-1]
        raise TypeMismatchError(f"Cannot create field '{parts[-1]}' in {current!r}")
    return current, parts[-1]


def _read(container: Any, key: str) -> Any:
    if isinstance(container, dict):
        return container.get(key, MISSING)
    if isinstance(container, list) and key.isdigit() and int(key) < len(container):
        return container[int(key)]
    return MISSING


def _write(container: Any, key: str, value: Any) -> None:
    if isinstance(container, dict):
        container[key] = value
        return
    if not key.isdigit():
        raise TypeMismatchError(f"Cannot create field '{key}' in array {container!r}")
    index = int(key)
    if index >= len(container):
        container.extend([None] * (index + 1 - len(container)))
    container[index] = value


def _set(root: dict[str, Any], path: str, value: Any) -> bool:
    container, key = _parent(root, path, create=True)
    if identical(_read(container, key), value):
        return False
    _write(container, key, value)
    return True


def _unset(root: dict[str, Any], path: str) -> bool:
    container, key = _parent(root, path, create=False)
    if container is MISSING or _read(container, key) is MISSING:
        return False
    if isinstance(container, dict):
        del container[key]
        return True
    # Array elements are nulled, not removed.
    if container[int(key)] is None:
        return False
    container[int(key)] = None
    return True


def _inc(root: dict[str, Any], path: str, amount: float) -> bool:
    container, key = _parent(root, path, create=True)
    current = _read(container, key)
    if current is MISSING:
        _write(container, key, amount)
        return True
    if not is_number(current):
        raise TypeMismatchError(
            f"Cannot apply $inc to a value of non-numeric type at '{path}': {current!r}",
            operator="$inc",
        )
    updated = current + amount
    if identical(current, updated):
        return False
    _write(container, key, updated)
    return True
