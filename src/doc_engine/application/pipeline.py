"""Aggregation Pipeline Engine.

A pipeline is an ordered list of stages from a closed set, each
transforming a stream of records into another stream:

    Project  {"$project": {"title": 1, "decade": {"$subtract": [...]}}}
    Group    {"$group": {"_id": "$genre", "avg_pages": {"$avg": "$pages"}}}
    Sort     {"$sort": {"avg_pages": -1}}
    Limit    {"$limit": 5}

Stages run strictly in the given order. A record whose expressions
raise TypeMismatchError is dropped from the stream, logged and counted;
the rest of the pipeline carries on.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from collections.abc import Iterable, Iterator, Mapping, Sequence
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any

from doc_engine.domain.errors import InvalidSpecError, TypeMismatchError
from doc_engine.domain.services import Expression, compile_expression
from doc_engine.domain.value_objects import (
    ID_FIELD,
    MISSING,
    CancellationToken,
    Projection,
    ProjectionMode,
    SortSpec,
    is_number,
    sort_key,
)
from doc_engine.infrastructure.logging import get_logger

if TYPE_CHECKING:
    from doc_engine.infrastructure.metrics import MetricsRegistry

logger = get_logger(__name__)


@dataclass
class StageContext:
    """Per-run state shared by all stages."""

    cancel_token: CancellationToken | None = None
    metrics: MetricsRegistry | None = None
    dropped: int = 0

    def check(self) -> None:
        if self.cancel_token is not None:
            self.cancel_token.raise_if_cancelled()

    def drop(self, stage: str, error: TypeMismatchError, record: Mapping[str, Any]) -> None:
        """Record that a stage discarded a record."""
        self.dropped += 1
        if self.metrics is not None:
            self.metrics.pipeline_records_dropped_total.labels(stage=stage).inc()
        logger.warning(
            "pipeline_record_dropped",
            stage=stage,
            record_id=str(record.get(ID_FIELD, "")),
            error=str(error),
        )


class Stage(ABC):
    """One pipeline stage."""

    name: str = "stage"

    @abstractmethod
    def apply(
        self, records: Iterable[dict[str, Any]], context: StageContext | None = None
    ) -> Iterator[dict[str, Any]]:
        """Transform a stream of records."""
        ...


# =============================================================================
# Project
# =============================================================================


def _is_flag(value: Any) -> bool:
    return isinstance(value, bool) or (isinstance(value, int) and value in (0, 1))


class ProjectStage(Stage):
    """Reshape records: keep or drop fields and compute new ones.

    ``{"title": 1, "decade": <expr>, "_id": 0}`` keeps ``title``, adds the
    computed ``decade`` and drops ``_id``. Computed fields cannot be
    combined with exclusions other than ``_id``.
    """

    name = "$project"

    def __init__(self, spec: Mapping[str, Any]) -> None:
        if not isinstance(spec, Mapping) or not spec:
            raise InvalidSpecError("$project requires a non-empty mapping")
        flags: dict[str, Any] = {}
        computed: dict[str, Expression] = {}
        for field, value in spec.items():
            if not isinstance(field, str) or not field or field.startswith("$"):
                raise InvalidSpecError(f"Invalid $project field: {field!r}")
            if _is_flag(value):
                flags[field] = value
            else:
                if "." in field:
                    raise InvalidSpecError(f"Computed $project field cannot be dotted: {field!r}")
                computed[field] = compile_expression(value)

        self.computed = computed
        self.projection = Projection.parse(flags) if flags else None
        if computed and self.projection is not None:
            if self.projection.mode is ProjectionMode.EXCLUDE and self.projection.paths:
                raise InvalidSpecError("Cannot mix exclusions with computed fields in $project")
        self.include_id = self.projection.include_id if self.projection is not None else True

    def project(self, record: Mapping[str, Any]) -> dict[str, Any]:
        """Project one record.

        Raises:
            TypeMismatchError: A computed field failed to evaluate.
        """
        values = {name: expr.evaluate(record) for name, expr in self.computed.items()}

        projection = self.projection
        if projection is not None and (projection.paths or not self.computed):
            result = projection.apply(record)
        elif self.include_id and ID_FIELD in record:
            result = {ID_FIELD: record[ID_FIELD]}
        else:
            result = {}

        if ID_FIELD in values:
            result.pop(ID_FIELD, None)
            id_value = values.pop(ID_FIELD)
            if id_value is not MISSING:
                result = {ID_FIELD: id_value, **result}
        for name, value in values.items():
            if value is not MISSING:
                result[name] = value
        return result

    def apply(
        self, records: Iterable[dict[str, Any]], context: StageContext | None = None
    ) -> Iterator[dict[str, Any]]:
        context = context or StageContext()
        for record in records:
            context.check()
            try:
                yield self.project(record)
            except TypeMismatchError as e:
                context.drop(self.name, e, record)


# =============================================================================
# Group
# =============================================================================


class Accumulator(ABC):
    """Folds the values of one expression over a group."""

    @abstractmethod
    def add(self, value: Any) -> None:
        ...

    @abstractmethod
    def result(self) -> Any:
        ...


class SumAccumulator(Accumulator):
    """Numeric sum. Non-numeric values are ignored."""

    def __init__(self) -> None:
        self.total: int | float = 0

    def add(self, value: Any) -> None:
        if is_number(value):
            self.total += value

    def result(self) -> Any:
        return self.total


class AvgAccumulator(Accumulator):
    """Numeric mean; None when no numeric value was seen."""

    def __init__(self) -> None:
        self.total: int | float = 0
        self.count = 0

    def add(self, value: Any) -> None:
        if is_number(value):
            self.total += value
            self.count += 1

    def result(self) -> Any:
        if self.count == 0:
            return None
        return self.total / self.count


class CountAccumulator(Accumulator):
    def __init__(self) -> None:
        self.count = 0

    def add(self, value: Any) -> None:
        self.count += 1

    def result(self) -> Any:
        return self.count


class _ExtremeAccumulator(Accumulator):
    """Smallest or largest value in the canonical order, ignoring null."""

    def __init__(self, largest: bool) -> None:
        self.largest = largest
        self.best: Any = MISSING
        self.best_key: tuple[Any, ...] | None = None

    def add(self, value: Any) -> None:
        if value is MISSING or value is None:
            return
        key = sort_key(value)
        if self.best_key is None or (key > self.best_key if self.largest else key < self.best_key):
            self.best, self.best_key = value, key

    def result(self) -> Any:
        return None if self.best is MISSING else self.best


ACCUMULATORS = {
    "$sum": SumAccumulator,
    "$avg": AvgAccumulator,
    "$count": CountAccumulator,
    "$min": lambda: _ExtremeAccumulator(largest=False),
    "$max": lambda: _ExtremeAccumulator(largest=True),
}


@dataclass(frozen=True)
class AccumulatorSpec:
    """An output field of a Group stage."""

    field: str
    op: str
    expression: Expression

    def create(self) -> Accumulator:
        return ACCUMULATORS[self.op]()


class GroupStage(Stage):
    """Group records by a key expression and fold accumulators per group.

    Groups are emitted in the order their key was first seen. A missing
    key groups with null.
    """

    name = "$group"

    def __init__(self, spec: Mapping[str, Any]) -> None:
        if not isinstance(spec, Mapping) or ID_FIELD not in spec:
            raise InvalidSpecError("$group requires an '_id' expression")
        self.key = compile_expression(spec[ID_FIELD])
        self.accumulators: list[AccumulatorSpec] = []
        for field, value in spec.items():
            if field == ID_FIELD:
                continue
            if not isinstance(field, str) or not field or "." in field or field.startswith("$"):
                raise InvalidSpecError(f"Invalid $group output field: {field!r}")
            if not isinstance(value, Mapping) or len(value) != 1:
                raise InvalidSpecError(
                    f"$group field '{field}' must be a single accumulator, got {value!r}"
                )
            ((op, argument),) = value.items()
            if op not in ACCUMULATORS:
                raise InvalidSpecError(f"Unknown $group accumulator {op!r} for '{field}'")
            if op == "$count":
                if argument not in ({}, None):
                    raise InvalidSpecError("$count takes no arguments")
                argument = None
            self.accumulators.append(AccumulatorSpec(field, op, compile_expression(argument)))

    def apply(
        self, records: Iterable[dict[str, Any]], context: StageContext | None = None
    ) -> Iterator[dict[str, Any]]:
        context = context or StageContext()
        groups: dict[tuple[Any, ...], tuple[Any, list[Accumulator]]] = {}
        for record in records:
            context.check()
            try:
                key_value = self.key.evaluate(record)
                values = [spec.expression.evaluate(record) for spec in self.accumulators]
            except TypeMismatchError as e:
                context.drop(self.name, e, record)
                continue
            if key_value is MISSING:
                key_value = None
            group_key = sort_key(key_value)
            if group_key not in groups:
                groups[group_key] = (key_value, [spec.create() for spec in self.accumulators])
            for accumulator, value in zip(groups[group_key][1], values):
                accumulator.add(value)

        for key_value, accumulators in groups.values():
            context.check()
            output: dict[str, Any] = {ID_FIELD: key_value}
            for spec, accumulator in zip(self.accumulators, accumulators):
                output[spec.field] = accumulator.result()
            yield output


# =============================================================================
# Sort and Limit
# =============================================================================


class SortStage(Stage):
    """Stable multi-key sort."""

    name = "$sort"

    def __init__(self, spec: Any) -> None:
        self.sort = SortSpec.parse(spec)
        if not self.sort:
            raise InvalidSpecError("$sort requires at least one key")

    def apply(
        self, records: Iterable[dict[str, Any]], context: StageContext | None = None
    ) -> Iterator[dict[str, Any]]:
        context = context or StageContext()
        collected = []
        for record in records:
            context.check()
            collected.append(record)
        yield from self.sort.sort(collected)


class LimitStage(Stage):
    """Pass through at most ``count`` records."""

    name = "$limit"

    def __init__(self, count: Any) -> None:
        if isinstance(count, bool) or not isinstance(count, int) or count <= 0:
            raise InvalidSpecError(f"$limit requires a positive integer, got {count!r}")
        self.count = count

    def apply(
        self, records: Iterable[dict[str, Any]], context: StageContext | None = None
    ) -> Iterator[dict[str, Any]]:
        context = context or StageContext()
        for emitted, record in enumerate(records, start=1):
            context.check()
            yield record
            if emitted >= self.count:
                return


# =============================================================================
# Parsing
# =============================================================================

STAGES: dict[str, type[Stage]] = {
    "$project": ProjectStage,
    "$group": GroupStage,
    "$sort": SortStage,
    "$limit": LimitStage,
}


def parse_stage(spec: Stage | Mapping[str, Any]) -> Stage:
    """Turn ``{"$group": {...}}`` into a Stage.

    Raises:
        InvalidSpecError: Unknown stage name or malformed arguments.
    """
    if isinstance(spec, Stage):
        return spec
    if not isinstance(spec, Mapping) or len(spec) != 1:
        raise InvalidSpecError(f"A pipeline stage must have exactly one key, got {spec!r}")
    ((name, argument),) = spec.items()
    stage_type = STAGES.get(name)
    if stage_type is None:
        raise InvalidSpecError(
            f"Unknown pipeline stage {name!r}; supported: {', '.join(STAGES)}"
        )
    return stage_type(argument)


class Pipeline:
    """An ordered, validated list of stages."""

    def __init__(self, stages: Sequence[Stage]) -> None:
        self.stages = list(stages)

    @classmethod
    def parse(cls, specs: Sequence[Stage | Mapping[str, Any]]) -> Pipeline:
        if isinstance(specs, (str, bytes, Mapping)) or not isinstance(specs, Sequence):
            raise InvalidSpecError("A pipeline must be a list of stages")
        return cls([parse_stage(spec) for spec in specs])

    def run(
        self, records: Iterable[dict[str, Any]], context: StageContext | None = None
    ) -> list[dict[str, Any]]:
        """Run every stage in order and collect the output."""
        context = context or StageContext()
        stream: Iterable[dict[str, Any]] = records
        for stage in self.stages:
            stream = stage.apply(stream, context)
        results = []
        for record in stream:
            context.check()
            results.append(record)
        return results

    def __len__(self) -> int:
        return len(self.stages)


def parse_pipeline(specs: Sequence[Stage | Mapping[str, Any]]) -> Pipeline:
    """Parse a list of stage specifications."""
    return Pipeline.parse(specs)
