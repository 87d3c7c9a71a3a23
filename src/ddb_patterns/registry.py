from __future__ import annotations

from collections.abc import Callable, Iterable, Mapping
from dataclasses import dataclass
from typing import Any

from .errors import DuplicatePatternError, KeyShapeMismatchError, PatternNotFoundError, ValidationError
from .keys import describe_type
from .model import IndexShape
from .query import FilterCondition, FilterExpression, FilterGroup, KeyCondition, KeyPart
from .validation import validate_index_name, validate_pattern_name

type Params = Mapping[str, Any]
type KeyConditionBuilder = Callable[[Params], KeyCondition]
type FilterBuilder = Callable[[Params], FilterExpression | None]
type ResultTransform = Callable[[dict[str, Any]], Any]


@dataclass(frozen=True)
class AccessPattern:
    key_condition: KeyConditionBuilder
    index: str | None = None
    filter: FilterBuilder | FilterExpression | None = None
    transform: ResultTransform | None = None
    shape: IndexShape | None = None
    description: str = ""


@dataclass(frozen=True)
class ResolvedPattern:
    name: str
    key_condition: KeyCondition
    index: str | None = None
    filter: FilterExpression | None = None
    transform: ResultTransform | None = None
    shape: IndexShape | None = None


class AccessPatternRegistry:
    """Named access patterns plus the index shapes they query.

    Resolution is pure: builders run and the resulting key condition is checked
    against the pattern's index shape, but nothing touches the store.
    """

    def __init__(self, indexes: Iterable[IndexShape] = ()) -> None:
        self._patterns: dict[str, AccessPattern] = {}
        self._shapes: dict[str, IndexShape] = {}
        self._frozen = False
        for shape in indexes:
            self.add_index(shape)

    def add_index(self, shape: IndexShape) -> None:
        if self._frozen:
            raise ValidationError("registry is frozen")
        if not isinstance(shape, IndexShape):
            raise ValidationError("index must be an IndexShape")
        existing = self._shapes.get(shape.name)
        if existing is not None and existing != shape:
            raise ValidationError(f"index {shape.name} registered with a different shape")
        self._shapes[shape.name] = shape

    def register(self, name: str, pattern: AccessPattern) -> None:
        if self._frozen:
            raise ValidationError(f"registry is frozen; cannot register {name!r}")
        validate_pattern_name(name)
        if name in self._patterns:
            raise DuplicatePatternError(name)
        _validate_pattern(name, pattern)

        if pattern.shape is not None:
            self.add_index(pattern.shape)

        self._patterns[name] = pattern

    def copy(self) -> AccessPatternRegistry:
        """Unfrozen copy with the same patterns and index shapes."""
        out = AccessPatternRegistry(self._shapes.values())
        out._patterns = dict(self._patterns)
        return out

    def freeze(self) -> None:
        self._frozen = True

    @property
    def frozen(self) -> bool:
        return self._frozen

    def names(self) -> list[str]:
        return sorted(self._patterns)

    def get(self, name: str) -> AccessPattern:
        pattern = self._patterns.get(name)
        if pattern is None:
            raise PatternNotFoundError(name, self.names())
        return pattern

    def index_shapes(self) -> dict[str, IndexShape]:
        return dict(self._shapes)

    def shape_for(self, pattern: AccessPattern) -> IndexShape | None:
        if pattern.shape is not None:
            return pattern.shape
        if pattern.index is not None:
            return self._shapes.get(pattern.index)
        return None

    def __contains__(self, name: object) -> bool:
        return name in self._patterns

    def __len__(self) -> int:
        return len(self._patterns)

    def resolve(self, name: str, params: Params | None = None) -> ResolvedPattern:
        pattern = self.get(name)
        params = params if params is not None else {}

        condition = pattern.key_condition(params)
        if not isinstance(condition, KeyCondition):
            raise ValidationError(
                f"{name}: key condition builder must return a KeyCondition (got {type(condition).__name__})"
            )

        shape = self.shape_for(pattern)
        index = pattern.index or (shape.name if shape is not None else None)
        if shape is not None:
            validate_key_shape(name, condition, shape)

        filter_expr: FilterExpression | None
        if pattern.filter is None or isinstance(pattern.filter, (FilterCondition, FilterGroup)):
            filter_expr = pattern.filter
        else:
            filter_expr = pattern.filter(params)
            if filter_expr is not None and not isinstance(filter_expr, (FilterCondition, FilterGroup)):
                raise ValidationError(
                    f"{name}: filter builder must return a filter expression (got {type(filter_expr).__name__})"
                )

        return ResolvedPattern(
            name=name,
            key_condition=condition,
            index=index,
            filter=filter_expr,
            transform=pattern.transform,
            shape=shape,
        )


def _validate_pattern(name: str, pattern: AccessPattern) -> None:
    if not isinstance(pattern, AccessPattern):
        raise ValidationError(f"{name}: pattern must be an AccessPattern")
    if not callable(pattern.key_condition):
        raise ValidationError(f"{name}: key_condition must be callable")
    if pattern.filter is not None and not (
        callable(pattern.filter) or isinstance(pattern.filter, (FilterCondition, FilterGroup))
    ):
        raise ValidationError(f"{name}: filter must be callable or a filter expression")
    if pattern.transform is not None and not callable(pattern.transform):
        raise ValidationError(f"{name}: transform must be callable")
    if pattern.index is not None:
        validate_index_name(pattern.index)
    if pattern.shape is not None:
        if not isinstance(pattern.shape, IndexShape):
            raise ValidationError(f"{name}: shape must be an IndexShape")
        if pattern.index is not None and pattern.index != pattern.shape.name:
            raise ValidationError(
                f"{name}: index {pattern.index!r} does not match shape index {pattern.shape.name!r}"
            )


def _types(value: KeyPart) -> tuple[str, ...]:
    values = value if isinstance(value, tuple) else (value,)
    return tuple(describe_type(v) for v in values)


def validate_key_shape(pattern: str, condition: KeyCondition, shape: IndexShape) -> None:
    """Partition values must match the shape exactly; sort values may be an ordered prefix."""
    expected = shape.partition_types
    actual = _types(condition.partition)
    if actual != expected:
        raise KeyShapeMismatchError(
            pattern=pattern, key_role="partition", expected=expected, actual=actual, index_name=shape.name
        )

    if condition.sort is None:
        return

    expected = shape.sort_types
    for value in condition.sort.values:
        actual = _types(value)
        if len(actual) > len(expected) or actual != expected[: len(actual)]:
            raise KeyShapeMismatchError(
                pattern=pattern, key_role="sort", expected=expected, actual=actual, index_name=shape.name
            )
