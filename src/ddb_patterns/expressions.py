from __future__ import annotations

import re
from collections.abc import Mapping, Sequence
from typing import Any

from boto3.dynamodb.types import TypeSerializer

from .errors import ValidationError
from .query import FilterCondition, FilterExpression, FilterGroup, KeyCondition, KeyPart, SortKeyCondition
from .validation import validate_attribute_name

_serializer = TypeSerializer()

_PATH_SEGMENT_RE = re.compile(r"^([^\[\]]+)((?:\[\d+\])*)$")


class Placeholders:
    """Allocates `#name` / `:value` references for one request."""

    def __init__(self) -> None:
        self.names: dict[str, str] = {}
        self.values: dict[str, Any] = {}
        self._name_refs: dict[tuple[str, str], str] = {}
        self._counters: dict[str, int] = {}

    def _next(self, prefix: str) -> int:
        n = self._counters.get(prefix, 0)
        self._counters[prefix] = n + 1
        return n

    def name(self, attribute: str, prefix: str = "n") -> str:
        validate_attribute_name(attribute)
        existing = self._name_refs.get((prefix, attribute))
        if existing is not None:
            return existing
        ref = f"#{prefix}{self._next('#' + prefix)}"
        self.names[ref] = attribute
        self._name_refs[(prefix, attribute)] = ref
        return ref

    def path(self, attribute: str, prefix: str = "n") -> str:
        """Reference for a document path: `user.email` -> `#n0.#n1`, `tags[0]` -> `#n2[0]`."""
        refs = []
        for segment in split_path(attribute):
            match = _PATH_SEGMENT_RE.match(segment)
            if match is None:
                raise ValidationError(f"invalid attribute path: {attribute!r}")
            refs.append(self.name(match.group(1), prefix) + match.group(2))
        return ".".join(refs)

    def value(self, value: Any, prefix: str = "v") -> str:
        ref = f":{prefix}{self._next(':' + prefix)}"
        self.values[ref] = _serializer.serialize(value)
        return ref

    def apply(self, req: dict[str, Any]) -> dict[str, Any]:
        if self.names:
            req.setdefault("ExpressionAttributeNames", {}).update(self.names)
        if self.values:
            req.setdefault("ExpressionAttributeValues", {}).update(self.values)
        return req


def split_path(attribute: str) -> list[str]:
    if not isinstance(attribute, str) or not attribute:
        raise ValidationError("attribute path cannot be empty")
    segments = attribute.split(".")
    if any(not s for s in segments):
        raise ValidationError(f"invalid attribute path: {attribute!r}")
    return segments


def _as_tuple(value: KeyPart) -> tuple[Any, ...]:
    return value if isinstance(value, tuple) else (value,)


def key_condition_expression(
    cond: KeyCondition,
    partition_attrs: Sequence[str],
    sort_attrs: Sequence[str],
    refs: Placeholders,
) -> str:
    partition = _as_tuple(cond.partition)
    if len(partition) != len(partition_attrs):
        raise ValidationError(
            f"partition key expects {len(partition_attrs)} value(s) ({', '.join(partition_attrs)}), "
            f"got {len(partition)}"
        )

    parts = [
        f"{refs.name(attr, 'k')} = {refs.value(value, 'k')}"
        for attr, value in zip(partition_attrs, partition, strict=True)
    ]

    if cond.sort is not None:
        if not sort_attrs:
            raise ValidationError("table or index does not define a sort key")
        parts.extend(_sort_expression(cond.sort, sort_attrs, refs))

    return " AND ".join(parts)


def _sort_expression(sort: SortKeyCondition, sort_attrs: Sequence[str], refs: Placeholders) -> list[str]:
    if sort.op == "begins_with":
        return [f"begins_with({refs.name(sort_attrs[0], 'k')}, {refs.value(sort.values[0], 'k')})"]

    if sort.op == "between":
        low, high = (_as_tuple(v) for v in sort.values)
        _check_sort_arity(low, sort_attrs)
        _check_sort_arity(high, sort_attrs)
        out: list[str] = []
        for i in range(min(len(low), len(high))):
            name = refs.name(sort_attrs[i], "k")
            if low[i] == high[i] and i < min(len(low), len(high)) - 1:
                out.append(f"{name} = {refs.value(low[i], 'k')}")
                continue
            out.append(f"{name} BETWEEN {refs.value(low[i], 'k')} AND {refs.value(high[i], 'k')}")
            break
        return out

    values = _as_tuple(sort.values[0])
    _check_sort_arity(values, sort_attrs)
    out = []
    for i, value in enumerate(values):
        op = sort.op if i == len(values) - 1 else "="
        out.append(f"{refs.name(sort_attrs[i], 'k')} {op} {refs.value(value, 'k')}")
    return out


def _check_sort_arity(values: tuple[Any, ...], sort_attrs: Sequence[str]) -> None:
    if not values:
        raise ValidationError("sort key condition requires at least one value")
    if len(values) > len(sort_attrs):
        raise ValidationError(
            f"sort key has {len(values)} value(s) but only {len(sort_attrs)} attribute(s) are defined"
        )


def filter_expression(expr: FilterExpression, refs: Placeholders, *, prefix: str = "f") -> str:
    def build(node: FilterExpression) -> str:
        if isinstance(node, FilterGroup):
            parts = [p for p in (build(f) for f in node.filters) if p]
            if not parts:
                return ""
            return "(" + f" {node.op} ".join(parts) + ")"

        if not isinstance(node, FilterCondition):
            raise ValidationError("invalid filter expression")

        name = refs.path(node.field, prefix)
        op = node.op.upper()
        vals = node.values

        def one() -> str:
            if len(vals) != 1:
                raise ValidationError(f"{node.op} requires one value")
            return refs.value(vals[0], prefix)

        if op in {"=", "EQ"}:
            return f"{name} = {one()}"
        if op in {"!=", "<>", "NE"}:
            return f"{name} <> {one()}"
        if op in {"<", "LT"}:
            return f"{name} < {one()}"
        if op in {"<=", "LE"}:
            return f"{name} <= {one()}"
        if op in {">", "GT"}:
            return f"{name} > {one()}"
        if op in {">=", "GE"}:
            return f"{name} >= {one()}"
        if op == "BETWEEN":
            if len(vals) != 2:
                raise ValidationError("BETWEEN requires two values")
            return f"{name} BETWEEN {refs.value(vals[0], prefix)} AND {refs.value(vals[1], prefix)}"
        if op == "IN":
            if len(vals) != 1 or not isinstance(vals[0], Sequence) or isinstance(vals[0], (str, bytes)):
                raise ValidationError("IN requires a sequence of values")
            if not vals[0] or len(vals[0]) > 100:
                raise ValidationError("IN supports between 1 and 100 values")
            return f"{name} IN (" + ", ".join(refs.value(v, prefix) for v in vals[0]) + ")"
        if op == "BEGINS_WITH":
            return f"begins_with({name}, {one()})"
        if op == "CONTAINS":
            return f"contains({name}, {one()})"
        if op in {"EXISTS", "ATTRIBUTE_EXISTS"}:
            if vals:
                raise ValidationError("EXISTS does not take a value")
            return f"attribute_exists({name})"
        if op in {"NOT_EXISTS", "ATTRIBUTE_NOT_EXISTS"}:
            if vals:
                raise ValidationError("NOT_EXISTS does not take a value")
            return f"attribute_not_exists({name})"

        raise ValidationError(f"unsupported filter operator: {node.op}")

    return build(expr)


def projection_expression(attributes: Sequence[str], refs: Placeholders) -> str:
    if not attributes:
        raise ValidationError("projection requires at least one attribute")
    return ", ".join(refs.path(attr, "p") for attr in attributes)


def update_expression(updates: Mapping[str, Any], key_attrs: Sequence[str], refs: Placeholders) -> str:
    set_parts: list[str] = []
    remove_parts: list[str] = []

    for attr, value in updates.items():
        if split_path(attr)[0] in key_attrs:
            raise ValidationError(f"cannot update key attribute: {attr}")
        name = refs.path(attr, "u")
        if value is None:
            remove_parts.append(name)
            continue
        set_parts.append(f"{name} = {refs.value(value, 'u')}")

    expr_parts: list[str] = []
    if set_parts:
        expr_parts.append("SET " + ", ".join(set_parts))
    if remove_parts:
        expr_parts.append("REMOVE " + ", ".join(remove_parts))
    if not expr_parts:
        raise ValidationError("no updates provided")
    return " ".join(expr_parts)
