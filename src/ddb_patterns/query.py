from __future__ import annotations

import base64
import json
from dataclasses import dataclass
from typing import Any, Literal

from .errors import ValidationError
from .keys import KeyValue, MultiAttributeKey

type KeyPart = KeyValue | MultiAttributeKey
type SortOp = Literal["=", "<", "<=", ">", ">=", "between", "begins_with"]

_SORT_OPS = ("=", "<", "<=", ">", ">=", "between", "begins_with")


@dataclass(frozen=True)
class SortKeyCondition:
    op: SortOp
    values: tuple[KeyPart, ...]

    def __post_init__(self) -> None:
        if self.op not in _SORT_OPS:
            raise ValidationError(f"unsupported sort key operator: {self.op}")
        expected = 2 if self.op == "between" else 1
        if len(self.values) != expected:
            raise ValidationError(f"{self.op} requires {expected} value(s)")
        for i, value in enumerate(self.values):
            if value is None:
                raise ValidationError(f"sort key value at position {i} is None", position=i)
        if self.op == "between" and isinstance(self.values[0], tuple) != isinstance(self.values[1], tuple):
            raise ValidationError("between bounds must both be scalars or both be multi-attribute keys")
        if self.op == "begins_with":
            if isinstance(self.values[0], tuple):
                raise ValidationError("begins_with is not supported for multi-attribute sort keys")
            if not isinstance(self.values[0], (str, bytes, bytearray)):
                raise ValidationError("begins_with requires a string or binary prefix")

    @property
    def is_multi_attribute(self) -> bool:
        return isinstance(self.values[0], tuple)

    @staticmethod
    def eq(value: KeyPart) -> SortKeyCondition:
        return SortKeyCondition(op="=", values=(value,))

    @staticmethod
    def lt(value: KeyPart) -> SortKeyCondition:
        return SortKeyCondition(op="<", values=(value,))

    @staticmethod
    def lte(value: KeyPart) -> SortKeyCondition:
        return SortKeyCondition(op="<=", values=(value,))

    @staticmethod
    def gt(value: KeyPart) -> SortKeyCondition:
        return SortKeyCondition(op=">", values=(value,))

    @staticmethod
    def gte(value: KeyPart) -> SortKeyCondition:
        return SortKeyCondition(op=">=", values=(value,))

    @staticmethod
    def between(low: KeyPart, high: KeyPart) -> SortKeyCondition:
        return SortKeyCondition(op="between", values=(low, high))

    @staticmethod
    def begins_with(prefix: str | bytes) -> SortKeyCondition:
        return SortKeyCondition(op="begins_with", values=(prefix,))


@dataclass(frozen=True)
class KeyCondition:
    """Partition value plus an optional sort condition.

    Either side may be a scalar or a multi-attribute tuple. A tuple sort key
    passed to `eq` with fewer values than the index declares is a prefix match.
    """

    partition: KeyPart
    sort: SortKeyCondition | None = None

    def __post_init__(self) -> None:
        if self.partition is None:
            raise ValidationError("partition key value is required")
        if isinstance(self.partition, tuple) and len(self.partition) == 0:
            raise ValidationError("multi-attribute partition key cannot be empty")
        if self.sort is not None and not isinstance(self.sort, SortKeyCondition):
            raise ValidationError("sort must be a SortKeyCondition")

    @staticmethod
    def of(partition: KeyPart, sort: SortKeyCondition | KeyPart | None = None) -> KeyCondition:
        if sort is None or isinstance(sort, SortKeyCondition):
            return KeyCondition(partition=partition, sort=sort)
        return KeyCondition(partition=partition, sort=SortKeyCondition.eq(sort))


@dataclass(frozen=True)
class Page[T]:
    items: list[T]
    next_cursor: str | None
    count: int = 0
    scanned_count: int = 0


type LogicalOp = Literal["AND", "OR"]


@dataclass(frozen=True)
class FilterCondition:
    field: str
    op: str
    values: tuple[Any, ...] = ()

    @staticmethod
    def eq(field: str, value: Any) -> FilterCondition:
        return FilterCondition(field=field, op="=", values=(value,))

    @staticmethod
    def ne(field: str, value: Any) -> FilterCondition:
        return FilterCondition(field=field, op="!=", values=(value,))

    @staticmethod
    def lt(field: str, value: Any) -> FilterCondition:
        return FilterCondition(field=field, op="<", values=(value,))

    @staticmethod
    def lte(field: str, value: Any) -> FilterCondition:
        return FilterCondition(field=field, op="<=", values=(value,))

    @staticmethod
    def gt(field: str, value: Any) -> FilterCondition:
        return FilterCondition(field=field, op=">", values=(value,))

    @staticmethod
    def gte(field: str, value: Any) -> FilterCondition:
        return FilterCondition(field=field, op=">=", values=(value,))

    @staticmethod
    def between(field: str, low: Any, high: Any) -> FilterCondition:
        return FilterCondition(field=field, op="between", values=(low, high))

    @staticmethod
    def begins_with(field: str, prefix: Any) -> FilterCondition:
        return FilterCondition(field=field, op="begins_with", values=(prefix,))

    @staticmethod
    def contains(field: str, value: Any) -> FilterCondition:
        return FilterCondition(field=field, op="contains", values=(value,))

    @staticmethod
    def in_(field: str, values: list[Any]) -> FilterCondition:
        return FilterCondition(field=field, op="in", values=(list(values),))

    @staticmethod
    def exists(field: str) -> FilterCondition:
        return FilterCondition(field=field, op="exists")

    @staticmethod
    def not_exists(field: str) -> FilterCondition:
        return FilterCondition(field=field, op="not_exists")


@dataclass(frozen=True)
class FilterGroup:
    op: LogicalOp
    filters: tuple[FilterExpression, ...]

    @staticmethod
    def and_(*filters: FilterExpression) -> FilterGroup:
        return FilterGroup(op="AND", filters=tuple(filters))

    @staticmethod
    def or_(*filters: FilterExpression) -> FilterGroup:
        return FilterGroup(op="OR", filters=tuple(filters))


type FilterExpression = FilterCondition | FilterGroup


@dataclass(frozen=True)
class Cursor:
    last_key: dict[str, Any]
    index: str | None = None
    sort: Literal["ASC", "DESC"] | None = None


def _key_av_to_json(av: Any) -> dict[str, Any]:
    if not isinstance(av, dict) or len(av) != 1:
        raise ValueError("attribute value must be a single-key map")
    (kind, value), *_ = av.items()

    if kind in {"S", "N"}:
        if not isinstance(value, str):
            raise ValueError(f"{kind} value must be a string")
        return {kind: value}
    if kind == "B":
        if not isinstance(value, (bytes, bytearray)):
            raise ValueError("B value must be bytes")
        return {"B": base64.b64encode(bytes(value)).decode("ascii")}
    raise ValueError(f"unsupported key attribute type: {kind}")


def _key_av_from_json(enc: Any) -> dict[str, Any]:
    if not isinstance(enc, dict) or len(enc) != 1:
        raise ValueError("attribute value must be a single-key map")
    (kind, value), *_ = enc.items()

    if kind in {"S", "N"}:
        if not isinstance(value, str):
            raise ValueError(f"{kind} value must be a string")
        return {kind: value}
    if kind == "B":
        if not isinstance(value, str):
            raise ValueError("B value must be a base64 string")
        return {"B": base64.b64decode(value)}
    raise ValueError(f"unsupported key attribute type: {kind}")


def encode_cursor(
    last_key: Any, *, index: str | None = None, sort: Literal["ASC", "DESC"] | None = None
) -> str:
    if not last_key:
        return ""
    if not isinstance(last_key, dict):
        raise ValueError("last_key must be a map")

    payload: dict[str, Any] = {
        "lastKey": {str(k): _key_av_to_json(last_key[k]) for k in sorted(last_key.keys())}
    }
    if index is not None:
        payload["index"] = index
    if sort is not None:
        payload["sort"] = sort

    raw = json.dumps(payload, separators=(",", ":"), sort_keys=True, ensure_ascii=False).encode("utf-8")
    return base64.urlsafe_b64encode(raw).decode("ascii")


def decode_cursor(cursor: str) -> Cursor:
    raw = str(cursor or "").strip()
    if not raw:
        raise ValueError("cursor is empty")

    padding = "=" * (-len(raw) % 4)
    parsed = json.loads(base64.urlsafe_b64decode(raw + padding).decode("utf-8"))
    if not isinstance(parsed, dict):
        raise ValueError("cursor must decode to an object")

    last_key_raw = parsed.get("lastKey")
    if not isinstance(last_key_raw, dict):
        raise ValueError("cursor lastKey is invalid")

    index = parsed.get("index")
    sort = parsed.get("sort")
    if sort not in {None, "ASC", "DESC"}:
        raise ValueError("cursor sort is invalid")
    return Cursor(
        last_key={str(k): _key_av_from_json(v) for k, v in sorted(last_key_raw.items())},
        index=index if isinstance(index, str) else None,
        sort=sort,
    )
