"""Key construction and parsing.

Two key styles are supported side by side:

- delimited string keys (``USER#123#ORDER#456``) built by `composite_key` and
  inverted exactly by `parse_composite_key`. Separator characters and ``%``
  inside a part are percent-escaped, so any list of strings survives a round
  trip.
- multi-attribute keys: an ordered tuple of typed values, one per key
  attribute. No joining or escaping happens and numbers and binary values keep
  their native ordering in range conditions.
"""

from __future__ import annotations

import math
import random
import re
from collections.abc import Callable, Mapping, Sequence
from datetime import UTC, datetime
from decimal import Decimal
from typing import Any, Literal
from urllib.parse import unquote

from .errors import ValidationError

type KeyValue = str | int | float | Decimal | bytes | bytearray
type MultiAttributeKey = tuple[KeyValue, ...]
type KeyType = Literal["string", "number", "binary"]

DEFAULT_SEPARATOR = "#"
MAX_MULTI_ATTRIBUTE_KEY_LENGTH = 4

_SHARD_RE = re.compile(r"#SHARD_(\d+)$")


def key_type_name(value: Any) -> KeyType | None:
    if isinstance(value, bool):
        return None
    if isinstance(value, str):
        return "string"
    if isinstance(value, (int, float, Decimal)):
        return "number"
    if isinstance(value, (bytes, bytearray)):
        return "binary"
    return None


def describe_type(value: Any) -> str:
    return key_type_name(value) or type(value).__name__


def _validate_separator(sep: str) -> None:
    if not isinstance(sep, str) or not sep:
        raise ValidationError("separator must be a non-empty string")
    if "%" in sep or any(ch.isalnum() for ch in sep):
        raise ValidationError(f"separator cannot contain '%' or alphanumeric characters: {sep!r}")


def _escape_table(sep: str) -> dict[int, str]:
    table: dict[int, str] = {}
    for ch in {"%", *sep}:
        table[ord(ch)] = "".join(f"%{b:02X}" for b in ch.encode("utf-8"))
    return table


def composite_key(parts: Sequence[str], sep: str = DEFAULT_SEPARATOR) -> str:
    _validate_separator(sep)
    if isinstance(parts, str):
        raise ValidationError("parts must be a sequence of strings, not a string")
    if len(parts) == 0:
        raise ValidationError("composite_key requires at least one part")

    table = _escape_table(sep)
    escaped: list[str] = []
    for i, part in enumerate(parts):
        if part is None:
            raise ValidationError(f"key part at position {i} is None", position=i)
        if not isinstance(part, str):
            raise ValidationError(
                f"key part at position {i} must be a string (got {type(part).__name__})", position=i
            )
        escaped.append(part.translate(table))
    return sep.join(escaped)


def parse_composite_key(key: str, sep: str = DEFAULT_SEPARATOR) -> list[str]:
    _validate_separator(sep)
    if key is None or not isinstance(key, str):
        raise ValidationError("composite key must be a string")
    out: list[str] = []
    for i, part in enumerate(key.split(sep)):
        try:
            out.append(unquote(part, errors="strict"))
        except UnicodeDecodeError as err:
            raise ValidationError(f"key part at position {i} has an invalid escape: {part!r}", position=i) from err
    return out


def entity_key(entity_type: str, id: str, sep: str = DEFAULT_SEPARATOR) -> str:
    if not entity_type:
        raise ValidationError("entity_key requires a non-empty entity_type", position=0)
    if id is None or id == "":
        raise ValidationError("entity_key requires a non-empty id", position=1)
    return composite_key([entity_type, id], sep)


def parse_entity_key(key: str, sep: str = DEFAULT_SEPARATOR) -> tuple[str, str]:
    parts = parse_composite_key(key, sep)
    if len(parts) != 2 or not parts[0] or not parts[1]:
        raise ValidationError(f"invalid entity key: {key!r} (expected TYPE{sep}ID)")
    return parts[0], parts[1]


def multi_attribute_key(*values: KeyValue) -> MultiAttributeKey:
    if not values:
        raise ValidationError("multi-attribute key requires at least one value")
    if len(values) > MAX_MULTI_ATTRIBUTE_KEY_LENGTH:
        raise ValidationError(
            f"multi-attribute key supports at most {MAX_MULTI_ATTRIBUTE_KEY_LENGTH} values (got {len(values)})"
        )
    for i, value in enumerate(values):
        if value is None:
            raise ValidationError(f"multi-attribute key value at position {i} is None", position=i)
        if key_type_name(value) is None:
            raise ValidationError(
                f"multi-attribute key value at position {i} has unsupported type {type(value).__name__}",
                position=i,
            )
        if isinstance(value, float) and not math.isfinite(value):
            raise ValidationError(f"multi-attribute key value at position {i} must be finite", position=i)
    return tuple(bytes(v) if isinstance(v, bytearray) else v for v in values)


def multi_attribute_item(attribute_names: Sequence[str], key: Sequence[KeyValue]) -> dict[str, KeyValue]:
    if len(key) > len(attribute_names):
        raise ValidationError(f"key has {len(key)} values but only {len(attribute_names)} attributes")
    values = multi_attribute_key(*key)
    return dict(zip(attribute_names, values, strict=False))


def parse_multi_attribute_key(item: Mapping[str, Any], attribute_names: Sequence[str]) -> MultiAttributeKey:
    missing = [name for name in attribute_names if name not in item]
    if missing:
        raise ValidationError(f"item is missing key attributes: {missing}")
    return multi_attribute_key(*(item[name] for name in attribute_names))


def multi_tenant_key(tenant_id: str, customer_id: str, department_id: str | None = None) -> MultiAttributeKey:
    if department_id is None:
        return multi_attribute_key(tenant_id, customer_id)
    return multi_attribute_key(tenant_id, customer_id, department_id)


def hierarchical_multi_key(level1: str, *levels: str | None) -> MultiAttributeKey:
    present = [level for level in levels if level is not None]
    return multi_attribute_key(level1, *present)


def time_series_multi_key(
    category: str, timestamp: datetime | int | float, subcategory: str | None = None
) -> MultiAttributeKey:
    ts = int(timestamp.timestamp() * 1000) if isinstance(timestamp, datetime) else timestamp
    if subcategory is None:
        return multi_attribute_key(category, ts)
    return multi_attribute_key(category, ts, subcategory)


def time_series_key(timestamp: datetime, granularity: Literal["hour", "day", "month"]) -> str:
    if not isinstance(timestamp, datetime):
        raise ValidationError("time_series_key requires a datetime")
    ts = timestamp.astimezone(UTC) if timestamp.tzinfo else timestamp
    if granularity == "hour":
        return ts.strftime("%Y-%m-%d-%H")
    if granularity == "day":
        return ts.strftime("%Y-%m-%d")
    if granularity == "month":
        return ts.strftime("%Y-%m")
    raise ValidationError(f"invalid granularity: {granularity!r}")


def ttl_timestamp(expires_at: datetime) -> int:
    if not isinstance(expires_at, datetime):
        raise ValidationError("ttl_timestamp requires a datetime")
    return int(expires_at.timestamp())


def distributed_key(
    base_key: str,
    shard_count: int,
    *,
    rand: Callable[[int], int] | None = None,
) -> str:
    if not base_key:
        raise ValidationError("distributed_key requires a non-empty base_key")
    if isinstance(shard_count, bool) or not isinstance(shard_count, int) or shard_count < 1:
        raise ValidationError("shard_count must be a positive integer")
    pick = rand or random.randrange
    return f"{base_key}#SHARD_{pick(shard_count)}"


def shard_number(key: str) -> int | None:
    match = _SHARD_RE.search(key or "")
    return int(match.group(1)) if match else None


def increment_version(current: int) -> int:
    if isinstance(current, bool) or not isinstance(current, int) or current < 0:
        raise ValidationError("version must be a non-negative integer")
    return current + 1


def key_label(value: Any, sep: str = DEFAULT_SEPARATOR) -> str:
    """Stable string form of a scalar or tuple key, used for telemetry grouping."""
    if isinstance(value, tuple):
        return composite_key([key_label(v, sep) for v in value], sep)
    if isinstance(value, (bytes, bytearray)):
        return bytes(value).hex()
    return str(value)
