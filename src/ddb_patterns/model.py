from __future__ import annotations

from collections.abc import Sequence
from dataclasses import dataclass, field

from .errors import ValidationError
from .keys import MAX_MULTI_ATTRIBUTE_KEY_LENGTH, KeyType
from .validation import validate_attribute_name, validate_index_name

_KEY_TYPES = ("string", "number", "binary")


@dataclass(frozen=True)
class KeyAttribute:
    name: str
    type: KeyType = "string"

    def __post_init__(self) -> None:
        validate_attribute_name(self.name)
        if self.type not in _KEY_TYPES:
            raise ValidationError(
                f"key attribute {self.name!r} must have type 'string', 'number' or 'binary' (got {self.type!r})"
            )


@dataclass(frozen=True)
class IndexShape:
    name: str
    partition: tuple[KeyAttribute, ...]
    sort: tuple[KeyAttribute, ...] = field(default=())

    def __post_init__(self) -> None:
        validate_index_name(self.name)
        _validate_key_attributes(self.name, "partition", self.partition, required=True)
        _validate_key_attributes(self.name, "sort", self.sort, required=False)

    @property
    def partition_types(self) -> tuple[str, ...]:
        return tuple(attr.type for attr in self.partition)

    @property
    def sort_types(self) -> tuple[str, ...]:
        return tuple(attr.type for attr in self.sort)

    @property
    def partition_names(self) -> tuple[str, ...]:
        return tuple(attr.name for attr in self.partition)

    @property
    def sort_names(self) -> tuple[str, ...]:
        return tuple(attr.name for attr in self.sort)

    @property
    def is_multi_attribute(self) -> bool:
        return len(self.partition) > 1 or len(self.sort) > 1


def _validate_key_attributes(
    index_name: str, role: str, attrs: tuple[KeyAttribute, ...], *, required: bool
) -> None:
    if not isinstance(attrs, tuple) or not all(isinstance(a, KeyAttribute) for a in attrs):
        raise ValidationError(f"index {index_name}: {role} key must be a tuple of KeyAttribute")
    if required and not attrs:
        raise ValidationError(f"index {index_name}: {role} key must have at least one attribute")
    if len(attrs) > MAX_MULTI_ATTRIBUTE_KEY_LENGTH:
        raise ValidationError(
            f"index {index_name}: {role} key cannot have more than "
            f"{MAX_MULTI_ATTRIBUTE_KEY_LENGTH} attributes (got {len(attrs)})"
        )
    names = [a.name for a in attrs]
    duplicates = sorted({n for n in names if names.count(n) > 1})
    if duplicates:
        raise ValidationError(f"index {index_name}: {role} key has duplicate attribute names: {duplicates}")


def _attrs(entries: str | Sequence[str | tuple[str, KeyType] | KeyAttribute] | None) -> tuple[KeyAttribute, ...]:
    if entries is None:
        return ()
    if isinstance(entries, str):
        return (KeyAttribute(entries),)

    out: list[KeyAttribute] = []
    for entry in entries:
        if isinstance(entry, KeyAttribute):
            out.append(entry)
        elif isinstance(entry, str):
            out.append(KeyAttribute(entry))
        else:
            name, type_ = entry
            out.append(KeyAttribute(name, type_))
    return tuple(out)


def index_shape(
    name: str,
    *,
    partition: str | Sequence[str | tuple[str, KeyType] | KeyAttribute],
    sort: str | Sequence[str | tuple[str, KeyType] | KeyAttribute] | None = None,
) -> IndexShape:
    return IndexShape(name=name, partition=_attrs(partition), sort=_attrs(sort))
