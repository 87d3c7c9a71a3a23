from __future__ import annotations

import pytest
from pydantic import BaseModel, ConfigDict, Field

from ddb_patterns import KeyAttribute, ValidationError, index_shape
from ddb_patterns.validation import (
    MaxAttributeNameLength,
    validate_attribute_name,
    validate_index_name,
    validate_item,
    validate_partial_item,
    validate_pattern_name,
    validate_table_name,
)


def test_validate_attribute_name() -> None:
    for name in ["pk", "tenantId", "with space", "ünï"]:
        validate_attribute_name(name)

    for bad in ["", "a" * (MaxAttributeNameLength + 1), "ok\0bad", "tab\there"]:
        with pytest.raises(ValidationError):
            validate_attribute_name(bad)


def test_validate_table_and_index_names() -> None:
    validate_table_name("users_table")
    validate_table_name("users-table")
    validate_table_name("users.table")
    validate_index_name("gsi-email")

    for bad in ["ab", "bad name", "users;drop", "a" * 256]:
        with pytest.raises(ValidationError):
            validate_table_name(bad)
        with pytest.raises(ValidationError):
            validate_index_name(bad)


def test_validate_pattern_name() -> None:
    for name in ["getUserOrders", "orders:by-status", "_private", "v1.list"]:
        validate_pattern_name(name)

    for bad in ["", "1starts-with-digit", "has space", "a" * 256]:
        with pytest.raises(ValidationError):
            validate_pattern_name(bad)


def test_index_shape_accepts_strings_tuples_and_attributes() -> None:
    shape = index_shape(
        "gsi-orders",
        partition=["tenantId", ("region", "string")],
        sort=[KeyAttribute("year", "number"), ("hash", "binary")],
    )
    assert shape.partition_names == ("tenantId", "region")
    assert shape.partition_types == ("string", "string")
    assert shape.sort_names == ("year", "hash")
    assert shape.sort_types == ("number", "binary")
    assert shape.is_multi_attribute is True

    single = index_shape("gsi-email", partition="email")
    assert single.sort == ()
    assert single.is_multi_attribute is False


def test_index_shape_validation() -> None:
    with pytest.raises(ValidationError):
        index_shape("ab", partition="a")
    with pytest.raises(ValidationError):
        index_shape("gsi-empty", partition=[])
    with pytest.raises(ValidationError, match="more than 4"):
        index_shape("gsi-wide", partition=["a", "b", "c", "d", "e"])
    with pytest.raises(ValidationError, match="duplicate"):
        index_shape("gsi-dup", partition="a", sort=["b", "b"])
    with pytest.raises(ValidationError, match="must have type"):
        KeyAttribute("a", "bool")  # type: ignore[arg-type]


class _Order(BaseModel):
    pk: str
    sk: str
    total: int = Field(ge=0)
    note: str | None = None
    shipping: dict[str, str] = Field(default_factory=dict, alias="ship")


class _StrictOrder(_Order):
    model_config = ConfigDict(extra="forbid")


def test_validate_item_names_the_failing_field() -> None:
    validate_item(_Order, {"pk": "ORDER#1", "sk": "META", "total": 3, "extra": True})

    with pytest.raises(ValidationError, match=r"item does not match _Order: total"):
        validate_item(_Order, {"pk": "ORDER#1", "sk": "META", "total": -1})
    with pytest.raises(ValidationError, match="sk"):
        validate_item(_Order, {"pk": "ORDER#1", "total": 1})


def test_validate_partial_item_checks_touched_fields_only() -> None:
    validate_partial_item(_Order, {"total": 5})
    validate_partial_item(_Order, {"note": None, "unknown": 1})
    validate_partial_item(_Order, {"ship.city": "Oslo", "ship": {"city": "Oslo"}})

    with pytest.raises(ValidationError, match="total does not match _Order"):
        validate_partial_item(_Order, {"total": -2})
    with pytest.raises(ValidationError, match="cannot remove required field 'total'"):
        validate_partial_item(_Order, {"total": None})
    with pytest.raises(ValidationError, match="ship does not match"):
        validate_partial_item(_Order, {"ship": {"city": 1}})


def test_validate_partial_item_honours_forbidden_extras() -> None:
    with pytest.raises(ValidationError, match="_StrictOrder has no field 'unknown'"):
        validate_partial_item(_StrictOrder, {"unknown.deep": 1})
    validate_partial_item(_StrictOrder, {"note": "gift"})
