from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass
from typing import Any

from .query import FilterExpression


@dataclass(frozen=True)
class TransactPut:
    item: Mapping[str, Any]
    condition: FilterExpression | None = None
    condition_expression: str | None = None
    expression_attribute_names: Mapping[str, str] | None = None
    expression_attribute_values: Mapping[str, Any] | None = None
    table: str | None = None


@dataclass(frozen=True)
class TransactDelete:
    key: Mapping[str, Any]
    condition: FilterExpression | None = None
    condition_expression: str | None = None
    expression_attribute_names: Mapping[str, str] | None = None
    expression_attribute_values: Mapping[str, Any] | None = None
    table: str | None = None


@dataclass(frozen=True)
class TransactUpdate:
    key: Mapping[str, Any]
    updates: Mapping[str, Any]
    condition: FilterExpression | None = None
    condition_expression: str | None = None
    expression_attribute_names: Mapping[str, str] | None = None
    expression_attribute_values: Mapping[str, Any] | None = None
    table: str | None = None


@dataclass(frozen=True)
class TransactConditionCheck:
    key: Mapping[str, Any]
    condition: FilterExpression | None = None
    condition_expression: str | None = None
    expression_attribute_names: Mapping[str, str] | None = None
    expression_attribute_values: Mapping[str, Any] | None = None
    table: str | None = None


@dataclass(frozen=True)
class TransactGet:
    key: Mapping[str, Any]
    projection: tuple[str, ...] | None = None
    table: str | None = None


type TransactWriteAction = TransactPut | TransactDelete | TransactUpdate | TransactConditionCheck
