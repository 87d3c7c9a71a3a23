from __future__ import annotations

import pytest

from ddb_patterns import FilterCondition, FilterGroup, KeyCondition, SortKeyCondition, ValidationError
from ddb_patterns.expressions import (
    Placeholders,
    filter_expression,
    key_condition_expression,
    projection_expression,
    update_expression,
)


def test_scalar_key_condition() -> None:
    refs = Placeholders()
    expr = key_condition_expression(
        KeyCondition("USER#1", SortKeyCondition.begins_with("ORDER#")), ["pk"], ["sk"], refs
    )
    assert expr == "#k0 = :k0 AND begins_with(#k1, :k1)"
    assert refs.names == {"#k0": "pk", "#k1": "sk"}
    assert refs.values == {":k0": {"S": "USER#1"}, ":k1": {"S": "ORDER#"}}


def test_multi_attribute_partition_and_sort_prefix() -> None:
    refs = Placeholders()
    expr = key_condition_expression(
        KeyCondition(("T1", "U1"), SortKeyCondition.gte((2024, 3))),
        ["tenantId", "userId"],
        ["year", "month", "day"],
        refs,
    )
    assert expr == "#k0 = :k0 AND #k1 = :k1 AND #k2 = :k2 AND #k3 >= :k3"
    assert refs.names == {"#k0": "tenantId", "#k1": "userId", "#k2": "year", "#k3": "month"}
    assert refs.values[":k2"] == {"N": "2024"}
    assert refs.values[":k3"] == {"N": "3"}


def test_multi_attribute_between_shares_equal_prefix() -> None:
    refs = Placeholders()
    expr = key_condition_expression(
        KeyCondition(("T1",), SortKeyCondition.between((2024, 1), (2024, 6))),
        ["tenantId"],
        ["year", "month"],
        refs,
    )
    assert expr == "#k0 = :k0 AND #k1 = :k1 AND #k2 BETWEEN :k2 AND :k3"


def test_partition_arity_must_match() -> None:
    with pytest.raises(ValidationError, match="partition key expects 2"):
        key_condition_expression(KeyCondition(("T1",)), ["tenantId", "userId"], [], Placeholders())


def test_sort_condition_without_sort_key() -> None:
    with pytest.raises(ValidationError, match="sort key"):
        key_condition_expression(KeyCondition("A", SortKeyCondition.eq("B")), ["pk"], [], Placeholders())


def test_sort_condition_longer_than_sort_key() -> None:
    with pytest.raises(ValidationError):
        key_condition_expression(KeyCondition("A", SortKeyCondition.eq(("x", "y"))), ["pk"], ["sk"], Placeholders())


def test_filter_expression_groups_and_operators() -> None:
    refs = Placeholders()
    expr = filter_expression(
        FilterGroup.and_(
            FilterCondition.eq("status", "open"),
            FilterGroup.or_(
                FilterCondition.in_("region", ["us", "eu"]),
                FilterCondition.not_exists("deletedAt"),
            ),
            FilterCondition.between("total", 1, 10),
        ),
        refs,
    )
    assert expr == "(#f0 = :f0 AND (#f1 IN (:f1, :f2) OR attribute_not_exists(#f2)) AND #f3 BETWEEN :f3 AND :f4)"
    assert refs.names == {"#f0": "status", "#f1": "region", "#f2": "deletedAt", "#f3": "total"}


def test_filter_reuses_name_reference() -> None:
    refs = Placeholders()
    expr = filter_expression(
        FilterGroup.or_(FilterCondition.lt("n", 1), FilterCondition.gt("n", 5)),
        refs,
    )
    assert expr == "(#f0 < :f0 OR #f0 > :f1)"


@pytest.mark.parametrize(
    "cond",
    [
        FilterCondition(field="a", op="like", values=("x",)),
        FilterCondition(field="a", op="=", values=()),
        FilterCondition.in_("a", []),
        FilterCondition.in_("a", list(range(101))),
        FilterCondition(field="a", op="exists", values=(1,)),
    ],
)
def test_filter_rejects_invalid_conditions(cond: FilterCondition) -> None:
    with pytest.raises(ValidationError):
        filter_expression(cond, Placeholders())


def test_projection_and_update_expressions() -> None:
    refs = Placeholders()
    assert projection_expression(["name", "email"], refs) == "#p0, #p1"

    expr = update_expression({"name": "Ada", "nickname": None, "age": 36}, ["pk", "sk"], refs)
    assert expr == "SET #u0 = :u0, #u2 = :u1 REMOVE #u1"
    assert refs.names["#u1"] == "nickname"

    with pytest.raises(ValidationError, match="key attribute"):
        update_expression({"pk": "x"}, ["pk", "sk"], Placeholders())
    with pytest.raises(ValidationError, match="no updates"):
        update_expression({}, ["pk"], Placeholders())
    with pytest.raises(ValidationError):
        projection_expression([], Placeholders())


def test_apply_merges_into_request() -> None:
    refs = Placeholders()
    refs.name("a")
    refs.value(1)
    req = refs.apply({"ExpressionAttributeNames": {"#x": "x"}})
    assert req["ExpressionAttributeNames"] == {"#x": "x", "#n0": "a"}
    assert req["ExpressionAttributeValues"] == {":v0": {"N": "1"}}


def test_nested_paths_get_one_reference_per_segment() -> None:
    refs = Placeholders()
    expr = projection_expression(["user.email", "user.name", "tags[0]", "matrix[1][2].v"], refs)
    assert expr == "#p0.#p1, #p0.#p2, #p3[0], #p4[1][2].#p5"
    assert refs.names == {
        "#p0": "user",
        "#p1": "email",
        "#p2": "name",
        "#p3": "tags",
        "#p4": "matrix",
        "#p5": "v",
    }


def test_filter_and_update_on_nested_paths() -> None:
    refs = Placeholders()
    assert filter_expression(FilterCondition.eq("user.email", "ada@example.com"), refs) == "#f0.#f1 = :f0"
    assert refs.names == {"#f0": "user", "#f1": "email"}

    refs = Placeholders()
    assert update_expression({"profile.city": "Oslo", "tags[1]": None}, ["pk", "sk"], refs) == (
        "SET #u0.#u1 = :u0 REMOVE #u2[1]"
    )
    assert refs.names == {"#u0": "profile", "#u1": "city", "#u2": "tags"}

    with pytest.raises(ValidationError, match="key attribute"):
        update_expression({"pk.inner": "x"}, ["pk", "sk"], Placeholders())


@pytest.mark.parametrize("path", ["", "a..b", ".a", "a.", "tags[x]", "tags[0", "[0]"])
def test_invalid_paths_are_rejected(path: str) -> None:
    with pytest.raises(ValidationError):
        Placeholders().path(path)
