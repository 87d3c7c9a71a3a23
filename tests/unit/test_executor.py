from __future__ import annotations

import asyncio
from typing import Any

import pytest

from ddb_patterns import (
    ConditionFailedError,
    RetryableError,
    TransactionCanceledError,
    ValidationError,
)
from ddb_patterns.executor import BulkOperationExecutor, RetryPolicy, consumed_units
from ddb_patterns.mocks import FakeDynamoDBClient
from ddb_patterns.testkit import RecordingSleep, client_error, fixed_random, no_sleep


def _keys(n: int) -> list[dict[str, Any]]:
    return [{"pk": {"S": f"K{i}"}} for i in range(n)]


def _puts(n: int) -> list[dict[str, Any]]:
    return [{"PutRequest": {"Item": {"pk": {"S": f"K{i}"}}}} for i in range(n)]


class _EchoBatchClient:
    """Returns every requested key as an item, optionally leaving some unprocessed."""

    def __init__(self, unprocessed_rounds: int = 0, always_defer: frozenset[str] = frozenset()) -> None:
        self.get_calls: list[list[dict[str, Any]]] = []
        self.write_calls: list[list[dict[str, Any]]] = []
        self._unprocessed_rounds = unprocessed_rounds
        self._always_defer = always_defer
        self._seen: set[str] = set()

    def _should_defer(self, marker: str) -> bool:
        if marker in self._always_defer:
            return True
        # each key is deferred for the first `unprocessed_rounds` times it is seen
        count = sum(1 for s in self._seen if s.startswith(marker + "|"))
        self._seen.add(f"{marker}|{count}")
        return count < self._unprocessed_rounds

    async def batch_get_item(self, *, RequestItems, ReturnConsumedCapacity):  # noqa: N803
        assert ReturnConsumedCapacity == "TOTAL"
        (table, req), *_ = RequestItems.items()
        keys = req["Keys"]
        self.get_calls.append(keys)
        done = [k for k in keys if not self._should_defer(k["pk"]["S"])]
        left = [k for k in keys if k not in done]
        resp: dict[str, Any] = {
            "Responses": {table: [dict(k, v={"N": "1"}) for k in done]},
            "ConsumedCapacity": [{"TableName": table, "CapacityUnits": float(len(done))}],
        }
        if left:
            resp["UnprocessedKeys"] = {table: {"Keys": left}}
        return resp

    async def batch_write_item(self, *, RequestItems, ReturnConsumedCapacity):  # noqa: N803
        (table, reqs), *_ = RequestItems.items()
        self.write_calls.append(reqs)
        left = [r for r in reqs if self._should_defer(r["PutRequest"]["Item"]["pk"]["S"])]
        resp: dict[str, Any] = {"ConsumedCapacity": [{"CapacityUnits": float(len(reqs) - len(left))}]}
        if left:
            resp["UnprocessedItems"] = {table: left}
        return resp


async def test_batch_get_splits_into_chunks_of_100() -> None:
    client = _EchoBatchClient()
    executor = BulkOperationExecutor(client, sleep=no_sleep)

    result = await executor.batch_get("users", _keys(250))

    assert [len(c) for c in client.get_calls] == [100, 100, 50]
    assert result.calls == 3
    assert result.attempts == 1
    assert len(result.items) == 250
    assert result.failed == []
    assert result.complete is True
    assert consumed_units(result.consumed_capacity) == 250.0


async def test_batch_write_splits_into_chunks_of_25() -> None:
    client = _EchoBatchClient()
    executor = BulkOperationExecutor(client, sleep=no_sleep)

    result = await executor.batch_write("users", _puts(60))

    assert [len(c) for c in client.write_calls] == [25, 25, 10]
    assert result.calls == 3
    assert result.processed == 60
    assert result.complete is True


async def test_batch_get_retries_unprocessed_keys_with_backoff() -> None:
    client = _EchoBatchClient(unprocessed_rounds=1)
    sleep = RecordingSleep()
    executor = BulkOperationExecutor(client, sleep=sleep, rand=fixed_random(0.5))

    result = await executor.batch_get("users", _keys(10))

    assert result.attempts == 2
    assert result.calls == 2
    assert len(result.items) == 10
    assert result.failed == []
    assert sleep.delays == [pytest.approx(0.025)]


async def test_batch_get_reports_persistently_unprocessed_keys() -> None:
    client = _EchoBatchClient(unprocessed_rounds=99)
    sleep = RecordingSleep()
    executor = BulkOperationExecutor(
        client, policy=RetryPolicy(max_attempts=3), sleep=sleep, rand=fixed_random(0.5)
    )

    keys = _keys(7)
    result = await executor.batch_get("users", keys)

    assert result.attempts == 3
    assert result.items == []
    assert len(result.failed) == len(keys)
    assert sorted(k["pk"]["S"] for k in result.failed) == sorted(k["pk"]["S"] for k in keys)
    assert result.complete is False
    assert sleep.delays == [pytest.approx(0.025), pytest.approx(0.05)]


async def test_batch_write_reports_persistently_unprocessed_requests() -> None:
    client = _EchoBatchClient(unprocessed_rounds=99)
    executor = BulkOperationExecutor(client, policy=RetryPolicy(max_attempts=2), sleep=no_sleep)

    result = await executor.batch_write("users", _puts(30))

    assert result.attempts == 2
    assert result.processed == 0
    assert len(result.failed) == 30
    assert result.calls == 4


async def test_batch_get_returns_processed_items_beside_failed_subset() -> None:
    client = _EchoBatchClient(always_defer=frozenset({"K2", "K7"}))
    executor = BulkOperationExecutor(client, policy=RetryPolicy(max_attempts=3), sleep=no_sleep)

    result = await executor.batch_get("users", _keys(10))

    assert result.attempts == 3
    assert result.calls == 3
    assert sorted(i["pk"]["S"] for i in result.items) == sorted(f"K{i}" for i in range(10) if i not in {2, 7})
    assert sorted(k["pk"]["S"] for k in result.failed) == ["K2", "K7"]
    assert client.get_calls[1] == client.get_calls[2] == [{"pk": {"S": "K2"}}, {"pk": {"S": "K7"}}]


async def test_batch_write_counts_processed_beside_failed_subset() -> None:
    client = _EchoBatchClient(always_defer=frozenset({"K0", "K29"}))
    executor = BulkOperationExecutor(client, policy=RetryPolicy(max_attempts=3), sleep=no_sleep)

    result = await executor.batch_write("users", _puts(30))

    assert result.attempts == 3
    assert result.processed == 28
    assert [r["PutRequest"]["Item"]["pk"]["S"] for r in result.failed] == ["K0", "K29"]
    assert [len(c) for c in client.write_calls] == [25, 5, 2, 2]


async def test_batch_get_resubmits_chunk_after_retryable_error() -> None:
    class Flaky:
        def __init__(self) -> None:
            self.calls = 0

        async def batch_get_item(self, *, RequestItems, ReturnConsumedCapacity):  # noqa: N803
            self.calls += 1
            if self.calls == 1:
                raise client_error("ProvisionedThroughputExceededException", "slow down")
            keys = RequestItems["users"]["Keys"]
            return {"Responses": {"users": keys}}

    client = Flaky()
    executor = BulkOperationExecutor(client, sleep=no_sleep)
    result = await executor.batch_get("users", _keys(3))

    assert client.calls == 2
    assert result.attempts == 2
    assert len(result.items) == 3


async def test_batch_get_propagates_non_retryable_error() -> None:
    class Broken:
        async def batch_get_item(self, **_: Any) -> dict[str, Any]:
            raise client_error("ValidationException", "bad key")

    executor = BulkOperationExecutor(Broken(), sleep=no_sleep)
    with pytest.raises(ValidationError, match="bad key"):
        await executor.batch_get("users", _keys(1))


async def test_batch_chunk_sizes_are_validated() -> None:
    executor = BulkOperationExecutor(_EchoBatchClient(), sleep=no_sleep)
    with pytest.raises(ValidationError):
        await executor.batch_get("users", _keys(1), read_chunk_size=101)
    with pytest.raises(ValidationError):
        await executor.batch_write("users", _puts(1), write_chunk_size=26)
    with pytest.raises(ValidationError) as exc:
        await executor.batch_write("users", [{"PutRequest": {}}, {"Nope": {}}])
    assert exc.value.position == 1


async def test_batch_get_with_smaller_chunks_and_projection() -> None:
    seen: list[dict[str, Any]] = []

    class Capture:
        async def batch_get_item(self, *, RequestItems, ReturnConsumedCapacity):  # noqa: N803
            seen.append(RequestItems["users"])
            return {"Responses": {"users": []}}

    executor = BulkOperationExecutor(Capture(), sleep=no_sleep)
    result = await executor.batch_get(
        "users",
        _keys(5),
        read_chunk_size=2,
        consistent_read=True,
        projection_expression="#p0",
        expression_attribute_names={"#p0": "name"},
    )

    assert result.calls == 3
    assert seen[0]["ConsistentRead"] is True
    assert seen[0]["ProjectionExpression"] == "#p0"
    assert seen[0]["ExpressionAttributeNames"] == {"#p0": "name"}


async def test_transact_write_passes_token_through_unchanged() -> None:
    client = FakeDynamoDBClient()
    client.expect(
        "transact_write_items",
        {"ClientRequestToken": "tok-123", "TransactItems": [{"Put": {"TableName": "t"}}]},
        response={},
    )

    executor = BulkOperationExecutor(client, sleep=no_sleep)
    await executor.transact_write([{"Put": {"TableName": "t"}}], client_request_token="tok-123")
    client.assert_no_pending()


async def test_transact_write_retries_throttling_with_the_same_token() -> None:
    client = FakeDynamoDBClient()
    client.expect("transact_write_items", error=client_error("ThrottlingException", "Rate exceeded"))
    client.expect("transact_write_items", response={})

    executor = BulkOperationExecutor(client, sleep=no_sleep)
    await executor.transact_write([{"Put": {"TableName": "t"}}], client_request_token="tok")

    client.assert_no_pending()
    assert [method for method, _ in client.calls] == ["transact_write_items", "transact_write_items"]
    assert [req["ClientRequestToken"] for _, req in client.calls] == ["tok", "tok"]


async def test_transaction_cancellation_is_not_retried() -> None:
    client = FakeDynamoDBClient()
    client.expect(
        "transact_write_items",
        error=client_error(
            "TransactionCanceledException",
            "Transaction cancelled",
            CancellationReasons=[
                {"Code": "None"},
                {"Code": "ConditionalCheckFailed", "Message": "The conditional request failed"},
            ],
        ),
    )

    executor = BulkOperationExecutor(client, sleep=no_sleep)
    with pytest.raises(TransactionCanceledError) as exc:
        await executor.transact_write([{"Put": {}}, {"ConditionCheck": {}}])

    assert exc.value.reason_codes == ("None", "ConditionalCheckFailed")
    assert exc.value.failed_indexes() == (1,)
    assert len(client.calls) == 1


async def test_transaction_item_limits() -> None:
    executor = BulkOperationExecutor(FakeDynamoDBClient(), sleep=no_sleep)
    with pytest.raises(ValidationError):
        await executor.transact_write([])
    with pytest.raises(ValidationError):
        await executor.transact_get([{"Get": {}}] * 101)


async def test_call_retries_then_reports_attempts() -> None:
    client = FakeDynamoDBClient()
    for _ in range(3):
        client.expect("get_item", error=client_error("ThrottlingException", "rate exceeded"))

    sleep = RecordingSleep()
    executor = BulkOperationExecutor(client, sleep=sleep, rand=fixed_random(0.5))
    with pytest.raises(RetryableError) as exc:
        await executor.call("get", "get_item", {"TableName": "t", "Key": {"pk": {"S": "A"}}})

    assert exc.value.attempts == 3
    assert exc.value.code == "ThrottlingException"
    assert exc.value.operation == "get"
    assert sleep.delays == [pytest.approx(0.025), pytest.approx(0.05)]


async def test_call_succeeds_after_transient_error() -> None:
    client = FakeDynamoDBClient()
    client.expect("get_item", error=client_error("InternalServerError", status=500))
    client.expect("get_item", response={"Item": {"pk": {"S": "A"}}})

    executor = BulkOperationExecutor(client, sleep=no_sleep)
    resp = await executor.call("get", "get_item", {"TableName": "t", "Key": {"pk": {"S": "A"}}})
    assert resp == {"Item": {"pk": {"S": "A"}}}


async def test_condition_failure_carries_key() -> None:
    client = FakeDynamoDBClient()
    client.expect("put_item", error=client_error("ConditionalCheckFailedException", "nope"))

    executor = BulkOperationExecutor(client, sleep=no_sleep)
    with pytest.raises(ConditionFailedError) as exc:
        await executor.call("put", "put_item", {"TableName": "t", "Key": {"pk": {"S": "A"}}})
    assert exc.value.operation == "put"
    assert exc.value.key == {"pk": {"S": "A"}}
    assert len(client.calls) == 1


async def test_call_timeout_maps_to_retryable_error() -> None:
    class Hangs:
        async def get_item(self, **_: Any) -> dict[str, Any]:
            await asyncio.Event().wait()
            return {}

    executor = BulkOperationExecutor(
        Hangs(), policy=RetryPolicy(max_attempts=1), sleep=no_sleep, call_timeout_seconds=0.01
    )
    with pytest.raises(RetryableError) as exc:
        await executor.call("get", "get_item", {"TableName": "t"})
    assert exc.value.code == "TimeoutError"
    assert exc.value.attempts == 1


def test_retry_policy_validation_and_backoff() -> None:
    with pytest.raises(ValidationError):
        RetryPolicy(max_attempts=0)
    with pytest.raises(ValidationError):
        RetryPolicy(base_delay_seconds=-1)
    with pytest.raises(ValidationError):
        RetryPolicy(base_delay_seconds=2.0, max_delay_seconds=1.0)

    policy = RetryPolicy(base_delay_seconds=0.1, max_delay_seconds=0.3, jitter=False)
    assert [policy.backoff_seconds(n) for n in (1, 2, 3, 4)] == [0.1, 0.2, 0.3, 0.3]

    jittered = RetryPolicy(base_delay_seconds=0.1, max_delay_seconds=1.0)
    assert jittered.backoff_seconds(2, fixed_random(0.25)) == pytest.approx(0.05)


def test_executor_rejects_non_positive_timeout() -> None:
    with pytest.raises(ValidationError):
        BulkOperationExecutor(FakeDynamoDBClient(), call_timeout_seconds=0)
