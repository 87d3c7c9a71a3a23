from __future__ import annotations

import asyncio

from botocore.exceptions import EndpointConnectionError, ReadTimeoutError

from ddb_patterns import (
    AwsError,
    ConditionFailedError,
    NotFoundError,
    RetryableError,
    TransactionCanceledError,
    ValidationError,
)
from ddb_patterns.aws_errors import is_retryable, map_client_error, map_exception
from ddb_patterns.testkit import client_error


def test_map_client_error_by_code() -> None:
    cond = map_client_error(client_error("ConditionalCheckFailedException", "nope"), operation="put", key={"pk": 1})
    assert isinstance(cond, ConditionFailedError)
    assert cond.key == {"pk": 1}
    assert str(cond) == "put: nope"

    assert isinstance(map_client_error(client_error("ValidationException", "bad")), ValidationError)
    assert isinstance(map_client_error(client_error("ResourceNotFoundException", "gone")), NotFoundError)

    other = map_client_error(client_error("AccessDeniedException", "denied", status=403))
    assert isinstance(other, AwsError)
    assert other.code == "AccessDeniedException"


def test_throttling_and_server_errors_are_retryable() -> None:
    for code in ("ProvisionedThroughputExceededException", "ThrottlingException", "RequestLimitExceeded"):
        assert is_retryable(map_client_error(client_error(code)))

    server = map_client_error(client_error("", status=503))
    assert isinstance(server, RetryableError)
    assert server.code == "HTTP503"

    assert is_retryable(map_client_error(client_error("SomethingElse", status=429)))
    assert not is_retryable(map_client_error(client_error("SomethingElse", status=400)))


def test_transaction_cancellation_keeps_positional_reasons() -> None:
    err = map_client_error(
        client_error(
            "TransactionCanceledException",
            "Transaction cancelled, please refer cancellation reasons for specific reasons",
            CancellationReasons=[
                {"Code": "None"},
                {"Code": "ConditionalCheckFailed", "Message": "The conditional request failed"},
                {"Code": "None"},
            ],
        )
    )
    assert isinstance(err, TransactionCanceledError)
    assert err.reason_codes == ("None", "ConditionalCheckFailed", "None")
    assert err.failed_indexes() == (1,)
    assert err.reasons[1]["Message"] == "The conditional request failed"
    assert not is_retryable(err)


def test_map_exception_handles_timeouts_and_network_errors() -> None:
    timeout = map_exception(asyncio.TimeoutError(), operation="get")
    assert isinstance(timeout, RetryableError)
    assert timeout.code == "TimeoutError"

    read = map_exception(ReadTimeoutError(endpoint_url="http://localhost:8000"))
    assert isinstance(read, RetryableError)
    assert read.code == "ReadTimeoutError"

    conn = map_exception(EndpointConnectionError(endpoint_url="http://localhost:8000"))
    assert is_retryable(conn)

    boom = RuntimeError("boom")
    assert map_exception(boom) is boom
