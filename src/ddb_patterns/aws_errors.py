from __future__ import annotations

import asyncio
from collections.abc import Mapping
from typing import Any

from botocore.exceptions import (
    ClientError,
    ConnectionClosedError,
    ConnectTimeoutError,
    EndpointConnectionError,
    ReadTimeoutError,
)

from .errors import (
    AwsError,
    ConditionFailedError,
    NotFoundError,
    RetryableError,
    TransactionCanceledError,
    ValidationError,
)

RETRYABLE_ERROR_CODES = frozenset(
    {
        "ProvisionedThroughputExceededException",
        "ThrottlingException",
        "RequestLimitExceeded",
        "InternalServerError",
        "ServiceUnavailable",
        "TransactionInProgressException",
    }
)

_NETWORK_ERRORS = (ReadTimeoutError, ConnectTimeoutError, EndpointConnectionError, ConnectionClosedError)


def _error_fields(err: ClientError) -> tuple[str, str, int]:
    error = err.response.get("Error", {})
    status = err.response.get("ResponseMetadata", {}).get("HTTPStatusCode") or 0
    return str(error.get("Code", "")), str(error.get("Message", "")), int(status)


def map_client_error(
    err: ClientError,
    *,
    operation: str | None = None,
    key: Mapping[str, Any] | None = None,
) -> Exception:
    code, message, status = _error_fields(err)

    if code == "ConditionalCheckFailedException":
        return ConditionFailedError(message or "condition check failed", operation=operation, key=key)
    if code == "ValidationException":
        return ValidationError(message)
    if code == "ResourceNotFoundException":
        return NotFoundError(message)
    if code == "TransactionCanceledException":
        return _transaction_canceled(err, message)
    if code in RETRYABLE_ERROR_CODES or status == 429 or status >= 500:
        return RetryableError(code=code or f"HTTP{status}", message=message or str(err), operation=operation)

    return AwsError(code=code or "UnknownError", message=message or str(err))


def _transaction_canceled(err: ClientError, message: str) -> TransactionCanceledError:
    reasons_raw = err.response.get("CancellationReasons") or []
    reasons = tuple(dict(reason) for reason in reasons_raw if isinstance(reason, dict))
    reason_codes = tuple(str(reason.get("Code") or "None") for reason in reasons)
    return TransactionCanceledError(
        message=message or "transaction canceled",
        reason_codes=reason_codes,
        reasons=reasons,
    )


def map_exception(
    err: Exception,
    *,
    operation: str | None = None,
    key: Mapping[str, Any] | None = None,
) -> Exception:
    if isinstance(err, ClientError):
        return map_client_error(err, operation=operation, key=key)
    if isinstance(err, TimeoutError | asyncio.TimeoutError):
        return RetryableError(code="TimeoutError", message=str(err) or "call timed out", operation=operation)
    if isinstance(err, _NETWORK_ERRORS):
        return RetryableError(code=type(err).__name__, message=str(err), operation=operation)
    return err


def is_retryable(err: BaseException) -> bool:
    return isinstance(err, RetryableError)
