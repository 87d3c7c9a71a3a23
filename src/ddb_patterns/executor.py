from __future__ import annotations

import asyncio
import logging
import random
from collections.abc import Awaitable, Callable, Mapping, Sequence
from dataclasses import dataclass, field
from typing import Any

from .aws_errors import is_retryable, map_exception
from .errors import RetryableError, ValidationError
from .runtime import as_async_client

logger = logging.getLogger(__name__)

MAX_BATCH_GET_KEYS = 100
MAX_BATCH_WRITE_REQUESTS = 25
MAX_TRANSACTION_ITEMS = 100


@dataclass(frozen=True)
class RetryPolicy:
    max_attempts: int = 3
    base_delay_seconds: float = 0.05
    max_delay_seconds: float = 1.0
    jitter: bool = True

    def __post_init__(self) -> None:
        if isinstance(self.max_attempts, bool) or not isinstance(self.max_attempts, int) or self.max_attempts < 1:
            raise ValidationError("max_attempts must be >= 1")
        if self.base_delay_seconds < 0:
            raise ValidationError("base_delay_seconds must be >= 0")
        if self.max_delay_seconds < self.base_delay_seconds:
            raise ValidationError("max_delay_seconds must be >= base_delay_seconds")

    def backoff_seconds(self, attempt: int, rand: Callable[[], float] = random.random) -> float:
        """Delay after round `attempt` (1-based), capped and optionally fully jittered."""
        seconds = min(self.max_delay_seconds, self.base_delay_seconds * (2.0 ** (attempt - 1)))
        if self.jitter:
            return seconds * rand()
        return seconds


@dataclass(frozen=True)
class BatchGetResult:
    items: list[dict[str, Any]]
    failed: list[dict[str, Any]]
    attempts: int
    calls: int
    consumed_capacity: list[dict[str, Any]] = field(default_factory=list)

    @property
    def complete(self) -> bool:
        return not self.failed


@dataclass(frozen=True)
class BatchWriteResult:
    processed: int
    failed: list[dict[str, Any]]
    attempts: int
    calls: int
    consumed_capacity: list[dict[str, Any]] = field(default_factory=list)

    @property
    def complete(self) -> bool:
        return not self.failed


def consumed_units(consumed: Any, kind: str = "CapacityUnits") -> float:
    """Sums capacity units from a single ConsumedCapacity map or a list of them."""
    if not consumed:
        return 0.0
    entries = consumed if isinstance(consumed, list) else [consumed]
    total = 0.0
    for entry in entries:
        if isinstance(entry, Mapping):
            total += float(entry.get(kind) or 0.0)
    return total


def _chunked[T](items: Sequence[T], size: int) -> list[list[T]]:
    if size <= 0:
        raise ValueError("size must be > 0")
    return [list(items[i : i + size]) for i in range(0, len(items), size)]


def _check_chunk_size(size: int, ceiling: int, label: str) -> None:
    if isinstance(size, bool) or not isinstance(size, int) or size < 1 or size > ceiling:
        raise ValidationError(f"{label} must be between 1 and {ceiling} (got {size!r})")


class BulkOperationExecutor:
    def __init__(
        self,
        client: Any,
        *,
        policy: RetryPolicy | None = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        rand: Callable[[], float] = random.random,
        call_timeout_seconds: float | None = None,
    ) -> None:
        if call_timeout_seconds is not None and call_timeout_seconds <= 0:
            raise ValidationError("call_timeout_seconds must be > 0")
        self._client = as_async_client(client)
        self._policy = policy or RetryPolicy()
        self._sleep = sleep
        self._rand = rand
        self._timeout = call_timeout_seconds

    @property
    def client(self) -> Any:
        return self._client

    @property
    def policy(self) -> RetryPolicy:
        return self._policy

    async def _invoke(self, method: str, request: Mapping[str, Any]) -> dict[str, Any]:
        coro = getattr(self._client, method)(**request)
        if self._timeout is None:
            resp = await coro
        else:
            resp = await asyncio.wait_for(coro, self._timeout)
        return dict(resp or {})

    async def _backoff(self, operation: str, attempt: int) -> None:
        delay = self._policy.backoff_seconds(attempt, self._rand)
        logger.debug("%s: retry round %d after %.3fs", operation, attempt + 1, delay)
        await self._sleep(delay)

    async def batch_get(
        self,
        table: str,
        keys: Sequence[Mapping[str, Any]],
        *,
        read_chunk_size: int = MAX_BATCH_GET_KEYS,
        consistent_read: bool = False,
        projection_expression: str | None = None,
        expression_attribute_names: Mapping[str, str] | None = None,
    ) -> BatchGetResult:
        _check_chunk_size(read_chunk_size, MAX_BATCH_GET_KEYS, "read_chunk_size")

        base: dict[str, Any] = {"ConsistentRead": consistent_read}
        if projection_expression:
            base["ProjectionExpression"] = projection_expression
        if expression_attribute_names:
            base["ExpressionAttributeNames"] = dict(expression_attribute_names)

        items: list[dict[str, Any]] = []
        consumed: list[dict[str, Any]] = []
        pending = [dict(k) for k in keys]
        attempts = 0
        calls = 0

        while pending and attempts < self._policy.max_attempts:
            if attempts:
                await self._backoff("batch_get", attempts)
            attempts += 1

            chunks = _chunked(pending, read_chunk_size)
            calls += len(chunks)
            results = await asyncio.gather(
                *(
                    self._invoke(
                        "batch_get_item",
                        {
                            "RequestItems": {table: dict(base, Keys=chunk)},
                            "ReturnConsumedCapacity": "TOTAL",
                        },
                    )
                    for chunk in chunks
                ),
                return_exceptions=True,
            )

            remaining: list[dict[str, Any]] = []
            for chunk, result in zip(chunks, results, strict=True):
                if isinstance(result, BaseException):
                    remaining.extend(self._retryable_chunk("batch_get", chunk, result))
                    continue
                items.extend(result.get("Responses", {}).get(table, []))
                consumed.extend(result.get("ConsumedCapacity") or [])
                remaining.extend(result.get("UnprocessedKeys", {}).get(table, {}).get("Keys") or [])
            pending = remaining

        if pending:
            logger.warning(
                "batch_get on %s left %d key(s) unprocessed after %d attempt(s)", table, len(pending), attempts
            )

        return BatchGetResult(items=items, failed=pending, attempts=attempts, calls=calls, consumed_capacity=consumed)

    async def batch_write(
        self,
        table: str,
        requests: Sequence[Mapping[str, Any]],
        *,
        write_chunk_size: int = MAX_BATCH_WRITE_REQUESTS,
    ) -> BatchWriteResult:
        _check_chunk_size(write_chunk_size, MAX_BATCH_WRITE_REQUESTS, "write_chunk_size")
        for i, req in enumerate(requests):
            if set(req) - {"PutRequest", "DeleteRequest"} or len(req) != 1:
                raise ValidationError(
                    f"write request at position {i} must hold exactly one PutRequest or DeleteRequest", position=i
                )

        consumed: list[dict[str, Any]] = []
        pending = [dict(r) for r in requests]
        total = len(pending)
        attempts = 0
        calls = 0

        while pending and attempts < self._policy.max_attempts:
            if attempts:
                await self._backoff("batch_write", attempts)
            attempts += 1

            chunks = _chunked(pending, write_chunk_size)
            calls += len(chunks)
            results = await asyncio.gather(
                *(
                    self._invoke(
                        "batch_write_item",
                        {"RequestItems": {table: chunk}, "ReturnConsumedCapacity": "TOTAL"},
                    )
                    for chunk in chunks
                ),
                return_exceptions=True,
            )

            remaining: list[dict[str, Any]] = []
            for chunk, result in zip(chunks, results, strict=True):
                if isinstance(result, BaseException):
                    remaining.extend(self._retryable_chunk("batch_write", chunk, result))
                    continue
                consumed.extend(result.get("ConsumedCapacity") or [])
                remaining.extend(result.get("UnprocessedItems", {}).get(table, []) or [])
            pending = remaining

        if pending:
            logger.warning(
                "batch_write on %s left %d request(s) unprocessed after %d attempt(s)",
                table,
                len(pending),
                attempts,
            )

        return BatchWriteResult(
            processed=total - len(pending),
            failed=pending,
            attempts=attempts,
            calls=calls,
            consumed_capacity=consumed,
        )

    def _retryable_chunk(
        self, operation: str, chunk: list[dict[str, Any]], err: BaseException
    ) -> list[dict[str, Any]]:
        if not isinstance(err, Exception):
            raise err
        mapped = map_exception(err, operation=operation)
        if not is_retryable(mapped):
            if mapped is err:
                raise err
            raise mapped from err
        logger.debug("%s: chunk of %d failed with %s; resubmitting", operation, len(chunk), mapped)
        return chunk

    async def transact_write(
        self,
        items: Sequence[Mapping[str, Any]],
        *,
        client_request_token: str | None = None,
    ) -> dict[str, Any]:
        _check_transaction(items)
        request: dict[str, Any] = {"TransactItems": [dict(i) for i in items], "ReturnConsumedCapacity": "TOTAL"}
        if client_request_token is not None:
            request["ClientRequestToken"] = client_request_token
        return await self._retrying("transact_write", "transact_write_items", request)

    async def transact_get(self, items: Sequence[Mapping[str, Any]]) -> dict[str, Any]:
        _check_transaction(items)
        request = {"TransactItems": [dict(i) for i in items], "ReturnConsumedCapacity": "TOTAL"}
        return await self._retrying("transact_get", "transact_get_items", request)

    async def call(self, operation: str, method: str, request: Mapping[str, Any]) -> dict[str, Any]:
        """Runs a single-item store call under the retry policy."""
        return await self._retrying(operation, method, request)

    async def _retrying(self, operation: str, method: str, request: Mapping[str, Any]) -> dict[str, Any]:
        key = request.get("Key")
        attempt = 0
        while True:
            attempt += 1
            try:
                return await self._invoke(method, request)
            except Exception as err:
                mapped = map_exception(err, operation=operation, key=key)
                if not isinstance(mapped, RetryableError):
                    if mapped is err:
                        raise
                    raise mapped from err
                if attempt >= self._policy.max_attempts:
                    raise RetryableError(
                        code=mapped.code, message=mapped.message, operation=operation, attempts=attempt
                    ) from err
            await self._backoff(operation, attempt)


def _check_transaction(items: Sequence[Mapping[str, Any]]) -> None:
    if not items:
        raise ValidationError("a transaction requires at least one item")
    if len(items) > MAX_TRANSACTION_ITEMS:
        raise ValidationError(f"a transaction supports at most {MAX_TRANSACTION_ITEMS} items (got {len(items)})")
