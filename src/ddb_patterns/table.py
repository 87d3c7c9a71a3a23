from __future__ import annotations

import json
import logging
import time
from collections.abc import Callable, Mapping, Sequence
from contextlib import AsyncExitStack
from dataclasses import replace
from typing import Any, Literal

from boto3.dynamodb.types import TypeDeserializer, TypeSerializer
from pydantic import BaseModel

from .detector import AntiPatternDetector, DetectorConfig
from .errors import ValidationError
from .executor import BatchGetResult, BatchWriteResult, BulkOperationExecutor, consumed_units
from .expressions import (
    Placeholders,
    filter_expression,
    key_condition_expression,
    projection_expression,
    update_expression,
)
from .keys import key_label
from .model import IndexShape
from .query import (
    FilterExpression,
    KeyCondition,
    KeyPart,
    Page,
    SortKeyCondition,
    decode_cursor,
    encode_cursor,
)
from .recommendations import Recommendation, RecommendationEngine
from .registry import AccessPattern, AccessPatternRegistry, ResolvedPattern, validate_key_shape
from .runtime import get_async_dynamodb_client
from .stats import OperationRecord, StatsCollector, TableStats
from .transaction import (
    TransactConditionCheck,
    TransactDelete,
    TransactGet,
    TransactPut,
    TransactUpdate,
    TransactWriteAction,
)
from .validation import validate_attribute_name, validate_item, validate_partial_item, validate_table_name

logger = logging.getLogger(__name__)


def _approx_size(item: Mapping[str, Any]) -> int:
    return len(json.dumps(item, default=str, separators=(",", ":")).encode("utf-8"))


class _Observation:
    """Timing and sampling state for one logical operation."""

    def __init__(self, facade: TableFacade, operation: str) -> None:
        self.operation = operation
        self.sampled = facade._stats.should_sample()
        self.timestamp = facade._clock()
        self._started = time.perf_counter()

    def latency_ms(self) -> float:
        return (time.perf_counter() - self._started) * 1000.0


class TableFacade:
    """Public operation surface for one table.

    Items and keys are plain mappings; they are marshalled with boto3's
    TypeSerializer/TypeDeserializer, so numbers come back as Decimal. Every
    store call goes through the executor's retry policy, and each sampled
    operation appends one OperationRecord to the stats collector.

    Without a client or executor the facade opens its own aiobotocore client:

        async with TableFacade("orders", region="eu-west-1") as table:
            await table.get({"pk": "USER#1", "sk": "PROFILE"})

    A registry passed as `patterns` is copied and the copy is frozen.
    """

    def __init__(
        self,
        table_name: str,
        client: Any | None = None,
        partition_key: str = "pk",
        sort_key: str | None = "sk",
        indexes: Sequence[IndexShape] = (),
        patterns: Mapping[str, AccessPattern] | AccessPatternRegistry | None = None,
        stats: StatsCollector | None = None,
        executor: BulkOperationExecutor | None = None,
        detector_config: DetectorConfig | None = None,
        *,
        clock: Callable[[], float] = time.time,
        schema: type[BaseModel] | None = None,
        region: str | None = None,
        endpoint_url: str | None = None,
    ) -> None:
        validate_table_name(table_name)
        validate_attribute_name(partition_key)
        if sort_key is not None:
            validate_attribute_name(sort_key)
            if sort_key == partition_key:
                raise ValidationError("sort_key must differ from partition_key")

        self._table_name = table_name
        self._partition_key = partition_key
        self._sort_key = sort_key
        self._clock = clock
        self._schema = schema

        if isinstance(patterns, AccessPatternRegistry):
            registry = patterns.copy()
            for shape in indexes:
                registry.add_index(shape)
        else:
            registry = AccessPatternRegistry(indexes)
            for name, pattern in (patterns or {}).items():
                registry.register(name, pattern)
        registry.freeze()
        self._registry = registry

        if executor is None and client is not None:
            executor = BulkOperationExecutor(client)
        self._executor = executor
        self._region = region
        self._endpoint_url = endpoint_url
        self._exit_stack: AsyncExitStack | None = None
        self._stats = stats if stats is not None else StatsCollector()
        self._detector = AntiPatternDetector(detector_config)
        self._engine = RecommendationEngine(self._stats.config, detector=self._detector)

        self._serializer = TypeSerializer()
        self._deserializer = TypeDeserializer()

    @property
    def table_name(self) -> str:
        return self._table_name

    @property
    def patterns(self) -> AccessPatternRegistry:
        return self._registry

    @property
    def stats(self) -> StatsCollector:
        return self._stats

    @property
    def executor(self) -> BulkOperationExecutor:
        if self._executor is None:
            raise RuntimeError("TableFacade has no client: pass one, or use 'async with TableFacade(...)'")
        return self._executor

    # -- client lifecycle --------------------------------------------------

    async def open(self) -> None:
        """Opens an aiobotocore client when none was supplied."""
        if self._executor is not None:
            return
        stack = AsyncExitStack()
        client = await stack.enter_async_context(
            get_async_dynamodb_client(region=self._region, endpoint_url=self._endpoint_url)
        )
        self._exit_stack = stack
        self._executor = BulkOperationExecutor(client)

    async def close(self) -> None:
        if self._exit_stack is None:
            return
        stack, self._exit_stack = self._exit_stack, None
        self._executor = None
        await stack.aclose()

    async def __aenter__(self) -> TableFacade:
        await self.open()
        return self

    async def __aexit__(self, *exc: object) -> None:
        await self.close()

    # -- marshalling -------------------------------------------------------

    def _key_attrs(self) -> tuple[str, ...]:
        if self._sort_key is None:
            return (self._partition_key,)
        return (self._partition_key, self._sort_key)

    def _to_key(self, key: Mapping[str, Any]) -> dict[str, Any]:
        if not isinstance(key, Mapping):
            raise ValidationError("key must be a mapping of attribute name to value")
        out: dict[str, Any] = {}
        for attr in self._key_attrs():
            value = key.get(attr)
            if value is None:
                raise ValidationError(f"key is missing {attr!r}")
            out[attr] = self._serializer.serialize(value)
        extra = sorted(set(key) - set(self._key_attrs()))
        if extra:
            raise ValidationError(f"key has non-key attributes: {extra}")
        return out

    def _to_item(self, item: Mapping[str, Any]) -> dict[str, Any]:
        if not isinstance(item, Mapping):
            raise ValidationError("item must be a mapping")
        for attr in self._key_attrs():
            if item.get(attr) is None:
                raise ValidationError(f"item is missing key attribute {attr!r}")
        return {str(k): self._serializer.serialize(v) for k, v in item.items()}

    def _check_item(self, item: Mapping[str, Any]) -> None:
        if self._schema is not None:
            validate_item(self._schema, item)

    def _check_updates(self, updates: Mapping[str, Any]) -> None:
        if self._schema is not None:
            validate_partial_item(self._schema, updates)

    def _from_item(self, item: Mapping[str, Any]) -> dict[str, Any]:
        return {k: self._deserializer.deserialize(v) for k, v in item.items()}

    def _key_labels(self, key: Mapping[str, Any]) -> tuple[str | None, str | None]:
        pk = key.get(self._partition_key)
        sk = key.get(self._sort_key) if self._sort_key is not None else None
        return (
            key_label(pk) if pk is not None else None,
            key_label(sk) if sk is not None else None,
        )

    def _apply_condition(
        self,
        req: dict[str, Any],
        *,
        condition: FilterExpression | None,
        condition_expression: str | None,
        expression_attribute_names: Mapping[str, str] | None,
        expression_attribute_values: Mapping[str, Any] | None,
        refs: Placeholders | None = None,
    ) -> dict[str, Any]:
        if condition is not None and condition_expression:
            raise ValidationError("pass either condition or condition_expression, not both")

        refs = refs or Placeholders()
        if condition is not None:
            req["ConditionExpression"] = filter_expression(condition, refs, prefix="c")
        elif condition_expression:
            req["ConditionExpression"] = condition_expression
        refs.apply(req)

        if expression_attribute_names:
            names = req.setdefault("ExpressionAttributeNames", {})
            for k, v in expression_attribute_names.items():
                if k in names:
                    raise ValidationError(f"expression attribute name collision: {k}")
                names[k] = v

        if expression_attribute_values:
            values = req.setdefault("ExpressionAttributeValues", {})
            for k, v in expression_attribute_values.items():
                if k in values:
                    raise ValidationError(f"expression attribute value collision: {k}")
                values[k] = self._serializer.serialize(v)

        return req

    # -- stats -------------------------------------------------------------

    def _observe(self, operation: str) -> _Observation:
        return _Observation(self, operation)

    def _record(self, obs: _Observation, **fields: Any) -> None:
        if not obs.sampled:
            return
        try:
            self._stats.record(
                OperationRecord(
                    operation=obs.operation,
                    timestamp=obs.timestamp,
                    latency_ms=obs.latency_ms(),
                    table=self._table_name,
                    **fields,
                )
            )
        except Exception:
            logger.warning("failed to record %s stats for %s", obs.operation, self._table_name, exc_info=True)

    # -- single item -------------------------------------------------------

    async def get(
        self,
        key: Mapping[str, Any],
        *,
        consistent_read: bool = False,
        projection: Sequence[str] | None = None,
    ) -> dict[str, Any] | None:
        obs = self._observe("get")
        req: dict[str, Any] = {
            "TableName": self._table_name,
            "Key": self._to_key(key),
            "ConsistentRead": consistent_read,
            "ReturnConsumedCapacity": "TOTAL",
        }
        if projection:
            refs = Placeholders()
            req["ProjectionExpression"] = projection_expression(projection, refs)
            refs.apply(req)

        resp = await self.executor.call("get", "get_item", req)
        raw = resp.get("Item")

        pk, sk = self._key_labels(key)
        self._record(
            obs,
            rcu=consumed_units(resp.get("ConsumedCapacity")),
            item_count=1 if raw else 0,
            partition_key=pk,
            sort_key=sk,
            projection=bool(projection),
        )
        return self._from_item(raw) if raw else None

    async def put(
        self,
        item: Mapping[str, Any],
        *,
        condition: FilterExpression | None = None,
        condition_expression: str | None = None,
        expression_attribute_names: Mapping[str, str] | None = None,
        expression_attribute_values: Mapping[str, Any] | None = None,
    ) -> None:
        self._check_item(item)
        obs = self._observe("put")
        req = self._apply_condition(
            {
                "TableName": self._table_name,
                "Item": self._to_item(item),
                "ReturnConsumedCapacity": "TOTAL",
            },
            condition=condition,
            condition_expression=condition_expression,
            expression_attribute_names=expression_attribute_names,
            expression_attribute_values=expression_attribute_values,
        )
        resp = await self.executor.call("put", "put_item", req)

        pk, sk = self._key_labels(item)
        self._record(
            obs,
            wcu=consumed_units(resp.get("ConsumedCapacity")),
            item_count=1,
            partition_key=pk,
            sort_key=sk,
            item_size_bytes=_approx_size(item),
        )

    def _build_update_request(
        self,
        key: Mapping[str, Any],
        updates: Mapping[str, Any],
        *,
        condition: FilterExpression | None = None,
        condition_expression: str | None = None,
        expression_attribute_names: Mapping[str, str] | None = None,
        expression_attribute_values: Mapping[str, Any] | None = None,
        table: str | None = None,
    ) -> dict[str, Any]:
        refs = Placeholders()
        req: dict[str, Any] = {
            "TableName": table or self._table_name,
            "Key": self._to_key(key),
            "UpdateExpression": update_expression(updates, self._key_attrs(), refs),
        }
        return self._apply_condition(
            req,
            condition=condition,
            condition_expression=condition_expression,
            expression_attribute_names=expression_attribute_names,
            expression_attribute_values=expression_attribute_values,
            refs=refs,
        )

    async def update(
        self,
        key: Mapping[str, Any],
        updates: Mapping[str, Any],
        *,
        condition: FilterExpression | None = None,
        condition_expression: str | None = None,
        expression_attribute_names: Mapping[str, str] | None = None,
        expression_attribute_values: Mapping[str, Any] | None = None,
        return_values: Literal["NONE", "ALL_OLD", "UPDATED_OLD", "ALL_NEW", "UPDATED_NEW"] = "ALL_NEW",
    ) -> dict[str, Any] | None:
        """Applies `updates` as SET, or REMOVE for attributes mapped to None."""
        self._check_updates(updates)
        obs = self._observe("update")
        req = self._build_update_request(
            key,
            updates,
            condition=condition,
            condition_expression=condition_expression,
            expression_attribute_names=expression_attribute_names,
            expression_attribute_values=expression_attribute_values,
        )
        req["ReturnValues"] = return_values
        req["ReturnConsumedCapacity"] = "TOTAL"
        resp = await self.executor.call("update", "update_item", req)

        pk, sk = self._key_labels(key)
        self._record(
            obs,
            wcu=consumed_units(resp.get("ConsumedCapacity")),
            item_count=1,
            partition_key=pk,
            sort_key=sk,
        )
        attrs = resp.get("Attributes")
        return self._from_item(attrs) if attrs else None

    async def delete(
        self,
        key: Mapping[str, Any],
        *,
        condition: FilterExpression | None = None,
        condition_expression: str | None = None,
        expression_attribute_names: Mapping[str, str] | None = None,
        expression_attribute_values: Mapping[str, Any] | None = None,
    ) -> None:
        obs = self._observe("delete")
        req = self._apply_condition(
            {
                "TableName": self._table_name,
                "Key": self._to_key(key),
                "ReturnConsumedCapacity": "TOTAL",
            },
            condition=condition,
            condition_expression=condition_expression,
            expression_attribute_names=expression_attribute_names,
            expression_attribute_values=expression_attribute_values,
        )
        resp = await self.executor.call("delete", "delete_item", req)

        pk, sk = self._key_labels(key)
        self._record(
            obs,
            wcu=consumed_units(resp.get("ConsumedCapacity")),
            item_count=1,
            partition_key=pk,
            sort_key=sk,
        )

    # -- query / scan ------------------------------------------------------

    def _resolve_index(self, index: str | None) -> tuple[tuple[str, ...], tuple[str, ...], IndexShape | None]:
        if index is None:
            sort = (self._sort_key,) if self._sort_key is not None else ()
            return (self._partition_key,), sort, None

        shape = self._registry.index_shapes().get(index)
        if shape is None:
            raise ValidationError(f"unknown index: {index} (register an IndexShape for it)")
        return shape.partition_names, shape.sort_names, shape

    def _start_key(self, cursor: str | None, index: str | None, sort: str | None) -> dict[str, Any] | None:
        if cursor is None:
            return None
        try:
            decoded = decode_cursor(cursor)
        except Exception as err:
            raise ValidationError("invalid cursor") from err
        if decoded.index != index:
            raise ValidationError("cursor index does not match request")
        if sort is not None and decoded.sort is not None and decoded.sort != sort:
            raise ValidationError("cursor sort does not match query")
        return decoded.last_key

    async def query(
        self,
        partition: KeyPart | KeyCondition,
        *,
        sort: SortKeyCondition | KeyPart | None = None,
        index: str | None = None,
        filter: FilterExpression | None = None,
        projection: Sequence[str] | None = None,
        limit: int | None = None,
        cursor: str | None = None,
        scan_forward: bool = True,
        consistent_read: bool = False,
    ) -> Page[dict[str, Any]]:
        if isinstance(partition, KeyCondition):
            if sort is not None:
                raise ValidationError("sort must be part of the KeyCondition when one is passed")
            condition = partition
        else:
            condition = KeyCondition.of(partition, sort)

        return await self._query(
            condition,
            index=index,
            filter=filter,
            projection=projection,
            limit=limit,
            cursor=cursor,
            scan_forward=scan_forward,
            consistent_read=consistent_read,
        )

    async def _query(
        self,
        condition: KeyCondition,
        *,
        index: str | None = None,
        filter: FilterExpression | None = None,
        projection: Sequence[str] | None = None,
        limit: int | None = None,
        cursor: str | None = None,
        scan_forward: bool = True,
        consistent_read: bool = False,
        pattern: str | None = None,
    ) -> Page[dict[str, Any]]:
        if limit is not None and limit <= 0:
            raise ValidationError("limit must be > 0")

        obs = self._observe("query")
        partition_attrs, sort_attrs, shape = self._resolve_index(index)
        if shape is not None:
            validate_key_shape(pattern or "query", condition, shape)

        refs = Placeholders()
        direction: Literal["ASC", "DESC"] = "ASC" if scan_forward else "DESC"
        req: dict[str, Any] = {
            "TableName": self._table_name,
            "KeyConditionExpression": key_condition_expression(condition, partition_attrs, sort_attrs, refs),
            "ScanIndexForward": scan_forward,
            "ConsistentRead": consistent_read,
            "ReturnConsumedCapacity": "TOTAL",
        }
        if index is not None:
            req["IndexName"] = index
        if limit is not None:
            req["Limit"] = limit
        start = self._start_key(cursor, index, direction)
        if start is not None:
            req["ExclusiveStartKey"] = start
        if projection:
            req["ProjectionExpression"] = projection_expression(projection, refs)
        if filter is not None:
            expr = filter_expression(filter, refs)
            if expr:
                req["FilterExpression"] = expr
        refs.apply(req)

        resp = await self.executor.call("query", "query", req)
        raw_items = resp.get("Items", [])
        last = resp.get("LastEvaluatedKey")
        count = int(resp.get("Count", len(raw_items)))
        scanned = int(resp.get("ScannedCount", count))

        self._record(
            obs,
            rcu=consumed_units(resp.get("ConsumedCapacity")),
            item_count=count,
            scanned_count=scanned,
            index=index,
            pattern=pattern,
            partition_key=key_label(condition.partition),
            projection=bool(projection),
        )
        return Page(
            items=[self._from_item(i) for i in raw_items],
            next_cursor=encode_cursor(last, index=index, sort=direction) if last else None,
            count=count,
            scanned_count=scanned,
        )

    async def query_all(
        self,
        partition: KeyPart | KeyCondition,
        *,
        sort: SortKeyCondition | KeyPart | None = None,
        index: str | None = None,
        filter: FilterExpression | None = None,
        projection: Sequence[str] | None = None,
        page_size: int | None = None,
        scan_forward: bool = True,
        consistent_read: bool = False,
    ) -> list[dict[str, Any]]:
        out: list[dict[str, Any]] = []
        next_cursor: str | None = None
        while True:
            page = await self.query(
                partition,
                sort=sort,
                index=index,
                filter=filter,
                projection=projection,
                limit=page_size,
                cursor=next_cursor,
                scan_forward=scan_forward,
                consistent_read=consistent_read,
            )
            out.extend(page.items)
            if page.next_cursor is None:
                return out
            next_cursor = page.next_cursor

    async def scan(
        self,
        *,
        index: str | None = None,
        filter: FilterExpression | None = None,
        projection: Sequence[str] | None = None,
        limit: int | None = None,
        cursor: str | None = None,
        consistent_read: bool = False,
        segment: int | None = None,
        total_segments: int | None = None,
    ) -> Page[dict[str, Any]]:
        if limit is not None and limit <= 0:
            raise ValidationError("limit must be > 0")
        if (segment is None) != (total_segments is None):
            raise ValidationError("segment and total_segments must be passed together")
        if total_segments is not None and segment is not None:
            if total_segments <= 0 or not 0 <= segment < total_segments:
                raise ValidationError("segment must be in [0, total_segments)")
        if index is not None:
            self._resolve_index(index)

        obs = self._observe("scan")
        refs = Placeholders()
        req: dict[str, Any] = {
            "TableName": self._table_name,
            "ConsistentRead": consistent_read,
            "ReturnConsumedCapacity": "TOTAL",
        }
        if index is not None:
            req["IndexName"] = index
        if limit is not None:
            req["Limit"] = limit
        if segment is not None:
            req["Segment"] = segment
            req["TotalSegments"] = total_segments
        start = self._start_key(cursor, index, None)
        if start is not None:
            req["ExclusiveStartKey"] = start
        if projection:
            req["ProjectionExpression"] = projection_expression(projection, refs)
        if filter is not None:
            expr = filter_expression(filter, refs)
            if expr:
                req["FilterExpression"] = expr
        refs.apply(req)

        resp = await self.executor.call("scan", "scan", req)
        raw_items = resp.get("Items", [])
        last = resp.get("LastEvaluatedKey")
        count = int(resp.get("Count", len(raw_items)))
        scanned = int(resp.get("ScannedCount", count))

        self._record(
            obs,
            rcu=consumed_units(resp.get("ConsumedCapacity")),
            item_count=count,
            scanned_count=scanned,
            index=index,
            projection=bool(projection),
        )
        return Page(
            items=[self._from_item(i) for i in raw_items],
            next_cursor=encode_cursor(last, index=index) if last else None,
            count=count,
            scanned_count=scanned,
        )

    async def scan_all(
        self,
        *,
        index: str | None = None,
        filter: FilterExpression | None = None,
        projection: Sequence[str] | None = None,
        page_size: int | None = None,
        consistent_read: bool = False,
    ) -> list[dict[str, Any]]:
        out: list[dict[str, Any]] = []
        next_cursor: str | None = None
        while True:
            page = await self.scan(
                index=index,
                filter=filter,
                projection=projection,
                limit=page_size,
                cursor=next_cursor,
                consistent_read=consistent_read,
            )
            out.extend(page.items)
            if page.next_cursor is None:
                return out
            next_cursor = page.next_cursor

    # -- batch -------------------------------------------------------------

    async def batch_get(
        self,
        keys: Sequence[Mapping[str, Any]],
        *,
        consistent_read: bool = False,
        projection: Sequence[str] | None = None,
        read_chunk_size: int = 100,
    ) -> BatchGetResult:
        """Reads every key, retrying unprocessed keys; leftovers come back in `failed`."""
        if not keys:
            return BatchGetResult(items=[], failed=[], attempts=0, calls=0)

        obs = self._observe("batch_get")
        serialized = [self._to_key(k) for k in keys]
        names: dict[str, str] | None = None
        expr: str | None = None
        if projection:
            refs = Placeholders()
            expr = projection_expression(projection, refs)
            names = refs.names

        result = await self.executor.batch_get(
            self._table_name,
            serialized,
            read_chunk_size=read_chunk_size,
            consistent_read=consistent_read,
            projection_expression=expr,
            expression_attribute_names=names,
        )

        self._record(
            obs,
            rcu=consumed_units(result.consumed_capacity),
            item_count=len(result.items),
            projection=bool(projection),
            metadata={"requested": len(keys), "failed": len(result.failed), "attempts": result.attempts},
        )
        return replace(
            result,
            items=[self._from_item(i) for i in result.items],
            failed=[self._from_item(k) for k in result.failed],
        )

    async def batch_write(
        self,
        *,
        puts: Sequence[Mapping[str, Any]] = (),
        deletes: Sequence[Mapping[str, Any]] = (),
        write_chunk_size: int = 25,
    ) -> BatchWriteResult:
        for item in puts:
            self._check_item(item)
        requests: list[dict[str, Any]] = [{"PutRequest": {"Item": self._to_item(item)}} for item in puts]
        requests.extend({"DeleteRequest": {"Key": self._to_key(key)}} for key in deletes)
        if not requests:
            return BatchWriteResult(processed=0, failed=[], attempts=0, calls=0)

        obs = self._observe("batch_write")
        result = await self.executor.batch_write(self._table_name, requests, write_chunk_size=write_chunk_size)

        self._record(
            obs,
            wcu=consumed_units(result.consumed_capacity),
            item_count=result.processed,
            metadata={
                "puts": len(puts),
                "deletes": len(deletes),
                "failed": len(result.failed),
                "attempts": result.attempts,
            },
        )
        return replace(result, failed=[self._from_request(r) for r in result.failed])

    def _from_request(self, req: Mapping[str, Any]) -> dict[str, Any]:
        if "PutRequest" in req:
            return {"PutRequest": {"Item": self._from_item(req["PutRequest"]["Item"])}}
        return {"DeleteRequest": {"Key": self._from_item(req["DeleteRequest"]["Key"])}}

    # -- transactions ------------------------------------------------------

    def _transact_item(self, action: TransactWriteAction) -> dict[str, Any]:
        cond = {
            "condition": action.condition,
            "condition_expression": action.condition_expression,
            "expression_attribute_names": action.expression_attribute_names,
            "expression_attribute_values": action.expression_attribute_values,
        }
        table = action.table or self._table_name

        if isinstance(action, TransactPut):
            self._check_item(action.item)
            return {"Put": self._apply_condition({"TableName": table, "Item": self._to_item(action.item)}, **cond)}
        if isinstance(action, TransactDelete):
            return {"Delete": self._apply_condition({"TableName": table, "Key": self._to_key(action.key)}, **cond)}
        if isinstance(action, TransactUpdate):
            self._check_updates(action.updates)
            return {"Update": self._build_update_request(action.key, action.updates, table=table, **cond)}
        if isinstance(action, TransactConditionCheck):
            if action.condition is None and not action.condition_expression:
                raise ValidationError("condition check requires a condition")
            return {
                "ConditionCheck": self._apply_condition(
                    {"TableName": table, "Key": self._to_key(action.key)}, **cond
                )
            }
        raise ValidationError(f"unsupported transaction action: {type(action).__name__}")

    async def transact_write(
        self,
        actions: Sequence[TransactWriteAction],
        *,
        client_request_token: str | None = None,
    ) -> None:
        """All-or-nothing write; cancellation raises TransactionCanceledError with per-action reasons."""
        items = [self._transact_item(a) for a in actions]
        obs = self._observe("transact_write")
        resp = await self.executor.transact_write(items, client_request_token=client_request_token)
        self._record(
            obs,
            wcu=consumed_units(resp.get("ConsumedCapacity")),
            item_count=len(items),
            metadata={"actions": len(items)},
        )

    async def transact_get(self, gets: Sequence[TransactGet | Mapping[str, Any]]) -> list[dict[str, Any] | None]:
        items: list[dict[str, Any]] = []
        for entry in gets:
            get = entry if isinstance(entry, TransactGet) else TransactGet(key=entry)
            req: dict[str, Any] = {"TableName": get.table or self._table_name, "Key": self._to_key(get.key)}
            if get.projection:
                refs = Placeholders()
                req["ProjectionExpression"] = projection_expression(get.projection, refs)
                refs.apply(req)
            items.append({"Get": req})

        obs = self._observe("transact_get")
        resp = await self.executor.transact_get(items)
        responses = resp.get("Responses") or []
        out = [self._from_item(r["Item"]) if r.get("Item") else None for r in responses]

        self._record(
            obs,
            rcu=consumed_units(resp.get("ConsumedCapacity")),
            item_count=sum(1 for i in out if i is not None),
            metadata={"requested": len(items)},
        )
        return out

    # -- access patterns ---------------------------------------------------

    def resolve_pattern(self, name: str, params: Mapping[str, Any] | None = None) -> ResolvedPattern:
        return self._registry.resolve(name, params)

    async def execute_pattern(
        self,
        name: str,
        params: Mapping[str, Any] | None = None,
        *,
        limit: int | None = None,
        cursor: str | None = None,
        scan_forward: bool = True,
        projection: Sequence[str] | None = None,
    ) -> Page[Any]:
        resolved = self._registry.resolve(name, params)
        page = await self._query(
            resolved.key_condition,
            index=resolved.index,
            filter=resolved.filter,
            projection=projection,
            limit=limit,
            cursor=cursor,
            scan_forward=scan_forward,
            pattern=name,
        )
        if resolved.transform is None:
            return page
        return replace(page, items=[resolved.transform(item) for item in page.items])

    # -- telemetry ---------------------------------------------------------

    def get_stats(self) -> TableStats:
        return self._stats.get_stats()

    def get_recommendations(self) -> list[Recommendation]:
        return self._engine.generate(self._stats.export(), index_names=self._registry.index_shapes())

    def export(self) -> list[dict[str, Any]]:
        return [r.to_dict() for r in self._stats.export()]

    def reset(self) -> None:
        self._stats.reset()
