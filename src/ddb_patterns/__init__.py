from __future__ import annotations

import json
import re
from importlib.resources import files
from typing import TYPE_CHECKING, Any

from .errors import (
    AwsError,
    ConditionFailedError,
    DdbPatternsError,
    DuplicatePatternError,
    KeyShapeMismatchError,
    NotFoundError,
    PatternNotFoundError,
    RetryableError,
    TransactionCanceledError,
    ValidationError,
)
from .keys import (
    composite_key,
    distributed_key,
    entity_key,
    hierarchical_multi_key,
    increment_version,
    multi_attribute_item,
    multi_attribute_key,
    multi_tenant_key,
    parse_composite_key,
    parse_entity_key,
    parse_multi_attribute_key,
    shard_number,
    time_series_key,
    time_series_multi_key,
    ttl_timestamp,
)
from .model import IndexShape, KeyAttribute, index_shape
from .query import FilterCondition, FilterGroup, KeyCondition, Page, SortKeyCondition
from .registry import AccessPattern, AccessPatternRegistry, ResolvedPattern
from .stats import OperationRecord, StatsCollector, StatsConfig, TableStats
from .transaction import (
    TransactConditionCheck,
    TransactDelete,
    TransactGet,
    TransactPut,
    TransactUpdate,
    TransactWriteAction,
)

if TYPE_CHECKING:
    from .detector import (
        AntiPatternDetector,
        DetectorConfig,
        detect_hot_partitions,
        detect_inefficient_reads,
        detect_large_items,
        detect_missing_indexes,
        detect_read_before_write,
        detect_unused_indexes,
    )
    from .executor import BatchGetResult, BatchWriteResult, BulkOperationExecutor, RetryPolicy
    from .recommendations import Recommendation, RecommendationEngine
    from .runtime import create_boto3_config, get_async_dynamodb_client, is_lambda_environment
    from .table import TableFacade


def _read_repo_version() -> str:
    try:
        data = json.loads(files(__package__).joinpath("version.json").read_text(encoding="utf-8"))
    except Exception:
        return "0.0.0"

    version = data.get("version")
    return version if isinstance(version, str) and version else "0.0.0"


def _normalize_repo_version(repo_version: str) -> str:
    match = re.match(r"^(\d+\.\d+\.\d+)-rc\.?([0-9]+)$", repo_version)
    if match:
        return f"{match.group(1)}rc{match.group(2)}"
    return repo_version


__repo_version__ = _read_repo_version()
__version__ = _normalize_repo_version(__repo_version__)


def __getattr__(name: str) -> Any:
    if name == "TableFacade":
        from .table import TableFacade

        return TableFacade
    if name in {"BatchGetResult", "BatchWriteResult", "BulkOperationExecutor", "RetryPolicy"}:
        from . import executor

        return getattr(executor, name)
    if name in {
        "AntiPatternDetector",
        "DetectorConfig",
        "detect_hot_partitions",
        "detect_inefficient_reads",
        "detect_large_items",
        "detect_missing_indexes",
        "detect_read_before_write",
        "detect_unused_indexes",
    }:
        from . import detector

        return getattr(detector, name)
    if name in {"Recommendation", "RecommendationEngine"}:
        from . import recommendations

        return getattr(recommendations, name)
    if name in {"create_boto3_config", "get_async_dynamodb_client", "is_lambda_environment"}:
        from . import runtime

        return getattr(runtime, name)
    raise AttributeError(name)


__all__ = [
    "AccessPattern",
    "AccessPatternRegistry",
    "AntiPatternDetector",
    "AwsError",
    "BatchGetResult",
    "BatchWriteResult",
    "BulkOperationExecutor",
    "ConditionFailedError",
    "DdbPatternsError",
    "DetectorConfig",
    "DuplicatePatternError",
    "FilterCondition",
    "FilterGroup",
    "IndexShape",
    "KeyAttribute",
    "KeyCondition",
    "KeyShapeMismatchError",
    "NotFoundError",
    "OperationRecord",
    "Page",
    "PatternNotFoundError",
    "Recommendation",
    "RecommendationEngine",
    "ResolvedPattern",
    "RetryPolicy",
    "RetryableError",
    "SortKeyCondition",
    "StatsCollector",
    "StatsConfig",
    "TableFacade",
    "TableStats",
    "TransactConditionCheck",
    "TransactDelete",
    "TransactGet",
    "TransactPut",
    "TransactUpdate",
    "TransactWriteAction",
    "TransactionCanceledError",
    "ValidationError",
    "__repo_version__",
    "__version__",
    "composite_key",
    "create_boto3_config",
    "detect_hot_partitions",
    "detect_inefficient_reads",
    "detect_large_items",
    "detect_missing_indexes",
    "detect_read_before_write",
    "detect_unused_indexes",
    "distributed_key",
    "entity_key",
    "get_async_dynamodb_client",
    "hierarchical_multi_key",
    "increment_version",
    "index_shape",
    "is_lambda_environment",
    "multi_attribute_item",
    "multi_attribute_key",
    "multi_tenant_key",
    "parse_composite_key",
    "parse_entity_key",
    "parse_multi_attribute_key",
    "shard_number",
    "time_series_key",
    "time_series_multi_key",
    "ttl_timestamp",
]
