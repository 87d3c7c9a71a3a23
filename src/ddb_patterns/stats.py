from __future__ import annotations

import random
import threading
from collections.abc import Callable, Mapping
from dataclasses import asdict, dataclass, field
from typing import Any

from .errors import ValidationError


@dataclass(frozen=True)
class StatsConfig:
    enabled: bool = True
    sample_rate: float = 1.0
    slow_operation_ms: float = 1000.0
    high_rcu: float = 100.0
    high_wcu: float = 100.0

    def __post_init__(self) -> None:
        if isinstance(self.sample_rate, bool) or not isinstance(self.sample_rate, (int, float)):
            raise ValidationError("sample_rate must be a number")
        if not 0.0 <= self.sample_rate <= 1.0:
            raise ValidationError(f"sample_rate must be between 0 and 1 (got {self.sample_rate})")
        if self.slow_operation_ms <= 0:
            raise ValidationError("slow_operation_ms must be > 0")
        if self.high_rcu <= 0 or self.high_wcu <= 0:
            raise ValidationError("capacity thresholds must be > 0")


@dataclass(frozen=True)
class OperationRecord:
    operation: str
    timestamp: float
    latency_ms: float
    rcu: float = 0.0
    wcu: float = 0.0
    item_count: int = 0
    scanned_count: int = 0
    index: str | None = None
    pattern: str | None = None
    table: str | None = None
    partition_key: str | None = None
    sort_key: str | None = None
    projection: bool = False
    item_size_bytes: int | None = None
    metadata: Mapping[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        out = asdict(self)
        out["metadata"] = dict(self.metadata)
        return out


@dataclass(frozen=True)
class OperationTypeStats:
    count: int
    total_latency_ms: float
    avg_latency_ms: float
    total_rcu: float
    total_wcu: float
    avg_items: float


@dataclass(frozen=True)
class AccessPatternStats:
    count: int
    avg_latency_ms: float
    avg_items: float
    total_rcu: float


@dataclass(frozen=True)
class TableStats:
    total_operations: int
    operations: dict[str, OperationTypeStats]
    patterns: dict[str, AccessPatternStats]
    first_timestamp: float | None = None
    last_timestamp: float | None = None


def compute_stats(records: list[OperationRecord]) -> TableStats:
    by_op: dict[str, list[OperationRecord]] = {}
    by_pattern: dict[str, list[OperationRecord]] = {}
    for rec in records:
        by_op.setdefault(rec.operation, []).append(rec)
        if rec.pattern:
            by_pattern.setdefault(rec.pattern, []).append(rec)

    operations: dict[str, OperationTypeStats] = {}
    for op, recs in sorted(by_op.items()):
        n = len(recs)
        total_latency = sum(r.latency_ms for r in recs)
        operations[op] = OperationTypeStats(
            count=n,
            total_latency_ms=total_latency,
            avg_latency_ms=total_latency / n,
            total_rcu=sum(r.rcu for r in recs),
            total_wcu=sum(r.wcu for r in recs),
            avg_items=sum(r.item_count for r in recs) / n,
        )

    patterns: dict[str, AccessPatternStats] = {}
    for name, recs in sorted(by_pattern.items()):
        n = len(recs)
        patterns[name] = AccessPatternStats(
            count=n,
            avg_latency_ms=sum(r.latency_ms for r in recs) / n,
            avg_items=sum(r.item_count for r in recs) / n,
            total_rcu=sum(r.rcu for r in recs),
        )

    timestamps = [r.timestamp for r in records]
    return TableStats(
        total_operations=len(records),
        operations=operations,
        patterns=patterns,
        first_timestamp=min(timestamps) if timestamps else None,
        last_timestamp=max(timestamps) if timestamps else None,
    )


class StatsCollector:
    """Append-only operation log with on-demand aggregation.

    Sampling is decided by the caller through `should_sample()` once per
    logical operation; `record()` itself always appends. The log is unbounded:
    callers bound memory with periodic `export()` followed by `reset()`.
    """

    def __init__(self, config: StatsConfig | None = None, *, rand: Callable[[], float] | None = None) -> None:
        self._config = config or StatsConfig()
        self._rand = rand or random.random
        self._records: list[OperationRecord] = []
        self._lock = threading.Lock()

    @property
    def config(self) -> StatsConfig:
        return self._config

    def thresholds(self) -> dict[str, float]:
        return {
            "slow_operation_ms": self._config.slow_operation_ms,
            "high_rcu": self._config.high_rcu,
            "high_wcu": self._config.high_wcu,
        }

    def should_sample(self) -> bool:
        if not self._config.enabled:
            return False
        if self._config.sample_rate >= 1.0:
            return True
        if self._config.sample_rate <= 0.0:
            return False
        return self._rand() < self._config.sample_rate

    def record(self, record: OperationRecord) -> None:
        if not isinstance(record, OperationRecord):
            raise ValidationError("record must be an OperationRecord")
        with self._lock:
            self._records.append(record)

    def _snapshot(self) -> list[OperationRecord]:
        with self._lock:
            return list(self._records)

    def get_stats(self) -> TableStats:
        return compute_stats(self._snapshot())

    def export(self) -> list[OperationRecord]:
        return sorted(self._snapshot(), key=lambda r: r.timestamp)

    def reset(self) -> None:
        with self._lock:
            self._records.clear()

    def operation_count(self) -> int:
        with self._lock:
            return len(self._records)

    def operations_by_type(self, operation: str) -> list[OperationRecord]:
        return [r for r in self.export() if r.operation == operation]

    def operations_by_pattern(self, pattern: str) -> list[OperationRecord]:
        return [r for r in self.export() if r.pattern == pattern]

    def operations_in_range(self, start: float, end: float) -> list[OperationRecord]:
        if end < start:
            raise ValidationError("end must be >= start")
        return [r for r in self.export() if start <= r.timestamp <= end]
