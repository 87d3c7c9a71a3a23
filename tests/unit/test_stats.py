from __future__ import annotations

import threading

import pytest

from ddb_patterns import OperationRecord, StatsCollector, StatsConfig, ValidationError
from ddb_patterns.testkit import fixed_random


def _rec(operation: str, ts: float, latency: float = 10.0, **kwargs: object) -> OperationRecord:
    return OperationRecord(operation=operation, timestamp=ts, latency_ms=latency, **kwargs)  # type: ignore[arg-type]


def test_config_validation() -> None:
    with pytest.raises(ValidationError):
        StatsConfig(sample_rate=1.5)
    with pytest.raises(ValidationError):
        StatsConfig(sample_rate=-0.1)
    with pytest.raises(ValidationError):
        StatsConfig(sample_rate=True)
    with pytest.raises(ValidationError):
        StatsConfig(slow_operation_ms=0)
    with pytest.raises(ValidationError):
        StatsConfig(high_rcu=0)


def test_should_sample_respects_enabled_and_rate() -> None:
    assert StatsCollector(StatsConfig(enabled=False)).should_sample() is False
    assert StatsCollector(StatsConfig(sample_rate=0.0)).should_sample() is False
    assert StatsCollector(StatsConfig(sample_rate=1.0), rand=fixed_random(0.99)).should_sample() is True
    assert StatsCollector(StatsConfig(sample_rate=0.5), rand=fixed_random(0.4)).should_sample() is True
    assert StatsCollector(StatsConfig(sample_rate=0.5), rand=fixed_random(0.6)).should_sample() is False


def test_get_stats_aggregates_by_operation_and_pattern() -> None:
    collector = StatsCollector()
    collector.record(_rec("query", 3.0, 30.0, rcu=2.0, item_count=4, pattern="ordersByUser"))
    collector.record(_rec("query", 1.0, 10.0, rcu=1.0, item_count=2, pattern="ordersByUser"))
    collector.record(_rec("put", 2.0, 5.0, wcu=1.0, item_count=1))

    stats = collector.get_stats()
    assert stats.total_operations == 3
    assert list(stats.operations) == ["put", "query"]

    query = stats.operations["query"]
    assert query.count == 2
    assert query.total_latency_ms == 40.0
    assert query.avg_latency_ms == 20.0
    assert query.total_rcu == 3.0
    assert query.avg_items == 3.0
    assert stats.operations["put"].total_wcu == 1.0

    pattern = stats.patterns["ordersByUser"]
    assert pattern.count == 2
    assert pattern.avg_latency_ms == 20.0
    assert pattern.total_rcu == 3.0
    assert stats.first_timestamp == 1.0
    assert stats.last_timestamp == 3.0


def test_empty_stats() -> None:
    stats = StatsCollector().get_stats()
    assert stats.total_operations == 0
    assert stats.operations == {}
    assert stats.patterns == {}
    assert stats.first_timestamp is None


def test_export_is_sorted_and_reset_clears() -> None:
    collector = StatsCollector()
    collector.record(_rec("get", 5.0))
    collector.record(_rec("get", 1.0))
    collector.record(_rec("scan", 3.0))

    assert [r.timestamp for r in collector.export()] == [1.0, 3.0, 5.0]
    assert collector.operation_count() == 3
    assert [r.timestamp for r in collector.operations_by_type("get")] == [1.0, 5.0]
    assert [r.operation for r in collector.operations_in_range(2.0, 5.0)] == ["scan", "get"]
    with pytest.raises(ValidationError):
        collector.operations_in_range(5.0, 1.0)

    collector.reset()
    assert collector.export() == []
    assert collector.get_stats().total_operations == 0


def test_operations_by_pattern() -> None:
    collector = StatsCollector()
    collector.record(_rec("query", 1.0, pattern="a"))
    collector.record(_rec("query", 2.0, pattern="b"))
    assert [r.timestamp for r in collector.operations_by_pattern("b")] == [2.0]


def test_record_rejects_non_records() -> None:
    with pytest.raises(ValidationError):
        StatsCollector().record({"operation": "get"})  # type: ignore[arg-type]


def test_concurrent_records_are_not_lost() -> None:
    collector = StatsCollector()

    def worker(n: int) -> None:
        for i in range(200):
            collector.record(_rec("get", float(n * 1000 + i)))

    threads = [threading.Thread(target=worker, args=(n,)) for n in range(8)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    assert collector.operation_count() == 1600


def test_record_to_dict() -> None:
    rec = _rec("get", 1.0, partition_key="USER#1", metadata={"requested": 2})
    out = rec.to_dict()
    assert out["operation"] == "get"
    assert out["partition_key"] == "USER#1"
    assert out["metadata"] == {"requested": 2}
    assert out["item_size_bytes"] is None


def test_thresholds_reflect_config() -> None:
    collector = StatsCollector(StatsConfig(slow_operation_ms=250.0, high_rcu=10.0, high_wcu=20.0))
    assert collector.thresholds() == {"slow_operation_ms": 250.0, "high_rcu": 10.0, "high_wcu": 20.0}
