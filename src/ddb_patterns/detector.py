"""Anti-pattern detection over recorded operations.

Every detector is a pure function of the records it is given; none depends on
another having run. `AntiPatternDetector` only bundles thresholds.
"""

from __future__ import annotations

import time
from collections.abc import Callable, Iterable, Sequence
from dataclasses import dataclass

from .errors import ValidationError
from .recommendations import EstimatedImpact, Recommendation
from .stats import OperationRecord

SEVEN_DAYS_SECONDS = 7 * 24 * 60 * 60


@dataclass(frozen=True)
class DetectorConfig:
    hot_partition_threshold: float = 0.1
    efficiency_threshold: float = 0.2
    unused_index_window_seconds: float = SEVEN_DAYS_SECONDS
    read_before_write_window_seconds: float = 5.0
    read_before_write_min_occurrences: int = 3
    missing_index_min_scans: int = 5
    large_item_bytes: int = 100 * 1024
    very_large_item_bytes: int = 300 * 1024

    def __post_init__(self) -> None:
        if not 0.0 < self.hot_partition_threshold < 1.0:
            raise ValidationError("hot_partition_threshold must be between 0 and 1")
        if not 0.0 < self.efficiency_threshold <= 1.0:
            raise ValidationError("efficiency_threshold must be between 0 and 1")
        if self.unused_index_window_seconds <= 0:
            raise ValidationError("unused_index_window_seconds must be > 0")
        if self.very_large_item_bytes < self.large_item_bytes:
            raise ValidationError("very_large_item_bytes must be >= large_item_bytes")


def detect_hot_partitions(records: Iterable[OperationRecord], threshold: float = 0.1) -> list[Recommendation]:
    counts: dict[str, int] = {}
    total = 0
    for rec in records:
        if rec.partition_key is None:
            continue
        counts[rec.partition_key] = counts.get(rec.partition_key, 0) + 1
        total += 1

    if total == 0:
        return []

    hot = [(key, count, count / total) for key, count in counts.items() if count / total > threshold]
    hot.sort(key=lambda entry: (-entry[2], entry[0]))

    return [
        Recommendation(
            severity="error" if share > 0.5 else "warning",
            category="hot-partition",
            message=f"Hot partition detected: {key}",
            details=(
                f"Partition key {key!r} receives {share * 100:.1f}% of requests ({count} of {total}). "
                "This can cause throttling."
            ),
            suggested_action="Use write sharding (distributed_key) or a higher-cardinality partition key.",
            estimated_impact=EstimatedImpact(performance_improvement="Fewer throttled requests"),
            data={"partition_key": key, "share": share, "count": count, "total": total},
        )
        for key, count, share in hot
    ]


def detect_inefficient_reads(records: Iterable[OperationRecord], threshold: float = 0.2) -> list[Recommendation]:
    """Flags query/scan groups whose aggregate returned/scanned ratio is below `threshold`.

    Records are grouped by operation kind and by pattern name, falling back to
    the index name, then the table.
    """
    groups: dict[tuple[str, str], list[OperationRecord]] = {}
    for rec in records:
        if rec.operation not in {"query", "scan"} or rec.scanned_count <= 0:
            continue
        target = rec.pattern or rec.index or rec.table or "<table>"
        groups.setdefault((rec.operation, target), []).append(rec)

    findings: list[tuple[float, Recommendation]] = []
    for (operation, target), recs in sorted(groups.items()):
        scanned = sum(r.scanned_count for r in recs)
        returned = sum(r.item_count for r in recs)
        efficiency = returned / scanned
        if efficiency >= threshold:
            continue

        if operation == "scan":
            action = "Replace the scan with a query on an index that matches the access pattern."
        else:
            action = "Tighten the key condition or add an index so fewer items are read and filtered out."

        findings.append(
            (
                efficiency,
                Recommendation(
                    severity="warning",
                    category="performance",
                    message=f"Inefficient {operation} on {target}",
                    details=(
                        f"{operation} on {target} has {efficiency * 100:.1f}% efficiency "
                        f"({returned} returned / {scanned} scanned over {len(recs)} operations)."
                    ),
                    suggested_action=action,
                    affected_operations=(operation,),
                    estimated_impact=EstimatedImpact(
                        cost_reduction=f"Up to {(1 - efficiency) * 100:.0f}% fewer read units",
                    ),
                    data={
                        "operation": operation,
                        "target": target,
                        "efficiency": efficiency,
                        "returned": returned,
                        "scanned": scanned,
                        "count": len(recs),
                    },
                ),
            )
        )

    findings.sort(key=lambda entry: entry[0])
    return [rec for _, rec in findings]


def detect_unused_indexes(
    records: Iterable[OperationRecord],
    index_names: Iterable[str],
    *,
    window_seconds: float = SEVEN_DAYS_SECONDS,
    now: float | None = None,
) -> list[Recommendation]:
    current = time.time() if now is None else now
    cutoff = current - window_seconds

    recent: set[str] = set()
    last_used: dict[str, float] = {}
    for rec in records:
        if rec.index is None:
            continue
        last_used[rec.index] = max(rec.timestamp, last_used.get(rec.index, rec.timestamp))
        if rec.timestamp >= cutoff:
            recent.add(rec.index)

    days = window_seconds / 86400
    out: list[Recommendation] = []
    for name in sorted(set(index_names)):
        if name in recent:
            continue
        out.append(
            Recommendation(
                severity="info",
                category="cost",
                message=f"Unused index: {name}",
                details=f"Index {name} has no recorded operations in the last {days:g} days.",
                suggested_action="Remove the index if no access pattern needs it; it still costs storage and writes.",
                estimated_impact=EstimatedImpact(cost_reduction="Lower storage and write capacity costs"),
                data={"index": name, "last_used": last_used.get(name)},
            )
        )
    return out


def _item_label(rec: OperationRecord) -> str | None:
    if rec.partition_key is None:
        return None
    if rec.sort_key is None:
        return rec.partition_key
    return f"{rec.partition_key}|{rec.sort_key}"


def detect_read_before_write(
    records: Iterable[OperationRecord],
    *,
    window_seconds: float = 5.0,
    min_occurrences: int = 3,
) -> list[Recommendation]:
    gets: dict[str, list[float]] = {}
    puts: dict[str, list[float]] = {}
    for rec in records:
        label = _item_label(rec)
        if label is None:
            continue
        if rec.operation == "get":
            gets.setdefault(label, []).append(rec.timestamp)
        elif rec.operation == "put":
            puts.setdefault(label, []).append(rec.timestamp)

    out: list[Recommendation] = []
    for label in sorted(gets):
        writes = puts.get(label)
        if not writes:
            continue
        count = sum(1 for g in gets[label] if any(0 < p - g <= window_seconds for p in writes))
        if count < min_occurrences:
            continue
        out.append(
            Recommendation(
                severity="info",
                category="performance",
                message="Read-before-write pattern detected",
                details=f"Detected {count} gets followed by a put on {label!r} within {window_seconds:g}s.",
                suggested_action="Use update() to modify items in place instead of get() followed by put().",
                affected_operations=("get", "put"),
                estimated_impact=EstimatedImpact(
                    performance_improvement="One round trip instead of two",
                    cost_reduction="No read units for the get",
                ),
                data={"key": label, "count": count},
            )
        )
    return out


def detect_missing_indexes(records: Iterable[OperationRecord], *, min_scans: int = 5) -> list[Recommendation]:
    scans: dict[str, int] = {}
    for rec in records:
        if rec.operation == "scan" and rec.index is None:
            table = rec.table or "<table>"
            scans[table] = scans.get(table, 0) + 1

    return [
        Recommendation(
            severity="warning",
            category="performance",
            message=f"Frequent scans detected on {table}",
            details=f"Found {count} scan operations on {table}. Scans read the whole table.",
            suggested_action="Add a secondary index that supports the access pattern and query it instead.",
            affected_operations=("scan",),
            estimated_impact=EstimatedImpact(
                performance_improvement="Significantly faster reads",
                cost_reduction="Lower read capacity consumption",
            ),
            data={"table": table, "count": count},
        )
        for table, count in sorted(scans.items())
        if count > min_scans
    ]


def detect_large_items(
    records: Iterable[OperationRecord],
    *,
    warning_bytes: int = 100 * 1024,
    error_bytes: int = 300 * 1024,
) -> list[Recommendation]:
    large = [r for r in records if r.item_size_bytes is not None and r.item_size_bytes > warning_bytes]
    if not large:
        return []
    very_large = sum(1 for r in large if (r.item_size_bytes or 0) > error_bytes)
    avg = sum(r.item_size_bytes or 0 for r in large) / len(large)
    return [
        Recommendation(
            severity="warning" if very_large else "info",
            category="best-practice",
            message=f"{len(large)} operations with large items detected",
            details=(
                f"Found {len(large)} operations with items over {warning_bytes // 1024}KB "
                f"(avg: {avg / 1024:.1f}KB); {very_large} exceed {error_bytes // 1024}KB."
            ),
            suggested_action="Move large attributes to object storage and keep a reference in the item.",
            estimated_impact=EstimatedImpact(
                cost_reduction="Lower storage and capacity costs",
                performance_improvement="Faster operations with smaller items",
            ),
            data={"count": len(large), "very_large": very_large, "avg_bytes": avg},
        )
    ]


class AntiPatternDetector:
    def __init__(self, config: DetectorConfig | None = None, *, now: Callable[[], float] | None = None) -> None:
        self._config = config or DetectorConfig()
        self._now = now or time.time

    @property
    def config(self) -> DetectorConfig:
        return self._config

    def analyze(
        self, records: Sequence[OperationRecord], *, index_names: Iterable[str] = ()
    ) -> list[Recommendation]:
        cfg = self._config
        out: list[Recommendation] = []
        out.extend(detect_hot_partitions(records, cfg.hot_partition_threshold))
        out.extend(detect_inefficient_reads(records, cfg.efficiency_threshold))
        out.extend(
            detect_unused_indexes(
                records, index_names, window_seconds=cfg.unused_index_window_seconds, now=self._now()
            )
        )
        out.extend(
            detect_read_before_write(
                records,
                window_seconds=cfg.read_before_write_window_seconds,
                min_occurrences=cfg.read_before_write_min_occurrences,
            )
        )
        out.extend(detect_missing_indexes(records, min_scans=cfg.missing_index_min_scans))
        out.extend(
            detect_large_items(
                records, warning_bytes=cfg.large_item_bytes, error_bytes=cfg.very_large_item_bytes
            )
        )
        return out
