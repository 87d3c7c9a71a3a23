from __future__ import annotations

import math
from collections.abc import Iterable, Mapping, Sequence
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, Literal

from .keys import DEFAULT_SEPARATOR
from .stats import OperationRecord, StatsConfig

if TYPE_CHECKING:
    from .detector import AntiPatternDetector

type Severity = Literal["error", "warning", "info"]
type Category = Literal["performance", "cost", "best-practice", "hot-partition", "capacity"]

SEVERITY_RANK: dict[str, int] = {"error": 0, "warning": 1, "info": 2}

BATCH_WINDOW_SECONDS = 1.0
MIN_BATCH_OPERATIONS = 5
MIN_UNPROJECTED_READS = 10
READ_OPERATIONS = ("get", "query", "scan", "batch_get")


@dataclass(frozen=True)
class EstimatedImpact:
    cost_reduction: str | None = None
    performance_improvement: str | None = None


@dataclass(frozen=True)
class Recommendation:
    severity: Severity
    category: Category
    message: str
    details: str
    suggested_action: str | None = None
    affected_operations: tuple[str, ...] = ()
    estimated_impact: EstimatedImpact | None = None
    data: Mapping[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        out: dict[str, Any] = {
            "severity": self.severity,
            "category": self.category,
            "message": self.message,
            "details": self.details,
            "data": dict(self.data),
        }
        if self.suggested_action is not None:
            out["suggested_action"] = self.suggested_action
        if self.affected_operations:
            out["affected_operations"] = list(self.affected_operations)
        if self.estimated_impact is not None:
            impact = {
                k: v
                for k, v in (
                    ("cost_reduction", self.estimated_impact.cost_reduction),
                    ("performance_improvement", self.estimated_impact.performance_improvement),
                )
                if v is not None
            }
            out["estimated_impact"] = impact
        return out


@dataclass(frozen=True)
class CapacityRecommendation:
    recommended_mode: Literal["provisioned", "on-demand"]
    reasoning: str
    coefficient_of_variation: float | None = None


def rank(recommendations: Iterable[Recommendation]) -> list[Recommendation]:
    """Orders by severity (error, warning, info); stable within a severity."""
    return sorted(recommendations, key=lambda r: SEVERITY_RANK[r.severity])


def entity_of(record: OperationRecord, sep: str = DEFAULT_SEPARATOR) -> str:
    pk = record.partition_key
    if pk and sep in pk:
        prefix = pk.split(sep, 1)[0]
        if prefix:
            return prefix
    return record.table or "<unknown>"


def _first_cluster(records: Sequence[OperationRecord], window: float, min_size: int) -> int | None:
    ordered = sorted(records, key=lambda r: r.timestamp)
    end = 0
    for start in range(len(ordered)):
        end = max(end, start)
        while end + 1 < len(ordered) and ordered[end + 1].timestamp - ordered[start].timestamp <= window:
            end += 1
        if end - start + 1 >= min_size:
            return end - start + 1
    return None


class RecommendationEngine:
    """Merges detector findings with threshold checks into one ranked list.

    Read-only: the same records always produce the same list.
    """

    def __init__(
        self,
        config: StatsConfig | None = None,
        *,
        detector: AntiPatternDetector | None = None,
        batch_window_seconds: float = BATCH_WINDOW_SECONDS,
        min_batch_operations: int = MIN_BATCH_OPERATIONS,
    ) -> None:
        if detector is None:
            from .detector import AntiPatternDetector

            detector = AntiPatternDetector()
        self._config = config or StatsConfig()
        self._detector = detector
        self._batch_window = batch_window_seconds
        self._min_batch = min_batch_operations

    def generate(
        self, records: Sequence[OperationRecord], *, index_names: Iterable[str] = ()
    ) -> list[Recommendation]:
        out: list[Recommendation] = []
        out.extend(self._detector.analyze(records, index_names=index_names))
        out.extend(self.slow_operations(records))
        out.extend(self.high_capacity(records))
        out.extend(self.batch_opportunities(records))
        out.extend(self.projection_opportunities(records))
        return rank(out)

    def slow_operations(self, records: Sequence[OperationRecord]) -> list[Recommendation]:
        threshold = self._config.slow_operation_ms
        slow = [r for r in records if r.latency_ms > threshold]
        if not slow:
            return []
        avg = sum(r.latency_ms for r in slow) / len(slow)
        return [
            Recommendation(
                severity="warning",
                category="performance",
                message=f"{len(slow)} slow operations detected",
                details=f"Found {len(slow)} operations exceeding {threshold:g}ms (avg: {avg:.0f}ms).",
                suggested_action=(
                    "Review slow operations for optimization opportunities: add indexes, use projections, "
                    "or narrow key conditions."
                ),
                affected_operations=tuple(sorted({r.operation for r in slow})),
                estimated_impact=EstimatedImpact(performance_improvement="Improved response times"),
                data={"count": len(slow), "avg_latency_ms": avg, "threshold_ms": threshold},
            )
        ]

    def high_capacity(self, records: Sequence[OperationRecord]) -> list[Recommendation]:
        out: list[Recommendation] = []
        high_rcu = [r for r in records if r.rcu > self._config.high_rcu]
        if high_rcu:
            out.append(
                Recommendation(
                    severity="warning",
                    category="cost",
                    message=f"{len(high_rcu)} operations with high RCU consumption",
                    details=f"Found {len(high_rcu)} operations exceeding {self._config.high_rcu:g} RCU.",
                    suggested_action=(
                        "Use projection expressions to reduce data transfer, or cache frequently read items."
                    ),
                    affected_operations=tuple(sorted({r.operation for r in high_rcu})),
                    estimated_impact=EstimatedImpact(cost_reduction="Lower read capacity costs"),
                    data={"count": len(high_rcu), "threshold": self._config.high_rcu},
                )
            )
        high_wcu = [r for r in records if r.wcu > self._config.high_wcu]
        if high_wcu:
            out.append(
                Recommendation(
                    severity="warning",
                    category="cost",
                    message=f"{len(high_wcu)} operations with high WCU consumption",
                    details=f"Found {len(high_wcu)} operations exceeding {self._config.high_wcu:g} WCU.",
                    suggested_action="Review item sizes and split large items, or group writes into batches.",
                    affected_operations=tuple(sorted({r.operation for r in high_wcu})),
                    estimated_impact=EstimatedImpact(cost_reduction="Lower write capacity costs"),
                    data={"count": len(high_wcu), "threshold": self._config.high_wcu},
                )
            )
        return out

    def batch_opportunities(self, records: Sequence[OperationRecord]) -> list[Recommendation]:
        out: list[Recommendation] = []
        groups: dict[tuple[str, str], list[OperationRecord]] = {}
        for rec in records:
            if rec.operation == "get":
                groups.setdefault(("read", entity_of(rec)), []).append(rec)
            elif rec.operation in {"put", "delete"}:
                groups.setdefault(("write", entity_of(rec)), []).append(rec)

        for (kind, entity), recs in sorted(groups.items()):
            if len(recs) < self._min_batch:
                continue
            cluster = _first_cluster(recs, self._batch_window, self._min_batch)
            if cluster is None:
                continue

            if kind == "read":
                out.append(
                    Recommendation(
                        severity="info",
                        category="performance",
                        message=f"Batch get opportunity detected for {entity}",
                        details=(
                            f"Detected {cluster} individual get operations on {entity} within "
                            f"{self._batch_window:g}s. These could be combined into batch_get."
                        ),
                        suggested_action="Use batch_get() to read multiple items in a single request.",
                        affected_operations=("get",),
                        estimated_impact=EstimatedImpact(
                            performance_improvement=(
                                f"Reduce {cluster} requests to {math.ceil(cluster / 100)} batch requests"
                            ),
                            cost_reduction="Lower network overhead",
                        ),
                        data={"entity": entity, "cluster_size": cluster},
                    )
                )
                continue

            puts = sum(1 for r in recs if r.operation == "put")
            deletes = len(recs) - puts
            out.append(
                Recommendation(
                    severity="info",
                    category="performance",
                    message=f"Batch write opportunity detected for {entity}",
                    details=(
                        f"Detected {cluster} individual write operations on {entity} within "
                        f"{self._batch_window:g}s ({puts} puts, {deletes} deletes overall)."
                    ),
                    suggested_action="Use batch_write() to combine puts and deletes into a single request.",
                    affected_operations=("put", "delete"),
                    estimated_impact=EstimatedImpact(
                        performance_improvement=(
                            f"Reduce {cluster} requests to {math.ceil(cluster / 25)} batch requests"
                        ),
                        cost_reduction="Lower network overhead",
                    ),
                    data={"entity": entity, "cluster_size": cluster, "puts": puts, "deletes": deletes},
                )
            )
        return out

    def projection_opportunities(self, records: Sequence[OperationRecord]) -> list[Recommendation]:
        out: list[Recommendation] = []
        for op in READ_OPERATIONS:
            ops = [r for r in records if r.operation == op]
            if not ops:
                continue
            without = sum(1 for r in ops if not r.projection)
            usage = 1.0 - without / len(ops)
            if usage < 0.5 and without > MIN_UNPROJECTED_READS:
                out.append(
                    Recommendation(
                        severity="info",
                        category="performance",
                        message=f"Consider using projection expressions for {op} operations",
                        details=(
                            f"Only {usage * 100:.1f}% of {op} operations use a projection. "
                            f"{without} operations fetch full items."
                        ),
                        suggested_action=f"Pass projection= to {op}() to fetch only the attributes you need.",
                        affected_operations=(op,),
                        estimated_impact=EstimatedImpact(
                            performance_improvement="Reduced data transfer",
                            cost_reduction="Lower read capacity costs",
                        ),
                        data={"operation": op, "projection_rate": usage, "unprojected": without},
                    )
                )
        return out

    def suggest_capacity_mode(self, records: Sequence[OperationRecord]) -> CapacityRecommendation:
        if not records:
            return CapacityRecommendation(
                recommended_mode="on-demand",
                reasoning="No operations recorded. On-demand suits unknown workloads.",
            )

        per_hour: dict[int, int] = {}
        for rec in records:
            hour = int(rec.timestamp // 3600)
            per_hour[hour] = per_hour.get(hour, 0) + 1

        counts = list(per_hour.values())
        avg = sum(counts) / len(counts)
        stddev = math.sqrt(sum((c - avg) ** 2 for c in counts) / len(counts))
        cv = stddev / avg if avg > 0 else 0.0

        if cv > 0.5:
            return CapacityRecommendation(
                "on-demand", f"Traffic is highly variable (CV: {cv:.2f}); on-demand absorbs spikes.", cv
            )
        if min(counts) < avg * 0.2:
            return CapacityRecommendation(
                "on-demand", "Traffic has idle periods; on-demand avoids paying for unused capacity.", cv
            )
        if cv < 0.3 and avg > 10:
            return CapacityRecommendation(
                "provisioned", f"Traffic is steady (CV: {cv:.2f}); provisioned capacity is cheaper.", cv
            )
        return CapacityRecommendation("on-demand", "Traffic is moderate; on-demand needs no capacity planning.", cv)
