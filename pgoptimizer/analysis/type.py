import json
from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from pgoptimizer.utils.log_sanitize import truncate_query


@dataclass
class ExplainPlanNode:
    """One node of a PostgreSQL execution plan tree."""

    node_type: str
    relation_name: Optional[str] = None
    index_name: Optional[str] = None
    startup_cost: float = 0.0
    total_cost: float = 0.0
    plan_rows: int = 0
    actual_rows: int = 0
    actual_loops: int = 0
    actual_time: float = 0.0
    filter: Optional[str] = None
    rows_removed: int = 0
    children: List["ExplainPlanNode"] = field(default_factory=list)

    @classmethod
    def from_json(cls, node: Dict[str, Any]) -> "ExplainPlanNode":
        return cls(
            node_type=str(node.get("Node Type") or ""),
            relation_name=node.get("Relation Name"),
            index_name=node.get("Index Name"),
            startup_cost=float(node.get("Startup Cost") or 0.0),
            total_cost=float(node.get("Total Cost") or 0.0),
            plan_rows=int(float(node.get("Plan Rows") or 0)),
            actual_rows=int(float(node.get("Actual Rows") or 0)),
            actual_loops=int(float(node.get("Actual Loops") or 0)),
            actual_time=float(node.get("Actual Total Time") or 0.0),
            filter=node.get("Filter"),
            rows_removed=int(float(node.get("Rows Removed by Filter") or 0)),
            children=[
                cls.from_json(child)
                for child in node.get("Plans") or []
                if isinstance(child, dict)
            ],
        )


@dataclass
class ExplainPlan:
    """Flattened metrics of an EXPLAIN ANALYZE run.

    ``actual_rows`` and ``estimated_rows`` are sums over every node of the tree, so
    joins are counted more than once. Treat them as an approximation.
    """

    query: str
    plan: List[ExplainPlanNode] = field(default_factory=list)
    planning_time: float = 0.0
    execution_time: float = 0.0
    total_cost: float = 0.0
    actual_rows: int = 0
    estimated_rows: int = 0
    seq_scans: int = 0
    index_scans: int = 0
    sort_operations: int = 0
    hash_joins: int = 0
    nested_loops: int = 0
    warnings: List[str] = field(default_factory=list)
    raw_plan: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    def to_json(self) -> str:
        return json.dumps(self.to_dict(), indent=2, default=str)

    def summary(self) -> str:
        lines = [
            f"Query: {truncate_query(self.query, 100)}",
            f"Planning Time: {self.planning_time:.2f}ms",
            f"Execution Time: {self.execution_time:.2f}ms",
            f"Total Cost: {self.total_cost:.2f}",
            f"Rows: {self.actual_rows} (estimated: {self.estimated_rows})",
            f"Seq Scans: {self.seq_scans}, Index Scans: {self.index_scans}",
            f"Sort Operations: {self.sort_operations}, Hash Joins: {self.hash_joins}, "
            f"Nested Loops: {self.nested_loops}",
        ]
        if self.warnings:
            lines.append("")
            lines.append("Warnings:")
            lines.extend(f"  - {w}" for w in self.warnings)
        return "\n".join(lines) + "\n"


@dataclass(frozen=True)
class SlowQuery:
    """An entry of the slow query log. Never mutated after creation."""

    query: str
    duration_ms: float
    rows_affected: int = 0
    caller_info: str = ""
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    explain_plan: Optional[ExplainPlan] = None


@dataclass
class IndexUsageStats:
    """Usage counters of one index from pg_stat_user_indexes."""

    schema_name: str = ""
    table_name: str = ""
    index_name: str = ""
    index_scans: int = 0
    tuples_read: int = 0
    tuples_fetched: int = 0
    index_size: int = 0
    usage_ratio: float = 0.0
    is_unused: bool = False
    is_duplicate: bool = False
    recommendation: str = ""


@dataclass
class QueryStats:
    """A pg_stat_statements row."""

    query: str
    calls: int = 0
    total_time: float = 0.0
    mean_time: float = 0.0
    min_time: float = 0.0
    max_time: float = 0.0
    stddev_time: float = 0.0
    rows: int = 0
    shared_blks_hit: int = 0
    shared_blks_read: int = 0
    cache_hit_ratio: float = 0.0


@dataclass
class TableStats:
    """A pg_stat_user_tables row with relation sizes."""

    table_name: str
    row_count: int = 0
    total_size: int = 0
    index_size: int = 0
    toast_size: int = 0
    seq_scan: int = 0
    seq_tup_read: int = 0
    idx_scan: int = 0
    idx_tup_fetch: int = 0
    dead_tuples: int = 0
    last_vacuum: Optional[datetime] = None
    last_autovacuum: Optional[datetime] = None
    last_analyze: Optional[datetime] = None
    last_autoanalyze: Optional[datetime] = None
