"""Query plan analysis, slow query logging and index usage monitoring."""

from pgoptimizer.analysis.explain import ExplainAnalyzeError, explain_analyze
from pgoptimizer.analysis.index_monitor import IndexUsageMonitor
from pgoptimizer.analysis.query_analyzer import QueryAnalyzer, QueryAnalyzerConfig
from pgoptimizer.analysis.slow_query_logger import SlowQueryLogger
from pgoptimizer.analysis.type import (
    ExplainPlan,
    ExplainPlanNode,
    IndexUsageStats,
    QueryStats,
    SlowQuery,
    TableStats,
)

__all__ = [
    "ExplainAnalyzeError",
    "explain_analyze",
    "IndexUsageMonitor",
    "QueryAnalyzer",
    "QueryAnalyzerConfig",
    "SlowQueryLogger",
    "ExplainPlan",
    "ExplainPlanNode",
    "IndexUsageStats",
    "QueryStats",
    "SlowQuery",
    "TableStats",
]
