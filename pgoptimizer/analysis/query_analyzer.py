"""Query analysis entry point: plans, slow query log, index and catalog reports."""

from __future__ import annotations

import random
import threading
import time
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from typing import Any, AsyncIterator, Callable, Dict, List, Optional, Tuple

from pgoptimizer.analysis.explain import explain_analyze
from pgoptimizer.analysis.index_monitor import IndexUsageMonitor
from pgoptimizer.analysis.slow_query_logger import SlowQueryCallback, SlowQueryLogger
from pgoptimizer.analysis.type import (
    ExplainPlan,
    IndexUsageStats,
    QueryStats,
    SlowQuery,
    TableStats,
)
from pgoptimizer.config import settings
from pgoptimizer.core.sql_exec import SQLExecutor
from pgoptimizer.core.sql_identifiers import validate_qualified_name
from pgoptimizer.deps import acquire
from pgoptimizer.smart_logger import SmartLogger


@dataclass
class QueryAnalyzerConfig:
    """
    Settings of a QueryAnalyzer.

    Attributes:
        slow_threshold_ms: queries at or above this duration enter the slow log (100 ms).
        slow_log_max_entries: capacity of the slow log, oldest entries evicted first (1000).
        sampling_rate: share of tracked queries considered for the slow log, 0..1 (1.0).
        slow_query_callback: notified for every slow query without blocking the caller.
        index_scan_interval: seconds an index statistics snapshot stays cached (3600).
        unused_index_name_suffixes: name suffixes never reported as unused indexes.
        enabled: initial state of the advisory enabled flag.
    """

    slow_threshold_ms: float = 100.0
    slow_log_max_entries: int = 1000
    sampling_rate: float = 1.0
    slow_query_callback: Optional[SlowQueryCallback] = None
    index_scan_interval: float = 3600
    unused_index_name_suffixes: Tuple[str, ...] = ("_pkey", "_unique")
    enabled: bool = True

    def __post_init__(self) -> None:
        self.sampling_rate = min(1.0, max(0.0, float(self.sampling_rate)))

    @classmethod
    def from_settings(cls, **overrides: Any) -> "QueryAnalyzerConfig":
        values: Dict[str, Any] = {
            "slow_threshold_ms": settings.slow_query_threshold_ms,
            "slow_log_max_entries": settings.slow_query_max_entries,
            "sampling_rate": settings.query_sampling_rate,
            "index_scan_interval": settings.index_scan_interval_seconds,
            "unused_index_name_suffixes": tuple(settings.unused_index_suffixes()),
        }
        values.update(overrides)
        return cls(**values)


class QueryAnalyzer:
    """
    Orchestrates EXPLAIN ANALYZE, the slow query log, the index usage monitor and
    pg_stat_statements / pg_stat_user_tables reports.

    ``enabled`` is advisory: callers check ``is_enabled()`` before expensive
    analysis; the analyzer itself only consults it in ``track``.
    """

    def __init__(
        self,
        db: Any,
        config: Optional[QueryAnalyzerConfig] = None,
        *,
        executor: Optional[SQLExecutor] = None,
        random_source: Optional[Callable[[], float]] = None,
    ):
        self.db = db
        self.config = config or QueryAnalyzerConfig()
        self._executor = executor or SQLExecutor()
        self._random = random_source or random.random
        self._lock = threading.Lock()
        self._enabled = bool(self.config.enabled)
        self.slow_query_log = SlowQueryLogger(
            threshold_ms=self.config.slow_threshold_ms,
            max_entries=self.config.slow_log_max_entries,
            callback=self.config.slow_query_callback,
        )
        self.index_monitor = IndexUsageMonitor(
            db,
            scan_interval=self.config.index_scan_interval,
            excluded_name_suffixes=self.config.unused_index_name_suffixes,
            executor=self._executor,
        )

    # Enabled flag ---------------------------------------------------------

    def enable(self) -> None:
        with self._lock:
            self._enabled = True

    def disable(self) -> None:
        with self._lock:
            self._enabled = False

    def is_enabled(self) -> bool:
        with self._lock:
            return self._enabled

    def should_sample(self) -> bool:
        rate = self.config.sampling_rate
        if rate >= 1.0:
            return True
        if rate <= 0.0:
            return False
        return self._random() < rate

    # Plans ----------------------------------------------------------------

    async def explain_analyze(self, query: str, *args: Any) -> ExplainPlan:
        async with acquire(self.db) as conn:
            return await explain_analyze(conn, query, *args)

    # Slow queries ---------------------------------------------------------

    def log_slow_query(
        self,
        query: str,
        duration_ms: float,
        rows_affected: int = 0,
        caller_info: str = "",
        explain_plan: Optional[ExplainPlan] = None,
    ) -> bool:
        return self.slow_query_log.log(
            SlowQuery(
                query=query,
                duration_ms=duration_ms,
                rows_affected=rows_affected,
                caller_info=caller_info,
                explain_plan=explain_plan,
            )
        )

    def get_slow_queries(self) -> List[SlowQuery]:
        return self.slow_query_log.get_queries()

    @asynccontextmanager
    async def track(self, query: str, caller_info: str = "") -> AsyncIterator[Dict[str, Any]]:
        """
        Time the enclosed statement and record it in the slow log.

        The yielded dict may receive ``rows_affected``::

            async with analyzer.track(sql, "orders.list") as t:
                rows = await conn.fetch(sql)
                t["rows_affected"] = len(rows)
        """
        info: Dict[str, Any] = {"rows_affected": 0}
        started = time.perf_counter()
        try:
            yield info
        finally:
            duration_ms = (time.perf_counter() - started) * 1000
            info["duration_ms"] = duration_ms
            if self.is_enabled() and self.should_sample():
                self.log_slow_query(query, duration_ms, int(info.get("rows_affected") or 0), caller_info)

    # Indexes --------------------------------------------------------------

    async def get_index_usage_stats(self) -> List[IndexUsageStats]:
        return await self.index_monitor.get_stats()

    async def get_unused_indexes(self) -> List[IndexUsageStats]:
        return await self.index_monitor.get_unused_indexes()

    async def get_duplicate_indexes(self) -> List[IndexUsageStats]:
        return await self.index_monitor.get_duplicate_indexes()

    # Catalog reports ------------------------------------------------------

    async def get_top_slow_queries(self, limit: int = 20) -> List[QueryStats]:
        rows = await self._executor.fetch(
            self.db, _TOP_SLOW_QUERIES_SQL, int(limit),
            operation="get slow queries from pg_stat_statements",
        )
        return [_row_to_query_stats(r) for r in rows]

    async def get_most_frequent_queries(self, limit: int = 20) -> List[QueryStats]:
        rows = await self._executor.fetch(
            self.db, _MOST_FREQUENT_QUERIES_SQL, int(limit),
            operation="get frequent queries",
        )
        return [_row_to_query_stats(r) for r in rows]

    async def reset_query_stats(self) -> None:
        """Clear pg_stat_statements counters for the whole server. Cannot be undone."""
        await self._executor.execute(
            self.db, "SELECT pg_stat_statements_reset()", operation="reset query stats"
        )
        SmartLogger.log(
            "WARNING",
            "query_analyzer.query_stats.reset",
            category="query_analyzer.admin",
            params=None,
            max_inline_chars=0,
        )

    async def get_table_stats(self) -> List[TableStats]:
        rows = await self._executor.fetch(self.db, _TABLE_STATS_SQL, operation="get table stats")
        return [
            TableStats(
                table_name=r["table_name"],
                row_count=int(r["row_count"] or 0),
                total_size=int(r["total_size"] or 0),
                index_size=int(r["index_size"] or 0),
                toast_size=int(r["toast_size"] or 0),
                seq_scan=int(r["seq_scan"] or 0),
                seq_tup_read=int(r["seq_tup_read"] or 0),
                idx_scan=int(r["idx_scan"] or 0),
                idx_tup_fetch=int(r["idx_tup_fetch"] or 0),
                dead_tuples=int(r["dead_tuples"] or 0),
                last_vacuum=r["last_vacuum"],
                last_autovacuum=r["last_autovacuum"],
                last_analyze=r["last_analyze"],
                last_autoanalyze=r["last_autoanalyze"],
            )
            for r in rows
        ]

    async def analyze_table(self, table_name: str) -> None:
        table = validate_qualified_name(table_name)
        await self._executor.execute(self.db, f"ANALYZE {table}", operation=f"analyze {table}")

    async def vacuum_table(self, table_name: str, full: bool = False) -> None:
        table = validate_qualified_name(table_name)
        command = "VACUUM FULL" if full else "VACUUM"
        await self._executor.execute(
            self.db, f"{command} {table}", operation=f"{command.lower()} {table}"
        )


def _row_to_query_stats(row: Any) -> QueryStats:
    keys = set(row.keys())

    def _num(name: str, cast=float):
        if name not in keys or row[name] is None:
            return cast(0)
        return cast(row[name])

    return QueryStats(
        query=row["query"],
        calls=_num("calls", int),
        total_time=_num("total_time"),
        mean_time=_num("mean_time"),
        min_time=_num("min_time"),
        max_time=_num("max_time"),
        stddev_time=_num("stddev_time"),
        rows=_num("rows", int),
        shared_blks_hit=_num("shared_blks_hit", int),
        shared_blks_read=_num("shared_blks_read", int),
        cache_hit_ratio=_num("cache_hit_ratio"),
    )


_CACHE_HIT_RATIO = """
    CASE WHEN (shared_blks_hit + shared_blks_read) > 0
        THEN shared_blks_hit::float / (shared_blks_hit + shared_blks_read)
        ELSE 0
    END AS cache_hit_ratio
"""

_TOP_SLOW_QUERIES_SQL = f"""
SELECT
    query,
    calls,
    total_exec_time AS total_time,
    mean_exec_time AS mean_time,
    min_exec_time AS min_time,
    max_exec_time AS max_time,
    stddev_exec_time AS stddev_time,
    rows,
    shared_blks_hit,
    shared_blks_read,
    {_CACHE_HIT_RATIO}
FROM pg_stat_statements
WHERE query NOT LIKE '%pg_stat%'
ORDER BY mean_exec_time DESC
LIMIT $1
"""

_MOST_FREQUENT_QUERIES_SQL = f"""
SELECT
    query,
    calls,
    total_exec_time AS total_time,
    mean_exec_time AS mean_time,
    rows,
    shared_blks_hit,
    shared_blks_read,
    {_CACHE_HIT_RATIO}
FROM pg_stat_statements
WHERE query NOT LIKE '%pg_stat%'
ORDER BY calls DESC
LIMIT $1
"""

_TABLE_STATS_SQL = """
SELECT
    relname AS table_name,
    n_live_tup AS row_count,
    pg_total_relation_size(relid) AS total_size,
    pg_indexes_size(relid) AS index_size,
    COALESCE(pg_total_relation_size(NULLIF(c.reltoastrelid, 0)), 0) AS toast_size,
    seq_scan,
    seq_tup_read,
    idx_scan,
    idx_tup_fetch,
    n_dead_tup AS dead_tuples,
    last_vacuum,
    last_autovacuum,
    last_analyze,
    last_autoanalyze
FROM pg_stat_user_tables s
JOIN pg_class c ON c.oid = s.relid
ORDER BY pg_total_relation_size(relid) DESC
"""
