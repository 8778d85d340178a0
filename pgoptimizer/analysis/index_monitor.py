"""Index usage statistics, unused and duplicate index detection."""

from __future__ import annotations

from typing import Any, Dict, List, Optional, Sequence, Tuple

from pgoptimizer.analysis.type import IndexUsageStats
from pgoptimizer.core.sql_exec import SQLExecutor
from pgoptimizer.core.ttl_cache import TTLCache
from pgoptimizer.smart_logger import SmartLogger

_BYTES_PER_MB = 1024 * 1024
_STATS_CACHE_KEY = "pg_stat_user_indexes"

UNUSED_RECOMMENDATION = "Consider dropping this unused index"
UNUSED_FRESH_RECOMMENDATION = (
    "Consider dropping this unused index to save space and improve write performance"
)


def usage_ratio(index_scans: int, index_size: int) -> float:
    """Scans per MiB of index; 0 for empty indexes."""
    if index_size <= 0:
        return 0.0
    return float(index_scans) / (float(index_size) / _BYTES_PER_MB)


def _row_to_stats(row: Any) -> IndexUsageStats:
    return IndexUsageStats(
        schema_name=row["schema_name"],
        table_name=row["table_name"],
        index_name=row["index_name"],
        index_scans=int(row["index_scans"] or 0),
        tuples_read=int(row["tuples_read"] or 0),
        tuples_fetched=int(row["tuples_fetched"] or 0),
        index_size=int(row["index_size"] or 0),
    )


class IndexUsageMonitor:
    """Reads pg_stat_user_indexes; full scans are cached for ``scan_interval`` seconds."""

    def __init__(
        self,
        db: Any,
        *,
        scan_interval: float = 3600,
        excluded_name_suffixes: Sequence[str] = ("_pkey", "_unique"),
        cache: Optional[TTLCache[List[IndexUsageStats]]] = None,
        executor: Optional[SQLExecutor] = None,
    ):
        self.db = db
        self.excluded_name_suffixes = tuple(s for s in excluded_name_suffixes if s)
        self._cache: TTLCache[List[IndexUsageStats]] = cache or TTLCache(ttl_seconds=scan_interval)
        self._executor = executor or SQLExecutor()

    @property
    def scan_interval(self) -> float:
        return self._cache.ttl_seconds

    async def get_stats(self) -> List[IndexUsageStats]:
        cached = self._cache.get(_STATS_CACHE_KEY)
        if cached:
            return list(cached)

        rows = await self._executor.fetch(self.db, _INDEX_STATS_SQL, operation="get index stats")
        stats = [_row_to_stats(row) for row in rows]
        for s in stats:
            if s.index_scans == 0:
                s.is_unused = True
                s.recommendation = UNUSED_RECOMMENDATION
            s.usage_ratio = usage_ratio(s.index_scans, s.index_size)

        self._cache.put(_STATS_CACHE_KEY, stats)
        SmartLogger.log(
            "DEBUG",
            "index_monitor.scan.ok",
            category="index_monitor.scan",
            params={"index_count": len(stats), "unused": sum(1 for s in stats if s.is_unused)},
            max_inline_chars=0,
        )
        return list(stats)

    def invalidate(self) -> None:
        self._cache.invalidate(_STATS_CACHE_KEY)

    def _is_excluded_by_name(self, index_name: str) -> bool:
        return any(index_name.endswith(suffix) for suffix in self.excluded_name_suffixes)

    async def get_unused_indexes(self) -> List[IndexUsageStats]:
        """
        Indexes with zero scans since the last statistics reset.

        Primary keys and constraint-backed indexes are excluded from the catalog,
        and index names ending in one of ``excluded_name_suffixes`` are skipped too.
        """
        rows = await self._executor.fetch(self.db, _UNUSED_INDEXES_SQL, operation="get unused indexes")
        unused: List[IndexUsageStats] = []
        for row in rows:
            s = _row_to_stats(row)
            if self._is_excluded_by_name(s.index_name):
                continue
            s.is_unused = True
            s.recommendation = UNUSED_FRESH_RECOMMENDATION
            unused.append(s)
        return unused

    async def get_duplicate_indexes(self) -> List[IndexUsageStats]:
        """
        Indexes of one table sharing the same ordered key columns and predicate.

        Expression indexes are skipped: their key columns alone do not identify them.
        """
        rows = await self._executor.fetch(self.db, _INDEX_COLUMNS_SQL, operation="get duplicate indexes")

        groups: Dict[Tuple[str, str, Tuple[str, ...], str], List[Any]] = {}
        for row in rows:
            if row["has_expression"]:
                continue
            columns = tuple(col for col in (row["columns"] or []) if col)
            if not columns:
                continue
            key = (row["schema_name"], row["table_name"], columns, row["predicate"] or "")
            groups.setdefault(key, []).append(row)

        duplicates: List[IndexUsageStats] = []
        for (schema_name, table_name, _columns, _predicate), members in groups.items():
            if len(members) < 2:
                continue
            names = [m["index_name"] for m in members]
            for member in members:
                others = [n for n in names if n != member["index_name"]]
                duplicates.append(
                    IndexUsageStats(
                        schema_name=schema_name,
                        table_name=table_name,
                        index_name=member["index_name"],
                        index_scans=int(member["index_scans"] or 0),
                        index_size=int(member["index_size"] or 0),
                        usage_ratio=usage_ratio(
                            int(member["index_scans"] or 0), int(member["index_size"] or 0)
                        ),
                        is_duplicate=True,
                        recommendation=f"Potential duplicate of: {', '.join(others)}",
                    )
                )
        return duplicates


_INDEX_STATS_SQL = """
SELECT
    schemaname AS schema_name,
    relname AS table_name,
    indexrelname AS index_name,
    idx_scan AS index_scans,
    idx_tup_read AS tuples_read,
    idx_tup_fetch AS tuples_fetched,
    pg_relation_size(indexrelid) AS index_size
FROM pg_stat_user_indexes
ORDER BY idx_scan ASC, pg_relation_size(indexrelid) DESC
"""

_UNUSED_INDEXES_SQL = """
SELECT
    s.schemaname AS schema_name,
    s.relname AS table_name,
    s.indexrelname AS index_name,
    s.idx_scan AS index_scans,
    s.idx_tup_read AS tuples_read,
    s.idx_tup_fetch AS tuples_fetched,
    pg_relation_size(s.indexrelid) AS index_size
FROM pg_stat_user_indexes s
JOIN pg_index i ON i.indexrelid = s.indexrelid
WHERE s.idx_scan = 0
  AND NOT i.indisprimary
  AND NOT EXISTS (
      SELECT 1 FROM pg_constraint c
      WHERE c.conindid = s.indexrelid
        AND c.contype IN ('p', 'u', 'x')
  )
ORDER BY pg_relation_size(s.indexrelid) DESC
"""

_INDEX_COLUMNS_SQL = """
WITH expanded AS (
    SELECT
        s.schemaname AS schema_name,
        s.relname AS table_name,
        s.indexrelname AS index_name,
        s.idx_scan AS index_scans,
        pg_relation_size(s.indexrelid) AS index_size,
        COALESCE(pg_get_expr(ix.indpred, ix.indrelid), '') AS predicate,
        ord.ordinality,
        ord.attnum,
        a.attname AS column_name
    FROM pg_stat_user_indexes s
    JOIN pg_index ix ON ix.indexrelid = s.indexrelid
    LEFT JOIN LATERAL unnest(ix.indkey) WITH ORDINALITY AS ord(attnum, ordinality)
        ON TRUE
    LEFT JOIN pg_attribute a
        ON a.attrelid = ix.indrelid
        AND a.attnum = ord.attnum
        AND ord.attnum > 0
)
SELECT
    schema_name,
    table_name,
    index_name,
    index_scans,
    index_size,
    predicate,
    BOOL_OR(attnum = 0) AS has_expression,
    ARRAY_REMOVE(ARRAY_AGG(column_name ORDER BY ordinality), NULL) AS columns
FROM expanded
GROUP BY schema_name, table_name, index_name, index_scans, index_size, predicate
ORDER BY schema_name, table_name, index_name
"""
