"""Entry point bundling the query helpers around one db handle."""

from __future__ import annotations

from typing import Any, Awaitable, Callable, Optional, Sequence, TypeVar

from pgoptimizer.analysis.query_analyzer import QueryAnalyzer
from pgoptimizer.analysis.type import ExplainPlan
from pgoptimizer.core.sql_exec import SQLExecutor
from pgoptimizer.deps import acquire
from pgoptimizer.query.aggregation import AggregationQuery, TimeSeriesQuery
from pgoptimizer.query.bulk import (
    DEFAULT_BATCH_SIZE,
    BulkUpdateBuilder,
    batch_insert,
    batch_upsert,
)
from pgoptimizer.query.pagination import KeysetPagination, PaginatedQuery
from pgoptimizer.query.transactions import QueryOptions, TransactionOptimizer, apply_query_options
from pgoptimizer.smart_logger import SmartLogger
from pgoptimizer.utils.log_sanitize import truncate_query

T = TypeVar("T")


class AnalyzerNotConfiguredError(Exception):
    """Raised by explain_query when the builder has no QueryAnalyzer"""
    pass


class OptimizedQueryBuilder:
    def __init__(
        self,
        db: Any,
        analyzer: Optional[QueryAnalyzer] = None,
        *,
        executor: Optional[SQLExecutor] = None,
        default_options: Optional[QueryOptions] = None,
    ):
        self.db = db
        self.analyzer = analyzer
        self._executor = executor or SQLExecutor()
        self.default_options = default_options or QueryOptions()

    def paginated_query(self, table_name: str) -> PaginatedQuery:
        return PaginatedQuery(self.db, table_name, executor=self._executor)

    def keyset_pagination(self, table_name: str, sort_column: str, sort_order: str = "DESC") -> KeysetPagination:
        return KeysetPagination(self.db, table_name, sort_column, sort_order, executor=self._executor)

    def bulk_update(self, table_name: str) -> BulkUpdateBuilder:
        return BulkUpdateBuilder(self.db, table_name, executor=self._executor)

    def aggregation(self, table_name: str) -> AggregationQuery:
        return AggregationQuery(self.db, table_name, executor=self._executor)

    def time_series(self, table_name: str) -> TimeSeriesQuery:
        return TimeSeriesQuery(self.db, table_name, executor=self._executor)

    def transactions(self, **kwargs: Any) -> TransactionOptimizer:
        return TransactionOptimizer(self.db, **kwargs)

    async def batch_insert(
        self,
        table_name: str,
        columns: Sequence[str],
        rows: Sequence[Any],
        batch_size: int = DEFAULT_BATCH_SIZE,
    ) -> int:
        return await batch_insert(self.db, table_name, columns, rows, batch_size, executor=self._executor)

    async def batch_upsert(
        self,
        table_name: str,
        columns: Sequence[str],
        rows: Sequence[Any],
        conflict_columns: Sequence[str],
        update_columns: Optional[Sequence[str]] = None,
        batch_size: int = DEFAULT_BATCH_SIZE,
    ) -> int:
        return await batch_upsert(
            self.db, table_name, columns, rows, conflict_columns, update_columns, batch_size,
            executor=self._executor,
        )

    async def run_with_options(
        self,
        fn: Callable[[Any], Awaitable[T]],
        options: Optional[QueryOptions] = None,
    ) -> T:
        """
        Run ``fn(conn)`` in a transaction whose session settings come from ``options``.

        Settings are applied with SET LOCAL and vanish when the transaction ends.
        """
        opts = options or self.default_options
        async with acquire(self.db) as conn:
            async with conn.transaction():
                await apply_query_options(conn, opts)
                return await fn(conn)

    async def explain_query(self, query: str, *args: Any) -> ExplainPlan:
        """Run EXPLAIN ANALYZE through the analyzer and log the plan summary."""
        if self.analyzer is None:
            raise AnalyzerNotConfiguredError("query analyzer not configured")
        plan = await self.analyzer.explain_analyze(query, *args)
        SmartLogger.log(
            "WARNING" if plan.warnings else "INFO",
            "query.explain.done",
            category="query.explain",
            params={
                "query": truncate_query(query),
                "execution_time_ms": plan.execution_time,
                "planning_time_ms": plan.planning_time,
                "total_cost": plan.total_cost,
                "warnings": list(plan.warnings),
            },
            max_inline_chars=0,
        )
        return plan
