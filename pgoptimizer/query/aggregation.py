"""Grouped aggregation and date_trunc time series."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Any, Dict, List, Optional, Tuple

from pgoptimizer.core.sql_exec import SQLExecutor
from pgoptimizer.core.sql_identifiers import (
    validate_aggregation,
    validate_identifier,
    validate_interval,
    validate_qualified_name,
)
from pgoptimizer.query.where import WhereClause


def _group_key(value: Any) -> str:
    return "" if value is None else str(value)


class AggregationQuery:
    """
    ``GROUP BY`` reports keyed by the string form of the group value.

    ``where`` is a trusted condition with ``?`` placeholders; values go in ``args``.
    Groups whose value is NULL are keyed by ``""``.
    """

    def __init__(self, db: Any, table_name: str, *, executor: Optional[SQLExecutor] = None):
        self.db = db
        self.table_name = validate_qualified_name(table_name)
        self._executor = executor or SQLExecutor()

    def _where(self, where: str, args: Tuple[Any, ...]) -> Tuple[str, List[Any]]:
        clause = WhereClause()
        if where:
            clause.add(where, *args)
        elif args:
            raise ValueError("arguments given without a where clause")
        sql, bound, _ = clause.render(1)
        return sql, bound

    def build_sum_sql(self, sum_column: str, group_column: str, where: str = "", *args: Any) -> Tuple[str, List[Any]]:
        value = validate_identifier(sum_column)
        group = validate_identifier(group_column)
        where_sql, bound = self._where(where, args)
        sql = (
            f"SELECT {group} AS group_value, SUM({value}) AS total"
            f" FROM {self.table_name}{where_sql} GROUP BY {group}"
        )
        return sql, bound

    def build_count_sql(self, group_column: str, where: str = "", *args: Any) -> Tuple[str, List[Any]]:
        group = validate_identifier(group_column)
        where_sql, bound = self._where(where, args)
        sql = (
            f"SELECT {group} AS group_value, COUNT(*) AS count"
            f" FROM {self.table_name}{where_sql} GROUP BY {group}"
        )
        return sql, bound

    async def sum_by_group(self, sum_column: str, group_column: str, where: str = "", *args: Any) -> Dict[str, float]:
        sql, bound = self.build_sum_sql(sum_column, group_column, where, *args)
        rows = await self._executor.fetch(self.db, sql, *bound, operation="sum by group")
        return {_group_key(r["group_value"]): float(r["total"] or 0) for r in rows}

    async def count_by_group(self, group_column: str, where: str = "", *args: Any) -> Dict[str, int]:
        sql, bound = self.build_count_sql(group_column, where, *args)
        rows = await self._executor.fetch(self.db, sql, *bound, operation="count by group")
        return {_group_key(r["group_value"]): int(r["count"] or 0) for r in rows}


@dataclass
class TimeSeriesDataPoint:
    timestamp: datetime
    value: float
    count: int

    def to_dict(self) -> Dict[str, Any]:
        return {
            "timestamp": self.timestamp.isoformat() if self.timestamp else None,
            "value": self.value,
            "count": self.count,
        }


class TimeSeriesQuery:
    def __init__(self, db: Any, table_name: str, *, executor: Optional[SQLExecutor] = None):
        self.db = db
        self.table_name = validate_qualified_name(table_name)
        self._executor = executor or SQLExecutor()

    def build_sql(
        self,
        value_column: str,
        timestamp_column: str,
        interval: str,
        aggregation: str,
    ) -> str:
        value = validate_identifier(value_column)
        ts = validate_identifier(timestamp_column)
        unit = validate_interval(interval)
        agg = validate_aggregation(aggregation)
        return (
            f"SELECT date_trunc('{unit}', {ts}) AS bucket, {agg}({value}) AS value, COUNT(*) AS count"
            f" FROM {self.table_name}"
            f" WHERE {ts} >= $1 AND {ts} < $2"
            f" GROUP BY date_trunc('{unit}', {ts})"
            f" ORDER BY bucket"
        )

    async def aggregate_by_interval(
        self,
        value_column: str,
        timestamp_column: str,
        interval: str,
        start: datetime,
        end: datetime,
        aggregation: str = "SUM",
    ) -> List[TimeSeriesDataPoint]:
        """
        Aggregate ``value_column`` per ``date_trunc(interval)`` bucket over ``[start, end)``.

        Buckets without rows are absent from the result; ordered by bucket ascending.
        """
        sql = self.build_sql(value_column, timestamp_column, interval, aggregation)
        rows = await self._executor.fetch(self.db, sql, start, end, operation="aggregate by interval")
        return [
            TimeSeriesDataPoint(
                timestamp=r["bucket"],
                value=float(r["value"] or 0),
                count=int(r["count"] or 0),
            )
            for r in rows
        ]
