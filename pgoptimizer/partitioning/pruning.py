"""Time-range partition selection."""

from __future__ import annotations

from datetime import datetime
from typing import Any, List, Tuple

from pgoptimizer.core.sql_identifiers import validate_identifier, validate_qualified_name
from pgoptimizer.partitioning.bounds import ensure_utc
from pgoptimizer.partitioning.manager import PartitionError, PartitionManager
from pgoptimizer.partitioning.type import PartitionInfo


def overlaps(partition: PartitionInfo, start: datetime, end: datetime) -> bool:
    """
    True when ``partition`` may hold rows in ``[start, end)``.

    A missing bound is unbounded on that side; the DEFAULT partition always matches.
    """
    if partition.is_default:
        return True
    start = ensure_utc(start)
    end = ensure_utc(end)
    if partition.range_start is not None and partition.range_start >= end:
        return False
    if partition.range_end is not None and partition.range_end <= start:
        return False
    return True


class PartitionPruningHelper:
    def __init__(self, manager: PartitionManager):
        self.manager = manager

    async def get_relevant_partitions(self, table_name: str, start: datetime, end: datetime) -> List[str]:
        partitions = await self.manager.get_partitions(table_name, with_row_counts=False)
        return [p.partition_name for p in partitions if overlaps(p, start, end)]

    async def build_partitioned_query(
        self,
        table_name: str,
        start: datetime,
        end: datetime,
        time_column: str = "created_at",
    ) -> Tuple[str, List[Any]]:
        """
        Range query on the parent table that the planner can prune to the matching partitions.

        Raises PartitionError when no partition covers the range.
        """
        table = validate_qualified_name(table_name)
        column = validate_identifier(time_column)
        relevant = await self.get_relevant_partitions(table, start, end)
        if not relevant:
            raise PartitionError("no partitions found for the given time range")
        sql = f"SELECT * FROM {table} WHERE {column} >= $1 AND {column} < $2"
        return sql, [start, end]
