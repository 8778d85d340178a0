"""
Range partition lifecycle for time-series tables.

Partition DDL uses ``IF NOT EXISTS`` / ``IF EXISTS`` so creating and dropping are
idempotent per partition name and safe to repeat from the maintenance loop.
"""

from __future__ import annotations

from datetime import datetime, timedelta, timezone
from typing import Any, Callable, List, Optional

from pgoptimizer.config import settings
from pgoptimizer.core.sql_exec import SQLExecutionError, SQLExecutor, parse_command_status
from pgoptimizer.core.sql_identifiers import (
    quote_literal,
    validate_identifier,
    validate_qualified_name,
)
from pgoptimizer.deps import acquire
from pgoptimizer.partitioning.bounds import (
    add_units,
    ensure_utc,
    format_bound,
    parse_partition_bound,
    partition_name,
    partition_range,
    unit_start,
)
from pgoptimizer.partitioning.checkpoint import MigrationCheckpoint, MigrationCheckpointStore
from pgoptimizer.partitioning.templates import AUDIT_LOGS_TEMPLATE, TRANSACTIONS_TEMPLATE
from pgoptimizer.partitioning.type import (
    PartitionedTableTemplate,
    PartitionInfo,
    PartitionSize,
    PartitionStats,
)
from pgoptimizer.smart_logger import SmartLogger


class PartitionError(Exception):
    """Raised when partition DDL or partition introspection fails"""
    pass


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _log(level: str, event: str, **params: Any) -> None:
    SmartLogger.log(level, event, category="partition", params=params, max_inline_chars=0)


_PARTITIONS_SQL = """
SELECT
    parent.relname AS parent_table,
    child.relname AS partition_name,
    child_ns.nspname AS schema_name,
    pg_get_expr(child.relpartbound, child.oid) AS partition_expr,
    pg_total_relation_size(child.oid) AS size_bytes,
    pg_size_pretty(pg_total_relation_size(child.oid)) AS size_pretty
FROM pg_inherits
JOIN pg_class parent ON pg_inherits.inhparent = parent.oid
JOIN pg_class child ON pg_inherits.inhrelid = child.oid
JOIN pg_namespace child_ns ON child.relnamespace = child_ns.oid
WHERE pg_inherits.inhparent = to_regclass($1)
ORDER BY child.relname
"""

_IS_PARTITIONED_SQL = """
SELECT EXISTS (
    SELECT 1 FROM pg_partitioned_table pt
    WHERE pt.partrelid = to_regclass($1)
)
"""


class PartitionManager:
    def __init__(
        self,
        db: Any,
        *,
        executor: Optional[SQLExecutor] = None,
        clock: Optional[Callable[[], datetime]] = None,
        checkpoints: Optional[MigrationCheckpointStore] = None,
    ):
        self.db = db
        self._executor = executor or SQLExecutor()
        self._clock = clock or _utcnow
        self._checkpoints = checkpoints or MigrationCheckpointStore(self._executor)

    def now(self) -> datetime:
        return ensure_utc(self._clock())

    async def _execute(self, sql: str, *args: Any, operation: str) -> str:
        try:
            return await self._executor.execute(self.db, sql, *args, operation=operation)
        except SQLExecutionError as exc:
            raise PartitionError(f"failed to {operation}: {exc}") from exc

    # Creation -------------------------------------------------------------

    async def create_partition(self, table_name: str, size: PartitionSize, at: datetime) -> str:
        """Create the partition of ``size`` containing ``at``; returns its name."""
        size = PartitionSize(size)
        table = validate_qualified_name(table_name)
        start, end = partition_range(size, at)
        name = validate_qualified_name(partition_name(table, size, start))
        sql = (
            f"CREATE TABLE IF NOT EXISTS {name} PARTITION OF {table}"
            f" FOR VALUES FROM ({quote_literal(format_bound(start))}) TO ({quote_literal(format_bound(end))})"
        )
        await self._execute(sql, operation=f"create partition {name}")
        _log(
            "INFO",
            "partition.create.ok",
            table=table,
            partition=name,
            size=size.value,
            start=start.isoformat(),
            end=end.isoformat(),
        )
        return name

    async def create_daily_partition(self, table_name: str, day: datetime) -> str:
        return await self.create_partition(table_name, PartitionSize.DAILY, day)

    async def create_weekly_partition(self, table_name: str, week: datetime) -> str:
        return await self.create_partition(table_name, PartitionSize.WEEKLY, week)

    async def create_monthly_partition(self, table_name: str, month: datetime) -> str:
        return await self.create_partition(table_name, PartitionSize.MONTHLY, month)

    async def create_yearly_partition(self, table_name: str, year: datetime) -> str:
        return await self.create_partition(table_name, PartitionSize.YEARLY, year)

    async def create_default_partition(self, table_name: str) -> str:
        """Catch-all partition for rows outside every range."""
        table = validate_qualified_name(table_name)
        name = validate_qualified_name(f"{table}_default")
        await self._execute(
            f"CREATE TABLE IF NOT EXISTS {name} PARTITION OF {table} DEFAULT",
            operation=f"create default partition {name}",
        )
        _log("INFO", "partition.create_default.ok", table=table, partition=name)
        return name

    async def create_future_partitions(
        self,
        table_name: str,
        size: PartitionSize,
        count: Optional[int] = None,
    ) -> List[str]:
        """
        Create the ``count`` units following the current one.

        Offsets are applied to the start of the current unit, so month lengths never
        cause a month to be skipped. The first error aborts the run.
        """
        size = PartitionSize(size)
        count = settings.partition_future_count if count is None else int(count)
        current = unit_start(size, self.now())
        created = []
        for i in range(1, count + 1):
            created.append(await self.create_partition(table_name, size, add_units(size, current, i)))
        return created

    # Removal --------------------------------------------------------------

    async def drop_partition(self, partition: str) -> None:
        name = validate_qualified_name(partition)
        await self._execute(f"DROP TABLE IF EXISTS {name}", operation=f"drop partition {name}")
        _log("INFO", "partition.drop.ok", partition=name)

    async def drop_old_partitions(self, table_name: str, retention: timedelta) -> int:
        """
        Drop partitions whose range ended before ``now - retention``.

        Partitions with an unknown end bound (DEFAULT, MAXVALUE, unparseable) are kept.
        A failed drop is logged and skipped. Returns the number of partitions dropped.
        """
        cutoff = self.now() - retention
        partitions = await self.get_partitions(table_name, with_row_counts=False)

        dropped = 0
        for p in partitions:
            if p.range_end is None or not p.range_end < cutoff:
                continue
            try:
                await self.drop_partition(p.qualified_name)
            except (PartitionError, ValueError) as exc:
                _log("ERROR", "partition.drop.error", partition=p.qualified_name, error=str(exc))
                continue
            dropped += 1

        _log("INFO", "partition.drop_old.done", table=table_name, dropped=dropped, cutoff=cutoff.isoformat())
        return dropped

    async def detach_partition(self, parent_table: str, partition: str) -> None:
        """Remove ``partition`` from ``parent_table``, keeping its data as a standalone table."""
        parent = validate_qualified_name(parent_table)
        name = validate_qualified_name(partition)
        await self._execute(
            f"ALTER TABLE {parent} DETACH PARTITION {name}",
            operation=f"detach partition {name}",
        )
        _log("INFO", "partition.detach.ok", parent=parent, partition=name)

    async def attach_partition(
        self,
        parent_table: str,
        partition: str,
        range_start: datetime,
        range_end: datetime,
    ) -> None:
        if range_end <= range_start:
            raise ValueError("range_end must be after range_start")
        parent = validate_qualified_name(parent_table)
        name = validate_qualified_name(partition)
        sql = (
            f"ALTER TABLE {parent} ATTACH PARTITION {name}"
            f" FOR VALUES FROM ({quote_literal(format_bound(range_start))})"
            f" TO ({quote_literal(format_bound(range_end))})"
        )
        await self._execute(sql, operation=f"attach partition {name}")
        _log("INFO", "partition.attach.ok", parent=parent, partition=name)

    # Introspection --------------------------------------------------------

    async def get_partitions(self, table_name: str, *, with_row_counts: bool = True) -> List[PartitionInfo]:
        table = validate_qualified_name(table_name)
        try:
            rows = await self._executor.fetch(self.db, _PARTITIONS_SQL, table, operation="get partitions")
        except SQLExecutionError as exc:
            raise PartitionError(f"failed to get partitions: {exc}") from exc

        partitions = []
        for r in rows:
            expr = r["partition_expr"] or ""
            start, end, is_default = parse_partition_bound(expr)
            partitions.append(
                PartitionInfo(
                    parent_table=r["parent_table"],
                    partition_name=r["partition_name"],
                    schema_name=r["schema_name"] or "",
                    range_start=start,
                    range_end=end,
                    size_bytes=int(r["size_bytes"] or 0),
                    size_pretty=r["size_pretty"] or "",
                    bound_expression=expr,
                    is_default=is_default,
                )
            )

        if with_row_counts:
            for p in partitions:
                p.row_count = await self._count_rows(p)
        return partitions

    async def _count_rows(self, partition: PartitionInfo) -> int:
        try:
            name = validate_qualified_name(partition.qualified_name)
            count = await self._executor.fetchval(
                self.db, f"SELECT COUNT(*) FROM {name}", operation=f"count rows of {name}"
            )
        except (SQLExecutionError, ValueError) as exc:
            _log("WARNING", "partition.count.error", partition=partition.qualified_name, error=str(exc))
            return 0
        return int(count or 0)

    async def is_table_partitioned(self, table_name: str) -> bool:
        table = validate_qualified_name(table_name)
        try:
            result = await self._executor.fetchval(
                self.db, _IS_PARTITIONED_SQL, table, operation="check if table is partitioned"
            )
        except SQLExecutionError as exc:
            raise PartitionError(f"failed to check if table is partitioned: {exc}") from exc
        return bool(result)

    async def get_partition_stats(self, table_name: str) -> PartitionStats:
        partitions = await self.get_partitions(table_name)
        return PartitionStats(
            table_name=table_name,
            partition_count=len(partitions),
            total_rows=sum(p.row_count for p in partitions),
            total_size_bytes=sum(p.size_bytes for p in partitions),
            partitions=partitions,
        )

    # Setup ----------------------------------------------------------------

    async def setup_partitioning(self, template: PartitionedTableTemplate) -> bool:
        """
        Create ``<source>_partitioned`` with its indexes and monthly partitions around now.

        Returns False without changes when the source or the target table is already
        partitioned. A failed initial partition is logged and skipped.
        """
        source = template.source_table
        target = template.target_table
        if await self.is_table_partitioned(source) or await self.is_table_partitioned(target):
            _log("INFO", "partition.setup.skip", table=source, reason="already partitioned")
            return False

        _log("INFO", "partition.setup.start", table=source, target=target)
        async with acquire(self.db) as conn:
            try:
                async with conn.transaction():
                    await self._executor.execute(conn, template.create_sql, operation=f"create {target}")
                    for sql in template.index_sql:
                        await self._executor.execute(conn, sql, operation=f"create index on {target}")
            except SQLExecutionError as exc:
                raise PartitionError(f"failed to create partitioned {source} table: {exc}") from exc

        current = unit_start(PartitionSize.MONTHLY, self.now())
        for offset in range(-template.months_back, template.months_ahead + 1):
            month = add_units(PartitionSize.MONTHLY, current, offset)
            try:
                await self.create_monthly_partition(target, month)
            except PartitionError as exc:
                _log("WARNING", "partition.setup.partition_error", table=target, month=month.strftime("%Y-%m"), error=str(exc))

        _log("INFO", "partition.setup.done", table=source, target=target)
        return True

    async def setup_transactions_partitioning(self) -> bool:
        return await self.setup_partitioning(TRANSACTIONS_TEMPLATE)

    async def setup_audit_logs_partitioning(self) -> bool:
        return await self.setup_partitioning(AUDIT_LOGS_TEMPLATE)

    # Migration ------------------------------------------------------------

    async def migrate_to_partitioned(
        self,
        source_table: str,
        target_table: str,
        batch_size: Optional[int] = None,
        *,
        order_by: str = "created_at",
        resume: bool = True,
    ) -> int:
        """
        Copy ``source_table`` into ``target_table`` in ``ORDER BY order_by`` batches.

        Each batch commits together with its checkpoint row, so a failed run restarts
        from the last committed offset when ``resume`` is true. A completed checkpoint
        turns a rerun into a no-op. ``resume=False`` discards any checkpoint first.
        The source must not change while migrating, since batches are OFFSET based.

        Returns the number of rows copied by this call.
        """
        source = validate_qualified_name(source_table)
        target = validate_qualified_name(target_table)
        order_column = validate_identifier(order_by)
        size = int(batch_size or settings.migration_batch_size)
        if size < 1:
            raise ValueError("batch_size must be >= 1")

        insert_sql = (
            f"INSERT INTO {target} SELECT * FROM {source}"
            f" ORDER BY {order_column} LIMIT $1 OFFSET $2"
        )

        async with acquire(self.db) as conn:
            try:
                await self._checkpoints.ensure_table(conn)
                if not resume:
                    await self._checkpoints.reset(conn, source, target)
                checkpoint = await self._checkpoints.load(conn, source, target)
                total = int(
                    await self._executor.fetchval(conn, f"SELECT COUNT(*) FROM {source}", operation="get count")
                    or 0
                )
            except SQLExecutionError as exc:
                raise PartitionError(f"failed to prepare migration of {source}: {exc}") from exc

            if checkpoint is not None and checkpoint.completed:
                _log("INFO", "partition.migrate.skip", source=source, target=target, reason="already completed")
                return 0
            if checkpoint is None:
                checkpoint = MigrationCheckpoint(source_table=source, target_table=target)
            checkpoint.total_rows = total

            _log(
                "INFO",
                "partition.migrate.start",
                source=source,
                target=target,
                batch_size=size,
                total_rows=total,
                resume_offset=checkpoint.migrated_offset,
            )

            copied = 0
            while True:
                offset = checkpoint.migrated_offset
                try:
                    async with conn.transaction():
                        status = await self._executor.execute(
                            conn, insert_sql, size, offset,
                            operation=f"migrate batch at offset {offset}",
                        )
                        batch_rows = parse_command_status(status)
                        checkpoint.migrated_offset += batch_rows
                        checkpoint.migrated_rows += batch_rows
                        checkpoint.completed = batch_rows < size
                        await self._checkpoints.save(conn, checkpoint)
                except SQLExecutionError as exc:
                    raise PartitionError(
                        f"failed to migrate batch at offset {offset}: {exc}"
                    ) from exc

                copied += batch_rows
                _log(
                    "INFO",
                    "partition.migrate.progress",
                    migrated=checkpoint.migrated_rows,
                    total=total,
                    progress=round(checkpoint.progress_percent, 2),
                )
                if checkpoint.completed:
                    break

        _log("INFO", "partition.migrate.done", source=source, target=target, migrated=checkpoint.migrated_rows)
        return copied
