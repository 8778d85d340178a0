"""Multi-row INSERT / upsert batches and conditional bulk UPDATE."""

from __future__ import annotations

from typing import Any, Dict, List, Mapping, Optional, Sequence, Tuple

from pgoptimizer.core.sql_exec import SQLExecutor, parse_command_status
from pgoptimizer.core.sql_identifiers import (
    validate_columns,
    validate_identifier,
    validate_qualified_name,
)
from pgoptimizer.deps import acquire
from pgoptimizer.query.where import WhereClause
from pgoptimizer.smart_logger import SmartLogger

# PostgreSQL wire protocol limit on bind parameters per statement.
MAX_BIND_PARAMETERS = 32767

DEFAULT_BATCH_SIZE = 1000


class BulkUpdateError(Exception):
    """Raised when a bulk update is not safe to run"""
    pass


def effective_batch_size(batch_size: int, column_count: int) -> int:
    """Clamp ``batch_size`` so one statement stays under the bind parameter limit."""
    if column_count < 1:
        raise ValueError("column_count must be >= 1")
    cap = max(1, MAX_BIND_PARAMETERS // column_count)
    return max(1, min(int(batch_size or DEFAULT_BATCH_SIZE), cap))


def _row_values(row: Any, columns: Sequence[str]) -> Tuple[Any, ...]:
    if isinstance(row, Mapping):
        missing = [c for c in columns if c not in row]
        if missing:
            raise ValueError(f"row is missing columns: {', '.join(missing)}")
        return tuple(row[c] for c in columns)
    values = tuple(row)
    if len(values) != len(columns):
        raise ValueError(f"row has {len(values)} values, expected {len(columns)}")
    return values


def dedupe_by_conflict_key(
    values: Sequence[Tuple[Any, ...]],
    columns: Sequence[str],
    conflict_columns: Sequence[str],
) -> List[Tuple[Any, ...]]:
    """
    Keep the last row for each conflict key.

    ``ON CONFLICT DO UPDATE`` cannot touch the same row twice in one statement.
    Rows keep the position of the first occurrence of their key.
    """
    missing = [c for c in conflict_columns if c not in columns]
    if missing:
        raise ValueError(f"conflict columns not among inserted columns: {', '.join(missing)}")
    positions = [list(columns).index(c) for c in conflict_columns]
    latest: Dict[Tuple[Any, ...], Tuple[Any, ...]] = {}
    for row in values:
        latest[tuple(row[i] for i in positions)] = row
    return list(latest.values())


def build_insert_sql(
    table_name: str,
    columns: Sequence[str],
    row_count: int,
    *,
    conflict_columns: Optional[Sequence[str]] = None,
    update_columns: Optional[Sequence[str]] = None,
) -> str:
    """
    ``INSERT INTO t (c1, c2) VALUES ($1, $2), ($3, $4) ...``

    With ``conflict_columns`` an ``ON CONFLICT`` clause is appended: ``DO UPDATE SET
    c = EXCLUDED.c`` for ``update_columns``, or ``DO NOTHING`` when there are none.
    """
    table = validate_qualified_name(table_name)
    cols = validate_columns(columns)
    width = len(cols)
    groups = []
    for r in range(row_count):
        base = r * width
        groups.append("(" + ", ".join(f"${base + i + 1}" for i in range(width)) + ")")
    sql = f"INSERT INTO {table} ({', '.join(cols)}) VALUES {', '.join(groups)}"

    if conflict_columns:
        conflict = validate_columns(conflict_columns)
        sql += f" ON CONFLICT ({', '.join(conflict)})"
        updates = [validate_identifier(c) for c in (update_columns or [])]
        if updates:
            sql += " DO UPDATE SET " + ", ".join(f"{c} = EXCLUDED.{c}" for c in updates)
        else:
            sql += " DO NOTHING"
    return sql


async def _insert_batches(
    db: Any,
    table_name: str,
    columns: Sequence[str],
    rows: Sequence[Any],
    batch_size: int,
    *,
    conflict_columns: Optional[Sequence[str]] = None,
    update_columns: Optional[Sequence[str]] = None,
    executor: Optional[SQLExecutor] = None,
    operation: str,
) -> int:
    cols = validate_columns(columns)
    rows = list(rows)
    if not rows:
        return 0
    values = [_row_values(row, cols) for row in rows]
    if conflict_columns and update_columns:
        values = dedupe_by_conflict_key(values, cols, conflict_columns)
    executor = executor or SQLExecutor()
    size = effective_batch_size(batch_size, len(cols))
    written = 0

    async with acquire(db) as conn:
        async with conn.transaction():
            for offset in range(0, len(values), size):
                chunk = values[offset:offset + size]
                args: List[Any] = []
                for row_values in chunk:
                    args.extend(row_values)
                sql = build_insert_sql(
                    table_name,
                    cols,
                    len(chunk),
                    conflict_columns=conflict_columns,
                    update_columns=update_columns,
                )
                status = await executor.execute(conn, sql, *args, operation=operation)
                written += parse_command_status(status)

    SmartLogger.log(
        "INFO",
        f"query.{operation.replace(' ', '_')}.done",
        category="query.bulk",
        params={"table": table_name, "rows": len(rows), "written": written, "batch_size": size},
        max_inline_chars=0,
    )
    return written


async def batch_insert(
    db: Any,
    table_name: str,
    columns: Sequence[str],
    rows: Sequence[Any],
    batch_size: int = DEFAULT_BATCH_SIZE,
    *,
    executor: Optional[SQLExecutor] = None,
) -> int:
    """
    Insert ``rows`` (sequences or mappings keyed by column) in multi-row batches.

    All batches run in one transaction. Returns the number of rows written.
    """
    return await _insert_batches(
        db, table_name, columns, rows, batch_size,
        executor=executor, operation="batch insert",
    )


async def batch_upsert(
    db: Any,
    table_name: str,
    columns: Sequence[str],
    rows: Sequence[Any],
    conflict_columns: Sequence[str],
    update_columns: Optional[Sequence[str]] = None,
    batch_size: int = DEFAULT_BATCH_SIZE,
    *,
    executor: Optional[SQLExecutor] = None,
) -> int:
    """
    Insert ``rows`` or update them on a ``conflict_columns`` match.

    With ``update_columns`` rows sharing a conflict key collapse to the last one
    before batching. Without them conflicting rows are skipped (``DO NOTHING``).
    """
    if not conflict_columns:
        raise ValueError("conflict_columns are required for an upsert")
    return await _insert_batches(
        db, table_name, columns, rows, batch_size,
        conflict_columns=conflict_columns,
        update_columns=update_columns,
        executor=executor, operation="batch upsert",
    )


class BulkUpdateBuilder:
    """``UPDATE t SET ... WHERE ...`` in a single statement."""

    def __init__(self, db: Any, table_name: str, *, executor: Optional[SQLExecutor] = None):
        self.db = db
        self.table_name = validate_qualified_name(table_name)
        self._executor = executor or SQLExecutor()
        self._updates: Dict[str, Any] = {}
        self._where = WhereClause()

    def set(self, column: str, value: Any) -> "BulkUpdateBuilder":
        self._updates[validate_identifier(column)] = value
        return self

    def where(self, condition: str, *args: Any) -> "BulkUpdateBuilder":
        self._where.add(condition, *args)
        return self

    def build_sql(self) -> Tuple[str, List[Any]]:
        if not self._updates:
            raise BulkUpdateError("bulk update has no SET columns")
        if not self._where:
            raise BulkUpdateError(f"refusing to update every row of {self.table_name} without a WHERE clause")
        assignments = []
        args: List[Any] = []
        for i, (column, value) in enumerate(self._updates.items(), start=1):
            assignments.append(f"{column} = ${i}")
            args.append(value)
        where_sql, where_args, _ = self._where.render(len(args) + 1)
        sql = f"UPDATE {self.table_name} SET {', '.join(assignments)}{where_sql}"
        return sql, args + where_args

    async def execute(self) -> int:
        """Run the update and return the number of affected rows."""
        sql, args = self.build_sql()
        status = await self._executor.execute(self.db, sql, *args, operation="bulk update")
        return parse_command_status(status)
