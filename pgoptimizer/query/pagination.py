"""Offset and keyset pagination."""

from __future__ import annotations

import math
from dataclasses import dataclass, field
from typing import Any, List, Optional, Sequence, Tuple

from pgoptimizer.core.sql_exec import SQLExecutor
from pgoptimizer.core.sql_identifiers import (
    parse_order_by,
    validate_columns,
    validate_identifier,
    validate_qualified_name,
    validate_sort_direction,
)
from pgoptimizer.query.where import WhereClause


@dataclass
class PaginatedResult:
    """One page of an offset-paginated query."""

    data: List[Any] = field(default_factory=list)
    total: int = 0
    page: int = 1
    page_size: int = 0
    total_pages: int = 0
    has_next: bool = False
    has_prev: bool = False


def _select_list(columns: Optional[Sequence[str]]) -> str:
    if not columns:
        return "*"
    return ", ".join(validate_columns(columns))


class PaginatedQuery:
    """
    OFFSET/LIMIT pagination with a separate COUNT query.

    Cost grows linearly with the page number; use KeysetPagination for deep paging.
    """

    def __init__(self, db: Any, table_name: str, *, executor: Optional[SQLExecutor] = None):
        self.db = db
        self.table_name = validate_qualified_name(table_name)
        self._executor = executor or SQLExecutor()
        self._where = WhereClause()
        self._order: List[Tuple[str, str]] = []
        self._columns: Optional[List[str]] = None

    def where(self, condition: str, *args: Any) -> "PaginatedQuery":
        """Add an AND-ed condition using ``?`` placeholders."""
        self._where.add(condition, *args)
        return self

    def order(self, expression: str) -> "PaginatedQuery":
        """Append ORDER BY items, e.g. ``"created_at DESC, id"``."""
        self._order.extend(parse_order_by(expression))
        return self

    def columns(self, *columns: str) -> "PaginatedQuery":
        self._columns = validate_columns(columns)
        return self

    def build_count_sql(self) -> Tuple[str, List[Any]]:
        where_sql, args, _ = self._where.render(1)
        return f"SELECT COUNT(*) FROM {self.table_name}{where_sql}", args

    def build_page_sql(self, page: int, page_size: int) -> Tuple[str, List[Any]]:
        where_sql, args, next_index = self._where.render(1)
        order_sql = ""
        if self._order:
            order_sql = " ORDER BY " + ", ".join(f"{c} {d}" for c, d in self._order)
        sql = (
            f"SELECT {_select_list(self._columns)} FROM {self.table_name}{where_sql}{order_sql}"
            f" LIMIT ${next_index} OFFSET ${next_index + 1}"
        )
        return sql, args + [page_size, (page - 1) * page_size]

    async def execute(self, page: int, page_size: int) -> PaginatedResult:
        if page < 1:
            raise ValueError("page must be >= 1")
        if page_size < 1:
            raise ValueError("page_size must be >= 1")

        count_sql, count_args = self.build_count_sql()
        total = await self._executor.fetchval(self.db, count_sql, *count_args, operation="count")
        total = int(total or 0)

        page_sql, page_args = self.build_page_sql(page, page_size)
        rows = await self._executor.fetch(self.db, page_sql, *page_args, operation="fetch data")

        total_pages = math.ceil(total / page_size) if total else 0
        return PaginatedResult(
            data=list(rows),
            total=total,
            page=page,
            page_size=page_size,
            total_pages=total_pages,
            has_next=page < total_pages,
            has_prev=page > 1,
        )


class KeysetPagination:
    """
    Cursor pagination over ``(sort_column, id)``.

    The row tuple comparison makes ``id`` a tie-breaker, so pages neither skip nor
    repeat rows when many rows share a ``sort_column`` value. ``id`` must be unique.
    """

    def __init__(
        self,
        db: Any,
        table_name: str,
        sort_column: str,
        sort_order: str = "DESC",
        *,
        id_column: str = "id",
        executor: Optional[SQLExecutor] = None,
    ):
        self.db = db
        self.table_name = validate_qualified_name(table_name)
        self.sort_column = validate_identifier(sort_column)
        self.sort_order = validate_sort_direction(sort_order)
        self.id_column = validate_identifier(id_column)
        self._executor = executor or SQLExecutor()
        self._columns: Optional[List[str]] = None
        self._last_value: Any = None
        self._last_id: Any = None
        self._has_cursor = False

    def columns(self, *columns: str) -> "KeysetPagination":
        self._columns = validate_columns(columns)
        return self

    def after(self, value: Any, row_id: Any) -> "KeysetPagination":
        """Position the cursor after the row identified by ``(value, row_id)``."""
        self._last_value = value
        self._last_id = row_id
        self._has_cursor = True
        return self

    def reset(self) -> "KeysetPagination":
        self._last_value = None
        self._last_id = None
        self._has_cursor = False
        return self

    @property
    def cursor(self) -> Optional[Tuple[Any, Any]]:
        if not self._has_cursor:
            return None
        return self._last_value, self._last_id

    def build_sql(self, limit: int) -> Tuple[str, List[Any]]:
        args: List[Any] = []
        where_sql = ""
        if self._has_cursor:
            op = "<" if self.sort_order == "DESC" else ">"
            where_sql = f" WHERE ({self.sort_column}, {self.id_column}) {op} ($1, $2)"
            args.extend([self._last_value, self._last_id])
        order_sql = (
            f" ORDER BY {self.sort_column} {self.sort_order}, {self.id_column} {self.sort_order}"
        )
        sql = (
            f"SELECT {_select_list(self._columns)} FROM {self.table_name}{where_sql}{order_sql}"
            f" LIMIT ${len(args) + 1}"
        )
        args.append(limit)
        return sql, args

    async def fetch(self, limit: int) -> List[Any]:
        if limit < 1:
            raise ValueError("limit must be >= 1")
        sql, args = self.build_sql(limit)
        rows = await self._executor.fetch(self.db, sql, *args, operation="keyset fetch")
        return list(rows)

    def next_cursor(self, rows: Sequence[Any]) -> Optional[Tuple[Any, Any]]:
        """Cursor pointing after the last row of ``rows``; None for an empty page."""
        if not rows:
            return None
        last = rows[-1]
        return last[self.sort_column], last[self.id_column]

    def advance(self, rows: Sequence[Any]) -> bool:
        """Move the cursor past ``rows``. Returns False when there was nothing to advance over."""
        cursor = self.next_cursor(rows)
        if cursor is None:
            return False
        self.after(*cursor)
        return True
