"""
Identifier validation for SQL text that cannot use bind parameters.

Table, column, partition and setting names, date_trunc intervals, aggregation
keywords and sort directions are interpolated into statements. Every such value
goes through this module first; anything outside the closed sets is rejected.
"""
import re
from typing import Iterable, List, Tuple

import sqlglot
from sqlglot import exp
from sqlglot.errors import ParseError


class SQLIdentifierError(ValueError):
    """Raised when a value is not allowed inside SQL text"""
    pass


_IDENTIFIER_RE = re.compile(r"^[A-Za-z_][A-Za-z0-9_]{0,62}$")

DATE_TRUNC_INTERVALS = frozenset({
    "microseconds",
    "milliseconds",
    "second",
    "minute",
    "hour",
    "day",
    "week",
    "month",
    "quarter",
    "year",
    "decade",
    "century",
    "millennium",
})

AGGREGATIONS = frozenset({"SUM", "AVG", "COUNT", "MIN", "MAX"})

SORT_DIRECTIONS = frozenset({"ASC", "DESC"})

# Planner/session settings that may be changed with SET LOCAL.
TUNABLE_SETTINGS = frozenset({
    "statement_timeout",
    "lock_timeout",
    "work_mem",
    "enable_seqscan",
    "enable_indexscan",
    "enable_bitmapscan",
    "enable_hashjoin",
    "enable_mergejoin",
    "enable_nestloop",
    "enable_sort",
    "random_page_cost",
    "max_parallel_workers_per_gather",
    "jit",
})


def validate_identifier(name: str) -> str:
    """Return ``name`` if it is a plain, unquoted SQL identifier."""
    if not isinstance(name, str) or not _IDENTIFIER_RE.match(name):
        raise SQLIdentifierError(f"Invalid SQL identifier: {name!r}")
    return name


def validate_qualified_name(name: str) -> str:
    """
    Validate ``table`` or ``schema.table`` and return its normalized postgres text.
    """
    if not isinstance(name, str) or not name:
        raise SQLIdentifierError(f"Invalid table name: {name!r}")
    parts = name.split(".")
    if len(parts) > 2:
        raise SQLIdentifierError(f"Invalid table name: {name!r}")
    for part in parts:
        validate_identifier(part)

    try:
        table = exp.to_table(name, dialect="postgres")
    except ParseError as exc:
        raise SQLIdentifierError(f"Invalid table name: {name!r}") from exc
    if not isinstance(table, exp.Table) or table.alias or table.catalog:
        raise SQLIdentifierError(f"Invalid table name: {name!r}")
    return table.sql(dialect="postgres")


def validate_columns(columns: Iterable[str]) -> List[str]:
    cols = [validate_identifier(c) for c in columns]
    if not cols:
        raise SQLIdentifierError("At least one column is required")
    return cols


def validate_interval(interval: str) -> str:
    value = str(interval or "").strip().lower()
    if value not in DATE_TRUNC_INTERVALS:
        supported = ", ".join(sorted(DATE_TRUNC_INTERVALS))
        raise SQLIdentifierError(f"Unsupported interval {interval!r}. Supported: {supported}")
    return value


def validate_aggregation(aggregation: str) -> str:
    value = str(aggregation or "").strip().upper()
    if value not in AGGREGATIONS:
        supported = ", ".join(sorted(AGGREGATIONS))
        raise SQLIdentifierError(f"Unsupported aggregation {aggregation!r}. Supported: {supported}")
    return value


def validate_sort_direction(direction: str) -> str:
    value = str(direction or "").strip().upper()
    if value not in SORT_DIRECTIONS:
        raise SQLIdentifierError(f"Unsupported sort direction {direction!r}. Use ASC or DESC")
    return value


def validate_setting_name(name: str) -> str:
    value = validate_identifier(str(name or "").strip().lower())
    if value not in TUNABLE_SETTINGS:
        raise SQLIdentifierError(f"Setting {name!r} cannot be changed through query hints")
    return value


def parse_order_by(expression: str) -> List[Tuple[str, str]]:
    """
    Parse "created_at DESC, id" into [("created_at", "DESC"), ("id", "ASC")].
    """
    items: List[Tuple[str, str]] = []
    for raw in str(expression or "").split(","):
        tokens = raw.split()
        if not tokens or len(tokens) > 2:
            raise SQLIdentifierError(f"Invalid ORDER BY expression: {expression!r}")
        column = validate_identifier(tokens[0])
        direction = validate_sort_direction(tokens[1]) if len(tokens) == 2 else "ASC"
        items.append((column, direction))
    return items


def quote_literal(value: str) -> str:
    """Render a string literal for statements where placeholders are not accepted (SET, DDL bounds)."""
    return exp.Literal.string(str(value)).sql(dialect="postgres")


_WRITE_NODES = (exp.Insert, exp.Update, exp.Delete, exp.Merge)


def is_select_statement(sql: str) -> bool:
    """
    True when ``sql`` parses as a single SELECT (or UNION of SELECTs) that writes nothing.

    Data-modifying CTEs (``WITH d AS (DELETE ... RETURNING *) SELECT ...``) are not selects.
    """
    try:
        statements = sqlglot.parse(sql, read="postgres")
    except ParseError:
        return False
    statements = [s for s in statements if s is not None]
    if len(statements) != 1 or not isinstance(statements[0], (exp.Select, exp.Union)):
        return False
    return statements[0].find(*_WRITE_NODES) is None
