"""PostgreSQL EXPLAIN ANALYZE execution and plan parsing."""

import json
from typing import Any, Dict, List, Sequence

from pgoptimizer.analysis.type import ExplainPlan, ExplainPlanNode
from pgoptimizer.core.sql_identifiers import is_select_statement

EXPLAIN_OPTIONS = "ANALYZE, COSTS, VERBOSE, BUFFERS, FORMAT JSON"

SEQ_SCAN_ROWS_THRESHOLD = 1000
ROW_ESTIMATE_RATIO_HIGH = 10.0
ROW_ESTIMATE_RATIO_LOW = 0.1
SLOW_EXECUTION_MS = 100.0
NESTED_LOOP_THRESHOLD = 3

# Matched in order; the first substring found in "Node Type" wins.
_NODE_COUNTERS = (
    ("Seq Scan", "seq_scans"),
    ("Index", "index_scans"),
    ("Sort", "sort_operations"),
    ("Hash Join", "hash_joins"),
    ("Nested Loop", "nested_loops"),
)


class ExplainAnalyzeError(Exception):
    """Raised when an execution plan cannot be produced"""
    pass


class _RollbackExplain(Exception):
    pass


def build_explain_sql(query: str) -> str:
    return f"EXPLAIN ({EXPLAIN_OPTIONS}) {query}"


def _normalize_plan_payload(payload: Any) -> Any:
    if isinstance(payload, (bytes, bytearray)):
        payload = payload.decode("utf-8")
    if isinstance(payload, str):
        return json.loads(payload)
    return payload


def _first_column(row: Any) -> Any:
    try:
        return row["QUERY PLAN"]
    except (KeyError, TypeError, IndexError):
        pass
    if isinstance(row, dict):
        return next(iter(row.values()), None)
    return row[0]


def _root_plan(rows: Sequence[Any]) -> Dict[str, Any]:
    payload = _normalize_plan_payload(_first_column(rows[0]))
    if isinstance(payload, list):
        payload = payload[0] if payload else {}
    return payload if isinstance(payload, dict) else {}


def extract_plan_metrics(plan: ExplainPlan, node: Dict[str, Any]) -> None:
    """Walk a JSON plan node and its children, accumulating counters on ``plan``."""
    node_type = str(node.get("Node Type") or "")
    for needle, counter in _NODE_COUNTERS:
        if needle in node_type:
            setattr(plan, counter, getattr(plan, counter) + 1)
            break

    total_cost = node.get("Total Cost")
    if isinstance(total_cost, (int, float)) and total_cost > plan.total_cost:
        plan.total_cost = float(total_cost)
    actual_rows = node.get("Actual Rows")
    if isinstance(actual_rows, (int, float)):
        plan.actual_rows += int(actual_rows)
    plan_rows = node.get("Plan Rows")
    if isinstance(plan_rows, (int, float)):
        plan.estimated_rows += int(plan_rows)

    for child in node.get("Plans") or []:
        if isinstance(child, dict):
            extract_plan_metrics(plan, child)


def generate_warnings(plan: ExplainPlan) -> List[str]:
    warnings: List[str] = []

    if plan.seq_scans > 0 and plan.actual_rows > SEQ_SCAN_ROWS_THRESHOLD:
        warnings.append(
            f"Sequential scan returned {plan.actual_rows} rows, consider adding an index"
        )

    if plan.estimated_rows > 0:
        ratio = plan.actual_rows / plan.estimated_rows
        if ratio > ROW_ESTIMATE_RATIO_HIGH or ratio < ROW_ESTIMATE_RATIO_LOW:
            warnings.append(f"Row estimation off by {ratio:.1f}x, consider running ANALYZE")

    if plan.execution_time > SLOW_EXECUTION_MS:
        warnings.append(f"Slow execution time: {plan.execution_time:.2f}ms")

    if plan.nested_loops > NESTED_LOOP_THRESHOLD:
        warnings.append(
            f"Multiple nested loops ({plan.nested_loops}) may indicate missing indexes"
        )

    return warnings


def parse_plan(query: str, root: Dict[str, Any]) -> ExplainPlan:
    """Build an ExplainPlan from the decoded ``EXPLAIN (FORMAT JSON)`` root object."""
    plan = ExplainPlan(query=query, raw_plan=root)
    planning_time = root.get("Planning Time")
    if isinstance(planning_time, (int, float)):
        plan.planning_time = float(planning_time)
    execution_time = root.get("Execution Time")
    if isinstance(execution_time, (int, float)):
        plan.execution_time = float(execution_time)

    node = root.get("Plan")
    if isinstance(node, dict):
        extract_plan_metrics(plan, node)
        plan.plan = [ExplainPlanNode.from_json(node)]

    plan.warnings = generate_warnings(plan)
    return plan


async def explain_analyze(conn: Any, query: str, *args: Any) -> ExplainPlan:
    """
    Run EXPLAIN ANALYZE for ``query`` on ``conn`` and parse the plan.

    EXPLAIN ANALYZE executes the statement. Anything that is not a plain SELECT
    runs inside a transaction that is always rolled back.
    """
    explain_sql = build_explain_sql(query)
    try:
        if is_select_statement(query):
            rows = await conn.fetch(explain_sql, *args)
        else:
            rows = await _fetch_rolled_back(conn, explain_sql, *args)
    except Exception as exc:
        raise ExplainAnalyzeError(f"failed to run EXPLAIN ANALYZE: {exc}") from exc

    if not rows:
        raise ExplainAnalyzeError("empty EXPLAIN result")

    try:
        root = _root_plan(rows)
    except (ValueError, TypeError, IndexError) as exc:
        raise ExplainAnalyzeError(f"unreadable EXPLAIN result: {exc}") from exc
    return parse_plan(query, root)


async def _fetch_rolled_back(conn: Any, sql: str, *args: Any) -> List[Any]:
    rows: List[Any] = []
    try:
        async with conn.transaction():
            rows = await conn.fetch(sql, *args)
            raise _RollbackExplain()
    except _RollbackExplain:
        pass
    return rows
