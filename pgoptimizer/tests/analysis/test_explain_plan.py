# python -m pytest pgoptimizer/tests/analysis/test_explain_plan.py -v

"""Tests for EXPLAIN ANALYZE execution, plan metrics and warnings."""

import json

import pytest

from pgoptimizer.analysis.explain import (
    ExplainAnalyzeError,
    build_explain_sql,
    explain_analyze,
    parse_plan,
)


def _root(plan, execution_time=1.0, planning_time=0.1):
    return {"Plan": plan, "Planning Time": planning_time, "Execution Time": execution_time}


class DummyConn:
    def __init__(self, rows=None, error=None):
        self.rows = rows if rows is not None else []
        self.error = error
        self.calls = []
        self.transactions = 0

    async def fetch(self, sql, *args):
        self.calls.append((sql, args))
        if self.error:
            raise self.error
        return self.rows

    def transaction(self):
        conn = self

        class _Tx:
            async def __aenter__(self):
                conn.transactions += 1
                return self

            async def __aexit__(self, exc_type, exc, tb):
                return False

        return _Tx()


def test_build_explain_sql_uses_json_analyze_options():
    assert build_explain_sql("SELECT 1") == (
        "EXPLAIN (ANALYZE, COSTS, VERBOSE, BUFFERS, FORMAT JSON) SELECT 1"
    )


def test_large_seq_scan_produces_index_warning():
    plan = parse_plan(
        "SELECT * FROM orders",
        _root({"Node Type": "Seq Scan", "Relation Name": "orders", "Plan Rows": 5000, "Actual Rows": 5000, "Total Cost": 88.5}),
    )

    assert plan.seq_scans == 1
    assert plan.actual_rows == 5000
    assert plan.total_cost == 88.5
    assert "Sequential scan returned 5000 rows, consider adding an index" in plan.warnings
    assert plan.plan[0].relation_name == "orders"


def test_row_estimate_mismatch_produces_analyze_warning():
    plan = parse_plan(
        "SELECT * FROM orders WHERE status = 'x'",
        _root({"Node Type": "Index Scan", "Plan Rows": 10, "Actual Rows": 1000}),
    )

    assert plan.index_scans == 1
    assert plan.warnings == ["Row estimation off by 100.0x, consider running ANALYZE"]


def test_slow_execution_warning_uses_two_decimals():
    plan = parse_plan(
        "SELECT 1",
        _root({"Node Type": "Result", "Plan Rows": 1, "Actual Rows": 1}, execution_time=150.0),
    )

    assert plan.warnings == ["Slow execution time: 150.00ms"]


def test_healthy_plan_has_no_warnings():
    plan = parse_plan(
        "SELECT * FROM orders WHERE id = $1",
        _root({"Node Type": "Index Scan", "Plan Rows": 1, "Actual Rows": 1}),
    )

    assert plan.warnings == []


def test_nested_loops_are_counted_across_the_tree():
    leaf = {"Node Type": "Index Scan", "Plan Rows": 1, "Actual Rows": 1}
    tree = leaf
    for _ in range(4):
        tree = {"Node Type": "Nested Loop", "Plan Rows": 1, "Actual Rows": 1, "Plans": [tree]}

    plan = parse_plan("SELECT ...", _root(tree))

    assert plan.nested_loops == 4
    assert plan.index_scans == 1
    assert "Multiple nested loops (4) may indicate missing indexes" in plan.warnings


def test_first_matching_node_type_wins():
    # "Index Only Scan" matches "Index" before any later counter.
    plan = parse_plan(
        "SELECT ...",
        _root({
            "Node Type": "Sort",
            "Plan Rows": 1,
            "Actual Rows": 1,
            "Plans": [{"Node Type": "Index Only Scan", "Plan Rows": 1, "Actual Rows": 1}],
        }),
    )

    assert plan.sort_operations == 1
    assert plan.index_scans == 1
    assert plan.seq_scans == 0


def test_summary_lists_warnings():
    plan = parse_plan(
        "SELECT 1",
        _root({"Node Type": "Result", "Plan Rows": 1, "Actual Rows": 1}, execution_time=150.0),
    )

    text = plan.summary()

    assert "Execution Time: 150.00ms" in text
    assert "Warnings:" in text
    assert json.loads(plan.to_json())["execution_time"] == 150.0


@pytest.mark.asyncio
async def test_explain_analyze_accepts_json_string_payload():
    payload = json.dumps([_root({"Node Type": "Seq Scan", "Plan Rows": 3, "Actual Rows": 3})])
    conn = DummyConn(rows=[{"QUERY PLAN": payload}])

    plan = await explain_analyze(conn, "SELECT * FROM t WHERE a = $1", 7)

    assert plan.seq_scans == 1
    assert conn.calls[0][0].startswith("EXPLAIN (ANALYZE")
    assert conn.calls[0][1] == (7,)
    assert conn.transactions == 0


@pytest.mark.asyncio
async def test_explain_analyze_rolls_back_non_select_statements():
    conn = DummyConn(rows=[{"QUERY PLAN": [_root({"Node Type": "ModifyTable", "Plan Rows": 0, "Actual Rows": 0})]}])

    plan = await explain_analyze(conn, "DELETE FROM t WHERE id = $1", 1)

    assert conn.transactions == 1
    assert plan.query == "DELETE FROM t WHERE id = $1"


@pytest.mark.asyncio
async def test_explain_analyze_rolls_back_data_modifying_cte():
    conn = DummyConn(rows=[{"QUERY PLAN": [_root({"Node Type": "CTE Scan", "Plan Rows": 1, "Actual Rows": 1})]}])

    await explain_analyze(conn, "WITH d AS (DELETE FROM orders RETURNING *) SELECT * FROM d")

    assert conn.transactions == 1


@pytest.mark.asyncio
async def test_explain_analyze_wraps_execution_errors():
    conn = DummyConn(error=RuntimeError("relation \"nope\" does not exist"))

    with pytest.raises(ExplainAnalyzeError) as excinfo:
        await explain_analyze(conn, "SELECT * FROM nope")

    assert "failed to run EXPLAIN ANALYZE" in str(excinfo.value)
    assert isinstance(excinfo.value.__cause__, RuntimeError)


@pytest.mark.asyncio
async def test_explain_analyze_rejects_empty_result():
    with pytest.raises(ExplainAnalyzeError) as excinfo:
        await explain_analyze(DummyConn(rows=[]), "SELECT 1")

    assert "empty EXPLAIN result" in str(excinfo.value)
