# python -m pytest pgoptimizer/tests/analysis/test_index_monitor.py -v

"""Tests for IndexUsageMonitor caching, unused and duplicate index reports."""

import pytest

from pgoptimizer.analysis.index_monitor import IndexUsageMonitor, usage_ratio
from pgoptimizer.core.ttl_cache import TTLCache

MB = 1024 * 1024


def _index_row(name, scans=0, size=MB, table="orders", schema="public"):
    return {
        "schema_name": schema,
        "table_name": table,
        "index_name": name,
        "index_scans": scans,
        "tuples_read": 0,
        "tuples_fetched": 0,
        "index_size": size,
    }


def _column_row(name, columns, predicate="", has_expression=False, table="orders"):
    return {
        "schema_name": "public",
        "table_name": table,
        "index_name": name,
        "index_scans": 5,
        "index_size": 2 * MB,
        "predicate": predicate,
        "has_expression": has_expression,
        "columns": columns,
    }


class DummyConn:
    def __init__(self, rows):
        self.rows = rows
        self.calls = []

    async def fetch(self, sql, *args):
        self.calls.append(sql)
        return list(self.rows)


class FakeClock:
    def __init__(self):
        self.now = 1000.0

    def __call__(self):
        return self.now


def test_usage_ratio_is_scans_per_mebibyte():
    assert usage_ratio(10, 2 * MB) == 5.0
    assert usage_ratio(10, 0) == 0.0


@pytest.mark.asyncio
async def test_get_stats_marks_unused_and_caches_snapshot():
    conn = DummyConn([_index_row("idx_orders_status", scans=0), _index_row("idx_orders_user", scans=40, size=4 * MB)])
    clock = FakeClock()
    monitor = IndexUsageMonitor(conn, cache=TTLCache(ttl_seconds=3600, clock=clock))

    first = await monitor.get_stats()
    clock.now += 10
    second = await monitor.get_stats()

    assert len(conn.calls) == 1
    assert [s.index_name for s in second] == [s.index_name for s in first]
    unused = first[0]
    assert unused.is_unused is True
    assert unused.recommendation == "Consider dropping this unused index"
    assert first[1].usage_ratio == 10.0


@pytest.mark.asyncio
async def test_get_stats_rescans_after_interval_or_invalidate():
    conn = DummyConn([_index_row("idx_a", scans=1)])
    clock = FakeClock()
    monitor = IndexUsageMonitor(conn, cache=TTLCache(ttl_seconds=60, clock=clock))

    await monitor.get_stats()
    clock.now += 61
    await monitor.get_stats()
    monitor.invalidate()
    await monitor.get_stats()

    assert len(conn.calls) == 3


@pytest.mark.asyncio
async def test_empty_snapshot_is_not_served_from_cache():
    conn = DummyConn([])
    monitor = IndexUsageMonitor(conn)

    await monitor.get_stats()
    conn.rows = [_index_row("idx_new", scans=3)]
    stats = await monitor.get_stats()

    assert [s.index_name for s in stats] == ["idx_new"]


@pytest.mark.asyncio
async def test_unused_indexes_skip_configured_suffixes():
    conn = DummyConn([
        _index_row("orders_pkey"),
        _index_row("orders_email_unique"),
        _index_row("idx_orders_legacy"),
    ])
    monitor = IndexUsageMonitor(conn)

    unused = await monitor.get_unused_indexes()

    assert [s.index_name for s in unused] == ["idx_orders_legacy"]
    assert unused[0].recommendation.endswith("to save space and improve write performance")
    assert "NOT i.indisprimary" in conn.calls[0]


@pytest.mark.asyncio
async def test_duplicate_indexes_grouped_by_table_columns_and_predicate():
    conn = DummyConn([
        _column_row("idx_a", ["user_id", "created_at"]),
        _column_row("idx_b", ["user_id", "created_at"]),
        _column_row("idx_c", ["created_at", "user_id"]),
        _column_row("idx_partial", ["user_id", "created_at"], predicate="(status = 'open')"),
        _column_row("idx_expr", ["user_id"], has_expression=True),
        _column_row("idx_expr2", ["user_id"], has_expression=True),
        _column_row("idx_other_table", ["user_id", "created_at"], table="payments"),
    ])
    monitor = IndexUsageMonitor(conn)

    duplicates = await monitor.get_duplicate_indexes()

    by_name = {d.index_name: d for d in duplicates}
    assert set(by_name) == {"idx_a", "idx_b"}
    assert by_name["idx_a"].recommendation == "Potential duplicate of: idx_b"
    assert by_name["idx_b"].recommendation == "Potential duplicate of: idx_a"
    assert all(d.is_duplicate for d in duplicates)
