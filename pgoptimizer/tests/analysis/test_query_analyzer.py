# python -m pytest pgoptimizer/tests/analysis/test_query_analyzer.py -v

import pytest

from pgoptimizer.analysis.query_analyzer import QueryAnalyzer, QueryAnalyzerConfig
from pgoptimizer.config import settings
from pgoptimizer.core.sql_identifiers import SQLIdentifierError


class DummyConn:
    def __init__(self, rows=None):
        self.rows = rows or []
        self.fetch_calls = []
        self.executed = []

    async def fetch(self, sql, *args):
        self.fetch_calls.append((sql, args))
        return self.rows

    async def execute(self, sql, *args):
        self.executed.append(sql)
        return "OK"


def test_config_clamps_sampling_rate():
    assert QueryAnalyzerConfig(sampling_rate=3).sampling_rate == 1.0
    assert QueryAnalyzerConfig(sampling_rate=-1).sampling_rate == 0.0


def test_config_from_settings(monkeypatch):
    monkeypatch.setattr(settings, "slow_query_threshold_ms", 250.0)
    monkeypatch.setattr(settings, "unused_index_name_suffixes", "_pkey,_uniq")

    config = QueryAnalyzerConfig.from_settings(sampling_rate=0.5)

    assert config.slow_threshold_ms == 250.0
    assert config.sampling_rate == 0.5
    assert config.unused_index_name_suffixes == ("_pkey", "_uniq")


def test_enable_disable_flag():
    analyzer = QueryAnalyzer(DummyConn(), QueryAnalyzerConfig(enabled=False))
    assert analyzer.is_enabled() is False

    analyzer.enable()
    assert analyzer.is_enabled() is True
    analyzer.disable()
    assert analyzer.is_enabled() is False


def test_should_sample_uses_random_source():
    analyzer = QueryAnalyzer(DummyConn(), QueryAnalyzerConfig(sampling_rate=0.25), random_source=lambda: 0.5)
    assert analyzer.should_sample() is False

    analyzer = QueryAnalyzer(DummyConn(), QueryAnalyzerConfig(sampling_rate=0.25), random_source=lambda: 0.1)
    assert analyzer.should_sample() is True


def test_log_slow_query_respects_threshold():
    analyzer = QueryAnalyzer(DummyConn(), QueryAnalyzerConfig(slow_threshold_ms=100))

    analyzer.log_slow_query("SELECT 1", 50)
    analyzer.log_slow_query("SELECT 2", 150, rows_affected=3, caller_info="orders.list")

    slow = analyzer.get_slow_queries()
    assert [(q.query, q.rows_affected, q.caller_info) for q in slow] == [("SELECT 2", 3, "orders.list")]


@pytest.mark.asyncio
async def test_track_records_when_enabled(monkeypatch):
    analyzer = QueryAnalyzer(DummyConn(), QueryAnalyzerConfig(slow_threshold_ms=0))

    async with analyzer.track("SELECT * FROM orders", "orders.list") as info:
        info["rows_affected"] = 12

    analyzer.disable()
    async with analyzer.track("SELECT * FROM skipped"):
        pass

    slow = analyzer.get_slow_queries()
    assert [q.query for q in slow] == ["SELECT * FROM orders"]
    assert slow[0].rows_affected == 12
    assert info["duration_ms"] >= 0


@pytest.mark.asyncio
async def test_top_slow_queries_maps_rows():
    conn = DummyConn(rows=[{
        "query": "SELECT * FROM orders",
        "calls": 10,
        "total_time": 500.0,
        "mean_time": 50.0,
        "min_time": 1.0,
        "max_time": 200.0,
        "stddev_time": 10.0,
        "rows": 100,
        "shared_blks_hit": 90,
        "shared_blks_read": 10,
        "cache_hit_ratio": 0.9,
    }])
    analyzer = QueryAnalyzer(conn)

    stats = await analyzer.get_top_slow_queries(5)

    sql, args = conn.fetch_calls[0]
    assert "FROM pg_stat_statements" in sql
    assert "NOT LIKE '%pg_stat%'" in sql
    assert args == (5,)
    assert stats[0].calls == 10
    assert stats[0].cache_hit_ratio == 0.9


@pytest.mark.asyncio
async def test_most_frequent_queries_tolerates_missing_columns():
    conn = DummyConn(rows=[{"query": "SELECT 1", "calls": 99, "total_time": 9.0, "mean_time": 0.1, "rows": 99,
                            "shared_blks_hit": 0, "shared_blks_read": 0, "cache_hit_ratio": 0}])
    analyzer = QueryAnalyzer(conn)

    stats = await analyzer.get_most_frequent_queries()

    assert stats[0].calls == 99
    assert stats[0].max_time == 0.0
    assert "ORDER BY calls DESC" in conn.fetch_calls[0][0]


@pytest.mark.asyncio
async def test_vacuum_and_analyze_validate_table_names():
    conn = DummyConn()
    analyzer = QueryAnalyzer(conn)

    await analyzer.analyze_table("public.orders")
    await analyzer.vacuum_table("orders", full=True)

    assert conn.executed == ["ANALYZE public.orders", "VACUUM FULL orders"]
    with pytest.raises(SQLIdentifierError):
        await analyzer.analyze_table("orders; DROP TABLE users")


@pytest.mark.asyncio
async def test_reset_query_stats_calls_extension_function():
    conn = DummyConn()

    await QueryAnalyzer(conn).reset_query_stats()

    assert conn.executed == ["SELECT pg_stat_statements_reset()"]
