# python -m pytest pgoptimizer/tests/sanity/test_sanity_checks.py -v

import pytest

from pgoptimizer.config import settings
from pgoptimizer.sanity_checks import run_startup_sanity_checks_or_raise
from pgoptimizer.sanity_checks.checks.check_db import (
    check_maintenance_tables,
    check_pg_stat_statements,
    check_target_db,
)
from pgoptimizer.sanity_checks.result import SanityCheckResult


class DummyConn:
    def __init__(self, *, schemas=("public",), extension=True, relkinds=None, fail=False):
        self.schemas = set(schemas)
        self.extension = extension
        self.relkinds = relkinds or {}
        self.fail = fail

    async def fetchval(self, sql, *args):
        if self.fail:
            raise ConnectionRefusedError("connection refused")
        if "version()" in sql:
            return "PostgreSQL 16.2 on x86_64-pc-linux-gnu, compiled by gcc"
        if "current_database" in sql:
            return "festivals"
        if "search_path" in sql:
            return '"$user", public'
        if "pg_extension" in sql:
            return self.extension
        return None

    async def fetch(self, sql, *args):
        if "information_schema.schemata" in sql:
            return [{"schema_name": s} for s in args[0] if s in self.schemas]
        if "unnest" in sql:
            return [{"name": n, "relkind": self.relkinds.get(n)} for n in args[0]]
        return []


@pytest.fixture
def public_schema(monkeypatch):
    monkeypatch.setattr(settings, "db_schemas", "public")
    monkeypatch.setattr(settings, "partition_maintenance_tables", "[]")


@pytest.mark.asyncio
async def test_target_db_ok(public_schema):
    result = await check_target_db(DummyConn())

    assert result.ok
    assert result.data["version"] == "PostgreSQL 16.2 on x86_64-pc-linux-gnu"
    assert result.data["current_db"] == "festivals"


@pytest.mark.asyncio
async def test_target_db_missing_schema(monkeypatch):
    monkeypatch.setattr(settings, "db_schemas", "public,reporting")

    result = await check_target_db(DummyConn())

    assert not result.ok
    assert "reporting" in result.error
    assert result.log_level == "ERROR"


@pytest.mark.asyncio
async def test_target_db_unreachable(public_schema):
    result = await check_target_db(DummyConn(fail=True))
    assert not result.ok
    assert "ConnectionRefusedError" in result.error


@pytest.mark.asyncio
async def test_missing_pg_stat_statements_only_warns():
    result = await check_pg_stat_statements(DummyConn(extension=False))

    assert result.ok
    assert result.warning
    assert result.log_level == "WARNING"
    assert result.data == {"installed": False}


@pytest.mark.asyncio
async def test_maintenance_tables_must_be_partitioned(monkeypatch):
    monkeypatch.setattr(
        settings,
        "partition_maintenance_tables",
        '[{"table_name": "audit_logs_partitioned"}, {"table_name": "transactions"}, {"table_name": "ghost"}]',
    )
    conn = DummyConn(relkinds={"audit_logs_partitioned": "p", "transactions": "r"})

    result = await check_maintenance_tables(conn)

    assert not result.ok
    assert "missing: ['ghost']" in result.error
    assert "not partitioned: ['transactions']" in result.error


@pytest.mark.asyncio
async def test_maintenance_tables_invalid_json(monkeypatch):
    monkeypatch.setattr(settings, "partition_maintenance_tables", "{not json")

    result = await check_maintenance_tables(DummyConn())

    assert not result.ok
    assert "JSON" in result.detail


@pytest.mark.asyncio
async def test_runner_passes_with_warnings(public_schema):
    results = await run_startup_sanity_checks_or_raise(DummyConn(extension=False))
    assert [r.name for r in results] == ["target_db", "pg_stat_statements", "partition_maintenance_tables"]
    assert all(r.ok for r in results)


@pytest.mark.asyncio
async def test_runner_raises_on_failure(public_schema):
    with pytest.raises(RuntimeError):
        await run_startup_sanity_checks_or_raise(DummyConn(fail=True))


def test_result_log_params():
    result = SanityCheckResult(name="x", ok=True, detail="OK", data={"a": 1}, warning=True)
    assert result.to_log_params() == {"name": "x", "ok": True, "detail": "OK", "warning": True, "data": {"a": 1}}
