# python -m pytest pgoptimizer/tests/query/test_bulk.py -v

import pytest

from pgoptimizer.core.sql_exec import SQLExecutionError
from pgoptimizer.core.sql_identifiers import SQLIdentifierError
from pgoptimizer.query.bulk import (
    MAX_BIND_PARAMETERS,
    BulkUpdateBuilder,
    BulkUpdateError,
    batch_insert,
    batch_upsert,
    build_insert_sql,
    dedupe_by_conflict_key,
    effective_batch_size,
)


class _Tx:
    def __init__(self, conn):
        self.conn = conn

    async def __aenter__(self):
        self.conn.transactions += 1
        return self

    async def __aexit__(self, exc_type, exc, tb):
        if exc_type is not None:
            self.conn.rolled_back = True
        return False


class DummyConn:
    def __init__(self, fail_on_call=None):
        self.statements = []
        self.transactions = 0
        self.rolled_back = False
        self.fail_on_call = fail_on_call

    def transaction(self):
        return _Tx(self)

    async def execute(self, sql, *args):
        self.statements.append((sql, args))
        if self.fail_on_call and len(self.statements) == self.fail_on_call:
            raise RuntimeError("value too long for type character varying(20)")
        if sql.startswith("INSERT"):
            return f"INSERT 0 {sql.count('($')}"
        return "UPDATE 7"


def test_effective_batch_size_respects_bind_limit():
    assert effective_batch_size(1000, 3) == 1000
    assert effective_batch_size(50000, 2) == MAX_BIND_PARAMETERS // 2
    assert effective_batch_size(0, 1) == 1000


def test_build_insert_sql_numbers_rows():
    sql = build_insert_sql("orders", ["id", "amount"], 2)
    assert sql == "INSERT INTO orders (id, amount) VALUES ($1, $2), ($3, $4)"


def test_build_upsert_sql():
    update = build_insert_sql("orders", ["id", "amount"], 1, conflict_columns=["id"], update_columns=["amount"])
    nothing = build_insert_sql("orders", ["id", "amount"], 1, conflict_columns=["id"])

    assert update.endswith("ON CONFLICT (id) DO UPDATE SET amount = EXCLUDED.amount")
    assert nothing.endswith("ON CONFLICT (id) DO NOTHING")


def test_build_insert_sql_rejects_unsafe_columns():
    with pytest.raises(SQLIdentifierError):
        build_insert_sql("orders", ["id", "amount)--"], 1)


@pytest.mark.asyncio
async def test_batch_insert_splits_rows_into_one_transaction():
    conn = DummyConn()
    rows = [(i, i * 10) for i in range(5)]

    written = await batch_insert(conn, "orders", ["id", "amount"], rows, batch_size=2)

    assert written == 5
    assert conn.transactions == 1
    assert [len(args) for _, args in conn.statements] == [4, 4, 2]
    assert conn.statements[2] == ("INSERT INTO orders (id, amount) VALUES ($1, $2)", (4, 40))


@pytest.mark.asyncio
async def test_batch_insert_accepts_mappings_and_skips_empty_input():
    conn = DummyConn()

    assert await batch_insert(conn, "orders", ["id", "amount"], []) == 0
    assert conn.statements == []

    await batch_insert(conn, "orders", ["id", "amount"], [{"amount": 5, "id": 1}])
    assert conn.statements[0][1] == (1, 5)


@pytest.mark.asyncio
async def test_batch_insert_rejects_short_rows():
    with pytest.raises(ValueError):
        await batch_insert(DummyConn(), "orders", ["id", "amount"], [(1,)])


@pytest.mark.asyncio
async def test_failed_batch_rolls_back_the_whole_insert():
    conn = DummyConn(fail_on_call=2)

    with pytest.raises(SQLExecutionError) as excinfo:
        await batch_insert(conn, "orders", ["id", "amount"], [(i, i) for i in range(4)], batch_size=2)

    assert str(excinfo.value).startswith("batch insert failed: ")
    assert conn.rolled_back is True


@pytest.mark.asyncio
async def test_batch_upsert_requires_conflict_columns():
    with pytest.raises(ValueError):
        await batch_upsert(DummyConn(), "orders", ["id"], [(1,)], conflict_columns=[])


@pytest.mark.asyncio
async def test_batch_upsert_appends_conflict_clause():
    conn = DummyConn()

    await batch_upsert(conn, "orders", ["id", "amount"], [(1, 2)], ["id"], ["amount"])

    assert "ON CONFLICT (id) DO UPDATE SET amount = EXCLUDED.amount" in conn.statements[0][0]


@pytest.mark.asyncio
async def test_batch_upsert_keeps_last_row_per_conflict_key():
    conn = DummyConn()
    rows = [(1, 10), (2, 20), (1, 11), {"id": 3, "amount": 30}, (2, 21)]

    written = await batch_upsert(conn, "orders", ["id", "amount"], rows, ["id"], ["amount"], batch_size=2)

    assert written == 3
    assert [args for _, args in conn.statements] == [(1, 11, 2, 21), (3, 30)]


def test_dedupe_requires_conflict_columns_to_be_inserted():
    with pytest.raises(ValueError):
        dedupe_by_conflict_key([(1, 2)], ["id", "amount"], ["sku"])


class TestBulkUpdateBuilder:
    def test_set_placeholders_come_before_where(self):
        builder = (
            BulkUpdateBuilder(DummyConn(), "orders")
            .set("status", "archived")
            .set("archived_by", "ops")
            .where("created_at < ?", "2024-01-01")
            .where("status <> ?", "archived")
        )

        sql, args = builder.build_sql()

        assert sql == (
            "UPDATE orders SET status = $1, archived_by = $2"
            " WHERE (created_at < $3) AND (status <> $4)"
        )
        assert args == ["archived", "ops", "2024-01-01", "archived"]

    def test_refuses_update_without_where(self):
        with pytest.raises(BulkUpdateError) as excinfo:
            BulkUpdateBuilder(DummyConn(), "orders").set("status", "x").build_sql()
        assert "without a WHERE clause" in str(excinfo.value)

    def test_refuses_update_without_set(self):
        with pytest.raises(BulkUpdateError):
            BulkUpdateBuilder(DummyConn(), "orders").where("id = ?", 1).build_sql()

    @pytest.mark.asyncio
    async def test_execute_returns_affected_rows(self):
        conn = DummyConn()
        count = await BulkUpdateBuilder(conn, "orders").set("status", "x").where("id > ?", 0).execute()
        assert count == 7
