# python -m pytest pgoptimizer/tests/query/test_aggregation.py -v

from datetime import datetime, timezone

import pytest

from pgoptimizer.core.sql_identifiers import SQLIdentifierError
from pgoptimizer.query.aggregation import AggregationQuery, TimeSeriesQuery


class DummyConn:
    def __init__(self, rows):
        self.rows = rows
        self.calls = []

    async def fetch(self, sql, *args):
        self.calls.append((sql, args))
        return self.rows


@pytest.mark.asyncio
async def test_sum_by_group_keys_by_string_and_null_as_empty():
    conn = DummyConn([
        {"group_value": 1, "total": 150},
        {"group_value": None, "total": None},
    ])

    result = await AggregationQuery(conn, "orders").sum_by_group("amount", "festival_id", "status = ?", "paid")

    assert result == {"1": 150.0, "": 0.0}
    sql, args = conn.calls[0]
    assert sql == (
        "SELECT festival_id AS group_value, SUM(amount) AS total"
        " FROM orders WHERE (status = $1) GROUP BY festival_id"
    )
    assert args == ("paid",)


@pytest.mark.asyncio
async def test_count_by_group_without_filter():
    conn = DummyConn([{"group_value": "paid", "count": 3}])

    result = await AggregationQuery(conn, "orders").count_by_group("status")

    assert result == {"paid": 3}
    assert conn.calls[0][0] == "SELECT status AS group_value, COUNT(*) AS count FROM orders GROUP BY status"


def test_arguments_without_where_are_rejected():
    with pytest.raises(ValueError):
        AggregationQuery(DummyConn([]), "orders").build_count_sql("status", "", 1)


def test_time_series_sql():
    sql = TimeSeriesQuery(DummyConn([]), "transactions").build_sql("amount", "created_at", "Day", "avg")

    assert sql == (
        "SELECT date_trunc('day', created_at) AS bucket, AVG(amount) AS value, COUNT(*) AS count"
        " FROM transactions WHERE created_at >= $1 AND created_at < $2"
        " GROUP BY date_trunc('day', created_at) ORDER BY bucket"
    )


@pytest.mark.parametrize("interval,aggregation", [("fortnight", "SUM"), ("day", "MEDIAN")])
def test_time_series_rejects_unknown_interval_or_aggregation(interval, aggregation):
    with pytest.raises(SQLIdentifierError):
        TimeSeriesQuery(DummyConn([]), "transactions").build_sql("amount", "created_at", interval, aggregation)


@pytest.mark.asyncio
async def test_aggregate_by_interval_maps_buckets():
    bucket = datetime(2024, 7, 1, tzinfo=timezone.utc)
    conn = DummyConn([{"bucket": bucket, "value": 12.5, "count": 4}])
    start = datetime(2024, 7, 1, tzinfo=timezone.utc)
    end = datetime(2024, 8, 1, tzinfo=timezone.utc)

    points = await TimeSeriesQuery(conn, "transactions").aggregate_by_interval(
        "amount", "created_at", "month", start, end
    )

    assert conn.calls[0][1] == (start, end)
    assert len(points) == 1
    assert points[0].to_dict() == {"timestamp": "2024-07-01T00:00:00+00:00", "value": 12.5, "count": 4}
