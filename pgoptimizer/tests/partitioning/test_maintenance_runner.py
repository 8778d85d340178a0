# python -m pytest pgoptimizer/tests/partitioning/test_maintenance_runner.py -v

import asyncio
from datetime import timedelta

import pytest

from pgoptimizer.partitioning.maintenance import MaintenanceRunner, configs_from_settings
from pgoptimizer.partitioning.manager import PartitionError
from pgoptimizer.partitioning.type import PartitionConfig, PartitionSize


class FakeManager:
    def __init__(self, fail_create=(), fail_drop=()):
        self.fail_create = set(fail_create)
        self.fail_drop = set(fail_drop)
        self.created = []
        self.dropped = []

    async def create_future_partitions(self, table_name, size, count=None):
        if table_name in self.fail_create:
            raise PartitionError(f"failed to create partition {table_name}_x: permission denied")
        names = [f"{table_name}_{i}" for i in range(1, count + 1)]
        self.created.append((table_name, size, count))
        return names

    async def drop_old_partitions(self, table_name, retention):
        if table_name in self.fail_drop:
            raise PartitionError("failed to get partitions: connection reset")
        self.dropped.append((table_name, retention))
        return 2


@pytest.mark.asyncio
async def test_run_once_reports_per_table_and_isolates_failures():
    manager = FakeManager(fail_create={"audit_logs"})
    runner = MaintenanceRunner(
        manager,
        [
            PartitionConfig("audit_logs", "timestamp", partition_size=PartitionSize.MONTHLY, retention=timedelta(days=90)),
            PartitionConfig("transactions", partition_size=PartitionSize.DAILY),
        ],
        future_count=2,
    )

    summary = await runner.run_once()

    assert summary["audit_logs"]["created"] == []
    assert "permission denied" in summary["audit_logs"]["errors"][0]
    assert summary["audit_logs"]["dropped"] == 2
    assert summary["transactions"] == {
        "created": ["transactions_1", "transactions_2"],
        "dropped": 0,
        "errors": [],
    }
    # no retention configured, nothing dropped
    assert manager.dropped == [("audit_logs", timedelta(days=90))]


@pytest.mark.asyncio
async def test_drop_failure_is_reported():
    runner = MaintenanceRunner(
        FakeManager(fail_drop={"logs"}),
        [PartitionConfig("logs", retention=timedelta(days=7))],
        future_count=1,
    )

    summary = await runner.run_once()

    assert summary["logs"]["created"] == ["logs_1"]
    assert summary["logs"]["errors"] == ["failed to get partitions: connection reset"]


@pytest.mark.asyncio
async def test_start_is_idempotent_and_stop_waits_for_the_loop():
    manager = FakeManager()
    runner = MaintenanceRunner(manager, [PartitionConfig("logs")], future_count=1)

    runner.start(interval_seconds=0.01)
    task = runner._task
    runner.start(interval_seconds=0.01)
    assert runner._task is task
    assert runner.is_running()

    for _ in range(100):
        if manager.created:
            break
        await asyncio.sleep(0.01)

    await runner.stop()

    assert manager.created
    assert not runner.is_running()
    assert task.done()


@pytest.mark.asyncio
async def test_cancelling_the_task_ends_the_loop():
    runner = MaintenanceRunner(FakeManager(), [PartitionConfig("logs")], future_count=1)
    runner.start(interval_seconds=60)
    task = runner._task

    task.cancel()
    with pytest.raises(asyncio.CancelledError):
        await task

    assert not runner.is_running()
    await runner.stop()
    assert runner._task is None


@pytest.mark.asyncio
async def test_start_rejects_non_positive_interval():
    runner = MaintenanceRunner(FakeManager(), [], future_count=1)
    with pytest.raises(ValueError):
        runner.start(interval_seconds=-5)
    assert not runner.is_running()


@pytest.mark.asyncio
async def test_stop_without_start_is_a_no_op():
    await MaintenanceRunner(FakeManager(), []).stop()


def test_configs_from_settings(monkeypatch):
    from pgoptimizer.config import settings

    monkeypatch.setattr(
        settings,
        "partition_maintenance_tables",
        '[{"table_name": "audit_logs_partitioned", "partition_size": "weekly", "retention_days": 30}]',
    )

    configs = configs_from_settings()

    assert len(configs) == 1
    assert configs[0].table_name == "audit_logs_partitioned"
    assert configs[0].partition_size == PartitionSize.WEEKLY
    assert configs[0].retention == timedelta(days=30)
