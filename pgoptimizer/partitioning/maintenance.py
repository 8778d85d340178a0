"""
Background partition maintenance.

Run a single MaintenanceRunner per deployment: partition DDL is idempotent but
concurrent runners would race on the same tables.
"""

from __future__ import annotations

import asyncio
import traceback
from typing import Any, Dict, List, Optional, Sequence

from pgoptimizer.config import settings
from pgoptimizer.partitioning.manager import PartitionManager
from pgoptimizer.partitioning.type import PartitionConfig
from pgoptimizer.smart_logger import SmartLogger


def configs_from_settings() -> List[PartitionConfig]:
    """PartitionConfig list from ``PARTITION_MAINTENANCE_TABLES``."""
    return [PartitionConfig.from_dict(item) for item in settings.maintenance_tables()]


class MaintenanceRunner:
    def __init__(
        self,
        manager: PartitionManager,
        configs: Sequence[PartitionConfig],
        *,
        future_count: Optional[int] = None,
    ):
        self.manager = manager
        self.configs = list(configs)
        self.future_count = settings.partition_future_count if future_count is None else int(future_count)
        self._task: Optional[asyncio.Task] = None
        self._stop_event: Optional[asyncio.Event] = None

    def is_running(self) -> bool:
        return self._task is not None and not self._task.done()

    async def run_once(self) -> Dict[str, Dict[str, Any]]:
        """
        One maintenance pass over every configured table.

        Each table is handled independently; failures are logged and reported in the
        returned per-table summary.
        """
        summary: Dict[str, Dict[str, Any]] = {}
        for config in self.configs:
            result: Dict[str, Any] = {"created": [], "dropped": 0, "errors": []}
            summary[config.table_name] = result

            try:
                result["created"] = await self.manager.create_future_partitions(
                    config.table_name, config.partition_size, self.future_count
                )
            except Exception as exc:
                result["errors"].append(str(exc))
                SmartLogger.log(
                    "ERROR",
                    "partition.maintenance.create_error",
                    category="partition.maintenance",
                    params={"table": config.table_name, "error": str(exc)},
                    max_inline_chars=0,
                )

            if config.retention and config.retention.total_seconds() > 0:
                try:
                    result["dropped"] = await self.manager.drop_old_partitions(config.table_name, config.retention)
                except Exception as exc:
                    result["errors"].append(str(exc))
                    SmartLogger.log(
                        "ERROR",
                        "partition.maintenance.drop_error",
                        category="partition.maintenance",
                        params={"table": config.table_name, "error": str(exc)},
                        max_inline_chars=0,
                    )
                else:
                    if result["dropped"] > 0:
                        SmartLogger.log(
                            "INFO",
                            "partition.maintenance.dropped",
                            category="partition.maintenance",
                            params={"table": config.table_name, "dropped": result["dropped"]},
                            max_inline_chars=0,
                        )
        return summary

    async def _loop(self, interval_seconds: float, stop_event: asyncio.Event) -> None:
        while not stop_event.is_set():
            try:
                await asyncio.wait_for(stop_event.wait(), timeout=interval_seconds)
                return
            except asyncio.TimeoutError:
                pass
            try:
                await self.run_once()
            except asyncio.CancelledError:
                raise
            except Exception as exc:
                SmartLogger.log(
                    "ERROR",
                    "partition.maintenance.error",
                    category="partition.maintenance",
                    params={"error": str(exc), "traceback": traceback.format_exc()},
                    max_inline_chars=0,
                )

    def start(self, interval_seconds: Optional[float] = None) -> None:
        """
        Start the maintenance loop on the running event loop (idempotent).

        The first pass runs one interval after start; call ``run_once`` for an
        immediate pass.
        """
        if self.is_running():
            return
        interval = float(interval_seconds or settings.partition_maintenance_interval_seconds)
        if interval <= 0:
            raise ValueError("interval_seconds must be > 0")
        self._stop_event = asyncio.Event()
        self._task = asyncio.create_task(
            self._loop(interval, self._stop_event), name="partition_maintenance"
        )
        SmartLogger.log(
            "INFO",
            "partition.maintenance.started",
            category="partition.maintenance",
            params={"interval_seconds": interval, "tables": [c.table_name for c in self.configs]},
            max_inline_chars=0,
        )

    async def stop(self) -> None:
        """Signal the loop and wait for it to finish the current pass."""
        task = self._task
        if task is None:
            return
        if self._stop_event is not None:
            self._stop_event.set()
        try:
            await task
        except asyncio.CancelledError:
            pass
        self._task = None
        self._stop_event = None
        SmartLogger.log(
            "INFO",
            "partition.maintenance.stopped",
            category="partition.maintenance",
            params=None,
            max_inline_chars=0,
        )
