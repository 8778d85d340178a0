"""
Bounded in-memory log of slow queries.

Logging never waits on the consumer: the optional callback is handed off to the
event loop (coroutine functions become tasks, plain callables run in the default
executor) or, outside of a loop, to a daemon thread.
"""

from __future__ import annotations

import asyncio
import inspect
import threading
import traceback
from collections import deque
from typing import Any, Callable, Deque, List, Optional

from pgoptimizer.analysis.type import SlowQuery
from pgoptimizer.smart_logger import SmartLogger
from pgoptimizer.utils.log_sanitize import sanitize_for_log, truncate_query

SlowQueryCallback = Callable[[SlowQuery], Any]


class SlowQueryLogger:
    def __init__(
        self,
        threshold_ms: float = 100.0,
        max_entries: int = 1000,
        callback: Optional[SlowQueryCallback] = None,
    ):
        if max_entries <= 0:
            raise ValueError("max_entries must be positive")
        self._threshold_ms = float(threshold_ms)
        self._max_entries = int(max_entries)
        self._callback = callback
        self._queries: Deque[SlowQuery] = deque()
        self._lock = threading.Lock()
        self._pending: set = set()

    @property
    def threshold_ms(self) -> float:
        return self._threshold_ms

    @property
    def max_entries(self) -> int:
        return self._max_entries

    def log(self, entry: SlowQuery) -> bool:
        """Record ``entry`` if it crosses the threshold. Returns True when recorded."""
        if entry.duration_ms < self._threshold_ms:
            return False

        with self._lock:
            self._queries.append(entry)
            while len(self._queries) > self._max_entries:
                self._queries.popleft()

        SmartLogger.log(
            "WARNING",
            "query.slow.detected",
            category="query.slow",
            params=sanitize_for_log(
                {
                    "query": truncate_query(entry.query, 200),
                    "duration_ms": round(entry.duration_ms, 2),
                    "rows": entry.rows_affected,
                    "caller": entry.caller_info,
                }
            ),
            max_inline_chars=0,
        )

        if self._callback is not None:
            self._dispatch(entry)
        return True

    def get_queries(self) -> List[SlowQuery]:
        with self._lock:
            return list(self._queries)

    def clear(self) -> None:
        with self._lock:
            self._queries.clear()

    def __len__(self) -> int:
        with self._lock:
            return len(self._queries)

    def _dispatch(self, entry: SlowQuery) -> None:
        callback = self._callback
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            loop = None

        if loop is None:
            threading.Thread(
                target=self._run_callback_sync,
                args=(entry,),
                name="slow_query_callback",
                daemon=True,
            ).start()
            return

        if inspect.iscoroutinefunction(callback):
            task = loop.create_task(self._run_callback_async(entry), name="slow_query_callback")
        else:
            task = loop.run_in_executor(None, self._run_callback_sync, entry)
        # Keep a reference until done so the task is not garbage collected.
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)

    def _run_callback_sync(self, entry: SlowQuery) -> None:
        try:
            result = self._callback(entry)
            if inspect.isawaitable(result):
                asyncio.run(_await(result))
        except Exception as exc:
            self._log_callback_error(exc)

    async def _run_callback_async(self, entry: SlowQuery) -> None:
        try:
            await self._callback(entry)
        except Exception as exc:
            self._log_callback_error(exc)

    @staticmethod
    def _log_callback_error(exc: Exception) -> None:
        SmartLogger.log(
            "ERROR",
            "query.slow.callback_error",
            category="query.slow",
            params={"exception": repr(exc), "traceback": traceback.format_exc()},
            max_inline_chars=0,
        )


async def _await(awaitable: Any) -> Any:
    return await awaitable
