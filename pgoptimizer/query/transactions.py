"""
Retryable transactions and per-transaction session tuning.

Retry policy: a unit of work is attempted at most ``max_retries + 1`` times. After a
retryable failure on attempt ``n`` (zero-based) the caller sleeps
``base_backoff_ms * 2**n``. With the default 10 ms base the worst-case added
latency is ``10ms * (2**max_retries - 1)``, e.g. 70 ms for 3 retries.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Dict, Optional, TypeVar

from pgoptimizer.config import settings
from pgoptimizer.core.sql_identifiers import (
    SQLIdentifierError,
    quote_literal,
    validate_setting_name,
)
from pgoptimizer.deps import acquire
from pgoptimizer.smart_logger import SmartLogger

T = TypeVar("T")

RETRYABLE_SQLSTATES = frozenset({"40001", "40P01"})


class TransactionRetryExhaustedError(Exception):
    """Raised when a retryable failure persists after every retry"""

    def __init__(self, message: str, *, attempts: int):
        super().__init__(message)
        self.attempts = attempts


def is_retryable_error(exc: Optional[BaseException]) -> bool:
    """Deadlocks and serialization failures are transient and safe to retry."""
    if exc is None:
        return False
    if getattr(exc, "sqlstate", None) in RETRYABLE_SQLSTATES:
        return True
    message = str(exc)
    return "deadlock" in message or "40001" in message or "40P01" in message


def backoff_delay_ms(attempt: int, base_backoff_ms: float = 10.0) -> float:
    return base_backoff_ms * (2 ** attempt)


def max_total_backoff_ms(max_retries: int, base_backoff_ms: float = 10.0) -> float:
    return sum(backoff_delay_ms(i, base_backoff_ms) for i in range(max(0, max_retries)))


class TransactionOptimizer:
    def __init__(
        self,
        db: Any,
        *,
        base_backoff_ms: Optional[float] = None,
        isolation: Optional[str] = None,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ):
        """
        Args:
            db: asyncpg pool or connection.
            base_backoff_ms: first backoff step, defaults to settings (10 ms).
            isolation: asyncpg isolation level ("serializable", "repeatable_read", ...).
            sleep: awaitable sleep taking seconds, injectable for tests.
        """
        self.db = db
        self.base_backoff_ms = (
            float(base_backoff_ms) if base_backoff_ms is not None else settings.transaction_base_backoff_ms
        )
        self.isolation = isolation
        self._sleep = sleep

    async def _run_once(self, fn: Callable[[Any], Awaitable[T]]) -> T:
        async with acquire(self.db) as conn:
            if self.isolation:
                transaction = conn.transaction(isolation=self.isolation)
            else:
                transaction = conn.transaction()
            async with transaction:
                return await fn(conn)

    async def execute_with_retry(
        self,
        fn: Callable[[Any], Awaitable[T]],
        max_retries: Optional[int] = None,
    ) -> T:
        """
        Run ``fn(conn)`` in a transaction, retrying deadlocks and serialization failures.

        Non-retryable errors propagate unchanged on the first failure.

        Raises:
            TransactionRetryExhaustedError: the last attempt still failed with a retryable error.
        """
        retries = settings.transaction_max_retries if max_retries is None else max(0, int(max_retries))
        attempt = 0
        while True:
            try:
                return await self._run_once(fn)
            except Exception as exc:
                if not is_retryable_error(exc):
                    raise
                if attempt >= retries:
                    raise TransactionRetryExhaustedError(
                        f"transaction failed after {retries} retries: {exc}",
                        attempts=attempt + 1,
                    ) from exc

                delay_ms = backoff_delay_ms(attempt, self.base_backoff_ms)
                SmartLogger.log(
                    "WARNING",
                    "transaction.retry",
                    category="transaction.retry",
                    params={
                        "error": str(exc),
                        "attempt": attempt + 1,
                        "max_retries": retries,
                        "backoff_ms": delay_ms,
                    },
                    max_inline_chars=0,
                )
                await self._sleep(delay_ms / 1000.0)
                attempt += 1


@dataclass
class QueryOptions:
    """Session settings applied with SET LOCAL for one transaction."""

    timeout_ms: int = 30000
    force_index_scan: bool = False
    disable_seq_scan: bool = False
    work_mem: str = ""
    enable_parallel: bool = False
    max_parallel_workers: int = 0

    def to_settings(self) -> Dict[str, str]:
        values: Dict[str, str] = {}
        if self.timeout_ms > 0:
            values["statement_timeout"] = f"{int(self.timeout_ms)}ms"
        if self.force_index_scan or self.disable_seq_scan:
            values["enable_seqscan"] = "off"
        if self.work_mem:
            values["work_mem"] = self.work_mem
        if self.enable_parallel and self.max_parallel_workers > 0:
            values["max_parallel_workers_per_gather"] = str(int(self.max_parallel_workers))
        return values


def build_set_local(name: str, value: Any) -> str:
    setting = validate_setting_name(name)
    text = str(value)
    if "\x00" in text:
        raise SQLIdentifierError(f"Invalid value for {setting}")
    return f"SET LOCAL {setting} = {quote_literal(text)}"


async def optimize_query_with_hints(conn: Any, hints: Dict[str, Any]) -> None:
    """Apply planner settings for the current transaction (``SET LOCAL``)."""
    for name, value in hints.items():
        await conn.execute(build_set_local(name, value))


async def with_query_timeout(conn: Any, timeout_ms: int) -> None:
    """Bound every statement of the current transaction to ``timeout_ms``."""
    await conn.execute(build_set_local("statement_timeout", f"{int(timeout_ms)}ms"))


async def apply_query_options(conn: Any, options: QueryOptions) -> None:
    await optimize_query_with_hints(conn, options.to_settings())
