"""SQL execution with contextual errors and optional timeout"""
import asyncio
import re
from typing import Any, List, Optional

import asyncpg

from pgoptimizer.config import settings


class SQLExecutionError(Exception):
    """Raised when a statement fails; the message names the operation and the cause."""

    def __init__(self, message: str, *, operation: str = "", sqlstate: Optional[str] = None):
        super().__init__(message)
        self.operation = operation
        self.sqlstate = sqlstate


_COMMAND_STATUS_RE = re.compile(r"^\s*[A-Z ]+?\s+(?:\d+\s+)?(\d+)\s*$")


def parse_command_status(status: Any) -> int:
    """
    Extract the affected row count from an asyncpg command status.

    "INSERT 0 5" -> 5, "UPDATE 3" -> 3, "DELETE 0" -> 0, anything else -> 0.
    """
    if not isinstance(status, str):
        return 0
    match = _COMMAND_STATUS_RE.match(status)
    if not match:
        return 0
    return int(match.group(1))


class SQLExecutor:
    """Run statements against a pool or connection and wrap driver failures"""

    def __init__(self, timeout: Optional[float] = None):
        self.timeout = timeout if timeout is not None else settings.sql_timeout_seconds

    async def _run(self, operation: str, coro, timeout: Optional[float]):
        effective_timeout = timeout if timeout is not None else self.timeout
        try:
            if effective_timeout:
                return await asyncio.wait_for(coro, timeout=effective_timeout)
            return await coro
        except asyncio.TimeoutError as exc:
            raise SQLExecutionError(
                f"{operation} timed out after {effective_timeout} seconds",
                operation=operation,
            ) from exc
        except asyncpg.PostgresError as exc:
            raise SQLExecutionError(
                f"{operation} failed: {exc}",
                operation=operation,
                sqlstate=getattr(exc, "sqlstate", None),
            ) from exc
        except SQLExecutionError:
            raise
        except Exception as exc:
            raise SQLExecutionError(f"{operation} failed: {exc}", operation=operation) from exc

    async def fetch(self, db: Any, sql: str, *args: Any, operation: str, timeout: Optional[float] = None) -> List[Any]:
        return await self._run(operation, db.fetch(sql, *args), timeout)

    async def fetchrow(self, db: Any, sql: str, *args: Any, operation: str, timeout: Optional[float] = None) -> Any:
        return await self._run(operation, db.fetchrow(sql, *args), timeout)

    async def fetchval(self, db: Any, sql: str, *args: Any, operation: str, timeout: Optional[float] = None) -> Any:
        return await self._run(operation, db.fetchval(sql, *args), timeout)

    async def execute(self, db: Any, sql: str, *args: Any, operation: str, timeout: Optional[float] = None) -> str:
        """Run DDL/DML and return the command status string."""
        return await self._run(operation, db.execute(sql, *args), timeout)
