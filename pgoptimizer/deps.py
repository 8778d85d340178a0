"""Database connection helpers"""
from contextlib import asynccontextmanager
from typing import Any, AsyncIterator

import asyncpg

from pgoptimizer.config import settings


def _search_path() -> str:
    schemas = (settings.db_schemas or "").split(",")
    return ", ".join(s.strip() for s in schemas if s.strip())


async def create_db_pool(*, min_size: int = None, max_size: int = None) -> asyncpg.Pool:
    """Create the shared asyncpg pool for the configured PostgreSQL database."""
    # SSL mode: 'disable' -> ssl=False, other values passed as ssl parameter
    ssl_mode = settings.db_ssl if settings.db_ssl != "disable" else False
    schemas_str = _search_path()

    async def _init(conn: asyncpg.Connection) -> None:
        if schemas_str:
            await conn.execute(f"SET search_path TO {schemas_str}")

    return await asyncpg.create_pool(
        host=settings.db_host,
        port=settings.db_port,
        database=settings.db_name,
        user=settings.db_user,
        password=settings.db_password,
        ssl=ssl_mode,
        min_size=max(0, int(min_size if min_size is not None else settings.db_pool_min_size)),
        max_size=max(1, int(max_size if max_size is not None else settings.db_pool_max_size)),
        init=_init,
    )


@asynccontextmanager
async def acquire(db: Any) -> AsyncIterator[Any]:
    """
    Yield a connection from ``db``.

    ``db`` is either an ``asyncpg.Pool`` (a connection is checked out for the
    duration of the block) or a connection, which is passed through untouched.
    """
    if hasattr(db, "acquire"):
        async with db.acquire() as conn:
            yield conn
    else:
        yield db
