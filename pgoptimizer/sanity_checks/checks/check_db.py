from __future__ import annotations

import asyncio
import traceback
from typing import Any

from pgoptimizer.config import settings
from pgoptimizer.deps import acquire
from pgoptimizer.sanity_checks.result import SanityCheckResult


def _schemas() -> list[str]:
    schemas = [s.strip() for s in (settings.db_schemas or "").split(",") if s.strip()]
    return schemas or ["public"]


def _target() -> dict[str, Any]:
    return {
        "host": f"{settings.db_host}:{settings.db_port}",
        "database": settings.db_name,
        "schemas": _schemas(),
    }


async def check_target_db(db: Any, *, timeout_seconds: float = 10.0) -> SanityCheckResult:
    """
    PostgreSQL connection + basic metadata queries.

    Fails when the server is unreachable or a configured schema is missing.
    """
    name = "target_db"
    schemas = _schemas()

    async def _run() -> dict[str, Any]:
        async with acquire(db) as conn:
            version = await conn.fetchval("SELECT version()")
            current_db = await conn.fetchval("SELECT current_database()")
            search_path = await conn.fetchval("SHOW search_path")

            rows = await conn.fetch(
                "SELECT schema_name FROM information_schema.schemata WHERE schema_name = ANY($1::text[])",
                schemas,
            )
            existing = {r["schema_name"] for r in rows}
            missing = sorted(set(schemas) - existing)
            if missing:
                raise RuntimeError(f"Missing schemas in target DB: {missing}")

            return {
                **_target(),
                "current_db": current_db,
                "search_path": search_path,
                "version": (version.split(",")[0] if isinstance(version, str) else str(version)),
            }

    try:
        data = await asyncio.wait_for(_run(), timeout=timeout_seconds)
        return SanityCheckResult(name=name, ok=True, detail="OK", data=data)
    except Exception as exc:
        return SanityCheckResult(
            name=name,
            ok=False,
            detail="Target DB sanity check failed",
            data=_target(),
            error=repr(exc) + "\n" + traceback.format_exc(),
        )


async def check_pg_stat_statements(db: Any, *, timeout_seconds: float = 10.0) -> SanityCheckResult:
    """
    Report whether pg_stat_statements is installed.

    Never fails startup: only the slow/frequent query reports depend on it.
    """
    name = "pg_stat_statements"

    async def _run() -> bool:
        async with acquire(db) as conn:
            installed = await conn.fetchval(
                "SELECT EXISTS (SELECT 1 FROM pg_extension WHERE extname = 'pg_stat_statements')"
            )
            return bool(installed)

    try:
        installed = await asyncio.wait_for(_run(), timeout=timeout_seconds)
    except Exception as exc:
        return SanityCheckResult(
            name=name,
            ok=True,
            detail="Could not determine whether pg_stat_statements is installed",
            data={"installed": None},
            error=repr(exc),
            warning=True,
        )
    detail = "OK" if installed else "pg_stat_statements is not installed; query statistics reports are unavailable"
    return SanityCheckResult(
        name=name, ok=True, detail=detail, data={"installed": installed}, warning=not installed
    )


async def check_maintenance_tables(db: Any, *, timeout_seconds: float = 10.0) -> SanityCheckResult:
    """Every table under partition maintenance exists and is partitioned."""
    name = "partition_maintenance_tables"
    try:
        tables = [str(item.get("table_name") or "") for item in settings.maintenance_tables()]
    except ValueError as exc:
        return SanityCheckResult(
            name=name,
            ok=False,
            detail="PARTITION_MAINTENANCE_TABLES is not a valid JSON list",
            data=None,
            error=repr(exc),
        )
    if not tables:
        return SanityCheckResult(name=name, ok=True, detail="No tables configured", data={"tables": []})

    async def _run() -> dict[str, Any]:
        async with acquire(db) as conn:
            rows = await conn.fetch(
                """
                SELECT t.name, c.relkind::text AS relkind
                FROM unnest($1::text[]) AS t(name)
                LEFT JOIN pg_class c ON c.oid = to_regclass(t.name)
                """,
                tables,
            )
            missing = sorted(r["name"] for r in rows if r["relkind"] is None)
            not_partitioned = sorted(r["name"] for r in rows if r["relkind"] not in (None, "p"))
            if missing or not_partitioned:
                raise RuntimeError(
                    f"Maintenance tables missing: {missing}; not partitioned: {not_partitioned}"
                )
            return {"tables": tables}

    try:
        data = await asyncio.wait_for(_run(), timeout=timeout_seconds)
        return SanityCheckResult(name=name, ok=True, detail="OK", data=data)
    except Exception as exc:
        return SanityCheckResult(
            name=name,
            ok=False,
            detail="Partition maintenance table check failed",
            data={"tables": tables},
            error=repr(exc) + "\n" + traceback.format_exc(),
        )
