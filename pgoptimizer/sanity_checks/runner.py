from __future__ import annotations

import traceback
from typing import Any, List

from pgoptimizer.smart_logger import SmartLogger
from pgoptimizer.sanity_checks.result import SanityCheckResult
from pgoptimizer.sanity_checks.checks.check_db import (
    check_maintenance_tables,
    check_pg_stat_statements,
    check_target_db,
)


async def run_startup_sanity_checks_or_raise(db: Any) -> List[SanityCheckResult]:
    """
    Run startup sanity checks (fail-fast).

    Raises:
        RuntimeError: if any required check fails.
    """
    checks = [
        check_target_db(db),
        check_pg_stat_statements(db),
        check_maintenance_tables(db),
    ]

    results: List[SanityCheckResult] = []
    for coro in checks:
        try:
            results.append(await coro)
        except Exception as exc:
            # A check should return a failed result rather than raise.
            results.append(
                SanityCheckResult(
                    name="sanity_check_internal_error",
                    ok=False,
                    detail="A sanity check raised unexpectedly",
                    data=None,
                    error=repr(exc) + "\n" + traceback.format_exc(),
                )
            )

    failed = [r for r in results if not r.ok]

    for r in results:
        SmartLogger.log(
            r.log_level,
            f"startup.sanity.{r.name}." + ("ok" if r.ok else "fail"),
            category="startup.sanity",
            params=r.to_log_params(),
            max_inline_chars=0,
        )

    if failed:
        SmartLogger.log(
            "CRITICAL",
            "startup.sanity.failed",
            category="startup.sanity",
            params={"failed": [f.name for f in failed]},
            max_inline_chars=0,
        )
        raise RuntimeError("Startup sanity checks failed. See logs for details.")

    SmartLogger.log("INFO", "startup.sanity.passed", category="startup.sanity", params=None, max_inline_chars=0)
    return results
