"""
Startup sanity checks (fail-fast).

Lightweight runtime checks run before serving traffic or starting partition
maintenance: PostgreSQL reachability, pg_stat_statements availability and the
tables configured for partition maintenance.
"""

from pgoptimizer.sanity_checks.result import SanityCheckResult
from pgoptimizer.sanity_checks.runner import run_startup_sanity_checks_or_raise

__all__ = ["SanityCheckResult", "run_startup_sanity_checks_or_raise"]
