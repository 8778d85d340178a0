#!/usr/bin/env python3
"""
Partition maintenance for the tables in PARTITION_MAINTENANCE_TABLES.

By default runs a single pass (cron friendly). With --loop keeps running until
interrupted. Only one maintenance process should run per database.
"""
import argparse
import asyncio
import json
import sys

from dotenv import load_dotenv

load_dotenv()


async def _main_async(args: argparse.Namespace) -> int:
    from pgoptimizer.config import settings
    from pgoptimizer.deps import create_db_pool
    from pgoptimizer.partitioning import MaintenanceRunner, PartitionManager, configs_from_settings
    from pgoptimizer.sanity_checks import run_startup_sanity_checks_or_raise

    configs = configs_from_settings()
    if not configs:
        print("[FAIL] PARTITION_MAINTENANCE_TABLES is empty; nothing to maintain.")
        return 2

    pool = await create_db_pool(min_size=1, max_size=2)
    try:
        if not args.skip_sanity:
            try:
                await run_startup_sanity_checks_or_raise(pool)
            except RuntimeError as exc:
                print(f"[FAIL] {exc}")
                return 1

        runner = MaintenanceRunner(PartitionManager(pool), configs, future_count=args.future_count)
        if not args.loop:
            summary = await runner.run_once()
            print(json.dumps(summary, indent=2, default=str))
            return 1 if any(r["errors"] for r in summary.values()) else 0

        interval = args.interval or settings.partition_maintenance_interval_seconds
        await runner.run_once()
        runner.start(interval)
        print(f"[OK] Maintenance loop running every {interval}s. Ctrl+C to stop.")
        try:
            while runner.is_running():
                await asyncio.sleep(1)
        finally:
            await runner.stop()
    finally:
        await pool.close()
    return 0


def main() -> None:
    parser = argparse.ArgumentParser(description="Create future partitions and drop expired ones")
    parser.add_argument("--loop", action="store_true", help="Keep running at a fixed interval")
    parser.add_argument("--interval", type=float, default=None, help="Seconds between passes with --loop")
    parser.add_argument("--future-count", type=int, default=None, help="Partitions to pre-create ahead of now")
    parser.add_argument("--skip-sanity", action="store_true", help="Skip startup sanity checks")
    args = parser.parse_args()

    try:
        code = asyncio.run(_main_async(args))
    except KeyboardInterrupt:
        code = 130
    sys.exit(code)


if __name__ == "__main__":
    main()
