#!/usr/bin/env python3
"""
Create the partitioned versions of the transactions and audit_logs tables.

Run once per database; tables that are already partitioned are left untouched.
Use --migrate to copy existing rows into the new tables (resumable).
"""
import argparse
import asyncio
import sys

from dotenv import load_dotenv

load_dotenv()


async def init_partitioning(args: argparse.Namespace) -> int:
    from pgoptimizer.deps import create_db_pool
    from pgoptimizer.partitioning import BUILTIN_TEMPLATES, PartitionManager

    names = args.tables or sorted(BUILTIN_TEMPLATES)
    unknown = [n for n in names if n not in BUILTIN_TEMPLATES]
    if unknown:
        print(f"Unknown tables: {', '.join(unknown)}. Known: {', '.join(sorted(BUILTIN_TEMPLATES))}")
        return 2

    pool = await create_db_pool(min_size=1, max_size=2)
    try:
        manager = PartitionManager(pool)
        for i, name in enumerate(names, 1):
            template = BUILTIN_TEMPLATES[name]
            print(f"[{i}/{len(names)}] {name} -> {template.target_table}")
            created = await manager.setup_partitioning(template)
            print("  ✓ Created" if created else "  - Already partitioned, skipped")
            if args.default_partition:
                await manager.create_default_partition(template.target_table)
                print("  ✓ Default partition")
            if args.migrate:
                copied = await manager.migrate_to_partitioned(
                    name,
                    template.target_table,
                    args.batch_size,
                    order_by=template.partition_column,
                    resume=not args.restart,
                )
                print(f"  ✓ Migrated {copied} rows")
    finally:
        await pool.close()

    print("\n✅ Partitioning initialization completed!")
    return 0


def main() -> None:
    parser = argparse.ArgumentParser(description="Set up partitioned tables")
    parser.add_argument("tables", nargs="*", help="Source tables to partition (default: all built-in)")
    parser.add_argument("--default-partition", action="store_true", help="Also create a DEFAULT partition")
    parser.add_argument("--migrate", action="store_true", help="Copy rows from the source tables (WRITES)")
    parser.add_argument("--batch-size", type=int, default=None, help="Rows per migration batch")
    parser.add_argument("--restart", action="store_true", help="Ignore migration checkpoints and start over")
    args = parser.parse_args()

    try:
        code = asyncio.run(init_partitioning(args))
    except KeyboardInterrupt:
        code = 130
    sys.exit(code)


if __name__ == "__main__":
    main()
