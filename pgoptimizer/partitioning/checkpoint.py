"""Persistent progress of unpartitioned -> partitioned data migrations."""

from dataclasses import dataclass
from datetime import datetime
from typing import Any, Optional

from pgoptimizer.core.sql_exec import SQLExecutor

CHECKPOINT_TABLE = "partition_migration_checkpoints"

_CREATE_SQL = f"""
CREATE TABLE IF NOT EXISTS {CHECKPOINT_TABLE} (
    source_table TEXT NOT NULL,
    target_table TEXT NOT NULL,
    migrated_offset BIGINT NOT NULL DEFAULT 0,
    migrated_rows BIGINT NOT NULL DEFAULT 0,
    total_rows BIGINT NOT NULL DEFAULT 0,
    completed BOOLEAN NOT NULL DEFAULT FALSE,
    updated_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
    PRIMARY KEY (source_table, target_table)
)
"""

_LOAD_SQL = f"""
SELECT source_table, target_table, migrated_offset, migrated_rows, total_rows, completed, updated_at
FROM {CHECKPOINT_TABLE}
WHERE source_table = $1 AND target_table = $2
"""

_SAVE_SQL = f"""
INSERT INTO {CHECKPOINT_TABLE}
    (source_table, target_table, migrated_offset, migrated_rows, total_rows, completed, updated_at)
VALUES ($1, $2, $3, $4, $5, $6, NOW())
ON CONFLICT (source_table, target_table) DO UPDATE SET
    migrated_offset = EXCLUDED.migrated_offset,
    migrated_rows = EXCLUDED.migrated_rows,
    total_rows = EXCLUDED.total_rows,
    completed = EXCLUDED.completed,
    updated_at = EXCLUDED.updated_at
"""

_DELETE_SQL = f"DELETE FROM {CHECKPOINT_TABLE} WHERE source_table = $1 AND target_table = $2"


@dataclass
class MigrationCheckpoint:
    source_table: str
    target_table: str
    migrated_offset: int = 0
    migrated_rows: int = 0
    total_rows: int = 0
    completed: bool = False
    updated_at: Optional[datetime] = None

    @property
    def progress_percent(self) -> float:
        if self.total_rows <= 0:
            return 100.0 if self.completed else 0.0
        return min(100.0, self.migrated_rows / self.total_rows * 100)


class MigrationCheckpointStore:
    """
    Reads and writes checkpoint rows on a caller-provided connection, so a save can
    share the transaction of the batch it describes.
    """

    def __init__(self, executor: Optional[SQLExecutor] = None):
        self._executor = executor or SQLExecutor()

    async def ensure_table(self, conn: Any) -> None:
        await self._executor.execute(conn, _CREATE_SQL, operation="create migration checkpoint table")

    async def load(self, conn: Any, source_table: str, target_table: str) -> Optional[MigrationCheckpoint]:
        row = await self._executor.fetchrow(
            conn, _LOAD_SQL, source_table, target_table, operation="load migration checkpoint"
        )
        if row is None:
            return None
        return MigrationCheckpoint(
            source_table=row["source_table"],
            target_table=row["target_table"],
            migrated_offset=int(row["migrated_offset"] or 0),
            migrated_rows=int(row["migrated_rows"] or 0),
            total_rows=int(row["total_rows"] or 0),
            completed=bool(row["completed"]),
            updated_at=row["updated_at"],
        )

    async def save(self, conn: Any, checkpoint: MigrationCheckpoint) -> None:
        await self._executor.execute(
            conn,
            _SAVE_SQL,
            checkpoint.source_table,
            checkpoint.target_table,
            checkpoint.migrated_offset,
            checkpoint.migrated_rows,
            checkpoint.total_rows,
            checkpoint.completed,
            operation="save migration checkpoint",
        )

    async def reset(self, conn: Any, source_table: str, target_table: str) -> None:
        await self._executor.execute(
            conn, _DELETE_SQL, source_table, target_table, operation="reset migration checkpoint"
        )
