"""Range partition lifecycle, migration and background maintenance."""

from pgoptimizer.partitioning.checkpoint import MigrationCheckpoint, MigrationCheckpointStore
from pgoptimizer.partitioning.maintenance import MaintenanceRunner, configs_from_settings
from pgoptimizer.partitioning.manager import PartitionError, PartitionManager
from pgoptimizer.partitioning.pruning import PartitionPruningHelper
from pgoptimizer.partitioning.templates import AUDIT_LOGS_TEMPLATE, BUILTIN_TEMPLATES, TRANSACTIONS_TEMPLATE
from pgoptimizer.partitioning.type import (
    PartitionConfig,
    PartitionedTableTemplate,
    PartitionInfo,
    PartitionSize,
    PartitionStats,
    PartitionType,
)

__all__ = [
    "MigrationCheckpoint",
    "MigrationCheckpointStore",
    "MaintenanceRunner",
    "configs_from_settings",
    "PartitionError",
    "PartitionManager",
    "PartitionPruningHelper",
    "AUDIT_LOGS_TEMPLATE",
    "BUILTIN_TEMPLATES",
    "TRANSACTIONS_TEMPLATE",
    "PartitionConfig",
    "PartitionedTableTemplate",
    "PartitionInfo",
    "PartitionSize",
    "PartitionStats",
    "PartitionType",
]
