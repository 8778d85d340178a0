from dataclasses import asdict, dataclass, field
from datetime import datetime, timedelta
from enum import Enum
from typing import Any, Dict, List, Optional


class PartitionType(str, Enum):
    # Only RANGE is created by PartitionManager.
    RANGE = "RANGE"
    LIST = "LIST"
    HASH = "HASH"


class PartitionSize(str, Enum):
    DAILY = "daily"
    WEEKLY = "weekly"
    MONTHLY = "monthly"
    YEARLY = "yearly"


@dataclass
class PartitionConfig:
    """A table kept under partition maintenance.

    ``retention`` of zero (or None) keeps partitions forever.
    """

    table_name: str
    partition_column: str = "created_at"
    partition_type: PartitionType = PartitionType.RANGE
    partition_size: PartitionSize = PartitionSize.MONTHLY
    retention: Optional[timedelta] = None

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "PartitionConfig":
        retention_days = data.get("retention_days")
        return cls(
            table_name=str(data["table_name"]),
            partition_column=str(data.get("partition_column") or "created_at"),
            partition_type=PartitionType(str(data.get("partition_type") or "RANGE").upper()),
            partition_size=PartitionSize(str(data.get("partition_size") or "monthly").lower()),
            retention=timedelta(days=float(retention_days)) if retention_days else None,
        )


@dataclass
class PartitionInfo:
    """One child partition; bounds are None when not a plain FROM/TO date range."""

    parent_table: str
    partition_name: str
    range_start: Optional[datetime] = None
    range_end: Optional[datetime] = None
    row_count: int = 0
    size_bytes: int = 0
    size_pretty: str = ""
    bound_expression: str = ""
    is_default: bool = False
    schema_name: str = ""

    @property
    def qualified_name(self) -> str:
        if self.schema_name:
            return f"{self.schema_name}.{self.partition_name}"
        return self.partition_name

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        for key in ("range_start", "range_end"):
            if data[key] is not None:
                data[key] = data[key].isoformat()
        return data


@dataclass
class PartitionStats:
    table_name: str
    partition_count: int = 0
    total_rows: int = 0
    total_size_bytes: int = 0
    partitions: List[PartitionInfo] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "table_name": self.table_name,
            "partition_count": self.partition_count,
            "total_rows": self.total_rows,
            "total_size_bytes": self.total_size_bytes,
            "partitions": [p.to_dict() for p in self.partitions],
        }


@dataclass
class PartitionedTableTemplate:
    """DDL and initial window for creating ``<source>_partitioned``."""

    source_table: str
    partition_column: str
    create_sql: str
    index_sql: List[str] = field(default_factory=list)
    months_back: int = 3
    months_ahead: int = 3

    @property
    def target_table(self) -> str:
        return f"{self.source_table}_partitioned"
