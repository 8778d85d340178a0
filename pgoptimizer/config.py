"""Application configuration"""
import json
from typing import Any, Dict, List, Optional

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Application settings from environment variables"""

    # Target Database (PostgreSQL only)
    db_host: str = "localhost"
    db_port: int = 5432
    db_name: str = "festivals"
    db_user: str = "postgres"
    db_password: str = ""
    db_ssl: str = "disable"
    db_schemas: str = "public"
    db_pool_min_size: int = 1
    db_pool_max_size: int = 10

    # Client-side statement timeout. None leaves deadlines to the caller.
    sql_timeout_seconds: Optional[float] = None

    # Query analysis
    slow_query_threshold_ms: float = 100.0
    slow_query_max_entries: int = 1000
    query_sampling_rate: float = 1.0
    index_scan_interval_seconds: int = 3600
    unused_index_name_suffixes: str = "_pkey,_unique"

    # Transactions
    transaction_max_retries: int = 3
    transaction_base_backoff_ms: float = 10.0

    # Partitioning
    partition_maintenance_interval_seconds: int = 3600
    partition_future_count: int = 3
    # JSON list: [{"table_name": "...", "partition_column": "...", "partition_size": "monthly", "retention_days": 365}]
    partition_maintenance_tables: str = "[]"
    migration_batch_size: int = 10000

    # Logging
    log_level: str = "INFO"

    class Config:
        env_file = ".env"
        case_sensitive = False

    def unused_index_suffixes(self) -> List[str]:
        return [s.strip() for s in (self.unused_index_name_suffixes or "").split(",") if s.strip()]

    def maintenance_tables(self) -> List[Dict[str, Any]]:
        raw = (self.partition_maintenance_tables or "").strip()
        if not raw:
            return []
        parsed = json.loads(raw)
        if not isinstance(parsed, list):
            raise ValueError("partition_maintenance_tables must be a JSON list")
        return [item for item in parsed if isinstance(item, dict)]


settings = Settings()
