"""Built-in partitioned table layouts."""

from pgoptimizer.partitioning.type import PartitionedTableTemplate

TRANSACTIONS_TEMPLATE = PartitionedTableTemplate(
    source_table="transactions",
    partition_column="created_at",
    create_sql="""
CREATE TABLE IF NOT EXISTS transactions_partitioned (
    id UUID NOT NULL DEFAULT gen_random_uuid(),
    wallet_id UUID NOT NULL,
    type VARCHAR(20) NOT NULL,
    amount BIGINT NOT NULL,
    balance_before BIGINT NOT NULL,
    balance_after BIGINT NOT NULL,
    reference VARCHAR(255),
    stand_id UUID,
    staff_id UUID,
    metadata JSONB DEFAULT '{}',
    status VARCHAR(20) DEFAULT 'COMPLETED',
    created_at TIMESTAMP WITH TIME ZONE DEFAULT NOW() NOT NULL,
    PRIMARY KEY (id, created_at)
) PARTITION BY RANGE (created_at)
""",
    index_sql=[
        "CREATE INDEX IF NOT EXISTS idx_transactions_part_wallet_created"
        " ON transactions_partitioned (wallet_id, created_at DESC)",
        "CREATE INDEX IF NOT EXISTS idx_transactions_part_stand_created"
        " ON transactions_partitioned (stand_id, created_at DESC) WHERE stand_id IS NOT NULL",
        "CREATE INDEX IF NOT EXISTS idx_transactions_part_status"
        " ON transactions_partitioned (status, created_at DESC)",
    ],
    months_back=6,
    months_ahead=6,
)

AUDIT_LOGS_TEMPLATE = PartitionedTableTemplate(
    source_table="audit_logs",
    partition_column="timestamp",
    create_sql="""
CREATE TABLE IF NOT EXISTS audit_logs_partitioned (
    id UUID NOT NULL DEFAULT gen_random_uuid(),
    user_id UUID,
    action VARCHAR(50) NOT NULL,
    resource VARCHAR(100) NOT NULL,
    resource_id VARCHAR(100),
    changes JSONB,
    ip VARCHAR(45),
    user_agent TEXT,
    metadata JSONB,
    festival_id UUID,
    timestamp TIMESTAMP WITH TIME ZONE NOT NULL DEFAULT NOW(),
    PRIMARY KEY (id, timestamp)
) PARTITION BY RANGE (timestamp)
""",
    index_sql=[
        "CREATE INDEX IF NOT EXISTS idx_audit_part_user_time"
        " ON audit_logs_partitioned (user_id, timestamp DESC) WHERE user_id IS NOT NULL",
        "CREATE INDEX IF NOT EXISTS idx_audit_part_festival_time"
        " ON audit_logs_partitioned (festival_id, timestamp DESC) WHERE festival_id IS NOT NULL",
        "CREATE INDEX IF NOT EXISTS idx_audit_part_action"
        " ON audit_logs_partitioned (action, timestamp DESC)",
    ],
    months_back=3,
    months_ahead=3,
)

BUILTIN_TEMPLATES = {
    TRANSACTIONS_TEMPLATE.source_table: TRANSACTIONS_TEMPLATE,
    AUDIT_LOGS_TEMPLATE.source_table: AUDIT_LOGS_TEMPLATE,
}
