"""Domain value types: SQL values, migrations, records, descriptors, and events."""

from storekeeper.domain.events import StoreEvent, StoreEventType
from storekeeper.domain.models import (
    BackupRecord,
    ColumnDescriptor,
    ConnectionState,
    ExecuteResult,
    IndexDescriptor,
    Migration,
    MigrationRecord,
    MigrationRunResult,
    MigrationState,
    StoreStats,
    TableDescriptor,
    migration_identifier,
)
from storekeeper.domain.values import Row, SQLParams, SQLValue

__all__ = [
    "BackupRecord",
    "ColumnDescriptor",
    "ConnectionState",
    "ExecuteResult",
    "IndexDescriptor",
    "Migration",
    "MigrationRecord",
    "MigrationRunResult",
    "MigrationState",
    "Row",
    "SQLParams",
    "SQLValue",
    "StoreEvent",
    "StoreEventType",
    "StoreStats",
    "TableDescriptor",
    "migration_identifier",
]
