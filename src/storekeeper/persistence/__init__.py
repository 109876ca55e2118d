"""Connection lifecycle, migrations, query execution, and backups."""

from storekeeper.persistence.backup import (
    BackupNamingStrategy,
    BackupScheduler,
    CustomNaming,
    DateTimeNaming,
    IncrementNaming,
    TimestampNaming,
)
from storekeeper.persistence.facade import QueryFacade, Transaction
from storekeeper.persistence.introspection import collect_stats
from storekeeper.persistence.manager import StoreManager
from storekeeper.persistence.migrations import MigrationEngine
from storekeeper.persistence.statements import PreparedStatement, PreparedStatementCache

__all__ = [
    "BackupNamingStrategy",
    "BackupScheduler",
    "CustomNaming",
    "DateTimeNaming",
    "IncrementNaming",
    "MigrationEngine",
    "PreparedStatement",
    "PreparedStatementCache",
    "QueryFacade",
    "StoreManager",
    "TimestampNaming",
    "Transaction",
    "collect_stats",
]
