"""
storekeeper: embedded single-file SQLite store manager.

File: src/storekeeper/__init__.py

Purpose
- Package root. Exposes the version and the small public surface callers need:
  the manager, its configuration, errors, SQL builders, and events.

Functional requirements
- Must not have side effects at import time (no config loading, no logging init).
"""

from storekeeper.config import StoreConfig, default_config, load_config
from storekeeper.domain import (
    BackupRecord,
    ConnectionState,
    ExecuteResult,
    Migration,
    MigrationRecord,
    StoreEvent,
    StoreEventType,
    StoreStats,
)
from storekeeper.errors import (
    AlreadyConnectedError,
    BackupError,
    ConfigurationError,
    MigrationError,
    NotConnectedError,
    QueryError,
    StoreError,
    TransactionError,
)
from storekeeper.observability import EventBus
from storekeeper.persistence import (
    CustomNaming,
    DateTimeNaming,
    IncrementNaming,
    StoreManager,
    TimestampNaming,
    Transaction,
)
from storekeeper.sql import delete, insert, select, update
from storekeeper.sql.helpers import create_index, create_migration, create_table

__version__ = "0.1.0"

__all__ = [
    "AlreadyConnectedError",
    "BackupError",
    "BackupRecord",
    "ConfigurationError",
    "ConnectionState",
    "CustomNaming",
    "DateTimeNaming",
    "EventBus",
    "ExecuteResult",
    "IncrementNaming",
    "Migration",
    "MigrationError",
    "MigrationRecord",
    "NotConnectedError",
    "QueryError",
    "StoreConfig",
    "StoreError",
    "StoreEvent",
    "StoreEventType",
    "StoreManager",
    "StoreStats",
    "TimestampNaming",
    "Transaction",
    "TransactionError",
    "__version__",
    "create_index",
    "create_migration",
    "create_table",
    "default_config",
    "delete",
    "insert",
    "load_config",
    "select",
    "update",
]
