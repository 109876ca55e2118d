"""Stable constants shared across the store layers."""

from __future__ import annotations

from typing import Final

# Open options.
DEFAULT_BUSY_TIMEOUT_MS: Final[int] = 5_000
DEFAULT_CACHE_SIZE_PAGES: Final[int] = 1_000
DEFAULT_STATEMENT_CACHE_SIZE: Final[int] = 256

# Migrations.
DEFAULT_MIGRATIONS_DIRECTORY: Final[str] = "migrations"
DEFAULT_MIGRATIONS_TABLE: Final[str] = "_migrations"

# Backups.
DEFAULT_BACKUP_DIRECTORY: Final[str] = "backups"
DEFAULT_BACKUP_INTERVAL_MINUTES: Final[float] = 60.0
DEFAULT_MAX_BACKUPS: Final[int] = 10
DEFAULT_BACKUP_PATTERN: Final[str] = "*.db"
BACKUP_FILE_PREFIX: Final[str] = "backup_"
BACKUP_FILE_SUFFIX: Final[str] = ".db"
BACKUP_INCREMENT_WIDTH: Final[int] = 3

# Pragmas applied to every read-write handle, in order.
CONNECTION_PRAGMAS: Final[tuple[tuple[str, str], ...]] = (
    ("journal_mode", "WAL"),
    ("synchronous", "NORMAL"),
    ("temp_store", "MEMORY"),
)

# Event stream.
DEFAULT_EVENT_BUFFER_SIZE: Final[int] = 512

# SQL identity shown in errors/events.
SQL_IDENTITY_MAX_CHARS: Final[int] = 160

__all__ = [
    "BACKUP_FILE_PREFIX",
    "BACKUP_FILE_SUFFIX",
    "BACKUP_INCREMENT_WIDTH",
    "CONNECTION_PRAGMAS",
    "DEFAULT_BACKUP_DIRECTORY",
    "DEFAULT_BACKUP_INTERVAL_MINUTES",
    "DEFAULT_BACKUP_PATTERN",
    "DEFAULT_BUSY_TIMEOUT_MS",
    "DEFAULT_CACHE_SIZE_PAGES",
    "DEFAULT_EVENT_BUFFER_SIZE",
    "DEFAULT_MAX_BACKUPS",
    "DEFAULT_MIGRATIONS_DIRECTORY",
    "DEFAULT_MIGRATIONS_TABLE",
    "DEFAULT_STATEMENT_CACHE_SIZE",
    "SQL_IDENTITY_MAX_CHARS",
]
