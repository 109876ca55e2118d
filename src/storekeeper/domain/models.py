"""Value types shared by the connection manager, migrations, facade and backups."""

from __future__ import annotations

import re
from collections.abc import Mapping
from dataclasses import dataclass
from datetime import datetime
from enum import StrEnum
from pathlib import Path
from typing import Final, Literal

from storekeeper.domain.values import SQLValue
from storekeeper.sql.text import is_blank

_NAME_SEPARATORS: Final[re.Pattern[str]] = re.compile(r"\s+")


class ConnectionState(StrEnum):
    """Lifecycle of the single store handle owned by a manager."""

    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    CONNECTED = "connected"


class MigrationState(StrEnum):
    PENDING = "pending"
    APPLYING = "applying"
    APPLIED = "applied"
    FAILED = "failed"


@dataclass(frozen=True, slots=True)
class Migration:
    """Caller-supplied schema change. ``down`` is stored but never auto-executed."""

    version: int
    name: str
    up: str
    identifier: str
    down: str | None = None

    def __post_init__(self) -> None:
        if isinstance(self.version, bool) or not isinstance(self.version, int):
            raise ValueError(f"migration version must be an integer, got {self.version!r}")
        if self.version <= 0:
            raise ValueError(f"migration version must be > 0, got {self.version}")
        if not isinstance(self.name, str) or not self.name.strip():
            raise ValueError(f"migration {self.version}: name must be a non-empty string")
        if not isinstance(self.up, str) or is_blank(self.up):
            raise ValueError(f"migration {self.version}: forward SQL must not be empty")
        if not isinstance(self.identifier, str) or not self.identifier.strip():
            raise ValueError(f"migration {self.version}: identifier must be a non-empty string")
        if self.down is not None and not isinstance(self.down, str):
            raise ValueError(f"migration {self.version}: reverse SQL must be a string")

    @classmethod
    def from_mapping(cls, data: Mapping[str, object]) -> Migration:
        """Build from ``{version, name, up, down?, identifier?}`` (accepts forward/reverse)."""

        version = data.get("version")
        name = data.get("name")
        up = data.get("up", data.get("forward"))
        down = data.get("down", data.get("reverse"))
        identifier = data.get("identifier", data.get("id"))
        if not isinstance(version, int) or not isinstance(name, str):
            raise ValueError("migration mapping requires integer 'version' and string 'name'")
        if identifier is None:
            identifier = migration_identifier(version, name)
        return cls(
            version=version,
            name=name,
            up=str(up) if up is not None else "",
            identifier=str(identifier),
            down=None if down is None else str(down),
        )


def migration_identifier(version: int, name: str) -> str:
    """``<version>_<lowercased name with whitespace as underscores>``."""

    return f"{version}_{_NAME_SEPARATORS.sub('_', name.strip()).lower()}"


@dataclass(frozen=True, slots=True)
class MigrationRecord:
    version: int
    name: str
    identifier: str
    applied_at: str


@dataclass(frozen=True, slots=True)
class MigrationRunResult:
    applied: tuple[MigrationRecord, ...]
    skipped: int

    @property
    def applied_versions(self) -> tuple[int, ...]:
        return tuple(record.version for record in self.applied)


@dataclass(frozen=True, slots=True)
class ExecuteResult:
    rows_affected: int
    inserted_id: int | None


@dataclass(frozen=True, slots=True)
class BackupRecord:
    path: Path
    size_bytes: int
    created_at: datetime

    @property
    def filename(self) -> str:
        return self.path.name


@dataclass(frozen=True, slots=True)
class ColumnDescriptor:
    name: str
    type: str
    nullable: bool
    default: SQLValue
    primary_key: bool


@dataclass(frozen=True, slots=True)
class IndexDescriptor:
    name: str
    table_name: str
    columns: tuple[str, ...]
    unique: bool


@dataclass(frozen=True, slots=True)
class TableDescriptor:
    name: str
    type: Literal["table", "view"]
    columns: tuple[ColumnDescriptor, ...]
    row_count: int | None = None


@dataclass(frozen=True, slots=True)
class StoreStats:
    filename: str
    size_bytes: int
    page_count: int
    page_size: int
    free_pages: int
    tables: tuple[TableDescriptor, ...]
    indices: tuple[IndexDescriptor, ...]


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
    "StoreStats",
    "TableDescriptor",
    "migration_identifier",
]
