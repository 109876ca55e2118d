"""
storekeeper: forward-only schema migration engine.

File: src/storekeeper/persistence/migrations.py

Purpose
- Apply caller-supplied migrations in ascending version order, each in its own
  ``BEGIN IMMEDIATE`` transaction together with its bookkeeping row.

Functional requirements
- Duplicate or non-positive versions fail before any SQL runs.
- A failing migration rolls back completely, is not recorded, and halts the
  run; migrations committed earlier in the same run stay applied.
- Recorded versions are never updated or deleted. Reverse SQL is kept on the
  ``Migration`` value but never executed here.
"""

from __future__ import annotations

import sqlite3
from collections.abc import Awaitable, Callable, Iterable, Mapping
from datetime import UTC, datetime
from typing import Any

from storekeeper.constants import DEFAULT_MIGRATIONS_TABLE
from storekeeper.domain.models import (
    Migration,
    MigrationRecord,
    MigrationRunResult,
    MigrationState,
)
from storekeeper.errors import MigrationError
from storekeeper.sql.text import escape_id, split_statements

Call = Callable[..., Awaitable[Any]]
AppliedCallback = Callable[[MigrationRecord], object]


class MigrationEngine:
    """Plans and applies migrations against one connection."""

    def __init__(
        self,
        migrations: Iterable[Migration | Mapping[str, object]] = (),
        *,
        table_name: str = DEFAULT_MIGRATIONS_TABLE,
    ) -> None:
        self._migrations: tuple[Migration, ...] = tuple(_as_migration(item) for item in migrations)
        self._table_name = table_name
        self._table = escape_id(table_name)
        self._states: dict[int, MigrationState] = {
            migration.version: MigrationState.PENDING for migration in self._migrations
        }

    @property
    def migrations(self) -> tuple[Migration, ...]:
        return self._migrations

    @property
    def table_name(self) -> str:
        return self._table_name

    def state_of(self, version: int) -> MigrationState | None:
        return self._states.get(version)

    def validate(self) -> None:
        """Raise ``MigrationError`` for duplicate versions."""

        seen: dict[int, Migration] = {}
        for migration in self._migrations:
            previous = seen.get(migration.version)
            if previous is not None:
                raise MigrationError(
                    f"duplicate migration version (also used by {previous.name!r})",
                    version=migration.version,
                    name=migration.name,
                    identifier=migration.identifier,
                )
            seen[migration.version] = migration

    def table_exists(self, conn: sqlite3.Connection) -> bool:
        row = conn.execute(
            "SELECT 1 FROM sqlite_master WHERE type = 'table' AND name = ?",
            (self._table_name,),
        ).fetchone()
        return row is not None

    def ensure_table(self, conn: sqlite3.Connection) -> None:
        try:
            conn.execute(
                f"""
                CREATE TABLE IF NOT EXISTS {self._table} (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    version INTEGER UNIQUE NOT NULL,
                    name TEXT NOT NULL,
                    identifier TEXT NOT NULL,
                    applied_at TEXT NOT NULL
                )
                """
            )
        except sqlite3.Error as exc:
            raise MigrationError(f"unable to create {self._table_name}: {exc}") from exc

    def load_applied(self, conn: sqlite3.Connection) -> dict[int, MigrationRecord]:
        if not self.table_exists(conn):
            return {}
        rows = conn.execute(
            f"SELECT version, name, identifier, applied_at FROM {self._table} ORDER BY version ASC"
        ).fetchall()
        out: dict[int, MigrationRecord] = {}
        for row in rows:
            version, name, identifier, applied_at = tuple(row)
            if not isinstance(version, int):
                raise MigrationError(f"{self._table_name}.version must be integer")
            out[version] = MigrationRecord(
                version=version,
                name=str(name),
                identifier=str(identifier),
                applied_at=str(applied_at),
            )
        return out

    def history(self, conn: sqlite3.Connection) -> list[MigrationRecord]:
        return list(self.load_applied(conn).values())

    def plan(self, applied: Mapping[int, MigrationRecord]) -> list[Migration]:
        """Pending migrations sorted ascending; already-applied ones are marked applied."""

        self.validate()
        pending: list[Migration] = []
        for migration in self._migrations:
            if migration.version in applied:
                self._states[migration.version] = MigrationState.APPLIED
            else:
                pending.append(migration)
        return sorted(pending, key=lambda item: item.version)

    def apply_one(self, conn: sqlite3.Connection, migration: Migration) -> MigrationRecord:
        """Run every forward statement plus the bookkeeping insert as one transaction."""

        self._states[migration.version] = MigrationState.APPLYING
        try:
            conn.execute("BEGIN IMMEDIATE")
            for statement in split_statements(migration.up):
                conn.execute(statement)
            applied_at = _utc_now_iso()
            conn.execute(
                f"""
                INSERT INTO {self._table} (version, name, identifier, applied_at)
                VALUES (?, ?, ?, ?)
                """,
                (migration.version, migration.name, migration.identifier, applied_at),
            )
            conn.execute("COMMIT")
        except sqlite3.Error as exc:
            self._states[migration.version] = MigrationState.FAILED
            error = MigrationError(
                str(exc),
                version=migration.version,
                name=migration.name,
                identifier=migration.identifier,
            )
            _rollback(conn, error)
            raise error from exc

        self._states[migration.version] = MigrationState.APPLIED
        return MigrationRecord(
            version=migration.version,
            name=migration.name,
            identifier=migration.identifier,
            applied_at=applied_at,
        )

    def migrate(
        self,
        conn: sqlite3.Connection,
        *,
        read_only: bool = False,
        on_applied: AppliedCallback | None = None,
    ) -> MigrationRunResult:
        """Synchronous run on a connection the caller already owns."""

        self.validate()
        applied = self._prepare(conn, read_only=read_only)
        pending = self.plan(applied)
        records: list[MigrationRecord] = []
        for migration in pending:
            record = self.apply_one(conn, migration)
            records.append(record)
            if on_applied is not None:
                on_applied(record)
        skipped = len(self._migrations) - len(pending)
        return MigrationRunResult(applied=tuple(records), skipped=skipped)

    async def run(
        self,
        call: Call,
        conn: sqlite3.Connection,
        *,
        read_only: bool = False,
        on_applied: AppliedCallback | None = None,
    ) -> MigrationRunResult:
        """Same as ``migrate`` but each step goes through ``call(fn, *args)``.

        ``on_applied`` runs on the caller's side of ``call``, once per committed
        migration and before the next one starts.
        """

        self.validate()
        applied = await call(self._prepare, conn, read_only)
        pending = self.plan(applied)
        records: list[MigrationRecord] = []
        for migration in pending:
            record = await call(self.apply_one, conn, migration)
            records.append(record)
            if on_applied is not None:
                on_applied(record)
        skipped = len(self._migrations) - len(pending)
        return MigrationRunResult(applied=tuple(records), skipped=skipped)

    def pending(self, applied: Mapping[int, MigrationRecord]) -> list[Migration]:
        return sorted(
            (item for item in self._migrations if item.version not in applied),
            key=lambda item: item.version,
        )

    def _prepare(
        self, conn: sqlite3.Connection, read_only: bool = False
    ) -> dict[int, MigrationRecord]:
        if read_only:
            applied = self.load_applied(conn)
            outstanding = self.pending(applied)
            if outstanding:
                first = outstanding[0]
                raise MigrationError(
                    "store is read-only; pending migrations cannot be applied",
                    version=first.version,
                    name=first.name,
                    identifier=first.identifier,
                )
            return applied
        self.ensure_table(conn)
        return self.load_applied(conn)


def _as_migration(item: Migration | Mapping[str, object]) -> Migration:
    if isinstance(item, Migration):
        return item
    try:
        return Migration.from_mapping(item)
    except ValueError as exc:
        raise MigrationError(
            str(exc),
            version=item.get("version") if isinstance(item.get("version"), int) else None,
        ) from exc


def _rollback(conn: sqlite3.Connection, error: MigrationError) -> None:
    if not conn.in_transaction:
        return
    try:
        conn.execute("ROLLBACK")
    except sqlite3.Error as exc:
        error.add_note(f"rollback failed: {exc}")


def _utc_now_iso() -> str:
    return datetime.now(UTC).isoformat(timespec="microseconds").replace("+00:00", "Z")


__all__ = ["MigrationEngine"]
