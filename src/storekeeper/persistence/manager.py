"""
storekeeper: connection lifecycle manager.

File: src/storekeeper/persistence/manager.py

Purpose
- Own exactly one SQLite handle per manager instance: open and configure it,
  run migrations, expose the query facade, schedule backups, and close it.

Functional requirements
- ``connect`` fails with ``AlreadyConnectedError`` unless disconnected; any
  failure during open or migration closes the partial handle and leaves the
  manager disconnected.
- ``disconnect`` is idempotent and never raises; failures become ``error``
  events.
- All handle access is serialized: one asyncio lock per manager plus a
  single-worker executor that performs the blocking calls.

Non-functional requirements
- No module-level state; events go to the manager's own bus.
"""

from __future__ import annotations

import asyncio
import functools
import sqlite3
from collections.abc import Callable, Iterable, Mapping
from concurrent.futures import ThreadPoolExecutor
from pathlib import Path
from types import TracebackType
from typing import Any, TypeVar

from storekeeper.config.schema import (
    OpenOptions,
    StoreConfig,
    assert_valid_config,
    config_from_mapping,
    default_config,
)
from storekeeper.constants import CONNECTION_PRAGMAS
from storekeeper.domain.events import StoreEventType, error_payload
from storekeeper.domain.models import (
    BackupRecord,
    ConnectionState,
    ExecuteResult,
    Migration,
    MigrationRecord,
    MigrationRunResult,
    StoreStats,
)
from storekeeper.domain.values import Row
from storekeeper.errors import (
    AlreadyConnectedError,
    BackupError,
    ConfigurationError,
    NotConnectedError,
    TransactionError,
)
from storekeeper.observability.events import EventBus
from storekeeper.persistence.backup import BackupNamingStrategy, BackupScheduler
from storekeeper.persistence.facade import QueryFacade, TransactionBody
from storekeeper.persistence.introspection import collect_stats
from storekeeper.persistence.migrations import MigrationEngine
from storekeeper.persistence.statements import PreparedStatementCache

T = TypeVar("T")

_READ_ONLY_SKIPPED_PRAGMAS = frozenset({"journal_mode", "synchronous"})


class StoreManager:
    """Async manager for one embedded SQLite store."""

    def __init__(
        self,
        config: StoreConfig | str | Mapping[str, object],
        migrations: Iterable[Migration | Mapping[str, object]] = (),
        *,
        events: EventBus | None = None,
    ) -> None:
        self._config = _coerce_config(config)
        self._migrations = tuple(migrations)
        self._engine = MigrationEngine(
            self._migrations, table_name=self._config.migrations.table_name
        )
        self._events = events if events is not None else EventBus()
        self._state = ConnectionState.DISCONNECTED
        self._conn: sqlite3.Connection | None = None
        self._statements: PreparedStatementCache | None = None
        self._executor: ThreadPoolExecutor | None = None
        self._lock = asyncio.Lock()
        self._facade = QueryFacade(self)
        self._backups: BackupScheduler | None = None
        self._last_migration_run: MigrationRunResult | None = None

    @property
    def config(self) -> StoreConfig:
        return self._config

    @property
    def events(self) -> EventBus:
        return self._events

    @property
    def state(self) -> ConnectionState:
        return self._state

    @property
    def lock(self) -> asyncio.Lock:
        return self._lock

    @property
    def prepared_statement_count(self) -> int:
        return 0 if self._statements is None else len(self._statements)

    @property
    def last_migration_run(self) -> MigrationRunResult | None:
        return self._last_migration_run

    @property
    def backup_scheduler(self) -> BackupScheduler | None:
        return self._backups

    def is_connected(self) -> bool:
        return self._state is ConnectionState.CONNECTED and self._conn is not None

    # Lifecycle

    async def connect(self) -> None:
        if self._state is not ConnectionState.DISCONNECTED:
            error = AlreadyConnectedError(
                f"store {self._config.filename!r} is already {self._state.value}"
            )
            self.emit(StoreEventType.ERROR, error_payload(error, operation="connect"))
            raise error

        self._state = ConnectionState.CONNECTING
        config = self._config
        try:
            async with self._lock:
                self._executor = ThreadPoolExecutor(
                    max_workers=1, thread_name_prefix="storekeeper"
                )
                conn = await self.run(_open_handle, config)
                self._conn = conn
                self._statements = PreparedStatementCache(conn)
                journal_mode = await self.run(_journal_mode, conn)
                self.emit(
                    StoreEventType.OPEN,
                    {
                        "filename": config.filename,
                        "read_only": config.options.read_only,
                        "journal_mode": journal_mode,
                    },
                )
                self._last_migration_run = await self._engine.run(
                    self.run,
                    conn,
                    read_only=config.options.read_only,
                    on_applied=self._on_migration_applied,
                )
            if self._conn is None:
                raise NotConnectedError("store was disconnected while connecting")
            self._state = ConnectionState.CONNECTED
            self._backups = BackupScheduler(
                config.backup,
                config.backup_directory,
                snapshot=self._snapshot,
                events=self._events,
                store_path=_store_path(config),
            )
            if config.backup.enabled:
                self._backups.start()
        except BaseException as exc:
            await self._release_handle()
            self._backups = None
            self._state = ConnectionState.DISCONNECTED
            if isinstance(exc, Exception):
                self.emit(StoreEventType.ERROR, error_payload(exc, operation="connect"))
            raise

    async def disconnect(self) -> None:
        """Close the handle. Idempotent; problems are reported as ``error`` events."""

        if self._state is ConnectionState.DISCONNECTED and self._conn is None:
            return
        if self._facade.active_transaction() is not None:
            error = TransactionError(
                "disconnect requested inside an active transaction; ignored", rolled_back=False
            )
            self.emit(StoreEventType.ERROR, error_payload(error, operation="disconnect"))
            return

        backups, self._backups = self._backups, None
        if backups is not None:
            try:
                await backups.stop()
            except Exception as exc:  # noqa: BLE001
                self.emit(StoreEventType.ERROR, error_payload(exc, operation="stop_backups"))

        async with self._lock:
            finalized = await self._release_handle()
        self._state = ConnectionState.DISCONNECTED
        self.emit(
            StoreEventType.CLOSE,
            {"filename": self._config.filename, "statements_finalized": finalized},
        )

    async def reconfigure(
        self, config: StoreConfig | str | Mapping[str, object], *, reopen: bool = True
    ) -> None:
        """Swap configuration; a connected manager reopens with it when ``reopen`` is true."""

        new_config = _coerce_config(config)
        connected = self._state is not ConnectionState.DISCONNECTED
        if connected and not reopen:
            raise ConfigurationError("cannot reconfigure a connected store without reopening it")
        if connected:
            await self.disconnect()
        self._config = new_config
        self._engine = MigrationEngine(
            self._migrations, table_name=new_config.migrations.table_name
        )
        if connected:
            await self.connect()

    async def destroy(self) -> None:
        """Disconnect and drop every event subscriber."""

        await self.disconnect()
        self._events.clear()

    async def __aenter__(self) -> StoreManager:
        await self.connect()
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        await self.disconnect()

    # Queries

    async def query(self, sql: str, params: object = ()) -> list[Row]:
        return await self._facade.query(sql, params)

    async def query_one(self, sql: str, params: object = ()) -> Row | None:
        return await self._facade.query_one(sql, params)

    async def execute(self, sql: str, params: object = ()) -> ExecuteResult:
        return await self._facade.execute(sql, params)

    async def execute_many(self, sql: str, rows: Iterable[object]) -> ExecuteResult:
        return await self._facade.execute_many(sql, rows)

    async def transaction(self, fn: TransactionBody[T], *, immediate: bool = True) -> T:
        return await self._facade.transaction(fn, immediate=immediate)

    # Migrations, stats, backups

    async def migration_history(self) -> list[MigrationRecord]:
        cache = self.checkout("migration_history")
        return await self._critical(self._engine.history, cache.connection)

    async def pending_migrations(self) -> list[Migration]:
        cache = self.checkout("pending_migrations")
        applied = await self._critical(self._engine.load_applied, cache.connection)
        return self._engine.pending(applied)

    async def get_stats(self) -> StoreStats:
        cache = self.checkout("get_stats")
        return await self._critical(collect_stats, cache.connection, self._config.filename)

    async def create_backup(
        self, name_or_strategy: str | BackupNamingStrategy | None = None
    ) -> BackupRecord:
        """Snapshot the store; a plain string is used as the backup file name."""

        self.checkout("create_backup")
        if self._facade.active_transaction() is not None:
            error = BackupError("cannot create a backup inside an active transaction")
            self.emit(StoreEventType.ERROR, error_payload(error, operation="backup"))
            raise error
        scheduler = self._backups
        if scheduler is None:
            raise NotConnectedError("create_backup requires a connected store")
        return await scheduler.create_backup(name_or_strategy)

    def list_backups(self) -> list[Path]:
        directory = self._config.backup_directory
        scheduler = self._backups or BackupScheduler(
            self._config.backup,
            directory,
            snapshot=self._snapshot,
            events=self._events,
            store_path=_store_path(self._config),
        )
        return scheduler.list_backups()

    # Handle ownership used by the facade, migrations and backups

    def checkout(self, operation: str) -> PreparedStatementCache:
        if self._state is not ConnectionState.CONNECTED or self._statements is None:
            raise NotConnectedError(f"{operation} requires a connected store")
        return self._statements

    async def run(self, fn: Callable[..., T], /, *args: Any) -> T:
        """Run a blocking call on the manager's worker thread."""

        executor = self._executor
        if executor is None:
            raise NotConnectedError("store handle is closed")
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(executor, functools.partial(fn, *args))

    def emit(self, event_type: StoreEventType, payload: Mapping[str, object]) -> None:
        self._events.emit(event_type, payload)

    async def _critical(self, fn: Callable[..., T], /, *args: Any) -> T:
        if self._facade.active_transaction() is not None:
            return await self.run(fn, *args)
        async with self._lock:
            return await self.run(fn, *args)

    def _on_migration_applied(self, record: MigrationRecord) -> None:
        self.emit(
            StoreEventType.MIGRATION,
            {
                "version": record.version,
                "name": record.name,
                "identifier": record.identifier,
                "applied_at": record.applied_at,
            },
        )

    async def _snapshot(self, target: Path) -> None:
        async with self._lock:
            cache = self.checkout("backup")
            await self.run(
                _copy_into, cache.connection, target, self._config.options.busy_timeout_ms
            )

    async def _release_handle(self) -> int:
        statements, self._statements = self._statements, None
        conn, self._conn = self._conn, None
        executor, self._executor = self._executor, None

        finalized = statements.clear() if statements is not None else 0
        try:
            if conn is not None:
                if executor is not None:
                    await asyncio.get_running_loop().run_in_executor(executor, conn.close)
                else:
                    conn.close()
        except Exception as exc:  # noqa: BLE001
            self.emit(StoreEventType.ERROR, error_payload(exc, operation="close"))
        finally:
            if executor is not None:
                executor.shutdown(wait=False)
        return finalized


def _coerce_config(config: StoreConfig | str | Mapping[str, object]) -> StoreConfig:
    if isinstance(config, StoreConfig):
        return assert_valid_config(config)
    if isinstance(config, str):
        return default_config(config)
    if isinstance(config, Mapping):
        return config_from_mapping(config)
    raise ConfigurationError(
        f"expected StoreConfig, file name, or mapping; got {type(config).__name__}"
    )


def _store_path(config: StoreConfig) -> Path | None:
    return None if config.is_memory else config.path.expanduser()


def _open_handle(config: StoreConfig) -> sqlite3.Connection:
    options = config.options
    try:
        if config.is_memory:
            target, uri = ":memory:", False
        else:
            path = config.path.expanduser()
            if options.read_only or options.must_exist:
                mode = "ro" if options.read_only else "rw"
                target, uri = f"{path.resolve().as_uri()}?mode={mode}", True
            else:
                path.parent.mkdir(parents=True, exist_ok=True)
                target, uri = str(path), False
        conn = sqlite3.connect(
            target,
            timeout=options.busy_timeout_ms / 1000.0,
            isolation_level=None,
            check_same_thread=False,
            cached_statements=options.statement_cache_size,
            uri=uri,
        )
    except (sqlite3.Error, OSError) as exc:
        raise ConfigurationError(f"unable to open store {config.filename!r}: {exc}") from exc

    try:
        conn.row_factory = sqlite3.Row
        _configure_connection(conn, options)
    except sqlite3.Error as exc:
        conn.close()
        raise ConfigurationError(f"unable to configure store {config.filename!r}: {exc}") from exc
    return conn


def _configure_connection(conn: sqlite3.Connection, options: OpenOptions) -> None:
    for name, value in CONNECTION_PRAGMAS:
        if options.read_only and name in _READ_ONLY_SKIPPED_PRAGMAS:
            continue
        conn.execute(f"PRAGMA {name}={value}")
    conn.execute(f"PRAGMA cache_size={int(options.cache_size)}")
    conn.execute(f"PRAGMA busy_timeout={int(options.busy_timeout_ms)}")
    conn.execute(f"PRAGMA foreign_keys={'ON' if options.foreign_keys else 'OFF'}")


def _journal_mode(conn: sqlite3.Connection) -> str:
    row = conn.execute("PRAGMA journal_mode").fetchone()
    return "" if row is None else str(row[0]).lower()


def _copy_into(source: sqlite3.Connection, target: Path, busy_timeout_ms: int) -> None:
    destination = sqlite3.connect(str(target), timeout=busy_timeout_ms / 1000.0)
    try:
        source.backup(destination)
    finally:
        destination.close()


__all__ = ["StoreManager"]
