"""
storekeeper: online backups, naming strategies, and retention.

File: src/storekeeper/persistence/backup.py

Purpose
- Snapshot the live store into the backup directory without overwriting any
  existing backup, prune old snapshots, and run the periodic schedule.

Functional requirements
- Snapshots are written to a temp file in the backup directory and moved into
  place with ``os.replace`` so a partial file never carries a backup name.
- Name collisions resolve deterministically by appending ``_1``, ``_2``, ...
- Retention keeps the newest ``max_backups`` entries matching ``pattern`` by
  modification time (name breaks ties); deletion failures are reported as
  ``error`` events, never raised.
- The live store file and its ``-wal``/``-shm``/``-journal`` companions are
  never listed as backups, even when the backup directory is the store's own.
- ``stop()`` lets an in-flight backup finish before returning.
"""

from __future__ import annotations

import asyncio
import contextlib
import os
import re
import sqlite3
import tempfile
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from datetime import UTC, datetime
from pathlib import Path
from typing import Protocol, runtime_checkable

from storekeeper.config.schema import BackupSettings
from storekeeper.constants import BACKUP_FILE_PREFIX, BACKUP_FILE_SUFFIX, BACKUP_INCREMENT_WIDTH
from storekeeper.domain.events import StoreEventType, error_payload
from storekeeper.domain.models import BackupRecord
from storekeeper.errors import BackupError
from storekeeper.observability.events import EventBus

Snapshot = Callable[[Path], Awaitable[None]]
Clock = Callable[[], datetime]

_STORE_COMPANIONS = ("-wal", "-shm", "-journal")


@runtime_checkable
class BackupNamingStrategy(Protocol):
    def next_name(self, directory: Path, now: datetime) -> str: ...


@dataclass(frozen=True, slots=True)
class TimestampNaming:
    """``backup_<unix milliseconds>.db``"""

    def next_name(self, directory: Path, now: datetime) -> str:
        del directory
        return f"{BACKUP_FILE_PREFIX}{int(now.timestamp() * 1000)}{BACKUP_FILE_SUFFIX}"


@dataclass(frozen=True, slots=True)
class DateTimeNaming:
    """``backup_<YYYYMMDD>_<HHMMSS>.db``; the default for manual and scheduled backups."""

    def next_name(self, directory: Path, now: datetime) -> str:
        del directory
        return f"{BACKUP_FILE_PREFIX}{now.strftime('%Y%m%d_%H%M%S')}{BACKUP_FILE_SUFFIX}"


@dataclass(frozen=True, slots=True)
class IncrementNaming:
    """``backup_<NNN>.db``, one past the highest number already present."""

    width: int = BACKUP_INCREMENT_WIDTH

    def next_name(self, directory: Path, now: datetime) -> str:
        del now
        pattern = re.compile(
            rf"^{re.escape(BACKUP_FILE_PREFIX)}(\d+){re.escape(BACKUP_FILE_SUFFIX)}$"
        )
        highest = 0
        if directory.is_dir():
            for entry in directory.iterdir():
                match = pattern.match(entry.name)
                if match is not None:
                    highest = max(highest, int(match.group(1)))
        return f"{BACKUP_FILE_PREFIX}{highest + 1:0{self.width}d}{BACKUP_FILE_SUFFIX}"


@dataclass(frozen=True, slots=True)
class CustomNaming:
    """Caller-chosen file name; ``.db`` is appended when it has no suffix."""

    name: str

    def __post_init__(self) -> None:
        name = self.name.strip() if isinstance(self.name, str) else ""
        if not name or name in {".", ".."}:
            raise ValueError("backup name must be a non-empty file name")
        if "/" in name or "\\" in name or "\x00" in name:
            raise ValueError(f"backup name must not contain path separators: {self.name!r}")
        object.__setattr__(self, "name", name)

    def next_name(self, directory: Path, now: datetime) -> str:
        del directory, now
        if Path(self.name).suffix:
            return self.name
        return f"{self.name}{BACKUP_FILE_SUFFIX}"


def resolve_strategy(value: str | BackupNamingStrategy | None) -> BackupNamingStrategy:
    if value is None:
        return DateTimeNaming()
    if isinstance(value, str):
        return CustomNaming(value)
    if isinstance(value, BackupNamingStrategy):
        return value
    raise TypeError(f"expected a backup name or naming strategy, got {type(value).__name__}")


def unique_path(directory: Path, filename: str) -> Path:
    """``directory/filename``, or the first free ``<stem>_<n><suffix>`` variant."""

    candidate = directory / filename
    if not candidate.exists():
        return candidate
    stem = Path(filename).stem
    suffix = Path(filename).suffix
    counter = 1
    while True:
        candidate = directory / f"{stem}_{counter}{suffix}"
        if not candidate.exists():
            return candidate
        counter += 1


class BackupScheduler:
    """Creates, prunes and periodically schedules backups for one store."""

    def __init__(
        self,
        settings: BackupSettings,
        directory: Path,
        *,
        snapshot: Snapshot,
        events: EventBus,
        clock: Clock | None = None,
        store_path: Path | None = None,
    ) -> None:
        self._settings = settings
        self._directory = directory
        self._store_files = _store_files(store_path)
        self._snapshot = snapshot
        self._events = events
        self._clock = clock if clock is not None else _utc_now
        self._lock = asyncio.Lock()
        self._stop_event: asyncio.Event | None = None
        self._task: asyncio.Task[None] | None = None

    @property
    def directory(self) -> Path:
        return self._directory

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    async def create_backup(
        self, name_or_strategy: str | BackupNamingStrategy | None = None
    ) -> BackupRecord:
        strategy = resolve_strategy(name_or_strategy)
        async with self._lock:
            target: Path | None = None
            try:
                self._directory.mkdir(parents=True, exist_ok=True)
                now = self._clock()
                target = unique_path(self._directory, strategy.next_name(self._directory, now))
                await self._write_snapshot(target)
                size = target.stat().st_size
            except (OSError, sqlite3.Error) as exc:
                error = BackupError(f"backup failed: {exc}", path=target)
                self._events.emit(
                    StoreEventType.ERROR,
                    error_payload(error, operation="backup", path=str(target or self._directory)),
                )
                raise error from exc

            record = BackupRecord(path=target, size_bytes=size, created_at=now)
            self._events.emit(
                StoreEventType.BACKUP,
                {
                    "path": str(record.path),
                    "filename": record.filename,
                    "size_bytes": record.size_bytes,
                    "created_at": record.created_at,
                },
            )
            self.prune()
            return record

    def list_backups(self) -> list[Path]:
        """Entries matching ``pattern``, newest first."""

        if not self._directory.is_dir():
            return []
        stamped: list[tuple[int, str, Path]] = []
        for path in self._directory.glob(self._settings.pattern):
            if path.name.startswith("."):
                continue
            try:
                if not path.is_file() or path.resolve() in self._store_files:
                    continue
                stamped.append((path.stat().st_mtime_ns, path.name, path))
            except OSError:
                continue
        stamped.sort(key=lambda item: (item[0], item[1]), reverse=True)
        return [path for _, _, path in stamped]

    def prune(self) -> tuple[Path, ...]:
        """Delete backups beyond ``max_backups``; returns the paths removed."""

        removed: list[Path] = []
        for path in self.list_backups()[self._settings.max_backups :]:
            try:
                path.unlink()
            except OSError as exc:
                error = BackupError(f"unable to delete old backup: {exc}", path=path)
                self._events.emit(
                    StoreEventType.ERROR,
                    error_payload(error, operation="prune_backups", path=str(path)),
                )
                continue
            removed.append(path)
        return tuple(removed)

    def start(self) -> None:
        if self.running:
            return
        self._stop_event = asyncio.Event()
        self._task = asyncio.get_running_loop().create_task(
            self._run_periodic(self._stop_event), name="storekeeper-backup-schedule"
        )

    async def stop(self) -> None:
        task = self._task
        if self._stop_event is not None:
            self._stop_event.set()
        self._task = None
        self._stop_event = None
        if task is not None:
            await task

    async def _write_snapshot(self, target: Path) -> None:
        fd, temp_name = tempfile.mkstemp(
            prefix=f".{target.name}.", suffix=".tmp", dir=str(self._directory)
        )
        os.close(fd)
        temp_path = Path(temp_name)
        try:
            await self._snapshot(temp_path)
            if target.exists():
                raise FileExistsError(f"backup target appeared while writing: {target}")
            os.replace(temp_path, target)
        except BaseException:
            with contextlib.suppress(OSError):
                temp_path.unlink(missing_ok=True)
            raise

    async def _run_periodic(self, stop_event: asyncio.Event) -> None:
        interval_seconds = float(self._settings.interval_minutes) * 60.0
        while not stop_event.is_set():
            try:
                await asyncio.wait_for(stop_event.wait(), timeout=interval_seconds)
            except TimeoutError:
                pass
            else:
                return
            try:
                await self.create_backup(DateTimeNaming())
            except BackupError:
                # Already reported as an error event.
                continue
            except Exception as exc:  # noqa: BLE001
                self._events.emit(
                    StoreEventType.ERROR, error_payload(exc, operation="scheduled_backup")
                )


def _utc_now() -> datetime:
    return datetime.now(UTC)


def _store_files(store_path: Path | None) -> frozenset[Path]:
    if store_path is None:
        return frozenset()
    live = store_path.expanduser().resolve()
    return frozenset(
        {live, *(live.with_name(f"{live.name}{suffix}") for suffix in _STORE_COMPANIONS)}
    )



__all__ = [
    "BackupNamingStrategy",
    "BackupScheduler",
    "CustomNaming",
    "DateTimeNaming",
    "IncrementNaming",
    "TimestampNaming",
    "resolve_strategy",
    "unique_path",
]
