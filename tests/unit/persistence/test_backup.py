"""
storekeeper: unit tests for backup naming, retention and scheduling

File: tests/unit/persistence/test_backup.py

Purpose
- Validate naming strategies, collision handling, retention order, failure
  reporting and the periodic schedule against a fake snapshot.

Non-functional requirements
- Deterministic clocks for naming; the periodic test waits on events, not sleeps.
"""

from __future__ import annotations

import asyncio
import os
from datetime import UTC, datetime
from typing import TYPE_CHECKING

import pytest

from storekeeper.config.schema import BackupSettings
from storekeeper.errors import BackupError
from storekeeper.observability.events import EventBus
from storekeeper.persistence.backup import (
    BackupScheduler,
    CustomNaming,
    DateTimeNaming,
    IncrementNaming,
    TimestampNaming,
    resolve_strategy,
    unique_path,
)

from . import EventRecorder

if TYPE_CHECKING:
    from pathlib import Path

    from storekeeper.persistence.backup import Snapshot

FIXED_NOW = datetime(2026, 3, 4, 5, 6, 7, tzinfo=UTC)


async def _fake_snapshot(target: Path) -> None:
    target.write_bytes(b"SQLite format 3\x00snapshot")


def _scheduler(
    directory: Path,
    *,
    settings: BackupSettings | None = None,
    bus: EventBus | None = None,
    snapshot: Snapshot = _fake_snapshot,
    store_path: Path | None = None,
) -> BackupScheduler:
    return BackupScheduler(
        settings or BackupSettings(),
        directory,
        snapshot=snapshot,
        events=bus or EventBus(),
        clock=lambda: FIXED_NOW,
        store_path=store_path,
    )


def test_naming_strategies(tmp_path: Path) -> None:
    assert TimestampNaming().next_name(tmp_path, FIXED_NOW) == "backup_1772600767000.db"
    assert DateTimeNaming().next_name(tmp_path, FIXED_NOW) == "backup_20260304_050607.db"
    assert IncrementNaming().next_name(tmp_path, FIXED_NOW) == "backup_001.db"
    assert CustomNaming("nightly").next_name(tmp_path, FIXED_NOW) == "nightly.db"
    assert CustomNaming(" dump.sqlite ").next_name(tmp_path, FIXED_NOW) == "dump.sqlite"


def test_increment_naming_continues_past_the_highest_number(tmp_path: Path) -> None:
    for number in range(1, 10):
        (tmp_path / f"backup_{number:03d}.db").touch()
    (tmp_path / "backup_notes.db").touch()
    (tmp_path / "backup_050.txt").touch()

    assert IncrementNaming().next_name(tmp_path, FIXED_NOW) == "backup_010.db"
    assert IncrementNaming(width=5).next_name(tmp_path, FIXED_NOW) == "backup_00010.db"


@pytest.mark.parametrize("name", ["", "   ", ".", "..", "a/b", "a\\b", "nul\x00"])
def test_custom_names_must_be_plain_file_names(name: str) -> None:
    with pytest.raises(ValueError):
        CustomNaming(name)


def test_resolve_strategy() -> None:
    assert isinstance(resolve_strategy(None), DateTimeNaming)
    assert resolve_strategy("manual") == CustomNaming("manual")
    increment = IncrementNaming()
    assert resolve_strategy(increment) is increment
    with pytest.raises(TypeError):
        resolve_strategy(42)  # type: ignore[arg-type]


def test_unique_path_appends_counters(tmp_path: Path) -> None:
    assert unique_path(tmp_path, "snap.db") == tmp_path / "snap.db"
    (tmp_path / "snap.db").touch()
    assert unique_path(tmp_path, "snap.db") == tmp_path / "snap_1.db"
    (tmp_path / "snap_1.db").touch()
    assert unique_path(tmp_path, "snap.db") == tmp_path / "snap_2.db"


async def test_create_backup_writes_file_and_emits_event(tmp_path: Path) -> None:
    bus = EventBus()
    recorder = EventRecorder(bus)
    scheduler = _scheduler(tmp_path / "backups", bus=bus)

    record = await scheduler.create_backup()

    assert record.path == tmp_path / "backups" / "backup_20260304_050607.db"
    assert record.path.read_bytes().startswith(b"SQLite format 3")
    assert record.size_bytes == record.path.stat().st_size
    assert record.created_at == FIXED_NOW
    (event,) = recorder.of_type("backup")
    assert event.payload["filename"] == "backup_20260304_050607.db"
    assert event.payload["size_bytes"] == record.size_bytes


async def test_same_name_never_overwrites(tmp_path: Path) -> None:
    scheduler = _scheduler(tmp_path)

    first = await scheduler.create_backup("manual")
    second = await scheduler.create_backup("manual")
    third = await scheduler.create_backup(DateTimeNaming())
    fourth = await scheduler.create_backup(DateTimeNaming())

    assert [first.filename, second.filename] == ["manual.db", "manual_1.db"]
    assert [third.filename, fourth.filename] == [
        "backup_20260304_050607.db",
        "backup_20260304_050607_1.db",
    ]


async def test_failed_snapshot_raises_and_leaves_no_temp_files(tmp_path: Path) -> None:
    bus = EventBus()
    recorder = EventRecorder(bus)

    async def failing(target: Path) -> None:
        target.write_bytes(b"partial")
        raise OSError("disk full")

    scheduler = _scheduler(tmp_path, bus=bus, snapshot=failing)

    with pytest.raises(BackupError, match="disk full") as exc_info:
        await scheduler.create_backup("doomed")

    assert isinstance(exc_info.value.__cause__, OSError)
    assert exc_info.value.path == tmp_path / "doomed.db"
    assert list(tmp_path.iterdir()) == []
    (event,) = recorder.of_type("error")
    assert event.payload["operation"] == "backup"
    assert event.payload["kind"] == "backup"
    assert recorder.of_type("backup") == []


def test_retention_keeps_newest_by_mtime(tmp_path: Path) -> None:
    names = ["e.db", "a.db", "d.db", "b.db", "c.db"]
    for offset, name in enumerate(names):
        path = tmp_path / name
        path.write_bytes(b"x")
        stamp = 1_700_000_000 + offset * 60
        os.utime(path, (stamp, stamp))
    (tmp_path / "notes.txt").write_text("kept", encoding="utf-8")
    (tmp_path / ".hidden.db").write_bytes(b"x")
    scheduler = _scheduler(tmp_path, settings=BackupSettings(max_backups=3))

    assert [path.name for path in scheduler.list_backups()] == names[::-1]

    removed = scheduler.prune()

    assert sorted(path.name for path in removed) == ["a.db", "e.db"]
    assert sorted(path.name for path in tmp_path.iterdir()) == [
        ".hidden.db",
        "b.db",
        "c.db",
        "d.db",
        "notes.txt",
    ]


def test_retention_breaks_mtime_ties_by_name(tmp_path: Path) -> None:
    for name in ("b.db", "a.db", "c.db"):
        path = tmp_path / name
        path.write_bytes(b"x")
        os.utime(path, (1_700_000_000, 1_700_000_000))

    scheduler = _scheduler(tmp_path, settings=BackupSettings(max_backups=1))

    assert [path.name for path in scheduler.list_backups()] == ["c.db", "b.db", "a.db"]
    assert scheduler.prune() == (tmp_path / "b.db", tmp_path / "a.db")


def test_live_store_files_are_never_listed_or_pruned(tmp_path: Path) -> None:
    names = ["app.db", "app.db-wal", "app.db-journal", "backup_001.db", "backup_002.db"]
    for offset, name in enumerate(names):
        path = tmp_path / name
        path.write_bytes(b"x")
        stamp = 1_700_000_000 + offset * 60
        os.utime(path, (stamp, stamp))
    scheduler = _scheduler(
        tmp_path,
        settings=BackupSettings(max_backups=1, pattern="*"),
        store_path=tmp_path / "app.db",
    )

    assert [path.name for path in scheduler.list_backups()] == ["backup_002.db", "backup_001.db"]
    assert scheduler.prune() == (tmp_path / "backup_001.db",)
    assert sorted(path.name for path in tmp_path.iterdir()) == [
        "app.db",
        "app.db-journal",
        "app.db-wal",
        "backup_002.db",
    ]


def test_list_backups_on_missing_directory(tmp_path: Path) -> None:
    assert _scheduler(tmp_path / "absent").list_backups() == []


async def test_create_backup_prunes_afterwards(tmp_path: Path) -> None:
    scheduler = _scheduler(tmp_path, settings=BackupSettings(max_backups=2))

    for _ in range(4):
        await scheduler.create_backup(IncrementNaming())

    assert sorted(path.name for path in tmp_path.iterdir()) == ["backup_003.db", "backup_004.db"]


async def test_periodic_schedule_runs_until_stopped(tmp_path: Path) -> None:
    bus = EventBus()
    two_backups = asyncio.Event()
    seen: list[str] = []

    def on_backup(event: object) -> None:
        seen.append("backup")
        if len(seen) >= 2:
            two_backups.set()

    bus.subscribe("backup", on_backup)
    scheduler = _scheduler(
        tmp_path, settings=BackupSettings(enabled=True, interval_minutes=0.0005), bus=bus
    )

    scheduler.start()
    scheduler.start()
    assert scheduler.running
    await asyncio.wait_for(two_backups.wait(), timeout=5)
    await scheduler.stop()

    assert not scheduler.running
    count = len(list(tmp_path.glob("*.db")))
    assert count >= 2
    await scheduler.stop()


async def test_scheduled_failures_become_events_and_the_loop_continues(tmp_path: Path) -> None:
    bus = EventBus()
    failures = asyncio.Event()
    errors: list[object] = []

    def on_error(event: object) -> None:
        errors.append(event)
        if len(errors) >= 2:
            failures.set()

    async def failing(target: Path) -> None:
        raise OSError("read-only file system")

    bus.subscribe("error", on_error)
    scheduler = _scheduler(
        tmp_path,
        settings=BackupSettings(enabled=True, interval_minutes=0.0005),
        bus=bus,
        snapshot=failing,
    )

    scheduler.start()
    await asyncio.wait_for(failures.wait(), timeout=5)
    await scheduler.stop()

    assert list(tmp_path.iterdir()) == []
