"""Shared deterministic fixtures and builders for persistence tests."""

from __future__ import annotations

from dataclasses import replace
from typing import TYPE_CHECKING

from storekeeper.config.schema import BackupSettings, OpenOptions, StoreConfig
from storekeeper.domain.events import StoreEvent, StoreEventType
from storekeeper.sql.helpers import create_migration

if TYPE_CHECKING:
    from pathlib import Path

    from storekeeper.domain.models import Migration
    from storekeeper.observability.events import EventBus


def make_migrations() -> list[Migration]:
    return [
        create_migration(
            1,
            "create users",
            """
            CREATE TABLE users (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                name TEXT NOT NULL UNIQUE,
                age INTEGER
            );
            CREATE INDEX idx_users_age ON users (age);
            """,
            down="DROP TABLE users",
        ),
        create_migration(
            2,
            "create posts",
            """
            CREATE TABLE posts (
                id INTEGER PRIMARY KEY,
                user_id INTEGER NOT NULL REFERENCES users (id),
                body TEXT
            );
            """,
        ),
    ]


def file_config(
    tmp_path: Path,
    name: str = "store.db",
    *,
    options: OpenOptions | None = None,
    backup: BackupSettings | None = None,
) -> StoreConfig:
    config = StoreConfig(filename=str(tmp_path / "data" / name))
    if options is not None:
        config = replace(config, options=options)
    if backup is not None:
        config = replace(config, backup=backup)
    return config


class EventRecorder:
    """Collects every event published on a bus."""

    def __init__(self, bus: EventBus) -> None:
        self.events: list[StoreEvent] = []
        bus.subscribe(None, self.events.append)

    def of_type(self, event_type: StoreEventType | str) -> list[StoreEvent]:
        wanted = StoreEventType(event_type)
        return [event for event in self.events if event.event_type is wanted]

    def types(self) -> list[str]:
        return [event.event_type.value for event in self.events]
