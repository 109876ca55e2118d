"""Schema descriptors and storage statistics."""

from __future__ import annotations

import sqlite3
from typing import TYPE_CHECKING

import pytest

from storekeeper.persistence.introspection import (
    collect_stats,
    describe_columns,
    describe_indices,
    describe_tables,
)

if TYPE_CHECKING:
    from collections.abc import Iterator
    from pathlib import Path

SCHEMA = """
CREATE TABLE users (
    id INTEGER PRIMARY KEY,
    email TEXT NOT NULL UNIQUE,
    age INTEGER DEFAULT 0
);
CREATE TABLE "order items" (id INTEGER PRIMARY KEY, sku TEXT);
CREATE INDEX idx_users_age_email ON users (age, email);
CREATE UNIQUE INDEX idx_items_sku ON "order items" (sku);
CREATE VIEW adults AS SELECT * FROM users WHERE age >= 18;
INSERT INTO users (email, age) VALUES ('a@example.com', 30), ('b@example.com', 12);
"""


@pytest.fixture
def conn() -> Iterator[sqlite3.Connection]:
    connection = sqlite3.connect(":memory:", isolation_level=None)
    connection.row_factory = sqlite3.Row
    connection.executescript(SCHEMA)
    yield connection
    connection.close()


def test_describe_tables_lists_tables_and_views(conn: sqlite3.Connection) -> None:
    tables = describe_tables(conn)

    assert [(table.name, table.type, table.row_count) for table in tables] == [
        ("adults", "view", None),
        ("order items", "table", 0),
        ("users", "table", 2),
    ]
    assert [column.name for column in tables[0].columns] == ["id", "email", "age"]


def test_row_counts_are_optional(conn: sqlite3.Connection) -> None:
    assert {table.row_count for table in describe_tables(conn, with_row_counts=False)} == {None}


def test_describe_columns(conn: sqlite3.Connection) -> None:
    columns = {column.name: column for column in describe_columns(conn, "users")}

    assert columns["id"].primary_key
    assert columns["email"].type == "TEXT"
    assert not columns["email"].nullable
    assert columns["age"].nullable
    assert columns["age"].default == "0"


def test_describe_indices_skips_automatic_indices(conn: sqlite3.Connection) -> None:
    users = describe_indices(conn, "users")
    items = describe_indices(conn, "order items")

    assert [(index.name, index.columns, index.unique) for index in users] == [
        ("idx_users_age_email", ("age", "email"), False)
    ]
    assert [(index.name, index.table_name, index.unique) for index in items] == [
        ("idx_items_sku", "order items", True)
    ]


def test_collect_stats_for_memory_store(conn: sqlite3.Connection) -> None:
    stats = collect_stats(conn, ":memory:")

    assert stats.filename == ":memory:"
    assert stats.page_size > 0
    assert stats.page_count > 0
    assert stats.size_bytes == stats.page_count * stats.page_size
    assert [table.name for table in stats.tables] == ["adults", "order items", "users"]
    assert sorted(index.name for index in stats.indices) == [
        "idx_items_sku",
        "idx_users_age_email",
    ]


def test_collect_stats_reports_file_size(tmp_path: Path) -> None:
    path = tmp_path / "stats.db"
    connection = sqlite3.connect(path, isolation_level=None)
    connection.row_factory = sqlite3.Row
    try:
        connection.execute("CREATE TABLE t (v TEXT)")
        stats = collect_stats(connection, str(path))
    finally:
        connection.close()

    assert stats.size_bytes == path.stat().st_size
    assert stats.free_pages >= 0
    assert stats.indices == ()


def test_collect_stats_expands_home_in_file_name(
    conn: sqlite3.Connection, tmp_path: Path, monkeypatch: pytest.MonkeyPatch
) -> None:
    monkeypatch.setenv("HOME", str(tmp_path))
    (tmp_path / "stats.db").write_bytes(b"x" * 12345)

    stats = collect_stats(conn, "~/stats.db")

    assert stats.size_bytes == 12345
