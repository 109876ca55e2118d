"""DDL helper output and migration construction."""

from __future__ import annotations

import sqlite3

import pytest

from storekeeper.sql.helpers import (
    add_column,
    create_index,
    create_migration,
    create_table,
    drop_column,
    drop_index,
    drop_table,
    rename_column,
    rename_table,
)


def test_create_table_quotes_identifiers_and_adds_composite_key() -> None:
    sql = create_table(
        "order items",
        {"order_id": "INTEGER NOT NULL", "sku": "TEXT"},
        if_not_exists=True,
        primary_key=["order_id", "sku"],
    )

    assert sql == (
        'CREATE TABLE IF NOT EXISTS "order items" '
        '("order_id" INTEGER NOT NULL, "sku" TEXT, PRIMARY KEY ("order_id", "sku"))'
    )


def test_create_index_variants() -> None:
    assert create_index("idx_a", "t", ["a"]) == 'CREATE INDEX "idx_a" ON "t" ("a")'
    assert create_index("u", "t", ["a", "b"], unique=True, if_not_exists=True) == (
        'CREATE UNIQUE INDEX IF NOT EXISTS "u" ON "t" ("a", "b")'
    )


def test_alter_and_drop_helpers() -> None:
    assert drop_table("t") == 'DROP TABLE IF EXISTS "t"'
    assert drop_table("t", if_exists=False) == 'DROP TABLE "t"'
    assert drop_index("i") == 'DROP INDEX IF EXISTS "i"'
    assert add_column("t", "c", "TEXT DEFAULT ''") == (
        'ALTER TABLE "t" ADD COLUMN "c" TEXT DEFAULT \'\''
    )
    assert drop_column("t", "c") == 'ALTER TABLE "t" DROP COLUMN "c"'
    assert rename_table("a", "b") == 'ALTER TABLE "a" RENAME TO "b"'
    assert rename_column("t", "a", "b") == 'ALTER TABLE "t" RENAME COLUMN "a" TO "b"'


def test_helpers_reject_empty_column_lists() -> None:
    with pytest.raises(ValueError):
        create_table("t", {})
    with pytest.raises(ValueError):
        create_index("i", "t", [])
    with pytest.raises(TypeError):
        create_index("i", "t", "a")


def test_generated_ddl_executes() -> None:
    conn = sqlite3.connect(":memory:")
    try:
        conn.execute(create_table("notes", {"id": "INTEGER PRIMARY KEY", "body": "TEXT"}))
        conn.execute(create_index("idx_notes_body", "notes", ["body"], unique=True))
        conn.execute(add_column("notes", "tag", "TEXT"))
        conn.execute(rename_column("notes", "tag", "label"))
        columns = [row[1] for row in conn.execute('PRAGMA table_info("notes")')]
    finally:
        conn.close()

    assert columns == ["id", "body", "label"]


def test_create_migration_derives_identifier() -> None:
    migration = create_migration(3, "Add Users Table", "CREATE TABLE users (id INTEGER)")

    assert migration.version == 3
    assert migration.identifier == "3_add_users_table"
    assert migration.down is None


def test_create_migration_rejects_invalid_input() -> None:
    with pytest.raises(ValueError):
        create_migration(0, "zero", "SELECT 1")
    with pytest.raises(ValueError):
        create_migration(1, "blank", "  -- nothing\n")
