"""DDL and migration text helpers. Every identifier goes through ``escape_id``."""

from __future__ import annotations

from collections.abc import Mapping, Sequence

from storekeeper.domain.models import Migration, migration_identifier
from storekeeper.sql.text import escape_id


def create_table(
    table: str,
    columns: Mapping[str, str],
    *,
    if_not_exists: bool = False,
    primary_key: Sequence[str] | None = None,
) -> str:
    """``CREATE TABLE`` from ``{column: type/constraints}``, optional composite key."""

    if not columns:
        raise ValueError("create_table requires at least one column")
    definitions = [f"{escape_id(name)} {ctype}".rstrip() for name, ctype in columns.items()]
    if primary_key:
        definitions.append(f"PRIMARY KEY ({_id_list(primary_key)})")
    guard = "IF NOT EXISTS " if if_not_exists else ""
    return f"CREATE TABLE {guard}{escape_id(table)} ({', '.join(definitions)})"


def create_index(
    name: str,
    table: str,
    columns: Sequence[str],
    *,
    unique: bool = False,
    if_not_exists: bool = False,
) -> str:
    if not columns:
        raise ValueError("create_index requires at least one column")
    unique_kw = "UNIQUE " if unique else ""
    guard = "IF NOT EXISTS " if if_not_exists else ""
    return (
        f"CREATE {unique_kw}INDEX {guard}{escape_id(name)} "
        f"ON {escape_id(table)} ({_id_list(columns)})"
    )


def drop_table(table: str, *, if_exists: bool = True) -> str:
    guard = "IF EXISTS " if if_exists else ""
    return f"DROP TABLE {guard}{escape_id(table)}"


def drop_index(name: str, *, if_exists: bool = True) -> str:
    guard = "IF EXISTS " if if_exists else ""
    return f"DROP INDEX {guard}{escape_id(name)}"


def add_column(table: str, column: str, column_type: str) -> str:
    return f"ALTER TABLE {escape_id(table)} ADD COLUMN {escape_id(column)} {column_type}".rstrip()


def drop_column(table: str, column: str) -> str:
    return f"ALTER TABLE {escape_id(table)} DROP COLUMN {escape_id(column)}"


def rename_table(old_name: str, new_name: str) -> str:
    return f"ALTER TABLE {escape_id(old_name)} RENAME TO {escape_id(new_name)}"


def rename_column(table: str, old_name: str, new_name: str) -> str:
    return (
        f"ALTER TABLE {escape_id(table)} "
        f"RENAME COLUMN {escape_id(old_name)} TO {escape_id(new_name)}"
    )


def create_migration(version: int, name: str, up: str, down: str | None = None) -> Migration:
    """Build a ``Migration`` whose identifier is derived from version and name."""

    return Migration(
        version=version,
        name=name,
        up=up,
        identifier=migration_identifier(version, name),
        down=down,
    )


def _id_list(names: Sequence[str]) -> str:
    if isinstance(names, str):
        raise TypeError("column list must be a sequence of names, not a string")
    return ", ".join(escape_id(name) for name in names)


__all__ = [
    "add_column",
    "create_index",
    "create_migration",
    "create_table",
    "drop_column",
    "drop_index",
    "drop_table",
    "escape_id",
    "rename_column",
    "rename_table",
]
