"""Read-only schema and storage statistics for an open connection."""

from __future__ import annotations

import os
import sqlite3
from pathlib import Path

from storekeeper.domain.models import (
    ColumnDescriptor,
    IndexDescriptor,
    StoreStats,
    TableDescriptor,
)
from storekeeper.sql.text import escape_id


def collect_stats(conn: sqlite3.Connection, filename: str) -> StoreStats:
    page_count = _pragma_int(conn, "page_count")
    page_size = _pragma_int(conn, "page_size")
    free_pages = _pragma_int(conn, "freelist_count")

    tables = tuple(describe_tables(conn))
    indices = tuple(
        index
        for table in tables
        if table.type == "table"
        for index in describe_indices(conn, table.name)
    )
    return StoreStats(
        filename=filename,
        size_bytes=_file_size(filename, page_count * page_size),
        page_count=page_count,
        page_size=page_size,
        free_pages=free_pages,
        tables=tables,
        indices=indices,
    )


def describe_tables(
    conn: sqlite3.Connection, *, with_row_counts: bool = True
) -> list[TableDescriptor]:
    """User tables and views, by name; SQLite's internal ``sqlite_*`` tables are skipped."""

    rows = conn.execute(
        """
        SELECT name, type FROM sqlite_master
        WHERE type IN ('table', 'view') AND name NOT LIKE 'sqlite\\_%' ESCAPE '\\'
        ORDER BY name ASC
        """
    ).fetchall()
    out: list[TableDescriptor] = []
    for row in rows:
        name = str(row["name"])
        kind = "view" if row["type"] == "view" else "table"
        row_count: int | None = None
        if with_row_counts and kind == "table":
            count_row = conn.execute(f"SELECT COUNT(*) FROM {escape_id(name)}").fetchone()
            row_count = int(count_row[0]) if count_row is not None else 0
        out.append(
            TableDescriptor(
                name=name,
                type=kind,
                columns=tuple(describe_columns(conn, name)),
                row_count=row_count,
            )
        )
    return out


def describe_columns(conn: sqlite3.Connection, table: str) -> list[ColumnDescriptor]:
    rows = conn.execute(f"PRAGMA table_info({escape_id(table)})").fetchall()
    return [
        ColumnDescriptor(
            name=str(row["name"]),
            type=str(row["type"] or ""),
            nullable=not bool(row["notnull"]),
            default=row["dflt_value"],
            primary_key=bool(row["pk"]),
        )
        for row in rows
    ]


def describe_indices(conn: sqlite3.Connection, table: str) -> list[IndexDescriptor]:
    """Explicitly created indices on ``table``; automatic ``sqlite_autoindex_*`` are skipped."""

    out: list[IndexDescriptor] = []
    for row in conn.execute(f"PRAGMA index_list({escape_id(table)})").fetchall():
        name = str(row["name"])
        if name.startswith("sqlite_autoindex_"):
            continue
        info = conn.execute(f"PRAGMA index_info({escape_id(name)})").fetchall()
        ordered = sorted(info, key=lambda item: item["seqno"])
        columns = tuple(str(item["name"] or "<expression>") for item in ordered)
        out.append(
            IndexDescriptor(
                name=name,
                table_name=table,
                columns=columns,
                unique=bool(row["unique"]),
            )
        )
    return sorted(out, key=lambda index: index.name)


def _pragma_int(conn: sqlite3.Connection, pragma: str) -> int:
    row = conn.execute(f"PRAGMA {pragma}").fetchone()
    if row is None:
        return 0
    return int(row[0])


def _file_size(filename: str, fallback: int) -> int:
    if filename == ":memory:":
        return fallback
    try:
        return os.stat(Path(filename).expanduser()).st_size
    except OSError:
        return fallback


__all__ = ["collect_stats", "describe_columns", "describe_indices", "describe_tables"]
