"""Prepared-statement cache keyed by exact SQL text.

``sqlite3`` compiles statements lazily and keeps the compiled handles in its
own per-connection LRU (``cached_statements``). This cache records, for each
distinct SQL text, the positional placeholder count so parameters are checked
before anything executes, and tracks use counts for diagnostics. Text that
differs only by whitespace or letter case is cached as separate entries.
Entries live until ``clear()`` runs at disconnect; text that fails to compile
keeps its entry and fails again on the next call.
"""

from __future__ import annotations

import sqlite3
from collections.abc import Iterable, Iterator
from typing import Final

from storekeeper.domain.values import SQLValue, coerce_params
from storekeeper.errors import QueryError, query_error_from
from storekeeper.sql.text import PlaceholderError, count_placeholders, iter_segments

_INSERT_KEYWORDS: Final[frozenset[str]] = frozenset({"INSERT", "REPLACE"})


class PreparedStatement:
    """One cached statement: its SQL text and the number of ``?`` slots it binds."""

    __slots__ = ("_connection", "_finalized", "is_insert", "placeholder_count", "sql", "use_count")

    def __init__(self, connection: sqlite3.Connection, sql: str, placeholder_count: int) -> None:
        self._connection = connection
        self._finalized = False
        self.sql = sql
        self.placeholder_count = placeholder_count
        self.is_insert = _leading_keyword(sql) in _INSERT_KEYWORDS
        self.use_count = 0

    @property
    def finalized(self) -> bool:
        return self._finalized

    def bind(self, params: object, *, operation: str) -> tuple[SQLValue, ...]:
        """Validate ``params`` against the placeholder count and the value variant."""

        try:
            bound = coerce_params(params)
        except TypeError as exc:
            raise QueryError(
                str(exc), sql=self.sql, operation=operation, error_kind="binding"
            ) from exc
        if len(bound) != self.placeholder_count:
            raise QueryError(
                f"expected {self.placeholder_count} parameter(s), got {len(bound)}",
                sql=self.sql,
                operation=operation,
                error_kind="binding",
            )
        return bound

    def run(self, params: object, *, operation: str) -> sqlite3.Cursor:
        bound = self.bind(params, operation=operation)
        cursor = self._cursor(operation)
        try:
            cursor.execute(self.sql, bound)
        except sqlite3.Error as exc:
            cursor.close()
            raise query_error_from(exc, sql=self.sql, operation=operation) from exc
        self.use_count += 1
        return cursor

    def run_many(self, rows: Iterable[object], *, operation: str) -> sqlite3.Cursor:
        batch = [self.bind(params, operation=operation) for params in rows]
        cursor = self._cursor(operation)
        try:
            cursor.executemany(self.sql, batch)
        except sqlite3.Error as exc:
            cursor.close()
            raise query_error_from(exc, sql=self.sql, operation=operation) from exc
        self.use_count += len(batch)
        return cursor

    def finalize(self) -> None:
        self._finalized = True

    def _cursor(self, operation: str) -> sqlite3.Cursor:
        if self._finalized:
            raise QueryError(
                "statement was finalized", sql=self.sql, operation=operation, error_kind="execution"
            )
        return self._connection.cursor()


class PreparedStatementCache:
    """Statements for one connection; emptied, with every entry finalized, on close."""

    def __init__(self, connection: sqlite3.Connection) -> None:
        self._connection = connection
        self._statements: dict[str, PreparedStatement] = {}

    @property
    def connection(self) -> sqlite3.Connection:
        return self._connection

    def __len__(self) -> int:
        return len(self._statements)

    def __contains__(self, sql: object) -> bool:
        return sql in self._statements

    def __iter__(self) -> Iterator[PreparedStatement]:
        return iter(tuple(self._statements.values()))

    def prepare(self, sql: str, *, operation: str) -> PreparedStatement:
        cached = self._statements.get(sql)
        if cached is not None:
            return cached
        if not isinstance(sql, str) or not sql.strip():
            raise QueryError(
                "SQL text must be a non-empty string",
                sql=str(sql),
                operation=operation,
                error_kind="syntax",
            )
        try:
            placeholders = count_placeholders(sql)
        except PlaceholderError as exc:
            raise QueryError(str(exc), sql=sql, operation=operation, error_kind="binding") from exc
        # The newline keeps a trailing line comment from swallowing the terminator.
        if not sqlite3.complete_statement(f"{sql}\n;"):
            raise QueryError(
                "incomplete SQL statement", sql=sql, operation=operation, error_kind="syntax"
            )
        statement = PreparedStatement(self._connection, sql, placeholders)
        self._statements[sql] = statement
        return statement

    def clear(self) -> int:
        """Finalize and drop every statement; returns how many were finalized."""

        count = len(self._statements)
        for statement in self._statements.values():
            statement.finalize()
        self._statements.clear()
        return count


def _leading_keyword(sql: str) -> str:
    for kind, text in iter_segments(sql):
        if kind != "code":
            continue
        stripped = text.lstrip(" \t\r\n(")
        if stripped:
            return stripped.split(None, 1)[0].upper()
    return ""


__all__ = ["PreparedStatement", "PreparedStatementCache"]
