"""Typed error taxonomy for the store layer.

Every error carries a structured ``kind`` and, where SQL is involved, the SQL
identity of the attempted operation. Parameter values never appear in messages.
"""

from __future__ import annotations

import sqlite3
from collections.abc import Sequence
from dataclasses import dataclass
from pathlib import Path
from typing import Final, Literal

from storekeeper.sql.text import sql_identity

QueryErrorKind = Literal["binding", "syntax", "constraint", "busy", "corruption", "execution"]

_SQLITE_BUSY_CODES: Final[frozenset[int]] = frozenset(
    code
    for code in (
        getattr(sqlite3, "SQLITE_BUSY", None),
        getattr(sqlite3, "SQLITE_BUSY_RECOVERY", None),
        getattr(sqlite3, "SQLITE_BUSY_SNAPSHOT", None),
        getattr(sqlite3, "SQLITE_LOCKED", None),
        getattr(sqlite3, "SQLITE_LOCKED_SHAREDCACHE", None),
    )
    if isinstance(code, int)
)

_SQLITE_CORRUPTION_CODES: Final[frozenset[int]] = frozenset(
    code
    for code in (
        getattr(sqlite3, "SQLITE_CORRUPT", None),
        getattr(sqlite3, "SQLITE_NOTADB", None),
    )
    if isinstance(code, int)
)

_BUSY_SUBSTRINGS: Final[tuple[str, ...]] = (
    "database is locked",
    "database table is locked",
    "database schema is locked",
)

_CORRUPTION_SUBSTRINGS: Final[tuple[str, ...]] = (
    "database disk image is malformed",
    "malformed database",
    "file is not a database",
)

_SYNTAX_SUBSTRINGS: Final[tuple[str, ...]] = (
    "syntax error",
    "no such table",
    "no such column",
    "incomplete input",
    "unrecognized token",
)


class StoreError(Exception):
    """Base class for every error raised by the store layer."""

    kind: str = "store"


@dataclass(frozen=True, slots=True)
class ConfigurationIssue:
    path: str
    message: str


class ConfigurationError(StoreError, ValueError):
    """Invalid configuration, or a store file that cannot be opened as configured."""

    kind = "configuration"

    def __init__(self, message: str, issues: Sequence[ConfigurationIssue] = ()) -> None:
        self.issues: tuple[ConfigurationIssue, ...] = tuple(issues)
        if self.issues:
            details = "; ".join(f"{issue.path}: {issue.message}" for issue in self.issues)
            message = f"{message} ({details})"
        super().__init__(message)


class AlreadyConnectedError(StoreError):
    """Raised by ``connect`` when a handle is already open or opening."""

    kind = "already_connected"


class NotConnectedError(StoreError):
    """Raised when an operation needs a live handle and none is open."""

    kind = "not_connected"


class MigrationError(StoreError):
    """A migration's forward SQL or its bookkeeping insert failed."""

    kind = "migration"

    def __init__(
        self,
        message: str,
        *,
        version: int | None = None,
        name: str | None = None,
        identifier: str | None = None,
    ) -> None:
        self.version = version
        self.name = name
        self.identifier = identifier
        if name is not None:
            message = f"migration failed: {name} (version={version}, id={identifier}): {message}"
        super().__init__(message)


class QueryError(StoreError):
    """A statement failed to prepare, bind, or execute."""

    kind = "query"

    def __init__(
        self,
        message: str,
        *,
        sql: str,
        operation: str,
        error_kind: QueryErrorKind = "execution",
    ) -> None:
        self.sql = sql_identity(sql)
        self.operation = operation
        self.error_kind: QueryErrorKind = error_kind
        super().__init__(f"{operation} failed [{error_kind}] for {self.sql}: {message}")


class TransactionError(StoreError):
    """Wraps the first failure inside a transactional unit; the unit was rolled back."""

    kind = "transaction"

    def __init__(self, message: str, *, rolled_back: bool = True) -> None:
        self.rolled_back = rolled_back
        super().__init__(message)


class BackupError(StoreError):
    """I/O failure while taking a snapshot or pruning old snapshots."""

    kind = "backup"

    def __init__(self, message: str, *, path: Path | None = None) -> None:
        self.path = path
        super().__init__(message if path is None else f"{message} [{path}]")


def classify_sqlite_error(exc: sqlite3.Error) -> QueryErrorKind:
    """Map a ``sqlite3`` exception to a ``QueryError`` kind."""

    if isinstance(exc, sqlite3.IntegrityError):
        return "constraint"
    code = getattr(exc, "sqlite_errorcode", None)
    message = str(exc).lower()
    if (isinstance(code, int) and code in _SQLITE_CORRUPTION_CODES) or any(
        fragment in message for fragment in _CORRUPTION_SUBSTRINGS
    ):
        return "corruption"
    if (isinstance(code, int) and code in _SQLITE_BUSY_CODES) or any(
        fragment in message for fragment in _BUSY_SUBSTRINGS
    ):
        return "busy"
    if isinstance(exc, sqlite3.ProgrammingError) and "binding" in message:
        return "binding"
    if any(fragment in message for fragment in _SYNTAX_SUBSTRINGS):
        return "syntax"
    return "execution"


def query_error_from(exc: sqlite3.Error, *, sql: str, operation: str) -> QueryError:
    return QueryError(
        str(exc),
        sql=sql,
        operation=operation,
        error_kind=classify_sqlite_error(exc),
    )


__all__ = [
    "AlreadyConnectedError",
    "BackupError",
    "ConfigurationError",
    "ConfigurationIssue",
    "MigrationError",
    "NotConnectedError",
    "QueryError",
    "QueryErrorKind",
    "StoreError",
    "TransactionError",
    "classify_sqlite_error",
    "query_error_from",
]
