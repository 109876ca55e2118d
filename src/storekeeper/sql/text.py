"""
storekeeper: SQL text utilities.

File: src/storekeeper/sql/text.py

Purpose
- Lexical helpers over opaque SQL text: identifier quoting, positional
  placeholder counting, script splitting, and the short "SQL identity" used in
  errors and events.

Functional requirements
- Never parse or plan SQL; only skip quoted strings, quoted identifiers and
  comments so that characters inside them are not mistaken for placeholders
  or statement terminators.
- Named placeholders (``:name``, ``@name``, ``$name``) are rejected; binding is
  strictly positional.
"""

from __future__ import annotations

import hashlib
import re
import sqlite3
from collections.abc import Iterator
from typing import Final, Literal

from storekeeper.constants import SQL_IDENTITY_MAX_CHARS

SegmentKind = Literal["code", "quoted", "comment"]

_WHITESPACE_RUN: Final[re.Pattern[str]] = re.compile(r"\s+")
_IDENT_CHARS: Final[frozenset[str]] = frozenset(
    "abcdefghijklmnopqrstuvwxyzABCDEFGHIJKLMNOPQRSTUVWXYZ0123456789_$"
)
_CLOSERS: Final[dict[str, str]] = {"'": "'", '"': '"', "`": "`", "[": "]"}


class PlaceholderError(ValueError):
    """Raised when SQL text uses placeholders that cannot be bound positionally."""


def escape_id(identifier: str) -> str:
    """Quote ``identifier`` for use as a table/column/index name."""

    if not isinstance(identifier, str):
        raise TypeError(f"identifier must be a string, got {type(identifier).__name__}")
    if not identifier:
        raise ValueError("identifier must not be empty")
    if "\x00" in identifier:
        raise ValueError("identifier must not contain NUL characters")
    return '"' + identifier.replace('"', '""') + '"'


def iter_segments(sql: str) -> Iterator[tuple[SegmentKind, str]]:
    """Split ``sql`` into code, quoted (strings/identifiers) and comment segments."""

    length = len(sql)
    index = 0
    start = 0
    while index < length:
        char = sql[index]
        if char in _CLOSERS:
            if index > start:
                yield "code", sql[start:index]
            end = _quoted_end(sql, index)
            yield "quoted", sql[index:end]
            index = start = end
            continue
        if char == "-" and sql.startswith("--", index):
            if index > start:
                yield "code", sql[start:index]
            newline = sql.find("\n", index)
            end = length if newline == -1 else newline + 1
            yield "comment", sql[index:end]
            index = start = end
            continue
        if char == "/" and sql.startswith("/*", index):
            if index > start:
                yield "code", sql[start:index]
            close = sql.find("*/", index + 2)
            end = length if close == -1 else close + 2
            yield "comment", sql[index:end]
            index = start = end
            continue
        index += 1
    if start < length:
        yield "code", sql[start:]


def count_placeholders(sql: str) -> int:
    """Return the number of positional parameters ``sql`` expects.

    ``?`` takes the next index after the largest seen so far and ``?NNN`` names
    an explicit index, matching SQLite's numbering rules.
    """

    highest = 0
    for kind, text in iter_segments(sql):
        if kind != "code":
            continue
        position = 0
        length = len(text)
        while position < length:
            char = text[position]
            if char == "?":
                digits_end = position + 1
                while digits_end < length and text[digits_end].isdigit():
                    digits_end += 1
                if digits_end > position + 1:
                    number = int(text[position + 1 : digits_end])
                    if number <= 0:
                        raise PlaceholderError("numbered placeholders start at ?1")
                    highest = max(highest, number)
                else:
                    highest += 1
                position = digits_end
                continue
            if char in ":@$" and _starts_named_parameter(text, position):
                raise PlaceholderError(
                    f"named placeholder {_named_token(text, position)!r} is not supported; "
                    "use positional '?' placeholders"
                )
            position += 1
    return highest


def is_blank(sql: str) -> bool:
    """Return ``True`` when ``sql`` holds nothing but whitespace and comments."""

    return all(kind == "comment" or not text.strip() for kind, text in iter_segments(sql))


def split_statements(script: str) -> list[str]:
    """Split a multi-statement script on complete-statement boundaries.

    Uses ``sqlite3.complete_statement`` so semicolons inside strings, comments
    and trigger bodies do not terminate a statement early.
    """

    statements: list[str] = []
    buffer = ""
    *pieces, tail = script.split(";")
    for piece in pieces:
        buffer = f"{buffer}{piece};"
        if sqlite3.complete_statement(buffer):
            if not is_blank(buffer[:-1]):
                statements.append(buffer.strip())
            buffer = ""
    buffer += tail
    if not is_blank(buffer):
        statements.append(buffer.strip())
    return statements


def sql_identity(sql: str) -> str:
    """Collapsed, truncated SQL text plus a short digest, safe for diagnostics."""

    collapsed = _WHITESPACE_RUN.sub(" ", sql).strip()
    digest = hashlib.sha256(sql.encode("utf-8")).hexdigest()[:8]
    if len(collapsed) > SQL_IDENTITY_MAX_CHARS:
        collapsed = collapsed[: SQL_IDENTITY_MAX_CHARS - 3].rstrip() + "..."
    return f"{collapsed} [sql:{digest}]"


def _quoted_end(sql: str, index: int) -> int:
    closer = _CLOSERS[sql[index]]
    position = index + 1
    length = len(sql)
    while position < length:
        if sql[position] == closer:
            # Doubled quote characters escape themselves, except inside [...].
            if closer != "]" and position + 1 < length and sql[position + 1] == closer:
                position += 2
                continue
            return position + 1
        position += 1
    return length


def _starts_named_parameter(text: str, position: int) -> bool:
    following = text[position + 1] if position + 1 < len(text) else ""
    if not following or following not in _IDENT_CHARS or following == "$":
        return False
    previous = text[position - 1] if position > 0 else ""
    return previous not in _IDENT_CHARS


def _named_token(text: str, position: int) -> str:
    end = position + 1
    while end < len(text) and text[end] in _IDENT_CHARS:
        end += 1
    return text[position:end]


__all__ = [
    "PlaceholderError",
    "SegmentKind",
    "count_placeholders",
    "escape_id",
    "is_blank",
    "iter_segments",
    "split_statements",
    "sql_identity",
]
