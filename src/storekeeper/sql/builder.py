"""
storekeeper: fluent SQL statement builders.

File: src/storekeeper/sql/builder.py

Purpose
- Assemble SELECT / INSERT / UPDATE / DELETE text plus an ordered positional
  parameter list. No I/O.

Functional requirements
- Values are always emitted as ``?`` placeholders; only field/table text and
  caller-written conditions are spliced into the SQL.
- Parameter order follows clause order in the final text, regardless of the
  order in which builder methods were called.
- ``build()`` is repeatable and does not consume builder state.

Non-functional requirements
- Output text is deterministic: single spaces, ``", "`` list separators.
"""

from __future__ import annotations

from collections.abc import Iterable, Iterator, Mapping, Sequence
from dataclasses import dataclass, field
from typing import Final, Literal

from storekeeper.domain.values import SQLValue

Direction = Literal["ASC", "DESC"]
ConflictAction = Literal["IGNORE", "REPLACE"]

_DIRECTIONS: Final[tuple[str, ...]] = ("ASC", "DESC")
_CONFLICT_ACTIONS: Final[dict[str, str]] = {"IGNORE": "OR IGNORE", "REPLACE": "OR REPLACE"}


@dataclass(frozen=True, slots=True)
class BuiltStatement:
    """SQL text and its positional parameters."""

    sql: str
    params: list[SQLValue] = field(default_factory=list)

    def __iter__(self) -> Iterator[object]:
        yield self.sql
        yield self.params


class _ConditionList:
    """Conditions joined with AND, each carrying its own parameters."""

    __slots__ = ("_conditions", "_params")

    def __init__(self) -> None:
        self._conditions: list[str] = []
        self._params: list[SQLValue] = []

    def add(self, condition: str, params: Iterable[SQLValue] = ()) -> None:
        text = _require_text(condition, "condition")
        self._conditions.append(text)
        self._params.extend(params)

    def clear(self) -> None:
        self._conditions.clear()
        self._params.clear()

    def __bool__(self) -> bool:
        return bool(self._conditions)

    def render(self, keyword: str) -> str:
        return f" {keyword} " + " AND ".join(self._conditions)

    @property
    def params(self) -> list[SQLValue]:
        return list(self._params)


class SelectBuilder:
    """Fluent SELECT builder."""

    def __init__(self) -> None:
        self._fields: list[str] = []
        self._table = ""
        self._joins: list[str] = []
        self._where = _ConditionList()
        self._group_by: list[str] = []
        self._having = _ConditionList()
        self._order_by: list[str] = []
        self._limit: int | None = None
        self._offset: int | None = None

    def reset(self) -> SelectBuilder:
        """Clear every clause so the builder can be reused."""

        self._fields.clear()
        self._table = ""
        self._joins.clear()
        self._where.clear()
        self._group_by.clear()
        self._having.clear()
        self._order_by.clear()
        self._limit = None
        self._offset = None
        return self

    def select(self, fields: str | Sequence[str]) -> SelectBuilder:
        self._fields.extend(_as_field_list(fields, "select"))
        return self

    def from_(self, table: str) -> SelectBuilder:
        self._table = _require_text(table, "table")
        return self

    def join(self, table: str, condition: str) -> SelectBuilder:
        return self._add_join("JOIN", table, condition)

    def left_join(self, table: str, condition: str) -> SelectBuilder:
        return self._add_join("LEFT JOIN", table, condition)

    def right_join(self, table: str, condition: str) -> SelectBuilder:
        return self._add_join("RIGHT JOIN", table, condition)

    def inner_join(self, table: str, condition: str) -> SelectBuilder:
        return self._add_join("INNER JOIN", table, condition)

    def where(self, condition: str, *params: SQLValue) -> SelectBuilder:
        self._where.add(condition, params)
        return self

    def where_equal(self, field_name: str, value: SQLValue) -> SelectBuilder:
        self._where.add(f"{_require_text(field_name, 'field')} = ?", (value,))
        return self

    def where_not_equal(self, field_name: str, value: SQLValue) -> SelectBuilder:
        self._where.add(f"{_require_text(field_name, 'field')} != ?", (value,))
        return self

    def where_in(self, field_name: str, values: Sequence[SQLValue]) -> SelectBuilder:
        condition, params = _membership(field_name, values, negate=False)
        self._where.add(condition, params)
        return self

    def where_not_in(self, field_name: str, values: Sequence[SQLValue]) -> SelectBuilder:
        condition, params = _membership(field_name, values, negate=True)
        self._where.add(condition, params)
        return self

    def where_like(self, field_name: str, pattern: str) -> SelectBuilder:
        self._where.add(f"{_require_text(field_name, 'field')} LIKE ?", (pattern,))
        return self

    def where_null(self, field_name: str) -> SelectBuilder:
        self._where.add(f"{_require_text(field_name, 'field')} IS NULL")
        return self

    def where_not_null(self, field_name: str) -> SelectBuilder:
        self._where.add(f"{_require_text(field_name, 'field')} IS NOT NULL")
        return self

    def where_between(self, field_name: str, low: SQLValue, high: SQLValue) -> SelectBuilder:
        self._where.add(f"{_require_text(field_name, 'field')} BETWEEN ? AND ?", (low, high))
        return self

    def group_by(self, fields: str | Sequence[str]) -> SelectBuilder:
        self._group_by.extend(_as_field_list(fields, "group_by"))
        return self

    def having(self, condition: str, *params: SQLValue) -> SelectBuilder:
        self._having.add(condition, params)
        return self

    def order_by(self, field_name: str, direction: Direction = "ASC") -> SelectBuilder:
        normalized = direction.upper() if isinstance(direction, str) else direction
        if normalized not in _DIRECTIONS:
            raise ValueError(f"order direction must be ASC or DESC, got {direction!r}")
        self._order_by.append(f"{_require_text(field_name, 'field')} {normalized}")
        return self

    def order_by_asc(self, field_name: str) -> SelectBuilder:
        return self.order_by(field_name, "ASC")

    def order_by_desc(self, field_name: str) -> SelectBuilder:
        return self.order_by(field_name, "DESC")

    def limit(self, count: int) -> SelectBuilder:
        self._limit = _non_negative_int(count, "limit")
        return self

    def offset(self, count: int) -> SelectBuilder:
        self._offset = _non_negative_int(count, "offset")
        return self

    def build(self) -> BuiltStatement:
        if not self._table:
            raise ValueError("FROM table is required")

        sql = "SELECT " + (", ".join(self._fields) if self._fields else "*")
        sql += f" FROM {self._table}"
        if self._joins:
            sql += " " + " ".join(self._joins)
        if self._where:
            sql += self._where.render("WHERE")
        if self._group_by:
            sql += " GROUP BY " + ", ".join(self._group_by)
        if self._having:
            sql += self._having.render("HAVING")
        if self._order_by:
            sql += " ORDER BY " + ", ".join(self._order_by)
        if self._limit is not None:
            sql += f" LIMIT {self._limit}"
        if self._offset is not None:
            if self._limit is None:
                # SQLite only accepts OFFSET after a LIMIT clause.
                sql += " LIMIT -1"
            sql += f" OFFSET {self._offset}"

        return BuiltStatement(sql=sql, params=self._where.params + self._having.params)

    def _add_join(self, kind: str, table: str, condition: str) -> SelectBuilder:
        self._joins.append(
            f"{kind} {_require_text(table, 'table')} ON {_require_text(condition, 'condition')}"
        )
        return self


class InsertBuilder:
    """Fluent INSERT builder; columns are fixed by the first row added."""

    def __init__(self) -> None:
        self._table = ""
        self._columns: list[str] = []
        self._rows: list[list[SQLValue]] = []
        self._conflict = ""

    def into(self, table: str) -> InsertBuilder:
        self._table = _require_text(table, "table")
        return self

    def value(self, data: Mapping[str, SQLValue]) -> InsertBuilder:
        if not isinstance(data, Mapping) or not data:
            raise ValueError("insert row must be a non-empty mapping")
        if not self._columns:
            self._columns = [_require_text(column, "column") for column in data]
        missing = [column for column in self._columns if column not in data]
        extra = [column for column in data if column not in self._columns]
        if missing or extra:
            raise ValueError(
                f"insert row columns differ from first row: missing={missing} extra={extra}"
            )
        self._rows.append([data[column] for column in self._columns])
        return self

    def values(self, rows: Iterable[Mapping[str, SQLValue]]) -> InsertBuilder:
        for row in rows:
            self.value(row)
        return self

    def on_conflict(self, action: ConflictAction) -> InsertBuilder:
        clause = _CONFLICT_ACTIONS.get(str(action).upper())
        if clause is None:
            raise ValueError(f"conflict action must be IGNORE or REPLACE, got {action!r}")
        self._conflict = clause
        return self

    def build(self) -> BuiltStatement:
        if not self._table:
            raise ValueError("table name is required")
        if not self._columns or not self._rows:
            raise ValueError("at least one row of data is required")

        placeholders = "(" + ", ".join("?" for _ in self._columns) + ")"
        values_clause = ", ".join(placeholders for _ in self._rows)
        verb = f"INSERT {self._conflict} INTO" if self._conflict else "INSERT INTO"
        sql = f"{verb} {self._table} ({', '.join(self._columns)}) VALUES {values_clause}"
        params = [value for row in self._rows for value in row]
        return BuiltStatement(sql=sql, params=params)


class UpdateBuilder:
    """Fluent UPDATE builder."""

    def __init__(self) -> None:
        self._table = ""
        self._assignments: list[str] = []
        self._assignment_params: list[SQLValue] = []
        self._where = _ConditionList()

    def table(self, name: str) -> UpdateBuilder:
        self._table = _require_text(name, "table")
        return self

    def set(self, field_name: str, value: SQLValue) -> UpdateBuilder:
        self._assignments.append(f"{_require_text(field_name, 'field')} = ?")
        self._assignment_params.append(value)
        return self

    def set_data(self, data: Mapping[str, SQLValue]) -> UpdateBuilder:
        for field_name, value in data.items():
            self.set(field_name, value)
        return self

    def where(self, condition: str, *params: SQLValue) -> UpdateBuilder:
        self._where.add(condition, params)
        return self

    def where_equal(self, field_name: str, value: SQLValue) -> UpdateBuilder:
        self._where.add(f"{_require_text(field_name, 'field')} = ?", (value,))
        return self

    def build(self) -> BuiltStatement:
        if not self._table:
            raise ValueError("table name is required")
        if not self._assignments:
            raise ValueError("at least one SET clause is required")

        sql = f"UPDATE {self._table} SET {', '.join(self._assignments)}"
        if self._where:
            sql += self._where.render("WHERE")
        return BuiltStatement(sql=sql, params=self._assignment_params + self._where.params)


class DeleteBuilder:
    """Fluent DELETE builder. Without conditions it deletes every row."""

    def __init__(self) -> None:
        self._table = ""
        self._where = _ConditionList()

    def from_(self, table: str) -> DeleteBuilder:
        self._table = _require_text(table, "table")
        return self

    def where(self, condition: str, *params: SQLValue) -> DeleteBuilder:
        self._where.add(condition, params)
        return self

    def where_equal(self, field_name: str, value: SQLValue) -> DeleteBuilder:
        self._where.add(f"{_require_text(field_name, 'field')} = ?", (value,))
        return self

    def build(self) -> BuiltStatement:
        if not self._table:
            raise ValueError("table name is required")

        sql = f"DELETE FROM {self._table}"
        if self._where:
            sql += self._where.render("WHERE")
        return BuiltStatement(sql=sql, params=self._where.params)


def select(fields: str | Sequence[str] | None = None) -> SelectBuilder:
    builder = SelectBuilder()
    if fields:
        builder.select(fields)
    return builder


def insert() -> InsertBuilder:
    return InsertBuilder()


def update(table: str | None = None) -> UpdateBuilder:
    builder = UpdateBuilder()
    if table is not None:
        builder.table(table)
    return builder


def delete() -> DeleteBuilder:
    return DeleteBuilder()


def _membership(
    field_name: str, values: Sequence[SQLValue], *, negate: bool
) -> tuple[str, list[SQLValue]]:
    name = _require_text(field_name, "field")
    if isinstance(values, (str, bytes)) or not isinstance(values, Iterable):
        raise ValueError("membership values must be a sequence")
    items = list(values)
    if not items:
        # Empty IN () is invalid SQL; render the equivalent constant predicate.
        return ("1 = 1" if negate else "0 = 1"), []
    placeholders = ", ".join("?" for _ in items)
    operator = "NOT IN" if negate else "IN"
    return f"{name} {operator} ({placeholders})", items


def _as_field_list(fields: str | Sequence[str], what: str) -> list[str]:
    if isinstance(fields, str):
        return [_require_text(fields, what)]
    return [_require_text(item, what) for item in fields]


def _require_text(value: object, what: str) -> str:
    if not isinstance(value, str):
        raise ValueError(f"{what} must be a string, got {type(value).__name__}")
    text = value.strip()
    if not text:
        raise ValueError(f"{what} must not be empty")
    return text


def _non_negative_int(value: object, what: str) -> int:
    if isinstance(value, bool) or not isinstance(value, int):
        raise ValueError(f"{what} must be an integer, got {type(value).__name__}")
    if value < 0:
        raise ValueError(f"{what} must be >= 0")
    return value


__all__ = [
    "BuiltStatement",
    "ConflictAction",
    "DeleteBuilder",
    "Direction",
    "InsertBuilder",
    "SelectBuilder",
    "UpdateBuilder",
    "delete",
    "insert",
    "select",
    "update",
]
