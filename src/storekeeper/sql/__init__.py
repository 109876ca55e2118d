"""SQL text utilities and statement builders (pure, no I/O)."""

from storekeeper.sql.text import (
    PlaceholderError,
    count_placeholders,
    escape_id,
    split_statements,
    sql_identity,
)
from storekeeper.sql.builder import (  # noqa: I001
    BuiltStatement,
    DeleteBuilder,
    InsertBuilder,
    SelectBuilder,
    UpdateBuilder,
    delete,
    insert,
    select,
    update,
)

__all__ = [
    "BuiltStatement",
    "DeleteBuilder",
    "InsertBuilder",
    "PlaceholderError",
    "SelectBuilder",
    "UpdateBuilder",
    "count_placeholders",
    "delete",
    "escape_id",
    "insert",
    "select",
    "split_statements",
    "sql_identity",
    "update",
]
