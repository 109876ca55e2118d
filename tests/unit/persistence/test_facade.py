"""
storekeeper: unit tests for queries and transactions

File: tests/unit/persistence/test_facade.py

Purpose
- Validate query results, write results, transactional atomicity and the
  events emitted for each operation.

What this test file should cover
- query returns dict rows; query_one returns None on zero rows.
- execute reports rows affected and the inserted row id.
- A failing transaction leaves none of its writes visible.
- Nested transactions fail fast; calls inside a transaction join it.
"""

from __future__ import annotations

import asyncio
from typing import TYPE_CHECKING

import pytest

from storekeeper.errors import NotConnectedError, QueryError, TransactionError
from storekeeper.persistence.facade import Transaction
from storekeeper.persistence.manager import StoreManager

from . import EventRecorder, file_config, make_migrations

if TYPE_CHECKING:
    from collections.abc import AsyncIterator
    from pathlib import Path


@pytest.fixture
async def store(tmp_path: Path) -> AsyncIterator[StoreManager]:
    manager = StoreManager(file_config(tmp_path), make_migrations())
    await manager.connect()
    yield manager
    await manager.disconnect()


async def _add_user(store: StoreManager, name: str, age: int | None = None) -> int:
    result = await store.execute("INSERT INTO users (name, age) VALUES (?, ?)", [name, age])
    assert result.inserted_id is not None
    return result.inserted_id


async def test_query_returns_rows_as_dicts(store: StoreManager) -> None:
    await _add_user(store, "ada", 36)
    await _add_user(store, "bob")

    rows = await store.query("SELECT name, age FROM users ORDER BY name")

    assert rows == [{"name": "ada", "age": 36}, {"name": "bob", "age": None}]
    assert await store.query("SELECT * FROM users WHERE age > ?", [100]) == []


async def test_query_one_returns_first_row_or_none(store: StoreManager) -> None:
    await _add_user(store, "ada", 36)

    assert await store.query_one("SELECT name FROM users WHERE age = ?", [36]) == {"name": "ada"}
    assert await store.query_one("SELECT name FROM users WHERE age = ?", [99]) is None


async def test_execute_reports_rows_affected_and_inserted_id(store: StoreManager) -> None:
    first = await store.execute("INSERT INTO users (name) VALUES (?)", ["a"])
    second = await store.execute("INSERT INTO users (name) VALUES (?)", ["b"])
    updated = await store.execute("UPDATE users SET age = ?", [5])
    ignored = await store.execute("INSERT OR IGNORE INTO users (name) VALUES (?)", ["a"])

    assert (first.rows_affected, first.inserted_id) == (1, 1)
    assert second.inserted_id == 2
    assert (updated.rows_affected, updated.inserted_id) == (2, None)
    assert (ignored.rows_affected, ignored.inserted_id) == (0, None)


async def test_execute_many_is_atomic(store: StoreManager) -> None:
    result = await store.execute_many(
        "INSERT INTO users (name) VALUES (?)", [["a"], ["b"], ["c"]]
    )
    assert result.rows_affected == 3

    with pytest.raises(QueryError) as exc_info:
        await store.execute_many("INSERT INTO users (name) VALUES (?)", [["d"], ["a"]])

    assert exc_info.value.error_kind == "constraint"
    rows = await store.query("SELECT name FROM users ORDER BY name")
    assert [row["name"] for row in rows] == ["a", "b", "c"]


async def test_execute_many_rolls_back_when_commit_fails(store: StoreManager) -> None:
    await store.execute("CREATE TABLE parents (id INTEGER PRIMARY KEY)")
    await store.execute(
        "CREATE TABLE children ("
        " parent_id INTEGER REFERENCES parents(id) DEFERRABLE INITIALLY DEFERRED)"
    )

    with pytest.raises(QueryError) as exc_info:
        await store.execute_many("INSERT INTO children (parent_id) VALUES (?)", [[1], [2]])

    assert exc_info.value.error_kind == "constraint"
    assert await store.query("SELECT * FROM children") == []

    async def body(tx: Transaction) -> None:
        await tx.execute("INSERT INTO parents (id) VALUES (?)", [1])
        await tx.execute("INSERT INTO children (parent_id) VALUES (?)", [1])

    await store.transaction(body)
    assert await store.query("SELECT parent_id FROM children") == [{"parent_id": 1}]


async def test_transaction_commits_and_returns_value(store: StoreManager) -> None:
    async def body(tx: Transaction) -> int:
        user_id = (await tx.execute("INSERT INTO users (name) VALUES (?)", ["ada"])).inserted_id
        await tx.execute("INSERT INTO posts (user_id, body) VALUES (?, ?)", [user_id, "hi"])
        row = await tx.query_one("SELECT COUNT(*) AS n FROM posts")
        assert row == {"n": 1}
        return int(user_id or 0)

    user_id = await store.transaction(body)

    assert user_id == 1
    assert await store.query("SELECT body FROM posts") == [{"body": "hi"}]


async def test_failed_transaction_leaves_no_writes_visible(store: StoreManager) -> None:
    recorder = EventRecorder(store.events)

    async def body(tx: Transaction) -> None:
        await tx.execute("INSERT INTO users (name) VALUES (?)", ["ada"])
        await tx.execute("INSERT INTO users (name) VALUES (?)", ["bob"])
        raise RuntimeError("abort")

    with pytest.raises(TransactionError) as exc_info:
        await store.transaction(body)

    assert exc_info.value.rolled_back is True
    assert isinstance(exc_info.value.__cause__, RuntimeError)
    assert await store.query("SELECT * FROM users") == []
    errors = recorder.of_type("error")
    assert errors[-1].payload["operation"] == "transaction"


async def test_query_error_inside_transaction_is_wrapped(store: StoreManager) -> None:
    async def body(tx: Transaction) -> None:
        await tx.execute("INSERT INTO users (name) VALUES (?)", ["ada"])
        await tx.execute("INSERT INTO users (name) VALUES (?)", ["ada"])

    with pytest.raises(TransactionError) as exc_info:
        await store.transaction(body)

    cause = exc_info.value.__cause__
    assert isinstance(cause, QueryError)
    assert cause.error_kind == "constraint"
    assert await store.query("SELECT * FROM users") == []


async def test_nested_transaction_fails_fast(store: StoreManager) -> None:
    async def inner(tx: Transaction) -> None:
        await tx.execute("INSERT INTO users (name) VALUES (?)", ["never"])

    async def outer(tx: Transaction) -> None:
        await tx.execute("INSERT INTO users (name) VALUES (?)", ["ada"])
        await store.transaction(inner)

    with pytest.raises(TransactionError) as exc_info:
        await store.transaction(outer)

    nested = exc_info.value.__cause__
    assert isinstance(nested, TransactionError)
    assert nested.rolled_back is False
    assert "already active" in str(nested)
    assert await store.query("SELECT * FROM users") == []


async def test_manager_calls_inside_a_transaction_join_it(store: StoreManager) -> None:
    async def body(tx: Transaction) -> int:
        await tx.execute("INSERT INTO users (name) VALUES (?)", ["ada"])
        await store.execute("INSERT INTO users (name) VALUES (?)", ["bob"])
        rows = await store.query("SELECT name FROM users ORDER BY name")
        return len(rows)

    assert await asyncio.wait_for(store.transaction(body), timeout=5) == 2


async def test_synchronous_transaction_body_is_supported(store: StoreManager) -> None:
    assert await store.transaction(lambda tx: "plain value") == "plain value"


async def test_transaction_handle_is_invalid_after_commit(store: StoreManager) -> None:
    captured: list[Transaction] = []

    async def body(tx: Transaction) -> None:
        captured.append(tx)

    await store.transaction(body)

    assert captured[0].active is False
    with pytest.raises(TransactionError, match="no longer active"):
        await captured[0].query("SELECT 1")


async def test_cancelled_transaction_rolls_back(store: StoreManager) -> None:
    started = asyncio.Event()

    async def body(tx: Transaction) -> None:
        await tx.execute("INSERT INTO users (name) VALUES (?)", ["ada"])
        started.set()
        await asyncio.Event().wait()

    task = asyncio.create_task(store.transaction(body))
    await started.wait()
    task.cancel()
    with pytest.raises(asyncio.CancelledError):
        await task

    assert await store.query("SELECT * FROM users") == []


async def test_concurrent_calls_are_serialized(store: StoreManager) -> None:
    await asyncio.gather(
        *(store.execute("INSERT INTO users (name) VALUES (?)", [f"u{i}"]) for i in range(25))
    )

    row = await store.query_one("SELECT COUNT(*) AS n FROM users")
    assert row == {"n": 25}


async def test_query_events_carry_sql_identity_and_counts(store: StoreManager) -> None:
    recorder = EventRecorder(store.events)

    await store.execute("INSERT INTO users (name, age) VALUES (?, ?)", ["secret-name", 36])
    await store.query("SELECT * FROM users")

    queries = recorder.of_type("query")
    assert [event.payload["operation"] for event in queries] == ["execute", "query"]
    assert queries[0].payload["param_count"] == 2
    assert queries[0].payload["param_types"] == ["text", "integer"]
    assert queries[0].payload["rows_affected"] == 1
    assert queries[1].payload["row_count"] == 1
    assert str(queries[0].payload["sql"]).startswith("INSERT INTO users")
    assert "secret-name" not in str(queries[0].payload)


async def test_failed_query_emits_error_event(store: StoreManager) -> None:
    recorder = EventRecorder(store.events)

    with pytest.raises(QueryError):
        await store.query("SELECT * FROM missing")

    (event,) = recorder.of_type("error")
    assert event.payload["operation"] == "query"
    assert event.payload["error_kind"] == "syntax"
    assert str(event.payload["sql"]).startswith("SELECT * FROM missing")


async def test_statement_cache_reuses_entries(store: StoreManager) -> None:
    before = store.prepared_statement_count
    for name in ("a", "b", "c"):
        await store.execute("INSERT INTO users (name) VALUES (?)", [name])

    assert store.prepared_statement_count == before + 1


async def test_statement_cache_keeps_entries_until_disconnect(store: StoreManager) -> None:
    before = store.prepared_statement_count
    for _ in range(2):
        with pytest.raises(QueryError):
            await store.query("SELECT * FROM missing")

    assert store.prepared_statement_count == before + 1


async def test_operations_require_a_connection(tmp_path: Path) -> None:
    manager = StoreManager(file_config(tmp_path))

    with pytest.raises(NotConnectedError):
        await manager.query("SELECT 1")
    with pytest.raises(NotConnectedError):
        await manager.transaction(lambda tx: None)
