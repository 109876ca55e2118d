"""
storekeeper: query execution facade and transactional units.

File: src/storekeeper/persistence/facade.py

Purpose
- Run positional-parameter SQL through the prepared-statement cache inside the
  owner's critical section and turn results into plain values.

Functional requirements
- Every call holds the owner's lock for its duration, except calls made while
  a transaction of the same owner is active in the current task context,
  which join that transaction instead of waiting on the lock.
- ``transaction`` commits when the callable returns and rolls back on any
  failure or cancellation; a second ``transaction`` in the same context fails
  fast.
- Events and errors carry the SQL identity, never parameter values.
"""

from __future__ import annotations

import asyncio
import contextvars
import inspect
import sqlite3
from collections.abc import Awaitable, Callable, Iterable, Mapping
from typing import Any, Protocol, TypeVar

from storekeeper.domain.events import StoreEventType, error_payload
from storekeeper.domain.models import ExecuteResult
from storekeeper.domain.values import Row, value_tag
from storekeeper.errors import QueryError, StoreError, TransactionError, query_error_from
from storekeeper.persistence.statements import PreparedStatement, PreparedStatementCache
from storekeeper.sql.text import sql_identity

T = TypeVar("T")

TransactionBody = Callable[["Transaction"], Awaitable[T] | T]

_ACTIVE_TRANSACTIONS: contextvars.ContextVar[tuple[Transaction, ...]] = contextvars.ContextVar(
    "storekeeper_active_transactions", default=()
)


class HandleOwner(Protocol):
    """What the facade needs from the object that owns the connection."""

    @property
    def lock(self) -> asyncio.Lock: ...

    def checkout(self, operation: str) -> PreparedStatementCache: ...

    async def run(self, fn: Callable[..., T], /, *args: Any) -> T: ...

    def emit(self, event_type: StoreEventType, payload: Mapping[str, object]) -> None: ...


class Transaction:
    """Handle passed to a transactional callable; valid only while it runs."""

    def __init__(self, facade: QueryFacade) -> None:
        self._facade = facade
        self._active = True

    @property
    def active(self) -> bool:
        return self._active

    async def query(self, sql: str, params: object = ()) -> list[Row]:
        self._ensure_active()
        return await self._facade._query(sql, params, joined=True)

    async def query_one(self, sql: str, params: object = ()) -> Row | None:
        self._ensure_active()
        return await self._facade._query_one(sql, params, joined=True)

    async def execute(self, sql: str, params: object = ()) -> ExecuteResult:
        self._ensure_active()
        return await self._facade._execute(sql, params, joined=True)

    async def execute_many(self, sql: str, rows: Iterable[object]) -> ExecuteResult:
        self._ensure_active()
        return await self._facade._execute_many(sql, rows, joined=True)

    def _close(self) -> None:
        self._active = False

    def _ensure_active(self) -> None:
        if not self._active:
            raise TransactionError("transaction is no longer active", rolled_back=False)


class QueryFacade:
    def __init__(self, owner: HandleOwner) -> None:
        self._owner = owner

    def active_transaction(self) -> Transaction | None:
        for transaction in _ACTIVE_TRANSACTIONS.get():
            if transaction._facade is self and transaction.active:
                return transaction
        return None

    async def query(self, sql: str, params: object = ()) -> list[Row]:
        """All result rows as dicts; an empty list is a normal outcome."""

        return await self._query(sql, params, joined=self.active_transaction() is not None)

    async def query_one(self, sql: str, params: object = ()) -> Row | None:
        """First row in engine order, or ``None`` when there is none."""

        return await self._query_one(sql, params, joined=self.active_transaction() is not None)

    async def execute(self, sql: str, params: object = ()) -> ExecuteResult:
        return await self._execute(sql, params, joined=self.active_transaction() is not None)

    async def execute_many(self, sql: str, rows: Iterable[object]) -> ExecuteResult:
        """Run ``sql`` once per parameter set; atomic unless already inside a transaction."""

        return await self._execute_many(sql, rows, joined=self.active_transaction() is not None)

    async def transaction(self, fn: TransactionBody[T], *, immediate: bool = True) -> T:
        """Run ``fn(tx)`` as one unit of work and return its result after COMMIT.

        Failures roll back and raise ``TransactionError`` chained to the
        original exception; cancellation rolls back and propagates unchanged.
        """

        if self.active_transaction() is not None:
            raise TransactionError(
                "a transaction is already active for this store in the current task",
                rolled_back=False,
            )
        cache = self._owner.checkout("transaction")
        conn = cache.connection

        async with self._owner.lock:
            try:
                await self._owner.run(_begin, conn, immediate)
            except QueryError as exc:
                raise TransactionError(
                    f"unable to begin transaction: {exc}", rolled_back=False
                ) from exc
            transaction = Transaction(self)
            token = _ACTIVE_TRANSACTIONS.set((*_ACTIVE_TRANSACTIONS.get(), transaction))
            try:
                outcome = fn(transaction)
                if inspect.isawaitable(outcome):
                    outcome = await outcome
            except Exception as exc:
                transaction._close()
                await self._rollback(conn, exc)
                error = TransactionError(f"transaction rolled back: {exc}", rolled_back=True)
                self._owner.emit(
                    StoreEventType.ERROR, error_payload(error, operation="transaction")
                )
                raise error from exc
            except BaseException as exc:
                transaction._close()
                await self._rollback(conn, exc)
                raise
            finally:
                _ACTIVE_TRANSACTIONS.reset(token)

            transaction._close()
            try:
                await self._owner.run(_commit, conn)
            except QueryError as exc:
                await self._rollback(conn, exc)
                error = TransactionError(f"commit failed: {exc}", rolled_back=True)
                self._owner.emit(
                    StoreEventType.ERROR, error_payload(error, operation="transaction")
                )
                raise error from exc
            return outcome

    async def _query(self, sql: str, params: object, *, joined: bool) -> list[Row]:
        cache = self._owner.checkout("query")
        rows = await self._perform("query", sql, joined, _fetch_all, cache, sql, params)
        self._emit_query("query", sql, params, row_count=len(rows))
        return rows

    async def _query_one(self, sql: str, params: object, *, joined: bool) -> Row | None:
        cache = self._owner.checkout("query_one")
        row = await self._perform("query_one", sql, joined, _fetch_one, cache, sql, params)
        self._emit_query("query_one", sql, params, row_count=0 if row is None else 1)
        return row

    async def _execute(self, sql: str, params: object, *, joined: bool) -> ExecuteResult:
        cache = self._owner.checkout("execute")
        result = await self._perform("execute", sql, joined, _execute, cache, sql, params)
        self._emit_query("execute", sql, params, rows_affected=result.rows_affected)
        return result

    async def _execute_many(
        self, sql: str, rows: Iterable[object], *, joined: bool
    ) -> ExecuteResult:
        cache = self._owner.checkout("execute_many")
        batch = list(rows)
        result = await self._perform(
            "execute_many", sql, joined, _execute_many, cache, sql, batch, not joined
        )
        self._owner.emit(
            StoreEventType.QUERY,
            {
                "operation": "execute_many",
                "sql": sql_identity(sql),
                "batch_size": len(batch),
                "rows_affected": result.rows_affected,
            },
        )
        return result

    async def _perform(
        self,
        operation: str,
        sql: str,
        joined: bool,
        fn: Callable[..., T],
        /,
        *args: Any,
    ) -> T:
        try:
            if joined:
                return await self._owner.run(fn, *args)
            async with self._owner.lock:
                return await self._owner.run(fn, *args)
        except StoreError as exc:
            extra: dict[str, object] = {}
            if isinstance(exc, QueryError):
                extra["error_kind"] = exc.error_kind
            else:
                extra["sql"] = sql_identity(sql)
            self._owner.emit(StoreEventType.ERROR, error_payload(exc, operation=operation, **extra))
            raise

    async def _rollback(self, conn: sqlite3.Connection, cause: BaseException) -> None:
        try:
            await self._owner.run(_rollback, conn)
        except sqlite3.Error as exc:
            cause.add_note(f"rollback failed: {exc}")
            self._owner.emit(StoreEventType.ERROR, error_payload(exc, operation="rollback"))

    def _emit_query(self, operation: str, sql: str, params: object, **counts: int) -> None:
        values = params if isinstance(params, (list, tuple)) else ()
        self._owner.emit(
            StoreEventType.QUERY,
            {
                "operation": operation,
                "sql": sql_identity(sql),
                "param_count": len(values),
                "param_types": [value_tag(value) for value in values],
                **counts,
            },
        )


def _run_statement(
    cache: PreparedStatementCache, sql: str, params: object, operation: str
) -> tuple[PreparedStatement, sqlite3.Cursor]:
    statement = cache.prepare(sql, operation=operation)
    return statement, statement.run(params, operation=operation)


def _fetch_all(cache: PreparedStatementCache, sql: str, params: object) -> list[Row]:
    _, cursor = _run_statement(cache, sql, params, "query")
    try:
        return [dict(row) for row in cursor.fetchall()]
    except sqlite3.Error as exc:
        raise query_error_from(exc, sql=sql, operation="query") from exc
    finally:
        cursor.close()


def _fetch_one(cache: PreparedStatementCache, sql: str, params: object) -> Row | None:
    _, cursor = _run_statement(cache, sql, params, "query_one")
    try:
        row = cursor.fetchone()
    except sqlite3.Error as exc:
        raise query_error_from(exc, sql=sql, operation="query_one") from exc
    finally:
        cursor.close()
    return None if row is None else dict(row)


def _execute(cache: PreparedStatementCache, sql: str, params: object) -> ExecuteResult:
    statement, cursor = _run_statement(cache, sql, params, "execute")
    try:
        rows_affected = max(cursor.rowcount, 0)
        inserted_id = cursor.lastrowid if statement.is_insert and rows_affected > 0 else None
    finally:
        cursor.close()
    return ExecuteResult(rows_affected=rows_affected, inserted_id=inserted_id)


def _execute_many(
    cache: PreparedStatementCache, sql: str, rows: list[object], own_transaction: bool
) -> ExecuteResult:
    statement = cache.prepare(sql, operation="execute_many")
    conn = cache.connection
    begin = own_transaction and not conn.in_transaction
    if begin:
        _begin(conn, True)
    try:
        cursor = statement.run_many(rows, operation="execute_many")
        try:
            rows_affected = max(cursor.rowcount, 0)
        finally:
            cursor.close()
        if begin:
            # Deferred constraints surface here, after every row ran.
            _commit(conn)
    except BaseException:
        if begin:
            _rollback(conn)
        raise
    return ExecuteResult(rows_affected=rows_affected, inserted_id=None)


def _begin(conn: sqlite3.Connection, immediate: bool) -> None:
    sql = "BEGIN IMMEDIATE" if immediate else "BEGIN"
    try:
        conn.execute(sql)
    except sqlite3.Error as exc:
        raise query_error_from(exc, sql=sql, operation="begin") from exc


def _commit(conn: sqlite3.Connection) -> None:
    try:
        conn.execute("COMMIT")
    except sqlite3.Error as exc:
        raise query_error_from(exc, sql="COMMIT", operation="commit") from exc


def _rollback(conn: sqlite3.Connection) -> None:
    if conn.in_transaction:
        conn.execute("ROLLBACK")


__all__ = ["HandleOwner", "QueryFacade", "Transaction", "TransactionBody"]
