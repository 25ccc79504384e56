"""Asyncio binding for AsyncAdaptiveBatchExecutor on top of aiosqlite.

Mirrors adaptive_batching.drivers.sqlite: AiosqliteBatchStatement batches
through ``executemany``, AiosqliteStatement has no batching operations.
Parameter handling is synchronous; compiling and executing are awaited.
"""

from __future__ import annotations

import logging
import sqlite3
from collections.abc import Iterable
from pathlib import Path
from typing import Any, Self

import aiosqlite

from adaptive_batching.drivers.sqlite import is_batchable_sql

logger = logging.getLogger(__name__)


class AiosqliteTransaction:
    """Explicit transaction on an autocommit aiosqlite connection."""

    def __init__(self, connection: aiosqlite.Connection) -> None:
        self._connection = connection
        self._active = False

    @property
    def is_active(self) -> bool:
        """Whether BEGIN has been issued and not yet committed or rolled back."""
        return self._active

    async def begin(self) -> None:
        """Start the transaction. Does nothing if it is already active."""
        if self._active:
            return
        await self._connection.execute("BEGIN")
        self._active = True

    def enlist(self, statement: Any) -> None:
        """Make ``statement`` part of this transaction.

        Raises:
            sqlite3.ProgrammingError: If the statement is attached to another connection.
        """
        if statement.connection is not self._connection:
            raise sqlite3.ProgrammingError(
                "Statement must be attached to the transaction's connection before enlisting"
            )
        statement.transaction = self if self._active else None

    async def commit(self) -> None:
        """Commit the transaction."""
        if not self._active:
            return
        await self._connection.execute("COMMIT")
        self._active = False

    async def rollback(self) -> None:
        """Roll back the transaction."""
        if not self._active:
            return
        await self._connection.execute("ROLLBACK")
        self._active = False


class AiosqliteStatement:
    """An async write statement without native batching support.

    Args:
        sql: Statement text using ``?`` placeholders.
        parameters: Positional parameter values.
    """

    def __init__(self, sql: str, parameters: Iterable[Any] = ()) -> None:
        self.sql = sql
        self.parameters: list[Any] = list(parameters)
        self.connection: aiosqlite.Connection | None = None
        self.transaction: AiosqliteTransaction | None = None
        self._prepared_on: aiosqlite.Connection | None = None

    def __repr__(self) -> str:
        return f"{type(self).__name__}({self.sql!r}, {self.parameters!r})"

    @property
    def is_prepared(self) -> bool:
        """Whether the statement has been compiled on its current connection."""
        return self._prepared_on is not None and self._prepared_on is self.connection

    async def prepare(self) -> None:
        """Compile the statement on its connection without running it."""
        connection = self._require_connection()
        if self.is_prepared:
            return
        cursor = await connection.execute(f"EXPLAIN {self.sql}", self._first_parameter_set())
        await cursor.close()
        self._prepared_on = connection

    async def execute_non_query(self) -> int:
        """Execute the statement once and return the affected-row count."""
        connection = self._require_connection()
        cursor = await connection.execute(self.sql, tuple(self.parameters))
        try:
            if cursor.description is not None:
                await cursor.fetchall()
            return cursor.rowcount
        finally:
            await cursor.close()

    def _first_parameter_set(self) -> tuple[Any, ...]:
        return tuple(self.parameters)

    def _require_connection(self) -> aiosqlite.Connection:
        if self.connection is None:
            raise sqlite3.ProgrammingError("Statement is not attached to a connection")
        return self.connection


class AiosqliteBatchStatement(AiosqliteStatement):
    """An async write statement that batches parameter sets through ``executemany``."""

    def __init__(self, sql: str, parameters: Iterable[Any] = ()) -> None:
        super().__init__(sql, parameters)
        self._batch_rows: list[tuple[Any, ...]] = []
        self._batched_through = 0

    @property
    def batch_rows(self) -> list[tuple[Any, ...]]:
        """Parameter sets collected so far."""
        return list(self._batch_rows)

    def add_batch(self) -> None:
        """Commit the parameters appended since the last call as one parameter set."""
        row = tuple(self.parameters[self._batched_through :])
        if self._batch_rows and len(row) != len(self._batch_rows[0]):
            raise sqlite3.ProgrammingError(
                f"Parameter set has {len(row)} values, batch expects {len(self._batch_rows[0])}"
            )
        self._batch_rows.append(row)
        self._batched_through = len(self.parameters)

    def is_valid_for_batching(self) -> bool:
        """Whether this prepared statement may be batched."""
        if not self.is_prepared:
            return False
        return is_batchable_sql(self.sql)

    async def execute_non_query(self) -> int:
        """Execute every collected parameter set, or the statement once if there are none."""
        if not self._batch_rows:
            return await super().execute_non_query()
        if self._batched_through != len(self.parameters):
            raise sqlite3.ProgrammingError("Parameters were added after the last add_batch()")

        connection = self._require_connection()
        try:
            cursor = await connection.executemany(self.sql, self._batch_rows)
            try:
                return cursor.rowcount
            finally:
                await cursor.close()
        finally:
            self.clear_batch()

    def clear_batch(self) -> None:
        """Drop every collected parameter set."""
        self._batch_rows.clear()
        self.parameters.clear()
        self._batched_through = 0

    def _first_parameter_set(self) -> tuple[Any, ...]:
        if self._batch_rows:
            return self._batch_rows[0]
        return tuple(self.parameters[self._batched_through :])


class AiosqliteConnectionProvider:
    """Lends one aiosqlite connection and its current transaction to an executor.

    Args:
        database: Database file path, or ":memory:".
        native_batching: Create AiosqliteBatchStatement (True) or plain
            AiosqliteStatement (False) from ``create_statement``.

    Example:
        ```python
        async with AiosqliteConnectionProvider("app.db") as provider:
            await provider.begin()
            async with AsyncAdaptiveBatchExecutor(provider) as executor:
                statement = provider.create_statement("DELETE FROM users WHERE id = ?", [7])
                await executor.add_to_batch(statement, expected_row_count=1)
            await provider.commit()
        ```
    """

    def __init__(self, database: str | Path = ":memory:", native_batching: bool = True) -> None:
        self._database = database
        self._native_batching = native_batching
        self._connection: aiosqlite.Connection | None = None
        self._transaction: AiosqliteTransaction | None = None
        self._readers: list[aiosqlite.Cursor] = []

    async def __aenter__(self) -> Self:
        await self.get_connection()
        return self

    async def __aexit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        await self.close()

    @property
    def native_batching(self) -> bool:
        """Whether created statements support native batching."""
        return self._native_batching

    @property
    def transaction(self) -> AiosqliteTransaction:
        """The current transaction, replaced after every commit or rollback.

        Raises:
            RuntimeError: If the connection has not been opened yet.
        """
        if self._connection is None:
            raise RuntimeError("Database connection not open")
        if self._transaction is None:
            self._transaction = AiosqliteTransaction(self._connection)
        return self._transaction

    async def get_connection(self) -> aiosqlite.Connection:
        """Return the session connection, opening it on first use."""
        if self._connection is None:
            self._connection = await aiosqlite.connect(self._database, isolation_level=None)
            await self._connection.execute("PRAGMA foreign_keys = ON")
            logger.debug("Opened aiosqlite connection to %s", self._database)
        return self._connection

    def create_statement(
        self, sql: str, parameters: Iterable[Any] = ()
    ) -> AiosqliteStatement | AiosqliteBatchStatement:
        """Create an unattached statement of the configured flavour."""
        if self._native_batching:
            return AiosqliteBatchStatement(sql, parameters)
        return AiosqliteStatement(sql, parameters)

    async def begin(self) -> AiosqliteTransaction:
        """Begin the current transaction and return it."""
        await self.get_connection()
        transaction = self.transaction
        await transaction.begin()
        return transaction

    async def commit(self) -> None:
        """Commit the current transaction; the next one is a new object."""
        if self._transaction is not None:
            await self._transaction.commit()
            self._transaction = None

    async def rollback(self) -> None:
        """Roll back the current transaction; the next one is a new object."""
        if self._transaction is not None:
            await self._transaction.rollback()
            self._transaction = None

    async def open_reader(self, sql: str, parameters: Iterable[Any] = ()) -> aiosqlite.Cursor:
        """Run a query and keep its cursor registered until ``close_readers()``."""
        connection = await self.get_connection()
        cursor = await connection.execute(sql, tuple(parameters))
        self._readers.append(cursor)
        return cursor

    async def close_readers(self) -> None:
        """Close every cursor opened through ``open_reader``."""
        while self._readers:
            await self._readers.pop().close()

    async def close(self) -> None:
        """Close readers, roll back any open transaction and close the connection."""
        await self.close_readers()
        await self.rollback()
        if self._connection is not None:
            await self._connection.close()
            self._connection = None
