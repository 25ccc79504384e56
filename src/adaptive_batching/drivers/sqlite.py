"""Blocking sqlite3 binding for AdaptiveBatchExecutor.

Two statement flavours are provided so the same executor can run against a
driver with and without native batching:

- SqliteBatchStatement collects one parameter set per ``add_batch()`` call and
  sends them all through ``executemany`` in one call.
- SqliteStatement has no batching operations at all, the way older driver
  versions behave. An executor probing it falls back to immediate execution
  for good.

Connections are opened in autocommit mode (``isolation_level=None``) and
transactions are driven explicitly with BEGIN/COMMIT/ROLLBACK.
"""

from __future__ import annotations

import logging
import re
import sqlite3
from collections.abc import Iterable
from pathlib import Path
from typing import Any, Self

logger = logging.getLogger(__name__)

_DML = re.compile(r"^\s*(INSERT|UPDATE|DELETE|REPLACE)\b", re.IGNORECASE)
_RETURNING = re.compile(r"\bRETURNING\b", re.IGNORECASE)


def is_batchable_sql(sql: str) -> bool:
    """Whether ``sql`` is a write whose parameter sets can go through ``executemany``.

    Statements with a RETURNING clause produce rows per parameter set, which
    ``executemany`` cannot hand back, so they are not batchable.
    """
    return bool(_DML.match(sql)) and not _RETURNING.search(sql)


class SqliteTransaction:
    """Explicit transaction on an autocommit sqlite3 connection.

    Args:
        connection: The connection the transaction runs on.
    """

    def __init__(self, connection: sqlite3.Connection) -> None:
        self._connection = connection
        self._active = False

    @property
    def is_active(self) -> bool:
        """Whether BEGIN has been issued and not yet committed or rolled back."""
        return self._active

    def begin(self) -> None:
        """Start the transaction. Does nothing if it is already active."""
        if self._active:
            return
        self._connection.execute("BEGIN")
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

    def commit(self) -> None:
        """Commit the transaction."""
        if not self._active:
            return
        self._connection.execute("COMMIT")
        self._active = False

    def rollback(self) -> None:
        """Roll back the transaction."""
        if not self._active:
            return
        self._connection.execute("ROLLBACK")
        self._active = False


class SqliteStatement:
    """A write statement without native batching support.

    Args:
        sql: Statement text using ``?`` placeholders.
        parameters: Positional parameter values.
    """

    def __init__(self, sql: str, parameters: Iterable[Any] = ()) -> None:
        self.sql = sql
        self.parameters: list[Any] = list(parameters)
        self.connection: sqlite3.Connection | None = None
        self.transaction: SqliteTransaction | None = None
        self._prepared_on: sqlite3.Connection | None = None

    def __repr__(self) -> str:
        return f"{type(self).__name__}({self.sql!r}, {self.parameters!r})"

    @property
    def is_prepared(self) -> bool:
        """Whether the statement has been compiled on its current connection."""
        return self._prepared_on is not None and self._prepared_on is self.connection

    def prepare(self) -> None:
        """Compile the statement on its connection without running it.

        Raises:
            sqlite3.ProgrammingError: If the statement has no connection.
            sqlite3.OperationalError: If SQLite rejects the statement.
        """
        connection = self._require_connection()
        if self.is_prepared:
            return
        connection.execute(f"EXPLAIN {self.sql}", self._first_parameter_set()).close()
        self._prepared_on = connection

    def execute_non_query(self) -> int:
        """Execute the statement once and return the affected-row count."""
        connection = self._require_connection()
        cursor = connection.execute(self.sql, tuple(self.parameters))
        try:
            if cursor.description is not None:
                cursor.fetchall()
            return cursor.rowcount
        finally:
            cursor.close()

    def _first_parameter_set(self) -> tuple[Any, ...]:
        return tuple(self.parameters)

    def _require_connection(self) -> sqlite3.Connection:
        if self.connection is None:
            raise sqlite3.ProgrammingError("Statement is not attached to a connection")
        return self.connection


class SqliteBatchStatement(SqliteStatement):
    """A write statement that batches parameter sets through ``executemany``.

    Every ``add_batch()`` call turns the parameters appended since the previous
    call into one parameter set. Executing a statement holding parameter sets
    sends all of them in one call and reports the summed row count.
    """

    def __init__(self, sql: str, parameters: Iterable[Any] = ()) -> None:
        super().__init__(sql, parameters)
        self._batch_rows: list[tuple[Any, ...]] = []
        self._batched_through = 0

    @property
    def batch_rows(self) -> list[tuple[Any, ...]]:
        """Parameter sets collected so far."""
        return list(self._batch_rows)

    def add_batch(self) -> None:
        """Commit the parameters appended since the last call as one parameter set.

        Raises:
            sqlite3.ProgrammingError: If the set's width differs from earlier sets.
        """
        row = tuple(self.parameters[self._batched_through :])
        if self._batch_rows and len(row) != len(self._batch_rows[0]):
            raise sqlite3.ProgrammingError(
                f"Parameter set has {len(row)} values, batch expects {len(self._batch_rows[0])}"
            )
        self._batch_rows.append(row)
        self._batched_through = len(self.parameters)

    def is_valid_for_batching(self) -> bool:
        """Whether this prepared statement may be batched.

        Unprepared statements always answer False.
        """
        if not self.is_prepared:
            return False
        return is_batchable_sql(self.sql)

    def execute_non_query(self) -> int:
        """Execute every collected parameter set, or the statement once if there are none.

        Raises:
            sqlite3.ProgrammingError: If parameters were appended after the last
                ``add_batch()`` call.
        """
        if not self._batch_rows:
            return super().execute_non_query()
        if self._batched_through != len(self.parameters):
            raise sqlite3.ProgrammingError("Parameters were added after the last add_batch()")

        connection = self._require_connection()
        try:
            cursor = connection.executemany(self.sql, self._batch_rows)
            try:
                return cursor.rowcount
            finally:
                cursor.close()
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


class SqliteConnectionProvider:
    """Lends one sqlite3 connection and its current transaction to an executor.

    Args:
        database: Database file path, or ":memory:".
        native_batching: Create SqliteBatchStatement (True) or plain
            SqliteStatement (False) from ``create_statement``.

    Example:
        ```python
        with SqliteConnectionProvider("app.db") as provider:
            provider.begin()
            with AdaptiveBatchExecutor(provider) as executor:
                for name in names:
                    statement = provider.create_statement(
                        "INSERT INTO users (name) VALUES (?)", [name]
                    )
                    executor.add_to_batch(statement, expected_row_count=1)
            provider.commit()
        ```
    """

    def __init__(self, database: str | Path = ":memory:", native_batching: bool = True) -> None:
        self._database = database
        self._native_batching = native_batching
        self._connection: sqlite3.Connection | None = None
        self._transaction: SqliteTransaction | None = None
        self._readers: list[sqlite3.Cursor] = []

    def __enter__(self) -> Self:
        self.get_connection()
        return self

    def __exit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        self.close()

    @property
    def native_batching(self) -> bool:
        """Whether created statements support native batching."""
        return self._native_batching

    @property
    def transaction(self) -> SqliteTransaction:
        """The current transaction, replaced after every commit or rollback."""
        if self._transaction is None:
            self._transaction = SqliteTransaction(self.get_connection())
        return self._transaction

    def get_connection(self) -> sqlite3.Connection:
        """Return the session connection, opening it on first use."""
        if self._connection is None:
            self._connection = sqlite3.connect(self._database, isolation_level=None)
            self._connection.execute("PRAGMA foreign_keys = ON")
            logger.debug("Opened sqlite connection to %s", self._database)
        return self._connection

    def create_statement(
        self, sql: str, parameters: Iterable[Any] = ()
    ) -> SqliteStatement | SqliteBatchStatement:
        """Create an unattached statement of the configured flavour."""
        if self._native_batching:
            return SqliteBatchStatement(sql, parameters)
        return SqliteStatement(sql, parameters)

    def begin(self) -> SqliteTransaction:
        """Begin the current transaction and return it."""
        transaction = self.transaction
        transaction.begin()
        return transaction

    def commit(self) -> None:
        """Commit the current transaction; the next one is a new object."""
        if self._transaction is not None:
            self._transaction.commit()
            self._transaction = None

    def rollback(self) -> None:
        """Roll back the current transaction; the next one is a new object."""
        if self._transaction is not None:
            self._transaction.rollback()
            self._transaction = None

    def open_reader(self, sql: str, parameters: Iterable[Any] = ()) -> sqlite3.Cursor:
        """Run a query and keep its cursor registered until ``close_readers()``."""
        cursor = self.get_connection().execute(sql, tuple(parameters))
        self._readers.append(cursor)
        return cursor

    def close_readers(self) -> None:
        """Close every cursor opened through ``open_reader``."""
        while self._readers:
            self._readers.pop().close()

    def close(self) -> None:
        """Close readers, roll back any open transaction and close the connection."""
        self.close_readers()
        self.rollback()
        if self._connection is not None:
            self._connection.close()
            self._connection = None
