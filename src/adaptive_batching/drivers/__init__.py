"""Database driver bindings for the adaptive batch executors."""

from adaptive_batching.drivers.async_sqlite import (
    AiosqliteBatchStatement,
    AiosqliteConnectionProvider,
    AiosqliteStatement,
    AiosqliteTransaction,
)
from adaptive_batching.drivers.sqlite import (
    SqliteBatchStatement,
    SqliteConnectionProvider,
    SqliteStatement,
    SqliteTransaction,
    is_batchable_sql,
)

__all__ = [
    "AiosqliteBatchStatement",
    "AiosqliteConnectionProvider",
    "AiosqliteStatement",
    "AiosqliteTransaction",
    "SqliteBatchStatement",
    "SqliteConnectionProvider",
    "SqliteStatement",
    "SqliteTransaction",
    "is_batchable_sql",
]
