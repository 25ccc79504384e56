"""Domain models for the adaptive batch executors.

This module defines the state, configuration and metrics structures shared by
the synchronous and asynchronous executor implementations.
"""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

DEFAULT_BATCH_SIZE = 20

_TRUTHY = frozenset({"1", "true", "yes", "on"})


def _env_flag(name: str, default: str = "false") -> bool:
    return os.getenv(name, default).strip().lower() in _TRUTHY


class BatchState(str, Enum):
    """Lifecycle state of an executor's pending batch.

    Attributes:
        EMPTY: No batch is open.
        ACCUMULATING: A root statement is open and collecting parameter sets.
        FLUSHING: The accumulated batch is being sent to the database.
        IMMEDIATE: A single statement is being executed outside of any batch.
    """

    EMPTY = "empty"
    ACCUMULATING = "accumulating"
    FLUSHING = "flushing"
    IMMEDIATE = "immediate"


@dataclass(slots=True)
class PendingBatch:
    """Live state of the batch being accumulated.

    The root statement is held exclusively by the batch while it is open and
    handed back to the executor when the batch is flushed.

    Attributes:
        root_statement: First statement of the batch, or None when empty.
        statement_count: Number of statements merged into the root.
        expected_row_total: Sum of the expected affected-row counts.
    """

    root_statement: Any | None = None
    statement_count: int = 0
    expected_row_total: int = 0

    @property
    def is_open(self) -> bool:
        """Whether a root statement is currently held."""
        return self.root_statement is not None

    def reset(self) -> None:
        """Return to the empty state."""
        self.root_statement = None
        self.statement_count = 0
        self.expected_row_total = 0


@dataclass(frozen=True, slots=True)
class BatcherConfig:
    """Configuration for an adaptive batch executor.

    Attributes:
        batch_size: Statements per native batch; 1 disables batching (default: 20).
        strict_batch_verification: Treat a negative (unknown) aggregate row count
            as a mismatch instead of accepting it (default: False).
        log_sql: Render every batched statement to the SQL logger (default: False).
    """

    batch_size: int = DEFAULT_BATCH_SIZE
    strict_batch_verification: bool = False
    log_sql: bool = False

    def __post_init__(self) -> None:
        if self.batch_size < 1:
            raise ValueError("batch_size must be at least 1")

    @classmethod
    def from_env(
        cls,
        batch_size: int | None = None,
        strict_batch_verification: bool | None = None,
        log_sql: bool | None = None,
    ) -> BatcherConfig:
        """Build a config, filling unset values from the environment.

        Reads ``ADAPTIVE_BATCH_SIZE``, ``ADAPTIVE_BATCH_STRICT_VERIFICATION`` and
        ``ADAPTIVE_BATCH_LOG_SQL``. Explicit arguments always win.

        Returns:
            A validated BatcherConfig.
        """
        if batch_size is None:
            batch_size = int(os.getenv("ADAPTIVE_BATCH_SIZE", str(DEFAULT_BATCH_SIZE)))
        if strict_batch_verification is None:
            strict_batch_verification = _env_flag("ADAPTIVE_BATCH_STRICT_VERIFICATION")
        if log_sql is None:
            log_sql = _env_flag("ADAPTIVE_BATCH_LOG_SQL")
        return cls(
            batch_size=batch_size,
            strict_batch_verification=strict_batch_verification,
            log_sql=log_sql,
        )


@dataclass
class BatcherMetrics:
    """Counters describing what an executor has done so far.

    ``statements_flushed`` only counts statements whose batch reached the
    database and returned a row count; discarded or failed batches are left out.
    """

    batches_flushed: int
    statements_batched: int
    statements_executed_immediately: int
    probe_count: int
    supports_batching: bool
    pending_statements: int
    pending_expected_rows: int
    statements_flushed: int = 0
    total_flush_time_ms: float = field(default=0.0)

    @property
    def avg_batch_size(self) -> float:
        """Average number of statements per flushed batch."""
        if self.batches_flushed == 0:
            return 0.0
        return self.statements_flushed / self.batches_flushed
