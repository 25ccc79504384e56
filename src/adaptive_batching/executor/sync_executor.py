"""Adaptive batch executor for blocking (DB-API style) drivers.

Write statements are merged into one native batch when the driver supports it
and executed one at a time when it does not. Each executor is bound to one
session: it is not thread-safe and callers must serialize access to it.
"""

from __future__ import annotations

import logging
import time
from typing import Any, Self

from adaptive_batching.exceptions import ExecutorClosedError
from adaptive_batching.executor.accumulator import BatchAccumulator, bind_statement
from adaptive_batching.executor.base import ConnectionProvider
from adaptive_batching.executor.models import BatcherConfig, BatcherMetrics, BatchState
from adaptive_batching.executor.prober import CapabilityProber
from adaptive_batching.expectations import verify_outcome_batched, verify_outcome_non_batched
from adaptive_batching.observability.statement_logger import BatchCommandLog, SqlStatementLogger

logger = logging.getLogger(__name__)


class AdaptiveBatchExecutor:
    """Batches write statements when the driver can, executes them immediately otherwise.

    The executor moves through ``EMPTY -> ACCUMULATING -> FLUSHING -> EMPTY``
    while batching. A statement that cannot be batched goes through
    ``EMPTY -> IMMEDIATE -> EMPTY`` without touching the pending batch.

    Args:
        provider: Lends the session connection and transaction.
        config: Batch size and verification settings. Defaults to
            ``BatcherConfig.from_env()``.
        statement_logger: Sink for rendered SQL. Defaults to a logger honoring
            ``config.log_sql``.

    Example:
        ```python
        with AdaptiveBatchExecutor(provider, BatcherConfig(batch_size=50)) as executor:
            for row in rows:
                statement = provider.create_statement(INSERT_SQL, row)
                executor.add_to_batch(statement, expected_row_count=1)
        ```
    """

    def __init__(
        self,
        provider: ConnectionProvider,
        config: BatcherConfig | None = None,
        statement_logger: SqlStatementLogger | None = None,
    ) -> None:
        self._provider = provider
        self._config = config or BatcherConfig.from_env()
        self._batch_size = self._config.batch_size
        self._prober = CapabilityProber(provider)
        self._accumulator = BatchAccumulator()
        self._commands_log = BatchCommandLog(
            statement_logger or SqlStatementLogger(log_sql=self._config.log_sql)
        )
        self._state = BatchState.EMPTY
        self._closed = False

        # Metrics
        self._batches_flushed = 0
        self._statements_batched = 0
        self._statements_flushed = 0
        self._statements_executed_immediately = 0
        self._total_flush_time_ms = 0.0

    def __enter__(self) -> Self:
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: object | None,
    ) -> None:
        """Flush the pending batch on a clean exit, then close."""
        try:
            if exc_type is None and not self._closed:
                self.flush()
        finally:
            self.close()

    @property
    def batch_size(self) -> int:
        """Statements per native batch. Can be changed between calls; 1 disables batching."""
        return self._batch_size

    @batch_size.setter
    def batch_size(self, value: int) -> None:
        if value < 1:
            raise ValueError("batch_size must be at least 1")
        self._batch_size = value

    @property
    def state(self) -> BatchState:
        """Current lifecycle state."""
        return self._state

    @property
    def supports_batching(self) -> bool:
        """False once the driver has been found to lack native batching."""
        return self._prober.supports_batching

    @property
    def has_open_batch(self) -> bool:
        """Whether statements are waiting to be flushed."""
        return self._accumulator.is_open

    @property
    def statement_count(self) -> int:
        """Number of statements in the current batch."""
        return self._accumulator.statement_count

    @property
    def is_closed(self) -> bool:
        """Whether the executor has been disposed."""
        return self._closed

    def add_to_batch(self, statement: Any, expected_row_count: int) -> None:
        """Batch a write statement, or execute it immediately when it cannot be batched.

        Args:
            statement: The bound write statement.
            expected_row_count: Rows the statement should affect.

        Raises:
            ExecutorClosedError: If the executor has been closed.
            RowCountMismatchError: If an immediate execution, or a flush this call
                triggered, affected an unexpected number of rows.
        """
        self._ensure_not_closed()

        if self._batch_size == 1:
            # keep arrival order if batching was just switched off
            self.flush()
            self._execute_immediate(statement, expected_row_count)
            return

        root = self._accumulator.root_statement
        if root is not None and root.sql != statement.sql:
            logger.debug(
                "Statement text changed, flushing %d batched statement(s)", self.statement_count
            )
            self.flush()

        if not self._accumulator.is_open and not self._prober.probe(statement):
            self._execute_immediate(statement, expected_row_count)
            return

        self._create_or_update_batch(statement, expected_row_count)

    def flush(self) -> None:
        """Execute the pending batch as one round-trip and verify its row count.

        Does nothing when no batch is open. The batch is reset whether or not
        execution and verification succeed.

        Raises:
            RowCountMismatchError: If the aggregate row count does not match.
        """
        root = self._accumulator.root_statement
        if root is None:
            return

        expected = self._accumulator.expected_row_total
        count = self._accumulator.statement_count
        logger.info("Executing batch of %d statement(s)", count)
        self._commands_log.write()

        self._state = BatchState.FLUSHING
        start_time = time.perf_counter()
        try:
            self._provider.close_readers()
            self._prepare(root)
            rows_affected = root.execute_non_query()
            self._batches_flushed += 1
            self._statements_flushed += count
            verify_outcome_batched(
                expected, rows_affected, strict=self._config.strict_batch_verification
            )
        finally:
            self._total_flush_time_ms += (time.perf_counter() - start_time) * 1000
            self._accumulator.reset()
            self._commands_log.clear()
            self._state = BatchState.EMPTY

    def close(self) -> None:
        """Dispose of the executor, discarding any statements not yet flushed."""
        if self._closed:
            return

        if self._accumulator.is_open:
            logger.warning(
                "Discarding %d unflushed statement(s) on close", self._accumulator.statement_count
            )
            self._accumulator.reset()
            self._commands_log.clear()

        self._state = BatchState.EMPTY
        self._closed = True

    def get_metrics(self) -> BatcherMetrics:
        """Get current metrics for this executor.

        Returns:
            BatcherMetrics: Flush, batching and probing counters.
        """
        return BatcherMetrics(
            batches_flushed=self._batches_flushed,
            statements_batched=self._statements_batched,
            statements_flushed=self._statements_flushed,
            statements_executed_immediately=self._statements_executed_immediately,
            probe_count=self._prober.probe_count,
            supports_batching=self._prober.supports_batching,
            pending_statements=self._accumulator.statement_count,
            pending_expected_rows=self._accumulator.expected_row_total,
            total_flush_time_ms=self._total_flush_time_ms,
        )

    def _ensure_not_closed(self) -> None:
        if self._closed:
            raise ExecutorClosedError("Cannot add statements to a closed executor")

    def _create_or_update_batch(self, statement: Any, expected_row_count: int) -> None:
        if not self._accumulator.is_open:
            # some drivers refuse add_batch() on an unconnected statement
            bind_statement(statement, self._provider.get_connection(), self._provider.transaction)
            self._accumulator.start(statement, expected_row_count)
            self._commands_log.record(0, statement, is_new_batch=True)
            self._state = BatchState.ACCUMULATING
        else:
            logged = len(self._commands_log)
            self._commands_log.record(
                self._accumulator.statement_count, statement, is_new_batch=False
            )
            try:
                self._accumulator.merge(statement, expected_row_count)
            except Exception:
                self._commands_log.truncate(logged)
                raise

        self._statements_batched += 1

        if self._accumulator.threshold_reached(self._batch_size):
            self.flush()

    def _execute_immediate(self, statement: Any, expected_row_count: int) -> None:
        self._state = BatchState.IMMEDIATE
        try:
            self._provider.close_readers()
            self._prepare(statement)
            self._commands_log.log_command(statement)
            row_count = statement.execute_non_query()
            self._statements_executed_immediately += 1
            verify_outcome_non_batched(expected_row_count, row_count, statement)
        finally:
            self._state = BatchState.EMPTY

    def _prepare(self, statement: Any) -> None:
        bind_statement(statement, self._provider.get_connection(), self._provider.transaction)
        statement.prepare()
