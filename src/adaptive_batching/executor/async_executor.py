"""Adaptive batch executor for asyncio drivers.

Behaves exactly like AdaptiveBatchExecutor, with connection lookup, statement
preparation and execution awaited. Awaiting does not change ordering: each
call completes its probe, merge or flush before returning, and an executor
must not be shared between concurrently running tasks.
"""

from __future__ import annotations

import logging
import time
from typing import Any, Self

from adaptive_batching.exceptions import ExecutorClosedError
from adaptive_batching.executor.accumulator import BatchAccumulator, bind_statement
from adaptive_batching.executor.base import AsyncConnectionProvider
from adaptive_batching.executor.models import BatcherConfig, BatcherMetrics, BatchState
from adaptive_batching.executor.prober import AsyncCapabilityProber
from adaptive_batching.expectations import verify_outcome_batched, verify_outcome_non_batched
from adaptive_batching.observability.batch_journal import BatchJournal, FlushRecord
from adaptive_batching.observability.statement_logger import BatchCommandLog, SqlStatementLogger

logger = logging.getLogger(__name__)


class AsyncAdaptiveBatchExecutor:
    """Async executor that batches write statements when the driver can.

    Args:
        provider: Lends the session connection and transaction.
        config: Batch size and verification settings. Defaults to
            ``BatcherConfig.from_env()``.
        statement_logger: Sink for rendered SQL.
        journal: Optional JSONL journal receiving one record per flush.

    Example:
        ```python
        async with AsyncAdaptiveBatchExecutor(provider) as executor:
            for row in rows:
                statement = provider.create_statement(INSERT_SQL, row)
                await executor.add_to_batch(statement, expected_row_count=1)
        ```
    """

    def __init__(
        self,
        provider: AsyncConnectionProvider,
        config: BatcherConfig | None = None,
        statement_logger: SqlStatementLogger | None = None,
        journal: BatchJournal | None = None,
    ) -> None:
        self._provider = provider
        self._config = config or BatcherConfig.from_env()
        self._batch_size = self._config.batch_size
        self._prober = AsyncCapabilityProber(provider)
        self._accumulator = BatchAccumulator()
        self._commands_log = BatchCommandLog(
            statement_logger or SqlStatementLogger(log_sql=self._config.log_sql)
        )
        self._journal = journal
        self._state = BatchState.EMPTY
        self._closed = False

        # Metrics
        self._batches_flushed = 0
        self._statements_batched = 0
        self._statements_flushed = 0
        self._statements_executed_immediately = 0
        self._total_flush_time_ms = 0.0

    async def __aenter__(self) -> Self:
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: object | None,
    ) -> None:
        """Flush the pending batch on a clean exit, then close."""
        try:
            if exc_type is None and not self._closed:
                await self.flush()
        finally:
            await self.close()

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

    async def add_to_batch(self, statement: Any, expected_row_count: int) -> None:
        """Batch a write statement, or execute it immediately when it cannot be batched.

        Args:
            statement: The bound write statement.
            expected_row_count: Rows the statement should affect.

        Raises:
            ExecutorClosedError: If the executor has been closed.
            RowCountMismatchError: If an immediate execution, or a flush this call
                triggered, affected an unexpected number of rows.
        """
        if self._closed:
            raise ExecutorClosedError("Cannot add statements to a closed executor")

        if self._batch_size == 1:
            await self.flush()
            await self._execute_immediate(statement, expected_row_count)
            return

        root = self._accumulator.root_statement
        if root is not None and root.sql != statement.sql:
            logger.debug(
                "Statement text changed, flushing %d batched statement(s)", self.statement_count
            )
            await self.flush()

        if not self._accumulator.is_open and not await self._prober.probe(statement):
            await self._execute_immediate(statement, expected_row_count)
            return

        await self._create_or_update_batch(statement, expected_row_count)

    async def flush(self) -> None:
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
        rows_affected: int | None = None
        outcome = "error"
        try:
            await self._provider.close_readers()
            await self._prepare(root)
            rows_affected = await root.execute_non_query()
            self._batches_flushed += 1
            self._statements_flushed += count
            outcome = "row_count_mismatch"
            verify_outcome_batched(
                expected, rows_affected, strict=self._config.strict_batch_verification
            )
            outcome = "ok"
        finally:
            duration_ms = (time.perf_counter() - start_time) * 1000
            self._total_flush_time_ms += duration_ms
            self._accumulator.reset()
            self._commands_log.clear()
            self._state = BatchState.EMPTY
            await self._journal_flush(root, count, expected, rows_affected, duration_ms, outcome)

    async def close(self) -> None:
        """Dispose of the executor, discarding any statements not yet flushed.

        The journal, if any, is flushed but left open; its owner closes it.
        """
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

        if self._journal is not None:
            try:
                await self._journal.flush()
            except OSError:
                logger.warning("Could not flush the batch journal", exc_info=True)

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

    async def _create_or_update_batch(self, statement: Any, expected_row_count: int) -> None:
        if not self._accumulator.is_open:
            connection = await self._provider.get_connection()
            bind_statement(statement, connection, self._provider.transaction)
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
            await self.flush()

    async def _execute_immediate(self, statement: Any, expected_row_count: int) -> None:
        self._state = BatchState.IMMEDIATE
        try:
            await self._provider.close_readers()
            await self._prepare(statement)
            self._commands_log.log_command(statement)
            row_count = await statement.execute_non_query()
            self._statements_executed_immediately += 1
            verify_outcome_non_batched(expected_row_count, row_count, statement)
        finally:
            self._state = BatchState.EMPTY

    async def _prepare(self, statement: Any) -> None:
        connection = await self._provider.get_connection()
        bind_statement(statement, connection, self._provider.transaction)
        await statement.prepare()

    async def _journal_flush(
        self,
        root: Any,
        statement_count: int,
        expected: int,
        actual: int | None,
        duration_ms: float,
        outcome: str,
    ) -> None:
        if self._journal is None:
            return
        entry = FlushRecord(
            timestamp=time.time(),
            sql=root.sql,
            statement_count=statement_count,
            expected_rows=expected,
            actual_rows=actual,
            duration_ms=duration_ms,
            outcome=outcome,
        )
        try:
            await self._journal.record(entry)
        except (OSError, RuntimeError):
            logger.warning("Could not journal batch flush", exc_info=True)
