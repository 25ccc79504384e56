"""Tests for AsyncAdaptiveBatchExecutor."""

from __future__ import annotations

import json
import logging
from pathlib import Path

import pytest

from adaptive_batching import (
    AsyncAdaptiveBatchExecutor,
    BatcherConfig,
    BatchState,
    ExecutorClosedError,
    StaleStateError,
)
from adaptive_batching.observability.batch_journal import BatchJournal, BatchJournalConfig

INSERT_SQL = "INSERT INTO items (id) VALUES (?)"


def executions(provider, kind: str = "execute_batch") -> list[str]:
    """SQL of every execution of the given kind, in order."""
    return [sql for event, sql in provider.events if event == kind]


def read_journal(path: Path) -> list[dict]:
    """Parse every line of a journal file."""
    return [json.loads(line) for line in path.read_text().splitlines() if line]


class TestAsyncAdaptiveBatchExecutorBatching:
    """Test cases for batching with awaited drivers."""

    @pytest.mark.asyncio
    @pytest.mark.parametrize(("statements", "batch_size"), [(10, 3), (4, 4), (1, 5)])
    async def test_round_trips(
        self, async_provider, make_async_statement, statements, batch_size
    ) -> None:
        """M statements with batch size N should execute ceil(M / N) batches."""
        executor = AsyncAdaptiveBatchExecutor(
            async_provider, BatcherConfig(batch_size=batch_size)
        )

        for index in range(statements):
            await executor.add_to_batch(
                make_async_statement(parameters=[index]), expected_row_count=1
            )
        await executor.flush()

        expected_batches = -(-statements // batch_size)
        assert len(executions(async_provider)) == expected_batches
        assert executor.get_metrics().batches_flushed == expected_batches

    @pytest.mark.asyncio
    async def test_probe_once_per_batch(self, async_provider, make_async_statement) -> None:
        """Only the statement opening a batch should be probed."""
        executor = AsyncAdaptiveBatchExecutor(async_provider, BatcherConfig(batch_size=20))

        for index in range(10):
            await executor.add_to_batch(
                make_async_statement(parameters=[index]), expected_row_count=1
            )

        assert executor.get_metrics().probe_count == 1
        assert executor.state == BatchState.ACCUMULATING
        assert executor.statement_count == 10

    @pytest.mark.asyncio
    async def test_driver_without_batching(self, async_provider, make_async_statement) -> None:
        """Statements lacking batching operations should run one by one."""
        executor = AsyncAdaptiveBatchExecutor(async_provider, BatcherConfig(batch_size=20))

        for index in range(3):
            await executor.add_to_batch(
                make_async_statement(parameters=[index], native=False), expected_row_count=1
            )

        assert executor.supports_batching is False
        assert executions(async_provider, "execute") == [INSERT_SQL] * 3

    @pytest.mark.asyncio
    async def test_batch_size_one(self, async_provider, make_async_statement) -> None:
        """Batch size 1 should bypass batching and probing."""
        executor = AsyncAdaptiveBatchExecutor(async_provider, BatcherConfig(batch_size=1))
        statement = make_async_statement(parameters=[1])

        await executor.add_to_batch(statement, expected_row_count=1)

        assert statement.batch_calls == 0
        assert executor.get_metrics().probe_count == 0
        assert executor.get_metrics().statements_executed_immediately == 1

    @pytest.mark.asyncio
    async def test_mismatch_resets_state(self, async_provider, make_async_statement) -> None:
        """A mismatched aggregate should raise and leave the executor empty."""
        executor = AsyncAdaptiveBatchExecutor(async_provider, BatcherConfig(batch_size=2))
        await executor.add_to_batch(
            make_async_statement(parameters=[1], result=1), expected_row_count=1
        )

        with pytest.raises(StaleStateError) as exc_info:
            await executor.add_to_batch(
                make_async_statement(parameters=[2]), expected_row_count=1
            )

        assert exc_info.value.expected == 2
        assert exc_info.value.actual == 1
        assert executor.state == BatchState.EMPTY
        assert executor.has_open_batch is False

    @pytest.mark.asyncio
    async def test_root_reattached_after_connection_swap(
        self, async_provider, make_async_statement
    ) -> None:
        """The root should run on the connection current at flush time."""
        executor = AsyncAdaptiveBatchExecutor(async_provider, BatcherConfig(batch_size=20))
        root = make_async_statement(parameters=[1])
        await executor.add_to_batch(root, expected_row_count=1)

        replacement = async_provider.swap_connection("reconnected")
        await executor.flush()

        assert root.connection is replacement


class TestAsyncAdaptiveBatchExecutorLifecycle:
    """Test cases for close and the async context manager."""

    @pytest.mark.asyncio
    async def test_context_manager_flushes(self, async_provider, make_async_statement) -> None:
        """Leaving the block normally should flush, then close."""
        config = BatcherConfig(batch_size=20)
        async with AsyncAdaptiveBatchExecutor(async_provider, config) as executor:
            await executor.add_to_batch(
                make_async_statement(parameters=[1]), expected_row_count=1
            )

        assert executions(async_provider) == [INSERT_SQL]
        assert executor.is_closed

    @pytest.mark.asyncio
    async def test_close_discards_pending(
        self, async_provider, make_async_statement, caplog
    ) -> None:
        """Closing with statements pending should drop them with a warning."""
        executor = AsyncAdaptiveBatchExecutor(async_provider, BatcherConfig(batch_size=20))
        await executor.add_to_batch(make_async_statement(parameters=[1]), expected_row_count=1)

        with caplog.at_level(logging.WARNING):
            await executor.close()

        assert executions(async_provider) == []
        assert "Discarding 1 unflushed statement(s)" in caplog.text

        with pytest.raises(ExecutorClosedError):
            await executor.add_to_batch(make_async_statement(), expected_row_count=1)

    @pytest.mark.asyncio
    async def test_average_ignores_discarded_statements(
        self, async_provider, make_async_statement
    ) -> None:
        """Statements dropped on close should not count toward the average batch size."""
        executor = AsyncAdaptiveBatchExecutor(async_provider, BatcherConfig(batch_size=20))
        for value in range(2):
            await executor.add_to_batch(make_async_statement(parameters=[value]), 1)
        await executor.flush()
        for value in range(6):
            await executor.add_to_batch(make_async_statement(parameters=[value]), 1)

        await executor.close()

        metrics = executor.get_metrics()
        assert metrics.statements_batched == 8
        assert metrics.statements_flushed == 2
        assert metrics.avg_batch_size == 2.0


class TestAsyncAdaptiveBatchExecutorJournal:
    """Test cases for journaling flushed batches."""

    @pytest.mark.asyncio
    async def test_successful_flush_journaled(
        self, async_provider, make_async_statement, tmp_path: Path
    ) -> None:
        """Each flush should produce one JSON line with its outcome."""
        journal_path = tmp_path / "flushes.jsonl"

        async with BatchJournal(BatchJournalConfig(file_path=journal_path)) as journal:
            executor = AsyncAdaptiveBatchExecutor(
                async_provider, BatcherConfig(batch_size=2), journal=journal
            )
            for index in range(4):
                await executor.add_to_batch(
                    make_async_statement(parameters=[index]), expected_row_count=1
                )
            await executor.close()

        records = read_journal(journal_path)
        assert len(records) == 2
        assert records[0]["sql"] == INSERT_SQL
        assert records[0]["statement_count"] == 2
        assert records[0]["expected_rows"] == 2
        assert records[0]["actual_rows"] == 2
        assert records[0]["outcome"] == "ok"
        assert records[0]["duration_ms"] >= 0

    @pytest.mark.asyncio
    async def test_mismatch_journaled(
        self, async_provider, make_async_statement, tmp_path: Path
    ) -> None:
        """A failed verification should be journaled with the reported count."""
        journal_path = tmp_path / "flushes.jsonl"

        async with BatchJournal(BatchJournalConfig(file_path=journal_path)) as journal:
            executor = AsyncAdaptiveBatchExecutor(
                async_provider, BatcherConfig(batch_size=20), journal=journal
            )
            await executor.add_to_batch(
                make_async_statement(parameters=[1], result=0), expected_row_count=1
            )
            with pytest.raises(StaleStateError):
                await executor.flush()

        records = read_journal(journal_path)
        assert records == [
            {
                **records[0],
                "actual_rows": 0,
                "expected_rows": 1,
                "outcome": "row_count_mismatch",
            }
        ]

    @pytest.mark.asyncio
    async def test_driver_error_journaled(
        self, async_provider, make_async_statement, tmp_path: Path
    ) -> None:
        """A flush that never got a row count should be journaled as an error."""
        journal_path = tmp_path / "flushes.jsonl"

        async with BatchJournal(BatchJournalConfig(file_path=journal_path)) as journal:
            executor = AsyncAdaptiveBatchExecutor(
                async_provider, BatcherConfig(batch_size=20), journal=journal
            )
            await executor.add_to_batch(
                make_async_statement(fail_with=ConnectionError("reset")), expected_row_count=1
            )
            with pytest.raises(ConnectionError):
                await executor.flush()

        (record,) = read_journal(journal_path)
        assert record["outcome"] == "error"
        assert record["actual_rows"] is None

    @pytest.mark.asyncio
    async def test_closed_journal_does_not_break_flush(
        self, async_provider, make_async_statement, tmp_path: Path, caplog
    ) -> None:
        """A journal that can no longer record should only produce a warning."""
        journal = BatchJournal(BatchJournalConfig(file_path=tmp_path / "flushes.jsonl"))
        await journal.close()
        executor = AsyncAdaptiveBatchExecutor(
            async_provider, BatcherConfig(batch_size=20), journal=journal
        )
        await executor.add_to_batch(make_async_statement(parameters=[1]), expected_row_count=1)

        with caplog.at_level(logging.WARNING):
            await executor.flush()

        assert executor.get_metrics().batches_flushed == 1
        assert "Could not journal batch flush" in caplog.text
