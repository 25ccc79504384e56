"""JSONL journal of flushed batches with buffered async writes."""

import json
import os
from dataclasses import asdict, dataclass
from pathlib import Path
from typing import Any, Self

import aiofiles


@dataclass(frozen=True, slots=True)
class FlushRecord:
    """Outcome of one batch flush.

    Attributes:
        timestamp: Unix timestamp when the flush finished.
        sql: SQL text of the batch's root statement.
        statement_count: Number of statements merged into the batch.
        expected_rows: Sum of the expected affected-row counts.
        actual_rows: Aggregate row count reported by the driver, None if execution failed.
        duration_ms: Wall time spent preparing, executing and verifying.
        outcome: "ok", "row_count_mismatch" or "error".
    """

    timestamp: float
    sql: str
    statement_count: int
    expected_rows: int
    actual_rows: int | None
    duration_ms: float
    outcome: str


@dataclass
class BatchJournalConfig:
    """Configuration for BatchJournal.

    Attributes:
        file_path: Path to the JSONL output file.
        buffer_size: Number of records to buffer before auto-flush.
        append: Append to an existing journal instead of truncating it.
    """

    file_path: Path
    buffer_size: int = 50
    append: bool = True


class BatchJournal:
    """Appends one JSON line per flushed batch to a journal file.

    Records are buffered in memory and written when the buffer reaches
    `buffer_size` records, on `flush()`, or on `close()`.

    Example:
        ```python
        async with BatchJournal(BatchJournalConfig(Path("batches.jsonl"))) as journal:
            executor = AsyncAdaptiveBatchExecutor(provider, journal=journal)
            ...
        ```
    """

    def __init__(self, config: BatchJournalConfig) -> None:
        self._config = config
        self._pending: list[FlushRecord] = []
        self._handle: Any = None
        self._closed = False

    async def __aenter__(self) -> Self:
        await self._ensure_open()
        return self

    async def __aexit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        await self.close()

    @property
    def pending(self) -> int:
        """Number of flush records not yet on disk."""
        return len(self._pending)

    async def _ensure_open(self) -> Any:
        if self._handle is None:
            mode = "a" if self._config.append else "w"
            self._handle = await aiofiles.open(
                self._config.file_path, mode=mode, encoding="utf-8", newline="\n"
            )
        return self._handle

    async def record(self, entry: FlushRecord) -> None:
        """Queue one flush record; a full queue is written out immediately.

        Raises:
            RuntimeError: If the journal has been closed.
        """
        if self._closed:
            raise RuntimeError("Cannot record to closed journal")

        await self._ensure_open()
        self._pending.append(entry)
        if len(self._pending) >= self._config.buffer_size:
            await self.flush()

    async def flush(self) -> None:
        """Write every queued record as one JSON line each, then fsync."""
        if self._handle is None or not self._pending:
            return

        payload = "".join(
            json.dumps(asdict(entry), ensure_ascii=False) + "\n" for entry in self._pending
        )
        await self._handle.write(payload)
        await self._handle.flush()
        os.fsync(self._handle.fileno())
        self._pending.clear()

    async def close(self) -> None:
        """Write what is queued and release the file. Closing twice is harmless."""
        if self._closed:
            return
        self._closed = True

        if self._handle is None:
            return
        try:
            await self.flush()
        finally:
            await self._handle.close()
            self._handle = None
