"""Logging and journaling for batched writes."""

from adaptive_batching.observability.batch_journal import (
    BatchJournal,
    BatchJournalConfig,
    FlushRecord,
)
from adaptive_batching.observability.statement_logger import (
    BatchCommandLog,
    SqlStatementLogger,
)

__all__ = [
    "BatchCommandLog",
    "BatchJournal",
    "BatchJournalConfig",
    "FlushRecord",
    "SqlStatementLogger",
]
