"""Factory creating one adaptive batch executor per session."""

from __future__ import annotations

from adaptive_batching.executor.async_executor import AsyncAdaptiveBatchExecutor
from adaptive_batching.executor.base import AsyncConnectionProvider, ConnectionProvider
from adaptive_batching.executor.models import BatcherConfig
from adaptive_batching.executor.sync_executor import AdaptiveBatchExecutor
from adaptive_batching.observability.batch_journal import BatchJournal
from adaptive_batching.observability.statement_logger import SqlStatementLogger


class AdaptiveBatcherFactory:
    """Creates executors sharing one configuration.

    Capability state is never shared: each executor starts out optimistic and
    probes its own driver, since sessions may talk to different driver versions.

    Args:
        config: Configuration handed to every executor. Defaults to
            ``BatcherConfig.from_env()`` resolved once, at construction.
        statement_logger: SQL sink shared by every executor.
    """

    def __init__(
        self,
        config: BatcherConfig | None = None,
        statement_logger: SqlStatementLogger | None = None,
    ) -> None:
        self._config = config or BatcherConfig.from_env()
        self._statement_logger = statement_logger or SqlStatementLogger(
            log_sql=self._config.log_sql
        )

    @property
    def config(self) -> BatcherConfig:
        """Configuration handed to new executors."""
        return self._config

    def create_batcher(self, provider: ConnectionProvider) -> AdaptiveBatchExecutor:
        """Create a blocking executor bound to ``provider``'s session."""
        return AdaptiveBatchExecutor(provider, self._config, self._statement_logger)

    def create_async_batcher(
        self,
        provider: AsyncConnectionProvider,
        journal: BatchJournal | None = None,
    ) -> AsyncAdaptiveBatchExecutor:
        """Create an asyncio executor bound to ``provider``'s session."""
        return AsyncAdaptiveBatchExecutor(provider, self._config, self._statement_logger, journal)
