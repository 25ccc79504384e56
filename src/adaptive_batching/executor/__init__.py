"""Adaptive batch executors and the protocols they consume."""

from adaptive_batching.executor.accumulator import (
    BatchAccumulator,
    bind_statement,
    transfer_parameters,
)
from adaptive_batching.executor.async_executor import AsyncAdaptiveBatchExecutor
from adaptive_batching.executor.base import (
    AsyncConnectionProvider,
    AsyncNativeBatchingStatement,
    AsyncStatement,
    ConnectionProvider,
    NativeBatchingStatement,
    Statement,
    SupportsNativeBatching,
    Transaction,
)
from adaptive_batching.executor.factory import AdaptiveBatcherFactory
from adaptive_batching.executor.models import (
    BatcherConfig,
    BatcherMetrics,
    BatchState,
    PendingBatch,
)
from adaptive_batching.executor.prober import AsyncCapabilityProber, CapabilityProber
from adaptive_batching.executor.sync_executor import AdaptiveBatchExecutor

__all__ = [
    "AdaptiveBatchExecutor",
    "AdaptiveBatcherFactory",
    "AsyncAdaptiveBatchExecutor",
    "AsyncCapabilityProber",
    "AsyncConnectionProvider",
    "AsyncNativeBatchingStatement",
    "AsyncStatement",
    "BatchAccumulator",
    "BatchState",
    "BatcherConfig",
    "BatcherMetrics",
    "CapabilityProber",
    "ConnectionProvider",
    "NativeBatchingStatement",
    "PendingBatch",
    "Statement",
    "SupportsNativeBatching",
    "Transaction",
    "bind_statement",
    "transfer_parameters",
]
