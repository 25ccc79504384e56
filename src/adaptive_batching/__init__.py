"""Adaptive statement batching.

Merges write statements into one database round-trip when the driver supports
native batching, and executes them one at a time when it does not. Support is
discovered at runtime, per executor and per statement.
"""

from adaptive_batching.exceptions import (
    BatcherError,
    ExecutorClosedError,
    RowCountMismatchError,
    StaleStateError,
    TooManyRowsAffectedError,
)
from adaptive_batching.executor import (
    AdaptiveBatcherFactory,
    AdaptiveBatchExecutor,
    AsyncAdaptiveBatchExecutor,
    BatcherConfig,
    BatcherMetrics,
    BatchState,
)

__version__ = "0.1.0"

__all__ = [
    "AdaptiveBatchExecutor",
    "AdaptiveBatcherFactory",
    "AsyncAdaptiveBatchExecutor",
    "BatchState",
    "BatcherConfig",
    "BatcherError",
    "BatcherMetrics",
    "ExecutorClosedError",
    "RowCountMismatchError",
    "StaleStateError",
    "TooManyRowsAffectedError",
]
