"""Exceptions raised by the adaptive batch executors."""

from __future__ import annotations

from typing import Any


class BatcherError(Exception):
    """Base class for all adaptive-batching errors."""

    pass


class ExecutorClosedError(BatcherError):
    """Raised when a closed executor is asked to do work."""

    pass


class RowCountMismatchError(BatcherError):
    """Raised when the database affected a different number of rows than expected.

    Attributes:
        expected: Row count the caller expected.
        actual: Row count the driver reported.
        statement: The offending statement for immediate execution, None for a batch.
    """

    def __init__(self, message: str, expected: int, actual: int, statement: Any = None) -> None:
        super().__init__(message)
        self.expected = expected
        self.actual = actual
        self.statement = statement


class StaleStateError(RowCountMismatchError):
    """Fewer rows were affected than expected, usually a concurrent update or delete."""

    pass


class TooManyRowsAffectedError(RowCountMismatchError):
    """More rows were affected than expected."""

    pass
