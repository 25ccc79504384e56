"""Batch accumulation: the root statement and the parameter sets merged into it."""

from __future__ import annotations

from collections.abc import MutableSequence, Sequence
from typing import Any

from adaptive_batching.executor.base import Transaction
from adaptive_batching.executor.models import PendingBatch


def bind_statement(statement: Any, connection: Any, transaction: Transaction) -> None:
    """Attach a statement to the session connection and enlist it.

    The statement is only reassigned when it is attached to a different
    connection object; enlisting always happens because the transaction may
    have been restarted since the statement was last used.

    Args:
        statement: The statement to bind.
        connection: The provider's current connection.
        transaction: The provider's current transaction.
    """
    if statement.connection is not connection:
        statement.connection = connection
    transaction.enlist(statement)


def transfer_parameters(source: Sequence[Any], destination: MutableSequence[Any]) -> int:
    """Append every parameter of ``source`` to ``destination``, in order.

    Drivers may rewrite the source collection while its parameters are added to
    another one, so the length is captured up front and the source is indexed
    rather than iterated.

    Returns:
        Number of parameters transferred.
    """
    count = len(source)
    for index in range(count):
        destination.append(source[index])
    return count


class BatchAccumulator:
    """Owns the batch being accumulated for one executor.

    The first statement of a batch becomes its root; later statements only
    contribute their parameters, which are appended to the root's parameter
    collection before the root's native ``add_batch()`` is called again.
    Statements must already be bound to the session connection when they are
    handed over.

    Example:
        ```python
        accumulator = BatchAccumulator()
        accumulator.start(first, expected_row_count=1)
        accumulator.merge(second, expected_row_count=1)
        if accumulator.threshold_reached(batch_size):
            ...
        ```
    """

    def __init__(self) -> None:
        self._batch = PendingBatch()

    @property
    def is_open(self) -> bool:
        """Whether a batch is being accumulated."""
        return self._batch.is_open

    @property
    def root_statement(self) -> Any | None:
        """Root statement of the open batch."""
        return self._batch.root_statement

    @property
    def statement_count(self) -> int:
        """Number of statements in the open batch."""
        return self._batch.statement_count

    @property
    def expected_row_total(self) -> int:
        """Rows the open batch is expected to affect."""
        return self._batch.expected_row_total

    def start(self, statement: Any, expected_row_count: int) -> None:
        """Open a new batch rooted at ``statement``.

        Raises:
            RuntimeError: If a batch is already open.
        """
        if self._batch.is_open:
            raise RuntimeError("A batch is already open")

        statement.add_batch()

        self._batch.root_statement = statement
        self._batch.expected_row_total = expected_row_count
        self._batch.statement_count = 1

    def merge(self, statement: Any, expected_row_count: int) -> None:
        """Merge ``statement``'s parameters into the open batch.

        If the driver refuses the parameter set, the root's parameters are cut
        back to what they were so the batch keeps its earlier statements.

        Raises:
            RuntimeError: If no batch is open.
        """
        root = self._batch.root_statement
        if root is None:
            raise RuntimeError("No batch is open")

        mark = len(root.parameters)
        transfer_parameters(statement.parameters, root.parameters)
        try:
            root.add_batch()
        except Exception:
            del root.parameters[mark:]
            raise

        self._batch.expected_row_total += expected_row_count
        self._batch.statement_count += 1

    def threshold_reached(self, batch_size: int) -> bool:
        """Whether the open batch holds at least ``batch_size`` statements."""
        return self._batch.statement_count >= batch_size

    def reset(self) -> None:
        """Drop the open batch, if any."""
        self._batch.reset()
