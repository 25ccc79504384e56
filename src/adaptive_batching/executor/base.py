"""Protocols for the collaborators an adaptive batch executor consumes.

Drivers differ in whether their statement objects can batch natively. That
capability is expressed by the SupportsNativeBatching protocol; the
@runtime_checkable decorator lets the capability prober detect it with an
isinstance() check instead of inspecting attributes by hand. The
NativeBatchingStatement protocols describe a complete batching statement
for type checkers.
"""

from __future__ import annotations

from collections.abc import MutableSequence
from typing import Any, Protocol, runtime_checkable


@runtime_checkable
class Statement(Protocol):
    """A write statement bound to positional parameters.

    Attributes:
        sql: The statement text.
        connection: Connection the statement is attached to, or None.
        parameters: Ordered, indexable, appendable parameter collection.
    """

    sql: str
    connection: Any
    parameters: MutableSequence[Any]

    def prepare(self) -> None:
        """Compile the statement against its connection."""
        ...

    def execute_non_query(self) -> int:
        """Execute the statement and return the affected-row count."""
        ...


@runtime_checkable
class SupportsNativeBatching(Protocol):
    """The two operations a driver needs to batch statements natively.

    Capability probing checks only these, so a statement missing some other
    member is not mistaken for a driver without batching.
    """

    def add_batch(self) -> None:
        """Commit the current parameter set into the statement's batch list."""
        ...

    def is_valid_for_batching(self) -> bool:
        """Report whether this prepared statement may be batched."""
        ...


@runtime_checkable
class NativeBatchingStatement(Statement, SupportsNativeBatching, Protocol):
    """A statement whose driver can send many parameter sets in one round-trip."""


@runtime_checkable
class AsyncStatement(Protocol):
    """Asynchronous counterpart of Statement.

    Parameter handling stays synchronous; compiling and executing are awaited.
    """

    sql: str
    connection: Any
    parameters: MutableSequence[Any]

    async def prepare(self) -> None:
        """Compile the statement against its connection."""
        ...

    async def execute_non_query(self) -> int:
        """Execute the statement and return the affected-row count."""
        ...


@runtime_checkable
class AsyncNativeBatchingStatement(AsyncStatement, SupportsNativeBatching, Protocol):
    """Asynchronous statement with native batching support."""


class Transaction(Protocol):
    """The unit of work statements must participate in."""

    def enlist(self, statement: Any) -> None:
        """Make the statement run inside this transaction."""
        ...


class ConnectionProvider(Protocol):
    """Lends the current connection and transaction to an executor.

    Neither is owned by the executor; both may change identity between calls.
    """

    @property
    def transaction(self) -> Transaction:
        """The transaction currently in progress."""
        ...

    def get_connection(self) -> Any:
        """Return the connection statements should run on."""
        ...

    def close_readers(self) -> None:
        """Close result readers left open by earlier operations."""
        ...


class AsyncConnectionProvider(Protocol):
    """Asynchronous counterpart of ConnectionProvider."""

    @property
    def transaction(self) -> Transaction:
        """The transaction currently in progress."""
        ...

    async def get_connection(self) -> Any:
        """Return the connection statements should run on."""
        ...

    async def close_readers(self) -> None:
        """Close result readers left open by earlier operations."""
        ...
