"""Pytest configuration and fixtures for adaptive-batching tests.

The fakes below stand in for driver statements and the session's connection
provider. Everything they are asked to do is appended to a shared ``events``
list so tests can assert on call order.
"""

from __future__ import annotations

from collections.abc import Callable
from typing import Any

import pytest


class FakeConnection:
    """Opaque connection handle."""

    def __init__(self, name: str) -> None:
        self.name = name

    def __repr__(self) -> str:
        return f"FakeConnection({self.name!r})"


class FakeTransaction:
    """Records every statement enlisted in it."""

    def __init__(self, events: list[tuple[str, Any]]) -> None:
        self.events = events
        self.enlisted: list[Any] = []

    def enlist(self, statement: Any) -> None:
        self.enlisted.append(statement)
        self.events.append(("enlist", statement.sql))


class FakeProvider:
    """Synchronous connection provider with swappable connection and transaction."""

    def __init__(self) -> None:
        self.events: list[tuple[str, Any]] = []
        self.connection = FakeConnection("primary")
        self._transaction = FakeTransaction(self.events)
        self.readers_closed = 0

    @property
    def transaction(self) -> FakeTransaction:
        return self._transaction

    def get_connection(self) -> FakeConnection:
        return self.connection

    def close_readers(self) -> None:
        self.readers_closed += 1
        self.events.append(("close_readers", None))

    def swap_connection(self, name: str) -> FakeConnection:
        self.connection = FakeConnection(name)
        return self.connection

    def restart_transaction(self) -> FakeTransaction:
        self._transaction = FakeTransaction(self.events)
        return self._transaction


class AsyncFakeProvider(FakeProvider):
    """Asynchronous connection provider."""

    async def get_connection(self) -> FakeConnection:  # type: ignore[override]
        return self.connection

    async def close_readers(self) -> None:  # type: ignore[override]
        self.readers_closed += 1
        self.events.append(("close_readers", None))


class FakeStatement:
    """Statement of a driver without native batching."""

    def __init__(
        self,
        events: list[tuple[str, Any]],
        sql: str,
        parameters: list[Any] | None = None,
        result: int | None = None,
        fail_with: Exception | None = None,
    ) -> None:
        self.events = events
        self.sql = sql
        self.parameters: list[Any] = parameters if parameters is not None else []
        self.connection: Any = None
        self.result = result
        self.fail_with = fail_with
        self.prepare_count = 0
        self.execute_count = 0

    def prepare(self) -> None:
        self.prepare_count += 1
        self.events.append(("prepare", self.sql))

    def execute_non_query(self) -> int:
        self.execute_count += 1
        self.events.append(("execute", self.sql))
        if self.fail_with is not None:
            raise self.fail_with
        return 1 if self.result is None else self.result


class FakeBatchStatement(FakeStatement):
    """Statement of a driver with native batching.

    ``execute_non_query`` reports one row per collected parameter set unless a
    fixed ``result`` is configured.
    """

    def __init__(self, *args: Any, valid: bool = True, **kwargs: Any) -> None:
        super().__init__(*args, **kwargs)
        self.valid = valid
        self.batch_calls = 0
        self.validity_checks = 0

    def add_batch(self) -> None:
        self.batch_calls += 1
        self.events.append(("add_batch", self.sql))

    def is_valid_for_batching(self) -> bool:
        self.validity_checks += 1
        return self.valid

    def execute_non_query(self) -> int:
        self.execute_count += 1
        self.events.append(("execute_batch" if self.batch_calls else "execute", self.sql))
        if self.fail_with is not None:
            raise self.fail_with
        if self.result is not None:
            return self.result
        return self.batch_calls or 1


class AsyncFakeStatement(FakeStatement):
    """Async statement of a driver without native batching."""

    async def prepare(self) -> None:  # type: ignore[override]
        FakeStatement.prepare(self)

    async def execute_non_query(self) -> int:  # type: ignore[override]
        return FakeStatement.execute_non_query(self)


class AsyncFakeBatchStatement(FakeBatchStatement):
    """Async statement of a driver with native batching."""

    async def prepare(self) -> None:  # type: ignore[override]
        FakeBatchStatement.prepare(self)

    async def execute_non_query(self) -> int:  # type: ignore[override]
        return FakeBatchStatement.execute_non_query(self)


class FakeParameter:
    """Driver parameter object that belongs to one collection at a time."""

    def __init__(self, name: str) -> None:
        self.name = name
        self.owner: Any = None

    def __repr__(self) -> str:
        return f"FakeParameter({self.name!r})"


class ReparentingParameters(list):
    """Parameter collection that is modified when its members join another collection.

    Adding a parameter to a collection bumps the version of the collection it
    came from, and iterating a collection whose version changed mid-loop fails
    the way invalidated enumerators do in some drivers.
    """

    def __init__(self, items: list[FakeParameter] | None = None) -> None:
        super().__init__()
        self.version = 0
        for item in items or []:
            self.append(item)

    def append(self, item: FakeParameter) -> None:
        previous = item.owner
        if previous is not None and previous is not self:
            previous.version += 1
        item.owner = self
        super().append(item)
        self.version += 1

    def __iter__(self):
        version = self.version
        for index in range(len(self)):
            if self.version != version:
                raise RuntimeError("Collection was modified; enumeration operation may not execute")
            yield self[index]


StatementFactory = Callable[..., FakeStatement]


@pytest.fixture()
def provider() -> FakeProvider:
    """Provide a synchronous fake connection provider."""
    return FakeProvider()


@pytest.fixture()
def async_provider() -> AsyncFakeProvider:
    """Provide an asynchronous fake connection provider."""
    return AsyncFakeProvider()


@pytest.fixture()
def make_statement(provider: FakeProvider) -> StatementFactory:
    """Build fake statements sharing the provider's event log."""

    def factory(
        sql: str = "INSERT INTO items (id) VALUES (?)",
        parameters: list[Any] | None = None,
        native: bool = True,
        **kwargs: Any,
    ) -> FakeStatement:
        statement_type = FakeBatchStatement if native else FakeStatement
        if not native:
            kwargs.pop("valid", None)
        return statement_type(provider.events, sql, parameters, **kwargs)

    return factory


@pytest.fixture()
def make_async_statement(async_provider: AsyncFakeProvider) -> StatementFactory:
    """Build async fake statements sharing the async provider's event log."""

    def factory(
        sql: str = "INSERT INTO items (id) VALUES (?)",
        parameters: list[Any] | None = None,
        native: bool = True,
        **kwargs: Any,
    ) -> FakeStatement:
        statement_type = AsyncFakeBatchStatement if native else AsyncFakeStatement
        if not native:
            kwargs.pop("valid", None)
        return statement_type(async_provider.events, sql, parameters, **kwargs)

    return factory


@pytest.fixture()
def make_parameters() -> Callable[..., ReparentingParameters]:
    """Build reparenting parameter collections from parameter names."""

    def factory(*names: str) -> ReparentingParameters:
        return ReparentingParameters([FakeParameter(name) for name in names])

    return factory
