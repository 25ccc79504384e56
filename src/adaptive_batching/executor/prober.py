"""Runtime detection of native batching support.

Only some driver versions can batch statements, and even those refuse some
statements. The probers start out optimistic and learn from each statement:

- a statement type without the batching operations disables batching for the
  rest of the prober's life, since the driver will never grow them;
- a prepared statement that reports itself invalid for batching is rejected on
  its own, leaving later statements free to batch.

Asking an unprepared or unconnected statement gives misleading answers on some
drivers, so probing binds and prepares the statement first.
"""

from __future__ import annotations

import json
import logging
from datetime import UTC, datetime
from typing import Any

from adaptive_batching.executor.accumulator import bind_statement
from adaptive_batching.executor.base import (
    AsyncConnectionProvider,
    ConnectionProvider,
    SupportsNativeBatching,
)

logger = logging.getLogger(__name__)


class _CapabilityState:
    """Capability flag, per-type cache and probe counter shared by both probers."""

    def __init__(self) -> None:
        self._supports_batching = True
        self._probe_count = 0
        self._type_support: dict[type, bool] = {}

    @property
    def supports_batching(self) -> bool:
        """False once the driver has been found to lack native batching."""
        return self._supports_batching

    @property
    def probe_count(self) -> int:
        """Number of probes that inspected a statement."""
        return self._probe_count

    def _has_batching_operations(self, statement: Any) -> bool:
        statement_type = type(statement)
        supported = self._type_support.get(statement_type)
        if supported is None:
            supported = isinstance(statement, SupportsNativeBatching)
            self._type_support[statement_type] = supported
        return supported

    def _disable(self, statement: Any) -> None:
        self._supports_batching = False
        log_entry = {
            "event": "batching_disabled",
            "reason": "not supported by current driver",
            "statement_type": type(statement).__qualname__,
            "timestamp": datetime.now(UTC).isoformat(),
        }
        logger.info(json.dumps(log_entry))

    def _reject(self, statement: Any) -> bool:
        logger.info(
            "Batching disabled - not supported for current type of statement: %s",
            getattr(statement, "sql", "<unknown>"),
        )
        return False


class CapabilityProber(_CapabilityState):
    """Decides whether a statement can start a native batch.

    Args:
        provider: Source of the connection and transaction used while probing.

    Example:
        ```python
        prober = CapabilityProber(provider)
        if prober.probe(statement):
            ...  # statement may root a batch
        ```
    """

    def __init__(self, provider: ConnectionProvider) -> None:
        super().__init__()
        self._provider = provider

    def probe(self, statement: Any) -> bool:
        """Check whether ``statement`` can be executed as part of a native batch.

        May attach, enlist and prepare the statement as a side effect, even when
        the answer is no.

        Args:
            statement: The candidate root statement.

        Returns:
            True if the statement may be batched.
        """
        if not self._supports_batching:
            return False

        self._probe_count += 1

        if not self._has_batching_operations(statement):
            self._disable(statement)
            return False

        bind_statement(statement, self._provider.get_connection(), self._provider.transaction)
        statement.prepare()

        if not statement.is_valid_for_batching():
            return self._reject(statement)

        return True


class AsyncCapabilityProber(_CapabilityState):
    """Asynchronous counterpart of CapabilityProber.

    Args:
        provider: Source of the connection and transaction used while probing.
    """

    def __init__(self, provider: AsyncConnectionProvider) -> None:
        super().__init__()
        self._provider = provider

    async def probe(self, statement: Any) -> bool:
        """Check whether ``statement`` can be executed as part of a native batch.

        Args:
            statement: The candidate root statement.

        Returns:
            True if the statement may be batched.
        """
        if not self._supports_batching:
            return False

        self._probe_count += 1

        if not self._has_batching_operations(statement):
            self._disable(statement)
            return False

        connection = await self._provider.get_connection()
        bind_statement(statement, connection, self._provider.transaction)
        await statement.prepare()

        if not statement.is_valid_for_batching():
            return self._reject(statement)

        return True
