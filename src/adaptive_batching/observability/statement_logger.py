"""SQL statement rendering and logging for batched writes.

Statements are rendered as their SQL text followed by the bound parameters,
for example ``INSERT INTO t VALUES (?, ?); p0 = 1 [Type: int], p1 = 'a' [Type: str]``.
Everything is written through the ``adaptive_batching.sql`` logger so SQL can be
routed separately from the executors' own diagnostics.
"""

import logging
from typing import Any

logger = logging.getLogger(__name__)
sql_logger = logging.getLogger("adaptive_batching.sql")

_BATCH_HEADER = "Batch commands:"


class SqlStatementLogger:
    """Renders statements with their parameters and writes them to the SQL logger.

    Args:
        log_sql: Log every statement at INFO, regardless of the logger's level.
            When False, statements are only rendered if DEBUG is enabled on the
            ``adaptive_batching.sql`` logger.

    Example:
        ```python
        statement_logger = SqlStatementLogger(log_sql=True)
        statement_logger.log_command(statement)
        ```
    """

    def __init__(self, log_sql: bool = False) -> None:
        self._log_sql = log_sql

    @property
    def log_sql(self) -> bool:
        """Whether statements are forced into the log."""
        return self._log_sql

    @property
    def is_debug_enabled(self) -> bool:
        """Whether rendered statements would be written anywhere."""
        return self._log_sql or sql_logger.isEnabledFor(logging.DEBUG)

    def render(self, statement: Any) -> str:
        """Render a statement's SQL and parameters on one line.

        Args:
            statement: Any object with ``sql`` and ``parameters`` attributes.

        Returns:
            The rendered statement.
        """
        parameters = statement.parameters
        rendered = [
            f"p{index} = {parameters[index]!r} [Type: {type(parameters[index]).__name__}]"
            for index in range(len(parameters))
        ]
        if not rendered:
            return statement.sql
        return f"{statement.sql}; {', '.join(rendered)}"

    def log_command(self, statement: Any) -> None:
        """Log a statement about to be executed on its own."""
        if not self.is_debug_enabled:
            return
        self._emit(self.render(statement))

    def log_batch_command(self, batch_commands: str) -> None:
        """Log the rendered commands of a batch about to be flushed."""
        if not self.is_debug_enabled:
            return
        self._emit(batch_commands)

    def _emit(self, message: str) -> None:
        if self._log_sql:
            sql_logger.info(message)
        else:
            sql_logger.debug(message)


class BatchCommandLog:
    """Collects the rendered commands of the batch in progress.

    Each merged statement contributes one ``command <n>:<rendered>`` line under a
    ``Batch commands:`` header, written out in one piece when the batch is
    flushed. A statement that cannot be rendered or logged is reported at
    WARNING on the executor logger and otherwise ignored.

    Args:
        statement_logger: Renderer and sink for the SQL text.
    """

    def __init__(self, statement_logger: SqlStatementLogger) -> None:
        self._statement_logger = statement_logger
        self._lines: list[str] = []

    def __len__(self) -> int:
        return len(self._lines)

    @property
    def statement_logger(self) -> SqlStatementLogger:
        """The logger batch commands are written to."""
        return self._statement_logger

    def record(self, index: int, statement: Any, is_new_batch: bool) -> None:
        """Render the ``index``-th statement of the batch into the log.

        Args:
            index: Position of the statement within the batch.
            statement: The statement being merged.
            is_new_batch: Whether the statement opens a new batch.
        """
        if not self._statement_logger.is_debug_enabled and not logger.isEnabledFor(logging.DEBUG):
            return
        try:
            rendered = self._statement_logger.render(statement)
        except Exception:
            logger.warning("Could not render statement for the batch log", exc_info=True)
            return

        self._lines.append(f"command {index}:{rendered}")
        logger.debug(
            "%s%s", "Adding to batch: " if is_new_batch else "Adding to existing batch: ", rendered
        )

    def render(self) -> str:
        """Return the header followed by every recorded command."""
        return "\n".join([_BATCH_HEADER, *self._lines])

    def write(self) -> None:
        """Send the collected commands to the SQL logger and start over."""
        if self._lines:
            try:
                self._statement_logger.log_batch_command(self.render())
            except Exception:
                logger.warning("Could not write the batch command log", exc_info=True)
        self._lines.clear()

    def log_command(self, statement: Any) -> None:
        """Log a statement executed outside of any batch."""
        try:
            self._statement_logger.log_command(statement)
        except Exception:
            logger.warning("Could not log statement", exc_info=True)

    def clear(self) -> None:
        """Forget every recorded command."""
        self._lines.clear()

    def truncate(self, length: int) -> None:
        """Forget the commands recorded after the first ``length``."""
        del self._lines[length:]
