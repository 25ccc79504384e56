"""Row-count verification for batched and immediate execution.

Immediate execution is verified strictly: the driver reports the rows one
statement touched and anything else is a mismatch. Batched execution only has
an aggregate from the driver, which may be -1 when the driver cannot tell
(the DB-API ``rowcount`` convention). That case is accepted unless the caller
asks for strict verification.
"""

from __future__ import annotations

import logging
from typing import Any

from adaptive_batching.exceptions import StaleStateError, TooManyRowsAffectedError

logger = logging.getLogger(__name__)


def verify_outcome_batched(
    expected_row_count: int, row_count: int, *, strict: bool = False
) -> None:
    """Check the aggregate row count of a flushed batch.

    Args:
        expected_row_count: Sum of the expected counts of every merged statement.
        row_count: Aggregate count reported by the driver.
        strict: Reject an unknown (negative) aggregate instead of accepting it.

    Raises:
        StaleStateError: If fewer rows were affected than expected.
        TooManyRowsAffectedError: If more rows were affected than expected.
    """
    if row_count < 0 and not strict:
        logger.debug(
            "Batch row count unknown (driver reported %d); expected %d, not verified",
            row_count,
            expected_row_count,
        )
        return

    if expected_row_count > row_count:
        raise StaleStateError(
            "Batch update returned unexpected row count from update; "
            f"actual row count: {row_count}; expected: {expected_row_count}",
            expected=expected_row_count,
            actual=row_count,
        )
    if expected_row_count < row_count:
        raise TooManyRowsAffectedError(
            "Batch update returned unexpected row count from update; "
            f"actual row count: {row_count}; expected: {expected_row_count}",
            expected=expected_row_count,
            actual=row_count,
        )


def verify_outcome_non_batched(expected_row_count: int, row_count: int, statement: Any) -> None:
    """Check the row count of a single, immediately executed statement.

    Args:
        expected_row_count: Rows the statement should have affected.
        row_count: Rows the driver reports it affected.
        statement: The executed statement, attached to any raised error.

    Raises:
        StaleStateError: If fewer rows were affected than expected.
        TooManyRowsAffectedError: If more rows were affected than expected.
    """
    sql = getattr(statement, "sql", "<unknown>")
    if expected_row_count > row_count:
        raise StaleStateError(
            f"Unexpected row count: {row_count}; expected: {expected_row_count}; statement: {sql}",
            expected=expected_row_count,
            actual=row_count,
            statement=statement,
        )
    if expected_row_count < row_count:
        raise TooManyRowsAffectedError(
            f"Unexpected row count: {row_count}; expected: {expected_row_count}; statement: {sql}",
            expected=expected_row_count,
            actual=row_count,
            statement=statement,
        )
