"""
Exception taxonomy for evented-db.

Failures are batch-granular: every error raised while a batch runs surfaces
from the blocking ``execute_batch()`` call that started it.
"""

from __future__ import annotations

from typing import Optional


class EventedDBError(Exception):
    """Base class for all evented-db errors."""


class PoolConnectionError(EventedDBError):
    """Opening or using a pooled connection failed."""

    def __init__(self, message: str, location: Optional[str] = None) -> None:
        self.message = message
        self.location = location
        text = f"DBI Error: {message}"
        if location:
            text += f" at {location}"
        super().__init__(text)


class QueryExecutionError(EventedDBError):
    """A dispatched query failed inside the database driver."""

    def __init__(self, message: str, sql: str, location: Optional[str] = None) -> None:
        self.message = message
        self.sql = sql
        self.location = location
        text = message
        if location:
            text += f" (query queued at {location})"
        super().__init__(text)


class BatchTimeoutError(EventedDBError):
    """The batch did not finish within the configured timeout."""

    def __init__(self, timeout: float, outstanding: int) -> None:
        self.timeout = timeout
        self.outstanding = outstanding
        super().__init__(
            f"Batch did not complete within {timeout}s ({outstanding} queries outstanding)"
        )


class UsageError(EventedDBError, ValueError):
    """The client was asked to do something it cannot do."""


__all__ = [
    "EventedDBError",
    "PoolConnectionError",
    "QueryExecutionError",
    "BatchTimeoutError",
    "UsageError",
]
