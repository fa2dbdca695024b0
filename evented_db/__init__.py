"""
evented-db - batch independent read queries and run them in parallel.

Queries are queued with a result callback, then a single blocking
`execute_batch()` call fans them out over pooled connections, invokes each
callback as its result arrives, and returns once every query has finished.

- Four result shapes (row as mapping, column as list, rows keyed by a field,
  rows as lists)
- Per-client connection pool that grows to the largest batch seen
- PostgreSQL (psycopg 3) and SQLite drivers
"""

from __future__ import annotations

__version__ = "0.1.0"
__license__ = "MIT"

# Public API exports
from evented_db.client import EventedClient
from evented_db.config import Settings, get_settings
from evented_db.domain.models import BatchResult, QueryDescriptor, RawResult, ShapeMode
from evented_db.errors import (
    BatchTimeoutError,
    EventedDBError,
    PoolConnectionError,
    QueryExecutionError,
    UsageError,
)
from evented_db.infrastructure.pool import ConnectionPool
from evented_db.utils.logging import configure_logging, get_logger

__all__ = [
    # Version info
    "__version__",
    "__license__",
    # Client
    "EventedClient",
    "ConnectionPool",
    # Configuration
    "Settings",
    "get_settings",
    # Domain
    "BatchResult",
    "QueryDescriptor",
    "RawResult",
    "ShapeMode",
    # Errors
    "BatchTimeoutError",
    "EventedDBError",
    "PoolConnectionError",
    "QueryExecutionError",
    "UsageError",
    # Logging
    "configure_logging",
    "get_logger",
]
