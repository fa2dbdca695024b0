"""
Infrastructure package for evented-db.

Centralizes database connectivity concerns (driver adapters, pooling). Keep
this layer focused on I/O and resource management, decoupled from the
batching logic.
"""

from evented_db.infrastructure.drivers import (
    Driver,
    PsycopgDriver,
    SQLiteDriver,
    available_schemes,
    resolve_driver,
)
from evented_db.infrastructure.pool import ConnectionPool

__all__ = [
    "ConnectionPool",
    "Driver",
    "PsycopgDriver",
    "SQLiteDriver",
    "available_schemes",
    "resolve_driver",
]
