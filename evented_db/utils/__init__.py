"""
Utilities package for evented-db.

Shared helpers for logging and batch completion tracking. Keep this package
free of driver-specific logic.
"""

from evented_db.utils.logging import configure_logging, get_logger
from evented_db.utils.waitgroup import WaitGroup

__all__ = [
    "configure_logging",
    "get_logger",
    "WaitGroup",
]
