"""
Domain package for evented-db.

Exports the query descriptor, shaping modes, and result containers used by
the client and dispatcher.
"""

from evented_db.domain.models import (
    BatchResult,
    QueryDescriptor,
    RawResult,
    ShapeMode,
    build_descriptor,
)
from evented_db.domain.shaping import shape, validate

__all__ = [
    "BatchResult",
    "QueryDescriptor",
    "RawResult",
    "ShapeMode",
    "build_descriptor",
    "shape",
    "validate",
]
