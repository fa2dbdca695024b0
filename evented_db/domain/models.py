"""
Domain models for evented-db.

Defines the per-query descriptor captured at enqueue time, the shaping modes a
descriptor can request, the raw result every driver returns, and the summary
returned after a batch completes.
"""
from __future__ import annotations

import enum
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Mapping, Optional, Sequence, Tuple, TypedDict, Union

ResponseCallback = Callable[..., Any]
KeyField = Union[str, Sequence[str]]


class ShapeMode(str, enum.Enum):
    """How the rows of a query are handed to its response callback."""

    ROW_AS_MAPPING = "row_as_mapping"
    COLUMN_AS_LIST = "column_as_list"
    ROWS_AS_LIST_OF_MAPPINGS = "rows_as_list_of_mappings"
    ROWS_AS_LIST_OF_LISTS = "rows_as_list_of_lists"


@dataclass(frozen=True)
class QueryDescriptor:
    """
    One deferred query and its callback.

    `options` holds the extra shaping hints passed alongside the callback
    (``columns`` for COLUMN_AS_LIST, ``max_rows`` for ROWS_AS_LIST_OF_LISTS).
    `location` is the ``file:line`` of the enqueue call.
    """

    sql: str
    mode: ShapeMode
    response: Optional[ResponseCallback]
    binds: Tuple[Any, ...] = ()
    key_field: Optional[KeyField] = None
    options: Mapping[str, Any] = field(default_factory=dict)
    location: Optional[str] = None


@dataclass(frozen=True)
class RawResult:
    """Column names and row tuples exactly as the driver produced them."""

    columns: List[str]
    rows: List[Tuple[Any, ...]]


class BatchResult(TypedDict):
    """Summary of one `execute_batch()` call."""

    queries: int
    duration_seconds: float
    pool_size: int


def build_descriptor(
    sql: str,
    mode: ShapeMode,
    options: Optional[Mapping[str, Any]],
    binds: Sequence[Any],
    key_field: Optional[KeyField] = None,
    location: Optional[str] = None,
) -> QueryDescriptor:
    """Strip the response callback out of `options` and freeze the rest."""
    extra: Dict[str, Any] = dict(options or {})
    response = extra.pop("response", None)
    return QueryDescriptor(
        sql=sql,
        mode=mode,
        response=response,
        binds=tuple(binds),
        key_field=key_field,
        options=extra,
        location=location,
    )


__all__ = [
    "BatchResult",
    "KeyField",
    "QueryDescriptor",
    "RawResult",
    "ResponseCallback",
    "ShapeMode",
    "build_descriptor",
]
