"""
Result shaping: turn a driver's raw rows into the structure a query asked for.

The four shapes follow the classic DBI select helpers: first row as a mapping,
a flat column list, rows keyed by a field, and rows as lists.
"""

from __future__ import annotations

from typing import Any, Callable, Dict, List, Optional, Sequence

from evented_db.domain.models import KeyField, QueryDescriptor, RawResult, ShapeMode
from evented_db.errors import UsageError


def row_as_mapping(raw: RawResult) -> Optional[Dict[str, Any]]:
    if not raw.rows:
        return None
    return dict(zip(raw.columns, raw.rows[0]))


def column_as_list(raw: RawResult, columns: Optional[Sequence[int]] = None) -> List[Any]:
    """
    Flatten the selected columns of every row into one list.

    `columns` are 1-based indexes; by default only the first column is taken.
    """
    indexes = [int(c) - 1 for c in (columns or [1])]
    width = len(raw.columns)
    for index in indexes:
        if index < 0 or (width and index >= width):
            raise UsageError(f"Column index {index + 1} out of range (result has {width} columns)")
    values: List[Any] = []
    for row in raw.rows:
        values.extend(row[index] for index in indexes)
    return values


def rows_as_mapping_by_key(raw: RawResult, key_field: KeyField) -> Dict[Any, Any]:
    """
    Key every row by `key_field`.

    A sequence of field names nests one mapping level per name. Later rows
    with the same key replace earlier ones.
    """
    keys = [key_field] if isinstance(key_field, str) else list(key_field)
    if not keys:
        raise UsageError("rows_as_list_of_mappings requires a key field")
    missing = [key for key in keys if key not in raw.columns]
    if missing:
        raise UsageError(
            f"Field {missing[0]!r} does not exist (available: {', '.join(raw.columns)})"
        )

    shaped: Dict[Any, Any] = {}
    for row in raw.rows:
        record = dict(zip(raw.columns, row))
        level = shaped
        for key in keys[:-1]:
            level = level.setdefault(record[key], {})
        level[record[keys[-1]]] = record
    return shaped


def rows_as_list_of_lists(raw: RawResult, max_rows: Optional[int] = None) -> List[List[Any]]:
    rows = raw.rows if max_rows is None else raw.rows[: int(max_rows)]
    return [list(row) for row in rows]


_SHAPERS: Dict[ShapeMode, Callable[[RawResult, QueryDescriptor], Any]] = {
    ShapeMode.ROW_AS_MAPPING: lambda raw, d: row_as_mapping(raw),
    ShapeMode.COLUMN_AS_LIST: lambda raw, d: column_as_list(raw, d.options.get("columns")),
    ShapeMode.ROWS_AS_LIST_OF_MAPPINGS: lambda raw, d: rows_as_mapping_by_key(raw, d.key_field),
    ShapeMode.ROWS_AS_LIST_OF_LISTS: lambda raw, d: rows_as_list_of_lists(
        raw, d.options.get("max_rows")
    ),
}


def shape(raw: RawResult, descriptor: QueryDescriptor) -> Any:
    """Apply the descriptor's shaping mode to a raw driver result."""
    return _SHAPERS[descriptor.mode](raw, descriptor)


def validate(descriptor: QueryDescriptor) -> None:
    """
    Reject descriptors that cannot possibly run.

    Raises
    ------
    UsageError
        If the callback is missing or not callable, or a keyed query has no key.
    """
    if descriptor.response is None:
        raise UsageError(f"Query {descriptor.sql!r} was queued without a 'response' callback")
    if not callable(descriptor.response):
        raise UsageError(f"'response' for query {descriptor.sql!r} is not callable")
    if descriptor.mode is ShapeMode.ROWS_AS_LIST_OF_MAPPINGS and not descriptor.key_field:
        raise UsageError(
            f"rows_as_list_of_mappings requires a key field (query {descriptor.sql!r})"
        )


__all__ = [
    "column_as_list",
    "row_as_mapping",
    "rows_as_list_of_lists",
    "rows_as_mapping_by_key",
    "shape",
    "validate",
]
