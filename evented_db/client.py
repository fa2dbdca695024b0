"""
Client handle: queue read queries now, run them all in parallel later.

Usage:
    from evented_db import EventedClient

    results = {}
    with EventedClient("sqlite:///app.db") as client:
        client.enqueue_column_as_list(
            "select test1, test2 from test",
            {"columns": [1, 2], "response": lambda rows: results.update(col=rows)},
        )
        client.enqueue_row_as_mapping(
            "select test1, test2 from test",
            {"response": lambda row: results.update(row=row)},
        )
        client.execute_batch()
"""

from __future__ import annotations

import time
import traceback
from typing import Any, List, Mapping, Optional

from evented_db.config import Settings, get_settings
from evented_db.dispatcher import BatchDispatcher
from evented_db.domain.models import (
    BatchResult,
    KeyField,
    QueryDescriptor,
    ShapeMode,
    build_descriptor,
)
from evented_db.domain.shaping import validate
from evented_db.errors import EventedDBError, PoolConnectionError
from evented_db.infrastructure.drivers import resolve_driver
from evented_db.infrastructure.pool import ConnectionPool
from evented_db.utils.logging import get_logger

log = get_logger(__name__)

Options = Optional[Mapping[str, Any]]


def _caller_location(depth: int = 2) -> str:
    """``file:line`` of the frame `depth` levels above this function's caller."""
    frame = traceback.extract_stack(limit=depth + 1)[0]
    return f"{frame.filename}:{frame.lineno}"


class EventedClient:
    """
    Batches independent read queries and runs them concurrently.

    Each `enqueue_*` method records a query and returns immediately. Nothing
    touches the database until `execute_batch()`, which opens as many pooled
    connections as the batch needs, runs every query at once, hands each
    shaped result to its ``response`` callback, and blocks until all are done.

    Parameters
    ----------
    connection_string : str
        ``postgresql://...``, ``sqlite:///path``, or a DBI style string.
    username, password : str | None
        Credentials passed to the driver.
    pool : ConnectionPool | None
        Share an existing pool instead of creating one. A shared pool is not
        closed by this client.
    batch_timeout : float | None
        Seconds to wait for a batch before giving up; None waits forever.
    connect_attempts : int | None
        Attempts per connection before failing. Defaults to settings.
    **driver_options
        Passed through to the driver's connect call.
    """

    def __init__(
        self,
        connection_string: str,
        username: Optional[str] = None,
        password: Optional[str] = None,
        *,
        pool: Optional[ConnectionPool] = None,
        batch_timeout: Optional[float] = None,
        connect_attempts: Optional[int] = None,
        **driver_options: Any,
    ) -> None:
        settings = get_settings()
        self.connection_string = connection_string
        self.batch_timeout = (
            batch_timeout if batch_timeout is not None else settings.batch_timeout_seconds
        )
        if pool is None:
            driver = resolve_driver(
                connection_string,
                username=username,
                password=password,
                connect_attempts=connect_attempts or settings.db_connect_attempts,
                **driver_options,
            )
            self._pool = ConnectionPool(driver)
            self._owns_pool = True
        else:
            self._pool = pool
            self._owns_pool = False
        self._queue: List[QueryDescriptor] = []

    @classmethod
    def from_settings(cls, settings: Optional[Settings] = None, **kwargs: Any) -> "EventedClient":
        """Build a client from DATABASE_URL / DB_* settings."""
        settings = settings or get_settings()
        kwargs.setdefault("connect_attempts", settings.db_connect_attempts)
        kwargs.setdefault("batch_timeout", settings.batch_timeout_seconds)
        return cls(settings.dsn(), settings.db_user, settings.db_password, **kwargs)

    # ------------------------------------------------------------------
    # Queue
    # ------------------------------------------------------------------

    @property
    def pending(self) -> int:
        """Number of queued, not yet executed queries."""
        return len(self._queue)

    @property
    def pool(self) -> ConnectionPool:
        return self._pool

    @property
    def pool_size(self) -> int:
        return self._pool.size

    def _enqueue(
        self,
        sql: str,
        mode: ShapeMode,
        options: Options,
        binds: tuple,
        key_field: Optional[KeyField] = None,
    ) -> None:
        descriptor = build_descriptor(
            sql,
            mode,
            options,
            binds,
            key_field=key_field,
            location=_caller_location(depth=3),
        )
        self._queue.append(descriptor)

    def enqueue_row_as_mapping(self, sql: str, options: Options, *binds: Any) -> None:
        """Queue `sql`; its callback gets the first row as a dict (or None)."""
        self._enqueue(sql, ShapeMode.ROW_AS_MAPPING, options, binds)

    def enqueue_column_as_list(self, sql: str, options: Options, *binds: Any) -> None:
        """
        Queue `sql`; its callback gets a flat list of column values.

        ``options["columns"]`` lists the 1-based columns to collect from each
        row (default ``[1]``).
        """
        self._enqueue(sql, ShapeMode.COLUMN_AS_LIST, options, binds)

    def enqueue_rows_as_list_of_mappings(
        self, sql: str, key_field: KeyField, options: Options, *binds: Any
    ) -> None:
        """
        Queue `sql`; its callback gets ``{row[key_field]: row_dict}``.

        A sequence of key fields nests one level per field.
        """
        self._enqueue(sql, ShapeMode.ROWS_AS_LIST_OF_MAPPINGS, options, binds, key_field)

    def enqueue_rows_as_list_of_lists(self, sql: str, options: Options, *binds: Any) -> None:
        """Queue `sql`; its callback gets every row as a list (``options["max_rows"]`` caps it)."""
        self._enqueue(sql, ShapeMode.ROWS_AS_LIST_OF_LISTS, options, binds)

    def cancel_queue(self) -> None:
        """Drop every queued query without running it. Safe to call repeatedly."""
        if self._queue:
            log.info("Cancelled queued queries", extra={"queries": len(self._queue)})
        self._queue = []

    # ------------------------------------------------------------------
    # Execution
    # ------------------------------------------------------------------

    def execute_batch(self) -> BatchResult:
        """
        Run every queued query concurrently and block until all have finished.

        The queue is always empty afterwards, whether the batch succeeded or
        not. Queries queued by callbacks while the batch runs are discarded.

        Raises
        ------
        UsageError
            If a queued query is malformed (nothing is dispatched).
        PoolConnectionError
            If a connection could not be opened or broke.
        QueryExecutionError
            If any query failed; some callbacks may not have fired.
        BatchTimeoutError
            If the batch exceeded `batch_timeout`.
        RuntimeError
            If called from inside a running event loop.
        """
        location = _caller_location()
        batch, self._queue = self._queue, []
        if not batch:
            return BatchResult(queries=0, duration_seconds=0.0, pool_size=self._pool.size)

        try:
            for descriptor in batch:
                validate(descriptor)

            log.info(
                f"[BATCH START] {len(batch)} queries",
                extra={"queries": len(batch), "pool_size": self._pool.size, "location": location},
            )
            dispatcher = BatchDispatcher(self._pool, timeout=self.batch_timeout)
            start = time.perf_counter()
            try:
                self._pool.run(dispatcher.dispatch(batch, location))
            except EventedDBError as exc:
                log.error(
                    f"[BATCH FAILED] {exc}",
                    extra={"queries": len(batch), "location": location},
                )
                raise
            duration = time.perf_counter() - start
        finally:
            if self._queue:
                log.info(
                    "Discarded queries queued during the batch",
                    extra={"queries": len(self._queue)},
                )
            self._queue = []

        log.info(
            f"[BATCH COMPLETE] {len(batch)} queries",
            extra={
                "queries": len(batch),
                "duration": round(duration, 4),
                "pool_size": self._pool.size,
            },
        )
        return BatchResult(
            queries=len(batch),
            duration_seconds=duration,
            pool_size=self._pool.size,
        )

    def raw_connection(self) -> Any:
        """
        Open a driver-native blocking connection, bypassing the queue.

        The caller owns (and must close) the returned connection.

        Raises
        ------
        PoolConnectionError
            If the driver could not connect.
        """
        driver = self._pool.driver
        try:
            return driver.connect_sync()
        except Exception as exc:
            raise PoolConnectionError(str(exc), _caller_location()) from exc

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def close(self) -> None:
        """Drop queued work and close the pool if this client created it."""
        self.cancel_queue()
        if self._owns_pool:
            self._pool.close()

    def __enter__(self) -> "EventedClient":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()


__all__ = ["EventedClient"]
