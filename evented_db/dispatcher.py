"""
Batch dispatcher: fire every queued query at once and wait for all of them.

For one batch the dispatcher:

1. grows the pool so there is one connection per query,
2. schedules each query as its own asyncio task on the i-th connection,
3. shapes each raw result and hands it to the query's response callback as
   soon as that query finishes,
4. waits on a WaitGroup until every query has ended.

A failing query wakes the waiter immediately. Whatever is still in flight is
cancelled, the connections involved are invalidated, and the error is raised
to the caller.
"""

from __future__ import annotations

import asyncio
import inspect
from typing import Any, List, Optional, Sequence

from evented_db.domain.models import QueryDescriptor, ResponseCallback
from evented_db.domain.shaping import shape
from evented_db.errors import BatchTimeoutError, PoolConnectionError, QueryExecutionError
from evented_db.infrastructure.pool import ConnectionPool
from evented_db.utils.logging import get_logger
from evented_db.utils.waitgroup import WaitGroup

log = get_logger(__name__)


def _accepts_connection(callback: ResponseCallback) -> bool:
    """Whether `callback` can take the connection as a second positional argument."""
    try:
        signature = inspect.signature(callback)
    except (TypeError, ValueError):
        return True
    positional = 0
    for parameter in signature.parameters.values():
        if parameter.kind is parameter.VAR_POSITIONAL:
            return True
        if parameter.kind in (parameter.POSITIONAL_ONLY, parameter.POSITIONAL_OR_KEYWORD):
            positional += 1
    return positional >= 2


def _invoke(callback: ResponseCallback, result: Any, connection: Any) -> None:
    if _accepts_connection(callback):
        callback(result, connection)
    else:
        callback(result)


class BatchDispatcher:
    """
    Runs one batch of descriptors over a connection pool.

    Parameters
    ----------
    pool : ConnectionPool
        Pool whose first ``len(batch)`` slots serve the batch.
    timeout : float | None
        Upper bound on the batch wait in seconds; None waits forever.
    """

    def __init__(self, pool: ConnectionPool, timeout: Optional[float] = None) -> None:
        self.pool = pool
        self.timeout = timeout

    def _wrap_error(self, exc: Exception, descriptor: QueryDescriptor, connection: Any) -> Exception:
        if self.pool.driver.is_connection_error(connection, exc):
            error: Exception = PoolConnectionError(str(exc), descriptor.location)
        else:
            error = QueryExecutionError(str(exc), descriptor.sql, descriptor.location)
        error.__cause__ = exc
        return error

    async def _fire(
        self,
        index: int,
        descriptor: QueryDescriptor,
        connection: Any,
        tracker: WaitGroup,
    ) -> None:
        try:
            raw = await self.pool.driver.fetch(connection, descriptor.sql, descriptor.binds)
        except asyncio.CancelledError:
            self.pool.invalidate(index)
            raise
        except Exception as exc:
            self.pool.invalidate(index)
            log.error(
                f"Query failed: {exc}",
                extra={"slot": index, "sql": descriptor.sql, "location": descriptor.location},
            )
            tracker.end(self._wrap_error(exc, descriptor, connection))
            return

        try:
            _invoke(descriptor.response, shape(raw, descriptor), connection)
        except Exception as exc:
            tracker.end(exc)
            return
        tracker.end()

    async def _abandon(self, tasks: List["asyncio.Task[None]"]) -> None:
        pending = [task for task in tasks if not task.done()]
        for task in pending:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
        if pending:
            log.warning(
                f"Cancelled {len(pending)} in-flight queries",
                extra={"cancelled": len(pending)},
            )

    async def dispatch(
        self, descriptors: Sequence[QueryDescriptor], location: Optional[str] = None
    ) -> None:
        """
        Execute `descriptors` concurrently and return when all have completed.

        Raises
        ------
        PoolConnectionError
            If the pool could not be grown or a connection broke mid-query.
        QueryExecutionError
            If a query failed in the driver.
        BatchTimeoutError
            If `timeout` elapsed first.
        """
        if not descriptors:
            return
        await self.pool.ensure_capacity(len(descriptors), location)

        tracker = WaitGroup()
        tasks: List["asyncio.Task[None]"] = []
        for index, descriptor in enumerate(descriptors):
            connection = self.pool[index]
            tracker.begin()
            tasks.append(asyncio.create_task(self._fire(index, descriptor, connection, tracker)))

        try:
            await asyncio.wait_for(tracker.wait(), self.timeout)
        except asyncio.TimeoutError as exc:
            outstanding = tracker.outstanding
            await self._abandon(tasks)
            raise BatchTimeoutError(self.timeout or 0.0, outstanding) from exc
        except BaseException:
            await self._abandon(tasks)
            raise
        await asyncio.gather(*tasks)


__all__ = ["BatchDispatcher"]
