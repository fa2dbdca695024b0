"""
Connection pool for evented-db.

The pool is a list of connection slots that only ever grows: a batch of N
queries needs N slots, and slot i is lent to the i-th query of the batch.
Slots whose connection broke are emptied and refilled the next time a batch
needs them, so the slot count stays monotonic.

The pool also owns the asyncio event loop its connections are bound to. The
loop persists across batches; blocking callers drive it through `run()`.
"""

from __future__ import annotations

import asyncio
from typing import Any, Awaitable, List, Optional, TypeVar

from evented_db.errors import PoolConnectionError
from evented_db.infrastructure.drivers import Driver
from evented_db.utils.logging import get_logger

log = get_logger(__name__)

T = TypeVar("T")


class ConnectionPool:
    """
    Lazily grown set of live connections for one driver.

    Parameters
    ----------
    driver : Driver
        Adapter used to open, use, and close connections.
    """

    def __init__(self, driver: Driver) -> None:
        self.driver = driver
        self._slots: List[Optional[Any]] = []
        self._broken: List[Any] = []
        self._loop: Optional[asyncio.AbstractEventLoop] = None
        self._closed = False

    @property
    def size(self) -> int:
        """Number of slots, live or awaiting a refill."""
        return len(self._slots)

    @property
    def live(self) -> int:
        return sum(1 for conn in self._slots if conn is not None)

    @property
    def closed(self) -> bool:
        return self._closed

    def __getitem__(self, index: int) -> Any:
        connection = self._slots[index]
        if connection is None:
            raise PoolConnectionError(f"pool slot {index} has no live connection")
        return connection

    def run(self, awaitable: Awaitable[T]) -> T:
        """
        Drive `awaitable` to completion on the pool's event loop, blocking.

        Raises
        ------
        RuntimeError
            If called from inside a running event loop, or after `close()`.
        """
        try:
            asyncio.get_running_loop()
        except RuntimeError:
            pass
        else:
            if asyncio.iscoroutine(awaitable):
                awaitable.close()
            raise RuntimeError(
                "Blocking batch execution cannot run inside an async context; "
                "call it from synchronous code or a worker thread."
            )
        if self._closed:
            if asyncio.iscoroutine(awaitable):
                awaitable.close()
            raise RuntimeError("Connection pool is closed")
        if self._loop is None:
            self._loop = asyncio.new_event_loop()
        return self._loop.run_until_complete(awaitable)

    async def ensure_capacity(self, needed: int, location: Optional[str] = None) -> int:
        """
        Make sure slots ``0..needed-1`` all hold live connections.

        Empty slots are refilled first, then new slots are appended. New
        connections are opened concurrently. Returns the number opened.

        Raises
        ------
        PoolConnectionError
            If any connection could not be opened. Connections that did open
            are kept in their slots.
        """
        await self._reap()
        while len(self._slots) < needed:
            self._slots.append(None)
        missing = [index for index in range(needed) if self._slots[index] is None]
        if not missing:
            return 0

        log.debug(
            f"Opening {len(missing)} connection(s)",
            extra={"driver": self.driver.name, "pool_size": self.size, "opening": len(missing)},
        )
        outcomes = await asyncio.gather(
            *(self.driver.connect() for _ in missing), return_exceptions=True
        )
        failure: Optional[BaseException] = None
        for index, outcome in zip(missing, outcomes):
            if isinstance(outcome, BaseException):
                failure = failure or outcome
            else:
                self._slots[index] = outcome
        if failure is not None:
            log.error(
                "Failed to open pooled connection",
                extra={"driver": self.driver.name, "error": str(failure)},
            )
            raise PoolConnectionError(str(failure), location) from failure
        return len(missing)

    def invalidate(self, index: int) -> None:
        """Take the connection in slot `index` out of service; it is closed later."""
        connection = self._slots[index]
        if connection is None:
            return
        self._slots[index] = None
        self._broken.append(connection)
        log.debug("Invalidated pooled connection", extra={"slot": index})

    async def _reap(self) -> None:
        broken, self._broken = self._broken, []
        for connection in broken:
            try:
                await self.driver.close(connection)
            except Exception as exc:  # noqa: BLE001 - the connection is already unusable
                log.warning("Error closing broken connection", extra={"error": str(exc)})

    async def _close_all(self) -> None:
        for index in range(len(self._slots)):
            self.invalidate(index)
        await self._reap()

    def close(self) -> None:
        """Close every connection and the event loop. Idempotent."""
        if self._closed:
            return
        if self._loop is not None:
            self._loop.run_until_complete(self._close_all())
            self._loop.run_until_complete(self._loop.shutdown_default_executor())
            self._loop.close()
            self._loop = None
        self._slots = []
        self._closed = True


__all__ = ["ConnectionPool"]
