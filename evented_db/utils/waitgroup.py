"""
Count-down completion tracker for one batch.

Every dispatched query calls `begin()` before it is scheduled and `end()` when
it finishes; `wait()` returns once the count is back to zero. The first
failure reported through `end(error)` wakes the waiter immediately and is
re-raised from `wait()`, so one failing query aborts the whole wait.

Only touch a WaitGroup from the event loop thread that awaits it.
"""

from __future__ import annotations

import asyncio
from typing import Optional


class WaitGroup:
    def __init__(self) -> None:
        self._outstanding = 0
        self._error: Optional[BaseException] = None
        self._done = asyncio.Event()
        self._done.set()

    @property
    def outstanding(self) -> int:
        return self._outstanding

    @property
    def error(self) -> Optional[BaseException]:
        return self._error

    def begin(self) -> None:
        self._outstanding += 1
        self._done.clear()

    def end(self, error: Optional[BaseException] = None) -> None:
        if self._outstanding <= 0:
            raise RuntimeError("WaitGroup.end() called more times than begin()")
        self._outstanding -= 1
        if error is not None and self._error is None:
            self._error = error
        if self._outstanding == 0 or self._error is not None:
            self._done.set()

    async def wait(self) -> None:
        await self._done.wait()
        if self._error is not None:
            raise self._error


__all__ = ["WaitGroup"]
