"""
Database driver adapters for evented-db.

A driver knows how to open connections for one database library and how to
run a single query on one of them. The dispatcher only ever talks to the
`Driver` protocol, so PostgreSQL (psycopg 3) and SQLite (aiosqlite) look
the same from the batching layer.

Connection establishment goes through tenacity so transient failures can be
retried; the default policy is a single attempt.
"""

from __future__ import annotations

import sqlite3
from typing import Any, Callable, Dict, Optional, Protocol, Sequence, Tuple, Type, runtime_checkable

import aiosqlite
import psycopg
from tenacity import (
    AsyncRetrying,
    Retrying,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from evented_db.domain.models import RawResult
from evented_db.errors import UsageError


def _retry_policy(attempts: int, errors: Tuple[Type[BaseException], ...]) -> Dict[str, Any]:
    return {
        "stop": stop_after_attempt(max(attempts, 1)),
        "wait": wait_exponential(multiplier=1, min=1, max=10),
        "retry": retry_if_exception_type(errors),
        "reraise": True,
    }


@runtime_checkable
class Driver(Protocol):
    """
    Interface every database adapter implements.

    Attributes
    ----------
    name : str
        Short identifier used in logs.
    """

    name: str

    async def connect(self) -> Any:
        """Open a connection for pooled, asynchronous use."""
        ...

    def connect_sync(self) -> Any:
        """Open a driver-native blocking connection for direct use."""
        ...

    async def fetch(self, connection: Any, sql: str, binds: Sequence[Any]) -> RawResult:
        """Run one query and return every row."""
        ...

    def is_connection_error(self, connection: Any, exc: BaseException) -> bool:
        """Whether `exc` means the connection itself is unusable, not just the query."""
        ...

    async def close(self, connection: Any) -> None:
        """Close a connection previously returned by `connect()`."""
        ...


class PsycopgDriver:
    """
    PostgreSQL through psycopg 3.

    Pooled connections are `psycopg.AsyncConnection` objects in autocommit mode
    so read queries never leave a transaction open between batches.
    """

    name: str = "psycopg"
    _connect_errors: Tuple[Type[BaseException], ...] = (
        psycopg.OperationalError,
        psycopg.InterfaceError,
    )

    def __init__(
        self,
        conninfo: str,
        username: Optional[str] = None,
        password: Optional[str] = None,
        connect_attempts: int = 1,
        **options: Any,
    ) -> None:
        self.conninfo = conninfo
        self.connect_attempts = connect_attempts
        self._kwargs: Dict[str, Any] = dict(options)
        if username:
            self._kwargs["user"] = username
        if password:
            self._kwargs["password"] = password

    async def connect(self) -> psycopg.AsyncConnection:
        retrying = AsyncRetrying(**_retry_policy(self.connect_attempts, self._connect_errors))
        return await retrying(
            psycopg.AsyncConnection.connect, self.conninfo, autocommit=True, **self._kwargs
        )

    def connect_sync(self) -> psycopg.Connection:
        retrying = Retrying(**_retry_policy(self.connect_attempts, self._connect_errors))
        return retrying(psycopg.connect, self.conninfo, **self._kwargs)

    async def fetch(
        self, connection: psycopg.AsyncConnection, sql: str, binds: Sequence[Any]
    ) -> RawResult:
        async with connection.cursor() as cur:
            await cur.execute(sql, tuple(binds) or None)
            if cur.description is None:
                return RawResult(columns=[], rows=[])
            columns = [column.name for column in cur.description]
            rows = await cur.fetchall()
        return RawResult(columns=columns, rows=[tuple(row) for row in rows])

    def is_connection_error(self, connection: psycopg.AsyncConnection, exc: BaseException) -> bool:
        # OperationalError also covers query-level failures such as QueryCanceled,
        # so ask the connection rather than the exception type.
        return bool(connection.broken or connection.closed)

    async def close(self, connection: psycopg.AsyncConnection) -> None:
        await connection.close()


class SQLiteDriver:
    """
    SQLite through aiosqlite.

    Every aiosqlite connection runs on its own thread, so queries on different
    pooled connections overlap. `connect_sync()` hands out a plain sqlite3
    connection for blocking use.
    """

    name: str = "sqlite"

    def __init__(
        self,
        path: str,
        username: Optional[str] = None,
        password: Optional[str] = None,
        connect_attempts: int = 1,
        **options: Any,
    ) -> None:
        del username, password  # sqlite has no authentication
        self.path = path
        self.connect_attempts = connect_attempts
        self._options = options

    async def connect(self) -> aiosqlite.Connection:
        retrying = AsyncRetrying(**_retry_policy(self.connect_attempts, (sqlite3.OperationalError,)))
        return await retrying(self._open)

    async def _open(self) -> aiosqlite.Connection:
        return await aiosqlite.connect(self.path, **self._options)

    def connect_sync(self) -> sqlite3.Connection:
        retrying = Retrying(**_retry_policy(self.connect_attempts, (sqlite3.OperationalError,)))
        return retrying(sqlite3.connect, self.path, **self._options)

    async def fetch(self, connection: aiosqlite.Connection, sql: str, binds: Sequence[Any]) -> RawResult:
        async with connection.execute(sql, tuple(binds)) as cursor:
            columns = [column[0] for column in cursor.description or ()]
            rows = await cursor.fetchall()
        return RawResult(columns=columns, rows=[tuple(row) for row in rows])

    def is_connection_error(self, connection: aiosqlite.Connection, exc: BaseException) -> bool:
        # aiosqlite raises ValueError("no active connection") once the thread is gone
        return isinstance(exc, (sqlite3.InterfaceError, ValueError))

    async def close(self, connection: aiosqlite.Connection) -> None:
        await connection.close()


def _sqlite_path(target: str) -> str:
    # sqlite:///relative.db and sqlite:////absolute.db, as SQLAlchemy spells them
    if target.startswith("dbname="):
        return target[len("dbname="):]
    if target.startswith("///"):
        return target[3:]
    if target.startswith("//"):
        return target[2:]
    return target


def _pg_conninfo(target: str) -> str:
    # dbi:Pg:dbname=app;host=db  ->  "dbname=app host=db"
    return " ".join(part.strip() for part in target.split(";") if part.strip())


DriverFactory = Callable[..., Driver]


def _driver_factories() -> Dict[str, Callable[[str, str], Tuple[DriverFactory, str]]]:
    """Registry of connection-string schemes to (driver class, driver target)."""
    return {
        "postgresql": lambda cs, rest: (PsycopgDriver, cs),
        "postgres": lambda cs, rest: (PsycopgDriver, cs),
        "pg": lambda cs, rest: (PsycopgDriver, _pg_conninfo(rest)),
        "sqlite": lambda cs, rest: (SQLiteDriver, _sqlite_path(rest)),
        "sqlite2": lambda cs, rest: (SQLiteDriver, _sqlite_path(rest)),
    }


def available_schemes() -> list[str]:
    """List the connection-string schemes `resolve_driver` understands."""
    return sorted(_driver_factories().keys())


def resolve_driver(
    connection_string: str,
    username: Optional[str] = None,
    password: Optional[str] = None,
    connect_attempts: int = 1,
    **options: Any,
) -> Driver:
    """
    Build the driver for a connection string.

    Accepts URL style strings (``postgresql://...``, ``sqlite:///path``) and
    DBI style ones (``dbi:Pg:dbname=app;host=db``, ``dbi:SQLite:dbname=path``).

    Raises
    ------
    UsageError
        If the scheme is not supported.
    """
    scheme, _, rest = connection_string.partition(":")
    scheme = scheme.lower()
    if scheme == "dbi":
        scheme, _, rest = rest.partition(":")
        scheme = scheme.lower()

    factories = _driver_factories()
    if scheme not in factories or not rest:
        raise UsageError(
            f"Unsupported connection string {connection_string!r}. "
            f"Supported schemes: {', '.join(available_schemes())}"
        )
    driver_cls, target = factories[scheme](connection_string, rest)
    return driver_cls(
        target,
        username=username,
        password=password,
        connect_attempts=connect_attempts,
        **options,
    )


__all__ = [
    "Driver",
    "PsycopgDriver",
    "SQLiteDriver",
    "available_schemes",
    "resolve_driver",
]
