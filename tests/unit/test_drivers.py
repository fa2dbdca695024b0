from __future__ import annotations

import sqlite3
from types import SimpleNamespace

import aiosqlite
import psycopg
import pytest

from evented_db.dispatcher import BatchDispatcher
from evented_db.domain.models import ShapeMode, build_descriptor
from evented_db.errors import QueryExecutionError, UsageError
from evented_db.infrastructure.drivers import (
    Driver,
    PsycopgDriver,
    SQLiteDriver,
    available_schemes,
    resolve_driver,
)
from evented_db.infrastructure.pool import ConnectionPool


def test_available_schemes_is_sorted() -> None:
    schemes = available_schemes()
    assert schemes == sorted(schemes)
    assert {"postgresql", "sqlite"} <= set(schemes)


def test_postgres_url_resolves_to_psycopg_with_credentials() -> None:
    driver = resolve_driver("postgresql://db:5432/app", "reader", "s3cret", connect_timeout=3)

    assert isinstance(driver, PsycopgDriver)
    assert isinstance(driver, Driver)
    assert driver.conninfo == "postgresql://db:5432/app"
    assert driver._kwargs == {"connect_timeout": 3, "user": "reader", "password": "s3cret"}


def test_dbi_pg_string_becomes_libpq_conninfo() -> None:
    driver = resolve_driver("dbi:Pg:dbname=app;host=db;port=5433")

    assert isinstance(driver, PsycopgDriver)
    assert driver.conninfo == "dbname=app host=db port=5433"


@pytest.mark.parametrize(
    "connection_string, path",
    [
        ("sqlite:////tmp/app.db", "/tmp/app.db"),
        ("sqlite:///app.db", "app.db"),
        ("sqlite:app.db", "app.db"),
        ("dbi:SQLite:dbname=/tmp/app.db", "/tmp/app.db"),
        ("DBI:SQLite2:dbname=app.db", "app.db"),
    ],
)
def test_sqlite_strings(connection_string: str, path: str) -> None:
    driver = resolve_driver(connection_string, "ignored", "ignored")
    assert isinstance(driver, SQLiteDriver)
    assert driver.path == path


@pytest.mark.parametrize("connection_string", ["mysql://db/app", "postgresql:", "nonsense"])
def test_unknown_schemes_are_usage_errors(connection_string: str) -> None:
    with pytest.raises(UsageError):
        resolve_driver(connection_string)


@pytest.mark.asyncio
async def test_sqlite_driver_fetches_columns_and_rows(tmp_path) -> None:
    driver = SQLiteDriver(str(tmp_path / "d.db"))
    conn = await driver.connect()
    try:
        result = await driver.fetch(conn, "select ? as a, ? as b", (1, "x"))
    finally:
        await driver.close(conn)

    assert result.columns == ["a", "b"]
    assert result.rows == [(1, "x")]


@pytest.mark.asyncio
async def test_sqlite_driver_raises_native_errors(tmp_path) -> None:
    driver = SQLiteDriver(str(tmp_path / "d.db"))
    conn = await driver.connect()
    try:
        with pytest.raises(sqlite3.OperationalError):
            await driver.fetch(conn, "select * from missing_table", ())
    finally:
        await driver.close(conn)


def test_sqlite_connect_sync_is_a_plain_connection(tmp_path) -> None:
    driver = SQLiteDriver(str(tmp_path / "d.db"))
    conn = driver.connect_sync()
    try:
        assert conn.execute("select 41 + 1").fetchone() == (42,)
    finally:
        conn.close()


@pytest.mark.asyncio
async def test_sqlite_driver_is_aiosqlite_backed(tmp_path) -> None:
    driver = SQLiteDriver(str(tmp_path / "d.db"))
    conn = await driver.connect()
    await driver.close(conn)

    assert isinstance(conn, aiosqlite.Connection)


def test_sqlite_connection_errors_are_told_apart_from_query_errors() -> None:
    driver = SQLiteDriver(":memory:")

    assert driver.is_connection_error(None, ValueError("no active connection")) is True
    assert driver.is_connection_error(None, sqlite3.OperationalError("no such table: x")) is False


def test_cancelled_postgres_query_on_healthy_connection_is_not_a_connection_error() -> None:
    driver = PsycopgDriver("postgresql://db/app")
    healthy = SimpleNamespace(broken=False, closed=False)
    broken = SimpleNamespace(broken=True, closed=False)
    cancelled = psycopg.errors.QueryCanceled("canceling statement due to statement timeout")

    assert driver.is_connection_error(healthy, cancelled) is False
    assert driver.is_connection_error(broken, psycopg.OperationalError("server closed")) is True
    assert driver.is_connection_error(SimpleNamespace(broken=False, closed=True), cancelled) is True


def test_dispatcher_maps_cancelled_postgres_query_to_query_error() -> None:
    pool = ConnectionPool(PsycopgDriver("postgresql://db/app"))
    dispatcher = BatchDispatcher(pool)
    descriptor = build_descriptor(
        "select pg_sleep(10)",
        ShapeMode.ROW_AS_MAPPING,
        {"response": lambda row: None},
        (),
        location="here",
    )
    cancelled = psycopg.errors.QueryCanceled("canceling statement")

    error = dispatcher._wrap_error(cancelled, descriptor, SimpleNamespace(broken=False, closed=False))

    assert isinstance(error, QueryExecutionError)
    assert error.__cause__ is cancelled
