"""
Pytest configuration for evented-db.

Provides fixtures for:
- A scriptable in-memory driver for unit tests
- A seeded SQLite database for integration tests
- PostgreSQL connection settings for gated integration tests
"""

from __future__ import annotations

import asyncio
import os
import sqlite3
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, Generator, List, Sequence, Set, Union

import psycopg
import pytest

from evented_db.config import Settings, get_settings
from evented_db.domain.models import RawResult
from evented_db.infrastructure.pool import ConnectionPool

DEFAULT_ROW = RawResult(columns=["n"], rows=[(1,)])


@dataclass(frozen=True)
class FakeConnection:
    ident: int


class FakeDriver:
    """
    Driver double whose queries sleep for `delay` then return canned results.

    `results` maps SQL text to a RawResult, or to an exception to raise.
    SQL listed in `hang` never completes.
    """

    name = "fake"
    broken_errors = (ConnectionResetError,)

    def __init__(self, delay: float = 0.01) -> None:
        self.delay = delay
        self.results: Dict[str, Union[RawResult, BaseException]] = {}
        self.hang: Set[str] = set()
        self.fail_connect: BaseException | None = None
        self.connects = 0
        self.closed: List[FakeConnection] = []
        self.calls: List[tuple[str, tuple]] = []
        self.in_flight = 0
        self.max_in_flight = 0

    async def connect(self) -> FakeConnection:
        await asyncio.sleep(0)
        if self.fail_connect is not None:
            raise self.fail_connect
        self.connects += 1
        return FakeConnection(self.connects)

    def connect_sync(self) -> FakeConnection:
        if self.fail_connect is not None:
            raise self.fail_connect
        return FakeConnection(0)

    async def fetch(self, connection: Any, sql: str, binds: Sequence[Any]) -> RawResult:
        self.calls.append((sql, tuple(binds)))
        self.in_flight += 1
        self.max_in_flight = max(self.max_in_flight, self.in_flight)
        try:
            outcome = self.results.get(sql, DEFAULT_ROW)
            if isinstance(outcome, BaseException):
                await asyncio.sleep(0)
                raise outcome
            if sql in self.hang:
                await asyncio.Event().wait()
            await asyncio.sleep(self.delay)
            return outcome
        finally:
            self.in_flight -= 1

    def is_connection_error(self, connection: Any, exc: BaseException) -> bool:
        return isinstance(exc, self.broken_errors)

    async def close(self, connection: FakeConnection) -> None:
        self.closed.append(connection)


@pytest.fixture(autouse=True)
def _fresh_settings(monkeypatch) -> Generator[None, None, None]:
    """Keep cached settings from leaking between tests."""
    monkeypatch.delenv("BATCH_TIMEOUT_SECONDS", raising=False)
    monkeypatch.delenv("DB_CONNECT_ATTEMPTS", raising=False)
    get_settings.cache_clear()
    yield
    get_settings.cache_clear()


@pytest.fixture
def fake_driver() -> FakeDriver:
    return FakeDriver()


@pytest.fixture
def fake_pool(fake_driver: FakeDriver) -> Generator[ConnectionPool, None, None]:
    pool = ConnectionPool(fake_driver)
    yield pool
    pool.close()


@pytest.fixture
def sqlite_url(tmp_path: Path) -> str:
    """
    SQLite database holding ``test(test1 int, test2 varchar)`` with one row.
    """
    path = tmp_path / "evented.db"
    conn = sqlite3.connect(path)
    try:
        conn.execute("create table test (test1 int, test2 varchar)")
        conn.execute("insert into test (test1, test2) values (1, 'foobar')")
        conn.commit()
    finally:
        conn.close()
    return f"sqlite:///{path}"


@pytest.fixture(scope="session")
def test_settings() -> Settings:
    """
    Settings fixture with test-specific overrides.

    Can be overridden via environment variables in CI or local testing.
    """
    return Settings(
        db_host=os.getenv("DB_HOST", "localhost"),
        db_port=int(os.getenv("DB_PORT", "5432")),
        db_user=os.getenv("DB_USER", "postgres"),
        db_password=os.getenv("DB_PASSWORD", "postgres"),
        db_name=os.getenv("DB_NAME", "evented"),
        log_level="DEBUG",
    )


@pytest.fixture(scope="session")
def test_dsn(test_settings: Settings) -> str:
    """
    Database connection string for tests.
    """
    return (
        f"postgresql://{test_settings.db_user}:{test_settings.db_password}"
        f"@{test_settings.db_host}:{test_settings.db_port}/{test_settings.db_name}"
    )


@pytest.fixture(scope="session")
def db_connection_available(test_dsn: str) -> bool:
    """
    Check if database is reachable.

    Used to conditionally skip integration tests when DB is not available.
    """
    try:
        with psycopg.connect(test_dsn, connect_timeout=5) as conn:
            with conn.cursor() as cur:
                cur.execute("SELECT 1;")
                cur.fetchone()
        return True
    except psycopg.Error:
        return False


@pytest.fixture(scope="session")
def pg_dsn(test_dsn: str, db_connection_available: bool) -> str:
    """
    DSN of a reachable PostgreSQL; skips the test otherwise.
    """
    if not db_connection_available:
        pytest.skip("Database not available for integration tests")
    return test_dsn
