"""Shared pytest fixtures for all tests."""

import duckdb
import pytest
from sqlalchemy.ext.asyncio import AsyncEngine, async_sessionmaker, create_async_engine

from keygraph.storage import enable_sqlite_foreign_keys, init_database


@pytest.fixture
async def engine() -> AsyncEngine:
    """Fresh in-memory metadata database with FK enforcement, one per test."""
    test_engine = create_async_engine("sqlite+aiosqlite:///:memory:")
    enable_sqlite_foreign_keys(test_engine)
    await init_database(test_engine)
    yield test_engine
    await test_engine.dispose()


@pytest.fixture
async def async_session(engine: AsyncEngine):
    async with async_sessionmaker(engine, expire_on_commit=False)() as session:
        yield session


@pytest.fixture
def duckdb_conn():
    """In-memory DuckDB standing in for the customer database."""
    conn = duckdb.connect(":memory:")
    yield conn
    conn.close()
