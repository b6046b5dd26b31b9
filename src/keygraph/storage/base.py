"""Metadata database: declarative base, engine, and schema creation.

Discovery reads the schema snapshot from and writes relationships to this
database. SQLite (aiosqlite) serves local runs and tests; any async
SQLAlchemy URL works in deployments.
"""

from dataclasses import dataclass
from typing import Any

from sqlalchemy import MetaData, event
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.orm import DeclarativeBase

from keygraph.core.exceptions import ConfigurationError

# Constraint names must not depend on the dialect that created them
NAMING_CONVENTION = {
    "ix": "ix_%(column_0_label)s",
    "uq": "uq_%(table_name)s_%(column_0_name)s",
    "ck": "ck_%(table_name)s_%(constraint_name)s",
    "fk": "fk_%(table_name)s_%(column_0_name)s_%(referred_table_name)s",
    "pk": "pk_%(table_name)s",
}


class Base(DeclarativeBase):
    metadata = MetaData(naming_convention=NAMING_CONVENTION)


def enable_sqlite_foreign_keys(engine: AsyncEngine) -> None:
    """Turn on FK enforcement for every new SQLite connection of engine."""

    @event.listens_for(engine.sync_engine, "connect")
    def _on_connect(dbapi_conn: Any, _record: Any) -> None:
        cursor = dbapi_conn.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()


@dataclass
class _Database:
    engine: AsyncEngine | None = None
    sessions: async_sessionmaker[AsyncSession] | None = None


_db = _Database()


def get_engine(database_url: str | None = None) -> AsyncEngine:
    """Return the process metadata engine.

    Passing a URL replaces the current engine; the caller disposes the old
    one. Without a URL an engine must already exist.

    Raises:
        ConfigurationError: No URL given and no engine created yet
    """
    if database_url is not None:
        engine = create_async_engine(database_url)
        if engine.dialect.name == "sqlite":
            enable_sqlite_foreign_keys(engine)
        _db.engine, _db.sessions = engine, None

    if _db.engine is None:
        raise ConfigurationError("metadata engine not created; call get_engine(database_url)")
    return _db.engine


def get_session_factory() -> async_sessionmaker[AsyncSession]:
    if _db.sessions is None:
        _db.sessions = async_sessionmaker(get_engine(), expire_on_commit=False)
    return _db.sessions


def _import_models() -> None:
    # Tables only reach Base.metadata once their modules are imported
    from keygraph.analysis.relationships import db_models  # noqa: F401
    from keygraph.storage import models  # noqa: F401


async def init_database(engine: AsyncEngine) -> None:
    """Create missing tables. Existing tables and rows are left alone."""
    _import_models()
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)


async def reset_database(engine: AsyncEngine) -> None:
    """Drop every table and create it again empty."""
    _import_models()
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
        await conn.run_sync(Base.metadata.create_all)
