"""Metadata store: schema snapshot tables and engine management."""

from keygraph.storage.base import (
    Base,
    enable_sqlite_foreign_keys,
    get_engine,
    get_session_factory,
    init_database,
    reset_database,
)
from keygraph.storage.models import Column, Datasource, Project, Table

__all__ = [
    "Base",
    "Project",
    "Datasource",
    "Table",
    "Column",
    "enable_sqlite_foreign_keys",
    "get_engine",
    "get_session_factory",
    "init_database",
    "reset_database",
]
