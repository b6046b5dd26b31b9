"""ORM tables for the schema snapshot discovery runs against.

The pydantic values handed between discovery components live in
analysis.relationships.models; repositories translate between the two.
"""

from datetime import UTC, datetime
from typing import Annotated, Any
from uuid import uuid4

from sqlalchemy import (
    JSON,
    Boolean,
    DateTime,
    ForeignKey,
    String,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from keygraph.storage.base import Base


def new_id() -> str:
    return str(uuid4())


def utcnow() -> datetime:
    return datetime.now(UTC)


IdPk = Annotated[str, mapped_column(String, primary_key=True, default=new_id)]
CreatedAt = Annotated[datetime, mapped_column(DateTime, nullable=False, default=utcnow)]


class Project(Base):
    """A tenant project owning datasources and ontologies."""

    __tablename__ = "projects"

    project_id: Mapped[IdPk]
    name: Mapped[str]
    # Free-form project settings, e.g. {"use_legacy_pattern_matching": true}
    parameters: Mapped[dict[str, Any] | None] = mapped_column(JSON)
    created_at: Mapped[CreatedAt]

    datasources: Mapped[list["Datasource"]] = relationship(
        back_populates="project", cascade="all, delete-orphan"
    )


class Datasource(Base):
    """A customer database connected to a project."""

    __tablename__ = "datasources"

    datasource_id: Mapped[IdPk]
    project_id: Mapped[str] = mapped_column(
        ForeignKey("projects.project_id", ondelete="CASCADE")
    )
    name: Mapped[str]
    datasource_type: Mapped[str] = mapped_column(default="duckdb")
    created_at: Mapped[CreatedAt]

    project: Mapped["Project"] = relationship(back_populates="datasources")
    tables: Mapped[list["Table"]] = relationship(
        back_populates="datasource", cascade="all, delete-orphan"
    )


class Table(Base):
    """A table in a customer schema."""

    __tablename__ = "schema_tables"
    __table_args__ = (
        UniqueConstraint("datasource_id", "schema_name", "table_name", name="uq_datasource_table"),
    )

    table_id: Mapped[IdPk]
    datasource_id: Mapped[str] = mapped_column(
        ForeignKey("datasources.datasource_id", ondelete="CASCADE")
    )
    schema_name: Mapped[str] = mapped_column(default="main")
    table_name: Mapped[str]
    row_count: Mapped[int | None]
    created_at: Mapped[CreatedAt]

    datasource: Mapped["Datasource"] = relationship(back_populates="tables")
    columns: Mapped[list["Column"]] = relationship(
        back_populates="table", cascade="all, delete-orphan", order_by="Column.ordinal_position"
    )


class Column(Base):
    """A column in a customer table, with the statistics discovery relies on."""

    __tablename__ = "schema_columns"
    __table_args__ = (UniqueConstraint("table_id", "column_name", name="uq_table_column"),)

    column_id: Mapped[IdPk]
    table_id: Mapped[str] = mapped_column(
        ForeignKey("schema_tables.table_id", ondelete="CASCADE")
    )
    column_name: Mapped[str]
    ordinal_position: Mapped[int] = mapped_column(default=0)
    data_type: Mapped[str]
    is_primary_key: Mapped[bool] = mapped_column(Boolean, default=False)
    is_unique: Mapped[bool] = mapped_column(Boolean, default=False)

    # None until column stats have been collected
    is_joinable: Mapped[bool | None]
    joinability_reason: Mapped[str | None]
    non_null_count: Mapped[int | None]
    distinct_count: Mapped[int | None]
    min_length: Mapped[int | None]
    max_length: Mapped[int | None]
    stats_updated_at: Mapped[datetime | None]

    # Output of column feature extraction: {"column_features": {...}}
    column_metadata: Mapped[dict[str, Any] | None] = mapped_column(JSON)

    table: Mapped["Table"] = relationship(back_populates="columns")
