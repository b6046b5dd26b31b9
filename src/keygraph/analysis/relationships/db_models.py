"""SQLAlchemy models for discovered relationships.

Relationship holds column-level edges of the customer schema (declared,
manual or inferred). EntityRelationship holds the ontology-level edges between
entities, written once per direction.
"""

from __future__ import annotations

from datetime import datetime

from sqlalchemy import (
    Boolean,
    DateTime,
    Float,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column

from keygraph.storage import Base
from keygraph.storage.models import CreatedAt, IdPk, utcnow


class Relationship(Base):
    """Directed edge between two columns of a customer schema.

    relationship_type values:
    - 'fk': declared constraint
    - 'manual': created by a user, never rewritten by discovery
    - 'inferred': discovered from column features or data

    inference_method records the evidence: 'foreign_key', 'column_features',
    'pk_match' or 'manual'.

    One row per (source column, target column). Rows with deleted_at set were
    removed by a user and are not recreated by discovery.
    """

    __tablename__ = "schema_relationships"
    __table_args__ = (
        UniqueConstraint(
            "source_column_id",
            "target_column_id",
            name="uq_relationship_columns",
        ),
        {"extend_existing": True},
    )

    relationship_id: Mapped[IdPk]

    # Source side
    source_table_id: Mapped[str] = mapped_column(
        ForeignKey("schema_tables.table_id", ondelete="CASCADE"), nullable=False
    )
    source_column_id: Mapped[str] = mapped_column(
        ForeignKey("schema_columns.column_id", ondelete="CASCADE"), nullable=False
    )

    # Target side
    target_table_id: Mapped[str] = mapped_column(
        ForeignKey("schema_tables.table_id", ondelete="CASCADE"), nullable=False
    )
    target_column_id: Mapped[str] = mapped_column(
        ForeignKey("schema_columns.column_id", ondelete="CASCADE"), nullable=False
    )

    # Classification
    relationship_type: Mapped[str] = mapped_column(String, nullable=False)
    inference_method: Mapped[str | None] = mapped_column(String)
    cardinality: Mapped[str | None] = mapped_column(String)  # '1:1', '1:N', 'N:1', 'N:M'
    confidence: Mapped[float] = mapped_column(Float, nullable=False, default=1.0)
    is_validated: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)

    # Discovery metrics (pk_match only)
    match_rate: Mapped[float | None] = mapped_column(Float)
    source_distinct: Mapped[int | None] = mapped_column(Integer)
    target_distinct: Mapped[int | None] = mapped_column(Integer)
    matched_count: Mapped[int | None] = mapped_column(Integer)

    created_at: Mapped[CreatedAt]
    updated_at: Mapped[datetime] = mapped_column(
        DateTime,
        nullable=False,
        default=utcnow,
        onupdate=utcnow,
    )
    deleted_at: Mapped[datetime | None] = mapped_column(DateTime)


Index("idx_schema_relationships_source_table", Relationship.source_table_id)
Index("idx_schema_relationships_target_table", Relationship.target_table_id)


class EntityRelationship(Base):
    """Directed edge between two ontology entities, anchored on columns."""

    __tablename__ = "entity_relationships"
    __table_args__ = (
        UniqueConstraint(
            "ontology_id",
            "source_entity_id",
            "target_entity_id",
            "source_column_schema",
            "source_column_table",
            "source_column_name",
            "target_column_schema",
            "target_column_table",
            "target_column_name",
            name="uq_entity_relationship_natural_key",
        ),
        {"extend_existing": True},
    )

    entity_relationship_id: Mapped[IdPk]
    ontology_id: Mapped[str] = mapped_column(String, nullable=False)
    source_entity_id: Mapped[str] = mapped_column(String, nullable=False)
    target_entity_id: Mapped[str] = mapped_column(String, nullable=False)

    source_column_schema: Mapped[str] = mapped_column(String, nullable=False)
    source_column_table: Mapped[str] = mapped_column(String, nullable=False)
    source_column_name: Mapped[str] = mapped_column(String, nullable=False)
    source_column_id: Mapped[str | None] = mapped_column(
        ForeignKey("schema_columns.column_id", ondelete="SET NULL")
    )
    target_column_schema: Mapped[str] = mapped_column(String, nullable=False)
    target_column_table: Mapped[str] = mapped_column(String, nullable=False)
    target_column_name: Mapped[str] = mapped_column(String, nullable=False)
    target_column_id: Mapped[str | None] = mapped_column(
        ForeignKey("schema_columns.column_id", ondelete="SET NULL")
    )

    detection_method: Mapped[str] = mapped_column(String, nullable=False)
    confidence: Mapped[float] = mapped_column(Float, nullable=False)
    status: Mapped[str] = mapped_column(String, nullable=False, default="pending")
    cardinality: Mapped[str] = mapped_column(String, nullable=False, default="unknown")
    description: Mapped[str | None] = mapped_column(Text)
    association: Mapped[str | None] = mapped_column(String)

    created_at: Mapped[CreatedAt]


Index("idx_entity_relationships_ontology", EntityRelationship.ontology_id)


__all__ = ["Relationship", "EntityRelationship"]
