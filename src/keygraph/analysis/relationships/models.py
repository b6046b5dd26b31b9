"""Relationship discovery models.

Models for:
- SchemaTable / SchemaColumn: the schema snapshot discovery reads
- ColumnFeatures / IdentifierFeatures: output of column feature extraction
- SchemaRelationship: column-level edge written by discovery
- JoinAnalysis / ColumnStats: what the join validator reports
- DiscoveryMetrics: match statistics stored with pk_match edges
- EntityRelationship: ontology-level edge, one per direction
- Result models for each discovery operation
"""

from __future__ import annotations

from collections.abc import Callable
from typing import assert_never

from pydantic import BaseModel, Field

from keygraph.core.config import Settings, get_settings
from keygraph.core.models.base import (
    Cardinality,
    ColumnPurpose,
    ColumnRole,
    InferenceMethod,
    RelationshipStatus,
    RelationshipType,
)

# (current, total, message)
ProgressCallback = Callable[[int, int, str], None]


# === Schema snapshot ===


class IdentifierFeatures(BaseModel):
    """Identifier-specific features of a column."""

    identifier_type: str | None = None  # e.g. 'uuid', 'serial', 'natural_key'
    entity_referenced: str | None = None
    fk_target_table: str | None = None  # 'table' or 'schema.table'
    fk_target_column: str | None = None  # defaults to 'id' when unset
    fk_confidence: float = 0.0


class ColumnFeatures(BaseModel):
    """Semantic classification of a column from feature extraction."""

    purpose: ColumnPurpose | None = None
    role: ColumnRole | None = None
    identifier_features: IdentifierFeatures | None = None

    @property
    def fk_target_table(self) -> str | None:
        if self.identifier_features is None:
            return None
        return self.identifier_features.fk_target_table or None

    @property
    def fk_confidence(self) -> float:
        if self.identifier_features is None:
            return 0.0
        return self.identifier_features.fk_confidence


class SchemaTable(BaseModel):
    """A table in the customer schema."""

    table_id: str
    schema_name: str
    table_name: str
    row_count: int | None = None

    @property
    def qualified_name(self) -> str:
        return f"{self.schema_name}.{self.table_name}"


class SchemaColumn(BaseModel):
    """A column in the customer schema with its collected statistics.

    is_joinable is tri-state: None means stats were never collected.
    """

    column_id: str
    table_id: str
    column_name: str
    data_type: str
    is_primary_key: bool = False
    is_unique: bool = False
    is_joinable: bool | None = None
    joinability_reason: str | None = None
    non_null_count: int | None = None
    distinct_count: int | None = None
    min_length: int | None = None
    max_length: int | None = None
    features: ColumnFeatures | None = None

    @property
    def purpose(self) -> ColumnPurpose | None:
        return self.features.purpose if self.features else None

    @property
    def role(self) -> ColumnRole | None:
        return self.features.role if self.features else None


# === Edges ===


class DiscoveryMetrics(BaseModel):
    """Match statistics recorded with an inferred relationship."""

    match_rate: float  # matched / (matched + orphans), over distinct values
    source_distinct: int  # distinct non-null source values, matched or not
    target_distinct: int  # distinct target values reached by the join
    matched_count: int  # distinct source values with a match

    @classmethod
    def from_analysis(cls, analysis: JoinAnalysis) -> DiscoveryMetrics:
        source_distinct = analysis.source_matched + analysis.orphan_count
        match_rate = analysis.source_matched / source_distinct if source_distinct else 0.0
        return cls(
            match_rate=match_rate,
            source_distinct=source_distinct,
            target_distinct=analysis.target_matched,
            matched_count=analysis.source_matched,
        )


class SchemaRelationship(BaseModel):
    """Directed column-level edge in the customer schema."""

    relationship_id: str | None = None
    source_table_id: str
    source_column_id: str
    target_table_id: str
    target_column_id: str
    relationship_type: RelationshipType
    inference_method: InferenceMethod | None = None
    cardinality: Cardinality | None = None
    confidence: float = 1.0
    is_validated: bool = False
    metrics: DiscoveryMetrics | None = None


class EntityRelationship(BaseModel):
    """Directed edge between two ontology entities."""

    entity_relationship_id: str | None = None
    ontology_id: str
    source_entity_id: str
    target_entity_id: str

    source_column_schema: str
    source_column_table: str
    source_column_name: str
    source_column_id: str | None = None
    target_column_schema: str
    target_column_table: str
    target_column_name: str
    target_column_id: str | None = None

    detection_method: str
    confidence: float
    status: RelationshipStatus = RelationshipStatus.PENDING
    cardinality: Cardinality = Cardinality.UNKNOWN
    description: str | None = None
    association: str | None = None  # e.g. 'placed_by'; set per direction


# === Join validator output ===


class JoinAnalysis(BaseModel):
    """Join statistics for a (source column, target column) pair.

    Matched and orphan counts are distinct non-null values, so the reverse
    orphan rate is the share of target values nothing references.
    join_count is the row count of the inner join; the optional *_rows counts
    are the rows on each side with a partner, from which cardinality reads
    the fan-out. Without them cardinality falls back to the distinct counts.
    """

    join_count: int
    source_matched: int  # distinct source values found in the target
    target_matched: int  # distinct target values referenced by the source
    orphan_count: int  # distinct source values missing from the target
    reverse_orphan_count: int  # distinct target values never referenced
    source_matched_rows: int | None = None
    target_matched_rows: int | None = None
    max_source_value: float | None = None  # None when the source is not numeric

    @property
    def target_distinct(self) -> int:
        return self.target_matched + self.reverse_orphan_count

    @property
    def reverse_orphan_rate(self) -> float:
        if self.target_distinct == 0:
            return 0.0
        return self.reverse_orphan_count / self.target_distinct


class ColumnStats(BaseModel):
    """Per-column statistics from the customer database."""

    column_name: str
    row_count: int
    non_null_count: int
    distinct_count: int
    min_length: int | None = None
    max_length: int | None = None


# === Configuration ===


class DiscoveryThresholds(BaseModel):
    """Numeric knobs of candidate selection and validation."""

    min_distinct_count: int = 20
    min_cardinality_ratio: float = 0.05
    high_confidence_fk: float = 0.8
    max_reverse_orphan_rate: float = 0.5
    small_integer_max_value: float = 10
    lookup_table_max_rows: int = 30
    min_target_cardinality_ratio: float = 0.01
    pk_match_confidence: float = 0.9
    default_feature_confidence: float = 0.9
    low_cardinality_ratio: float = 0.01

    @classmethod
    def from_settings(cls, settings: Settings | None = None) -> DiscoveryThresholds:
        settings = settings or get_settings()
        return cls(**{name: getattr(settings, name) for name in cls.model_fields})


# === Results ===


class FKDiscoveryResult(BaseModel):
    """Result of FK discovery."""

    fk_relationships: int = 0
    column_feature_relationships: int = 0
    declared_relationships: int = 0
    skipped: list[str] = Field(default_factory=list)


class PKMatchResult(BaseModel):
    """Result of PK-match discovery."""

    inferred_relationships: int = 0
    candidates_evaluated: int = 0
    pairs_analyzed: int = 0
    rejections: dict[str, int] = Field(default_factory=dict)


class ColumnStatsResult(BaseModel):
    """Result of column stats collection."""

    tables_processed: int = 0
    columns_updated: int = 0
    failed_tables: list[str] = Field(default_factory=list)


def relationship_type_for(method: InferenceMethod) -> RelationshipType:
    """Relationship type recorded for edges produced by the given evidence."""
    match method:
        case InferenceMethod.FOREIGN_KEY:
            return RelationshipType.FK
        case InferenceMethod.COLUMN_FEATURES | InferenceMethod.PK_MATCH:
            return RelationshipType.INFERRED
        case InferenceMethod.MANUAL:
            return RelationshipType.MANUAL
        case _:
            assert_never(method)
