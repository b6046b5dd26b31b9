"""Deterministic relationship discovery.

Infers foreign keys between tables of a customer schema:
- FK discovery: declared constraints and column-feature FK hints
- Column stats: joinability of every column
- PK-match discovery: value containment against key columns
- Bidirectional entity relationships for ontology navigation
"""

from keygraph.analysis.relationships.bidirectional import (
    create_bidirectional,
    reverse_relationship,
)
from keygraph.analysis.relationships.candidates import CandidateFilter, CandidateSelection
from keygraph.analysis.relationships.cardinality import infer_cardinality, reverse_cardinality
from keygraph.analysis.relationships.column_stats import (
    classify_joinability,
    collect_column_stats,
)
from keygraph.analysis.relationships.db_models import (
    EntityRelationship as EntityRelationshipDB,
)
from keygraph.analysis.relationships.db_models import Relationship as RelationshipDB
from keygraph.analysis.relationships.fk_discovery import discover_fk_relationships
from keygraph.analysis.relationships.interfaces import (
    EntityRelationshipRepository,
    JoinValidator,
    ProjectSettingsProvider,
    SchemaRepository,
)
from keygraph.analysis.relationships.joins import DuckDBJoinValidator
from keygraph.analysis.relationships.models import (
    ColumnFeatures,
    ColumnStats,
    ColumnStatsResult,
    DiscoveryMetrics,
    DiscoveryThresholds,
    EntityRelationship,
    FKDiscoveryResult,
    IdentifierFeatures,
    JoinAnalysis,
    PKMatchResult,
    ProgressCallback,
    SchemaColumn,
    SchemaRelationship,
    SchemaTable,
)
from keygraph.analysis.relationships.pk_match import discover_pk_match_relationships
from keygraph.analysis.relationships.repository import (
    SqlEntityRelationshipRepository,
    SqlProjectSettings,
    SqlSchemaRepository,
)
from keygraph.analysis.relationships.types import are_types_compatible, normalize_type

__all__ = [
    # Main entry points
    "discover_fk_relationships",
    "collect_column_stats",
    "discover_pk_match_relationships",
    "create_bidirectional",
    # Building blocks
    "CandidateFilter",
    "CandidateSelection",
    "are_types_compatible",
    "normalize_type",
    "infer_cardinality",
    "reverse_cardinality",
    "classify_joinability",
    "reverse_relationship",
    # Collaborators
    "SchemaRepository",
    "JoinValidator",
    "EntityRelationshipRepository",
    "ProjectSettingsProvider",
    "DuckDBJoinValidator",
    "SqlSchemaRepository",
    "SqlEntityRelationshipRepository",
    "SqlProjectSettings",
    # Models
    "ColumnFeatures",
    "ColumnStats",
    "ColumnStatsResult",
    "DiscoveryMetrics",
    "DiscoveryThresholds",
    "EntityRelationship",
    "FKDiscoveryResult",
    "IdentifierFeatures",
    "JoinAnalysis",
    "PKMatchResult",
    "ProgressCallback",
    "SchemaColumn",
    "SchemaRelationship",
    "SchemaTable",
    # DB Models
    "RelationshipDB",
    "EntityRelationshipDB",
]
