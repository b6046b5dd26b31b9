"""Collaborator interfaces of the discovery engine.

Discovery reads the schema snapshot and writes edges through these
protocols; SQLAlchemy and DuckDB implementations live in repository.py and
joins.py.
"""

from __future__ import annotations

from contextlib import AbstractAsyncContextManager
from typing import Protocol

from keygraph.analysis.relationships.models import (
    ColumnStats,
    DiscoveryMetrics,
    EntityRelationship,
    JoinAnalysis,
    SchemaColumn,
    SchemaRelationship,
    SchemaTable,
)


class SchemaRepository(Protocol):
    """Read access to the schema snapshot and write access to its edges.

    Upserts key on (source_column_id, target_column_id). They never rewrite
    a manual relationship and never recreate a pair a user deleted.
    """

    async def list_tables(self, datasource_id: str) -> list[SchemaTable]: ...

    async def list_columns(self, datasource_id: str) -> list[SchemaColumn]: ...

    async def list_relationships(self, datasource_id: str) -> list[SchemaRelationship]: ...

    async def upsert_relationship(self, relationship: SchemaRelationship) -> bool:
        """Insert or update an edge. Returns False if the pair was left untouched."""
        ...

    async def upsert_relationship_with_metrics(
        self, relationship: SchemaRelationship, metrics: DiscoveryMetrics
    ) -> bool: ...

    async def update_column_joinability(
        self,
        column_id: str,
        *,
        is_joinable: bool,
        reason: str,
        stats: ColumnStats | None,
    ) -> None: ...

    async def update_table_row_count(self, table_id: str, row_count: int) -> None: ...


class JoinValidator(Protocol):
    """Runs statistics queries against the customer database.

    Implementations raise JoinAnalysisError for failures discovery may
    recover from.
    """

    async def analyze_join(
        self,
        source_schema: str,
        source_table: str,
        source_column: str,
        target_schema: str,
        target_table: str,
        target_column: str,
    ) -> JoinAnalysis: ...

    async def analyze_column_stats(
        self, schema: str, table: str, columns: list[str]
    ) -> list[ColumnStats]: ...


class EntityRelationshipRepository(Protocol):
    """Storage for ontology-level edges."""

    async def create(self, relationship: EntityRelationship) -> EntityRelationship:
        """Upsert on the natural key; keeps an existing description."""
        ...

    def atomic(self) -> AbstractAsyncContextManager[None]:
        """Group writes so they commit or roll back together."""
        ...

    async def list_by_ontology(self, ontology_id: str) -> list[EntityRelationship]: ...


class ProjectSettingsProvider(Protocol):
    async def use_legacy_pattern_matching(self, project_id: str) -> bool: ...
