"""SQLAlchemy implementations of the discovery repositories."""

from __future__ import annotations

from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from datetime import UTC, datetime
from typing import Any

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from keygraph.analysis.relationships.db_models import (
    EntityRelationship as EntityRelationshipDB,
)
from keygraph.analysis.relationships.db_models import Relationship as RelationshipDB
from keygraph.analysis.relationships.models import (
    ColumnFeatures,
    ColumnStats,
    DiscoveryMetrics,
    EntityRelationship,
    SchemaColumn,
    SchemaRelationship,
    SchemaTable,
)
from keygraph.core.exceptions import RepositoryError
from keygraph.core.logging import get_logger
from keygraph.core.models.base import (
    Cardinality,
    InferenceMethod,
    RelationshipStatus,
    RelationshipType,
)
from keygraph.storage import Column, Datasource, Project, Table

logger = get_logger(__name__)

FEATURES_KEY = "column_features"
LEGACY_PATTERN_MATCHING_KEY = "use_legacy_pattern_matching"


def _to_schema_column(column: Column) -> SchemaColumn:
    raw_features = (column.column_metadata or {}).get(FEATURES_KEY)
    return SchemaColumn(
        column_id=column.column_id,
        table_id=column.table_id,
        column_name=column.column_name,
        data_type=column.data_type,
        is_primary_key=column.is_primary_key,
        is_unique=column.is_unique,
        is_joinable=column.is_joinable,
        joinability_reason=column.joinability_reason,
        non_null_count=column.non_null_count,
        distinct_count=column.distinct_count,
        min_length=column.min_length,
        max_length=column.max_length,
        features=ColumnFeatures.model_validate(raw_features) if raw_features else None,
    )


def _to_schema_relationship(row: RelationshipDB) -> SchemaRelationship:
    metrics = None
    if row.match_rate is not None:
        metrics = DiscoveryMetrics(
            match_rate=row.match_rate,
            source_distinct=row.source_distinct or 0,
            target_distinct=row.target_distinct or 0,
            matched_count=row.matched_count or 0,
        )
    return SchemaRelationship(
        relationship_id=row.relationship_id,
        source_table_id=row.source_table_id,
        source_column_id=row.source_column_id,
        target_table_id=row.target_table_id,
        target_column_id=row.target_column_id,
        relationship_type=RelationshipType(row.relationship_type),
        inference_method=InferenceMethod(row.inference_method) if row.inference_method else None,
        cardinality=Cardinality(row.cardinality) if row.cardinality else None,
        confidence=row.confidence,
        is_validated=row.is_validated,
        metrics=metrics,
    )


def _to_entity_relationship(row: EntityRelationshipDB) -> EntityRelationship:
    return EntityRelationship(
        entity_relationship_id=row.entity_relationship_id,
        ontology_id=row.ontology_id,
        source_entity_id=row.source_entity_id,
        target_entity_id=row.target_entity_id,
        source_column_schema=row.source_column_schema,
        source_column_table=row.source_column_table,
        source_column_name=row.source_column_name,
        source_column_id=row.source_column_id,
        target_column_schema=row.target_column_schema,
        target_column_table=row.target_column_table,
        target_column_name=row.target_column_name,
        target_column_id=row.target_column_id,
        detection_method=row.detection_method,
        confidence=row.confidence,
        status=RelationshipStatus(row.status),
        cardinality=Cardinality(row.cardinality),
        description=row.description,
        association=row.association,
    )


class SqlSchemaRepository:
    """SchemaRepository over the metadata database.

    Every write commits on its own, so edges written before a failure or a
    cancellation stay written.
    """

    def __init__(self, session: AsyncSession):
        self.session = session

    async def _fail(self, operation: str, error: SQLAlchemyError) -> RepositoryError:
        await self.session.rollback()
        logger.error("repository_error", operation=operation, error=str(error))
        return RepositoryError(f"{operation} failed: {error}")

    async def list_tables(self, datasource_id: str) -> list[SchemaTable]:
        stmt = (
            select(Table)
            .where(Table.datasource_id == datasource_id)
            .order_by(Table.schema_name, Table.table_name)
        )
        try:
            tables = (await self.session.execute(stmt)).scalars().all()
        except SQLAlchemyError as e:
            raise await self._fail("list_tables", e) from e

        return [
            SchemaTable(
                table_id=t.table_id,
                schema_name=t.schema_name,
                table_name=t.table_name,
                row_count=t.row_count,
            )
            for t in tables
        ]

    async def list_columns(self, datasource_id: str) -> list[SchemaColumn]:
        stmt = (
            select(Column)
            .join(Table, Column.table_id == Table.table_id)
            .where(Table.datasource_id == datasource_id)
            .order_by(Table.schema_name, Table.table_name, Column.ordinal_position)
        )
        try:
            columns = (await self.session.execute(stmt)).scalars().all()
        except SQLAlchemyError as e:
            raise await self._fail("list_columns", e) from e

        return [_to_schema_column(c) for c in columns]

    async def list_relationships(self, datasource_id: str) -> list[SchemaRelationship]:
        """List live relationships whose source table belongs to the datasource."""
        table_ids = select(Table.table_id).where(Table.datasource_id == datasource_id)
        stmt = (
            select(RelationshipDB)
            .where(
                RelationshipDB.source_table_id.in_(table_ids),
                RelationshipDB.deleted_at.is_(None),
            )
            .order_by(RelationshipDB.created_at)
        )
        try:
            rows = (await self.session.execute(stmt)).scalars().all()
        except SQLAlchemyError as e:
            raise await self._fail("list_relationships", e) from e

        return [_to_schema_relationship(r) for r in rows]

    async def upsert_relationship(self, relationship: SchemaRelationship) -> bool:
        return await self._upsert(relationship, None)

    async def upsert_relationship_with_metrics(
        self, relationship: SchemaRelationship, metrics: DiscoveryMetrics
    ) -> bool:
        return await self._upsert(relationship, metrics)

    async def _upsert(
        self, relationship: SchemaRelationship, metrics: DiscoveryMetrics | None
    ) -> bool:
        stmt = select(RelationshipDB).where(
            RelationshipDB.source_column_id == relationship.source_column_id,
            RelationshipDB.target_column_id == relationship.target_column_id,
        )
        try:
            row = (await self.session.execute(stmt)).scalar_one_or_none()

            if row is not None and row.deleted_at is not None:
                logger.debug(
                    "relationship_upsert_skipped",
                    reason="deleted_by_user",
                    relationship_id=row.relationship_id,
                )
                return False

            if (
                row is not None
                and row.relationship_type == RelationshipType.MANUAL.value
                and relationship.relationship_type != RelationshipType.MANUAL
            ):
                logger.debug(
                    "relationship_upsert_skipped",
                    reason="manual",
                    relationship_id=row.relationship_id,
                )
                return False

            if row is None:
                row = RelationshipDB(
                    source_table_id=relationship.source_table_id,
                    source_column_id=relationship.source_column_id,
                    target_table_id=relationship.target_table_id,
                    target_column_id=relationship.target_column_id,
                )
                self.session.add(row)

            row.relationship_type = relationship.relationship_type.value
            row.inference_method = (
                relationship.inference_method.value if relationship.inference_method else None
            )
            row.cardinality = relationship.cardinality.value if relationship.cardinality else None
            row.confidence = relationship.confidence
            row.is_validated = relationship.is_validated

            if metrics is not None:
                row.match_rate = metrics.match_rate
                row.source_distinct = metrics.source_distinct
                row.target_distinct = metrics.target_distinct
                row.matched_count = metrics.matched_count

            await self.session.flush()
            relationship.relationship_id = row.relationship_id
            await self.session.commit()
        except SQLAlchemyError as e:
            raise await self._fail("upsert_relationship", e) from e

        return True

    async def update_column_joinability(
        self,
        column_id: str,
        *,
        is_joinable: bool,
        reason: str,
        stats: ColumnStats | None,
    ) -> None:
        try:
            column = await self.session.get(Column, column_id)
            if column is None:
                raise RepositoryError(f"column {column_id} not found")

            column.is_joinable = is_joinable
            column.joinability_reason = reason
            if stats is not None:
                column.non_null_count = stats.non_null_count
                column.distinct_count = stats.distinct_count
                column.min_length = stats.min_length
                column.max_length = stats.max_length
                column.stats_updated_at = datetime.now(UTC)

            await self.session.commit()
        except SQLAlchemyError as e:
            raise await self._fail("update_column_joinability", e) from e

    async def update_table_row_count(self, table_id: str, row_count: int) -> None:
        try:
            table = await self.session.get(Table, table_id)
            if table is None:
                raise RepositoryError(f"table {table_id} not found")
            table.row_count = row_count
            await self.session.commit()
        except SQLAlchemyError as e:
            raise await self._fail("update_table_row_count", e) from e


class SqlEntityRelationshipRepository:
    """EntityRelationshipRepository over the metadata database.

    Outside an atomic() block each create commits immediately. Inside one,
    writes are flushed and committed when the outermost block exits, or
    rolled back together if it raises.
    """

    def __init__(self, session: AsyncSession):
        self.session = session
        self._atomic_depth = 0

    @asynccontextmanager
    async def atomic(self) -> AsyncIterator[None]:
        self._atomic_depth += 1
        try:
            yield
        except BaseException:
            self._atomic_depth -= 1
            if self._atomic_depth == 0:
                await self.session.rollback()
            raise
        self._atomic_depth -= 1
        if self._atomic_depth == 0:
            try:
                await self.session.commit()
            except SQLAlchemyError as e:
                await self.session.rollback()
                raise RepositoryError(f"entity relationship commit failed: {e}") from e

    async def create(self, relationship: EntityRelationship) -> EntityRelationship:
        stmt = select(EntityRelationshipDB).where(
            EntityRelationshipDB.ontology_id == relationship.ontology_id,
            EntityRelationshipDB.source_entity_id == relationship.source_entity_id,
            EntityRelationshipDB.target_entity_id == relationship.target_entity_id,
            EntityRelationshipDB.source_column_schema == relationship.source_column_schema,
            EntityRelationshipDB.source_column_table == relationship.source_column_table,
            EntityRelationshipDB.source_column_name == relationship.source_column_name,
            EntityRelationshipDB.target_column_schema == relationship.target_column_schema,
            EntityRelationshipDB.target_column_table == relationship.target_column_table,
            EntityRelationshipDB.target_column_name == relationship.target_column_name,
        )
        values: dict[str, Any] = {
            "source_column_id": relationship.source_column_id,
            "target_column_id": relationship.target_column_id,
            "detection_method": relationship.detection_method,
            "confidence": relationship.confidence,
            "status": relationship.status.value,
            "cardinality": relationship.cardinality.value,
        }
        try:
            row = (await self.session.execute(stmt)).scalar_one_or_none()
            if row is None:
                row = EntityRelationshipDB(
                    ontology_id=relationship.ontology_id,
                    source_entity_id=relationship.source_entity_id,
                    target_entity_id=relationship.target_entity_id,
                    source_column_schema=relationship.source_column_schema,
                    source_column_table=relationship.source_column_table,
                    source_column_name=relationship.source_column_name,
                    target_column_schema=relationship.target_column_schema,
                    target_column_table=relationship.target_column_table,
                    target_column_name=relationship.target_column_name,
                    description=relationship.description,
                    association=relationship.association,
                    **values,
                )
                self.session.add(row)
            else:
                for key, value in values.items():
                    setattr(row, key, value)
                # Descriptions may have been written by a user; keep them
                if row.description is None:
                    row.description = relationship.description
                if relationship.association is not None:
                    row.association = relationship.association

            await self.session.flush()
            created = _to_entity_relationship(row)
            if not self._atomic_depth:
                await self.session.commit()
        except SQLAlchemyError as e:
            if not self._atomic_depth:
                await self.session.rollback()
            raise RepositoryError(f"create entity relationship failed: {e}") from e

        return created

    async def list_by_ontology(self, ontology_id: str) -> list[EntityRelationship]:
        stmt = (
            select(EntityRelationshipDB)
            .where(EntityRelationshipDB.ontology_id == ontology_id)
            .order_by(
                EntityRelationshipDB.source_column_table,
                EntityRelationshipDB.source_column_name,
                EntityRelationshipDB.target_column_table,
            )
        )
        try:
            rows = (await self.session.execute(stmt)).scalars().all()
        except SQLAlchemyError as e:
            raise RepositoryError(f"list entity relationships failed: {e}") from e
        return [_to_entity_relationship(r) for r in rows]


class SqlProjectSettings:
    """ProjectSettingsProvider reading Project.parameters."""

    def __init__(self, session: AsyncSession, default_legacy: bool = False):
        self.session = session
        self.default_legacy = default_legacy

    async def use_legacy_pattern_matching(self, project_id: str) -> bool:
        try:
            project = await self.session.get(Project, project_id)
        except SQLAlchemyError as e:
            raise RepositoryError(f"load project {project_id} failed: {e}") from e
        if project is None or not project.parameters:
            return self.default_legacy
        return bool(project.parameters.get(LEGACY_PATTERN_MATCHING_KEY, self.default_legacy))

    async def project_id_for_datasource(self, datasource_id: str) -> str | None:
        try:
            datasource = await self.session.get(Datasource, datasource_id)
        except SQLAlchemyError as e:
            raise RepositoryError(f"load datasource {datasource_id} failed: {e}") from e
        return datasource.project_id if datasource else None
