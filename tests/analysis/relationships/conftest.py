"""In-memory collaborators for relationship discovery tests."""

import asyncio
from contextlib import asynccontextmanager
from uuid import uuid4

import pytest

from keygraph.analysis.relationships.models import (
    ColumnFeatures,
    ColumnStats,
    DiscoveryMetrics,
    EntityRelationship,
    JoinAnalysis,
    SchemaColumn,
    SchemaRelationship,
    SchemaTable,
)
from keygraph.core.exceptions import JoinAnalysisError, RepositoryError, ValidatorError
from keygraph.core.models.base import RelationshipType


class FakeSchemaRepository:
    """SchemaRepository keeping everything in dicts.

    Mirrors the SQL repository's upsert rules: manual rows are left alone and
    deleted pairs are not recreated.
    """

    def __init__(self):
        self.tables: dict[str, SchemaTable] = {}
        self.columns: list[SchemaColumn] = []
        self.relationships: dict[tuple[str, str], SchemaRelationship] = {}
        self.deleted_pairs: set[tuple[str, str]] = set()
        self.upserts: list[SchemaRelationship] = []
        self.joinability: dict[str, tuple[bool, str]] = {}
        self.fail_on_upsert = False

    # -- builders --

    def add_table(self, name: str, row_count: int | None = None, schema: str = "public"):
        table = SchemaTable(
            table_id=str(uuid4()), schema_name=schema, table_name=name, row_count=row_count
        )
        self.tables[table.table_id] = table
        return table

    def add_column(
        self,
        table: SchemaTable,
        name: str,
        data_type: str = "bigint",
        features: dict | None = None,
        **kwargs,
    ):
        column = SchemaColumn(
            column_id=str(uuid4()),
            table_id=table.table_id,
            column_name=name,
            data_type=data_type,
            features=ColumnFeatures.model_validate(features) if features else None,
            **kwargs,
        )
        self.columns.append(column)
        return column

    def add_relationship(self, source: SchemaColumn, target: SchemaColumn, **kwargs):
        relationship = SchemaRelationship(
            relationship_id=str(uuid4()),
            source_table_id=source.table_id,
            source_column_id=source.column_id,
            target_table_id=target.table_id,
            target_column_id=target.column_id,
            **kwargs,
        )
        self.relationships[(source.column_id, target.column_id)] = relationship
        return relationship

    def relationship(self, source: SchemaColumn, target: SchemaColumn):
        return self.relationships.get((source.column_id, target.column_id))

    # -- SchemaRepository --

    async def list_tables(self, datasource_id):
        return list(self.tables.values())

    async def list_columns(self, datasource_id):
        return list(self.columns)

    async def list_relationships(self, datasource_id):
        return [r.model_copy() for r in self.relationships.values()]

    async def upsert_relationship(self, relationship):
        return await self._upsert(relationship, None)

    async def upsert_relationship_with_metrics(self, relationship, metrics):
        return await self._upsert(relationship, metrics)

    async def _upsert(self, relationship, metrics: DiscoveryMetrics | None):
        if self.fail_on_upsert:
            raise RepositoryError("upsert_relationship failed: database is locked")

        self.upserts.append(relationship)
        key = (relationship.source_column_id, relationship.target_column_id)
        if key in self.deleted_pairs:
            return False

        existing = self.relationships.get(key)
        if (
            existing is not None
            and existing.relationship_type == RelationshipType.MANUAL
            and relationship.relationship_type != RelationshipType.MANUAL
        ):
            return False

        stored = relationship.model_copy()
        stored.relationship_id = existing.relationship_id if existing else str(uuid4())
        if metrics is not None:
            stored.metrics = metrics
        elif existing is not None:
            stored.metrics = existing.metrics
        self.relationships[key] = stored
        return True

    async def update_column_joinability(self, column_id, *, is_joinable, reason, stats):
        self.joinability[column_id] = (is_joinable, reason)
        for column in self.columns:
            if column.column_id == column_id:
                column.is_joinable = is_joinable
                column.joinability_reason = reason
                if stats is not None:
                    column.non_null_count = stats.non_null_count
                    column.distinct_count = stats.distinct_count

    async def update_table_row_count(self, table_id, row_count):
        self.tables[table_id].row_count = row_count


class FakeJoinValidator:
    """JoinValidator answering from registered analyses.

    Pairs are keyed 'table.column'. Unregistered pairs look like unrelated
    columns: nothing matches and every source value is an orphan.
    """

    UNRELATED = JoinAnalysis(
        join_count=0,
        source_matched=0,
        target_matched=0,
        orphan_count=10,
        reverse_orphan_count=10,
    )

    def __init__(self):
        self.analyses: dict[tuple[str, str], JoinAnalysis | Exception] = {}
        self.stats: dict[str, list[ColumnStats] | Exception] = {}
        self.calls: list[tuple[str, str]] = []
        self.block: asyncio.Event | None = None
        self.started = asyncio.Event()

    def register(self, source: str, target: str, analysis: JoinAnalysis | Exception):
        self.analyses[(source, target)] = analysis

    def fail(self, source: str, target: str, reason: str = "relation does not exist"):
        self.analyses[(source, target)] = JoinAnalysisError(source, target, reason)

    async def analyze_join(
        self,
        source_schema,
        source_table,
        source_column,
        target_schema,
        target_table,
        target_column,
    ):
        key = (f"{source_table}.{source_column}", f"{target_table}.{target_column}")
        self.calls.append(key)
        self.started.set()
        if self.block is not None:
            await self.block.wait()

        answer = self.analyses.get(key, self.UNRELATED)
        if isinstance(answer, Exception):
            raise answer
        return answer

    async def analyze_column_stats(self, schema, table, columns):
        answer = self.stats.get(table)
        if answer is None:
            raise ValidatorError(f"column stats failed for {schema}.{table}: no such table")
        if isinstance(answer, Exception):
            raise answer
        return answer


class FakeEntityRelationshipRepository:
    """EntityRelationshipRepository with transactional semantics."""

    def __init__(self, fail_on_call: int | None = None):
        self.rows: dict[tuple, EntityRelationship] = {}
        self.fail_on_call = fail_on_call
        self.calls = 0
        self._pending: dict[tuple, EntityRelationship] | None = None

    @staticmethod
    def natural_key(rel: EntityRelationship) -> tuple:
        return (
            rel.ontology_id,
            rel.source_entity_id,
            rel.target_entity_id,
            rel.source_column_schema,
            rel.source_column_table,
            rel.source_column_name,
            rel.target_column_schema,
            rel.target_column_table,
            rel.target_column_name,
        )

    @asynccontextmanager
    async def atomic(self):
        self._pending = dict(self.rows)
        try:
            yield
        except BaseException:
            self._pending = None
            raise
        self.rows = self._pending
        self._pending = None

    async def create(self, relationship):
        self.calls += 1
        if self.fail_on_call == self.calls:
            raise RepositoryError("create entity relationship failed: constraint violation")

        target = self._pending if self._pending is not None else self.rows
        key = self.natural_key(relationship)
        stored = relationship.model_copy()
        existing = target.get(key)
        stored.entity_relationship_id = (
            existing.entity_relationship_id if existing else str(uuid4())
        )
        if existing is not None and existing.description is not None:
            stored.description = existing.description
        target[key] = stored
        return stored

    async def list_by_ontology(self, ontology_id):
        return [r for r in self.rows.values() if r.ontology_id == ontology_id]


@pytest.fixture
def repository() -> FakeSchemaRepository:
    return FakeSchemaRepository()


@pytest.fixture
def validator() -> FakeJoinValidator:
    return FakeJoinValidator()


@pytest.fixture
def entity_repository() -> FakeEntityRelationshipRepository:
    return FakeEntityRelationshipRepository()


@pytest.fixture
def failing_entity_repository() -> FakeEntityRelationshipRepository:
    """Fails on the second create, i.e. the reverse direction."""
    return FakeEntityRelationshipRepository(fail_on_call=2)
