"""Tests for the SQLAlchemy discovery repositories."""

from datetime import UTC, datetime

import pytest
from sqlalchemy import select

from keygraph.analysis.relationships.bidirectional import create_bidirectional
from keygraph.analysis.relationships.db_models import (
    EntityRelationship as EntityRelationshipDB,
)
from keygraph.analysis.relationships.db_models import Relationship as RelationshipDB
from keygraph.analysis.relationships.models import (
    ColumnStats,
    DiscoveryMetrics,
    EntityRelationship,
    SchemaRelationship,
)
from keygraph.analysis.relationships.repository import (
    SqlEntityRelationshipRepository,
    SqlProjectSettings,
    SqlSchemaRepository,
)
from keygraph.core.exceptions import RepositoryError
from keygraph.core.models.base import (
    Cardinality,
    InferenceMethod,
    RelationshipType,
)
from keygraph.storage import Column, Datasource, Project, Table


@pytest.fixture
async def schema(async_session):
    """One datasource with users(id) and orders(id, buyer_id)."""
    project = Project(name="shop", parameters={"use_legacy_pattern_matching": True})
    async_session.add(project)
    await async_session.flush()

    datasource = Datasource(project_id=project.project_id, name="warehouse")
    async_session.add(datasource)
    await async_session.flush()

    users = Table(datasource_id=datasource.datasource_id, table_name="users", row_count=100)
    orders = Table(datasource_id=datasource.datasource_id, table_name="orders")
    async_session.add_all([users, orders])
    await async_session.flush()

    user_id = Column(
        table_id=users.table_id, column_name="id", data_type="uuid", is_primary_key=True
    )
    order_id = Column(
        table_id=orders.table_id,
        column_name="id",
        data_type="uuid",
        ordinal_position=0,
        is_primary_key=True,
    )
    buyer_id = Column(
        table_id=orders.table_id,
        column_name="buyer_id",
        data_type="uuid",
        ordinal_position=1,
        column_metadata={
            "column_features": {
                "purpose": "identifier",
                "role": "foreign_key",
                "identifier_features": {"fk_target_table": "users", "fk_confidence": 0.85},
            }
        },
    )
    async_session.add_all([user_id, order_id, buyer_id])
    await async_session.commit()

    return {
        "project": project,
        "datasource": datasource,
        "users": users,
        "orders": orders,
        "users.id": user_id,
        "orders.id": order_id,
        "orders.buyer_id": buyer_id,
    }


@pytest.fixture
def repo(async_session) -> SqlSchemaRepository:
    return SqlSchemaRepository(async_session)


def _edge(schema, **kwargs) -> SchemaRelationship:
    values = {
        "source_table_id": schema["orders"].table_id,
        "source_column_id": schema["orders.buyer_id"].column_id,
        "target_table_id": schema["users"].table_id,
        "target_column_id": schema["users.id"].column_id,
        "relationship_type": RelationshipType.INFERRED,
        "inference_method": InferenceMethod.PK_MATCH,
        "cardinality": Cardinality.MANY_TO_ONE,
        "confidence": 0.9,
        "is_validated": True,
    }
    values.update(kwargs)
    return SchemaRelationship(**values)


async def _rows(session) -> list[RelationshipDB]:
    return list((await session.execute(select(RelationshipDB))).scalars().all())


class TestSchemaSnapshotQueries:
    async def test_list_tables(self, repo, schema):
        tables = await repo.list_tables(schema["datasource"].datasource_id)

        assert [t.table_name for t in tables] == ["orders", "users"]
        assert tables[1].row_count == 100
        assert tables[0].schema_name == "main"

    async def test_list_columns_reads_features(self, repo, schema):
        columns = await repo.list_columns(schema["datasource"].datasource_id)

        buyer = next(c for c in columns if c.column_name == "buyer_id")
        assert [c.column_name for c in columns] == ["id", "buyer_id", "id"]
        assert buyer.features.fk_target_table == "users"
        assert buyer.features.fk_confidence == pytest.approx(0.85)
        assert buyer.is_joinable is None

    async def test_unknown_datasource_is_empty(self, repo, schema):
        assert await repo.list_tables("missing") == []
        assert await repo.list_columns("missing") == []


class TestUpsertRelationship:
    async def test_insert(self, repo, schema, async_session):
        edge = _edge(schema)

        assert await repo.upsert_relationship(edge)

        (row,) = await _rows(async_session)
        assert edge.relationship_id == row.relationship_id
        assert row.relationship_type == "inferred"
        assert row.inference_method == "pk_match"
        assert row.cardinality == "N:1"
        assert row.is_validated

    async def test_update_keeps_one_row(self, repo, schema, async_session):
        await repo.upsert_relationship(_edge(schema))
        await repo.upsert_relationship(_edge(schema, cardinality=Cardinality.ONE_TO_ONE))

        (row,) = await _rows(async_session)
        assert row.cardinality == "1:1"

    async def test_metrics_stored(self, repo, schema):
        metrics = DiscoveryMetrics(
            match_rate=1.0, source_distinct=1000, target_distinct=100, matched_count=1000
        )

        await repo.upsert_relationship_with_metrics(_edge(schema), metrics)

        (stored,) = await repo.list_relationships(schema["datasource"].datasource_id)
        assert stored.metrics == metrics

    async def test_manual_row_not_overwritten(self, repo, schema, async_session):
        manual = _edge(
            schema,
            relationship_type=RelationshipType.MANUAL,
            inference_method=InferenceMethod.MANUAL,
            cardinality=Cardinality.ONE_TO_ONE,
        )
        await repo.upsert_relationship(manual)

        assert not await repo.upsert_relationship(_edge(schema))

        (row,) = await _rows(async_session)
        assert row.relationship_type == "manual"
        assert row.cardinality == "1:1"

    async def test_manual_row_can_be_updated_manually(self, repo, schema, async_session):
        manual = _edge(schema, relationship_type=RelationshipType.MANUAL)
        await repo.upsert_relationship(manual)

        assert await repo.upsert_relationship(manual.model_copy(update={"confidence": 0.5}))

    async def test_deleted_pair_not_recreated(self, repo, schema, async_session):
        await repo.upsert_relationship(_edge(schema))
        (row,) = await _rows(async_session)
        row.deleted_at = datetime.now(UTC)
        await async_session.commit()

        assert not await repo.upsert_relationship(_edge(schema))
        assert await repo.list_relationships(schema["datasource"].datasource_id) == []

    async def test_failure_raises_repository_error(self, repo, schema):
        edge = _edge(schema)
        broken = edge.model_copy(update={"target_column_id": "no-such-column"})

        with pytest.raises(RepositoryError):
            await repo.upsert_relationship(broken)

        # Session is usable again after the rollback
        assert await repo.upsert_relationship(edge)


class TestColumnUpdates:
    async def test_update_column_joinability(self, repo, schema, async_session):
        stats = ColumnStats(
            column_name="buyer_id",
            row_count=1000,
            non_null_count=990,
            distinct_count=100,
            min_length=36,
            max_length=36,
        )

        await repo.update_column_joinability(
            schema["orders.buyer_id"].column_id,
            is_joinable=True,
            reason="cardinality_ok",
            stats=stats,
        )

        column = await async_session.get(Column, schema["orders.buyer_id"].column_id)
        assert column.is_joinable is True
        assert column.joinability_reason == "cardinality_ok"
        assert column.distinct_count == 100
        assert column.stats_updated_at is not None

    async def test_update_table_row_count(self, repo, schema, async_session):
        await repo.update_table_row_count(schema["orders"].table_id, 1000)

        table = await async_session.get(Table, schema["orders"].table_id)
        assert table.row_count == 1000

    async def test_unknown_column_raises(self, repo, schema):
        with pytest.raises(RepositoryError):
            await repo.update_column_joinability(
                "missing", is_joinable=False, reason="no_stats", stats=None
            )


def _entity_edge(**kwargs) -> EntityRelationship:
    values = {
        "ontology_id": "onto-1",
        "source_entity_id": "ent-order",
        "target_entity_id": "ent-user",
        "source_column_schema": "main",
        "source_column_table": "orders",
        "source_column_name": "buyer_id",
        "target_column_schema": "main",
        "target_column_table": "users",
        "target_column_name": "id",
        "detection_method": "foreign_key",
        "confidence": 1.0,
        "cardinality": Cardinality.MANY_TO_ONE,
    }
    values.update(kwargs)
    return EntityRelationship(**values)


class TestEntityRelationshipRepository:
    async def test_create_and_list(self, async_session):
        repo = SqlEntityRelationshipRepository(async_session)

        created = await repo.create(_entity_edge())

        assert created.entity_relationship_id is not None
        assert await repo.list_by_ontology("onto-1") == [created]

    async def test_create_upserts_on_natural_key(self, async_session):
        repo = SqlEntityRelationshipRepository(async_session)
        await repo.create(_entity_edge(description="Order placed by a user"))

        updated = await repo.create(_entity_edge(confidence=0.7, description="Other text"))

        rows = await repo.list_by_ontology("onto-1")
        assert len(rows) == 1
        assert updated.confidence == pytest.approx(0.7)
        assert updated.description == "Order placed by a user"

    async def test_atomic_rolls_back_all_writes(self, async_session):
        repo = SqlEntityRelationshipRepository(async_session)

        with pytest.raises(RuntimeError):
            async with repo.atomic():
                await repo.create(_entity_edge())
                raise RuntimeError("reverse write failed")

        rows = (await async_session.execute(select(EntityRelationshipDB))).scalars().all()
        assert rows == []

    async def test_failed_create_inside_atomic_discards_block(self, async_session):
        repo = SqlEntityRelationshipRepository(async_session)

        with pytest.raises(RepositoryError):
            async with repo.atomic():
                await repo.create(_entity_edge())
                # Unknown column ids violate the foreign key
                await repo.create(_entity_edge(ontology_id="onto-2", target_column_id="nope"))

        assert await repo.list_by_ontology("onto-1") == []

    async def test_bidirectional_commits_both(self, async_session):
        repo = SqlEntityRelationshipRepository(async_session)

        forward, reverse = await create_bidirectional(_entity_edge(), repository=repo)

        rows = await repo.list_by_ontology("onto-1")
        assert len(rows) == 2
        assert reverse.cardinality == Cardinality.ONE_TO_MANY
        assert reverse.source_column_table == "users"


class TestProjectSettings:
    async def test_reads_project_parameter(self, async_session, schema):
        settings = SqlProjectSettings(async_session)

        project_id = await settings.project_id_for_datasource(
            schema["datasource"].datasource_id
        )

        assert project_id == schema["project"].project_id
        assert await settings.use_legacy_pattern_matching(project_id) is True

    async def test_defaults_when_unset(self, async_session):
        project = Project(name="plain")
        async_session.add(project)
        await async_session.commit()

        default_off = SqlProjectSettings(async_session)
        default_on = SqlProjectSettings(async_session, default_legacy=True)

        assert await default_off.use_legacy_pattern_matching(project.project_id) is False
        assert await default_on.use_legacy_pattern_matching(project.project_id) is True

    async def test_unknown_datasource(self, async_session):
        assert await SqlProjectSettings(async_session).project_id_for_datasource("nope") is None
