"""FK discovery from declared constraints and column features.

Two kinds of evidence need no statistical search:
- columns whose extracted features name the table they reference
- FK constraints declared in the customer schema

Both are validated against the data for cardinality and written as
validated relationships. PK-match discovery runs afterwards on whatever
remains unexplained.
"""

from __future__ import annotations

import time

from keygraph.analysis.relationships.cardinality import infer_cardinality
from keygraph.analysis.relationships.interfaces import JoinValidator, SchemaRepository
from keygraph.analysis.relationships.models import (
    DiscoveryThresholds,
    FKDiscoveryResult,
    IdentifierFeatures,
    ProgressCallback,
    SchemaColumn,
    SchemaRelationship,
    SchemaTable,
    relationship_type_for,
)
from keygraph.analysis.relationships.snapshot import SchemaSnapshot
from keygraph.core.exceptions import ValidatorError
from keygraph.core.logging import (
    end_discovery_metrics,
    get_logger,
    increment_join_analysis,
    increment_relationship_written,
    log_context,
    record_columns_considered,
    record_operation_timing,
    start_discovery_metrics,
)
from keygraph.core.models.base import Cardinality, InferenceMethod, RelationshipType

logger = get_logger(__name__)

DEFAULT_TARGET_COLUMN = "id"


async def discover_fk_relationships(
    datasource_id: str,
    *,
    repository: SchemaRepository,
    validator: JoinValidator,
    thresholds: DiscoveryThresholds | None = None,
    progress: ProgressCallback | None = None,
) -> FKDiscoveryResult:
    """Write relationships for column-feature FK hints and declared FK constraints.

    Manual relationships are never touched. Declared constraints are
    re-validated on every run, including self-referencing ones. Entity
    records are not needed.

    Args:
        datasource_id: Datasource to process
        repository: Schema snapshot and relationship storage
        validator: Join statistics for cardinality
        thresholds: Numeric defaults (feature confidence)
        progress: Optional (current, total, message) callback

    Returns:
        FKDiscoveryResult with the number of relationships written

    Raises:
        RepositoryError: If reading or writing metadata fails
    """
    thresholds = thresholds or DiscoveryThresholds.from_settings()
    result = FKDiscoveryResult()
    metrics = start_discovery_metrics("fk_discovery")

    with log_context(datasource_id=datasource_id, phase="fk_discovery"):
        try:
            snapshot = await SchemaSnapshot.load(repository, datasource_id)

            feature_columns = _feature_fk_columns(snapshot.columns)
            declared = [
                r
                for r in snapshot.relationships
                if r.inference_method == InferenceMethod.FOREIGN_KEY
                and r.relationship_type != RelationshipType.MANUAL
            ]
            total = len(feature_columns) + len(declared)
            record_columns_considered(total)
            logger.info(
                "fk_discovery_started",
                feature_columns=len(feature_columns),
                declared_constraints=len(declared),
            )

            step = 0
            for column, identifier in feature_columns:
                if await _process_feature_column(
                    column, identifier, snapshot, repository, validator, thresholds, result
                ):
                    result.column_feature_relationships += 1
                step += 1
                if progress:
                    progress(step, total, f"Column features: {snapshot.describe(column)}")

            for relationship in declared:
                if await _process_declared(relationship, snapshot, repository, validator, result):
                    result.declared_relationships += 1
                step += 1
                if progress:
                    progress(step, total, "Declared foreign keys")

            result.fk_relationships = (
                result.column_feature_relationships + result.declared_relationships
            )
        finally:
            end_discovery_metrics()

        logger.info(
            "fk_discovery_complete",
            fk_relationships=result.fk_relationships,
            column_feature_relationships=result.column_feature_relationships,
            declared_relationships=result.declared_relationships,
            skipped=len(result.skipped),
            duration_seconds=round(metrics.duration_seconds, 3),
        )
    return result


def _feature_fk_columns(
    columns: list[SchemaColumn],
) -> list[tuple[SchemaColumn, IdentifierFeatures]]:
    """Columns whose identifier features name an FK target table."""
    found = []
    for column in columns:
        identifier = column.features.identifier_features if column.features else None
        if identifier is not None and identifier.fk_target_table:
            found.append((column, identifier))
    return found


async def _process_feature_column(
    column: SchemaColumn,
    identifier: IdentifierFeatures,
    snapshot: SchemaSnapshot,
    repository: SchemaRepository,
    validator: JoinValidator,
    thresholds: DiscoveryThresholds,
    result: FKDiscoveryResult,
) -> bool:
    source_table = snapshot.table(column.table_id)
    source = snapshot.describe(column)

    if source_table is None:
        _skip(result, source, "source table not found")
        return False

    target_schema, target_table_name = _split_table_name(
        identifier.fk_target_table or "", source_table.schema_name
    )
    target_table = snapshot.table_by_name(target_schema, target_table_name)
    if target_table is None:
        _skip(result, source, f"target table {target_schema}.{target_table_name} not found")
        return False

    target_column_name = identifier.fk_target_column or DEFAULT_TARGET_COLUMN
    target_column = snapshot.column_by_name(target_table.table_id, target_column_name)
    if target_column is None:
        _skip(
            result,
            source,
            f"target column {target_table.qualified_name}.{target_column_name} not found",
        )
        return False

    cardinality = await _cardinality_or_default(
        validator, source_table, column, target_table, target_column
    )
    method = InferenceMethod.COLUMN_FEATURES
    relationship = SchemaRelationship(
        source_table_id=source_table.table_id,
        source_column_id=column.column_id,
        target_table_id=target_table.table_id,
        target_column_id=target_column.column_id,
        relationship_type=relationship_type_for(method),
        inference_method=method,
        cardinality=cardinality,
        confidence=identifier.fk_confidence or thresholds.default_feature_confidence,
        is_validated=True,
    )

    written = await repository.upsert_relationship(relationship)
    if written:
        increment_relationship_written()
        logger.debug(
            "fk_from_column_features",
            source=source,
            target=f"{target_table.qualified_name}.{target_column.column_name}",
            cardinality=cardinality.value,
        )
    return written


async def _process_declared(
    relationship: SchemaRelationship,
    snapshot: SchemaSnapshot,
    repository: SchemaRepository,
    validator: JoinValidator,
    result: FKDiscoveryResult,
) -> bool:
    source_table = snapshot.table(relationship.source_table_id)
    target_table = snapshot.table(relationship.target_table_id)
    source_column = snapshot.column(relationship.source_column_id)
    target_column = snapshot.column(relationship.target_column_id)

    if (
        source_table is None
        or target_table is None
        or source_column is None
        or target_column is None
    ):
        _skip(result, relationship.relationship_id or "?", "declared FK refers to unknown column")
        return False

    relationship.cardinality = await _cardinality_or_default(
        validator, source_table, source_column, target_table, target_column
    )
    relationship.is_validated = True

    written = await repository.upsert_relationship(relationship)
    if written:
        increment_relationship_written()
    return written


async def _cardinality_or_default(
    validator: JoinValidator,
    source_table: SchemaTable,
    source_column: SchemaColumn,
    target_table: SchemaTable,
    target_column: SchemaColumn,
) -> Cardinality:
    """Cardinality from the data, or N:1 when the data cannot say."""
    started = time.monotonic()
    try:
        analysis = await validator.analyze_join(
            source_table.schema_name,
            source_table.table_name,
            source_column.column_name,
            target_table.schema_name,
            target_table.table_name,
            target_column.column_name,
        )
    except ValidatorError as e:
        increment_join_analysis(failed=True)
        logger.warning(
            "fk_cardinality_fallback",
            source=f"{source_table.qualified_name}.{source_column.column_name}",
            target=f"{target_table.qualified_name}.{target_column.column_name}",
            error=str(e),
        )
        return Cardinality.MANY_TO_ONE
    finally:
        record_operation_timing("analyze_join", time.monotonic() - started)

    increment_join_analysis()
    cardinality = infer_cardinality(analysis)
    # An FK over empty tables still reads N:1
    if cardinality == Cardinality.UNKNOWN:
        return Cardinality.MANY_TO_ONE
    return cardinality


def _split_table_name(name: str, default_schema: str) -> tuple[str, str]:
    """Split 'schema.table'; bare names live in the referencing column's schema."""
    if "." in name:
        schema, table = name.split(".", 1)
        return schema, table
    return default_schema, name


def _skip(result: FKDiscoveryResult, source: str, reason: str) -> None:
    result.skipped.append(f"{source}: {reason}")
    logger.debug("fk_candidate_skipped", source=source, reason=reason)
