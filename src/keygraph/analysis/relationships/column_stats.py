"""Column statistics collection and joinability classification.

Populates the counts candidate selection relies on and decides, per column,
whether it can take part in a join at all.
"""

from __future__ import annotations

from keygraph.analysis.relationships.interfaces import JoinValidator, SchemaRepository
from keygraph.analysis.relationships.models import (
    ColumnStats,
    ColumnStatsResult,
    DiscoveryThresholds,
    ProgressCallback,
    SchemaColumn,
)
from keygraph.analysis.relationships.snapshot import SchemaSnapshot
from keygraph.analysis.relationships.types import is_excluded_join_type
from keygraph.core.exceptions import ValidatorError
from keygraph.core.logging import (
    end_discovery_metrics,
    get_logger,
    log_context,
    record_tables_processed,
    start_discovery_metrics,
)

logger = get_logger(__name__)


def classify_joinability(
    column: SchemaColumn,
    stats: ColumnStats | None,
    thresholds: DiscoveryThresholds | None = None,
) -> tuple[bool, str]:
    """Decide whether a column can be a join key.

    Returns:
        (is_joinable, reason) where reason is one of 'pk', 'type_excluded',
        'no_stats', 'unique_values', 'low_cardinality', 'cardinality_ok'
    """
    thresholds = thresholds or DiscoveryThresholds()

    if column.is_primary_key:
        return True, "pk"
    if is_excluded_join_type(column.data_type):
        return False, "type_excluded"
    if stats is None or stats.row_count == 0:
        return False, "no_stats"
    if stats.distinct_count > 0 and stats.distinct_count == stats.non_null_count:
        return True, "unique_values"
    if stats.distinct_count / stats.row_count < thresholds.low_cardinality_ratio:
        return False, "low_cardinality"
    return True, "cardinality_ok"


async def collect_column_stats(
    datasource_id: str,
    *,
    repository: SchemaRepository,
    validator: JoinValidator,
    thresholds: DiscoveryThresholds | None = None,
    progress: ProgressCallback | None = None,
) -> ColumnStatsResult:
    """Collect statistics for every column of a datasource and store joinability.

    A table whose statistics query fails is logged and skipped; its columns
    keep their previous state.

    Raises:
        RepositoryError: If writing metadata fails
    """
    thresholds = thresholds or DiscoveryThresholds.from_settings()
    result = ColumnStatsResult()
    start_discovery_metrics("column_stats")

    with log_context(datasource_id=datasource_id, phase="column_stats"):
        try:
            snapshot = await SchemaSnapshot.load(repository, datasource_id)
            tables = list(snapshot.tables.values())

            for index, table in enumerate(tables, start=1):
                columns = snapshot.columns_of(table.table_id)
                try:
                    stats = await validator.analyze_column_stats(
                        table.schema_name, table.table_name, [c.column_name for c in columns]
                    )
                except ValidatorError as e:
                    logger.warning("column_stats_failed", table=table.qualified_name, error=str(e))
                    result.failed_tables.append(table.qualified_name)
                    continue

                stats_by_name = {s.column_name: s for s in stats}
                if stats:
                    await repository.update_table_row_count(table.table_id, stats[0].row_count)

                for column in columns:
                    column_stats = stats_by_name.get(column.column_name)
                    is_joinable, reason = classify_joinability(column, column_stats, thresholds)
                    await repository.update_column_joinability(
                        column.column_id,
                        is_joinable=is_joinable,
                        reason=reason,
                        stats=column_stats,
                    )
                    result.columns_updated += 1

                result.tables_processed += 1
                record_tables_processed(1)
                if progress:
                    progress(index, len(tables), f"Column stats: {table.qualified_name}")
        finally:
            end_discovery_metrics()

        logger.info(
            "column_stats_complete",
            tables_processed=result.tables_processed,
            columns_updated=result.columns_updated,
            failed_tables=len(result.failed_tables),
        )
    return result
