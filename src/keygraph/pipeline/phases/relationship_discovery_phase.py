"""Relationship discovery phase implementation.

Runs the deterministic discovery steps for one datasource:
- FK discovery from declared constraints and column features
- Column statistics and joinability
- PK-match discovery over the remaining columns
"""

from __future__ import annotations

from sqlalchemy import func, select

from keygraph.analysis.relationships import (
    CandidateFilter,
    DiscoveryThresholds,
    DuckDBJoinValidator,
    SqlProjectSettings,
    SqlSchemaRepository,
    collect_column_stats,
    discover_fk_relationships,
    discover_pk_match_relationships,
)
from keygraph.core.config import Settings
from keygraph.pipeline.base import PhaseContext, PhaseResult
from keygraph.pipeline.phases.base import BasePhase
from keygraph.storage import Column, Table


class RelationshipDiscoveryPhase(BasePhase):
    """Relationship discovery phase.

    Config keys (ctx.config):
    - use_legacy_pattern_matching: overrides the project setting
    - collect_column_stats: set False to reuse stored statistics
    """

    name = "relationship_discovery"
    description = "Relationship discovery"
    outputs = (
        "fk_relationships",
        "columns_with_stats",
        "inferred_relationships",
        "pk_match_rejections",
    )

    async def should_skip(self, ctx: PhaseContext) -> str | None:
        """Skip if the datasource has no columns to relate."""
        stmt = (
            select(func.count(Column.column_id))
            .join(Table, Column.table_id == Table.table_id)
            .where(Table.datasource_id == ctx.datasource_id)
        )
        column_count = (await ctx.session.execute(stmt)).scalar() or 0
        if column_count == 0:
            return "No columns found for datasource"
        return None

    async def _legacy_toggle(self, ctx: PhaseContext, settings: Settings) -> bool:
        override = ctx.option("use_legacy_pattern_matching")
        if override is not None:
            return bool(override)

        project_settings = SqlProjectSettings(
            ctx.session, default_legacy=settings.use_legacy_pattern_matching
        )
        project_id = await project_settings.project_id_for_datasource(ctx.datasource_id)
        if project_id is None:
            return settings.use_legacy_pattern_matching
        return await project_settings.use_legacy_pattern_matching(project_id)

    async def _run(self, ctx: PhaseContext) -> PhaseResult:
        settings = ctx.resolved_settings()
        thresholds = DiscoveryThresholds.from_settings(settings)
        repository = SqlSchemaRepository(ctx.session)
        validator = DuckDBJoinValidator(ctx.duckdb_conn)
        legacy = await self._legacy_toggle(ctx, settings)

        fk_result = await discover_fk_relationships(
            ctx.datasource_id, repository=repository, validator=validator, thresholds=thresholds
        )

        warnings: list[str] = list(fk_result.skipped)
        columns_with_stats = 0
        if ctx.option("collect_column_stats", True):
            stats_result = await collect_column_stats(
                ctx.datasource_id, repository=repository, validator=validator, thresholds=thresholds
            )
            columns_with_stats = stats_result.columns_updated
            warnings.extend(
                f"Column stats failed for {table}" for table in stats_result.failed_tables
            )

        pk_result = await discover_pk_match_relationships(
            ctx.datasource_id,
            repository=repository,
            validator=validator,
            candidate_filter=CandidateFilter(
                use_legacy_pattern_matching=legacy, thresholds=thresholds
            ),
            thresholds=thresholds,
        )

        return PhaseResult.success(
            outputs={
                "fk_relationships": fk_result.fk_relationships,
                "columns_with_stats": columns_with_stats,
                "inferred_relationships": pk_result.inferred_relationships,
                "pk_match_rejections": pk_result.rejections,
            },
            warnings=warnings,
            candidates_evaluated=pk_result.candidates_evaluated,
            relationships_written=fk_result.fk_relationships + pk_result.inferred_relationships,
        )
