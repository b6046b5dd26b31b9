"""PK-match discovery: infer foreign keys by value containment.

For every candidate column left unexplained by FK discovery, each
type-compatible key column in the datasource is tried as a target. A pair is
accepted only when every non-null source value exists in the target and the
target is not mostly unreferenced:

    orphan_count == 0
    reverse_orphan_count / (target_matched + reverse_orphan_count) <= 0.5

Small integer columns (ratings, quantities) trivially satisfy containment
against any serial key, so they are only accepted against lookup-sized
targets.
"""

from __future__ import annotations

import time
from collections import Counter

from keygraph.analysis.relationships.candidates import CandidateFilter
from keygraph.analysis.relationships.cardinality import infer_cardinality
from keygraph.analysis.relationships.interfaces import JoinValidator, SchemaRepository
from keygraph.analysis.relationships.models import (
    DiscoveryMetrics,
    DiscoveryThresholds,
    JoinAnalysis,
    PKMatchResult,
    ProgressCallback,
    SchemaColumn,
    SchemaRelationship,
    SchemaTable,
    relationship_type_for,
)
from keygraph.analysis.relationships.snapshot import SchemaSnapshot
from keygraph.analysis.relationships.types import are_types_compatible
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
from keygraph.core.models.base import InferenceMethod

logger = get_logger(__name__)


def rejection_reason(
    analysis: JoinAnalysis,
    target: SchemaColumn,
    target_table: SchemaTable,
    thresholds: DiscoveryThresholds,
) -> str | None:
    """Why a candidate/target pair is not a foreign key, or None to accept it."""
    if analysis.source_matched == 0:
        return "no_matches"

    if analysis.orphan_count > 0:
        return "orphans"

    if analysis.reverse_orphan_rate > thresholds.max_reverse_orphan_rate:
        return "reverse_orphans"

    if (
        analysis.max_source_value is not None
        and analysis.max_source_value <= thresholds.small_integer_max_value
        and _target_size(analysis, target, target_table) > thresholds.lookup_table_max_rows
    ):
        return "small_integer"

    row_count = target_table.row_count
    if (
        target.distinct_count is not None
        and row_count
        and target.distinct_count / row_count < thresholds.min_target_cardinality_ratio
    ):
        return "low_cardinality_target"

    return None


def _target_size(analysis: JoinAnalysis, target: SchemaColumn, target_table: SchemaTable) -> int:
    if target_table.row_count is not None:
        return target_table.row_count
    if target.distinct_count is not None:
        return target.distinct_count
    return analysis.target_distinct


async def discover_pk_match_relationships(
    datasource_id: str,
    *,
    repository: SchemaRepository,
    validator: JoinValidator,
    candidate_filter: CandidateFilter | None = None,
    thresholds: DiscoveryThresholds | None = None,
    progress: ProgressCallback | None = None,
) -> PKMatchResult:
    """Infer FK relationships by testing candidates against key columns.

    Candidates with role foreign_key are tried first. Works without any
    entity records. A pair the validator cannot analyze is skipped; the run
    continues with the next pair.

    Args:
        datasource_id: Datasource to process
        repository: Schema snapshot and relationship storage
        validator: Join statistics provider
        candidate_filter: Candidate/target selection (carries the legacy toggle)
        thresholds: Validation limits; defaults to the filter's thresholds
        progress: Optional (current, total, message) callback

    Returns:
        PKMatchResult with the number of relationships written

    Raises:
        RepositoryError: If reading or writing metadata fails
    """
    if thresholds is None:
        thresholds = (
            candidate_filter.thresholds if candidate_filter else DiscoveryThresholds.from_settings()
        )
    candidate_filter = candidate_filter or CandidateFilter(thresholds=thresholds)

    result = PKMatchResult()
    rejections: Counter[str] = Counter()
    metrics = start_discovery_metrics("pk_match")

    with log_context(datasource_id=datasource_id, phase="pk_match"):
        try:
            snapshot = await SchemaSnapshot.load(repository, datasource_id)
            selection = candidate_filter.select_candidates(
                snapshot.columns, snapshot.tables, snapshot.relationships
            )
            targets = candidate_filter.select_targets(snapshot.columns)
            candidates = selection.candidates
            record_columns_considered(len(candidates))

            logger.info(
                "pk_match_started",
                candidates=len(candidates),
                targets=len(targets),
                skipped=dict(selection.skipped),
                legacy_pattern_matching=candidate_filter.use_legacy_pattern_matching,
            )

            for index, candidate in enumerate(candidates, start=1):
                result.candidates_evaluated += 1
                written = await _match_candidate(
                    candidate,
                    targets,
                    snapshot,
                    repository,
                    validator,
                    thresholds,
                    rejections,
                    result,
                )
                result.inferred_relationships += written
                if progress:
                    progress(index, len(candidates), f"PK match: {snapshot.describe(candidate)}")
        finally:
            end_discovery_metrics()

        result.rejections = dict(rejections)
        logger.info(
            "pk_match_complete",
            inferred_relationships=result.inferred_relationships,
            candidates_evaluated=result.candidates_evaluated,
            pairs_analyzed=result.pairs_analyzed,
            rejections=result.rejections,
            duration_seconds=round(metrics.duration_seconds, 3),
        )
    return result


async def _match_candidate(
    candidate: SchemaColumn,
    targets: list[SchemaColumn],
    snapshot: SchemaSnapshot,
    repository: SchemaRepository,
    validator: JoinValidator,
    thresholds: DiscoveryThresholds,
    rejections: Counter[str],
    result: PKMatchResult,
) -> int:
    source_table = snapshot.table(candidate.table_id)
    if source_table is None:
        return 0

    written = 0
    for target in targets:
        # Self-references within a table are fine, a column referencing itself is not
        if target.column_id == candidate.column_id:
            continue
        if not are_types_compatible(candidate.data_type, target.data_type):
            continue
        target_table = snapshot.table(target.table_id)
        if target_table is None:
            continue

        source = snapshot.describe(candidate)
        target_name = snapshot.describe(target)

        analysis = await _analyze(validator, source_table, candidate, target_table, target)
        if analysis is None:
            continue
        result.pairs_analyzed += 1

        reason = rejection_reason(analysis, target, target_table, thresholds)
        if reason is not None:
            rejections[reason] += 1
            logger.debug("pk_match_rejected", source=source, target=target_name, reason=reason)
            continue

        cardinality = infer_cardinality(analysis)
        method = InferenceMethod.PK_MATCH
        relationship = SchemaRelationship(
            source_table_id=source_table.table_id,
            source_column_id=candidate.column_id,
            target_table_id=target_table.table_id,
            target_column_id=target.column_id,
            relationship_type=relationship_type_for(method),
            inference_method=method,
            cardinality=cardinality,
            confidence=thresholds.pk_match_confidence,
            is_validated=True,
        )
        discovery_metrics = DiscoveryMetrics.from_analysis(analysis)

        if await repository.upsert_relationship_with_metrics(relationship, discovery_metrics):
            written += 1
            increment_relationship_written()
            logger.info(
                "pk_match_accepted",
                source=source,
                target=target_name,
                cardinality=cardinality.value,
                match_rate=discovery_metrics.match_rate,
                matched_count=discovery_metrics.matched_count,
            )
    return written


async def _analyze(
    validator: JoinValidator,
    source_table: SchemaTable,
    source: SchemaColumn,
    target_table: SchemaTable,
    target: SchemaColumn,
) -> JoinAnalysis | None:
    started = time.monotonic()
    try:
        analysis = await validator.analyze_join(
            source_table.schema_name,
            source_table.table_name,
            source.column_name,
            target_table.schema_name,
            target_table.table_name,
            target.column_name,
        )
    except ValidatorError as e:
        increment_join_analysis(failed=True)
        logger.debug(
            "pk_match_join_failed",
            source=f"{source_table.qualified_name}.{source.column_name}",
            target=f"{target_table.qualified_name}.{target.column_name}",
            error=str(e),
        )
        return None
    finally:
        record_operation_timing("analyze_join", time.monotonic() - started)

    increment_join_analysis()
    return analysis
