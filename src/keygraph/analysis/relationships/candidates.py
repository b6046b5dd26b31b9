"""Candidate selection for PK-match discovery.

Decides which columns may be the referencing side of an inferred foreign key
and which may be referenced. Pure: everything the filter needs is passed in,
including the legacy pattern-matching toggle.
"""

from __future__ import annotations

from collections import Counter
from collections.abc import Collection, Iterable, Sequence
from dataclasses import dataclass, field

from keygraph.analysis.relationships.models import (
    DiscoveryThresholds,
    SchemaColumn,
    SchemaRelationship,
    SchemaTable,
)
from keygraph.analysis.relationships.types import (
    is_excluded_join_type,
    is_variable_length_text,
)
from keygraph.core.models.base import ColumnPurpose, ColumnRole

# Purposes whose values describe a row rather than point at another one
EXCLUDED_PURPOSES = frozenset(
    {ColumnPurpose.MEASURE, ColumnPurpose.TIMESTAMP, ColumnPurpose.FLAG, ColumnPurpose.ENUM}
)


@dataclass
class CandidateSelection:
    """Ordered FK candidates plus why everything else was dropped."""

    candidates: list[SchemaColumn] = field(default_factory=list)
    skipped: Counter[str] = field(default_factory=Counter)


class CandidateFilter:
    """Selects FK candidates and PK-match targets.

    Args:
        use_legacy_pattern_matching: Accept columns named *_id whose
            joinability was never measured, and relax the cardinality ratio
            for them
        thresholds: Numeric limits; defaults apply when omitted
    """

    def __init__(
        self,
        use_legacy_pattern_matching: bool = False,
        thresholds: DiscoveryThresholds | None = None,
    ):
        self.use_legacy_pattern_matching = use_legacy_pattern_matching
        self.thresholds = thresholds or DiscoveryThresholds()

    def select_candidates(
        self,
        columns: Iterable[SchemaColumn],
        tables: dict[str, SchemaTable],
        existing: Sequence[SchemaRelationship] = (),
    ) -> CandidateSelection:
        """Select FK candidates, foreign-key-role columns first.

        Args:
            columns: All columns of the datasource, in schema order
            tables: Tables keyed by table_id (row counts feed the ratio check)
            existing: Relationships already stored for the datasource

        Returns:
            CandidateSelection with the ordered candidates and skip counts
        """
        related_sources = {rel.source_column_id for rel in existing}
        selection = CandidateSelection()
        priority: list[SchemaColumn] = []
        regular: list[SchemaColumn] = []

        for column in columns:
            reason = self.rejection_reason(column, tables.get(column.table_id), related_sources)
            if reason is not None:
                selection.skipped[reason] += 1
                continue
            if column.role == ColumnRole.FOREIGN_KEY:
                priority.append(column)
            else:
                regular.append(column)

        selection.candidates = priority + regular
        return selection

    def rejection_reason(
        self,
        column: SchemaColumn,
        table: SchemaTable | None,
        related_sources: Collection[str] = (),
    ) -> str | None:
        """Why a column cannot be an FK candidate, or None if it can."""
        t = self.thresholds
        legacy_id = self.use_legacy_pattern_matching and column.column_name.lower().endswith("_id")
        is_identifier = column.purpose == ColumnPurpose.IDENTIFIER

        if is_excluded_join_type(column.data_type):
            return "excluded_type"
        if is_variable_length_text(column.data_type, column.min_length, column.max_length):
            return "variable_length_text"

        if column.is_joinable is False:
            return "not_joinable"
        if column.is_joinable is None and not legacy_id:
            return "joinability_unknown"

        if (
            column.distinct_count is not None
            and column.distinct_count < t.min_distinct_count
            and not is_identifier
        ):
            return "low_distinct"

        row_count = table.row_count if table else None
        if (
            column.distinct_count is not None
            and row_count
            and not is_identifier
            and not legacy_id
            and column.distinct_count / row_count < t.min_cardinality_ratio
        ):
            return "low_cardinality_ratio"

        if column.purpose in EXCLUDED_PURPOSES:
            return "excluded_purpose"

        if column.column_id in related_sources:
            return "has_relationship"

        features = column.features
        if (
            features is not None
            and features.fk_target_table
            and features.fk_confidence > t.high_confidence_fk
        ):
            return "high_confidence_fk"

        if column.is_primary_key:
            return "primary_key"

        return None

    def is_target(self, column: SchemaColumn) -> bool:
        """Whether a column may be referenced by an inferred FK."""
        if column.is_primary_key:
            return True
        if is_excluded_join_type(column.data_type):
            return False
        if column.is_unique:
            return True
        return (
            column.distinct_count is not None
            and column.distinct_count >= self.thresholds.min_distinct_count
        )

    def select_targets(self, columns: Iterable[SchemaColumn]) -> list[SchemaColumn]:
        return [column for column in columns if self.is_target(column)]
