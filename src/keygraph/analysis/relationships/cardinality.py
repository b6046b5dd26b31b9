"""Cardinality inference from join statistics."""

from keygraph.analysis.relationships.models import JoinAnalysis
from keygraph.core.models.base import Cardinality

# A side counts as "many" only when the join fans out by more than 5%
CARDINALITY_TOLERANCE = 0.05


def infer_cardinality(analysis: JoinAnalysis) -> Cardinality:
    """Infer the source-to-target cardinality of a join.

    Compares the inner join row count with the matched rows on each side: if
    a matched source row appears in more than one joined row, several targets
    hang off it (1:N), and the other way round for N:1. When the validator did
    not report row counts, the distinct matched values stand in for them.

    Args:
        analysis: Join statistics for the column pair

    Returns:
        Cardinality read from source to target; UNKNOWN when nothing joined
    """
    source_rows = analysis.source_matched_rows
    if source_rows is None:
        source_rows = analysis.source_matched
    target_rows = analysis.target_matched_rows
    if target_rows is None:
        target_rows = analysis.target_matched

    if analysis.join_count <= 0 or source_rows <= 0 or target_rows <= 0:
        return Cardinality.UNKNOWN

    threshold = 1.0 + CARDINALITY_TOLERANCE
    source_repeats = analysis.join_count / source_rows > threshold
    target_repeats = analysis.join_count / target_rows > threshold

    if source_repeats and target_repeats:
        return Cardinality.MANY_TO_MANY
    if target_repeats:
        return Cardinality.MANY_TO_ONE
    if source_repeats:
        return Cardinality.ONE_TO_MANY
    return Cardinality.ONE_TO_ONE


def reverse_cardinality(cardinality: Cardinality) -> Cardinality:
    """Cardinality of the same edge read from target to source."""
    match cardinality:
        case Cardinality.MANY_TO_ONE:
            return Cardinality.ONE_TO_MANY
        case Cardinality.ONE_TO_MANY:
            return Cardinality.MANY_TO_ONE
        case _:
            return cardinality
