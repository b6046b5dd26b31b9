"""Bidirectional entity relationships.

Every entity relationship is stored once per direction so that the ontology
can be navigated from either end. Both rows are written in one atomic block:
a failure on the reverse write leaves neither direction behind.
"""

from __future__ import annotations

from keygraph.analysis.relationships.cardinality import reverse_cardinality
from keygraph.analysis.relationships.interfaces import EntityRelationshipRepository
from keygraph.analysis.relationships.models import EntityRelationship
from keygraph.core.logging import get_logger

logger = get_logger(__name__)


def reverse_relationship(relationship: EntityRelationship) -> EntityRelationship:
    """The same edge read from target to source.

    Description and association describe one direction and are not carried
    over.
    """
    return EntityRelationship(
        ontology_id=relationship.ontology_id,
        source_entity_id=relationship.target_entity_id,
        target_entity_id=relationship.source_entity_id,
        source_column_schema=relationship.target_column_schema,
        source_column_table=relationship.target_column_table,
        source_column_name=relationship.target_column_name,
        source_column_id=relationship.target_column_id,
        target_column_schema=relationship.source_column_schema,
        target_column_table=relationship.source_column_table,
        target_column_name=relationship.source_column_name,
        target_column_id=relationship.source_column_id,
        detection_method=relationship.detection_method,
        confidence=relationship.confidence,
        status=relationship.status,
        cardinality=reverse_cardinality(relationship.cardinality),
    )


async def create_bidirectional(
    relationship: EntityRelationship,
    *,
    repository: EntityRelationshipRepository,
) -> tuple[EntityRelationship, EntityRelationship]:
    """Store a relationship and its reverse.

    Args:
        relationship: Forward edge as discovered
        repository: Entity relationship storage

    Returns:
        (forward, reverse) as stored

    Raises:
        RepositoryError: If either write fails; nothing is kept in that case
    """
    reverse = reverse_relationship(relationship)

    async with repository.atomic():
        forward_stored = await repository.create(relationship)
        reverse_stored = await repository.create(reverse)

    logger.debug(
        "bidirectional_relationship_created",
        ontology_id=relationship.ontology_id,
        source=f"{relationship.source_column_table}.{relationship.source_column_name}",
        target=f"{relationship.target_column_table}.{relationship.target_column_name}",
        cardinality=relationship.cardinality.value,
    )
    return forward_stored, reverse_stored
