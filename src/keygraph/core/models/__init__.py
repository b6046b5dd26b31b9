"""Shared models and enums."""

from keygraph.core.models.base import (
    Cardinality,
    ColumnPurpose,
    ColumnRole,
    InferenceMethod,
    RelationshipStatus,
    RelationshipType,
)

__all__ = [
    "Cardinality",
    "ColumnPurpose",
    "ColumnRole",
    "InferenceMethod",
    "RelationshipStatus",
    "RelationshipType",
]
