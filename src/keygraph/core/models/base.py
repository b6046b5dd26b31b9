"""Base models and types used across all modules.

This module contains the fundamental types that don't belong to any specific
domain module.
"""

from __future__ import annotations

from enum import Enum


# === Enums ===


class Cardinality(str, Enum):
    """Relationship cardinality, read from source to target."""

    ONE_TO_ONE = "1:1"
    ONE_TO_MANY = "1:N"
    MANY_TO_ONE = "N:1"
    MANY_TO_MANY = "N:M"
    UNKNOWN = "unknown"


class RelationshipType(str, Enum):
    """How a schema relationship came to exist."""

    FK = "fk"  # Declared constraint in the customer schema
    MANUAL = "manual"  # Created by a user
    INFERRED = "inferred"  # Discovered from data or column features


class InferenceMethod(str, Enum):
    """Evidence that produced a relationship."""

    FOREIGN_KEY = "foreign_key"  # Declared FK constraint
    COLUMN_FEATURES = "column_features"  # FK target named by column feature extraction
    PK_MATCH = "pk_match"  # Blind value containment against a key column
    MANUAL = "manual"


class ColumnPurpose(str, Enum):
    """What a column's values are for."""

    IDENTIFIER = "identifier"
    TIMESTAMP = "timestamp"
    FLAG = "flag"
    MEASURE = "measure"
    ENUM = "enum"
    TEXT = "text"
    JSON = "json"


class ColumnRole(str, Enum):
    """Structural role of a column within its table."""

    PRIMARY_KEY = "primary_key"
    FOREIGN_KEY = "foreign_key"
    ATTRIBUTE = "attribute"
    MEASURE = "measure"


class RelationshipStatus(str, Enum):
    """Review state of an entity relationship."""

    PENDING = "pending"
    CONFIRMED = "confirmed"
    REJECTED = "rejected"
