"""Core module - configuration, logging, errors and shared models."""

from keygraph.core.config import Settings, get_settings
from keygraph.core.exceptions import (
    ConfigurationError,
    JoinAnalysisError,
    KeygraphError,
    RepositoryError,
    ValidatorError,
)
from keygraph.core.models.base import (
    Cardinality,
    ColumnPurpose,
    ColumnRole,
    InferenceMethod,
    RelationshipStatus,
    RelationshipType,
)

__all__ = [
    # Config
    "Settings",
    "get_settings",
    # Errors
    "KeygraphError",
    "ConfigurationError",
    "JoinAnalysisError",
    "RepositoryError",
    "ValidatorError",
    # Models - enums
    "Cardinality",
    "ColumnPurpose",
    "ColumnRole",
    "InferenceMethod",
    "RelationshipStatus",
    "RelationshipType",
]
