"""Type compatibility rules for join columns.

Raw data types come straight from the customer's catalog ('VARCHAR(255)',
'INT(11)', 'timestamp with time zone'), so everything here works on the
normalized form: lower case, no length/precision suffix, single spaces.
"""

import re

_PARAMS = re.compile(r"\(.*?\)")
_SPACES = re.compile(r"\s+")

# Families whose members can be joined with each other
_STRING_FAMILY = frozenset({"uuid", "text", "varchar", "character varying"})
_INTEGER_FAMILY = frozenset(
    {
        "int",
        "int2",
        "int4",
        "int8",
        "integer",
        "bigint",
        "smallint",
        "serial",
        "bigserial",
        # DuckDB spellings
        "tinyint",
        "hugeint",
        "utinyint",
        "usmallint",
        "uinteger",
        "ubigint",
    }
)

# Types whose values never identify a row of another table
_EXCLUDED_JOIN_TYPES = frozenset(
    {
        # Temporal
        "date",
        "time",
        "timetz",
        "time with time zone",
        "time without time zone",
        "interval",
        # Boolean
        "boolean",
        "bool",
        # Binary / large objects
        "bytea",
        "blob",
        "binary",
        "varbinary",
        "clob",
        # Structured
        "json",
        "jsonb",
        "xml",
        # Geometric
        "point",
        "line",
        "polygon",
        "geometry",
        "geography",
    }
)

_TEXT_TYPES = frozenset(
    {"text", "varchar", "character varying", "char", "character", "bpchar", "string"}
)


def normalize_type(data_type: str) -> str:
    """Normalize a raw data type for comparison.

    >>> normalize_type("VARCHAR(255)")
    'varchar'
    """
    without_params = _PARAMS.sub("", data_type.lower())
    return _SPACES.sub(" ", without_params).strip()


def are_types_compatible(source_type: str, target_type: str) -> bool:
    """Check whether values of the two types can be compared in a join."""
    source = normalize_type(source_type)
    target = normalize_type(target_type)

    if source == target:
        return True
    if source in _STRING_FAMILY and target in _STRING_FAMILY:
        return True
    return source in _INTEGER_FAMILY and target in _INTEGER_FAMILY


def is_excluded_join_type(data_type: str) -> bool:
    """Check whether a column of this type can never be a join key."""
    normalized = normalize_type(data_type)
    # timestamp, timestamptz, timestamp_ms, timestamp with time zone, ...
    if normalized.startswith("timestamp"):
        return True
    return normalized in _EXCLUDED_JOIN_TYPES


def is_text_type(data_type: str) -> bool:
    return normalize_type(data_type) in _TEXT_TYPES


def is_variable_length_text(
    data_type: str, min_length: int | None, max_length: int | None
) -> bool:
    """Check for a text column whose stored values are proven to vary in length.

    Generated keys (uuids, fixed-width codes) have a constant length; natural
    keys such as email addresses do not.
    """
    if not is_text_type(data_type):
        return False
    if min_length is None or max_length is None:
        return False
    return min_length != max_length
