"""Process settings.

Every field can be set through a `KEYGRAPH_<FIELD>` environment variable or a
`.env` file in the working directory. Per-project overrides of the legacy
toggle live in the metadata store, not here.
"""

from functools import lru_cache

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Connection, logging and discovery threshold settings."""

    model_config = SettingsConfigDict(
        env_prefix="KEYGRAPH_",
        env_file=".env",
        extra="ignore",
    )

    database_url: str = Field(
        default="sqlite+aiosqlite:///./keygraph.db",
        description="Async SQLAlchemy URL of the metadata store",
    )
    duckdb_path: str = Field(
        default=":memory:",
        description="DuckDB file with the customer tables joins are measured on",
    )

    log_level: str = "INFO"
    log_format: str = Field(default="console", description="console or json")

    # Candidate selection
    use_legacy_pattern_matching: bool = Field(
        default=False,
        description="Default for projects without a stored setting: accept *_id columns "
        "whose joinability has not been measured yet",
    )
    min_distinct_count: int = Field(
        default=20,
        description="Minimum distinct values for a column to be an FK candidate or PK target",
    )
    min_cardinality_ratio: float = Field(
        default=0.05,
        description="Minimum distinct/row ratio for non-identifier FK candidates",
    )
    high_confidence_fk: float = Field(
        default=0.8,
        description="Columns with a feature FK above this confidence are left to FK discovery",
    )

    # PK-match validation
    max_reverse_orphan_rate: float = Field(
        default=0.5,
        description="Maximum share of target values never referenced by the source",
    )
    small_integer_max_value: float = Field(
        default=10,
        description="Source columns whose max value is at or below this are treated as "
        "small integers",
    )
    lookup_table_max_rows: int = Field(
        default=30,
        description="Targets at or below this size are lookup tables and accept small integers",
    )
    min_target_cardinality_ratio: float = Field(
        default=0.01,
        description="Targets with a distinct/row ratio below this are rejected",
    )
    pk_match_confidence: float = Field(default=0.9, description="Confidence of PK-match edges")
    default_feature_confidence: float = Field(
        default=0.9,
        description="Confidence used when a column-feature FK carries none",
    )

    # Column stats
    low_cardinality_ratio: float = Field(
        default=0.01,
        description="Columns with a distinct/row ratio below this are marked not joinable",
    )


@lru_cache
def get_settings() -> Settings:
    """Settings read once per process."""
    return Settings()
