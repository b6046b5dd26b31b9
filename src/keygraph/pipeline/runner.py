"""Relationship discovery runner.

Run discovery for one datasource from the command line. This module can be
used as a script or imported for programmatic use.

Usage:
    # Databases from KEYGRAPH_DATABASE_URL / KEYGRAPH_DUCKDB_PATH
    python -m keygraph.pipeline.runner <datasource_id>

    # Explicit databases
    python -m keygraph.pipeline.runner <datasource_id> \\
        --database-url sqlite+aiosqlite:///./keygraph.db --duckdb-path ./warehouse.duckdb

    # Reuse stored column statistics
    python -m keygraph.pipeline.runner <datasource_id> --no-stats
"""

from __future__ import annotations

import asyncio
import sys
import time
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import duckdb
from sqlalchemy.ext.asyncio import AsyncEngine

from keygraph.core.config import Settings, get_settings
from keygraph.core.exceptions import ConfigurationError
from keygraph.core.logging import configure_logging, get_logger
from keygraph.pipeline.base import PhaseContext, PhaseStatus
from keygraph.pipeline.phases import RelationshipDiscoveryPhase
from keygraph.storage import get_engine, get_session_factory, init_database

logger = get_logger(__name__)

IN_MEMORY = ":memory:"
LOG_FORMATS = ("console", "json")


@dataclass
class RunResult:
    """Result of a discovery run."""

    success: bool
    datasource_id: str
    status: PhaseStatus
    duration_seconds: float
    outputs: dict[str, Any] = field(default_factory=dict)
    warnings: list[str] = field(default_factory=list)
    error: str | None = None


def check_settings(settings: Settings) -> None:
    """Reject settings a run cannot start with.

    Raises:
        ConfigurationError: On an unknown log format or a missing DuckDB file
    """
    if settings.log_format not in LOG_FORMATS:
        raise ConfigurationError(
            f"log_format must be one of {', '.join(LOG_FORMATS)}, got {settings.log_format!r}"
        )
    if settings.duckdb_path != IN_MEMORY and not Path(settings.duckdb_path).exists():
        raise ConfigurationError(f"DuckDB database not found: {settings.duckdb_path}")


async def setup_databases(settings: Settings) -> tuple[AsyncEngine, duckdb.DuckDBPyConnection]:
    """Open the metadata database and the customer data.

    The metadata schema is created if missing. Customer data is opened read-only
    unless it lives in memory.

    Returns:
        Tuple of (SQLAlchemy engine, DuckDB connection)
    """
    engine = get_engine(settings.database_url)
    await init_database(engine)

    read_only = settings.duckdb_path != IN_MEMORY
    duckdb_conn = duckdb.connect(settings.duckdb_path, read_only=read_only)
    return engine, duckdb_conn


async def run(
    datasource_id: str,
    settings: Settings | None = None,
    config: dict[str, Any] | None = None,
    verbose: bool = True,
) -> RunResult:
    """Run relationship discovery for a datasource.

    Args:
        datasource_id: Datasource to process
        settings: Settings to use instead of the environment
        config: Phase config overrides (use_legacy_pattern_matching,
            collect_column_stats)
        verbose: Print a summary

    Returns:
        RunResult with the phase outcome
    """
    start_time = time.time()
    phase = RelationshipDiscoveryPhase()
    settings = settings or get_settings()

    try:
        check_settings(settings)
        configure_logging(log_level=settings.log_level, log_format=settings.log_format)

        engine, duckdb_conn = await setup_databases(settings)
        try:
            async with get_session_factory()() as session:
                ctx = PhaseContext(
                    session=session,
                    duckdb_conn=duckdb_conn,
                    datasource_id=datasource_id,
                    settings=settings,
                    config=config or {},
                )
                result = await phase.run(ctx)
        finally:
            duckdb_conn.close()
            await engine.dispose()

    except Exception as e:
        logger.error("discovery_run_failed", datasource_id=datasource_id, error=str(e))
        if verbose:
            print(f"Error: {e}")
        return RunResult(
            success=False,
            datasource_id=datasource_id,
            status=PhaseStatus.FAILED,
            duration_seconds=time.time() - start_time,
            error=str(e),
        )

    duration = time.time() - start_time

    if verbose:
        print(f"{phase.description}: {result.status.value}")
        print("-" * 60)
        for key, value in result.outputs.items():
            print(f"  {key}: {value}")
        for warning in result.warnings:
            print(f"  Warning: {warning}")
        if result.error:
            print(f"  Error: {result.error}")
        print(f"  Duration: {duration:.2f}s")

    return RunResult(
        success=result.ok,
        datasource_id=datasource_id,
        status=result.status,
        duration_seconds=duration,
        outputs=result.outputs,
        warnings=result.warnings,
        error=result.error,
    )


def main() -> int:
    """Main entry point for command-line usage."""
    import argparse

    parser = argparse.ArgumentParser(
        description="Discover foreign key relationships for a datasource.",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  %(prog)s 6f1c0e2a-...
  %(prog)s 6f1c0e2a-... --duckdb-path ./warehouse.duckdb --legacy
        """,
    )

    parser.add_argument("datasource_id", help="Datasource to process")
    parser.add_argument(
        "--database-url",
        default=None,
        help="Metadata database URL (default: KEYGRAPH_DATABASE_URL)",
    )
    parser.add_argument(
        "--duckdb-path",
        default=None,
        help="DuckDB file holding the customer data (default: KEYGRAPH_DUCKDB_PATH)",
    )
    parser.add_argument(
        "--legacy",
        action="store_true",
        help="Accept *_id columns whose joinability was never measured",
    )
    parser.add_argument(
        "--no-stats",
        action="store_true",
        help="Reuse stored column statistics instead of collecting them",
    )
    parser.add_argument(
        "--quiet",
        "-q",
        action="store_true",
        help="Suppress output",
    )

    args = parser.parse_args()

    overrides = {
        key: value
        for key, value in (
            ("database_url", args.database_url),
            ("duckdb_path", args.duckdb_path),
        )
        if value is not None
    }
    settings = get_settings().model_copy(update=overrides)

    config: dict[str, Any] = {"collect_column_stats": not args.no_stats}
    if args.legacy:
        config["use_legacy_pattern_matching"] = True

    result = asyncio.run(run(args.datasource_id, settings, config, verbose=not args.quiet))
    return 0 if result.success else 1


if __name__ == "__main__":
    sys.exit(main())
