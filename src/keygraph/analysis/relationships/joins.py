"""Join validation against the customer database using DuckDB.

Every query compares values as VARCHAR so that integer keys stored as text on
one side still match. Queries run on a dedicated cursor in a worker thread;
cancelling the awaiting task interrupts the running query.
"""

from __future__ import annotations

import asyncio
from typing import Any

import duckdb

from keygraph.analysis.relationships.models import ColumnStats, JoinAnalysis
from keygraph.core.exceptions import JoinAnalysisError, ValidatorError
from keygraph.core.logging import get_logger

logger = get_logger(__name__)


def quote_identifier(name: str) -> str:
    return '"' + name.replace('"', '""') + '"'


def qualified_table(schema: str, table: str) -> str:
    return f"{quote_identifier(schema)}.{quote_identifier(table)}"


def build_join_analysis_sql(
    source_schema: str,
    source_table: str,
    source_column: str,
    target_schema: str,
    target_table: str,
    target_column: str,
) -> str:
    """Build the single-row join statistics query for a column pair."""
    src = qualified_table(source_schema, source_table)
    tgt = qualified_table(target_schema, target_table)
    s_col = quote_identifier(source_column)
    t_col = quote_identifier(target_column)

    return f"""
        WITH
        -- Matched and orphan counts are distinct values; the *_rows counts feed cardinality
        join_stats AS (
            SELECT
                COUNT(*) AS join_count,
                COUNT(DISTINCT s.{s_col}) AS source_matched,
                COUNT(DISTINCT t.{t_col}) AS target_matched
            FROM {src} s
            JOIN {tgt} t ON s.{s_col}::VARCHAR = t.{t_col}::VARCHAR
        ),
        source_rows AS (
            SELECT COUNT(*) AS source_matched_rows
            FROM {src} s
            WHERE EXISTS (
                SELECT 1 FROM {tgt} t WHERE t.{t_col}::VARCHAR = s.{s_col}::VARCHAR
            )
        ),
        target_rows AS (
            SELECT COUNT(*) AS target_matched_rows
            FROM {tgt} t
            WHERE EXISTS (
                SELECT 1 FROM {src} s WHERE s.{s_col}::VARCHAR = t.{t_col}::VARCHAR
            )
        ),
        orphan_stats AS (
            SELECT COUNT(DISTINCT s.{s_col}) AS orphan_count
            FROM {src} s
            WHERE s.{s_col} IS NOT NULL AND NOT EXISTS (
                SELECT 1 FROM {tgt} t WHERE t.{t_col}::VARCHAR = s.{s_col}::VARCHAR
            )
        ),
        reverse_orphan_stats AS (
            SELECT COUNT(DISTINCT t.{t_col}) AS reverse_orphan_count
            FROM {tgt} t
            WHERE t.{t_col} IS NOT NULL AND NOT EXISTS (
                SELECT 1 FROM {src} s WHERE s.{s_col}::VARCHAR = t.{t_col}::VARCHAR
            )
        ),
        max_source AS (
            -- NULL unless at least one source value reads as a number
            SELECT MAX(TRY_CAST({s_col}::VARCHAR AS DOUBLE)) AS max_value
            FROM {src}
        )
        SELECT
            j.join_count,
            j.source_matched,
            j.target_matched,
            sr.source_matched_rows,
            tr.target_matched_rows,
            o.orphan_count,
            r.reverse_orphan_count,
            m.max_value
        FROM join_stats j, source_rows sr, target_rows tr,
            orphan_stats o, reverse_orphan_stats r, max_source m
    """


def build_column_stats_sql(schema: str, table: str, columns: list[str]) -> str:
    """Build a single-row query with row count and per-column statistics."""
    selects = ["COUNT(*) AS row_count"]
    for i, column in enumerate(columns):
        col = quote_identifier(column)
        selects.extend(
            [
                f"COUNT({col}) AS non_null_{i}",
                f"COUNT(DISTINCT {col}) AS distinct_{i}",
                f"MIN(LENGTH({col}::VARCHAR)) AS min_length_{i}",
                f"MAX(LENGTH({col}::VARCHAR)) AS max_length_{i}",
            ]
        )
    select_list = ",\n            ".join(selects)
    return f"SELECT\n            {select_list}\n        FROM {qualified_table(schema, table)}"


class DuckDBJoinValidator:
    """JoinValidator backed by a DuckDB connection holding the customer data."""

    def __init__(self, conn: duckdb.DuckDBPyConnection):
        self._conn = conn

    @staticmethod
    def _execute(cursor: duckdb.DuckDBPyConnection, sql: str) -> tuple[Any, ...] | None:
        try:
            return cursor.execute(sql).fetchone()
        finally:
            cursor.close()

    async def _fetchone(self, sql: str) -> tuple[Any, ...] | None:
        cursor = self._conn.cursor()
        try:
            return await asyncio.to_thread(self._execute, cursor, sql)
        except asyncio.CancelledError:
            # The worker thread keeps running until DuckDB notices the interrupt
            cursor.interrupt()
            raise

    async def analyze_join(
        self,
        source_schema: str,
        source_table: str,
        source_column: str,
        target_schema: str,
        target_table: str,
        target_column: str,
    ) -> JoinAnalysis:
        """Collect join statistics for source -> target.

        Raises:
            JoinAnalysisError: If the query fails (missing table, bad cast, ...)
        """
        source = f"{source_schema}.{source_table}.{source_column}"
        target = f"{target_schema}.{target_table}.{target_column}"
        sql = build_join_analysis_sql(
            source_schema, source_table, source_column, target_schema, target_table, target_column
        )

        try:
            row = await self._fetchone(sql)
        except duckdb.Error as e:
            raise JoinAnalysisError(source, target, str(e)) from e

        if row is None:
            raise JoinAnalysisError(source, target, "no result row")

        (
            join_count,
            source_matched,
            target_matched,
            source_rows,
            target_rows,
            orphans,
            reverse_orphans,
            max_value,
        ) = row
        analysis = JoinAnalysis(
            join_count=join_count or 0,
            source_matched=source_matched or 0,
            target_matched=target_matched or 0,
            source_matched_rows=source_rows or 0,
            target_matched_rows=target_rows or 0,
            orphan_count=orphans or 0,
            reverse_orphan_count=reverse_orphans or 0,
            max_source_value=float(max_value) if max_value is not None else None,
        )
        logger.debug("join_analyzed", source=source, target=target, **analysis.model_dump())
        return analysis

    async def analyze_column_stats(
        self, schema: str, table: str, columns: list[str]
    ) -> list[ColumnStats]:
        """Collect row, non-null and distinct counts for columns of one table.

        Raises:
            ValidatorError: If the query fails
        """
        if not columns:
            return []

        try:
            row = await self._fetchone(build_column_stats_sql(schema, table, columns))
        except duckdb.Error as e:
            raise ValidatorError(f"column stats failed for {schema}.{table}: {e}") from e

        if row is None:
            raise ValidatorError(f"column stats failed for {schema}.{table}: no result row")

        row_count = row[0]
        stats = []
        for i, column in enumerate(columns):
            non_null, distinct, min_length, max_length = row[1 + i * 4 : 5 + i * 4]
            stats.append(
                ColumnStats(
                    column_name=column,
                    row_count=row_count,
                    non_null_count=non_null,
                    distinct_count=distinct,
                    min_length=min_length,
                    max_length=max_length,
                )
            )
        return stats
