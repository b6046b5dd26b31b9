"""Tests for the DuckDB join validator against real tables."""

import asyncio

import pytest

from keygraph.analysis.relationships.cardinality import infer_cardinality
from keygraph.analysis.relationships.joins import (
    DuckDBJoinValidator,
    qualified_table,
    quote_identifier,
)
from keygraph.core.exceptions import JoinAnalysisError, ValidatorError
from keygraph.core.models.base import Cardinality


@pytest.fixture
def shop_db(duckdb_conn):
    """100 users, 1000 orders spread evenly over them, plus some awkward tables."""
    duckdb_conn.execute("CREATE TABLE users AS SELECT range AS id FROM range(1, 101)")
    duckdb_conn.execute(
        "CREATE TABLE orders AS SELECT range AS id, (range % 100) + 1 AS buyer_id "
        "FROM range(1, 1001)"
    )
    duckdb_conn.execute(
        "CREATE TABLE payments AS SELECT range AS id, range AS user_id FROM range(1, 111)"
    )
    duckdb_conn.execute(
        "CREATE TABLE reviews AS SELECT range AS id, (range % 5) + 1 AS rating "
        "FROM range(1, 501)"
    )
    duckdb_conn.execute(
        "CREATE TABLE legacy_users AS SELECT CAST(range AS VARCHAR) AS user_ref "
        "FROM range(1, 51)"
    )
    duckdb_conn.execute(
        "CREATE TABLE invites AS "
        "SELECT range AS id, CASE WHEN range % 2 = 0 THEN NULL ELSE range END AS user_id "
        "FROM range(1, 21)"
    )
    duckdb_conn.execute(
        "CREATE TABLE accounts AS SELECT 'acc-' || CAST(range AS VARCHAR) AS code "
        "FROM range(1, 11)"
    )
    return DuckDBJoinValidator(duckdb_conn)


async def _analyze(validator, source: str, target: str):
    source_table, source_column = source.split(".")
    target_table, target_column = target.split(".")
    return await validator.analyze_join(
        "main", source_table, source_column, "main", target_table, target_column
    )


class TestIdentifiers:
    def test_quote_identifier_escapes_quotes(self):
        assert quote_identifier('odd"name') == '"odd""name"'

    def test_qualified_table(self):
        assert qualified_table("main", "Order Items") == '"main"."Order Items"'


class TestAnalyzeJoin:
    async def test_many_to_one_statistics(self, shop_db):
        analysis = await _analyze(shop_db, "orders.buyer_id", "users.id")

        assert analysis.join_count == 1000
        assert analysis.source_matched == 100
        assert analysis.target_matched == 100
        assert analysis.source_matched_rows == 1000
        assert analysis.target_matched_rows == 100
        assert analysis.orphan_count == 0
        assert analysis.reverse_orphan_count == 0
        assert analysis.max_source_value == pytest.approx(100.0)
        assert infer_cardinality(analysis) == Cardinality.MANY_TO_ONE

    async def test_reverse_direction_is_one_to_many(self, shop_db):
        analysis = await _analyze(shop_db, "users.id", "orders.buyer_id")

        assert analysis.source_matched_rows == 100
        assert analysis.target_matched_rows == 1000
        assert infer_cardinality(analysis) == Cardinality.ONE_TO_MANY

    async def test_orphans_counted(self, shop_db):
        analysis = await _analyze(shop_db, "payments.user_id", "users.id")

        assert analysis.join_count == 100
        assert analysis.orphan_count == 10
        assert analysis.reverse_orphan_count == 0

    async def test_reverse_orphans_counted(self, shop_db):
        analysis = await _analyze(shop_db, "reviews.rating", "users.id")

        assert analysis.source_matched == 5
        assert analysis.source_matched_rows == 500
        assert analysis.target_matched == 5
        assert analysis.reverse_orphan_count == 95
        assert analysis.reverse_orphan_rate == pytest.approx(0.95)
        assert analysis.max_source_value == pytest.approx(5.0)

    async def test_repeated_target_values_do_not_hide_reverse_orphans(self, duckdb_conn):
        # skus.code: 101..110 appear 100 times each, 111..130 once each
        duckdb_conn.execute(
            "CREATE TABLE skus AS "
            "SELECT 101 + (range % 10) AS code FROM range(1000) "
            "UNION ALL SELECT range AS code FROM range(111, 131)"
        )
        duckdb_conn.execute(
            "CREATE TABLE lines AS SELECT range AS id, 101 + (range % 10) AS sku FROM range(500)"
        )
        validator = DuckDBJoinValidator(duckdb_conn)

        analysis = await _analyze(validator, "lines.sku", "skus.code")

        assert analysis.target_matched == 10
        assert analysis.reverse_orphan_count == 20
        assert analysis.target_matched_rows == 1000
        assert analysis.reverse_orphan_rate == pytest.approx(20 / 30)

    async def test_text_keys_match_integer_keys(self, shop_db):
        analysis = await _analyze(shop_db, "legacy_users.user_ref", "users.id")

        assert analysis.join_count == 50
        assert analysis.orphan_count == 0
        assert infer_cardinality(analysis) == Cardinality.ONE_TO_ONE

    async def test_nulls_are_not_orphans(self, shop_db):
        analysis = await _analyze(shop_db, "invites.user_id", "users.id")

        assert analysis.source_matched == 10
        assert analysis.orphan_count == 0

    async def test_non_numeric_source_has_no_max_value(self, shop_db):
        analysis = await _analyze(shop_db, "accounts.code", "users.id")

        assert analysis.max_source_value is None
        assert analysis.join_count == 0
        assert analysis.orphan_count == 10

    async def test_missing_table_raises(self, shop_db):
        with pytest.raises(JoinAnalysisError) as exc_info:
            await _analyze(shop_db, "ghosts.user_id", "users.id")

        assert exc_info.value.source == "main.ghosts.user_id"
        assert isinstance(exc_info.value, ValidatorError)

    async def test_concurrent_analyses(self, shop_db):
        first, second = await asyncio.gather(
            _analyze(shop_db, "orders.buyer_id", "users.id"),
            _analyze(shop_db, "payments.user_id", "users.id"),
        )

        assert first.join_count == 1000
        assert second.orphan_count == 10


class TestAnalyzeColumnStats:
    async def test_counts_per_column(self, shop_db):
        stats = await shop_db.analyze_column_stats("main", "orders", ["id", "buyer_id"])

        by_name = {s.column_name: s for s in stats}
        assert by_name["id"].row_count == 1000
        assert by_name["id"].distinct_count == 1000
        assert by_name["buyer_id"].distinct_count == 100
        assert by_name["buyer_id"].non_null_count == 1000
        assert (by_name["buyer_id"].min_length, by_name["buyer_id"].max_length) == (1, 3)

    async def test_null_values_not_counted(self, shop_db):
        (stats,) = await shop_db.analyze_column_stats("main", "invites", ["user_id"])

        assert stats.row_count == 20
        assert stats.non_null_count == 10

    async def test_no_columns(self, shop_db):
        assert await shop_db.analyze_column_stats("main", "orders", []) == []

    async def test_missing_table_raises(self, shop_db):
        with pytest.raises(ValidatorError):
            await shop_db.analyze_column_stats("main", "ghosts", ["id"])
