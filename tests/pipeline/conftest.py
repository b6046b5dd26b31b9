"""Pipeline test fixtures."""

import duckdb
import pytest
from sqlalchemy.ext.asyncio import AsyncSession

from keygraph.storage import Column, Datasource, Project, Table


async def seed_shop_metadata(session: AsyncSession, parameters: dict | None = None) -> dict:
    """users(id) and orders(id, buyer_id) in the metadata store, no relationships."""
    project = Project(name="shop", parameters=parameters)
    session.add(project)
    await session.flush()

    datasource = Datasource(project_id=project.project_id, name="warehouse")
    session.add(datasource)
    await session.flush()

    users = Table(datasource_id=datasource.datasource_id, table_name="users")
    orders = Table(datasource_id=datasource.datasource_id, table_name="orders")
    session.add_all([users, orders])
    await session.flush()

    user_id = Column(
        table_id=users.table_id, column_name="id", data_type="BIGINT", is_primary_key=True
    )
    order_id = Column(
        table_id=orders.table_id,
        column_name="id",
        data_type="BIGINT",
        ordinal_position=0,
        is_primary_key=True,
    )
    buyer_id = Column(
        table_id=orders.table_id, column_name="buyer_id", data_type="BIGINT", ordinal_position=1
    )
    session.add_all([user_id, order_id, buyer_id])
    await session.commit()

    return {
        "datasource_id": datasource.datasource_id,
        "buyer_id": buyer_id.column_id,
        "users.id": user_id.column_id,
    }


def seed_shop_data(conn: duckdb.DuckDBPyConnection) -> None:
    """100 users and 1000 orders spread evenly over them."""
    conn.execute("CREATE TABLE users AS SELECT range AS id FROM range(1, 101)")
    conn.execute(
        "CREATE TABLE orders AS SELECT range AS id, (range % 100) + 1 AS buyer_id "
        "FROM range(1, 1001)"
    )


@pytest.fixture
def seed_metadata():
    """Factory seeding the shop schema into a metadata session."""
    return seed_shop_metadata


@pytest.fixture
def shop_duckdb(duckdb_conn: duckdb.DuckDBPyConnection) -> duckdb.DuckDBPyConnection:
    """In-memory DuckDB holding the shop tables."""
    seed_shop_data(duckdb_conn)
    return duckdb_conn


@pytest.fixture
def seed_data():
    """Factory writing the shop tables into a DuckDB connection."""
    return seed_shop_data
