"""PostgreSQL adapter integration tests

Requires PG_TEST_DATABASE_URL. Each test works in a throwaway schema that
is dropped afterwards.
"""

import uuid

import pytest
from sqlalchemy import text

from sql_whisperer_mcp.adapters.base import BaseAdapter
from sql_whisperer_mcp.errors import NotFoundError, QueryExecutionError
from sql_whisperer_mcp.models.plan import PlanNodeKind
from sql_whisperer_mcp.models.query import QueryOptions
from sql_whisperer_mcp.models.schema import CanonicalType, ReferentialAction

pytestmark = [pytest.mark.postgresql, pytest.mark.integration]


@pytest.fixture
async def pg_schema(pg_adapter: BaseAdapter):
    """Throwaway schema with users and orders tables"""
    schema = f"whisperer_{uuid.uuid4().hex[:8]}"
    statements = [
        f"CREATE SCHEMA {schema}",
        f"CREATE TYPE {schema}.order_status AS ENUM ('new', 'paid', 'closed')",
        f"""
        CREATE TABLE {schema}.users (
            id serial PRIMARY KEY,
            email text NOT NULL UNIQUE,
            tags text[],
            created_at timestamptz DEFAULT now()
        )
        """,
        f"""
        CREATE TABLE {schema}.orders (
            id bigserial PRIMARY KEY,
            user_id integer NOT NULL REFERENCES {schema}.users(id) ON DELETE CASCADE,
            total numeric(10, 2) CONSTRAINT total_positive CHECK (total >= 0),
            status {schema}.order_status DEFAULT 'new',
            meta jsonb
        )
        """,
        f"CREATE INDEX idx_orders_user ON {schema}.orders (user_id)",
        f"CREATE VIEW {schema}.big_orders AS SELECT * FROM {schema}.orders WHERE total > 50",
        f"INSERT INTO {schema}.users (email) VALUES ('ada@example.com'), ('alan@example.com')",
        f"INSERT INTO {schema}.orders (user_id, total) VALUES (1, 10.5), (1, 99), (2, 3)",
    ]
    async with pg_adapter.connection.get_connection() as conn:
        for statement in statements:
            await conn.execute(text(statement))
        await conn.commit()
    try:
        yield schema
    finally:
        async with pg_adapter.connection.get_connection() as conn:
            await conn.execute(text(f"DROP SCHEMA {schema} CASCADE"))
            await conn.commit()


class TestPostgreSQLIntrospection:
    """Test catalog reads"""

    async def test_tables_and_views(self, pg_adapter: BaseAdapter, pg_schema: str):
        snapshot = await pg_adapter.introspect()

        assert snapshot.get_table("users", pg_schema) is not None
        assert snapshot.get_table("orders", pg_schema) is not None
        assert any(v.name == "big_orders" and v.schema == pg_schema for v in snapshot.views)
        assert "PostgreSQL" in snapshot.metadata.version

    async def test_columns(self, pg_adapter: BaseAdapter, pg_schema: str):
        """Test serial, array, enum and json columns"""
        snapshot = await pg_adapter.introspect()
        users = snapshot.get_table("users", pg_schema)
        orders = snapshot.get_table("orders", pg_schema)

        assert users.get_column("id").auto_increment is True
        assert users.get_column("tags").data_type == CanonicalType.ARRAY
        assert users.get_column("created_at").data_type == CanonicalType.DATETIME
        assert orders.get_column("status").data_type == CanonicalType.ENUM
        assert orders.get_column("status").enum_values == ["new", "paid", "closed"]
        assert orders.get_column("meta").data_type == CanonicalType.JSON
        assert orders.get_column("total").precision == 10
        assert orders.get_column("total").scale == 2

    async def test_constraints_and_indexes(self, pg_adapter: BaseAdapter, pg_schema: str):
        snapshot = await pg_adapter.introspect()
        users = snapshot.get_table("users", pg_schema)
        orders = snapshot.get_table("orders", pg_schema)

        assert users.primary_key.columns == ["id"]
        assert [u.columns for u in users.unique_constraints] == [["email"]]

        [fk] = orders.foreign_keys
        assert fk.columns == ["user_id"]
        assert fk.referenced_schema == pg_schema
        assert fk.referenced_table == "users"
        assert fk.referenced_columns == ["id"]
        assert fk.on_delete == ReferentialAction.CASCADE

        assert [c.name for c in orders.check_constraints] == ["total_positive"]
        assert "idx_orders_user" in [index.name for index in orders.indexes]

    async def test_exact_counts_without_analyze(self, pg_adapter: BaseAdapter, pg_schema: str):
        """Test that small tables never analyzed still get exact row counts"""
        snapshot = await pg_adapter.introspect()

        assert snapshot.get_table("users", pg_schema).row_count == 2
        assert snapshot.get_table("orders", pg_schema).row_count == 3


class TestPostgreSQLQueries:
    """Test statement execution"""

    async def test_truncation(self, pg_adapter: BaseAdapter, pg_schema: str):
        result = await pg_adapter.query(
            f"SELECT id FROM {pg_schema}.orders ORDER BY id", options=QueryOptions(max_rows=1)
        )

        assert result.row_count == 3
        assert len(result.rows) == 1
        assert result.truncated is True
        assert result.fields[0].data_type == "int8"

    async def test_read_only(self, pg_adapter: BaseAdapter, pg_schema: str):
        with pytest.raises(QueryExecutionError) as exc_info:
            await pg_adapter.query(
                f"DELETE FROM {pg_schema}.orders", options=QueryOptions(read_only=True)
            )

        assert "read-only" in exc_info.value.engine_message

    async def test_statement_timeout(self, pg_adapter: BaseAdapter):
        with pytest.raises(QueryExecutionError) as exc_info:
            await pg_adapter.query("SELECT pg_sleep(2)", options=QueryOptions(timeout_ms=100))

        assert exc_info.value.code == "timeout"


class TestPostgreSQLPlans:
    """Test EXPLAIN output"""

    async def test_explain(self, pg_adapter: BaseAdapter, pg_schema: str):
        plan = await pg_adapter.explain(f"SELECT * FROM {pg_schema}.orders WHERE total > 5")

        assert plan.analyzed is False
        assert plan.estimated_cost is not None
        assert any(node.kind == PlanNodeKind.SCAN for node in plan.root.walk())

    async def test_explain_analyze_rolls_back(self, pg_adapter: BaseAdapter, pg_schema: str):
        plan = await pg_adapter.explain(f"DELETE FROM {pg_schema}.orders", analyze=True)
        count = await pg_adapter.query(f"SELECT COUNT(*) AS n FROM {pg_schema}.orders")

        assert plan.analyzed is True
        assert plan.actual_time_ms is not None
        assert count.rows == [{"n": 3}]


class TestPostgreSQLStatistics:
    """Test table statistics"""

    async def test_statistics(self, pg_adapter: BaseAdapter, pg_schema: str):
        stats = await pg_adapter.get_table_statistics(f"{pg_schema}.orders")

        assert stats.row_count == 3
        assert stats.row_count_exact is True
        assert stats.index_count == 2
        assert stats.total_size_bytes > 0

    async def test_missing_table(self, pg_adapter: BaseAdapter):
        with pytest.raises(NotFoundError):
            await pg_adapter.get_table_statistics("no_such_table_here")
