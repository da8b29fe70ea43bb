"""Unit Tests for PostgreSQL constraint assembly

Tests how pg_constraint rows become keys and checks on a TableInfo.
"""

import pytest
from pydantic import ValidationError

from sql_whisperer_mcp.adapters.postgresql import PostgresAdapter, _ConstraintRow
from sql_whisperer_mcp.models.config import DatabaseConfig
from sql_whisperer_mcp.models.schema import ColumnInfo, ReferentialAction, TableInfo


@pytest.fixture
def pg() -> PostgresAdapter:
    return PostgresAdapter(DatabaseConfig(engine="postgresql", host="localhost", database="app"))


def constraint(name: str, kind: str, position: int = 1, **values) -> _ConstraintRow:
    return _ConstraintRow(
        schema_name="public",
        table_name="orders",
        constraint_name=name,
        constraint_type=kind,
        position=position,
        **values,
    )


def column(name: str) -> ColumnInfo:
    return ColumnInfo(name=name, data_type="integer", native_type="integer", nullable=False)


class TestBuildConstraints:
    """Test grouping constraint rows per constraint."""

    def test_keys_and_checks(self, pg: PostgresAdapter):
        """Test that each constraint kind lands in its own field."""
        built = pg._build_constraints(
            [
                constraint("orders_pkey", "p", column_name="id"),
                constraint("orders_code_key", "u", column_name="code"),
                constraint("total_positive", "c", definition="CHECK ((total >= 0))"),
                constraint(
                    "orders_user_fk",
                    "f",
                    column_name="user_id",
                    referenced_schema="public",
                    referenced_table="users",
                    referenced_column="id",
                    delete_action="c",
                ),
            ]
        )

        assert built["primary_key"].columns == ["id"]
        assert [u.columns for u in built["unique_constraints"]] == [["code"]]
        assert [c.name for c in built["check_constraints"]] == ["total_positive"]
        [fk] = built["foreign_keys"]
        assert fk.referenced_table == "users"
        assert fk.on_delete == ReferentialAction.CASCADE
        assert fk.on_update == ReferentialAction.NO_ACTION

    def test_composite_key_order(self, pg: PostgresAdapter):
        """Test that key columns follow their position, not row order."""
        built = pg._build_constraints(
            [
                constraint("orders_pkey", "p", position=2, column_name="line"),
                constraint("orders_pkey", "p", position=1, column_name="id"),
            ]
        )

        assert built["primary_key"].columns == ["id", "line"]

    def test_primary_key_checked_against_columns(self, pg: PostgresAdapter):
        """Test that a key over a column the table lacks is rejected at construction."""
        built = pg._build_constraints([constraint("orders_pkey", "p", column_name="ghost")])

        with pytest.raises(ValidationError, match="unknown columns"):
            TableInfo(name="orders", schema="public", columns=[column("id")], **built)

    def test_no_constraints(self, pg: PostgresAdapter):
        built = pg._build_constraints([])

        assert built["primary_key"] is None
        assert built["foreign_keys"] == []
