"""Unit Tests for the canonical schema model and SQLite DDL parsing"""

from datetime import datetime

import pytest

from sql_whisperer_mcp.adapters.sqlite import (
    extract_check_constraints,
    extract_index_predicate,
    parse_trigger,
    view_definition,
)
from sql_whisperer_mcp.models.schema import (
    CanonicalType,
    ColumnInfo,
    ForeignKeyInfo,
    PrimaryKeyInfo,
    ReferentialAction,
    SchemaMetadata,
    SchemaSnapshot,
    TableInfo,
)


def column(name: str, data_type: CanonicalType = CanonicalType.INTEGER) -> ColumnInfo:
    return ColumnInfo(name=name, data_type=data_type, native_type="int", nullable=False)


class TestSchemaModel:
    """Test model invariants and lookups."""

    def test_foreign_key_cardinality(self):
        """Test that local and referenced columns must pair up."""
        with pytest.raises(ValueError, match="2 local columns but 1 referenced"):
            ForeignKeyInfo(
                name="fk_lines_order",
                columns=["order_id", "line_no"],
                referenced_table="orders",
                referenced_columns=["id"],
            )

    def test_primary_key_must_name_columns(self):
        """Test that a primary key over an unknown column is rejected."""
        with pytest.raises(ValueError, match="unknown columns"):
            TableInfo(
                name="orders",
                columns=[column("id")],
                primary_key=PrimaryKeyInfo(columns=["missing"]),
            )

    @pytest.mark.parametrize(
        "value, action",
        [
            ("CASCADE", ReferentialAction.CASCADE),
            ("set null", ReferentialAction.SET_NULL),
            ("SET_DEFAULT", ReferentialAction.SET_DEFAULT),
            ("RESTRICT", ReferentialAction.RESTRICT),
            ("NO  ACTION", ReferentialAction.NO_ACTION),
            (None, ReferentialAction.NO_ACTION),
            ("SOMETHING", ReferentialAction.NO_ACTION),
        ],
    )
    def test_referential_action_parse(self, value, action):
        """Test that catalog spellings normalize to one action."""
        assert ReferentialAction.parse(value) == action

    def test_snapshot_lookup_and_summary(self):
        """Test table lookup by schema and the compact summary."""
        snapshot = SchemaSnapshot(
            tables=[
                TableInfo(name="orders", schema="public", columns=[column("id")], size_bytes=2048),
                TableInfo(name="orders", schema="archive", columns=[column("id")]),
            ],
            metadata=SchemaMetadata(
                engine="postgresql",
                version="16.2",
                introspected_at=datetime(2024, 1, 1),
                duration_ms=12.0,
            ),
        )

        assert snapshot.get_table("orders", "archive").schema == "archive"
        assert snapshot.get_table("orders").schema == "public"
        assert snapshot.get_table("missing") is None

        summary = snapshot.summary()
        assert summary["table_count"] == 2
        assert summary["tables"][0] == {
            "name": "public.orders",
            "columns": 1,
            "row_count": None,
            "size": "2.00 KB",
        }

    def test_get_column(self):
        """Test column lookup on a table."""
        table = TableInfo(name="t", columns=[column("id"), column("name", CanonicalType.TEXT)])

        assert table.get_column("name").data_type == CanonicalType.TEXT
        assert table.get_column("nope") is None


class TestSQLiteDDL:
    """Test parsing of stored CREATE statements."""

    def test_check_constraints(self):
        """Test named and anonymous checks with nested parentheses."""
        ddl = (
            "CREATE TABLE t (a INT CHECK (a > 0), b TEXT, "
            "CONSTRAINT b_len CHECK (length(b) < 10))"
        )

        checks = extract_check_constraints(ddl)

        assert [(c.name, c.definition) for c in checks] == [
            (None, "a > 0"),
            ("b_len", "length(b) < 10"),
        ]

    def test_check_inside_literal_or_comment_is_ignored(self):
        """Test that CHECK text in defaults and comments is not a constraint."""
        ddl = (
            "CREATE TABLE t (\n"
            "  a TEXT DEFAULT 'CHECK (x)', -- CHECK (y)\n"
            '  CONSTRAINT "positive total" CHECK (total >= 0)\n'
            ")"
        )

        checks = extract_check_constraints(ddl)

        assert len(checks) == 1
        assert checks[0].name == "positive total"
        assert checks[0].definition == "total >= 0"

    def test_no_checks(self):
        assert extract_check_constraints(None) == []
        assert extract_check_constraints("CREATE TABLE t (a INT)") == []

    def test_index_predicate(self):
        """Test extracting the WHERE clause of a partial index."""
        assert (
            extract_index_predicate("CREATE INDEX i ON t (a) WHERE a IS NOT NULL")
            == "a IS NOT NULL"
        )
        assert (
            extract_index_predicate("CREATE INDEX i ON t (b) WHERE b = 'WHERE'")
            == "b = 'WHERE'"
        )
        assert extract_index_predicate("CREATE INDEX i ON t (a)") is None
        assert extract_index_predicate(None) is None

    @pytest.mark.parametrize(
        "ddl, expected",
        [
            (
                "CREATE TRIGGER trg BEFORE UPDATE OF name ON users BEGIN SELECT 1; END",
                ("BEFORE", ["UPDATE"]),
            ),
            (
                "CREATE TRIGGER trg AFTER INSERT ON orders BEGIN SELECT 1; END",
                ("AFTER", ["INSERT"]),
            ),
            (
                "CREATE TRIGGER trg INSTEAD  OF DELETE ON v BEGIN SELECT 1; END",
                ("INSTEAD OF", ["DELETE"]),
            ),
            (
                "CREATE TEMP TRIGGER IF NOT EXISTS trg delete ON t BEGIN SELECT 1; END",
                ("BEFORE", ["DELETE"]),
            ),
            (None, ("BEFORE", [])),
        ],
    )
    def test_parse_trigger(self, ddl, expected):
        """Test timing and event extraction, defaulting to BEFORE."""
        assert parse_trigger(ddl) == expected

    def test_view_definition(self):
        """Test that the SELECT body follows the first AS keyword."""
        assert view_definition("CREATE VIEW v AS SELECT 1") == "SELECT 1"
        assert view_definition("CREATE VIEW v(a) AS SELECT 1 AS a") == "SELECT 1 AS a"
        assert view_definition(None) is None
