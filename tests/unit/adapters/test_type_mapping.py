"""Unit Tests for column type mapping

Tests how each adapter maps engine-native type names to canonical
categories, and how result column type codes are named.
"""

import pytest

from sql_whisperer_mcp.adapters.mysql import MySQLAdapter, parse_enum_values
from sql_whisperer_mcp.adapters.postgresql import PostgresAdapter
from sql_whisperer_mcp.adapters.sqlite import SQLiteAdapter
from sql_whisperer_mcp.models.config import DatabaseConfig
from sql_whisperer_mcp.models.schema import CanonicalType


@pytest.fixture
def pg() -> PostgresAdapter:
    return PostgresAdapter(DatabaseConfig(engine="postgresql", host="localhost", database="app"))


@pytest.fixture
def mysql() -> MySQLAdapter:
    return MySQLAdapter(DatabaseConfig(engine="mysql", host="localhost", database="shop"))


@pytest.fixture
def sqlite() -> SQLiteAdapter:
    return SQLiteAdapter(DatabaseConfig(engine="sqlite", filename=":memory:"))


class TestPostgresTypes:
    """Test PostgreSQL type mapping."""

    @pytest.mark.parametrize(
        "native, canonical",
        [
            ("integer", CanonicalType.INTEGER),
            ("int8", CanonicalType.INTEGER),
            ("character varying(255)", CanonicalType.TEXT),
            ("varchar", CanonicalType.TEXT),
            ("numeric(10,2)", CanonicalType.DECIMAL),
            ("double precision", CanonicalType.REAL),
            ("boolean", CanonicalType.BOOLEAN),
            ("timestamp with time zone", CanonicalType.DATETIME),
            ("timestamptz", CanonicalType.DATETIME),
            ("time without time zone", CanonicalType.TIME),
            ("interval", CanonicalType.INTERVAL),
            ("uuid", CanonicalType.UUID),
            ("jsonb", CanonicalType.JSON),
            ("bytea", CanonicalType.BLOB),
            ("inet", CanonicalType.NETWORK),
            ("polygon", CanonicalType.SPATIAL),
            ("_int4", CanonicalType.ARRAY),
            ("text[]", CanonicalType.ARRAY),
            ("ARRAY", CanonicalType.ARRAY),
            ("tsvector", CanonicalType.UNKNOWN),
        ],
    )
    def test_map_column_type(self, pg: PostgresAdapter, native: str, canonical: CanonicalType):
        """Test that native PostgreSQL types map to canonical categories."""
        assert pg.map_column_type(native) == canonical

    def test_describe_field_type(self, pg: PostgresAdapter):
        """Test naming of result columns from type OIDs."""
        assert pg.describe_field_type(23) == "int4"
        assert pg.describe_field_type(3802) == "jsonb"
        assert pg.describe_field_type(99999) == "oid:99999"
        assert pg.describe_field_type(None) is None


class TestMySQLTypes:
    """Test MySQL type mapping."""

    @pytest.mark.parametrize(
        "native, canonical",
        [
            ("int(11)", CanonicalType.INTEGER),
            ("int(10) unsigned", CanonicalType.INTEGER),
            ("bigint unsigned", CanonicalType.INTEGER),
            ("tinyint(1)", CanonicalType.BOOLEAN),
            ("tinyint(4)", CanonicalType.INTEGER),
            ("decimal(10,2)", CanonicalType.DECIMAL),
            ("double", CanonicalType.REAL),
            ("varchar(255)", CanonicalType.TEXT),
            ("longtext", CanonicalType.TEXT),
            ("varbinary(16)", CanonicalType.BLOB),
            ("datetime(6)", CanonicalType.DATETIME),
            ("timestamp", CanonicalType.DATETIME),
            ("date", CanonicalType.DATE),
            ("json", CanonicalType.JSON),
            ("enum('a','b')", CanonicalType.ENUM),
            ("set('x','y')", CanonicalType.ENUM),
            ("point", CanonicalType.SPATIAL),
            ("", CanonicalType.UNKNOWN),
        ],
    )
    def test_map_column_type(self, mysql: MySQLAdapter, native: str, canonical: CanonicalType):
        """Test that native MySQL types map to canonical categories."""
        assert mysql.map_column_type(native) == canonical

    def test_describe_field_type(self, mysql: MySQLAdapter):
        """Test naming of result columns from protocol type codes."""
        assert mysql.describe_field_type(3) == "int"
        assert mysql.describe_field_type(253) == "varchar"
        assert mysql.describe_field_type(999) == "type:999"

    @pytest.mark.parametrize(
        "column_type, values",
        [
            ("enum('small','medium','large')", ["small", "medium", "large"]),
            ("enum('it''s','plain')", ["it's", "plain"]),
            ("set('read','write')", ["read", "write"]),
            ("enum('')", [""]),
            ("varchar(20)", None),
        ],
    )
    def test_parse_enum_values(self, column_type: str, values):
        """Test extraction of enum and set labels, including escaped quotes."""
        assert parse_enum_values(column_type) == values


class TestSQLiteTypes:
    """Test SQLite declared-type mapping."""

    @pytest.mark.parametrize(
        "native, canonical",
        [
            ("INTEGER", CanonicalType.INTEGER),
            ("BIGINT", CanonicalType.INTEGER),
            ("VARCHAR(100)", CanonicalType.TEXT),
            ("CLOB", CanonicalType.TEXT),
            ("BLOB", CanonicalType.BLOB),
            ("", CanonicalType.BLOB),
            ("REAL", CanonicalType.REAL),
            ("DOUBLE PRECISION", CanonicalType.REAL),
            ("NUMERIC(10, 2)", CanonicalType.DECIMAL),
            ("BOOLEAN", CanonicalType.BOOLEAN),
            ("DATETIME", CanonicalType.DATETIME),
            ("TIMESTAMP", CanonicalType.DATETIME),
            ("DATE", CanonicalType.DATE),
            ("TIME", CanonicalType.TIME),
            ("JSON", CanonicalType.JSON),
            ("UUID", CanonicalType.UUID),
            ("FLOATING POINT", CanonicalType.INTEGER),
            ("STRING", CanonicalType.UNKNOWN),
        ],
    )
    def test_map_column_type(self, sqlite: SQLiteAdapter, native: str, canonical: CanonicalType):
        """Test that declared types follow SQLite's substring affinity rules."""
        assert sqlite.map_column_type(native) == canonical

    def test_lowercase_declared_type(self, sqlite: SQLiteAdapter):
        """Test that declared types are matched case-insensitively."""
        assert sqlite.map_column_type("varchar(20)") == CanonicalType.TEXT
