"""Unit Tests for DatabaseConfig

Tests configuration handling without a database:
- Engine detection from connection strings
- URL building with async drivers
- Pool bounds validation
- Environment variable loading
"""

import pytest

from sql_whisperer_mcp.adapters import create_adapter, detect_dialect
from sql_whisperer_mcp.adapters.mysql import MySQLAdapter
from sql_whisperer_mcp.adapters.postgresql import PostgresAdapter
from sql_whisperer_mcp.adapters.sqlite import SQLiteAdapter
from sql_whisperer_mcp.errors import ConfigurationError
from sql_whisperer_mcp.models.config import DatabaseConfig, EngineKind, detect_engine


class TestEngineDetection:
    """Test scheme to engine mapping."""

    @pytest.mark.parametrize(
        "url, engine",
        [
            ("postgresql://u:p@localhost/app", EngineKind.POSTGRESQL),
            ("postgres://u:p@localhost/app", EngineKind.POSTGRESQL),
            ("postgresql+psycopg2://u:p@localhost/app", EngineKind.POSTGRESQL),
            ("mysql://u:p@localhost/app", EngineKind.MYSQL),
            ("mariadb://u:p@localhost/app", EngineKind.MYSQL),
            ("mysql+pymysql://u:p@localhost/app", EngineKind.MYSQL),
            ("sqlite:///data/app.db", EngineKind.SQLITE),
            ("sqlite:///:memory:", EngineKind.SQLITE),
        ],
    )
    def test_detect_engine(self, url: str, engine: EngineKind):
        """Test that schemes and their aliases resolve to an engine."""
        assert detect_engine(url) == engine
        assert detect_dialect(url) == engine.value

    def test_unknown_scheme(self):
        """Test that unsupported schemes are configuration errors."""
        with pytest.raises(ConfigurationError, match="Unsupported database scheme"):
            detect_engine("oracle://u:p@localhost/app")

    def test_unparseable_url(self):
        """Test that garbage input is a configuration error."""
        with pytest.raises(ConfigurationError, match="Invalid connection string"):
            detect_engine("not a url")

    def test_engine_inferred_from_connection_string(self):
        """Test that engine may be omitted when a connection string is given."""
        config = DatabaseConfig(connection_string="postgres://u:p@db.internal:6543/app")

        assert config.engine == EngineKind.POSTGRESQL
        assert config.dialect == "postgresql"
        assert config.driver == "asyncpg"

    def test_filename_implies_sqlite(self):
        """Test that a bare filename selects SQLite."""
        assert DatabaseConfig(filename="app.db").engine == EngineKind.SQLITE


class TestUrlBuilding:
    """Test SQLAlchemy URL construction."""

    def test_connection_string_gets_async_driver(self):
        """Test that the driver is replaced with the async one."""
        config = DatabaseConfig(connection_string="postgres://u:p@db.internal:6543/app")
        url = config.build_url()

        assert url.drivername == "postgresql+asyncpg"
        assert url.host == "db.internal"
        assert url.port == 6543
        assert url.database == "app"

    def test_discrete_parameters(self):
        """Test building a URL from host, database and credentials."""
        config = DatabaseConfig(
            engine="mysql", host="localhost", database="shop", user="app", password="s3cret"
        )
        url = config.build_url()

        assert url.drivername == "mysql+aiomysql"
        assert url.port == 3306
        assert url.username == "app"
        assert url.password == "s3cret"
        assert url.database == "shop"

    def test_default_postgres_port(self):
        """Test that PostgreSQL defaults to port 5432."""
        config = DatabaseConfig(engine="postgresql", host="localhost", database="app")

        assert config.build_url().port == 5432

    def test_missing_parameters(self):
        """Test that a server engine without host and database cannot build a URL."""
        config = DatabaseConfig(engine="postgresql", user="app")

        with pytest.raises(ConfigurationError, match="host, database"):
            config.build_url()

    def test_sqlite_requires_filename(self):
        """Test that SQLite needs a filename or connection string."""
        with pytest.raises(ConfigurationError, match="filename"):
            DatabaseConfig(engine="sqlite").build_url()

    def test_sqlite_filename(self, tmp_path):
        """Test building a SQLite URL from a file path."""
        path = str(tmp_path / "app.db")
        config = DatabaseConfig(engine="sqlite", filename=path)
        url = config.build_url()

        assert url.drivername == "sqlite+aiosqlite"
        assert url.database == path
        assert config.is_memory_database is False

    @pytest.mark.parametrize("url", ["sqlite:///:memory:", "sqlite://"])
    def test_memory_database(self, url: str):
        """Test detection of private in-memory databases."""
        assert DatabaseConfig(connection_string=url).is_memory_database is True

    def test_mismatched_engine(self):
        """Test that an explicit engine must agree with the connection string."""
        config = DatabaseConfig(engine="mysql", connection_string="postgresql://u@h/db")

        with pytest.raises(ConfigurationError, match="does not match"):
            config.build_url()


class TestValidation:
    """Test field validation."""

    def test_pool_bounds(self):
        """Test that pool_max below pool_min is rejected."""
        with pytest.raises(ValueError, match="pool_max"):
            DatabaseConfig(engine="sqlite", filename="x.db", pool_min=5, pool_max=2)

    def test_statement_timeout_ceiling(self):
        """Test that the default statement timeout cannot exceed five minutes."""
        with pytest.raises(ValueError):
            DatabaseConfig(engine="sqlite", filename="x.db", statement_timeout_ms=300001)

    def test_config_is_frozen(self):
        """Test that a configuration cannot be mutated after creation."""
        config = DatabaseConfig(engine="sqlite", filename="x.db")

        with pytest.raises(ValueError):
            config.filename = "other.db"

    def test_unknown_scheme_in_model(self):
        """Test that an unsupported connection string fails model validation."""
        with pytest.raises(ValueError, match="Unsupported database scheme"):
            DatabaseConfig(connection_string="oracle://u:p@localhost/app")


class TestFromEnv:
    """Test loading configuration from environment variables."""

    def test_nothing_configured(self):
        """Test that no variables means no configuration."""
        assert DatabaseConfig.from_env({}) is None

    def test_database_url(self):
        """Test that DATABASE_URL is used with pool settings."""
        config = DatabaseConfig.from_env(
            {
                "DATABASE_URL": "mysql://u:p@localhost/shop",
                "DB_POOL_MIN": "3",
                "DB_POOL_MAX": "7",
                "DB_SSL": "true",
            }
        )

        assert config.engine == EngineKind.MYSQL
        assert config.pool_min == 3
        assert config.pool_max == 7
        assert config.ssl is True

    def test_database_url_wins(self):
        """Test that DATABASE_URL takes precedence over discrete variables."""
        config = DatabaseConfig.from_env(
            {
                "DATABASE_URL": "sqlite:///app.db",
                "DB_ENGINE": "postgresql",
                "DB_HOST": "ignored",
            }
        )

        assert config.engine == EngineKind.SQLITE
        assert config.host is None

    def test_discrete_variables(self):
        """Test building a configuration from DB_* variables."""
        config = DatabaseConfig.from_env(
            {
                "DB_ENGINE": "PostgreSQL",
                "DB_HOST": "db.internal",
                "DB_PORT": "5433",
                "DB_NAME": "app",
                "DB_USER": "reader",
                "DB_PASSWORD": "pw",
            }
        )

        assert config.engine == EngineKind.POSTGRESQL
        assert config.port == 5433
        assert config.build_url().render_as_string(hide_password=False) == (
            "postgresql+asyncpg://reader:pw@db.internal:5433/app"
        )

    def test_sqlite_filename_variable(self):
        """Test DB_FILENAME for SQLite."""
        config = DatabaseConfig.from_env({"DB_ENGINE": "sqlite", "DB_FILENAME": "local.db"})

        assert config.filename == "local.db"
        assert config.ssl is False


class TestAdapterFactory:
    """Test adapter selection by engine."""

    @pytest.mark.parametrize(
        "config, adapter_class",
        [
            (
                DatabaseConfig(engine="postgresql", host="localhost", database="app"),
                PostgresAdapter,
            ),
            (DatabaseConfig(engine="mysql", host="localhost", database="shop"), MySQLAdapter),
            (DatabaseConfig(engine="sqlite", filename=":memory:"), SQLiteAdapter),
        ],
    )
    def test_create_adapter(self, config: DatabaseConfig, adapter_class: type):
        """Test that the factory returns an unconnected adapter of the right type."""
        adapter = create_adapter(config)

        assert isinstance(adapter, adapter_class)
        assert adapter.is_connected() is False

    def test_mysql_default_schema_is_database(self):
        """Test that MySQL's schema is the configured database."""
        adapter = create_adapter(
            DatabaseConfig(engine="mysql", host="localhost", database="shop")
        )

        assert adapter.default_schema == "shop"

    def test_capabilities(self):
        """Test that capability flags differ per engine."""
        pg = create_adapter(DatabaseConfig(engine="postgresql", host="h", database="d"))
        sqlite = create_adapter(DatabaseConfig(engine="sqlite", filename=":memory:"))

        assert pg.capabilities.sequences is True
        assert pg.capabilities.explain_analyze is True
        assert sqlite.capabilities.sequences is False
        assert sqlite.capabilities.explain_analyze is False
        assert "foreign_keys" in sqlite.capabilities.get_supported_features()
        assert "stored_procedures" in sqlite.capabilities.get_unsupported_features()
