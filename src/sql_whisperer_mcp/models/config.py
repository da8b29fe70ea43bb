"""Database configuration model."""

import os
from enum import Enum
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field, model_validator
from sqlalchemy.engine.url import URL, make_url
from sqlalchemy.exc import ArgumentError

from sql_whisperer_mcp.errors import ConfigurationError


class EngineKind(str, Enum):
    """Supported database engines."""

    POSTGRESQL = "postgresql"
    MYSQL = "mysql"
    SQLITE = "sqlite"


# URL scheme aliases accepted in connection strings
SCHEME_ALIASES: dict[str, EngineKind] = {
    "postgres": EngineKind.POSTGRESQL,
    "postgresql": EngineKind.POSTGRESQL,
    "mysql": EngineKind.MYSQL,
    "mariadb": EngineKind.MYSQL,
    "sqlite": EngineKind.SQLITE,
}

# Async driver used for each engine
ASYNC_DRIVERS: dict[EngineKind, str] = {
    EngineKind.POSTGRESQL: "postgresql+asyncpg",
    EngineKind.MYSQL: "mysql+aiomysql",
    EngineKind.SQLITE: "sqlite+aiosqlite",
}

DEFAULT_PORTS: dict[EngineKind, int] = {
    EngineKind.POSTGRESQL: 5432,
    EngineKind.MYSQL: 3306,
}


def detect_engine(connection_string: str) -> EngineKind:
    """
    Detect the engine from a connection string's scheme.

    Args:
        connection_string: URL such as ``postgres://user@host/db``

    Returns:
        Engine kind

    Raises:
        ConfigurationError: If the URL cannot be parsed or the scheme is unknown
    """
    try:
        url = make_url(connection_string)
    except ArgumentError as e:
        raise ConfigurationError(f"Invalid connection string: {e}") from e

    scheme = url.drivername.split("+")[0]
    engine = SCHEME_ALIASES.get(scheme)
    if engine is None:
        raise ConfigurationError(
            f"Unsupported database scheme: {scheme}. "
            f"Supported: {', '.join(sorted(SCHEME_ALIASES))}"
        )
    return engine


class DatabaseConfig(BaseModel):
    """Configuration for a database connection and its pool.

    Either ``connection_string`` or the discrete parameters are used; SQLite
    takes ``filename`` (``:memory:`` for a private in-memory database).
    """

    model_config = ConfigDict(
        frozen=True,
        json_schema_extra={
            "examples": [
                {
                    "engine": "postgresql",
                    "host": "localhost",
                    "port": 5432,
                    "database": "app",
                    "user": "readonly",
                    "pool_min": 2,
                    "pool_max": 10,
                },
                {"engine": "sqlite", "filename": "./app.db"},
            ]
        },
    )

    engine: EngineKind = Field(..., description="Database engine")
    connection_string: Optional[str] = Field(
        None, description="Full connection URL; overrides discrete parameters"
    )
    host: Optional[str] = Field(None, description="Server host name")
    port: Optional[int] = Field(None, ge=1, le=65535, description="Server port")
    database: Optional[str] = Field(None, description="Database name")
    user: Optional[str] = Field(None, description="Login user")
    password: Optional[str] = Field(None, description="Login password")
    filename: Optional[str] = Field(None, description="SQLite database file path")
    ssl: bool = Field(default=False, description="Require TLS to the server")
    pool_min: int = Field(default=2, ge=1, le=50, description="Pooled connections kept open")
    pool_max: int = Field(
        default=10, ge=1, le=100, description="Maximum simultaneous connections"
    )
    idle_timeout_ms: int = Field(
        default=30000, ge=1000, description="Recycle pooled connections after this age"
    )
    connection_timeout_ms: int = Field(
        default=10000, ge=100, description="Maximum wait to acquire a pooled connection"
    )
    statement_timeout_ms: int = Field(
        default=30000, ge=1, le=300000, description="Default per-statement timeout"
    )
    echo_sql: bool = Field(default=False, description="Echo SQL statements to the log")

    @model_validator(mode="before")
    @classmethod
    def infer_engine(cls, data: Any) -> Any:
        """Fill ``engine`` from the connection string scheme when omitted.

        A bare ``filename`` implies SQLite.
        """
        if isinstance(data, dict) and not data.get("engine"):
            connection_string = data.get("connection_string")
            if connection_string:
                data = {**data, "engine": detect_engine(connection_string)}
            elif data.get("filename"):
                data = {**data, "engine": EngineKind.SQLITE}
        return data

    @model_validator(mode="after")
    def check_pool_bounds(self) -> "DatabaseConfig":
        """Ensure the pool ceiling is not below its floor."""
        if self.pool_max < self.pool_min:
            raise ValueError(
                f"pool_max ({self.pool_max}) must be >= pool_min ({self.pool_min})"
            )
        return self

    @property
    def dialect(self) -> str:
        """Engine name as used by SQLAlchemy dialects."""
        return self.engine.value

    @property
    def driver(self) -> str:
        """Async DBAPI driver name."""
        return ASYNC_DRIVERS[self.engine].split("+")[1]

    @property
    def is_memory_database(self) -> bool:
        """True for a private in-memory SQLite database."""
        if self.engine != EngineKind.SQLITE:
            return False
        return self.build_url().database in (None, "", ":memory:")

    def build_url(self) -> URL:
        """
        Build the SQLAlchemy URL with the engine's async driver.

        Returns:
            SQLAlchemy URL object

        Raises:
            ConfigurationError: If required connection parameters are missing
        """
        drivername = ASYNC_DRIVERS[self.engine]

        if self.connection_string:
            url = make_url(self.connection_string)
            if detect_engine(self.connection_string) != self.engine:
                raise ConfigurationError(
                    f"Connection string scheme {url.drivername!r} does not match "
                    f"engine {self.engine.value!r}"
                )
            return url.set(drivername=drivername)

        if self.engine == EngineKind.SQLITE:
            if not self.filename:
                raise ConfigurationError("SQLite requires 'filename' or 'connection_string'")
            return URL.create(drivername, database=self.filename)

        missing = [name for name in ("host", "database") if not getattr(self, name)]
        if missing:
            raise ConfigurationError(
                f"Missing required connection parameters for {self.engine.value}: "
                f"{', '.join(missing)}"
            )

        return URL.create(
            drivername,
            username=self.user,
            password=self.password,
            host=self.host,
            port=self.port or DEFAULT_PORTS[self.engine],
            database=self.database,
        )

    @classmethod
    def from_env(cls, environ: Optional[dict[str, str]] = None) -> Optional["DatabaseConfig"]:
        """
        Build a configuration from environment variables.

        ``DATABASE_URL`` wins over the discrete ``DB_*`` variables.

        Returns:
            Configuration, or None when no database is configured
        """
        env = os.environ if environ is None else environ

        values: dict[str, Any] = {}
        if env.get("DATABASE_URL"):
            values["connection_string"] = env["DATABASE_URL"]
        elif env.get("DB_ENGINE"):
            values["engine"] = env["DB_ENGINE"].lower()
            for key, name in (
                ("DB_HOST", "host"),
                ("DB_PORT", "port"),
                ("DB_NAME", "database"),
                ("DB_USER", "user"),
                ("DB_PASSWORD", "password"),
                ("DB_FILENAME", "filename"),
            ):
                if env.get(key):
                    values[name] = env[key]
        else:
            return None

        if env.get("DB_SSL"):
            values["ssl"] = env["DB_SSL"].lower() in ("1", "true", "yes", "require")
        if env.get("DB_POOL_MIN"):
            values["pool_min"] = env["DB_POOL_MIN"]
        if env.get("DB_POOL_MAX"):
            values["pool_max"] = env["DB_POOL_MAX"]

        return cls(**values)
