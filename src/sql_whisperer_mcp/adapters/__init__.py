"""Database adapters for specific database implementations."""

from sql_whisperer_mcp.adapters.base import BaseAdapter
from sql_whisperer_mcp.adapters.mysql import MySQLAdapter
from sql_whisperer_mcp.adapters.postgresql import PostgresAdapter
from sql_whisperer_mcp.adapters.sqlite import SQLiteAdapter
from sql_whisperer_mcp.errors import ConfigurationError
from sql_whisperer_mcp.models.config import DatabaseConfig, detect_engine

__all__ = [
    "BaseAdapter",
    "PostgresAdapter",
    "MySQLAdapter",
    "SQLiteAdapter",
    "create_adapter",
    "detect_dialect",
]


def detect_dialect(url: str) -> str:
    """
    Detect database dialect from connection URL.

    Args:
        url: Database connection URL

    Returns:
        Dialect name (postgresql, mysql, sqlite)

    Raises:
        ConfigurationError: If dialect cannot be detected
    """
    return detect_engine(url).value


def create_adapter(config: DatabaseConfig) -> BaseAdapter:
    """
    Factory function to create appropriate database adapter.

    Args:
        config: Database configuration

    Returns:
        Database adapter instance, not yet connected

    Raises:
        ConfigurationError: If database type is not supported
    """
    dialect = config.dialect

    adapters = {
        "postgresql": PostgresAdapter,
        "mysql": MySQLAdapter,
        "sqlite": SQLiteAdapter,
    }

    adapter_class = adapters.get(dialect)

    if adapter_class is None:
        raise ConfigurationError(
            f"Unsupported database dialect: {dialect}. "
            f"Supported dialects: {', '.join(adapters.keys())}"
        )

    return adapter_class(config)
