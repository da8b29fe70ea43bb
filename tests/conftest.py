"""Pytest configuration and shared fixtures for database tests"""

import os
import sys
from pathlib import Path
from typing import AsyncGenerator, Optional

import pytest
from dotenv import load_dotenv
from sqlalchemy import text

from sql_whisperer_mcp.adapters import create_adapter
from sql_whisperer_mcp.adapters.base import BaseAdapter
from sql_whisperer_mcp.models.config import DatabaseConfig

# Load environment variables
load_dotenv()

# Fix for Windows: asyncpg requires SelectorEventLoop on Windows
if sys.platform == "win32":
    import asyncio

    asyncio.set_event_loop_policy(asyncio.WindowsSelectorEventLoopPolicy())  # type: ignore[attr-defined]


SQLITE_SCHEMA = [
    """
    CREATE TABLE users (
        id INTEGER PRIMARY KEY,
        email TEXT NOT NULL UNIQUE,
        name VARCHAR(100),
        is_active BOOLEAN DEFAULT 1,
        created_at DATETIME DEFAULT CURRENT_TIMESTAMP,
        CONSTRAINT email_has_at CHECK (email LIKE '%@%')
    )
    """,
    """
    CREATE TABLE orders (
        id INTEGER PRIMARY KEY,
        user_id INTEGER NOT NULL REFERENCES users(id) ON DELETE CASCADE,
        total NUMERIC(10, 2) NOT NULL CHECK (total >= 0),
        status TEXT DEFAULT 'new',
        note BLOB
    )
    """,
    "CREATE INDEX idx_orders_user ON orders (user_id)",
    "CREATE INDEX idx_orders_open ON orders (status DESC) WHERE status <> 'closed'",
    "CREATE VIEW active_users AS SELECT id, email FROM users WHERE is_active = 1",
    """
    CREATE TRIGGER orders_audit AFTER INSERT ON orders
    BEGIN
        UPDATE users SET name = name WHERE id = NEW.user_id;
    END
    """,
]

SQLITE_ROWS = [
    "INSERT INTO users (id, email, name) VALUES (1, 'ada@example.com', 'Ada')",
    "INSERT INTO users (id, email, name) VALUES (2, 'alan@example.com', 'Alan')",
    "INSERT INTO users (id, email, name, is_active) VALUES (3, 'grace@example.com', 'Grace', 0)",
    "INSERT INTO orders (user_id, total, status) VALUES (1, 10.50, 'new')",
    "INSERT INTO orders (user_id, total, status) VALUES (1, 99.00, 'closed')",
    "INSERT INTO orders (user_id, total, status) VALUES (2, 5.25, 'new')",
]


# ==================== Configuration Fixtures ====================


@pytest.fixture(scope="session")
def pg_database_url() -> Optional[str]:
    """PostgreSQL test database URL from environment"""
    return os.getenv("PG_TEST_DATABASE_URL")


@pytest.fixture(scope="session")
def mysql_database_url() -> Optional[str]:
    """MySQL test database URL from environment"""
    return os.getenv("MYSQL_TEST_DATABASE_URL")


@pytest.fixture
def sqlite_path(tmp_path: Path) -> Path:
    """Location of a fresh SQLite database file"""
    return tmp_path / "whisperer.db"


@pytest.fixture
def sqlite_config(sqlite_path: Path) -> DatabaseConfig:
    """SQLite database configuration"""
    return DatabaseConfig(engine="sqlite", filename=str(sqlite_path))


# ==================== SQLite Fixtures ====================


async def seed_sqlite(adapter: BaseAdapter) -> None:
    """Create the sample schema and rows on a connected adapter"""
    async with adapter.connection.get_connection() as conn:
        for statement in SQLITE_SCHEMA + SQLITE_ROWS:
            await conn.execute(text(statement))
        await conn.commit()


@pytest.fixture
async def sqlite_adapter(
    sqlite_config: DatabaseConfig,
) -> AsyncGenerator[BaseAdapter, None]:
    """Connected SQLite adapter over a seeded database file"""
    adapter = create_adapter(sqlite_config)
    await adapter.connect()
    try:
        await seed_sqlite(adapter)
        yield adapter
    finally:
        await adapter.disconnect()


# ==================== PostgreSQL Fixtures ====================


@pytest.fixture
async def pg_config(pg_database_url: Optional[str]) -> DatabaseConfig:
    """PostgreSQL database configuration"""
    if not pg_database_url:
        pytest.skip("PG_TEST_DATABASE_URL not set in environment")
    return DatabaseConfig(connection_string=pg_database_url)


@pytest.fixture
async def pg_adapter(pg_config: DatabaseConfig) -> AsyncGenerator[BaseAdapter, None]:
    """Connected PostgreSQL adapter"""
    adapter = create_adapter(pg_config)
    await adapter.connect()
    try:
        yield adapter
    finally:
        await adapter.disconnect()


# ==================== MySQL Fixtures ====================


@pytest.fixture
async def mysql_config(mysql_database_url: Optional[str]) -> DatabaseConfig:
    """MySQL database configuration"""
    if not mysql_database_url:
        pytest.skip("MYSQL_TEST_DATABASE_URL not set in environment")
    return DatabaseConfig(connection_string=mysql_database_url)


@pytest.fixture
async def mysql_adapter(
    mysql_config: DatabaseConfig,
) -> AsyncGenerator[BaseAdapter, None]:
    """Connected MySQL adapter"""
    adapter = create_adapter(mysql_config)
    await adapter.connect()
    try:
        yield adapter
    finally:
        await adapter.disconnect()


# ==================== Pytest Configuration ====================


def pytest_configure(config):
    """Register custom markers"""
    config.addinivalue_line("markers", "postgresql: PostgreSQL-specific tests")
    config.addinivalue_line("markers", "mysql: MySQL-specific tests")
    config.addinivalue_line("markers", "sqlite: SQLite tests using a temporary file")
    config.addinivalue_line(
        "markers", "integration: Integration tests requiring database"
    )
