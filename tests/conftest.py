"""
Pytest configuration for the cptx data layer.

Provides fixtures for:
- Database connection management
- Schema setup and table cleanup
- An opened ``Database`` for integration tests
"""

from __future__ import annotations

import os
from typing import Generator

import psycopg
import pytest

from cptx.database import Database
from cptx.infrastructure.db_factory import open_connections

ACCOUNTS_DDL = """
    CREATE TABLE IF NOT EXISTS public.cptx_accounts (
        id BIGINT PRIMARY KEY,
        owner TEXT NOT NULL,
        balance INTEGER NOT NULL DEFAULT 0
    );
"""


@pytest.fixture(scope="session")
def test_dsn() -> str:
    """
    Database connection string for tests.

    ``PRIMARY_DSN`` wins; otherwise it is composed from the ``DB_*`` variables.
    """
    explicit = os.getenv("PRIMARY_DSN")
    if explicit:
        return explicit
    return (
        f"postgresql://{os.getenv('DB_USER', 'postgres')}:{os.getenv('DB_PASSWORD', 'postgres')}"
        f"@{os.getenv('DB_HOST', 'localhost')}:{os.getenv('DB_PORT', '5432')}"
        f"/{os.getenv('DB_NAME', 'cptx')}"
    )


@pytest.fixture(scope="session")
def replica_dsn(test_dsn: str) -> str:
    """Replica connection string; the primary doubles as replica when none is configured."""
    return os.getenv("REPLICA_DSN") or test_dsn


@pytest.fixture(scope="session")
def db_connection_available(test_dsn: str) -> bool:
    """
    Check if database is reachable.

    Used to conditionally skip integration tests when DB is not available.
    """
    try:
        with psycopg.connect(test_dsn, connect_timeout=5) as conn:
            with conn.cursor() as cur:
                cur.execute("SELECT 1;")
                cur.fetchone()
        return True
    except psycopg.Error:
        return False


@pytest.fixture(scope="session")
def db_connection(
    test_dsn: str, db_connection_available: bool
) -> Generator[psycopg.Connection, None, None]:
    """
    Provide a session-scoped autocommit connection used for setup and cleanup.

    Skips tests if database is not available.
    """
    if not db_connection_available:
        pytest.skip("Database not available for integration tests")

    conn = psycopg.connect(test_dsn, autocommit=True)
    try:
        conn.execute(ACCOUNTS_DDL)
        yield conn
    finally:
        conn.close()


@pytest.fixture(scope="session")
def database(
    db_connection: psycopg.Connection, test_dsn: str, replica_dsn: str
) -> Generator[Database, None, None]:
    """Primary/replica pools opened through the connection provider."""
    connections = open_connections(
        test_dsn, replica_dsn, "cptx-tests", min_size=1, max_size=6, timeout=10.0
    )
    db = Database(connections)
    try:
        yield db
    finally:
        db.close()


@pytest.fixture(scope="function")
def clean_accounts(db_connection: psycopg.Connection):
    """
    Empty the accounts table before and after each test function.
    """
    db_connection.execute("TRUNCATE TABLE public.cptx_accounts;")
    yield
    db_connection.execute("TRUNCATE TABLE public.cptx_accounts;")
