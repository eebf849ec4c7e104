"""Integration test fixtures: pgvector via testcontainers."""

from collections.abc import AsyncIterator
from typing import Any

import pytest
from testcontainers.postgres import PostgresContainer  # type: ignore[import-untyped]

from lorevault_storage.config import DatabaseConfig
from lorevault_storage.pgvector_store import PgVectorStore
from lorevault_storage.pool import ConnectionPool

PGVECTOR_IMAGE = "pgvector/pgvector:pg16"
INTEGRATION_DIMENSIONS = 8


@pytest.fixture(scope="session")
def postgres_container() -> Any:
    """Start a pgvector container for the test session."""
    with PostgresContainer(
        image=PGVECTOR_IMAGE,
        username="test",
        password="test",
        dbname="test_lorevault",
    ) as container:
        yield container


@pytest.fixture(scope="session")
def db_config(postgres_container: Any) -> DatabaseConfig:
    """Build a DatabaseConfig pointing at the test container."""
    host = postgres_container.get_container_host_ip()
    port = int(postgres_container.get_exposed_port(5432))
    return DatabaseConfig(
        host=host,
        port=port,
        user="test",
        password="test",
        name="test_lorevault",
        min_pool_size=1,
        max_pool_size=4,
        embedding_dimensions=INTEGRATION_DIMENSIONS,
        expected_collection_size=100,
    )


@pytest.fixture(scope="session")
def _run_migrations(db_config: DatabaseConfig) -> None:
    """Run Alembic migrations against the test database."""
    from alembic import command
    from alembic.config import Config

    alembic_cfg = Config()
    alembic_cfg.set_main_option(
        "script_location",
        "libs/lorevault-storage/src/lorevault_storage/migrations",
    )
    alembic_cfg.set_main_option("sqlalchemy.url", db_config.sqlalchemy_url)
    alembic_cfg.set_main_option("embedding_dimensions", str(INTEGRATION_DIMENSIONS))
    command.upgrade(alembic_cfg, "head")


@pytest.fixture
def dims() -> int:
    return INTEGRATION_DIMENSIONS


@pytest.fixture
async def pool(
    db_config: DatabaseConfig,
    _run_migrations: None,
) -> AsyncIterator[ConnectionPool]:
    """Provide an open ConnectionPool for each test, emptying the tables afterwards."""
    async with ConnectionPool(db_config) as p:
        yield p
        async with p.connection() as conn:
            await conn.execute(
                "TRUNCATE external_chunks, external_documents, chunks, documents CASCADE"
            )


@pytest.fixture
def store(pool: ConnectionPool) -> PgVectorStore:
    return PgVectorStore(pool)
