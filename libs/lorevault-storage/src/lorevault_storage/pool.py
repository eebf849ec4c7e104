"""Async connection pool wrapper for psycopg3 + pgvector."""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from typing import TYPE_CHECKING, Self

from psycopg import AsyncConnection, OperationalError
from psycopg.rows import dict_row
from psycopg_pool import AsyncConnectionPool, PoolTimeout

from lorevault_storage.exceptions import StoreUnavailableError

if TYPE_CHECKING:
    from collections.abc import AsyncIterator

    from lorevault_storage.config import DatabaseConfig

logger = logging.getLogger(__name__)


async def _configure_connection(conn: AsyncConnection[dict[str, object]]) -> None:
    """Register pgvector types on each new connection."""
    from pgvector.psycopg import register_vector_async  # type: ignore[import-untyped]

    await register_vector_async(conn)


class ConnectionPool:
    """Manages an async psycopg connection pool with pgvector support.

    Connection failures and pool exhaustion surface as StoreUnavailableError.
    """

    def __init__(self, config: DatabaseConfig) -> None:
        self._config = config
        self._pool: AsyncConnectionPool[AsyncConnection[dict[str, object]]] | None = None

    @property
    def config(self) -> DatabaseConfig:
        return self._config

    async def open(self) -> None:
        """Create and open the connection pool."""
        self._pool = AsyncConnectionPool[AsyncConnection[dict[str, object]]](
            conninfo=self._config.dsn,
            min_size=self._config.min_pool_size,
            max_size=self._config.max_pool_size,
            timeout=self._config.pool_timeout,
            open=False,
            configure=_configure_connection,
            kwargs={
                "row_factory": dict_row,
                "options": f"-c statement_timeout={self._config.statement_timeout_ms}",
            },
        )
        try:
            await self._pool.open(wait=True, timeout=self._config.pool_timeout)
        except PoolTimeout as exc:
            await self._pool.close()
            self._pool = None
            msg = f"Could not connect to {self._config.host}:{self._config.port}"
            raise StoreUnavailableError(msg) from exc

    async def close(self) -> None:
        """Close the connection pool."""
        if self._pool is not None:
            await self._pool.close()
            self._pool = None

    @asynccontextmanager
    async def connection(self) -> AsyncIterator[AsyncConnection[dict[str, object]]]:
        """Yield an async connection from the pool."""
        if self._pool is None:
            msg = "Connection pool is not open. Call open() first."
            raise RuntimeError(msg)
        try:
            async with self._pool.connection() as conn:
                yield conn
        except PoolTimeout as exc:
            logger.warning("Connection pool exhausted after %.1fs", self._config.pool_timeout)
            msg = "Timed out waiting for a database connection"
            raise StoreUnavailableError(msg) from exc
        except OperationalError as exc:
            logger.warning("Database unreachable: %s", type(exc).__name__)
            msg = "Database connection failed"
            raise StoreUnavailableError(msg) from exc

    async def __aenter__(self) -> Self:
        await self.open()
        return self

    async def __aexit__(self, *_: object) -> None:
        await self.close()
