# app/infra/db_async.py
"""
Async database handle using asyncpg.

One ``Database`` is created at process start, connected once (pool +
a single readiness query), passed explicitly to every storage component,
and closed at shutdown.  There is no module-level pool.
"""
from __future__ import annotations
from typing import AsyncIterator
from contextlib import asynccontextmanager

import asyncpg
from app.config import Settings
from app.infra.logging_config import get_logger

logger = get_logger(__name__)


class Database:
    """Owns the asyncpg connection pool for the process lifetime."""

    def __init__(
        self,
        dsn: str | None,
        *,
        connect_options: dict | None = None,
        server_settings: dict[str, str] | None = None,
        min_size: int = 1,
        max_size: int = 10,
        command_timeout: float = 60,
        application_name: str = "dispatchhub_confirmations",
    ):
        self._dsn = dsn
        self._min_size = min_size
        self._max_size = max_size
        self._command_timeout = command_timeout
        self._application_name = application_name
        self._connect_options = dict(connect_options or {})
        self._server_settings = dict(server_settings or {})
        self._pool: asyncpg.Pool | None = None
        self._warmed = False

    @classmethod
    def from_settings(cls, settings: Settings) -> "Database":
        return cls(
            settings.database_url,
            connect_options=settings.pg_connect_options,
            server_settings=settings.pg_server_settings,
            min_size=settings.pg_pool_min,
            max_size=settings.pg_pool_max,
        )

    @property
    def is_connected(self) -> bool:
        return self._pool is not None

    async def connect(self) -> None:
        """Create the pool and run the one-time readiness query."""
        if self._pool is not None:
            return

        logger.info("Initializing asyncpg connection pool")

        self._pool = await asyncpg.create_pool(
            dsn=self._dsn,
            min_size=self._min_size,
            max_size=self._max_size,
            command_timeout=self._command_timeout,
            server_settings={
                **self._server_settings,
                "application_name": self._application_name,
            },
            **self._connect_options,
        )

        # Warm-up: first query on a cold serverless Postgres can take seconds
        if not self._warmed:
            async with self._pool.acquire() as conn:
                await conn.fetchval("SELECT 1")
            self._warmed = True

        logger.info(f"Connection pool created: min={self._min_size}, max={self._max_size}")

    async def close(self) -> None:
        """Close connection pool on shutdown"""
        if self._pool is None:
            return

        logger.info("Closing connection pool")
        await self._pool.close()
        self._pool = None
        logger.info("Connection pool closed")

    @asynccontextmanager
    async def connection(self, autocommit: bool = True) -> AsyncIterator[asyncpg.Connection]:
        """
        Get a connection from the pool.

        Usage:
            async with db.connection() as conn:
                row = await conn.fetchrow("SELECT * FROM carting_jobs WHERE id = $1", job_id)

        Args:
            autocommit: If True (default), no explicit transaction. If False,
                        the block runs in a transaction committed on exit.
        """
        if self._pool is None:
            raise RuntimeError("Connection pool not initialized. Call Database.connect() first.")

        conn = await self._pool.acquire()

        try:
            if not autocommit:
                transaction = conn.transaction()
                await transaction.start()

                try:
                    yield conn
                    await transaction.commit()
                except Exception:
                    await transaction.rollback()
                    raise
            else:
                yield conn
        finally:
            await self._pool.release(conn)
