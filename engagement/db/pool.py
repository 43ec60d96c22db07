"""
PostgreSQL connection pool for the engagement engine.

The engine only reads appointments and customer handles and appends to
the retention message log, so every pooled connection runs in
autocommit with dict rows and a short statement timeout.
"""

import asyncio
import time
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager
from typing import Any

import psycopg
from psycopg import sql
from psycopg.rows import dict_row
from psycopg_pool import AsyncConnectionPool

from engagement.config import settings
from engagement.infrastructure.observability.logging import get_logger

logger = get_logger(__name__)

STATEMENT_TIMEOUT = "30s"
CLOSE_TIMEOUT_SECONDS = 30.0


async def _prepare_session(conn: psycopg.AsyncConnection) -> None:
    """Session defaults applied to every new pooled connection."""
    conn.row_factory = dict_row
    await conn.set_autocommit(True)

    app_name = f"engagement-engine-{settings.environment}"
    await conn.execute(sql.SQL("SET application_name = {}").format(sql.Literal(app_name)))
    await conn.execute("SET timezone = 'UTC'")
    await conn.execute(
        sql.SQL("SET statement_timeout = {}").format(sql.Literal(STATEMENT_TIMEOUT))
    )


class DatabasePoolManager:
    """Opens the pool at startup, lends connections, reports health, closes on shutdown."""

    def __init__(self):
        self.pool: AsyncConnectionPool | None = None
        self._state = "new"

    @property
    def is_open(self) -> bool:
        return self._state == "open"

    async def initialize(self) -> None:
        if self._state == "open":
            logger.warning("Database pool already initialized")
            return
        if self._state == "closed":
            raise RuntimeError("Cannot reinitialize closed pool")

        options = settings.get_db_pool_config()
        pool = AsyncConnectionPool(
            conninfo=settings.DATABASE_URL,
            open=False,
            check=AsyncConnectionPool.check_connection,
            configure=_prepare_session,
            **options,
        )

        try:
            await pool.open(wait=True)
            self.pool = pool
            self._state = "open"
            await self._probe()
        except Exception as e:
            logger.error("Failed to initialize database pool", error=str(e))
            self._state = "new"
            self.pool = None
            await pool.close()
            raise RuntimeError(f"Database pool initialization failed: {e}") from e

        logger.info(
            "Database pool ready",
            min_size=options["min_size"],
            max_size=options["max_size"],
            environment=settings.environment,
        )

    async def close(self) -> None:
        if self._state != "open":
            return

        self._state = "closed"
        try:
            await asyncio.wait_for(self.pool.close(), timeout=CLOSE_TIMEOUT_SECONDS)
            logger.info("Database pool closed")
        except TimeoutError:
            logger.warning("Database pool close timed out, forcing shutdown")

    @asynccontextmanager
    async def connection(self) -> AsyncGenerator[psycopg.AsyncConnection, None]:
        """
        Borrow a connection.

        Raises:
            RuntimeError: If the pool is not open.
        """
        if not self.is_open:
            raise RuntimeError(f"Database pool is {self._state}, cannot lend a connection")

        async with self.pool.connection() as conn:
            yield conn

    async def _probe(self) -> float:
        """Run SELECT 1 and return the round trip in milliseconds."""
        started = time.perf_counter()
        async with self.connection() as conn:
            cursor = await conn.execute("SELECT 1 AS ok")
            row = await cursor.fetchone()
        if not row or row["ok"] != 1:
            raise RuntimeError("Database probe returned an unexpected result")
        return (time.perf_counter() - started) * 1000

    async def health_check(self) -> dict[str, Any]:
        report: dict[str, Any] = {"service": "database_pool", "healthy": False}

        if not self.is_open:
            report["error"] = f"Pool is {self._state}"
            return report

        try:
            report["connection_time_ms"] = round(await self._probe(), 2)
        except Exception as e:
            logger.error("Database pool health check failed", error=str(e))
            report.update(error=str(e), error_type=type(e).__name__)
            return report

        stats = self.pool.get_stats()
        report["healthy"] = True
        report["pool_stats"] = {
            key: stats.get(key, 0) for key in ("pool_size", "pool_available", "requests_waiting")
        }
        return report


db_pool = DatabasePoolManager()


async def get_db_connection():
    """Connection context manager from the shared pool."""
    return db_pool.connection()


async def db_health_check() -> dict[str, Any]:
    return await db_pool.health_check()
