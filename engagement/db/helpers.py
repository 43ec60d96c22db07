"""
Query helpers for the repository layer.

Every helper turns driver and pool failures into DatabaseError so
repositories only deal with one exception type.
"""

from collections.abc import Awaitable, Callable
from typing import Any, TypeVar

import psycopg

from engagement.db.pool import get_db_connection
from engagement.infrastructure.observability.logging import get_logger

logger = get_logger(__name__)

T = TypeVar("T")


class DatabaseError(Exception):
    """A query could not be run or did not complete."""

    def __init__(self, message: str, operation: str = "unknown", recoverable: bool = True):
        super().__init__(message)
        self.operation = operation
        self.recoverable = recoverable


async def _run(
    operation: str,
    query: str,
    params: tuple,
    consume: Callable[[psycopg.AsyncCursor], Awaitable[T]],
) -> T:
    try:
        async with await get_db_connection() as conn:
            cursor = await conn.execute(query, params)
            return await consume(cursor)
    except psycopg.Error as e:
        logger.error("Database query failed", operation=operation, query=query[:100], error=str(e))
        raise DatabaseError(f"Query failed: {e}", operation=operation) from e
    except RuntimeError as e:
        # Pool not open
        raise DatabaseError(str(e), operation=operation, recoverable=False) from e


async def fetch_one(query: str, params: tuple = ()) -> dict[str, Any] | None:
    """First row as a dict, or None."""
    return await _run("fetch_one", query, params, lambda cur: cur.fetchone())


async def fetch_all(query: str, params: tuple = ()) -> list[dict[str, Any]]:
    """All rows as dicts."""
    return await _run("fetch_all", query, params, lambda cur: cur.fetchall())


async def execute_query(query: str, params: tuple = ()) -> int:
    """Run a write and return the affected row count."""

    async def rowcount(cur: psycopg.AsyncCursor) -> int:
        return cur.rowcount

    return await _run("execute", query, params, rowcount)
