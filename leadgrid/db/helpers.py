# leadgrid/db/helpers.py
"""
Database helper functions for common patterns.
Reduces boilerplate in the repository layer.
"""

from typing import Any

import psycopg

from leadgrid.db.pool import get_db_connection, get_db_transaction
from leadgrid.infrastructure.observability.logging import get_logger

logger = get_logger(__name__)


class DatabaseError(Exception):
    """Custom exception for database operations."""

    def __init__(self, message: str, operation: str = "unknown", recoverable: bool = True):
        super().__init__(message)
        self.operation = operation
        self.recoverable = recoverable


def _recoverable(error: psycopg.Error) -> bool:
    return isinstance(error, psycopg.OperationalError)


async def fetch_one(
    query: str, params: tuple = (), *, connection: psycopg.AsyncConnection | None = None
) -> dict[str, Any] | None:
    """
    Execute query and return single row as dict.

    Args:
        query: SQL query with %s placeholders
        params: Query parameters
        connection: Optional existing connection (e.g. inside a transaction)

    Returns:
        Dict with row data or None if no results
    """
    try:
        if connection:
            async with connection.cursor() as cur:
                await cur.execute(query, params)
                row = await cur.fetchone()
                return row if row else None
        else:
            async with await get_db_connection() as conn:
                async with conn.cursor() as cur:
                    await cur.execute(query, params)
                    row = await cur.fetchone()
                    return row if row else None

    except psycopg.Error as e:
        logger.error("Database fetch_one error", query=query[:100], error=str(e))
        raise DatabaseError(
            f"Query failed: {e}", operation="fetch_one", recoverable=_recoverable(e)
        ) from e


async def fetch_all(
    query: str, params: tuple = (), *, connection: psycopg.AsyncConnection | None = None
) -> list[dict[str, Any]]:
    """
    Execute query and return all rows as list of dicts.

    Args:
        query: SQL query with %s placeholders
        params: Query parameters
        connection: Optional existing connection

    Returns:
        List of dicts with row data
    """
    try:
        if connection:
            async with connection.cursor() as cur:
                await cur.execute(query, params)
                return await cur.fetchall()
        else:
            async with await get_db_connection() as conn:
                async with conn.cursor() as cur:
                    await cur.execute(query, params)
                    return await cur.fetchall()

    except psycopg.Error as e:
        logger.error("Database fetch_all error", query=query[:100], error=str(e))
        raise DatabaseError(
            f"Query failed: {e}", operation="fetch_all", recoverable=_recoverable(e)
        ) from e


async def fetch_val(
    query: str, params: tuple = (), *, connection: psycopg.AsyncConnection | None = None
) -> Any:
    """Execute query and return the first column of the first row."""
    row = await fetch_one(query, params, connection=connection)
    return list(row.values())[0] if row else None


async def execute_query(
    query: str, params: tuple = (), *, connection: psycopg.AsyncConnection | None = None
) -> int:
    """
    Execute query and return number of affected rows.

    Args:
        query: SQL query with %s placeholders
        params: Query parameters
        connection: Optional existing connection

    Returns:
        Number of affected rows
    """
    try:
        if connection:
            cursor = await connection.execute(query, params)
            return cursor.rowcount
        else:
            async with await get_db_connection() as conn:
                cursor = await conn.execute(query, params)
                return cursor.rowcount

    except psycopg.Error as e:
        logger.error("Database execute error", query=query[:100], error=str(e))
        raise DatabaseError(
            f"Query failed: {e}", operation="execute", recoverable=_recoverable(e)
        ) from e


async def execute_many(
    query: str, params_seq: list[tuple], *, connection: psycopg.AsyncConnection | None = None
) -> int:
    """Execute the same statement for every params tuple; returns the count of tuples."""
    if not params_seq:
        return 0
    try:
        if connection:
            async with connection.cursor() as cur:
                await cur.executemany(query, params_seq)
        else:
            async with await get_db_transaction() as conn:
                async with conn.cursor() as cur:
                    await cur.executemany(query, params_seq)
        return len(params_seq)

    except psycopg.Error as e:
        logger.error("Database executemany error", query=query[:100], error=str(e))
        raise DatabaseError(
            f"Batch failed: {e}", operation="execute_many", recoverable=_recoverable(e)
        ) from e

