# leadgrid/db/pool.py
"""
PostgreSQL connection pool shared by every worker process (crawl, rating,
enrich, crm).

Connections run in autocommit mode: each single-row status write (a point
finishing, a stage compare-and-set) is its own transaction. Multi-statement
units such as saving a lead with its stage rows go through transaction().
"""

import asyncio
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

import psycopg
from psycopg import sql
from psycopg.rows import dict_row
from psycopg_pool import AsyncConnectionPool

from leadgrid.config import settings
from leadgrid.infrastructure.observability.logging import get_logger

logger = get_logger(__name__)

STATEMENT_TIMEOUT = "60s"
CLOSE_TIMEOUT_SECONDS = 30.0


class DatabasePoolManager:
    def __init__(self):
        self.pool: AsyncConnectionPool | None = None
        self._initialized = False
        self._closed = False

    @property
    def ready(self) -> bool:
        return self._initialized and not self._closed

    async def initialize(self) -> None:
        """Open the pool and prove one round trip before workers start consuming."""
        if self._initialized:
            logger.warning("Database pool already initialized")
            return
        if self._closed:
            raise RuntimeError("Cannot reinitialize closed pool")

        config = settings.get_db_pool_config()
        logger.info(
            "Initializing database connection pool",
            min_size=config["min_size"],
            max_size=config["max_size"],
            environment=settings.environment,
        )

        pool = AsyncConnectionPool(
            conninfo=settings.DATABASE_URL,
            open=False,
            check=AsyncConnectionPool.check_connection,
            configure=self._configure_connection,
            **config,
        )
        try:
            await pool.open(wait=True)
            async with pool.connection() as conn:
                await conn.execute("SELECT 1")
        except Exception as e:
            logger.error("Failed to initialize database pool", error=str(e))
            await pool.close()
            raise RuntimeError(f"Database pool initialization failed: {e}") from e

        self.pool = pool
        self._initialized = True
        logger.info("Database pool initialized")

    async def _configure_connection(self, conn: psycopg.AsyncConnection) -> None:
        conn.row_factory = dict_row
        await conn.set_autocommit(True)
        # SET does not take bind parameters.
        app_name = f"leadgrid-{settings.environment}"
        await conn.execute(sql.SQL("SET application_name = {}").format(sql.Literal(app_name)))
        await conn.execute("SET timezone = 'UTC'")
        await conn.execute(
            sql.SQL("SET statement_timeout = {}").format(sql.Literal(STATEMENT_TIMEOUT))
        )

    async def close(self) -> None:
        if not self.ready:
            return

        logger.info("Closing database connection pool")
        self._initialized = False
        self._closed = True
        try:
            await asyncio.wait_for(self.pool.close(), timeout=CLOSE_TIMEOUT_SECONDS)
        except TimeoutError:
            logger.warning("Database pool close timed out, forcing shutdown")
            return
        logger.info("Database pool closed")

    @asynccontextmanager
    async def connection(self) -> AsyncGenerator[psycopg.AsyncConnection, None]:
        """Borrow an autocommit connection from the pool."""
        if not self.ready:
            raise RuntimeError("Database pool not initialized. Call initialize() first.")
        async with self.pool.connection() as conn:
            yield conn

    @asynccontextmanager
    async def transaction(self) -> AsyncGenerator[psycopg.AsyncConnection, None]:
        """
        Borrow a connection inside an explicit transaction.

        Usage:
            async with await get_db_transaction() as conn:
                await execute_query("INSERT ...", params, connection=conn)
                await execute_query("UPDATE ...", params, connection=conn)
                # commit on success, rollback on exception
        """
        async with self.connection() as conn:
            async with conn.transaction():
                yield conn


# Global pool instance
db_pool = DatabasePoolManager()


async def get_db_connection():
    """Get database connection from pool."""
    return db_pool.connection()


async def get_db_transaction():
    """Get database connection with transaction."""
    return db_pool.transaction()
