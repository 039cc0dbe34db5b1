"""
Apply leadgrid/db/schema.sql to the configured database.

Usage:
    python -m leadgrid.db.migrate
"""

import asyncio
from pathlib import Path

import psycopg

from leadgrid.config import settings
from leadgrid.infrastructure.observability.logging import get_logger, setup_logging

logger = get_logger(__name__)

SCHEMA_PATH = Path(__file__).resolve().parent / "schema.sql"


async def apply_schema(conninfo: str | None = None) -> None:
    ddl = SCHEMA_PATH.read_text(encoding="utf-8")
    async with await psycopg.AsyncConnection.connect(conninfo or settings.DATABASE_URL) as conn:
        async with conn.transaction():
            await conn.execute(ddl)
    logger.info("Schema applied", path=str(SCHEMA_PATH))


def main() -> None:
    setup_logging(settings.LOG_LEVEL)
    asyncio.run(apply_schema())


if __name__ == "__main__":
    main()
