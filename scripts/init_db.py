"""Script to initialize the database for local development."""

import asyncio

import structlog
from sqlalchemy import text

from app.core.logging import configure_logging
from app.database import engine
from app.models import metadata

logger = structlog.get_logger(__name__)


async def init_db() -> None:
    """Initialize the database by creating all tables."""
    async with engine.begin() as conn:
        # gen_random_uuid() defaults
        await conn.execute(text('CREATE EXTENSION IF NOT EXISTS "pgcrypto"'))
        await conn.run_sync(metadata.create_all)

    await engine.dispose()
    logger.info("database_initialized", tables=sorted(metadata.tables))


if __name__ == "__main__":
    configure_logging(log_format="console")
    asyncio.run(init_db())
