"""
Create the gamification tables in the configured PostgreSQL database

Usage:
    python scripts/init_db.py
"""
import asyncio
import logging

from taskquest.config import LOG_LEVEL, validate_config
from taskquest.db.connection import db
from taskquest.db.schema import create_schema

logging.basicConfig(
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
    level=getattr(logging, LOG_LEVEL)
)
logger = logging.getLogger(__name__)


async def main() -> None:
    validate_config()
    await db.init_pool()
    try:
        await create_schema(db)
        logger.info("Database schema ready")
    finally:
        await db.close_pool()


if __name__ == "__main__":
    asyncio.run(main())
