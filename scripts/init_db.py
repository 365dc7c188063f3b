"""
Create the trail and import job tables without running migrations.

Usage:
    python scripts/init_db.py
"""

import asyncio
import logging
import sys
import os

# Add current directory to path to allow imports from core, models, etc.
sys.path.append(os.getcwd())

from core.database import engine
from core.logging import setup_logging
from models.base import Base
# Register every table on Base.metadata
from models.trail import Trail
from models.import_job import ImportJob, BulkImportJob

setup_logging()
logger = logging.getLogger(__name__)


async def init_database():
    tables = ", ".join(sorted(Base.metadata.tables))
    logger.info(f"Creating tables: {tables}")

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    logger.info("Tables created successfully.")
    await engine.dispose()


if __name__ == "__main__":
    asyncio.run(init_database())
