import asyncio
import logging
import sys
import os

# Add current directory to path to allow imports from core, models, etc.
sys.path.append(os.getcwd())

from core.database import registry
from core.logging import setup_logging
from models.base import Base
# Import all models to ensure they are registered
from models.etl_batch import EtlBatch
from models.staged_record import StagedRecord

logger = logging.getLogger(__name__)


async def init_database():
    """Create the batch ledger and staging tables on the default connection"""
    logger.info("Connecting to database...")
    
    async with registry.get_engine().begin() as conn:
        logger.info(f"Creating tables: {EtlBatch.__tablename__}, {StagedRecord.__tablename__}")
        await conn.run_sync(Base.metadata.create_all)
        logger.info("Tables created successfully.")
    
    await registry.dispose()


if __name__ == "__main__":
    setup_logging()
    asyncio.run(init_database())
