#!/usr/bin/env python3
"""
Database Initialization Script
Create the timeline and node policy tables
"""

import asyncio
import sys

import timeline_backend.db.session as session_module
from timeline_backend.core.logging import setup_logging, get_logger
from timeline_backend.db.base import Base
from timeline_backend.db import models  # noqa: F401
from timeline_backend.models import permission  # noqa: F401

setup_logging()
logger = get_logger(__name__)


async def main():
    """Main initialization function"""
    logger.info("Initializing database...")

    try:
        await session_module.init_db()
        async with session_module.engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)
        await session_module.close_db()
        logger.info("Database initialized successfully!")
        return 0
    except Exception as e:
        logger.error(f"Failed to initialize database: {e}")
        return 1


if __name__ == "__main__":
    sys.exit(asyncio.run(main()))
