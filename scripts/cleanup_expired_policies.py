#!/usr/bin/env python3
"""
Cleanup Expired Policies

Removes node policies whose expiry has passed. Expired policies are already
ignored when access is evaluated; this only reclaims the rows. Runs the same
sweep as the periodic Celery task, once.
"""

import asyncio
import sys

import timeline_backend.db.session as session_module
from timeline_backend.core.logging import setup_logging, get_logger
from timeline_backend.tasks.policy_tasks import run_policy_cleanup

setup_logging()
logger = get_logger(__name__)


async def main():
    """Run one cleanup sweep"""
    try:
        removed = await run_policy_cleanup()
        logger.info(f"Cleanup complete: {removed} expired policies removed")
        return 0
    except Exception as e:
        logger.error(f"Cleanup failed: {e}")
        return 1
    finally:
        await session_module.close_db()


if __name__ == "__main__":
    sys.exit(asyncio.run(main()))
