"""
Policy Maintenance Tasks
Periodic removal of expired node policies
"""

from typing import Any, Dict

from timeline_backend.core.logging import get_logger
from timeline_backend.tasks.celery_app import celery_app

logger = get_logger(__name__)


async def run_policy_cleanup() -> int:
    """Delete expired policies once, initializing the database if needed"""
    import timeline_backend.db.session as session_module
    from timeline_backend.services.permissions import get_permission_service

    # Ensure database is initialized (for Celery worker process)
    if session_module.async_session_maker is None:
        logger.info("Initializing database connection for Celery worker")
        await session_module.init_db()

    async with session_module.async_session_maker() as db:
        return await get_permission_service().store.cleanup_expired_policies(db)


@celery_app.task
def cleanup_expired_policies() -> Dict[str, Any]:
    """
    Remove policies whose expiry has passed

    Expired policies are already ignored at read time, so the sweep is
    idempotent and safe to run alongside reads and writes.
    """
    import asyncio

    logger.info("Cleaning up expired node policies")

    try:
        removed = asyncio.run(run_policy_cleanup())
    except Exception as e:
        logger.error(f"Expired policy cleanup failed: {e}")
        raise

    return {"removed": removed}
