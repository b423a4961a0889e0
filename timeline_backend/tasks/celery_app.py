"""
Celery Application
Background task processing
"""

from celery import Celery

from timeline_backend.core.config import settings

# Create Celery app
celery_app = Celery(
    "career_timeline",
    broker=settings.CELERY_BROKER_URL,
    backend=settings.CELERY_RESULT_BACKEND,
)

# Configure Celery
celery_app.conf.update(
    task_serializer="json",
    accept_content=["json"],
    result_serializer="json",
    timezone="UTC",
    enable_utc=True,
    task_track_started=True,
    task_time_limit=600,  # 10 minutes
    task_soft_time_limit=540,  # 9 minutes
    worker_prefetch_multiplier=1,
    worker_max_tasks_per_child=100,
    beat_schedule={
        "cleanup-expired-policies": {
            "task": "timeline_backend.tasks.policy_tasks.cleanup_expired_policies",
            "schedule": float(settings.POLICY_CLEANUP_INTERVAL_SECONDS),
        },
    },
)


# Import tasks
from timeline_backend.tasks import policy_tasks  # noqa
