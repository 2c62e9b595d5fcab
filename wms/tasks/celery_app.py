"""Celery application configuration."""
from celery import Celery

from wms.config import get_settings

settings = get_settings()

celery_app = Celery(
    "wms_ingestion",
    broker=settings.redis_url,
    backend=settings.redis_url,
    include=["wms.tasks.import_tasks"],
)

celery_app.conf.update(
    task_track_started=True,
    task_serializer="json",
    accept_content=["json"],
    result_serializer="json",
    timezone="UTC",
    enable_utc=True,
    # uploads run for minutes; hand a worker one at a time
    worker_prefetch_multiplier=1,
    beat_schedule={
        "purge-expired-uploads": {
            "task": "wms.tasks.import_tasks.purge_expired_uploads",
            "schedule": 600.0,
        },
    },
)
