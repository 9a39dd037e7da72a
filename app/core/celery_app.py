"""Celery application configuration."""

from celery import Celery
from celery.schedules import crontab

from app.core.config import settings

celery_app = Celery(
    "short_video",
    broker=settings.CELERY_BROKER_URL or settings.REDIS_URL,
    backend=settings.CELERY_RESULT_BACKEND or settings.REDIS_URL,
)

celery_app.conf.update(
    task_serializer="json",
    accept_content=["json"],
    result_serializer="json",
    timezone="UTC",
    enable_utc=True,
    task_track_started=True,
    task_time_limit=3600,
    worker_prefetch_multiplier=1,
    task_acks_late=True,
    task_reject_on_worker_lost=True,
    task_routes={
        "encoding.*": {"queue": "encoding"},
        "moderation.*": {"queue": "moderation"},
    },
    beat_schedule={
        "publish-scheduled-videos": {
            "task": "video.publish_scheduled_videos",
            "schedule": crontab(minute="*"),
        },
        "refresh-engagement-scores": {
            "task": "feed.refresh_engagement_scores",
            "schedule": crontab(minute="*/15"),
        },
    },
)

celery_app.autodiscover_tasks([
    "app.modules.video",
    "app.modules.encoding",
    "app.modules.moderation",
    "app.modules.feed",
])
