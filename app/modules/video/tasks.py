"""Celery tasks for the video lifecycle.

``video.publish_scheduled_videos`` runs every minute from beat;
``video.cleanup_video_storage`` deletes a video's stored objects after a
soft or hard delete and retries with backoff when storage is unavailable.
"""

import asyncio
import logging
import uuid
from datetime import datetime, timezone
from typing import Optional

from app.core.celery_app import celery_app
from app.core.database import async_session_maker
from app.core.logging import log_info
from app.modules.job.tasks import BaseTaskWithRetry
from app.modules.video.repository import VideoRepository
from app.modules.video.service import VideoService

logger = logging.getLogger(__name__)

SCHEDULED_PUBLISH_BATCH = 100


class StorageCleanupTask(BaseTaskWithRetry):
    abstract = True
    retry_config_name = "storage_cleanup"


@celery_app.task(name="video.publish_scheduled_videos")
def publish_scheduled_videos_task() -> dict:
    """Publish SCHEDULED videos whose publish time has passed.

    Returns:
        dict: Result with published and deferred counts
    """
    return asyncio.get_event_loop().run_until_complete(_publish_scheduled_async())


async def _publish_scheduled_async(now: Optional[datetime] = None) -> dict:
    now = now or datetime.now(timezone.utc)
    published = 0
    deferred = 0

    async with async_session_maker() as session:
        service = VideoService(session)
        due = await VideoRepository(session).list_due_scheduled(now, SCHEDULED_PUBLISH_BATCH)
        for video_id in due:
            result = await service.publish_due(video_id)
            if result.applied:
                published += 1
            else:
                deferred += 1

    if due:
        log_info(logger, "Scheduled publish run", published=published, deferred=deferred)
    return {"status": "success", "published_count": published, "deferred_count": deferred}


@celery_app.task(bind=True, base=StorageCleanupTask, name="video.cleanup_video_storage")
def cleanup_video_storage_task(self: StorageCleanupTask, video_id: str) -> dict:
    """Delete every stored object of a video.

    Args:
        video_id: UUID of the video

    Returns:
        dict: Cleanup result with the number of deleted objects
    """
    try:
        deleted = asyncio.get_event_loop().run_until_complete(
            _cleanup_storage_async(uuid.UUID(video_id))
        )
    except Exception as e:
        self.retry_with_backoff(e)
        raise
    return {"status": "success", "video_id": video_id, "deleted": deleted}


async def _cleanup_storage_async(video_id: uuid.UUID) -> int:
    async with async_session_maker() as session:
        return await VideoService(session).cleanup_storage(video_id)
