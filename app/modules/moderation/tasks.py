"""Celery tasks for video moderation."""

import asyncio
import logging
import uuid

from app.core.celery_app import celery_app
from app.core.database import async_session_maker
from app.core.logging import log_error
from app.modules.moderation.service import VideoModerationService, apply_moderation_fallback
from app.modules.video.state_machine import VideoStateMachine

logger = logging.getLogger(__name__)

MODERATE_TASK_NAME = "moderation.moderate_video"


async def enqueue_moderation(video_id: uuid.UUID) -> None:
    """Queue a moderation run for a video."""
    moderate_video_task.apply_async(args=[str(video_id)])


@celery_app.task(bind=True, name=MODERATE_TASK_NAME)
def moderate_video_task(self, video_id: str) -> dict:
    """Run visual, audio and caption moderation for a video.

    Args:
        video_id: UUID of the video

    Returns:
        dict: Moderation result
    """
    return asyncio.get_event_loop().run_until_complete(
        _moderate_video_async(uuid.UUID(video_id))
    )


async def _moderate_video_async(video_id: uuid.UUID) -> dict:
    async with async_session_maker() as session:
        try:
            decision = await VideoModerationService(session).moderate_video(video_id)
        except Exception as e:
            await session.rollback()
            log_error(logger, "Moderation run crashed", e, video_id=str(video_id))
            await apply_moderation_fallback(VideoStateMachine(session), video_id, str(e)[:200])
            await session.commit()
            return {"status": "fallback", "video_id": str(video_id)}

    if decision is None:
        return {"status": "skipped", "video_id": str(video_id)}
    return {
        "status": decision.status.value,
        "audio_status": decision.audio_status.value,
        "video_id": str(video_id),
    }
