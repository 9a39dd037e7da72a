"""Celery tasks for feeds."""

import asyncio
import logging
from datetime import datetime, timedelta, timezone
from typing import Optional

from app.core.celery_app import celery_app
from app.core.config import settings
from app.core.database import async_session_maker
from app.core.logging import log_info
from app.modules.feed.repository import FeedRepository
from app.modules.feed.scoring import score_video
from app.modules.video.repository import VideoRepository

logger = logging.getLogger(__name__)


@celery_app.task(name="feed.refresh_engagement_scores")
def refresh_engagement_scores_task() -> dict:
    """Re-apply time decay to recently published videos.

    Scores are otherwise only recomputed on interaction, so a video nobody
    touches would keep its score forever.

    Returns:
        dict: Result with the number of rescored videos
    """
    return asyncio.get_event_loop().run_until_complete(_refresh_scores_async())


async def _refresh_scores_async(now: Optional[datetime] = None) -> dict:
    now = now or datetime.now(timezone.utc)
    since = now - timedelta(days=settings.FEED_CANDIDATE_WINDOW_DAYS)

    async with async_session_maker() as session:
        video_repo = VideoRepository(session)
        videos = await FeedRepository(session).published_for_rescoring(since)
        for video in videos:
            await video_repo.set_engagement_score(video.id, score_video(video, now))
        await session.commit()

    log_info(logger, "Engagement scores refreshed", videos=len(videos))
    return {"status": "success", "rescored": len(videos)}
