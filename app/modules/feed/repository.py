"""Feed queries over published videos."""

import uuid
from datetime import datetime
from typing import Optional, Sequence

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.modules.video.models import (
    EncodingStatus,
    ModerationStatus,
    PublishStatus,
    Video,
    VideoLike,
    VideoType,
)


def eligibility_conditions() -> list:
    """SQL form of ``ranking.is_feed_eligible``."""
    return [
        Video.publish_status == PublishStatus.PUBLISHED.value,
        Video.is_active.is_(True),
        Video.encoding_status == EncodingStatus.READY.value,
        Video.moderation_status == ModerationStatus.APPROVED.value,
        Video.deleted_at.is_(None),
        Video.video_type == VideoType.REEL.value,
    ]


class FeedRepository:
    """Read-only queries for the three feed modes."""

    def __init__(self, session: AsyncSession):
        self.session = session

    def _eligible(self, exclude_ids: Sequence[uuid.UUID] = ()):
        query = select(Video).where(*eligibility_conditions())
        if exclude_ids:
            query = query.where(Video.id.notin_(list(exclude_ids)))
        return query

    async def published_since(
        self, since: datetime, exclude_ids: Sequence[uuid.UUID], limit: int
    ) -> list[Video]:
        """Newest eligible videos published after ``since``."""
        result = await self.session.execute(
            self._eligible(exclude_ids)
            .where(Video.published_at >= since)
            .order_by(Video.published_at.desc())
            .limit(limit)
        )
        return list(result.scalars().all())

    async def by_authors(
        self, author_ids: Sequence[uuid.UUID], exclude_ids: Sequence[uuid.UUID], limit: int
    ) -> list[Video]:
        if not author_ids:
            return []
        result = await self.session.execute(
            self._eligible(exclude_ids)
            .where(Video.user_id.in_(list(author_ids)))
            .order_by(Video.published_at.desc())
            .limit(limit)
        )
        return list(result.scalars().all())

    async def trending(
        self, since: datetime, exclude_ids: Sequence[uuid.UUID], limit: int
    ) -> list[Video]:
        result = await self.session.execute(
            self._eligible(exclude_ids)
            .where(Video.published_at >= since)
            .order_by(Video.engagement_score.desc(), Video.published_at.desc())
            .limit(limit)
        )
        return list(result.scalars().all())

    async def liked_hashtags(self, user_id: uuid.UUID, limit: int) -> set[str]:
        """Hashtags of the user's most recently liked videos."""
        result = await self.session.execute(
            select(Video.hashtags)
            .join(VideoLike, VideoLike.video_id == Video.id)
            .where(VideoLike.user_id == user_id)
            .order_by(VideoLike.created_at.desc())
            .limit(limit)
        )
        tags: set[str] = set()
        for hashtags in result.scalars().all():
            tags.update(hashtags or [])
        return tags

    async def published_for_rescoring(
        self, since: datetime, limit: Optional[int] = None
    ) -> list[Video]:
        query = (
            select(Video)
            .where(
                Video.publish_status == PublishStatus.PUBLISHED.value,
                Video.deleted_at.is_(None),
                Video.published_at >= since,
            )
            .order_by(Video.published_at.desc())
        )
        if limit:
            query = query.limit(limit)
        result = await self.session.execute(query)
        return list(result.scalars().all())
