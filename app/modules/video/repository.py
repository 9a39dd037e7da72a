"""Video repository for database operations.

State columns are written only through the state machine; this repository
creates rows, reads them, and maintains counters.
"""

import uuid
from datetime import datetime
from typing import Any, Optional

from sqlalchemy import delete, func as sql_func, select, tuple_, update
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.ext.asyncio import AsyncSession

from app.modules.video.models import (
    CommentStatus,
    EncodingStatus,
    ModerationStatus,
    PublishStatus,
    Video,
    VideoComment,
    VideoLike,
)


async def _cursor_key(session: AsyncSession, model, column, cursor: Optional[uuid.UUID]):
    if cursor is None:
        return None
    result = await session.execute(select(column).where(model.id == cursor))
    value = result.scalar_one_or_none()
    return None if value is None else (value, cursor)


def _page(rows: list, limit: int) -> tuple[list, Optional[uuid.UUID]]:
    """Split a limit+1 fetch into the page and the next cursor."""
    if len(rows) > limit:
        rows = rows[:limit]
        return rows, rows[-1].id
    return rows, None


class VideoRepository:
    """Repository for Video rows."""

    def __init__(self, session: AsyncSession):
        self.session = session

    async def create(self, **fields: Any) -> Video:
        """Create a video in DRAFT/PENDING state.

        Returns:
            Video: Created video instance
        """
        fields.setdefault("encoding_status", EncodingStatus.PENDING.value)
        fields.setdefault("publish_status", PublishStatus.DRAFT.value)
        fields.setdefault("moderation_status", ModerationStatus.PENDING.value)
        fields.setdefault("is_active", True)
        video = Video(**fields)
        self.session.add(video)
        await self.session.flush()
        return video

    async def get_by_id(
        self, video_id: uuid.UUID, include_deleted: bool = True
    ) -> Optional[Video]:
        query = select(Video).where(Video.id == video_id)
        if not include_deleted:
            query = query.where(Video.deleted_at.is_(None))
        result = await self.session.execute(query)
        return result.scalar_one_or_none()

    async def refresh(self, video_id: uuid.UUID) -> Optional[Video]:
        """Reload a row, overwriting any stale identity-map copy."""
        result = await self.session.execute(
            select(Video)
            .where(Video.id == video_id)
            .execution_options(populate_existing=True)
        )
        return result.scalar_one_or_none()

    async def list_published_by_user(
        self, user_id: uuid.UUID, cursor: Optional[uuid.UUID], limit: int
    ) -> tuple[list[Video], Optional[uuid.UUID]]:
        query = select(Video).where(
            Video.user_id == user_id,
            Video.publish_status == PublishStatus.PUBLISHED.value,
            Video.is_active.is_(True),
            Video.deleted_at.is_(None),
        )
        key = await _cursor_key(self.session, Video, Video.published_at, cursor)
        if key:
            query = query.where(tuple_(Video.published_at, Video.id) < key)
        query = query.order_by(Video.published_at.desc(), Video.id.desc()).limit(limit + 1)
        result = await self.session.execute(query)
        return _page(list(result.scalars().all()), limit)

    async def list_drafts(self, user_id: uuid.UUID, limit: int = 100) -> list[Video]:
        result = await self.session.execute(
            select(Video)
            .where(
                Video.user_id == user_id,
                Video.publish_status == PublishStatus.DRAFT.value,
                Video.deleted_at.is_(None),
            )
            .order_by(Video.created_at.desc())
            .limit(limit)
        )
        return list(result.scalars().all())

    async def list_scheduled(self, user_id: uuid.UUID, limit: int = 100) -> list[Video]:
        result = await self.session.execute(
            select(Video)
            .where(
                Video.user_id == user_id,
                Video.publish_status == PublishStatus.SCHEDULED.value,
                Video.deleted_at.is_(None),
            )
            .order_by(Video.scheduled_publish_at.asc())
            .limit(limit)
        )
        return list(result.scalars().all())

    async def list_due_scheduled(self, now: datetime, limit: int = 100) -> list[uuid.UUID]:
        result = await self.session.execute(
            select(Video.id)
            .where(
                Video.publish_status == PublishStatus.SCHEDULED.value,
                Video.scheduled_publish_at <= now,
                Video.deleted_at.is_(None),
            )
            .order_by(Video.scheduled_publish_at.asc())
            .limit(limit)
        )
        return list(result.scalars().all())

    async def list_for_admin(
        self,
        encoding_status: Optional[str],
        moderation_status: Optional[str],
        cursor: Optional[uuid.UUID],
        limit: int,
    ) -> tuple[list[Video], Optional[uuid.UUID]]:
        query = select(Video)
        if encoding_status:
            query = query.where(Video.encoding_status == encoding_status)
        if moderation_status:
            query = query.where(Video.moderation_status == moderation_status)
        key = await _cursor_key(self.session, Video, Video.created_at, cursor)
        if key:
            query = query.where(tuple_(Video.created_at, Video.id) < key)
        query = query.order_by(Video.created_at.desc(), Video.id.desc()).limit(limit + 1)
        result = await self.session.execute(query)
        return _page(list(result.scalars().all()), limit)

    def _moderation_queue_conditions(self) -> list:
        return [
            Video.moderation_status == ModerationStatus.PENDING.value,
            Video.encoding_status == EncodingStatus.READY.value,
            Video.deleted_at.is_(None),
        ]

    async def moderation_queue(self, limit: int) -> tuple[list[Video], int]:
        """Oldest-first videos awaiting review, plus the total waiting."""
        conditions = self._moderation_queue_conditions()
        result = await self.session.execute(
            select(Video).where(*conditions).order_by(Video.created_at.asc()).limit(limit)
        )
        total = await self.session.execute(
            select(sql_func.count()).select_from(Video).where(*conditions)
        )
        return list(result.scalars().all()), total.scalar_one()

    async def stats(self) -> dict[str, int]:
        def count_where(*conditions):
            return (
                select(sql_func.count())
                .select_from(Video)
                .where(Video.deleted_at.is_(None), *conditions)
                .scalar_subquery()
            )

        query = select(
            count_where().label("total_videos"),
            count_where(Video.encoding_status == EncodingStatus.PENDING.value).label(
                "pending_encoding"
            ),
            count_where(Video.moderation_status == ModerationStatus.PENDING.value).label(
                "pending_moderation"
            ),
            count_where(Video.publish_status == PublishStatus.PUBLISHED.value).label(
                "published"
            ),
            count_where(Video.encoding_status == EncodingStatus.FAILED.value).label(
                "failed_encoding"
            ),
            count_where(Video.moderation_status == ModerationStatus.REJECTED.value).label(
                "rejected"
            ),
            select(sql_func.coalesce(sql_func.sum(Video.view_count), 0))
            .scalar_subquery()
            .label("total_views"),
            select(sql_func.coalesce(sql_func.sum(Video.like_count), 0))
            .scalar_subquery()
            .label("total_likes"),
        )
        row = (await self.session.execute(query)).one()
        return {key: int(value) for key, value in row._mapping.items()}

    async def increment_counter(self, video_id: uuid.UUID, column: str) -> None:
        """Atomically add one to a monotonic counter (views, shares)."""
        col = getattr(Video, column)
        await self.session.execute(
            update(Video)
            .where(Video.id == video_id)
            .values({column: col + 1})
            .execution_options(synchronize_session=False)
        )

    async def increment_phase2_attempts(self, video_id: uuid.UUID) -> None:
        await self.increment_counter(video_id, "phase2_attempts")

    async def set_like_count(self, video_id: uuid.UUID, count: int) -> None:
        await self._set(video_id, like_count=count)

    async def set_comment_count(self, video_id: uuid.UUID, count: int) -> None:
        await self._set(video_id, comment_count=count)

    async def set_engagement_score(self, video_id: uuid.UUID, score: float) -> None:
        await self._set(video_id, engagement_score=score)

    async def set_thumbnail(self, video_id: uuid.UUID, thumbnail_url: str) -> None:
        await self._set(video_id, thumbnail_url=thumbnail_url)

    async def _set(self, video_id: uuid.UUID, **values: Any) -> None:
        await self.session.execute(
            update(Video)
            .where(Video.id == video_id)
            .values(**values)
            .execution_options(synchronize_session=False)
        )

    async def hard_delete(self, video_id: uuid.UUID) -> bool:
        result = await self.session.execute(delete(Video).where(Video.id == video_id))
        return result.rowcount > 0


class VideoLikeRepository:
    """Repository for VideoLike rows."""

    def __init__(self, session: AsyncSession):
        self.session = session

    async def add(self, video_id: uuid.UUID, user_id: uuid.UUID) -> None:
        """Insert a like; an existing like is left as is."""
        await self.session.execute(
            pg_insert(VideoLike)
            .values(id=uuid.uuid4(), video_id=video_id, user_id=user_id)
            .on_conflict_do_nothing(index_elements=["video_id", "user_id"])
        )

    async def remove(self, video_id: uuid.UUID, user_id: uuid.UUID) -> None:
        await self.session.execute(
            delete(VideoLike).where(
                VideoLike.video_id == video_id, VideoLike.user_id == user_id
            )
        )

    async def exists(self, video_id: uuid.UUID, user_id: uuid.UUID) -> bool:
        result = await self.session.execute(
            select(VideoLike.id).where(
                VideoLike.video_id == video_id, VideoLike.user_id == user_id
            )
        )
        return result.scalar_one_or_none() is not None

    async def count(self, video_id: uuid.UUID) -> int:
        result = await self.session.execute(
            select(sql_func.count()).select_from(VideoLike).where(VideoLike.video_id == video_id)
        )
        return result.scalar_one()


class VideoCommentRepository:
    """Repository for VideoComment rows."""

    def __init__(self, session: AsyncSession):
        self.session = session

    async def create(
        self,
        video_id: uuid.UUID,
        user_id: uuid.UUID,
        content: str,
        parent_id: Optional[uuid.UUID] = None,
    ) -> VideoComment:
        comment = VideoComment(
            video_id=video_id,
            user_id=user_id,
            content=content,
            parent_id=parent_id,
            status=CommentStatus.VISIBLE.value,
        )
        self.session.add(comment)
        await self.session.flush()
        return comment

    async def get_by_id(self, comment_id: uuid.UUID) -> Optional[VideoComment]:
        result = await self.session.execute(
            select(VideoComment).where(VideoComment.id == comment_id)
        )
        return result.scalar_one_or_none()

    async def list_top_level(
        self, video_id: uuid.UUID, cursor: Optional[uuid.UUID], limit: int
    ) -> tuple[list[tuple[VideoComment, int]], Optional[uuid.UUID]]:
        """Visible top-level comments, newest first, with visible reply counts."""
        # Correlated count of visible replies per comment
        reply_table = VideoComment.__table__.alias("reply")
        replies = (
            select(sql_func.count(reply_table.c.id))
            .where(
                reply_table.c.parent_id == VideoComment.id,
                reply_table.c.status == CommentStatus.VISIBLE.value,
            )
            .correlate(VideoComment)
            .scalar_subquery()
        )

        query = select(VideoComment, replies.label("reply_count")).where(
            VideoComment.video_id == video_id,
            VideoComment.parent_id.is_(None),
            VideoComment.status == CommentStatus.VISIBLE.value,
        )
        key = await _cursor_key(self.session, VideoComment, VideoComment.created_at, cursor)
        if key:
            query = query.where(tuple_(VideoComment.created_at, VideoComment.id) < key)
        query = query.order_by(
            VideoComment.created_at.desc(), VideoComment.id.desc()
        ).limit(limit + 1)

        rows = [(row[0], int(row[1])) for row in (await self.session.execute(query)).all()]
        next_cursor = None
        if len(rows) > limit:
            rows = rows[:limit]
            next_cursor = rows[-1][0].id
        return rows, next_cursor

    async def hide(self, comment_id: uuid.UUID) -> None:
        await self.session.execute(
            update(VideoComment)
            .where(VideoComment.id == comment_id)
            .values(status=CommentStatus.HIDDEN.value)
            .execution_options(synchronize_session=False)
        )

    async def count_visible(self, video_id: uuid.UUID) -> int:
        result = await self.session.execute(
            select(sql_func.count())
            .select_from(VideoComment)
            .where(
                VideoComment.video_id == video_id,
                VideoComment.status == CommentStatus.VISIBLE.value,
            )
        )
        return result.scalar_one()
