"""Likes, comments, views and shares.

Like and comment counters are recounted from their tables after every
change; views and shares are atomic increments. Each change recomputes the
video's engagement score.
"""

import logging
import uuid
from typing import Optional

from sqlalchemy.ext.asyncio import AsyncSession

from app.core.logging import log_info, log_warning
from app.modules.auth.dependencies import CurrentUser
from app.modules.feed.scoring import score_video
from app.modules.moderation.text_policy import ContentType, TextPolicy, TextVerdict
from app.modules.video.exceptions import (
    CommentNotFoundError,
    CommentValidationError,
    VideoAccessDeniedError,
    VideoNotFoundError,
)
from app.modules.video.models import PublishStatus, Video, VideoComment
from app.modules.video.repository import (
    VideoCommentRepository,
    VideoLikeRepository,
    VideoRepository,
)

logger = logging.getLogger(__name__)


class VideoInteractionService:
    """Viewer interactions with published videos."""

    def __init__(self, session: AsyncSession, text_policy: Optional[TextPolicy] = None):
        self.session = session
        self.video_repo = VideoRepository(session)
        self.like_repo = VideoLikeRepository(session)
        self.comment_repo = VideoCommentRepository(session)
        self.text_policy = text_policy or TextPolicy()

    async def _get_published(self, video_id: uuid.UUID) -> Video:
        video = await self.video_repo.get_by_id(video_id, include_deleted=False)
        if (
            video is None
            or not video.is_active
            or video.publish_status != PublishStatus.PUBLISHED.value
        ):
            raise VideoNotFoundError()
        return video

    async def recompute_score(self, video_id: uuid.UUID) -> Optional[float]:
        video = await self.video_repo.refresh(video_id)
        if video is None:
            return None
        score = score_video(video)
        await self.video_repo.set_engagement_score(video_id, score)
        return score

    # ============================================
    # Likes
    # ============================================

    async def like(self, video_id: uuid.UUID, user_id: uuid.UUID) -> int:
        """Like a video; liking twice is harmless. Returns the new like count."""
        await self._get_published(video_id)
        await self.like_repo.add(video_id, user_id)
        return await self._refresh_likes(video_id)

    async def unlike(self, video_id: uuid.UUID, user_id: uuid.UUID) -> int:
        await self._get_published(video_id)
        await self.like_repo.remove(video_id, user_id)
        return await self._refresh_likes(video_id)

    async def _refresh_likes(self, video_id: uuid.UUID) -> int:
        count = await self.like_repo.count(video_id)
        await self.video_repo.set_like_count(video_id, count)
        await self.recompute_score(video_id)
        await self.session.commit()
        return count

    async def is_liked(self, video_id: uuid.UUID, user_id: uuid.UUID) -> bool:
        """Like status; lookup failures read as not liked."""
        try:
            return await self.like_repo.exists(video_id, user_id)
        except Exception as e:
            log_warning(logger, "Like status lookup failed",
                        video_id=str(video_id), error=str(e)[:200])
            return False

    # ============================================
    # Views and shares
    # ============================================

    async def record_view(self, video_id: uuid.UUID) -> None:
        await self._record_counter(video_id, "view_count")

    async def record_share(self, video_id: uuid.UUID) -> None:
        await self._record_counter(video_id, "share_count")

    async def _record_counter(self, video_id: uuid.UUID, column: str) -> None:
        """Count a view or share of a public video.

        Raises:
            VideoNotFoundError: Unless the video is published and active
        """
        # Losing an increment is preferable to failing playback
        try:
            await self._get_published(video_id)
            await self.video_repo.increment_counter(video_id, column)
            await self.recompute_score(video_id)
            await self.session.commit()
        except VideoNotFoundError:
            raise
        except Exception as e:
            await self.session.rollback()
            log_warning(logger, "Failed to record video interaction",
                        video_id=str(video_id), counter=column, error=str(e)[:200])

    # ============================================
    # Comments
    # ============================================

    async def list_comments(
        self, video_id: uuid.UUID, cursor: Optional[uuid.UUID], limit: int
    ) -> tuple[list[tuple[VideoComment, int]], Optional[uuid.UUID]]:
        await self._get_published(video_id)
        return await self.comment_repo.list_top_level(video_id, cursor, limit)

    async def add_comment(
        self,
        video_id: uuid.UUID,
        user_id: uuid.UUID,
        content: str,
        parent_id: Optional[uuid.UUID] = None,
    ) -> VideoComment:
        """Add a comment or a reply.

        Raises:
            CommentValidationError: Empty text, text blocked by the text
                policy, or a parent comment from another video
        """
        await self._get_published(video_id)
        content = (content or "").strip()
        if not content:
            raise CommentValidationError("Comment content is required")

        result = self.text_policy.evaluate(content, ContentType.VIDEO_COMMENT)
        if result.verdict == TextVerdict.BLOCK:
            log_info(logger, "Comment blocked by text policy",
                     video_id=str(video_id), user_id=str(user_id), reason=result.reason)
            raise CommentValidationError("Comment violates community guidelines")

        if parent_id is not None:
            parent = await self.comment_repo.get_by_id(parent_id)
            if parent is None or parent.video_id != video_id:
                raise CommentValidationError("Parent comment does not belong to this video")

        comment = await self.comment_repo.create(video_id, user_id, content, parent_id)
        await self._refresh_comments(video_id)
        return comment

    async def hide_comment(
        self, video_id: uuid.UUID, comment_id: uuid.UUID, user: CurrentUser
    ) -> None:
        comment = await self.comment_repo.get_by_id(comment_id)
        if comment is None or comment.video_id != video_id:
            raise CommentNotFoundError()
        if comment.user_id != user.id and not user.is_admin:
            raise VideoAccessDeniedError("Not authorized to delete this comment")
        await self.comment_repo.hide(comment_id)
        await self._refresh_comments(video_id)

    async def _refresh_comments(self, video_id: uuid.UUID) -> None:
        count = await self.comment_repo.count_visible(video_id)
        await self.video_repo.set_comment_count(video_id, count)
        await self.recompute_score(video_id)
        await self.session.commit()
