"""Feed service.

Three modes over the same eligibility filter:

* for_you    weighted sampling across recency, engagement, social,
             trending and hashtag affinity
* following  related authors only, recency x relationship strength
* trending   engagement score within a recent window
"""

import logging
import random
import uuid
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Optional, Sequence

from sqlalchemy.ext.asyncio import AsyncSession

from app.core.config import settings
from app.core.logging import log_info
from app.core.metrics import FEED_REQUESTS_TOTAL
from app.core.tracing import create_span
from app.modules.feed.exceptions import AuthenticationRequiredError, InvalidFeedModeError
from app.modules.feed.ranking import (
    ANONYMOUS,
    ViewerContext,
    is_feed_eligible,
    rank_following,
    score_for_you,
    weighted_sample,
)
from app.modules.feed.relationships import DatabaseRelationshipProvider, RelationshipProvider
from app.modules.feed.repository import FeedRepository

logger = logging.getLogger(__name__)


class FeedMode(str, Enum):
    FOR_YOU = "for_you"
    FOLLOWING = "following"
    TRENDING = "trending"

    @classmethod
    def parse(cls, value: Optional[str]) -> "FeedMode":
        if not value:
            return cls.FOR_YOU
        try:
            return cls(value.strip().lower().replace("-", "_"))
        except ValueError:
            raise InvalidFeedModeError(
                f"Invalid feed mode: {value}. Allowed: for_you, following, trending"
            )


ALGORITHMS = {
    FeedMode.FOR_YOU: "probability-cloud",
    FeedMode.FOLLOWING: "social-recency",
    FeedMode.TRENDING: "engagement-window",
}


@dataclass
class FeedPage:
    mode: FeedMode
    videos: list
    candidate_count: int

    @property
    def algorithm(self) -> str:
        return ALGORITHMS[self.mode]


def clamp_limit(limit: Optional[int]) -> int:
    if not limit:
        return settings.FEED_DEFAULT_LIMIT
    return max(1, min(limit, settings.FEED_MAX_LIMIT))


class FeedService:
    """Builds feed pages for a viewer."""

    def __init__(
        self,
        session: Optional[AsyncSession] = None,
        repository: Optional[FeedRepository] = None,
        relationships: Optional[RelationshipProvider] = None,
        rng: Optional[random.Random] = None,
    ):
        self.repository = repository or FeedRepository(session)
        self.relationships = relationships or DatabaseRelationshipProvider(session)
        self.rng = rng or random.Random()

    async def get_feed(
        self,
        mode: FeedMode,
        viewer_id: Optional[uuid.UUID] = None,
        limit: Optional[int] = None,
        exclude_ids: Sequence[uuid.UUID] = (),
        now: Optional[datetime] = None,
    ) -> FeedPage:
        """Build one page.

        Raises:
            AuthenticationRequiredError: Following feed without a viewer
        """
        limit = clamp_limit(limit)
        now = now or datetime.now(timezone.utc)
        FEED_REQUESTS_TOTAL.labels(mode=mode.value).inc()

        with create_span("feed.generate", {"feed.mode": mode.value, "feed.limit": limit}):
            if mode == FeedMode.FOLLOWING:
                if viewer_id is None:
                    raise AuthenticationRequiredError()
                page = await self._following(viewer_id, limit, exclude_ids, now)
            elif mode == FeedMode.TRENDING:
                page = await self._trending(limit, exclude_ids, now)
            else:
                page = await self._for_you(viewer_id, limit, exclude_ids, now)

        log_info(logger, "Feed generated", mode=mode.value, candidates=page.candidate_count,
                 selected=len(page.videos),
                 viewer_id=str(viewer_id) if viewer_id else None)
        return page

    async def _viewer_context(self, viewer_id: Optional[uuid.UUID]) -> ViewerContext:
        if viewer_id is None:
            return ANONYMOUS
        multipliers = await self.relationships.multipliers(viewer_id)
        hashtags = await self.repository.liked_hashtags(
            viewer_id, settings.FEED_LIKED_HISTORY_SIZE
        )
        return ViewerContext(related_authors=set(multipliers), liked_hashtags=hashtags)

    async def _for_you(
        self,
        viewer_id: Optional[uuid.UUID],
        limit: int,
        exclude_ids: Sequence[uuid.UUID],
        now: datetime,
    ) -> FeedPage:
        since = now - timedelta(days=settings.FEED_CANDIDATE_WINDOW_DAYS)
        candidates = await self.repository.published_since(
            since, exclude_ids, settings.FEED_MAX_CANDIDATES
        )
        candidates = [v for v in candidates if is_feed_eligible(v)]
        if not candidates:
            return FeedPage(FeedMode.FOR_YOU, [], 0)

        viewer = await self._viewer_context(viewer_id)
        scored = score_for_you(
            candidates, viewer, now, half_life_hours=settings.FEED_RECENCY_HALF_LIFE_HOURS
        )
        selected = weighted_sample(scored, limit, self.rng)
        return FeedPage(FeedMode.FOR_YOU, [s.video for s in selected], len(candidates))

    async def _following(
        self,
        viewer_id: uuid.UUID,
        limit: int,
        exclude_ids: Sequence[uuid.UUID],
        now: datetime,
    ) -> FeedPage:
        multipliers = await self.relationships.multipliers(viewer_id)
        if not multipliers:
            return FeedPage(FeedMode.FOLLOWING, [], 0)

        candidates = await self.repository.by_authors(
            list(multipliers), exclude_ids, settings.FEED_FOLLOWING_MAX
        )
        candidates = [v for v in candidates if is_feed_eligible(v)]
        ranked = rank_following(
            candidates, multipliers, limit, now,
            half_life_hours=settings.FEED_FOLLOWING_HALF_LIFE_HOURS,
        )
        return FeedPage(FeedMode.FOLLOWING, [s.video for s in ranked], len(candidates))

    async def _trending(
        self, limit: int, exclude_ids: Sequence[uuid.UUID], now: datetime
    ) -> FeedPage:
        since = now - timedelta(hours=settings.FEED_TRENDING_WINDOW_HOURS)
        videos = await self.repository.trending(since, exclude_ids, limit)
        videos = [v for v in videos if is_feed_eligible(v)]
        return FeedPage(FeedMode.TRENDING, videos, len(videos))
