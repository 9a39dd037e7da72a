"""Feed ranking.

For-you pages are drawn by weighted sampling without replacement over a
combined score of five dimensions, so repeated requests surface different
pages. Following pages are a deterministic recency x relationship ordering.

Functions here take any object with the Video attribute names, which keeps
them independent of the database.
"""

import heapq
import random
import uuid
from dataclasses import dataclass, field
from datetime import datetime
from typing import Iterable, Optional, Sequence

from app.modules.feed.scoring import age_hours
from app.modules.video.models import (
    EncodingStatus,
    ModerationStatus,
    PublishStatus,
    VideoType,
)

MIN_SAMPLING_WEIGHT = 0.01


@dataclass(frozen=True)
class FeedWeights:
    recency: float = 0.25
    engagement: float = 0.30
    social: float = 0.20
    trending: float = 0.15
    hashtag: float = 0.10


DEFAULT_WEIGHTS = FeedWeights()


@dataclass
class ViewerContext:
    """What the for-you ranking knows about the viewer."""

    related_authors: set = field(default_factory=set)
    liked_hashtags: set = field(default_factory=set)


ANONYMOUS = ViewerContext()


@dataclass
class ScoredVideo:
    video: object
    recency: float = 0.0
    engagement: float = 0.0
    social: float = 0.0
    trending: float = 0.0
    hashtag: float = 0.0
    combined: float = 0.0

    @property
    def video_id(self) -> uuid.UUID:
        return self.video.id


def is_feed_eligible(video) -> bool:
    """A published reel that is active, encoded, approved and not deleted."""
    return (
        video.video_type == VideoType.REEL.value
        and video.publish_status == PublishStatus.PUBLISHED.value
        and bool(video.is_active)
        and video.encoding_status == EncodingStatus.READY.value
        and video.moderation_status == ModerationStatus.APPROVED.value
        and video.deleted_at is None
    )


def recency_score(hours: float, half_life_hours: float) -> float:
    return 0.5 ** (hours / half_life_hours)


def jaccard(a: Iterable[str], b: Iterable[str]) -> float:
    a, b = set(a), set(b)
    if not a or not b:
        return 0.0
    return len(a & b) / len(a | b)


def trending_score(views: int, hours: float, max_views: int) -> float:
    """View velocity against a rough day-long normalisation."""
    velocity = views / max(1.0, hours)
    return min(1.0, velocity / max(1.0, max_views / 24))


def score_for_you(
    candidates: Sequence,
    viewer: ViewerContext = ANONYMOUS,
    now: Optional[datetime] = None,
    weights: FeedWeights = DEFAULT_WEIGHTS,
    half_life_hours: float = 48.0,
) -> list[ScoredVideo]:
    """Score every candidate along each dimension and combine."""
    if not candidates:
        return []
    max_engagement = max(1.0, max(v.engagement_score or 0.0 for v in candidates))
    max_views = max(1, max(v.view_count or 0 for v in candidates))

    scored = []
    for video in candidates:
        hours = age_hours(video.published_at, video.created_at, now)
        item = ScoredVideo(
            video=video,
            recency=recency_score(hours, half_life_hours),
            engagement=(video.engagement_score or 0.0) / max_engagement,
            social=1.0 if video.user_id in viewer.related_authors else 0.0,
            trending=trending_score(video.view_count or 0, hours, max_views),
            hashtag=jaccard(video.hashtags or [], viewer.liked_hashtags),
        )
        item.combined = (
            item.recency * weights.recency
            + item.engagement * weights.engagement
            + item.social * weights.social
            + item.trending * weights.trending
            + item.hashtag * weights.hashtag
        )
        scored.append(item)
    return scored


def weighted_sample(
    scored: Sequence[ScoredVideo], limit: int, rng: Optional[random.Random] = None
) -> list[ScoredVideo]:
    """Draw ``limit`` items without replacement, weighted by combined score.

    Each item gets the key ``u ** (1 / w)`` for a uniform ``u``; the largest
    keys win. With no more candidates than ``limit`` every item is returned,
    best first.
    """
    if len(scored) <= limit:
        return sorted(scored, key=lambda s: s.combined, reverse=True)
    rng = rng or random.Random()
    keyed = [
        (rng.random() ** (1.0 / max(MIN_SAMPLING_WEIGHT, item.combined)), index)
        for index, item in enumerate(scored)
    ]
    return [scored[index] for _, index in heapq.nlargest(limit, keyed)]


def rank_following(
    candidates: Sequence,
    multipliers: dict,
    limit: int,
    now: Optional[datetime] = None,
    half_life_hours: float = 24.0,
) -> list[ScoredVideo]:
    """Recency scaled by relationship strength, best first."""
    scored = []
    for video in candidates:
        hours = age_hours(video.published_at, video.created_at, now)
        recency = recency_score(hours, half_life_hours)
        multiplier = multipliers.get(video.user_id, 1.0)
        scored.append(
            ScoredVideo(video=video, recency=recency, social=multiplier,
                        combined=recency * multiplier)
        )
    scored.sort(key=lambda s: s.combined, reverse=True)
    return scored[:limit]
