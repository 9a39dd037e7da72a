"""Engagement scoring.

score = raw_engagement * decay ** age_hours * quality * new_content

raw_engagement is a weighted sum of interactions plus one, so a fresh video
with no interactions still has a positive, decaying score. Scores of videos
with equal interactions strictly decrease with age.
"""

from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Optional


@dataclass(frozen=True)
class ScoringConfig:
    """Tunable weights of the engagement score."""

    view_weight: float = 0.1
    like_weight: float = 1.0
    comment_weight: float = 2.0
    share_weight: float = 3.0
    hourly_decay: float = 0.95
    quality_floor: float = 0.8
    quality_range: float = 0.4
    new_content_hours: float = 24.0
    new_content_boost: float = 1.2


DEFAULT_SCORING = ScoringConfig()


@dataclass(frozen=True)
class Interactions:
    views: int = 0
    likes: int = 0
    comments: int = 0
    shares: int = 0


def age_hours(
    published_at: Optional[datetime],
    created_at: Optional[datetime],
    now: Optional[datetime] = None,
) -> float:
    """Hours since publication, falling back to creation; never negative."""
    reference = published_at or created_at
    if reference is None:
        return 0.0
    if reference.tzinfo is None:
        reference = reference.replace(tzinfo=timezone.utc)
    now = now or datetime.now(timezone.utc)
    return max(0.0, (now - reference).total_seconds() / 3600)


def quality_factor(interactions: Interactions, config: ScoringConfig = DEFAULT_SCORING) -> float:
    """Active-interaction ratio mapped onto [floor, floor + range]."""
    active = interactions.likes + interactions.comments + interactions.shares
    ratio = min(1.0, active / max(1, interactions.views))
    return config.quality_floor + config.quality_range * ratio


def engagement_score(
    interactions: Interactions,
    hours: float,
    config: ScoringConfig = DEFAULT_SCORING,
) -> float:
    raw = (
        1.0
        + config.view_weight * interactions.views
        + config.like_weight * interactions.likes
        + config.comment_weight * interactions.comments
        + config.share_weight * interactions.shares
    )
    decay = config.hourly_decay ** max(0.0, hours)
    boost = config.new_content_boost if hours < config.new_content_hours else 1.0
    return raw * decay * quality_factor(interactions, config) * boost


def score_video(video, now: Optional[datetime] = None, config: ScoringConfig = DEFAULT_SCORING) -> float:
    """Engagement score of a Video row from its counters and timestamps."""
    interactions = Interactions(
        views=video.view_count or 0,
        likes=video.like_count or 0,
        comments=video.comment_count or 0,
        shares=video.share_count or 0,
    )
    return engagement_score(
        interactions, age_hours(video.published_at, video.created_at, now), config
    )
