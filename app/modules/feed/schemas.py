"""Pydantic schemas for feeds."""

import uuid
from datetime import datetime
from typing import Optional

from pydantic import BaseModel


class FeedVideo(BaseModel):
    id: uuid.UUID
    user_id: uuid.UUID
    caption: Optional[str] = None
    hashtags: list[str] = []
    thumbnail_url: Optional[str] = None
    hls_manifest_url: Optional[str] = None
    mp4_url: Optional[str] = None
    duration: float
    width: int
    height: int
    aspect_ratio: str
    view_count: int = 0
    like_count: int = 0
    comment_count: int = 0
    share_count: int = 0
    engagement_score: float = 0.0
    published_at: Optional[datetime] = None

    class Config:
        from_attributes = True


class FeedResponse(BaseModel):
    mode: str
    algorithm: str
    videos: list[FeedVideo]
    candidate_count: int
