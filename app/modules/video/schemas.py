"""Pydantic schemas for the video module."""

import uuid
from datetime import datetime
from typing import Optional

from pydantic import BaseModel, Field, field_validator

from app.core.config import settings


class VideoResponse(BaseModel):
    """Full video representation."""

    id: uuid.UUID
    user_id: uuid.UUID
    post_id: Optional[uuid.UUID] = None
    video_type: str
    original_size: int
    mime_type: str
    duration: float
    width: int
    height: int
    aspect_ratio: str
    fps: Optional[float] = None
    thumbnail_url: Optional[str] = None
    hls_manifest_url: Optional[str] = None
    mp4_url: Optional[str] = None
    encoding_status: str
    encoding_tiers_status: str
    encoding_error: Optional[str] = None
    moderation_status: str
    audio_status: str
    moderation_reason: Optional[str] = None
    publish_status: str
    scheduled_publish_at: Optional[datetime] = None
    published_at: Optional[datetime] = None
    is_active: bool
    caption: Optional[str] = None
    hashtags: list[str] = []
    view_count: int = 0
    like_count: int = 0
    comment_count: int = 0
    share_count: int = 0
    engagement_score: float = 0.0
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    class Config:
        from_attributes = True


class UploadedVideoSummary(BaseModel):
    """The fields an uploader needs right after ingestion."""

    id: uuid.UUID
    thumbnail_url: Optional[str] = None
    duration: float
    width: int
    height: int
    aspect_ratio: str
    original_size: int
    encoding_status: str
    publish_status: str

    class Config:
        from_attributes = True


class UploadResponse(BaseModel):
    video: UploadedVideoSummary
    request_id: str


class VideoListResponse(BaseModel):
    videos: list[VideoResponse]
    next_cursor: Optional[uuid.UUID] = None


class ScheduleRequest(BaseModel):
    publish_at: datetime


class RejectRequest(BaseModel):
    reason: str = Field(..., min_length=1, max_length=1000)

    @field_validator("reason")
    @classmethod
    def strip_reason(cls, v: str) -> str:
        v = v.strip()
        if not v:
            raise ValueError("Rejection reason is required")
        return v


class ModerationQueueResponse(BaseModel):
    videos: list[VideoResponse]
    total_pending: int


class VideoStatsResponse(BaseModel):
    total_videos: int
    pending_encoding: int
    pending_moderation: int
    published: int
    failed_encoding: int
    rejected: int
    total_views: int
    total_likes: int


class LikeResponse(BaseModel):
    liked: bool
    like_count: int


class LikeStatusResponse(BaseModel):
    liked: bool


class SuccessResponse(BaseModel):
    success: bool = True
    message: Optional[str] = None


class CommentCreateRequest(BaseModel):
    content: str = Field(..., max_length=settings.VIDEO_CAPTION_MAX_LENGTH)
    parent_id: Optional[uuid.UUID] = None

    @field_validator("content")
    @classmethod
    def strip_content(cls, v: str) -> str:
        v = v.strip()
        if not v:
            raise ValueError("Comment content is required")
        return v


class CommentResponse(BaseModel):
    id: uuid.UUID
    video_id: uuid.UUID
    user_id: uuid.UUID
    parent_id: Optional[uuid.UUID] = None
    content: str
    status: str
    reply_count: int = 0
    created_at: Optional[datetime] = None

    class Config:
        from_attributes = True


class CommentListResponse(BaseModel):
    comments: list[CommentResponse]
    next_cursor: Optional[uuid.UUID] = None


class VideoHealthResponse(BaseModel):
    encoding_backend: str
    encoding_available: bool
    storage_backend: str
    content_safety_configured: bool
    transcription_configured: bool
    audio_policy: str
    environment: str


class ReprocessResponse(BaseModel):
    video_id: uuid.UUID
    backend: str
    submitted: bool
