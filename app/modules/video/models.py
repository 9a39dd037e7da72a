"""Video models for short-form video ingestion, encoding and engagement.

Implements Video, VideoLike and VideoComment. State columns store enum values
as strings; every change to them goes through app.modules.video.state_machine.
"""

import uuid
from datetime import datetime
from enum import Enum
from typing import Optional

from sqlalchemy import (
    Boolean,
    DateTime,
    Float,
    ForeignKey,
    Integer,
    BigInteger,
    String,
    Text,
    JSON,
    UniqueConstraint,
    Index,
)
from sqlalchemy.dialects.postgresql import UUID, ARRAY
from sqlalchemy.orm import Mapped, mapped_column
from sqlalchemy.sql import func

from app.core.database import Base


class VideoType(str, Enum):
    """What a video is uploaded as."""

    REEL = "REEL"
    POST_ATTACHMENT = "POST_ATTACHMENT"


class EncodingStatus(str, Enum):
    PENDING = "PENDING"
    ENCODING = "ENCODING"
    READY = "READY"
    FAILED = "FAILED"


class EncodingTiersStatus(str, Enum):
    """How many encoded quality tiers exist, independent of playability."""

    NONE = "NONE"
    PARTIAL = "PARTIAL"
    ALL = "ALL"
    PARTIAL_FAILED = "PARTIAL_FAILED"


class ModerationStatus(str, Enum):
    PENDING = "PENDING"
    APPROVED = "APPROVED"
    REJECTED = "REJECTED"


class AudioStatus(str, Enum):
    PENDING = "PENDING"
    PASS = "PASS"
    FLAGGED = "FLAGGED"


class PublishStatus(str, Enum):
    DRAFT = "DRAFT"
    SCHEDULED = "SCHEDULED"
    PUBLISHED = "PUBLISHED"


class AspectRatio(str, Enum):
    """Coarse aspect-ratio classification of the probed dimensions."""

    VERTICAL_9_16 = "VERTICAL_9_16"
    PORTRAIT_4_5 = "PORTRAIT_4_5"
    SQUARE_1_1 = "SQUARE_1_1"
    HORIZONTAL_16_9 = "HORIZONTAL_16_9"
    PORTRAIT_CUSTOM = "PORTRAIT_CUSTOM"
    LANDSCAPE_CUSTOM = "LANDSCAPE_CUSTOM"


class CommentStatus(str, Enum):
    VISIBLE = "VISIBLE"
    HIDDEN = "HIDDEN"


class Video(Base):
    """One row per uploaded asset.

    The ID doubles as the storage-object prefix and the encoding-job
    correlation key.
    """

    __tablename__ = "videos"
    __table_args__ = (
        Index(
            "ix_videos_feed_eligibility",
            "publish_status",
            "is_active",
            "encoding_status",
            "moderation_status",
            "published_at",
        ),
        Index("ix_videos_moderation_queue", "moderation_status", "encoding_status", "created_at"),
    )

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), primary_key=True, default=uuid.uuid4
    )
    user_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), nullable=False, index=True
    )
    post_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        UUID(as_uuid=True), nullable=True, index=True
    )
    video_type: Mapped[str] = mapped_column(String(50), default=VideoType.REEL.value)

    # Source asset
    raw_blob_key: Mapped[Optional[str]] = mapped_column(String(512), nullable=True)
    original_url: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    original_filename: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    original_size: Mapped[int] = mapped_column(BigInteger, default=0)
    mime_type: Mapped[str] = mapped_column(String(100), nullable=False)

    # Probed metadata
    duration: Mapped[float] = mapped_column(Float, nullable=False)
    width: Mapped[int] = mapped_column(Integer, nullable=False)
    height: Mapped[int] = mapped_column(Integer, nullable=False)
    aspect_ratio: Mapped[str] = mapped_column(String(50), nullable=False)
    bitrate: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    fps: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    codec: Mapped[Optional[str]] = mapped_column(String(50), nullable=True)

    # Encoded outputs
    thumbnail_url: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    hls_manifest_url: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    mp4_url: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    # Encoding state
    encoding_status: Mapped[str] = mapped_column(
        String(50), default=EncodingStatus.PENDING.value, index=True
    )
    encoding_tiers_status: Mapped[str] = mapped_column(
        String(50), default=EncodingTiersStatus.NONE.value
    )
    encoding_error: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    encoding_started_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    encoding_completed_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    phase2_attempts: Mapped[int] = mapped_column(Integer, default=0)

    # Moderation state
    moderation_status: Mapped[str] = mapped_column(
        String(50), default=ModerationStatus.PENDING.value, index=True
    )
    audio_status: Mapped[str] = mapped_column(
        String(50), default=AudioStatus.PENDING.value
    )
    moderation_reason: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    moderation_confidence: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    moderation_categories: Mapped[Optional[dict]] = mapped_column(JSON, nullable=True)
    audio_muted: Mapped[bool] = mapped_column(Boolean, default=False)

    # Publication state
    publish_status: Mapped[str] = mapped_column(
        String(50), default=PublishStatus.DRAFT.value, index=True
    )
    scheduled_publish_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    published_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    is_active: Mapped[bool] = mapped_column(Boolean, default=True)

    # Content
    caption: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    hashtags: Mapped[list[str]] = mapped_column(ARRAY(String), default=list)

    # Engagement (denormalized)
    view_count: Mapped[int] = mapped_column(Integer, default=0)
    like_count: Mapped[int] = mapped_column(Integer, default=0)
    comment_count: Mapped[int] = mapped_column(Integer, default=0)
    share_count: Mapped[int] = mapped_column(Integer, default=0)
    engagement_score: Mapped[float] = mapped_column(Float, default=0.0, index=True)

    # Timestamps
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now()
    )
    deleted_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), nullable=True
    )

    def is_owned_by(self, user_id: uuid.UUID) -> bool:
        return self.user_id == user_id

    def is_published(self) -> bool:
        return self.publish_status == PublishStatus.PUBLISHED.value

    def is_watchable(self) -> bool:
        """Active, encoded, and has at least one playable URL."""
        return (
            self.is_active
            and self.deleted_at is None
            and self.encoding_status == EncodingStatus.READY.value
            and bool(self.hls_manifest_url or self.mp4_url)
        )

    def __repr__(self) -> str:
        return (
            f"<Video(id={self.id}, encoding={self.encoding_status}, "
            f"moderation={self.moderation_status}, publish={self.publish_status})>"
        )


class VideoLike(Base):
    """Existence of a row means the user likes the video."""

    __tablename__ = "video_likes"
    __table_args__ = (
        UniqueConstraint("video_id", "user_id", name="uq_video_likes_video_user"),
    )

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), primary_key=True, default=uuid.uuid4
    )
    video_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey("videos.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    user_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), nullable=False, index=True
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )


class VideoComment(Base):
    """Comment on a video, optionally a reply to another comment."""

    __tablename__ = "video_comments"

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), primary_key=True, default=uuid.uuid4
    )
    video_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey("videos.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    user_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), nullable=False, index=True
    )
    parent_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey("video_comments.id", ondelete="CASCADE"),
        nullable=True,
        index=True,
    )
    content: Mapped[str] = mapped_column(Text, nullable=False)
    status: Mapped[str] = mapped_column(
        String(50), default=CommentStatus.VISIBLE.value
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now()
    )
