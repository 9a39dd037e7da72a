"""Short video models migration.

Revision ID: 001
Revises:
Create Date: 2026-10-17 00:00:00.000000

Creates videos, video_likes, video_comments and user_relationships tables.
"""

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

# revision identifiers, used by Alembic.
revision = "001"
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    # Create videos table
    op.create_table(
        "videos",
        sa.Column("id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("user_id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("post_id", postgresql.UUID(as_uuid=True), nullable=True),
        sa.Column("video_type", sa.String(50), nullable=False, server_default="REEL"),
        sa.Column("raw_blob_key", sa.String(512), nullable=True),
        sa.Column("original_url", sa.Text(), nullable=True),
        sa.Column("original_filename", sa.String(255), nullable=True),
        sa.Column("original_size", sa.BigInteger(), nullable=False, server_default="0"),
        sa.Column("mime_type", sa.String(100), nullable=False),
        sa.Column("duration", sa.Float(), nullable=False),
        sa.Column("width", sa.Integer(), nullable=False),
        sa.Column("height", sa.Integer(), nullable=False),
        sa.Column("aspect_ratio", sa.String(50), nullable=False),
        sa.Column("bitrate", sa.Integer(), nullable=True),
        sa.Column("fps", sa.Float(), nullable=True),
        sa.Column("codec", sa.String(50), nullable=True),
        sa.Column("thumbnail_url", sa.Text(), nullable=True),
        sa.Column("hls_manifest_url", sa.Text(), nullable=True),
        sa.Column("mp4_url", sa.Text(), nullable=True),
        sa.Column("encoding_status", sa.String(50), nullable=False, server_default="PENDING"),
        sa.Column("encoding_tiers_status", sa.String(50), nullable=False, server_default="NONE"),
        sa.Column("encoding_error", sa.Text(), nullable=True),
        sa.Column("encoding_started_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("encoding_completed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("phase2_attempts", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("moderation_status", sa.String(50), nullable=False, server_default="PENDING"),
        sa.Column("audio_status", sa.String(50), nullable=False, server_default="PENDING"),
        sa.Column("moderation_reason", sa.Text(), nullable=True),
        sa.Column("moderation_confidence", sa.Float(), nullable=True),
        sa.Column("moderation_categories", sa.JSON(), nullable=True),
        sa.Column("audio_muted", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("publish_status", sa.String(50), nullable=False, server_default="DRAFT"),
        sa.Column("scheduled_publish_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("published_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("caption", sa.Text(), nullable=True),
        sa.Column(
            "hashtags",
            postgresql.ARRAY(sa.String()),
            nullable=False,
            server_default="{}",
        ),
        sa.Column("view_count", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("like_count", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("comment_count", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("share_count", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("engagement_score", sa.Float(), nullable=False, server_default="0"),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            server_default=sa.text("now()"),
            nullable=False,
        ),
        sa.Column(
            "updated_at",
            sa.DateTime(timezone=True),
            server_default=sa.text("now()"),
            nullable=False,
        ),
        sa.Column("deleted_at", sa.DateTime(timezone=True), nullable=True),
        sa.PrimaryKeyConstraint("id"),
    )
    for column in (
        "user_id",
        "post_id",
        "encoding_status",
        "moderation_status",
        "publish_status",
        "engagement_score",
    ):
        op.create_index(op.f(f"ix_videos_{column}"), "videos", [column], unique=False)
    op.create_index(
        "ix_videos_feed_eligibility",
        "videos",
        ["publish_status", "is_active", "encoding_status", "moderation_status", "published_at"],
        unique=False,
    )
    op.create_index(
        "ix_videos_moderation_queue",
        "videos",
        ["moderation_status", "encoding_status", "created_at"],
        unique=False,
    )

    # Create video_likes table
    op.create_table(
        "video_likes",
        sa.Column("id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("video_id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("user_id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            server_default=sa.text("now()"),
            nullable=False,
        ),
        sa.ForeignKeyConstraint(["video_id"], ["videos.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("video_id", "user_id", name="uq_video_likes_video_user"),
    )
    op.create_index(op.f("ix_video_likes_video_id"), "video_likes", ["video_id"], unique=False)
    op.create_index(op.f("ix_video_likes_user_id"), "video_likes", ["user_id"], unique=False)

    # Create video_comments table
    op.create_table(
        "video_comments",
        sa.Column("id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("video_id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("user_id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("parent_id", postgresql.UUID(as_uuid=True), nullable=True),
        sa.Column("content", sa.Text(), nullable=False),
        sa.Column("status", sa.String(50), nullable=False, server_default="VISIBLE"),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            server_default=sa.text("now()"),
            nullable=False,
        ),
        sa.Column(
            "updated_at",
            sa.DateTime(timezone=True),
            server_default=sa.text("now()"),
            nullable=False,
        ),
        sa.ForeignKeyConstraint(["video_id"], ["videos.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["parent_id"], ["video_comments.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id"),
    )
    for column in ("video_id", "user_id", "parent_id"):
        op.create_index(
            op.f(f"ix_video_comments_{column}"), "video_comments", [column], unique=False
        )

    # Create user_relationships table
    op.create_table(
        "user_relationships",
        sa.Column("id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("follower_id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("followee_id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("relationship_type", sa.String(50), nullable=False, server_default="FOLLOW"),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            server_default=sa.text("now()"),
            nullable=False,
        ),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint(
            "follower_id",
            "followee_id",
            "relationship_type",
            name="uq_user_relationships_edge",
        ),
    )
    op.create_index(
        op.f("ix_user_relationships_follower_id"),
        "user_relationships",
        ["follower_id"],
        unique=False,
    )
    op.create_index(
        op.f("ix_user_relationships_followee_id"),
        "user_relationships",
        ["followee_id"],
        unique=False,
    )


def downgrade() -> None:
    op.drop_table("user_relationships")
    op.drop_table("video_comments")
    op.drop_table("video_likes")
    op.drop_table("videos")
