"""Read model of the external social graph.

The relationship service owns follows, friendships and subscriptions; this
table mirrors the edges the feed needs. Friendship is stored as two edges.
"""

import uuid
from datetime import datetime
from enum import Enum

from sqlalchemy import DateTime, String, UniqueConstraint
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import Mapped, mapped_column
from sqlalchemy.sql import func

from app.core.database import Base


class RelationshipType(str, Enum):
    FOLLOW = "FOLLOW"
    FRIEND = "FRIEND"
    SUBSCRIPTION = "SUBSCRIPTION"


# Following-feed weight per relationship kind
RELATIONSHIP_MULTIPLIERS = {
    RelationshipType.FOLLOW: 1.0,
    RelationshipType.FRIEND: 1.5,
    RelationshipType.SUBSCRIPTION: 2.0,
}


class UserRelationship(Base):
    """Directed edge from a viewer to an author."""

    __tablename__ = "user_relationships"
    __table_args__ = (
        UniqueConstraint(
            "follower_id",
            "followee_id",
            "relationship_type",
            name="uq_user_relationships_edge",
        ),
    )

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), primary_key=True, default=uuid.uuid4
    )
    follower_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), nullable=False, index=True
    )
    followee_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), nullable=False, index=True
    )
    relationship_type: Mapped[str] = mapped_column(
        String(50), nullable=False, default=RelationshipType.FOLLOW.value
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )
