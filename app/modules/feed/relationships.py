"""Social graph boundary.

The feed only needs, for a viewer, the authors they are related to and how
strongly. ``RelationshipProvider`` is that boundary; the database provider
reads the ``user_relationships`` read model.
"""

import uuid
from abc import ABC, abstractmethod
from typing import Iterable

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.modules.feed.models import (
    RELATIONSHIP_MULTIPLIERS,
    RelationshipType,
    UserRelationship,
)


def strongest_multipliers(edges: Iterable[tuple[uuid.UUID, str]]) -> dict[uuid.UUID, float]:
    """Per author, the multiplier of the strongest relationship kind."""
    multipliers: dict[uuid.UUID, float] = {}
    for author_id, kind in edges:
        try:
            weight = RELATIONSHIP_MULTIPLIERS[RelationshipType(kind)]
        except ValueError:
            continue
        multipliers[author_id] = max(multipliers.get(author_id, 0.0), weight)
    return multipliers


class RelationshipProvider(ABC):
    @abstractmethod
    async def multipliers(self, viewer_id: uuid.UUID) -> dict[uuid.UUID, float]:
        """Related author IDs mapped to relationship strength."""


class DatabaseRelationshipProvider(RelationshipProvider):
    def __init__(self, session: AsyncSession):
        self.session = session

    async def multipliers(self, viewer_id: uuid.UUID) -> dict[uuid.UUID, float]:
        result = await self.session.execute(
            select(UserRelationship.followee_id, UserRelationship.relationship_type).where(
                UserRelationship.follower_id == viewer_id
            )
        )
        return strongest_multipliers((row[0], row[1]) for row in result.all())
