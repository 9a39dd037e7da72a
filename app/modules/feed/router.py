"""Feed API router."""

import uuid
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.config import settings
from app.core.database import get_session
from app.modules.auth.dependencies import CurrentUser, get_optional_user
from app.modules.feed.exceptions import FeedError
from app.modules.feed.schemas import FeedResponse, FeedVideo
from app.modules.feed.service import FeedMode, FeedService

router = APIRouter(prefix="/feed", tags=["feed"])


def parse_exclude_ids(value: Optional[str]) -> list[uuid.UUID]:
    """Parse a comma-separated list of video IDs."""
    if not value:
        return []
    try:
        return [uuid.UUID(part.strip()) for part in value.split(",") if part.strip()]
    except ValueError:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="exclude_ids must be comma-separated video IDs",
        )


@router.get("", response_model=FeedResponse)
async def get_feed(
    mode: str = Query(FeedMode.FOR_YOU.value, description="for_you, following or trending"),
    limit: int = Query(settings.FEED_DEFAULT_LIMIT, ge=1, le=settings.FEED_MAX_LIMIT),
    exclude_ids: Optional[str] = Query(None, description="Comma-separated video IDs"),
    viewer: Optional[CurrentUser] = Depends(get_optional_user),
    session: AsyncSession = Depends(get_session),
):
    """Get a page of published videos."""
    excluded = parse_exclude_ids(exclude_ids)
    try:
        page = await FeedService(session).get_feed(
            FeedMode.parse(mode),
            viewer_id=viewer.id if viewer else None,
            limit=limit,
            exclude_ids=excluded,
        )
    except FeedError as e:
        raise HTTPException(status_code=e.status_code, detail=str(e))

    return FeedResponse(
        mode=page.mode.value,
        algorithm=page.algorithm,
        videos=[FeedVideo.model_validate(v) for v in page.videos],
        candidate_count=page.candidate_count,
    )
