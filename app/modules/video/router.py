"""Video API router.

Upload, playback, publication, interactions and the admin moderation
surface. Service errors carry their HTTP status and are translated here.
"""

import uuid
from typing import Optional

from fastapi import (
    APIRouter,
    BackgroundTasks,
    Depends,
    File,
    Form,
    HTTPException,
    Query,
    Response,
    UploadFile,
    status,
)
from fastapi.responses import RedirectResponse
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.config import settings
from app.core.database import get_db
from app.core.logging import get_correlation_id
from app.modules.auth.dependencies import (
    CurrentUser,
    get_current_user,
    get_optional_user,
    require_admin,
)
from app.modules.encoding.orchestrator import get_encoding_backend
from app.modules.moderation.content_safety import ContentSafetyClient
from app.modules.moderation.service import AudioPolicy
from app.modules.moderation.transcription import AudioTranscriber
from app.modules.video.exceptions import VideoServiceError, VideoValidationError
from app.modules.video.interactions import VideoInteractionService
from app.modules.video.models import VideoType
from app.modules.video.pipeline import IngestionPipeline, UploadRequest, read_upload
from app.modules.video.schemas import (
    CommentCreateRequest,
    CommentListResponse,
    CommentResponse,
    LikeResponse,
    LikeStatusResponse,
    ModerationQueueResponse,
    RejectRequest,
    ReprocessResponse,
    ScheduleRequest,
    SuccessResponse,
    UploadedVideoSummary,
    UploadResponse,
    VideoHealthResponse,
    VideoListResponse,
    VideoResponse,
    VideoStatsResponse,
)
from app.modules.video.service import VideoService, enqueue_storage_cleanup

router = APIRouter(prefix="/videos", tags=["videos"])


def _http_error(e: VideoServiceError) -> HTTPException:
    return HTTPException(status_code=e.status_code, detail=str(e))


def _video_list(videos, next_cursor=None) -> VideoListResponse:
    return VideoListResponse(
        videos=[VideoResponse.model_validate(v) for v in videos],
        next_cursor=next_cursor,
    )


# ============================================
# Upload and status
# ============================================


@router.get("/health", response_model=VideoHealthResponse)
async def video_health():
    """Encoding, storage and moderation configuration."""
    return VideoHealthResponse(
        encoding_backend=settings.ENCODING_BACKEND,
        encoding_available=get_encoding_backend() is not None,
        storage_backend=settings.STORAGE_BACKEND,
        content_safety_configured=ContentSafetyClient().is_configured,
        transcription_configured=AudioTranscriber().is_configured,
        audio_policy=AudioPolicy.from_settings().value,
        environment=settings.ENVIRONMENT,
    )


@router.post("/upload", response_model=UploadResponse, status_code=status.HTTP_201_CREATED)
async def upload_video(
    response: Response,
    file: UploadFile = File(...),
    video_type: str = Form(VideoType.REEL.value),
    caption: Optional[str] = Form(None),
    post_id: Optional[uuid.UUID] = Form(None),
    user: CurrentUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    """Upload a short video through the ingestion pipeline."""
    request_id = get_correlation_id()
    try:
        try:
            parsed_type = VideoType(video_type.upper())
        except ValueError:
            raise VideoValidationError(
                f"Invalid video_type: {video_type}. Allowed: REEL, POST_ATTACHMENT"
            )

        pipeline = IngestionPipeline(db)
        try:
            content = await read_upload(file, pipeline.limits)
        finally:
            await file.close()
        video = await pipeline.ingest(
            UploadRequest(
                content=content,
                mime_type=file.content_type or "application/octet-stream",
                user_id=user.id,
                size=len(content),
                filename=file.filename,
                caption=caption,
                post_id=post_id,
                video_type=parsed_type,
            ),
            request_id=request_id,
        )
    except VideoServiceError as e:
        raise _http_error(e)

    response.headers["X-Request-Id"] = request_id
    response.headers["X-Video-Id"] = str(video.id)
    response.headers["X-Encoding-Status"] = video.encoding_status
    return UploadResponse(
        video=UploadedVideoSummary.model_validate(video),
        request_id=request_id,
    )


@router.get("/drafts", response_model=VideoListResponse)
async def list_drafts(
    user: CurrentUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    return _video_list(await VideoService(db).list_drafts(user.id))


@router.get("/scheduled", response_model=VideoListResponse)
async def list_scheduled(
    user: CurrentUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    return _video_list(await VideoService(db).list_scheduled(user.id))


# ============================================
# Admin
# ============================================


@router.get("/admin/list", response_model=VideoListResponse)
async def admin_list_videos(
    encoding_status: Optional[str] = None,
    moderation_status: Optional[str] = None,
    cursor: Optional[uuid.UUID] = None,
    limit: int = Query(50, ge=1, le=100),
    _admin: CurrentUser = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
):
    videos, next_cursor = await VideoService(db).list_for_admin(
        encoding_status, moderation_status, cursor, limit
    )
    return _video_list(videos, next_cursor)


@router.get("/admin/moderation-queue", response_model=ModerationQueueResponse)
async def admin_moderation_queue(
    limit: int = Query(50, ge=1, le=100),
    _admin: CurrentUser = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
):
    """Videos awaiting human review, oldest first."""
    videos, total = await VideoService(db).moderation_queue(limit)
    return ModerationQueueResponse(
        videos=[VideoResponse.model_validate(v) for v in videos],
        total_pending=total,
    )


@router.post("/admin/{video_id}/approve", response_model=VideoResponse)
async def admin_approve_video(
    video_id: uuid.UUID,
    admin: CurrentUser = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
):
    try:
        return await VideoService(db).admin_approve(video_id, admin)
    except VideoServiceError as e:
        raise _http_error(e)


@router.post("/admin/{video_id}/reject", response_model=VideoResponse)
async def admin_reject_video(
    video_id: uuid.UUID,
    body: RejectRequest,
    admin: CurrentUser = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
):
    try:
        return await VideoService(db).admin_reject(video_id, admin, body.reason)
    except VideoServiceError as e:
        raise _http_error(e)


@router.get("/admin/stats", response_model=VideoStatsResponse)
async def admin_video_stats(
    _admin: CurrentUser = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
):
    return VideoStatsResponse(**await VideoService(db).stats())


@router.delete("/admin/{video_id}/delete", response_model=SuccessResponse)
async def admin_hard_delete_video(
    video_id: uuid.UUID,
    background_tasks: BackgroundTasks,
    _admin: CurrentUser = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
):
    """Permanently delete a video; storage is cleaned up in the background."""
    try:
        await VideoService(db).hard_delete(video_id)
    except VideoServiceError as e:
        raise _http_error(e)
    background_tasks.add_task(enqueue_storage_cleanup, video_id)
    return SuccessResponse(message="Video permanently deleted")


# ============================================
# Single video
# ============================================


@router.get("/user/{user_id}", response_model=VideoListResponse)
async def list_user_videos(
    user_id: uuid.UUID,
    cursor: Optional[uuid.UUID] = None,
    limit: int = Query(20, ge=1, le=50),
    db: AsyncSession = Depends(get_db),
):
    videos, next_cursor = await VideoService(db).list_user_videos(user_id, cursor, limit)
    return _video_list(videos, next_cursor)


@router.get("/{video_id}", response_model=VideoResponse)
async def get_video(
    video_id: uuid.UUID,
    viewer: Optional[CurrentUser] = Depends(get_optional_user),
    db: AsyncSession = Depends(get_db),
):
    try:
        return await VideoService(db).get_video(video_id, viewer)
    except VideoServiceError as e:
        raise _http_error(e)


@router.get("/{video_id}/stream")
async def stream_video(
    video_id: uuid.UUID,
    db: AsyncSession = Depends(get_db),
):
    """Redirect to the HLS manifest, or the MP4 fallback."""
    try:
        url = await VideoService(db).get_stream_url(video_id)
    except VideoServiceError as e:
        raise _http_error(e)
    return RedirectResponse(url, status_code=status.HTTP_302_FOUND)


@router.delete("/{video_id}", response_model=SuccessResponse)
async def delete_video(
    video_id: uuid.UUID,
    background_tasks: BackgroundTasks,
    user: CurrentUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    try:
        await VideoService(db).soft_delete(video_id, user)
    except VideoServiceError as e:
        raise _http_error(e)
    background_tasks.add_task(enqueue_storage_cleanup, video_id)
    return SuccessResponse(message="Video deleted")


@router.patch("/{video_id}/publish", response_model=VideoResponse)
async def publish_video(
    video_id: uuid.UUID,
    user: CurrentUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    try:
        return await VideoService(db).publish(video_id, user)
    except VideoServiceError as e:
        raise _http_error(e)


@router.patch("/{video_id}/schedule", response_model=VideoResponse)
async def schedule_video(
    video_id: uuid.UUID,
    body: ScheduleRequest,
    user: CurrentUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    try:
        return await VideoService(db).schedule(video_id, user, body.publish_at)
    except VideoServiceError as e:
        raise _http_error(e)


@router.patch("/{video_id}/unschedule", response_model=VideoResponse)
async def unschedule_video(
    video_id: uuid.UUID,
    user: CurrentUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    try:
        return await VideoService(db).unschedule(video_id, user)
    except VideoServiceError as e:
        raise _http_error(e)


@router.post("/{video_id}/encoding/retry-phase2", response_model=VideoResponse)
async def retry_phase2(
    video_id: uuid.UUID,
    user: CurrentUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    """Resubmit the lower-bitrate tier after a Phase 2 failure."""
    try:
        return await VideoService(db).retry_phase2(video_id, user)
    except VideoServiceError as e:
        raise _http_error(e)


@router.post("/{video_id}/reprocess", response_model=ReprocessResponse)
async def reprocess_video(
    video_id: uuid.UUID,
    _admin: CurrentUser = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
):
    try:
        return await VideoService(db).reprocess(video_id)
    except VideoServiceError as e:
        raise _http_error(e)


# ============================================
# Interactions
# ============================================


@router.post("/{video_id}/view", response_model=SuccessResponse)
async def record_view(video_id: uuid.UUID, db: AsyncSession = Depends(get_db)):
    try:
        await VideoInteractionService(db).record_view(video_id)
    except VideoServiceError as e:
        raise _http_error(e)
    return SuccessResponse()


@router.post("/{video_id}/share", response_model=SuccessResponse)
async def record_share(video_id: uuid.UUID, db: AsyncSession = Depends(get_db)):
    try:
        await VideoInteractionService(db).record_share(video_id)
    except VideoServiceError as e:
        raise _http_error(e)
    return SuccessResponse()


@router.post("/{video_id}/like", response_model=LikeResponse)
async def like_video(
    video_id: uuid.UUID,
    user: CurrentUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    try:
        count = await VideoInteractionService(db).like(video_id, user.id)
    except VideoServiceError as e:
        raise _http_error(e)
    return LikeResponse(liked=True, like_count=count)


@router.post("/{video_id}/unlike", response_model=LikeResponse)
async def unlike_video(
    video_id: uuid.UUID,
    user: CurrentUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    try:
        count = await VideoInteractionService(db).unlike(video_id, user.id)
    except VideoServiceError as e:
        raise _http_error(e)
    return LikeResponse(liked=False, like_count=count)


@router.get("/{video_id}/like-status", response_model=LikeStatusResponse)
async def like_status(
    video_id: uuid.UUID,
    user: CurrentUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    return LikeStatusResponse(liked=await VideoInteractionService(db).is_liked(video_id, user.id))


@router.get("/{video_id}/comments", response_model=CommentListResponse)
async def list_comments(
    video_id: uuid.UUID,
    cursor: Optional[uuid.UUID] = None,
    limit: int = Query(20, ge=1, le=50),
    db: AsyncSession = Depends(get_db),
):
    try:
        rows, next_cursor = await VideoInteractionService(db).list_comments(
            video_id, cursor, limit
        )
    except VideoServiceError as e:
        raise _http_error(e)

    comments = []
    for comment, reply_count in rows:
        item = CommentResponse.model_validate(comment)
        item.reply_count = reply_count
        comments.append(item)
    return CommentListResponse(comments=comments, next_cursor=next_cursor)


@router.post(
    "/{video_id}/comments",
    response_model=CommentResponse,
    status_code=status.HTTP_201_CREATED,
)
async def add_comment(
    video_id: uuid.UUID,
    body: CommentCreateRequest,
    user: CurrentUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    try:
        comment = await VideoInteractionService(db).add_comment(
            video_id, user.id, body.content, body.parent_id
        )
    except VideoServiceError as e:
        raise _http_error(e)
    return CommentResponse.model_validate(comment)


@router.delete("/{video_id}/comments/{comment_id}", response_model=SuccessResponse)
async def delete_comment(
    video_id: uuid.UUID,
    comment_id: uuid.UUID,
    user: CurrentUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    try:
        await VideoInteractionService(db).hide_comment(video_id, comment_id, user)
    except VideoServiceError as e:
        raise _http_error(e)
    return SuccessResponse(message="Comment removed")
