"""Video service for business logic.

Visibility and ownership checks, publication, deletion, reprocessing and the
admin moderation surface. State changes go through the state machine; this
service turns rejected transitions into typed errors for the router.
"""

import logging
import uuid
from datetime import datetime, timezone
from typing import Any, Optional

from sqlalchemy.ext.asyncio import AsyncSession

from app.core.config import settings
from app.core.logging import log_error, log_info, log_warning
from app.modules.auth.dependencies import CurrentUser
from app.modules.encoding.orchestrator import EncodingOrchestrator
from app.modules.video.exceptions import (
    InvalidStateTransitionError,
    PublishBlockedError,
    VideoAccessDeniedError,
    VideoNotFoundError,
    VideoValidationError,
)
from app.modules.video.models import EncodingStatus, PublishStatus, Video
from app.modules.video.repository import VideoRepository
from app.modules.video.state_machine import (
    Outcome,
    TransitionResult,
    VideoStateMachine,
    publish_blocking_reason,
)
from app.modules.video.storage import VideoStorage

logger = logging.getLogger(__name__)


def _utc(value: datetime) -> datetime:
    return value if value.tzinfo else value.replace(tzinfo=timezone.utc)


def enqueue_storage_cleanup(video_id: uuid.UUID) -> None:
    """Queue best-effort deletion of a video's stored objects."""
    from app.modules.video.tasks import cleanup_video_storage_task

    try:
        cleanup_video_storage_task.delay(str(video_id))
    except Exception as e:
        log_error(logger, "Failed to queue storage cleanup", e, video_id=str(video_id))


class VideoService:
    """Service for video lifecycle operations."""

    def __init__(
        self,
        session: AsyncSession,
        video_storage: Optional[VideoStorage] = None,
        orchestrator: Optional[EncodingOrchestrator] = None,
        state_machine: Optional[VideoStateMachine] = None,
    ):
        self.session = session
        self.video_repo = VideoRepository(session)
        self.video_storage = video_storage or VideoStorage()
        self._orchestrator = orchestrator
        self.state_machine = state_machine or VideoStateMachine(session)

    @property
    def orchestrator(self) -> EncodingOrchestrator:
        if self._orchestrator is None:
            self._orchestrator = EncodingOrchestrator(video_storage=self.video_storage)
        return self._orchestrator

    # ============================================
    # Reads
    # ============================================

    async def _get_existing(self, video_id: uuid.UUID) -> Video:
        video = await self.video_repo.get_by_id(video_id, include_deleted=False)
        if video is None:
            raise VideoNotFoundError()
        return video

    async def get_video(self, video_id: uuid.UUID, viewer: Optional[CurrentUser] = None) -> Video:
        """Get a video as seen by ``viewer``.

        Non-owners only see published, active videos; anything else is
        reported as not found.
        """
        video = await self._get_existing(video_id)
        if viewer is not None and (viewer.id == video.user_id or viewer.is_admin):
            return video
        if video.publish_status != PublishStatus.PUBLISHED.value or not video.is_active:
            raise VideoNotFoundError()
        return video

    async def get_owned(
        self, video_id: uuid.UUID, user: CurrentUser, allow_admin: bool = False
    ) -> Video:
        video = await self._get_existing(video_id)
        if video.user_id != user.id and not (allow_admin and user.is_admin):
            raise VideoAccessDeniedError()
        return video

    async def get_stream_url(self, video_id: uuid.UUID) -> str:
        """Playback URL: the HLS manifest, or the MP4 fallback."""
        video = await self._get_existing(video_id)
        if not video.is_active or video.encoding_status != EncodingStatus.READY.value:
            raise VideoNotFoundError("Video is not available for playback")
        url = video.hls_manifest_url or video.mp4_url
        if not url:
            raise VideoNotFoundError("Video is not available for playback")
        return url

    async def list_drafts(self, user_id: uuid.UUID) -> list[Video]:
        return await self.video_repo.list_drafts(user_id)

    async def list_scheduled(self, user_id: uuid.UUID) -> list[Video]:
        return await self.video_repo.list_scheduled(user_id)

    async def list_user_videos(
        self, user_id: uuid.UUID, cursor: Optional[uuid.UUID], limit: int
    ) -> tuple[list[Video], Optional[uuid.UUID]]:
        return await self.video_repo.list_published_by_user(user_id, cursor, limit)

    # ============================================
    # Publication
    # ============================================

    async def _reload(self, video_id: uuid.UUID) -> Video:
        video = await self.video_repo.refresh(video_id)
        if video is None:
            raise VideoNotFoundError()
        return video

    async def publish(self, video_id: uuid.UUID, user: CurrentUser) -> Video:
        """Publish now.

        Raises:
            PublishBlockedError: With the reason publication is blocked
        """
        await self.get_owned(video_id, user)
        result = await self.state_machine.publish(video_id)
        if not result.applied:
            reason = publish_blocking_reason(result.state) if result.state else None
            raise PublishBlockedError(reason or "Video cannot be published")
        await self.session.commit()
        log_info(logger, "Video published", video_id=str(video_id), user_id=str(user.id))
        return await self._reload(video_id)

    async def schedule(self, video_id: uuid.UUID, user: CurrentUser, publish_at: datetime) -> Video:
        publish_at = _utc(publish_at)
        if publish_at <= datetime.now(timezone.utc):
            raise VideoValidationError("Scheduled time must be in the future")

        await self.get_owned(video_id, user)
        result = await self.state_machine.schedule(video_id, publish_at)
        if result.outcome not in (Outcome.APPLIED, Outcome.NOOP):
            raise InvalidStateTransitionError("Only draft or scheduled videos can be scheduled")
        await self.session.commit()
        return await self._reload(video_id)

    async def unschedule(self, video_id: uuid.UUID, user: CurrentUser) -> Video:
        await self.get_owned(video_id, user)
        result = await self.state_machine.unschedule(video_id)
        if not result.applied:
            raise VideoValidationError("Video is not scheduled")
        await self.session.commit()
        return await self._reload(video_id)

    async def publish_due(self, video_id: uuid.UUID) -> TransitionResult:
        """Publish a scheduled video whose time has come.

        A video that is not publishable yet stays SCHEDULED for the next run.
        """
        result = await self.state_machine.publish(video_id)
        await self.session.commit()
        if not result.applied and result.state is not None:
            log_info(logger, "Scheduled video not publishable yet", video_id=str(video_id),
                     reason=publish_blocking_reason(result.state))
        return result

    # ============================================
    # Deletion
    # ============================================

    async def soft_delete(self, video_id: uuid.UUID, user: CurrentUser) -> None:
        await self.get_owned(video_id, user)
        await self.state_machine.soft_delete(video_id)
        await self.session.commit()
        log_info(logger, "Video soft-deleted", video_id=str(video_id), user_id=str(user.id))

    async def hard_delete(self, video_id: uuid.UUID) -> None:
        if not await self.video_repo.hard_delete(video_id):
            raise VideoNotFoundError()
        await self.session.commit()
        log_info(logger, "Video hard-deleted", video_id=str(video_id))

    async def cleanup_storage(self, video_id: uuid.UUID) -> int:
        """Delete stored objects and release backend resources.

        Backend cleanup failures are logged; storage deletion errors propagate
        so the calling task can retry.
        """
        try:
            await self.orchestrator.cleanup(video_id)
        except Exception as e:
            log_warning(logger, "Encoding backend cleanup failed",
                        video_id=str(video_id), error=str(e)[:200])
        deleted = await self.video_storage.delete_all(video_id)
        log_info(logger, "Video storage cleaned up", video_id=str(video_id), deleted=deleted)
        return deleted

    # ============================================
    # Encoding actions
    # ============================================

    async def retry_phase2(self, video_id: uuid.UUID, user: CurrentUser) -> Video:
        """Resubmit the Phase-2 tier after a failure.

        Raises:
            InvalidStateTransitionError: Unless encoding is READY with
                PARTIAL_FAILED tiers
        """
        from app.modules.encoding.handler import EncodingEventHandler

        await self.get_owned(video_id, user, allow_admin=True)
        handler = EncodingEventHandler(
            self.session, state_machine=self.state_machine, orchestrator=self.orchestrator
        )
        result = await handler.retry_phase2(video_id)
        if result.outcome == Outcome.NOT_FOUND:
            raise VideoNotFoundError()
        if not result.applied:
            raise InvalidStateTransitionError(
                "Phase 2 can only be retried after a Phase 2 failure"
            )
        return await self._reload(video_id)

    async def reprocess(self, video_id: uuid.UUID) -> dict[str, Any]:
        """Reset encoding and resubmit Phase 1.

        Without a configured backend, non-production environments fall back to
        the passthrough backend so the video still becomes playable.
        """
        video = await self._get_existing(video_id)
        if not video.raw_blob_key:
            raise InvalidStateTransitionError("Video has no raw asset to reprocess")
        raw_blob_key = video.raw_blob_key

        result = await self.state_machine.reset_for_reprocess(video_id)
        if result.outcome == Outcome.NOT_FOUND:
            raise VideoNotFoundError()
        if result.outcome == Outcome.INVALID:
            raise InvalidStateTransitionError("Published videos cannot be reprocessed")
        await self.session.commit()

        orchestrator = self.orchestrator
        if not orchestrator.is_available and not settings.is_production:
            orchestrator = self._passthrough_orchestrator()

        handle = await orchestrator.submit_phase1(video_id, raw_blob_key)
        log_info(logger, "Video reprocess requested", video_id=str(video_id),
                 backend=orchestrator.backend_name, submitted=handle is not None)
        return {
            "video_id": video_id,
            "backend": orchestrator.backend_name,
            "submitted": handle is not None,
        }

    def _passthrough_orchestrator(self) -> EncodingOrchestrator:
        from app.modules.encoding.backends.passthrough import PassthroughBackend
        from app.modules.encoding.handler import EncodingEventHandler

        handler = EncodingEventHandler(self.session, state_machine=self.state_machine)
        backend = PassthroughBackend(handler.handle, self.video_storage)
        return EncodingOrchestrator(backend=backend, video_storage=self.video_storage)

    # ============================================
    # Admin moderation
    # ============================================

    async def list_for_admin(
        self,
        encoding_status: Optional[str],
        moderation_status: Optional[str],
        cursor: Optional[uuid.UUID],
        limit: int,
    ) -> tuple[list[Video], Optional[uuid.UUID]]:
        return await self.video_repo.list_for_admin(
            encoding_status, moderation_status, cursor, limit
        )

    async def moderation_queue(self, limit: int) -> tuple[list[Video], int]:
        return await self.video_repo.moderation_queue(limit)

    async def admin_approve(self, video_id: uuid.UUID, admin: CurrentUser) -> Video:
        result = await self.state_machine.admin_approve(video_id)
        self._raise_for(result, "Video cannot be approved in its current state")
        await self.session.commit()
        log_info(logger, "Video approved by admin", video_id=str(video_id), admin_id=str(admin.id))
        return await self._reload(video_id)

    async def admin_reject(self, video_id: uuid.UUID, admin: CurrentUser, reason: str) -> Video:
        result = await self.state_machine.admin_reject(video_id, reason)
        self._raise_for(result, "Video cannot be rejected in its current state")
        await self.session.commit()
        log_info(logger, "Video rejected by admin", video_id=str(video_id),
                 admin_id=str(admin.id), reason=reason)
        return await self._reload(video_id)

    @staticmethod
    def _raise_for(result: TransitionResult, message: str) -> None:
        if result.outcome == Outcome.NOT_FOUND:
            raise VideoNotFoundError()
        if result.outcome == Outcome.INVALID:
            raise InvalidStateTransitionError(message)

    async def stats(self) -> dict[str, int]:
        return await self.video_repo.stats()