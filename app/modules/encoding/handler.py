"""Idempotent encoding event handler.

Every backend reports through EncodingEvents: the cloud webhook, the
media-jobs webhook, the local worker and the passthrough backend. Events may
arrive more than once and in any order; the state machine decides whether
each one applies, and Phase-1 side effects (moderation, Phase-2 submission)
run only when the Phase-1 transition was actually applied.
"""

import logging
import uuid
from typing import Awaitable, Callable, Optional

from sqlalchemy.ext.asyncio import AsyncSession

from app.core.config import settings
from app.core.logging import log_error, log_info, log_warning
from app.core.tracing import create_span
from app.modules.encoding.events import EncodingEvent, EncodingEventKind
from app.modules.encoding.interface import EncodingPhase
from app.modules.encoding.orchestrator import EncodingOrchestrator
from app.modules.video.repository import VideoRepository
from app.modules.video.state_machine import TransitionResult, VideoStateMachine

logger = logging.getLogger(__name__)

ModerationTrigger = Callable[[uuid.UUID], Awaitable[object]]


async def _enqueue_moderation(video_id: uuid.UUID) -> None:
    from app.modules.moderation.tasks import enqueue_moderation

    await enqueue_moderation(video_id)


class EncodingEventHandler:
    """Applies encoding events to the video state machine.

    Steps run sequentially on one session and are committed as they go, so
    a failure in a later side effect never loses an earlier transition.
    """

    def __init__(
        self,
        session: AsyncSession,
        state_machine: Optional[VideoStateMachine] = None,
        orchestrator: Optional[EncodingOrchestrator] = None,
        moderation_trigger: Optional[ModerationTrigger] = None,
        video_repo: Optional[VideoRepository] = None,
    ):
        self.session = session
        self.state_machine = state_machine or VideoStateMachine(session)
        self._orchestrator = orchestrator
        self.moderation_trigger = moderation_trigger or _enqueue_moderation
        self.video_repo = video_repo or VideoRepository(session)

    @property
    def orchestrator(self) -> EncodingOrchestrator:
        if self._orchestrator is None:
            self._orchestrator = EncodingOrchestrator()
        return self._orchestrator

    async def handle(self, event: EncodingEvent) -> Optional[TransitionResult]:
        """Apply one event; returns the transition result, or None if ignored."""
        with create_span(
            "encoding.event",
            {
                "video.id": event.video_id,
                "encoding.phase": event.phase.value,
                "encoding.event": event.kind.value,
                "encoding.source": event.source,
            },
        ):
            if event.kind == EncodingEventKind.STARTED:
                if event.phase == EncodingPhase.PHASE_2:
                    return None
                result = await self.state_machine.mark_encoding_started(event.video_id)
            elif event.kind == EncodingEventKind.COMPLETED:
                if event.phase == EncodingPhase.PHASE_1:
                    return await self._phase1_completed(event)
                result = await self.state_machine.mark_phase2_ready(event.video_id)
            else:
                if event.phase == EncodingPhase.PHASE_1:
                    result = await self.state_machine.mark_phase1_failed(
                        event.video_id, event.error or "Encoding failed"
                    )
                else:
                    return await self._phase2_failed(event.video_id)

            await self.session.commit()
            return result

    async def _phase1_completed(self, event: EncodingEvent) -> TransitionResult:
        result = await self.state_machine.mark_phase1_ready(
            event.video_id, event.manifest_url, event.mp4_url
        )
        await self.session.commit()
        if not result.applied:
            return result

        log_info(logger, "Phase 1 ready, video is watchable", video_id=str(event.video_id))
        await self._trigger_moderation(event.video_id)
        await self._submit_phase2(event.video_id, event.input_blob_ref)
        return result

    async def _trigger_moderation(self, video_id: uuid.UUID) -> None:
        try:
            await self.moderation_trigger(video_id)
        except Exception as e:
            from app.modules.moderation.service import apply_moderation_fallback

            log_error(logger, "Failed to trigger moderation", e, video_id=str(video_id))
            await apply_moderation_fallback(self.state_machine, video_id, str(e))
            await self.session.commit()

    async def _submit_phase2(self, video_id: uuid.UUID, input_blob_ref: Optional[str]) -> None:
        if not input_blob_ref:
            video = await self.video_repo.get_by_id(video_id)
            input_blob_ref = video.raw_blob_key if video else None

        if not input_blob_ref:
            log_warning(logger, "No raw asset reference for Phase 2", video_id=str(video_id))
            await self._phase2_failed(video_id)
            return

        try:
            await self.orchestrator.submit_phase2(video_id, input_blob_ref)
        except Exception as e:
            log_error(logger, "Phase 2 submission failed", e, video_id=str(video_id))
            await self._phase2_failed(video_id)

    async def _phase2_failed(self, video_id: uuid.UUID) -> TransitionResult:
        """Mark the Phase-2 tier failed, whether the job failed or never started.

        A redelivered failure does not schedule a second automatic retry.
        """
        result = await self.state_machine.mark_phase2_failed(video_id)
        await self.session.commit()
        if result.applied and settings.ENCODING_PHASE2_AUTO_RETRY:
            from app.modules.encoding.tasks import schedule_phase2_retry

            video = await self.video_repo.get_by_id(video_id)
            attempts = video.phase2_attempts if video else 0
            schedule_phase2_retry(video_id, attempts + 1)
        return result

    async def retry_phase2(self, video_id: uuid.UUID) -> TransitionResult:
        """Move PARTIAL_FAILED tiers back to PARTIAL and resubmit Phase 2."""
        result = await self.state_machine.mark_phase2_resubmitted(video_id)
        if not result.applied:
            return result

        await self.video_repo.increment_phase2_attempts(video_id)
        await self.session.commit()
        video = await self.video_repo.get_by_id(video_id)
        await self._submit_phase2(video_id, video.raw_blob_key if video else None)
        return result
