"""Video moderation pipeline.

Three independent checks gate publication, never encoding:

1. Caption text through the shared text policy.
2. Visual: frames sampled across the video, classified by the content-safety
   service. Aggregate unsafe score above the reject threshold rejects, at or
   above the review threshold holds for human review, below it approves.
3. Audio: the extracted track is transcribed and the transcript runs through
   the same text policy; the audio policy decides how a flagged track counts.

The most severe outcome wins. Automatic results only apply while moderation
is still PENDING, so an admin decision is never overridden.
"""

import logging
import os
import uuid
from dataclasses import dataclass, field
from enum import Enum
from typing import Optional

from sqlalchemy.ext.asyncio import AsyncSession

from app.core.config import settings
from app.core.logging import log_error, log_info, log_warning
from app.core.metrics import MODERATION_DECISIONS_TOTAL
from app.core.tracing import create_span
from app.modules.moderation.content_safety import ContentSafetyClient, FrameClassification
from app.modules.moderation.exceptions import (
    ContentSafetyUnavailableError,
    MediaExtractionError,
    ModerationError,
)
from app.modules.moderation.text_policy import (
    ContentType,
    TextModerationResult,
    TextPolicy,
    TextVerdict,
)
from app.modules.moderation.transcription import AudioTranscriber
from app.modules.video.media import MediaTools, temporary_media_file
from app.modules.video.models import AudioStatus, ModerationStatus, Video
from app.modules.video.repository import VideoRepository
from app.modules.video.state_machine import TransitionResult, VideoStateMachine
from app.modules.video.storage import VideoStorage

logger = logging.getLogger(__name__)

STATUS_ORDER = {
    ModerationStatus.APPROVED: 0,
    ModerationStatus.PENDING: 1,
    ModerationStatus.REJECTED: 2,
}


class AudioPolicy(str, Enum):
    STRICT = "STRICT"
    WARN = "WARN"
    PERMISSIVE = "PERMISSIVE"

    @classmethod
    def from_settings(cls) -> "AudioPolicy":
        try:
            return cls(settings.AUDIO_POLICY.upper())
        except ValueError:
            return cls.WARN


@dataclass
class CheckOutcome:
    check: str
    status: ModerationStatus
    reason: Optional[str] = None


@dataclass
class ModerationDecision:
    status: ModerationStatus
    audio_status: AudioStatus
    reason: Optional[str] = None
    confidence: Optional[float] = None
    categories: dict = field(default_factory=dict)
    checks: list[CheckOutcome] = field(default_factory=list)


def decide_visual(
    score: float,
    reject_threshold: Optional[float] = None,
    review_threshold: Optional[float] = None,
) -> ModerationStatus:
    """Map an aggregate unsafe score to a moderation status."""
    reject_threshold = settings.MODERATION_REJECT_THRESHOLD if reject_threshold is None else reject_threshold
    review_threshold = settings.MODERATION_REVIEW_THRESHOLD if review_threshold is None else review_threshold
    if score > reject_threshold:
        return ModerationStatus.REJECTED
    if score >= review_threshold:
        return ModerationStatus.PENDING
    return ModerationStatus.APPROVED


def decide_text(verdict: TextVerdict) -> ModerationStatus:
    if verdict == TextVerdict.BLOCK:
        return ModerationStatus.REJECTED
    if verdict == TextVerdict.REVIEW:
        return ModerationStatus.PENDING
    return ModerationStatus.APPROVED


def decide_audio(
    verdict: Optional[TextVerdict], policy: AudioPolicy
) -> tuple[AudioStatus, ModerationStatus]:
    """Audio status and its contribution to the overall decision.

    ``verdict`` is None when there is no audio track or nothing to transcribe.
    """
    if policy == AudioPolicy.PERMISSIVE or verdict is None:
        return AudioStatus.PASS, ModerationStatus.APPROVED
    if verdict == TextVerdict.BLOCK:
        if policy == AudioPolicy.STRICT:
            return AudioStatus.FLAGGED, ModerationStatus.PENDING
        return AudioStatus.FLAGGED, ModerationStatus.APPROVED
    if verdict == TextVerdict.REVIEW and policy == AudioPolicy.STRICT:
        return AudioStatus.PASS, ModerationStatus.PENDING
    return AudioStatus.PASS, ModerationStatus.APPROVED


def combine(
    checks: list[CheckOutcome],
    audio_status: AudioStatus,
    frames: Optional[FrameClassification] = None,
) -> ModerationDecision:
    """The most severe check decides; its reasons are kept."""
    status = max((c.status for c in checks), key=lambda s: STATUS_ORDER[s],
                 default=ModerationStatus.APPROVED)
    reasons = [f"{c.check}: {c.reason}" for c in checks if c.status == status and c.reason]
    if audio_status == AudioStatus.FLAGGED and status == ModerationStatus.APPROVED:
        reasons = ["audio flagged"]
    return ModerationDecision(
        status=status,
        audio_status=audio_status,
        reason="; ".join(reasons) or None,
        confidence=frames.unsafe_score if frames else None,
        categories=dict(frames.categories) if frames else {},
        checks=checks,
    )


async def apply_moderation_fallback(
    state_machine: VideoStateMachine, video_id: uuid.UUID, cause: str
) -> TransitionResult:
    """Resolve a video whose moderation could not run.

    Outside production the video is auto-approved so development is not
    blocked; in production it stays PENDING for manual review.
    """
    if settings.is_production:
        status, audio, reason = (
            ModerationStatus.PENDING, AudioStatus.PENDING, f"Requires manual review ({cause})"
        )
    else:
        status, audio, reason = (
            ModerationStatus.APPROVED, AudioStatus.PASS, f"Development auto-approve ({cause})"
        )
    log_warning(logger, "Moderation fallback applied", video_id=str(video_id),
                status=status.value, cause=cause)
    MODERATION_DECISIONS_TOTAL.labels(check="fallback", status=status.value).inc()
    return await state_machine.record_moderation_result(
        video_id, status, audio, reason=reason[:1000]
    )


class VideoModerationService:
    """Runs the moderation checks for one video and records the outcome."""

    def __init__(
        self,
        session: AsyncSession,
        text_policy: Optional[TextPolicy] = None,
        safety_client: Optional[ContentSafetyClient] = None,
        transcriber: Optional[AudioTranscriber] = None,
        media_tools: Optional[MediaTools] = None,
        video_storage: Optional[VideoStorage] = None,
        state_machine: Optional[VideoStateMachine] = None,
        audio_policy: Optional[AudioPolicy] = None,
    ):
        self.session = session
        self.video_repo = VideoRepository(session)
        self.text_policy = text_policy or TextPolicy()
        self.safety_client = safety_client or ContentSafetyClient()
        self.transcriber = transcriber or AudioTranscriber()
        self.media_tools = media_tools or MediaTools()
        self.video_storage = video_storage or VideoStorage()
        self.state_machine = state_machine or VideoStateMachine(session)
        self.audio_policy = audio_policy or AudioPolicy.from_settings()

    # ============================================
    # Text
    # ============================================

    async def check_text(self, text: str, content_type: ContentType) -> TextModerationResult:
        """Run the text policy, merging content-safety scores when available."""
        categories = None
        if text and self.safety_client.is_configured:
            try:
                categories = await self.safety_client.analyze_text(text)
            except ContentSafetyUnavailableError as e:
                log_warning(logger, "Text safety analysis unavailable, using local rules",
                            content_type=content_type.value, error=str(e))
        return self.text_policy.evaluate(text, content_type, categories)

    async def check_caption(self, video_id: uuid.UUID, caption: Optional[str]) -> CheckOutcome:
        if not caption:
            return CheckOutcome("caption", ModerationStatus.APPROVED)
        result = await self.check_text(caption, ContentType.VIDEO_CAPTION)
        status = decide_text(result.verdict)
        MODERATION_DECISIONS_TOTAL.labels(check="caption", status=status.value).inc()
        if result.verdict != TextVerdict.ALLOW:
            log_info(logger, "Caption flagged", video_id=str(video_id),
                     verdict=result.verdict.value, reason=result.reason)
        return CheckOutcome("caption", status, result.reason)

    async def screen_caption(self, video_id: uuid.UUID, caption: Optional[str]) -> CheckOutcome:
        """Check a caption at ingestion; a blocked caption rejects the video at once."""
        outcome = await self.check_caption(video_id, caption)
        if outcome.status == ModerationStatus.REJECTED:
            await self.state_machine.record_moderation_result(
                video_id,
                ModerationStatus.REJECTED,
                AudioStatus.PENDING,
                reason=f"caption: {outcome.reason}",
            )
            await self.session.commit()
        return outcome

    # ============================================
    # Visual and audio
    # ============================================

    async def check_visual(self, input_path: str, duration: float) -> tuple[CheckOutcome, FrameClassification]:
        """Sample frames and classify them.

        Raises:
            ContentSafetyUnavailableError: If the classifier is not usable
            MediaExtractionError: If frames cannot be extracted
        """
        if not self.safety_client.is_configured:
            raise ContentSafetyUnavailableError("Content-safety service not configured")
        try:
            frames = await self.media_tools.sample_frames(
                input_path, duration, settings.MODERATION_FRAME_SAMPLE_COUNT
            )
        except Exception as e:
            raise MediaExtractionError(f"Frame sampling failed: {e}") from e

        classification = await self.safety_client.classify_frames(frames)
        status = decide_visual(classification.unsafe_score)
        MODERATION_DECISIONS_TOTAL.labels(check="visual", status=status.value).inc()
        reason = None
        if status != ModerationStatus.APPROVED:
            worst = max(classification.categories.items(), key=lambda kv: kv[1], default=("unknown", 0))
            reason = f"unsafe score {classification.unsafe_score:.2f} ({worst[0]})"
        return CheckOutcome("visual", status, reason), classification

    async def check_audio(self, input_path: str) -> tuple[CheckOutcome, AudioStatus]:
        if self.audio_policy == AudioPolicy.PERMISSIVE:
            return CheckOutcome("audio", ModerationStatus.APPROVED), AudioStatus.PASS

        verdict = None
        reason = None
        try:
            audio = await self.media_tools.extract_audio(input_path)
        except Exception as e:
            raise MediaExtractionError(f"Audio extraction failed: {e}") from e

        if audio and self.transcriber.is_configured:
            with temporary_media_file(audio, ".wav") as audio_path:
                transcript = await self.transcriber.transcribe(audio_path)
            result = await self.check_text(transcript, ContentType.VIDEO_TRANSCRIPT)
            verdict, reason = result.verdict, result.reason
        elif audio:
            log_info(logger, "Transcription not configured, audio passes")

        audio_status, status = decide_audio(verdict, self.audio_policy)
        MODERATION_DECISIONS_TOTAL.labels(check="audio", status=audio_status.value).inc()
        return CheckOutcome("audio", status, reason), audio_status

    # ============================================
    # Full run
    # ============================================

    async def _media_input(self, video: Video, work_path: str) -> str:
        """Prefer the encoded asset when it is reachable over HTTP."""
        for url in (video.mp4_url, video.hls_manifest_url):
            if url and url.startswith(("http://", "https://")):
                return url
        if not await self.video_storage.download(video.raw_blob_key, work_path):
            raise MediaExtractionError("Raw asset could not be downloaded")
        return work_path

    async def evaluate(self, video: Video) -> ModerationDecision:
        """Run all checks for a video without recording anything.

        Raises:
            ModerationError: If a check cannot be completed
        """
        caption = await self.check_caption(video.id, video.caption)

        os.makedirs(settings.ENCODING_TEMP_DIR, exist_ok=True)
        suffix = os.path.splitext(video.raw_blob_key or "")[1]
        work_path = os.path.join(settings.ENCODING_TEMP_DIR, f"moderation-{video.id}{suffix}")
        try:
            input_path = await self._media_input(video, work_path)
            visual, frames = await self.check_visual(input_path, video.duration)
            audio, audio_status = await self.check_audio(input_path)
        finally:
            if os.path.exists(work_path):
                os.unlink(work_path)

        return combine([caption, visual, audio], audio_status, frames)

    async def moderate_video(self, video_id: uuid.UUID) -> Optional[ModerationDecision]:
        """Moderate a video whose Phase 1 has completed.

        Returns None when the video is missing or already decided. Check
        failures fall back per environment instead of raising.
        """
        video = await self.video_repo.get_by_id(video_id)
        if video is None:
            log_warning(logger, "Moderation requested for unknown video", video_id=str(video_id))
            return None
        if video.moderation_status != ModerationStatus.PENDING.value:
            log_info(logger, "Video already moderated", video_id=str(video_id),
                     moderation_status=video.moderation_status)
            return None

        with create_span("moderation.video", {"video.id": video_id}):
            try:
                decision = await self.evaluate(video)
            except ModerationError as e:
                log_error(logger, "Moderation checks failed", e, video_id=str(video_id))
                await apply_moderation_fallback(self.state_machine, video_id, str(e)[:200])
                await self.session.commit()
                return None

            result = await self.state_machine.record_moderation_result(
                video_id,
                decision.status,
                decision.audio_status,
                reason=decision.reason,
                confidence=decision.confidence,
                categories=decision.categories or None,
            )
            await self.session.commit()

        MODERATION_DECISIONS_TOTAL.labels(check="final", status=decision.status.value).inc()
        log_info(logger, "Video moderated", video_id=str(video_id), status=decision.status.value,
                 audio_status=decision.audio_status.value, outcome=result.outcome.value)
        return decision
