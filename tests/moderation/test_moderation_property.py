"""Property-based tests for video moderation.

**Feature: short-video-platform, Property 10: Visual Score Thresholds**
**Feature: short-video-platform, Property 11: Most Severe Check Wins**
"""

import uuid
from types import SimpleNamespace
from unittest.mock import AsyncMock, MagicMock

import pytest
from hypothesis import given, settings, strategies as st

from app.modules.moderation.content_safety import FrameClassification, aggregate_frames, unsafe_score
from app.modules.moderation.exceptions import MediaExtractionError
from app.modules.moderation.service import (
    AudioPolicy,
    CheckOutcome,
    VideoModerationService,
    combine,
    decide_audio,
    decide_visual,
)
from app.modules.moderation.text_policy import TextPolicy, TextVerdict
from app.modules.video.models import AudioStatus, ModerationStatus, PublishStatus
from app.modules.video.state_machine import VideoState, publish_blocking_reason
from tests.conftest import InMemoryStateMachine, make_session

statuses = st.sampled_from(list(ModerationStatus))


class TestVisualThresholds:
    """Property tests for the visual decision."""

    @given(score=st.floats(min_value=0.0, max_value=1.0))
    @settings(max_examples=200)
    def test_thresholds(self, score: float) -> None:
        """**Feature: short-video-platform, Property 10: Visual Score Thresholds**

        A score above the reject threshold SHALL reject, a score at or above the
        review threshold SHALL hold for review, anything lower SHALL approve.
        """
        status = decide_visual(score, reject_threshold=0.9, review_threshold=0.5)
        if score > 0.9:
            assert status == ModerationStatus.REJECTED
        elif score >= 0.5:
            assert status == ModerationStatus.PENDING
        else:
            assert status == ModerationStatus.APPROVED

    def test_worst_frame_decides(self) -> None:
        result = aggregate_frames([{"Violence": 0}, {"Violence": 6, "Hate": 2}, {"Sexual": 1}])
        assert result.unsafe_score == 1.0
        assert result.categories == {"Violence": 6, "Hate": 2, "Sexual": 1}
        assert len(result.frame_scores) == 3

    def test_unsafe_score_is_bounded(self) -> None:
        assert unsafe_score({}) == 0.0
        assert unsafe_score({"Hate": 60}) == 1.0


class TestCombine:
    """Property tests for combining check outcomes."""

    @given(checks=st.lists(statuses, min_size=1, max_size=3))
    @settings(max_examples=100)
    def test_most_severe_wins(self, checks) -> None:
        """**Feature: short-video-platform, Property 11: Most Severe Check Wins**"""
        outcomes = [CheckOutcome(f"c{i}", s, "reason") for i, s in enumerate(checks)]
        decision = combine(outcomes, AudioStatus.PASS)
        if ModerationStatus.REJECTED in checks:
            assert decision.status == ModerationStatus.REJECTED
        elif ModerationStatus.PENDING in checks:
            assert decision.status == ModerationStatus.PENDING
        else:
            assert decision.status == ModerationStatus.APPROVED

    def test_flagged_audio_is_noted_on_approval(self) -> None:
        decision = combine([CheckOutcome("visual", ModerationStatus.APPROVED)], AudioStatus.FLAGGED)
        assert decision.status == ModerationStatus.APPROVED
        assert decision.reason == "audio flagged"

    def test_confidence_comes_from_frames(self) -> None:
        frames = FrameClassification(unsafe_score=0.95, categories={"Violence": 6})
        decision = combine([CheckOutcome("visual", ModerationStatus.REJECTED, "unsafe")],
                           AudioStatus.PASS, frames)
        assert decision.confidence == 0.95
        assert decision.categories == {"Violence": 6}


class TestAudioPolicy:
    @pytest.mark.parametrize(
        "verdict,policy,expected",
        [
            (None, AudioPolicy.STRICT, (AudioStatus.PASS, ModerationStatus.APPROVED)),
            (TextVerdict.BLOCK, AudioPolicy.STRICT, (AudioStatus.FLAGGED, ModerationStatus.PENDING)),
            (TextVerdict.BLOCK, AudioPolicy.WARN, (AudioStatus.FLAGGED, ModerationStatus.APPROVED)),
            (TextVerdict.BLOCK, AudioPolicy.PERMISSIVE, (AudioStatus.PASS, ModerationStatus.APPROVED)),
            (TextVerdict.REVIEW, AudioPolicy.STRICT, (AudioStatus.PASS, ModerationStatus.PENDING)),
            (TextVerdict.ALLOW, AudioPolicy.WARN, (AudioStatus.PASS, ModerationStatus.APPROVED)),
        ],
    )
    def test_decide_audio(self, verdict, policy, expected) -> None:
        assert decide_audio(verdict, policy) == expected


def _service(states, frames_score=0.1, transcript=None, configured=True, fail_frames=False):
    safety = MagicMock()
    safety.is_configured = configured
    safety.analyze_text = AsyncMock(return_value={})
    safety.classify_frames = AsyncMock(
        return_value=FrameClassification(unsafe_score=frames_score,
                                         categories={"Violence": round(frames_score * 6)})
    )
    media = MagicMock()
    if fail_frames:
        media.sample_frames = AsyncMock(side_effect=RuntimeError("ffmpeg missing"))
    else:
        media.sample_frames = AsyncMock(return_value=[b"f1", b"f2"])
    media.extract_audio = AsyncMock(return_value=b"wav" if transcript else None)
    transcriber = MagicMock()
    transcriber.is_configured = transcript is not None
    transcriber.transcribe = AsyncMock(return_value=transcript or "")

    session = make_session()
    service = VideoModerationService(
        session,
        text_policy=TextPolicy(rules=[]),
        safety_client=safety,
        transcriber=transcriber,
        media_tools=media,
        video_storage=MagicMock(),
        state_machine=InMemoryStateMachine(states),
        audio_policy=AudioPolicy.WARN,
    )
    return service, session


def _ready_video(video_id) -> SimpleNamespace:
    return SimpleNamespace(
        id=video_id,
        caption="sunset",
        duration=10.0,
        raw_blob_key=f"videos-raw/{video_id}/original.mp4",
        mp4_url=None,
        hls_manifest_url=f"https://cdn.example.com/videos-encoded/{video_id}/master.m3u8",
        moderation_status=ModerationStatus.PENDING.value,
    )


def _ready_state() -> VideoState:
    return VideoState(encoding_status="READY", encoding_tiers_status="PARTIAL",
                      hls_manifest_url="https://cdn/master.m3u8")


class TestModerateVideo:
    @pytest.mark.asyncio
    async def test_unsafe_video_is_rejected_and_deactivated(self) -> None:
        video_id = uuid.uuid4()
        states = {video_id: _ready_state()}
        service, session = _service(states, frames_score=0.95)
        service.video_repo = MagicMock()
        service.video_repo.get_by_id = AsyncMock(return_value=_ready_video(video_id))

        decision = await service.moderate_video(video_id)

        assert decision.status == ModerationStatus.REJECTED
        state = states[video_id]
        assert state.moderation_status == ModerationStatus.REJECTED.value
        assert state.is_active is False
        assert state.moderation_confidence == 0.95
        assert publish_blocking_reason(state) == "Video was rejected by moderation"
        session.commit.assert_awaited()

    @pytest.mark.asyncio
    async def test_safe_video_is_approved(self) -> None:
        video_id = uuid.uuid4()
        states = {video_id: _ready_state()}
        service, _ = _service(states, frames_score=0.1)
        service.video_repo = MagicMock()
        service.video_repo.get_by_id = AsyncMock(return_value=_ready_video(video_id))

        decision = await service.moderate_video(video_id)

        assert decision.status == ModerationStatus.APPROVED
        assert states[video_id].moderation_status == ModerationStatus.APPROVED.value
        assert states[video_id].audio_status == AudioStatus.PASS.value
        assert publish_blocking_reason(states[video_id]) is None

    @pytest.mark.asyncio
    async def test_borderline_video_waits_for_review(self) -> None:
        video_id = uuid.uuid4()
        states = {video_id: _ready_state()}
        service, _ = _service(states, frames_score=0.6)
        service.video_repo = MagicMock()
        service.video_repo.get_by_id = AsyncMock(return_value=_ready_video(video_id))

        decision = await service.moderate_video(video_id)

        assert decision.status == ModerationStatus.PENDING
        assert states[video_id].publish_status == PublishStatus.DRAFT.value

    @pytest.mark.asyncio
    async def test_check_failure_falls_back_in_production(self, monkeypatch) -> None:
        from app.core.config import settings as app_settings

        monkeypatch.setattr(app_settings, "ENVIRONMENT", "production")
        video_id = uuid.uuid4()
        states = {video_id: _ready_state()}
        service, _ = _service(states, fail_frames=True)
        service.video_repo = MagicMock()
        service.video_repo.get_by_id = AsyncMock(return_value=_ready_video(video_id))

        assert await service.moderate_video(video_id) is None
        assert states[video_id].moderation_status == ModerationStatus.PENDING.value
        assert "manual review" in states[video_id].moderation_reason

    @pytest.mark.asyncio
    async def test_unconfigured_classifier_auto_approves_in_development(self, monkeypatch) -> None:
        from app.core.config import settings as app_settings

        monkeypatch.setattr(app_settings, "ENVIRONMENT", "development")
        video_id = uuid.uuid4()
        states = {video_id: _ready_state()}
        service, _ = _service(states, configured=False)
        service.video_repo = MagicMock()
        service.video_repo.get_by_id = AsyncMock(return_value=_ready_video(video_id))

        await service.moderate_video(video_id)

        assert states[video_id].moderation_status == ModerationStatus.APPROVED.value

    @pytest.mark.asyncio
    async def test_already_moderated_is_skipped(self) -> None:
        video_id = uuid.uuid4()
        service, _ = _service({video_id: _ready_state()})
        video = _ready_video(video_id)
        video.moderation_status = ModerationStatus.APPROVED.value
        service.video_repo = MagicMock()
        service.video_repo.get_by_id = AsyncMock(return_value=video)

        assert await service.moderate_video(video_id) is None
        service.safety_client.classify_frames.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_frame_sampling_failure_is_extraction_error(self) -> None:
        service, _ = _service({}, fail_frames=True)
        with pytest.raises(MediaExtractionError):
            await service.check_visual("/tmp/x.mp4", 10.0)


class TestCaptionScreening:
    @pytest.mark.asyncio
    async def test_blocked_caption_rejects_immediately(self) -> None:
        from app.modules.moderation.text_policy import default_rules

        video_id = uuid.uuid4()
        states = {video_id: VideoState()}
        service, session = _service(states)
        service.text_policy = TextPolicy(rules=default_rules(["scam"]))

        outcome = await service.screen_caption(video_id, "Totally not a scam")

        assert outcome.status == ModerationStatus.REJECTED
        assert states[video_id].moderation_status == ModerationStatus.REJECTED.value
        assert states[video_id].is_active is False
        session.commit.assert_awaited()

    @pytest.mark.asyncio
    async def test_clean_caption_leaves_pending(self) -> None:
        video_id = uuid.uuid4()
        states = {video_id: VideoState()}
        service, _ = _service(states)

        outcome = await service.screen_caption(video_id, "Beach day")

        assert outcome.status == ModerationStatus.APPROVED
        assert states[video_id].moderation_status == ModerationStatus.PENDING.value
