"""Property-based tests for the encoding event handler.

**Feature: short-video-platform, Property 6: Phase-1 Side Effects Run Once**
**Feature: short-video-platform, Property 7: Phase-2 Failure Keeps Video Watchable**
"""

import uuid
from unittest.mock import AsyncMock

import pytest

from app.modules.encoding.events import EncodingEvent, EncodingEventKind
from app.modules.encoding.handler import EncodingEventHandler
from app.modules.encoding.interface import EncodingJobHandle, EncodingPhase
from app.modules.video.models import EncodingStatus, EncodingTiersStatus
from app.modules.video.state_machine import Outcome, VideoState
from tests.conftest import InMemoryStateMachine, make_session

MANIFEST = "https://cdn.example.com/videos-encoded/x/master.m3u8"


def _event(video_id, phase=EncodingPhase.PHASE_1, kind=EncodingEventKind.COMPLETED, **kw):
    return EncodingEvent(
        video_id=video_id,
        phase=phase,
        kind=kind,
        manifest_url=kw.pop("manifest_url", MANIFEST if kind == EncodingEventKind.COMPLETED else None),
        input_blob_ref=kw.pop("input_blob_ref", "videos-raw/x/original.mp4"),
        source="test",
        **kw,
    )


def _handler(states, phase2_error=None):
    orchestrator = AsyncMock()
    if phase2_error is not None:
        orchestrator.submit_phase2.side_effect = phase2_error
    else:
        async def submit_phase2(video_id, blob_ref):
            return EncodingJobHandle("local", "job-2", video_id, EncodingPhase.PHASE_2)

        orchestrator.submit_phase2.side_effect = submit_phase2
    moderation = AsyncMock()
    repo = AsyncMock()
    repo.get_by_id.return_value = None
    handler = EncodingEventHandler(
        make_session(),
        state_machine=InMemoryStateMachine(states),
        orchestrator=orchestrator,
        moderation_trigger=moderation,
        video_repo=repo,
    )
    return handler, orchestrator, moderation


class TestPhase1SideEffects:
    """Property tests for duplicate Phase-1 callbacks."""

    @pytest.mark.parametrize("deliveries", [1, 2, 5])
    @pytest.mark.asyncio
    async def test_duplicate_phase1_completion_triggers_once(self, deliveries: int) -> None:
        """**Feature: short-video-platform, Property 6: Phase-1 Side Effects Run Once**

        For any number of duplicate Phase-1 completions, moderation and Phase-2
        submission SHALL each be triggered exactly once.
        """
        video_id = uuid.uuid4()
        handler, orchestrator, moderation = _handler({video_id: VideoState()})

        outcomes = [(await handler.handle(_event(video_id))).outcome for _ in range(deliveries)]

        assert outcomes[0] == Outcome.APPLIED
        assert all(o == Outcome.NOOP for o in outcomes[1:])
        moderation.assert_awaited_once_with(video_id)
        orchestrator.submit_phase2.assert_awaited_once_with(video_id, "videos-raw/x/original.mp4")

    @pytest.mark.asyncio
    async def test_phase1_completion_makes_video_watchable(self) -> None:
        video_id = uuid.uuid4()
        states = {video_id: VideoState()}
        handler, _, _ = _handler(states)

        await handler.handle(_event(video_id, kind=EncodingEventKind.STARTED))
        assert states[video_id].encoding_status == EncodingStatus.ENCODING.value

        await handler.handle(_event(video_id))
        state = states[video_id]
        assert state.encoding_status == EncodingStatus.READY.value
        assert state.encoding_tiers_status == EncodingTiersStatus.PARTIAL.value
        assert state.hls_manifest_url == MANIFEST
        assert state.is_watchable

    @pytest.mark.asyncio
    async def test_phase1_failure_records_error(self) -> None:
        video_id = uuid.uuid4()
        states = {video_id: VideoState()}
        handler, orchestrator, moderation = _handler(states)

        result = await handler.handle(
            _event(video_id, kind=EncodingEventKind.FAILED, error="codec not supported")
        )

        assert result.applied
        assert states[video_id].encoding_status == EncodingStatus.FAILED.value
        assert states[video_id].encoding_error == "codec not supported"
        moderation.assert_not_awaited()
        orchestrator.submit_phase2.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_unknown_video_is_not_found(self) -> None:
        handler, _, moderation = _handler({})
        result = await handler.handle(_event(uuid.uuid4()))
        assert result.outcome == Outcome.NOT_FOUND
        moderation.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_phase2_started_is_ignored(self) -> None:
        video_id = uuid.uuid4()
        handler, _, _ = _handler({video_id: VideoState()})
        result = await handler.handle(
            _event(video_id, phase=EncodingPhase.PHASE_2, kind=EncodingEventKind.STARTED)
        )
        assert result is None

    @pytest.mark.asyncio
    async def test_moderation_trigger_failure_applies_fallback(self, monkeypatch) -> None:
        from app.core.config import settings as app_settings

        monkeypatch.setattr(app_settings, "ENVIRONMENT", "development")
        video_id = uuid.uuid4()
        states = {video_id: VideoState()}
        handler, orchestrator, moderation = _handler(states)
        moderation.side_effect = RuntimeError("broker down")

        await handler.handle(_event(video_id))

        assert states[video_id].moderation_status == "APPROVED"
        orchestrator.submit_phase2.assert_awaited_once()


class TestPhase2Failure:
    """Property tests for Phase-2 failure handling."""

    @pytest.mark.asyncio
    async def test_phase2_failure_event_keeps_video_watchable(self) -> None:
        """**Feature: short-video-platform, Property 7: Phase-2 Failure Keeps Video Watchable**"""
        video_id = uuid.uuid4()
        states = {video_id: VideoState()}
        handler, _, _ = _handler(states)
        await handler.handle(_event(video_id))

        await handler.handle(
            _event(video_id, phase=EncodingPhase.PHASE_2, kind=EncodingEventKind.FAILED,
                   error="out of memory")
        )

        state = states[video_id]
        assert state.encoding_tiers_status == EncodingTiersStatus.PARTIAL_FAILED.value
        assert state.encoding_status == EncodingStatus.READY.value
        assert state.is_watchable

    @pytest.mark.asyncio
    async def test_phase2_submission_failure_marks_partial_failed(self, monkeypatch) -> None:
        from app.core.config import settings as app_settings

        monkeypatch.setattr(app_settings, "ENCODING_PHASE2_AUTO_RETRY", False)
        video_id = uuid.uuid4()
        states = {video_id: VideoState()}
        handler, _, _ = _handler(states, phase2_error=RuntimeError("encoder offline"))

        result = await handler.handle(_event(video_id))

        assert result.applied
        assert states[video_id].encoding_tiers_status == EncodingTiersStatus.PARTIAL_FAILED.value
        assert states[video_id].is_watchable

    @pytest.mark.asyncio
    async def test_phase2_job_failure_schedules_automatic_retry(self, monkeypatch) -> None:
        from unittest.mock import MagicMock

        from app.core.config import settings as app_settings
        from app.modules.encoding import tasks as encoding_tasks

        monkeypatch.setattr(app_settings, "ENCODING_PHASE2_AUTO_RETRY", True)
        schedule = MagicMock(return_value=True)
        monkeypatch.setattr(encoding_tasks, "schedule_phase2_retry", schedule)
        video_id = uuid.uuid4()
        states = {video_id: VideoState()}
        handler, _, _ = _handler(states)
        handler.video_repo.get_by_id.return_value = type(
            "Row", (), {"raw_blob_key": "videos-raw/x/original.mp4", "phase2_attempts": 1}
        )()
        await handler.handle(_event(video_id))
        failed = _event(video_id, phase=EncodingPhase.PHASE_2, kind=EncodingEventKind.FAILED,
                        error="out of memory")

        await handler.handle(failed)
        await handler.handle(failed)

        schedule.assert_called_once_with(video_id, 2)
        assert states[video_id].encoding_tiers_status == EncodingTiersStatus.PARTIAL_FAILED.value

    @pytest.mark.asyncio
    async def test_phase2_completion_after_failure_reaches_all(self) -> None:
        video_id = uuid.uuid4()
        states = {video_id: VideoState()}
        handler, _, _ = _handler(states)
        await handler.handle(_event(video_id))
        await handler.handle(
            _event(video_id, phase=EncodingPhase.PHASE_2, kind=EncodingEventKind.FAILED)
        )

        await handler.handle(_event(video_id, phase=EncodingPhase.PHASE_2))

        assert states[video_id].encoding_tiers_status == EncodingTiersStatus.ALL.value

    @pytest.mark.asyncio
    async def test_retry_phase2_resubmits(self) -> None:
        video_id = uuid.uuid4()
        states = {video_id: VideoState()}
        handler, orchestrator, _ = _handler(states)
        await handler.handle(_event(video_id))
        await handler.handle(
            _event(video_id, phase=EncodingPhase.PHASE_2, kind=EncodingEventKind.FAILED)
        )
        handler.video_repo.get_by_id.return_value = type(
            "Row", (), {"raw_blob_key": "videos-raw/x/original.mp4", "phase2_attempts": 1}
        )()

        result = await handler.retry_phase2(video_id)

        assert result.applied
        assert states[video_id].encoding_tiers_status == EncodingTiersStatus.PARTIAL.value
        handler.video_repo.increment_phase2_attempts.assert_awaited_once_with(video_id)
        assert orchestrator.submit_phase2.await_count == 2

    @pytest.mark.asyncio
    async def test_retry_phase2_requires_failed_tiers(self) -> None:
        video_id = uuid.uuid4()
        states = {video_id: VideoState()}
        handler, orchestrator, _ = _handler(states)
        await handler.handle(_event(video_id))

        result = await handler.retry_phase2(video_id)

        assert not result.applied
        assert states[video_id].encoding_tiers_status == EncodingTiersStatus.PARTIAL.value
        assert orchestrator.submit_phase2.await_count == 1
