"""Property-based tests for the video state machine.

**Feature: short-video-platform, Property 1: Publication Requires Encoded And Approved**
**Feature: short-video-platform, Property 2: Encoding Callbacks Are Idempotent**
"""

from datetime import datetime, timedelta, timezone

import pytest
from hypothesis import given, settings, strategies as st

from app.modules.video.models import (
    AudioStatus,
    EncodingStatus,
    EncodingTiersStatus,
    ModerationStatus,
    PublishStatus,
)
from app.modules.video.state_machine import (
    Outcome,
    VideoState,
    admin_approve,
    admin_reject,
    apply,
    build_update,
    mark_encoding_started,
    mark_phase1_failed,
    mark_phase1_ready,
    mark_phase2_failed,
    mark_phase2_ready,
    mark_phase2_resubmitted,
    publish,
    publish_blocking_reason,
    record_moderation_result,
    reset_for_reprocess,
    schedule,
    soft_delete,
    unschedule,
)

state_strategy = st.builds(
    VideoState,
    encoding_status=st.sampled_from([s.value for s in EncodingStatus]),
    encoding_tiers_status=st.sampled_from([s.value for s in EncodingTiersStatus]),
    moderation_status=st.sampled_from([s.value for s in ModerationStatus]),
    audio_status=st.sampled_from([s.value for s in AudioStatus]),
    publish_status=st.sampled_from([s.value for s in PublishStatus]),
    is_active=st.booleans(),
    deleted=st.booleans(),
    hls_manifest_url=st.one_of(st.none(), st.just("https://cdn/master.m3u8")),
)

transition_strategy = st.sampled_from([
    mark_encoding_started(),
    mark_phase1_ready("https://cdn/master.m3u8"),
    mark_phase1_failed("boom"),
    mark_phase2_ready(),
    mark_phase2_failed(),
    mark_phase2_resubmitted(),
    reset_for_reprocess(),
    record_moderation_result(ModerationStatus.APPROVED, AudioStatus.PASS),
    record_moderation_result(ModerationStatus.REJECTED, AudioStatus.PASS, "unsafe"),
    admin_approve(),
    admin_reject("policy"),
    publish(),
    schedule(datetime(2030, 1, 1, tzinfo=timezone.utc)),
    unschedule(),
    soft_delete(),
])


class TestPublicationInvariant:
    """Property tests for the publication gate."""

    @given(state=state_strategy, transition=transition_strategy)
    @settings(max_examples=300)
    def test_published_videos_are_always_ready_and_approved(self, state, transition) -> None:
        """**Feature: short-video-platform, Property 1: Publication Requires Encoded And Approved**

        For any state and transition, a transition that newly PUBLISHES a video
        SHALL only apply when encoding is READY and moderation is APPROVED.
        """
        result = apply(state, transition)
        newly_published = (
            result.applied
            and state.publish_status != PublishStatus.PUBLISHED.value
            and result.state.publish_status == PublishStatus.PUBLISHED.value
        )
        if newly_published:
            assert state.encoding_status == EncodingStatus.READY.value
            assert state.moderation_status == ModerationStatus.APPROVED.value
            assert state.is_active and not state.deleted

    @given(state=state_strategy)
    @settings(max_examples=200)
    def test_blocking_reason_agrees_with_publish(self, state) -> None:
        """**Feature: short-video-platform, Property 1: Publication Requires Encoded And Approved**"""
        result = apply(state, publish())
        reason = publish_blocking_reason(state)
        assert result.applied == (reason is None)

    @given(state=state_strategy)
    @settings(max_examples=200)
    def test_rejection_deactivates(self, state) -> None:
        result = apply(state, admin_reject("policy"))
        if result.applied:
            assert result.state.moderation_status == ModerationStatus.REJECTED.value
            assert result.state.is_active is False
            assert result.state.publish_status == PublishStatus.DRAFT.value


class TestEncodingIdempotence:
    """Property tests for duplicate and out-of-order encoding callbacks."""

    @given(state=state_strategy)
    @settings(max_examples=200)
    def test_phase1_ready_twice_is_noop(self, state) -> None:
        """**Feature: short-video-platform, Property 2: Encoding Callbacks Are Idempotent**

        Applying the Phase-1 completion twice SHALL leave the state as after the
        first application, and the second application SHALL never be APPLIED.
        """
        transition = mark_phase1_ready("https://cdn/master.m3u8")
        first = apply(state, transition)
        second = apply(first.state, transition)

        assert not second.applied
        assert second.state == first.state
        if first.applied:
            assert second.outcome == Outcome.NOOP

    @given(state=state_strategy)
    @settings(max_examples=200)
    def test_late_phase1_failure_never_downgrades_ready(self, state) -> None:
        """**Feature: short-video-platform, Property 2: Encoding Callbacks Are Idempotent**"""
        ready = apply(state, mark_phase1_ready("https://cdn/master.m3u8"))
        if ready.state.encoding_status != EncodingStatus.READY.value:
            return
        late = apply(ready.state, mark_phase1_failed("late failure"))
        assert late.outcome == Outcome.INVALID
        assert late.state.encoding_status == EncodingStatus.READY.value

    def test_phase2_failure_keeps_video_watchable(self) -> None:
        state = VideoState()
        state = apply(state, mark_encoding_started()).state
        state = apply(state, mark_phase1_ready("https://cdn/master.m3u8")).state
        result = apply(state, mark_phase2_failed())

        assert result.applied
        assert result.state.encoding_tiers_status == EncodingTiersStatus.PARTIAL_FAILED.value
        assert result.state.encoding_status == EncodingStatus.READY.value
        assert result.state.is_watchable

    def test_phase2_ready_before_phase1_is_invalid(self) -> None:
        result = apply(VideoState(), mark_phase2_ready())
        assert result.outcome == Outcome.INVALID
        assert result.state.encoding_tiers_status == EncodingTiersStatus.NONE.value

    def test_resubmit_only_from_partial_failed(self) -> None:
        ready = apply(VideoState(), mark_phase1_ready("m")).state
        assert apply(ready, mark_phase2_resubmitted()).outcome == Outcome.INVALID

        failed = apply(ready, mark_phase2_failed()).state
        resubmitted = apply(failed, mark_phase2_resubmitted())
        assert resubmitted.applied
        assert resubmitted.state.encoding_tiers_status == EncodingTiersStatus.PARTIAL.value

    def test_phase1_error_is_truncated(self) -> None:
        result = apply(VideoState(), mark_phase1_failed("x" * 2000))
        assert len(result.state.encoding_error) == 500


class TestModerationTransitions:
    def test_automatic_result_never_overrides_admin(self) -> None:
        approved = apply(VideoState(), admin_approve()).state
        result = apply(
            approved,
            record_moderation_result(ModerationStatus.REJECTED, AudioStatus.PASS, "late"),
        )
        assert not result.applied
        assert result.state.moderation_status == ModerationStatus.APPROVED.value

    def test_automatic_rejection_clears_schedule(self) -> None:
        scheduled = apply(
            VideoState(), schedule(datetime.now(timezone.utc) + timedelta(hours=1))
        ).state
        result = apply(
            scheduled,
            record_moderation_result(ModerationStatus.REJECTED, AudioStatus.PASS, "unsafe"),
        )
        assert result.state.publish_status == PublishStatus.DRAFT.value
        assert result.state.scheduled_publish_at is None
        assert result.state.is_active is False

    def test_admin_approve_reactivates_rejected(self) -> None:
        rejected = apply(VideoState(), admin_reject("spam")).state
        result = apply(rejected, admin_approve())
        assert result.applied
        assert result.state.is_active is True
        assert result.state.moderation_reason is None


class TestPublicationTransitions:
    def _publishable(self) -> VideoState:
        return VideoState(
            encoding_status=EncodingStatus.READY.value,
            encoding_tiers_status=EncodingTiersStatus.PARTIAL.value,
            moderation_status=ModerationStatus.APPROVED.value,
            hls_manifest_url="m",
        )

    def test_publish_sets_timestamp_and_clears_schedule(self) -> None:
        now = datetime(2026, 1, 1, tzinfo=timezone.utc)
        state = apply(self._publishable(), schedule(now + timedelta(days=1))).state
        result = apply(state, publish(), now=now)
        assert result.state.publish_status == PublishStatus.PUBLISHED.value
        assert result.state.published_at == now
        assert result.state.scheduled_publish_at is None

    def test_publish_twice_is_noop(self) -> None:
        published = apply(self._publishable(), publish()).state
        assert apply(published, publish()).outcome == Outcome.NOOP

    def test_published_video_cannot_be_reprocessed(self) -> None:
        published = apply(self._publishable(), publish()).state
        assert apply(published, reset_for_reprocess()).outcome == Outcome.INVALID

    def test_unschedule_draft_is_invalid(self) -> None:
        assert apply(VideoState(), unschedule()).outcome == Outcome.INVALID

    def test_commands_are_not_treated_as_redelivery(self) -> None:
        assert unschedule().redeliverable is False
        assert mark_phase2_resubmitted().redeliverable is False
        assert mark_phase1_ready("m").redeliverable is True

    @pytest.mark.parametrize(
        "state,reason",
        [
            (VideoState(deleted=True), "Video has been deleted"),
            (VideoState(), "Video encoding not complete"),
            (
                VideoState(encoding_status=EncodingStatus.READY.value,
                           moderation_status=ModerationStatus.REJECTED.value),
                "Video was rejected by moderation",
            ),
            (
                VideoState(encoding_status=EncodingStatus.READY.value),
                "Video not approved for publishing",
            ),
        ],
    )
    def test_blocking_reasons(self, state, reason) -> None:
        assert publish_blocking_reason(state) == reason

    def test_soft_delete_marks_deleted(self) -> None:
        result = apply(self._publishable(), soft_delete())
        assert result.state.deleted is True
        assert result.state.is_active is False
        assert apply(result.state, soft_delete()).outcome == Outcome.NOOP


class TestConditionalUpdate:
    def test_update_guards_on_prior_state(self) -> None:
        import uuid

        statement = build_update(uuid.uuid4(), publish(), datetime.now(timezone.utc))
        sql = str(statement.compile(compile_kwargs={"literal_binds": False}))

        assert sql.startswith("UPDATE videos")
        assert "encoding_status" in sql and "moderation_status" in sql
        assert "deleted_at IS NULL" in sql


def _row(**overrides):
    from tests.conftest import make_video

    defaults = dict(
        encoding_error=None,
        encoding_started_at=None,
        encoding_completed_at=None,
        moderation_reason=None,
        moderation_confidence=None,
        moderation_categories=None,
        scheduled_publish_at=None,
    )
    defaults.update(overrides)
    return make_video(**defaults)


def _session_with_row(row, rowcount: int):
    from unittest.mock import AsyncMock, MagicMock

    update_result = MagicMock(rowcount=rowcount)
    select_result = MagicMock()
    select_result.scalar_one_or_none.return_value = row
    session = MagicMock()
    session.execute = AsyncMock(side_effect=[update_result, select_result])
    return session


class TestDatabaseEvaluator:
    """Outcome classification when the conditional UPDATE matched no row."""

    @pytest.mark.asyncio
    async def test_unschedule_of_draft_is_invalid(self) -> None:
        from app.modules.video.state_machine import VideoStateMachine

        row = _row(publish_status=PublishStatus.DRAFT.value)
        machine = VideoStateMachine(_session_with_row(row, rowcount=0))

        result = await machine.unschedule(row.id)

        assert result.outcome == Outcome.INVALID

    @pytest.mark.asyncio
    async def test_resubmit_without_phase2_failure_is_invalid(self) -> None:
        from app.modules.video.state_machine import VideoStateMachine

        row = _row(encoding_tiers_status=EncodingTiersStatus.PARTIAL.value)
        machine = VideoStateMachine(_session_with_row(row, rowcount=0))

        result = await machine.mark_phase2_resubmitted(row.id)

        assert result.outcome == Outcome.INVALID

    @pytest.mark.asyncio
    async def test_redelivered_phase1_ready_is_noop(self) -> None:
        from app.modules.video.state_machine import VideoStateMachine

        row = _row(encoding_tiers_status=EncodingTiersStatus.PARTIAL.value,
                   hls_manifest_url="https://cdn.example.com/master.m3u8")
        machine = VideoStateMachine(_session_with_row(row, rowcount=0))

        result = await machine.mark_phase1_ready(row.id, "https://cdn.example.com/master.m3u8")

        assert result.outcome == Outcome.NOOP
