"""Tests for the video lifecycle and interaction services.

**Feature: short-video-platform, Property 1: Publication Requires Encoded And Approved**
"""

import uuid
from datetime import datetime, timedelta, timezone
from unittest.mock import AsyncMock, MagicMock

import pytest

from app.modules.auth.dependencies import CurrentUser
from app.modules.moderation.text_policy import TextPolicy, default_rules
from app.modules.video.exceptions import (
    CommentValidationError,
    InvalidStateTransitionError,
    PublishBlockedError,
    VideoAccessDeniedError,
    VideoNotFoundError,
    VideoValidationError,
)
from app.modules.video.interactions import VideoInteractionService
from app.modules.video.models import PublishStatus
from app.modules.video.service import VideoService
from app.modules.video.state_machine import VideoState
from tests.conftest import InMemoryStateMachine, make_session, make_video


def _video_service(video, states):
    session = make_session()
    service = VideoService(
        session,
        video_storage=MagicMock(),
        orchestrator=MagicMock(),
        state_machine=InMemoryStateMachine(states),
    )
    service.video_repo = AsyncMock()
    service.video_repo.get_by_id.return_value = video
    service.video_repo.refresh.return_value = video
    return service, session


class TestPublish:
    """Property tests for publication gating."""

    @pytest.mark.asyncio
    async def test_publish_blocked_until_encoded(self) -> None:
        """**Feature: short-video-platform, Property 1: Publication Requires Encoded And Approved**"""
        video = make_video(publish_status=PublishStatus.DRAFT.value)
        owner = CurrentUser(id=video.user_id)
        service, session = _video_service(video, {video.id: VideoState()})

        with pytest.raises(PublishBlockedError, match="Video encoding not complete") as exc:
            await service.publish(video.id, owner)

        assert exc.value.status_code == 400
        session.commit.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_publish_blocked_while_pending_review(self) -> None:
        video = make_video(publish_status=PublishStatus.DRAFT.value)
        states = {video.id: VideoState(encoding_status="READY", hls_manifest_url="m")}
        service, _ = _video_service(video, states)

        with pytest.raises(PublishBlockedError, match="not approved"):
            await service.publish(video.id, CurrentUser(id=video.user_id))

    @pytest.mark.asyncio
    async def test_publish_ready_and_approved(self) -> None:
        video = make_video(publish_status=PublishStatus.DRAFT.value)
        states = {
            video.id: VideoState(encoding_status="READY", moderation_status="APPROVED",
                                 hls_manifest_url="m")
        }
        service, session = _video_service(video, states)

        await service.publish(video.id, CurrentUser(id=video.user_id))

        assert states[video.id].publish_status == PublishStatus.PUBLISHED.value
        assert states[video.id].published_at is not None
        session.commit.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_only_owner_may_publish(self) -> None:
        video = make_video()
        service, _ = _video_service(video, {video.id: VideoState()})
        with pytest.raises(VideoAccessDeniedError):
            await service.publish(video.id, CurrentUser(id=uuid.uuid4()))

    @pytest.mark.asyncio
    async def test_schedule_in_the_past_is_rejected(self) -> None:
        video = make_video()
        service, _ = _video_service(video, {video.id: VideoState()})
        past = datetime.now(timezone.utc) - timedelta(minutes=1)
        with pytest.raises(VideoValidationError, match="future"):
            await service.schedule(video.id, CurrentUser(id=video.user_id), past)

    @pytest.mark.asyncio
    async def test_schedule_then_unschedule(self) -> None:
        video = make_video(publish_status=PublishStatus.DRAFT.value)
        states = {video.id: VideoState()}
        service, _ = _video_service(video, states)
        owner = CurrentUser(id=video.user_id)
        when = datetime.now(timezone.utc) + timedelta(days=1)

        await service.schedule(video.id, owner, when)
        assert states[video.id].publish_status == PublishStatus.SCHEDULED.value
        assert states[video.id].scheduled_publish_at == when

        await service.unschedule(video.id, owner)
        assert states[video.id].publish_status == PublishStatus.DRAFT.value
        assert states[video.id].scheduled_publish_at is None

    @pytest.mark.asyncio
    async def test_unschedule_draft_is_rejected(self) -> None:
        video = make_video(publish_status=PublishStatus.DRAFT.value)
        service, session = _video_service(video, {video.id: VideoState()})

        with pytest.raises(VideoValidationError, match="not scheduled") as exc:
            await service.unschedule(video.id, CurrentUser(id=video.user_id))

        assert exc.value.status_code == 400
        session.commit.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_due_video_not_ready_stays_scheduled(self) -> None:
        video = make_video()
        states = {video.id: VideoState(publish_status=PublishStatus.SCHEDULED.value)}
        service, _ = _video_service(video, states)

        result = await service.publish_due(video.id)

        assert not result.applied
        assert states[video.id].publish_status == PublishStatus.SCHEDULED.value


class TestVisibility:
    @pytest.mark.asyncio
    async def test_drafts_are_hidden_from_others(self) -> None:
        video = make_video(publish_status=PublishStatus.DRAFT.value)
        service, _ = _video_service(video, {})

        with pytest.raises(VideoNotFoundError):
            await service.get_video(video.id, None)
        assert await service.get_video(video.id, CurrentUser(id=video.user_id)) is video
        assert await service.get_video(video.id, CurrentUser(id=uuid.uuid4(), is_admin=True)) is video

    @pytest.mark.asyncio
    async def test_stream_prefers_manifest(self) -> None:
        video = make_video(mp4_url="https://cdn/fallback.mp4")
        service, _ = _video_service(video, {})
        assert await service.get_stream_url(video.id) == video.hls_manifest_url

    @pytest.mark.asyncio
    async def test_stream_requires_ready(self) -> None:
        video = make_video(encoding_status="ENCODING")
        service, _ = _video_service(video, {})
        with pytest.raises(VideoNotFoundError, match="playback"):
            await service.get_stream_url(video.id)


class TestAdminModeration:
    @pytest.mark.asyncio
    async def test_reject_then_approve_reactivates(self) -> None:
        video = make_video()
        states = {video.id: VideoState(moderation_status="APPROVED")}
        service, _ = _video_service(video, states)
        admin = CurrentUser(id=uuid.uuid4(), is_admin=True)

        await service.admin_reject(video.id, admin, "spam")
        assert states[video.id].is_active is False
        assert states[video.id].moderation_reason == "spam"

        await service.admin_approve(video.id, admin)
        assert states[video.id].is_active is True
        assert states[video.id].moderation_status == "APPROVED"

    @pytest.mark.asyncio
    async def test_unknown_video(self) -> None:
        service, _ = _video_service(None, {})
        with pytest.raises(VideoNotFoundError):
            await service.admin_approve(uuid.uuid4(), CurrentUser(id=uuid.uuid4(), is_admin=True))

    @pytest.mark.asyncio
    async def test_soft_deleted_cannot_be_approved(self) -> None:
        video = make_video()
        states = {video.id: VideoState(deleted=True)}
        service, _ = _video_service(video, states)
        with pytest.raises(InvalidStateTransitionError) as exc:
            await service.admin_approve(video.id, CurrentUser(id=uuid.uuid4(), is_admin=True))
        assert exc.value.status_code == 409


def _interactions(video, text_policy=None):
    session = make_session()
    service = VideoInteractionService(session, text_policy=text_policy or TextPolicy(rules=[]))
    service.video_repo = AsyncMock()
    service.video_repo.get_by_id.return_value = video
    service.video_repo.refresh.return_value = video
    service.like_repo = AsyncMock()
    service.comment_repo = AsyncMock()
    return service, session


class TestInteractions:
    @pytest.mark.asyncio
    async def test_like_recounts_and_rescores(self) -> None:
        video = make_video(like_count=3)
        service, session = _interactions(video)
        service.like_repo.count.return_value = 4

        count = await service.like(video.id, uuid.uuid4())

        assert count == 4
        service.video_repo.set_like_count.assert_awaited_once_with(video.id, 4)
        service.video_repo.set_engagement_score.assert_awaited_once()
        session.commit.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_unpublished_video_cannot_be_liked(self) -> None:
        video = make_video(publish_status=PublishStatus.DRAFT.value)
        service, _ = _interactions(video)
        with pytest.raises(VideoNotFoundError):
            await service.like(video.id, uuid.uuid4())

    @pytest.mark.asyncio
    async def test_view_failure_is_swallowed(self) -> None:
        video = make_video()
        service, session = _interactions(video)
        service.video_repo.increment_counter.side_effect = RuntimeError("db down")

        await service.record_view(video.id)

        session.rollback.assert_awaited_once()

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "overrides",
        [
            {"publish_status": PublishStatus.DRAFT.value},
            {"publish_status": PublishStatus.SCHEDULED.value},
            {"is_active": False},
        ],
    )
    async def test_non_public_video_collects_no_views(self, overrides) -> None:
        video = make_video(**overrides)
        service, session = _interactions(video)

        with pytest.raises(VideoNotFoundError) as exc:
            await service.record_view(video.id)
        with pytest.raises(VideoNotFoundError):
            await service.record_share(video.id)

        assert exc.value.status_code == 404
        service.video_repo.increment_counter.assert_not_awaited()
        session.commit.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_deleted_video_collects_no_shares(self) -> None:
        service, _ = _interactions(None)
        with pytest.raises(VideoNotFoundError):
            await service.record_share(uuid.uuid4())
        service.video_repo.increment_counter.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_view_counted_for_published_video(self) -> None:
        video = make_video()
        service, session = _interactions(video)

        await service.record_view(video.id)

        service.video_repo.increment_counter.assert_awaited_once_with(video.id, "view_count")
        session.commit.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_blocked_comment_is_rejected(self) -> None:
        video = make_video()
        service, _ = _interactions(video, TextPolicy(rules=default_rules(["scam"])))
        with pytest.raises(CommentValidationError, match="community guidelines"):
            await service.add_comment(video.id, uuid.uuid4(), "what a scam")
        service.comment_repo.create.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_empty_comment_is_rejected(self) -> None:
        service, _ = _interactions(make_video())
        with pytest.raises(CommentValidationError, match="required"):
            await service.add_comment(uuid.uuid4(), uuid.uuid4(), "   ")

    @pytest.mark.asyncio
    async def test_reply_must_share_video(self) -> None:
        video = make_video()
        service, _ = _interactions(video)
        service.comment_repo.get_by_id.return_value = MagicMock(video_id=uuid.uuid4())
        with pytest.raises(CommentValidationError, match="Parent comment"):
            await service.add_comment(video.id, uuid.uuid4(), "reply", parent_id=uuid.uuid4())

    @pytest.mark.asyncio
    async def test_comment_updates_count(self) -> None:
        video = make_video()
        service, session = _interactions(video)
        service.comment_repo.count_visible.return_value = 1

        await service.add_comment(video.id, uuid.uuid4(), "  nice one  ")

        assert service.comment_repo.create.await_args.args[2] == "nice one"
        service.video_repo.set_comment_count.assert_awaited_once_with(video.id, 1)
        session.commit.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_only_author_or_admin_hides_comment(self) -> None:
        video = make_video()
        author = uuid.uuid4()
        service, _ = _interactions(video)
        service.comment_repo.get_by_id.return_value = MagicMock(video_id=video.id, user_id=author)

        with pytest.raises(VideoAccessDeniedError):
            await service.hide_comment(video.id, uuid.uuid4(), CurrentUser(id=uuid.uuid4()))
        await service.hide_comment(video.id, uuid.uuid4(), CurrentUser(id=author))
        service.comment_repo.hide.assert_awaited_once()
