"""Tests for the video ingestion pipeline.

**Feature: short-video-platform, Property 4: Upload Validation**
**Feature: short-video-platform, Property 5: Hashtag Extraction**
"""

import asyncio
import uuid
from unittest.mock import AsyncMock

import pytest
from hypothesis import given, settings, strategies as st

from app.modules.encoding.interface import EncodingJobHandle, EncodingPhase
from app.modules.video.exceptions import (
    FileTooLargeError,
    MediaConstraintError,
    MediaProbeError,
    UnsupportedMediaTypeError,
    VideoValidationError,
)
from app.modules.video.media import MediaInfo
from app.modules.video.models import (
    AspectRatio,
    EncodingStatus,
    ModerationStatus,
    PublishStatus,
    VideoType,
)
from app.modules.video.pipeline import (
    IngestionPipeline,
    UploadLimits,
    UploadRequest,
    check_media_constraints,
    extract_hashtags,
    read_upload,
    validate_upload,
)
from app.modules.video.storage import RawUpload
from tests.conftest import make_session

LIMITS = UploadLimits(
    max_size_bytes=10 * 1024 * 1024,
    min_duration=1.0,
    max_duration=180.0,
    min_dimension=144,
    max_dimension=4096,
    allowed_mime_types=["video/mp4", "video/quicktime"],
    allowed_extensions=[".mp4", ".mov"],
    caption_max_length=100,
)


def _request(**overrides) -> UploadRequest:
    values = dict(
        content=b"\x00" * 1024,
        mime_type="video/mp4",
        user_id=uuid.uuid4(),
        filename="clip.mp4",
    )
    values.update(overrides)
    return UploadRequest(**values)


class FakeMediaTools:
    def __init__(self, info: MediaInfo, frame_error: Exception = None):
        self.info = info
        self.frame_error = frame_error
        self.probed = []

    async def probe(self, path: str) -> MediaInfo:
        self.probed.append(path)
        return self.info

    async def extract_frame(self, path: str, offset: float, timeout: float = None) -> bytes:
        if self.frame_error:
            raise self.frame_error
        return b"jpeg"


class FakeVideoStorage:
    def __init__(self, fail_raw: bool = False):
        self.fail_raw = fail_raw
        self.raw = {}
        self.deleted = []

    async def upload_raw(self, content, video_id, mime_type, extension) -> RawUpload:
        if self.fail_raw:
            from app.modules.video.exceptions import StorageError

            raise StorageError("Failed to store video: disk full")
        key = f"videos-raw/{video_id}/original{extension}"
        self.raw[key] = content
        return RawUpload(url=f"https://storage/{key}", blob_ref=key)

    async def upload_thumbnail(self, content, video_id, mime_type="image/jpeg") -> str:
        return f"https://cdn/videos-thumbnails/{video_id}/thumbnail.jpg"

    async def delete_all(self, video_id) -> int:
        self.deleted.append(video_id)
        return 1


def _orchestrator() -> AsyncMock:
    orchestrator = AsyncMock()

    async def submit_phase1(video_id, blob_ref):
        return EncodingJobHandle("local", "job-1", video_id, EncodingPhase.PHASE_1)

    orchestrator.submit_phase1.side_effect = submit_phase1
    return orchestrator


def _pipeline(info=None, storage=None, orchestrator=None, screener=None, **kwargs):
    session = make_session()
    pipeline = IngestionPipeline(
        session,
        media_tools=FakeMediaTools(info or MediaInfo(duration=10.0, width=1080, height=1920)),
        video_storage=storage or FakeVideoStorage(),
        orchestrator=orchestrator or _orchestrator(),
        limits=LIMITS,
        caption_screener=screener or AsyncMock(),
        background=False,
        **kwargs,
    )
    return pipeline, session


class TestUploadValidation:
    """Property tests for upload validation."""

    def test_accepts_valid_upload(self) -> None:
        validate_upload(_request(), LIMITS)

    def test_rejects_empty(self) -> None:
        with pytest.raises(VideoValidationError, match="File is empty"):
            validate_upload(_request(content=b""), LIMITS)

    def test_rejects_oversize_with_413(self) -> None:
        with pytest.raises(FileTooLargeError, match="Maximum size is 10MB") as exc:
            validate_upload(_request(size=LIMITS.max_size_bytes + 1), LIMITS)
        assert exc.value.status_code == 413

    @given(mime=st.text(min_size=1, max_size=30).filter(lambda m: m not in LIMITS.allowed_mime_types))
    @settings(max_examples=100)
    def test_rejects_any_unlisted_mime_type(self, mime: str) -> None:
        """**Feature: short-video-platform, Property 4: Upload Validation**

        For any MIME type outside the allow-list, validation SHALL fail with
        an unsupported-type error.
        """
        with pytest.raises(UnsupportedMediaTypeError):
            validate_upload(_request(mime_type=mime), LIMITS)

    def test_rejects_extension_mismatch(self) -> None:
        with pytest.raises(UnsupportedMediaTypeError, match="extension"):
            validate_upload(_request(filename="clip.exe"), LIMITS)

    def test_rejects_long_caption(self) -> None:
        with pytest.raises(VideoValidationError, match="Caption too long"):
            validate_upload(_request(caption="x" * 101), LIMITS)

    @given(
        duration=st.floats(min_value=0.01, max_value=600.0),
        width=st.integers(min_value=1, max_value=8000),
        height=st.integers(min_value=1, max_value=8000),
    )
    @settings(max_examples=200)
    def test_media_constraints(self, duration: float, width: int, height: int) -> None:
        """**Feature: short-video-platform, Property 4: Upload Validation**

        Probed media SHALL be accepted exactly when duration and both
        dimensions lie within the configured bounds.
        """
        within = (
            LIMITS.min_duration <= duration <= LIMITS.max_duration
            and LIMITS.min_dimension <= width <= LIMITS.max_dimension
            and LIMITS.min_dimension <= height <= LIMITS.max_dimension
        )
        info = MediaInfo(duration=duration, width=width, height=height)
        if within:
            check_media_constraints(info, LIMITS)
        else:
            with pytest.raises(MediaConstraintError):
                check_media_constraints(info, LIMITS)


class FakeUploadFile:
    """Upload stream that records how much of it was read."""

    def __init__(self, content: bytes, size=None):
        self.content = content
        self.size = size
        self.position = 0

    async def read(self, n: int = -1) -> bytes:
        end = len(self.content) if n < 0 else self.position + n
        chunk = self.content[self.position:end]
        self.position += len(chunk)
        return chunk


class TestBoundedRead:
    @pytest.mark.asyncio
    async def test_reads_whole_file_within_limit(self) -> None:
        upload = FakeUploadFile(b"a" * 5000)
        assert await read_upload(upload, LIMITS, chunk_size=1024) == b"a" * 5000

    @pytest.mark.asyncio
    async def test_stops_reading_once_over_limit(self) -> None:
        upload = FakeUploadFile(b"\x00" * (LIMITS.max_size_bytes * 3))

        with pytest.raises(FileTooLargeError):
            await read_upload(upload, LIMITS, chunk_size=1024 * 1024)

        assert upload.position <= LIMITS.max_size_bytes + 1024 * 1024

    @pytest.mark.asyncio
    async def test_declared_size_rejected_before_reading(self) -> None:
        upload = FakeUploadFile(b"\x00" * 16, size=LIMITS.max_size_bytes + 1)

        with pytest.raises(FileTooLargeError) as exc:
            await read_upload(upload, LIMITS)

        assert exc.value.status_code == 413
        assert upload.position == 0


class TestHashtags:
    def test_extracts_in_first_seen_order(self) -> None:
        assert extract_hashtags("Sunset #Beach #travel #beach #sunset_vibes") == [
            "beach", "travel", "sunset_vibes",
        ]

    def test_no_caption(self) -> None:
        assert extract_hashtags(None) == []
        assert extract_hashtags("no tags here") == []

    @given(tags=st.lists(st.from_regex(r"[A-Za-z][A-Za-z0-9_]{0,15}", fullmatch=True), max_size=10))
    @settings(max_examples=100)
    def test_hashtags_are_unique_and_lowercase(self, tags: list) -> None:
        """**Feature: short-video-platform, Property 5: Hashtag Extraction**"""
        caption = " ".join(f"#{t}" for t in tags)
        result = extract_hashtags(caption)
        assert len(result) == len(set(result))
        assert all(t == t.lower() for t in result)
        assert set(result) == {t.lower() for t in tags}


class TestIngestionPipeline:
    @pytest.mark.asyncio
    async def test_vertical_ten_second_upload(self) -> None:
        orchestrator = _orchestrator()
        storage = FakeVideoStorage()
        screener = AsyncMock()
        pipeline, session = _pipeline(
            storage=storage, orchestrator=orchestrator, screener=screener
        )
        request = _request(caption="First reel #Hello #world")

        video = await pipeline.ingest(request, request_id="req-1")

        assert video.aspect_ratio == AspectRatio.VERTICAL_9_16.value
        assert video.duration == 10.0
        assert (video.width, video.height) == (1080, 1920)
        assert video.encoding_status == EncodingStatus.PENDING.value
        assert video.moderation_status == ModerationStatus.PENDING.value
        assert video.publish_status == PublishStatus.DRAFT.value
        assert video.video_type == VideoType.REEL.value
        assert video.hashtags == ["hello", "world"]
        assert video.thumbnail_url.endswith("/thumbnail.jpg")
        assert video.raw_blob_key in storage.raw

        session.add.assert_called_once()
        session.commit.assert_awaited()
        orchestrator.submit_phase1.assert_awaited_once_with(video.id, video.raw_blob_key)
        screener.assert_awaited_once_with(video.id, request.caption)

    @pytest.mark.asyncio
    async def test_thumbnail_failure_does_not_fail_upload(self) -> None:
        pipeline, _ = _pipeline()
        pipeline.media_tools.frame_error = RuntimeError("ffmpeg crashed")

        video = await pipeline.ingest(_request())

        assert video.thumbnail_url is None

    @pytest.mark.asyncio
    async def test_thumbnail_timeout_is_skipped(self, monkeypatch) -> None:
        from app.core.config import settings as app_settings

        class SlowTools(FakeMediaTools):
            async def extract_frame(self, path, offset, timeout=None):
                await asyncio.sleep(1)
                return b"jpeg"

        monkeypatch.setattr(app_settings, "THUMBNAIL_TIMEOUT_SECONDS", 0.01)
        pipeline, _ = _pipeline()
        pipeline.media_tools = SlowTools(MediaInfo(duration=10.0, width=1080, height=1920))

        video = await pipeline.ingest(_request())

        assert video.thumbnail_url is None

    @pytest.mark.asyncio
    async def test_rejected_media_is_cleaned_up(self) -> None:
        storage = FakeVideoStorage()
        orchestrator = _orchestrator()
        pipeline, session = _pipeline(
            info=MediaInfo(duration=0.5, width=1080, height=1920),
            storage=storage,
            orchestrator=orchestrator,
        )

        with pytest.raises(MediaConstraintError, match="too short"):
            await pipeline.ingest(_request())

        session.add.assert_not_called()
        orchestrator.submit_phase1.assert_not_awaited()
        assert storage.raw == {}

    @pytest.mark.asyncio
    async def test_probe_failure_is_a_validation_error(self) -> None:
        pipeline, _ = _pipeline()
        pipeline.media_tools.probe = AsyncMock(side_effect=MediaProbeError("Media prober is not available"))

        with pytest.raises(VideoValidationError):
            await pipeline.ingest(_request())

    @pytest.mark.asyncio
    async def test_persist_failure_removes_stored_objects(self) -> None:
        storage = FakeVideoStorage()
        pipeline, session = _pipeline(storage=storage)
        session.flush.side_effect = RuntimeError("db down")

        with pytest.raises(RuntimeError, match="db down"):
            await pipeline.ingest(_request())

        session.rollback.assert_awaited()
        assert len(storage.deleted) == 1

    @pytest.mark.asyncio
    async def test_storage_failure_aborts(self) -> None:
        from app.modules.video.exceptions import StorageError

        pipeline, session = _pipeline(storage=FakeVideoStorage(fail_raw=True))

        with pytest.raises(StorageError):
            await pipeline.ingest(_request())
        session.add.assert_not_called()

    @pytest.mark.asyncio
    async def test_phase1_submission_failure_keeps_video(self) -> None:
        orchestrator = AsyncMock()
        orchestrator.submit_phase1.side_effect = RuntimeError("queue down")
        pipeline, _ = _pipeline(orchestrator=orchestrator)

        video = await pipeline.ingest(_request())

        assert video.encoding_status == EncodingStatus.PENDING.value

    @pytest.mark.asyncio
    async def test_caption_check_failure_is_logged_only(self) -> None:
        screener = AsyncMock(side_effect=RuntimeError("safety down"))
        pipeline, session = _pipeline(screener=screener)

        video = await pipeline.ingest(_request(caption="hello"))

        assert video is not None
        session.rollback.assert_awaited()
        session.refresh.assert_awaited_once_with(video)

    @pytest.mark.asyncio
    async def test_caption_check_failure_reloads_row_after_rollback(self) -> None:
        calls = []
        pipeline, session = _pipeline()

        async def screener(video_id, caption):
            await session.execute("SELECT 1")
            raise RuntimeError("safety down")

        pipeline.caption_screener = screener
        session.rollback.side_effect = lambda: calls.append("rollback")
        session.refresh.side_effect = lambda obj: calls.append("refresh")

        video = await pipeline.ingest(_request(caption="hello"))

        assert calls == ["rollback", "refresh"]
        session.refresh.assert_awaited_once_with(video)
        assert video.encoding_status == EncodingStatus.PENDING.value

    @pytest.mark.asyncio
    async def test_no_caption_skips_screening(self) -> None:
        screener = AsyncMock()
        pipeline, _ = _pipeline(screener=screener)

        await pipeline.ingest(_request())

        screener.assert_not_awaited()
