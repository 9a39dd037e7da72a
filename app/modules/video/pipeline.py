"""Video ingestion pipeline.

Stages, each reported as a ``video_pipeline.<stage>`` trace event keyed by
the request ID:

1. validate      size, MIME type and extension against the upload limits
2. probe         duration, dimensions and aspect class; bounds enforced
3. upload raw    original bytes to durable storage
4. thumbnail     one frame, bounded by a timeout; skipped on failure
5. persist       the Video row in DRAFT / PENDING
6. Phase 1       submitted to the encoding orchestrator, fire-and-forget
7. caption       screened by the text policy; a failure is logged only

A failure in stages 1-3 or in persistence aborts the upload and removes any
stored objects of the video.
"""

import asyncio
import logging
import os
import re
import time
import uuid
from contextlib import contextmanager
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Iterator, Optional

from sqlalchemy.ext.asyncio import AsyncSession

from app.core.config import settings
from app.core.logging import get_correlation_id, log_error, log_info, log_warning
from app.core.metrics import VIDEO_PIPELINE_STAGE_SECONDS, VIDEO_UPLOADS_TOTAL
from app.core.tracing import create_span
from app.modules.encoding.orchestrator import EncodingOrchestrator
from app.modules.video.exceptions import (
    FileTooLargeError,
    MediaConstraintError,
    UnsupportedMediaTypeError,
    VideoValidationError,
)
from app.modules.video.media import (
    MediaInfo,
    MediaTools,
    classify_aspect_ratio,
    temporary_media_file,
)
from app.modules.video.models import Video, VideoType
from app.modules.video.repository import VideoRepository
from app.modules.video.storage import VideoStorage

logger = logging.getLogger(__name__)

HASHTAG_PATTERN = re.compile(r"#(\w+)")

MIME_EXTENSIONS = {
    "video/mp4": ".mp4",
    "video/webm": ".webm",
    "video/quicktime": ".mov",
    "video/x-msvideo": ".avi",
    "video/x-matroska": ".mkv",
}

# Keeps fire-and-forget tasks referenced until they finish
_background_tasks: set[asyncio.Task] = set()


def extract_hashtags(caption: Optional[str]) -> list[str]:
    """Case-folded hashtags in first-seen order, without duplicates."""
    if not caption:
        return []
    seen: dict[str, None] = {}
    for tag in HASHTAG_PATTERN.findall(caption):
        seen.setdefault(tag.lower(), None)
    return list(seen)


@dataclass
class UploadLimits:
    """Upload constraints, read from configuration."""

    max_size_bytes: int
    min_duration: float
    max_duration: float
    min_dimension: int
    max_dimension: int
    allowed_mime_types: list[str] = field(default_factory=list)
    allowed_extensions: list[str] = field(default_factory=list)
    caption_max_length: int = 2200

    @classmethod
    def from_settings(cls) -> "UploadLimits":
        return cls(
            max_size_bytes=settings.VIDEO_MAX_SIZE_BYTES,
            min_duration=settings.VIDEO_MIN_DURATION_SECONDS,
            max_duration=settings.VIDEO_MAX_DURATION_SECONDS,
            min_dimension=settings.VIDEO_MIN_DIMENSION,
            max_dimension=settings.VIDEO_MAX_DIMENSION,
            allowed_mime_types=list(settings.VIDEO_ALLOWED_MIME_TYPES),
            allowed_extensions=[e.lower() for e in settings.VIDEO_ALLOWED_EXTENSIONS],
            caption_max_length=settings.VIDEO_CAPTION_MAX_LENGTH,
        )


@dataclass
class UploadRequest:
    content: bytes
    mime_type: str
    user_id: uuid.UUID
    size: Optional[int] = None
    filename: Optional[str] = None
    caption: Optional[str] = None
    post_id: Optional[uuid.UUID] = None
    video_type: VideoType = VideoType.REEL

    @property
    def byte_size(self) -> int:
        return self.size if self.size is not None else len(self.content)

    @property
    def extension(self) -> str:
        if self.filename:
            ext = os.path.splitext(self.filename)[1].lower()
            if ext:
                return ext
        return MIME_EXTENSIONS.get(self.mime_type, ".mp4")


def validate_upload(request: UploadRequest, limits: UploadLimits) -> None:
    """Reject uploads that break size, type or caption limits.

    Raises:
        VideoValidationError: With a human-readable reason
    """
    size = request.byte_size
    if size <= 0:
        raise VideoValidationError("File is empty")
    if size > limits.max_size_bytes:
        max_mb = limits.max_size_bytes / (1024 * 1024)
        raise FileTooLargeError(f"File too large. Maximum size is {max_mb:.0f}MB")
    if request.mime_type not in limits.allowed_mime_types:
        raise UnsupportedMediaTypeError(
            f"Unsupported file type: {request.mime_type}. "
            f"Allowed: {', '.join(limits.allowed_mime_types)}"
        )
    if request.filename:
        ext = os.path.splitext(request.filename)[1].lower()
        if ext not in limits.allowed_extensions:
            raise UnsupportedMediaTypeError(
                f"Unsupported file extension: {ext or '(none)'}. "
                f"Allowed: {', '.join(limits.allowed_extensions)}"
            )
    if request.caption and len(request.caption) > limits.caption_max_length:
        raise VideoValidationError(
            f"Caption too long. Maximum is {limits.caption_max_length} characters"
        )


UPLOAD_CHUNK_SIZE = 1024 * 1024


async def read_upload(
    file: Any, limits: UploadLimits, chunk_size: int = UPLOAD_CHUNK_SIZE
) -> bytes:
    """Read an upload in chunks, stopping as soon as it exceeds the size limit.

    Raises:
        FileTooLargeError: When the declared or actual size is over the limit
    """
    max_mb = limits.max_size_bytes / (1024 * 1024)
    declared = getattr(file, "size", None)
    if declared is not None and declared > limits.max_size_bytes:
        raise FileTooLargeError(f"File too large. Maximum size is {max_mb:.0f}MB")

    chunks: list[bytes] = []
    total = 0
    while True:
        chunk = await file.read(chunk_size)
        if not chunk:
            break
        total += len(chunk)
        if total > limits.max_size_bytes:
            raise FileTooLargeError(f"File too large. Maximum size is {max_mb:.0f}MB")
        chunks.append(chunk)
    return b"".join(chunks)

def check_media_constraints(info: MediaInfo, limits: UploadLimits) -> None:
    """Reject probed media outside the duration and dimension bounds.

    Raises:
        MediaConstraintError: With a human-readable reason
    """
    if info.duration < limits.min_duration:
        raise MediaConstraintError(
            f"Video too short. Minimum duration is {limits.min_duration:g} seconds"
        )
    if info.duration > limits.max_duration:
        raise MediaConstraintError(
            f"Video too long. Maximum duration is {limits.max_duration:g} seconds"
        )
    for name, value in (("width", info.width), ("height", info.height)):
        if value < limits.min_dimension or value > limits.max_dimension:
            raise MediaConstraintError(
                f"Video {name} {value}px is outside "
                f"{limits.min_dimension}-{limits.max_dimension}px"
            )


class PipelineTrace:
    """Structured trace events for one ingestion request."""

    def __init__(self, request_id: str):
        self.request_id = request_id
        self.events: list[str] = []

    def event(self, stage: str, **fields: Any) -> None:
        self.events.append(stage)
        log_info(logger, f"video_pipeline.{stage}", request_id=self.request_id,
                 stage=stage, **fields)

    def warning(self, stage: str, **fields: Any) -> None:
        self.events.append(stage)
        log_warning(logger, f"video_pipeline.{stage}", request_id=self.request_id,
                    stage=stage, **fields)

    @contextmanager
    def timed(self, stage: str) -> Iterator[None]:
        start = time.perf_counter()
        with create_span(f"video_pipeline.{stage}", {"request.id": self.request_id}):
            try:
                yield
            finally:
                VIDEO_PIPELINE_STAGE_SECONDS.labels(stage=stage).observe(
                    time.perf_counter() - start
                )


CaptionScreener = Callable[[uuid.UUID, str], Awaitable[Any]]


class IngestionPipeline:
    """Turns an uploaded buffer into a DRAFT / PENDING video."""

    def __init__(
        self,
        session: AsyncSession,
        media_tools: Optional[MediaTools] = None,
        video_storage: Optional[VideoStorage] = None,
        orchestrator: Optional[EncodingOrchestrator] = None,
        limits: Optional[UploadLimits] = None,
        caption_screener: Optional[CaptionScreener] = None,
        background: bool = True,
    ):
        self.session = session
        self.video_repo = VideoRepository(session)
        self.media_tools = media_tools or MediaTools()
        self.video_storage = video_storage or VideoStorage()
        self._orchestrator = orchestrator
        self.limits = limits or UploadLimits.from_settings()
        self.caption_screener = caption_screener or self._screen_caption
        self.background = background

    @property
    def orchestrator(self) -> EncodingOrchestrator:
        if self._orchestrator is None:
            self._orchestrator = EncodingOrchestrator(video_storage=self.video_storage)
        return self._orchestrator

    async def ingest(self, request: UploadRequest, request_id: Optional[str] = None) -> Video:
        """Run the pipeline.

        Raises:
            VideoValidationError: Bad input or media outside bounds
            StorageError: Raw upload failed
        """
        trace = PipelineTrace(request_id or get_correlation_id())
        video_id = uuid.uuid4()
        raw_stored = False

        try:
            trace.event("validation_start", user_id=str(request.user_id),
                        size=request.byte_size, mime_type=request.mime_type)
            with trace.timed("validate"):
                validate_upload(request, self.limits)
            trace.event("validation_passed")

            with temporary_media_file(request.content, request.extension) as media_path:
                with trace.timed("probe"):
                    info = await self.media_tools.probe(media_path)
                    check_media_constraints(info, self.limits)
                aspect_ratio = classify_aspect_ratio(info.width, info.height)
                trace.event("metadata_extracted", duration=info.duration, width=info.width,
                            height=info.height, aspect_ratio=aspect_ratio.value)

                with trace.timed("upload_raw"):
                    raw_stored = True
                    raw = await self.video_storage.upload_raw(
                        request.content, video_id, request.mime_type, request.extension
                    )
                trace.event("raw_uploaded", video_id=str(video_id), blob_ref=raw.blob_ref)

                with trace.timed("thumbnail"):
                    thumbnail_url = await self._generate_thumbnail(
                        trace, video_id, media_path, info.duration
                    )

            with trace.timed("persist"):
                video = await self.video_repo.create(
                    id=video_id,
                    user_id=request.user_id,
                    post_id=request.post_id,
                    video_type=request.video_type.value,
                    raw_blob_key=raw.blob_ref,
                    original_url=raw.url,
                    original_filename=request.filename,
                    original_size=request.byte_size,
                    mime_type=request.mime_type,
                    duration=info.duration,
                    width=info.width,
                    height=info.height,
                    aspect_ratio=aspect_ratio.value,
                    bitrate=info.bitrate,
                    fps=info.fps,
                    codec=info.codec,
                    thumbnail_url=thumbnail_url,
                    caption=request.caption,
                    hashtags=extract_hashtags(request.caption),
                )
                await self.session.commit()
            trace.event("video_persisted", video_id=str(video_id))

        except VideoValidationError as e:
            VIDEO_UPLOADS_TOTAL.labels(outcome="rejected").inc()
            trace.warning("pipeline_failed", reason=str(e), error_type=type(e).__name__)
            if raw_stored:
                await self._cleanup(trace, video_id)
            raise
        except Exception as e:
            VIDEO_UPLOADS_TOTAL.labels(outcome="error").inc()
            log_error(logger, "video_pipeline.pipeline_failed", e,
                      request_id=trace.request_id, video_id=str(video_id))
            await self.session.rollback()
            if raw_stored:
                await self._cleanup(trace, video_id)
            raise

        await self._queue_phase1(trace, video_id, raw.blob_ref)
        await self._check_caption(trace, video, request.caption)

        VIDEO_UPLOADS_TOTAL.labels(outcome="success").inc()
        trace.event("pipeline_complete", video_id=str(video_id))
        return video

    async def _generate_thumbnail(
        self, trace: PipelineTrace, video_id: uuid.UUID, media_path: str, duration: float
    ) -> Optional[str]:
        timeout = settings.THUMBNAIL_TIMEOUT_SECONDS
        offset = min(settings.THUMBNAIL_OFFSET_SECONDS, duration / 2)

        async def extract_and_upload() -> str:
            frame = await self.media_tools.extract_frame(media_path, offset, timeout=timeout)
            return await self.video_storage.upload_thumbnail(frame, video_id)

        try:
            url = await asyncio.wait_for(extract_and_upload(), timeout)
        except asyncio.TimeoutError:
            trace.warning("thumbnail_skipped", video_id=str(video_id), reason="timeout")
            return None
        except Exception as e:
            trace.warning("thumbnail_skipped", video_id=str(video_id), reason=str(e)[:200])
            return None
        trace.event("thumbnail_generated", video_id=str(video_id))
        return url

    async def _submit_phase1(self, trace: PipelineTrace, video_id: uuid.UUID, blob_ref: str) -> None:
        try:
            handle = await self.orchestrator.submit_phase1(video_id, blob_ref)
        except Exception as e:
            trace.warning("phase1_queue_failed", video_id=str(video_id), reason=str(e)[:200])
            return
        if handle is None:
            trace.warning("phase1_queue_failed", video_id=str(video_id),
                          reason="no encoding backend configured")
        else:
            trace.event("phase1_queued", video_id=str(video_id),
                        backend=handle.backend, job_id=handle.job_id)

    async def _queue_phase1(self, trace: PipelineTrace, video_id: uuid.UUID, blob_ref: str) -> None:
        if not self.background:
            await self._submit_phase1(trace, video_id, blob_ref)
            return
        task = asyncio.create_task(self._submit_phase1(trace, video_id, blob_ref))
        _background_tasks.add(task)
        task.add_done_callback(_background_tasks.discard)

    async def _screen_caption(self, video_id: uuid.UUID, caption: str) -> Any:
        from app.modules.moderation.service import VideoModerationService

        return await VideoModerationService(self.session).screen_caption(video_id, caption)

    async def _check_caption(
        self, trace: PipelineTrace, video: Video, caption: Optional[str]
    ) -> None:
        if not caption:
            return
        try:
            await self.caption_screener(video.id, caption)
        except Exception as e:
            log_warning(logger, "Caption check failed", request_id=trace.request_id,
                        video_id=str(video.id), error=str(e)[:200])
            # Rollback expires the committed row; reload it before it is serialised
            await self.session.rollback()
            await self.session.refresh(video)

    async def _cleanup(self, trace: PipelineTrace, video_id: uuid.UUID) -> None:
        try:
            await self.video_storage.delete_all(video_id)
        except Exception as e:
            trace.warning("cleanup_failed", video_id=str(video_id), reason=str(e)[:200])
