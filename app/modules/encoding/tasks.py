"""Celery tasks for encoding.

``encoding.encode_video`` is the local FFmpeg worker: it downloads the raw
asset, encodes one phase, uploads the output and reports through the shared
event handler. ``encoding.retry_phase2`` is the optional automatic Phase-2
retry.
"""

import asyncio
import logging
import mimetypes
import os
import shutil
import tempfile
import uuid
from typing import Awaitable, Callable, Optional

from app.core.celery_app import celery_app
from app.core.config import settings
from app.core.database import async_session_maker
from app.core.logging import log_error, log_info, log_warning
from app.modules.encoding.events import EncodingEvent, EncodingEventKind
from app.modules.encoding.ffmpeg import FFmpegHLSEncoder
from app.modules.encoding.handler import EncodingEventHandler
from app.modules.encoding.interface import (
    PHASE_RENDITIONS,
    EncodingPhase,
    renditions_for,
)
from app.modules.encoding.queue import EncodingJobQueue
from app.modules.job.tasks import RETRY_CONFIGS
from app.modules.video.storage import VideoStorage, encoded_key

logger = logging.getLogger(__name__)

PHASE2_RETRY_CONFIG = RETRY_CONFIGS["encoding_phase2"]

CONTENT_TYPES = {
    ".m3u8": "application/vnd.apple.mpegurl",
    ".ts": "video/mp2t",
    ".mp4": "video/mp4",
}


def content_type_for(path: str) -> str:
    ext = os.path.splitext(path)[1].lower()
    return CONTENT_TYPES.get(ext) or mimetypes.guess_type(path)[0] or "application/octet-stream"


def renditions_to_encode(phase: EncodingPhase):
    """Renditions a phase adds on top of what earlier phases produced."""
    if phase == EncodingPhase.PHASE_1:
        return renditions_for(phase)
    existing = set(PHASE_RENDITIONS[EncodingPhase.PHASE_1])
    return [r for r in renditions_for(phase) if r.name not in existing]


async def upload_output_dir(
    video_storage: VideoStorage, video_id: uuid.UUID, output_dir: str
) -> int:
    """Upload every file of an encode run under ``videos-encoded/{video_id}/``."""
    uploaded = 0
    for root, _, files in os.walk(output_dir):
        for filename in sorted(files):
            path = os.path.join(root, filename)
            relative = os.path.relpath(path, output_dir).replace(os.sep, "/")
            result = await video_storage.storage.upload_path(
                encoded_key(video_id, relative), path, content_type_for(path)
            )
            if not result.success:
                raise RuntimeError(f"Failed to upload {relative}: {result.error_message}")
            uploaded += 1
    return uploaded


async def _report(event: EncodingEvent) -> None:
    async with async_session_maker() as session:
        await EncodingEventHandler(session).handle(event)


@celery_app.task(bind=True, name="encoding.encode_video")
def encode_video_task(
    self,
    video_id: str,
    phase: str,
    input_blob_ref: str,
    lock_token: str,
) -> dict:
    """Encode one phase of a video locally.

    Args:
        video_id: UUID of the video
        phase: "1" or "2"
        input_blob_ref: Storage key of the raw asset
        lock_token: Token of the (video, phase) job lock to release

    Returns:
        dict: Encoding result
    """
    return asyncio.get_event_loop().run_until_complete(
        _encode_video_async(uuid.UUID(video_id), EncodingPhase.parse(phase), input_blob_ref, lock_token)
    )


async def _encode_video_async(
    video_id: uuid.UUID,
    phase: EncodingPhase,
    input_blob_ref: str,
    lock_token: str,
    encoder: Optional[FFmpegHLSEncoder] = None,
    video_storage: Optional[VideoStorage] = None,
    report: Optional[Callable[[EncodingEvent], Awaitable[None]]] = None,
    queue: Optional[EncodingJobQueue] = None,
) -> dict:
    encoder = encoder or FFmpegHLSEncoder()
    video_storage = video_storage or VideoStorage()
    report = report or _report
    queue = queue or EncodingJobQueue()

    os.makedirs(settings.ENCODING_TEMP_DIR, exist_ok=True)
    work_dir = tempfile.mkdtemp(prefix=f"{video_id}-p{phase.value}-", dir=settings.ENCODING_TEMP_DIR)

    def event(kind: EncodingEventKind, **fields) -> EncodingEvent:
        return EncodingEvent(
            video_id=video_id, phase=phase, kind=kind,
            input_blob_ref=input_blob_ref, source="local", **fields,
        )

    try:
        await report(event(EncodingEventKind.STARTED))

        input_path = os.path.join(work_dir, "input" + os.path.splitext(input_blob_ref)[1])
        if not await video_storage.download(input_blob_ref, input_path):
            await report(event(EncodingEventKind.FAILED, error="Raw asset could not be downloaded"))
            return {"success": False, "error": "download_failed"}

        output_dir = os.path.join(work_dir, "output")
        loop = asyncio.get_event_loop()
        result = await loop.run_in_executor(
            None,
            lambda: encoder.encode(
                input_path,
                output_dir,
                renditions_to_encode(phase),
                include_mp4=phase == EncodingPhase.PHASE_1,
                manifest_renditions=renditions_for(phase),
            ),
        )
        if not result.success:
            log_warning(logger, "Local encoding failed", video_id=str(video_id),
                        phase=phase.value, error=result.error_message)
            await report(event(EncodingEventKind.FAILED, error=result.error_message))
            return {"success": False, "error": result.error_message}

        uploaded = await upload_output_dir(video_storage, video_id, output_dir)
        mp4_url = None
        if result.mp4_path:
            mp4_url = video_storage.public_url(
                encoded_key(video_id, os.path.basename(result.mp4_path))
            )

        await report(
            event(
                EncodingEventKind.COMPLETED,
                manifest_url=video_storage.manifest_url(video_id),
                mp4_url=mp4_url,
            )
        )
        log_info(logger, "Local encoding completed", video_id=str(video_id),
                 phase=phase.value, files=uploaded)
        return {"success": True, "video_id": str(video_id), "phase": phase.value, "files": uploaded}

    except Exception as e:
        log_error(logger, "Local encoding job crashed", e, video_id=str(video_id), phase=phase.value)
        await report(event(EncodingEventKind.FAILED, error=str(e)))
        return {"success": False, "error": str(e)}

    finally:
        shutil.rmtree(work_dir, ignore_errors=True)
        await queue.release(video_id, phase, lock_token)


def schedule_phase2_retry(video_id: uuid.UUID, attempt: int) -> bool:
    """Schedule an automatic Phase-2 retry with exponential backoff.

    Returns:
        False once ``ENCODING_PHASE2_MAX_ATTEMPTS`` is exhausted
    """
    if attempt > settings.ENCODING_PHASE2_MAX_ATTEMPTS:
        log_warning(logger, "Phase 2 retries exhausted, waiting for manual retry",
                    video_id=str(video_id), attempt=attempt)
        return False
    delay = PHASE2_RETRY_CONFIG.calculate_delay(attempt)
    retry_phase2_task.apply_async(args=[str(video_id), attempt], countdown=delay)
    log_info(logger, "Phase 2 retry scheduled", video_id=str(video_id),
             attempt=attempt, delay_seconds=delay)
    return True


@celery_app.task(bind=True, name="encoding.retry_phase2")
def retry_phase2_task(self, video_id: str, attempt: int) -> dict:
    """Resubmit Phase 2 for a video whose tiers are PARTIAL_FAILED."""
    return asyncio.get_event_loop().run_until_complete(
        _retry_phase2_async(uuid.UUID(video_id), attempt)
    )


async def _retry_phase2_async(video_id: uuid.UUID, attempt: int) -> dict:
    async with async_session_maker() as session:
        result = await EncodingEventHandler(session).retry_phase2(video_id)
        return {"status": result.outcome.value, "video_id": str(video_id), "attempt": attempt}
