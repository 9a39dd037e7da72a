"""Local FFmpeg encoding backend.

Jobs run on Celery workers consuming the ``encoding`` queue; the worker
reports progress by handing EncodingEvents to the shared event handler.
"""

import shutil
from typing import Optional

from app.core.config import settings
from app.modules.encoding.interface import (
    EncodingBackend,
    EncodingJobHandle,
    EncodingJobRequest,
)
from app.modules.encoding.queue import EncodingJobQueue


class LocalFFmpegBackend(EncodingBackend):
    """Process-based transcoder run inside the worker pool."""

    name = "local"
    requires_input_url = False

    def __init__(self, queue: Optional[EncodingJobQueue] = None):
        self.queue = queue or EncodingJobQueue(backend_name=self.name)

    def is_available(self) -> bool:
        return shutil.which(settings.FFMPEG_PATH) is not None

    async def submit(self, request: EncodingJobRequest) -> EncodingJobHandle:
        return await self.queue.enqueue(
            request.video_id, request.phase, request.input_blob_ref
        )
