"""Development passthrough backend.

Used when no real encoder is configured outside production: the raw asset is
copied next to where encoded output would live and served as an MP4, so the
rest of the lifecycle (moderation, publishing, feeds) can be exercised.
"""

import os
import uuid
from typing import Awaitable, Callable, Optional

from app.modules.encoding.events import EncodingEvent, EncodingEventKind
from app.modules.encoding.exceptions import EncodingSubmissionError
from app.modules.encoding.interface import (
    EncodingBackend,
    EncodingJobHandle,
    EncodingJobRequest,
    EncodingPhase,
)
from app.modules.video.storage import VideoStorage, encoded_key

EventSink = Callable[[EncodingEvent], Awaitable[object]]


class PassthroughBackend(EncodingBackend):
    """Single-tier backend that serves the original upload as is."""

    name = "passthrough"
    requires_input_url = False

    def __init__(self, on_event: EventSink, video_storage: Optional[VideoStorage] = None):
        self.on_event = on_event
        self.video_storage = video_storage or VideoStorage()

    def is_available(self) -> bool:
        return True

    async def submit(self, request: EncodingJobRequest) -> EncodingJobHandle:
        if request.phase == EncodingPhase.PHASE_2:
            raise EncodingSubmissionError("Passthrough backend produces a single tier")

        extension = os.path.splitext(request.input_blob_ref)[1] or ".mp4"
        dest_key = encoded_key(request.video_id, f"fallback{extension}")
        if not await self.video_storage.copy(request.input_blob_ref, dest_key):
            raise EncodingSubmissionError("Failed to copy raw asset")

        await self.on_event(
            EncodingEvent(
                video_id=request.video_id,
                phase=EncodingPhase.PHASE_1,
                kind=EncodingEventKind.COMPLETED,
                mp4_url=self.video_storage.public_url(dest_key),
                input_blob_ref=request.input_blob_ref,
                source=self.name,
            )
        )
        return EncodingJobHandle(
            backend=self.name,
            job_id=str(uuid.uuid4()),
            video_id=request.video_id,
            phase=request.phase,
        )
