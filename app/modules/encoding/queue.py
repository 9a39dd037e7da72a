"""Per-video encoding job queue.

Local encoding jobs go to the Celery ``encoding`` queue. At most one job per
(video, phase) is accepted while its Redis lock is held; a second submission
returns the handle of the job already in flight.
"""

import logging
import uuid
from typing import Any, Callable, Optional

from app.core.celery_app import celery_app
from app.core.config import settings
from app.core.logging import log_info
from app.core.redis import acquire_lock, get_lock_holder, redis_client, release_lock
from app.modules.encoding.interface import EncodingJobHandle, EncodingPhase

logger = logging.getLogger(__name__)

ENCODE_TASK_NAME = "encoding.encode_video"
ENCODING_QUEUE = "encoding"


def job_lock_key(video_id: uuid.UUID, phase: EncodingPhase) -> str:
    return f"encoding:job:{video_id}:{phase.value}"


class EncodingJobQueue:
    """Enqueue local encoding jobs, one per (video, phase)."""

    def __init__(
        self,
        client: Any = None,
        sender: Optional[Callable[..., Any]] = None,
        lock_seconds: Optional[int] = None,
        backend_name: str = "local",
    ):
        self.client = client or redis_client
        self.sender = sender or celery_app.send_task
        self.lock_seconds = lock_seconds or settings.ENCODING_JOB_LOCK_SECONDS
        self.backend_name = backend_name

    async def enqueue(
        self, video_id: uuid.UUID, phase: EncodingPhase, input_blob_ref: str
    ) -> EncodingJobHandle:
        key = job_lock_key(video_id, phase)
        token = str(uuid.uuid4())

        if not await acquire_lock(key, token, self.lock_seconds, client=self.client):
            holder = await get_lock_holder(key, client=self.client)
            log_info(logger, "Encoding job already in flight",
                     video_id=str(video_id), phase=phase.value)
            return EncodingJobHandle(
                backend=self.backend_name,
                job_id=holder or token,
                video_id=video_id,
                phase=phase,
                deduplicated=True,
            )

        try:
            self.sender(
                ENCODE_TASK_NAME,
                args=[str(video_id), phase.value, input_blob_ref, token],
                task_id=token,
                queue=ENCODING_QUEUE,
            )
        except Exception:
            await release_lock(key, token, client=self.client)
            raise

        return EncodingJobHandle(
            backend=self.backend_name, job_id=token, video_id=video_id, phase=phase
        )

    async def release(self, video_id: uuid.UUID, phase: EncodingPhase, token: str) -> bool:
        return await release_lock(job_lock_key(video_id, phase), token, client=self.client)
