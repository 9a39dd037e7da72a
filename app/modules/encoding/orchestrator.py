"""Encoding orchestrator.

Selects the configured backend and submits encoding phases to it. Submission
never waits for the encode itself; completion comes back as an EncodingEvent.
"""

import logging
import uuid
from typing import Optional

from app.core.config import settings
from app.core.logging import log_error, log_info, log_warning
from app.core.metrics import ENCODING_JOBS_SUBMITTED_TOTAL
from app.core.tracing import create_span
from app.modules.encoding.exceptions import (
    EncodingBackendUnavailableError,
    EncodingError,
)
from app.modules.encoding.interface import (
    EncodingBackend,
    EncodingJobHandle,
    EncodingJobRequest,
    EncodingPhase,
)
from app.modules.video.storage import VideoStorage

logger = logging.getLogger(__name__)


def get_encoding_backend(name: Optional[str] = None) -> Optional[EncodingBackend]:
    """Build the backend selected by ``ENCODING_BACKEND``.

    Returns None when encoding is disabled or the backend is not usable.
    """
    name = (name or settings.ENCODING_BACKEND).lower()
    backend: Optional[EncodingBackend] = None
    if name == "local":
        from app.modules.encoding.backends.local import LocalFFmpegBackend

        backend = LocalFFmpegBackend()
    elif name == "cloud":
        from app.modules.encoding.backends.cloud import CloudEncodingBackend

        backend = CloudEncodingBackend()
    elif name != "none":
        log_warning(logger, "Unknown encoding backend", backend=name)

    if backend is not None and not backend.is_available():
        log_warning(logger, "Encoding backend not available", backend=backend.name)
        return None
    return backend


class EncodingOrchestrator:
    """Submits Phase-1 and Phase-2 encoding jobs."""

    def __init__(
        self,
        backend: Optional[EncodingBackend] = None,
        video_storage: Optional[VideoStorage] = None,
        resolve_backend: bool = True,
    ):
        if backend is None and resolve_backend:
            backend = get_encoding_backend()
        self.backend = backend
        self.video_storage = video_storage or VideoStorage()

    @property
    def backend_name(self) -> str:
        return self.backend.name if self.backend else "none"

    @property
    def is_available(self) -> bool:
        return self.backend is not None

    async def _build_request(
        self, video_id: uuid.UUID, phase: EncodingPhase, input_blob_ref: str
    ) -> EncodingJobRequest:
        input_url = None
        if self.backend.requires_input_url:
            input_url = await self.video_storage.generate_read_url(
                input_blob_ref, settings.ENCODING_INPUT_URL_TTL_MINUTES
            )
        return EncodingJobRequest(video_id, phase, input_blob_ref, input_url)

    async def submit(
        self, video_id: uuid.UUID, phase: EncodingPhase, input_blob_ref: str
    ) -> EncodingJobHandle:
        """Submit one phase.

        Raises:
            EncodingBackendUnavailableError: If no backend is configured
            EncodingError: If the backend fails the submission
        """
        if self.backend is None:
            raise EncodingBackendUnavailableError("No encoding backend configured")

        with create_span(
            "encoding.submit",
            {"video.id": video_id, "encoding.phase": phase.value, "encoding.backend": self.backend_name},
        ):
            try:
                request = await self._build_request(video_id, phase, input_blob_ref)
                handle = await self.backend.submit(request)
            except EncodingError as e:
                ENCODING_JOBS_SUBMITTED_TOTAL.labels(
                    backend=self.backend_name, phase=phase.value, outcome="failed"
                ).inc()
                log_error(logger, "Encoding submission failed", e,
                          video_id=str(video_id), phase=phase.value, backend=self.backend_name)
                raise
            except Exception as e:
                ENCODING_JOBS_SUBMITTED_TOTAL.labels(
                    backend=self.backend_name, phase=phase.value, outcome="failed"
                ).inc()
                log_error(logger, "Encoding submission failed", e,
                          video_id=str(video_id), phase=phase.value, backend=self.backend_name)
                raise EncodingError(str(e)) from e

        outcome = "deduplicated" if handle.deduplicated else "submitted"
        ENCODING_JOBS_SUBMITTED_TOTAL.labels(
            backend=self.backend_name, phase=phase.value, outcome=outcome
        ).inc()
        log_info(logger, "Encoding job submitted", video_id=str(video_id),
                 phase=phase.value, backend=self.backend_name, job_id=handle.job_id)
        return handle

    async def submit_phase1(
        self, video_id: uuid.UUID, input_blob_ref: str
    ) -> Optional[EncodingJobHandle]:
        """Submit Phase 1; a missing backend leaves the video PENDING."""
        if self.backend is None:
            log_warning(logger, "No encoding backend configured, video stays pending",
                        video_id=str(video_id))
            return None
        return await self.submit(video_id, EncodingPhase.PHASE_1, input_blob_ref)

    async def submit_phase2(self, video_id: uuid.UUID, input_blob_ref: str) -> EncodingJobHandle:
        return await self.submit(video_id, EncodingPhase.PHASE_2, input_blob_ref)

    async def cleanup(self, video_id: uuid.UUID) -> None:
        if self.backend is not None:
            await self.backend.cleanup(video_id)
