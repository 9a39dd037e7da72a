"""Encoding backend interface.

Defines the contract that every encoding backend implements, plus the
rendition ladder used by the two-phase policy: Phase 1 produces a single
fast 720p tier so the video becomes watchable; Phase 2 adds a lower-bitrate
tier for adaptive playback.
"""

import uuid
from abc import ABC, abstractmethod
from dataclasses import dataclass
from enum import Enum
from typing import Optional


class EncodingPhase(str, Enum):
    PHASE_1 = "1"
    PHASE_2 = "2"

    @classmethod
    def parse(cls, value: object) -> "EncodingPhase":
        """Parse a phase marker echoed back by a backend; unknown markers mean Phase 1."""
        return cls.PHASE_2 if str(value).strip() == "2" else cls.PHASE_1


@dataclass(frozen=True)
class Rendition:
    """One HLS quality tier. Dimensions are for landscape sources."""

    name: str
    width: int
    height: int
    video_bitrate_kbps: int
    audio_bitrate_kbps: int

    @property
    def bandwidth(self) -> int:
        return (self.video_bitrate_kbps + self.audio_bitrate_kbps) * 1000

    def resolution(self, portrait: bool = False) -> str:
        if portrait:
            return f"{self.height}x{self.width}"
        return f"{self.width}x{self.height}"


RENDITIONS: dict[str, Rendition] = {
    "720p": Rendition("720p", 1280, 720, 2500, 128),
    "480p": Rendition("480p", 854, 480, 1200, 96),
    "360p": Rendition("360p", 640, 360, 600, 64),
}

# The full ladder available once each phase completes
PHASE_RENDITIONS: dict[EncodingPhase, list[str]] = {
    EncodingPhase.PHASE_1: ["720p"],
    EncodingPhase.PHASE_2: ["720p", "360p"],
}


def renditions_for(phase: EncodingPhase) -> list[Rendition]:
    return [RENDITIONS[name] for name in PHASE_RENDITIONS[phase]]


@dataclass
class EncodingJobRequest:
    """What a backend needs to encode one phase of one video.

    ``video_id``, ``phase`` and ``input_blob_ref`` are echoed back by the
    backend in its completion callback; nothing else correlates the job.
    """

    video_id: uuid.UUID
    phase: EncodingPhase
    input_blob_ref: str
    input_url: Optional[str] = None


@dataclass
class EncodingJobHandle:
    """Handle returned by a backend on submission."""

    backend: str
    job_id: str
    video_id: uuid.UUID
    phase: EncodingPhase
    deduplicated: bool = False


class EncodingBackend(ABC):
    """Abstract interface for encoding backends.

    Completion is reported asynchronously as an EncodingEvent, never by the
    return value of ``submit``.
    """

    name: str = "abstract"
    # Whether the backend fetches the input over HTTP and needs a signed URL
    requires_input_url: bool = False

    @abstractmethod
    def is_available(self) -> bool:
        """Whether the backend is configured and usable."""

    @abstractmethod
    async def submit(self, request: EncodingJobRequest) -> EncodingJobHandle:
        """Submit one phase for encoding."""

    async def submit_phase1(
        self, video_id: uuid.UUID, input_blob_ref: str, input_url: Optional[str] = None
    ) -> EncodingJobHandle:
        return await self.submit(
            EncodingJobRequest(video_id, EncodingPhase.PHASE_1, input_blob_ref, input_url)
        )

    async def submit_phase2(
        self, video_id: uuid.UUID, input_blob_ref: str, input_url: Optional[str] = None
    ) -> EncodingJobHandle:
        return await self.submit(
            EncodingJobRequest(video_id, EncodingPhase.PHASE_2, input_blob_ref, input_url)
        )

    async def cleanup(self, video_id: uuid.UUID) -> None:
        """Release backend-side resources for a deleted video."""
        return None
