"""Content-safety service client.

Wraps the text and image analysis endpoints of the external classifier.
Both return a severity per harm category (Hate, SelfHarm, Sexual, Violence);
a frame's unsafe score is its highest category severity over the top of the
image scale.
"""

import base64
import logging
from dataclasses import dataclass, field
from typing import Optional

import httpx

from app.core.config import settings
from app.modules.moderation.exceptions import ContentSafetyUnavailableError

logger = logging.getLogger(__name__)

CATEGORIES = ["Hate", "SelfHarm", "Sexual", "Violence"]
IMAGE_MAX_SEVERITY = 6


@dataclass
class FrameClassification:
    """Aggregate result over sampled frames."""

    unsafe_score: float
    categories: dict[str, int] = field(default_factory=dict)
    frame_scores: list[float] = field(default_factory=list)


def unsafe_score(categories: dict[str, int]) -> float:
    if not categories:
        return 0.0
    return min(1.0, max(categories.values()) / IMAGE_MAX_SEVERITY)


def aggregate_frames(frames: list[dict[str, int]]) -> FrameClassification:
    """Combine per-frame severities: the worst frame decides."""
    merged: dict[str, int] = {}
    for categories in frames:
        for name, severity in categories.items():
            merged[name] = max(merged.get(name, 0), severity)
    scores = [unsafe_score(c) for c in frames]
    return FrameClassification(
        unsafe_score=max(scores, default=0.0),
        categories=merged,
        frame_scores=scores,
    )


def _parse_categories(data: dict) -> dict[str, int]:
    return {
        item["category"]: int(item.get("severity") or 0)
        for item in data.get("categoriesAnalysis", [])
        if "category" in item
    }


class ContentSafetyClient:
    """HTTP client for the content-safety classifier."""

    def __init__(
        self,
        endpoint: Optional[str] = None,
        key: Optional[str] = None,
        api_version: Optional[str] = None,
        timeout: Optional[float] = None,
    ):
        self.endpoint = (endpoint if endpoint is not None else settings.CONTENT_SAFETY_ENDPOINT).rstrip("/")
        self.key = key if key is not None else settings.CONTENT_SAFETY_KEY
        self.api_version = api_version or settings.CONTENT_SAFETY_API_VERSION
        self.timeout = timeout or settings.MODERATION_ANALYSIS_TIMEOUT_SECONDS

    @property
    def is_configured(self) -> bool:
        return bool(self.endpoint and self.key)

    async def _post(self, operation: str, payload: dict) -> dict:
        if not self.is_configured:
            raise ContentSafetyUnavailableError("Content-safety service not configured")
        try:
            async with httpx.AsyncClient(timeout=self.timeout) as client:
                response = await client.post(
                    f"{self.endpoint}/contentsafety/{operation}",
                    params={"api-version": self.api_version},
                    headers={
                        "Ocp-Apim-Subscription-Key": self.key,
                        "Content-Type": "application/json",
                    },
                    json=payload,
                )
                response.raise_for_status()
                return response.json()
        except httpx.HTTPError as e:
            raise ContentSafetyUnavailableError(f"Content-safety request failed: {e}") from e

    async def analyze_text(self, text: str) -> dict[str, int]:
        """Return category severities for a piece of text."""
        data = await self._post(
            "text:analyze",
            {"text": text[:10000], "categories": CATEGORIES, "outputType": "EightSeverityLevels"},
        )
        return _parse_categories(data)

    async def analyze_image(self, image: bytes) -> dict[str, int]:
        """Return category severities for one image."""
        data = await self._post(
            "image:analyze",
            {"image": {"content": base64.b64encode(image).decode()}, "categories": CATEGORIES},
        )
        return _parse_categories(data)

    async def classify_frames(self, frames: list[bytes]) -> FrameClassification:
        results = [await self.analyze_image(frame) for frame in frames]
        return aggregate_frames(results)
