"""Cloud encoding service backend.

The service fetches the raw asset through a time-limited signed URL, writes
HLS output straight into our bucket and reports back through
``POST /webhooks/encoding/{secret}``. The job metadata (video ID, phase and
raw blob name) is echoed in every notification and is the only correlation
channel.
"""

import base64
import logging
from typing import Optional

import httpx

from app.core.config import settings
from app.core.logging import log_error
from app.modules.encoding.exceptions import EncodingSubmissionError
from app.modules.encoding.interface import (
    EncodingBackend,
    EncodingJobHandle,
    EncodingJobRequest,
    EncodingPhase,
    renditions_for,
)

logger = logging.getLogger(__name__)

ERROR_MAX_LENGTH = 500
REMOTE_STORAGE_BACKENDS = ("s3", "minio")


def hls_variants(phase: EncodingPhase) -> list[str]:
    return [
        f"mp4:{r.name}::maxrate={r.video_bitrate_kbps}k" for r in renditions_for(phase)
    ]


def webhook_url(base_url: str, secret: str) -> str:
    return f"{base_url.rstrip('/')}/webhooks/encoding/{secret}"


class CloudEncodingBackend(EncodingBackend):
    """Remote encoding through the cloud service's job API."""

    name = "cloud"
    requires_input_url = True

    def __init__(
        self,
        api_url: Optional[str] = None,
        api_key: Optional[str] = None,
        webhook_secret: Optional[str] = None,
        webhook_base_url: Optional[str] = None,
        timeout: float = 30.0,
    ):
        self.api_url = api_url or settings.CLOUD_ENCODING_API_URL
        self.api_key = api_key if api_key is not None else settings.CLOUD_ENCODING_API_KEY
        self.webhook_secret = (
            webhook_secret if webhook_secret is not None else settings.ENCODING_WEBHOOK_SECRET
        )
        self.webhook_base_url = (
            webhook_base_url if webhook_base_url is not None else settings.ENCODING_WEBHOOK_BASE_URL
        )
        self.timeout = timeout

    def is_available(self) -> bool:
        return bool(
            self.api_key
            and self.webhook_secret
            and self.webhook_base_url
            and settings.STORAGE_BACKEND in REMOTE_STORAGE_BACKENDS
            and settings.STORAGE_ACCESS_KEY
            and settings.STORAGE_SECRET_KEY
        )

    def _get_auth_header(self) -> str:
        """Get Basic auth header for the job API."""
        auth = base64.b64encode(f"{self.api_key}:".encode()).decode()
        return f"Basic {auth}"

    def build_job_payload(self, request: EncodingJobRequest) -> dict:
        if not request.input_url:
            raise EncodingSubmissionError("Cloud encoding requires a signed input URL")

        storage = {
            "service": "s3",
            "bucket": settings.STORAGE_BUCKET,
            "region": settings.STORAGE_REGION,
            "path": f"/videos-encoded/{request.video_id}",
            "credentials": {
                "access_key_id": settings.STORAGE_ACCESS_KEY,
                "secret_access_key": settings.STORAGE_SECRET_KEY,
            },
        }
        if settings.STORAGE_ENDPOINT_URL:
            storage["endpoint"] = settings.STORAGE_ENDPOINT_URL

        return {
            "input": {"url": request.input_url},
            "storage": storage,
            "outputs": {
                "httpstream": {
                    "hls": {"path": "/", "variants": hls_variants(request.phase)},
                },
            },
            "notification": {
                "type": "http",
                "url": webhook_url(self.webhook_base_url, self.webhook_secret),
                "events": True,
                "metadata": {
                    "video_id": str(request.video_id),
                    "phase": request.phase.value,
                    "input_blob_name": request.input_blob_ref,
                },
            },
        }

    async def submit(self, request: EncodingJobRequest) -> EncodingJobHandle:
        payload = self.build_job_payload(request)
        try:
            async with httpx.AsyncClient(timeout=self.timeout) as client:
                response = await client.post(
                    self.api_url,
                    headers={
                        "Authorization": self._get_auth_header(),
                        "Content-Type": "application/json",
                    },
                    json=payload,
                )
                response.raise_for_status()
                data = response.json() if response.content else {}
        except httpx.HTTPStatusError as e:
            detail = e.response.text[:ERROR_MAX_LENGTH]
            log_error(logger, "Cloud encoding job rejected", e,
                      video_id=str(request.video_id), phase=request.phase.value,
                      status_code=e.response.status_code)
            raise EncodingSubmissionError(f"Encoding job rejected: {detail}") from e
        except httpx.HTTPError as e:
            log_error(logger, "Cloud encoding request failed", e,
                      video_id=str(request.video_id), phase=request.phase.value)
            raise EncodingSubmissionError(str(e)[:ERROR_MAX_LENGTH]) from e

        return EncodingJobHandle(
            backend=self.name,
            job_id=str(data.get("id", "")),
            video_id=request.video_id,
            phase=request.phase,
        )
