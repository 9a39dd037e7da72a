"""Storage layout for video assets.

    videos-raw/{video_id}/original{ext}           private, read via signed URL
    videos-thumbnails/{video_id}/thumbnail.jpg    public
    videos-encoded/{video_id}/...                 public (HLS renditions, MP4)
"""

import uuid
from dataclasses import dataclass
from typing import Optional

from app.core.storage import StorageService
from app.modules.video.exceptions import StorageError

RAW_PREFIX = "videos-raw"
THUMBNAIL_PREFIX = "videos-thumbnails"
ENCODED_PREFIX = "videos-encoded"
MASTER_MANIFEST = "master.m3u8"


@dataclass
class RawUpload:
    url: str
    blob_ref: str


def raw_key(video_id: uuid.UUID, extension: str) -> str:
    return f"{RAW_PREFIX}/{video_id}/original{extension}"


def thumbnail_key(video_id: uuid.UUID) -> str:
    return f"{THUMBNAIL_PREFIX}/{video_id}/thumbnail.jpg"


def encoded_prefix(video_id: uuid.UUID) -> str:
    return f"{ENCODED_PREFIX}/{video_id}"


def encoded_key(video_id: uuid.UUID, name: str) -> str:
    return f"{encoded_prefix(video_id)}/{name}"


class VideoStorage:
    """Video-specific operations over the shared storage service."""

    def __init__(self, storage: Optional[StorageService] = None):
        self.storage = storage or StorageService()

    async def upload_raw(
        self, content: bytes, video_id: uuid.UUID, mime_type: str, extension: str
    ) -> RawUpload:
        """Persist the original bytes.

        Raises:
            StorageError: If the upload fails
        """
        result = await self.storage.upload_file(raw_key(video_id, extension), content, mime_type)
        if not result.success:
            raise StorageError(f"Failed to store video: {result.error_message}")
        return RawUpload(url=result.url, blob_ref=result.key)

    async def upload_thumbnail(
        self, content: bytes, video_id: uuid.UUID, mime_type: str = "image/jpeg"
    ) -> str:
        result = await self.storage.upload_file(thumbnail_key(video_id), content, mime_type)
        if not result.success:
            raise StorageError(f"Failed to store thumbnail: {result.error_message}")
        return result.url

    async def delete_all(self, video_id: uuid.UUID) -> int:
        """Delete every stored object of a video."""
        deleted = 0
        for prefix in (RAW_PREFIX, THUMBNAIL_PREFIX, ENCODED_PREFIX):
            deleted += await self.storage.delete_prefix(f"{prefix}/{video_id}/")
        return deleted

    async def generate_read_url(self, blob_ref: str, ttl_minutes: int) -> str:
        return await self.storage.get_url(blob_ref, expires_in=ttl_minutes * 60)

    async def download(self, blob_ref: str, destination: str) -> bool:
        return await self.storage.download_file(blob_ref, destination)

    async def copy(self, source_ref: str, dest_key: str) -> bool:
        return await self.storage.copy_file(source_ref, dest_key)

    def manifest_url(self, video_id: uuid.UUID) -> str:
        return self.storage.get_public_url(encoded_key(video_id, MASTER_MANIFEST))

    def public_url(self, key: str) -> str:
        return self.storage.get_public_url(key)
