"""Universal storage module supporting multiple backends.

Supports: local filesystem, S3, MinIO, and other S3-compatible storage.
Video assets are laid out under per-video prefixes so that every object of a
video can be removed with a single prefix delete.
"""

import asyncio
import functools
import io
import shutil
from abc import ABC, abstractmethod
from dataclasses import dataclass
from pathlib import Path
from typing import BinaryIO, Optional

import boto3
from botocore.config import Config as BotoConfig

from app.core.config import settings


@dataclass
class StorageResult:
    """Result of a storage operation."""
    success: bool
    key: str
    url: str
    file_size: int = 0
    etag: Optional[str] = None
    error_message: Optional[str] = None


@dataclass
class StorageConfig:
    """Storage configuration."""
    backend: str  # local, s3, minio
    bucket: str = ""
    region: str = ""
    access_key: str = ""
    secret_key: str = ""
    endpoint_url: Optional[str] = None
    use_ssl: bool = True
    local_path: str = "./storage"
    cdn_domain: Optional[str] = None
    cdn_enabled: bool = False

    @classmethod
    def from_settings(cls) -> "StorageConfig":
        return cls(
            backend=settings.STORAGE_BACKEND,
            bucket=settings.STORAGE_BUCKET,
            region=settings.STORAGE_REGION,
            access_key=settings.STORAGE_ACCESS_KEY,
            secret_key=settings.STORAGE_SECRET_KEY,
            endpoint_url=settings.STORAGE_ENDPOINT_URL,
            use_ssl=settings.STORAGE_USE_SSL,
            local_path=settings.LOCAL_STORAGE_PATH,
            cdn_domain=settings.CDN_DOMAIN,
            cdn_enabled=settings.CDN_ENABLED,
        )


class StorageBackend(ABC):
    """Abstract base class for storage backends."""

    @abstractmethod
    def upload(
        self,
        file_path: str,
        key: str,
        content_type: str = "application/octet-stream",
    ) -> StorageResult:
        """Upload a file to storage."""

    @abstractmethod
    def upload_fileobj(
        self,
        fileobj: BinaryIO,
        key: str,
        content_type: str = "application/octet-stream",
    ) -> StorageResult:
        """Upload a file object to storage."""

    @abstractmethod
    def download(self, key: str, destination: str) -> bool:
        """Download a file from storage."""

    @abstractmethod
    def copy(self, source_key: str, dest_key: str) -> bool:
        """Copy an object within storage."""

    @abstractmethod
    def delete(self, key: str) -> bool:
        """Delete a file from storage."""

    @abstractmethod
    def get_url(self, key: str, expires_in: int = 3600) -> str:
        """Get a time-limited read URL (presigned for private storage)."""

    @abstractmethod
    def get_public_url(self, key: str) -> str:
        """Get the permanent public (or CDN) URL for a key."""

    @abstractmethod
    def list_files(self, prefix: str = "") -> list[str]:
        """List files with given prefix."""


class LocalStorage(StorageBackend):
    """Local filesystem storage backend."""

    def __init__(self, config: StorageConfig):
        self.base_path = Path(config.local_path)
        self.base_path.mkdir(parents=True, exist_ok=True)
        self.cdn_domain = config.cdn_domain
        self.cdn_enabled = config.cdn_enabled

    def _get_full_path(self, key: str) -> Path:
        return self.base_path / key

    def upload(
        self,
        file_path: str,
        key: str,
        content_type: str = "application/octet-stream",
    ) -> StorageResult:
        try:
            dest_path = self._get_full_path(key)
            dest_path.parent.mkdir(parents=True, exist_ok=True)
            shutil.copy2(file_path, dest_path)
            return StorageResult(
                success=True,
                key=key,
                url=self.get_public_url(key),
                file_size=dest_path.stat().st_size,
            )
        except OSError as e:
            return StorageResult(success=False, key=key, url="", error_message=str(e))

    def upload_fileobj(
        self,
        fileobj: BinaryIO,
        key: str,
        content_type: str = "application/octet-stream",
    ) -> StorageResult:
        try:
            dest_path = self._get_full_path(key)
            dest_path.parent.mkdir(parents=True, exist_ok=True)
            with open(dest_path, "wb") as f:
                shutil.copyfileobj(fileobj, f)
            return StorageResult(
                success=True,
                key=key,
                url=self.get_public_url(key),
                file_size=dest_path.stat().st_size,
            )
        except OSError as e:
            return StorageResult(success=False, key=key, url="", error_message=str(e))

    def download(self, key: str, destination: str) -> bool:
        src_path = self._get_full_path(key)
        if not src_path.exists():
            return False
        try:
            shutil.copy2(src_path, destination)
            return True
        except OSError:
            return False

    def copy(self, source_key: str, dest_key: str) -> bool:
        src_path = self._get_full_path(source_key)
        if not src_path.exists():
            return False
        dest_path = self._get_full_path(dest_key)
        dest_path.parent.mkdir(parents=True, exist_ok=True)
        shutil.copy2(src_path, dest_path)
        return True

    def delete(self, key: str) -> bool:
        file_path = self._get_full_path(key)
        if not file_path.exists():
            return False
        try:
            file_path.unlink()
            return True
        except OSError:
            return False

    def get_url(self, key: str, expires_in: int = 3600) -> str:
        # Local files have no expiry; the path itself is the read URL
        return f"file://{self._get_full_path(key).absolute()}"

    def get_public_url(self, key: str) -> str:
        if self.cdn_enabled and self.cdn_domain:
            return f"https://{self.cdn_domain}/{key}"
        return f"file://{self._get_full_path(key).absolute()}"

    def list_files(self, prefix: str = "") -> list[str]:
        search_path = self._get_full_path(prefix) if prefix else self.base_path
        if not search_path.exists():
            return []
        if search_path.is_file():
            return [prefix]

        files = []
        for path in search_path.rglob("*"):
            if path.is_file():
                files.append(str(path.relative_to(self.base_path)))
        return files


class S3Storage(StorageBackend):
    """S3/MinIO compatible storage backend."""

    def __init__(self, config: StorageConfig):
        self.config = config
        self._client = None

    def _get_client(self):
        """Get or create S3 client."""
        if self._client is None:
            client_kwargs = {
                "service_name": "s3",
                "region_name": self.config.region or "us-east-1",
                "aws_access_key_id": self.config.access_key,
                "aws_secret_access_key": self.config.secret_key,
            }

            # For MinIO or other S3-compatible storage
            if self.config.endpoint_url:
                client_kwargs["endpoint_url"] = self.config.endpoint_url
                client_kwargs["config"] = BotoConfig(
                    signature_version="s3v4",
                    s3={"addressing_style": "path"},
                )

            if not self.config.use_ssl and self.config.endpoint_url:
                # Allow non-SSL for local MinIO
                client_kwargs["use_ssl"] = False

            self._client = boto3.client(**client_kwargs)

        return self._client

    def upload(
        self,
        file_path: str,
        key: str,
        content_type: str = "application/octet-stream",
    ) -> StorageResult:
        with open(file_path, "rb") as f:
            return self.upload_fileobj(f, key, content_type)

    def upload_fileobj(
        self,
        fileobj: BinaryIO,
        key: str,
        content_type: str = "application/octet-stream",
    ) -> StorageResult:
        try:
            client = self._get_client()

            fileobj.seek(0, 2)
            file_size = fileobj.tell()
            fileobj.seek(0)

            response = client.put_object(
                Bucket=self.config.bucket,
                Key=key,
                Body=fileobj,
                ContentType=content_type,
            )

            return StorageResult(
                success=True,
                key=key,
                url=self.get_public_url(key),
                file_size=file_size,
                etag=response.get("ETag", "").strip('"'),
            )
        except Exception as e:
            return StorageResult(success=False, key=key, url="", error_message=str(e))

    def download(self, key: str, destination: str) -> bool:
        try:
            self._get_client().download_file(self.config.bucket, key, destination)
            return True
        except Exception:
            return False

    def copy(self, source_key: str, dest_key: str) -> bool:
        try:
            self._get_client().copy_object(
                Bucket=self.config.bucket,
                Key=dest_key,
                CopySource={"Bucket": self.config.bucket, "Key": source_key},
            )
            return True
        except Exception:
            return False

    def delete(self, key: str) -> bool:
        try:
            self._get_client().delete_object(Bucket=self.config.bucket, Key=key)
            return True
        except Exception:
            return False

    def get_url(self, key: str, expires_in: int = 3600) -> str:
        """Get a presigned GET URL valid for ``expires_in`` seconds."""
        return self._get_client().generate_presigned_url(
            "get_object",
            Params={"Bucket": self.config.bucket, "Key": key},
            ExpiresIn=expires_in,
        )

    def get_public_url(self, key: str) -> str:
        if self.config.cdn_enabled and self.config.cdn_domain:
            return f"https://{self.config.cdn_domain}/{key}"
        if self.config.endpoint_url:
            return f"{self.config.endpoint_url}/{self.config.bucket}/{key}"
        return f"https://{self.config.bucket}.s3.{self.config.region}.amazonaws.com/{key}"

    def list_files(self, prefix: str = "") -> list[str]:
        client = self._get_client()
        paginator = client.get_paginator("list_objects_v2")
        files = []
        for page in paginator.paginate(Bucket=self.config.bucket, Prefix=prefix):
            for obj in page.get("Contents", []):
                files.append(obj["Key"])
        return files


class Storage:
    """Universal storage interface.

    Automatically selects the appropriate backend based on configuration.
    """

    _instance: Optional["Storage"] = None

    def __init__(self, config: Optional[StorageConfig] = None):
        self.config = config or StorageConfig.from_settings()
        self._backend = self._create_backend(self.config)

    def _create_backend(self, config: StorageConfig) -> StorageBackend:
        backend_type = config.backend.lower()

        if backend_type == "local":
            return LocalStorage(config)
        elif backend_type in ("s3", "minio", "aws"):
            return S3Storage(config)
        else:
            raise ValueError(f"Unsupported storage backend: {backend_type}")

    @classmethod
    def get_instance(cls) -> "Storage":
        """Get singleton storage instance."""
        if cls._instance is None:
            cls._instance = cls()
        return cls._instance

    def upload(self, file_path: str, key: str, content_type: str = "application/octet-stream") -> StorageResult:
        return self._backend.upload(file_path, key, content_type)

    def upload_fileobj(self, fileobj: BinaryIO, key: str, content_type: str = "application/octet-stream") -> StorageResult:
        return self._backend.upload_fileobj(fileobj, key, content_type)

    def download(self, key: str, destination: str) -> bool:
        return self._backend.download(key, destination)

    def copy(self, source_key: str, dest_key: str) -> bool:
        return self._backend.copy(source_key, dest_key)

    def delete_prefix(self, prefix: str) -> int:
        """Delete every object under a prefix.

        Returns:
            Number of objects deleted
        """
        deleted = 0
        for key in self._backend.list_files(prefix):
            if self._backend.delete(key):
                deleted += 1
        return deleted

    def get_url(self, key: str, expires_in: int = 3600) -> str:
        return self._backend.get_url(key, expires_in)

    def get_public_url(self, key: str) -> str:
        return self._backend.get_public_url(key)


def get_storage() -> Storage:
    """Get the default storage instance."""
    return Storage.get_instance()


class StorageService:
    """Async-compatible storage service wrapper.

    Blocking backend calls run in the default executor so that uploads do
    not stall the event loop.
    """

    def __init__(self, storage: Optional[Storage] = None):
        self._storage = storage

    @property
    def storage(self) -> Storage:
        if self._storage is None:
            self._storage = get_storage()
        return self._storage

    async def _run(self, func, *args):
        loop = asyncio.get_event_loop()
        return await loop.run_in_executor(None, functools.partial(func, *args))

    async def upload_file(
        self,
        key: str,
        content: bytes,
        content_type: str = "application/octet-stream",
    ) -> StorageResult:
        """Upload content to storage.

        Args:
            key: Storage key/path
            content: File content as bytes
            content_type: MIME type

        Returns:
            StorageResult: Upload result
        """
        return await self._run(
            self.storage.upload_fileobj, io.BytesIO(content), key, content_type
        )

    async def upload_path(
        self,
        key: str,
        file_path: str,
        content_type: str = "application/octet-stream",
    ) -> StorageResult:
        return await self._run(self.storage.upload, file_path, key, content_type)

    async def download_file(self, key: str, destination: str) -> bool:
        return await self._run(self.storage.download, key, destination)

    async def copy_file(self, source_key: str, dest_key: str) -> bool:
        return await self._run(self.storage.copy, source_key, dest_key)

    async def delete_prefix(self, prefix: str) -> int:
        return await self._run(self.storage.delete_prefix, prefix)

    async def get_url(self, key: str, expires_in: int = 3600) -> str:
        return await self._run(self.storage.get_url, key, expires_in)

    def get_public_url(self, key: str) -> str:
        return self.storage.get_public_url(key)

