"""Object store gateway supporting multiple backends.

Supports: local filesystem, S3, MinIO, and other S3-compatible storage.
Backends are synchronous (boto3 is); ``StorageService`` is the async facade
used by the API and the workers and runs backend calls in a thread.
"""

import asyncio
import logging
import os
import shutil
import tempfile
from abc import ABC, abstractmethod
from contextlib import asynccontextmanager
from dataclasses import dataclass
from pathlib import Path
from typing import AsyncIterator, BinaryIO, Optional

import boto3
from botocore.config import Config as BotoConfig
from botocore.exceptions import BotoCoreError, ClientError

from earntrack_media.core.exceptions import StorageError
from earntrack_media.core.metrics import STORAGE_ERRORS_TOTAL

logger = logging.getLogger(__name__)


@dataclass
class StorageResult:
    """Result of a storage write."""
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
    region: str = "us-east-1"
    access_key: str = ""
    secret_key: str = ""
    endpoint_url: Optional[str] = None
    use_ssl: bool = True
    local_path: str = "./storage"
    cdn_domain: Optional[str] = None
    cdn_enabled: bool = False

    @classmethod
    def from_settings(cls, settings) -> "StorageConfig":
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

    def __init__(self, config: StorageConfig):
        self.config = config

    @abstractmethod
    def upload(
        self,
        file_path: str,
        key: str,
        content_type: str = "application/octet-stream",
    ) -> StorageResult:
        """Upload a local file."""

    @abstractmethod
    def upload_fileobj(
        self,
        fileobj: BinaryIO,
        key: str,
        content_type: str = "application/octet-stream",
        metadata: Optional[dict[str, str]] = None,
    ) -> StorageResult:
        """Upload a file object."""

    @abstractmethod
    def download(self, key: str, destination: str) -> bool:
        """Download an object to a local path."""

    @abstractmethod
    def delete(self, key: str) -> bool:
        """Delete an object."""

    @abstractmethod
    def exists(self, key: str) -> bool:
        """Check if an object exists."""

    @abstractmethod
    def get_signed_url(self, key: str, expires_in: int = 3600) -> str:
        """Get a time-limited direct URL for an object."""

    @abstractmethod
    def list_files(self, prefix: str = "") -> list[str]:
        """List object keys under a prefix."""

    @abstractmethod
    def _origin_url(self, key: str) -> str:
        """URL of the object on the origin (no CDN)."""

    def get_public_url(self, key: str) -> str:
        """Externally servable URL, through the CDN when one is configured."""
        if self.config.cdn_enabled and self.config.cdn_domain:
            return f"https://{self.config.cdn_domain}/{key}"
        return self._origin_url(key)


class LocalStorage(StorageBackend):
    """Local filesystem storage backend."""

    def __init__(self, config: StorageConfig):
        super().__init__(config)
        self.base_path = Path(config.local_path)
        self.base_path.mkdir(parents=True, exist_ok=True)

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
        metadata: Optional[dict[str, str]] = None,
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
            logger.warning("Local download failed", extra={"key": key}, exc_info=True)
            return False

    def delete(self, key: str) -> bool:
        file_path = self._get_full_path(key)
        if not file_path.exists():
            return False
        try:
            file_path.unlink()
            return True
        except OSError:
            logger.warning("Local delete failed", extra={"key": key}, exc_info=True)
            return False

    def exists(self, key: str) -> bool:
        return self._get_full_path(key).exists()

    def get_signed_url(self, key: str, expires_in: int = 3600) -> str:
        # Local files are not access controlled
        return self._origin_url(key)

    def _origin_url(self, key: str) -> str:
        return f"file://{self._get_full_path(key).absolute()}"

    def list_files(self, prefix: str = "") -> list[str]:
        search_path = self._get_full_path(prefix) if prefix else self.base_path
        if not search_path.exists():
            return []

        return sorted(
            str(path.relative_to(self.base_path).as_posix())
            for path in search_path.rglob("*")
            if path.is_file()
        )


class S3Storage(StorageBackend):
    """S3/MinIO compatible storage backend."""

    def __init__(self, config: StorageConfig, client=None):
        super().__init__(config)
        self._client = client

    def _get_client(self):
        """Get or create S3 client."""
        if self._client is None:
            client_kwargs = {
                "service_name": "s3",
                "region_name": self.config.region or "us-east-1",
            }
            if self.config.access_key and self.config.secret_key:
                client_kwargs["aws_access_key_id"] = self.config.access_key
                client_kwargs["aws_secret_access_key"] = self.config.secret_key

            # For MinIO or other S3-compatible storage
            if self.config.endpoint_url:
                client_kwargs["endpoint_url"] = self.config.endpoint_url
                client_kwargs["config"] = BotoConfig(
                    signature_version="s3v4",
                    s3={"addressing_style": "path"},
                )
                if not self.config.use_ssl:
                    client_kwargs["use_ssl"] = False

            self._client = boto3.client(**client_kwargs)

        return self._client

    def upload(
        self,
        file_path: str,
        key: str,
        content_type: str = "application/octet-stream",
    ) -> StorageResult:
        try:
            file_size = os.path.getsize(file_path)
            with open(file_path, "rb") as f:
                response = self._get_client().put_object(
                    Bucket=self.config.bucket,
                    Key=key,
                    Body=f,
                    ContentType=content_type,
                )
            return StorageResult(
                success=True,
                key=key,
                url=self.get_public_url(key),
                file_size=file_size,
                etag=response.get("ETag", "").strip('"'),
            )
        except (BotoCoreError, ClientError, OSError) as e:
            return StorageResult(success=False, key=key, url="", error_message=str(e))

    def upload_fileobj(
        self,
        fileobj: BinaryIO,
        key: str,
        content_type: str = "application/octet-stream",
        metadata: Optional[dict[str, str]] = None,
    ) -> StorageResult:
        try:
            fileobj.seek(0, 2)
            file_size = fileobj.tell()
            fileobj.seek(0)

            extra_args = {"ContentType": content_type}
            if metadata:
                extra_args["Metadata"] = metadata

            # Managed transfer switches to multipart for large sources
            self._get_client().upload_fileobj(
                fileobj, self.config.bucket, key, ExtraArgs=extra_args
            )
            return StorageResult(
                success=True,
                key=key,
                url=self.get_public_url(key),
                file_size=file_size,
            )
        except (BotoCoreError, ClientError, OSError) as e:
            return StorageResult(success=False, key=key, url="", error_message=str(e))

    def download(self, key: str, destination: str) -> bool:
        try:
            self._get_client().download_file(self.config.bucket, key, destination)
            return True
        except (BotoCoreError, ClientError, OSError):
            logger.warning("S3 download failed", extra={"key": key}, exc_info=True)
            return False

    def delete(self, key: str) -> bool:
        try:
            self._get_client().delete_object(Bucket=self.config.bucket, Key=key)
            return True
        except (BotoCoreError, ClientError):
            logger.warning("S3 delete failed", extra={"key": key}, exc_info=True)
            return False

    def exists(self, key: str) -> bool:
        try:
            self._get_client().head_object(Bucket=self.config.bucket, Key=key)
            return True
        except ClientError:
            return False

    def get_signed_url(self, key: str, expires_in: int = 3600) -> str:
        try:
            return self._get_client().generate_presigned_url(
                "get_object",
                Params={"Bucket": self.config.bucket, "Key": key},
                ExpiresIn=expires_in,
            )
        except (BotoCoreError, ClientError) as e:
            raise StorageError(f"Failed to sign URL for {key}: {e}") from e

    def _origin_url(self, key: str) -> str:
        if self.config.endpoint_url:
            return f"{self.config.endpoint_url.rstrip('/')}/{self.config.bucket}/{key}"
        return f"https://{self.config.bucket}.s3.{self.config.region}.amazonaws.com/{key}"

    def list_files(self, prefix: str = "") -> list[str]:
        try:
            paginator = self._get_client().get_paginator("list_objects_v2")
            keys = []
            for page in paginator.paginate(Bucket=self.config.bucket, Prefix=prefix):
                keys.extend(obj["Key"] for obj in page.get("Contents", []))
            return keys
        except (BotoCoreError, ClientError):
            logger.warning("S3 listing failed", extra={"prefix": prefix}, exc_info=True)
            return []


def create_storage_backend(config: StorageConfig) -> StorageBackend:
    """Create the backend named by ``config.backend``."""
    backend_type = config.backend.lower()

    if backend_type == "local":
        return LocalStorage(config)
    elif backend_type in ("s3", "minio", "aws"):
        return S3Storage(config)
    raise ValueError(f"Unsupported storage backend: {backend_type}")


class StorageService:
    """Async object store gateway over a storage backend.

    Write failures come back as ``StorageResult(success=False)`` and
    read/delete failures as ``False``; callers decide whether that is fatal.
    """

    def __init__(self, backend: StorageBackend, temp_dir: Optional[str] = None):
        self.backend = backend
        self.temp_dir = temp_dir

    async def upload_file(
        self,
        file_path: str,
        key: str,
        content_type: str = "application/octet-stream",
    ) -> StorageResult:
        result = await asyncio.to_thread(self.backend.upload, file_path, key, content_type)
        if not result.success:
            STORAGE_ERRORS_TOTAL.labels(operation="upload").inc()
        return result

    async def upload_fileobj(
        self,
        fileobj: BinaryIO,
        key: str,
        content_type: str = "application/octet-stream",
        metadata: Optional[dict[str, str]] = None,
    ) -> StorageResult:
        result = await asyncio.to_thread(
            self.backend.upload_fileobj, fileobj, key, content_type, metadata
        )
        if not result.success:
            STORAGE_ERRORS_TOTAL.labels(operation="upload").inc()
        return result

    async def download_file(self, key: str, destination: str) -> bool:
        ok = await asyncio.to_thread(self.backend.download, key, destination)
        if not ok:
            STORAGE_ERRORS_TOTAL.labels(operation="download").inc()
        return ok

    @asynccontextmanager
    async def download_to_temp(self, key: str) -> AsyncIterator[str]:
        """Download an object into a private temporary directory.

        Yields the local file path. The directory and everything written
        into it are removed when the block exits, however it exits.

        Raises:
            StorageError: If the download fails
        """
        with tempfile.TemporaryDirectory(prefix="earntrack-", dir=self.temp_dir) as workdir:
            local_path = os.path.join(workdir, os.path.basename(key) or "source")
            if not await self.download_file(key, local_path):
                raise StorageError(f"Failed to download {key}")
            yield local_path

    async def delete_file(self, key: str) -> bool:
        ok = await asyncio.to_thread(self.backend.delete, key)
        if not ok:
            STORAGE_ERRORS_TOTAL.labels(operation="delete").inc()
        return ok

    async def list_files(self, prefix: str) -> list[str]:
        return await asyncio.to_thread(self.backend.list_files, prefix)

    async def exists(self, key: str) -> bool:
        return await asyncio.to_thread(self.backend.exists, key)

    async def get_signed_url(self, key: str, expires_in: int = 3600) -> str:
        return await asyncio.to_thread(self.backend.get_signed_url, key, expires_in)

    def get_public_url(self, key: str) -> str:
        return self.backend.get_public_url(key)
