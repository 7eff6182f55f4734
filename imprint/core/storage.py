"""
Storage Abstraction Layer - The Bridge Pattern

The storage collaborator durably persists final bytes and hands back an
identifier and a retrievable URL. LocalStorage serves development and tests,
S3Storage targets any S3-compatible service (AWS, MinIO, DigitalOcean Spaces).
"""

import io
import uuid
import asyncio
from abc import ABC, abstractmethod
from dataclasses import dataclass
from pathlib import Path
from typing import Optional, Tuple
from datetime import datetime

import boto3
from botocore.config import Config
from botocore.exceptions import BotoCoreError, ClientError
from PIL import Image, UnidentifiedImageError

from imprint.core.config import settings
from imprint.core.exceptions import StorageError
from imprint.core.logging import get_logger
from imprint.core.metrics import record_storage_operation

logger = get_logger(__name__)


@dataclass(frozen=True)
class StoredObject:
    """What the storage backend reports back after a successful store()."""
    identifier: str
    url: str
    resource_type: str = "image"
    width: Optional[int] = None
    height: Optional[int] = None
    size: int = 0


def probe_dimensions(data: bytes, resource_type: str) -> Tuple[Optional[int], Optional[int]]:
    """Best-effort width/height of stored image bytes; videos report none."""
    if resource_type != "image":
        return None, None
    try:
        with Image.open(io.BytesIO(data)) as img:
            return img.width, img.height
    except (UnidentifiedImageError, OSError):
        return None, None


def unique_name(filename: str) -> str:
    """Generate a unique filename with timestamp and UUID prefix."""
    ext = Path(filename).suffix.lower()
    unique_id = uuid.uuid4().hex[:12]
    timestamp = datetime.now().strftime("%Y%m%d_%H%M%S")
    return f"{timestamp}_{unique_id}{ext}"


class IStorage(ABC):
    """Interface for storage operations - The Bridge"""

    backend: str = "abstract"

    @abstractmethod
    async def store(
        self,
        data: bytes,
        filename: str,
        folder: str = "uploads",
        content_type: str = "image/jpeg",
        resource_type: str = "image"
    ) -> StoredObject:
        """
        Persist bytes and describe where they went.

        Args:
            data: Raw bytes of the file
            filename: Name hint; only its extension is kept
            folder: Subfolder/key prefix
            content_type: MIME type of the file
            resource_type: "image" or "video"

        Raises:
            StorageError: the backend rejected or failed the write
        """

    @abstractmethod
    async def get_url(self, identifier: str, expires_in: int = 3600) -> str:
        """Get a URL for accessing a stored file."""

    @abstractmethod
    async def delete(self, identifier: str) -> bool:
        """Delete a stored file; False when nothing was deleted."""

    @abstractmethod
    async def exists(self, identifier: str) -> bool:
        """Check if a file exists in storage."""


class LocalStorage(IStorage):
    """Local filesystem storage implementation for development."""

    backend = "local"

    def __init__(self, base_path: str = "./data/storage", url_prefix: str = "/static/storage"):
        self.base_path = Path(base_path)
        self.base_path.mkdir(parents=True, exist_ok=True)
        self.url_prefix = url_prefix.rstrip("/")

    def _resolve(self, relative: str) -> Path:
        """Absolute path under base_path; anything that escapes the root is refused."""
        root = self.base_path.resolve()
        target = (root / relative).resolve()
        if target != root and root not in target.parents:
            raise StorageError(f"Path escapes storage root: {relative}", backend=self.backend)
        return target

    async def store(
        self,
        data: bytes,
        filename: str,
        folder: str = "uploads",
        content_type: str = "image/jpeg",
        resource_type: str = "image"
    ) -> StoredObject:
        folder_path = self._resolve(folder)
        identifier = f"{folder}/{unique_name(filename)}"

        try:
            folder_path.mkdir(parents=True, exist_ok=True)
            self._resolve(identifier).write_bytes(data)
        except OSError as e:
            record_storage_operation(self.backend, "store", "error")
            raise StorageError(f"Local write failed: {e}", backend=self.backend)

        record_storage_operation(self.backend, "store", "success")
        width, height = probe_dimensions(data, resource_type)
        return StoredObject(
            identifier=identifier,
            url=f"{self.url_prefix}/{identifier}",
            resource_type=resource_type,
            width=width,
            height=height,
            size=len(data)
        )

    async def get_url(self, identifier: str, expires_in: int = 3600) -> str:
        """For local storage, return a relative path that can be served."""
        if not self._resolve(identifier).exists():
            raise StorageError(f"File not found: {identifier}", backend=self.backend)
        return f"{self.url_prefix}/{identifier}"

    async def delete(self, identifier: str) -> bool:
        file_path = self._resolve(identifier)
        if not file_path.exists():
            return False
        try:
            file_path.unlink()
        except OSError as e:
            record_storage_operation(self.backend, "delete", "error")
            raise StorageError(f"Local delete failed: {e}", backend=self.backend)
        record_storage_operation(self.backend, "delete", "success")
        return True

    async def exists(self, identifier: str) -> bool:
        return self._resolve(identifier).exists()


class S3Storage(IStorage):
    """
    S3-compatible storage service.

    boto3 is synchronous, so every call is pushed to a worker thread.
    """

    backend = "s3"

    def __init__(
        self,
        bucket: str,
        endpoint_url: Optional[str] = None,
        access_key: Optional[str] = None,
        secret_key: Optional[str] = None,
        region: str = "us-east-1",
        public_url: Optional[str] = None,
        client=None
    ):
        self.bucket = bucket
        self.public_url = public_url.rstrip("/") if public_url else None

        if client is None:
            client = boto3.client(
                "s3",
                endpoint_url=endpoint_url,
                aws_access_key_id=access_key,
                aws_secret_access_key=secret_key,
                config=Config(signature_version="s3v4"),
                region_name=region,
            )
        self.client = client

    async def store(
        self,
        data: bytes,
        filename: str,
        folder: str = "uploads",
        content_type: str = "image/jpeg",
        resource_type: str = "image"
    ) -> StoredObject:
        key = f"{folder}/{unique_name(filename)}"
        try:
            await asyncio.to_thread(
                self.client.put_object,
                Bucket=self.bucket,
                Key=key,
                Body=data,
                ContentType=content_type,
            )
        except (BotoCoreError, ClientError) as e:
            record_storage_operation(self.backend, "store", "error")
            raise StorageError(f"S3 upload failed: {e}", backend=self.backend)

        record_storage_operation(self.backend, "store", "success")
        width, height = probe_dimensions(data, resource_type)
        return StoredObject(
            identifier=key,
            url=await self.get_url(key),
            resource_type=resource_type,
            width=width,
            height=height,
            size=len(data)
        )

    async def get_url(self, identifier: str, expires_in: int = 3600) -> str:
        if self.public_url:
            return f"{self.public_url}/{identifier}"
        return await asyncio.to_thread(
            self.client.generate_presigned_url,
            "get_object",
            Params={"Bucket": self.bucket, "Key": identifier},
            ExpiresIn=expires_in,
        )

    async def delete(self, identifier: str) -> bool:
        try:
            await asyncio.to_thread(self.client.delete_object, Bucket=self.bucket, Key=identifier)
        except (BotoCoreError, ClientError) as e:
            record_storage_operation(self.backend, "delete", "error")
            raise StorageError(f"S3 delete failed: {e}", backend=self.backend)
        record_storage_operation(self.backend, "delete", "success")
        return True

    async def exists(self, identifier: str) -> bool:
        try:
            await asyncio.to_thread(self.client.head_object, Bucket=self.bucket, Key=identifier)
            return True
        except ClientError:
            return False


class StorageFactory:
    """Factory for creating storage instances from settings."""

    _instance: Optional[IStorage] = None

    @classmethod
    def get_storage(cls) -> IStorage:
        """Get the configured storage implementation."""
        if cls._instance is None:
            if settings.STORAGE_BACKEND.lower() == "s3":
                cls._instance = S3Storage(
                    bucket=settings.S3_BUCKET,
                    endpoint_url=settings.S3_ENDPOINT_URL,
                    access_key=settings.S3_ACCESS_KEY,
                    secret_key=settings.S3_SECRET_KEY,
                    region=settings.S3_REGION,
                    public_url=settings.S3_PUBLIC_URL,
                )
            else:
                cls._instance = LocalStorage(
                    base_path=settings.LOCAL_STORAGE_PATH,
                    url_prefix=settings.LOCAL_STORAGE_URL_PREFIX,
                )
            logger.info("storage_initialized", backend=cls._instance.backend)

        return cls._instance

    @classmethod
    def reset(cls):
        """Reset the singleton instance (useful for testing)."""
        cls._instance = None


# Convenience function for dependency injection
def get_storage() -> IStorage:
    """Get the storage instance - ready for FastAPI Depends()."""
    return StorageFactory.get_storage()
