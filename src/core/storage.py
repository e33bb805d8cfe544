"""
Storage Abstraction Layer - The Bridge Pattern

Provides a clean interface for blob operations with LocalStorage (development)
and S3Storage (production, public-read objects addressed by URL).
"""

import asyncio
import mimetypes
import re
import uuid
from abc import ABC, abstractmethod
from dataclasses import dataclass
from io import BytesIO
from pathlib import Path
from typing import Optional
from urllib.parse import urlparse

import httpx

from src.core.config import settings
from src.core.logging import get_logger

logger = get_logger(__name__)

LOCAL_URL_PREFIX = "/static/storage/"


@dataclass(frozen=True)
class StoredObject:
    """Location of a stored blob."""
    url: str
    key: str


def sanitize_key_segment(value: str) -> str:
    """Return an ASCII, path-safe key segment (e.g. for a stock number)."""
    raw_value = (value or "").strip()
    ascii_value = raw_value.encode("ascii", errors="ignore").decode("ascii")
    sanitized = re.sub(r"[^A-Za-z0-9._-]+", "_", ascii_value).strip("._")
    return sanitized or "unknown"


def _extension_for(content_type: str) -> str:
    if content_type == "image/jpeg":
        return ".jpg"
    return mimetypes.guess_extension(content_type or "") or ""


class IStorage(ABC):
    """Interface for storage operations - The Bridge"""

    @abstractmethod
    async def upload(
        self,
        file_data: bytes,
        key_prefix: str = "uploads",
        content_type: str = "image/png"
    ) -> StoredObject:
        """
        Upload a blob under a fresh key below ``key_prefix``.

        Args:
            file_data: Raw bytes of the file
            key_prefix: Folder-like prefix, e.g. ``web-companion/STK1/original``
            content_type: MIME type of the file

        Returns:
            StoredObject with the public URL and the storage key
        """
        pass

    @abstractmethod
    async def download(self, ref: str) -> bytes:
        """
        Fetch a blob by the URL returned from upload() (or by its key).

        Raises:
            FileNotFoundError: if the blob does not exist
        """
        pass

    @abstractmethod
    async def exists(self, storage_key: str) -> bool:
        """Check if a blob exists in storage."""
        pass

    @staticmethod
    def new_key(key_prefix: str, content_type: str) -> str:
        return f"{key_prefix.strip('/')}/{uuid.uuid4().hex}{_extension_for(content_type)}"


class LocalStorage(IStorage):
    """Local filesystem storage implementation for development."""

    def __init__(self, base_path: str = "./data/storage"):
        self.base_path = Path(base_path)
        self.base_path.mkdir(parents=True, exist_ok=True)

    def _path_for(self, storage_key: str) -> Path:
        path = (self.base_path / storage_key).resolve()
        if self.base_path.resolve() not in path.parents:
            raise FileNotFoundError(f"Key outside storage root: {storage_key}")
        return path

    def _key_from_ref(self, ref: str) -> str:
        if ref.startswith(LOCAL_URL_PREFIX):
            return ref[len(LOCAL_URL_PREFIX):]
        return ref.lstrip("/")

    async def upload(
        self,
        file_data: bytes,
        key_prefix: str = "uploads",
        content_type: str = "image/png"
    ) -> StoredObject:
        storage_key = self.new_key(key_prefix, content_type)
        file_path = self._path_for(storage_key)
        file_path.parent.mkdir(parents=True, exist_ok=True)

        with open(file_path, "wb") as f:
            f.write(file_data)

        logger.info("stored_local", key=storage_key, size=len(file_data))
        return StoredObject(url=f"{LOCAL_URL_PREFIX}{storage_key}", key=storage_key)

    async def download(self, ref: str) -> bytes:
        file_path = self._path_for(self._key_from_ref(ref))
        if not file_path.exists():
            raise FileNotFoundError(f"File not found: {ref}")
        with open(file_path, "rb") as f:
            return f.read()

    async def exists(self, storage_key: str) -> bool:
        try:
            return self._path_for(storage_key).exists()
        except FileNotFoundError:
            return False


class S3Storage(IStorage):
    """
    S3 storage implementation for production.

    Objects are written public-read and addressed by their virtual-hosted URL,
    so front-ends can render them without presigning.
    """

    def __init__(
        self,
        bucket: str,
        region: str,
        access_key_id: Optional[str] = None,
        secret_access_key: Optional[str] = None,
        client=None
    ):
        self.bucket = bucket
        self.region = region
        self._client = client or self._build_client(region, access_key_id, secret_access_key)

    @staticmethod
    def _build_client(region: str, access_key_id: Optional[str], secret_access_key: Optional[str]):
        import boto3
        from botocore.config import Config

        client_kwargs = {
            "region_name": region,
            "config": Config(signature_version="s3v4", s3={"addressing_style": "virtual"}),
        }
        if access_key_id and secret_access_key:
            client_kwargs["aws_access_key_id"] = access_key_id
            client_kwargs["aws_secret_access_key"] = secret_access_key
        return boto3.client("s3", **client_kwargs)

    @property
    def host(self) -> str:
        return f"{self.bucket}.s3.{self.region}.amazonaws.com"

    def url_for(self, storage_key: str) -> str:
        return f"https://{self.host}/{storage_key}"

    def key_for(self, ref: str) -> Optional[str]:
        """Return the object key of a URL in this bucket, None for foreign URLs."""
        if "://" not in ref:
            return ref.lstrip("/")
        parsed = urlparse(ref)
        if parsed.netloc == self.host:
            return parsed.path.lstrip("/")
        return None

    async def upload(
        self,
        file_data: bytes,
        key_prefix: str = "uploads",
        content_type: str = "image/png"
    ) -> StoredObject:
        storage_key = self.new_key(key_prefix, content_type)

        await asyncio.to_thread(
            self._client.upload_fileobj,
            Fileobj=BytesIO(file_data),
            Bucket=self.bucket,
            Key=storage_key,
            ExtraArgs={"ContentType": content_type, "ACL": "public-read"},
        )

        logger.info("uploaded_s3", bucket=self.bucket, key=storage_key, size=len(file_data))
        return StoredObject(url=self.url_for(storage_key), key=storage_key)

    async def download(self, ref: str) -> bytes:
        storage_key = self.key_for(ref)
        if storage_key is None:
            # Not one of ours; fetch it like any other public image
            async with httpx.AsyncClient(follow_redirects=True) as client:
                response = await client.get(ref)
            if response.status_code == 404:
                raise FileNotFoundError(f"File not found: {ref}")
            response.raise_for_status()
            return response.content

        from botocore.exceptions import ClientError

        try:
            response = await asyncio.to_thread(
                self._client.get_object, Bucket=self.bucket, Key=storage_key
            )
        except ClientError as exc:
            if exc.response.get("Error", {}).get("Code") in ("NoSuchKey", "404"):
                raise FileNotFoundError(f"File not found: {ref}") from exc
            raise
        return await asyncio.to_thread(response["Body"].read)

    async def exists(self, storage_key: str) -> bool:
        from botocore.exceptions import ClientError

        try:
            await asyncio.to_thread(self._client.head_object, Bucket=self.bucket, Key=storage_key)
            return True
        except ClientError:
            return False


class StorageFactory:
    """
    Factory for creating storage instances.

    STORAGE_BACKEND=s3 with a bucket and region selects S3Storage; anything
    else uses the local filesystem.
    """

    _instance: Optional[IStorage] = None

    @classmethod
    def get_storage(cls) -> IStorage:
        """Get the appropriate storage implementation based on environment."""
        if cls._instance is None:
            if settings.STORAGE_BACKEND.lower() == "s3":
                if not settings.S3_BUCKET or not settings.AWS_REGION:
                    raise RuntimeError("S3_BUCKET and AWS_REGION are required for the s3 backend")
                cls._instance = S3Storage(
                    bucket=settings.S3_BUCKET,
                    region=settings.AWS_REGION,
                    access_key_id=settings.AWS_ACCESS_KEY_ID,
                    secret_access_key=settings.AWS_SECRET_ACCESS_KEY,
                )
            else:
                cls._instance = LocalStorage(base_path=settings.LOCAL_STORAGE_PATH)

        return cls._instance

    @classmethod
    def reset(cls):
        """Reset the singleton instance (useful for testing)."""
        cls._instance = None


# Convenience function for dependency injection
def get_storage() -> IStorage:
    """Get the storage instance - ready for FastAPI Depends()."""
    return StorageFactory.get_storage()
