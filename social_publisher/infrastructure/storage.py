# social_publisher/infrastructure/storage.py
import asyncio
import os
from datetime import timedelta
from typing import Optional, Protocol

import structlog
from google.api_core import exceptions as gcp_exceptions
from google.cloud import storage

from social_publisher.errors import StorageError

logger = structlog.get_logger(__name__)

MEDIA_BUCKET = os.getenv("MEDIA_BUCKET", "")
MEDIA_PUBLIC_BASE_URL = os.getenv("MEDIA_PUBLIC_BASE_URL", "")
GCS_CREDENTIALS_PATH = os.getenv("GCS_CREDENTIALS_PATH")


class ObjectStorage(Protocol):
    """Contract the media pipeline needs from object storage."""

    async def generate_upload_url(self, key: str, content_type: str, expires: timedelta) -> str: ...

    def public_url(self, key: str) -> str: ...

    async def download(self, key: str) -> bytes: ...

    async def upload(self, key: str, data: bytes, content_type: str) -> None: ...

    async def delete(self, key: str) -> None: ...


class GCSStorage:
    """Google Cloud Storage backend. The client is blocking, so calls run in a thread."""

    def __init__(
        self,
        bucket_name: str = MEDIA_BUCKET,
        public_base_url: str = MEDIA_PUBLIC_BASE_URL,
        credentials_path: Optional[str] = GCS_CREDENTIALS_PATH,
    ):
        if not bucket_name:
            raise StorageError("MEDIA_BUCKET is not configured")
        if credentials_path:
            self.client = storage.Client.from_service_account_json(credentials_path)
        else:
            # Uses GOOGLE_APPLICATION_CREDENTIALS
            self.client = storage.Client()
        self.bucket = self.client.bucket(bucket_name)
        self.public_base_url = (public_base_url or f"https://storage.googleapis.com/{bucket_name}").rstrip("/")

    def public_url(self, key: str) -> str:
        return f"{self.public_base_url}/{key}"

    async def generate_upload_url(self, key: str, content_type: str, expires: timedelta) -> str:
        blob = self.bucket.blob(key)
        try:
            return await asyncio.to_thread(
                blob.generate_signed_url,
                version="v4",
                expiration=expires,
                method="PUT",
                content_type=content_type,
            )
        except gcp_exceptions.GoogleAPIError as exc:
            raise StorageError(f"could not sign upload url for {key}: {exc}") from exc

    async def download(self, key: str) -> bytes:
        blob = self.bucket.blob(key)
        try:
            return await asyncio.to_thread(blob.download_as_bytes, timeout=120)
        except gcp_exceptions.GoogleAPIError as exc:
            raise StorageError(f"download of {key} failed: {exc}") from exc

    async def upload(self, key: str, data: bytes, content_type: str) -> None:
        blob = self.bucket.blob(key)
        try:
            await asyncio.to_thread(blob.upload_from_string, data, content_type=content_type, timeout=120)
        except gcp_exceptions.GoogleAPIError as exc:
            raise StorageError(f"upload of {key} failed: {exc}") from exc
        logger.info("storage_object_uploaded", key=key, size=len(data))

    async def delete(self, key: str) -> None:
        blob = self.bucket.blob(key)
        try:
            await asyncio.to_thread(blob.delete)
        except gcp_exceptions.NotFound:
            logger.info("storage_object_already_gone", key=key)
        except gcp_exceptions.GoogleAPIError as exc:
            raise StorageError(f"delete of {key} failed: {exc}") from exc


_storage: Optional[ObjectStorage] = None


def get_storage() -> ObjectStorage:
    global _storage
    if _storage is None:
        _storage = GCSStorage()
    return _storage
