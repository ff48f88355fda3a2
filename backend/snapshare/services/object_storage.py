"""Object storage collaborator.

Write credentials are presigned S3 PUT URLs (works against Cloudflare R2 or
any S3-compatible endpoint). Reads never go through the backend; the
metadata probe is a HEAD request against the public CDN URL of the object.
"""
import asyncio
import logging
from dataclasses import dataclass
from typing import Optional
from urllib.parse import quote

import aiohttp
import boto3
from botocore.config import Config
from botocore.exceptions import BotoCoreError, ClientError

from snapshare.config import settings
from snapshare.errors import StorageUnavailable

logger = logging.getLogger(__name__)


@dataclass
class ObjectMetadata:
    size: int
    content_type: str


class ObjectStorageService:
    """Presigns uploads and probes uploaded objects."""

    def __init__(
        self,
        bucket: Optional[str] = None,
        public_url: Optional[str] = None,
        probe_timeout: Optional[float] = None,
    ):
        self.bucket = bucket or settings.STORAGE_BUCKET
        self.public_url = (public_url or settings.STORAGE_PUBLIC_URL).rstrip("/")
        self.probe_timeout = probe_timeout or settings.STORAGE_PROBE_TIMEOUT
        self._client = None

    def _s3(self):
        if self._client is None:
            self._client = boto3.client(
                "s3",
                endpoint_url=settings.STORAGE_ENDPOINT_URL or None,
                region_name=settings.STORAGE_REGION,
                aws_access_key_id=settings.STORAGE_ACCESS_KEY_ID or None,
                aws_secret_access_key=settings.STORAGE_SECRET_ACCESS_KEY or None,
                config=Config(signature_version="s3v4"),
            )
        return self._client

    def presign_put(self, key: str, content_length: int, expires_in: int) -> str:
        """Return a PUT URL for exactly one object of exactly content_length bytes.

        ContentLength is part of the signature, so the store rejects any body
        whose length differs from the declared size.
        """
        try:
            return self._s3().generate_presigned_url(
                "put_object",
                Params={
                    "Bucket": self.bucket,
                    "Key": key,
                    "ContentLength": content_length,
                },
                ExpiresIn=expires_in,
                HttpMethod="PUT",
            )
        except (BotoCoreError, ClientError) as e:
            logger.error(f"Failed to presign upload for {key}: {e}")
            raise StorageUnavailable(f"Could not create upload URL: {e}") from e

    async def probe(self, key: str) -> Optional[ObjectMetadata]:
        """HEAD the object. Returns None if storage reports it missing."""
        url = f"{self.public_url}/{quote(key, safe='/')}"
        timeout = aiohttp.ClientTimeout(total=self.probe_timeout)
        try:
            async with aiohttp.ClientSession(timeout=timeout) as session:
                # identity encoding so Content-Length is the stored size
                async with session.head(url, headers={"Accept-Encoding": "identity"}) as resp:
                    if resp.status == 404:
                        return None
                    if resp.status >= 400:
                        raise StorageUnavailable(f"HTTP {resp.status} probing {url}")
                    return ObjectMetadata(
                        size=int(resp.headers.get("Content-Length") or 0),
                        content_type=resp.headers.get("Content-Type") or "application/octet-stream",
                    )
        except asyncio.TimeoutError as e:
            raise StorageUnavailable(f"Timed out probing {url}") from e
        except aiohttp.ClientError as e:
            raise StorageUnavailable(f"Could not reach storage for {url}: {e or type(e).__name__}") from e


object_storage = ObjectStorageService()


def get_object_storage() -> ObjectStorageService:
    """FastAPI dependency returning the shared storage client."""
    return object_storage
