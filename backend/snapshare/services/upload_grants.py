"""Upload grant issuance: size-checked, single-object presigned PUT credentials."""
import logging
import uuid
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import List, Optional

from snapshare.config import settings
from snapshare.errors import SizeExceeded, ValidationError
from snapshare.services.object_storage import ObjectStorageService

logger = logging.getLogger(__name__)

UPLOAD_METHOD = "PUT"


@dataclass
class UploadGrant:
    url: str
    method: str
    file_key: str
    file_size_bytes: int
    max_size_bytes: int
    expires_in: int


def make_file_key(now: Optional[datetime] = None) -> str:
    """Hour-granularity ISO prefix plus a random id, e.g. '2026-10-19T14/3f2a...'."""
    now = now or datetime.now(timezone.utc)
    return f"{now.isoformat()[:13]}/{uuid.uuid4().hex}"


class UploadGrantIssuer:
    """Validates requested sizes and asks storage for write credentials."""

    def __init__(
        self,
        storage: ObjectStorageService,
        max_size_bytes: Optional[int] = None,
        expires_in: Optional[int] = None,
        max_batch_files: Optional[int] = None,
    ):
        self.storage = storage
        self.max_size_bytes = max_size_bytes or settings.UPLOAD_MAX_SIZE_BYTES
        self.expires_in = expires_in or settings.UPLOAD_URL_EXPIRES_IN
        self.max_batch_files = max_batch_files or settings.UPLOAD_MAX_BATCH_FILES

    def validate_size(self, size) -> int:
        # bool is an int subclass; reject it explicitly
        if isinstance(size, bool) or not isinstance(size, int):
            raise ValidationError(f"File size must be an integer, got {size!r}")
        if size <= 0:
            raise ValidationError("File size must be greater than zero")
        if size > self.max_size_bytes:
            raise SizeExceeded(size, self.max_size_bytes)
        return size

    def validate_batch(self, sizes: List[int]) -> List[int]:
        """Check every size before any credential is issued."""
        if not sizes:
            raise ValidationError("At least one file size is required")
        if len(sizes) > self.max_batch_files:
            raise ValidationError(
                f"Too many files in one request: {len(sizes)} (max {self.max_batch_files})"
            )
        return [self.validate_size(s) for s in sizes]

    def issue(self, requested_size_bytes: int) -> UploadGrant:
        size = self.validate_size(requested_size_bytes)
        file_key = make_file_key()
        url = self.storage.presign_put(file_key, size, self.expires_in)
        logger.info(f"Issued upload grant {file_key} ({size} bytes)")
        return UploadGrant(
            url=url,
            method=UPLOAD_METHOD,
            file_key=file_key,
            file_size_bytes=size,
            max_size_bytes=self.max_size_bytes,
            expires_in=self.expires_in,
        )

    def issue_batch(self, sizes: List[int]) -> List[UploadGrant]:
        return [self.issue(size) for size in self.validate_batch(sizes)]
