"""File registry: append-only store of confirmed uploads.

Size and type always come from the storage probe, never from the client.
"""
import logging
import time
from typing import List, Optional

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from snapshare.database import STORE_ERRORS, rollback_quietly
from snapshare.errors import DuplicateKey, ObjectNotFound, RegistryUnavailable, ValidationError
from snapshare.models.file_record import FileRecord
from snapshare.services.identity import hash_address
from snapshare.services.object_storage import ObjectStorageService

logger = logging.getLogger(__name__)

MAX_FILE_NAME_LENGTH = 500


def now_ms() -> int:
    return int(time.time() * 1000)


async def register_file(
    db: AsyncSession,
    storage: ObjectStorageService,
    channel_id: str,
    file_key: str,
    file_name: str,
    uploader_address: Optional[str],
) -> FileRecord:
    """Confirm the object exists in storage and record it against the channel."""
    if not channel_id:
        raise ValidationError("channel_id is required")
    if not file_key:
        raise ValidationError("file_key is required")
    if not file_name:
        raise ValidationError("file_name is required")

    uploader_hash = hash_address(uploader_address)

    metadata = await storage.probe(file_key)
    if metadata is None or metadata.size <= 0:
        logger.warning(f"Rejected registration of {file_key}: object missing or empty")
        raise ObjectNotFound(file_key)

    record = FileRecord(
        channel_id=channel_id,
        file_key=file_key,
        file_name=file_name[:MAX_FILE_NAME_LENGTH],
        file_type=metadata.content_type,
        file_size=metadata.size,
        uploader_hash=uploader_hash,
        created_at=now_ms(),
    )
    db.add(record)
    try:
        await db.commit()
    except IntegrityError as e:
        await db.rollback()
        raise DuplicateKey(file_key) from e
    except STORE_ERRORS as e:
        await rollback_quietly(db)
        logger.error(f"Failed to register {file_key}: {e}")
        raise RegistryUnavailable("File registry is temporarily unavailable") from e

    logger.info(f"Registered {file_key} in channel {channel_id} ({metadata.size} bytes)")
    return record


async def list_recent(db: AsyncSession, channel_id: str, limit: int = 10) -> List[FileRecord]:
    """Newest files in a channel, at most `limit`. Empty channel_id yields []."""
    if not channel_id:
        return []
    try:
        result = await db.execute(
            select(FileRecord)
            .where(FileRecord.channel_id == channel_id)
            .order_by(FileRecord.created_at.desc())
            .limit(limit)
        )
        return list(result.scalars().all())
    except STORE_ERRORS as e:
        logger.error(f"Failed to list files for channel {channel_id}: {e}")
        raise RegistryUnavailable("File registry is temporarily unavailable") from e


async def list_newer(db: AsyncSession, channel_id: str, watermark: int) -> List[FileRecord]:
    """Files in a channel created strictly after `watermark`, newest first."""
    try:
        result = await db.execute(
            select(FileRecord)
            .where(FileRecord.channel_id == channel_id)
            .where(FileRecord.created_at > watermark)
            .order_by(FileRecord.created_at.desc())
        )
        return list(result.scalars().all())
    except STORE_ERRORS as e:
        raise RegistryUnavailable(f"Polling channel {channel_id} failed: {e}") from e
