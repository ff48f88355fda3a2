"""Channel files API routes: register, list, and live stream."""
import json
from typing import Optional

from fastapi import APIRouter, Depends, Query, Request
from sqlalchemy.ext.asyncio import AsyncSession
from sse_starlette.sse import EventSourceResponse

from snapshare.config import settings
from snapshare.database import get_db
from snapshare.errors import ValidationError
from snapshare.schemas.file import ChannelFilesResponse, FileRecordResponse, FileRegister, FileRegisterResponse
from snapshare.services.channel_feed import ChannelFeed, get_channel_feed
from snapshare.services.file_registry import list_recent, register_file
from snapshare.services.identity import client_address
from snapshare.services.object_storage import ObjectStorageService, get_object_storage

router = APIRouter(prefix="/api", tags=["files"])

MAX_LIST_LIMIT = 100


@router.post("/add-file", response_model=FileRegisterResponse)
async def add_file(
    body: FileRegister,
    request: Request,
    db: AsyncSession = Depends(get_db),
    storage: ObjectStorageService = Depends(get_object_storage),
):
    """Register an uploaded object against a channel."""
    record = await register_file(
        db,
        storage,
        channel_id=body.channel_id,
        file_key=body.file_key,
        file_name=body.file_name,
        uploader_address=client_address(request),
    )
    return {"success": True, "count": 1, "files": [FileRecordResponse.model_validate(record)]}


@router.get("/query-files-by-channel", response_model=ChannelFilesResponse)
async def query_files_by_channel(
    channel_id: str = Query(""),
    limit: int = Query(settings.FEED_SNAPSHOT_LIMIT),
    db: AsyncSession = Depends(get_db),
):
    """Newest files in a channel."""
    limit = max(1, min(limit, MAX_LIST_LIMIT))
    files = await list_recent(db, channel_id, limit)
    return {
        "success": True,
        "data": {
            "channel_id": channel_id,
            "channelFiles": [FileRecordResponse.model_validate(f) for f in files],
        },
    }


@router.get("/stream-files-by-channel", response_model=None)
async def stream_files_by_channel(
    request: Request,
    channel_id: Optional[str] = Query(None),
    feed: ChannelFeed = Depends(get_channel_feed),
) -> EventSourceResponse:
    """Server-sent events: an initial snapshot, then updates as files arrive."""
    if not channel_id:
        raise ValidationError("channel_id is required")

    async def gen():
        async for event in feed.events(channel_id, request.is_disconnected):
            yield {"data": json.dumps(event)}

    return EventSourceResponse(
        gen(),
        headers={"Cache-Control": "no-cache", "Connection": "keep-alive"},
        sep="\n",
    )
