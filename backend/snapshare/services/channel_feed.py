"""Channel feed: snapshot reads plus a polled live stream of new files.

The registry has no change-notification primitive, so the live stream
re-queries on a fixed cadence for rows newer than a watermark. Staleness
is bounded by one poll interval.
"""
import asyncio
import logging
from typing import Any, AsyncIterator, Awaitable, Callable, Dict, List, Optional

from snapshare.config import settings
from snapshare.database import async_session
from snapshare.errors import SnapshareError
from snapshare.models.file_record import FileRecord
from snapshare.schemas.file import FileRecordResponse
from snapshare.services.file_registry import list_newer, list_recent, now_ms

logger = logging.getLogger(__name__)


def serialize_files(records: List[FileRecord]) -> List[Dict[str, Any]]:
    return [FileRecordResponse.model_validate(r).model_dump() for r in records]


class ChannelFeed:
    """Produces {type: initial|update|error} events for one channel subscriber."""

    def __init__(
        self,
        session_factory=None,
        poll_interval: Optional[float] = None,
        snapshot_limit: Optional[int] = None,
    ):
        self.session_factory = session_factory or async_session
        self.poll_interval = poll_interval if poll_interval is not None else settings.FEED_POLL_INTERVAL
        self.snapshot_limit = snapshot_limit or settings.FEED_SNAPSHOT_LIMIT

    async def snapshot(self, channel_id: str) -> List[FileRecord]:
        async with self.session_factory() as db:
            return await list_recent(db, channel_id, self.snapshot_limit)

    async def poll(self, channel_id: str, watermark: int) -> List[FileRecord]:
        async with self.session_factory() as db:
            return await list_newer(db, channel_id, watermark)

    async def events(
        self,
        channel_id: str,
        is_disconnected: Optional[Callable[[], Awaitable[bool]]] = None,
    ) -> AsyncIterator[Dict[str, Any]]:
        """Initial snapshot, then incremental updates until the client goes away.

        Each tick awaits its query before sleeping again, so polls never
        overlap. A failed tick is logged and skipped; only a failed initial
        snapshot ends the stream with an error event.
        """
        try:
            initial = await self.snapshot(channel_id)
        except Exception as e:
            logger.error(f"Initial snapshot failed for channel {channel_id}: {e}")
            message = e.message if isinstance(e, SnapshareError) else "Channel feed is temporarily unavailable"
            yield {"type": "error", "error": message}
            return

        watermark = max((f.created_at for f in initial), default=now_ms())
        yield {"type": "initial", "data": serialize_files(initial)}
        logger.debug(f"Feed opened for channel {channel_id} at watermark {watermark}")

        try:
            while True:
                await asyncio.sleep(self.poll_interval)
                if is_disconnected is not None and await is_disconnected():
                    return
                try:
                    newer = await self.poll(channel_id, watermark)
                except Exception as e:
                    logger.warning(f"Feed poll failed for channel {channel_id}: {e}")
                    continue
                if newer:
                    watermark = max(f.created_at for f in newer)
                    yield {"type": "update", "data": serialize_files(newer)}
        finally:
            logger.debug(f"Feed closed for channel {channel_id}")


channel_feed = ChannelFeed()


def get_channel_feed() -> ChannelFeed:
    """FastAPI dependency returning the shared feed."""
    return channel_feed
