"""Background sweeper for expired quota counter rows.

Runs as an asyncio task within the FastAPI process. Bucket keys already
roll over on their own; this only keeps the table from growing forever.
"""
import asyncio
import logging
from datetime import datetime, timezone
from typing import Optional

from sqlalchemy import delete
from sqlalchemy.ext.asyncio import AsyncSession

from snapshare.config import settings
from snapshare.database import async_session
from snapshare.models.quota_counter import QuotaCounter
from snapshare.services.quota_ledger import to_ms

logger = logging.getLogger(__name__)


async def purge_expired_counters(db: AsyncSession, now: Optional[datetime] = None) -> int:
    """Delete counters whose expiry has passed. Returns the number removed."""
    now = now or datetime.now(timezone.utc)
    result = await db.execute(
        delete(QuotaCounter).where(QuotaCounter.expires_at < to_ms(now))
    )
    await db.commit()
    return result.rowcount or 0


async def sweeper_loop(interval: Optional[float] = None):
    """Purge expired counters every `interval` seconds until cancelled."""
    interval = interval or settings.QUOTA_SWEEP_INTERVAL
    logger.info(f"Quota counter sweeper started (every {interval:.0f}s)")
    while True:
        try:
            async with async_session() as db:
                removed = await purge_expired_counters(db)
            if removed:
                logger.info(f"Purged {removed} expired quota counter(s)")
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.error(f"Quota counter sweep failed: {e}")
        await asyncio.sleep(interval)
