"""Per-uploader quota ledger.

Limits how many files and how many bytes one identity may request per
calendar hour and per calendar day (UTC). Two interchangeable backends:

- BucketedQuotaLedger keeps one counter row per (identity, bucket) and
  increments it atomically when a request is allowed. O(1) per request.
- ScanQuotaLedger derives usage by aggregating the identity's registered
  files since the start of each window. Nothing is reserved; the next
  registration is what moves the needle, so concurrent bursts can
  overshoot slightly.

Both use the same calendar-aligned windows, so for the same sequence of
counted uploads they reach the same decisions.
"""
import asyncio
import logging
from abc import ABC, abstractmethod
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Dict, Optional

from sqlalchemy import func, select
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.ext.asyncio import AsyncSession

from snapshare.config import settings
from snapshare.database import STORE_ERRORS, rollback_quietly
from snapshare.errors import LedgerUnavailable, ValidationError
from snapshare.models.file_record import FileRecord
from snapshare.models.quota_counter import QuotaCounter

logger = logging.getLogger(__name__)


def to_ms(dt: datetime) -> int:
    return int(dt.timestamp() * 1000)


@dataclass(frozen=True)
class Window:
    name: str
    width: timedelta
    key_format: str

    def start(self, now: datetime) -> datetime:
        if self.name == "hour":
            return now.replace(minute=0, second=0, microsecond=0)
        return now.replace(hour=0, minute=0, second=0, microsecond=0)

    def bucket_key(self, now: datetime) -> str:
        return f"{self.name}:{now.strftime(self.key_format)}"


HOUR = Window("hour", timedelta(hours=1), "%Y-%m-%dT%H")
DAY = Window("day", timedelta(days=1), "%Y-%m-%d")
WINDOWS = (HOUR, DAY)


@dataclass(frozen=True)
class QuotaLimits:
    hourly_files: int
    daily_files: int
    hourly_bytes: int
    daily_bytes: int

    @classmethod
    def from_settings(cls) -> "QuotaLimits":
        return cls(
            hourly_files=settings.QUOTA_HOURLY_MAX_FILES,
            daily_files=settings.QUOTA_DAILY_MAX_FILES,
            hourly_bytes=settings.QUOTA_HOURLY_MAX_BYTES,
            daily_bytes=settings.QUOTA_DAILY_MAX_BYTES,
        )


@dataclass
class WindowUsage:
    file_count: int = 0
    byte_total: int = 0


@dataclass(frozen=True)
class QuotaDecision:
    allowed: bool
    reason: Optional[str] = None  # "file-count" | "byte-total"
    window: Optional[str] = None  # "hour" | "day"
    current: int = 0
    max: int = 0
    unit: Optional[str] = None  # "files" | "bytes"

    @classmethod
    def allow(cls) -> "QuotaDecision":
        return cls(allowed=True)


@dataclass
class _LockEntry:
    lock: asyncio.Lock = field(default_factory=asyncio.Lock)
    holders: int = 0


class _IdentityLocks:
    """Reference-counted asyncio locks, one per identity currently in flight."""

    def __init__(self):
        self._entries: Dict[str, _LockEntry] = {}

    @asynccontextmanager
    async def hold(self, identity: str):
        entry = self._entries.get(identity)
        if entry is None:
            entry = self._entries[identity] = _LockEntry()
        entry.holders += 1
        try:
            async with entry.lock:
                yield
        finally:
            entry.holders -= 1
            if entry.holders == 0:
                del self._entries[identity]


class QuotaLedger(ABC):
    """check_and_reserve contract shared by every backend."""

    strategy = ""

    def __init__(self, limits: Optional[QuotaLimits] = None):
        self.limits = limits or QuotaLimits.from_settings()
        self._locks = _IdentityLocks()

    def evaluate(
        self, usage: Dict[str, WindowUsage], file_count: int, byte_total: int
    ) -> QuotaDecision:
        """First violated predicate wins: hour files, day files, hour bytes, day bytes."""
        hour, day = usage[HOUR.name], usage[DAY.name]
        checks = (
            ("file-count", HOUR.name, hour.file_count, file_count, self.limits.hourly_files, "files"),
            ("file-count", DAY.name, day.file_count, file_count, self.limits.daily_files, "files"),
            ("byte-total", HOUR.name, hour.byte_total, byte_total, self.limits.hourly_bytes, "bytes"),
            ("byte-total", DAY.name, day.byte_total, byte_total, self.limits.daily_bytes, "bytes"),
        )
        for reason, window, current, requested, maximum, unit in checks:
            if current + requested > maximum:
                return QuotaDecision(
                    allowed=False, reason=reason, window=window,
                    current=current, max=maximum, unit=unit,
                )
        return QuotaDecision.allow()

    async def check_and_reserve(
        self,
        db: AsyncSession,
        identity: str,
        file_count: int,
        byte_total: int,
        now: Optional[datetime] = None,
    ) -> QuotaDecision:
        """Allow and record the request, or return the first limit it would break.

        Raises LedgerUnavailable if the counter store fails; never fails open.
        """
        if file_count < 0 or byte_total < 0:
            raise ValidationError("Requested file count and byte total must be non-negative")
        now = (now or datetime.now(timezone.utc)).astimezone(timezone.utc)
        async with self._locks.hold(identity):
            try:
                decision = await self._check_and_reserve(db, identity, file_count, byte_total, now)
            except STORE_ERRORS as e:
                await rollback_quietly(db)
                logger.error(f"Quota ledger ({self.strategy}) failed for {identity}: {e}")
                raise LedgerUnavailable("Quota service is temporarily unavailable") from e
        if not decision.allowed:
            logger.info(
                f"Quota denied for {identity}: {decision.reason}/{decision.window} "
                f"{decision.current}/{decision.max}"
            )
        return decision

    @abstractmethod
    async def _check_and_reserve(
        self, db: AsyncSession, identity: str, file_count: int, byte_total: int, now: datetime
    ) -> QuotaDecision:
        ...


class BucketedQuotaLedger(QuotaLedger):
    """Counter rows keyed by calendar bucket, expiring one width past last write."""

    strategy = "bucketed"

    @staticmethod
    def _insert(db: AsyncSession):
        if db.get_bind().dialect.name == "sqlite":
            return sqlite_insert(QuotaCounter)
        return pg_insert(QuotaCounter)

    async def _ensure_rows(self, db: AsyncSession, identity: str, now: datetime) -> None:
        rows = [
            {
                "identity": identity,
                "bucket": w.bucket_key(now),
                "window": w.name,
                "file_count": 0,
                "byte_total": 0,
                "expires_at": to_ms(now + w.width),
            }
            for w in WINDOWS
        ]
        stmt = self._insert(db).values(rows).on_conflict_do_nothing(
            index_elements=["identity", "bucket"]
        )
        await db.execute(stmt)

    async def _check_and_reserve(self, db, identity, file_count, byte_total, now):
        await self._ensure_rows(db, identity, now)
        keys = {w.name: w.bucket_key(now) for w in WINDOWS}
        result = await db.execute(
            select(QuotaCounter)
            .where(QuotaCounter.identity == identity)
            .where(QuotaCounter.bucket.in_(list(keys.values())))
            .with_for_update()
            .execution_options(populate_existing=True)
        )
        counters = {c.bucket: c for c in result.scalars().all()}
        usage = {
            w.name: WindowUsage(counters[keys[w.name]].file_count, counters[keys[w.name]].byte_total)
            for w in WINDOWS
        }

        decision = self.evaluate(usage, file_count, byte_total)
        if not decision.allowed:
            # Keep the placeholder rows; they expire like any other bucket
            await db.commit()
            return decision

        for w in WINDOWS:
            counter = counters[keys[w.name]]
            counter.file_count += file_count
            counter.byte_total += byte_total
            counter.expires_at = to_ms(now + w.width)
        await db.commit()
        return decision


class ScanQuotaLedger(QuotaLedger):
    """Usage derived from the file registry on every request."""

    strategy = "scan"

    async def _window_usage(self, db: AsyncSession, identity: str, since_ms: int) -> WindowUsage:
        result = await db.execute(
            select(
                func.count(FileRecord.file_key),
                func.coalesce(func.sum(FileRecord.file_size), 0),
            )
            .where(FileRecord.uploader_hash == identity)
            .where(FileRecord.created_at >= since_ms)
        )
        count, total = result.one()
        return WindowUsage(int(count or 0), int(total or 0))

    async def _check_and_reserve(self, db, identity, file_count, byte_total, now):
        usage = {}
        for w in WINDOWS:
            usage[w.name] = await self._window_usage(db, identity, to_ms(w.start(now)))
        # Registration is the reservation; nothing to write here
        await db.commit()
        return self.evaluate(usage, file_count, byte_total)


LEDGER_STRATEGIES = {
    BucketedQuotaLedger.strategy: BucketedQuotaLedger,
    ScanQuotaLedger.strategy: ScanQuotaLedger,
}


def build_quota_ledger(strategy: Optional[str] = None, limits: Optional[QuotaLimits] = None) -> QuotaLedger:
    strategy = strategy or settings.QUOTA_STRATEGY
    ledger_cls = LEDGER_STRATEGIES.get(strategy)
    if ledger_cls is None:
        raise ValueError(f"Unknown quota strategy: {strategy}")
    return ledger_cls(limits)


quota_ledger = build_quota_ledger()


def get_quota_ledger() -> QuotaLedger:
    """FastAPI dependency returning the process-wide ledger."""
    return quota_ledger
