import asyncio
import uuid
from datetime import datetime, timedelta, timezone

import pytest
from sqlalchemy import select
from sqlalchemy.exc import OperationalError

from snapshare.database import async_session
from snapshare.errors import LedgerUnavailable, ValidationError
from snapshare.models.file_record import FileRecord
from snapshare.models.quota_counter import QuotaCounter
from snapshare.services.counter_sweeper import purge_expired_counters
from snapshare.services.quota_ledger import (
    BucketedQuotaLedger,
    QuotaLimits,
    ScanQuotaLedger,
    build_quota_ledger,
    to_ms,
)

IDENTITY = "a1b2c3d4e5f60718"
T0 = datetime(2026, 10, 19, 10, 15, tzinfo=timezone.utc)

SMALL = QuotaLimits(hourly_files=3, daily_files=5, hourly_bytes=1000, daily_bytes=2500)


async def request_upload(ledger, db, size, now, identity=IDENTITY):
    """Ask the ledger for one upload; for the scan strategy, registering is the reservation."""
    decision = await ledger.check_and_reserve(db, identity, 1, size, now=now)
    if decision.allowed and isinstance(ledger, ScanQuotaLedger):
        db.add(FileRecord(
            channel_id="c", file_key=uuid.uuid4().hex, file_name="f.bin",
            file_type="application/octet-stream", file_size=size,
            uploader_hash=identity, created_at=to_ms(now),
        ))
        await db.commit()
    return decision


@pytest.fixture(params=["bucketed", "scan"])
def ledger(request):
    return build_quota_ledger(request.param, SMALL)


@pytest.mark.asyncio
async def test_file_count_ceiling_denies_next_request(db, ledger):
    for _ in range(3):
        assert (await request_upload(ledger, db, 10, T0)).allowed

    decision = await request_upload(ledger, db, 10, T0)

    assert not decision.allowed
    assert (decision.reason, decision.window) == ("file-count", "hour")
    assert (decision.current, decision.max, decision.unit) == (3, 3, "files")


@pytest.mark.asyncio
async def test_byte_ceiling_denied_on_crossing_request(db, ledger):
    assert (await request_upload(ledger, db, 400, T0)).allowed
    assert (await request_upload(ledger, db, 400, T0)).allowed

    crossing = await request_upload(ledger, db, 300, T0)
    assert not crossing.allowed
    assert (crossing.reason, crossing.window, crossing.current, crossing.max) == (
        "byte-total", "hour", 800, 1000,
    )

    # Denial reserved nothing; exactly reaching the ceiling is fine
    assert (await request_upload(ledger, db, 200, T0)).allowed


@pytest.mark.asyncio
async def test_daily_ceiling_applies_across_hours(db, ledger):
    for _ in range(3):
        assert (await request_upload(ledger, db, 10, T0)).allowed
    next_hour = T0 + timedelta(hours=1)
    for _ in range(2):
        assert (await request_upload(ledger, db, 10, next_hour)).allowed

    decision = await request_upload(ledger, db, 10, next_hour)

    assert not decision.allowed
    assert (decision.reason, decision.window, decision.current, decision.max) == ("file-count", "day", 5, 5)


@pytest.mark.asyncio
async def test_windows_are_calendar_aligned(db, ledger):
    before_midnight = datetime(2026, 10, 19, 23, 59, tzinfo=timezone.utc)
    for _ in range(3):
        assert (await request_upload(ledger, db, 10, before_midnight)).allowed
    assert not (await request_upload(ledger, db, 10, before_midnight)).allowed

    # Two minutes later is a new hour and a new day
    after_midnight = before_midnight + timedelta(minutes=2)
    assert (await request_upload(ledger, db, 10, after_midnight)).allowed


@pytest.mark.asyncio
async def test_identities_are_isolated(db, ledger):
    for _ in range(3):
        assert (await request_upload(ledger, db, 10, T0)).allowed
    assert (await request_upload(ledger, db, 10, T0, identity="ffffffffffffffff")).allowed


@pytest.mark.asyncio
async def test_strategies_reach_identical_decisions(db):
    sequence = [(T0, 300), (T0, 300), (T0, 500), (T0, 400), (T0 + timedelta(hours=1), 900),
                (T0 + timedelta(hours=1), 200), (T0 + timedelta(hours=2), 600), (T0 + timedelta(hours=2), 1)]
    outcomes = {}
    for strategy, identity in (("bucketed", "1111111111111111"), ("scan", "2222222222222222")):
        ledger = build_quota_ledger(strategy, SMALL)
        outcomes[strategy] = [
            (d.allowed, d.reason, d.window, d.current)
            for d in [await request_upload(ledger, db, size, now, identity) for now, size in sequence]
        ]
    assert outcomes["bucketed"] == outcomes["scan"]
    assert any(not allowed for allowed, *_ in outcomes["bucketed"])


@pytest.mark.asyncio
async def test_bucketed_batch_reserves_counts_and_bytes(db):
    ledger = BucketedQuotaLedger(SMALL)
    assert (await ledger.check_and_reserve(db, IDENTITY, 2, 600, now=T0)).allowed

    result = await db.execute(select(QuotaCounter).where(QuotaCounter.identity == IDENTITY))
    counters = {c.window: c for c in result.scalars().all()}

    assert counters["hour"].bucket == "hour:2026-10-19T10"
    assert counters["day"].bucket == "day:2026-10-19"
    assert (counters["hour"].file_count, counters["hour"].byte_total) == (2, 600)
    assert counters["hour"].expires_at == to_ms(T0 + timedelta(hours=1))
    assert counters["day"].expires_at == to_ms(T0 + timedelta(days=1))

    denied = await ledger.check_and_reserve(db, IDENTITY, 2, 10, now=T0)
    assert (denied.allowed, denied.reason, denied.current) == (False, "file-count", 2)


@pytest.mark.asyncio
async def test_concurrent_requests_do_not_overshoot(db):
    ledger = BucketedQuotaLedger(SMALL)

    async def one_request():
        async with async_session() as session:
            return await ledger.check_and_reserve(session, IDENTITY, 1, 10, now=T0)

    decisions = await asyncio.gather(*[one_request() for _ in range(6)])

    assert sum(d.allowed for d in decisions) == 3


@pytest.mark.asyncio
async def test_store_failure_is_fatal_not_permissive(db, monkeypatch):
    ledger = BucketedQuotaLedger(SMALL)

    async def broken_execute(*args, **kwargs):
        raise OperationalError("SELECT 1", {}, Exception("database is locked"))

    monkeypatch.setattr(db, "execute", broken_execute)

    with pytest.raises(LedgerUnavailable):
        await ledger.check_and_reserve(db, IDENTITY, 1, 10, now=T0)


@pytest.mark.asyncio
async def test_unreachable_store_is_ledger_unavailable(ledger, unreachable_sessions):
    async with unreachable_sessions() as dead:
        with pytest.raises(LedgerUnavailable):
            await ledger.check_and_reserve(dead, IDENTITY, 1, 10, now=T0)
    assert ledger._locks._entries == {}


@pytest.mark.asyncio
async def test_refused_connection_is_ledger_unavailable(db, monkeypatch):
    ledger = BucketedQuotaLedger(SMALL)

    async def refused_execute(*args, **kwargs):
        raise ConnectionRefusedError(111, "Connect call failed")

    monkeypatch.setattr(db, "execute", refused_execute)

    with pytest.raises(LedgerUnavailable):
        await ledger.check_and_reserve(db, IDENTITY, 1, 10, now=T0)


@pytest.mark.asyncio
async def test_negative_request_rejected(db, ledger):
    with pytest.raises(ValidationError):
        await ledger.check_and_reserve(db, IDENTITY, -1, 10, now=T0)


def test_unknown_strategy_rejected():
    with pytest.raises(ValueError):
        build_quota_ledger("leaky-bucket")


@pytest.mark.asyncio
async def test_sweeper_purges_only_expired_counters(db):
    ledger = BucketedQuotaLedger(SMALL)
    assert (await ledger.check_and_reserve(db, IDENTITY, 1, 10, now=T0)).allowed

    removed = await purge_expired_counters(db, now=T0 + timedelta(hours=2))

    assert removed == 1
    result = await db.execute(select(QuotaCounter.window))
    assert result.scalars().all() == ["day"]
