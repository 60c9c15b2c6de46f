"""Tests for the quota ledger backends."""
import asyncio
from datetime import date, timedelta

import pytest
import pytest_asyncio
from sqlalchemy import select
from sqlalchemy.ext.asyncio import async_sessionmaker, create_async_engine

from docmeter.auth.principal import AnonymousSession, AuthenticatedUser
from docmeter.core.config import Settings
from docmeter.core.exceptions import StorageUnavailable
from docmeter.db.models.daily_usage import DailyUsage
from docmeter.db.session import get_session_factory
from docmeter.services.ledger import (
    DatabaseQuotaLedger,
    MemoryQuotaLedger,
    build_quota_ledger,
)


DAY = date(2026, 10, 19)


@pytest_asyncio.fixture
async def db_ledger(test_db_engine) -> DatabaseQuotaLedger:
    return DatabaseQuotaLedger(get_session_factory())


@pytest.mark.asyncio
async def test_anonymous_session_scenario(db_ledger):
    principal = AnonymousSession("S1")

    results = [await db_ledger.increment_if_allowed(principal, DAY, 3) for _ in range(3)]
    assert [r.allowed for r in results] == [True, True, True]
    assert [r.count_after for r in results] == [1, 2, 3]

    fourth = await db_ledger.increment_if_allowed(principal, DAY, 3)
    assert not fourth.allowed
    assert fourth.count_after == 3
    assert await db_ledger.count(principal, DAY) == 3


@pytest.mark.asyncio
async def test_one_row_per_principal_and_day(db_ledger):
    principal = AuthenticatedUser(id=7)
    for _ in range(5):
        await db_ledger.increment_if_allowed(principal, DAY, 3)

    async with get_session_factory()() as session:
        rows = (
            await session.execute(
                select(DailyUsage).where(DailyUsage.principal_id == "7")
            )
        ).scalars().all()

    assert len(rows) == 1
    assert rows[0].principal_kind == "user"
    assert rows[0].conversion_count == 3


@pytest.mark.asyncio
async def test_user_and_session_with_same_id_are_separate(db_ledger):
    user = AuthenticatedUser(id=42)
    session = AnonymousSession("42")

    await db_ledger.increment_if_allowed(user, DAY, 3)

    assert await db_ledger.count(user, DAY) == 1
    assert await db_ledger.count(session, DAY) == 0


@pytest.mark.asyncio
async def test_next_day_starts_from_zero(db_ledger):
    principal = AnonymousSession("S2")
    for _ in range(3):
        await db_ledger.increment_if_allowed(principal, DAY, 3)

    next_day = DAY + timedelta(days=1)
    assert await db_ledger.count(principal, next_day) == 0

    result = await db_ledger.increment_if_allowed(principal, next_day, 3)
    assert result.allowed
    assert result.count_after == 1
    assert await db_ledger.count(principal, DAY) == 3


@pytest.mark.asyncio
async def test_count_never_decreases(db_ledger):
    principal = AnonymousSession("S3")
    observed = []
    for _ in range(6):
        result = await db_ledger.increment_if_allowed(principal, DAY, 4)
        observed.append(result.count_after)

    assert observed == sorted(observed)
    assert observed[-1] == 4


@pytest.mark.asyncio
async def test_zero_limit_never_grants(db_ledger):
    result = await db_ledger.increment_if_allowed(AnonymousSession("S4"), DAY, 0)

    assert not result.allowed
    assert result.count_after == 0


@pytest.mark.asyncio
@pytest.mark.parametrize("calls, limit", [(1, 3), (3, 3), (10, 3), (50, 7)])
async def test_memory_ledger_concurrent_increments(calls, limit):
    ledger = MemoryQuotaLedger()
    principal = AnonymousSession("burst")

    results = await asyncio.gather(
        *(ledger.increment_if_allowed(principal, DAY, limit) for _ in range(calls))
    )

    granted = [r for r in results if r.allowed]
    assert len(granted) == min(calls, limit)
    assert await ledger.count(principal, DAY) == min(calls, limit)
    assert sorted(r.count_after for r in granted) == list(range(1, min(calls, limit) + 1))


@pytest.mark.asyncio
async def test_memory_ledger_keys_do_not_share_counts():
    ledger = MemoryQuotaLedger()

    await ledger.increment_if_allowed(AnonymousSession("a"), DAY, 3)
    await ledger.increment_if_allowed(AnonymousSession("b"), DAY, 3)

    assert await ledger.count(AnonymousSession("a"), DAY) == 1
    assert await ledger.count(AnonymousSession("b"), DAY) == 1
    assert await ledger.count(AnonymousSession("a"), DAY + timedelta(days=1)) == 0


@pytest.mark.asyncio
async def test_storage_failure_is_not_a_grant(tmp_path):
    engine = create_async_engine(
        f"sqlite+aiosqlite:///{tmp_path / 'missing' / 'nope.db'}"
    )
    ledger = DatabaseQuotaLedger(async_sessionmaker(engine, expire_on_commit=False))

    with pytest.raises(StorageUnavailable):
        await ledger.increment_if_allowed(AnonymousSession("S5"), DAY, 3)

    await engine.dispose()


def test_build_quota_ledger_selects_backend():
    factory = async_sessionmaker()

    memory_settings = Settings()
    memory_settings.ledger.backend_type = "memory"
    assert isinstance(build_quota_ledger(memory_settings, factory), MemoryQuotaLedger)

    db_settings = Settings()
    db_settings.ledger.backend_type = "database"
    assert isinstance(build_quota_ledger(db_settings, factory), DatabaseQuotaLedger)


@pytest.mark.asyncio
async def test_database_ledger_concurrent_increments(db_ledger):
    principal = AnonymousSession("burst")

    results = await asyncio.gather(
        *(db_ledger.increment_if_allowed(principal, DAY, 3) for _ in range(10))
    )

    granted = [r for r in results if r.allowed]
    assert len(granted) == 3
    assert sorted(r.count_after for r in granted) == [1, 2, 3]
    assert await db_ledger.count(principal, DAY) == 3


@pytest.mark.asyncio
async def test_memory_ledger_releases_previous_days():
    ledger = MemoryQuotaLedger()
    for session_id in ("a", "b", "c"):
        await ledger.increment_if_allowed(AnonymousSession(session_id), DAY, 3)

    next_day = DAY + timedelta(days=1)
    await ledger.increment_if_allowed(AnonymousSession("a"), next_day, 3)

    assert {key[2] for key in ledger._counts} == {next_day}
    assert len(ledger._counts) == 1
    assert await ledger.count(AnonymousSession("b"), DAY) == 0
    assert await ledger.count(AnonymousSession("a"), next_day) == 1


@pytest.mark.asyncio
async def test_memory_ledger_drops_idle_locks():
    ledger = MemoryQuotaLedger()

    await asyncio.gather(
        *(ledger.increment_if_allowed(AnonymousSession("s"), DAY, 3) for _ in range(5))
    )

    assert ledger._locks == {}
    assert await ledger.count(AnonymousSession("s"), DAY) == 3
