"""Daily conversion quota ledger.

The ledger owns one counter per (principal, day). ``increment_if_allowed``
is the only write path and is atomic per key: under any number of concurrent
callers for the same key, the number of granted calls equals the final stored
count and never exceeds the limit.
"""
from __future__ import annotations

import abc
import asyncio
import logging
from dataclasses import dataclass, field
from datetime import date
from typing import Dict, Optional, Tuple

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from docmeter.auth.principal import Principal, principal_key
from docmeter.core.config import Settings
from docmeter.core.exceptions import StorageUnavailable
from docmeter.repositories.usage_repo import UsageRepo


logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class LedgerResult:
    allowed: bool
    count_after: int


class QuotaLedger(abc.ABC):
    """Interface shared by the ledger backends."""

    @abc.abstractmethod
    async def increment_if_allowed(
        self, principal: Principal, day: date, daily_limit: int
    ) -> LedgerResult:
        """Atomically grant one conversion if the day's count is below the limit."""

    @abc.abstractmethod
    async def count(self, principal: Principal, day: date) -> int:
        """Return the stored count for the day, 0 if nothing was recorded."""

    async def close(self) -> None:  # pragma: no cover - nothing to release by default
        return None


class DatabaseQuotaLedger(QuotaLedger):
    """Ledger backed by the ``daily_usage`` table.

    Each call runs in its own short transaction, independent of the request
    session, so a grant is durable before the caller continues.
    """

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
        self.session_factory = session_factory

    async def increment_if_allowed(
        self, principal: Principal, day: date, daily_limit: int
    ) -> LedgerResult:
        try:
            async with self.session_factory() as session:
                async with session.begin():
                    repo = UsageRepo(session)
                    await repo.ensure_day(principal, day)
                    count = await repo.increment_below(principal, day, daily_limit)
                    if count is None:
                        current = await repo.count_for_day(principal, day)
                        return LedgerResult(allowed=False, count_after=current)
                    return LedgerResult(allowed=True, count_after=count)
        except SQLAlchemyError as exc:
            kind, key = principal_key(principal)
            logger.error(f"Quota ledger increment failed for {kind}:{key} on {day}: {exc}")
            raise StorageUnavailable() from exc

    async def count(self, principal: Principal, day: date) -> int:
        try:
            async with self.session_factory() as session:
                return await UsageRepo(session).count_for_day(principal, day)
        except SQLAlchemyError as exc:
            logger.error(f"Quota ledger read failed: {exc}")
            raise StorageUnavailable() from exc


@dataclass
class _KeyLock:
    lock: asyncio.Lock = field(default_factory=asyncio.Lock)
    users: int = 0


class MemoryQuotaLedger(QuotaLedger):
    """Process-local ledger guarded by one lock per (principal, day).

    Only the newest day seen is kept: counters for earlier days are dropped
    as soon as a later day is written, and a key's lock is released once no
    caller holds or waits on it.
    """

    def __init__(self) -> None:
        self._counts: Dict[Tuple[str, str, date], int] = {}
        self._locks: Dict[Tuple[str, str, date], _KeyLock] = {}
        self._latest_day: Optional[date] = None

    def _key(self, principal: Principal, day: date) -> Tuple[str, str, date]:
        kind, key = principal_key(principal)
        return kind, key, day

    def _advance(self, day: date) -> None:
        if self._latest_day is not None and day <= self._latest_day:
            return
        self._latest_day = day
        expired = [key for key in self._counts if key[2] < day]
        for key in expired:
            del self._counts[key]
        if expired:
            logger.debug(f"Dropped {len(expired)} quota counters older than {day}")

    async def increment_if_allowed(
        self, principal: Principal, day: date, daily_limit: int
    ) -> LedgerResult:
        self._advance(day)
        key = self._key(principal, day)
        entry = self._locks.setdefault(key, _KeyLock())
        entry.users += 1
        try:
            async with entry.lock:
                current = self._counts.get(key, 0)
                if current >= daily_limit:
                    return LedgerResult(allowed=False, count_after=current)
                self._counts[key] = current + 1
                return LedgerResult(allowed=True, count_after=current + 1)
        finally:
            entry.users -= 1
            if entry.users == 0:
                del self._locks[key]

    async def count(self, principal: Principal, day: date) -> int:
        return self._counts.get(self._key(principal, day), 0)


def build_quota_ledger(
    settings: Settings, session_factory: async_sessionmaker[AsyncSession]
) -> QuotaLedger:
    """Instantiate the ledger backend selected by ``settings.ledger.backend_type``."""

    backend = settings.ledger.backend_type
    if backend == "memory":
        logger.info("Using in-memory quota ledger")
        return MemoryQuotaLedger()
    if backend == "database":
        return DatabaseQuotaLedger(session_factory)
    raise ValueError(f"Unknown ledger backend: {backend}")
