"""Read-only usage summaries."""
from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import date, datetime, time, timezone

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from docmeter.auth.principal import Principal
from docmeter.core.exceptions import StorageUnavailable
from docmeter.repositories.usage_repo import UsageRepo
from docmeter.services.entitlements import UsageToday
from docmeter.services.ledger import QuotaLedger


logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class DailySummary:
    count: int
    limit: int
    remaining: int


@dataclass(frozen=True)
class MonthlySummary:
    monthly_count: int


class UsageReporter:
    """Derives today's and this month's usage from the ledger and conversion log."""

    def __init__(self, ledger: QuotaLedger, session: AsyncSession, daily_limit: int) -> None:
        self.ledger = ledger
        self.session = session
        self.daily_limit = daily_limit

    async def usage_today(self, principal: Principal, day: date) -> UsageToday:
        count = await self.ledger.count(principal, day)
        return UsageToday(count=count, limit=self.daily_limit)

    async def today(self, principal: Principal, day: date) -> DailySummary:
        usage = await self.usage_today(principal, day)
        return DailySummary(count=usage.count, limit=self.daily_limit, remaining=usage.remaining)

    async def unlimited_summary(self, principal: Principal, month_start: date) -> MonthlySummary:
        since = datetime.combine(month_start, time.min, tzinfo=timezone.utc)
        try:
            count = await UsageRepo(self.session).conversions_since(principal, since)
        except SQLAlchemyError as exc:
            logger.error(f"Monthly usage query failed: {exc}")
            raise StorageUnavailable() from exc
        return MonthlySummary(monthly_count=count)
