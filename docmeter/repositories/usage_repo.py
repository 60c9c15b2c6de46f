"""Repository helpers for daily usage counters and the conversion log."""
from __future__ import annotations

from datetime import date, datetime
from typing import Optional

from sqlalchemy import func, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from docmeter.auth.principal import Principal, principal_key
from docmeter.db.dialects import upsert_insert
from docmeter.db.models.conversion import Conversion
from docmeter.db.models.daily_usage import DailyUsage


class UsageRepo:
    """Counter and aggregation queries keyed by principal."""

    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    async def ensure_day(self, principal: Principal, day: date) -> None:
        """Create the zero-count row for ``day`` unless it already exists."""

        kind, key = principal_key(principal)
        stmt = (
            upsert_insert(self.session, DailyUsage)
            .values(principal_kind=kind, principal_id=key, usage_date=day, conversion_count=0)
            .on_conflict_do_nothing(
                index_elements=["principal_kind", "principal_id", "usage_date"]
            )
        )
        await self.session.execute(stmt)

    async def increment_below(
        self, principal: Principal, day: date, limit: int
    ) -> Optional[int]:
        """Increment the counter only while it is below ``limit``.

        Returns the new count, or ``None`` when the row was already at the limit.
        The condition and the write happen in one ``UPDATE`` statement.
        """

        kind, key = principal_key(principal)
        stmt = (
            update(DailyUsage)
            .where(
                DailyUsage.principal_kind == kind,
                DailyUsage.principal_id == key,
                DailyUsage.usage_date == day,
                DailyUsage.conversion_count < limit,
            )
            .values(conversion_count=DailyUsage.conversion_count + 1)
            .returning(DailyUsage.conversion_count)
            .execution_options(synchronize_session=False)
        )
        result = await self.session.execute(stmt)
        return result.scalar_one_or_none()

    async def count_for_day(self, principal: Principal, day: date) -> int:
        kind, key = principal_key(principal)
        result = await self.session.execute(
            select(DailyUsage.conversion_count).where(
                DailyUsage.principal_kind == kind,
                DailyUsage.principal_id == key,
                DailyUsage.usage_date == day,
            )
        )
        value = result.scalar_one_or_none()
        return int(value or 0)

    async def record_conversion(
        self,
        principal: Principal,
        conversion_type: str,
        file_size_mb: float,
        created_at: datetime,
        ip_address: Optional[str] = None,
    ) -> Conversion:
        kind, key = principal_key(principal)
        conversion = Conversion(
            principal_kind=kind,
            principal_id=key,
            conversion_type=conversion_type,
            file_size_mb=file_size_mb,
            ip_address=ip_address,
            created_at=created_at,
        )
        self.session.add(conversion)
        await self.session.flush()
        return conversion

    async def conversions_since(self, principal: Principal, since: datetime) -> int:
        """Return the number of logged conversions at or after ``since``."""

        kind, key = principal_key(principal)
        result = await self.session.execute(
            select(func.count())
            .select_from(Conversion)
            .where(
                Conversion.principal_kind == kind,
                Conversion.principal_id == key,
                Conversion.created_at >= since,
            )
        )
        value = result.scalar_one()
        return int(value or 0)
