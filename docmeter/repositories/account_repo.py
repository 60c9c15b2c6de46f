"""Repository for account records."""
from __future__ import annotations

from typing import Optional

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from docmeter.db.models.account import Account, SubscriptionStatus, SubscriptionTier


class AccountRepo:
    """Data-access helpers for :class:`Account`."""

    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    async def get(self, account_id: int, for_update: bool = False) -> Account | None:
        query = select(Account).where(Account.id == account_id)
        if for_update:
            query = query.with_for_update()
        result = await self.session.execute(query)
        return result.scalar_one_or_none()

    async def get_by_email(self, email: str) -> Account | None:
        result = await self.session.execute(
            select(Account).where(func.lower(Account.email) == email.strip().lower())
        )
        return result.scalar_one_or_none()

    async def get_by_customer_id(
        self, customer_id: str, for_update: bool = False
    ) -> Account | None:
        query = select(Account).where(Account.stripe_customer_id == customer_id)
        if for_update:
            query = query.with_for_update()
        result = await self.session.execute(query)
        return result.scalar_one_or_none()

    async def create(
        self, email: str, password_hash: str, name: Optional[str] = None
    ) -> Account:
        account = Account(
            email=email.strip().lower(),
            password_hash=password_hash,
            name=name,
            subscription_tier=SubscriptionTier.FREE.value,
            subscription_status=SubscriptionStatus.ACTIVE.value,
        )
        self.session.add(account)
        await self.session.flush()
        await self.session.refresh(account)
        return account

    async def set_customer_id(self, account: Account, customer_id: str) -> Account:
        account.stripe_customer_id = customer_id
        self.session.add(account)
        await self.session.flush()
        return account
