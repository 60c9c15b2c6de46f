"""Repository for processed billing events."""
from __future__ import annotations

from sqlalchemy import exists, select
from sqlalchemy.ext.asyncio import AsyncSession

from docmeter.db.dialects import upsert_insert
from docmeter.db.models.payment_event import ProcessedPaymentEvent


class PaymentEventRepo:
    """Data-access helpers for :class:`ProcessedPaymentEvent`."""

    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    async def get(self, event_id: str) -> ProcessedPaymentEvent | None:
        return await self.session.get(ProcessedPaymentEvent, event_id)

    async def claim(self, event_id: str, event_type: str) -> bool:
        """Insert the event id; ``False`` means another delivery already holds it."""

        stmt = (
            upsert_insert(self.session, ProcessedPaymentEvent)
            .values(event_id=event_id, event_type=event_type, applied=False)
            .on_conflict_do_nothing(index_elements=["event_id"])
        )
        result = await self.session.execute(stmt)
        return result.rowcount == 1

    async def subscription_ended(self, subscription_id: str) -> bool:
        """Whether an applied event has already ended ``subscription_id``."""

        query = select(
            exists().where(
                ProcessedPaymentEvent.subscription_id == subscription_id,
                ProcessedPaymentEvent.applied.is_(True),
                ProcessedPaymentEvent.ends_subscription.is_(True),
            )
        )
        result = await self.session.execute(query)
        return bool(result.scalar())
