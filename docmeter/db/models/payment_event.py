"""Processed billing webhook events."""
from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from typing import Optional

from sqlalchemy import Boolean, DateTime, ForeignKey, Integer, Numeric, String, func
from sqlalchemy.orm import Mapped, mapped_column

from docmeter.db.base import Base


class ProcessedPaymentEvent(Base):
    """One row per provider event id; the primary key makes redelivery a no-op."""

    __tablename__ = "processed_payment_events"

    event_id: Mapped[str] = mapped_column(String(255), primary_key=True)
    event_type: Mapped[str] = mapped_column(String(128), nullable=False)
    account_id: Mapped[Optional[int]] = mapped_column(
        Integer, ForeignKey("accounts.id"), index=True, nullable=True
    )
    applied: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    amount: Mapped[Optional[Decimal]] = mapped_column(Numeric(12, 2), nullable=True)
    description: Mapped[Optional[str]] = mapped_column(String, nullable=True)
    subscription_id: Mapped[Optional[str]] = mapped_column(
        String(255), index=True, nullable=True
    )
    # Set when applying this event ended the subscription
    ends_subscription: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    processed_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), nullable=False
    )

    def __repr__(self) -> str:  # pragma: no cover - debug helper
        return f"<ProcessedPaymentEvent {self.event_id} type={self.event_type}>"
