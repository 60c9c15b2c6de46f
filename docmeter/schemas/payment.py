"""Pydantic schemas for payment endpoints"""
from datetime import datetime
from typing import Literal, Optional

from pydantic import BaseModel, Field


class CheckoutRequest(BaseModel):
    price_id: str = Field(..., description="Stripe price identifier")
    plan: Literal["pro", "business"] = Field(..., description="Plan being purchased")


class CheckoutResponse(BaseModel):
    session_id: str
    url: Optional[str] = None


class SubscriptionStatusRead(BaseModel):
    tier: str
    status: str
    current_period_end: Optional[datetime] = None
    cancel_at_period_end: Optional[bool] = None
