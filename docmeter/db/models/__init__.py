"""Database models package exports."""

from docmeter.db.models.account import Account, SubscriptionStatus, SubscriptionTier
from docmeter.db.models.conversion import Conversion
from docmeter.db.models.daily_usage import DailyUsage
from docmeter.db.models.payment_event import ProcessedPaymentEvent

__all__ = [
    "Account",
    "Conversion",
    "DailyUsage",
    "ProcessedPaymentEvent",
    "SubscriptionStatus",
    "SubscriptionTier",
]
