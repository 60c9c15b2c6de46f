"""Repository layer package."""

from docmeter.repositories.account_repo import AccountRepo
from docmeter.repositories.payment_event_repo import PaymentEventRepo
from docmeter.repositories.usage_repo import UsageRepo

__all__ = [
    "AccountRepo",
    "PaymentEventRepo",
    "UsageRepo",
]
