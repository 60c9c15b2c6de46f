"""Subscription state machine driven by billing webhooks.

Only this module writes ``subscription_tier`` and ``subscription_status``.
Every event id is claimed in ``processed_payment_events`` inside the same
transaction as the state change it causes, so a redelivered or concurrently
delivered event is absorbed as a no-op. Status events older than the last
one applied to an account are recorded but not applied. A checkout is
refused only once its own subscription has ended.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from decimal import Decimal
from typing import Any, Dict, Optional, Tuple

from sqlalchemy.ext.asyncio import AsyncSession

from docmeter.auth.principal import AuthenticatedUser, Principal
from docmeter.db.models.account import Account, SubscriptionStatus, SubscriptionTier
from docmeter.repositories.account_repo import AccountRepo
from docmeter.repositories.payment_event_repo import PaymentEventRepo
from docmeter.services.billing_provider import BillingEvent


logger = logging.getLogger(__name__)

CHECKOUT_COMPLETED = "checkout.session.completed"
SUBSCRIPTION_UPDATED = "customer.subscription.updated"
SUBSCRIPTION_DELETED = "customer.subscription.deleted"
INVOICE_PAYMENT_FAILED = "invoice.payment_failed"

PAID_TIERS = {SubscriptionTier.PRO.value, SubscriptionTier.BUSINESS.value}

_PROVIDER_STATUS = {
    "active": SubscriptionStatus.ACTIVE.value,
    "past_due": SubscriptionStatus.PAST_DUE.value,
    "canceled": SubscriptionStatus.CANCELLED.value,
}


def map_provider_status(provider_status: Optional[str]) -> str:
    """Translate a Stripe subscription status; unknown values count as active."""

    return _PROVIDER_STATUS.get(provider_status or "", SubscriptionStatus.ACTIVE.value)


@dataclass(frozen=True)
class ApplyResult:
    event_id: str
    duplicate: bool = False
    applied: bool = False
    account_id: Optional[int] = None


def _as_utc(value: datetime) -> datetime:
    # SQLite hands back naive datetimes
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


async def load_subscription_state(
    session: AsyncSession, principal: Principal
) -> Tuple[str, str]:
    """Return ``(tier, status)`` for a principal; anonymous callers are free/active."""

    if isinstance(principal, AuthenticatedUser):
        account = await AccountRepo(session).get(principal.id)
        if account is not None:
            return account.subscription_tier, account.subscription_status
    return SubscriptionTier.FREE.value, SubscriptionStatus.ACTIVE.value


@dataclass
class _Outcome:
    account: Optional[Account] = None
    applied: bool = False
    amount: Optional[Decimal] = None
    description: Optional[str] = None
    subscription_id: Optional[str] = None
    ends_subscription: bool = False


class SubscriptionStateMachine:
    """Applies billing events to accounts idempotently."""

    def __init__(self, session: AsyncSession) -> None:
        self.session = session
        self.accounts = AccountRepo(session)
        self.events = PaymentEventRepo(session)

    async def apply(self, event: BillingEvent) -> ApplyResult:
        if await self.events.get(event.event_id) is not None:
            logger.info(f"Duplicate billing event {event.event_id} ({event.type}) ignored")
            return ApplyResult(event_id=event.event_id, duplicate=True)

        if not await self.events.claim(event.event_id, event.type):
            logger.info(f"Billing event {event.event_id} claimed by a concurrent delivery")
            return ApplyResult(event_id=event.event_id, duplicate=True)

        handler = {
            CHECKOUT_COMPLETED: self._checkout_completed,
            SUBSCRIPTION_UPDATED: self._subscription_updated,
            SUBSCRIPTION_DELETED: self._subscription_deleted,
            INVOICE_PAYMENT_FAILED: self._invoice_payment_failed,
        }.get(event.type)

        if handler is None:
            logger.info(f"Unhandled billing event type {event.type}")
            outcome = _Outcome()
        else:
            outcome = await handler(event)

        account_id = outcome.account.id if outcome.account is not None else None
        record = await self.events.get(event.event_id)
        record.account_id = account_id
        record.applied = outcome.applied
        record.amount = outcome.amount
        record.description = outcome.description
        record.subscription_id = outcome.subscription_id
        record.ends_subscription = outcome.applied and outcome.ends_subscription
        await self.session.flush()

        return ApplyResult(
            event_id=event.event_id,
            applied=outcome.applied,
            account_id=account_id,
        )

    def _is_stale(self, account: Account, event: BillingEvent) -> bool:
        if account.billing_event_at is None:
            return False
        return event.created < _as_utc(account.billing_event_at)

    def _matches_subscription(self, account: Account, subscription_id: Optional[str]) -> bool:
        if not account.stripe_subscription_id or not subscription_id:
            return True
        return account.stripe_subscription_id == subscription_id

    def _skip(self, account: Account, event: BillingEvent, subscription_id: Optional[str]) -> bool:
        if self._is_stale(account, event):
            logger.info(
                f"Stale billing event {event.event_id} ({event.type}) for account "
                f"{account.id} not applied"
            )
            return True
        if not self._matches_subscription(account, subscription_id):
            logger.info(
                f"Billing event {event.event_id} targets subscription {subscription_id}, "
                f"account {account.id} holds {account.stripe_subscription_id}; not applied"
            )
            return True
        return False

    async def _account_for_customer(self, event: BillingEvent) -> Optional[Account]:
        customer_id = event.data.get("customer")
        if not customer_id:
            logger.warning(f"Billing event {event.event_id} carries no customer id")
            return None
        account = await self.accounts.get_by_customer_id(str(customer_id), for_update=True)
        if account is None:
            logger.warning(
                f"Billing event {event.event_id} ({event.type}) for unknown customer {customer_id}"
            )
        return account

    def _mark(self, account: Account, event: BillingEvent) -> None:
        account.billing_event_at = event.created
        self.session.add(account)

    async def _checkout_completed(self, event: BillingEvent) -> _Outcome:
        """Grant the purchased plan.

        A checkout only loses to the end of its own subscription, or to a
        newer event for a different subscription. When it arrives after a
        newer status change for the same subscription, the plan is applied
        and the newer status is kept.
        """

        data: Dict[str, Any] = event.data
        metadata = data.get("metadata") or {}
        plan = metadata.get("plan")
        subscription_id = str(data["subscription"]) if data.get("subscription") else None

        account: Optional[Account] = None
        raw_account_id = metadata.get("account_id")
        if raw_account_id is not None:
            try:
                account = await self.accounts.get(int(raw_account_id), for_update=True)
            except (TypeError, ValueError):
                logger.warning(f"Checkout {event.event_id} has malformed account id {raw_account_id!r}")
        if account is None:
            account = await self._account_for_customer(event)
        if account is None:
            return _Outcome(subscription_id=subscription_id)

        outcome = _Outcome(account=account, subscription_id=subscription_id)
        if plan not in PAID_TIERS:
            logger.warning(f"Checkout {event.event_id} for account {account.id} has unknown plan {plan!r}")
            return outcome

        if subscription_id and await self.events.subscription_ended(subscription_id):
            logger.info(
                f"Checkout {event.event_id} for account {account.id} refers to ended "
                f"subscription {subscription_id}; not applied"
            )
            return outcome

        stale = self._is_stale(account, event)
        if stale and not self._matches_subscription(account, subscription_id):
            logger.info(f"Stale checkout {event.event_id} for account {account.id} not applied")
            return outcome

        account.subscription_tier = plan
        account.stripe_subscription_id = subscription_id
        if not account.stripe_customer_id and data.get("customer"):
            account.stripe_customer_id = str(data["customer"])
        if not stale:
            account.subscription_status = SubscriptionStatus.ACTIVE.value
            self._mark(account, event)
        elif account.subscription_status == SubscriptionStatus.CANCELLED.value:
            # Cancelled belonged to a subscription that has since ended
            account.subscription_status = SubscriptionStatus.ACTIVE.value
        self.session.add(account)

        amount_total = data.get("amount_total")
        outcome.applied = True
        outcome.amount = Decimal(amount_total) / 100 if amount_total is not None else None
        outcome.description = f"{plan} subscription"
        logger.info(f"Subscription activated for account {account.id}: {plan}")
        return outcome

    async def _subscription_updated(self, event: BillingEvent) -> _Outcome:
        subscription_id = event.data.get("id")
        account = await self._account_for_customer(event)
        outcome = _Outcome(account=account, subscription_id=subscription_id)
        if account is None or self._skip(account, event, subscription_id):
            return outcome

        status = map_provider_status(event.data.get("status"))
        account.subscription_status = status
        if status == SubscriptionStatus.CANCELLED.value:
            account.subscription_tier = SubscriptionTier.FREE.value
            outcome.ends_subscription = True
        self._mark(account, event)
        outcome.applied = True
        logger.info(f"Subscription status for account {account.id} set to {status}")
        return outcome

    async def _subscription_deleted(self, event: BillingEvent) -> _Outcome:
        subscription_id = event.data.get("id")
        account = await self._account_for_customer(event)
        outcome = _Outcome(account=account, subscription_id=subscription_id)
        if account is None or self._skip(account, event, subscription_id):
            return outcome

        account.subscription_tier = SubscriptionTier.FREE.value
        account.subscription_status = SubscriptionStatus.CANCELLED.value
        account.stripe_subscription_id = None
        self._mark(account, event)
        outcome.applied = True
        outcome.ends_subscription = True
        logger.info(f"Subscription cancelled for account {account.id}")
        return outcome

    async def _invoice_payment_failed(self, event: BillingEvent) -> _Outcome:
        subscription_id = event.data.get("subscription")
        account = await self._account_for_customer(event)
        outcome = _Outcome(account=account, subscription_id=subscription_id)
        if account is None or self._skip(account, event, subscription_id):
            return outcome

        account.subscription_status = SubscriptionStatus.PAST_DUE.value
        self._mark(account, event)
        outcome.applied = True
        logger.info(f"Payment failed for account {account.id}, status past_due")
        return outcome
