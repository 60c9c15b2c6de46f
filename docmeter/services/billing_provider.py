"""Thin wrapper around the Stripe SDK."""
from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, Optional, Tuple

import stripe
from starlette.concurrency import run_in_threadpool

from docmeter.core.config import BillingSettings
from docmeter.core.exceptions import BadRequest, BillingProviderError, InvalidSignature


logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class BillingEvent:
    """A verified webhook notification."""

    event_id: str
    type: str
    created: datetime
    data: Dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_payload(cls, payload: Dict[str, Any]) -> "BillingEvent":
        event_id = payload.get("id")
        if not event_id:
            raise BadRequest("Webhook event missing id")
        created = payload.get("created") or 0
        data = (payload.get("data") or {}).get("object") or {}
        return cls(
            event_id=str(event_id),
            type=str(payload.get("type", "unknown")),
            created=datetime.fromtimestamp(int(created), tz=timezone.utc),
            data=dict(data),
        )


@dataclass(frozen=True)
class SubscriptionDetails:
    current_period_end: Optional[datetime]
    cancel_at_period_end: bool


class StripeBilling:
    """Billing provider operations used by the payment endpoints."""

    def __init__(self, config: BillingSettings) -> None:
        self.config = config
        self.client = stripe.StripeClient(config.stripe_secret_key) if config.stripe_secret_key else None

    def _require_client(self) -> stripe.StripeClient:
        if self.client is None:
            raise BillingProviderError("Stripe not configured")
        return self.client

    def verify_webhook(self, payload: bytes, signature: Optional[str]) -> BillingEvent:
        """Authenticate the payload against the webhook secret and parse it."""

        secret = self.config.stripe_webhook_secret
        if not secret or not signature:
            raise InvalidSignature()
        try:
            stripe.Webhook.construct_event(payload, signature, secret)
        except (stripe.SignatureVerificationError, ValueError) as exc:
            logger.warning(f"Webhook signature verification failed: {exc}")
            raise InvalidSignature() from exc
        return BillingEvent.from_payload(json.loads(payload))

    async def create_customer(self, email: str, account_id: int) -> str:
        client = self._require_client()
        try:
            customer = await run_in_threadpool(
                client.customers.create,
                params={"email": email, "metadata": {"account_id": str(account_id)}},
            )
        except stripe.StripeError as exc:
            logger.error(f"Stripe customer creation failed for account {account_id}: {exc}")
            raise BillingProviderError() from exc
        return customer.id

    async def create_checkout_session(
        self, customer_id: str, price_id: str, account_id: int, plan: str
    ) -> Tuple[str, Optional[str]]:
        client = self._require_client()
        app_url = self.config.app_url.rstrip("/")
        params = {
            "customer": customer_id,
            "payment_method_types": ["card"],
            "line_items": [{"price": price_id, "quantity": 1}],
            "mode": "subscription",
            "success_url": f"{app_url}?session_id={{CHECKOUT_SESSION_ID}}&success=true",
            "cancel_url": f"{app_url}?canceled=true",
            "metadata": {"account_id": str(account_id), "plan": plan},
        }
        try:
            session = await run_in_threadpool(client.checkout.sessions.create, params=params)
        except stripe.StripeError as exc:
            logger.error(f"Stripe checkout session failed for account {account_id}: {exc}")
            raise BillingProviderError("Failed to create checkout session") from exc
        return session.id, session.url

    async def retrieve_subscription(self, subscription_id: str) -> SubscriptionDetails:
        client = self._require_client()
        try:
            subscription = await run_in_threadpool(client.subscriptions.retrieve, subscription_id)
        except stripe.StripeError as exc:
            logger.error(f"Stripe subscription lookup failed for {subscription_id}: {exc}")
            raise BillingProviderError() from exc
        period_end = getattr(subscription, "current_period_end", None)
        return SubscriptionDetails(
            current_period_end=(
                datetime.fromtimestamp(period_end, tz=timezone.utc) if period_end else None
            ),
            cancel_at_period_end=bool(getattr(subscription, "cancel_at_period_end", False)),
        )

    async def cancel_at_period_end(self, subscription_id: str) -> None:
        client = self._require_client()
        try:
            await run_in_threadpool(
                client.subscriptions.update,
                subscription_id,
                params={"cancel_at_period_end": True},
            )
        except stripe.StripeError as exc:
            logger.error(f"Stripe cancellation failed for {subscription_id}: {exc}")
            raise BillingProviderError() from exc
