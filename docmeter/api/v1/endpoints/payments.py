"""Endpoints for subscription checkout, webhooks and cancellation."""
from __future__ import annotations

import logging
from typing import Optional

from fastapi import APIRouter, Depends, Header, Request
from sqlalchemy.ext.asyncio import AsyncSession

from docmeter.api.deps import get_billing, get_db_session
from docmeter.auth.jwt import require_auth
from docmeter.auth.principal import AuthenticatedUser
from docmeter.core.exceptions import BadRequest, NotFound
from docmeter.db.models.account import Account
from docmeter.repositories.account_repo import AccountRepo
from docmeter.schemas.payment import CheckoutRequest, CheckoutResponse, SubscriptionStatusRead
from docmeter.services.billing_provider import StripeBilling
from docmeter.services.subscriptions import SubscriptionStateMachine


logger = logging.getLogger(__name__)

router = APIRouter(prefix="/payments", tags=["payments"])


async def _require_account(db: AsyncSession, user: AuthenticatedUser) -> Account:
    account = await AccountRepo(db).get(user.id)
    if account is None:
        raise NotFound("User not found")
    return account


@router.post("/create-checkout-session", response_model=CheckoutResponse)
async def create_checkout_session(
    body: CheckoutRequest,
    user: AuthenticatedUser = Depends(require_auth),
    billing: StripeBilling = Depends(get_billing),
    db: AsyncSession = Depends(get_db_session),
):
    account = await _require_account(db, user)

    customer_id = account.stripe_customer_id
    if not customer_id:
        customer_id = await billing.create_customer(account.email, account.id)
        await AccountRepo(db).set_customer_id(account, customer_id)
        # Keep the customer link even if checkout creation fails below
        await db.commit()

    session_id, url = await billing.create_checkout_session(
        customer_id, body.price_id, account.id, body.plan
    )
    return CheckoutResponse(session_id=session_id, url=url)


@router.post("/webhook")
async def billing_webhook(
    request: Request,
    stripe_signature: Optional[str] = Header(default=None, alias="Stripe-Signature"),
    billing: StripeBilling = Depends(get_billing),
    db: AsyncSession = Depends(get_db_session),
):
    payload = await request.body()
    event = billing.verify_webhook(payload, stripe_signature)
    result = await SubscriptionStateMachine(db).apply(event)
    return {
        "received": True,
        "duplicate": result.duplicate,
        "applied": result.applied,
    }


@router.get("/subscription-status", response_model=SubscriptionStatusRead)
async def subscription_status(
    user: AuthenticatedUser = Depends(require_auth),
    billing: StripeBilling = Depends(get_billing),
    db: AsyncSession = Depends(get_db_session),
):
    account = await _require_account(db, user)
    response = SubscriptionStatusRead(
        tier=account.subscription_tier, status=account.subscription_status
    )
    if account.stripe_subscription_id:
        details = await billing.retrieve_subscription(account.stripe_subscription_id)
        response.current_period_end = details.current_period_end
        response.cancel_at_period_end = details.cancel_at_period_end
    return response


@router.post("/cancel-subscription")
async def cancel_subscription(
    user: AuthenticatedUser = Depends(require_auth),
    billing: StripeBilling = Depends(get_billing),
    db: AsyncSession = Depends(get_db_session),
):
    account = await _require_account(db, user)
    if not account.stripe_subscription_id:
        raise BadRequest("No active subscription")

    # Local tier/status change only when the provider's deletion webhook arrives
    await billing.cancel_at_period_end(account.stripe_subscription_id)
    logger.info(f"Cancellation scheduled for account {account.id}")
    return {"success": True, "message": "Subscription will cancel at period end"}
