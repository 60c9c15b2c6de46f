from __future__ import annotations

import time

import httpx
import pytest
from fastapi import status
from sqlalchemy import func, select

from docmeter.db.models.payment_event import ProcessedPaymentEvent
from tests.conftest import API_PREFIX, build_auth_header, make_event, seed_account, sign_payload


WEBHOOK_URL = f"{API_PREFIX}/payments/webhook"


async def deliver(client: httpx.AsyncClient, payload: bytes, signature: str | None = "sign"):
    headers = {"Content-Type": "application/json"}
    if signature == "sign":
        headers["Stripe-Signature"] = sign_payload(payload)
    elif signature is not None:
        headers["Stripe-Signature"] = signature
    return await client.post(WEBHOOK_URL, content=payload, headers=headers)


def checkout_completed(event_id: str, account_id: int, plan: str = "pro", created: int | None = None) -> bytes:
    return make_event(
        event_id,
        "checkout.session.completed",
        {
            "id": "cs_test_1",
            "customer": "cus_1",
            "subscription": "sub_1",
            "amount_total": 1900,
            "metadata": {"account_id": str(account_id), "plan": plan},
        },
        created,
    )


@pytest.mark.asyncio
async def test_signed_checkout_webhook_upgrades_account(client, test_db):
    account = await seed_account(test_db, customer_id="cus_1")

    response = await deliver(client, checkout_completed("evt_1", account.id, plan="business"))

    assert response.status_code == status.HTTP_200_OK
    assert response.json() == {"received": True, "duplicate": False, "applied": True}
    await test_db.refresh(account)
    assert account.subscription_tier == "business"
    assert account.subscription_status == "active"


@pytest.mark.asyncio
async def test_duplicate_webhook_is_acknowledged_once(client, test_db):
    account = await seed_account(test_db, customer_id="cus_1")
    payload = checkout_completed("evt_dup", account.id)

    first = await deliver(client, payload)
    second = await deliver(client, payload)

    assert first.json()["applied"] is True
    assert second.status_code == status.HTTP_200_OK
    assert second.json()["duplicate"] is True
    rows = await test_db.execute(
        select(func.count()).select_from(ProcessedPaymentEvent).where(
            ProcessedPaymentEvent.event_id == "evt_dup"
        )
    )
    assert rows.scalar_one() == 1


@pytest.mark.asyncio
async def test_redelivered_activation_after_cancellation(client, test_db):
    account = await seed_account(test_db, customer_id="cus_1")
    created = int(time.time()) - 600
    activation = checkout_completed("evt_a", account.id, created=created)
    deletion = make_event(
        "evt_b",
        "customer.subscription.deleted",
        {"id": "sub_1", "customer": "cus_1", "status": "canceled"},
        created + 300,
    )

    await deliver(client, activation)
    await deliver(client, deletion)
    replay = await deliver(client, activation)

    assert replay.json()["duplicate"] is True
    await test_db.refresh(account)
    assert account.subscription_tier == "free"
    assert account.subscription_status == "cancelled"


@pytest.mark.asyncio
async def test_bad_signature_is_rejected(client, test_db):
    account = await seed_account(test_db, customer_id="cus_1")
    payload = checkout_completed("evt_forged", account.id)

    response = await deliver(client, payload, signature=sign_payload(payload, secret="whsec_wrong"))

    assert response.status_code == status.HTTP_400_BAD_REQUEST
    assert response.json()["error_code"] == "invalid_signature"
    await test_db.refresh(account)
    assert account.subscription_tier == "free"
    assert await test_db.get(ProcessedPaymentEvent, "evt_forged") is None


@pytest.mark.asyncio
async def test_missing_signature_is_rejected(client):
    response = await deliver(client, make_event("evt_x", "invoice.payment_failed", {}), signature=None)

    assert response.status_code == status.HTTP_400_BAD_REQUEST


@pytest.mark.asyncio
async def test_unhandled_event_is_acknowledged(client):
    response = await deliver(client, make_event("evt_other", "customer.created", {"id": "cus_7"}))

    assert response.status_code == status.HTTP_200_OK
    assert response.json() == {"received": True, "duplicate": False, "applied": False}


@pytest.mark.asyncio
async def test_checkout_session_creates_customer_once(client, test_db, fake_billing):
    account = await seed_account(test_db)
    headers = build_auth_header(account.id, account.email)
    body = {"price_id": "price_pro", "plan": "pro"}

    first = await client.post(f"{API_PREFIX}/payments/create-checkout-session", json=body, headers=headers)
    await client.post(f"{API_PREFIX}/payments/create-checkout-session", json=body, headers=headers)

    assert first.status_code == status.HTTP_200_OK
    assert first.json() == {"session_id": "cs_test_1", "url": "https://checkout.stripe.test/cs_test_1"}
    await test_db.refresh(account)
    assert account.stripe_customer_id == f"cus_{account.id}"
    assert [call[0] for call in fake_billing.calls].count("create_customer") == 1
    assert fake_billing.calls[-1] == (
        "create_checkout_session", f"cus_{account.id}", "price_pro", account.id, "pro"
    )


@pytest.mark.asyncio
async def test_checkout_session_requires_auth(client):
    response = await client.post(
        f"{API_PREFIX}/payments/create-checkout-session",
        json={"price_id": "price_pro", "plan": "pro"},
    )

    assert response.status_code == status.HTTP_401_UNAUTHORIZED


@pytest.mark.asyncio
async def test_checkout_session_rejects_unknown_plan(client, test_db):
    account = await seed_account(test_db)

    response = await client.post(
        f"{API_PREFIX}/payments/create-checkout-session",
        json={"price_id": "price_x", "plan": "enterprise"},
        headers=build_auth_header(account.id, account.email),
    )

    assert response.status_code == 422


@pytest.mark.asyncio
async def test_subscription_status_with_subscription(client, test_db):
    account = await seed_account(test_db, tier="pro", customer_id="cus_1", subscription_id="sub_1")

    response = await client.get(
        f"{API_PREFIX}/payments/subscription-status",
        headers=build_auth_header(account.id, account.email),
    )

    body = response.json()
    assert body["tier"] == "pro"
    assert body["status"] == "active"
    assert body["current_period_end"].startswith("2026-11-19")
    assert body["cancel_at_period_end"] is False


@pytest.mark.asyncio
async def test_subscription_status_without_subscription(client, test_db, fake_billing):
    account = await seed_account(test_db)

    response = await client.get(
        f"{API_PREFIX}/payments/subscription-status",
        headers=build_auth_header(account.id, account.email),
    )

    assert response.json()["tier"] == "free"
    assert response.json()["current_period_end"] is None
    assert fake_billing.calls == []


@pytest.mark.asyncio
async def test_cancel_without_subscription(client, test_db):
    account = await seed_account(test_db)

    response = await client.post(
        f"{API_PREFIX}/payments/cancel-subscription",
        headers=build_auth_header(account.id, account.email),
    )

    assert response.status_code == status.HTTP_400_BAD_REQUEST
    assert response.json()["message"] == "No active subscription"


@pytest.mark.asyncio
async def test_cancel_keeps_plan_until_provider_confirms(client, test_db, fake_billing):
    account = await seed_account(test_db, tier="pro", customer_id="cus_1", subscription_id="sub_1")

    response = await client.post(
        f"{API_PREFIX}/payments/cancel-subscription",
        headers=build_auth_header(account.id, account.email),
    )

    assert response.status_code == status.HTTP_200_OK
    assert response.json()["message"] == "Subscription will cancel at period end"
    assert ("cancel_at_period_end", "sub_1") in fake_billing.calls
    await test_db.refresh(account)
    assert account.subscription_tier == "pro"


@pytest.mark.asyncio
async def test_health(client):
    response = await client.get("/health")

    assert response.status_code == status.HTTP_200_OK
    assert response.json() == {"status": "ok"}
