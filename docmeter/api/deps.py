"""FastAPI dependencies resolving request-scoped collaborators."""
from __future__ import annotations

from typing import AsyncGenerator

from fastapi import Depends, Request
from sqlalchemy.ext.asyncio import AsyncSession

from docmeter.auth.jwt import IdentityResolver
from docmeter.core.clock import Clock, RequestClock
from docmeter.db.session import get_db
from docmeter.services.billing_provider import StripeBilling
from docmeter.services.entitlements import EntitlementPolicy
from docmeter.services.ledger import QuotaLedger
from docmeter.services.limits import RateLimiter


async def get_db_session(
    session: AsyncSession = Depends(get_db),
) -> AsyncGenerator[AsyncSession, None]:
    yield session


def get_clock(request: Request) -> RequestClock:
    """One clock reading per request."""

    clock: Clock = request.app.state.clock
    return clock.snapshot()


def get_ledger(request: Request) -> QuotaLedger:
    return request.app.state.ledger


def get_policy(request: Request) -> EntitlementPolicy:
    return request.app.state.policy


def get_identity_resolver(request: Request) -> IdentityResolver:
    return request.app.state.identity_resolver


def get_rate_limiter(request: Request) -> RateLimiter:
    return request.app.state.rate_limiter


def get_billing(request: Request) -> StripeBilling:
    return request.app.state.billing
