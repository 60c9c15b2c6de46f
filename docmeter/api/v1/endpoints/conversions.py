"""Endpoints gating and metering document conversions."""
from __future__ import annotations

import logging
from typing import Any, Dict, Optional

from fastapi import APIRouter, Depends, Header, Request, status
from fastapi.responses import JSONResponse
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from docmeter.api.deps import (
    get_clock,
    get_db_session,
    get_identity_resolver,
    get_ledger,
    get_policy,
    get_rate_limiter,
)
from docmeter.auth.jwt import IdentityResolver, ResolvedIdentity, optional_auth
from docmeter.auth.principal import AuthenticatedUser
from docmeter.core.clock import RequestClock
from docmeter.core.config import MEGABYTE
from docmeter.repositories.usage_repo import UsageRepo
from docmeter.schemas.conversion import ConversionCheck, ConversionTrack, UsageQuery
from docmeter.services.entitlements import (
    Decision,
    DenialReason,
    EntitlementPolicy,
    UsageToday,
)
from docmeter.services.ledger import QuotaLedger
from docmeter.services.limits import RateLimiter
from docmeter.services.subscriptions import load_subscription_state
from docmeter.services.usage_report import UsageReporter


logger = logging.getLogger(__name__)

router = APIRouter(prefix="/conversions", tags=["conversions"])

SESSION_HEADER = "X-Session-Id"

_DENIAL_STATUS = {
    DenialReason.FILE_TOO_LARGE: 413,
    DenialReason.UPGRADE_REQUIRED: status.HTTP_403_FORBIDDEN,
    DenialReason.DAILY_LIMIT_REACHED: status.HTTP_429_TOO_MANY_REQUESTS,
}

UNLIMITED = "unlimited"


def _respond(
    payload: Dict[str, Any], identity: ResolvedIdentity, status_code: int = status.HTTP_200_OK
) -> JSONResponse:
    if identity.session_id is not None:
        payload["session_id"] = identity.session_id
    headers = {SESSION_HEADER: identity.issued_session_id} if identity.issued_session_id else None
    return JSONResponse(status_code=status_code, content=payload, headers=headers)


def _usage_payload(usage: UsageToday) -> Dict[str, Any]:
    if usage.limit is None:
        return {"limit": UNLIMITED, "count": UNLIMITED, "remaining": UNLIMITED}
    return {"limit": usage.limit, "count": usage.count, "remaining": usage.remaining}


def _decision_payload(decision: Decision, usage: UsageToday) -> Dict[str, Any]:
    payload: Dict[str, Any] = {
        "allowed": decision.allowed,
        "tier": decision.effective_tier,
        "max_file_size_mb": decision.max_file_size_bytes // MEGABYTE,
        "usage": _usage_payload(usage),
    }
    if decision.reason is not None:
        payload["reason"] = decision.reason.value
        payload["error"] = decision.message
        if decision.reason is DenialReason.DAILY_LIMIT_REACHED:
            payload["limit"] = usage.limit
            payload["count"] = usage.count
    return payload


async def _evaluate(
    identity: ResolvedIdentity,
    conversion_type: str,
    file_size_bytes: int,
    db: AsyncSession,
    ledger: QuotaLedger,
    policy: EntitlementPolicy,
    clock: RequestClock,
):
    tier, sub_status = await load_subscription_state(db, identity.principal)
    metered = policy.is_metered(tier, sub_status)
    if metered:
        reporter = UsageReporter(ledger, db, policy.free_daily_limit)
        usage = await reporter.usage_today(identity.principal, clock.today)
    else:
        usage = UsageToday(count=0, limit=None)
    decision = policy.evaluate(tier, sub_status, conversion_type, file_size_bytes, usage)
    return decision, usage, metered


@router.post("/check")
async def check_conversion(
    body: ConversionCheck,
    user: Optional[AuthenticatedUser] = Depends(optional_auth),
    session_header: Optional[str] = Header(default=None, alias=SESSION_HEADER),
    resolver: IdentityResolver = Depends(get_identity_resolver),
    limiter: RateLimiter = Depends(get_rate_limiter),
    ledger: QuotaLedger = Depends(get_ledger),
    policy: EntitlementPolicy = Depends(get_policy),
    clock: RequestClock = Depends(get_clock),
    db: AsyncSession = Depends(get_db_session),
):
    identity = resolver.resolve(user, body.session_id or session_header)
    await limiter.check(identity.principal)

    decision, usage, _ = await _evaluate(
        identity, body.conversion_type, body.file_size, db, ledger, policy, clock
    )
    return _respond(_decision_payload(decision, usage), identity)


@router.post("/track")
async def track_conversion(
    body: ConversionTrack,
    request: Request,
    user: Optional[AuthenticatedUser] = Depends(optional_auth),
    session_header: Optional[str] = Header(default=None, alias=SESSION_HEADER),
    resolver: IdentityResolver = Depends(get_identity_resolver),
    limiter: RateLimiter = Depends(get_rate_limiter),
    ledger: QuotaLedger = Depends(get_ledger),
    policy: EntitlementPolicy = Depends(get_policy),
    clock: RequestClock = Depends(get_clock),
    db: AsyncSession = Depends(get_db_session),
):
    identity = resolver.resolve(user, body.session_id or session_header)
    principal = identity.principal
    await limiter.check(principal)

    file_size_bytes = int(body.file_size_mb * MEGABYTE)
    decision, usage, metered = await _evaluate(
        identity, body.conversion_type, file_size_bytes, db, ledger, policy, clock
    )
    if not decision.allowed:
        payload = _decision_payload(decision, usage)
        return _respond(payload, identity, _DENIAL_STATUS[decision.reason])

    if metered:
        # Fails closed: StorageUnavailable propagates and nothing is granted
        result = await ledger.increment_if_allowed(principal, clock.today, policy.free_daily_limit)
        if not result.allowed:
            usage = UsageToday(count=result.count_after, limit=policy.free_daily_limit)
            denied = Decision(
                allowed=False,
                effective_tier=decision.effective_tier,
                max_file_size_bytes=decision.max_file_size_bytes,
                reason=DenialReason.DAILY_LIMIT_REACHED,
            )
            return _respond(
                _decision_payload(denied, usage),
                identity,
                status.HTTP_429_TOO_MANY_REQUESTS,
            )
        usage = UsageToday(count=result.count_after, limit=policy.free_daily_limit)

    try:
        await UsageRepo(db).record_conversion(
            principal,
            body.conversion_type,
            body.file_size_mb,
            created_at=clock.now,
            ip_address=request.client.host if request.client else None,
        )
        await db.commit()
    except SQLAlchemyError as exc:
        await db.rollback()
        logger.warning(f"Conversion log write failed for {principal.kind}:{principal.key}: {exc}")

    payload = _decision_payload(decision, usage)
    payload["success"] = True
    return _respond(payload, identity)


@router.post("/usage")
async def usage_summary(
    body: UsageQuery,
    user: Optional[AuthenticatedUser] = Depends(optional_auth),
    session_header: Optional[str] = Header(default=None, alias=SESSION_HEADER),
    resolver: IdentityResolver = Depends(get_identity_resolver),
    ledger: QuotaLedger = Depends(get_ledger),
    policy: EntitlementPolicy = Depends(get_policy),
    clock: RequestClock = Depends(get_clock),
    db: AsyncSession = Depends(get_db_session),
):
    identity = resolver.resolve(user, body.session_id or session_header)
    principal = identity.principal
    tier, sub_status = await load_subscription_state(db, principal)
    reporter = UsageReporter(ledger, db, policy.free_daily_limit)

    if not policy.is_metered(tier, sub_status):
        monthly = await reporter.unlimited_summary(principal, clock.month_start)
        payload = {
            "tier": policy.effective_tier(tier, sub_status),
            "limit": UNLIMITED,
            "count": UNLIMITED,
            "remaining": UNLIMITED,
            "monthly_count": monthly.monthly_count,
        }
        return _respond(payload, identity)

    today = await reporter.today(principal, clock.today)
    payload = {
        "tier": policy.effective_tier(tier, sub_status),
        "limit": today.limit,
        "count": today.count,
        "remaining": today.remaining,
    }
    return _respond(payload, identity)
