"""Entitlement decisions for conversion requests.

Everything here is pure: callers resolve tier, status and today's usage
beforehand and pass them in.
"""
from __future__ import annotations

import enum
from dataclasses import dataclass
from typing import Mapping, Optional, Set

from docmeter.core.config import MEGABYTE, LimitSettings
from docmeter.db.models.account import SubscriptionStatus, SubscriptionTier


class DenialReason(str, enum.Enum):
    FILE_TOO_LARGE = "file_too_large"
    UPGRADE_REQUIRED = "upgrade_required"
    DAILY_LIMIT_REACHED = "daily_limit_reached"


DENIAL_MESSAGES = {
    DenialReason.FILE_TOO_LARGE: "File exceeds the size limit for your plan",
    DenialReason.UPGRADE_REQUIRED: "This conversion requires a Pro or Business plan",
    DenialReason.DAILY_LIMIT_REACHED: "Daily conversion limit reached",
}

_DEGRADED_STATUSES = {SubscriptionStatus.PAST_DUE.value, SubscriptionStatus.CANCELLED.value}


@dataclass(frozen=True)
class UsageToday:
    """Today's metered usage; ``limit`` is ``None`` for unlimited tiers."""

    count: int
    limit: Optional[int]

    @property
    def remaining(self) -> Optional[int]:
        if self.limit is None:
            return None
        return max(0, self.limit - self.count)


@dataclass(frozen=True)
class Decision:
    allowed: bool
    effective_tier: str
    max_file_size_bytes: int
    reason: Optional[DenialReason] = None

    @property
    def message(self) -> Optional[str]:
        return DENIAL_MESSAGES.get(self.reason) if self.reason else None


class EntitlementPolicy:
    """Maps subscription state, feature, size and usage to allow/deny."""

    def __init__(
        self,
        max_file_size_mb: Mapping[str, int],
        premium_features: Set[str] | frozenset,
        free_daily_limit: int,
    ) -> None:
        self.max_file_size_mb = dict(max_file_size_mb)
        self.premium_features = frozenset(premium_features)
        self.free_daily_limit = free_daily_limit

    @classmethod
    def from_settings(cls, limits: LimitSettings) -> "EntitlementPolicy":
        return cls(
            max_file_size_mb=limits.max_file_size_mb,
            premium_features=limits.premium_features,
            free_daily_limit=limits.free_daily_limit,
        )

    def effective_tier(self, tier: str, status: str) -> str:
        """A paid tier whose billing is past due or cancelled counts as free."""

        if status in _DEGRADED_STATUSES and tier != SubscriptionTier.FREE.value:
            return SubscriptionTier.FREE.value
        if tier not in self.max_file_size_mb:
            return SubscriptionTier.FREE.value
        return tier

    def is_metered(self, tier: str, status: str) -> bool:
        return self.effective_tier(tier, status) == SubscriptionTier.FREE.value

    def max_file_size_bytes(self, tier: str) -> int:
        return self.max_file_size_mb[tier] * MEGABYTE

    def evaluate(
        self,
        tier: str,
        status: str,
        feature: str,
        file_size_bytes: int,
        usage_today: UsageToday,
    ) -> Decision:
        effective = self.effective_tier(tier, status)
        ceiling = self.max_file_size_bytes(effective)

        def deny(reason: DenialReason) -> Decision:
            return Decision(
                allowed=False, effective_tier=effective, max_file_size_bytes=ceiling, reason=reason
            )

        if file_size_bytes > ceiling:
            return deny(DenialReason.FILE_TOO_LARGE)

        is_free = effective == SubscriptionTier.FREE.value
        if is_free and feature in self.premium_features:
            return deny(DenialReason.UPGRADE_REQUIRED)

        if is_free:
            remaining = usage_today.remaining
            if remaining is None:
                remaining = max(0, self.free_daily_limit - usage_today.count)
            if remaining <= 0:
                return deny(DenialReason.DAILY_LIMIT_REACHED)

        return Decision(allowed=True, effective_tier=effective, max_file_size_bytes=ceiling)
