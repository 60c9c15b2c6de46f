"""Per-principal request rate limiting."""
from __future__ import annotations

import time

import redis.asyncio as redis

from docmeter.auth.principal import Principal, principal_key
from docmeter.core.config import LimitSettings
from docmeter.core.exceptions import RateLimited


class RateLimiter:
    """Fixed one-minute window counter stored in Redis."""

    def __init__(self, client: redis.Redis, config: LimitSettings) -> None:
        self.client = client
        self.config = config

    @classmethod
    def from_url(cls, url: str, config: LimitSettings) -> "RateLimiter":
        return cls(redis.from_url(url, decode_responses=True), config)

    async def check(self, principal: Principal) -> None:
        if not self.config.rate_limit_enabled:
            return

        kind, key = principal_key(principal)
        minute_window = int(time.time() // 60)
        redis_key = f"rl:{kind}:{key}:{minute_window}"
        current = await self.client.incr(redis_key)
        if current == 1:
            await self.client.expire(redis_key, 60)
        if current > self.config.rate_limit_rpm:
            raise RateLimited()

    async def close(self) -> None:
        await self.client.aclose()
