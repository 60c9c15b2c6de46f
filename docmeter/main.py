"""FastAPI application factory."""
from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from typing import AsyncIterator

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from docmeter.api.v1.router import api_router
from docmeter.auth.jwt import IdentityResolver
from docmeter.core.clock import Clock
from docmeter.core.config import settings
from docmeter.core.exceptions import register_exception_handlers
from docmeter.core.logging import setup_logging
from docmeter.db.session import dispose_engine, get_session_factory
from docmeter.services.billing_provider import StripeBilling
from docmeter.services.entitlements import EntitlementPolicy
from docmeter.services.ledger import build_quota_ledger
from docmeter.services.limits import RateLimiter


logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Build the shared services once and release them on shutdown."""

    setup_logging()
    state = app.state
    state.clock = Clock()
    state.policy = EntitlementPolicy.from_settings(settings.limits)
    state.identity_resolver = IdentityResolver()
    state.ledger = build_quota_ledger(settings, get_session_factory())
    state.rate_limiter = RateLimiter.from_url(settings.REDIS_URI, settings.limits)
    state.billing = StripeBilling(settings.billing)
    logger.info(f"{settings.PROJECT_NAME} started (env={settings.ENV})")
    try:
        yield
    finally:
        await state.rate_limiter.close()
        await state.ledger.close()
        await dispose_engine()
        logger.info(f"{settings.PROJECT_NAME} stopped")


def create_application() -> FastAPI:
    app = FastAPI(
        title=settings.PROJECT_NAME,
        debug=settings.DEBUG,
        lifespan=lifespan,
    )
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_methods=["*"],
        allow_headers=["*"],
        expose_headers=["X-Session-Id"],
    )
    register_exception_handlers(app)
    app.include_router(api_router, prefix=f"{settings.API_PREFIX}/v1")

    @app.get("/health", tags=["health"])
    async def health():
        return {"status": "ok"}

    return app


app = create_application()
