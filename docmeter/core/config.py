"""Application settings loaded from the environment."""
from __future__ import annotations

from typing import Dict, FrozenSet, Literal

from pydantic import BaseModel, Field
from pydantic_settings import BaseSettings, SettingsConfigDict


MEGABYTE = 1024 * 1024


class LimitSettings(BaseModel):
    """Request throttling and plan limits."""

    rate_limit_enabled: bool = True
    rate_limit_rpm: int = 60
    free_daily_limit: int = 3
    max_file_size_mb: Dict[str, int] = Field(
        default_factory=lambda: {"free": 10, "pro": 100, "business": 500}
    )
    premium_features: FrozenSet[str] = frozenset(
        {"pdf-to-word", "pdf-to-excel", "pdf-to-ppt"}
    )


class BillingSettings(BaseModel):
    """Stripe credentials and redirect targets."""

    stripe_secret_key: str = ""
    stripe_webhook_secret: str = ""
    app_url: str = "http://localhost:3000"


class LedgerSettings(BaseModel):
    """Storage backend for the daily quota counters."""

    backend_type: Literal["database", "memory"] = "database"


class Settings(BaseSettings):
    """Top-level configuration object."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_nested_delimiter="__",
        extra="ignore",
    )

    PROJECT_NAME: str = "docmeter"
    ENV: str = "development"
    DEBUG: bool = False
    LOG_LEVEL: str = "INFO"
    API_PREFIX: str = "/api"

    POSTGRES_USER: str = "postgres"
    POSTGRES_PASSWORD: str = "postgres"
    POSTGRES_HOST: str = "localhost"
    POSTGRES_PORT: int = 5432
    POSTGRES_DB: str = "docmeter"
    DATABASE_URI: str = ""
    REDIS_URI: str = "redis://localhost:6379/0"

    JWT_SECRET: str = "change-me-in-production"
    JWT_ALG: str = "HS256"
    ACCESS_TOKEN_EXPIRE_DAYS: int = 30

    limits: LimitSettings = Field(default_factory=LimitSettings)
    billing: BillingSettings = Field(default_factory=BillingSettings)
    ledger: LedgerSettings = Field(default_factory=LedgerSettings)

    @property
    def database_url(self) -> str:
        """Return the configured database URL, building one from parts if unset."""

        if self.DATABASE_URI:
            return self.DATABASE_URI
        return (
            f"postgresql+asyncpg://{self.POSTGRES_USER}:{self.POSTGRES_PASSWORD}"
            f"@{self.POSTGRES_HOST}:{self.POSTGRES_PORT}/{self.POSTGRES_DB}"
        )


settings = Settings()
