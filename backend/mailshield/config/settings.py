"""
MailShield Configuration

Application settings loaded from environment variables.
"""

from functools import lru_cache
from typing import Optional

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

from mailshield.utils.constants import (
    APP_NAME,
    APP_VERSION,
    CACHE_TTL_CLICK_TIME,
    CACHE_TTL_THREAT_INTEL,
    CLICK_TIME_TIMEOUT,
    FEED_TIMEOUT_DEFAULT,
    PIPELINE_BUDGET_DEFAULT,
    WEBHOOK_FUTURE_SKEW_SECONDS,
    WEBHOOK_TOLERANCE_SECONDS,
)


class Settings(BaseSettings):
    """Application settings with environment variable support."""

    model_config = SettingsConfigDict(
        env_prefix="MAILSHIELD_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # =========================================================================
    # Application
    # =========================================================================
    app_name: str = APP_NAME
    app_version: str = APP_VERSION
    debug: bool = False
    log_level: str = Field(default="INFO", description="Root logging level")

    # =========================================================================
    # Threat Feeds
    # =========================================================================
    urlhaus_auth_key: Optional[str] = Field(default=None, description="URLhaus Auth-Key")
    phishtank_app_key: Optional[str] = Field(default=None, description="PhishTank application key")
    feed_timeout_seconds: float = Field(default=FEED_TIMEOUT_DEFAULT, gt=0)
    threat_intel_cache_ttl: int = Field(default=CACHE_TTL_THREAT_INTEL, gt=0)

    # =========================================================================
    # Click-time Protection
    # =========================================================================
    click_time_cache_ttl: int = Field(default=CACHE_TTL_CLICK_TIME, gt=0)
    click_time_timeout: float = Field(default=CLICK_TIME_TIMEOUT, gt=0)

    # =========================================================================
    # Pipeline
    # =========================================================================
    pipeline_budget_seconds: float = Field(
        default=PIPELINE_BUDGET_DEFAULT, gt=0,
        description="Overall wall-clock budget for one email analysis",
    )

    # =========================================================================
    # Webhooks
    # =========================================================================
    webhook_secret: Optional[str] = Field(default=None, description="Shared HMAC secret")
    webhook_tolerance_seconds: int = Field(default=WEBHOOK_TOLERANCE_SECONDS, gt=0)
    webhook_future_skew_seconds: int = Field(default=WEBHOOK_FUTURE_SKEW_SECONDS, ge=0)

    # =========================================================================
    # Rate Limiting
    # =========================================================================
    rate_limit_enabled: bool = True
    rate_limit_requests: int = Field(default=60, gt=0)
    rate_limit_window_seconds: int = Field(default=60, gt=0)


@lru_cache()
def get_settings() -> Settings:
    """
    Get cached settings instance.

    Use get_settings.cache_clear() to reload settings.
    """
    return Settings()
