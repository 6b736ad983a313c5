"""
tenancy_sdk.tier0_core.config
───────────────────────────────
Typed configuration with env layering. Reads from .env → environment
variables. All fields are typed via Pydantic.

Minimal stack: pydantic-settings
"""
from __future__ import annotations

from functools import lru_cache

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class TenancyConfig(BaseSettings):
    """
    Typed tenancy configuration. Tenancy-specific env vars are prefixed
    with TENANCY_.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
        populate_by_name=True,
    )

    # ── Application ───────────────────────────────────────────────────────────
    app_name: str = Field(default="tenancy", alias="APP_NAME")
    environment: str = Field(default="development", alias="APP_ENV")

    # ── Database ──────────────────────────────────────────────────────────────
    database_url: str = Field(
        default="sqlite+aiosqlite:///./dev.db",
        alias="DATABASE_URL",
    )
    database_pool_size: int = Field(default=5, alias="DATABASE_POOL_SIZE")
    database_max_overflow: int = Field(default=10, alias="DATABASE_MAX_OVERFLOW")
    database_echo: bool = Field(default=False, alias="DATABASE_ECHO")

    # ── Resolution ────────────────────────────────────────────────────────────
    base_domain: str = Field(default="example.com", alias="TENANCY_BASE_DOMAIN")
    reserved_subdomains_csv: str = Field(
        default="www,api,app,admin,static,mail",
        alias="TENANCY_RESERVED_SUBDOMAINS",
    )
    id_header: str = Field(default="X-Tenant-ID", alias="TENANCY_ID_HEADER")
    slug_header: str = Field(default="X-Tenant-Slug", alias="TENANCY_SLUG_HEADER")
    resolver_cache_ttl_seconds: float = Field(default=5.0, ge=0, alias="TENANCY_CACHE_TTL_SECONDS")

    # ── Scoped access ─────────────────────────────────────────────────────────
    tenant_column: str = Field(default="tenant_id", alias="TENANCY_TENANT_COLUMN")
    default_page_size: int = Field(default=50, gt=0, alias="TENANCY_DEFAULT_PAGE_SIZE")
    max_page_size: int = Field(default=500, gt=0, alias="TENANCY_MAX_PAGE_SIZE")

    # ── Lifecycle ─────────────────────────────────────────────────────────────
    trial_days: int = Field(default=14, gt=0, alias="TENANCY_TRIAL_DAYS")
    billing_period_days: int = Field(default=30, gt=0, alias="TENANCY_BILLING_PERIOD_DAYS")
    default_timezone: str = Field(default="UTC", alias="TENANCY_DEFAULT_TIMEZONE")
    default_currency: str = Field(default="USD", alias="TENANCY_DEFAULT_CURRENCY")

    # ── Logging ───────────────────────────────────────────────────────────────
    log_level: str = Field(default="INFO", alias="PLATFORM_LOG_LEVEL")
    log_format: str = Field(default="json", alias="PLATFORM_LOG_FORMAT")

    @field_validator("environment")
    @classmethod
    def validate_env(cls, v: str) -> str:
        allowed = {"development", "staging", "production", "test"}
        if v.lower() not in allowed:
            raise ValueError(f"environment must be one of {allowed}, got {v!r}")
        return v.lower()

    @field_validator("base_domain")
    @classmethod
    def normalize_base_domain(cls, v: str) -> str:
        return v.strip().lower().strip(".")

    @property
    def reserved_subdomains(self) -> frozenset[str]:
        return frozenset(
            p.strip().lower() for p in self.reserved_subdomains_csv.split(",") if p.strip()
        )

    @property
    def is_production(self) -> bool:
        return self.environment == "production"

    @property
    def is_test(self) -> bool:
        return self.environment == "test"


@lru_cache(maxsize=1)
def get_config() -> TenancyConfig:
    """
    Return the singleton tenancy config. Cached after first call.
    Call _reset_config() in tests to pick up new env vars.
    """
    return TenancyConfig()


def _reset_config() -> None:
    """For tests: clear the config cache."""
    get_config.cache_clear()


__all__ = ["TenancyConfig", "get_config"]
