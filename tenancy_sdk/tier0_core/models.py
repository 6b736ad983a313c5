"""
tenancy_sdk.tier0_core.models
───────────────────────────────
Tenant domain model: the unit of isolation, its settings, its subscription
and the enumerated plan/feature/status tags.

Quotas use an explicit bounded/unlimited value instead of a negative
sentinel. The sentinel is accepted on input from legacy rows and never
written back.
"""
from __future__ import annotations

import uuid
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Any


# ── Tags ──────────────────────────────────────────────────────────────────────

class TenantStatus(str, Enum):
    TRIAL = "trial"
    ACTIVE = "active"
    INACTIVE = "inactive"
    SUSPENDED = "suspended"


class SubscriptionStatus(str, Enum):
    ACTIVE = "active"
    PAST_DUE = "past_due"
    CANCELED = "canceled"


class Plan(str, Enum):
    TRIAL = "trial"
    STARTER = "starter"
    PROFESSIONAL = "professional"
    ENTERPRISE = "enterprise"


class Feature(str, Enum):
    BASIC = "basic"
    ADVANCED_SEARCH = "advanced_search"
    EXPORT = "export"
    ANALYTICS = "analytics"
    WEBHOOKS = "webhooks"
    CUSTOM_DOMAIN = "custom_domain"
    SSO = "sso"


# ── Quota ─────────────────────────────────────────────────────────────────────

_LEGACY_UNLIMITED = -1


@dataclass(frozen=True)
class Quota:
    """A resource ceiling. ``limit is None`` means unlimited."""
    limit: int | None

    def __post_init__(self) -> None:
        if self.limit is not None and self.limit < 0:
            raise ValueError(f"quota limit must be >= 0, got {self.limit}")

    @classmethod
    def bounded(cls, limit: int) -> "Quota":
        return cls(limit)

    @classmethod
    def unlimited(cls) -> "Quota":
        return cls(None)

    @property
    def is_unlimited(self) -> bool:
        return self.limit is None

    def allows(self, usage: int, increment: int = 1) -> bool:
        """True if *usage* + *increment* stays within the ceiling."""
        if self.limit is None:
            return True
        return usage + increment <= self.limit

    def remaining(self, usage: int) -> int | None:
        if self.limit is None:
            return None
        return max(self.limit - usage, 0)

    def to_json(self) -> int | None:
        return self.limit

    @classmethod
    def from_json(cls, value: int | None) -> "Quota":
        if value is None or value == _LEGACY_UNLIMITED:
            return cls.unlimited()
        return cls.bounded(int(value))


# ── Settings / subscription ───────────────────────────────────────────────────

@dataclass(frozen=True)
class TenantSettings:
    max_users: Quota
    max_storage_bytes: Quota
    allowed_features: frozenset[Feature] = frozenset()
    timezone: str = "UTC"
    currency: str = "USD"
    date_format: str = "YYYY-MM-DD"
    primary_color: str = "#3B82F6"
    logo_url: str | None = None
    custom_css: str | None = None

    def to_json(self) -> dict[str, Any]:
        return {
            "max_users": self.max_users.to_json(),
            "max_storage_bytes": self.max_storage_bytes.to_json(),
            "allowed_features": sorted(f.value for f in self.allowed_features),
            "timezone": self.timezone,
            "currency": self.currency,
            "date_format": self.date_format,
            "primary_color": self.primary_color,
            "logo_url": self.logo_url,
            "custom_css": self.custom_css,
        }

    @classmethod
    def from_json(cls, data: dict[str, Any]) -> "TenantSettings":
        return cls(
            max_users=Quota.from_json(data.get("max_users")),
            max_storage_bytes=Quota.from_json(data.get("max_storage_bytes")),
            allowed_features=frozenset(Feature(f) for f in data.get("allowed_features", ())),
            timezone=data.get("timezone", "UTC"),
            currency=data.get("currency", "USD"),
            date_format=data.get("date_format", "YYYY-MM-DD"),
            primary_color=data.get("primary_color", "#3B82F6"),
            logo_url=data.get("logo_url"),
            custom_css=data.get("custom_css"),
        )


@dataclass(frozen=True)
class Subscription:
    plan: Plan
    status: SubscriptionStatus = SubscriptionStatus.ACTIVE
    current_period_start: datetime | None = None
    current_period_end: datetime | None = None
    cancel_at: datetime | None = None
    external_billing_ref: str | None = None

    def to_json(self) -> dict[str, Any]:
        return {
            "plan": self.plan.value,
            "status": self.status.value,
            "current_period_start": _iso(self.current_period_start),
            "current_period_end": _iso(self.current_period_end),
            "cancel_at": _iso(self.cancel_at),
            "external_billing_ref": self.external_billing_ref,
        }

    @classmethod
    def from_json(cls, data: dict[str, Any]) -> "Subscription":
        return cls(
            plan=Plan(data["plan"]),
            status=SubscriptionStatus(data.get("status", "active")),
            current_period_start=_parse_iso(data.get("current_period_start")),
            current_period_end=_parse_iso(data.get("current_period_end")),
            cancel_at=_parse_iso(data.get("cancel_at")),
            external_billing_ref=data.get("external_billing_ref"),
        )


def _iso(dt: datetime | None) -> str | None:
    return dt.isoformat() if dt is not None else None


def _parse_iso(value: str | None) -> datetime | None:
    return datetime.fromisoformat(value) if value else None


# ── Tenant ────────────────────────────────────────────────────────────────────

@dataclass(frozen=True)
class Tenant:
    """An isolated organization. Mutated only by copy (dataclasses.replace)."""
    id: uuid.UUID
    name: str
    slug: str
    status: TenantStatus
    settings: TenantSettings
    subscription: Subscription
    created_at: datetime
    updated_at: datetime
    domain: str | None = None
    trial_ends_at: datetime | None = None
    suspended_at: datetime | None = None
    suspend_reason: str | None = None
    deleted_at: datetime | None = None
    version: int = 1

    @property
    def is_deleted(self) -> bool:
        return self.deleted_at is not None

    def is_trial_expired(self, now: datetime) -> bool:
        """A trial with no end date is treated as expired."""
        if self.status is not TenantStatus.TRIAL:
            return False
        return self.trial_ends_at is None or now >= self.trial_ends_at

    def has_feature(self, feature: Feature) -> bool:
        return feature in self.settings.allowed_features

    def check_invariants(self) -> None:
        if self.status is TenantStatus.SUSPENDED:
            if self.suspended_at is None or not (self.suspend_reason or "").strip():
                raise ValueError("suspended tenant needs suspended_at and a reason")
        if self.status is TenantStatus.TRIAL and self.trial_ends_at is None:
            raise ValueError("trial tenant needs trial_ends_at")


__all__ = [
    "TenantStatus", "SubscriptionStatus", "Plan", "Feature",
    "Quota", "TenantSettings", "Subscription", "Tenant",
]
