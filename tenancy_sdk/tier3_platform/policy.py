"""
tenancy_sdk.tier3_platform.policy
───────────────────────────────────
Subscription policy: a pure mapping from plan tier to quotas and feature
entitlements. This module is the only writer of ``allowed_features``.

Quota enforcement happens in business handlers at the point of resource
creation; require_quota() and require_feature() are the helpers they call
with a usage count obtained through ScopedDataAccess.count().
"""
from __future__ import annotations

import dataclasses
from dataclasses import dataclass
from types import MappingProxyType

from tenancy_sdk.tier0_core.errors import FeatureNotAvailable, QuotaExceeded
from tenancy_sdk.tier0_core.models import Feature, Plan, Quota, TenantSettings
from tenancy_sdk.tier1_runtime.context import TenantContext

GIB = 1024 ** 3


@dataclass(frozen=True)
class PlanPolicy:
    max_users: Quota
    max_storage_bytes: Quota
    features: frozenset[Feature]


_BASE = frozenset({Feature.BASIC})
_STARTER = _BASE | {Feature.ADVANCED_SEARCH, Feature.EXPORT}
_PROFESSIONAL = _STARTER | {Feature.ANALYTICS, Feature.WEBHOOKS}
_ENTERPRISE = _PROFESSIONAL | {Feature.CUSTOM_DOMAIN, Feature.SSO}

POLICIES: MappingProxyType[Plan, PlanPolicy] = MappingProxyType({
    Plan.TRIAL: PlanPolicy(Quota.bounded(10), Quota.bounded(10 * GIB), _BASE),
    Plan.STARTER: PlanPolicy(Quota.bounded(25), Quota.bounded(50 * GIB), _STARTER),
    Plan.PROFESSIONAL: PlanPolicy(Quota.bounded(100), Quota.bounded(250 * GIB), _PROFESSIONAL),
    Plan.ENTERPRISE: PlanPolicy(Quota.unlimited(), Quota.unlimited(), _ENTERPRISE),
})


def policy_for(plan: Plan | str) -> PlanPolicy:
    """Return the policy for *plan*. Unknown tags raise ValueError."""
    return POLICIES[Plan(plan)]


def default_settings(plan: Plan, *, timezone: str = "UTC", currency: str = "USD") -> TenantSettings:
    p = policy_for(plan)
    return TenantSettings(
        max_users=p.max_users,
        max_storage_bytes=p.max_storage_bytes,
        allowed_features=p.features,
        timezone=timezone,
        currency=currency,
    )


def apply_policy(settings: TenantSettings, plan: Plan | str) -> TenantSettings:
    """
    Return *settings* with quotas and features replaced by *plan*'s policy.
    Display fields are preserved. Applying the same plan twice is a no-op.
    """
    p = policy_for(plan)
    return dataclasses.replace(
        settings,
        max_users=p.max_users,
        max_storage_bytes=p.max_storage_bytes,
        allowed_features=p.features,
    )


# ── Handler-side checks ───────────────────────────────────────────────────────

def require_feature(ctx: TenantContext, feature: Feature) -> None:
    if not ctx.has_feature(feature):
        raise FeatureNotAvailable(
            f"feature {feature.value!r} not in plan {ctx.subscription.plan.value!r}",
            feature=feature.value,
        )


def require_quota(quota: Quota, usage: int, increment: int = 1, *, resource: str = "resource") -> None:
    """
    Raise QuotaExceeded unless *usage* + *increment* fits in *quota*.

    Usage:
        used = await scoped.count(ctx, users)
        require_quota(ctx.settings.max_users, used, resource="users")
    """
    if not quota.allows(usage, increment):
        raise QuotaExceeded(
            f"{resource}: {usage} + {increment} exceeds limit {quota.limit}",
            resource=resource,
            limit=quota.limit,
            usage=usage,
        )


__all__ = [
    "PlanPolicy", "POLICIES", "policy_for", "default_settings", "apply_policy",
    "require_feature", "require_quota",
]
