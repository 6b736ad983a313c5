"""
tenancy_sdk.tier3_platform.tenant_service
───────────────────────────────────────────
Tenant Service: provisioning, plan changes and administrative status
transitions. Runs out-of-band from the request path and writes to the same
store the resolver reads from.

Every mutation is load → recompute → persist, and the persist step carries
the version that was loaded. Two writers racing on one tenant cannot both
win: the loser gets ConcurrentUpdateConflict, which is surfaced unchanged
(wrap the call in retry_on_conflict() to re-read and try again).

Each successful write synchronously invalidates the resolver cache for the
tenant's previous and new identifiers, then emits an audit event.
"""
from __future__ import annotations

import dataclasses
import re
import uuid
from datetime import timedelta
from typing import Any

from tenancy_sdk.tier0_core.config import TenancyConfig, get_config
from tenancy_sdk.tier0_core.errors import (
    ConcurrentUpdateConflict,
    FeatureNotAvailable,
    TenantNotFound,
    ValidationError,
)
from tenancy_sdk.tier0_core.logging import get_logger
from tenancy_sdk.tier0_core.models import (
    Feature,
    Plan,
    Subscription,
    SubscriptionStatus,
    Tenant,
    TenantStatus,
)
from tenancy_sdk.tier1_runtime.clock import Clock, get_clock
from tenancy_sdk.tier2_reliability.audit import audit_event
from tenancy_sdk.tier2_reliability.cache import TenantCache
from tenancy_sdk.tier3_platform.policy import apply_policy, default_settings
from tenancy_sdk.tier3_platform.store import TenantStore

log = get_logger(__name__)

_SLUG = re.compile(r"^[a-z0-9](?:[a-z0-9-]{1,61}[a-z0-9])$")
_DOMAIN = re.compile(r"^(?=.{1,253}$)([a-z0-9](?:[a-z0-9-]{0,61}[a-z0-9])?\.)+[a-z]{2,63}$")

_DISPLAY_FIELDS = frozenset({
    "timezone", "currency", "date_format", "primary_color", "logo_url", "custom_css",
})


class TenantService:
    def __init__(
        self,
        store: TenantStore,
        *,
        config: TenancyConfig | None = None,
        clock: Clock | None = None,
        cache: TenantCache | None = None,
    ) -> None:
        self._store = store
        self._config = config or get_config()
        self._clock = clock or get_clock()
        self._cache = cache

    # ── Validation ────────────────────────────────────────────────────────────

    def _validate_slug(self, slug: str) -> str:
        slug = (slug or "").strip().lower()
        if not _SLUG.match(slug):
            raise ValidationError(
                f"invalid slug {slug!r}",
                fields={"slug": "3-63 lowercase letters, digits or hyphens"},
            )
        if slug in self._config.reserved_subdomains:
            raise ValidationError(f"slug {slug!r} is reserved", fields={"slug": "reserved"})
        return slug

    def _validate_domain(self, domain: str) -> str:
        domain = domain.strip().lower().rstrip(".")
        if not _DOMAIN.match(domain):
            raise ValidationError(f"invalid domain {domain!r}", fields={"domain": "not a hostname"})
        base = self._config.base_domain
        if domain == base or domain.endswith(f".{base}"):
            raise ValidationError(
                f"custom domain {domain!r} is under the platform domain",
                fields={"domain": "use a domain you own"},
            )
        return domain

    # ── Helpers ───────────────────────────────────────────────────────────────

    async def _load(self, tenant_id: uuid.UUID) -> Tenant:
        tenant = await self._store.get_by_id(tenant_id)
        if tenant is None:
            raise TenantNotFound(f"tenant {tenant_id} not found")
        return tenant

    async def _persist(self, before: Tenant, after: Tenant, action: str, **meta: Any) -> Tenant:
        after.check_invariants()
        stored = await self._store.update(after)
        if self._cache is not None:
            self._cache.invalidate(before, stored)
        audit_event(stored.id, action, metadata=meta)
        return stored

    # ── Provisioning ──────────────────────────────────────────────────────────

    async def create_tenant(self, name: str, slug: str, domain: str | None = None) -> Tenant:
        """
        Create a tenant on the trial plan. The trial window is
        config.trial_days long; DuplicateSlugError / DuplicateDomainError
        propagate from the store.
        """
        name = (name or "").strip()
        if not name:
            raise ValidationError("tenant name is required", fields={"name": "required"})
        slug = self._validate_slug(slug)
        if domain is not None:
            domain = self._validate_domain(domain)

        now = self._clock.now()
        trial_ends_at = now + timedelta(days=self._config.trial_days)
        tenant = Tenant(
            id=uuid.uuid4(),
            name=name,
            slug=slug,
            domain=domain,
            status=TenantStatus.TRIAL,
            settings=default_settings(
                Plan.TRIAL,
                timezone=self._config.default_timezone,
                currency=self._config.default_currency,
            ),
            subscription=Subscription(
                plan=Plan.TRIAL,
                status=SubscriptionStatus.ACTIVE,
                current_period_start=now,
                current_period_end=trial_ends_at,
            ),
            trial_ends_at=trial_ends_at,
            created_at=now,
            updated_at=now,
        )
        tenant.check_invariants()
        stored = await self._store.create(tenant)
        audit_event(stored.id, "tenant.create", metadata={"slug": slug, "plan": Plan.TRIAL.value})
        return stored

    # ── Plan changes ──────────────────────────────────────────────────────────

    async def change_plan(self, tenant_id: uuid.UUID, plan: Plan | str) -> Tenant:
        """
        Re-apply the subscription policy for *plan* and mark the tenant
        active. Idempotent on settings; the billing period only restarts
        when the plan actually changes.
        """
        try:
            plan = Plan(plan)
        except ValueError as exc:
            raise ValidationError(f"unknown plan {plan!r}", fields={"plan": "unknown"}) from exc
        tenant = await self._load(tenant_id)
        now = self._clock.now()

        subscription = tenant.subscription
        if subscription.plan is not plan:
            subscription = dataclasses.replace(
                subscription,
                plan=plan,
                status=SubscriptionStatus.ACTIVE,
                current_period_start=now,
                current_period_end=now + timedelta(days=self._config.billing_period_days),
            )

        updated = dataclasses.replace(
            tenant,
            settings=apply_policy(tenant.settings, plan),
            subscription=subscription,
            status=TenantStatus.ACTIVE,
            trial_ends_at=None,
            suspended_at=None,
            suspend_reason=None,
        )
        stored = await self._persist(
            tenant, updated, "tenant.plan_change",
            previous_plan=tenant.subscription.plan.value, plan=plan.value,
        )
        log.info("tenant.plan_changed", tenant_id=str(stored.id), plan=plan.value)
        return stored

    # ── Administrative status transitions ─────────────────────────────────────

    async def suspend(self, tenant_id: uuid.UUID, reason: str) -> Tenant:
        reason = (reason or "").strip()
        if not reason:
            raise ValidationError("a suspend reason is required", fields={"reason": "required"})
        tenant = await self._load(tenant_id)
        updated = dataclasses.replace(
            tenant,
            status=TenantStatus.SUSPENDED,
            suspended_at=self._clock.now(),
            suspend_reason=reason,
        )
        stored = await self._persist(tenant, updated, "tenant.suspend", reason=reason)
        log.warning("tenant.suspended", tenant_id=str(stored.id))
        return stored

    async def reactivate(self, tenant_id: uuid.UUID) -> Tenant:
        """Lift a suspension or deactivation. Trial-plan tenants go back to trial."""
        tenant = await self._load(tenant_id)
        on_trial = tenant.subscription.plan is Plan.TRIAL and tenant.trial_ends_at is not None
        updated = dataclasses.replace(
            tenant,
            status=TenantStatus.TRIAL if on_trial else TenantStatus.ACTIVE,
            suspended_at=None,
            suspend_reason=None,
        )
        return await self._persist(tenant, updated, "tenant.reactivate")

    async def deactivate(self, tenant_id: uuid.UUID) -> Tenant:
        tenant = await self._load(tenant_id)
        updated = dataclasses.replace(
            tenant,
            status=TenantStatus.INACTIVE,
            suspended_at=None,
            suspend_reason=None,
        )
        return await self._persist(tenant, updated, "tenant.deactivate")

    async def expire_trials(self) -> list[Tenant]:
        """
        Move every trial past its end date to inactive. Resolution already
        refuses such tenants; this job makes the stored status agree.
        A tenant changed concurrently is skipped and picked up next run.
        """
        expired: list[Tenant] = []
        for tenant in await self._store.list_expired_trials(self._clock.now()):
            updated = dataclasses.replace(tenant, status=TenantStatus.INACTIVE)
            try:
                expired.append(await self._persist(tenant, updated, "tenant.trial_expired"))
            except ConcurrentUpdateConflict:
                log.info("tenant.trial_expiry_deferred", tenant_id=str(tenant.id))
        return expired

    # ── Settings ──────────────────────────────────────────────────────────────

    async def set_domain(self, tenant_id: uuid.UUID, domain: str | None) -> Tenant:
        tenant = await self._load(tenant_id)
        if domain is not None:
            if not tenant.has_feature(Feature.CUSTOM_DOMAIN):
                raise FeatureNotAvailable(
                    f"plan {tenant.subscription.plan.value!r} has no custom domains",
                    feature=Feature.CUSTOM_DOMAIN.value,
                )
            domain = self._validate_domain(domain)
        updated = dataclasses.replace(tenant, domain=domain)
        return await self._persist(tenant, updated, "tenant.set_domain", domain=domain)

    async def customize(self, tenant_id: uuid.UUID, **display: Any) -> Tenant:
        """Update display settings only; quotas and features stay policy-owned."""
        unknown = set(display) - _DISPLAY_FIELDS
        if unknown:
            raise ValidationError(
                f"not a display setting: {sorted(unknown)}",
                fields={k: "not editable" for k in sorted(unknown)},
            )
        tenant = await self._load(tenant_id)
        updated = dataclasses.replace(
            tenant, settings=dataclasses.replace(tenant.settings, **display)
        )
        return await self._persist(tenant, updated, "tenant.customize", fields=sorted(display))

    async def delete_tenant(self, tenant_id: uuid.UUID) -> None:
        """Soft delete. Tenant-scoped rows keep their history."""
        tenant = await self._load(tenant_id)
        await self._store.soft_delete(tenant_id)
        if self._cache is not None:
            self._cache.invalidate(tenant)
        audit_event(tenant_id, "tenant.delete")


__all__ = ["TenantService"]
