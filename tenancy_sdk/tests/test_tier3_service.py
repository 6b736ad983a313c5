"""Tests for tier3_platform.tenant_service."""
from __future__ import annotations

import asyncio
import uuid
from datetime import timedelta

import pytest

from tenancy_sdk.tier0_core.errors import (
    ConcurrentUpdateConflict,
    DuplicateDomainError,
    DuplicateSlugError,
    FeatureNotAvailable,
    TenantNotFound,
    ValidationError,
)
from tenancy_sdk.tier0_core.models import Feature, Plan, Quota, TenantStatus
from tenancy_sdk.tier1_runtime.retry import retry_on_conflict
from tenancy_sdk.tier3_platform.store import InMemoryTenantStore
from tenancy_sdk.tier3_platform.tenant_service import TenantService


class InterleavingStore(InMemoryTenantStore):
    """Yields after every read so concurrent writers overlap."""

    async def get_by_id(self, tenant_id):
        tenant = await super().get_by_id(tenant_id)
        await asyncio.sleep(0)
        return tenant


class TestCreateTenant:
    @pytest.mark.asyncio
    async def test_new_tenant_starts_on_trial(self, service, clock):
        tenant = await service.create_tenant("  Acme Inc ", "Acme")

        assert tenant.name == "Acme Inc"
        assert tenant.slug == "acme"
        assert tenant.status is TenantStatus.TRIAL
        assert tenant.trial_ends_at == clock.now() + timedelta(days=14)
        assert tenant.subscription.plan is Plan.TRIAL
        assert tenant.subscription.current_period_end == tenant.trial_ends_at
        assert tenant.settings.max_users == Quota.bounded(10)
        assert tenant.settings.allowed_features == frozenset({Feature.BASIC})
        assert tenant.version == 1

    @pytest.mark.asyncio
    @pytest.mark.parametrize("slug", ["ab", "-acme", "acme-", "ac_me", "www", "a" * 64, ""])
    async def test_invalid_slugs(self, service, slug):
        with pytest.raises(ValidationError):
            await service.create_tenant("Acme", slug)

    @pytest.mark.asyncio
    async def test_name_required(self, service):
        with pytest.raises(ValidationError):
            await service.create_tenant("   ", "acme")

    @pytest.mark.asyncio
    async def test_duplicate_slug(self, service):
        await service.create_tenant("Acme", "acme")
        with pytest.raises(DuplicateSlugError):
            await service.create_tenant("Acme Again", "acme")

    @pytest.mark.asyncio
    async def test_domain_under_platform_domain_rejected(self, service):
        with pytest.raises(ValidationError):
            await service.create_tenant("Acme", "acme", domain="acme.example.com")


class TestChangePlan:
    @pytest.mark.asyncio
    async def test_upgrade_applies_policy(self, service, clock):
        tenant = await service.create_tenant("Acme", "acme")
        upgraded = await service.change_plan(tenant.id, Plan.PROFESSIONAL)

        assert upgraded.status is TenantStatus.ACTIVE
        assert upgraded.trial_ends_at is None
        assert upgraded.subscription.plan is Plan.PROFESSIONAL
        assert upgraded.subscription.current_period_start == clock.now()
        assert upgraded.subscription.current_period_end == clock.now() + timedelta(days=30)
        assert upgraded.settings.max_users == Quota.bounded(100)
        assert Feature.WEBHOOKS in upgraded.settings.allowed_features
        assert upgraded.version == tenant.version + 1

    @pytest.mark.asyncio
    async def test_same_plan_twice_is_idempotent(self, service):
        tenant = await service.create_tenant("Acme", "acme")
        first = await service.change_plan(tenant.id, "starter")
        second = await service.change_plan(tenant.id, "starter")

        assert second.settings == first.settings
        assert second.subscription == first.subscription
        assert second.status is first.status

    @pytest.mark.asyncio
    async def test_downgrade_keeps_display_settings(self, service):
        tenant = await service.create_tenant("Acme", "acme")
        await service.change_plan(tenant.id, Plan.ENTERPRISE)
        await service.customize(tenant.id, timezone="Asia/Tokyo", primary_color="#FF0000")

        downgraded = await service.change_plan(tenant.id, Plan.STARTER)
        assert downgraded.settings.timezone == "Asia/Tokyo"
        assert downgraded.settings.primary_color == "#FF0000"
        assert Feature.SSO not in downgraded.settings.allowed_features
        assert downgraded.settings.max_users == Quota.bounded(25)

    @pytest.mark.asyncio
    async def test_plan_change_lifts_suspension(self, service):
        tenant = await service.create_tenant("Acme", "acme")
        await service.suspend(tenant.id, "unpaid")
        paid = await service.change_plan(tenant.id, Plan.STARTER)
        assert paid.status is TenantStatus.ACTIVE
        assert paid.suspended_at is None
        assert paid.suspend_reason is None

    @pytest.mark.asyncio
    async def test_unknown_plan(self, service):
        tenant = await service.create_tenant("Acme", "acme")
        with pytest.raises(ValidationError):
            await service.change_plan(tenant.id, "gold")

    @pytest.mark.asyncio
    async def test_unknown_tenant(self, service):
        with pytest.raises(TenantNotFound):
            await service.change_plan(uuid.uuid4(), Plan.STARTER)


class TestConcurrentWrites:
    @pytest.mark.asyncio
    async def test_racing_plan_changes_one_wins(self, config, clock):
        store = InterleavingStore(clock=clock)
        service = TenantService(store, config=config, clock=clock)
        tenant = await service.create_tenant("Acme", "acme")

        results = await asyncio.gather(
            service.change_plan(tenant.id, Plan.STARTER),
            service.change_plan(tenant.id, Plan.PROFESSIONAL),
            return_exceptions=True,
        )
        conflicts = [r for r in results if isinstance(r, ConcurrentUpdateConflict)]
        winners = [r for r in results if not isinstance(r, Exception)]
        assert len(conflicts) == 1
        assert len(winners) == 1

        stored = await store.get_by_id(tenant.id)
        assert stored.subscription.plan is winners[0].subscription.plan
        assert stored.version == tenant.version + 1

    @pytest.mark.asyncio
    async def test_retry_makes_both_writes_land(self, config, clock):
        store = InterleavingStore(clock=clock)
        service = TenantService(store, config=config, clock=clock)
        tenant = await service.create_tenant("Acme", "acme")

        @retry_on_conflict(max_attempts=5, min_wait=0, max_wait=0, jitter=0)
        async def change(plan):
            return await service.change_plan(tenant.id, plan)

        await asyncio.gather(change(Plan.STARTER), change(Plan.PROFESSIONAL))
        stored = await store.get_by_id(tenant.id)
        assert stored.version == tenant.version + 2


class TestStatusTransitions:
    @pytest.mark.asyncio
    async def test_suspend_and_reactivate_trial(self, service, clock):
        tenant = await service.create_tenant("Acme", "acme")
        suspended = await service.suspend(tenant.id, "abuse report")
        assert suspended.status is TenantStatus.SUSPENDED
        assert suspended.suspended_at == clock.now()
        assert suspended.suspend_reason == "abuse report"

        back = await service.reactivate(tenant.id)
        assert back.status is TenantStatus.TRIAL
        assert back.suspended_at is None
        assert back.trial_ends_at == tenant.trial_ends_at

    @pytest.mark.asyncio
    async def test_reactivate_paying_tenant(self, service):
        tenant = await service.create_tenant("Acme", "acme")
        await service.change_plan(tenant.id, Plan.STARTER)
        await service.deactivate(tenant.id)
        assert (await service.reactivate(tenant.id)).status is TenantStatus.ACTIVE

    @pytest.mark.asyncio
    async def test_suspend_requires_reason(self, service):
        tenant = await service.create_tenant("Acme", "acme")
        with pytest.raises(ValidationError):
            await service.suspend(tenant.id, "  ")

    @pytest.mark.asyncio
    async def test_expire_trials(self, store, config, clock):
        service = TenantService(store, config=config, clock=clock)
        old = await service.create_tenant("Old", "old-trial")
        paying = await service.create_tenant("Paying", "paying")
        await service.change_plan(paying.id, Plan.STARTER)

        later = TenantService(store, config=config, clock=clock.advance(timedelta(days=15)))
        await later.create_tenant("Fresh", "fresh-trial")
        expired = await later.expire_trials()

        assert [t.id for t in expired] == [old.id]
        assert (await store.get_by_id(old.id)).status is TenantStatus.INACTIVE
        assert (await store.get_by_slug("fresh-trial")).status is TenantStatus.TRIAL
        assert await later.expire_trials() == []

    @pytest.mark.asyncio
    async def test_delete(self, service, store):
        tenant = await service.create_tenant("Acme", "acme")
        await service.delete_tenant(tenant.id)
        assert await store.get_by_id(tenant.id) is None
        with pytest.raises(TenantNotFound):
            await service.delete_tenant(tenant.id)


class TestSettings:
    @pytest.mark.asyncio
    async def test_custom_domain_needs_the_feature(self, service):
        tenant = await service.create_tenant("Acme", "acme")
        with pytest.raises(FeatureNotAvailable):
            await service.set_domain(tenant.id, "portal.acme.io")

    @pytest.mark.asyncio
    async def test_set_and_clear_domain(self, service, store):
        tenant = await service.create_tenant("Acme", "acme")
        await service.change_plan(tenant.id, Plan.ENTERPRISE)

        updated = await service.set_domain(tenant.id, "Portal.Acme.IO.")
        assert updated.domain == "portal.acme.io"
        assert (await store.get_by_domain("portal.acme.io")).id == tenant.id

        cleared = await service.set_domain(tenant.id, None)
        assert cleared.domain is None

    @pytest.mark.asyncio
    async def test_domain_taken(self, service):
        a = await service.create_tenant("Acme", "acme")
        b = await service.create_tenant("Globex", "globex")
        for t in (a, b):
            await service.change_plan(t.id, Plan.ENTERPRISE)
        await service.set_domain(a.id, "shared.io")
        with pytest.raises(DuplicateDomainError):
            await service.set_domain(b.id, "shared.io")

    @pytest.mark.asyncio
    async def test_customize_display_fields(self, service):
        tenant = await service.create_tenant("Acme", "acme")
        updated = await service.customize(tenant.id, currency="EUR", logo_url="https://cdn.acme.io/logo.png")
        assert updated.settings.currency == "EUR"
        assert updated.settings.logo_url == "https://cdn.acme.io/logo.png"
        assert updated.settings.max_users == tenant.settings.max_users

    @pytest.mark.asyncio
    async def test_customize_cannot_touch_entitlements(self, service):
        tenant = await service.create_tenant("Acme", "acme")
        with pytest.raises(ValidationError):
            await service.customize(tenant.id, allowed_features=frozenset(Feature))
