"""Tests for tier0_core modules."""
from __future__ import annotations

import logging
import uuid
from datetime import datetime, timedelta, timezone

import pydantic
import pytest

from tenancy_sdk.tier0_core.config import TenancyConfig
from tenancy_sdk.tier0_core.data import UTCDateTime, tenant_scoped_table
from tenancy_sdk.tier0_core.errors import (
    ConcurrentUpdateConflict,
    ConflictError,
    MissingTenantContext,
    NotFoundError,
    ResolutionError,
    TenancyError,
    TenantInactive,
    TenantNotFound,
    TenantSuspended,
    TrialExpired,
    ValidationError,
)
from tenancy_sdk.tier0_core.logging import clip_signals, configure_logging, redact
from tenancy_sdk.tier0_core.models import (
    Feature,
    Plan,
    Quota,
    Subscription,
    Tenant,
    TenantSettings,
    TenantStatus,
)

NOW = datetime(2025, 1, 1, tzinfo=timezone.utc)


def _tenant(**overrides) -> Tenant:
    fields = dict(
        id=uuid.uuid4(),
        name="Acme",
        slug="acme",
        status=TenantStatus.ACTIVE,
        settings=TenantSettings(Quota.bounded(10), Quota.bounded(100), frozenset({Feature.BASIC})),
        subscription=Subscription(plan=Plan.STARTER),
        created_at=NOW,
        updated_at=NOW,
    )
    fields.update(overrides)
    return Tenant(**fields)


# ── errors ────────────────────────────────────────────────────────────────────

class TestErrors:
    def test_base_error_has_code_and_message(self):
        err = TenancyError("internal detail")
        assert err.code == "internal_error"
        assert err.status_code == 500
        assert err.detail == "internal detail"
        assert "internal detail" not in err.user_message

    def test_resolution_errors_map_to_http_statuses(self):
        assert TenantNotFound().status_code == 404
        assert TenantInactive().status_code == 403
        assert TenantSuspended().status_code == 403
        assert TrialExpired().status_code == 402

    def test_resolution_errors_share_one_user_message(self):
        messages = {
            cls().user_message
            for cls in (TenantNotFound, TenantInactive, TenantSuspended, TrialExpired)
        }
        assert messages == {"Tenant unavailable."}

    def test_resolution_errors_are_typed(self):
        assert isinstance(TenantNotFound(), ResolutionError)
        assert isinstance(TenantNotFound(), NotFoundError)
        assert not isinstance(MissingTenantContext(), ResolutionError)

    def test_to_dict_hides_detail(self):
        d = TenantSuspended("tenant 42 suspended for fraud").to_dict()
        assert d["error"]["code"] == "tenant_suspended"
        assert "fraud" not in str(d)

    def test_validation_error_includes_fields(self):
        err = ValidationError("bad slug", fields={"slug": "reserved"})
        assert err.to_dict()["error"]["fields"] == {"slug": "reserved"}

    def test_only_conflicts_are_retryable(self):
        assert ConcurrentUpdateConflict().retryable is True
        assert isinstance(ConcurrentUpdateConflict(), ConflictError)
        assert TenantNotFound().retryable is False

    def test_missing_context_fatal_flag(self):
        assert MissingTenantContext().fatal is True
        assert MissingTenantContext(fatal=False).fatal is False


# ── config ────────────────────────────────────────────────────────────────────

class TestConfig:
    def test_defaults(self):
        cfg = TenancyConfig(APP_ENV="test")
        assert cfg.is_test
        assert cfg.tenant_column == "tenant_id"
        assert cfg.trial_days == 14
        assert cfg.resolver_cache_ttl_seconds == 5.0

    def test_rejects_unknown_environment(self):
        with pytest.raises(pydantic.ValidationError):
            TenancyConfig(APP_ENV="moon")

    def test_reserved_subdomains_parsed_from_csv(self):
        cfg = TenancyConfig(TENANCY_RESERVED_SUBDOMAINS="www, API ,,static")
        assert cfg.reserved_subdomains == frozenset({"www", "api", "static"})

    def test_base_domain_normalized(self):
        cfg = TenancyConfig(TENANCY_BASE_DOMAIN=" .Example.COM. ")
        assert cfg.base_domain == "example.com"

    def test_production_flag(self):
        assert TenancyConfig(APP_ENV="production").is_production


# ── logging ───────────────────────────────────────────────────────────────────

class TestLogging:
    def test_redacts_nested_billing_fields(self):
        event = redact(None, "info", {
            "event": "audit",
            "token": "t0k3n",
            "metadata": {
                "plan": "starter",
                "external_billing_ref": "cus_123",
                "changes": [{"custom_css": "body{}"}],
            },
        })
        assert event["token"] == "[REDACTED]"
        assert event["metadata"]["plan"] == "starter"
        assert event["metadata"]["external_billing_ref"] == "[REDACTED]"
        assert event["metadata"]["changes"][0]["custom_css"] == "[REDACTED]"

    def test_clips_request_supplied_signals(self):
        event = clip_signals(None, "warning", {"host": "a" * 5000, "via": "host"})
        assert len(event["host"]) == 254
        assert event["via"] == "host"

    def test_reconfiguring_replaces_the_handler(self):
        try:
            configure_logging(TenancyConfig(PLATFORM_LOG_LEVEL="DEBUG"))
            configure_logging(TenancyConfig(PLATFORM_LOG_LEVEL="DEBUG"))
            root = logging.getLogger()
            assert [h.get_name() for h in root.handlers].count("tenancy_sdk") == 1
            assert root.level == logging.DEBUG
        finally:
            configure_logging(TenancyConfig())


# ── models ────────────────────────────────────────────────────────────────────

class TestQuota:
    def test_bounded_quota(self):
        q = Quota.bounded(10)
        assert q.allows(9)
        assert not q.allows(10)
        assert q.allows(5, increment=5)
        assert q.remaining(7) == 3

    def test_unlimited_quota(self):
        q = Quota.unlimited()
        assert q.is_unlimited
        assert q.allows(10 ** 12)
        assert q.remaining(5) is None

    def test_legacy_sentinel_reads_as_unlimited(self):
        assert Quota.from_json(-1).is_unlimited
        assert Quota.from_json(None).is_unlimited
        assert Quota.unlimited().to_json() is None

    def test_negative_limit_rejected(self):
        with pytest.raises(ValueError):
            Quota(-5)


class TestTenant:
    def test_settings_json_keeps_features(self):
        settings = TenantSettings.from_json({
            "max_users": -1,
            "max_storage_bytes": 1024,
            "allowed_features": ["basic", "export"],
        })
        assert settings.max_users.is_unlimited
        assert settings.allowed_features == frozenset({Feature.BASIC, Feature.EXPORT})
        assert settings.to_json()["max_users"] is None

    def test_subscription_dates_survive_json(self):
        sub = Subscription(
            plan=Plan.PROFESSIONAL,
            current_period_start=NOW,
            current_period_end=NOW + timedelta(days=30),
        )
        assert Subscription.from_json(sub.to_json()) == sub

    def test_trial_expiry(self):
        t = _tenant(status=TenantStatus.TRIAL, trial_ends_at=NOW + timedelta(days=1))
        assert not t.is_trial_expired(NOW)
        assert t.is_trial_expired(NOW + timedelta(days=1))

    def test_active_tenant_never_trial_expired(self):
        assert not _tenant().is_trial_expired(NOW + timedelta(days=999))

    def test_has_feature(self):
        t = _tenant()
        assert t.has_feature(Feature.BASIC)
        assert not t.has_feature(Feature.SSO)

    def test_suspended_needs_reason(self):
        with pytest.raises(ValueError):
            _tenant(status=TenantStatus.SUSPENDED, suspended_at=NOW, suspend_reason="  ").check_invariants()

    def test_trial_needs_end_date(self):
        with pytest.raises(ValueError):
            _tenant(status=TenantStatus.TRIAL).check_invariants()


# ── data ──────────────────────────────────────────────────────────────────────

class TestData:
    def test_utc_column_rejects_naive_datetimes(self):
        with pytest.raises(ValueError):
            UTCDateTime().process_bind_param(datetime(2025, 1, 1), None)

    def test_utc_column_restores_tzinfo(self):
        value = UTCDateTime().process_result_value(datetime(2025, 1, 1), None)
        assert value.tzinfo is not None

    def test_scoped_table_carries_tenant_column(self):
        from sqlalchemy import MetaData
        meta = MetaData()
        table = tenant_scoped_table("projects", meta)
        assert "tenant_id" in table.c
        assert table.c.tenant_id.nullable is False
        # no tenants table on this metadata, so no foreign key
        assert not table.c.tenant_id.foreign_keys
