"""
tenancy_sdk
───────────
Stable top-level exports. Import from here, not from sub-modules directly.
Every name exported here is part of the public API and subject to semver.
"""
from tenancy_sdk.tier0_core.logging import get_logger
from tenancy_sdk.tier0_core.errors import (
    TenancyError,
    ValidationError,
    NotFoundError,
    ResolutionError,
    TenantNotFound,
    TenantInactive,
    TenantSuspended,
    TrialExpired,
    MissingTenantContext,
    UnscopedTableError,
    DuplicateSlugError,
    DuplicateDomainError,
    ConcurrentUpdateConflict,
    QuotaExceeded,
    FeatureNotAvailable,
    DeadlineExceeded,
)
from tenancy_sdk.tier0_core.config import get_config, TenancyConfig
from tenancy_sdk.tier0_core.data import (
    metadata,
    tenants,
    tenant_scoped_table,
    create_engine,
    get_engine,
    create_schema,
)
from tenancy_sdk.tier0_core.models import (
    Tenant,
    TenantStatus,
    TenantSettings,
    Subscription,
    SubscriptionStatus,
    Plan,
    Feature,
    Quota,
)

from tenancy_sdk.tier1_runtime.clock import Clock, get_clock, set_clock
from tenancy_sdk.tier1_runtime.context import (
    TenantContext,
    bind_tenant,
    unbind_tenant,
    current_tenant,
    require_tenant,
)
from tenancy_sdk.tier1_runtime.deadline import deadline_in
from tenancy_sdk.tier1_runtime.retry import retry_on_conflict

from tenancy_sdk.tier2_reliability.audit import audit_event, audit_isolation, AuditRecord
from tenancy_sdk.tier2_reliability.cache import TenantCache

from tenancy_sdk.tier3_platform.store import TenantStore, SqlTenantStore, InMemoryTenantStore
from tenancy_sdk.tier3_platform.resolver import TenantResolver, TenantSignals
from tenancy_sdk.tier3_platform.scoped_access import ScopedDataAccess, Cond, Page
from tenancy_sdk.tier3_platform.policy import (
    POLICIES,
    policy_for,
    apply_policy,
    require_feature,
    require_quota,
)
from tenancy_sdk.tier3_platform.tenant_service import TenantService
from tenancy_sdk.tier1_runtime.middleware import TenantASGIMiddleware

__version__ = "0.1.0"
__all__ = [
    # logging
    "get_logger",
    # errors
    "TenancyError", "ValidationError", "NotFoundError", "ResolutionError",
    "TenantNotFound", "TenantInactive", "TenantSuspended", "TrialExpired",
    "MissingTenantContext", "UnscopedTableError", "DuplicateSlugError",
    "DuplicateDomainError", "ConcurrentUpdateConflict", "QuotaExceeded",
    "FeatureNotAvailable", "DeadlineExceeded",
    # config
    "get_config", "TenancyConfig",
    # data
    "metadata", "tenants", "tenant_scoped_table",
    "create_engine", "get_engine", "create_schema",
    # models
    "Tenant", "TenantStatus", "TenantSettings", "Subscription",
    "SubscriptionStatus", "Plan", "Feature", "Quota",
    # clock
    "Clock", "get_clock", "set_clock",
    # context
    "TenantContext", "bind_tenant", "unbind_tenant", "current_tenant", "require_tenant",
    # deadline
    "deadline_in",
    # retry
    "retry_on_conflict",
    # audit
    "audit_event", "audit_isolation", "AuditRecord",
    # cache
    "TenantCache",
    # store
    "TenantStore", "SqlTenantStore", "InMemoryTenantStore",
    # resolver
    "TenantResolver", "TenantSignals",
    # scoped access
    "ScopedDataAccess", "Cond", "Page",
    # policy
    "POLICIES", "policy_for", "apply_policy", "require_feature", "require_quota",
    # service
    "TenantService",
    # middleware
    "TenantASGIMiddleware",
]
