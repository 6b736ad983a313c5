"""
tenancy_sdk.tier1_runtime.context
───────────────────────────────────
The Tenant Context: an immutable, request-scoped handle on the resolved
tenant. It is a capability. Only the resolver can mint one, so business
code cannot fabricate a context for a tenant it never resolved.

Two ways to carry it:
  - explicitly, as the first argument of every ScopedDataAccess call;
  - ambiently, bound once per request in a ContextVar (async-safe and
    isolated per asyncio task), for code that receives it from middleware.
"""
from __future__ import annotations

import uuid
from contextvars import ContextVar, Token
from dataclasses import dataclass, field
from datetime import datetime

from tenancy_sdk.tier0_core.errors import MissingTenantContext, TenantContextAlreadyBound
from tenancy_sdk.tier0_core.logging import bind_context, unbind_context
from tenancy_sdk.tier0_core.models import (
    Feature,
    Subscription,
    Tenant,
    TenantSettings,
    TenantStatus,
)

_ISSUER = object()


# ── Capability ────────────────────────────────────────────────────────────────

@dataclass(frozen=True)
class TenantContext:
    """Resolved tenant for one request. Read-only for the request lifetime."""
    tenant: Tenant
    request_id: str
    resolved_at: datetime
    deadline: float | None = None
    _issuer: object = field(default=None, init=False, repr=False, compare=False)

    def __post_init__(self) -> None:
        # Runs for direct construction and for dataclasses.replace() copies.
        # _mint() bypasses __init__, so an issued context never gets here.
        if self._issuer is not _ISSUER:
            raise TypeError(
                "TenantContext is issued by TenantResolver.resolve(); "
                "it cannot be constructed directly."
            )

    @property
    def tenant_id(self) -> uuid.UUID:
        return self.tenant.id

    @property
    def status(self) -> TenantStatus:
        return self.tenant.status

    @property
    def settings(self) -> TenantSettings:
        return self.tenant.settings

    @property
    def subscription(self) -> Subscription:
        return self.tenant.subscription

    @property
    def is_issued(self) -> bool:
        return self._issuer is _ISSUER

    def has_feature(self, feature: Feature) -> bool:
        return self.tenant.has_feature(feature)


def _mint(
    tenant: Tenant,
    *,
    resolved_at: datetime,
    request_id: str | None = None,
    deadline: float | None = None,
) -> TenantContext:
    """Issue a context. Reserved for the resolver."""
    ctx = object.__new__(TenantContext)
    for name, value in (
        ("tenant", tenant),
        ("request_id", request_id or str(uuid.uuid4())),
        ("resolved_at", resolved_at),
        ("deadline", deadline),
        ("_issuer", _ISSUER),
    ):
        object.__setattr__(ctx, name, value)
    return ctx


# ── Ambient carrier ───────────────────────────────────────────────────────────

_current: ContextVar[TenantContext | None] = ContextVar(
    "tenancy_tenant_context",
    default=None,
)


def bind_tenant(ctx: TenantContext) -> Token:
    """
    Attach *ctx* to the current request scope. Call once, at the request
    boundary, and pass the returned token to unbind_tenant() when the
    request ends. Re-binding the same context is a no-op; binding a
    different one raises TenantContextAlreadyBound.
    """
    if not isinstance(ctx, TenantContext):
        raise MissingTenantContext("bind_tenant() needs a resolved TenantContext")
    existing = _current.get()
    if existing is not None and existing != ctx:
        raise TenantContextAlreadyBound(
            f"request already bound to tenant {existing.tenant_id}",
            tenant_id=str(existing.tenant_id),
        )
    token = _current.set(ctx)
    bind_context(tenant_id=str(ctx.tenant_id), request_id=ctx.request_id)
    return token


def unbind_tenant(token: Token) -> None:
    _current.reset(token)
    unbind_context("tenant_id", "request_id")


def current_tenant() -> TenantContext | None:
    """Return the bound context, or None outside a resolved request."""
    return _current.get()


def require_tenant() -> TenantContext:
    """Return the bound context, raising MissingTenantContext if unset."""
    ctx = _current.get()
    if ctx is None:
        raise MissingTenantContext(
            "no tenant bound to this request; resolve at the request boundary"
        )
    return ctx


__all__ = [
    "TenantContext", "bind_tenant", "unbind_tenant",
    "current_tenant", "require_tenant",
]
