"""
tenancy_sdk.tier3_platform.resolver
─────────────────────────────────────
Tenant Resolver: maps a request's identifying signals to exactly one
resolvable tenant, or raises a typed ResolutionError.

Precedence, first present signal wins:
  1. explicit tenant id      (X-Tenant-ID)
  2. explicit tenant slug    (X-Tenant-Slug)
  3. host outside the base domain   → exact custom-domain lookup
  4. host under the base domain     → leftmost label looked up as a slug

A present signal that matches nothing fails with TenantNotFound. It never
falls through to a lower-precedence signal, so a wrong explicit id cannot
be rescued by the Host header.
"""
from __future__ import annotations

import re
import uuid
from collections.abc import Awaitable, Callable, Mapping
from dataclasses import dataclass
from datetime import datetime

from tenancy_sdk.tier0_core.config import TenancyConfig, get_config
from tenancy_sdk.tier0_core.errors import (
    ResolutionError,
    TenantInactive,
    TenantNotFound,
    TenantSuspended,
    TrialExpired,
)
from tenancy_sdk.tier0_core.logging import get_logger
from tenancy_sdk.tier0_core.models import Tenant, TenantStatus
from tenancy_sdk.tier1_runtime.clock import Clock, get_clock
from tenancy_sdk.tier1_runtime.context import TenantContext, _mint
from tenancy_sdk.tier1_runtime.deadline import bounded
from tenancy_sdk.tier2_reliability.cache import TenantCache, domain_key, id_key, slug_key
from tenancy_sdk.tier3_platform.store import TenantStore

log = get_logger(__name__)

_LABEL = re.compile(r"^[a-z0-9](?:[a-z0-9-]{0,61}[a-z0-9])?$")


# ── Signals ───────────────────────────────────────────────────────────────────

def normalize_host(host: str | None) -> str | None:
    """Lower-case, drop the port and any trailing dot. Empty → None."""
    if not host:
        return None
    host = host.strip().lower()
    if host.startswith("["):
        # IPv6 literal; never a tenant host
        return None
    host = host.split(":", 1)[0].rstrip(".")
    return host or None


@dataclass(frozen=True)
class TenantSignals:
    """Tenant-identifying values taken from one inbound request."""
    tenant_id: str | None = None
    tenant_slug: str | None = None
    host: str | None = None

    @classmethod
    def from_headers(
        cls,
        headers: Mapping[str, str],
        config: TenancyConfig | None = None,
    ) -> "TenantSignals":
        config = config or get_config()
        lowered = {k.lower(): v for k, v in headers.items()}
        return cls(
            tenant_id=(lowered.get(config.id_header.lower()) or "").strip() or None,
            tenant_slug=(lowered.get(config.slug_header.lower()) or "").strip() or None,
            host=normalize_host(lowered.get("host")),
        )


# ── Resolver ──────────────────────────────────────────────────────────────────

Lookup = Callable[[], Awaitable[Tenant | None]]


class TenantResolver:
    """
    Resolve signals to a TenantContext. Holds no per-request state, so one
    instance serves all concurrent requests.

    Usage:
        resolver = TenantResolver(store, cache=TenantCache(ttl=5))
        ctx = await resolver.resolve(TenantSignals.from_headers(request.headers))
    """

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
        suffix = self._config.base_domain
        self._base_suffix = f".{suffix}" if suffix else None

    async def resolve(
        self,
        signals: TenantSignals,
        *,
        request_id: str | None = None,
        deadline: float | None = None,
    ) -> TenantContext:
        via, key, lookup = self._select(signals)
        if lookup is None:
            log.warning("tenant.resolution_failed", via=via, reason="no_usable_signal")
            raise TenantNotFound(f"no usable tenant signal ({via})")

        tenant = await bounded(self._cached(key, lookup), deadline, operation="tenant.resolve")
        if tenant is None:
            log.warning("tenant.resolution_failed", via=via, reason="not_found")
            raise TenantNotFound(f"no tenant matches the {via} signal")

        now = self._clock.now()
        try:
            self._check_resolvable(tenant, now)
        except ResolutionError as exc:
            log.warning(
                "tenant.resolution_failed",
                via=via,
                reason=exc.code,
                tenant_id=str(tenant.id),
            )
            raise

        ctx = _mint(tenant, resolved_at=now, request_id=request_id, deadline=deadline)
        log.debug("tenant.resolved", via=via, tenant_id=str(tenant.id))
        return ctx

    def _select(self, signals: TenantSignals) -> tuple[str, str | None, Lookup | None]:
        """Pick the highest-precedence present signal and its lookup."""
        if signals.tenant_id is not None:
            try:
                tenant_id = uuid.UUID(signals.tenant_id)
            except ValueError:
                return "id", None, None
            return "id", id_key(tenant_id), lambda: self._store.get_by_id(tenant_id)

        if signals.tenant_slug is not None:
            slug = signals.tenant_slug.lower()
            return "slug", slug_key(slug), lambda: self._store.get_by_slug(slug)

        host = normalize_host(signals.host)
        if host is None:
            return "none", None, None

        base = self._config.base_domain
        if host == base:
            return "subdomain", None, None
        if self._base_suffix and host.endswith(self._base_suffix):
            label = host[: -len(self._base_suffix)]
            if not _LABEL.match(label) or label in self._config.reserved_subdomains:
                return "subdomain", None, None
            return "subdomain", slug_key(label), lambda: self._store.get_by_slug(label)

        return "domain", domain_key(host), lambda: self._store.get_by_domain(host)

    async def _cached(self, key: str | None, lookup: Lookup) -> Tenant | None:
        if self._cache is None or key is None:
            return await lookup()
        return await self._cache.get_or_load(key, lookup)

    @staticmethod
    def _check_resolvable(tenant: Tenant, now: datetime) -> None:
        if tenant.status is TenantStatus.ACTIVE:
            return
        if tenant.status is TenantStatus.TRIAL:
            if tenant.is_trial_expired(now):
                raise TrialExpired(f"trial for tenant {tenant.id} ended")
            return
        if tenant.status is TenantStatus.SUSPENDED:
            raise TenantSuspended(f"tenant {tenant.id} is suspended")
        raise TenantInactive(f"tenant {tenant.id} is {tenant.status.value}")


__all__ = ["TenantSignals", "TenantResolver", "normalize_host"]
