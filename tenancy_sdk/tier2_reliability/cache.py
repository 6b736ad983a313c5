"""
tenancy_sdk.tier2_reliability.cache
─────────────────────────────────────
In-process TTL cache for resolved tenant records.

Staleness is bounded two ways:
  - TenantService invalidates every key of a tenant (old and new id, slug
    and domain) synchronously on each write it performs;
  - entries expire after ``ttl`` seconds (TENANCY_CACHE_TTL_SECONDS,
    default 5), which bounds staleness for writes made outside the service.

Only hits are cached. A lookup that finds nothing is never remembered, so a
freshly created tenant resolves on its first request. Status gating is not
cached either: the resolver re-checks status and trial expiry on every hit.
"""
from __future__ import annotations

import asyncio
import contextlib
import time
import uuid
from collections.abc import Awaitable, Callable

from tenancy_sdk.tier0_core.models import Tenant


def id_key(tenant_id: uuid.UUID) -> str:
    return f"id:{tenant_id}"


def slug_key(slug: str) -> str:
    return f"slug:{slug}"


def domain_key(domain: str) -> str:
    return f"domain:{domain}"


class _KeyLock:
    __slots__ = ("lock", "users")

    def __init__(self) -> None:
        self.lock = asyncio.Lock()
        self.users = 0


class TenantCache:
    """Async-safe in-process cache keyed by lookup kind and value."""

    def __init__(self, ttl: float = 5.0, *, clock: Callable[[], float] = time.monotonic) -> None:
        if ttl < 0:
            raise ValueError("ttl must be >= 0")
        self.ttl = ttl
        self._clock = clock
        self._store: dict[str, tuple[Tenant, float]] = {}  # key → (tenant, expires_at)
        self._locks: dict[str, _KeyLock] = {}  # only keys with a load in flight

    @property
    def enabled(self) -> bool:
        return self.ttl > 0

    @contextlib.asynccontextmanager
    async def _locked(self, key: str):
        entry = self._locks.get(key)
        if entry is None:
            entry = self._locks[key] = _KeyLock()
        entry.users += 1
        try:
            async with entry.lock:
                yield
        finally:
            entry.users -= 1
            if entry.users == 0:
                del self._locks[key]

    def get(self, key: str) -> Tenant | None:
        entry = self._store.get(key)
        if entry is None:
            return None
        tenant, expires_at = entry
        if self._clock() >= expires_at:
            del self._store[key]
            return None
        return tenant

    def put(self, key: str, tenant: Tenant) -> None:
        if self.enabled:
            self._store[key] = (tenant, self._clock() + self.ttl)

    async def get_or_load(
        self, key: str, load: Callable[[], Awaitable[Tenant | None]]
    ) -> Tenant | None:
        """Return the cached tenant or await *load*. Stampede-safe per key."""
        if not self.enabled:
            return await load()
        hit = self.get(key)
        if hit is not None:
            return hit
        async with self._locked(key):
            hit = self.get(key)
            if hit is not None:
                return hit
            tenant = await load()
            if tenant is not None:
                self.put(key, tenant)
            return tenant

    def invalidate(self, *tenants: Tenant | None) -> None:
        """Drop every key that could resolve to any of *tenants*."""
        for tenant in tenants:
            if tenant is None:
                continue
            self._store.pop(id_key(tenant.id), None)
            self._store.pop(slug_key(tenant.slug), None)
            if tenant.domain:
                self._store.pop(domain_key(tenant.domain), None)
        # A stale entry may be keyed by a value the tenant no longer has.
        ids = {t.id for t in tenants if t is not None}
        for key in [k for k, (t, _) in self._store.items() if t.id in ids]:
            del self._store[key]

    def clear(self) -> None:
        self._store.clear()

    def __len__(self) -> int:
        return len(self._store)


__all__ = ["TenantCache", "id_key", "slug_key", "domain_key"]
