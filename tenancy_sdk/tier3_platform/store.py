"""
tenancy_sdk.tier3_platform.store
──────────────────────────────────
Tenant Store: durable CRUD over the ``tenants`` table, no business rules.

Every read excludes soft-deleted rows. ``update`` is a full-record replace
guarded by the ``version`` column: the write only lands if the stored
version still equals the version the caller read, so a concurrent writer
loses with ConcurrentUpdateConflict instead of silently overwriting.

Backends:
  - SqlTenantStore:      SQLAlchemy async Core (Postgres in prod, SQLite in tests)
  - InMemoryTenantStore: explicit per-instance store with its own lock; for
                         tests and local dev, never a process-wide singleton
"""
from __future__ import annotations

import asyncio
import dataclasses
import uuid
from datetime import datetime
from typing import Any, Protocol, runtime_checkable

from sqlalchemy import insert, or_, select, update
from sqlalchemy.engine import Row
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncEngine

from tenancy_sdk.tier0_core.data import DOMAIN_INDEX, SLUG_INDEX, tenants, transaction
from tenancy_sdk.tier0_core.errors import (
    ConcurrentUpdateConflict,
    DuplicateDomainError,
    DuplicateSlugError,
    TenantNotFound,
)
from tenancy_sdk.tier0_core.logging import get_logger
from tenancy_sdk.tier0_core.models import (
    Subscription,
    Tenant,
    TenantSettings,
    TenantStatus,
)
from tenancy_sdk.tier1_runtime.clock import Clock, get_clock

log = get_logger(__name__)


# ── Protocol ──────────────────────────────────────────────────────────────────

@runtime_checkable
class TenantStore(Protocol):
    """Implement this protocol to add a new tenant persistence backend."""

    async def get_by_id(self, tenant_id: uuid.UUID) -> Tenant | None: ...

    async def get_by_slug(self, slug: str) -> Tenant | None: ...

    async def get_by_domain(self, domain: str) -> Tenant | None: ...

    async def create(self, tenant: Tenant) -> Tenant:
        """Persist a new tenant. Raises DuplicateSlugError / DuplicateDomainError."""
        ...

    async def update(self, tenant: Tenant) -> Tenant:
        """Replace the stored record if its version still matches *tenant.version*."""
        ...

    async def soft_delete(self, tenant_id: uuid.UUID) -> None: ...

    async def list_expired_trials(self, now: datetime) -> list[Tenant]: ...


# ── Row mapping ───────────────────────────────────────────────────────────────

def _to_row(tenant: Tenant) -> dict[str, Any]:
    return {
        "id": tenant.id,
        "name": tenant.name,
        "slug": tenant.slug,
        "domain": tenant.domain,
        "status": tenant.status.value,
        "settings": tenant.settings.to_json(),
        "subscription": tenant.subscription.to_json(),
        "trial_ends_at": tenant.trial_ends_at,
        "suspended_at": tenant.suspended_at,
        "suspend_reason": tenant.suspend_reason,
        "created_at": tenant.created_at,
        "updated_at": tenant.updated_at,
        "deleted_at": tenant.deleted_at,
        "version": tenant.version,
    }


def _from_row(row: Row) -> Tenant:
    m = row._mapping
    return Tenant(
        id=m["id"],
        name=m["name"],
        slug=m["slug"],
        domain=m["domain"],
        status=TenantStatus(m["status"]),
        settings=TenantSettings.from_json(m["settings"]),
        subscription=Subscription.from_json(m["subscription"]),
        trial_ends_at=m["trial_ends_at"],
        suspended_at=m["suspended_at"],
        suspend_reason=m["suspend_reason"],
        created_at=m["created_at"],
        updated_at=m["updated_at"],
        deleted_at=m["deleted_at"],
        version=m["version"],
    )


def _violated_identifier(exc: IntegrityError) -> str:
    # Only the driver's headline names the constraint. Postgres appends a
    # DETAIL line quoting the duplicate value, which must not be matched.
    orig = exc.orig
    for source in (getattr(orig, "diag", None), getattr(orig, "__cause__", None)):
        name = getattr(source, "constraint_name", None)
        if name:
            return name
    lines = str(orig).strip().splitlines()
    return lines[0] if lines else ""


def _duplicate_error(exc: IntegrityError, tenant: Tenant) -> Exception | None:
    """Map a unique-index violation to the typed duplicate error, if it is one."""
    # SQLite reports the column ("tenants.slug"), Postgres the index name.
    headline = _violated_identifier(exc)
    if SLUG_INDEX in headline or "tenants.slug" in headline:
        return DuplicateSlugError(f"slug {tenant.slug!r} already taken", slug=tenant.slug)
    if DOMAIN_INDEX in headline or "tenants.domain" in headline:
        return DuplicateDomainError(f"domain {tenant.domain!r} already in use", domain=tenant.domain)
    return None


# ── SQL backend ───────────────────────────────────────────────────────────────

class SqlTenantStore:
    """Tenant store over SQLAlchemy async Core."""

    def __init__(self, engine: AsyncEngine, *, clock: Clock | None = None) -> None:
        self._engine = engine
        self._clock = clock or get_clock()

    async def _get_one(self, *criteria: Any) -> Tenant | None:
        stmt = select(tenants).where(tenants.c.deleted_at.is_(None), *criteria)
        async with transaction(self._engine) as conn:
            row = (await conn.execute(stmt)).first()
        return _from_row(row) if row is not None else None

    async def get_by_id(self, tenant_id: uuid.UUID) -> Tenant | None:
        return await self._get_one(tenants.c.id == tenant_id)

    async def get_by_slug(self, slug: str) -> Tenant | None:
        return await self._get_one(tenants.c.slug == slug)

    async def get_by_domain(self, domain: str) -> Tenant | None:
        return await self._get_one(tenants.c.domain == domain)

    async def create(self, tenant: Tenant) -> Tenant:
        try:
            async with transaction(self._engine) as conn:
                await conn.execute(insert(tenants).values(**_to_row(tenant)))
        except IntegrityError as exc:
            typed = _duplicate_error(exc, tenant)
            if typed is None:
                raise
            raise typed from exc
        log.info("tenant.stored", tenant_id=str(tenant.id), slug=tenant.slug)
        return tenant

    async def update(self, tenant: Tenant) -> Tenant:
        now = self._clock.now()
        values = _to_row(tenant)
        for key in ("id", "created_at", "deleted_at"):
            values.pop(key)
        values.update(updated_at=now, version=tenant.version + 1)

        stmt = (
            update(tenants)
            .where(
                tenants.c.id == tenant.id,
                tenants.c.version == tenant.version,
                tenants.c.deleted_at.is_(None),
            )
            .values(**values)
        )
        try:
            async with transaction(self._engine) as conn:
                result = await conn.execute(stmt)
                if result.rowcount == 0:
                    current = (await conn.execute(
                        select(tenants.c.version).where(
                            tenants.c.id == tenant.id, tenants.c.deleted_at.is_(None)
                        )
                    )).first()
                    if current is None:
                        raise TenantNotFound(f"tenant {tenant.id} not found")
                    raise ConcurrentUpdateConflict(
                        f"tenant {tenant.id} is at version {current.version}, "
                        f"write was based on {tenant.version}",
                        tenant_id=str(tenant.id),
                    )
        except IntegrityError as exc:
            typed = _duplicate_error(exc, tenant)
            if typed is None:
                raise
            raise typed from exc
        return dataclasses.replace(tenant, updated_at=now, version=tenant.version + 1)

    async def soft_delete(self, tenant_id: uuid.UUID) -> None:
        now = self._clock.now()
        stmt = (
            update(tenants)
            .where(tenants.c.id == tenant_id, tenants.c.deleted_at.is_(None))
            .values(deleted_at=now, updated_at=now, version=tenants.c.version + 1)
        )
        async with transaction(self._engine) as conn:
            result = await conn.execute(stmt)
        if result.rowcount == 0:
            raise TenantNotFound(f"tenant {tenant_id} not found")

    async def list_expired_trials(self, now: datetime) -> list[Tenant]:
        stmt = select(tenants).where(
            tenants.c.deleted_at.is_(None),
            tenants.c.status == TenantStatus.TRIAL.value,
            or_(tenants.c.trial_ends_at.is_(None), tenants.c.trial_ends_at <= now),
        )
        async with transaction(self._engine) as conn:
            rows = (await conn.execute(stmt)).all()
        return [_from_row(r) for r in rows]


# ── In-memory backend ─────────────────────────────────────────────────────────

class InMemoryTenantStore:
    """
    Dict-backed store with the same contract as SqlTenantStore. Construct
    one per test; instances share nothing.
    """

    def __init__(self, *, clock: Clock | None = None) -> None:
        self._clock = clock or get_clock()
        self._lock = asyncio.Lock()
        self._rows: dict[uuid.UUID, Tenant] = {}

    def _live(self) -> list[Tenant]:
        return [t for t in self._rows.values() if t.deleted_at is None]

    def _check_unique(self, tenant: Tenant) -> None:
        for other in self._live():
            if other.id == tenant.id:
                continue
            if other.slug == tenant.slug:
                raise DuplicateSlugError(f"slug {tenant.slug!r} already taken", slug=tenant.slug)
            if tenant.domain is not None and other.domain == tenant.domain:
                raise DuplicateDomainError(
                    f"domain {tenant.domain!r} already in use", domain=tenant.domain
                )

    async def get_by_id(self, tenant_id: uuid.UUID) -> Tenant | None:
        async with self._lock:
            t = self._rows.get(tenant_id)
            return t if t is not None and t.deleted_at is None else None

    async def get_by_slug(self, slug: str) -> Tenant | None:
        async with self._lock:
            return next((t for t in self._live() if t.slug == slug), None)

    async def get_by_domain(self, domain: str) -> Tenant | None:
        async with self._lock:
            return next((t for t in self._live() if t.domain == domain), None)

    async def create(self, tenant: Tenant) -> Tenant:
        async with self._lock:
            if tenant.id in self._rows:
                raise ValueError(f"tenant id {tenant.id} already exists")
            self._check_unique(tenant)
            self._rows[tenant.id] = tenant
            return tenant

    async def update(self, tenant: Tenant) -> Tenant:
        async with self._lock:
            current = self._rows.get(tenant.id)
            if current is None or current.deleted_at is not None:
                raise TenantNotFound(f"tenant {tenant.id} not found")
            if current.version != tenant.version:
                raise ConcurrentUpdateConflict(
                    f"tenant {tenant.id} is at version {current.version}, "
                    f"write was based on {tenant.version}",
                    tenant_id=str(tenant.id),
                )
            self._check_unique(tenant)
            stored = dataclasses.replace(
                tenant,
                created_at=current.created_at,
                deleted_at=None,
                updated_at=self._clock.now(),
                version=tenant.version + 1,
            )
            self._rows[tenant.id] = stored
            return stored

    async def soft_delete(self, tenant_id: uuid.UUID) -> None:
        async with self._lock:
            current = self._rows.get(tenant_id)
            if current is None or current.deleted_at is not None:
                raise TenantNotFound(f"tenant {tenant_id} not found")
            now = self._clock.now()
            self._rows[tenant_id] = dataclasses.replace(
                current, deleted_at=now, updated_at=now, version=current.version + 1
            )

    async def list_expired_trials(self, now: datetime) -> list[Tenant]:
        async with self._lock:
            return [
                t for t in self._live()
                if t.status is TenantStatus.TRIAL
                and (t.trial_ends_at is None or t.trial_ends_at <= now)
            ]


__all__ = ["TenantStore", "SqlTenantStore", "InMemoryTenantStore"]
