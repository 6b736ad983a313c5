"""
tenancy_sdk.tier2_reliability.audit
─────────────────────────────────────
Two audit concerns:

  - audit_event(): append-only structured record of tenant lifecycle writes
    (created, plan changed, suspended, …), tagged with the tenant id.
  - audit_isolation(): out-of-band consistency check over tenant-scoped
    tables. Every scoped write stamps the tenant column, so a child row
    must carry the same tenant id as the owner row it references. Rows that
    disagree, or that point at no tenant at all, are reported.

The isolation check reads across tenants by design and therefore runs on
the engine directly; it is an operator tool, never a request-path call.
"""
from __future__ import annotations

import time
import uuid
from dataclasses import dataclass, field
from typing import Any

from sqlalchemy import Table, select
from sqlalchemy.ext.asyncio import AsyncEngine

from tenancy_sdk.tier0_core.config import get_config
from tenancy_sdk.tier0_core.data import tenants, transaction
from tenancy_sdk.tier0_core.errors import UnscopedTableError
from tenancy_sdk.tier0_core.logging import get_logger

log = get_logger("tenancy_sdk.audit")


# ── Audit events ──────────────────────────────────────────────────────────────

@dataclass(frozen=True)
class AuditRecord:
    """Immutable audit record. Never update or delete these."""
    id: str = field(default_factory=lambda: str(uuid.uuid4()))
    timestamp: float = field(default_factory=time.time)
    tenant_id: str = ""
    action: str = ""            # e.g. "tenant.create", "tenant.suspend"
    actor_id: str | None = None
    outcome: str = "success"    # "success" | "failure" | "denied"
    metadata: dict[str, Any] = field(default_factory=dict)


def audit_event(
    tenant_id: uuid.UUID | str,
    action: str,
    *,
    actor_id: str | None = None,
    outcome: str = "success",
    metadata: dict[str, Any] | None = None,
) -> AuditRecord:
    """
    Write an audit record for a tenant lifecycle action.

    Usage:
        audit_event(tenant.id, "tenant.plan_change", metadata={"plan": "starter"})
    """
    record = AuditRecord(
        tenant_id=str(tenant_id),
        action=action,
        actor_id=actor_id,
        outcome=outcome,
        metadata=metadata or {},
    )
    log.info(
        "audit",
        audit_id=record.id,
        tenant_id=record.tenant_id,
        action=record.action,
        actor_id=record.actor_id,
        outcome=record.outcome,
        metadata=record.metadata,
        timestamp=record.timestamp,
    )
    return record


# ── Isolation audit ───────────────────────────────────────────────────────────

@dataclass(frozen=True)
class IsolationViolation:
    table: str
    row_id: Any
    row_tenant_id: Any
    expected_tenant_id: Any
    reason: str                 # "owner_mismatch" | "unknown_tenant"


def _tenant_col(table: Table, name: str):
    column = table.c.get(name)
    if column is None:
        raise UnscopedTableError(f"table {table.name!r} has no {name!r} column")
    return column


async def audit_isolation(
    engine: AsyncEngine,
    child: Table,
    *,
    owner: Table | None = None,
    owner_fk: str | None = None,
    tenant_column: str | None = None,
) -> list[IsolationViolation]:
    """
    Report rows of *child* whose tenant column disagrees with its owner.

    - Always: rows whose tenant id matches no tenant row ("unknown_tenant").
    - With owner/owner_fk: rows whose tenant id differs from the tenant id
      of the owner row referenced by ``child.<owner_fk>`` ("owner_mismatch").
    """
    column_name = tenant_column or get_config().tenant_column
    child_tenant = _tenant_col(child, column_name)
    child_pk = list(child.primary_key.columns)[0]
    violations: list[IsolationViolation] = []

    unknown = (
        select(child_pk, child_tenant)
        .outerjoin(tenants, tenants.c.id == child_tenant)
        .where(tenants.c.id.is_(None))
    )
    async with transaction(engine) as conn:
        for row in await conn.execute(unknown):
            violations.append(IsolationViolation(
                table=child.name,
                row_id=row[0],
                row_tenant_id=row[1],
                expected_tenant_id=None,
                reason="unknown_tenant",
            ))

        if owner is not None and owner_fk is not None:
            owner_tenant = _tenant_col(owner, column_name)
            owner_pk = list(owner.primary_key.columns)[0]
            mismatch = (
                select(child_pk, child_tenant, owner_tenant.label("owner_tenant"))
                .join(owner, owner_pk == child.c[owner_fk])
                .where(child_tenant != owner_tenant)
            )
            for row in await conn.execute(mismatch):
                violations.append(IsolationViolation(
                    table=child.name,
                    row_id=row[0],
                    row_tenant_id=row[1],
                    expected_tenant_id=row[2],
                    reason="owner_mismatch",
                ))

    if violations:
        log.error(
            "isolation.violations_found",
            table=child.name,
            count=len(violations),
            reasons=sorted({v.reason for v in violations}),
        )
    else:
        log.info("isolation.clean", table=child.name)
    return violations


__all__ = ["AuditRecord", "audit_event", "IsolationViolation", "audit_isolation"]
