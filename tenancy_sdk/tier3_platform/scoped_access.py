"""
tenancy_sdk.tier3_platform.scoped_access
──────────────────────────────────────────
Scoped Data Access: the only query path business handlers get to
tenant-scoped tables.

The facade exposes pre-shaped operations, never a raw query entry point:

    find_by_id, list, count, insert, update_where, delete_where

Each statement is built here with SQLAlchemy Core. The tenant predicate
``<tenant_column> = :tenant_id`` is always the first AND term, taken from
the TenantContext and never from caller input. Caller predicates are
structured (column name → value or Cond), bound as parameters, and cannot
carry SQL text. ``insert`` always writes the context's tenant id into the
tenant column, whatever the caller's field map says.

No context, no query: every operation checks the context before it
touches the engine and fails with MissingTenantContext.
"""
from __future__ import annotations

import uuid
from collections.abc import Iterable, Mapping
from dataclasses import dataclass
from typing import Any, Callable

from sqlalchemy import Table, Uuid, and_, delete, func, insert, select, update
from sqlalchemy.ext.asyncio import AsyncEngine
from sqlalchemy.sql import ClauseElement
from sqlalchemy.sql.elements import ColumnElement

from tenancy_sdk.tier0_core.config import TenancyConfig, get_config
from tenancy_sdk.tier0_core.data import transaction
from tenancy_sdk.tier0_core.errors import (
    ConfigurationError,
    MissingTenantContext,
    UnscopedTableError,
    ValidationError,
)
from tenancy_sdk.tier0_core.logging import get_logger
from tenancy_sdk.tier1_runtime.context import TenantContext
from tenancy_sdk.tier1_runtime.deadline import bounded

log = get_logger(__name__)


# ── Predicates ────────────────────────────────────────────────────────────────

_OPS: dict[str, Callable[[ColumnElement, Any], ColumnElement]] = {
    "eq": lambda c, v: c == v,
    "ne": lambda c, v: c != v,
    "lt": lambda c, v: c < v,
    "le": lambda c, v: c <= v,
    "gt": lambda c, v: c > v,
    "ge": lambda c, v: c >= v,
    "in": lambda c, v: c.in_(list(v)),
    "not_in": lambda c, v: c.not_in(list(v)),
    "like": lambda c, v: c.like(v),
    "is_null": lambda c, v: c.is_(None) if v else c.is_not(None),
}


@dataclass(frozen=True)
class Cond:
    """One comparison in a predicate: ``{"amount": Cond("gt", 100)}``."""
    op: str
    value: Any = None

    def __post_init__(self) -> None:
        if self.op not in _OPS:
            raise ValidationError(
                f"unknown predicate op {self.op!r}",
                fields={"op": f"must be one of {sorted(_OPS)}"},
            )


# Column name → plain value (equality) or Cond.
Predicate = Mapping[str, Any]


@dataclass(frozen=True)
class Page:
    limit: int | None = None
    offset: int = 0
    order_by: str | None = None
    descending: bool = False


def _reject_sql(value: Any, column: str) -> None:
    # Values are always bound parameters; SQL constructs would render inline.
    values: Iterable[Any] = value if isinstance(value, (list, tuple, set, frozenset)) else (value,)
    for v in values:
        if isinstance(v, ClauseElement):
            raise ValidationError(
                f"SQL expression passed as a value for {column!r}",
                fields={column: "must be a plain value"},
            )


# ── Facade ────────────────────────────────────────────────────────────────────

class ScopedDataAccess:
    """
    Tenant-scoped CRUD over SQLAlchemy Core tables.

    Usage:
        scoped = ScopedDataAccess(engine)
        await scoped.insert(ctx, invoices, {"number": "INV-1", "amount_cents": 900})
        rows = await scoped.list(ctx, invoices, {"amount_cents": Cond("ge", 500)},
                                 Page(limit=20, order_by="number"))
    """

    def __init__(self, engine: AsyncEngine, *, config: TenancyConfig | None = None) -> None:
        self._engine = engine
        self._config = config or get_config()

    # ── Guards ────────────────────────────────────────────────────────────────

    def _require_context(self, ctx: Any, operation: str, table: Any) -> TenantContext:
        if isinstance(ctx, TenantContext) and ctx.is_issued:
            return ctx
        table_name = getattr(table, "name", repr(table))
        log.critical("scoped.missing_context", operation=operation, table=table_name)
        raise MissingTenantContext(
            f"{operation} on {table_name!r} attempted without a resolved tenant",
            fatal=not self._config.is_production,
        )

    def _tenant_column(self, table: Any) -> ColumnElement:
        if not isinstance(table, Table):
            raise ConfigurationError(f"scoped access needs a sqlalchemy Table, got {type(table).__name__}")
        column = table.c.get(self._config.tenant_column)
        if column is None:
            raise UnscopedTableError(
                f"table {table.name!r} has no {self._config.tenant_column!r} column"
            )
        return column

    def _column(self, table: Table, name: str) -> ColumnElement:
        column = table.c.get(name)
        if column is None:
            raise ValidationError(
                f"unknown column {name!r} on {table.name!r}",
                fields={name: "unknown column"},
            )
        return column

    def _where(self, ctx: TenantContext, table: Table, predicate: Predicate | None) -> ColumnElement:
        terms: list[ColumnElement] = [self._tenant_column(table) == ctx.tenant_id]
        for name, wanted in (predicate or {}).items():
            column = self._column(table, name)
            cond = wanted if isinstance(wanted, Cond) else Cond("eq", wanted)
            _reject_sql(cond.value, name)
            terms.append(_OPS[cond.op](column, cond.value))
        return and_(*terms)

    def _check_fields(self, table: Table, fields: Mapping[str, Any]) -> None:
        for name, value in fields.items():
            self._column(table, name)
            _reject_sql(value, name)

    def _primary_key(self, table: Table) -> ColumnElement:
        pk = list(table.primary_key.columns)
        if len(pk) != 1:
            raise ConfigurationError(f"table {table.name!r} needs a single-column primary key")
        return pk[0]

    # ── Execution ─────────────────────────────────────────────────────────────

    async def _fetch(self, stmt: Any) -> list[dict[str, Any]]:
        async with transaction(self._engine) as conn:
            result = await conn.execute(stmt)
            return [dict(row._mapping) for row in result]

    async def _scalar(self, stmt: Any) -> Any:
        async with transaction(self._engine) as conn:
            return (await conn.execute(stmt)).scalar_one()

    async def _write(self, stmt: Any) -> int:
        async with transaction(self._engine) as conn:
            return (await conn.execute(stmt)).rowcount

    # ── Operations ────────────────────────────────────────────────────────────

    async def find_by_id(self, ctx: TenantContext, table: Table, id: Any) -> dict[str, Any] | None:
        ctx = self._require_context(ctx, "find_by_id", table)
        where = self._where(ctx, table, None)
        pk = self._primary_key(table)
        _reject_sql(id, pk.name)
        stmt = select(table).where(where, pk == id).limit(1)
        rows = await bounded(self._fetch(stmt), ctx.deadline, operation="scoped.find_by_id")
        return rows[0] if rows else None

    async def list(
        self,
        ctx: TenantContext,
        table: Table,
        predicate: Predicate | None = None,
        page: Page | None = None,
    ) -> list[dict[str, Any]]:
        ctx = self._require_context(ctx, "list", table)
        page = page or Page()
        stmt = select(table).where(self._where(ctx, table, predicate))

        order_col = self._column(table, page.order_by) if page.order_by else self._primary_key(table)
        stmt = stmt.order_by(order_col.desc() if page.descending else order_col.asc())

        limit = page.limit or self._config.default_page_size
        limit = max(1, min(limit, self._config.max_page_size))
        stmt = stmt.limit(limit).offset(max(page.offset, 0))

        return await bounded(self._fetch(stmt), ctx.deadline, operation="scoped.list")

    async def count(self, ctx: TenantContext, table: Table, predicate: Predicate | None = None) -> int:
        ctx = self._require_context(ctx, "count", table)
        stmt = select(func.count()).select_from(table).where(self._where(ctx, table, predicate))
        return int(await bounded(self._scalar(stmt), ctx.deadline, operation="scoped.count"))

    async def insert(self, ctx: TenantContext, table: Table, fields: Mapping[str, Any]) -> dict[str, Any]:
        ctx = self._require_context(ctx, "insert", table)
        tenant_column = self._tenant_column(table)
        self._check_fields(table, fields)

        values = dict(fields)
        supplied = values.get(tenant_column.name)
        if supplied is not None and supplied != ctx.tenant_id:
            log.warning(
                "scoped.tenant_override_ignored",
                table=table.name,
                tenant_id=str(ctx.tenant_id),
            )
        values[tenant_column.name] = ctx.tenant_id

        pk = self._primary_key(table)
        if values.get(pk.name) is None and isinstance(pk.type, Uuid):
            values[pk.name] = uuid.uuid4()

        await bounded(self._write(insert(table).values(**values)), ctx.deadline, operation="scoped.insert")
        log.debug("scoped.insert", table=table.name, tenant_id=str(ctx.tenant_id))
        return values

    async def update_where(
        self,
        ctx: TenantContext,
        table: Table,
        predicate: Predicate,
        fields: Mapping[str, Any],
    ) -> int:
        ctx = self._require_context(ctx, "update_where", table)
        tenant_column = self._tenant_column(table)
        if not predicate:
            raise ValidationError("update_where needs a non-empty predicate")
        if not fields:
            raise ValidationError("update_where needs at least one field")
        if tenant_column.name in fields:
            raise ValidationError(
                "rows cannot be moved between tenants",
                fields={tenant_column.name: "read-only"},
            )
        self._check_fields(table, fields)

        stmt = update(table).where(self._where(ctx, table, predicate)).values(**dict(fields))
        rows = await bounded(self._write(stmt), ctx.deadline, operation="scoped.update_where")
        log.debug("scoped.update", table=table.name, tenant_id=str(ctx.tenant_id), rows=rows)
        return rows

    async def delete_where(self, ctx: TenantContext, table: Table, predicate: Predicate) -> int:
        ctx = self._require_context(ctx, "delete_where", table)
        if not predicate:
            raise ValidationError("delete_where needs a non-empty predicate")

        stmt = delete(table).where(self._where(ctx, table, predicate))
        rows = await bounded(self._write(stmt), ctx.deadline, operation="scoped.delete_where")
        log.debug("scoped.delete", table=table.name, tenant_id=str(ctx.tenant_id), rows=rows)
        return rows


__all__ = ["ScopedDataAccess", "Cond", "Page", "Predicate"]
