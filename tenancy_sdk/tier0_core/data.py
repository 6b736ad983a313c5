"""
tenancy_sdk.tier0_core.data
─────────────────────────────
DB connection lifecycle, transaction boundaries, and the table definitions
the tenancy core reads and writes: the ``tenants`` table and the helper that
declares tenant-scoped business tables.

Minimal stack: SQLAlchemy 2.x async (Core) + aiosqlite for local/test
Configure via: DATABASE_URL
"""
from __future__ import annotations

from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import Any

from sqlalchemy import (
    JSON,
    Column,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    MetaData,
    String,
    Table,
    Text,
    TypeDecorator,
    Uuid,
)
from sqlalchemy.ext.asyncio import (
    AsyncConnection,
    AsyncEngine,
    create_async_engine,
)

from tenancy_sdk.tier0_core.config import TenancyConfig, get_config


# ── Column types ──────────────────────────────────────────────────────────────

class UTCDateTime(TypeDecorator):
    """Timezone-aware UTC datetimes on every backend (SQLite drops tzinfo)."""

    impl = DateTime(timezone=True)
    cache_ok = True

    def process_bind_param(self, value: datetime | None, dialect: Any) -> datetime | None:
        if value is None:
            return None
        if value.tzinfo is None:
            raise ValueError("naive datetime passed to a UTC column")
        return value.astimezone(timezone.utc)

    def process_result_value(self, value: datetime | None, dialect: Any) -> datetime | None:
        if value is None:
            return None
        if value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value.astimezone(timezone.utc)


# ── Schema ────────────────────────────────────────────────────────────────────

metadata = MetaData()

tenants = Table(
    "tenants",
    metadata,
    Column("id", Uuid, primary_key=True),
    Column("name", String(255), nullable=False),
    Column("slug", String(63), nullable=False),
    Column("domain", String(253), nullable=True),
    Column("status", String(16), nullable=False),
    Column("settings", JSON, nullable=False),
    Column("subscription", JSON, nullable=False),
    Column("trial_ends_at", UTCDateTime, nullable=True),
    Column("suspended_at", UTCDateTime, nullable=True),
    Column("suspend_reason", Text, nullable=True),
    Column("created_at", UTCDateTime, nullable=False),
    Column("updated_at", UTCDateTime, nullable=False),
    Column("deleted_at", UTCDateTime, nullable=True),
    Column("version", Integer, nullable=False, default=1),
)

# Uniqueness holds among live rows only, so a soft-deleted slug can be reused.
SLUG_INDEX = "uq_tenants_slug_live"
DOMAIN_INDEX = "uq_tenants_domain_live"

Index(
    SLUG_INDEX,
    tenants.c.slug,
    unique=True,
    sqlite_where=tenants.c.deleted_at.is_(None),
    postgresql_where=tenants.c.deleted_at.is_(None),
)
Index(
    DOMAIN_INDEX,
    tenants.c.domain,
    unique=True,
    sqlite_where=tenants.c.deleted_at.is_(None) & tenants.c.domain.isnot(None),
    postgresql_where=tenants.c.deleted_at.is_(None) & tenants.c.domain.isnot(None),
)
Index("ix_tenants_status_trial_ends_at", tenants.c.status, tenants.c.trial_ends_at)


def tenant_scoped_table(
    name: str,
    meta: MetaData,
    *columns: Column,
    tenant_column: str | None = None,
) -> Table:
    """
    Declare a business table that carries a tenant column.

    Usage:
        invoices = tenant_scoped_table(
            "invoices", metadata,
            Column("number", String(32), nullable=False),
            Column("amount_cents", Integer, nullable=False),
        )
    """
    column_name = tenant_column or get_config().tenant_column
    # The foreign key is only declared when tenants lives on the same metadata.
    fk = (ForeignKey("tenants.id"),) if "tenants" in meta.tables else ()
    return Table(
        name,
        meta,
        Column("id", Uuid, primary_key=True),
        Column(column_name, Uuid, *fk, nullable=False, index=True),
        *columns,
    )


# ── Engine / connections ──────────────────────────────────────────────────────

_engine: AsyncEngine | None = None


def create_engine(config: TenancyConfig | None = None, **overrides: Any) -> AsyncEngine:
    """Build a new async engine from config. Callers own its lifecycle."""
    config = config or get_config()
    url = overrides.pop("url", config.database_url)
    kwargs: dict[str, Any] = {"echo": config.database_echo}

    # SQLite doesn't support pool settings
    if not url.startswith("sqlite"):
        kwargs["pool_size"] = config.database_pool_size
        kwargs["max_overflow"] = config.database_max_overflow

    kwargs.update(overrides)
    return create_async_engine(url, **kwargs)


def get_engine() -> AsyncEngine:
    """Return the process-wide async engine. Created on first call."""
    global _engine
    if _engine is None:
        _engine = create_engine()
    return _engine


@asynccontextmanager
async def transaction(engine: AsyncEngine) -> AsyncGenerator[AsyncConnection, None]:
    """
    Async context manager that yields a connection inside a transaction.
    Commits on clean exit, rolls back on exception (including cancellation),
    always releases the connection.

    Usage:
        async with transaction(engine) as conn:
            row = (await conn.execute(select(tenants).where(...))).first()
    """
    async with engine.connect() as conn:
        await conn.begin()
        try:
            yield conn
            await conn.commit()
        except BaseException:
            await conn.rollback()
            raise


async def create_schema(engine: AsyncEngine, meta: MetaData = metadata) -> None:
    """Create all tables on *meta* (dev/test; production uses migrations)."""
    async with engine.begin() as conn:
        await conn.run_sync(meta.create_all)


async def dispose_engine() -> None:
    """Dispose the engine. Call on application shutdown."""
    global _engine
    if _engine is not None:
        await _engine.dispose()
        _engine = None


def _reset() -> None:
    """For tests: reset the engine."""
    global _engine
    _engine = None


__all__ = [
    "metadata", "tenants", "tenant_scoped_table", "UTCDateTime",
    "create_engine", "get_engine", "transaction", "create_schema", "dispose_engine",
]
