"""
tenancy_sdk test configuration.

Every test runs against an isolated in-memory SQLite database (aiosqlite)
or a fresh InMemoryTenantStore. No external services required.
"""
from __future__ import annotations

import os
from datetime import datetime, timezone

import pytest
import pytest_asyncio

# ── Environment ───────────────────────────────────────────────────────────────
# These must be set before any tenancy_sdk modules are imported.

os.environ.setdefault("APP_ENV", "test")
os.environ.setdefault("TENANCY_BASE_DOMAIN", "example.com")
os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite://")
os.environ.setdefault("PLATFORM_LOG_FORMAT", "console")

from sqlalchemy import Column, ForeignKey, Integer, String, Table, Text, Uuid  # noqa: E402
from sqlalchemy.pool import StaticPool  # noqa: E402

from tenancy_sdk.tier0_core.config import get_config  # noqa: E402
from tenancy_sdk.tier0_core.data import (  # noqa: E402
    create_engine,
    create_schema,
    metadata,
    tenant_scoped_table,
)
from tenancy_sdk.tier1_runtime.clock import Clock  # noqa: E402

# Business tables used by the scoped-access and isolation-audit tests.
invoices = tenant_scoped_table(
    "invoices",
    metadata,
    Column("number", String(32), nullable=False),
    Column("amount_cents", Integer, nullable=False),
    Column("memo", Text, nullable=True),
)
line_items = tenant_scoped_table(
    "line_items",
    metadata,
    Column("invoice_id", Uuid, ForeignKey("invoices.id"), nullable=False),
    Column("description", String(128), nullable=False),
)
audit_notes = Table(
    "audit_notes",
    metadata,
    Column("id", Uuid, primary_key=True),
    Column("body", Text),
)

NOW = datetime(2025, 1, 1, 12, 0, 0, tzinfo=timezone.utc)


# ── Fixtures ──────────────────────────────────────────────────────────────────

@pytest.fixture
def config():
    return get_config()


@pytest.fixture
def clock():
    """A clock pinned at NOW."""
    return Clock().freeze(NOW)


@pytest_asyncio.fixture
async def engine():
    """Fresh in-memory database per test, schema created."""
    eng = create_engine(
        url="sqlite+aiosqlite://",
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )
    await create_schema(eng)
    yield eng
    await eng.dispose()


@pytest.fixture
def sql_store(engine, clock):
    from tenancy_sdk.tier3_platform.store import SqlTenantStore
    return SqlTenantStore(engine, clock=clock)


@pytest.fixture
def memory_store(clock):
    from tenancy_sdk.tier3_platform.store import InMemoryTenantStore
    return InMemoryTenantStore(clock=clock)


@pytest.fixture(params=["memory", "sql"])
def store(request, sql_store, memory_store):
    """Run the test against both store backends."""
    return memory_store if request.param == "memory" else sql_store


@pytest.fixture
def cache():
    from tenancy_sdk.tier2_reliability.cache import TenantCache
    return TenantCache(ttl=5.0)


@pytest.fixture
def service(store, config, clock, cache):
    from tenancy_sdk.tier3_platform.tenant_service import TenantService
    return TenantService(store, config=config, clock=clock, cache=cache)


@pytest.fixture
def resolver(store, config, clock, cache):
    from tenancy_sdk.tier3_platform.resolver import TenantResolver
    return TenantResolver(store, config=config, clock=clock, cache=cache)


@pytest.fixture
def scoped(engine, config):
    from tenancy_sdk.tier3_platform.scoped_access import ScopedDataAccess
    return ScopedDataAccess(engine, config=config)


@pytest.fixture
def invoices_table():
    return invoices


@pytest.fixture
def line_items_table():
    return line_items


@pytest.fixture
def unscoped_table():
    return audit_notes
