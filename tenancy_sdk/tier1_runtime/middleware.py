"""
tenancy_sdk.tier1_runtime.middleware
──────────────────────────────────────
ASGI middleware that resolves the tenant at the request boundary, binds the
TenantContext for the request's lifetime and rejects unresolvable requests
before any handler runs.

Supports: FastAPI / Starlette, or any plain ASGI app.
"""
from __future__ import annotations

import json
import time
import uuid
from typing import Any

from tenancy_sdk.tier0_core.config import TenancyConfig, get_config
from tenancy_sdk.tier0_core.errors import DeadlineExceeded, ResolutionError, TenancyError
from tenancy_sdk.tier0_core.logging import get_logger
from tenancy_sdk.tier1_runtime.context import bind_tenant, unbind_tenant
from tenancy_sdk.tier1_runtime.deadline import deadline_in

log = get_logger(__name__)


class TenantASGIMiddleware:
    """
    Resolve → bind → call app → unbind, for every HTTP request.

    Usage (FastAPI / Starlette)::

        from tenancy_sdk import TenantASGIMiddleware
        app.add_middleware(TenantASGIMiddleware, resolver=resolver)

    With ``optional=True`` a request with no tenant header whose host is
    absent, the bare base domain or a reserved subdomain passes through
    unbound (health checks, the marketing site). Any other request that
    fails to resolve is still rejected.
    """

    def __init__(
        self,
        app: Any,
        resolver: Any,
        *,
        config: TenancyConfig | None = None,
        optional: bool = False,
        timeout: float | None = None,
    ) -> None:
        self.app = app
        self.resolver = resolver
        self.config = config or get_config()
        self.optional = optional
        self.timeout = timeout

    def _signals(self, scope: dict):
        from tenancy_sdk.tier3_platform.resolver import TenantSignals

        headers = {
            k.decode("latin-1"): v.decode("latin-1")
            for k, v in scope.get("headers", [])
        }
        return TenantSignals.from_headers(headers, self.config), headers

    def _untargeted(self, signals: Any) -> bool:
        if signals.tenant_id or signals.tenant_slug:
            return False
        host = signals.host
        base = self.config.base_domain
        if host is None or host == base:
            return True
        label = host[: -len(base) - 1] if host.endswith(f".{base}") else None
        return label in self.config.reserved_subdomains

    async def __call__(self, scope: dict, receive: Any, send: Any) -> None:
        if scope["type"] != "http":
            await self.app(scope, receive, send)
            return

        signals, headers = self._signals(scope)
        request_id = (
            headers.get("x-request-id")
            or headers.get("x-correlation-id")
            or str(uuid.uuid4())
        )

        if self.optional and self._untargeted(signals):
            await self.app(scope, receive, send)
            return

        deadline = deadline_in(self.timeout) if self.timeout is not None else None
        try:
            ctx = await self.resolver.resolve(signals, request_id=request_id, deadline=deadline)
        except (ResolutionError, DeadlineExceeded) as exc:
            await _reject(send, exc)
            return

        token = bind_tenant(ctx)
        start = time.perf_counter()
        try:
            await self.app(scope, receive, send)
        finally:
            duration_ms = (time.perf_counter() - start) * 1000
            log.info(
                "request_completed",
                duration_ms=round(duration_ms, 2),
                path=scope.get("path", ""),
                method=scope.get("method", ""),
            )
            unbind_tenant(token)


async def _reject(send: Any, exc: TenancyError) -> None:
    body = json.dumps(exc.to_dict()).encode()
    await send({
        "type": "http.response.start",
        "status": exc.status_code,
        "headers": [
            (b"content-type", b"application/json"),
            (b"content-length", str(len(body)).encode()),
        ],
    })
    await send({"type": "http.response.body", "body": body})


__all__ = ["TenantASGIMiddleware"]
