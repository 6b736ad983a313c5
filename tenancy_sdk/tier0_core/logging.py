"""
tenancy_sdk.tier0_core.logging
────────────────────────────────
Structured logs for resolution, scoped access and lifecycle writes.

Every line carries the request's tenant_id and request_id once the context
binder has run. Billing references, tenant CSS and credentials are masked
at any depth, including inside audit metadata. Tenant signals copied from
the request (slug, host) are clipped so a hostile header cannot bloat the
log stream.

Stack: structlog over stdlib logging, rendered to stdout.
Configure via: PLATFORM_LOG_LEVEL, PLATFORM_LOG_FORMAT=json|console
"""
from __future__ import annotations

import logging
import sys
from typing import Any

import structlog

from tenancy_sdk.tier0_core.config import TenancyConfig, get_config

_HANDLER_NAME = "tenancy_sdk"


# ── Processors ────────────────────────────────────────────────────────────────

_SENSITIVE = frozenset({
    "password", "secret", "token", "api_key", "authorization",
    "external_billing_ref", "custom_css",
})
_MASK = "[REDACTED]"

# Request-supplied values; DNS names never exceed 253 characters.
_CLIPPED = frozenset({"host", "slug", "tenant_slug", "domain"})
_CLIP_AT = 253


def _mask(value: Any) -> Any:
    if isinstance(value, dict):
        return {
            k: _MASK if str(k).lower() in _SENSITIVE else _mask(v)
            for k, v in value.items()
        }
    if isinstance(value, (list, tuple)):
        return type(value)(_mask(v) for v in value)
    return value


def redact(logger: Any, method: str, event_dict: dict) -> dict:
    """Mask sensitive keys in the event and in any nested mapping."""
    return _mask(event_dict)


def clip_signals(logger: Any, method: str, event_dict: dict) -> dict:
    for key in _CLIPPED & event_dict.keys():
        value = event_dict[key]
        if isinstance(value, str) and len(value) > _CLIP_AT:
            event_dict[key] = value[:_CLIP_AT] + "…"
    return event_dict


# ── Configuration ─────────────────────────────────────────────────────────────

def configure_logging(config: TenancyConfig | None = None) -> None:
    """
    Install the structlog pipeline and the stdout handler. Safe to call
    again: the previous tenancy handler is replaced, never duplicated.
    """
    config = config or get_config()
    level = logging.getLevelName(config.log_level.upper())
    if not isinstance(level, int):
        level = logging.INFO

    pre_chain: list[Any] = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_log_level,
        structlog.stdlib.add_logger_name,
        structlog.processors.TimeStamper(fmt="iso", utc=True),
        clip_signals,
        redact,
    ]
    if config.log_format.lower() == "console":
        renderer: Any = structlog.dev.ConsoleRenderer()
    else:
        pre_chain.append(structlog.processors.format_exc_info)
        renderer = structlog.processors.JSONRenderer()

    structlog.configure(
        processors=[*pre_chain, structlog.stdlib.ProcessorFormatter.wrap_for_formatter],
        wrapper_class=structlog.make_filtering_bound_logger(level),
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )

    handler = logging.StreamHandler(sys.stdout)
    handler.set_name(_HANDLER_NAME)
    handler.setFormatter(structlog.stdlib.ProcessorFormatter(
        foreign_pre_chain=pre_chain,
        processors=[structlog.stdlib.ProcessorFormatter.remove_processors_meta, renderer],
    ))

    root = logging.getLogger()
    for old in [h for h in root.handlers if h.get_name() == _HANDLER_NAME]:
        root.removeHandler(old)
    root.addHandler(handler)
    root.setLevel(level)


# ── Public API ────────────────────────────────────────────────────────────────

_configured = False


def get_logger(name: str | None = None) -> structlog.stdlib.BoundLogger:
    """
    Return a structured logger, configuring the pipeline on first use.

    Usage:
        log = get_logger(__name__)
        log.info("tenant.resolved", tenant_id=str(ctx.tenant_id), via="slug")
        log.critical("scoped.missing_context", operation="list", table="invoices")
    """
    global _configured
    if not _configured:
        configure_logging()
        _configured = True
    return structlog.get_logger(name or __name__)


def bind_context(**kwargs: Any) -> None:
    """Tag every later log line in this task with *kwargs*."""
    structlog.contextvars.bind_contextvars(**kwargs)


def unbind_context(*keys: str) -> None:
    structlog.contextvars.unbind_contextvars(*keys)


__all__ = ["get_logger", "configure_logging", "bind_context", "unbind_context", "redact", "clip_signals"]
