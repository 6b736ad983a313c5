"""
tenancy_sdk.tier1_runtime.retry
─────────────────────────────────
Caller-side retry for optimistic-concurrency losers. The wrapped callable
must re-read the tenant on every attempt; retrying a write built from a
stale read would just lose again.

Backed by Tenacity. Only errors flagged ``retryable`` are retried; every
other error, and the final conflict, propagates unchanged.

Usage:
    @retry_on_conflict(max_attempts=5)
    async def upgrade(tenant_id):
        return await service.change_plan(tenant_id, Plan.PROFESSIONAL)
"""
from __future__ import annotations

import functools
from collections.abc import Awaitable, Callable
from typing import Any, TypeVar

from tenacity import (
    AsyncRetrying,
    retry_if_exception,
    stop_after_attempt,
    wait_exponential,
    wait_random,
)

from tenancy_sdk.tier0_core.errors import TenancyError
from tenancy_sdk.tier0_core.logging import get_logger

log = get_logger(__name__)

F = TypeVar("F", bound=Callable[..., Awaitable[Any]])


def _is_retryable(exc: BaseException) -> bool:
    return isinstance(exc, TenancyError) and exc.retryable


def _log_retry(retry_state: Any) -> None:
    exc = retry_state.outcome.exception() if retry_state.outcome else None
    log.warning(
        "tenant.write_conflict_retry",
        attempt=retry_state.attempt_number,
        error_code=getattr(exc, "code", None),
    )


def retry_on_conflict(
    max_attempts: int = 3,
    min_wait: float = 0.05,
    max_wait: float = 1.0,
    jitter: float = 0.05,
) -> Callable[[F], F]:
    """
    Decorator applying exponential backoff with jitter to retryable
    tenancy errors (ConcurrentUpdateConflict).

    Args:
        max_attempts: Total number of attempts (including first).
        min_wait:     Minimum wait seconds between retries.
        max_wait:     Maximum wait seconds between retries.
        jitter:       Maximum random seconds added to each wait.
    """
    def decorator(fn: F) -> F:
        @functools.wraps(fn)
        async def wrapper(*args: Any, **kwargs: Any) -> Any:
            async for attempt in AsyncRetrying(
                stop=stop_after_attempt(max_attempts),
                wait=(
                    wait_exponential(multiplier=min_wait, min=min_wait, max=max_wait)
                    + wait_random(0, jitter)
                ),
                retry=retry_if_exception(_is_retryable),
                before_sleep=_log_retry,
                reraise=True,
            ):
                with attempt:
                    return await fn(*args, **kwargs)

        return wrapper  # type: ignore[return-value]
    return decorator


__all__ = ["retry_on_conflict"]
