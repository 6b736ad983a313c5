"""
tenancy_sdk.tier1_runtime.deadline
────────────────────────────────────
Request-scoped deadlines. A deadline is an absolute ``time.monotonic()``
value; storage calls made on behalf of a request run under it and are
cancelled, not left to finish, once it passes.

Usage:
    deadline = deadline_in(2.0)
    row = await bounded(conn_call(), deadline, operation="scoped.list")
"""
from __future__ import annotations

import asyncio
import time
from collections.abc import Awaitable
from typing import TypeVar

from tenancy_sdk.tier0_core.errors import DeadlineExceeded

T = TypeVar("T")


def deadline_in(seconds: float) -> float:
    """Return an absolute deadline *seconds* from now."""
    return time.monotonic() + seconds


def remaining(deadline: float | None) -> float | None:
    """Seconds left before *deadline*, or None when there is no deadline."""
    if deadline is None:
        return None
    return deadline - time.monotonic()


async def bounded(
    aw: Awaitable[T],
    deadline: float | None,
    *,
    operation: str = "storage",
) -> T:
    """
    Await *aw* under *deadline*. The awaitable is cancelled when the
    deadline passes and DeadlineExceeded is raised. Caller cancellation
    propagates unchanged.
    """
    left = remaining(deadline)
    if left is None:
        return await aw
    if left <= 0:
        # Never start a storage call for a request that is already out of time.
        if asyncio.iscoroutine(aw):
            aw.close()
        raise DeadlineExceeded(f"{operation}: deadline passed before the call started")
    try:
        return await asyncio.wait_for(aw, timeout=left)
    except asyncio.TimeoutError as exc:
        raise DeadlineExceeded(f"{operation}: deadline exceeded") from exc


__all__ = ["deadline_in", "remaining", "bounded"]
