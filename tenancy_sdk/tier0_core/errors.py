"""
tenancy_sdk.tier0_core.errors
───────────────────────────────
Error taxonomy for tenant resolution, scoped data access and tenant
lifecycle writes. Every error carries a stable code, a user-safe message,
an internal detail string and the HTTP status a boundary adapter should map
it to.

Resolution failures all share one user-facing message so a rejection never
reveals more about a tenant than the typed code already does.
"""
from __future__ import annotations

from typing import Any


# ── Base error ────────────────────────────────────────────────────────────────

class TenancyError(Exception):
    """
    Base class for all tenancy errors. Every error has:
    - code: stable machine-readable string (snake_case)
    - user_message: safe to surface to end users
    - detail: internal context, never shown to users
    - status_code: HTTP status code for API responses
    """

    status_code: int = 500
    code: str = "internal_error"
    retryable: bool = False
    default_message: str = "An unexpected error occurred."

    def __init__(
        self,
        detail: str | None = None,
        *,
        code: str | None = None,
        user_message: str | None = None,
        **metadata: Any,
    ) -> None:
        self.code = code or self.__class__.code
        self.user_message = user_message or self.__class__.default_message
        self.detail = detail or self.user_message
        self.metadata = metadata
        super().__init__(self.detail)

    def to_dict(self) -> dict:
        return {
            "error": {
                "code": self.code,
                "message": self.user_message,
            }
        }


# ── Generic parents ───────────────────────────────────────────────────────────

class NotFoundError(TenancyError):
    """Requested resource does not exist."""
    status_code = 404
    code = "not_found"
    default_message = "The requested resource was not found."


class ForbiddenError(TenancyError):
    """Caller is known but not allowed to proceed."""
    status_code = 403
    code = "forbidden"
    default_message = "Access denied."


class PaymentRequiredError(TenancyError):
    status_code = 402
    code = "payment_required"
    default_message = "A subscription change is required."


class ConflictError(TenancyError):
    """Resource state conflict (e.g., duplicate creation)."""
    status_code = 409
    code = "conflict"
    default_message = "The resource was modified or already exists."


class ValidationError(TenancyError):
    """Input validation failure."""
    status_code = 422
    code = "validation_error"
    default_message = "Validation failed."

    def __init__(
        self,
        detail: str | None = None,
        *,
        fields: dict | None = None,
        **kwargs: Any,
    ) -> None:
        self.fields = fields or {}
        super().__init__(detail, **kwargs)

    def to_dict(self) -> dict:
        d = super().to_dict()
        if self.fields:
            d["error"]["fields"] = self.fields
        return d


class ConfigurationError(TenancyError):
    """Misconfiguration detected at startup or at a call site."""
    status_code = 500
    code = "configuration_error"


class DeadlineExceeded(TenancyError):
    """The request-scoped deadline passed before a storage call finished."""
    status_code = 504
    code = "deadline_exceeded"
    default_message = "The request took too long."


# ── Resolution failures ───────────────────────────────────────────────────────

_UNAVAILABLE = "Tenant unavailable."


class ResolutionError(TenancyError):
    """Terminal for the request: no retry, no fallback tenant."""
    default_message = _UNAVAILABLE


class TenantNotFound(ResolutionError, NotFoundError):
    code = "tenant_not_found"
    default_message = _UNAVAILABLE


class TenantInactive(ResolutionError, ForbiddenError):
    code = "tenant_inactive"
    default_message = _UNAVAILABLE


class TenantSuspended(ResolutionError, ForbiddenError):
    code = "tenant_suspended"
    default_message = _UNAVAILABLE


class TrialExpired(ResolutionError, PaymentRequiredError):
    code = "trial_expired"
    default_message = _UNAVAILABLE


# ── Programming defects ───────────────────────────────────────────────────────

class MissingTenantContext(TenancyError):
    """A data-access call was made without a resolved tenant."""
    code = "missing_tenant_context"

    def __init__(self, detail: str | None = None, *, fatal: bool = True, **kwargs: Any) -> None:
        self.fatal = fatal
        super().__init__(detail or "no tenant context for scoped operation", **kwargs)


class TenantContextAlreadyBound(TenancyError):
    """A second, different tenant was bound within one request."""
    code = "tenant_context_already_bound"


class UnscopedTableError(ConfigurationError):
    """Table handed to scoped access has no tenant column."""
    code = "unscoped_table"


# ── Store / service failures ──────────────────────────────────────────────────

class DuplicateSlugError(ConflictError):
    code = "duplicate_slug"
    default_message = "That tenant slug is already taken."


class DuplicateDomainError(ConflictError):
    code = "duplicate_domain"
    default_message = "That domain is already in use."


class ConcurrentUpdateConflict(ConflictError):
    """Lost-update race on a tenant row. Re-read, recompute, re-write."""
    code = "concurrent_update_conflict"
    retryable = True


# ── Raised by business handlers from policy data ──────────────────────────────

class QuotaExceeded(ForbiddenError):
    code = "quota_exceeded"
    default_message = "Your plan limit has been reached."


class FeatureNotAvailable(ForbiddenError):
    code = "feature_not_available"
    default_message = "This feature is not included in your plan."


__all__ = [
    "TenancyError", "NotFoundError", "ForbiddenError", "PaymentRequiredError",
    "ConflictError", "ValidationError", "ConfigurationError", "DeadlineExceeded",
    "ResolutionError", "TenantNotFound", "TenantInactive", "TenantSuspended",
    "TrialExpired", "MissingTenantContext", "TenantContextAlreadyBound",
    "UnscopedTableError", "DuplicateSlugError", "DuplicateDomainError",
    "ConcurrentUpdateConflict", "QuotaExceeded", "FeatureNotAvailable",
]
