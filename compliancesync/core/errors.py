from __future__ import annotations

from typing import Any


class ComplianceSyncError(Exception):
    """Base error for compliancesync."""

    status_code = 500
    code = "INTERNAL_ERROR"

    def __init__(
        self,
        message: str,
        *,
        code: str | None = None,
        status_code: int | None = None,
        **details: Any,
    ) -> None:
        super().__init__(message)
        self.message = message
        if code is not None:
            self.code = code
        if status_code is not None:
            self.status_code = status_code
        # Extra fields are rendered next to the message so callers can self-correct.
        self.details = details


class ValidationError(ComplianceSyncError):
    """Malformed or disallowed input."""

    status_code = 400
    code = "VALIDATION_ERROR"


class NotFoundError(ComplianceSyncError):
    """Entity absent or owned by another tenant."""

    status_code = 404
    code = "NOT_FOUND"


class ConflictError(ComplianceSyncError):
    """Request conflicts with current state."""

    status_code = 409
    code = "CONFLICT"


class CapacityError(ConflictError):
    """A configured limit would be exceeded."""

    code = "CAPACITY_EXCEEDED"


class InvalidTransitionError(ConflictError):
    """Lifecycle transition not permitted from the current status."""

    code = "INVALID_STATE_TRANSITION"


class ProviderConfigError(ComplianceSyncError):
    """Missing or invalid provider configuration."""


class IdentityProviderError(ComplianceSyncError):
    """Identity provider request failure."""

    status_code = 502
    code = "IDENTITY_PROVIDER_ERROR"


class BlobStoreError(ComplianceSyncError):
    """Blob store request failure."""

    status_code = 502
    code = "BLOB_STORE_ERROR"


class TokenVerificationError(ComplianceSyncError):
    """Bearer token failed signature, expiry or claim validation."""

    status_code = 401
    code = "AUTH_UNAUTHORIZED"


class AuditImmutableError(ComplianceSyncError):
    """Attempted to modify or delete an audit log entry."""
