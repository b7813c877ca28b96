from __future__ import annotations


class VaultError(Exception):
    """Base error for statementvault."""

    code = "INTERNAL_ERROR"

    def __init__(self, message: str, *, details: dict | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.details = details


class ValidationFailedError(VaultError):
    """Caller supplied invalid input."""

    code = "VALIDATION_FAILED"


class NotFoundError(VaultError):
    """No such resource is visible to this caller."""

    code = "NOT_FOUND"


class StatementNotFoundError(NotFoundError):
    """Statement missing or owned by another customer."""


class CustomerNotFoundError(NotFoundError):
    """Customer id unknown to the directory."""


class CustomerInactiveError(VaultError):
    """Customer exists but is not allowed to upload."""

    code = "CUSTOMER_INACTIVE"


class ConflictError(VaultError):
    """State already satisfies a uniqueness constraint."""

    code = "CONFLICT"


class DuplicatePeriodError(ConflictError):
    """A statement already exists for this customer and period."""

    code = "DUPLICATE_PERIOD"


class RateLimitedError(VaultError):
    """Policy ceiling reached."""

    code = "RATE_LIMITED"


class InvalidOrExpiredTokenError(VaultError):
    """Token unknown, expired or already used; deliberately uninformative."""

    code = "INVALID_OR_EXPIRED"


class StorageUnavailableError(VaultError):
    """Object store call failed or timed out."""

    code = "STORAGE_UNAVAILABLE"


class IntegrationUnavailableError(StorageUnavailableError):
    """Circuit breaker is open for an external integration."""


class AuditWriteError(VaultError):
    """Audit record could not be persisted under fail-closed policy."""

    code = "AUDIT_WRITE_FAILED"


class InternalError(VaultError):
    """Unexpected fault."""
