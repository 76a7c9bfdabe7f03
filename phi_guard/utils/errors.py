"""
Exception hierarchy

Every error the access-control and audit layers raise derives from
PHIGuardError. The API layer maps each family onto an HTTP status code.
"""

from typing import Any, Dict, Optional


class PHIGuardError(Exception):
    """
    Base exception for the service

    Attributes:
        message: Human-readable description, safe to return to clients
        code: Stable machine-readable error code
        details: Additional context (never secrets or PHI values)
    """

    status_code: int = 500
    default_code: str = "internal_error"

    def __init__(
        self,
        message: str,
        code: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(message)
        self.message = message
        self.code = code or self.default_code
        self.details = details or {}

    def __str__(self) -> str:
        return f"[{self.code}] {self.message}"


# =============================================================================
# AUTHENTICATION (401)
# =============================================================================


class AuthenticationFailure(PHIGuardError):
    """Request could not be tied to an authenticated actor."""

    status_code = 401
    default_code = "authentication_failed"


class MissingCredential(AuthenticationFailure):
    default_code = "missing_credential"


class InvalidCredential(AuthenticationFailure):
    default_code = "invalid_credential"


class ExpiredCredential(AuthenticationFailure):
    default_code = "expired_credential"


class StaleCredential(AuthenticationFailure):
    """Credential was issued before the actor's last credential change."""

    default_code = "stale_credential"


class UnknownOrInactiveActor(AuthenticationFailure):
    default_code = "unknown_or_inactive_actor"


class InvalidLogin(AuthenticationFailure):
    default_code = "invalid_login"


class AccountLocked(AuthenticationFailure):
    default_code = "account_locked"


# =============================================================================
# AUTHORIZATION (403)
# =============================================================================


class AuthorizationFailure(PHIGuardError):
    """Authenticated actor is not allowed to perform the operation."""

    status_code = 403
    default_code = "access_denied"


class InsufficientRole(AuthorizationFailure):
    default_code = "insufficient_role"


class TrainingRequired(AuthorizationFailure):
    default_code = "training_required"


class InsufficientAccessTier(AuthorizationFailure):
    default_code = "insufficient_access_tier"


# =============================================================================
# VALIDATION / LOOKUP
# =============================================================================


class ValidationFailure(PHIGuardError):
    status_code = 400
    default_code = "validation_failed"


class WeakCredential(ValidationFailure):
    default_code = "weak_credential"


class InvalidAuditFilter(ValidationFailure):
    default_code = "invalid_audit_filter"


class AuditEntryInvalid(ValidationFailure):
    """A draft violates the audit entry invariants."""

    default_code = "audit_entry_invalid"


class NotFound(PHIGuardError):
    status_code = 404
    default_code = "not_found"


class AuditEntryNotFound(NotFound):
    default_code = "audit_entry_not_found"


class Conflict(PHIGuardError):
    status_code = 409
    default_code = "conflict"


class ActorAlreadyExists(Conflict):
    default_code = "actor_already_exists"


# =============================================================================
# INTERNAL
# =============================================================================


class PersistenceFailure(PHIGuardError):
    """Audit store write failed. Handled inside the writer, never raised to callers."""

    default_code = "persistence_failure"


class IdentifierExhausted(PHIGuardError):
    """Unique identifier generation ran out of attempts."""

    default_code = "identifier_exhausted"
