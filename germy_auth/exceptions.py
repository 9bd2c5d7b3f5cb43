"""
Germy Auth - Exception Hierarchy
================================

Closed set of error types raised by the identity core.

Exception Categories:
    - Input rejection: malformed credentials, duplicate requests, weak passwords
    - Authorization denial: failed logins, missing roles or capabilities
    - State-machine violation: reviewing a request that is no longer pending
    - Infrastructure fault: the persistent store is unreachable

The transport layer maps each type to a response status; nothing in the
core raises a generic "internal error".
"""

from typing import Any, Dict, Optional


class IdentityError(Exception):
    """
    Base exception for all identity core errors.

    Attributes:
        message: Human-readable error description
        code: Error code for programmatic handling
        details: Optional dict with additional context
    """

    code: str = "identity_error"

    def __init__(
        self,
        message: str,
        code: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(message)
        self.message = message
        if code:
            self.code = code
        self.details = details or {}

    def __str__(self) -> str:
        return f"[{self.code}] {self.message}"


# =============================================================================
# INPUT REJECTION
# =============================================================================


class InputRejectedError(IdentityError):
    """Base class for input the caller can correct and resubmit."""

    code = "input_rejected"


class InvalidCredential(InputRejectedError):
    """Bearer token is malformed, tampered, expired or foreign."""

    code = "invalid_token"

    def __init__(self, message: str = "Invalid or expired token", **kwargs):
        super().__init__(message, **kwargs)


class DuplicatePending(InputRejectedError):
    """Subject already has a pending approval request."""

    code = "duplicate_pending"

    def __init__(
        self, message: str = "User already has a pending approval request", **kwargs
    ):
        super().__init__(message, **kwargs)


class WeakPassword(InputRejectedError):
    """Password does not satisfy the password policy."""

    code = "weak_password"

    def __init__(self, errors: list, suggestions: Optional[list] = None):
        super().__init__(
            "Password does not meet the password policy",
            details={"errors": list(errors), "suggestions": list(suggestions or [])},
        )
        self.errors = list(errors)


class EmailAlreadyRegistered(InputRejectedError):
    """Email is already taken within the tenant."""

    code = "email_taken"

    def __init__(self, message: str = "User with this email already exists", **kwargs):
        super().__init__(message, **kwargs)


# =============================================================================
# AUTHORIZATION DENIAL
# =============================================================================


class AuthorizationDenied(IdentityError):
    """Base class for denials. Never retried by the caller."""

    code = "denied"


class InvalidCredentials(AuthorizationDenied):
    """Unknown account or wrong password. One message for both."""

    code = "invalid_credentials"

    def __init__(self, message: str = "Invalid credentials", **kwargs):
        super().__init__(message, **kwargs)


class AccountDeactivated(AuthorizationDenied):
    """Subject exists but is deactivated."""

    code = "account_deactivated"

    def __init__(self, message: str = "Account is deactivated", **kwargs):
        super().__init__(message, **kwargs)


class PendingApproval(AuthorizationDenied):
    """Subject has not been approved (pending or rejected)."""

    code = "pending_approval"

    def __init__(self, message: str = "Account is pending approval", **kwargs):
        super().__init__(message, **kwargs)


class TenantDeactivated(AuthorizationDenied):
    """The subject's company is deactivated."""

    code = "tenant_deactivated"

    def __init__(self, message: str = "Company account is deactivated", **kwargs):
        super().__init__(message, **kwargs)


class InsufficientAccess(AuthorizationDenied):
    """Role is held but the capability flag for the surface is not granted."""

    code = "insufficient_access"

    def __init__(self, message: str = "Access to this application has not been granted", **kwargs):
        super().__init__(message, **kwargs)


class CredentialRevoked(AuthorizationDenied):
    """Token is valid but has been revoked."""

    code = "token_revoked"

    def __init__(self, message: str = "Token has been revoked", **kwargs):
        super().__init__(message, **kwargs)


class Forbidden(AuthorizationDenied):
    """Caller's role does not allow the operation."""

    code = "forbidden"

    def __init__(self, message: str = "Insufficient permissions", **kwargs):
        super().__init__(message, **kwargs)


class CrossTenant(AuthorizationDenied):
    """Caller and target belong to different tenants."""

    code = "cross_tenant"

    def __init__(self, message: str = "Cannot act on a user in a different company", **kwargs):
        super().__init__(message, **kwargs)


class NotFound(AuthorizationDenied):
    """Referenced subject or request does not exist."""

    code = "not_found"

    def __init__(self, message: str = "Not found", **kwargs):
        super().__init__(message, **kwargs)


# =============================================================================
# STATE-MACHINE VIOLATION
# =============================================================================


class NotPending(IdentityError):
    """Approval request has already been reviewed."""

    code = "not_pending"

    def __init__(self, message: str = "Approval request is no longer pending", **kwargs):
        super().__init__(message, **kwargs)


# =============================================================================
# INFRASTRUCTURE FAULT
# =============================================================================


class StoreUnavailableError(IdentityError):
    """Persistent store could not be reached or timed out."""

    code = "store_unavailable"

    def __init__(self, message: str = "Identity store unavailable", **kwargs):
        super().__init__(message, **kwargs)


__all__ = [
    "IdentityError",
    "InputRejectedError",
    "InvalidCredential",
    "DuplicatePending",
    "WeakPassword",
    "EmailAlreadyRegistered",
    "AuthorizationDenied",
    "InvalidCredentials",
    "AccountDeactivated",
    "PendingApproval",
    "TenantDeactivated",
    "InsufficientAccess",
    "CredentialRevoked",
    "Forbidden",
    "CrossTenant",
    "NotFound",
    "NotPending",
    "StoreUnavailableError",
]
