"""
Domain Types

Enumerations and records shared by the identity core. These are storage
agnostic; the SQL store maps its rows onto them.
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Callable, Dict, Optional
from uuid import UUID


Clock = Callable[[], datetime]


def utcnow() -> datetime:
    """Get current UTC time."""
    return datetime.now(timezone.utc)


def as_utc(value: Optional[datetime]) -> Optional[datetime]:
    """Attach UTC to naive datetimes read back from the store."""
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


# ============================================================
# Enumerations
# ============================================================


class Role(str, Enum):
    """Subject roles, most to least privileged."""

    PLATFORM_ADMIN = "platform_admin"
    COMPANY_SUPER_ADMIN = "company_super_admin"
    COMPANY_ADMIN = "company_admin"
    USER = "user"

    @property
    def is_tenant_scoped(self) -> bool:
        return self is not Role.PLATFORM_ADMIN


class Surface(str, Enum):
    """Application surfaces gated by a capability flag."""

    MOBILE_APP = "mobile_app"
    DASHBOARD = "dashboard"
    PLATFORM_PANEL = "platform_panel"

    @property
    def access_field(self) -> str:
        return f"{self.value}_access"

    @property
    def last_used_field(self) -> str:
        return f"{self.value}_last_used"


class ApprovalStatus(str, Enum):
    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"


class RequestType(str, Enum):
    NEW_SIGNUP = "new_signup"
    ROLE_CHANGE = "role_change"
    REACTIVATION = "reactivation"


class RevocationReason(str, Enum):
    LOGOUT = "logout"
    SECURITY = "security"
    ADMIN_REVOKE = "admin_revoke"


class RegistrationPath(str, Enum):
    """How a subject came to exist; decides its initial capabilities."""

    SELF_SIGNUP = "self_signup"
    ADMIN_CREATED = "admin_created"
    TENANT_BOOTSTRAP = "tenant_bootstrap"


class SecurityEventType(str, Enum):
    LOGIN_FAILED = "LOGIN_FAILED"
    LOGIN_SUCCESS = "LOGIN_SUCCESS"
    LOGOUT = "LOGOUT"
    PASSWORD_RESET = "PASSWORD_RESET"
    PASSWORD_CHANGED = "PASSWORD_CHANGED"
    ACCOUNT_LOCKED = "ACCOUNT_LOCKED"
    SUSPICIOUS_ACTIVITY = "SUSPICIOUS_ACTIVITY"
    RATE_LIMIT_EXCEEDED = "RATE_LIMIT_EXCEEDED"
    TOKEN_BLACKLISTED = "TOKEN_BLACKLISTED"
    UNAUTHORIZED_ACCESS = "UNAUTHORIZED_ACCESS"
    PASSWORD_POLICY_VIOLATION = "PASSWORD_POLICY_VIOLATION"
    ACCOUNT_CREATED = "ACCOUNT_CREATED"
    ACCOUNT_DEACTIVATED = "ACCOUNT_DEACTIVATED"
    PERMISSION_ESCALATION = "PERMISSION_ESCALATION"


class Severity(str, Enum):
    LOW = "LOW"
    MEDIUM = "MEDIUM"
    HIGH = "HIGH"
    CRITICAL = "CRITICAL"


# ============================================================
# Records
# ============================================================


@dataclass(frozen=True)
class CapabilityFlags:
    """The three independent surface grants."""

    mobile_app_access: bool = False
    dashboard_access: bool = False
    platform_panel_access: bool = False

    def allows(self, surface: Surface) -> bool:
        return bool(getattr(self, surface.access_field))

    def as_patch(self) -> Dict[str, bool]:
        return {
            "mobile_app_access": self.mobile_app_access,
            "dashboard_access": self.dashboard_access,
            "platform_panel_access": self.platform_panel_access,
        }


@dataclass
class Tenant:
    id: UUID
    name: str
    domain: Optional[str] = None
    is_active: bool = True


@dataclass
class Subject:
    """A human principal."""

    id: UUID
    tenant_id: Optional[UUID]
    email: str
    password_hash: str
    role: Role
    first_name: str = ""
    last_name: str = ""
    mobile_app_access: bool = False
    dashboard_access: bool = False
    platform_panel_access: bool = False
    approval_status: ApprovalStatus = ApprovalStatus.PENDING
    is_active: bool = True
    approved_by: Optional[UUID] = None
    approved_at: Optional[datetime] = None
    rejection_reason: Optional[str] = None
    token_version: int = 1
    last_login_at: Optional[datetime] = None
    mobile_app_last_used: Optional[datetime] = None
    dashboard_last_used: Optional[datetime] = None
    platform_panel_last_used: Optional[datetime] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    @property
    def capabilities(self) -> CapabilityFlags:
        return CapabilityFlags(
            mobile_app_access=self.mobile_app_access,
            dashboard_access=self.dashboard_access,
            platform_panel_access=self.platform_panel_access,
        )

    @property
    def is_approved(self) -> bool:
        return self.approval_status == ApprovalStatus.APPROVED


@dataclass(frozen=True)
class Principal:
    """The acting party of a request: who, in which tenant, as what."""

    subject_id: UUID
    tenant_id: Optional[UUID]
    role: Role


@dataclass(frozen=True)
class TokenClaims:
    """Verified contents of a bearer credential."""

    subject_id: UUID
    tenant_id: Optional[UUID]
    role: Role
    issued_at: datetime
    expires_at: datetime
    token_id: str
    token_version: int = 1
    key_id: Optional[str] = None

    @property
    def principal(self) -> Principal:
        return Principal(self.subject_id, self.tenant_id, self.role)


@dataclass
class ApprovalRequest:
    id: UUID
    subject_id: UUID
    tenant_id: Optional[UUID]
    requested_role: Role
    request_type: RequestType
    status: ApprovalStatus = ApprovalStatus.PENDING
    requested_by: Optional[UUID] = None
    request_data: Optional[Dict[str, Any]] = None
    reviewer_id: Optional[UUID] = None
    reviewed_at: Optional[datetime] = None
    notes: Optional[str] = None
    rejection_reason: Optional[str] = None
    created_at: Optional[datetime] = None

    @property
    def is_pending(self) -> bool:
        return self.status == ApprovalStatus.PENDING


@dataclass
class RevocationEntry:
    token_digest: str
    subject_id: UUID
    tenant_id: Optional[UUID]
    reason: RevocationReason
    expires_at: datetime
    created_at: Optional[datetime] = None


@dataclass
class SecurityEvent:
    """Append-only record of an authentication or authorization outcome."""

    type: SecurityEventType
    severity: Severity
    subject_id: Optional[UUID] = None
    tenant_id: Optional[UUID] = None
    email: Optional[str] = None
    source_address: Optional[str] = None
    user_agent: Optional[str] = None
    risk_score: Optional[int] = None
    details: Dict[str, Any] = field(default_factory=dict)
    timestamp: Optional[datetime] = None
    id: Optional[UUID] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": str(self.id) if self.id else None,
            "type": self.type.value,
            "severity": self.severity.value,
            "risk_score": self.risk_score,
            "subject_id": str(self.subject_id) if self.subject_id else None,
            "tenant_id": str(self.tenant_id) if self.tenant_id else None,
            "email": self.email,
            "source_address": self.source_address,
            "user_agent": self.user_agent,
            "details": self.details,
            "timestamp": self.timestamp.isoformat() if self.timestamp else None,
        }
