"""
API Schemas

Pydantic models for request/response validation.
"""

from datetime import datetime
from typing import Any, Dict, List, Optional
from uuid import UUID

from pydantic import BaseModel, EmailStr, Field

from germy_auth.core.access import SubjectProfile
from germy_auth.core.security import SecurityAlert
from germy_auth.core.types import (
    ApprovalRequest,
    ApprovalStatus,
    RequestType,
    RevocationEntry,
    Role,
    SecurityEvent,
    Surface,
)


# ============================================================
# Requests
# ============================================================


class LoginRequest(BaseModel):
    """Login as a given role, optionally within a company and for a surface."""

    email: EmailStr
    password: str
    role: Role = Role.USER
    company_id: Optional[UUID] = None
    surface: Optional[Surface] = None


class SignupRequest(BaseModel):
    """Self-registration into an existing company."""

    email: EmailStr
    password: str = Field(..., max_length=128)
    company_id: UUID
    role: Role = Role.USER
    first_name: str = Field("", max_length=100)
    last_name: str = Field("", max_length=100)


class CompanyRegisterRequest(BaseModel):
    """Create a company together with its first super admin."""

    company_name: str = Field(..., min_length=1, max_length=255)
    company_domain: Optional[str] = Field(None, max_length=255)
    email: EmailStr
    password: str = Field(..., max_length=128)
    first_name: str = Field("", max_length=100)
    last_name: str = Field("", max_length=100)


class CreateUserRequest(BaseModel):
    """Administrator-created account."""

    email: EmailStr
    password: str = Field(..., max_length=128)
    role: Role = Role.USER
    company_id: Optional[UUID] = None
    first_name: str = Field("", max_length=100)
    last_name: str = Field("", max_length=100)


class PasswordChangeRequest(BaseModel):
    current_password: str
    new_password: str = Field(..., max_length=128)


class PasswordCheckRequest(BaseModel):
    password: str


class DeactivateRequest(BaseModel):
    reason: Optional[str] = Field(None, max_length=500)


class ApprovalCreateRequest(BaseModel):
    user_id: UUID
    requested_role: Role
    request_type: RequestType
    request_data: Optional[Dict[str, Any]] = None


class ApproveRequest(BaseModel):
    notes: Optional[str] = Field(None, max_length=1000)


class RejectRequest(BaseModel):
    reason: str = Field(..., min_length=1, max_length=1000)


# ============================================================
# Responses
# ============================================================


class MessageResponse(BaseModel):
    success: bool = True
    message: str


class UserResponse(BaseModel):
    """Public user data."""

    id: UUID
    company_id: Optional[UUID]
    email: str
    first_name: str
    last_name: str
    role: Role
    approval_status: ApprovalStatus
    is_active: bool
    mobile_app_access: bool
    dashboard_access: bool
    platform_panel_access: bool

    @classmethod
    def from_profile(cls, profile: SubjectProfile) -> "UserResponse":
        return cls(
            id=profile.id,
            company_id=profile.tenant_id,
            email=profile.email,
            first_name=profile.first_name,
            last_name=profile.last_name,
            role=profile.role,
            approval_status=profile.approval_status,
            is_active=profile.is_active,
            mobile_app_access=profile.capabilities.mobile_app_access,
            dashboard_access=profile.capabilities.dashboard_access,
            platform_panel_access=profile.capabilities.platform_panel_access,
        )


class AuthResponse(BaseModel):
    """Issued token with the user it belongs to."""

    access_token: str
    token_type: str = "bearer"
    expires_in: int  # seconds
    surface: Surface
    user: UserResponse


class CompanyRegisterResponse(BaseModel):
    company_id: UUID
    company_name: str
    user: UserResponse


class TokenVerifyResponse(BaseModel):
    valid: bool = True
    user_id: UUID
    company_id: Optional[UUID]
    role: Role
    expires_at: datetime


class PasswordCheckResponse(BaseModel):
    valid: bool
    score: int
    strength: str
    errors: List[str]
    suggestions: List[str]


class ApprovalRequestResponse(BaseModel):
    id: UUID
    user_id: UUID
    company_id: Optional[UUID]
    requested_role: Role
    request_type: RequestType
    status: ApprovalStatus
    requested_by: Optional[UUID]
    request_data: Optional[Dict[str, Any]]
    reviewed_by: Optional[UUID]
    reviewed_at: Optional[datetime]
    notes: Optional[str]
    rejection_reason: Optional[str]
    created_at: Optional[datetime]

    @classmethod
    def from_request(cls, request: ApprovalRequest) -> "ApprovalRequestResponse":
        return cls(
            id=request.id,
            user_id=request.subject_id,
            company_id=request.tenant_id,
            requested_role=request.requested_role,
            request_type=request.request_type,
            status=request.status,
            requested_by=request.requested_by,
            request_data=request.request_data,
            reviewed_by=request.reviewer_id,
            reviewed_at=request.reviewed_at,
            notes=request.notes,
            rejection_reason=request.rejection_reason,
            created_at=request.created_at,
        )


class SecurityEventResponse(BaseModel):
    id: Optional[UUID]
    type: str
    severity: str
    risk_score: Optional[int]
    user_id: Optional[UUID]
    company_id: Optional[UUID]
    email: Optional[str]
    ip_address: Optional[str]
    details: Dict[str, Any]
    timestamp: Optional[datetime]

    @classmethod
    def from_event(cls, event: SecurityEvent) -> "SecurityEventResponse":
        return cls(
            id=event.id,
            type=event.type.value,
            severity=event.severity.value,
            risk_score=event.risk_score,
            user_id=event.subject_id,
            company_id=event.tenant_id,
            email=event.email,
            ip_address=event.source_address,
            details=event.details,
            timestamp=event.timestamp,
        )


class SecurityAlertResponse(BaseModel):
    id: UUID
    type: str
    severity: str
    message: str
    event_count: int
    window_seconds: Optional[int]
    company_id: Optional[UUID]
    ip_address: Optional[str]
    created_at: Optional[datetime]

    @classmethod
    def from_alert(cls, alert: SecurityAlert) -> "SecurityAlertResponse":
        return cls(
            id=alert.id,
            type=alert.type.value,
            severity=alert.severity.value,
            message=alert.message,
            event_count=alert.event_count,
            window_seconds=int(alert.window.total_seconds()) if alert.window else None,
            company_id=alert.tenant_id,
            ip_address=alert.source_address,
            created_at=alert.created_at,
        )


class RevocationStatsResponse(BaseModel):
    total_tokens: int
    active_tokens: int
    expired_tokens: int
    tokens_by_reason: Dict[str, int]
    indexed_tokens: int


class RevokedTokenResponse(BaseModel):
    """A revoked token, identified by its digest; the token itself is never stored."""

    token_digest: str
    user_id: UUID
    company_id: Optional[UUID]
    reason: str
    expires_at: datetime
    revoked_at: Optional[datetime]

    @classmethod
    def from_entry(cls, entry: RevocationEntry) -> "RevokedTokenResponse":
        return cls(
            token_digest=entry.token_digest,
            user_id=entry.subject_id,
            company_id=entry.tenant_id,
            reason=entry.reason.value,
            expires_at=entry.expires_at,
            revoked_at=entry.created_at,
        )
