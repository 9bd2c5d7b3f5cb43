"""
Authentication Routes

API endpoints for login, registration and session management.
"""

from uuid import UUID

from fastapi import APIRouter, Depends, Request, status

from germy_auth.api.dependencies import (
    client_address,
    get_bearer_token,
    get_current_claims,
    get_current_principal,
    get_identity,
    require_approver,
    user_agent,
)
from germy_auth.api.schemas import (
    AuthResponse,
    CompanyRegisterRequest,
    CompanyRegisterResponse,
    CreateUserRequest,
    DeactivateRequest,
    LoginRequest,
    MessageResponse,
    PasswordChangeRequest,
    PasswordCheckRequest,
    PasswordCheckResponse,
    SignupRequest,
    TokenVerifyResponse,
    UserResponse,
)
from germy_auth.core.access import SubjectProfile
from germy_auth.core.engine import IdentityEngine
from germy_auth.core.types import Principal, RegistrationPath, TokenClaims


router = APIRouter()


@router.post(
    "/login",
    response_model=AuthResponse,
    summary="Login and get an access token",
)
async def login(
    data: LoginRequest,
    request: Request,
    identity: IdentityEngine = Depends(get_identity),
) -> AuthResponse:
    """
    Authenticate with email and password as the given role.

    - **role**: Role to log in as (defaults to user)
    - **company_id**: Company context for company roles
    - **surface**: mobile_app, dashboard or platform_panel
    """
    result = await identity.access.authenticate(
        data.email,
        data.password,
        data.role,
        tenant_id=data.company_id,
        surface=data.surface,
        source_address=client_address(request),
        user_agent=user_agent(request),
    )
    return AuthResponse(
        access_token=result.token.token,
        expires_in=result.token.expires_in,
        surface=result.surface,
        user=UserResponse.from_profile(result.profile),
    )


@router.post(
    "/register",
    response_model=UserResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Sign up to an existing company",
)
async def register(
    data: SignupRequest,
    request: Request,
    identity: IdentityEngine = Depends(get_identity),
) -> UserResponse:
    """
    Self-registration. The account stays pending until an administrator
    approves it.
    """
    subject = await identity.access.register_subject(
        data.email,
        data.password,
        data.role,
        data.company_id,
        path=RegistrationPath.SELF_SIGNUP,
        first_name=data.first_name,
        last_name=data.last_name,
        source_address=client_address(request),
    )
    return UserResponse.from_profile(SubjectProfile.from_subject(subject))


@router.post(
    "/register-company",
    response_model=CompanyRegisterResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Register a company and its super admin",
)
async def register_company(
    data: CompanyRegisterRequest,
    request: Request,
    identity: IdentityEngine = Depends(get_identity),
) -> CompanyRegisterResponse:
    tenant, subject = await identity.access.bootstrap_tenant(
        data.company_name,
        data.email,
        data.password,
        domain=data.company_domain,
        first_name=data.first_name,
        last_name=data.last_name,
        source_address=client_address(request),
    )
    return CompanyRegisterResponse(
        company_id=tenant.id,
        company_name=tenant.name,
        user=UserResponse.from_profile(SubjectProfile.from_subject(subject)),
    )


@router.post(
    "/users",
    response_model=UserResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Create an approved account",
)
async def create_user(
    data: CreateUserRequest,
    request: Request,
    principal: Principal = Depends(require_approver),
    identity: IdentityEngine = Depends(get_identity),
) -> UserResponse:
    """Create an account as an administrator; defaults to the caller's company."""
    subject = await identity.access.register_subject(
        data.email,
        data.password,
        data.role,
        data.company_id or principal.tenant_id,
        path=RegistrationPath.ADMIN_CREATED,
        first_name=data.first_name,
        last_name=data.last_name,
        creator=principal,
        source_address=client_address(request),
    )
    return UserResponse.from_profile(SubjectProfile.from_subject(subject))


@router.post(
    "/users/{user_id}/deactivate",
    response_model=UserResponse,
    summary="Deactivate an account",
)
async def deactivate_user(
    user_id: UUID,
    data: DeactivateRequest,
    request: Request,
    principal: Principal = Depends(require_approver),
    identity: IdentityEngine = Depends(get_identity),
) -> UserResponse:
    """Deactivate the account and revoke all of its tokens."""
    subject = await identity.access.deactivate_subject(
        principal,
        user_id,
        reason=data.reason,
        source_address=client_address(request),
    )
    return UserResponse.from_profile(SubjectProfile.from_subject(subject))


@router.post(
    "/logout",
    response_model=MessageResponse,
    summary="Logout and revoke the current token",
    dependencies=[Depends(get_current_claims)],
)
async def logout(
    request: Request,
    token: str = Depends(get_bearer_token),
    identity: IdentityEngine = Depends(get_identity),
) -> MessageResponse:
    await identity.access.logout(
        token,
        source_address=client_address(request),
        user_agent=user_agent(request),
    )
    return MessageResponse(message="Successfully logged out")


@router.get(
    "/me",
    response_model=UserResponse,
    summary="Get the current user",
)
async def me(
    principal: Principal = Depends(get_current_principal),
    identity: IdentityEngine = Depends(get_identity),
) -> UserResponse:
    profile = await identity.access.get_profile(principal.subject_id)
    return UserResponse.from_profile(profile)


@router.get(
    "/verify",
    response_model=TokenVerifyResponse,
    summary="Verify the current token",
)
async def verify(claims: TokenClaims = Depends(get_current_claims)) -> TokenVerifyResponse:
    return TokenVerifyResponse(
        user_id=claims.subject_id,
        company_id=claims.tenant_id,
        role=claims.role,
        expires_at=claims.expires_at,
    )


@router.post(
    "/change-password",
    response_model=MessageResponse,
    summary="Change password",
)
async def change_password(
    data: PasswordChangeRequest,
    request: Request,
    principal: Principal = Depends(get_current_principal),
    identity: IdentityEngine = Depends(get_identity),
) -> MessageResponse:
    """Change the password. All existing sessions, this one included, are revoked."""
    await identity.access.change_password(
        principal,
        data.current_password,
        data.new_password,
        source_address=client_address(request),
    )
    return MessageResponse(message="Password changed, please log in again")


@router.post(
    "/password/check",
    response_model=PasswordCheckResponse,
    summary="Check a password against the policy",
)
async def check_password(
    data: PasswordCheckRequest,
    identity: IdentityEngine = Depends(get_identity),
) -> PasswordCheckResponse:
    result = identity.passwords.validate(data.password)
    return PasswordCheckResponse(
        valid=result.valid,
        score=result.score,
        strength=identity.passwords.strength(data.password),
        errors=result.errors,
        suggestions=result.suggestions,
    )
