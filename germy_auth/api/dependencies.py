"""
FastAPI Dependencies

Common dependencies for dependency injection.
"""

from typing import Optional

from fastapi import Depends, Request
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from germy_auth.core.access import APPROVER_ROLES
from germy_auth.core.engine import IdentityEngine
from germy_auth.core.types import Principal, Role, TokenClaims
from germy_auth.exceptions import InvalidCredential


# Missing credentials are reported as 401 by the error handler
security = HTTPBearer(auto_error=False)


def get_identity(request: Request) -> IdentityEngine:
    """The application's identity engine."""
    return request.app.state.identity


def client_address(request: Request) -> Optional[str]:
    return request.client.host if request.client else None


def user_agent(request: Request) -> Optional[str]:
    return request.headers.get("user-agent")


async def get_bearer_token(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(security),
) -> str:
    if credentials is None or not credentials.credentials:
        raise InvalidCredential("Missing bearer token")
    return credentials.credentials


async def get_current_claims(
    request: Request,
    token: str = Depends(get_bearer_token),
    identity: IdentityEngine = Depends(get_identity),
) -> TokenClaims:
    """
    Verify the bearer token and check it has not been revoked.

    Raises:
        InvalidCredential: Missing, malformed or expired token
        CredentialRevoked: Token was revoked
    """
    return await identity.access.authorize_request(
        token,
        resource=request.url.path,
        source_address=client_address(request),
        user_agent=user_agent(request),
    )


async def get_current_principal(
    claims: TokenClaims = Depends(get_current_claims),
) -> Principal:
    return claims.principal


def require_roles(*roles: Role):
    """
    Dependency factory requiring one of ``roles``.

    Usage:
        @router.get("/pending")
        async def pending(principal: Principal = Depends(require_roles(Role.COMPANY_ADMIN))):
            ...
    """
    async def dependency(
        request: Request,
        token: str = Depends(get_bearer_token),
        identity: IdentityEngine = Depends(get_identity),
    ) -> Principal:
        claims = await identity.access.authorize_request(
            token,
            required_roles=roles,
            resource=request.url.path,
            source_address=client_address(request),
            user_agent=user_agent(request),
        )
        return claims.principal

    return dependency


require_approver = require_roles(*sorted(APPROVER_ROLES))
require_security_viewer = require_roles(Role.COMPANY_SUPER_ADMIN, Role.PLATFORM_ADMIN)
require_platform_admin = require_roles(Role.PLATFORM_ADMIN)
