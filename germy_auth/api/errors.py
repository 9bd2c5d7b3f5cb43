"""
Error Responses

Maps the identity error hierarchy to HTTP status codes.
"""

import logging
from typing import Dict, Type

from fastapi import FastAPI, Request, status
from fastapi.responses import JSONResponse

from germy_auth.exceptions import (
    AccountDeactivated,
    AuthorizationDenied,
    CredentialRevoked,
    CrossTenant,
    DuplicatePending,
    EmailAlreadyRegistered,
    Forbidden,
    IdentityError,
    InputRejectedError,
    InsufficientAccess,
    InvalidCredential,
    InvalidCredentials,
    NotFound,
    NotPending,
    PendingApproval,
    StoreUnavailableError,
    TenantDeactivated,
    WeakPassword,
)

logger = logging.getLogger(__name__)


ERROR_STATUS: Dict[Type[IdentityError], int] = {
    # 401 - the caller is not (or no longer) authenticated
    InvalidCredentials: status.HTTP_401_UNAUTHORIZED,
    InvalidCredential: status.HTTP_401_UNAUTHORIZED,
    AccountDeactivated: status.HTTP_401_UNAUTHORIZED,
    PendingApproval: status.HTTP_401_UNAUTHORIZED,
    TenantDeactivated: status.HTTP_401_UNAUTHORIZED,
    CredentialRevoked: status.HTTP_401_UNAUTHORIZED,
    # 403 - authenticated but not allowed
    Forbidden: status.HTTP_403_FORBIDDEN,
    InsufficientAccess: status.HTTP_403_FORBIDDEN,
    CrossTenant: status.HTTP_403_FORBIDDEN,
    # 404
    NotFound: status.HTTP_404_NOT_FOUND,
    # 409 - conflicts with current state
    DuplicatePending: status.HTTP_409_CONFLICT,
    NotPending: status.HTTP_409_CONFLICT,
    EmailAlreadyRegistered: status.HTTP_409_CONFLICT,
    # 400
    WeakPassword: status.HTTP_400_BAD_REQUEST,
    InputRejectedError: status.HTTP_400_BAD_REQUEST,
    AuthorizationDenied: status.HTTP_403_FORBIDDEN,
    # 503
    StoreUnavailableError: status.HTTP_503_SERVICE_UNAVAILABLE,
}


def status_for(exc: IdentityError) -> int:
    """Most specific mapped status for the exception's class."""
    for cls in type(exc).__mro__:
        if cls in ERROR_STATUS:
            return ERROR_STATUS[cls]
    return status.HTTP_500_INTERNAL_SERVER_ERROR


async def identity_error_handler(request: Request, exc: IdentityError) -> JSONResponse:
    status_code = status_for(exc)
    body = {"success": False, "message": exc.message, "code": exc.code}
    if isinstance(exc, WeakPassword):
        body["errors"] = exc.details.get("errors", [])
        body["suggestions"] = exc.details.get("suggestions", [])

    headers = None
    if status_code == status.HTTP_401_UNAUTHORIZED:
        headers = {"WWW-Authenticate": "Bearer"}

    if status_code >= 500:
        logger.error(f"{request.method} {request.url.path} failed: {exc}")
    else:
        logger.info(f"{request.method} {request.url.path} -> {status_code} {exc.code}")

    return JSONResponse(status_code=status_code, content=body, headers=headers)


def register_error_handlers(app: FastAPI) -> None:
    app.add_exception_handler(IdentityError, identity_error_handler)
