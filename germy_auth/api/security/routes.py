"""
Security Routes

Security event, alert and token revocation inspection.
"""

from datetime import timedelta
from typing import Any, Dict, List, Optional
from uuid import UUID

from fastapi import APIRouter, Depends, Query

from germy_auth.api.dependencies import (
    get_identity,
    require_platform_admin,
    require_security_viewer,
)
from germy_auth.api.schemas import (
    MessageResponse,
    RevocationStatsResponse,
    RevokedTokenResponse,
    SecurityAlertResponse,
    SecurityEventResponse,
)
from germy_auth.core.access import check_tenant_scope
from germy_auth.core.engine import IdentityEngine
from germy_auth.core.types import Principal, Role
from germy_auth.exceptions import NotFound


router = APIRouter()


def _scope(principal: Principal, company_id: Optional[UUID]) -> Optional[UUID]:
    """Company filter a caller is allowed to use."""
    if principal.role == Role.PLATFORM_ADMIN:
        return company_id
    return principal.tenant_id


@router.get(
    "/events",
    response_model=List[SecurityEventResponse],
    summary="Recent security events",
)
async def list_events(
    company_id: Optional[UUID] = Query(None),
    user_id: Optional[UUID] = Query(None),
    limit: int = Query(100, ge=1, le=500),
    principal: Principal = Depends(require_security_viewer),
    identity: IdentityEngine = Depends(get_identity),
) -> List[SecurityEventResponse]:
    """Events for a user, or for a company (own company unless platform admin)."""
    if user_id is not None:
        subject = await identity.store.get_subject(user_id)
        if subject is None:
            raise NotFound("User not found")
        check_tenant_scope(principal, subject.tenant_id)
        events = await identity.monitor.get_subject_events(user_id, limit=limit)
    else:
        tenant_id = _scope(principal, company_id)
        if tenant_id is None:
            events = await identity.store.query_recent_events(limit=limit)
        else:
            events = await identity.monitor.get_tenant_events(tenant_id, limit=limit)

    return [SecurityEventResponse.from_event(e) for e in events]


@router.get(
    "/alerts",
    response_model=List[SecurityAlertResponse],
    summary="Active security alerts",
)
async def list_alerts(
    principal: Principal = Depends(require_security_viewer),
    identity: IdentityEngine = Depends(get_identity),
) -> List[SecurityAlertResponse]:
    alerts = identity.monitor.get_active_alerts(tenant_id=_scope(principal, None))
    return [SecurityAlertResponse.from_alert(a) for a in alerts]


@router.get(
    "/stats",
    summary="Security event statistics",
)
async def stats(
    hours: int = Query(24, ge=1, le=24 * 30),
    company_id: Optional[UUID] = Query(None),
    principal: Principal = Depends(require_security_viewer),
    identity: IdentityEngine = Depends(get_identity),
) -> Dict[str, Any]:
    return await identity.monitor.get_stats(
        window=timedelta(hours=hours), tenant_id=_scope(principal, company_id)
    )


@router.get(
    "/revocations/stats",
    response_model=RevocationStatsResponse,
    summary="Token revocation statistics",
)
async def revocation_stats(
    principal: Principal = Depends(require_platform_admin),
    identity: IdentityEngine = Depends(get_identity),
) -> RevocationStatsResponse:
    result = await identity.revocations.get_stats()
    return RevocationStatsResponse(
        total_tokens=result.total_tokens,
        active_tokens=result.active_tokens,
        expired_tokens=result.expired_tokens,
        tokens_by_reason=result.tokens_by_reason,
        indexed_tokens=identity.revocations.indexed_count,
    )


@router.get(
    "/revocations/users/{user_id}",
    response_model=List[RevokedTokenResponse],
    summary="Revoked tokens of a user",
)
async def user_revocations(
    user_id: UUID,
    principal: Principal = Depends(require_security_viewer),
    identity: IdentityEngine = Depends(get_identity),
) -> List[RevokedTokenResponse]:
    subject = await identity.store.get_subject(user_id)
    if subject is None:
        raise NotFound("User not found")
    check_tenant_scope(principal, subject.tenant_id)

    entries = await identity.revocations.get_subject_entries(user_id)
    return [RevokedTokenResponse.from_entry(e) for e in entries]


@router.post(
    "/revocations/sweep",
    response_model=MessageResponse,
    summary="Purge expired revocation entries now",
)
async def sweep_revocations(
    principal: Principal = Depends(require_platform_admin),
    identity: IdentityEngine = Depends(get_identity),
) -> MessageResponse:
    removed = await identity.revocations.sweep_expired()
    return MessageResponse(message=f"Cleaned up {removed} expired revoked tokens")
