"""
Approval Routes

API endpoints for creating and reviewing approval requests.
"""

from typing import List, Optional
from uuid import UUID

from fastapi import APIRouter, Depends, Query, status

from germy_auth.api.dependencies import get_identity, require_approver
from germy_auth.api.schemas import (
    ApprovalCreateRequest,
    ApprovalRequestResponse,
    ApproveRequest,
    RejectRequest,
)
from germy_auth.core.engine import IdentityEngine
from germy_auth.core.types import Principal


router = APIRouter()


@router.post(
    "",
    response_model=ApprovalRequestResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Create an approval request",
)
async def create_request(
    data: ApprovalCreateRequest,
    principal: Principal = Depends(require_approver),
    identity: IdentityEngine = Depends(get_identity),
) -> ApprovalRequestResponse:
    request = await identity.approvals.create(
        data.user_id,
        data.requested_role,
        data.request_type,
        requester=principal,
        request_data=data.request_data,
    )
    return ApprovalRequestResponse.from_request(request)


@router.get(
    "/pending",
    response_model=List[ApprovalRequestResponse],
    summary="List pending approval requests",
)
async def list_pending(
    company_id: Optional[UUID] = Query(None, description="Platform admins only"),
    limit: int = Query(50, ge=1, le=200),
    offset: int = Query(0, ge=0),
    principal: Principal = Depends(require_approver),
    identity: IdentityEngine = Depends(get_identity),
) -> List[ApprovalRequestResponse]:
    """Company administrators only see their own company's requests."""
    requests = await identity.approvals.list_pending(
        principal, tenant_id=company_id, limit=limit, offset=offset
    )
    return [ApprovalRequestResponse.from_request(r) for r in requests]


@router.post(
    "/{request_id}/approve",
    response_model=ApprovalRequestResponse,
    summary="Approve a pending request",
)
async def approve(
    request_id: UUID,
    data: ApproveRequest,
    principal: Principal = Depends(require_approver),
    identity: IdentityEngine = Depends(get_identity),
) -> ApprovalRequestResponse:
    request = await identity.approvals.approve(request_id, principal, notes=data.notes)
    return ApprovalRequestResponse.from_request(request)


@router.post(
    "/{request_id}/reject",
    response_model=ApprovalRequestResponse,
    summary="Reject a pending request",
)
async def reject(
    request_id: UUID,
    data: RejectRequest,
    principal: Principal = Depends(require_approver),
    identity: IdentityEngine = Depends(get_identity),
) -> ApprovalRequestResponse:
    request = await identity.approvals.reject(request_id, principal, data.reason)
    return ApprovalRequestResponse.from_request(request)


@router.get(
    "/history/{user_id}",
    response_model=List[ApprovalRequestResponse],
    summary="Approval history of a user",
)
async def history(
    user_id: UUID,
    limit: int = Query(50, ge=1, le=200),
    offset: int = Query(0, ge=0),
    principal: Principal = Depends(require_approver),
    identity: IdentityEngine = Depends(get_identity),
) -> List[ApprovalRequestResponse]:
    requests = await identity.approvals.history(
        user_id, principal, limit=limit, offset=offset
    )
    return [ApprovalRequestResponse.from_request(r) for r in requests]
