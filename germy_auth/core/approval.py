"""
Approval Workflow

Pending -> approved or pending -> rejected, both terminal. A request is
reviewed exactly once; a later attempt needs a new request.

Approval writes the request and the subject's role, capability flags and
approval status in a single store transaction guarded by the request
still being pending, so concurrent reviewers cannot both win.
"""

import logging
from typing import Any, Dict, List, Optional
from uuid import UUID, uuid4

from germy_auth.core.access import (
    APPROVER_ROLES,
    AccessControlEngine,
    can_assign_role,
    check_tenant_scope,
)
from germy_auth.core.security import SecurityMonitor
from germy_auth.core.store import IdentityStore
from germy_auth.core.types import (
    ApprovalRequest,
    ApprovalStatus,
    Clock,
    Principal,
    RequestType,
    RevocationReason,
    Role,
    SecurityEvent,
    SecurityEventType,
    Severity,
    Subject,
    utcnow,
)
from germy_auth.exceptions import (
    DuplicatePending,
    Forbidden,
    NotFound,
    NotPending,
)

logger = logging.getLogger(__name__)


class ApprovalWorkflow:
    """Creates and reviews approval requests."""

    def __init__(
        self,
        store: IdentityStore,
        access: AccessControlEngine,
        monitor: SecurityMonitor,
        clock: Optional[Clock] = None,
    ):
        self.store = store
        self.access = access
        self.monitor = monitor
        self._clock = clock or utcnow

    # ==================== Creation ====================

    async def create(
        self,
        subject_id: UUID,
        requested_role: Role,
        request_type: RequestType,
        requester: Principal,
        request_data: Optional[Dict[str, Any]] = None,
    ) -> ApprovalRequest:
        """
        Open a request on behalf of a subject.

        Raises:
            Forbidden: Requester is not an approver
            NotFound: Unknown subject
            CrossTenant: Subject is in another tenant
            DuplicatePending: Subject already has a pending request
        """
        self._require_approver(requester)
        subject = await self._get_subject(subject_id)
        check_tenant_scope(requester, subject.tenant_id)

        request = await self._open_request(
            subject,
            Role(requested_role),
            RequestType(request_type),
            requested_by=requester.subject_id,
            request_data=request_data,
        )
        logger.info(f"Approval request created for user {subject.id} by {requester.subject_id}")
        return request

    async def submit_signup(
        self,
        subject_id: UUID,
        requested_role: Optional[Role] = None,
    ) -> ApprovalRequest:
        """
        Queue a subject's own signup for review.

        Used to resubmit after a rejection; the subject returns to pending.
        """
        subject = await self._get_subject(subject_id)
        if subject.is_approved:
            raise Forbidden("Account is already approved")

        role = Role(requested_role) if requested_role else subject.role
        request = await self._open_request(
            subject,
            role,
            RequestType.NEW_SIGNUP,
            requested_by=subject.id,
        )
        await self.store.update_subject(
            subject.id,
            {"approval_status": ApprovalStatus.PENDING, "rejection_reason": None},
        )
        logger.info(f"Signup submitted for review: {subject.id}")
        return request

    async def _open_request(
        self,
        subject: Subject,
        role: Role,
        request_type: RequestType,
        requested_by: UUID,
        request_data: Optional[Dict[str, Any]] = None,
    ) -> ApprovalRequest:
        if await self.store.find_pending_request(subject.id) is not None:
            raise DuplicatePending()

        # The store's unique index catches a concurrent duplicate
        return await self.store.insert_approval_request(ApprovalRequest(
            id=uuid4(),
            subject_id=subject.id,
            tenant_id=subject.tenant_id,
            requested_role=role,
            request_type=request_type,
            status=ApprovalStatus.PENDING,
            requested_by=requested_by,
            request_data=request_data,
            created_at=self._clock(),
        ))

    # ==================== Review ====================

    async def approve(
        self,
        request_id: UUID,
        reviewer: Principal,
        notes: Optional[str] = None,
    ) -> ApprovalRequest:
        """
        Approve a pending request.

        The subject ends up with the requested role, exactly the capability
        flags that role grants, approval_status=approved and the approver
        stamp. Reactivation requests also set is_active.

        Raises:
            Forbidden: Reviewer is not an approver, cannot assign the role,
                or is the request's subject
            NotFound: Unknown request or subject
            NotPending: Request already reviewed
            CrossTenant: Request belongs to another tenant
        """
        request, subject = await self._load_for_review(request_id, reviewer)

        if not can_assign_role(reviewer.role, request.requested_role):
            await self.monitor.record(SecurityEvent(
                type=SecurityEventType.PERMISSION_ESCALATION,
                severity=Severity.HIGH,
                subject_id=reviewer.subject_id,
                tenant_id=reviewer.tenant_id,
                details={
                    "request_id": str(request.id),
                    "reviewer_role": reviewer.role.value,
                    "requested_role": request.requested_role.value,
                },
            ))
            raise Forbidden(f"Not allowed to approve {request.requested_role.value} accounts")

        now = self._clock()
        flags = self.access.grant_capabilities(subject.id, request.requested_role)
        patch: Dict[str, Any] = {
            "role": request.requested_role,
            "approval_status": ApprovalStatus.APPROVED,
            "approved_by": reviewer.subject_id,
            "approved_at": now,
            "rejection_reason": None,
            **flags.as_patch(),
        }
        if request.request_type == RequestType.REACTIVATION:
            patch["is_active"] = True

        # Outstanding tokens still carry the previous role
        ends_sessions = subject.is_approved and subject.role != request.requested_role

        updated = await self.store.complete_review(
            request.id,
            ApprovalStatus.APPROVED,
            reviewer_id=reviewer.subject_id,
            reviewed_at=now,
            subject_patch=patch,
            notes=notes,
            bump_token_version=ends_sessions,
        )
        if updated is None:
            raise NotPending()

        if ends_sessions:
            self.access.revocations.record_revoke_all(
                subject.id, subject.tenant_id, subject.token_version + 1, RevocationReason.SECURITY
            )

        logger.info(
            f"User {subject.id} approved by {reviewer.subject_id}",
            extra={
                "request_id": str(request.id),
                "request_type": request.request_type.value,
                "role": request.requested_role.value,
            },
        )
        return updated

    async def reject(
        self,
        request_id: UUID,
        reviewer: Principal,
        reason: str,
    ) -> ApprovalRequest:
        """
        Reject a pending request.

        The subject is marked rejected with the reason; no capabilities
        are granted.
        """
        request, subject = await self._load_for_review(request_id, reviewer)

        now = self._clock()
        updated = await self.store.complete_review(
            request.id,
            ApprovalStatus.REJECTED,
            reviewer_id=reviewer.subject_id,
            reviewed_at=now,
            subject_patch={
                "approval_status": ApprovalStatus.REJECTED,
                "rejection_reason": reason,
            },
            rejection_reason=reason,
        )
        if updated is None:
            raise NotPending()

        logger.info(f"User {subject.id} rejected by {reviewer.subject_id}: {reason}")
        return updated

    async def _load_for_review(self, request_id: UUID, reviewer: Principal):
        self._require_approver(reviewer)

        request = await self.store.get_approval_request(request_id)
        if request is None:
            raise NotFound("Approval request not found")
        if not request.is_pending:
            raise NotPending()

        check_tenant_scope(reviewer, request.tenant_id)
        if reviewer.subject_id == request.subject_id:
            raise Forbidden("Cannot review your own approval request")

        subject = await self._get_subject(request.subject_id)
        return request, subject

    # ==================== Queries ====================

    async def list_pending(
        self,
        requester: Principal,
        tenant_id: Optional[UUID] = None,
        limit: int = 50,
        offset: int = 0,
    ) -> List[ApprovalRequest]:
        """Pending requests visible to ``requester``, newest first."""
        self._require_approver(requester)
        if requester.role != Role.PLATFORM_ADMIN:
            tenant_id = requester.tenant_id

        return await self.store.list_approval_requests(
            tenant_id=tenant_id,
            status=ApprovalStatus.PENDING,
            limit=limit,
            offset=offset,
        )

    async def history(
        self,
        subject_id: UUID,
        requester: Principal,
        limit: int = 50,
        offset: int = 0,
    ) -> List[ApprovalRequest]:
        self._require_approver(requester)
        subject = await self._get_subject(subject_id)
        check_tenant_scope(requester, subject.tenant_id)

        return await self.store.list_approval_requests(
            subject_id=subject.id, limit=limit, offset=offset
        )

    # ==================== Helpers ====================

    @staticmethod
    def _require_approver(principal: Principal) -> None:
        if Role(principal.role) not in APPROVER_ROLES:
            raise Forbidden("Insufficient permissions to manage approval requests")

    async def _get_subject(self, subject_id: UUID) -> Subject:
        subject = await self.store.get_subject(subject_id)
        if subject is None:
            raise NotFound("User not found")
        return subject
