"""
Identity Store Port

Persistence contract consumed by the identity core. Implementations must
scope every tenant-owned query by tenant id and must make
``complete_review`` a single atomic, pending-guarded write.

Backend faults (lost connections, driver errors) must surface as
StoreUnavailableError. Domain conflicts raise their own IdentityError.
"""

from abc import ABC, abstractmethod
from datetime import datetime
from typing import Any, Dict, List, Optional
from uuid import UUID

from germy_auth.core.types import (
    ApprovalRequest,
    ApprovalStatus,
    RevocationEntry,
    Role,
    SecurityEvent,
    SecurityEventType,
    Subject,
    Tenant,
)


class IdentityStore(ABC):
    """Async persistence contract for subjects, approvals, revocations and events."""

    # ==================== Tenants ====================

    @abstractmethod
    async def get_tenant(self, tenant_id: UUID) -> Optional[Tenant]:
        ...

    @abstractmethod
    async def insert_tenant(self, tenant: Tenant) -> Tenant:
        ...

    # ==================== Subjects ====================

    @abstractmethod
    async def find_subject_by_credentials(
        self, tenant_id: Optional[UUID], email: str, role: Role
    ) -> Optional[Subject]:
        """Find by (tenant, email, role); a None tenant matches any tenant."""

    @abstractmethod
    async def find_subject_by_email(
        self, tenant_id: Optional[UUID], email: str
    ) -> Optional[Subject]:
        ...

    @abstractmethod
    async def get_subject(self, subject_id: UUID) -> Optional[Subject]:
        ...

    @abstractmethod
    async def insert_subject(self, subject: Subject) -> Subject:
        ...

    @abstractmethod
    async def update_subject(
        self, subject_id: UUID, patch: Dict[str, Any], bump_token_version: bool = False
    ) -> Optional[Subject]:
        """
        Apply ``patch`` to a subject.

        With ``bump_token_version`` the token version increment commits in
        the same write as the patch.
        """

    @abstractmethod
    async def increment_token_version(self, subject_id: UUID) -> Optional[int]:
        """Bump and return the subject's token version."""

    @abstractmethod
    async def get_token_version(self, subject_id: UUID) -> Optional[int]:
        ...

    # ==================== Approval requests ====================

    @abstractmethod
    async def insert_approval_request(self, request: ApprovalRequest) -> ApprovalRequest:
        """Insert a pending request. Raises DuplicatePending on conflict."""

    @abstractmethod
    async def get_approval_request(self, request_id: UUID) -> Optional[ApprovalRequest]:
        ...

    @abstractmethod
    async def find_pending_request(self, subject_id: UUID) -> Optional[ApprovalRequest]:
        ...

    @abstractmethod
    async def complete_review(
        self,
        request_id: UUID,
        status: ApprovalStatus,
        reviewer_id: UUID,
        reviewed_at: datetime,
        subject_patch: Dict[str, Any],
        notes: Optional[str] = None,
        rejection_reason: Optional[str] = None,
        bump_token_version: bool = False,
    ) -> Optional[ApprovalRequest]:
        """
        Move a pending request to a terminal status and patch its subject
        in one transaction. ``bump_token_version`` increments the subject's
        token version in that same transaction.

        Returns:
            The updated request, or None if it was no longer pending
        """

    @abstractmethod
    async def list_approval_requests(
        self,
        tenant_id: Optional[UUID] = None,
        status: Optional[ApprovalStatus] = None,
        subject_id: Optional[UUID] = None,
        limit: int = 50,
        offset: int = 0,
    ) -> List[ApprovalRequest]:
        ...

    # ==================== Revocations ====================

    @abstractmethod
    async def insert_revocation_entry(self, entry: RevocationEntry) -> None:
        """Insert an entry; inserting an existing digest is not an error."""

    @abstractmethod
    async def find_revocation_entry(self, token_digest: str) -> Optional[RevocationEntry]:
        ...

    @abstractmethod
    async def delete_revocation_entry(self, token_digest: str) -> None:
        ...

    @abstractmethod
    async def delete_expired_revocations(self, now: datetime) -> int:
        ...

    @abstractmethod
    async def list_active_revocations(self, now: datetime) -> List[RevocationEntry]:
        ...

    @abstractmethod
    async def list_revocations(
        self, subject_id: Optional[UUID] = None
    ) -> List[RevocationEntry]:
        ...

    # ==================== Security events ====================

    @abstractmethod
    async def append_security_event(self, event: SecurityEvent) -> SecurityEvent:
        ...

    @abstractmethod
    async def count_recent_events(
        self,
        since: datetime,
        event_type: Optional[SecurityEventType] = None,
        source_address: Optional[str] = None,
    ) -> int:
        ...

    @abstractmethod
    async def query_recent_events(
        self,
        since: Optional[datetime] = None,
        event_type: Optional[SecurityEventType] = None,
        subject_id: Optional[UUID] = None,
        tenant_id: Optional[UUID] = None,
        source_address: Optional[str] = None,
        limit: Optional[int] = None,
    ) -> List[SecurityEvent]:
        ...
