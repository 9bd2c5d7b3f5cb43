"""
SQL Identity Store

SQLAlchemy implementation of the IdentityStore port. Each call runs in
its own session; complete_review runs both updates in one transaction.
Database faults reach callers as StoreUnavailableError (see
Database.session).
"""

import logging
from dataclasses import replace
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional
from uuid import UUID, uuid4

from sqlalchemy import delete, func, select, update
from sqlalchemy.exc import IntegrityError

from germy_auth.core.store import IdentityStore
from germy_auth.core.types import (
    ApprovalRequest,
    ApprovalStatus,
    RequestType,
    RevocationEntry,
    RevocationReason,
    Role,
    SecurityEvent,
    SecurityEventType,
    Severity,
    Subject,
    Tenant,
    as_utc,
    utcnow,
)
from germy_auth.db import models
from germy_auth.db.session import Database
from germy_auth.exceptions import DuplicatePending, EmailAlreadyRegistered, InputRejectedError

logger = logging.getLogger(__name__)


# Domain field -> column, where they differ
SUBJECT_COLUMNS = {"tenant_id": "company_id"}


def _column_value(value: Any) -> Any:
    return value.value if isinstance(value, Enum) else value


def _subject_values(patch: Dict[str, Any], bump_token_version: bool) -> Dict[str, Any]:
    values = {SUBJECT_COLUMNS.get(key, key): _column_value(value) for key, value in patch.items()}
    values["updated_at"] = utcnow()
    if bump_token_version:
        values["token_version"] = models.User.token_version + 1
    return values


# ============================================================
# Row Mapping
# ============================================================


def _to_tenant(row: models.Company) -> Tenant:
    return Tenant(id=row.id, name=row.name, domain=row.domain, is_active=row.is_active)


def _to_subject(row: models.User) -> Subject:
    return Subject(
        id=row.id,
        tenant_id=row.company_id,
        email=row.email,
        password_hash=row.password_hash,
        role=Role(row.role),
        first_name=row.first_name or "",
        last_name=row.last_name or "",
        mobile_app_access=row.mobile_app_access,
        dashboard_access=row.dashboard_access,
        platform_panel_access=row.platform_panel_access,
        approval_status=ApprovalStatus(row.approval_status),
        is_active=row.is_active,
        approved_by=row.approved_by,
        approved_at=as_utc(row.approved_at),
        rejection_reason=row.rejection_reason,
        token_version=row.token_version,
        last_login_at=as_utc(row.last_login_at),
        mobile_app_last_used=as_utc(row.mobile_app_last_used),
        dashboard_last_used=as_utc(row.dashboard_last_used),
        platform_panel_last_used=as_utc(row.platform_panel_last_used),
        created_at=as_utc(row.created_at),
        updated_at=as_utc(row.updated_at),
    )


def _to_request(row: models.ApprovalRequest) -> ApprovalRequest:
    return ApprovalRequest(
        id=row.id,
        subject_id=row.user_id,
        tenant_id=row.company_id,
        requested_role=Role(row.requested_role),
        request_type=RequestType(row.request_type),
        status=ApprovalStatus(row.status),
        requested_by=row.requested_by,
        request_data=row.request_data,
        reviewer_id=row.reviewed_by,
        reviewed_at=as_utc(row.reviewed_at),
        notes=row.review_notes,
        rejection_reason=row.rejection_reason,
        created_at=as_utc(row.created_at),
    )


def _to_entry(row: models.RevokedToken) -> RevocationEntry:
    return RevocationEntry(
        token_digest=row.token_digest,
        subject_id=row.user_id,
        tenant_id=row.company_id,
        reason=RevocationReason(row.reason),
        expires_at=as_utc(row.expires_at),
        created_at=as_utc(row.created_at),
    )


def _to_event(row: models.SecurityEventRecord) -> SecurityEvent:
    return SecurityEvent(
        id=row.id,
        type=SecurityEventType(row.event_type),
        severity=Severity(row.severity),
        subject_id=row.user_id,
        tenant_id=row.company_id,
        email=row.email,
        source_address=row.ip_address,
        user_agent=row.user_agent,
        risk_score=row.risk_score,
        details=row.details or {},
        timestamp=as_utc(row.created_at),
    )


# ============================================================
# Store
# ============================================================


class SQLAlchemyIdentityStore(IdentityStore):
    """IdentityStore backed by an async SQLAlchemy database."""

    def __init__(self, database: Database):
        self.db = database

    # ==================== Tenants ====================

    async def get_tenant(self, tenant_id: UUID) -> Optional[Tenant]:
        async with self.db.session() as session:
            row = await session.get(models.Company, tenant_id)
            return _to_tenant(row) if row else None

    async def insert_tenant(self, tenant: Tenant) -> Tenant:
        try:
            async with self.db.session() as session:
                session.add(models.Company(
                    id=tenant.id,
                    name=tenant.name,
                    domain=tenant.domain,
                    is_active=tenant.is_active,
                ))
        except IntegrityError as e:
            raise InputRejectedError("Company domain already exists", code="domain_taken") from e
        return tenant

    # ==================== Subjects ====================

    async def find_subject_by_credentials(
        self, tenant_id: Optional[UUID], email: str, role: Role
    ) -> Optional[Subject]:
        query = select(models.User).where(
            models.User.email == email,
            models.User.role == Role(role).value,
        )
        if tenant_id is not None:
            query = query.where(models.User.company_id == tenant_id)
        query = query.order_by(models.User.created_at).limit(1)

        async with self.db.session() as session:
            row = (await session.execute(query)).scalar_one_or_none()
            return _to_subject(row) if row else None

    async def find_subject_by_email(
        self, tenant_id: Optional[UUID], email: str
    ) -> Optional[Subject]:
        query = select(models.User).where(models.User.email == email)
        if tenant_id is None:
            query = query.where(models.User.company_id.is_(None))
        else:
            query = query.where(models.User.company_id == tenant_id)

        async with self.db.session() as session:
            row = (await session.execute(query.limit(1))).scalar_one_or_none()
            return _to_subject(row) if row else None

    async def get_subject(self, subject_id: UUID) -> Optional[Subject]:
        async with self.db.session() as session:
            row = await session.get(models.User, subject_id)
            return _to_subject(row) if row else None

    async def insert_subject(self, subject: Subject) -> Subject:
        row = models.User(
            id=subject.id,
            company_id=subject.tenant_id,
            email=subject.email,
            password_hash=subject.password_hash,
            first_name=subject.first_name,
            last_name=subject.last_name,
            role=subject.role.value,
            mobile_app_access=subject.mobile_app_access,
            dashboard_access=subject.dashboard_access,
            platform_panel_access=subject.platform_panel_access,
            approval_status=subject.approval_status.value,
            approved_by=subject.approved_by,
            approved_at=subject.approved_at,
            is_active=subject.is_active,
            token_version=subject.token_version,
            created_at=subject.created_at or utcnow(),
            updated_at=subject.updated_at or utcnow(),
        )
        try:
            async with self.db.session() as session:
                session.add(row)
        except IntegrityError as e:
            raise EmailAlreadyRegistered() from e
        subject.created_at = as_utc(row.created_at)
        subject.updated_at = as_utc(row.updated_at)
        return subject

    async def update_subject(
        self, subject_id: UUID, patch: Dict[str, Any], bump_token_version: bool = False
    ) -> Optional[Subject]:
        async with self.db.session() as session:
            result = await session.execute(
                update(models.User)
                .where(models.User.id == subject_id)
                .values(**_subject_values(patch, bump_token_version))
            )
            if result.rowcount == 0:
                return None
            row = (await session.execute(
                select(models.User)
                .where(models.User.id == subject_id)
                .execution_options(populate_existing=True)
            )).scalar_one()
            return _to_subject(row)

    async def increment_token_version(self, subject_id: UUID) -> Optional[int]:
        async with self.db.session() as session:
            result = await session.execute(
                update(models.User)
                .where(models.User.id == subject_id)
                .values(token_version=models.User.token_version + 1, updated_at=utcnow())
            )
            if result.rowcount == 0:
                return None
            return (await session.execute(
                select(models.User.token_version).where(models.User.id == subject_id)
            )).scalar_one()

    async def get_token_version(self, subject_id: UUID) -> Optional[int]:
        async with self.db.session() as session:
            return (await session.execute(
                select(models.User.token_version).where(models.User.id == subject_id)
            )).scalar_one_or_none()

    # ==================== Approval requests ====================

    async def insert_approval_request(self, request: ApprovalRequest) -> ApprovalRequest:
        row = models.ApprovalRequest(
            id=request.id,
            user_id=request.subject_id,
            company_id=request.tenant_id,
            requested_role=request.requested_role.value,
            request_type=request.request_type.value,
            request_data=request.request_data,
            requested_by=request.requested_by,
            status=request.status.value,
            created_at=request.created_at or utcnow(),
        )
        try:
            async with self.db.session() as session:
                session.add(row)
        except IntegrityError as e:
            raise DuplicatePending() from e
        request.created_at = as_utc(row.created_at)
        return request

    async def get_approval_request(self, request_id: UUID) -> Optional[ApprovalRequest]:
        async with self.db.session() as session:
            row = await session.get(models.ApprovalRequest, request_id)
            return _to_request(row) if row else None

    async def find_pending_request(self, subject_id: UUID) -> Optional[ApprovalRequest]:
        query = select(models.ApprovalRequest).where(
            models.ApprovalRequest.user_id == subject_id,
            models.ApprovalRequest.status == ApprovalStatus.PENDING.value,
        )
        async with self.db.session() as session:
            row = (await session.execute(query.limit(1))).scalar_one_or_none()
            return _to_request(row) if row else None

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
        async with self.db.session() as session:
            # Conditional update: the first reviewer wins, later ones match no row
            result = await session.execute(
                update(models.ApprovalRequest)
                .where(
                    models.ApprovalRequest.id == request_id,
                    models.ApprovalRequest.status == ApprovalStatus.PENDING.value,
                )
                .values(
                    status=ApprovalStatus(status).value,
                    reviewed_by=reviewer_id,
                    reviewed_at=reviewed_at,
                    review_notes=notes,
                    rejection_reason=rejection_reason,
                    updated_at=utcnow(),
                )
            )
            if result.rowcount != 1:
                return None

            row = (await session.execute(
                select(models.ApprovalRequest)
                .where(models.ApprovalRequest.id == request_id)
                .execution_options(populate_existing=True)
            )).scalar_one()

            await session.execute(
                update(models.User)
                .where(models.User.id == row.user_id)
                .values(**_subject_values(subject_patch, bump_token_version))
            )
            return _to_request(row)

    async def list_approval_requests(
        self,
        tenant_id: Optional[UUID] = None,
        status: Optional[ApprovalStatus] = None,
        subject_id: Optional[UUID] = None,
        limit: int = 50,
        offset: int = 0,
    ) -> List[ApprovalRequest]:
        query = select(models.ApprovalRequest)
        if tenant_id is not None:
            query = query.where(models.ApprovalRequest.company_id == tenant_id)
        if status is not None:
            query = query.where(models.ApprovalRequest.status == ApprovalStatus(status).value)
        if subject_id is not None:
            query = query.where(models.ApprovalRequest.user_id == subject_id)
        query = (
            query.order_by(models.ApprovalRequest.created_at.desc())
            .limit(limit)
            .offset(offset)
        )

        async with self.db.session() as session:
            rows = (await session.execute(query)).scalars().all()
            return [_to_request(row) for row in rows]

    # ==================== Revocations ====================

    async def insert_revocation_entry(self, entry: RevocationEntry) -> None:
        try:
            async with self.db.session() as session:
                if await session.get(models.RevokedToken, entry.token_digest) is not None:
                    return
                session.add(models.RevokedToken(
                    token_digest=entry.token_digest,
                    user_id=entry.subject_id,
                    company_id=entry.tenant_id,
                    reason=entry.reason.value,
                    expires_at=entry.expires_at,
                    created_at=entry.created_at or utcnow(),
                ))
        except IntegrityError:
            # Concurrent revocation of the same token
            logger.debug(f"Token {entry.token_digest[:12]} already revoked")

    async def find_revocation_entry(self, token_digest: str) -> Optional[RevocationEntry]:
        async with self.db.session() as session:
            row = await session.get(models.RevokedToken, token_digest)
            return _to_entry(row) if row else None

    async def delete_revocation_entry(self, token_digest: str) -> None:
        async with self.db.session() as session:
            await session.execute(
                delete(models.RevokedToken).where(models.RevokedToken.token_digest == token_digest)
            )

    async def delete_expired_revocations(self, now: datetime) -> int:
        async with self.db.session() as session:
            result = await session.execute(
                delete(models.RevokedToken).where(models.RevokedToken.expires_at <= now)
            )
            return result.rowcount or 0

    async def list_active_revocations(self, now: datetime) -> List[RevocationEntry]:
        async with self.db.session() as session:
            rows = (await session.execute(
                select(models.RevokedToken).where(models.RevokedToken.expires_at > now)
            )).scalars().all()
            return [_to_entry(row) for row in rows]

    async def list_revocations(
        self, subject_id: Optional[UUID] = None
    ) -> List[RevocationEntry]:
        query = select(models.RevokedToken)
        if subject_id is not None:
            query = query.where(models.RevokedToken.user_id == subject_id)
        query = query.order_by(models.RevokedToken.created_at.desc())

        async with self.db.session() as session:
            rows = (await session.execute(query)).scalars().all()
            return [_to_entry(row) for row in rows]

    # ==================== Security events ====================

    async def append_security_event(self, event: SecurityEvent) -> SecurityEvent:
        event = replace(event, id=event.id or uuid4(), timestamp=event.timestamp or utcnow())
        async with self.db.session() as session:
            session.add(models.SecurityEventRecord(
                id=event.id,
                event_type=event.type.value,
                severity=event.severity.value,
                risk_score=event.risk_score or 0,
                user_id=event.subject_id,
                company_id=event.tenant_id,
                email=event.email,
                ip_address=event.source_address,
                user_agent=event.user_agent,
                details=event.details,
                created_at=event.timestamp,
            ))
        return event

    async def count_recent_events(
        self,
        since: datetime,
        event_type: Optional[SecurityEventType] = None,
        source_address: Optional[str] = None,
    ) -> int:
        query = select(func.count()).select_from(models.SecurityEventRecord).where(
            models.SecurityEventRecord.created_at >= since
        )
        if event_type is not None:
            query = query.where(
                models.SecurityEventRecord.event_type == SecurityEventType(event_type).value
            )
        if source_address is not None:
            query = query.where(models.SecurityEventRecord.ip_address == source_address)

        async with self.db.session() as session:
            return (await session.execute(query)).scalar_one()

    async def query_recent_events(
        self,
        since: Optional[datetime] = None,
        event_type: Optional[SecurityEventType] = None,
        subject_id: Optional[UUID] = None,
        tenant_id: Optional[UUID] = None,
        source_address: Optional[str] = None,
        limit: Optional[int] = None,
    ) -> List[SecurityEvent]:
        record = models.SecurityEventRecord
        query = select(record)
        if since is not None:
            query = query.where(record.created_at >= since)
        if event_type is not None:
            query = query.where(record.event_type == SecurityEventType(event_type).value)
        if subject_id is not None:
            query = query.where(record.user_id == subject_id)
        if tenant_id is not None:
            query = query.where(record.company_id == tenant_id)
        if source_address is not None:
            query = query.where(record.ip_address == source_address)
        query = query.order_by(record.created_at.desc())
        if limit is not None:
            query = query.limit(limit)

        async with self.db.session() as session:
            rows = (await session.execute(query)).scalars().all()
            return [_to_event(row) for row in rows]
