"""
Tests for the SQL Identity Store
================================

Behavior the core relies on from the store: uniqueness, the conditional
review update and UTC-aware timestamps on read.
"""

import uuid
from datetime import timedelta, timezone

import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import create_async_engine

from germy_auth.core.revocation import RevocationRegistry
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
    Tenant,
)
from germy_auth.db.session import Database
from germy_auth.db.store import SQLAlchemyIdentityStore
from germy_auth.exceptions import (
    DuplicatePending,
    EmailAlreadyRegistered,
    InputRejectedError,
    StoreUnavailableError,
)


def pending_request(subject, **kwargs) -> ApprovalRequest:
    return ApprovalRequest(
        id=uuid.uuid4(),
        subject_id=subject.id,
        tenant_id=subject.tenant_id,
        requested_role=kwargs.pop("requested_role", Role.USER),
        request_type=kwargs.pop("request_type", RequestType.NEW_SIGNUP),
        requested_by=subject.id,
        **kwargs,
    )


# ==================== Tenants ====================


class TestTenants:

    @pytest.mark.asyncio
    async def test_insert_and_get(self, store):
        tenant = await store.insert_tenant(Tenant(id=uuid.uuid4(), name="Acme", domain="acme.test"))

        loaded = await store.get_tenant(tenant.id)

        assert loaded.name == "Acme"
        assert loaded.is_active is True

    @pytest.mark.asyncio
    async def test_duplicate_domain(self, store):
        await store.insert_tenant(Tenant(id=uuid.uuid4(), name="Acme", domain="acme.test"))

        with pytest.raises(InputRejectedError) as exc_info:
            await store.insert_tenant(Tenant(id=uuid.uuid4(), name="Acme 2", domain="acme.test"))
        assert exc_info.value.code == "domain_taken"

    @pytest.mark.asyncio
    async def test_unknown_tenant(self, store):
        assert await store.get_tenant(uuid.uuid4()) is None


# ==================== Subjects ====================


class TestSubjects:

    @pytest.mark.asyncio
    async def test_timestamps_are_utc_aware(self, store, make_subject):
        subject = await make_subject(Role.USER, uuid.uuid4())

        loaded = await store.get_subject(subject.id)

        assert loaded.created_at.tzinfo == timezone.utc
        assert subject.created_at.tzinfo == timezone.utc

    @pytest.mark.asyncio
    async def test_email_unique_per_tenant(self, make_subject):
        tenant_id = uuid.uuid4()
        await make_subject(Role.USER, tenant_id, email="same@acme.test")

        with pytest.raises(EmailAlreadyRegistered):
            await make_subject(Role.COMPANY_ADMIN, tenant_id, email="same@acme.test")

    @pytest.mark.asyncio
    async def test_same_email_in_other_tenant(self, make_subject):
        await make_subject(Role.USER, uuid.uuid4(), email="same@acme.test")
        other = await make_subject(Role.USER, uuid.uuid4(), email="same@acme.test")

        assert other.id is not None

    @pytest.mark.asyncio
    async def test_find_by_email_is_scoped(self, store, make_subject):
        tenant_id = uuid.uuid4()
        member = await make_subject(Role.USER, tenant_id, email="member@acme.test")
        await make_subject(Role.PLATFORM_ADMIN, None, email="root@germy.test")

        assert (await store.find_subject_by_email(tenant_id, "member@acme.test")).id == member.id
        assert await store.find_subject_by_email(uuid.uuid4(), "member@acme.test") is None
        assert await store.find_subject_by_email(None, "member@acme.test") is None
        assert (await store.find_subject_by_email(None, "root@germy.test")).role == Role.PLATFORM_ADMIN

    @pytest.mark.asyncio
    async def test_find_by_credentials_matches_role(self, store, make_subject):
        tenant_id = uuid.uuid4()
        await make_subject(Role.USER, tenant_id, email="member@acme.test")

        assert await store.find_subject_by_credentials(tenant_id, "member@acme.test", Role.USER)
        assert await store.find_subject_by_credentials(
            tenant_id, "member@acme.test", Role.COMPANY_ADMIN
        ) is None

    @pytest.mark.asyncio
    async def test_update_maps_enums(self, store, make_subject):
        subject = await make_subject(Role.USER, uuid.uuid4(), approved=False)

        updated = await store.update_subject(
            subject.id, {"approval_status": ApprovalStatus.REJECTED, "rejection_reason": "no"}
        )

        assert updated.approval_status == ApprovalStatus.REJECTED
        assert updated.rejection_reason == "no"

    @pytest.mark.asyncio
    async def test_update_unknown_subject(self, store):
        assert await store.update_subject(uuid.uuid4(), {"is_active": False}) is None

    @pytest.mark.asyncio
    async def test_token_version(self, store, make_subject):
        subject = await make_subject(Role.USER, uuid.uuid4())

        assert await store.get_token_version(subject.id) == 1
        assert await store.increment_token_version(subject.id) == 2
        assert await store.increment_token_version(subject.id) == 3
        assert await store.get_token_version(subject.id) == 3

    @pytest.mark.asyncio
    async def test_update_bumps_token_version_with_patch(self, store, make_subject):
        subject = await make_subject(Role.USER, uuid.uuid4())

        updated = await store.update_subject(
            subject.id, {"is_active": False}, bump_token_version=True
        )

        assert updated.is_active is False
        assert updated.token_version == 2
        assert await store.get_token_version(subject.id) == 2

    @pytest.mark.asyncio
    async def test_update_keeps_token_version_by_default(self, store, make_subject):
        subject = await make_subject(Role.USER, uuid.uuid4())

        updated = await store.update_subject(subject.id, {"first_name": "Wanda"})

        assert updated.first_name == "Wanda"
        assert updated.token_version == 1

    @pytest.mark.asyncio
    async def test_token_version_unknown_subject(self, store):
        assert await store.get_token_version(uuid.uuid4()) is None
        assert await store.increment_token_version(uuid.uuid4()) is None


# ==================== Approval Requests ====================


class TestApprovalRequests:

    @pytest.mark.asyncio
    async def test_one_pending_request_per_subject(self, store, make_subject):
        """The unique index rejects a second pending row even without a pre-check."""
        subject = await make_subject(Role.USER, uuid.uuid4(), approved=False)
        await store.insert_approval_request(pending_request(subject))

        with pytest.raises(DuplicatePending):
            await store.insert_approval_request(pending_request(subject))

    @pytest.mark.asyncio
    async def test_new_pending_after_review(self, store, make_subject, clock):
        subject = await make_subject(Role.USER, uuid.uuid4(), approved=False)
        first = await store.insert_approval_request(pending_request(subject))
        await store.complete_review(
            first.id, ApprovalStatus.REJECTED, uuid.uuid4(), clock(),
            subject_patch={"approval_status": ApprovalStatus.REJECTED},
            rejection_reason="no",
        )

        second = await store.insert_approval_request(pending_request(subject))

        assert (await store.find_pending_request(subject.id)).id == second.id

    @pytest.mark.asyncio
    async def test_complete_review_applies_both_updates(self, store, make_subject, clock):
        subject = await make_subject(Role.USER, uuid.uuid4(), approved=False)
        request = await store.insert_approval_request(pending_request(subject))
        reviewer_id = uuid.uuid4()

        reviewed = await store.complete_review(
            request.id, ApprovalStatus.APPROVED, reviewer_id, clock(),
            subject_patch={
                "approval_status": ApprovalStatus.APPROVED,
                "mobile_app_access": True,
                "approved_by": reviewer_id,
            },
            notes="ok",
        )

        assert reviewed.status == ApprovalStatus.APPROVED
        assert reviewed.reviewer_id == reviewer_id
        assert reviewed.reviewed_at == clock()
        assert reviewed.notes == "ok"

        loaded = await store.get_subject(subject.id)
        assert loaded.is_approved
        assert loaded.mobile_app_access is True
        assert loaded.approved_by == reviewer_id

    @pytest.mark.asyncio
    async def test_second_review_matches_nothing(self, store, make_subject, clock):
        """A request is reviewed once; a later review leaves both rows alone."""
        subject = await make_subject(Role.USER, uuid.uuid4(), approved=False)
        request = await store.insert_approval_request(pending_request(subject))

        first = await store.complete_review(
            request.id, ApprovalStatus.REJECTED, uuid.uuid4(), clock(),
            subject_patch={"approval_status": ApprovalStatus.REJECTED},
            rejection_reason="no",
        )
        second = await store.complete_review(
            request.id, ApprovalStatus.APPROVED, uuid.uuid4(), clock(),
            subject_patch={"approval_status": ApprovalStatus.APPROVED},
        )

        assert first is not None
        assert second is None
        assert (await store.get_approval_request(request.id)).status == ApprovalStatus.REJECTED
        assert (await store.get_subject(subject.id)).approval_status == ApprovalStatus.REJECTED

    @pytest.mark.asyncio
    async def test_review_bumps_token_version(self, store, make_subject, clock):
        subject = await make_subject(Role.COMPANY_ADMIN, uuid.uuid4())
        request = await store.insert_approval_request(pending_request(
            subject, request_type=RequestType.ROLE_CHANGE
        ))

        await store.complete_review(
            request.id, ApprovalStatus.APPROVED, uuid.uuid4(), clock(),
            subject_patch={"role": Role.USER},
            bump_token_version=True,
        )

        loaded = await store.get_subject(subject.id)
        assert loaded.role == Role.USER
        assert loaded.token_version == 2

    @pytest.mark.asyncio
    async def test_lost_review_does_not_bump(self, store, make_subject, clock):
        subject = await make_subject(Role.COMPANY_ADMIN, uuid.uuid4())
        request = await store.insert_approval_request(pending_request(
            subject, request_type=RequestType.ROLE_CHANGE
        ))
        await store.complete_review(
            request.id, ApprovalStatus.REJECTED, uuid.uuid4(), clock(),
            subject_patch={"approval_status": ApprovalStatus.APPROVED},
        )

        late = await store.complete_review(
            request.id, ApprovalStatus.APPROVED, uuid.uuid4(), clock(),
            subject_patch={"role": Role.USER},
            bump_token_version=True,
        )

        assert late is None
        assert await store.get_token_version(subject.id) == 1

    @pytest.mark.asyncio
    async def test_list_filters(self, store, make_subject):
        tenant_a, tenant_b = uuid.uuid4(), uuid.uuid4()
        a = await make_subject(Role.USER, tenant_a, approved=False)
        b = await make_subject(Role.USER, tenant_b, approved=False)
        await store.insert_approval_request(pending_request(a))
        await store.insert_approval_request(pending_request(b))

        assert len(await store.list_approval_requests()) == 2
        assert len(await store.list_approval_requests(tenant_id=tenant_a)) == 1
        assert len(await store.list_approval_requests(subject_id=b.id)) == 1
        assert await store.list_approval_requests(status=ApprovalStatus.APPROVED) == []

    @pytest.mark.asyncio
    async def test_request_data_round_trips(self, store, make_subject):
        subject = await make_subject(Role.USER, uuid.uuid4())
        request = await store.insert_approval_request(pending_request(
            subject,
            requested_role=Role.COMPANY_ADMIN,
            request_type=RequestType.ROLE_CHANGE,
            request_data={"reason": "team lead"},
        ))

        loaded = await store.get_approval_request(request.id)

        assert loaded.request_data == {"reason": "team lead"}
        assert loaded.request_type == RequestType.ROLE_CHANGE
        assert loaded.created_at.tzinfo == timezone.utc


# ==================== Revocations ====================


class TestRevocations:

    def entry(self, clock, subject_id=None, hours=1, digest=None) -> RevocationEntry:
        return RevocationEntry(
            token_digest=digest or uuid.uuid4().hex * 2,
            subject_id=subject_id or uuid.uuid4(),
            tenant_id=None,
            reason=RevocationReason.LOGOUT,
            expires_at=clock() + timedelta(hours=hours),
            created_at=clock(),
        )

    @pytest.mark.asyncio
    async def test_insert_is_idempotent(self, store, clock):
        entry = self.entry(clock, digest="a" * 64)

        await store.insert_revocation_entry(entry)
        await store.insert_revocation_entry(entry)

        assert len(await store.list_revocations()) == 1
        found = await store.find_revocation_entry("a" * 64)
        assert found.expires_at == entry.expires_at

    @pytest.mark.asyncio
    async def test_expired_entries(self, store, clock):
        await store.insert_revocation_entry(self.entry(clock, hours=1))
        await store.insert_revocation_entry(self.entry(clock, hours=-1))

        assert len(await store.list_active_revocations(clock())) == 1
        assert await store.delete_expired_revocations(clock()) == 1
        assert len(await store.list_revocations()) == 1

    @pytest.mark.asyncio
    async def test_delete_and_list_by_subject(self, store, clock):
        subject_id = uuid.uuid4()
        await store.insert_revocation_entry(self.entry(clock, subject_id=subject_id, digest="b" * 64))
        await store.insert_revocation_entry(self.entry(clock))

        assert len(await store.list_revocations(subject_id=subject_id)) == 1

        await store.delete_revocation_entry("b" * 64)

        assert await store.find_revocation_entry("b" * 64) is None


# ==================== Security Events ====================


class TestSecurityEvents:

    @pytest.mark.asyncio
    async def test_count_and_query(self, store, clock):
        for address in ("203.0.113.7", "203.0.113.7", "198.51.100.1"):
            await store.append_security_event(SecurityEvent(
                type=SecurityEventType.LOGIN_FAILED,
                severity=Severity.HIGH,
                source_address=address,
                timestamp=clock(),
            ))
        await store.append_security_event(SecurityEvent(
            type=SecurityEventType.LOGOUT, severity=Severity.LOW, timestamp=clock()
        ))

        since = clock() - timedelta(minutes=1)
        assert await store.count_recent_events(since) == 4
        assert await store.count_recent_events(since, SecurityEventType.LOGIN_FAILED, "203.0.113.7") == 2
        assert await store.count_recent_events(clock() + timedelta(seconds=1)) == 0

        events = await store.query_recent_events(event_type=SecurityEventType.LOGIN_FAILED, limit=2)
        assert len(events) == 2
        assert events[0].timestamp.tzinfo == timezone.utc

    @pytest.mark.asyncio
    async def test_details_persisted(self, store):
        stored = await store.append_security_event(SecurityEvent(
            type=SecurityEventType.SUSPICIOUS_ACTIVITY,
            severity=Severity.CRITICAL,
            details={"description": "impossible travel"},
        ))

        events = await store.query_recent_events()

        assert events[0].id == stored.id
        assert events[0].details == {"description": "impossible travel"}
        assert events[0].risk_score == 0


# ==================== Faults ====================


class TestStoreFaults:

    @pytest_asyncio.fixture
    async def unreachable_store(self, tmp_path):
        """Store whose database file cannot be opened."""
        engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'missing' / 'identity.db'}")
        yield SQLAlchemyIdentityStore(Database(engine=engine))
        await engine.dispose()

    @pytest.mark.asyncio
    async def test_database_errors_become_store_unavailable(self, unreachable_store):
        with pytest.raises(StoreUnavailableError) as exc_info:
            await unreachable_store.get_token_version(uuid.uuid4())

        assert exc_info.value.code == "store_unavailable"
        assert "OperationalError" in exc_info.value.details["error"]

    @pytest.mark.asyncio
    async def test_registry_fails_open_on_database_outage(self, unreachable_store, clock, tokens):
        registry = RevocationRegistry(unreachable_store, clock=clock)
        token = tokens.issue(uuid.uuid4(), uuid.uuid4(), Role.USER).token

        assert await registry.is_revoked(token) is False

    @pytest.mark.asyncio
    async def test_conflicts_keep_their_own_errors(self, store, make_subject):
        tenant_id = uuid.uuid4()
        await make_subject(Role.USER, tenant_id, email="same@acme.test")

        with pytest.raises(EmailAlreadyRegistered):
            await make_subject(Role.USER, tenant_id, email="same@acme.test")
