"""
Access Control Engine

Decides who may authenticate as what, and what an authenticated principal
may do.

Authorization is not purely hierarchical. A subject's effective access is
the conjunction of:
    - role membership
    - the capability flag for the surface being used
    - approval_status == approved (tenant roles)
    - is_active
    - owning tenant active
"""

import logging
from dataclasses import dataclass
from typing import Dict, FrozenSet, Iterable, Optional, Set
from uuid import UUID, uuid4

from germy_auth.core.passwords import PasswordPolicyEngine, hash_password, verify_password
from germy_auth.core.revocation import RevocationRegistry
from germy_auth.core.security import SecurityMonitor
from germy_auth.core.store import IdentityStore
from germy_auth.core.tokens import IssuedToken, TokenService
from germy_auth.core.types import (
    ApprovalRequest,
    ApprovalStatus,
    CapabilityFlags,
    Clock,
    Principal,
    RegistrationPath,
    RequestType,
    RevocationReason,
    Role,
    SecurityEvent,
    SecurityEventType,
    Severity,
    Subject,
    Surface,
    Tenant,
    TokenClaims,
    utcnow,
)
from germy_auth.exceptions import (
    AccountDeactivated,
    AuthorizationDenied,
    CredentialRevoked,
    CrossTenant,
    EmailAlreadyRegistered,
    Forbidden,
    InsufficientAccess,
    InvalidCredential,
    InvalidCredentials,
    NotFound,
    PendingApproval,
    TenantDeactivated,
    WeakPassword,
)

logger = logging.getLogger(__name__)


# ============================================================
# Role Tables
# ============================================================


ROLE_HIERARCHY: Dict[Role, int] = {
    Role.PLATFORM_ADMIN: 4,
    Role.COMPANY_SUPER_ADMIN: 3,
    Role.COMPANY_ADMIN: 2,
    Role.USER: 1,
}

# What an approved role unlocks. The only place this mapping lives.
ROLE_CAPABILITIES: Dict[Role, CapabilityFlags] = {
    Role.USER: CapabilityFlags(mobile_app_access=True),
    Role.COMPANY_ADMIN: CapabilityFlags(mobile_app_access=True, dashboard_access=True),
    Role.COMPANY_SUPER_ADMIN: CapabilityFlags(dashboard_access=True),
    Role.PLATFORM_ADMIN: CapabilityFlags(platform_panel_access=True),
}

ROLE_DEFAULT_SURFACE: Dict[Role, Surface] = {
    Role.USER: Surface.MOBILE_APP,
    Role.COMPANY_ADMIN: Surface.DASHBOARD,
    Role.COMPANY_SUPER_ADMIN: Surface.DASHBOARD,
    Role.PLATFORM_ADMIN: Surface.PLATFORM_PANEL,
}

APPROVER_ROLES: FrozenSet[Role] = frozenset({
    Role.COMPANY_ADMIN,
    Role.COMPANY_SUPER_ADMIN,
    Role.PLATFORM_ADMIN,
})

ROLE_ASSIGNERS: Dict[Role, Set[Role]] = {
    Role.PLATFORM_ADMIN: {Role.PLATFORM_ADMIN},
    Role.COMPANY_SUPER_ADMIN: {Role.PLATFORM_ADMIN, Role.COMPANY_SUPER_ADMIN},
    Role.COMPANY_ADMIN: {Role.PLATFORM_ADMIN, Role.COMPANY_SUPER_ADMIN},
    Role.USER: {Role.PLATFORM_ADMIN, Role.COMPANY_SUPER_ADMIN, Role.COMPANY_ADMIN},
}

SELF_SIGNUP_ROLES: FrozenSet[Role] = frozenset({Role.USER, Role.COMPANY_ADMIN})


def can_assign_role(assigner_role: Role, target_role: Role) -> bool:
    """Check if assigner can assign (or approve, or manage) the target role."""
    return Role(assigner_role) in ROLE_ASSIGNERS.get(Role(target_role), set())


def check_tenant_scope(actor: Principal, tenant_id: Optional[UUID]) -> None:
    """Raise CrossTenant unless the actor may act inside ``tenant_id``."""
    if actor.role == Role.PLATFORM_ADMIN:
        return
    if actor.tenant_id is None or actor.tenant_id != tenant_id:
        raise CrossTenant(details={"actor_tenant": str(actor.tenant_id), "target_tenant": str(tenant_id)})


def normalize_email(email: str) -> str:
    return email.strip().lower()


# ============================================================
# Results
# ============================================================


@dataclass(frozen=True)
class SubjectProfile:
    """Public view of a subject. Never carries the password hash."""

    id: UUID
    tenant_id: Optional[UUID]
    email: str
    first_name: str
    last_name: str
    role: Role
    approval_status: ApprovalStatus
    is_active: bool
    capabilities: CapabilityFlags

    @classmethod
    def from_subject(cls, subject: Subject) -> "SubjectProfile":
        return cls(
            id=subject.id,
            tenant_id=subject.tenant_id,
            email=subject.email,
            first_name=subject.first_name,
            last_name=subject.last_name,
            role=subject.role,
            approval_status=subject.approval_status,
            is_active=subject.is_active,
            capabilities=subject.capabilities,
        )


@dataclass(frozen=True)
class AuthResult:
    profile: SubjectProfile
    token: IssuedToken
    surface: Surface


# ============================================================
# Engine
# ============================================================


class AccessControlEngine:
    """Authentication, authorization and subject lifecycle decisions."""

    def __init__(
        self,
        store: IdentityStore,
        tokens: TokenService,
        revocations: RevocationRegistry,
        monitor: SecurityMonitor,
        passwords: Optional[PasswordPolicyEngine] = None,
        clock: Optional[Clock] = None,
        bcrypt_rounds: int = 12,
    ):
        self.store = store
        self.tokens = tokens
        self.revocations = revocations
        self.monitor = monitor
        self.passwords = passwords or PasswordPolicyEngine()
        self.bcrypt_rounds = bcrypt_rounds
        self._clock = clock or utcnow
        self._dummy_hash: Optional[str] = None

    # ==================== Authentication ====================

    async def authenticate(
        self,
        email: str,
        password: str,
        target_role: Role,
        tenant_id: Optional[UUID] = None,
        surface: Optional[Surface] = None,
        source_address: Optional[str] = None,
        user_agent: Optional[str] = None,
    ) -> AuthResult:
        """
        Authenticate a subject as ``target_role`` and issue a token.

        Args:
            email: Login email
            password: Plaintext password
            target_role: Role the caller is logging in as
            tenant_id: Tenant context; ignored for platform_admin
            surface: Application surface; defaults to the role's primary one
            source_address: Client address, for security events
            user_agent: Client user agent, for security events

        Returns:
            Public profile and issued token

        Raises:
            InvalidCredentials: Unknown account or wrong password
            AccountDeactivated: Subject is deactivated
            PendingApproval: Tenant-role subject not approved
            TenantDeactivated: Owning tenant is deactivated
            InsufficientAccess: Capability for the surface not granted
        """
        email = normalize_email(email)
        role = Role(target_role)

        try:
            subject, resolved_surface = await self._check_login(
                email, password, role, tenant_id, surface
            )
        except AuthorizationDenied as e:
            await self.monitor.log_login_failure(
                email,
                source_address=source_address,
                user_agent=user_agent,
                details={"reason": e.code, "role": role.value},
                subject_id=e.details.get("subject_id"),
                tenant_id=e.details.get("tenant_id"),
            )
            raise

        now = self._clock()
        await self.store.update_subject(
            subject.id,
            {"last_login_at": now, resolved_surface.last_used_field: now},
        )
        issued = self.tokens.issue(subject.id, subject.tenant_id, role, subject.token_version)

        await self.monitor.log_login_success(
            subject.id, email, subject.tenant_id, source_address, user_agent
        )
        logger.info(
            f"{role.value} logged in: {email}",
            extra={
                "subject_id": str(subject.id),
                "tenant_id": str(subject.tenant_id) if subject.tenant_id else None,
                "surface": resolved_surface.value,
            },
        )

        return AuthResult(
            profile=SubjectProfile.from_subject(subject),
            token=issued,
            surface=resolved_surface,
        )

    async def _check_login(
        self,
        email: str,
        password: str,
        role: Role,
        tenant_id: Optional[UUID],
        surface: Optional[Surface],
    ):
        lookup_tenant = tenant_id if role.is_tenant_scoped else None
        subject = await self.store.find_subject_by_credentials(lookup_tenant, email, role)

        # Compare against a throwaway hash when nothing matched
        password_ok = verify_password(
            password, subject.password_hash if subject else self._get_dummy_hash()
        )
        if subject is None or not password_ok:
            raise InvalidCredentials()

        context = {"subject_id": subject.id, "tenant_id": subject.tenant_id}

        if not subject.is_active:
            raise AccountDeactivated(details=context)

        if role.is_tenant_scoped:
            if not subject.is_approved:
                raise PendingApproval(details=context)

            tenant = await self.store.get_tenant(subject.tenant_id) if subject.tenant_id else None
            if tenant is None or not tenant.is_active:
                raise TenantDeactivated(details=context)

        resolved = Surface(surface) if surface else ROLE_DEFAULT_SURFACE[role]
        if not ROLE_CAPABILITIES[role].allows(resolved) or not subject.capabilities.allows(resolved):
            raise InsufficientAccess(details={**context, "surface": resolved.value})

        return subject, resolved

    def _get_dummy_hash(self) -> str:
        if self._dummy_hash is None:
            self._dummy_hash = hash_password(uuid4().hex, rounds=self.bcrypt_rounds)
        return self._dummy_hash

    # ==================== Authorization ====================

    def authorize(self, claims: TokenClaims, required_roles: Iterable[Role]) -> bool:
        """Check if the claims' role is one of ``required_roles``."""
        return Role(claims.role) in {Role(r) for r in required_roles}

    async def authorize_request(
        self,
        token: str,
        required_roles: Optional[Iterable[Role]] = None,
        resource: Optional[str] = None,
        source_address: Optional[str] = None,
        user_agent: Optional[str] = None,
    ) -> TokenClaims:
        """
        Full per-request check: verify, then revocation, then role.

        Every failure is recorded as a security event before it is raised.

        Raises:
            InvalidCredential: Token fails verification
            CredentialRevoked: Token is revoked
            Forbidden: Role not in ``required_roles``
        """
        try:
            claims = self.tokens.verify(token)
        except InvalidCredential as e:
            await self.monitor.log_unauthorized_access(
                resource or "unknown",
                source_address=source_address,
                user_agent=user_agent,
                details={"reason": "invalid_token", "token_error": e.details.get("reason")},
            )
            raise

        if await self.revocations.is_revoked(token, claims):
            await self.monitor.log_token_revoked(
                claims.subject_id,
                claims.tenant_id,
                reason="revoked_token_presented",
                source_address=source_address,
            )
            raise CredentialRevoked()

        if required_roles is not None:
            required = {Role(r) for r in required_roles}
            if not self.authorize(claims, required):
                await self.monitor.log_unauthorized_access(
                    resource or "unknown",
                    subject_id=claims.subject_id,
                    tenant_id=claims.tenant_id,
                    source_address=source_address,
                    user_agent=user_agent,
                    details={
                        "role": claims.role.value,
                        "required_roles": sorted(r.value for r in required),
                    },
                )
                raise Forbidden()

        return claims

    def grant_capabilities(self, subject_id: UUID, role: Role) -> CapabilityFlags:
        """Capability flags an approved ``role`` unlocks for the subject."""
        flags = ROLE_CAPABILITIES[Role(role)]
        logger.debug(f"Capabilities for {subject_id} as {Role(role).value}: {flags}")
        return flags

    # ==================== Registration ====================

    async def register_subject(
        self,
        email: str,
        password: str,
        role: Role,
        tenant_id: Optional[UUID],
        path: RegistrationPath = RegistrationPath.SELF_SIGNUP,
        first_name: str = "",
        last_name: str = "",
        creator: Optional[Principal] = None,
        source_address: Optional[str] = None,
    ) -> Subject:
        """
        Create a subject.

        Self-signups start pending with no capabilities and open a
        new_signup approval request. Admin-created subjects start approved
        with the role's capabilities.

        Raises:
            WeakPassword: Password fails the policy
            EmailAlreadyRegistered: Email taken within the tenant
            Forbidden: Role not allowed on this path or for this creator
            CrossTenant: Creator acting outside their tenant
            NotFound / TenantDeactivated: Tenant missing or inactive
        """
        role = Role(role)
        path = RegistrationPath(path)
        email = normalize_email(email)

        if path == RegistrationPath.TENANT_BOOTSTRAP:
            raise Forbidden("Tenant bootstrap must go through bootstrap_tenant")

        if path == RegistrationPath.SELF_SIGNUP:
            if role not in SELF_SIGNUP_ROLES:
                raise Forbidden(f"Role {role.value} cannot be requested at signup")
        else:
            if creator is None or not can_assign_role(creator.role, role):
                raise Forbidden(f"Not allowed to create {role.value} accounts")

        if role.is_tenant_scoped:
            if tenant_id is None:
                raise NotFound("Company not found")
            if creator is not None:
                check_tenant_scope(creator, tenant_id)
            await self._require_active_tenant(tenant_id)
        else:
            tenant_id = None

        await self._check_password_policy(email, password, tenant_id, source_address)
        await self._ensure_email_available(tenant_id, email)

        now = self._clock()
        subject = Subject(
            id=uuid4(),
            tenant_id=tenant_id,
            email=email,
            password_hash=hash_password(password, rounds=self.bcrypt_rounds),
            role=role,
            first_name=first_name,
            last_name=last_name,
            created_at=now,
            updated_at=now,
        )
        if path == RegistrationPath.ADMIN_CREATED:
            self._mark_approved(subject, creator.subject_id, now)

        subject = await self.store.insert_subject(subject)

        if path == RegistrationPath.SELF_SIGNUP:
            await self.store.insert_approval_request(ApprovalRequest(
                id=uuid4(),
                subject_id=subject.id,
                tenant_id=tenant_id,
                requested_role=role,
                request_type=RequestType.NEW_SIGNUP,
                requested_by=subject.id,
                created_at=now,
            ))

        await self._record_account_created(subject, path, creator, source_address)
        return subject

    async def bootstrap_tenant(
        self,
        tenant_name: str,
        email: str,
        password: str,
        domain: Optional[str] = None,
        first_name: str = "",
        last_name: str = "",
        source_address: Optional[str] = None,
    ):
        """
        Create a tenant together with its first company_super_admin.

        Returns:
            (tenant, subject)
        """
        email = normalize_email(email)
        await self._check_password_policy(email, password, None, source_address)

        tenant = await self.store.insert_tenant(
            Tenant(id=uuid4(), name=tenant_name, domain=domain, is_active=True)
        )

        now = self._clock()
        subject = Subject(
            id=uuid4(),
            tenant_id=tenant.id,
            email=email,
            password_hash=hash_password(password, rounds=self.bcrypt_rounds),
            role=Role.COMPANY_SUPER_ADMIN,
            first_name=first_name,
            last_name=last_name,
            created_at=now,
            updated_at=now,
        )
        self._mark_approved(subject, None, now)
        subject = await self.store.insert_subject(subject)

        await self._record_account_created(
            subject, RegistrationPath.TENANT_BOOTSTRAP, None, source_address
        )
        logger.info(f"Company super admin registered: {email} for company {tenant.name}")
        return tenant, subject

    def _mark_approved(self, subject: Subject, approver_id: Optional[UUID], now) -> None:
        flags = self.grant_capabilities(subject.id, subject.role)
        subject.mobile_app_access = flags.mobile_app_access
        subject.dashboard_access = flags.dashboard_access
        subject.platform_panel_access = flags.platform_panel_access
        subject.approval_status = ApprovalStatus.APPROVED
        subject.approved_by = approver_id
        subject.approved_at = now

    async def _require_active_tenant(self, tenant_id: UUID) -> Tenant:
        tenant = await self.store.get_tenant(tenant_id)
        if tenant is None:
            raise NotFound("Company not found")
        if not tenant.is_active:
            raise TenantDeactivated()
        return tenant

    async def _ensure_email_available(self, tenant_id: Optional[UUID], email: str) -> None:
        if await self.store.find_subject_by_email(tenant_id, email) is not None:
            raise EmailAlreadyRegistered()

    async def _check_password_policy(
        self,
        email: str,
        password: str,
        tenant_id: Optional[UUID],
        source_address: Optional[str],
    ) -> None:
        result = self.passwords.validate(password)
        if result.valid:
            return
        await self.monitor.log_password_policy_violation(
            email, result.errors, tenant_id=tenant_id, source_address=source_address
        )
        raise WeakPassword(result.errors, result.suggestions)

    async def _record_account_created(
        self,
        subject: Subject,
        path: RegistrationPath,
        creator: Optional[Principal],
        source_address: Optional[str],
    ) -> None:
        await self.monitor.record(SecurityEvent(
            type=SecurityEventType.ACCOUNT_CREATED,
            severity=Severity.LOW,
            subject_id=subject.id,
            tenant_id=subject.tenant_id,
            email=subject.email,
            source_address=source_address,
            details={
                "path": path.value,
                "role": subject.role.value,
                "created_by": str(creator.subject_id) if creator else None,
            },
        ))

    # ==================== Sessions ====================

    async def logout(
        self,
        token: str,
        source_address: Optional[str] = None,
        user_agent: Optional[str] = None,
    ) -> TokenClaims:
        """Revoke ``token`` until its own expiry."""
        claims = self.tokens.verify(token)
        await self.revocations.revoke(
            token,
            claims.subject_id,
            claims.tenant_id,
            reason=RevocationReason.LOGOUT,
            expires_at=claims.expires_at,
        )
        await self.monitor.record(SecurityEvent(
            type=SecurityEventType.LOGOUT,
            severity=Severity.LOW,
            subject_id=claims.subject_id,
            tenant_id=claims.tenant_id,
            source_address=source_address,
            user_agent=user_agent,
        ))
        return claims

    async def change_password(
        self,
        principal: Principal,
        current_password: str,
        new_password: str,
        source_address: Optional[str] = None,
    ) -> int:
        """
        Change the caller's password and revoke every existing session.

        Returns:
            The subject's new token version
        """
        subject = await self.store.get_subject(principal.subject_id)
        if subject is None:
            raise NotFound("User not found")

        if not verify_password(current_password, subject.password_hash):
            await self.monitor.log_login_failure(
                subject.email,
                source_address=source_address,
                details={"reason": "password_change"},
                subject_id=subject.id,
                tenant_id=subject.tenant_id,
            )
            raise InvalidCredentials()

        await self._check_password_policy(
            subject.email, new_password, subject.tenant_id, source_address
        )
        updated = await self.store.update_subject(
            subject.id,
            {"password_hash": hash_password(new_password, rounds=self.bcrypt_rounds)},
            bump_token_version=True,
        )
        if updated is None:
            raise NotFound("User not found")
        version = updated.token_version
        self.revocations.record_revoke_all(
            subject.id, subject.tenant_id, version, RevocationReason.SECURITY
        )

        await self.monitor.record(SecurityEvent(
            type=SecurityEventType.PASSWORD_CHANGED,
            severity=Severity.MEDIUM,
            subject_id=subject.id,
            tenant_id=subject.tenant_id,
            email=subject.email,
            source_address=source_address,
        ))
        return version

    async def deactivate_subject(
        self,
        actor: Principal,
        subject_id: UUID,
        reason: Optional[str] = None,
        source_address: Optional[str] = None,
    ) -> Subject:
        """Flag a subject inactive and revoke all of its tokens."""
        subject = await self.store.get_subject(subject_id)
        if subject is None:
            raise NotFound("User not found")

        check_tenant_scope(actor, subject.tenant_id)
        if actor.subject_id == subject.id:
            raise Forbidden("Cannot deactivate your own account")
        if not can_assign_role(actor.role, subject.role):
            raise Forbidden(f"Not allowed to manage {subject.role.value} accounts")

        updated = await self.store.update_subject(
            subject.id, {"is_active": False}, bump_token_version=True
        )
        if updated is None:
            raise NotFound("User not found")
        self.revocations.record_revoke_all(
            subject.id, subject.tenant_id, updated.token_version, RevocationReason.ADMIN_REVOKE
        )

        await self.monitor.record(SecurityEvent(
            type=SecurityEventType.ACCOUNT_DEACTIVATED,
            severity=Severity.MEDIUM,
            subject_id=subject.id,
            tenant_id=subject.tenant_id,
            email=subject.email,
            source_address=source_address,
            details={"deactivated_by": str(actor.subject_id), "reason": reason},
        ))
        logger.info(f"User {subject.id} deactivated by {actor.subject_id}")
        return updated

    async def get_profile(self, subject_id: UUID) -> SubjectProfile:
        subject = await self.store.get_subject(subject_id)
        if subject is None:
            raise NotFound("User not found")
        return SubjectProfile.from_subject(subject)


__all__ = [
    "APPROVER_ROLES",
    "ROLE_ASSIGNERS",
    "ROLE_CAPABILITIES",
    "ROLE_DEFAULT_SURFACE",
    "ROLE_HIERARCHY",
    "AccessControlEngine",
    "AuthResult",
    "SubjectProfile",
    "can_assign_role",
    "check_tenant_scope",
]
