# GERMY AUTH - Identity & Access Control
"""
Germy Auth: identity and access control for the multi-tenant attendance platform.

Core Components:
    - TokenService: Issue and verify bearer tokens
    - RevocationRegistry: Denylist for tokens revoked before expiry
    - AccessControlEngine: Authentication and role/capability authorization
    - ApprovalWorkflow: Review of signups, role changes and reactivations
    - PasswordPolicyEngine: Password rules and strength scoring
    - SecurityMonitor: Security event scoring and alerting

Example:
    from germy_auth import IdentityEngine
    from germy_auth.db import Database, SQLAlchemyIdentityStore

    database = Database()
    await database.init()
    async with IdentityEngine.from_settings(SQLAlchemyIdentityStore(database)) as engine:
        result = await engine.access.authenticate(email, password, Role.USER, tenant_id)
"""

from germy_auth.core.access import AccessControlEngine, AuthResult, SubjectProfile
from germy_auth.core.approval import ApprovalWorkflow
from germy_auth.core.engine import IdentityEngine
from germy_auth.core.passwords import PasswordPolicyEngine
from germy_auth.core.revocation import RevocationRegistry
from germy_auth.core.security import SecurityMonitor
from germy_auth.core.tokens import SigningKey, TokenService
from germy_auth.core.types import Principal, Role, Surface

__version__ = "1.0.0"

__all__ = [
    "IdentityEngine",
    "AccessControlEngine",
    "ApprovalWorkflow",
    "PasswordPolicyEngine",
    "RevocationRegistry",
    "SecurityMonitor",
    "SigningKey",
    "TokenService",
    "AuthResult",
    "SubjectProfile",
    "Principal",
    "Role",
    "Surface",
]
