"""
Germy Auth Test Configuration
=============================

Pytest fixtures for the identity core: an in-memory SQLite store, a
manually advanced clock and a started IdentityEngine.
"""

import uuid
from datetime import datetime, timedelta, timezone
from typing import AsyncGenerator, Optional

import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import create_async_engine
from sqlalchemy.pool import StaticPool

from germy_auth.core.engine import IdentityEngine
from germy_auth.core.passwords import hash_password
from germy_auth.core.tokens import SigningKey, TokenService
from germy_auth.core.types import ApprovalStatus, Role, Subject
from germy_auth.db.session import Database
from germy_auth.db.store import SQLAlchemyIdentityStore


TEST_SECRET = "test-signing-secret-0123456789abcdef"
TEST_PASSWORD = "Passw0rd!"
TEST_BCRYPT_ROUNDS = 4


class ManualClock:
    """Clock that only moves when told to."""

    def __init__(self, start: Optional[datetime] = None):
        self.now = start or datetime(2026, 1, 5, 9, 0, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> datetime:
        self.now += timedelta(**kwargs)
        return self.now


# ==================== Database Fixtures ====================


@pytest.fixture
def clock() -> ManualClock:
    return ManualClock()


@pytest_asyncio.fixture(scope="function")
async def database() -> AsyncGenerator[Database, None]:
    """In-memory SQLite database with all tables created."""
    engine = create_async_engine(
        "sqlite+aiosqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    db = Database(engine=engine)
    await db.init(create_tables=True)

    yield db

    await db.close()


@pytest.fixture
def store(database) -> SQLAlchemyIdentityStore:
    return SQLAlchemyIdentityStore(database)


# ==================== Engine Fixtures ====================


@pytest.fixture
def tokens(clock) -> TokenService:
    return TokenService(SigningKey("test-v1", TEST_SECRET), clock=clock)


@pytest_asyncio.fixture(scope="function")
async def identity(store, tokens, clock) -> AsyncGenerator[IdentityEngine, None]:
    """Started identity engine without the background sweeper."""
    engine = IdentityEngine(store, tokens, clock=clock, bcrypt_rounds=TEST_BCRYPT_ROUNDS)
    await engine.start(run_sweeper=False)

    yield engine

    await engine.close()


@pytest_asyncio.fixture
async def company(identity):
    """A company with its super admin, as (tenant, super_admin)."""
    return await identity.access.bootstrap_tenant(
        "Acme Attendance", "owner@acme.test", TEST_PASSWORD, domain="acme.test"
    )


@pytest.fixture
def make_subject(store):
    """Factory inserting a subject directly into the store."""

    async def _make(
        role: Role,
        tenant_id: Optional[uuid.UUID],
        email: Optional[str] = None,
        approved: bool = True,
        is_active: bool = True,
        **flags,
    ) -> Subject:
        defaults = {
            Role.USER: {"mobile_app_access": True},
            Role.COMPANY_ADMIN: {"mobile_app_access": True, "dashboard_access": True},
            Role.COMPANY_SUPER_ADMIN: {"dashboard_access": True},
            Role.PLATFORM_ADMIN: {"platform_panel_access": True},
        }
        capabilities = dict(defaults[role]) if approved else {}
        capabilities.update(flags)

        return await store.insert_subject(Subject(
            id=uuid.uuid4(),
            tenant_id=tenant_id,
            email=email or f"{role.value}-{uuid.uuid4().hex[:8]}@acme.test",
            password_hash=hash_password(TEST_PASSWORD, rounds=TEST_BCRYPT_ROUNDS),
            role=role,
            approval_status=ApprovalStatus.APPROVED if approved else ApprovalStatus.PENDING,
            is_active=is_active,
            **capabilities,
        ))

    return _make
