"""
Test Configuration and Fixtures

Shared fixtures for Germy Auth API tests.
Provides an isolated database, a started identity engine, the app and
authenticated clients.
"""

import uuid
from typing import AsyncGenerator

import pytest
import pytest_asyncio
from fastapi import FastAPI
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import create_async_engine
from sqlalchemy.pool import StaticPool

from germy_auth.api.main import create_app
from germy_auth.core.engine import IdentityEngine
from germy_auth.core.passwords import hash_password
from germy_auth.core.tokens import SigningKey, TokenService
from germy_auth.core.types import ApprovalStatus, Role, Subject
from germy_auth.db.session import Database
from germy_auth.db.store import SQLAlchemyIdentityStore


TEST_PASSWORD = "Passw0rd!"
OWNER_EMAIL = "owner@acme-attendance.com"


# ==================== Database Fixtures ====================


@pytest_asyncio.fixture(scope="function")
async def database() -> AsyncGenerator[Database, None]:
    """Create in-memory SQLite database for testing."""
    engine = create_async_engine(
        "sqlite+aiosqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    db = Database(engine=engine)
    await db.init(create_tables=True)

    yield db

    await db.close()


@pytest_asyncio.fixture(scope="function")
async def identity(database) -> AsyncGenerator[IdentityEngine, None]:
    """Started identity engine; the sweeper is left off."""
    engine = IdentityEngine(
        SQLAlchemyIdentityStore(database),
        TokenService(SigningKey("test-v1", "api-test-signing-secret-0123456789ab")),
        bcrypt_rounds=4,
    )
    await engine.start(run_sweeper=False)

    yield engine

    await engine.close()


# ==================== Application Fixtures ====================


@pytest.fixture(scope="function")
def app(identity, database) -> FastAPI:
    """Create FastAPI app around the test engine."""
    return create_app(identity=identity, database=database)


@pytest_asyncio.fixture(scope="function")
async def async_client(app) -> AsyncGenerator[AsyncClient, None]:
    """Create async test client."""
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac


# ==================== Account Fixtures ====================


@pytest_asyncio.fixture(scope="function")
async def company(identity):
    """A company and its super admin, as (tenant, owner)."""
    return await identity.access.bootstrap_tenant(
        "Acme Attendance", OWNER_EMAIL, TEST_PASSWORD, domain="acme-attendance.com"
    )


@pytest_asyncio.fixture(scope="function")
async def platform_admin(identity) -> Subject:
    """An approved platform administrator."""
    return await identity.store.insert_subject(Subject(
        id=uuid.uuid4(),
        tenant_id=None,
        email="root@germy-platform.com",
        password_hash=hash_password(TEST_PASSWORD, rounds=4),
        role=Role.PLATFORM_ADMIN,
        approval_status=ApprovalStatus.APPROVED,
        platform_panel_access=True,
    ))


async def login(client: AsyncClient, email: str, role: Role = Role.USER, company_id=None) -> dict:
    """Log in and return Authorization headers."""
    payload = {"email": email, "password": TEST_PASSWORD, "role": role.value}
    if company_id is not None:
        payload["company_id"] = str(company_id)

    response = await client.post("/api/v1/auth/login", json=payload)
    assert response.status_code == 200, response.text
    return {"Authorization": f"Bearer {response.json()['access_token']}"}


@pytest_asyncio.fixture(scope="function")
async def owner_headers(async_client, company) -> dict:
    """Authorization headers for the company super admin."""
    tenant, _ = company
    return await login(async_client, OWNER_EMAIL, Role.COMPANY_SUPER_ADMIN, tenant.id)


@pytest_asyncio.fixture(scope="function")
async def platform_headers(async_client, platform_admin) -> dict:
    """Authorization headers for the platform admin."""
    return await login(async_client, platform_admin.email, Role.PLATFORM_ADMIN)
