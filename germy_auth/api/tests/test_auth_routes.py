"""
Authentication Route Tests

Login, registration and session management over HTTP, including the
status codes each denial maps to.
"""

import pytest
from httpx import AsyncClient

from germy_auth.api.tests.conftest import OWNER_EMAIL, TEST_PASSWORD, login
from germy_auth.core.types import Role


# ==================== Health ====================


@pytest.mark.asyncio
async def test_health(async_client: AsyncClient):
    response = await async_client.get("/api/health")

    assert response.status_code == 200
    body = response.json()
    assert body["status"] == "healthy"
    assert body["identity_engine"] is True
    assert body["revocation_sweeper"] is False


# ==================== Login ====================


@pytest.mark.asyncio
async def test_login_success(async_client: AsyncClient, company):
    tenant, owner = company

    response = await async_client.post("/api/v1/auth/login", json={
        "email": OWNER_EMAIL,
        "password": TEST_PASSWORD,
        "role": "company_super_admin",
        "company_id": str(tenant.id),
    })

    assert response.status_code == 200
    body = response.json()
    assert body["token_type"] == "bearer"
    assert body["expires_in"] == 24 * 3600
    assert body["surface"] == "dashboard"
    assert body["user"]["id"] == str(owner.id)
    assert "password_hash" not in body["user"]


@pytest.mark.asyncio
async def test_login_wrong_password(async_client: AsyncClient, company):
    tenant, _ = company

    response = await async_client.post("/api/v1/auth/login", json={
        "email": OWNER_EMAIL,
        "password": "Wr0ng!pass",
        "role": "company_super_admin",
        "company_id": str(tenant.id),
    })

    assert response.status_code == 401
    assert response.json()["message"] == "Invalid credentials"
    assert response.headers["www-authenticate"] == "Bearer"


@pytest.mark.asyncio
async def test_login_unknown_account_same_message(async_client: AsyncClient, company):
    tenant, _ = company

    response = await async_client.post("/api/v1/auth/login", json={
        "email": "nobody@acme-attendance.com",
        "password": TEST_PASSWORD,
        "company_id": str(tenant.id),
    })

    assert response.status_code == 401
    assert response.json()["message"] == "Invalid credentials"


@pytest.mark.asyncio
async def test_login_wrong_surface(async_client: AsyncClient, company):
    """A super admin has no mobile app access."""
    tenant, _ = company

    response = await async_client.post("/api/v1/auth/login", json={
        "email": OWNER_EMAIL,
        "password": TEST_PASSWORD,
        "role": "company_super_admin",
        "company_id": str(tenant.id),
        "surface": "mobile_app",
    })

    assert response.status_code == 403
    assert response.json()["code"] == "insufficient_access"


# ==================== Registration ====================


@pytest.mark.asyncio
async def test_register_starts_pending(async_client: AsyncClient, company):
    tenant, _ = company

    response = await async_client.post("/api/v1/auth/register", json={
        "email": "worker@acme-attendance.com",
        "password": TEST_PASSWORD,
        "company_id": str(tenant.id),
        "first_name": "Wanda",
    })

    assert response.status_code == 201
    body = response.json()
    assert body["approval_status"] == "pending"
    assert body["mobile_app_access"] is False
    assert body["dashboard_access"] is False

    login_response = await async_client.post("/api/v1/auth/login", json={
        "email": "worker@acme-attendance.com",
        "password": TEST_PASSWORD,
        "company_id": str(tenant.id),
    })
    assert login_response.status_code == 401
    assert login_response.json()["code"] == "pending_approval"


@pytest.mark.asyncio
async def test_register_weak_password(async_client: AsyncClient, company):
    tenant, _ = company

    response = await async_client.post("/api/v1/auth/register", json={
        "email": "worker@acme-attendance.com",
        "password": "short",
        "company_id": str(tenant.id),
    })

    assert response.status_code == 400
    body = response.json()
    assert body["code"] == "weak_password"
    assert "Password must be at least 8 characters long" in body["errors"]


@pytest.mark.asyncio
async def test_register_duplicate_email(async_client: AsyncClient, company):
    tenant, _ = company
    payload = {
        "email": "worker@acme-attendance.com",
        "password": TEST_PASSWORD,
        "company_id": str(tenant.id),
    }

    first = await async_client.post("/api/v1/auth/register", json=payload)
    second = await async_client.post("/api/v1/auth/register", json=payload)

    assert first.status_code == 201
    assert second.status_code == 409


@pytest.mark.asyncio
async def test_register_super_admin_refused(async_client: AsyncClient, company):
    tenant, _ = company

    response = await async_client.post("/api/v1/auth/register", json={
        "email": "boss@acme-attendance.com",
        "password": TEST_PASSWORD,
        "company_id": str(tenant.id),
        "role": "company_super_admin",
    })

    assert response.status_code == 403


@pytest.mark.asyncio
async def test_register_company(async_client: AsyncClient):
    response = await async_client.post("/api/v1/auth/register-company", json={
        "company_name": "Globex",
        "company_domain": "globex.com",
        "email": "owner@globex.com",
        "password": TEST_PASSWORD,
    })

    assert response.status_code == 201
    body = response.json()
    assert body["company_name"] == "Globex"
    assert body["user"]["role"] == "company_super_admin"
    assert body["user"]["approval_status"] == "approved"
    assert body["user"]["dashboard_access"] is True


# ==================== Sessions ====================


@pytest.mark.asyncio
async def test_me_requires_token(async_client: AsyncClient):
    response = await async_client.get("/api/v1/auth/me")

    assert response.status_code == 401


@pytest.mark.asyncio
async def test_me_and_verify(async_client: AsyncClient, company, owner_headers: dict):
    tenant, owner = company

    me = await async_client.get("/api/v1/auth/me", headers=owner_headers)
    verify = await async_client.get("/api/v1/auth/verify", headers=owner_headers)

    assert me.status_code == 200
    assert me.json()["email"] == OWNER_EMAIL
    assert verify.json()["company_id"] == str(tenant.id)
    assert verify.json()["role"] == "company_super_admin"


@pytest.mark.asyncio
async def test_logout_revokes_token(async_client: AsyncClient, owner_headers: dict):
    response = await async_client.post("/api/v1/auth/logout", headers=owner_headers)
    assert response.status_code == 200

    after = await async_client.get("/api/v1/auth/me", headers=owner_headers)

    assert after.status_code == 401
    assert after.json()["code"] == "token_revoked"


@pytest.mark.asyncio
async def test_tampered_token(async_client: AsyncClient, owner_headers: dict):
    headers = {"Authorization": owner_headers["Authorization"][:-4] + "AAAA"}

    response = await async_client.get("/api/v1/auth/me", headers=headers)

    assert response.status_code == 401
    assert response.json()["code"] == "invalid_token"


@pytest.mark.asyncio
async def test_change_password_ends_sessions(async_client: AsyncClient, company, owner_headers: dict):
    tenant, _ = company

    response = await async_client.post("/api/v1/auth/change-password", headers=owner_headers, json={
        "current_password": TEST_PASSWORD,
        "new_password": "N3w!Secret9",
    })
    assert response.status_code == 200

    after = await async_client.get("/api/v1/auth/me", headers=owner_headers)
    assert after.status_code == 401

    relogin = await async_client.post("/api/v1/auth/login", json={
        "email": OWNER_EMAIL,
        "password": "N3w!Secret9",
        "role": "company_super_admin",
        "company_id": str(tenant.id),
    })
    assert relogin.status_code == 200


@pytest.mark.asyncio
async def test_password_check(async_client: AsyncClient):
    response = await async_client.post("/api/v1/auth/password/check", json={"password": "password"})

    assert response.status_code == 200
    body = response.json()
    assert body["valid"] is False
    assert body["errors"]


# ==================== Account Management ====================


@pytest.mark.asyncio
async def test_admin_creates_approved_user(async_client: AsyncClient, company, owner_headers: dict):
    tenant, _ = company

    response = await async_client.post("/api/v1/auth/users", headers=owner_headers, json={
        "email": "staff@acme-attendance.com",
        "password": TEST_PASSWORD,
        "role": "user",
    })

    assert response.status_code == 201
    assert response.json()["company_id"] == str(tenant.id)
    assert response.json()["approval_status"] == "approved"

    await login(async_client, "staff@acme-attendance.com", Role.USER, tenant.id)


@pytest.mark.asyncio
async def test_user_cannot_create_users(async_client: AsyncClient, company, owner_headers: dict):
    tenant, _ = company
    await async_client.post("/api/v1/auth/users", headers=owner_headers, json={
        "email": "staff@acme-attendance.com",
        "password": TEST_PASSWORD,
    })
    user_headers = await login(async_client, "staff@acme-attendance.com", Role.USER, tenant.id)

    response = await async_client.post("/api/v1/auth/users", headers=user_headers, json={
        "email": "another@acme-attendance.com",
        "password": TEST_PASSWORD,
    })

    assert response.status_code == 403


@pytest.mark.asyncio
async def test_deactivate_user(async_client: AsyncClient, company, owner_headers: dict):
    tenant, _ = company
    created = await async_client.post("/api/v1/auth/users", headers=owner_headers, json={
        "email": "staff@acme-attendance.com",
        "password": TEST_PASSWORD,
    })
    user_headers = await login(async_client, "staff@acme-attendance.com", Role.USER, tenant.id)

    response = await async_client.post(
        f"/api/v1/auth/users/{created.json()['id']}/deactivate",
        headers=owner_headers,
        json={"reason": "left the company"},
    )

    assert response.status_code == 200
    assert response.json()["is_active"] is False
    assert (await async_client.get("/api/v1/auth/me", headers=user_headers)).status_code == 401
