"""
Approval Route Tests

Signup review over HTTP: listing, approving, rejecting and the
permission and conflict responses around them.
"""

import uuid

import pytest
from httpx import AsyncClient

from germy_auth.api.tests.conftest import TEST_PASSWORD, login
from germy_auth.core.types import Role


WORKER_EMAIL = "worker@acme-attendance.com"


async def signup(client: AsyncClient, tenant_id, email=WORKER_EMAIL, role="user") -> dict:
    response = await client.post("/api/v1/auth/register", json={
        "email": email,
        "password": TEST_PASSWORD,
        "company_id": str(tenant_id),
        "role": role,
    })
    assert response.status_code == 201, response.text
    return response.json()


async def pending_ids(client: AsyncClient, headers: dict) -> list:
    response = await client.get("/api/v1/approvals/pending", headers=headers)
    assert response.status_code == 200
    return [r["id"] for r in response.json()]


@pytest.mark.asyncio
async def test_signup_approval_flow(async_client: AsyncClient, company, owner_headers: dict):
    """Signup -> pending list -> approve -> the user can log in."""
    tenant, owner = company
    user = await signup(async_client, tenant.id)

    pending = await async_client.get("/api/v1/approvals/pending", headers=owner_headers)
    assert pending.status_code == 200
    [request] = pending.json()
    assert request["user_id"] == user["id"]
    assert request["request_type"] == "new_signup"

    response = await async_client.post(
        f"/api/v1/approvals/{request['id']}/approve",
        headers=owner_headers,
        json={"notes": "verified with HR"},
    )

    assert response.status_code == 200
    body = response.json()
    assert body["status"] == "approved"
    assert body["reviewed_by"] == str(owner.id)
    assert body["notes"] == "verified with HR"
    assert await pending_ids(async_client, owner_headers) == []

    headers = await login(async_client, WORKER_EMAIL, Role.USER, tenant.id)
    me = await async_client.get("/api/v1/auth/me", headers=headers)
    assert me.json()["mobile_app_access"] is True


@pytest.mark.asyncio
async def test_reject_then_conflict(async_client: AsyncClient, company, owner_headers: dict):
    tenant, _ = company
    await signup(async_client, tenant.id)
    [request_id] = await pending_ids(async_client, owner_headers)

    rejected = await async_client.post(
        f"/api/v1/approvals/{request_id}/reject",
        headers=owner_headers,
        json={"reason": "not on the payroll"},
    )
    again = await async_client.post(
        f"/api/v1/approvals/{request_id}/approve",
        headers=owner_headers,
        json={},
    )

    assert rejected.status_code == 200
    assert rejected.json()["rejection_reason"] == "not on the payroll"
    assert again.status_code == 409
    assert again.json()["code"] == "not_pending"


@pytest.mark.asyncio
async def test_reject_requires_reason(async_client: AsyncClient, company, owner_headers: dict):
    tenant, _ = company
    await signup(async_client, tenant.id)
    [request_id] = await pending_ids(async_client, owner_headers)

    response = await async_client.post(
        f"/api/v1/approvals/{request_id}/reject",
        headers=owner_headers,
        json={"reason": ""},
    )

    assert response.status_code == 422


@pytest.mark.asyncio
async def test_unknown_request(async_client: AsyncClient, owner_headers: dict):
    response = await async_client.post(
        f"/api/v1/approvals/{uuid.uuid4()}/approve",
        headers=owner_headers,
        json={},
    )

    assert response.status_code == 404


@pytest.mark.asyncio
async def test_user_cannot_list_pending(async_client: AsyncClient, company, owner_headers: dict):
    tenant, _ = company
    await async_client.post("/api/v1/auth/users", headers=owner_headers, json={
        "email": "staff@acme-attendance.com",
        "password": TEST_PASSWORD,
    })
    user_headers = await login(async_client, "staff@acme-attendance.com", Role.USER, tenant.id)

    response = await async_client.get("/api/v1/approvals/pending", headers=user_headers)

    assert response.status_code == 403


@pytest.mark.asyncio
async def test_other_company_cannot_review(async_client: AsyncClient, company):
    tenant, _ = company
    await signup(async_client, tenant.id)

    globex = await async_client.post("/api/v1/auth/register-company", json={
        "company_name": "Globex",
        "email": "owner@globex.com",
        "password": TEST_PASSWORD,
    })
    globex_headers = await login(
        async_client, "owner@globex.com", Role.COMPANY_SUPER_ADMIN, globex.json()["company_id"]
    )
    acme_headers = await login(
        async_client, "owner@acme-attendance.com", Role.COMPANY_SUPER_ADMIN, tenant.id
    )
    [request_id] = await pending_ids(async_client, acme_headers)

    assert await pending_ids(async_client, globex_headers) == []
    response = await async_client.post(
        f"/api/v1/approvals/{request_id}/approve", headers=globex_headers, json={}
    )
    assert response.status_code == 403
    assert response.json()["code"] == "cross_tenant"


@pytest.mark.asyncio
async def test_duplicate_pending_request(async_client: AsyncClient, company, owner_headers: dict):
    tenant, _ = company
    user = await signup(async_client, tenant.id)

    response = await async_client.post("/api/v1/approvals", headers=owner_headers, json={
        "user_id": user["id"],
        "requested_role": "user",
        "request_type": "new_signup",
    })

    assert response.status_code == 409
    assert response.json()["code"] == "duplicate_pending"


@pytest.mark.asyncio
async def test_role_change_request_and_history(async_client: AsyncClient, company, owner_headers: dict):
    tenant, _ = company
    created = await async_client.post("/api/v1/auth/users", headers=owner_headers, json={
        "email": "staff@acme-attendance.com",
        "password": TEST_PASSWORD,
    })
    user_id = created.json()["id"]
    old_headers = await login(async_client, "staff@acme-attendance.com", Role.USER, tenant.id)

    opened = await async_client.post("/api/v1/approvals", headers=owner_headers, json={
        "user_id": user_id,
        "requested_role": "company_admin",
        "request_type": "role_change",
        "request_data": {"reason": "shift lead"},
    })
    assert opened.status_code == 201

    approved = await async_client.post(
        f"/api/v1/approvals/{opened.json()['id']}/approve", headers=owner_headers, json={}
    )
    assert approved.status_code == 200

    history = await async_client.get(f"/api/v1/approvals/history/{user_id}", headers=owner_headers)
    assert [r["request_type"] for r in history.json()] == ["role_change"]

    # Tokens issued for the old role stop working
    assert (await async_client.get("/api/v1/auth/me", headers=old_headers)).status_code == 401
    await login(async_client, "staff@acme-attendance.com", Role.COMPANY_ADMIN, tenant.id)
