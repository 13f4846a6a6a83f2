"""Role endpoint tests."""

import pytest
from sqlalchemy.ext.asyncio import AsyncSession

from tests.conftest import AuthenticatedClient
from usersvc.models import User
from usersvc.services import accounts


@pytest.mark.asyncio
async def test_admin_role_hidden_from_users(
    authenticated_client: AuthenticatedClient, admin_client: AuthenticatedClient
):
    response = await authenticated_client.get("/api/roles")
    assert response.status_code == 200
    assert [role["name"] for role in response.json()["roles"]] == ["user"]

    response = await admin_client.get("/api/roles")
    assert [role["name"] for role in response.json()["roles"]] == ["admin", "user"]


@pytest.mark.asyncio
async def test_create_role(admin_client: AuthenticatedClient):
    response = await admin_client.post("/api/roles", json={"name": "pharmacist"})
    assert response.status_code == 201
    assert response.json()["role"]["name"] == "pharmacist"

    response = await admin_client.post("/api/roles", json={"name": "pharmacist"})
    assert response.status_code == 400
    assert response.json()["message"] == "Role 'pharmacist' already exists"


@pytest.mark.asyncio
async def test_create_role_validation(admin_client: AuthenticatedClient):
    response = await admin_client.post("/api/roles", json={"name": "Bad Name"})
    assert response.status_code == 400


@pytest.mark.asyncio
async def test_create_role_requires_admin(authenticated_client: AuthenticatedClient):
    response = await authenticated_client.post("/api/roles", json={"name": "pharmacist"})
    assert response.status_code == 403


@pytest.mark.asyncio
async def test_assign_and_revoke(
    admin_client: AuthenticatedClient, session: AsyncSession, user: User
):
    await accounts.seed_default_roles(session)
    grant = {"userId": user.id, "roleName": "teacher"}

    response = await admin_client.post("/api/roles/assign", json=grant)
    assert response.status_code == 200
    assert response.json()["changed"] is True

    response = await admin_client.post("/api/roles/assign", json=grant)
    assert response.json() == {
        "success": True,
        "message": "User already has this role",
        "changed": False,
    }

    response = await admin_client.get(f"/api/roles/user/{user.id}")
    assert response.json()["roles"] == ["teacher", "user"]

    response = await admin_client.delete("/api/roles/revoke", json=grant)
    assert response.status_code == 200
    assert response.json()["changed"] is True

    response = await admin_client.get(f"/api/roles/user/{user.id}")
    assert response.json()["roles"] == ["user"]


@pytest.mark.asyncio
async def test_assign_unknown_role_or_user(admin_client: AuthenticatedClient, user: User):
    response = await admin_client.post(
        "/api/roles/assign", json={"userId": user.id, "roleName": "astronaut"}
    )
    assert response.status_code == 404

    response = await admin_client.post(
        "/api/roles/assign", json={"userId": "missing", "roleName": "user"}
    )
    assert response.status_code == 404


@pytest.mark.asyncio
async def test_user_roles_visibility(
    authenticated_client: AuthenticatedClient, user: User, admin_user: User
):
    response = await authenticated_client.get(f"/api/roles/user/{user.id}")
    assert response.status_code == 200
    assert response.json()["userId"] == user.id

    response = await authenticated_client.get(f"/api/roles/user/{admin_user.id}")
    assert response.status_code == 403
