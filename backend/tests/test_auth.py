"""Tests for authentication endpoints."""
import uuid

import pytest
from httpx import AsyncClient, ASGITransport
from unittest.mock import AsyncMock, patch, MagicMock

from app.core.security import create_access_token, decode_token
from app.db.session import get_session
from app.main import app


# ─── Fixtures ─────────────────────────────────────────────────────────────────

class FakeUser:
    """Minimal user stub returned by DB mock."""

    id = uuid.UUID("f96955d0-752f-4e0c-b1dc-d26d8dd1460e")
    company_id = uuid.UUID("0b6f2a57-1f0c-4a4e-9d43-5f4f8f0d2c11")
    email = "admin@example.com"
    name = "Admin User"
    role = "ADMIN"
    manager_id = None
    is_approver = True
    approver_level = 1
    is_active = True
    deleted_at = None
    password_hash = "$2b$12$placeholder"  # verify_password is patched


def _session_returning(user):
    mock_result = MagicMock()
    mock_result.scalar_one_or_none.return_value = user

    async def mock_execute(*args, **kwargs):
        return mock_result

    mock_session = AsyncMock()
    mock_session.execute = mock_execute

    async def override_get_session():
        yield mock_session

    return override_get_session


# ─── Login Tests ──────────────────────────────────────────────────────────────

@pytest.mark.asyncio
async def test_login_valid_credentials_returns_jwt_with_company():
    """POST /api/v1/auth/login with valid credentials should return an access token."""
    app.dependency_overrides[get_session] = _session_returning(FakeUser())
    try:
        with patch("app.api.v1.auth.verify_password", return_value=True):
            async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as client:
                response = await client.post(
                    "/api/v1/auth/login",
                    data={"username": "admin@example.com", "password": "changeme123"},
                )
    finally:
        app.dependency_overrides.clear()

    assert response.status_code == 200
    data = response.json()
    assert data["token_type"] == "bearer"
    claims = decode_token(data["access_token"])
    assert claims["sub"] == str(FakeUser.id)
    assert claims["role"] == "ADMIN"
    assert claims["company_id"] == str(FakeUser.company_id)


@pytest.mark.asyncio
async def test_login_invalid_credentials_returns_401():
    """Unknown user should return 401."""
    app.dependency_overrides[get_session] = _session_returning(None)
    try:
        async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as client:
            response = await client.post(
                "/api/v1/auth/login",
                data={"username": "wrong@example.com", "password": "badpass"},
            )
    finally:
        app.dependency_overrides.clear()

    assert response.status_code == 401


@pytest.mark.asyncio
async def test_login_disabled_account_returns_403():
    user = FakeUser()
    user.is_active = False
    app.dependency_overrides[get_session] = _session_returning(user)
    try:
        with patch("app.api.v1.auth.verify_password", return_value=True):
            async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as client:
                response = await client.post(
                    "/api/v1/auth/login",
                    data={"username": "admin@example.com", "password": "changeme123"},
                )
    finally:
        app.dependency_overrides.clear()

    assert response.status_code == 403


# ─── /me Tests ────────────────────────────────────────────────────────────────

@pytest.mark.asyncio
async def test_me_with_valid_token_returns_user():
    """GET /api/v1/auth/me with valid Bearer token should return user data."""
    token = create_access_token(subject=str(FakeUser.id), role="ADMIN")

    app.dependency_overrides[get_session] = _session_returning(FakeUser())
    try:
        async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as client:
            response = await client.get(
                "/api/v1/auth/me",
                headers={"Authorization": f"Bearer {token}"},
            )
    finally:
        app.dependency_overrides.clear()

    assert response.status_code == 200
    data = response.json()
    assert data["email"] == "admin@example.com"
    assert data["role"] == "ADMIN"
    assert data["company_id"] == str(FakeUser.company_id)
    assert "password_hash" not in data


@pytest.mark.asyncio
async def test_me_without_token_returns_401():
    """GET /api/v1/auth/me without Authorization header should return 401."""
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as client:
        response = await client.get("/api/v1/auth/me")
    assert response.status_code == 401
