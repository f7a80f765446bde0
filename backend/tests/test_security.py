"""Security tests: tokens, passwords and deactivated accounts."""
import uuid
from datetime import datetime, timezone

import pytest
from httpx import AsyncClient, ASGITransport
from jose import JWTError, jwt
from unittest.mock import AsyncMock, MagicMock

from app.core.config import settings
from app.core.security import create_access_token, decode_token, hash_password, verify_password
from app.db.session import get_session
from app.main import app


class FakeUser:
    """Minimal user stub for the token -> user lookup."""

    def __init__(self, is_active: bool = True, deleted: bool = False):
        self.id = uuid.uuid4()
        self.company_id = uuid.uuid4()
        self.email = "manager@example.com"
        self.name = "Manager"
        self.role = "MANAGER"
        self.manager_id = None
        self.is_approver = True
        self.approver_level = 1
        self.is_active = is_active
        self.deleted_at = datetime.now(timezone.utc) if deleted else None


def make_session_override(user):
    mock_result = MagicMock()
    mock_result.scalar_one_or_none.return_value = user
    mock_session = AsyncMock()
    mock_session.execute = AsyncMock(return_value=mock_result)

    async def _override():
        yield mock_session
    return _override


# ─── Passwords / tokens ───────────────────────────────────────────────────────

def test_password_hash_round_trip():
    hashed = hash_password("s3cret-pass")
    assert hashed != "s3cret-pass"
    assert verify_password("s3cret-pass", hashed)
    assert not verify_password("wrong", hashed)


def test_access_token_claims():
    company_id = str(uuid.uuid4())
    claims = decode_token(create_access_token(subject="user-1", role="EMPLOYEE", company_id=company_id))
    assert claims["sub"] == "user-1"
    assert claims["role"] == "EMPLOYEE"
    assert claims["company_id"] == company_id
    assert claims["type"] == "access"


def test_token_signed_with_other_secret_is_rejected():
    forged = jwt.encode({"sub": "x", "type": "access"}, "not-the-secret", algorithm=settings.JWT_ALGORITHM)
    with pytest.raises(JWTError):
        decode_token(forged)


# ─── Account state ────────────────────────────────────────────────────────────

@pytest.mark.asyncio
@pytest.mark.parametrize("user", [FakeUser(is_active=False), FakeUser(deleted=True)])
async def test_inactive_or_deleted_user_token_is_refused(user):
    token = create_access_token(subject=str(user.id), role=user.role)
    app.dependency_overrides[get_session] = make_session_override(user)
    try:
        async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as client:
            response = await client.get("/api/v1/auth/me", headers={"Authorization": f"Bearer {token}"})
    finally:
        app.dependency_overrides.clear()

    assert response.status_code == 401


@pytest.mark.asyncio
async def test_non_access_token_type_is_refused():
    user = FakeUser()
    token = jwt.encode(
        {"sub": str(user.id), "type": "refresh"}, settings.JWT_SECRET, algorithm=settings.JWT_ALGORITHM
    )
    app.dependency_overrides[get_session] = make_session_override(user)
    try:
        async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as client:
            response = await client.get("/api/v1/auth/me", headers={"Authorization": f"Bearer {token}"})
    finally:
        app.dependency_overrides.clear()

    assert response.status_code == 401
