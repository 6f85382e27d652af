import re
from datetime import timedelta

import pytest
from sqlalchemy import select

from crystal_ball.modules.auth_helpers import utcnow
from crystal_ball.modules.db import AsyncSessionLocal, AuthSession
from crystal_ball.modules.email_service import get_email_provider
from tests.helpers import api_client, create_user, login, signed_in


@pytest.mark.asyncio
async def test_login_returns_token_and_sets_cookie():
    await create_user("merlin@example.com")
    async with api_client() as client:
        resp = await client.post("/api/auth/login", json={"email": "Merlin@Example.com ", "password": "Password1"})
        assert resp.status_code == 200
        body = resp.json()
        assert body["token"]
        assert body["user"]["email"] == "merlin@example.com"
        cookie = resp.headers["set-cookie"]
        assert cookie.startswith("session_token=")
        assert "HttpOnly" in cookie


@pytest.mark.asyncio
async def test_login_rejects_bad_credentials():
    await create_user("merlin@example.com")
    async with api_client() as client:
        wrong = await client.post("/api/auth/login", json={"email": "merlin@example.com", "password": "nope"})
        assert wrong.status_code == 401
        assert wrong.json() == {"error": "Invalid email or password"}

        unknown = await client.post("/api/auth/login", json={"email": "ghost@example.com", "password": "Password1"})
        assert unknown.status_code == 401


@pytest.mark.asyncio
async def test_me_accepts_bearer_or_cookie():
    _user, token = await signed_in("merlin@example.com")
    async with api_client(token) as client:
        resp = await client.get("/api/auth/me")
        assert resp.status_code == 200
        assert resp.json()["user"]["email"] == "merlin@example.com"

    async with api_client() as client:
        resp = await client.get("/api/auth/me", headers={"Cookie": f"session_token={token}"})
        assert resp.status_code == 200


@pytest.mark.asyncio
async def test_me_requires_auth():
    async with api_client() as client:
        resp = await client.get("/api/auth/me")
        assert resp.status_code == 401
        assert resp.json() == {"error": "Not authenticated"}

    async with api_client("not-a-real-token") as client:
        assert (await client.get("/api/auth/me")).status_code == 401


@pytest.mark.asyncio
async def test_logout_revokes_the_session():
    _user, token = await signed_in()
    async with api_client(token) as client:
        resp = await client.post("/api/auth/logout")
        assert resp.status_code == 200
        assert resp.json() == {"success": True}

    async with api_client(token) as client:
        assert (await client.get("/api/auth/me")).status_code == 401


@pytest.mark.asyncio
async def test_expired_session_is_rejected_and_removed():
    user = await create_user()
    async with AsyncSessionLocal() as session:
        session.add(AuthSession(token="stale", user_id=user.id, expires_at=utcnow() - timedelta(minutes=1)))
        await session.commit()

    async with api_client("stale") as client:
        assert (await client.get("/api/auth/me")).status_code == 401

    async with AsyncSessionLocal() as session:
        rows = (await session.execute(select(AuthSession).where(AuthSession.token == "stale"))).scalars().all()
        assert rows == []


@pytest.mark.asyncio
async def test_forgot_and_reset_password_flow():
    _user, old_token = await signed_in("merlin@example.com")
    async with api_client() as client:
        resp = await client.post("/api/auth/forgot-password", json={"email": "merlin@example.com"})
        assert resp.status_code == 200
        assert resp.json() == {"success": True}

        outbox = get_email_provider().outbox
        assert len(outbox) == 1
        assert outbox[0].to == ["merlin@example.com"]
        match = re.search(r"/reset-password\?token=([0-9a-f]+)", outbox[0].text)
        assert match
        reset_token = match.group(1)

        weak = await client.post("/api/auth/reset-password", json={"token": reset_token, "new_password": "short"})
        assert weak.status_code == 400
        assert weak.json() == {"error": "Password must be at least 8 characters long"}

        ok = await client.post("/api/auth/reset-password", json={"token": reset_token, "new_password": "NewPassw0rd"})
        assert ok.status_code == 200

        reused = await client.post(
            "/api/auth/reset-password", json={"token": reset_token, "new_password": "OtherPassw0rd"}
        )
        assert reused.status_code == 400
        assert reused.json() == {"error": "Invalid or expired reset token"}

    async with api_client(old_token) as client:
        assert (await client.get("/api/auth/me")).status_code == 401

    assert await login("merlin@example.com", "NewPassw0rd")


@pytest.mark.asyncio
async def test_forgot_password_for_unknown_email_reveals_nothing():
    async with api_client() as client:
        resp = await client.post("/api/auth/forgot-password", json={"email": "ghost@example.com"})
        assert resp.status_code == 200
        assert resp.json() == {"success": True}
    assert get_email_provider().outbox == []


@pytest.mark.asyncio
async def test_invalid_payload_uses_error_envelope():
    async with api_client() as client:
        resp = await client.post("/api/auth/login", json={"email": "merlin@example.com"})
        assert resp.status_code == 400
        body = resp.json()
        assert body["error"] == "Invalid request data"
        assert body["details"]
