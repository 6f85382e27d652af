import pytest

from tests.helpers import api_client, create_user, login, make_png, signed_in


@pytest.mark.asyncio
async def test_profile_readable_before_password_change_but_not_editable():
    _user, token = await signed_in("fresh@example.com", requires_password_change=True)
    async with api_client(token) as client:
        resp = await client.get("/api/profile")
        assert resp.status_code == 200
        assert resp.json()["user"]["requires_password_change"] is True

        blocked = await client.patch("/api/profile", json={"name": "Fresh"})
        assert blocked.status_code == 403


@pytest.mark.asyncio
async def test_update_profile_fields():
    await create_user("taken@example.com")
    _user, token = await signed_in("merlin@example.com")
    async with api_client(token) as client:
        empty = await client.patch("/api/profile", json={"name": "  "})
        assert empty.status_code == 400
        assert empty.json() == {"error": "At least one field must be provided"}

        clash = await client.patch("/api/profile", json={"email": "Taken@Example.com"})
        assert clash.status_code == 400
        assert clash.json() == {"error": "Email already in use"}

        resp = await client.patch("/api/profile", json={"name": "Merlin Ambrosius", "email": "wizard@example.com"})
        assert resp.status_code == 200
        body = resp.json()
        assert body["success"] is True
        assert body["user"]["name"] == "Merlin Ambrosius"
        assert body["user"]["email"] == "wizard@example.com"


@pytest.mark.asyncio
async def test_change_password_keeps_current_session_only():
    _user, token = await signed_in("merlin@example.com")
    other_token = await login("merlin@example.com")
    async with api_client(token) as client:
        wrong = await client.post(
            "/api/profile/change-password",
            json={"current_password": "nope", "new_password": "Brand9New"},
        )
        assert wrong.status_code == 400
        assert wrong.json() == {"error": "Invalid current password"}

        weak = await client.post(
            "/api/profile/change-password",
            json={"current_password": "Password1", "new_password": "alllowercase1"},
        )
        assert weak.status_code == 400
        assert weak.json() == {"error": "Password must contain at least one uppercase letter"}

        ok = await client.post(
            "/api/profile/change-password",
            json={"current_password": "Password1", "new_password": "Brand9New"},
        )
        assert ok.status_code == 200
        assert (await client.get("/api/auth/me")).status_code == 200

    async with api_client(other_token) as client:
        assert (await client.get("/api/auth/me")).status_code == 401

    assert await login("merlin@example.com", "Brand9New")


@pytest.mark.asyncio
async def test_profile_image_upload():
    _user, token = await signed_in()
    async with api_client(token) as client:
        resp = await client.post("/api/profile/image", files={"image": ("me.png", make_png(), "image/png")})
        assert resp.status_code == 200
        assert resp.json()["image"].startswith("data:image/png;base64,")

        profile = await client.get("/api/profile")
        assert profile.json()["user"]["image"].startswith("data:image/png;base64,")

        bad = await client.post("/api/profile/image", files={"image": ("me.png", b"not an image", "image/png")})
        assert bad.status_code == 400
        assert bad.json() == {"error": "Unsupported image type"}
