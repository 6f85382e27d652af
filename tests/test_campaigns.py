import pytest

from tests.helpers import api_client, create_campaign, create_character, signed_in


@pytest.mark.asyncio
async def test_campaign_crud_and_listing():
    _user, token = await signed_in()
    async with api_client(token) as client:
        created = await client.post("/api/campaigns", json={"name": " Tomb of Annihilation ", "description": "Jungle"})
        assert created.status_code == 201
        campaign = created.json()["campaign"]
        assert campaign["name"] == "Tomb of Annihilation"

        await create_character(client, campaign["id"], "Zara")
        listed = await client.get("/api/campaigns")
        assert listed.status_code == 200
        [item] = listed.json()["campaigns"]
        assert item["id"] == campaign["id"]
        assert [member["name"] for member in item["party"]] == ["Zara"]

        detail = await client.get(f"/api/campaigns/{campaign['id']}")
        assert detail.status_code == 200
        party = detail.json()["party"]
        assert party[0]["character"]["name"] == "Zara"
        assert party[0]["levels"] == []

        updated = await client.patch(f"/api/campaigns/{campaign['id']}", json={"description": "  "})
        assert updated.json()["campaign"]["description"] is None

        blank = await client.patch(f"/api/campaigns/{campaign['id']}", json={"name": " "})
        assert blank.status_code == 400

        removed = await client.delete(f"/api/campaigns/{campaign['id']}")
        assert removed.json() == {"success": True}
        assert (await client.get(f"/api/campaigns/{campaign['id']}")).status_code == 404


@pytest.mark.asyncio
async def test_only_owner_or_admin_manage_campaign():
    _owner, owner_token = await signed_in("owner@example.com")
    _other, other_token = await signed_in("other@example.com")
    _admin, admin_token = await signed_in("dm@example.com", is_admin=True)
    async with api_client(owner_token) as client:
        campaign = await create_campaign(client)

    async with api_client(other_token) as client:
        assert (await client.get(f"/api/campaigns/{campaign['id']}")).status_code == 200
        resp = await client.patch(f"/api/campaigns/{campaign['id']}", json={"name": "Mine now"})
        assert resp.status_code == 404
        assert (await client.delete(f"/api/campaigns/{campaign['id']}")).status_code == 404

    async with api_client(admin_token) as client:
        resp = await client.patch(f"/api/campaigns/{campaign['id']}", json={"name": "Renamed"})
        assert resp.status_code == 200
        assert resp.json()["campaign"]["name"] == "Renamed"


@pytest.mark.asyncio
async def test_party_membership():
    _user, token = await signed_in()
    async with api_client(token) as client:
        first = await create_campaign(client, "First")
        second = await create_campaign(client, "Second")
        character = await create_character(client, first["id"])
        url = f"/api/campaigns/{second['id']}/party"

        assert (await client.post(url, json={"character_id": " "})).json() == {"error": "Character ID required"}
        missing = await client.post(url, json={"character_id": "nope"})
        assert missing.status_code == 404
        assert missing.json() == {"error": "Character not found"}

        added = await client.post(url, json={"character_id": character["id"]})
        assert added.status_code == 201

        again = await client.post(url, json={"character_id": character["id"]})
        assert again.status_code == 400
        assert again.json() == {"error": "Character already in this campaign"}

        removed = await client.delete(f"{url}/{character['id']}")
        assert removed.status_code == 200
        gone = await client.delete(f"{url}/{character['id']}")
        assert gone.status_code == 404
        assert gone.json() == {"error": "Character not in this campaign"}

        still_in_first = await client.get(f"/api/campaigns/{first['id']}")
        assert [p["character"]["id"] for p in still_in_first.json()["party"]] == [character["id"]]


@pytest.mark.asyncio
async def test_selected_level_preference_is_per_user():
    _user, token = await signed_in("one@example.com")
    _other, other_token = await signed_in("two@example.com")
    async with api_client(token) as client:
        campaign = await create_campaign(client)
        url = f"/api/campaigns/{campaign['id']}/preference"

        assert (await client.get(url)).json() == {"selected_level": 1}
        assert (await client.patch(url, json={"selected_level": "7"})).json() == {"selected_level": 7}
        assert (await client.patch(url, json={"selected_level": 9})).json() == {"selected_level": 9}
        assert (await client.get(url)).json() == {"selected_level": 9}

        for bad in (0, 21, "abc"):
            resp = await client.patch(url, json={"selected_level": bad})
            assert resp.status_code == 400
            assert resp.json() == {"error": "Invalid level (must be 1-20)"}

        assert (await client.get("/api/campaigns/nope/preference")).status_code == 404

    async with api_client(other_token) as client:
        assert (await client.get(url)).json() == {"selected_level": 1}
