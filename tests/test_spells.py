import pytest

from crystal_ball.modules.spells_helpers import normalize_spell_name, rank_matches
from tests.helpers import api_client, create_campaign, create_character, make_pdf, signed_in, upload_level

SPELLS = [
    {"id": "acid_arrow", "name": "Acid Arrow", "level": 2, "school": "Evocation"},
    {"id": "acid_splash", "name": "Acid Splash", "level": 0, "school": "Conjuration"},
    {"id": "fire_bolt", "name": "Fire Bolt", "level": 0, "school": "Evocation"},
    {"id": "magic_missile", "name": "Magic Missile", "level": 1, "school": "Evocation"},
    {"id": "shield", "name": "Shield", "level": 1, "school": "Abjuration"},
]


@pytest.mark.parametrize(
    "name,expected",
    [
        ("Magic Missile", "magic_missile"),
        ("Acid Arrow [UA]", "acid_arrow"),
        ("Melf's Acid Arrow", "melfs_acid_arrow"),
        ("  Shield  ", "shield"),
        ("", ""),
    ],
)
def test_normalize_spell_name(name, expected):
    assert normalize_spell_name(name) == expected


def test_rank_matches_orders_by_relevance():
    index = {spell["id"]: spell for spell in SPELLS}
    assert [s["id"] for s in rank_matches(index, "acid")] == ["acid_arrow", "acid_splash"]
    assert [s["id"] for s in rank_matches(index, "Acid Splash")][0] == "acid_splash"
    assert [s["id"] for s in rank_matches(index, "Melf's Acid Arrow")] == ["acid_arrow", "acid_splash"]
    assert rank_matches(index, "Wish") == []
    assert rank_matches(index, "  ") == []


async def load_spells(client):
    resp = await client.put("/api/spells", json={"spells": SPELLS})
    assert resp.status_code == 200
    assert resp.json() == {"success": True, "count": len(SPELLS)}


@pytest.mark.asyncio
async def test_only_admins_replace_spells():
    _user, token = await signed_in("player@example.com")
    async with api_client(token) as client:
        resp = await client.put("/api/spells", json={"spells": SPELLS})
        assert resp.status_code == 403

        # nothing stored yet
        assert (await client.get("/api/spells", params={"q": "acid"})).json() == {"spells": []}


@pytest.mark.asyncio
async def test_lookup_exact_then_partial():
    _admin, token = await signed_in("dm@example.com", is_admin=True)
    async with api_client(token) as client:
        await load_spells(client)

        exact = await client.get("/api/spells/lookup", params={"name": "Magic Missile [PHB]"})
        assert exact.json()["spell"]["id"] == "magic_missile"
        assert exact.json()["spell"]["school"] == "Evocation"

        partial = await client.get("/api/spells/lookup", params={"name": "Melf's Acid Arrow"})
        assert partial.json()["spell"]["id"] == "acid_arrow"

        missing = await client.get("/api/spells/lookup", params={"name": "Wish"})
        assert missing.status_code == 404
        assert missing.json() == {"error": "Spell not found"}

        search = await client.get("/api/spells", params={"q": "acid"})
        assert [s["name"] for s in search.json()["spells"]] == ["Acid Arrow", "Acid Splash"]


@pytest.mark.asyncio
async def test_replacing_spells_refreshes_lookups():
    _admin, token = await signed_in("dm@example.com", is_admin=True)
    async with api_client(token) as client:
        await load_spells(client)
        assert (await client.get("/api/spells/lookup", params={"name": "Shield"})).status_code == 200

        resp = await client.put("/api/spells", json={"spells": [{"id": "wish", "name": "Wish"}]})
        assert resp.json()["count"] == 1
        assert (await client.get("/api/spells/lookup", params={"name": "Shield"})).status_code == 404
        assert (await client.get("/api/spells/lookup", params={"name": "Wish"})).json()["spell"]["name"] == "Wish"

        invalid = await client.put("/api/spells", json={"spells": [{"name": "No Id"}]})
        assert invalid.status_code == 400


@pytest.mark.asyncio
async def test_level_spells_are_resolved():
    _admin, token = await signed_in("dm@example.com", is_admin=True)
    async with api_client(token) as client:
        await load_spells(client)
        campaign = await create_campaign(client)
        character = await create_character(client, campaign["id"])
        sheet = make_pdf(fields={"spellName1": "Fire Bolt", "spellName2": "Melf's Acid Arrow", "spellName3": "Wish"})
        assert (await upload_level(client, character["id"], 3, sheet)).status_code == 201

        resp = await client.get(f"/api/characters/{character['id']}/levels/3/spells")
        assert resp.status_code == 200
        resolved = {item["name"]: item["spell"] for item in resp.json()["spells"]}
        assert resolved["Fire Bolt"]["id"] == "fire_bolt"
        assert resolved["Melf's Acid Arrow"]["id"] == "acid_arrow"
        assert resolved["Wish"] is None
