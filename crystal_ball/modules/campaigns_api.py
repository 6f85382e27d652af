import logging
from typing import Any

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel, Field
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from crystal_ball.modules.api_helpers import commit, iso, parse_level
from crystal_ball.modules.auth_deps import AuthContext, require_active_user
from crystal_ball.modules.characters_api import character_to_dict, level_to_dict, levels_for
from crystal_ball.modules.db import (
    Campaign,
    CampaignParty,
    Character,
    UserCampaignPreference,
    get_session,
)

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/campaigns", tags=["campaigns"])


class CampaignPayload(BaseModel):
    name: str = Field(min_length=1)
    description: str | None = None


class CampaignUpdatePayload(BaseModel):
    name: str | None = None
    description: str | None = None


class PartyPayload(BaseModel):
    character_id: str


class PreferencePayload(BaseModel):
    selected_level: int | str


def _campaign_to_dict(campaign: Campaign) -> dict[str, Any]:
    return {
        "id": campaign.id,
        "user_id": campaign.user_id,
        "name": campaign.name,
        "description": campaign.description,
        "created_at": iso(campaign.created_at),
        "updated_at": iso(campaign.updated_at),
    }


async def _party_characters(session: AsyncSession, campaign_id: str) -> list[Character]:
    stmt = (
        select(Character)
        .join(CampaignParty, CampaignParty.character_id == Character.id)
        .where(CampaignParty.campaign_id == campaign_id)
        .order_by(CampaignParty.added_at, Character.name)
    )
    return list((await session.execute(stmt)).scalars().all())


async def _get_campaign_or_404(session: AsyncSession, campaign_id: str) -> Campaign:
    campaign = await session.get(Campaign, campaign_id)
    if not campaign:
        raise HTTPException(status_code=404, detail="Campaign not found")
    return campaign


async def _get_managed_campaign(session: AsyncSession, campaign_id: str, auth: AuthContext) -> Campaign:
    campaign = await _get_campaign_or_404(session, campaign_id)
    if campaign.user_id != auth.user.id and not auth.is_admin:
        raise HTTPException(status_code=404, detail="Campaign not found")
    return campaign


@router.get("")
async def list_campaigns(
    session: AsyncSession = Depends(get_session),
    _auth: AuthContext = Depends(require_active_user),
):
    campaigns = (await session.execute(select(Campaign).order_by(Campaign.created_at))).scalars().all()
    items = []
    for campaign in campaigns:
        party = await _party_characters(session, campaign.id)
        items.append(
            {
                **_campaign_to_dict(campaign),
                "party": [{"id": c.id, "name": c.name, "profile_image": c.profile_image} for c in party],
            }
        )
    return {"campaigns": items}


@router.post("", status_code=201)
async def create_campaign(
    payload: CampaignPayload,
    session: AsyncSession = Depends(get_session),
    auth: AuthContext = Depends(require_active_user),
):
    name = payload.name.strip()
    if not name:
        raise HTTPException(status_code=400, detail="Campaign name is required")
    campaign = Campaign(user_id=auth.user.id, name=name, description=(payload.description or "").strip() or None)
    session.add(campaign)
    await commit(session, "create campaign")
    await session.refresh(campaign)
    return {"campaign": _campaign_to_dict(campaign)}


@router.get("/{campaign_id}")
async def get_campaign(
    campaign_id: str,
    session: AsyncSession = Depends(get_session),
    _auth: AuthContext = Depends(require_active_user),
):
    campaign = await _get_campaign_or_404(session, campaign_id)
    party = []
    for character in await _party_characters(session, campaign.id):
        levels = await levels_for(session, character.id)
        party.append({"character": character_to_dict(character), "levels": [level_to_dict(lvl) for lvl in levels]})
    return {"campaign": _campaign_to_dict(campaign), "party": party}


@router.patch("/{campaign_id}")
async def update_campaign(
    campaign_id: str,
    payload: CampaignUpdatePayload,
    session: AsyncSession = Depends(get_session),
    auth: AuthContext = Depends(require_active_user),
):
    campaign = await _get_managed_campaign(session, campaign_id, auth)
    if payload.name is not None:
        name = payload.name.strip()
        if not name:
            raise HTTPException(status_code=400, detail="Campaign name is required")
        campaign.name = name
    if payload.description is not None:
        campaign.description = payload.description.strip() or None
    await commit(session, "update campaign")
    await session.refresh(campaign)
    return {"campaign": _campaign_to_dict(campaign)}


@router.delete("/{campaign_id}")
async def delete_campaign(
    campaign_id: str,
    session: AsyncSession = Depends(get_session),
    auth: AuthContext = Depends(require_active_user),
):
    campaign = await _get_managed_campaign(session, campaign_id, auth)
    await session.delete(campaign)
    await commit(session, "delete campaign")
    return {"success": True}


@router.post("/{campaign_id}/party", status_code=201)
async def add_party_member(
    campaign_id: str,
    payload: PartyPayload,
    session: AsyncSession = Depends(get_session),
    auth: AuthContext = Depends(require_active_user),
):
    character_id = payload.character_id.strip()
    if not character_id:
        raise HTTPException(status_code=400, detail="Character ID required")
    campaign = await _get_managed_campaign(session, campaign_id, auth)
    if not await session.get(Character, character_id):
        raise HTTPException(status_code=404, detail="Character not found")
    if await session.get(CampaignParty, (campaign.id, character_id)):
        raise HTTPException(status_code=400, detail="Character already in this campaign")
    session.add(CampaignParty(campaign_id=campaign.id, character_id=character_id))
    await commit(session, "add character to campaign")
    return {"success": True}


@router.delete("/{campaign_id}/party/{character_id}")
async def remove_party_member(
    campaign_id: str,
    character_id: str,
    session: AsyncSession = Depends(get_session),
    auth: AuthContext = Depends(require_active_user),
):
    campaign = await _get_managed_campaign(session, campaign_id, auth)
    membership = await session.get(CampaignParty, (campaign.id, character_id))
    if not membership:
        raise HTTPException(status_code=404, detail="Character not in this campaign")
    await session.delete(membership)
    await commit(session, "remove character from campaign")
    return {"success": True}


@router.get("/{campaign_id}/preference")
async def get_preference(
    campaign_id: str,
    session: AsyncSession = Depends(get_session),
    auth: AuthContext = Depends(require_active_user),
):
    campaign = await _get_campaign_or_404(session, campaign_id)
    preference = await session.get(UserCampaignPreference, (auth.user.id, campaign.id))
    return {"selected_level": preference.selected_level if preference else 1}


@router.patch("/{campaign_id}/preference")
async def update_preference(
    campaign_id: str,
    payload: PreferencePayload,
    session: AsyncSession = Depends(get_session),
    auth: AuthContext = Depends(require_active_user),
):
    level = parse_level(payload.selected_level)
    campaign = await _get_campaign_or_404(session, campaign_id)
    preference = await session.get(UserCampaignPreference, (auth.user.id, campaign.id))
    if preference:
        preference.selected_level = level
    else:
        session.add(UserCampaignPreference(user_id=auth.user.id, campaign_id=campaign.id, selected_level=level))
    await commit(session, "update preference")
    return {"selected_level": level}
