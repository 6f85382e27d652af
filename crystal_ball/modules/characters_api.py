import logging
import os
from typing import Any

from fastapi import APIRouter, Depends, File, Form, HTTPException, Query, UploadFile
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession
from starlette.concurrency import run_in_threadpool

from crystal_ball.modules.api_helpers import commit, iso, parse_level
from crystal_ball.modules.auth_deps import AuthContext, require_active_user
from crystal_ball.modules.db import Campaign, CampaignParty, Character, CharacterLevel, get_session
from crystal_ball.modules.document_delivery import build_passthrough_response, build_pdf_response
from crystal_ball.modules.image_helpers import image_data_url
from crystal_ball.modules.object_storage import (
    ObjectNotFoundError,
    character_prefix,
    get_object_store,
    key_for_character_sheet,
)
from crystal_ball.modules.sheet_parser import extract_class_name, parse_character_sheet
from crystal_ball.modules.spells_helpers import search_spell
from settings import get_settings

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/characters", tags=["characters"])

ALLOWED_SHEET_MIME = {"application/pdf", "image/png", "image/jpeg"}
SHEET_EXTENSIONS = {"application/pdf": ".pdf", "image/png": ".png", "image/jpeg": ".jpg"}


def character_to_dict(character: Character) -> dict[str, Any]:
    return {
        "id": character.id,
        "user_id": character.user_id,
        "name": character.name,
        "player_name": character.player_name,
        "race": character.race,
        "character_class": character.character_class,
        "background": character.background,
        "profile_image": character.profile_image,
        "notes": character.notes,
        "created_at": iso(character.created_at),
        "updated_at": iso(character.updated_at),
    }


def level_to_dict(level: CharacterLevel) -> dict[str, Any]:
    return {
        "id": level.id,
        "character_id": level.character_id,
        "level": level.level,
        "content_type": level.content_type,
        "file_size": level.file_size,
        "has_sheet": bool(level.sheet_key),
        "pdf_url": f"/api/characters/{level.character_id}/levels/{level.level}/pdf",
        "extracted_data": level.extracted_data or {},
        "uploaded_at": iso(level.uploaded_at),
        "updated_at": iso(level.updated_at),
    }


async def levels_for(session: AsyncSession, character_id: str) -> list[CharacterLevel]:
    stmt = select(CharacterLevel).where(CharacterLevel.character_id == character_id).order_by(CharacterLevel.level)
    return list((await session.execute(stmt)).scalars().all())


async def get_character_or_404(session: AsyncSession, character_id: str) -> Character:
    character = await session.get(Character, character_id)
    if not character:
        raise HTTPException(status_code=404, detail="Character not found")
    return character


async def get_owned_character(session: AsyncSession, character_id: str, auth: AuthContext) -> Character:
    character = await get_character_or_404(session, character_id)
    if character.user_id != auth.user.id and not auth.is_admin:
        raise HTTPException(status_code=404, detail="Character not found")
    return character


def _validate_name(name: str | None) -> str:
    cleaned = (name or "").strip()
    if not cleaned:
        raise HTTPException(status_code=400, detail="Character name is required")
    if len(cleaned) < 2:
        raise HTTPException(status_code=400, detail="Character name must be at least 2 characters")
    return cleaned


def _apply_extracted(character: Character, extracted: dict[str, Any]) -> None:
    if isinstance(extracted.get("race"), str):
        character.race = extracted["race"]
    if isinstance(extracted.get("background"), str):
        character.background = extracted["background"]
    class_name = extract_class_name(str(extracted.get("class_level") or ""))
    if class_name:
        character.character_class = class_name


@router.get("")
async def list_characters(
    session: AsyncSession = Depends(get_session),
    auth: AuthContext = Depends(require_active_user),
):
    stmt = select(Character).where(Character.user_id == auth.user.id).order_by(Character.created_at)
    characters = (await session.execute(stmt)).scalars().all()
    items = []
    for character in characters:
        levels = await levels_for(session, character.id)
        items.append({**character_to_dict(character), "levels": [level_to_dict(lvl) for lvl in levels]})
    return {"characters": items}


@router.post("", status_code=201)
async def create_character(
    name: str = Form(...),
    campaign_id: str = Form(...),
    profile_image: UploadFile | None = File(default=None),
    session: AsyncSession = Depends(get_session),
    auth: AuthContext = Depends(require_active_user),
):
    cleaned = _validate_name(name)
    campaign = await session.get(Campaign, (campaign_id or "").strip())
    if not campaign:
        raise HTTPException(status_code=404, detail="Campaign not found")

    image = None
    if profile_image is not None and profile_image.filename:
        image = image_data_url(await profile_image.read())

    character = Character(user_id=auth.user.id, name=cleaned, profile_image=image)
    session.add(character)
    await session.flush()
    session.add(CampaignParty(campaign_id=campaign.id, character_id=character.id))
    await commit(session, "create character")
    await session.refresh(character)
    return {"character": character_to_dict(character)}


@router.get("/{character_id}")
async def get_character(
    character_id: str,
    session: AsyncSession = Depends(get_session),
    auth: AuthContext = Depends(require_active_user),
):
    character = await get_owned_character(session, character_id, auth)
    levels = await levels_for(session, character.id)
    return {"character": character_to_dict(character), "levels": [level_to_dict(lvl) for lvl in levels]}


@router.patch("/{character_id}")
async def update_character(
    character_id: str,
    name: str | None = Form(default=None),
    player_name: str | None = Form(default=None),
    race: str | None = Form(default=None),
    character_class: str | None = Form(default=None),
    background: str | None = Form(default=None),
    notes: str | None = Form(default=None),
    profile_image: UploadFile | None = File(default=None),
    session: AsyncSession = Depends(get_session),
    auth: AuthContext = Depends(require_active_user),
):
    character = await get_owned_character(session, character_id, auth)
    if name is not None:
        character.name = _validate_name(name)
    for field, value in (
        ("player_name", player_name),
        ("race", race),
        ("character_class", character_class),
        ("background", background),
        ("notes", notes),
    ):
        if value is not None:
            setattr(character, field, value.strip() or None)
    if profile_image is not None and profile_image.filename:
        character.profile_image = image_data_url(await profile_image.read())
    await commit(session, "update character")
    await session.refresh(character)
    return {"success": True, "character": character_to_dict(character)}


@router.delete("/{character_id}")
async def delete_character(
    character_id: str,
    session: AsyncSession = Depends(get_session),
    auth: AuthContext = Depends(require_active_user),
):
    character = await get_owned_character(session, character_id, auth)
    store = get_object_store()
    try:
        removed = await run_in_threadpool(store.delete_prefix, character_prefix(character.user_id, character.id))
    except Exception:
        logger.exception("Failed to delete sheets of character %s", character.id)
        raise HTTPException(status_code=500, detail="Failed to delete character")
    logger.info("Deleted %s sheet objects for character %s", removed, character.id)

    for level in await levels_for(session, character.id):
        await session.delete(level)
    await session.delete(character)
    await commit(session, "delete character")
    return {"success": True}


@router.get("/{character_id}/levels")
async def list_levels(
    character_id: str,
    session: AsyncSession = Depends(get_session),
    _auth: AuthContext = Depends(require_active_user),
):
    character = await get_character_or_404(session, character_id)
    return {"levels": [level_to_dict(lvl) for lvl in await levels_for(session, character.id)]}


@router.post("/{character_id}/levels", status_code=201)
async def upload_level(
    character_id: str,
    level: str = Form(...),
    file: UploadFile | None = File(default=None),
    session: AsyncSession = Depends(get_session),
    auth: AuthContext = Depends(require_active_user),
):
    character = await get_owned_character(session, character_id, auth)
    if file is None or not file.filename:
        raise HTTPException(status_code=400, detail="No file provided")
    level_num = parse_level(level)
    content_type = (file.content_type or "").lower()
    if content_type not in ALLOWED_SHEET_MIME:
        raise HTTPException(status_code=400, detail="Only PDF and image files are supported")
    data = await file.read()
    if len(data) > get_settings().sheet_max_upload_bytes:
        raise HTTPException(status_code=400, detail="File size must be less than 10MB")

    store = get_object_store()
    key = key_for_character_sheet(character.user_id, character.id, level_num, file.filename)
    try:
        await run_in_threadpool(store.put_bytes, key, data, content_type)
    except Exception:
        logger.exception("Failed to store sheet for character %s level %s", character.id, level_num)
        raise HTTPException(status_code=500, detail="Failed to upload character level")

    extracted: dict[str, Any] = {}
    if content_type == "application/pdf":
        extracted = await run_in_threadpool(parse_character_sheet, data)
        _apply_extracted(character, extracted)

    stmt = select(CharacterLevel).where(
        CharacterLevel.character_id == character.id, CharacterLevel.level == level_num
    )
    existing = (await session.execute(stmt)).scalars().first()
    old_key = None
    if existing:
        old_key = existing.sheet_key
        await session.delete(existing)
        await session.flush()

    record = CharacterLevel(
        character_id=character.id,
        level=level_num,
        sheet_key=key,
        content_type=content_type,
        file_size=len(data),
        extracted_data=extracted,
    )
    session.add(record)
    try:
        await commit(session, "upload character level")
    except HTTPException:
        # the previous row still points at old_key, so only the new blob goes
        await _discard_blob(key)
        raise
    if old_key and old_key != key:
        await _discard_blob(old_key)
    await session.refresh(record)
    return level_to_dict(record)


async def _discard_blob(key: str) -> None:
    try:
        await run_in_threadpool(get_object_store().delete, key)
    except Exception:
        logger.warning("Could not delete sheet %s", key, exc_info=True)


async def _get_level_or_404(session: AsyncSession, character_id: str, level: int) -> CharacterLevel:
    stmt = select(CharacterLevel).where(
        CharacterLevel.character_id == character_id, CharacterLevel.level == level
    )
    record = (await session.execute(stmt)).scalars().first()
    if not record:
        raise HTTPException(status_code=404, detail="Character level not found")
    return record


@router.get("/{character_id}/levels/{level}")
async def get_level(
    character_id: str,
    level: str,
    session: AsyncSession = Depends(get_session),
    _auth: AuthContext = Depends(require_active_user),
):
    character = await get_character_or_404(session, character_id)
    return level_to_dict(await _get_level_or_404(session, character.id, parse_level(level)))


@router.delete("/{character_id}/levels/{level}")
async def delete_level(
    character_id: str,
    level: str,
    session: AsyncSession = Depends(get_session),
    auth: AuthContext = Depends(require_active_user),
):
    character = await get_owned_character(session, character_id, auth)
    record = await _get_level_or_404(session, character.id, parse_level(level))
    sheet_key = record.sheet_key
    await session.delete(record)
    await commit(session, "delete character level")
    if sheet_key:
        await _discard_blob(sheet_key)
    return {"success": True}


@router.get("/{character_id}/levels/{level}/pdf")
async def get_level_pdf(
    character_id: str,
    level: str,
    raw: bool = Query(default=False),
    direct: bool = Query(default=False),
    session: AsyncSession = Depends(get_session),
    _auth: AuthContext = Depends(require_active_user),
):
    # sheets have no viewer shell: raw and the default both serve inline bytes
    character = await get_character_or_404(session, character_id)
    record = await _get_level_or_404(session, character.id, parse_level(level))
    if not record.sheet_key:
        raise HTTPException(status_code=404, detail="No PDF available for this level")

    title = f"{character.name} - Level {record.level}"
    try:
        stored = await run_in_threadpool(get_object_store().get, record.sheet_key)
    except ObjectNotFoundError:
        raise HTTPException(status_code=404, detail="Document file not found")
    except Exception:
        logger.exception("Failed to fetch sheet %s", record.sheet_key)
        raise HTTPException(status_code=500, detail="Failed to download document")

    if record.content_type == "application/pdf":
        return await build_pdf_response(
            stored, title, direct=direct, threshold=get_settings().pdf_title_rewrite_max_bytes
        )
    extension = SHEET_EXTENSIONS.get(record.content_type) or os.path.splitext(record.sheet_key)[1]
    return await build_passthrough_response(stored, title, extension, direct=direct)


@router.get("/{character_id}/levels/{level}/spells")
async def get_level_spells(
    character_id: str,
    level: str,
    session: AsyncSession = Depends(get_session),
    _auth: AuthContext = Depends(require_active_user),
):
    """Spell names read off the sheet, each paired with its best match (or null)."""
    character = await get_character_or_404(session, character_id)
    record = await _get_level_or_404(session, character.id, parse_level(level))
    names = (record.extracted_data or {}).get("spells") or []
    return {"spells": [{"name": name, "spell": await search_spell(session, name)} for name in names]}
