import logging
from typing import Any

from fastapi import APIRouter, Depends, HTTPException, Query
from pydantic import BaseModel, ConfigDict, Field
from sqlalchemy.ext.asyncio import AsyncSession

from crystal_ball.modules.api_helpers import commit
from crystal_ball.modules.auth_deps import AuthContext, require_active_user, require_admin
from crystal_ball.modules.db import get_session
from crystal_ball.modules.logging_helpers import write_audit
from crystal_ball.modules.spells_helpers import (
    clear_spell_cache,
    search_spell,
    search_spells_by_name,
    store_spells,
)

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/spells", tags=["spells"])


class SpellPayload(BaseModel):
    model_config = ConfigDict(extra="allow")

    id: str = Field(min_length=1)
    name: str = Field(min_length=1)


class SpellListPayload(BaseModel):
    spells: list[SpellPayload]


@router.get("")
async def search_spells(
    q: str = Query(default=""),
    session: AsyncSession = Depends(get_session),
    _auth: AuthContext = Depends(require_active_user),
):
    return {"spells": await search_spells_by_name(session, q)}


@router.get("/lookup")
async def lookup_spell(
    name: str = Query(...),
    session: AsyncSession = Depends(get_session),
    _auth: AuthContext = Depends(require_active_user),
):
    spell = await search_spell(session, name)
    if spell is None:
        raise HTTPException(status_code=404, detail="Spell not found")
    return {"spell": spell}


@router.put("")
async def replace_spells(
    payload: SpellListPayload,
    session: AsyncSession = Depends(get_session),
    auth: AuthContext = Depends(require_admin),
):
    spells: list[dict[str, Any]] = [spell.model_dump() for spell in payload.spells]
    count = await store_spells(session, spells)
    write_audit(session, "spells_replace", auth.user.email, "spells", after={"count": count})
    await commit(session, "store spells")
    clear_spell_cache()
    logger.info("Spell list replaced by %s (%s spells)", auth.user.email, count)
    return {"success": True, "count": count}
