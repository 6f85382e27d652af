"""Spell lookup over the ``spells`` entry of the 5e reference data table.

The spell list is loaded once per process and indexed by id (``magic_missile``).
Lookups try the normalized id first and fall back to partial name matching.
"""

import logging
import re
from typing import Any

from sqlalchemy.ext.asyncio import AsyncSession

from crystal_ball.modules.db import DndData

logger = logging.getLogger(__name__)

SPELLS_KEY = "spells"

_BRACKETS = re.compile(r"\s*\[[^\]]*\]\s*")
_SPACES = re.compile(r"\s+")
_NOT_ID = re.compile(r"[^a-z0-9_]")
_WORD_SPLIT = re.compile(r"[\s']+")

_spell_cache: dict[str, dict[str, Any]] | None = None


def normalize_spell_name(name: str) -> str:
    """``"Acid Arrow [UA]"`` -> ``"acid_arrow"``."""
    cleaned = _BRACKETS.sub("", name or "").strip()
    cleaned = _SPACES.sub("_", cleaned).lower()
    return _NOT_ID.sub("", cleaned)


def clear_spell_cache() -> None:
    global _spell_cache
    _spell_cache = None


def index_spells(spells: list[dict[str, Any]]) -> dict[str, dict[str, Any]]:
    return {str(spell["id"]): spell for spell in spells if isinstance(spell, dict) and spell.get("id")}


async def load_spells(session: AsyncSession) -> dict[str, dict[str, Any]]:
    global _spell_cache
    if _spell_cache is not None:
        return _spell_cache
    row = await session.get(DndData, SPELLS_KEY)
    if row is None:
        logger.warning("Spells data not found in database")
        return {}
    _spell_cache = index_spells(row.value or [])
    logger.info("Loaded %s spells", len(_spell_cache))
    return _spell_cache


async def store_spells(session: AsyncSession, spells: list[dict[str, Any]]) -> int:
    """Replace the stored spell list and return how many spells it indexes.

    The caller commits, then calls ``clear_spell_cache``.
    """
    row = await session.get(DndData, SPELLS_KEY)
    if row is None:
        session.add(DndData(key=SPELLS_KEY, value=spells))
    else:
        row.value = spells
    return len(index_spells(spells))


def rank_matches(spells: dict[str, dict[str, Any]], query: str) -> list[dict[str, Any]]:
    normalized = normalize_spell_name(query)
    if not normalized:
        return []
    query_lower = query.strip().lower()
    # short words like "of" would match nearly everything
    words = [word for word in _WORD_SPLIT.split(query_lower) if len(word) > 2]

    def matches(spell: dict[str, Any]) -> bool:
        if normalized in str(spell.get("id", "")):
            return True
        name = str(spell.get("name", "")).lower()
        return any(word in name for word in words)

    def relevance(spell: dict[str, Any]) -> tuple[bool, bool, str]:
        name = str(spell.get("name", ""))
        return (name.lower() != query_lower, spell.get("id") != normalized, name.lower())

    return sorted((spell for spell in spells.values() if matches(spell)), key=relevance)


async def search_spells_by_name(session: AsyncSession, query: str) -> list[dict[str, Any]]:
    return rank_matches(await load_spells(session), query)


async def search_spell(session: AsyncSession, name: str) -> dict[str, Any] | None:
    spells = await load_spells(session)
    exact = spells.get(normalize_spell_name(name))
    if exact is not None:
        return exact
    ranked = rank_matches(spells, name)
    return ranked[0] if ranked else None
