"""Best-effort extraction of form data from fillable D&D 5e character sheet PDFs."""

import logging
import re
from io import BytesIO
from typing import Any, Optional

from pypdf import PdfReader

logger = logging.getLogger(__name__)

SPELL_NAME_RE = re.compile(r"^spellName\d+$", re.IGNORECASE)
CLASS_LEVEL_RE = re.compile(r"([A-Za-z\s]+?)\s+(\d+)$")
PREFIX_MIN_LENGTH = 4

BASIC_FIELDS = {
    "character_name": "CharacterName",
    "player_name": "PLAYER NAME",
    "race": "RACE",
    "background": "BACKGROUND",
    "alignment": "Alignment",
}

FIELD_ALIASES: dict[str, list[str]] = {
    "class_level": ["CLASS  LEVEL", "CLASS LEVEL", "ClassLevel", "class_level", "CharacterClass"],
    "max_hp": ["MaxHP", "Max HP", "HitPoints", "max_hp", "HP Max"],
    "current_hp": ["CurrentHP", "Current HP", "current_hp", "HP Current"],
    "temporary_hp": ["TempHP", "Temporary HP", "temporary_hp", "HP Temporary", "TemporaryHP"],
    "ac": ["AC", "ArmorClass", "armor_class"],
    "initiative": ["Init", "Initiative"],
    "speed": ["Speed", "Movement"],
    "proficiency_bonus": ["ProfBonus", "Prof Bonus", "Proficiency Bonus", "prof_bonus"],
    "experience_points": ["EXPERIENCE POINTS", "Experience Points", "XP"],
    "passive_perception": ["Passive Perception", "PassivePerception", "PassiveWisdom", "Passive1"],
    "hit_dice": ["HDTotal", "Hit Die", "HD"],
    "armor_description": ["Armor", "Worn Equipment"],
}

ABILITY_ALIASES: dict[str, list[str]] = {
    "strength": ["STR", "Strength"],
    "dexterity": ["DEX", "Dexterity"],
    "constitution": ["CON", "Constitution"],
    "intelligence": ["INT", "Intelligence"],
    "wisdom": ["WIS", "Wisdom"],
    "charisma": ["CHA", "Charisma"],
}

SAVING_THROW_ALIASES: dict[str, list[str]] = {
    "strength": ["ST Strength", "STR Save", "ST STR"],
    "dexterity": ["ST Dexterity", "DEX Save", "ST DEX"],
    "constitution": ["ST Constitution", "CON Save", "ST CON"],
    "intelligence": ["ST Intelligence", "INT Save", "ST INT"],
    "wisdom": ["ST Wisdom", "WIS Save", "ST WIS"],
    "charisma": ["ST Charisma", "CHA Save", "ST CHA"],
}

SKILLS = [
    "Acrobatics",
    "Animal",
    "Arcana",
    "Athletics",
    "Deception",
    "History",
    "Insight",
    "Intimidation",
    "Investigation",
    "Medicine",
    "Nature",
    "Perception",
    "Performance",
    "Persuasion",
    "Religion",
    "SleightofHand",
    "Stealth",
    "Survival",
]

SENSE_ALIASES: dict[str, list[str]] = {
    "darkvision": ["AdditionalSenses", "Darkvision", "Senses"],
    "truesight": ["Truesight"],
    "blindsight": ["Blindsight"],
    "tremorsense": ["Tremorsense"],
}

PERSONALITY_ALIASES: dict[str, list[str]] = {
    "personality_traits": ["Personality Traits", "PersonalityTraits", "personality_traits"],
    "ideals": ["Ideals"],
    "bonds": ["Bonds"],
    "flaws": ["Flaws"],
    "backstory": ["Character Backstory", "CharacterBackstory", "character_backstory", "Backstory"],
}

NOTES_ALIASES = ["ADDITIONAL NOTES", "Additional Notes", "AdditionalNotes", "additional_notes", "Notes"]

FEATURE_ALIASES: dict[str, list[str]] = {
    "features": ["FEATURES  TRAITS", "Features Traits", "FeatureTraits", "features_traits"],
    "additional_features": [
        "ADDITIONAL FEATURES  TRAITS",
        "Additional Features Traits",
        "AdditionalFeatures",
        "additional_features_traits",
    ],
    "allies_organizations": [
        "ALLIES  ORGANIZATIONS",
        "Allies Organizations",
        "AlliesOrganizations",
        "allies_organizations",
    ],
}

SPELLCASTING_ABILITY = {
    "bard": "CHA",
    "cleric": "WIS",
    "druid": "WIS",
    "paladin": "CHA",
    "ranger": "WIS",
    "sorcerer": "CHA",
    "warlock": "CHA",
    "wizard": "INT",
    "artificer": "INT",
    "monk": "WIS",
}


def _norm(name: str) -> str:
    return re.sub(r"[^a-z0-9]", "", (name or "").lower())


def find_field_exact(form: dict[str, str], name: str) -> Optional[str]:
    wanted = name.lower().strip()
    for key, value in form.items():
        if key.lower().strip() == wanted:
            return value
    return None


def find_field(form: dict[str, str], name: str) -> Optional[str]:
    """Case-insensitive lookup that falls back to a prefix match ("Animal" finds "Animal Handling")."""
    value = find_field_exact(form, name)
    if value is not None:
        return value
    wanted = _norm(name)
    # short codes like "AC" or "INT" would prefix-match unrelated skills
    if len(wanted) < PREFIX_MIN_LENGTH:
        return None
    for key, value in form.items():
        if _norm(key).startswith(wanted):
            return value
    return None


def _first_alias(form: dict[str, str], aliases: list[str], *, exact: bool = False) -> Optional[str]:
    lookup = find_field_exact if exact else find_field
    for alias in aliases:
        value = lookup(form, alias)
        if value and value.strip():
            return value.strip()
    return None


def _grouped(form: dict[str, str], mapping: dict[str, list[str]]) -> dict[str, str]:
    found = {}
    for name, aliases in mapping.items():
        value = _first_alias(form, aliases)
        if value:
            found[name] = value
    return found


def _section_list(text: str, heading: str) -> list[str]:
    match = re.search(rf"{heading}\s*\n([\s\S]*?)($|===)", text, re.IGNORECASE)
    if not match:
        return []
    return [part.strip() for part in match.group(1).split(",") if part.strip()]


def extract_class_name(class_level: str) -> Optional[str]:
    if not class_level:
        return None
    match = CLASS_LEVEL_RE.search(class_level.strip())
    return match.group(1).strip() if match else None


def determine_spellcasting_ability(class_level: str) -> Optional[str]:
    class_name = extract_class_name(class_level)
    if not class_name:
        return None
    return SPELLCASTING_ABILITY.get(class_name.lower())


def parse_form_fields(form: dict[str, str]) -> dict[str, Any]:
    result: dict[str, Any] = {}

    for name, alias in BASIC_FIELDS.items():
        value = find_field(form, alias)
        if value and value.strip():
            result[name] = value.strip()

    result.update(_grouped(form, FIELD_ALIASES))
    if result.get("max_hp") and not result.get("current_hp"):
        result["current_hp"] = result["max_hp"]

    for key, mapping in (("ability_scores", ABILITY_ALIASES), ("saving_throws", SAVING_THROW_ALIASES)):
        group = _grouped(form, mapping)
        if group:
            result[key] = group

    skills = {}
    for skill in SKILLS:
        value = find_field(form, skill)
        if value and value.strip():
            skills[skill] = value.strip()
    if skills:
        result["skills"] = skills

    defenses = find_field(form, "Defenses")
    if defenses:
        result["defenses"] = defenses
        match = re.search(r"Resistances?\s*-?\s*([^\n]+)", defenses, re.IGNORECASE)
        if match:
            result["damage_resistances"] = [s.strip() for s in match.group(1).split(",") if s.strip()]

    senses = {}
    for sense, aliases in SENSE_ALIASES.items():
        for alias in aliases:
            value = find_field(form, alias)
            if value and sense in value.lower():
                senses[sense] = value
                break
    if senses:
        result["senses"] = senses

    proficiencies = find_field(form, "ProficienciesLang") or ""
    for key, heading in (
        ("languages", "LANGUAGES"),
        ("weapon_proficiencies", "WEAPONS"),
        ("armor_proficiencies", "ARMOR"),
    ):
        items = _section_list(proficiencies, heading)
        if items:
            result[key] = items

    weapons: list[str] = []
    spells: list[str] = []
    for key, value in form.items():
        value = (value or "").strip()
        if not value:
            continue
        if "Wpn" in key and "Name" in key and value not in weapons:
            weapons.append(value)
        if SPELL_NAME_RE.match(key) and value not in spells:
            spells.append(value)
    if weapons:
        result["equipment"] = weapons
    if spells:
        result["spells"] = spells

    actions = find_field(form, "Actions1")
    if actions and actions.strip():
        result["class_features"] = [actions.strip()]

    ability = determine_spellcasting_ability(result.get("class_level", ""))
    if ability:
        result["spellcasting_ability"] = ability

    for name, aliases in PERSONALITY_ALIASES.items():
        value = _first_alias(form, aliases, exact=True)
        if value:
            result[name] = value

    notes = [
        part.strip()
        for part in (find_field_exact(form, "AdditionalNotes1"), find_field_exact(form, "AdditionalNotes2"))
        if part and part.strip()
    ]
    if notes:
        result["additional_notes"] = "\n\n".join(notes)
    else:
        value = _first_alias(form, NOTES_ALIASES, exact=True)
        if value:
            result["additional_notes"] = value

    result.update(_grouped(form, FEATURE_ALIASES))
    return result


def read_form_fields(data: bytes) -> dict[str, str]:
    reader = PdfReader(BytesIO(data))
    if reader.is_encrypted:
        reader.decrypt("")
    fields = reader.get_fields() or {}
    form = {}
    for name, field in fields.items():
        value = field.get("/V")
        if value is None:
            continue
        text = str(value).strip()
        if text:
            form[name] = text
    return form


def parse_character_sheet(data: bytes) -> dict[str, Any]:
    try:
        return parse_form_fields(read_form_fields(data))
    except Exception:
        logger.warning("Failed to parse character sheet form fields", exc_info=True)
        return {}
