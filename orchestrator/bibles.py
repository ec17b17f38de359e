"""Load the series bible and turn it into generator context."""
import json
import os
from typing import Any, Dict, List, Tuple

from orchestrator.models import SegmentDescriptor

BASE_DIR = os.path.abspath(os.path.join(os.path.dirname(__file__), ".."))
DEFAULT_SERIES_BIBLE = os.path.join(BASE_DIR, "data", "bibles", "series_bible.json")


def load_series_bible(path: str | None = None) -> Dict[str, Any]:
    bible_path = path or os.getenv("SERIES_BIBLE_PATH", DEFAULT_SERIES_BIBLE)
    if not os.path.exists(bible_path):
        return {}
    with open(bible_path, "r", encoding="utf-8") as f:
        return json.load(f)


def _entry_name(entry: Dict[str, Any]) -> str:
    return str(entry.get("name") or entry.get("character_id") or entry.get("id") or "").strip()


def bible_character_names(bible: Dict[str, Any]) -> List[str]:
    return [n for n in (_entry_name(c) for c in bible.get("characters") or [] if isinstance(c, dict)) if n]


def build_generation_context(
    bible: Dict[str, Any],
    segment: SegmentDescriptor,
) -> Tuple[str, str, List[Dict[str, Any]], List[Dict[str, Any]]]:
    """Return (series_context, character_context, characters, settings) for one segment.

    Only characters and settings that appear in the segment are passed on.
    Locked descriptions take precedence over free-form ones.
    """
    series_lines: List[str] = []
    if bible.get("title"):
        series_lines.append(f"SERIES: {bible['title']}")
    if bible.get("style_prefix"):
        series_lines.append(f"STYLE: {bible['style_prefix']}")
    if bible.get("tone"):
        series_lines.append(f"TONE: {bible['tone']}")

    wanted = {c.lower() for c in segment.characters_in_segment}
    characters: List[Dict[str, Any]] = []
    character_lines: List[str] = []
    for entry in bible.get("characters") or []:
        if not isinstance(entry, dict):
            continue
        name = _entry_name(entry)
        if not name or name.lower() not in wanted:
            continue
        description = entry.get("locked_description") or entry.get("description") or ""
        characters.append({"name": name, "description": description})
        if description:
            character_lines.append(f"- {name}: {description}")

    locations = {s.lower() for s in segment.settings_in_segment}
    settings: List[Dict[str, Any]] = []
    for entry in bible.get("settings") or []:
        if not isinstance(entry, dict):
            continue
        name = _entry_name(entry)
        if name and name.lower() in locations:
            settings.append({"name": name, "description": entry.get("description") or ""})
    for setting in settings:
        if setting["description"]:
            series_lines.append(f"SETTING {setting['name']}: {setting['description']}")

    character_context = ""
    if character_lines:
        character_context = "CHARACTER REFERENCE (do not alter):\n" + "\n".join(character_lines)
    return "\n".join(series_lines), character_context, characters, settings
