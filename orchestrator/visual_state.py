"""Visual state extraction, anchor merging and continuity context rendering."""
from __future__ import annotations

import os
import re
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional, Sequence, Tuple

from orchestrator.models import CHARACTER_ATTRIBUTES, SCALAR_ATTRIBUTES, CharacterState, VisualState, now_iso


CONTEXT_HEADER = "=== VISUAL CONTINUITY FROM PREVIOUS SEGMENT ==="
CONTEXT_FOOTER = "=== END CONTINUITY CONTEXT ==="
CONTEXT_INSTRUCTION = (
    "CRITICAL: Maintain visual continuity with the previous segment. Keep every character's "
    "look and placement consistent unless the brief states a change, and ensure smooth transitions."
)
FINAL_FRAME_LIMIT = 300

_HEADER_RE = re.compile(r"^\s*([A-Z][A-Z0-9 /&_\-]*[A-Z])\s*:\s*(.*)$")
_BULLET_RE = re.compile(r"^\s*[-*•]\s*(.+)$")
_SENTENCE_RE = re.compile(r"(?<=[.!?])\s+")

SCALAR_LABELS: Dict[str, str] = {
    "SETTING": "setting",
    "LOCATION": "setting",
    "TIME OF DAY": "time_of_day",
    "LIGHTING": "lighting",
    "CAMERA": "camera",
    "CAMERA POSITION": "camera",
    "MOOD/ATMOSPHERE": "tone",
    "MOOD": "tone",
    "ATMOSPHERE": "tone",
    "TONE": "tone",
    "FINAL FRAME": "final_frame",
    "PREVIOUS SEGMENT ENDED WITH": "final_frame",
}
CHARACTER_LABELS: Dict[str, str] = {
    "CHARACTER POSITIONS": "position",
    "CHARACTER APPEARANCE": "appearance",
    "WARDROBE": "wardrobe",
    "CHARACTER WARDROBE": "wardrobe",
}
KEY_ELEMENT_LABELS = ("KEY ELEMENTS", "KEY VISUAL ELEMENTS")

# Rendering order for labelled blocks.
RENDER_LABELS: Tuple[Tuple[str, str], ...] = (
    ("SETTING", "setting"),
    ("TIME OF DAY", "time_of_day"),
    ("LIGHTING", "lighting"),
    ("CAMERA", "camera"),
    ("MOOD/ATMOSPHERE", "tone"),
)
RENDER_CHARACTER_LABELS: Tuple[Tuple[str, str], ...] = (
    ("CHARACTER POSITIONS", "position"),
    ("CHARACTER APPEARANCE", "appearance"),
    ("WARDROBE", "wardrobe"),
)

LIGHTING_KEYWORDS = (
    "golden hour", "candlelight", "moonlight", "neon", "daylight", "natural light",
    "sunset", "sunrise", "backlit", "dim", "bright", "dark", "harsh", "soft light",
)
CAMERA_KEYWORDS = (
    "extreme close-up", "close-up", "medium shot", "wide shot", "tracking shot", "aerial",
    "low angle", "high angle", "over-the-shoulder", "dolly", "handheld", "establishing shot",
)
TONE_KEYWORDS = (
    "tense", "relaxed", "happy", "sad", "calm", "chaotic", "somber", "joyful",
    "mysterious", "romantic", "ominous", "playful",
)
TIME_KEYWORDS = ("dawn", "morning", "noon", "afternoon", "dusk", "evening", "midnight", "night", "day")
POSITION_KEYWORDS = (
    "left", "right", "center", "foreground", "background", "inside", "outside",
    "doorway", "window", "sitting", "standing",
)


@dataclass
class Section:
    inline: str = ""
    items: List[str] = field(default_factory=list)

    def text(self) -> str:
        if self.inline:
            return self.inline
        return "; ".join(self.items)


def parse_sections(text: str) -> Dict[str, Section]:
    """Split ``LABEL: value`` text into sections keyed by upper-case label.

    Bullet lines (``- item``) directly below a label belong to it. A label
    that appears twice keeps its first occurrence.
    """
    sections: Dict[str, Section] = {}
    current: Optional[Section] = None
    for raw in (text or "").splitlines():
        line = raw.rstrip()
        if not line.strip():
            current = None
            continue
        bullet = _BULLET_RE.match(line)
        if bullet and current is not None:
            current.items.append(bullet.group(1).strip())
            continue
        header = _HEADER_RE.match(line)
        if header:
            label = " ".join(header.group(1).split())
            section = Section(inline=header.group(2).strip())
            if label in sections:
                current = Section()
            else:
                sections[label] = section
                current = section
            continue
        current = None
    return sections


def split_named_item(item: str) -> Tuple[str, str]:
    name, sep, value = item.partition(":")
    if not sep:
        return "", item.strip()
    return name.strip().strip('"'), value.strip()


def read_labelled_state(text: str, sections: Optional[Dict[str, Section]] = None) -> VisualState:
    """Build a state from labelled lines only; unlabelled prose is ignored."""
    sections = sections if sections is not None else parse_sections(text)
    state = VisualState()
    for label, attr in SCALAR_LABELS.items():
        section = sections.get(label)
        if section and section.text() and not getattr(state, attr):
            setattr(state, attr, section.text())
    for label, attr in CHARACTER_LABELS.items():
        section = sections.get(label)
        if not section:
            continue
        items = list(section.items)
        if section.inline:
            items.extend(part for part in section.inline.split(";") if part.strip())
        for item in items:
            name, value = split_named_item(item)
            if not name or not value:
                continue
            character = state.characters.setdefault(name, CharacterState())
            if not getattr(character, attr):
                setattr(character, attr, value)
    for label in KEY_ELEMENT_LABELS:
        section = sections.get(label)
        if section:
            elements = list(section.items)
            if section.inline:
                elements.extend(e.strip() for e in section.inline.split(","))
            state.key_elements = _dedupe(elements)
            break
    return state


def _dedupe(values: Sequence[str]) -> List[str]:
    seen: List[str] = []
    lowered: List[str] = []
    for value in values:
        value = (value or "").strip()
        if value and value.lower() not in lowered:
            seen.append(value)
            lowered.append(value.lower())
    return seen


def _first_keyword(text: str, keywords: Sequence[str]) -> str:
    lowered = text.lower()
    for keyword in keywords:
        if re.search(r"\b" + re.escape(keyword) + r"\b", lowered):
            return keyword
    return ""


def _match_character(name: str, known: Sequence[str]) -> str:
    for candidate in known:
        if candidate.lower() == name.lower():
            return candidate
    return name


def _prose_without_labels(text: str) -> str:
    kept = []
    for line in (text or "").splitlines():
        if _HEADER_RE.match(line) or _BULLET_RE.match(line):
            continue
        kept.append(line.strip())
    return " ".join(part for part in kept if part)


def _heuristic_state(text: str, character_ids: Sequence[str]) -> VisualState:
    state = read_labelled_state(text)
    if state.characters and character_ids:
        state.characters = {
            _match_character(name, character_ids): c for name, c in state.characters.items()
        }
    prose = _prose_without_labels(text)
    if not state.lighting:
        state.lighting = _first_keyword(prose, LIGHTING_KEYWORDS)
    if not state.camera:
        state.camera = _first_keyword(prose, CAMERA_KEYWORDS)
    if not state.tone:
        state.tone = _first_keyword(prose, TONE_KEYWORDS)
    if not state.time_of_day:
        state.time_of_day = _first_keyword(prose, TIME_KEYWORDS)
    sentences = [s.strip() for s in _SENTENCE_RE.split(prose) if s.strip()]
    for character_id in character_ids:
        if character_id in state.characters:
            continue
        pattern = re.compile(r"\b" + re.escape(character_id) + r"\b", re.IGNORECASE)
        mention = next((s for s in sentences if pattern.search(s)), "")
        if not mention:
            continue
        position = _first_keyword(mention, POSITION_KEYWORDS)
        if position:
            state.characters[character_id] = CharacterState(position=position)
    if not state.final_frame and sentences:
        state.final_frame = sentences[-1][:FINAL_FRAME_LIMIT]
    return state


def _overlay(base: VisualState, top: VisualState) -> VisualState:
    """Fields of ``top`` win where non-empty."""
    return merge_visual_states([base, top])


def extract_visual_state(
    generated_text: str,
    character_ids: Optional[Sequence[str]] = None,
    delegate: Optional[Callable[[str, List[str]], Dict[str, Any]]] = None,
) -> VisualState:
    """Best-effort snapshot of the final frame described by ``generated_text``.

    Never raises: a failing delegate falls back to the heuristic reading and
    a failing heuristic yields an empty state.
    """
    known = [c for c in (character_ids or []) if c]
    try:
        state = _heuristic_state(generated_text or "", known)
    except Exception:
        state = VisualState()
    if delegate is not None and (generated_text or "").strip():
        try:
            delegated = VisualState.from_dict(delegate(generated_text, known))
        except Exception:
            delegated = None
        if delegated is not None and not delegated.is_empty():
            state = _overlay(state, delegated)
    state.extracted_at = now_iso()
    return state


class VisualStateExtractor:
    """Callable extractor; ``mode="llm"`` consults the visual-state agent first."""

    def __init__(self, mode: Optional[str] = None, delegate: Optional[Callable[..., Dict[str, Any]]] = None) -> None:
        self.mode = (mode or os.getenv("VISUAL_STATE_MODE", "heuristic")).strip().lower()
        if delegate is None and self.mode == "llm":
            from agents.visual_state.agent import extract as agent_extract

            delegate = agent_extract
        self.delegate = delegate

    def __call__(self, generated_text: str, character_ids: Optional[Sequence[str]] = None) -> VisualState:
        return extract_visual_state(generated_text, character_ids, delegate=self.delegate)


def merge_visual_states(states: Sequence[VisualState]) -> VisualState:
    """Collapse a window ordered oldest to newest into one anchor state.

    Scalars take the most recent non-empty value. Characters are the union of
    the window with per-attribute recency, so a character missing from the
    newest state keeps its last known attributes.
    """
    if not states:
        raise ValueError("Cannot merge empty visual states array")
    if len(states) == 1:
        return states[0]
    merged = VisualState()
    elements: List[str] = []
    for state in states:
        for attr in SCALAR_ATTRIBUTES:
            value = getattr(state, attr)
            if value:
                setattr(merged, attr, value)
        for name, character in state.characters.items():
            target = merged.characters.setdefault(name, CharacterState())
            for attr in CHARACTER_ATTRIBUTES:
                value = getattr(character, attr)
                if value:
                    setattr(target, attr, value)
        elements.extend(state.key_elements)
        if state.extracted_at:
            merged.extracted_at = state.extracted_at
    merged.key_elements = _dedupe(elements)
    return merged


def is_visual_state_valid(state: Optional[VisualState]) -> bool:
    if state is None:
        return False
    return len(state.final_frame.strip()) > 20 and bool(state.lighting.strip()) and bool(state.camera.strip())


def render_state_lines(state: VisualState, characters: Optional[Sequence[str]] = None) -> List[str]:
    """Labelled lines for ``state``, optionally limited to some characters."""
    lines: List[str] = []
    for label, attr in RENDER_LABELS:
        value = getattr(state, attr)
        if value:
            lines.append(f"{label}: {value}")
    wanted = None if characters is None else {c.lower() for c in characters}
    for label, attr in RENDER_CHARACTER_LABELS:
        items = [
            f"- {name}: {getattr(c, attr)}"
            for name, c in state.characters.items()
            if getattr(c, attr) and (wanted is None or name.lower() in wanted)
        ]
        if items:
            lines.append(f"{label}:")
            lines.extend(items)
    return lines


def build_continuity_context(state: Optional[VisualState]) -> str:
    if state is None or state.is_empty():
        return ""
    lines = [CONTEXT_HEADER]
    if state.final_frame:
        lines.append(f"PREVIOUS SEGMENT ENDED WITH: {state.final_frame}")
    lines.extend(render_state_lines(state))
    if state.key_elements:
        lines.append("KEY ELEMENTS: " + ", ".join(state.key_elements))
    lines.append(CONTEXT_INSTRUCTION)
    lines.append(CONTEXT_FOOTER)
    return "\n".join(lines)
